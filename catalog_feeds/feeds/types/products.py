"""Product catalog feed."""

from typing import Any, Mapping

from catalog_feeds.feeds.errors import RecordMappingError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.mapping import extract_id, extract_name, first_present, format_price, require_field
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType

PRODUCTS_FEED_HEADER = (
    "id",
    "title",
    "description",
    "availability",
    "condition",
    "price",
    "sale_price",
    "link",
    "image_link",
    "brand",
    "product_type",
    "inventory",
    "item_group_id",
)

# Store stock statuses to feed availability values
AVAILABILITY = {
    "instock": "in stock",
    "in stock": "in stock",
    "outofstock": "out of stock",
    "out of stock": "out of stock",
    "onbackorder": "available for order",
    "preorder": "preorder",
}


def _availability(record: Mapping[str, Any]) -> str:
    status = record.get("stock_status") or record.get("availability")
    if isinstance(status, str) and status.strip().lower() in AVAILABILITY:
        return AVAILABILITY[status.strip().lower()]
    in_stock = record.get("in_stock")
    if in_stock is not None:
        return "in stock" if in_stock else "out of stock"
    return "in stock"


def _image_link(record: Mapping[str, Any]) -> Any:
    image = first_present(record, ("image_link", "image"))
    if image is None and isinstance(record.get("images"), list) and record["images"]:
        image = record["images"][0]
    if isinstance(image, dict):
        return image.get("src") or image.get("url")
    return image


class ProductsFeed(AbstractFeed):
    """Products in the platform's catalog feed format (comma separated, daily)."""

    descriptor = FeedDescriptor(
        feed_type=FeedType.PRODUCTS,
        data_stream_name=FeedType.PRODUCTS.data_stream_name,
        header=PRODUCTS_FEED_HEADER,
        delimiter=",",
        regeneration_interval_seconds=24 * 3600
    )
    default_batch_size = BatchSize.fixed(100)

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        currency = first_present(record, ("currency",)) or "USD"
        price = format_price(first_present(record, ("regular_price", "price")), currency)
        if price is None:
            raise RecordMappingError("Product has no valid price")

        sale_price = format_price(record.get("sale_price"), currency)

        return {
            "id": first_present(record, ("sku", "retailer_id")) or extract_id(record),
            "title": require_field(record, "title", "name"),
            "description": first_present(record, ("short_description", "description")) or "",
            "availability": _availability(record),
            "condition": first_present(record, ("condition",)) or "new",
            "price": price,
            "sale_price": sale_price,
            "link": require_field(record, "link", "permalink", "url"),
            "image_link": _image_link(record),
            "brand": extract_name(record.get("brand")),
            "product_type": extract_name(record.get("categories") or record.get("category")),
            "inventory": record.get("stock_quantity"),
            "item_group_id": record.get("parent_id") or None,
        }
