"""Promotions feed built from store coupons."""

from typing import Any, Mapping

from catalog_feeds.feeds.errors import RecordMappingError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.mapping import extract_id, first_present, format_price, parse_amount, require_field
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType

PROMOTIONS_FEED_HEADER = (
    "offer_id",
    "title",
    "value_type",
    "percent_off",
    "fixed_amount_off",
    "target_type",
    "target_granularity",
    "target_selection",
    "target_product_retailer_ids",
    "start_date_time",
    "end_date_time",
    "min_subtotal",
    "redemption_limit_per_user",
    "public_coupon_code",
)

PERCENT_TYPES = ("percent", "percentage")


class PromotionsFeed(AbstractFeed):
    """Coupons as platform offers (comma separated, daily)."""

    descriptor = FeedDescriptor(
        feed_type=FeedType.PROMOTIONS,
        data_stream_name=FeedType.PROMOTIONS.data_stream_name,
        header=PROMOTIONS_FEED_HEADER,
        delimiter=",",
        regeneration_interval_seconds=24 * 3600
    )
    default_batch_size = BatchSize.fixed(100)

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        code = str(require_field(record, "code", "coupon_code"))
        amount = parse_amount(record.get("amount"))
        if amount is None or amount == 0:
            raise RecordMappingError(f"Coupon {code} has no discount amount")

        currency = first_present(record, ("currency",)) or "USD"
        discount_type = str(record.get("discount_type", "percent")).lower()
        is_percent = discount_type in PERCENT_TYPES
        if is_percent and amount > 100:
            raise RecordMappingError(f"Coupon {code} discounts more than 100%")

        product_ids = [str(product_id) for product_id in record.get("product_ids") or []]
        # Product-level coupons target line items, everything else the cart
        target_line_items = discount_type == "fixed_product" or bool(product_ids)

        return {
            "offer_id": extract_id(record),
            "title": first_present(record, ("description", "title")) or code,
            "value_type": "PERCENTAGE" if is_percent else "FIXED_AMOUNT",
            "percent_off": int(amount) if is_percent else None,
            "fixed_amount_off": None if is_percent else format_price(amount, currency),
            "target_type": "LINE_ITEM" if target_line_items else "SHIPPING" if record.get("free_shipping") else "CART",
            "target_granularity": "ITEM_LEVEL" if target_line_items else "ORDER_LEVEL",
            "target_selection": "SPECIFIC_PRODUCTS" if product_ids else "ALL_CATALOG_PRODUCTS",
            "target_product_retailer_ids": product_ids,
            "start_date_time": first_present(record, ("date_created", "start_date")),
            "end_date_time": first_present(record, ("date_expires", "end_date")),
            "min_subtotal": format_price(record.get("minimum_amount"), currency),
            "redemption_limit_per_user": record.get("usage_limit_per_user"),
            "public_coupon_code": code,
        }
