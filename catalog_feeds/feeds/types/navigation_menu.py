"""Storefront navigation menu feed."""

from typing import Any, Dict, List, Mapping

from catalog_feeds.feeds.errors import RecordMappingError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.mapping import first_present, require_field
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType

NAVIGATION_MENU_FEED_HEADER = ("navigation",)

MAX_DEPTH = 3


def _menu_items(items: List[Mapping[str, Any]], depth: int = 1) -> List[Dict[str, Any]]:
    if depth > MAX_DEPTH:
        raise RecordMappingError(f"Menu is nested deeper than {MAX_DEPTH} levels")

    result = []
    for item in items:
        entry = {
            "title": require_field(item, "title", "name"),
            "resourceType": first_present(item, ("type", "resource_type")) or "collection",
        }
        retailer_id = first_present(item, ("retailer_id", "id"))
        if retailer_id is not None:
            entry["retailerID"] = str(retailer_id)
        children = item.get("items") or item.get("children") or []
        if children:
            entry["items"] = _menu_items(children, depth + 1)
        result.append(entry)
    return result


class NavigationMenuFeed(AbstractFeed):
    """
    One row per menu; the row's single column holds the menu tree as JSON.
    Menus are few, so the whole set is pulled in one batch.
    """

    descriptor = FeedDescriptor(
        feed_type=FeedType.NAVIGATION_MENU,
        data_stream_name=FeedType.NAVIGATION_MENU.data_stream_name,
        header=NAVIGATION_MENU_FEED_HEADER,
        delimiter=",",
        regeneration_interval_seconds=24 * 3600
    )
    default_batch_size = BatchSize.unbounded()

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        items = record.get("items")
        if not isinstance(items, list) or not items:
            raise RecordMappingError("Menu has no items")
        return {
            "navigation": {
                "name": require_field(record, "name", "title"),
                "items": _menu_items(items),
            }
        }
