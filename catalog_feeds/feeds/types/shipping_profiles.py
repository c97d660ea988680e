"""Shipping profiles feed, one row per shipping zone and method."""

from typing import Any, List, Mapping

from catalog_feeds.feeds.errors import RecordMappingError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.mapping import extract_id, first_present, require_field, to_feed_bool
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType

SHIPPING_PROFILES_FEED_HEADER = (
    "shipping_profile_id",
    "name",
    "shipping_zones",
    "shipping_rates",
    "applicable_products",
    "applies_to_all_products",
    "applies_to_rest_of_world",
)


def _zones(record: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    zones = []
    for location in record.get("locations") or record.get("countries") or []:
        if isinstance(location, str):
            zones.append({"country": location, "states": [], "applies_to_entire_country": True})
            continue
        country = location.get("country") or location.get("code")
        if not country:
            raise RecordMappingError("Shipping zone location without a country")
        states = sorted(set(location.get("states") or []))
        zones.append({
            "country": country,
            "states": states,
            "applies_to_entire_country": bool(location.get("applies_to_entire_country", not states)),
        })
    if not zones:
        raise RecordMappingError("Shipping zone has no locations")
    return zones


def _rates(record: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    rates = []
    for method in record.get("methods") or record.get("rates") or []:
        if method.get("enabled") is False:
            continue
        rate = {
            "name": require_field(method, "title", "name"),
            "has_free_shipping": to_feed_bool(method.get("has_free_shipping", False)),
        }
        if method.get("min_order_amount") is not None:
            rate["cart_minimum_for_free_shipping"] = method["min_order_amount"]
        if method.get("cost") is not None:
            rate["cost"] = method["cost"]
        rates.append(rate)
    if not rates:
        raise RecordMappingError("Shipping zone has no enabled shipping methods")
    return rates


class ShippingProfilesFeed(AbstractFeed):
    """
    Store shipping zones. Tab separated, hourly; the zone list is small and
    not paginated, so one batch holds every record.
    """

    descriptor = FeedDescriptor(
        feed_type=FeedType.SHIPPING_PROFILES,
        data_stream_name=FeedType.SHIPPING_PROFILES.data_stream_name,
        header=SHIPPING_PROFILES_FEED_HEADER,
        delimiter="\t",
        regeneration_interval_seconds=3600
    )
    default_batch_size = BatchSize.unbounded()

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        applicable_products = record.get("applicable_products") or []
        return {
            "shipping_profile_id": extract_id(record),
            "name": require_field(record, "zone_name", "name"),
            "shipping_zones": _zones(record),
            "shipping_rates": _rates(record),
            "applicable_products": applicable_products,
            "applies_to_all_products": not applicable_products,
            "applies_to_rest_of_world": to_feed_bool(first_present(record, ("applies_to_rest_of_world",)) or False),
        }
