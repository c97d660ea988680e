"""Product ratings and reviews feed."""

from typing import Any, Mapping

from catalog_feeds.feeds.errors import RecordMappingError
from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.feeds.mapping import extract_id, first_present, require_field
from catalog_feeds.models.data_models import BatchSize, FeedDescriptor, FeedType

RATINGS_AND_REVIEWS_FEED_HEADER = (
    "aggregator",
    "store.name",
    "store.id",
    "store.storeUrls",
    "review_id",
    "rating",
    "title",
    "content",
    "created_at",
    "reviewer.name",
    "reviewer.reviewerID",
    "reviewer.isAnonymous",
    "product.name",
    "product.url",
    "product.productIdentifiers.skus",
)


class RatingsAndReviewsFeed(AbstractFeed):
    """Approved product reviews (comma separated, weekly)."""

    descriptor = FeedDescriptor(
        feed_type=FeedType.RATINGS_AND_REVIEWS,
        data_stream_name=FeedType.RATINGS_AND_REVIEWS.data_stream_name,
        header=RATINGS_AND_REVIEWS_FEED_HEADER,
        delimiter=",",
        regeneration_interval_seconds=7 * 24 * 3600
    )
    default_batch_size = BatchSize.fixed(100)

    AGGREGATOR = "woocommerce"

    def map_record(self, record: Mapping[str, Any]) -> Mapping[str, Any]:
        rating = record.get("rating")
        try:
            rating = int(rating)
        except (TypeError, ValueError) as e:
            raise RecordMappingError(f"Review rating is not numeric: {rating!r}") from e

        product = record.get("product")
        if not isinstance(product, Mapping):
            raise RecordMappingError("Review is not attached to a product")

        reviewer_id = record.get("reviewer_id")
        # Reviews by logged-out customers carry reviewer id 0
        is_anonymous = reviewer_id in (None, 0, "0", "")

        store = record.get("store") or {}
        store_url = first_present(store, ("url",))
        sku = first_present(product, ("sku",))

        return {
            "aggregator": self.AGGREGATOR,
            "store.name": first_present(store, ("name",)),
            "store.id": first_present(store, ("id",)),
            "store.storeUrls": [store_url] if store_url else [],
            "review_id": extract_id(record),
            "rating": rating,
            "title": record.get("title"),
            "content": require_field(record, "review", "content"),
            "created_at": first_present(record, ("date_created", "created_at")),
            "reviewer.name": first_present(record, ("reviewer", "reviewer_name")),
            "reviewer.reviewerID": None if is_anonymous else str(reviewer_id),
            "reviewer.isAnonymous": is_anonymous,
            "product.name": require_field(product, "name"),
            "product.url": first_present(product, ("permalink", "url")),
            "product.productIdentifiers.skus": [sku] if sku else [],
        }
