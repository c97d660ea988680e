"""Concrete feed types."""

from typing import Dict, Type

from catalog_feeds.feeds.feed import AbstractFeed
from catalog_feeds.models.data_models import FeedType

from .navigation_menu import NavigationMenuFeed
from .products import ProductsFeed
from .promotions import PromotionsFeed
from .ratings_and_reviews import RatingsAndReviewsFeed
from .shipping_profiles import ShippingProfilesFeed

FEED_CLASSES: Dict[FeedType, Type[AbstractFeed]] = {
    feed_class.get_feed_type(): feed_class
    for feed_class in (
        ProductsFeed,
        ShippingProfilesFeed,
        PromotionsFeed,
        NavigationMenuFeed,
        RatingsAndReviewsFeed,
    )
}

__all__ = [
    "FEED_CLASSES",
    "NavigationMenuFeed",
    "ProductsFeed",
    "PromotionsFeed",
    "RatingsAndReviewsFeed",
    "ShippingProfilesFeed",
]
