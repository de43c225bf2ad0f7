from .feed_item import FeedItemRecord

__all__ = ["FeedItemRecord"]
