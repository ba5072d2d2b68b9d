from .change_feed import ChangeFeed, RowChange, Subscription, change_feed

__all__ = [
    "ChangeFeed",
    "RowChange",
    "Subscription",
    "change_feed",
]
