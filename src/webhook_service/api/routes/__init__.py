"""Route modules."""

from . import events, stats, subscriptions

__all__ = ["events", "stats", "subscriptions"]
