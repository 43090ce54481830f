"""An RSS feed aggregator with users, follows and posts stored in SQLite."""

__version__ = "0.1.0"

__all__ = ["commands", "config", "database", "models", "rss"]