"""Records stored in and returned by the aggregator database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class User:
    """A registered user."""

    id: int
    created_at: datetime
    updated_at: datetime
    user_name: str


@dataclass(frozen=True)
class Feed:
    """An RSS feed added by a user."""

    id: int
    created_at: datetime
    updated_at: datetime
    feed_name: str
    feed_url: str
    user_id: int
    last_fetched_at: Optional[datetime] = None


@dataclass(frozen=True)
class FeedFollow:
    """A link between a user and a feed they follow."""

    id: int
    created_at: datetime
    updated_at: datetime
    user_id: int
    feed_id: int


@dataclass(frozen=True)
class FeedFollowRow:
    """A feed follow joined with the names of its user and feed."""

    id: int
    created_at: datetime
    updated_at: datetime
    user_id: int
    feed_id: int
    user_name: str
    feed_name: str


@dataclass(frozen=True)
class Post:
    """A single post collected from a feed."""

    id: int
    created_at: datetime
    updated_at: datetime
    title: str
    post_url: str
    post_description: Optional[str]
    published_at: datetime
    feed_id: int


@dataclass(frozen=True)
class MarkedFeed:
    """What is left of a feed after it has been marked as fetched."""

    feed_url: str
    updated_at: datetime
    last_fetched_at: Optional[datetime]