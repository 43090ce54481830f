"""SQLite storage for users, feeds, follows and posts."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Sequence, TypeVar

from .models import Feed, FeedFollowRow, MarkedFeed, Post, User

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    feed_name TEXT NOT NULL,
    feed_url TEXT NOT NULL UNIQUE,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id INTEGER PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    feed_id INTEGER NOT NULL REFERENCES feeds (id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    post_url TEXT NOT NULL UNIQUE,
    post_description TEXT,
    published_at TEXT NOT NULL,
    feed_id INTEGER NOT NULL REFERENCES feeds (id) ON DELETE CASCADE
);
"""

_USER_COLUMNS = "id, created_at, updated_at, user_name"
_FEED_COLUMNS = "id, created_at, updated_at, feed_name, feed_url, user_id, last_fetched_at"
_POST_COLUMNS = (
    "posts.id, posts.created_at, posts.updated_at, posts.title, posts.post_url, "
    "posts.post_description, posts.published_at, posts.feed_id"
)
_FOLLOW_SELECT = """
SELECT feed_follows.id, feed_follows.created_at, feed_follows.updated_at,
       feed_follows.user_id, feed_follows.feed_id, users.user_name, feeds.feed_name
FROM feed_follows
INNER JOIN users ON feed_follows.user_id = users.id
INNER JOIN feeds ON feed_follows.feed_id = feeds.id
"""


class DatabaseError(Exception):
    """A query failed."""


class NotFoundError(DatabaseError):
    """A query that returns one row found none."""


class IntegrityViolation(DatabaseError):
    """A write broke a uniqueness or reference constraint."""


def _encode(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="microseconds")


def _decode(text: Optional[str]) -> Optional[datetime]:
    return None if text is None else datetime.fromisoformat(text)


def _user(row: Sequence) -> User:
    user_id, created, updated, name = row
    return User(user_id, _decode(created), _decode(updated), name)


def _feed(row: Sequence) -> Feed:
    feed_id, created, updated, name, url, user_id, fetched = row
    return Feed(feed_id, _decode(created), _decode(updated), name, url, user_id, _decode(fetched))


def _follow(row: Sequence) -> FeedFollowRow:
    follow_id, created, updated, user_id, feed_id, user_name, feed_name = row
    return FeedFollowRow(
        follow_id, _decode(created), _decode(updated), user_id, feed_id, user_name, feed_name
    )


def _post(row: Sequence) -> Post:
    post_id, created, updated, title, url, description, published, feed_id = row
    return Post(
        post_id, _decode(created), _decode(updated), title, url,
        description, _decode(published), feed_id,
    )


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as err:
        raise IntegrityViolation(str(err)) from err
    except sqlite3.Error as err:
        raise DatabaseError(str(err)) from err


def connect(url: str) -> "Queries":
    """Open the database named by a path or a sqlite:// URL and prepare its schema."""
    if url.startswith("sqlite://"):
        target = url[len("sqlite://"):]
        if target.startswith("/"):
            target = target[1:]
        target = target or ":memory:"
    elif "://" in url:
        raise DatabaseError(f"unsupported database url: {url}")
    else:
        target = url
    with _translate_errors():
        connection = sqlite3.connect(target)
    queries = Queries(connection)
    queries.create_schema()
    return queries


class Queries:
    """The aggregator's queries over one SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._in_transaction = False
        with _translate_errors():
            self._conn.execute("PRAGMA foreign_keys = ON")

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        with _translate_errors():
            self._conn.executescript(_SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator["Queries"]:
        """Run the enclosed queries as one unit, rolled back on any exception."""
        if self._in_transaction:
            raise DatabaseError("a transaction is already in progress")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        else:
            with _translate_errors():
                self._conn.commit()
        finally:
            self._in_transaction = False

    @contextmanager
    def _write(self) -> Iterator[None]:
        try:
            with _translate_errors():
                yield
        except BaseException:
            if not self._in_transaction:
                self._conn.rollback()
            raise
        else:
            if not self._in_transaction:
                with _translate_errors():
                    self._conn.commit()

    def _one(self, sql: str, params: Sequence, convert: Callable[[Sequence], T], missing: str) -> T:
        with _translate_errors():
            row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise NotFoundError(missing)
        return convert(row)

    def _many(self, sql: str, params: Sequence, convert: Callable[[Sequence], T]) -> list[T]:
        with _translate_errors():
            rows = self._conn.execute(sql, params).fetchall()
        return [convert(row) for row in rows]

    # users

    def create_user(self, user_id: int, created_at: datetime, user_name: str) -> User:
        stamp = _encode(created_at)
        with self._write():
            self._conn.execute(
                "INSERT INTO users (id, created_at, updated_at, user_name) VALUES (?, ?, ?, ?)",
                (user_id, stamp, stamp, user_name),
            )
        return self.get_user_by_id(user_id)

    def delete_all_users(self) -> None:
        with self._write():
            self._conn.execute("DELETE FROM users")

    def get_user_by_id(self, user_id: int) -> User:
        return self._one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
            (user_id,), _user, f"no user with id {user_id}",
        )

    def get_user_by_name(self, user_name: str) -> User:
        return self._one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE user_name = ? LIMIT 1",
            (user_name,), _user, f"no user named {user_name!r}",
        )

    def get_users(self) -> list[User]:
        return self._many(f"SELECT {_USER_COLUMNS} FROM users", (), _user)

    # feeds

    def create_feed(
        self, feed_id: int, created_at: datetime, feed_name: str, feed_url: str, user_id: int
    ) -> Feed:
        stamp = _encode(created_at)
        with self._write():
            self._conn.execute(
                "INSERT INTO feeds (id, created_at, updated_at, feed_name, feed_url, user_id) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (feed_id, stamp, stamp, feed_name, feed_url, user_id),
            )
        return self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?",
            (feed_id,), _feed, f"no feed with id {feed_id}",
        )

    def get_feed_by_url(self, feed_url: str) -> Feed:
        return self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds WHERE feed_url = ? LIMIT 1",
            (feed_url,), _feed, f"no feed at {feed_url}",
        )

    def get_feeds(self) -> list[Feed]:
        return self._many(f"SELECT {_FEED_COLUMNS} FROM feeds", (), _feed)

    def get_next_feed_to_fetch(self) -> Feed:
        """The feed fetched longest ago, never-fetched feeds first."""
        return self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC LIMIT 1",
            (), _feed, "no feeds to fetch",
        )

    def mark_feed_fetched(self, feed_id: int, updated_at: datetime) -> MarkedFeed:
        stamp = _encode(updated_at)
        with self._write():
            cursor = self._conn.execute(
                "UPDATE feeds SET updated_at = ?, last_fetched_at = ? WHERE id = ?",
                (stamp, stamp, feed_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"no feed with id {feed_id}")
            row = self._conn.execute(
                "SELECT feed_url, updated_at, last_fetched_at FROM feeds WHERE id = ?",
                (feed_id,),
            ).fetchone()
        url, updated, fetched = row
        return MarkedFeed(url, _decode(updated), _decode(fetched))

    # feed follows

    def create_feed_follow(
        self, follow_id: int, created_at: datetime, user_id: int, feed_id: int
    ) -> FeedFollowRow:
        stamp = _encode(created_at)
        with self._write():
            self._conn.execute(
                "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
                "VALUES (?, ?, ?, ?, ?)",
                (follow_id, stamp, stamp, user_id, feed_id),
            )
            row = self._conn.execute(
                _FOLLOW_SELECT + "WHERE feed_follows.id = ?", (follow_id,)
            ).fetchone()
        return _follow(row)

    def delete_feed_follow(self, user_id: int, feed_url: str) -> None:
        with self._write():
            self._conn.execute(
                "DELETE FROM feed_follows WHERE user_id = ? AND feed_id IN "
                "(SELECT id FROM feeds WHERE feed_url = ?)",
                (user_id, feed_url),
            )

    def get_feed_follows_for_user(self, user_id: int) -> list[FeedFollowRow]:
        return self._many(_FOLLOW_SELECT + "WHERE feed_follows.user_id = ?", (user_id,), _follow)

    # posts

    def create_post(
        self,
        post_id: int,
        created_at: datetime,
        title: str,
        post_url: str,
        post_description: Optional[str],
        published_at: datetime,
        feed_id: int,
    ) -> Post:
        stamp = _encode(created_at)
        with self._write():
            self._conn.execute(
                "INSERT INTO posts (id, created_at, updated_at, title, post_url, "
                "post_description, published_at, feed_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (post_id, stamp, stamp, title, post_url, post_description,
                 _encode(published_at), feed_id),
            )
        return self._one(
            f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?",
            (post_id,), _post, f"no post with id {post_id}",
        )

    def get_posts_for_user(self, user_id: int, limit: int) -> list[Post]:
        """Newest posts from the feeds a user follows."""
        if limit < 0:
            raise DatabaseError("LIMIT must not be negative")
        return self._many(
            f"SELECT {_POST_COLUMNS} FROM posts "
            "INNER JOIN feed_follows ON posts.feed_id = feed_follows.feed_id "
            "WHERE feed_follows.user_id = ? ORDER BY posts.published_at DESC LIMIT ?",
            (user_id, limit), _post,
        )