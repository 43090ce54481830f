"""Command handlers for the feed aggregator's command line."""

from __future__ import annotations

import functools
import html
import logging
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Sequence

from .config import Config, ConfigError
from .database import DatabaseError, Queries
from .models import User
from .rss import FeedError, RSSFeed, RSSItem, fetch_feed

Handler = Callable[["State", Sequence[str]], None]
UserHandler = Callable[["State", Sequence[str], User], None]
Fetcher = Callable[[str], RSSFeed]

_log = logging.getLogger(__name__)

_SEPARATOR = "-------------------------------------"
_PUB_DATE_SHAPE = re.compile(
    r"[A-Za-z]{3}, \d{2} [A-Za-z]{3} \d{4} \d{1,2}:\d{2}:\d{2} [+-]\d{4}"
)
_PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"
_INTEGER = re.compile(r"[+-]?[0-9]+")

_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAX_NANOS = 2**63 - 1


class CommandError(Exception):
    """A command could not be carried out."""


@dataclass
class State:
    """What every command works with: the configuration and the database."""

    config: Config
    db: Queries


def _new_id() -> int:
    return random.randrange(2**31)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Commands:
    """A table of named command handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        """Add or replace the handler for a command name."""
        self._handlers[name] = handler

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def run(self, state: State, name: str, args: Sequence[str]) -> None:
        """Run the named command with its arguments."""
        handler = self._handlers.get(name)
        if handler is None:
            raise CommandError(f"unknown command: {name}")
        handler(state, list(args))


def require_logged_in_user(handler: UserHandler) -> Handler:
    """Wrap a handler so it receives the currently logged-in user."""

    @functools.wraps(handler)
    def logged_in(state: State, args: Sequence[str]) -> None:
        try:
            user = state.db.get_user_by_name(state.config.user_name)
        except DatabaseError as err:
            raise CommandError(f"Error looking up current user: {err}") from err
        handler(state, args, user)

    return logged_in


# users


def login_handler(state: State, args: Sequence[str]) -> None:
    if not args:
        raise CommandError("login is missing username argument")
    name = args[0]
    try:
        state.db.get_user_by_name(name)
    except DatabaseError as err:
        raise CommandError(f"user '{name}' does not exist") from err
    try:
        state.config.set_user(name)
    except ConfigError as err:
        raise CommandError(f"login failed: {err}") from err
    print(f"User was set to {name}")


def register_handler(state: State, args: Sequence[str]) -> None:
    if not args:
        raise CommandError("register is missing username argument")
    name = args[0]
    try:
        state.db.get_user_by_name(name)
    except DatabaseError:
        pass
    else:
        raise CommandError(f"user '{name}' already exists")
    user_id, created_at = _new_id(), _now()
    try:
        state.db.create_user(user_id, created_at, name)
    except DatabaseError as err:
        raise CommandError(f"Error creating user: {err}") from err
    _log.info("created user id=%s created_at=%s name=%s", user_id, created_at, name)
    print("Created user: ", name)
    login_handler(state, args)


def reset_handler(state: State, args: Sequence[str]) -> None:
    try:
        state.db.delete_all_users()
    except DatabaseError as err:
        raise CommandError(f"Reset failed: {err}") from err
    print("Reset complete")


def users_handler(state: State, args: Sequence[str]) -> None:
    try:
        users = state.db.get_users()
    except DatabaseError as err:
        raise CommandError(f"Failed fetching users: {err}") from err
    for user in users:
        line = f"* {user.user_name}"
        if user.user_name == state.config.user_name:
            line += " (current)"
        print(line)


# feeds


def add_feed_handler(state: State, args: Sequence[str], user: User) -> None:
    if len(args) < 2:
        raise CommandError(
            f"Missing {2 - len(args)} argument(s)\nUsage: addfeed <name> <url>"
        )
    try:
        feed = state.db.create_feed(_new_id(), _now(), args[0], args[1], user.id)
    except DatabaseError as err:
        raise CommandError(f"Error creating feed: {err}") from err
    follow_handler(state, [feed.feed_url], user)


def feeds_handler(state: State, args: Sequence[str]) -> None:
    try:
        feeds = state.db.get_feeds()
    except DatabaseError as err:
        raise CommandError(f"Error retrieving feed data: {err}") from err
    for feed in feeds:
        try:
            owner = state.db.get_user_by_id(feed.user_id)
        except DatabaseError as err:
            raise CommandError(
                f"Error looking up user with id {feed.user_id}: {err}"
            ) from err
        print(f"* {feed.feed_name}:{feed.feed_url} added by {owner.user_name}")


def follow_handler(state: State, args: Sequence[str], user: User) -> None:
    if not args:
        raise CommandError("Missing argument feed url\nUsage: follow <feed_url>")
    try:
        feed = state.db.get_feed_by_url(args[0])
    except DatabaseError as err:
        raise CommandError(f"Error finding feed: {err}") from err
    try:
        follow = state.db.create_feed_follow(_new_id(), _now(), user.id, feed.id)
    except DatabaseError as err:
        raise CommandError(f"Error creating feed follow row: {err}") from err
    print(f"{follow.user_name} follows {follow.feed_name}")


def following_handler(state: State, args: Sequence[str], user: User) -> None:
    try:
        follows = state.db.get_feed_follows_for_user(user.id)
    except DatabaseError as err:
        raise CommandError(f"Error getting feed follows for user: {err}") from err
    for follow in follows:
        print(f"* {follow.feed_name}")


def unfollow_handler(state: State, args: Sequence[str], user: User) -> None:
    if not args:
        raise CommandError("Missing feed url argument\nUsage: unfollow <feed_url>")
    try:
        state.db.delete_feed_follow(user.id, args[0])
    except DatabaseError as err:
        raise CommandError(f"Error unfollowing feed {args[0]}: {err}") from err
    print(f"{user.user_name} unfollows {args[0]}", end="")


# aggregation


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "250ms" into seconds."""
    invalid = ValueError(f'time: invalid duration "{text}"')
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise invalid
    total = 0
    while rest:
        if not (rest[0].isascii() and (rest[0].isdigit() or rest[0] == ".")):
            raise invalid
        match = re.match(r"([0-9]*)(?:\.([0-9]*))?", rest)
        whole, fraction = match.group(1), match.group(2) or ""
        if not whole and not fraction:
            raise invalid
        rest = rest[match.end():]
        unit_match = re.match(r"[^.0-9]*", rest)
        unit = unit_match.group(0)
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        rest = rest[len(unit):]
        scale = _NANOS_PER_UNIT.get(unit)
        if scale is None:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        value = int(whole or "0") * scale
        if fraction:
            value += int(fraction) * scale // 10 ** len(fraction)
        total += value
        if total > _MAX_NANOS + (1 if negative else 0):
            raise invalid
    nanos = -total if negative else total
    return nanos / 1_000_000_000


def agg_handler(state: State, args: Sequence[str]) -> None:
    """Scrape one feed per interval, forever."""
    if not args:
        raise CommandError("Missing scrape delay argument\nUsage: agg <scrape_delay>")
    try:
        interval = parse_duration(args[0])
    except ValueError as err:
        raise CommandError(f"Invalid delay format: {err}") from err
    if interval <= 0:
        raise CommandError("non-positive interval for agg")
    next_tick = time.monotonic()
    while True:
        try:
            scrape_feed(state)
        except (CommandError, FeedError, DatabaseError) as err:
            print(err)
        next_tick += interval
        now = time.monotonic()
        if next_tick < now:
            next_tick = now
        time.sleep(next_tick - now)


def scrape_feed(state: State, fetch: Fetcher = fetch_feed) -> None:
    """Fetch the feed that waited longest and store its posts."""
    try:
        feed = state.db.get_next_feed_to_fetch()
    except DatabaseError as err:
        raise CommandError(f"Error fetching oldest feed data: {err}") from err
    try:
        marked = state.db.mark_feed_fetched(feed.id, _now())
    except DatabaseError as err:
        raise CommandError(f"Error marking feed as fetched: {err}") from err
    if marked.last_fetched_at is None or marked.updated_at != marked.last_fetched_at:
        raise CommandError(f"Feed at {marked.feed_url} was not updated correctly")
    rss = fetch(marked.feed_url)
    print(f"Fetched feed '{feed.feed_name}':")
    for item in rss.items:
        try:
            store_post(state, item, feed.id)
        except CommandError as err:
            print(err)


def store_post(state: State, item: RSSItem, feed_id: int) -> None:
    """Save one feed item as a post; items whose URL is already stored are skipped."""
    description = html.unescape(item.description) if item.description else None
    try:
        if not _PUB_DATE_SHAPE.fullmatch(item.pub_date):
            raise ValueError(f"{item.pub_date!r} does not match {_PUB_DATE_FORMAT!r}")
        published = datetime.strptime(item.pub_date, _PUB_DATE_FORMAT)
    except ValueError as err:
        raise CommandError(f"Error parsing time: {err}") from err
    try:
        state.db.create_post(
            _new_id(), _now(), item.title, item.link, description, published, feed_id
        )
    except DatabaseError as err:
        if "post_url" not in str(err):
            raise CommandError(f"Error creating post in database: {err}") from err


def browse_handler(state: State, args: Sequence[str], user: User) -> None:
    limit = 2
    if args:
        text = args[0]
        if not _INTEGER.fullmatch(text):
            raise CommandError("Limit argument is not an integer")
        value = int(text)
        if not -(2**63) <= value < 2**63:
            raise CommandError("Limit argument is not an integer")
        limit = (value + 2**31) % 2**32 - 2**31
    try:
        posts = state.db.get_posts_for_user(user.id, limit)
    except DatabaseError as err:
        raise CommandError(f"Error looking up posts: {err}") from err
    for post in posts:
        print(_SEPARATOR)
        print(f"{post.title} :: {post.post_url}")
        if post.post_description is not None:
            print(post.post_description)


def init_commands() -> Commands:
    """The command table with every command registered."""
    commands = Commands()
    commands.register("login", login_handler)
    commands.register("register", register_handler)
    commands.register("reset", reset_handler)
    commands.register("users", users_handler)
    commands.register("agg", agg_handler)
    commands.register("addfeed", require_logged_in_user(add_feed_handler))
    commands.register("feeds", feeds_handler)
    commands.register("follow", require_logged_in_user(follow_handler))
    commands.register("following", require_logged_in_user(following_handler))
    commands.register("unfollow", require_logged_in_user(unfollow_handler))
    commands.register("browse", require_logged_in_user(browse_handler))
    return commands