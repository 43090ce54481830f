"""Fetching and parsing RSS feeds."""

from __future__ import annotations

import html
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional, Union

USER_AGENT = "hbgator"

_CHANNEL_FIELDS = {"title": "title", "link": "link", "description": "description"}
_ITEM_FIELDS = {
    "title": "title",
    "link": "link",
    "description": "description",
    "pubDate": "pub_date",
}


class FeedError(Exception):
    """A feed could not be fetched or parsed."""


@dataclass
class RSSItem:
    """One entry of a feed."""

    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    """A feed's channel and its items."""

    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RSSItem] = field(default_factory=list)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _direct_text(element: ET.Element) -> str:
    """The character data of an element itself, skipping nested elements."""
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _fields(element: ET.Element, names: dict[str, str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for child in element:
        if not isinstance(child.tag, str):
            continue
        name = names.get(_local_name(child.tag))
        if name is not None:
            values[name] = _direct_text(child)
    return values


def parse_feed(data: Union[bytes, str]) -> RSSFeed:
    """Parse an RSS document; the channel title and description are HTML-unescaped."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as err:
        raise FeedError(f"Error unmarshaling RSSFeed data: {err}") from err
    values: dict[str, str] = {}
    items: list[RSSItem] = []
    for channel in root:
        if not isinstance(channel.tag, str) or _local_name(channel.tag) != "channel":
            continue
        values.update(_fields(channel, _CHANNEL_FIELDS))
        items.extend(
            RSSItem(**_fields(child, _ITEM_FIELDS))
            for child in channel
            if isinstance(child.tag, str) and _local_name(child.tag) == "item"
        )
    feed = RSSFeed(items=items, **values)
    feed.title = html.unescape(feed.title)
    feed.description = html.unescape(feed.description)
    return feed


def fetch_feed(feed_url: str, timeout: Optional[float] = None) -> RSSFeed:
    """Download and parse the feed at feed_url."""
    try:
        request = urllib.request.Request(feed_url, headers={"User-Agent": USER_AGENT})
    except ValueError as err:
        raise FeedError(f"Error generating request: {err}") from err
    try:
        response = urllib.request.urlopen(request, timeout=timeout)
    except urllib.error.HTTPError as err:
        response = err
    except (urllib.error.URLError, OSError, ValueError) as err:
        raise FeedError(f"Error requesting RSSFeed: {err}") from err
    try:
        with response:
            body = response.read()
    except OSError as err:
        raise FeedError(f"Error reading RSSFeed data: {err}") from err
    return parse_feed(body)