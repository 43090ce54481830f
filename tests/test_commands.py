from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from gatorfeed.commands import (
    CommandError,
    Commands,
    State,
    init_commands,
    parse_duration,
    scrape_feed,
    store_post,
)
from gatorfeed.config import Config, read
from gatorfeed.database import connect
from gatorfeed.rss import RSSFeed, RSSItem

FEED_URL = "https://blog.example.com/rss"
PUB_DATE = "Mon, 02 Jan 2006 15:04:05 -0700"


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / ".gatorconfig.json"


@pytest.fixture
def state(config_file):
    return State(config=Config(db_url=":memory:", path=config_file), db=connect(":memory:"))


@pytest.fixture
def commands():
    return init_commands()


@pytest.fixture
def alice(state, commands):
    commands.run(state, "register", ["alice"])
    return state.db.get_user_by_name("alice")


@pytest.fixture
def alice_feed(state, commands, alice):
    commands.run(state, "addfeed", ["Blog", FEED_URL])
    return state.db.get_feed_by_url(FEED_URL)


def _item(title, link, pub_date=PUB_DATE, description=""):
    return RSSItem(title=title, link=link, description=description, pub_date=pub_date)


class _Stop(Exception):
    pass


# durations


@pytest.mark.parametrize("text", ["1h30m", "90m", "5400s", "1.5h"])
def test_parse_duration_equivalent_forms(text):
    assert parse_duration(text) == parse_duration("90m")


def test_parse_duration_simple_values():
    assert parse_duration("2s") == 2.0
    assert parse_duration("0") == 0.0
    assert parse_duration("-2s") == -parse_duration("2s")
    assert parse_duration("1000ms") == parse_duration("1s")
    assert parse_duration("1000us") == parse_duration("1ms")
    assert parse_duration("1000ns") == parse_duration("1\u00b5s")


@pytest.mark.parametrize("text", ["", "1", "1x", "s", ".s", "-", "1s2"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


# command table


def test_unknown_command(state, commands):
    with pytest.raises(CommandError, match="unknown command: nope"):
        commands.run(state, "nope", [])


def test_init_commands_registers_all(commands):
    names = ["login", "register", "reset", "users", "agg", "addfeed",
             "feeds", "follow", "following", "unfollow", "browse"]
    assert all(name in commands for name in names)
    assert "nope" not in commands


def test_register_custom_handler(state):
    seen = []
    table = Commands()
    table.register("echo", lambda s, args: seen.append(list(args)))
    table.run(state, "echo", ["a", "b"])
    assert seen == [["a", "b"]]


# users


def test_register_logs_in_and_saves_config(state, commands, config_file, capsys):
    commands.run(state, "register", ["alice"])
    out = capsys.readouterr().out
    assert "Created user:  alice" in out
    assert "User was set to alice" in out
    assert state.config.user_name == "alice"
    assert read(config_file).user_name == "alice"


def test_register_requires_name(state, commands):
    with pytest.raises(CommandError, match="register is missing username argument"):
        commands.run(state, "register", [])


def test_register_duplicate(state, commands, alice):
    with pytest.raises(CommandError, match="user 'alice' already exists"):
        commands.run(state, "register", ["alice"])


def test_login_unknown_user(state, commands):
    with pytest.raises(CommandError, match="user 'bob' does not exist"):
        commands.run(state, "login", ["bob"])


def test_login_requires_name(state, commands):
    with pytest.raises(CommandError, match="login is missing username argument"):
        commands.run(state, "login", [])


def test_login_switches_user(state, commands, alice, config_file):
    commands.run(state, "register", ["bob"])
    commands.run(state, "login", ["alice"])
    assert read(config_file).user_name == "alice"


def test_reset_removes_users(state, commands, alice, capsys):
    commands.run(state, "reset", [])
    assert "Reset complete" in capsys.readouterr().out
    assert state.db.get_users() == []


# feeds


def test_addfeed_requires_login(state, commands):
    with pytest.raises(CommandError, match="Error looking up current user"):
        commands.run(state, "addfeed", ["Blog", FEED_URL])


def test_addfeed_missing_arguments(state, commands, alice):
    with pytest.raises(CommandError, match=r"Missing 1 argument\(s\)"):
        commands.run(state, "addfeed", ["Blog"])
    with pytest.raises(CommandError, match=r"Missing 2 argument\(s\)"):
        commands.run(state, "addfeed", [])


def test_addfeed_follows_feed(state, commands, alice, capsys):
    capsys.readouterr()
    commands.run(state, "addfeed", ["Blog", FEED_URL])
    assert "alice follows Blog" in capsys.readouterr().out
    commands.run(state, "following", [])
    assert capsys.readouterr().out.splitlines() == ["* Blog"]


def test_feeds_lists_owner(state, commands, alice_feed, capsys):
    capsys.readouterr()
    commands.run(state, "feeds", [])
    assert capsys.readouterr().out.splitlines() == [f"* Blog:{FEED_URL} added by alice"]


def test_follow_unknown_feed(state, commands, alice):
    with pytest.raises(CommandError, match="Error finding feed"):
        commands.run(state, "follow", ["https://missing.example.com/rss"])


def test_follow_requires_url(state, commands, alice):
    with pytest.raises(CommandError, match="Missing argument feed url"):
        commands.run(state, "follow", [])


def test_follow_by_second_user(state, commands, alice_feed, capsys):
    commands.run(state, "register", ["bob"])
    capsys.readouterr()
    commands.run(state, "follow", [FEED_URL])
    assert "bob follows Blog" in capsys.readouterr().out
    bob = state.db.get_user_by_name("bob")
    assert [f.feed_id for f in state.db.get_feed_follows_for_user(bob.id)] == [alice_feed.id]


def test_unfollow(state, commands, alice, alice_feed, capsys):
    capsys.readouterr()
    commands.run(state, "unfollow", [FEED_URL])
    assert capsys.readouterr().out == f"alice unfollows {FEED_URL}"
    assert state.db.get_feed_follows_for_user(alice.id) == []


def test_unfollow_requires_url(state, commands, alice):
    with pytest.raises(CommandError, match="Missing feed url argument"):
        commands.run(state, "unfollow", [])


# posts


def test_store_post_unescapes_and_parses(state, alice_feed):
    store_post(state, _item("One", "https://blog.example.com/1", description="a &amp; b"),
               alice_feed.id)
    [post] = state.db.get_posts_for_user(alice_feed.user_id, 10)
    assert post.post_description == "a & b"
    assert post.published_at == datetime(
        2006, 1, 2, 15, 4, 5, tzinfo=timezone(timedelta(hours=-7))
    )


def test_store_post_empty_description_is_null(state, alice_feed):
    store_post(state, _item("One", "https://blog.example.com/1"), alice_feed.id)
    [post] = state.db.get_posts_for_user(alice_feed.user_id, 10)
    assert post.post_description is None


def test_store_post_ignores_duplicate_url(state, alice_feed):
    item = _item("One", "https://blog.example.com/1")
    store_post(state, item, alice_feed.id)
    store_post(state, item, alice_feed.id)
    assert len(state.db.get_posts_for_user(alice_feed.user_id, 10)) == 1


@pytest.mark.parametrize("pub_date", ["2006-01-02", "", "Mon, 2 Jan 2006 15:04:05 -0700",
                                      "Mon, 02 Jan 2006 15:04:05 GMT"])
def test_store_post_bad_date(state, alice_feed, pub_date):
    with pytest.raises(CommandError, match="Error parsing time"):
        store_post(state, _item("One", "https://blog.example.com/1", pub_date), alice_feed.id)


def test_browse_default_limit_newest_first(state, commands, alice_feed, capsys):
    dates = ["Mon, 01 Jan 2024 10:00:00 +0000", "Tue, 02 Jan 2024 10:00:00 +0000",
             "Wed, 03 Jan 2024 10:00:00 +0000"]
    for n, date in enumerate(dates):
        store_post(state, _item(f"Post {n}", f"https://blog.example.com/{n}", date),
                   alice_feed.id)
    capsys.readouterr()
    commands.run(state, "browse", [])
    lines = capsys.readouterr().out.splitlines()
    assert lines.count("-------------------------------------") == 2
    assert lines[1] == "Post 2 :: https://blog.example.com/2"
    assert lines[3] == "Post 1 :: https://blog.example.com/1"


def test_browse_with_limit_shows_description(state, commands, alice_feed, capsys):
    store_post(state, _item("One", "https://blog.example.com/1", description="hello"),
               alice_feed.id)
    capsys.readouterr()
    commands.run(state, "browse", ["5"])
    assert "hello" in capsys.readouterr().out.splitlines()


@pytest.mark.parametrize("arg", ["two", "1.5", ""])
def test_browse_rejects_non_integer(state, commands, alice, arg):
    with pytest.raises(CommandError, match="Limit argument is not an integer"):
        commands.run(state, "browse", [arg])


def test_browse_negative_limit(state, commands, alice):
    with pytest.raises(CommandError, match="Error looking up posts"):
        commands.run(state, "browse", ["-1"])


# scraping


def test_scrape_feed_stores_posts_and_marks_feed(state, alice_feed, capsys):
    seen = []

    def fake_fetch(url):
        seen.append(url)
        return RSSFeed(title="Blog", items=[
            _item("First", "https://blog.example.com/1", description="x &lt; y"),
            _item("Broken", "https://blog.example.com/2", pub_date="yesterday"),
        ])

    scrape_feed(state, fake_fetch)
    out = capsys.readouterr().out
    assert seen == [FEED_URL]
    assert "Fetched feed 'Blog':" in out
    assert "Error parsing time" in out
    posts = state.db.get_posts_for_user(alice_feed.user_id, 10)
    assert [p.title for p in posts] == ["First"]
    assert posts[0].post_description == "x < y"
    feed = state.db.get_feed_by_url(FEED_URL)
    assert feed.last_fetched_at == feed.updated_at


def test_scrape_feed_picks_oldest(state, commands, alice_feed):
    other_url = "https://other.example.com/rss"
    commands.run(state, "addfeed", ["Other", other_url])
    seen = []

    def fake_fetch(url):
        seen.append(url)
        return RSSFeed()

    scrape_feed(state, fake_fetch)
    scrape_feed(state, fake_fetch)
    scrape_feed(state, fake_fetch)
    assert sorted(seen[:2]) == sorted([FEED_URL, other_url])
    assert seen[2] == seen[0]
    assert state.db.get_next_feed_to_fetch().feed_url == seen[1]
    fetched_times = {url: state.db.get_feed_by_url(url).last_fetched_at
                     for url in (FEED_URL, other_url)}
    assert fetched_times[seen[1]] < fetched_times[seen[0]]


def test_scrape_feed_without_feeds(state):
    with pytest.raises(CommandError, match="Error fetching oldest feed data"):
        scrape_feed(state, lambda url: RSSFeed())


# agg


def test_agg_requires_delay(state, commands):
    with pytest.raises(CommandError, match="Missing scrape delay argument"):
        commands.run(state, "agg", [])


def test_agg_invalid_delay(state, commands):
    with pytest.raises(CommandError, match="Invalid delay format"):
        commands.run(state, "agg", ["soon"])


def test_agg_non_positive_delay(state, commands):
    with pytest.raises(CommandError, match="non-positive interval"):
        commands.run(state, "agg", ["0s"])


def test_agg_prints_errors_and_keeps_ticking(state, commands, capsys):
    with patch("time.sleep", side_effect=_Stop) as sleep:
        with pytest.raises(_Stop):
            commands.run(state, "agg", ["1s"])
    assert sleep.call_count == 1
    assert 0 <= sleep.call_args.args[0] <= 1.0
    assert "Error fetching oldest feed data" in capsys.readouterr().out