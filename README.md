# gatorfeed

gatorfeed is a small RSS aggregator library. It keeps track of users,
the feeds they add and follow, and the posts scraped from those feeds,
and lets a user browse the newest posts from everything they follow.
Everything is stored in SQLite through the standard library; there are
no third-party dependencies.

## Modules

- `gatorfeed.config`: the settings file, `.gatorconfig.json` in the
  home directory (`config_path()`), holding the database location
  (`db_url`) and the name of the logged-in user (`current_user_name`).
  `read(path=None)` loads it from `path` or from the home directory and
  returns a `Config`; `Config.set_user()` changes the current user and
  writes the file back to where it was read from (or to the home
  directory). `Config.to_json()` gives the compact JSON written. A
  missing or malformed file raises `ConfigError`.
- `gatorfeed.models`: the frozen dataclasses the database returns:
  `User`, `Feed`, `FeedFollow`, `FeedFollowRow`, `Post` and
  `MarkedFeed`.
- `gatorfeed.database`: `connect(url)` opens a SQLite database given a
  file path or a `sqlite://` URL (`sqlite://` alone is an in-memory
  database), creates the tables if needed and returns a `Queries`
  object. `Queries` runs every query; `Queries.transaction()` is a
  context manager that groups writes and rolls them back on an
  exception. Failures raise `DatabaseError`, with `NotFoundError` when a
  single-row lookup finds nothing and `IntegrityViolation` for broken
  constraints such as a duplicate user name, feed URL or post URL. Any
  other URL scheme raises `DatabaseError`.
- `gatorfeed.rss`: `parse_feed(data)` turns RSS XML into an `RSSFeed`
  (channel `title`, `link`, `description` and a list of `RSSItem`
  values with `title`, `link`, `description`, `pub_date`); the channel
  title and description are HTML-unescaped. `fetch_feed(url, timeout=None)`
  downloads a feed with the user agent `hbgator` and parses it. Problems
  raise `FeedError`.
- `gatorfeed.commands`: the aggregator's commands, collected by
  `init_commands()` and run with `Commands.run(state, name, args)`
  against a `State` that holds a `Config` and a `Queries`.

## Commands

These are command names understood by `Commands.run`; handlers print
their results to standard output.

| Command | What it does |
| --- | --- |
| `register <name>` | create a user and log in as them |
| `login <name>` | switch to an existing user |
| `users` | list users, marking the current one with `(current)` |
| `reset` | delete every user, and with them their feeds, follows and posts |
| `addfeed <name> <url>` | add a feed and follow it |
| `feeds` | list every feed and who added it |
| `follow <url>` | follow an existing feed |
| `following` | list the feeds the current user follows |
| `unfollow <url>` | stop following a feed |
| `agg <delay>` | scrape the least recently fetched feed every `<delay>` (for example `30s`, `1m`, `1h30m`) until interrupted |
| `browse [limit]` | show the newest posts from followed feeds, two unless a limit is given |

`addfeed`, `follow`, `following`, `unfollow` and `browse` need a
logged-in user. A command that cannot do its job raises `CommandError`
with a message fit to show the user; an unknown command name does too.
`parse_duration()` reads the `agg` delay and rejects malformed values;
a delay that is not positive is refused.

```python
from gatorfeed import config, database
from gatorfeed.commands import State, init_commands

settings = config.read()
state = State(config=settings, db=database.connect(settings.db_url))
commands = init_commands()
commands.run(state, "register", ["alice"])
commands.run(state, "addfeed", ["Example", "https://example.com/rss.xml"])
commands.run(state, "browse", ["5"])
```

## Scraping

Each tick of `agg` calls `scrape_feed()`, which picks the feed fetched
longest ago (feeds never fetched come first), marks it fetched,
downloads it and stores its items as posts with `store_post()`. An item
whose publication date is not in the RSS form
`Mon, 02 Jan 2006 15:04:05 -0700` is reported and skipped; an item whose
URL is already stored is skipped quietly. Errors during a tick are
printed and the loop carries on.

## What it does not include

There is no command-line program: nothing parses `sys.argv` or reads the
configuration for you, so the commands above are run from Python as
shown. Storage is SQLite only.

## Tests

```
pip install -e ".[test]"
pytest
```