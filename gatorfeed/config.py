"""The JSON configuration file kept in the user's home directory."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

CONFIG_FILE_NAME = ".gatorconfig.json"

_KEYS = {"db_url": "db_url", "current_user_name": "user_name"}
_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class ConfigError(Exception):
    """The configuration could not be read or written."""


def config_path() -> Path:
    """Where the configuration file lives."""
    try:
        home = Path.home()
    except (RuntimeError, KeyError) as err:
        raise ConfigError(f"Error looking up home dir: {err}") from err
    return home / CONFIG_FILE_NAME


@dataclass
class Config:
    """Database URL and the name of the logged-in user."""

    db_url: str = ""
    user_name: str = ""
    path: Optional[Path] = field(default=None, compare=False, repr=False)

    def to_json(self) -> str:
        """Compact JSON with HTML-sensitive characters escaped."""
        text = json.dumps(
            {"db_url": self.db_url, "current_user_name": self.user_name},
            ensure_ascii=False,
            separators=(",", ":"),
        )
        for char, escape in _HTML_ESCAPES.items():
            text = text.replace(char, escape)
        return text

    def set_user(self, user: str) -> None:
        """Record the current user and save the configuration."""
        self.user_name = user
        data = self.to_json()
        target = self.path if self.path is not None else config_path()
        try:
            target.write_text(data, encoding="utf-8")
        except OSError as err:
            raise ConfigError(f"Error writing to file: {err}") from err


def read(path: Union[str, Path, None] = None) -> Config:
    """Load the configuration from path, or from the home directory."""
    target = Path(path) if path is not None else config_path()
    try:
        raw = target.read_bytes()
    except OSError as err:
        raise ConfigError(f"Error reading gatorconfig: {err}") from err
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as err:
        raise ConfigError(f"Error parsing from json: {err}") from err
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Error parsing from json: expected an object")
    values: dict[str, str] = {}
    folded = {key.casefold(): attr for key, attr in _KEYS.items()}
    for key, value in data.items():
        attr = _KEYS.get(key) or folded.get(key.casefold())
        if attr is None or value is None:
            continue
        if not isinstance(value, str):
            raise ConfigError(f"Error parsing from json: {key} must be a string")
        values[attr] = value
    return Config(path=target, **values)