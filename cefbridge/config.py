"""Reading single fields from the game server's configuration file."""

from __future__ import annotations

from collections.abc import Callable
from os import PathLike
from typing import Any

DEFAULT_CONFIG_PATH = "./server.cfg"


def parse_config_field(
    field: str,
    convert: Callable[[str], Any] = str,
    path: str | PathLike = DEFAULT_CONFIG_PATH,
) -> Any | None:
    """Return the converted value of ``field`` from the config file, or None.

    The first line starting with ``field`` is used; its value is the second
    word when the line is split on single spaces. None is returned when the
    file cannot be read, no line matches, the line has no value, or
    ``convert`` rejects the value.
    """
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except (OSError, UnicodeDecodeError):
        return None

    line = next((line for line in text.splitlines() if line.startswith(field)), None)
    if line is None:
        return None
    words = line.split(" ")
    if len(words) < 2:
        return None
    try:
        return convert(words[1])
    except (ValueError, TypeError):
        return None