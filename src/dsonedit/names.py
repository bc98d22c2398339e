from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 30.0
_LINE_BREAK = re.compile(r"\r?\n")


class NameListError(RuntimeError):
    """Raised when the display-name resource cannot be read."""


def parse_names(raw: str) -> list[str]:
    """Split a newline-delimited name list, keeping order and dropping blanks."""
    names: list[str] = []
    for line in _LINE_BREAK.split(raw or ""):
        if line:
            names.append(line)
    return names


def _is_remote(source: str) -> bool:
    return urlparse(source).scheme in {"http", "https"}


def read_names(source: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> list[str]:
    """Read names from an http(s) URL or a local file path."""
    if _is_remote(source):
        try:
            resp = requests.get(source, timeout=timeout)
        except requests.RequestException as exc:
            raise NameListError(f"Failed to fetch name list from {source}") from exc
        if resp.status_code != 200:
            raise NameListError(
                f"Name list request to {source} failed with status {resp.status_code}"
            )
        resp.encoding = resp.encoding or "utf-8"
        return parse_names(resp.text)

    path = Path(source).expanduser()
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise NameListError(f"Could not read name list {path}: {exc}") from exc
    return parse_names(raw)


async def fetch_names(source: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> list[str]:
    loop = asyncio.get_running_loop()
    names = await loop.run_in_executor(None, lambda: read_names(source, timeout=timeout))
    logger.debug("Fetched %d names from %s", len(names), source)
    return names


__all__ = [
    "DEFAULT_FETCH_TIMEOUT",
    "NameListError",
    "fetch_names",
    "parse_names",
    "read_names",
]
