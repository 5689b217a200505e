"""
Cookie jar helpers for talking to the school system.

The school system keeps its login state in plain cookies. The relay never
lets an HTTP client persist them; it keeps the jar as a dict inside the
session and writes it back as a ``Cookie`` header on every upstream call.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


def encode_cookies(jar: Mapping[str, str]) -> str:
    """
    Render a cookie jar as a ``Cookie`` header value.

    Pairs are joined with ``"; "``. Names and values are sent as stored,
    without escaping.
    """
    return "; ".join(f"{name}={value}" for name, value in jar.items())


def decode_cookies(set_cookie_headers: Optional[Iterable[str]]) -> Dict[str, str]:
    """
    Parse raw ``Set-Cookie`` header values into a jar.

    Only the leading ``name=value`` pair of each header is used; attributes
    such as ``Path`` or ``HttpOnly`` are ignored. Entries without ``=`` or
    with an empty name are dropped. When the same name appears more than
    once the last value wins.

    Args:
        set_cookie_headers: Raw header values, e.g. from
            ``response.headers.get_list("set-cookie")``

    Returns:
        Mapping of cookie name to value
    """
    jar: Dict[str, str] = {}
    if not set_cookie_headers:
        return jar

    for raw in set_cookie_headers:
        pair = raw.split(";", 1)[0]
        if "=" not in pair:
            logger.debug("Dropping malformed Set-Cookie entry without '='")
            continue

        name, value = pair.split("=", 1)
        name = name.strip()
        if not name:
            logger.debug("Dropping Set-Cookie entry with empty name")
            continue

        jar[name] = value.strip()

    return jar


def merge_cookies(jar: Dict[str, str], set_cookie_headers: Optional[Iterable[str]]) -> Dict[str, str]:
    """Merge new ``Set-Cookie`` values into ``jar`` in place (last write wins)."""
    jar.update(decode_cookies(set_cookie_headers))
    return jar
