"""Coordinate extraction from free-text addresses and map links."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import unquote

from ...models.domain import LatLng, valid_lat_lng

_NUM = r"(-?\d+(?:\.\d+)?)"
_DEC = r"(-?\d{1,3}\.\d+)"

_BARE_PAIR = re.compile(rf"^\s*{_NUM}\s*,\s*{_NUM}\s*$")
_EMBEDDED_PAIR = re.compile(rf"(?<![\d.]){_DEC}\s*,\s*{_DEC}(?![\d.])")
_QUERY_PAIR = re.compile(rf"[?&](?:q|ll|query)={_NUM},\s*{_NUM}")
# Data-parameter pairs are repeated in place links; the last pair is the pinned place.
_PB_PLACE = re.compile(rf"!8m2!3d{_NUM}!4d{_NUM}")
_PB_PLACE_ALT = re.compile(rf"!8m2!2d{_NUM}!3d{_NUM}")
_PB_PAIR = re.compile(rf"!3d{_NUM}!4d{_NUM}")
_PB_PAIR_ALT = re.compile(rf"!2d{_NUM}!3d{_NUM}")
_SEARCH_PAIR = re.compile(rf"search/{_NUM},\s*{_NUM}")
_VIEWPORT_PAIR = re.compile(rf"@{_NUM},\s*{_NUM}")

_URL = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_SHORT_HOSTS = ("goo.gl", "maps.app.goo.gl")


def _decode(text: str) -> str:
    if "%" not in text:
        return text
    return unquote(text)


def _last(pattern: re.Pattern[str], text: str) -> Optional[tuple[str, str]]:
    matches = pattern.findall(text)
    return matches[-1] if matches else None


def extract_coords_from_url(url: str) -> Optional[LatLng]:
    """Parse coordinates from a long-form map link.

    Patterns are tried from the most explicit (query parameters, pinned
    place data) to the least (the ``@lat,lng`` viewport centre).
    """
    if not url:
        return None
    text = _decode(url)

    bare = _BARE_PAIR.match(text)
    if bare:
        return valid_lat_lng(bare.group(1), bare.group(2))

    query = _QUERY_PAIR.search(text)
    if query:
        return valid_lat_lng(query.group(1), query.group(2))

    pair = _last(_PB_PLACE, text)
    if pair:
        return valid_lat_lng(pair[0], pair[1])
    pair = _last(_PB_PLACE_ALT, text)
    if pair:
        return valid_lat_lng(pair[1], pair[0])
    pair = _last(_PB_PAIR, text)
    if pair:
        return valid_lat_lng(pair[0], pair[1])
    pair = _last(_PB_PAIR_ALT, text)
    if pair:
        return valid_lat_lng(pair[1], pair[0])

    search = _SEARCH_PAIR.search(text)
    if search:
        return valid_lat_lng(search.group(1), search.group(2))

    viewport = _VIEWPORT_PAIR.search(text)
    if viewport:
        return valid_lat_lng(viewport.group(1), viewport.group(2))

    return None


def extract_coords_from_text(text: str) -> Optional[LatLng]:
    """Parse a decimal coordinate pair written directly in the address text.

    A bare ``lat,lng`` string accepts integers; inside longer text the pair
    must be written with decimals so house numbers are not mistaken for
    coordinates. URLs are ignored here.
    """
    if not text:
        return None
    decoded = _decode(text)
    bare = _BARE_PAIR.match(decoded)
    if bare:
        return valid_lat_lng(bare.group(1), bare.group(2))
    without_urls = _URL.sub(" ", decoded)
    for match in _EMBEDDED_PAIR.finditer(without_urls):
        coordinate = valid_lat_lng(match.group(1), match.group(2))
        if coordinate:
            return coordinate
    return None


def find_map_url(text: str) -> Optional[str]:
    """Return the first http(s) link embedded in the text."""

    if not text:
        return None
    match = _URL.search(text)
    if not match:
        return None
    return match.group(0).rstrip(".,;)")


def is_short_map_url(url: str) -> bool:
    if not isinstance(url, str):
        return False
    lowered = url.lower()
    return any(host in lowered for host in _SHORT_HOSTS)
