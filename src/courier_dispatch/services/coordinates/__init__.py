"""Coordinate resolution services."""

from .expander import UrlExpanderClient, UrlExpansionError
from .parser import extract_coords_from_text, extract_coords_from_url, find_map_url, is_short_map_url
from .resolver import CoordinateResolver, ExpansionCache

__all__ = [
    "CoordinateResolver",
    "ExpansionCache",
    "UrlExpanderClient",
    "UrlExpansionError",
    "extract_coords_from_text",
    "extract_coords_from_url",
    "find_map_url",
    "is_short_map_url",
]
