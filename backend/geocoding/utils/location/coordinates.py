"""
Coordinate-pair detection for free-text queries.

Users often paste coordinates straight from a map ("51.5074 -0.1278" or
"51.5074, -0.1278"). Those are answered locally without asking any provider.
"""

import re
from typing import Optional

from .base import Location

COORDINATES_RE = re.compile(
    # Both numbers must stand alone, so house numbers like "221 22nd" do not match
    r'(?<![\w.-])(?P<latitude>-?\d{1,2}(\.\d+)?),? (?P<longitude>-?\d{1,3}(\.\d+)?)(?!\w|\.\d)'
)


def parse_coordinates(text: str) -> Optional[Location]:
    """
    Extract a coordinate pair from anywhere in the text.

    Returns:
        Location without address, or None if there is no valid pair

    Example:
        >>> parse_coordinates('meet at 51.5074 -0.1278 please')
        Location(address=None, latitude=51.5074, longitude=-0.1278)
        >>> parse_coordinates('95.0 10.0') is None
        True
    """
    if not text:
        return None

    match = COORDINATES_RE.search(text)
    if not match:
        return None

    try:
        return Location(
            address=None,
            latitude=float(match.group('latitude')),
            longitude=float(match.group('longitude')),
        )
    except ValueError:
        # Matched the shape but outside valid ranges
        return None
