"""
Location Normalization.

Canonicalizes caller-supplied ZIP codes and state values. None of these
functions raise: malformed input normalizes to None and only narrows
which geographic fallback applies.
"""

import bisect
import re
from typing import Optional

from app.services.reference_assets import load_zip3_ranges


# 50 states plus DC, PR and VI
VALID_STATES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL",
    "GA", "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME",
    "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH",
    "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "PR",
    "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "VI", "WA",
    "WV", "WI", "WY",
})

STATE_NAME_TO_ABBR = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "district of columbia": "DC", "florida": "FL", "georgia": "GA", "hawaii": "HI",
    "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME",
    "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE",
    "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM",
    "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "puerto rico": "PR",
    "rhode island": "RI", "south carolina": "SC", "south dakota": "SD", "tennessee": "TN",
    "texas": "TX", "utah": "UT", "vermont": "VT", "virginia": "VA",
    "virgin islands": "VI", "washington": "WA", "west virginia": "WV", "wisconsin": "WI",
    "wyoming": "WY",
}

_NON_DIGITS = re.compile(r"\D")
_TWO_LETTERS = re.compile(r"^[A-Z]{2}$")


def normalize_zip(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a ZIP or ZIP+4 to five digits.

    Args:
        raw: Caller-supplied ZIP ("10001", "10001-1234", " 10001 ").

    Returns:
        The five-digit ZIP, or None if fewer than five digits remain.
    """
    if not raw or not isinstance(raw, str):
        return None

    digits = _NON_DIGITS.sub("", raw.strip())
    zip5 = digits[:5]
    if len(zip5) != 5:
        return None
    return zip5


def normalize_state(raw: Optional[str]) -> Optional[str]:
    """Return the uppercase two-letter abbreviation, or None if not a US state/territory."""
    if not raw or not isinstance(raw, str):
        return None

    cleaned = raw.strip().upper()
    if not _TWO_LETTERS.match(cleaned):
        return None
    if cleaned not in VALID_STATES:
        return None
    return cleaned


def normalize_state_name(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a free-text state value to its abbreviation.

    Accepts abbreviations ("ny", " NY ") and full names ("New York").
    Used when indexing GPCI rows whose state column is not reliably
    abbreviated.
    """
    if not raw or not isinstance(raw, str):
        return None

    cleaned = raw.strip()
    if not cleaned:
        return None

    abbr = normalize_state(cleaned)
    if abbr:
        return abbr
    return STATE_NAME_TO_ABBR.get(" ".join(cleaned.lower().split()))


def state_for_zip_prefix(zip5: Optional[str]) -> Optional[str]:
    """
    Derive a state from the three-digit ZIP prefix.

    Returns:
        Two-letter state, or None for unassigned prefixes.
    """
    if not zip5 or len(zip5) < 3 or not zip5[:3].isdigit():
        return None

    prefix = int(zip5[:3])
    ranges = load_zip3_ranges()
    idx = bisect.bisect_right([low for low, _, _ in ranges], prefix) - 1
    if idx < 0:
        return None

    low, high, state = ranges[idx]
    if low <= prefix <= high:
        return state
    return None
