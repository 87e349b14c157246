from __future__ import annotations

import random
import re
from typing import Optional


# Keep unicode word characters and spaces; strip punctuation/symbols.
_NON_WORD_SPACE_PATTERN = re.compile(r"[^\w\s]", re.UNICODE)
_MULTISPACE_PATTERN = re.compile(r"\s+")
_TRAILING_CLAUSE_PATTERN = re.compile(r"\s+(by|from)\s+.*$", re.IGNORECASE)
_TYPE_LABEL_PATTERN = re.compile(
    r"^(Playlist|Album|Artist|Track|Song|Episode|Show|Audiobook):\s*", re.IGNORECASE
)
_DIGITS_PATTERN = re.compile(r"\d+")


def clean_string(value: Optional[str]) -> str:
    """Strip non-alphanumeric/non-space characters and collapse whitespace."""
    if not value or not value.strip():
        return ""
    value = _NON_WORD_SPACE_PATTERN.sub("", value)
    return _MULTISPACE_PATTERN.sub(" ", value).strip()


def clean_friendly_name(friendly_name: Optional[str]) -> str:
    """Reduce a display name like 'Track: X by Y (Album: Z)' to 'X'."""
    if not friendly_name or not friendly_name.strip():
        return ""
    trimmed = _TRAILING_CLAUSE_PATTERN.sub("", friendly_name).strip()
    return _TYPE_LABEL_PATTERN.sub("", trimmed).strip()


def format_ms(milliseconds: Optional[int]) -> str:
    """Format milliseconds as mm:ss (minutes are not wrapped at the hour)."""
    total_seconds = max(0, int(milliseconds or 0)) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


def extract_id_from_uri(uri: Optional[str]) -> str:
    """Return the last ':'-separated segment of a service uri."""
    if not uri:
        return ""
    return uri.split(":")[-1]


def release_year(release_date: Optional[str]) -> Optional[str]:
    if not release_date or not release_date.strip():
        return None
    return release_date.split("-")[0]


def normalise_special_name(value: str, rng: Optional[random.Random] = None) -> str:
    """Map loose names of algorithmic playlists to their canonical keys.

    'my release radar' -> 'release radar', 'weekly discoveries' -> 'discover weekly',
    'daily mix 3' -> 'daily mix 3'. A daily mix without a number picks one of 1-6.
    """
    value = (value or "").strip().lower()

    if "radar" in value:
        return "release radar"

    if "discover" in value or "weekly" in value:
        return "discover weekly"

    if "daily" in value or "mix" in value:
        match = _DIGITS_PATTERN.search(value)
        if match:
            return f"daily mix {match.group(0)}"
        rng = rng or random.Random()
        return f"daily mix {rng.randint(1, 6)}"

    return value
