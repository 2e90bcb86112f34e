"""
Name normalization for duplicate detection.

Client names come from the practice directory ("Doe, Jane", "O'Brien-Smith,
Jr.") while OpenPhone contacts are usually "Jane Doe"; both are reduced to
the same lowercase ASCII form before similarity scoring.
"""

from __future__ import annotations

import re
import unicodedata

# Trailing name parts that follow a comma without reversing the name
NAME_SUFFIXES = frozenset({"jr", "sr", "ii", "iii", "iv", "esq", "md", "phd"})


def strip_accents(value: str) -> str:
    """Decompose accented characters and drop the combining marks."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_string(value: str, remove_spaces: bool = True) -> str:
    """
    Reduce a string to lowercase ASCII letters, digits and spaces.

    Args:
        value: String to normalize
        remove_spaces: Drop spaces entirely; otherwise whitespace runs
                       collapse to one space

    Returns:
        The normalized string ("" for empty input)
    """
    if not value:
        return ""

    cleaned = re.sub(r"[^a-z0-9\s]", "", strip_accents(value).lower())
    cleaned = " ".join(cleaned.split())
    return cleaned.replace(" ", "") if remove_spaces else cleaned


def _given_name_first(name: str) -> str:
    if name.count(",") != 1:
        return name
    surname, rest = (part.strip() for part in name.split(","))
    if not surname or not rest or normalize_string(rest) in NAME_SUFFIXES:
        return name
    return f"{rest} {surname}"


def normalize_name(name: str) -> str:
    """
    Normalize a person's name for similarity scoring.

    "Surname, Given" is turned around first, so "Doe, Jane" and "Jane Doe"
    normalize identically; "Smith, Jr." is left in order. Spaces between
    name parts are kept.
    """
    if not name:
        return ""
    return normalize_string(_given_name_first(name), remove_spaces=False)
