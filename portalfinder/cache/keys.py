"""Query normalization and cache key generation.

Key Generation:
    1. Normalize: lowercase, trim, collapse whitespace
    2. Drop stop words and punctuation, collapse again
    3. Join with lowercased state and city: "query|state|city"
    4. Hash: SHA256 for consistent key length
"""

import hashlib
import re

STOP_WORDS: frozenset[str] = frozenset(
    {"the", "a", "an", "and", "or", "of", "for", "in", "on", "at", "to", "by", "with"}
)

_WHITESPACE = re.compile(r"\s+")
_STOP_WORDS = re.compile(r"\b(?:" + "|".join(sorted(STOP_WORDS)) + r")\b")
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_query(text: str) -> str:
    """Canonicalize free text for stable matching.

    Example:
        >>> normalize_query("  The Passport   Application ")
        'passport application'
    """
    normalized = _WHITESPACE.sub(" ", text.lower().strip())
    # Stripping punctuation can expose a new stop word ("t.he"), so repeat
    # until stable to keep normalize_query idempotent.
    while True:
        stripped = _PUNCTUATION.sub("", _STOP_WORDS.sub("", normalized))
        stripped = _WHITESPACE.sub(" ", stripped).strip()
        if stripped == normalized:
            return normalized
        normalized = stripped


def generate_cache_key(query: str, state: str, city: str) -> str:
    """Fingerprint a (query, state, city) triple.

    Args:
        query: Raw user query text
        state: State name (case-insensitive)
        city: City name (case-insensitive)

    Returns:
        64-character SHA256 hex digest
    """
    cache_string = f"{normalize_query(query)}|{state.lower()}|{city.lower()}"
    return hashlib.sha256(cache_string.encode()).hexdigest()
