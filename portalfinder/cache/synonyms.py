"""Synonym-based query resolution.

Maps an alternate phrasing onto its canonical query before the second
persistent-tier lookup. Resolution is a single hop:

1. The whole normalized query is an active synonym -> its base query
2. Otherwise the best synonym phrase inside the query is replaced by its
   base phrase ("dl renewal" -> "driving license renewal")

The resolved query is never resolved again.
"""

import logging
import re
from collections.abc import Iterable

from portalfinder.cache.keys import normalize_query
from portalfinder.cache.models import SynonymMapping
from portalfinder.cache.stores import CacheStore

logger = logging.getLogger(__name__)

# Longest synonym phrase (in tokens) considered for in-query substitution
MAX_PHRASE_TOKENS = 6

DEFAULT_SYNONYMS: list[SynonymMapping] = [
    SynonymMapping(base_query=base, synonym_query=synonym, confidence_score=score)
    for base, synonym, score in [
        # Passport
        ("passport application", "passport apply", 0.95),
        ("passport application", "apply for passport", 0.95),
        ("passport application", "new passport", 0.90),
        ("passport renewal", "renew passport", 0.95),
        ("passport renewal", "passport reissue", 0.85),
        # Aadhaar
        ("aadhaar card", "aadhar card", 0.95),
        ("aadhaar enrollment", "aadhaar registration", 0.90),
        ("aadhaar update", "aadhaar correction", 0.85),
        # PAN card
        ("pan card", "pan application", 0.90),
        ("pan card", "permanent account number", 0.85),
        # Voter ID
        ("voter id", "voter card", 0.95),
        ("voter id", "election card", 0.85),
        ("voter registration", "voter enrollment", 0.90),
        # Driving license
        ("driving license", "driving licence", 0.95),
        ("driving license", "dl", 0.85),
        ("dl renewal", "driving license renewal", 0.95),
        ("learner license", "learner licence", 0.95),
        # Ration card
        ("ration card", "food card", 0.85),
        ("ration card", "pds card", 0.80),
        # Property
        ("property registration", "property registry", 0.90),
        ("property registration", "land registration", 0.85),
        # Income certificate
        ("income certificate", "salary certificate", 0.80),
        ("income certificate", "income proof", 0.85),
        # Birth certificate
        ("birth certificate", "birth proof", 0.85),
        ("birth certificate", "birth record", 0.80),
    ]
]


def normalized_mappings(mappings: Iterable[SynonymMapping]) -> list[SynonymMapping]:
    """Normalize both sides of each mapping so they compare against lookups.

    Mappings that normalize to an empty or self-referencing pair are dropped.
    """
    result = []
    for mapping in mappings:
        base = normalize_query(mapping.base_query)
        synonym = normalize_query(mapping.synonym_query)
        if not base or not synonym or base == synonym:
            continue
        result.append(
            mapping.model_copy(update={"base_query": base, "synonym_query": synonym})
        )
    return result


def candidate_phrases(normalized_query: str) -> list[str]:
    """Contiguous word n-grams shorter than the whole query, longest first."""
    tokens = normalized_query.split()
    max_len = min(len(tokens) - 1, MAX_PHRASE_TOKENS)
    phrases: list[str] = []
    for size in range(max_len, 0, -1):
        for start in range(len(tokens) - size + 1):
            phrases.append(" ".join(tokens[start : start + size]))
    return phrases


class SynonymResolver:
    """One-hop resolver backed by the query_synonyms table."""

    def __init__(self, store: CacheStore):
        self.store = store

    async def seed(self, mappings: Iterable[SynonymMapping] | None = None) -> int:
        """Seed synonym mappings (DEFAULT_SYNONYMS when omitted).

        Returns:
            Number of mappings submitted to the store
        """
        prepared = normalized_mappings(
            DEFAULT_SYNONYMS if mappings is None else mappings
        )
        count = await self.store.seed_synonyms(prepared)
        logger.info(f"Seeded {count} query synonyms")
        return count

    async def resolve(self, normalized_query: str) -> str | None:
        """Return the canonical query for a normalized query, if any."""
        if not normalized_query:
            return None

        mapping = await self.store.find_synonym([normalized_query])
        if mapping is not None:
            return mapping.base_query

        phrases = candidate_phrases(normalized_query)
        if not phrases:
            return None

        mapping = await self.store.find_synonym(phrases)
        if mapping is None:
            return None

        pattern = rf"\b{re.escape(mapping.synonym_query)}\b"
        resolved = normalize_query(
            re.sub(pattern, mapping.base_query, normalized_query, count=1)
        )
        if resolved == normalized_query:
            return None

        logger.debug(f"Resolved synonym: '{normalized_query}' -> '{resolved}'")
        return resolved
