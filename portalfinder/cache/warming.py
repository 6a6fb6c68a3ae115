"""Cache warming with placeholder results.

Pre-populates both tiers for common (query, state) pairs so first visitors
get a hit. Pairs that are already cached are left untouched.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from portalfinder.core.exceptions import PortalFinderError
from portalfinder.observability.logging import LogEvents, get_logger

logger = get_logger(__name__)

DEFAULT_WARM_CITY = "Capital"

COMMON_QUERIES: list[str] = [
    # Identity documents
    "passport application",
    "passport renewal",
    "aadhaar card",
    "aadhaar update",
    "pan card application",
    "voter id card",
    "voter registration",
    # Licenses and certificates
    "driving license",
    "dl renewal",
    "learner license",
    "birth certificate",
    "death certificate",
    "income certificate",
    "caste certificate",
    "domicile certificate",
    # Property and housing
    "property registration",
    "mutation certificate",
    "land records",
    "housing scheme",
    "pm awas yojana",
    # Business and employment
    "gst registration",
    "trade license",
    "msme registration",
    "epf withdrawal",
    # Welfare
    "ration card",
    "old age pension",
    "pm kisan",
    "ayushman bharat",
    # Utilities
    "electricity connection",
    "water connection",
    "lpg subsidy",
    # Tax
    "income tax return",
    "tax refund",
]

STATE_CAPITALS: dict[str, str] = {
    "Andhra Pradesh": "Amaravati",
    "Assam": "Guwahati",
    "Bihar": "Patna",
    "Chhattisgarh": "Raipur",
    "Delhi": "New Delhi",
    "Gujarat": "Gandhinagar",
    "Haryana": "Chandigarh",
    "Himachal Pradesh": "Shimla",
    "Jharkhand": "Ranchi",
    "Karnataka": "Bengaluru",
    "Kerala": "Thiruvananthapuram",
    "Madhya Pradesh": "Bhopal",
    "Maharashtra": "Mumbai",
    "Odisha": "Bhubaneswar",
    "Punjab": "Chandigarh",
    "Rajasthan": "Jaipur",
    "Tamil Nadu": "Chennai",
    "Telangana": "Hyderabad",
    "Uttar Pradesh": "Lucknow",
    "Uttarakhand": "Dehradun",
    "West Bengal": "Kolkata",
}


class WarmReport(BaseModel):
    """Outcome of one warming run."""

    warmed_entries: int = 0
    skipped_entries: int = 0
    errors: list[str] = Field(default_factory=list)


def build_placeholder_result(query: str, state: str, city: str) -> dict[str, Any]:
    """Single-service placeholder payload in the shape real results use."""
    return {
        "services": [
            {
                "title": f"{query} Service",
                "description": f"Government service for {query} in {state}",
                "office": f"{state} Government Office",
                "location": f"{city}, {state}",
                "documents": ["Identity Proof", "Address Proof"],
                "timeline": "Varies by service",
                "fees": "As applicable",
                "contact": "Contact local office",
                "procedure": "Visit office for details",
                "category": "General Services",
            }
        ],
        "placeholder": True,
    }


async def warm_cache(
    service: Any,  # CacheService
    queries: Sequence[str],
    states: Sequence[str],
    city: str = DEFAULT_WARM_CITY,
    cities: Mapping[str, str] | None = None,
) -> WarmReport:
    """Store placeholder results for every (query, state) pair not cached.

    Args:
        service: Started CacheService
        queries: Queries to warm
        states: States to warm each query for
        city: City used when cities has no entry for the state
        cities: Optional state -> city mapping (e.g. STATE_CAPITALS)

    Returns:
        WarmReport with counts and per-pair error messages
    """
    report = WarmReport()

    for query in queries:
        for state in states:
            pair_city = (cities or {}).get(state, city)
            try:
                if await service.lookup(query, state, pair_city) is not None:
                    report.skipped_entries += 1
                    continue
                written = await service.store(
                    query,
                    state,
                    pair_city,
                    build_placeholder_result(query, state, pair_city),
                )
                if written:
                    report.warmed_entries += 1
            except PortalFinderError as e:
                report.errors.append(f"{query} in {state}: {e.message}")

    logger.info(
        LogEvents.CACHE_WARMED,
        warmed=report.warmed_entries,
        skipped=report.skipped_entries,
        errors=len(report.errors),
    )
    return report
