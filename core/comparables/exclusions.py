"""
Location Exclusion Filter

Drops candidates whose area name shares vocabulary with the search area but
is a different place (e.g. "Golden Mile" in Marbella vs "New Golden Mile" in
Estepona). Applied before scoring.
"""

import logging
import re
import unicodedata
from typing import Iterable, List, Mapping, Optional, Set

from .config import DEFAULT_LOCATION_EXCLUSIONS
from .models import RetrievedCandidate, SearchCriteria


logger = logging.getLogger(__name__)


def normalise_area_name(name: Optional[str]) -> str:
    """Lower-case, strip accents and collapse whitespace."""
    if not name:
        return ""
    folded = unicodedata.normalize("NFKD", name)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", folded).strip().lower()


class LocationExclusionFilter:
    """
    Removes candidates from areas that must never match the search area.

    The exclusion map is keyed by normalized search area; values are
    normalized area names to drop. An exact self-match is never excluded.
    """

    def __init__(self, exclusions: Optional[Mapping[str, Iterable[str]]] = None):
        source = DEFAULT_LOCATION_EXCLUSIONS if exclusions is None else exclusions
        self._exclusions = {
            normalise_area_name(area): frozenset(normalise_area_name(n) for n in names)
            for area, names in source.items()
        }

    def excluded_areas(self, search_area: Optional[str]) -> Set[str]:
        """Normalized area names excluded when searching search_area."""
        return set(self._exclusions.get(normalise_area_name(search_area), ()))

    def should_exclude(self, search_area: Optional[str], candidate_area: Optional[str]) -> bool:
        """Check a single candidate area against a single search area."""
        search = normalise_area_name(search_area)
        candidate = normalise_area_name(candidate_area)
        if not search or not candidate:
            return False
        if search == candidate:
            return False
        return candidate in self._exclusions.get(search, ())

    def apply(
        self,
        candidates: List[RetrievedCandidate],
        criteria: SearchCriteria,
    ) -> List[RetrievedCandidate]:
        """
        Filter candidates for the criteria's search areas.

        Both the subject's urbanization and suburb act as search areas; a
        candidate is dropped if its urbanization or suburb is excluded by
        either of them.
        """
        search_areas = [a for a in (criteria.urbanization, criteria.suburb) if a]
        if not search_areas:
            return list(candidates)

        kept = []
        for candidate in candidates:
            record = candidate.record
            candidate_areas = [a for a in (record.urbanization, record.suburb) if a]
            excluded = any(
                self.should_exclude(search, area)
                for search in search_areas
                for area in candidate_areas
            )
            if excluded:
                logger.debug(
                    "Excluding %s (%s) when searching %s",
                    record.reference or record.id,
                    ", ".join(candidate_areas),
                    ", ".join(search_areas),
                )
                continue
            kept.append(candidate)

        if len(kept) != len(candidates):
            logger.info(
                "Location exclusion filtering: %d -> %d candidates",
                len(candidates),
                len(kept),
            )
        return kept
