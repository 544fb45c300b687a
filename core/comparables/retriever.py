"""
Candidate retrieval.

The pipeline only depends on the CandidateRetriever contract: one query
method taking SearchCriteria and returning a sequence of candidates with an
optional precomputed distance. Two adapters are provided:

- InMemoryCandidateRetriever: filters a list of records (tests, JSON exports)
- HttpCandidateRetriever: queries a remote property search API
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import requests

from core.exceptions import RetrievalError

from .geo import haversine_km
from .models import PropertyRecord, RetrievedCandidate, SearchCriteria


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

USER_AGENT = "ComparablesEngine/1.0"
REQUEST_TIMEOUT_SECONDS = 30
MAX_CANDIDATES = 200


# =============================================================================
# Contract
# =============================================================================

class CandidateRetriever(ABC):
    """Abstract base class for comparable candidate sources."""

    @abstractmethod
    def find_candidates(self, criteria: SearchCriteria) -> Sequence[RetrievedCandidate]:
        """
        Find candidate properties for the given criteria.

        Args:
            criteria: Normalized search criteria (radius, price band, type)

        Returns:
            Candidates, each with an optional distance in km

        Raises:
            RetrievalError: If the underlying source fails
        """
        pass


# =============================================================================
# In-memory adapter
# =============================================================================

class InMemoryCandidateRetriever(CandidateRetriever):
    """
    Candidate source backed by a list of records.

    Applies the same filters as the production nearest-neighbour query:
    property type, listing type price field, price band, then radius when
    the subject has coordinates or a location-hierarchy match when it
    does not. The subject itself is never returned.
    """

    def __init__(self, records: Iterable[PropertyRecord], limit: int = MAX_CANDIDATES):
        self._records: List[PropertyRecord] = list(records)
        self._limit = limit

    @classmethod
    def from_json_file(cls, path: Path, limit: int = MAX_CANDIDATES) -> "InMemoryCandidateRetriever":
        """
        Load records from a JSON file containing a list of property objects.

        Raises:
            RetrievalError: If the file is missing or not a JSON list
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RetrievalError(f"Could not load records from {path}: {e}", source=str(path)) from e

        if isinstance(data, dict):
            data = data.get("properties", [])
        if not isinstance(data, list):
            raise RetrievalError(f"Expected a list of properties in {path}", source=str(path))

        records = [PropertyRecord.from_dict(item) for item in data if isinstance(item, dict)]
        logger.info("Loaded %d property records from %s", len(records), path)
        return cls(records, limit=limit)

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: PropertyRecord) -> None:
        self._records.append(record)

    def find_candidates(self, criteria: SearchCriteria) -> List[RetrievedCandidate]:
        results: List[RetrievedCandidate] = []

        for record in self._records:
            if not self._matches_listing(criteria, record):
                continue

            if criteria.has_coordinates:
                if not record.has_coordinates:
                    continue
                distance = haversine_km(
                    criteria.latitude, criteria.longitude, record.latitude, record.longitude
                )
                if distance > criteria.radius_km:
                    continue
                results.append(RetrievedCandidate(record=record, distance_km=round(distance, 3)))
            elif self._matches_area(criteria, record):
                results.append(RetrievedCandidate(record=record))

        # Nearest first; area matches (no distance) keep feed order at the end
        results.sort(key=lambda c: c.distance_km if c.distance_km is not None else float("inf"))
        logger.debug(
            "In-memory retrieval for %s: %d of %d records matched",
            criteria.reference or "subject",
            len(results),
            len(self._records),
        )
        return results[: self._limit]

    @staticmethod
    def _matches_listing(criteria: SearchCriteria, record: PropertyRecord) -> bool:
        if criteria.reference and record.reference == criteria.reference:
            return False
        if criteria.property_type and record.property_type != criteria.property_type:
            return False

        price = record.price_for(criteria.listing_type)
        if not price:
            return False
        if criteria.min_price is not None and price < criteria.min_price:
            return False
        if criteria.max_price is not None and price > criteria.max_price:
            return False
        return True

    @staticmethod
    def _matches_area(criteria: SearchCriteria, record: PropertyRecord) -> bool:
        """Most specific area the subject has must match the record's."""
        for wanted, actual in (
            (criteria.urbanization, record.urbanization),
            (criteria.suburb, record.suburb),
            (criteria.city, record.city),
        ):
            if wanted:
                return bool(actual) and wanted.strip().lower() == actual.strip().lower()
        return False


# =============================================================================
# HTTP adapter
# =============================================================================

class HttpCandidateRetriever(CandidateRetriever):
    """
    Candidate source backed by a remote property search API.

    Sends the criteria as JSON to ``{base_url}/comparables/search`` and
    expects ``{"candidates": [{"property": {...}, "distance_km": 1.2}, ...]}``.
    Network and decoding errors are raised as RetrievalError; no retries.
    """

    SEARCH_PATH = "/comparables/search"

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

    def find_candidates(self, criteria: SearchCriteria) -> List[RetrievedCandidate]:
        url = f"{self._base_url}{self.SEARCH_PATH}"
        try:
            response = self._session.post(url, json=criteria.to_dict(), timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error("Candidate search request to %s failed: %s", url, e)
            raise RetrievalError(f"Candidate search failed: {e}", source=url) from e
        except ValueError as e:
            logger.error("Candidate search response from %s is not JSON: %s", url, e)
            raise RetrievalError(f"Invalid candidate search response: {e}", source=url) from e

        return self._parse(payload, url)

    @staticmethod
    def _parse(payload, url: str) -> List[RetrievedCandidate]:
        items = payload.get("candidates") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise RetrievalError("Candidate search response has no candidate list", source=url)

        candidates = []
        for item in items:
            if not isinstance(item, dict):
                continue
            data = item.get("property", item)
            if not isinstance(data, dict):
                logger.warning("Skipping candidate without a property payload: %r", data)
                continue
            distance = item.get("distance_km")
            try:
                distance = float(distance) if distance is not None else None
            except (TypeError, ValueError):
                distance = None
            try:
                record = PropertyRecord.from_dict(data)
            except (AttributeError, TypeError, ValueError) as e:
                raise RetrievalError(f"Invalid candidate in search response: {e}", source=url) from e
            candidates.append(RetrievedCandidate(record=record, distance_km=distance))

        logger.info("Candidate search returned %d candidates", len(candidates))
        return candidates

    def close(self) -> None:
        """Close the session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
