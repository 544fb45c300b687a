"""
Area Maturity Repository - cumulative data counters per area.

Records how many analyses have been run and how many comparables have been
seen for each normalized area. The Decision Engine reads these counters;
the post-analysis updater writes them. In-memory with optional JSON file
persistence.
"""

import json
import logging
import threading
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import AreaKeys, AreaMaturity, normalize_area_key


logger = logging.getLogger(__name__)


# Called with the area key whose counters changed (None for "all areas")
MaturityListener = Callable[[Optional[str]], None]


class AreaMaturityRepository:
    """
    Repository for AreaMaturity counters.

    Counters are monotonically non-decreasing; only reset() lowers them.
    Listeners are notified after every change so dependent caches can be
    invalidated.
    """

    def __init__(
        self,
        persist_path: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialise repository.

        Args:
            persist_path: Optional path to persist data to JSON file
            clock: Returns "now" for timestamps
        """
        self._areas: Dict[str, AreaMaturity] = {}
        self._persist_path = Path(persist_path) if persist_path else None
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: List[MaturityListener] = []

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        """Persist data to file."""
        if not self._persist_path:
            return

        data = {
            "areas": {key: area.to_dict() for key, area in self._areas.items()},
            "saved_at": self._clock().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for key, area_data in data.get("areas", {}).items():
                self._areas[key] = AreaMaturity.from_dict(area_data)
            logger.info("Loaded maturity counters for %d areas", len(self._areas))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            # Start fresh rather than refuse to boot
            logger.warning("Could not load area maturity data from %s: %s", self._persist_path, e)

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: MaturityListener) -> None:
        self._listeners.append(listener)

    def _notify(self, area_key: Optional[str]) -> None:
        for listener in self._listeners:
            try:
                listener(area_key)
            except Exception:
                logger.exception("Maturity listener failed for area %s", area_key)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, area: str) -> Optional[AreaMaturity]:
        """
        Get counters by area name or key.

        Returns:
            AreaMaturity if recorded, None otherwise
        """
        key = normalize_area_key(area)
        with self._lock:
            return self._areas.get(key) if key else None

    def lookup(self, keys: AreaKeys) -> AreaMaturity:
        """
        Counters for the most specific recorded area.

        Tries the primary key, then suburb, then city. Returns empty counters
        for the primary key when nothing is recorded.
        """
        with self._lock:
            for key in keys.lookup_order:
                area = self._areas.get(key)
                if area is not None:
                    return area
        return AreaMaturity.empty(keys.primary)

    def all(self) -> List[AreaMaturity]:
        with self._lock:
            return list(self._areas.values())

    def __len__(self) -> int:
        return len(self._areas)

    # =========================================================================
    # Updates
    # =========================================================================

    def _get_or_create(self, keys: AreaKeys) -> AreaMaturity:
        area = self._areas.get(keys.primary)
        if area is None:
            area = AreaMaturity(
                area_key=keys.primary,
                area_name=keys.area_name,
                area_type=keys.area_type,
            )
            self._areas[keys.primary] = area
        return area

    def record_analysis(self, subject: Any) -> AreaMaturity:
        """
        Count one completed analysis for the subject's primary area.

        Args:
            subject: Anything with urbanization/suburb/city attributes

        Returns:
            Updated AreaMaturity
        """
        keys = AreaKeys.of(subject)
        now = self._clock()
        with self._lock:
            area = self._get_or_create(keys)
            area.n_analyses += 1
            area.last_analysis_run = now
            area.updated_at = now
            self._save_to_file()

        logger.info("Updated area counters for %s: %d analyses", keys.area_name, area.n_analyses)
        self._notify(keys.primary)
        return area

    def record_comparables(self, records: Iterable[Any]) -> Dict[str, AreaMaturity]:
        """
        Raise comparable counters from a comparable set.

        Records are grouped by their primary area; each area's counter is
        raised to at least the group size (never lowered).

        Returns:
            Updated AreaMaturity per area key
        """
        groups: "OrderedDict[str, List[Any]]" = OrderedDict()
        keys_by_area: Dict[str, AreaKeys] = {}
        for record in records:
            keys = AreaKeys.of(record)
            groups.setdefault(keys.primary, []).append(record)
            keys_by_area.setdefault(keys.primary, keys)

        if not groups:
            return {}

        now = self._clock()
        updated: Dict[str, AreaMaturity] = {}
        with self._lock:
            for key, members in groups.items():
                area = self._get_or_create(keys_by_area[key])
                area.n_comparables = max(area.n_comparables, len(members))
                area.last_comparable_added = now
                area.updated_at = now
                updated[key] = area
            self._save_to_file()

        logger.info("Updated comparable counters for %d areas", len(updated))
        for key in updated:
            self._notify(key)
        return updated

    def reset(self, area: Optional[str] = None) -> int:
        """
        Clear counters for one area, or for all areas when area is None.

        Returns:
            Number of areas removed
        """
        with self._lock:
            if area is None:
                removed = len(self._areas)
                self._areas.clear()
                key = None
            else:
                key = normalize_area_key(area)
                removed = 1 if self._areas.pop(key, None) is not None else 0
            self._save_to_file()

        logger.info("Reset maturity counters for %s (%d removed)", key or "all areas", removed)
        self._notify(key)
        return removed
