"""
Result Selector

Ranks scored candidates and picks the display subset. Only rendering is
capped: the full ranked set always feeds statistics, quality scoring and
the narrative.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import DISPLAY_COUNT
from .models import ScoredCandidate, SearchCriteria


logger = logging.getLogger(__name__)


# (criteria, ranked candidates, display count) -> widened candidate list
RelaxationHook = Callable[[SearchCriteria, List[ScoredCandidate], int], List[ScoredCandidate]]


def no_relaxation(
    criteria: SearchCriteria,
    candidates: List[ScoredCandidate],
    display_count: int,
) -> List[ScoredCandidate]:
    """Default relaxation hook: returns the candidates unchanged."""
    return candidates


@dataclass
class Selection:
    """Display subset and full ranked set of one analysis run."""
    display: List[ScoredCandidate] = field(default_factory=list)
    all: List[ScoredCandidate] = field(default_factory=list)

    @property
    def total_found(self) -> int:
        return len(self.all)


class ResultSelector:
    """
    Sorts candidates by overall similarity and caps the display list.

    When fewer than display_count candidates were found, the relaxation hook
    is called once with the ranked set and may return a wider one.
    """

    def __init__(
        self,
        display_count: int = DISPLAY_COUNT,
        relaxation: Optional[RelaxationHook] = None,
    ):
        self._display_count = display_count
        self._relaxation = relaxation or no_relaxation

    @property
    def display_count(self) -> int:
        return self._display_count

    @staticmethod
    def rank(candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
        """Sort descending by overall percent, nearest first on ties."""
        return sorted(candidates, key=lambda c: (-c.overall_percent, c.distance_km))

    def select(self, criteria: SearchCriteria, candidates: List[ScoredCandidate]) -> Selection:
        ranked = self.rank(candidates)

        if len(ranked) < self._display_count:
            widened = self._relaxation(criteria, ranked, self._display_count)
            if len(widened) != len(ranked):
                logger.info(
                    "Relaxation widened candidates from %d to %d",
                    len(ranked),
                    len(widened),
                )
                ranked = self.rank(widened)

        display = ranked[: self._display_count]
        logger.debug("Selected %d of %d candidates for display", len(display), len(ranked))
        return Selection(display=display, all=ranked)
