"""
Data models for system/AI section decisions and area data maturity.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Approach(Enum):
    """How a report section is produced."""
    SYSTEM = "system"  # Automated computation from comparable data
    AI = "ai"          # Narrative generation pass


class DecisionConfidence(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_string(cls, value: str) -> "DecisionConfidence":
        """Convert string to DecisionConfidence."""
        value_lower = value.lower().strip()
        for member in cls:
            if member.value == value_lower:
                return member
        raise ValueError(f"Unknown confidence: {value}")


@dataclass(frozen=True)
class SectionThreshold:
    """
    Routing configuration of one report section.

    A section either always needs AI narrative, or is routed to the system
    when the area meets all three minimums.
    """
    min_comparables: int = 0
    min_analyses: int = 0
    min_quality: float = 0.0
    always_ai: bool = False

    @classmethod
    def narrative(cls) -> "SectionThreshold":
        return cls(always_ai=True)


@dataclass
class SectionDecision:
    approach: Approach
    reason: str
    confidence: DecisionConfidence

    @property
    def is_system(self) -> bool:
        return self.approach == Approach.SYSTEM

    def to_dict(self) -> dict:
        return {
            "approach": self.approach.value,
            "reason": self.reason,
            "confidence": self.confidence.value,
        }


# =============================================================================
# Area Keys
# =============================================================================

def normalize_area_key(name: Optional[str]) -> Optional[str]:
    """Lower-case and replace every non-alphanumeric character with "_"."""
    if not name:
        return None
    return re.sub(r"[^a-z0-9]", "_", name.lower())


@dataclass(frozen=True)
class AreaKeys:
    """Normalized area hierarchy of a property, most specific first."""
    primary: str
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    area_name: str = "unknown"
    area_type: str = "city"

    @classmethod
    def for_location(
        cls,
        urbanization: Optional[str],
        suburb: Optional[str],
        city: Optional[str],
    ) -> "AreaKeys":
        area_name = urbanization or suburb or city or "unknown"
        if urbanization:
            area_type = "urbanization"
        elif suburb:
            area_type = "suburb"
        else:
            area_type = "city"
        return cls(
            primary=normalize_area_key(area_name),
            urbanization=normalize_area_key(urbanization),
            suburb=normalize_area_key(suburb),
            city=normalize_area_key(city),
            area_name=area_name,
            area_type=area_type,
        )

    @classmethod
    def of(cls, obj: Any) -> "AreaKeys":
        """Area keys of anything with urbanization/suburb/city attributes."""
        return cls.for_location(
            getattr(obj, "urbanization", None),
            getattr(obj, "suburb", None),
            getattr(obj, "city", None),
        )

    @property
    def is_known(self) -> bool:
        """Whether any level of the area hierarchy was given."""
        return bool(self.urbanization or self.suburb or self.city)

    @property
    def lookup_order(self) -> List[str]:
        """Keys tried for a maturity lookup: primary, then suburb, then city."""
        keys: List[str] = []
        for key in (self.primary, self.suburb, self.city):
            if key and key not in keys:
                keys.append(key)
        return keys

    def to_dict(self) -> dict:
        return {
            "primary": self.primary,
            "urbanization": self.urbanization,
            "suburb": self.suburb,
            "city": self.city,
        }


# =============================================================================
# Area Maturity
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class AreaMaturity:
    """
    Cumulative data counters for one area.

    Counters only grow, except through an explicit reset.
    """
    area_key: str
    area_name: str = ""
    area_type: str = "city"
    n_comparables: int = 0
    n_analyses: int = 0
    last_analysis_run: Optional[datetime] = None
    last_comparable_added: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        return self.updated_at is not None

    @classmethod
    def empty(cls, area_key: str) -> "AreaMaturity":
        return cls(area_key=area_key)

    def to_dict(self) -> dict:
        return {
            "area_key": self.area_key,
            "area_name": self.area_name,
            "area_type": self.area_type,
            "n_comparables": self.n_comparables,
            "n_analyses": self.n_analyses,
            "has_data": self.has_data,
            "last_analysis_run": _iso(self.last_analysis_run),
            "last_comparable_added": _iso(self.last_comparable_added),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AreaMaturity":
        return cls(
            area_key=data["area_key"],
            area_name=data.get("area_name", ""),
            area_type=data.get("area_type", "city"),
            n_comparables=int(data.get("n_comparables", 0)),
            n_analyses=int(data.get("n_analyses", 0)),
            last_analysis_run=_from_iso(data.get("last_analysis_run")),
            last_comparable_added=_from_iso(data.get("last_comparable_added")),
            updated_at=_from_iso(data.get("updated_at")),
        )


# =============================================================================
# Decision Set
# =============================================================================

@dataclass
class DecisionSet:
    """Section decisions for one analysis, with the inputs that produced them."""
    decisions: Dict[str, SectionDecision]
    area_keys: Optional[AreaKeys]
    maturity: Optional[AreaMaturity]
    quality_score: float
    quality_source: str  # "assessment", "basic" or "fallback"
    fallback: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    processing_ms: float = 0.0

    @property
    def system_sections(self) -> List[str]:
        return [name for name, d in self.decisions.items() if d.approach == Approach.SYSTEM]

    @property
    def ai_sections(self) -> List[str]:
        return [name for name, d in self.decisions.items() if d.approach == Approach.AI]

    def to_dict(self) -> dict:
        return {
            "decisions": {name: d.to_dict() for name, d in self.decisions.items()},
            "areaKeys": self.area_keys.to_dict() if self.area_keys else None,
            "maturity": self.maturity.to_dict() if self.maturity else None,
            "qualityScore": round(self.quality_score, 3),
            "qualitySource": self.quality_source,
            "fallback": self.fallback,
            "timestamp": self.timestamp.isoformat(),
            "processingMs": round(self.processing_ms, 1),
        }
