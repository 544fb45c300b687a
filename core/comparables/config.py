"""
Immutable configuration for the comparables pipeline.

All weights and thresholds are frozen dataclasses injected at construction.
Weight sets are validated to sum to 1.0 when created. Use
ComparablesConfig.builder() to override individual parts.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Mapping

from core.exceptions import ConfigurationError


# =============================================================================
# Configuration Constants
# =============================================================================

SEARCH_RADIUS_KM = 10.0
DISPLAY_COUNT = 12

# Sale prices above this use the asymmetric luxury band
LUXURY_THRESHOLD = 1_000_000

# Location hierarchy proxy distances (km) when no coordinates exist
SAME_URBANIZATION_KM = 1.0
SAME_SUBURB_KM = 5.0
SAME_CITY_KM = 15.0
NO_LOCATION_MATCH_KM = 50.0


def _validate_weights(name: str, weights: Mapping[str, float]) -> None:
    for key, value in weights.items():
        if value < 0:
            raise ConfigurationError(f"{name}.{key} must be non-negative, got {value}")
    total = sum(weights.values())
    if not math.isclose(total, 1.0, abs_tol=1e-9):
        raise ConfigurationError(f"{name} must sum to 1.0, got {total:.4f}")


@dataclass(frozen=True)
class SimilarityWeights:
    """Weights of the six similarity factors."""
    distance: float = 0.40
    size: float = 0.20
    condition: float = 0.20
    price: float = 0.10
    bedrooms: float = 0.07
    bathrooms: float = 0.03

    def __post_init__(self):
        _validate_weights("SimilarityWeights", self.as_dict())

    def as_dict(self) -> Dict[str, float]:
        return {
            "distance": self.distance,
            "size": self.size,
            "condition": self.condition,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
        }


@dataclass(frozen=True)
class SimilarityThresholds:
    """Maximum reasonable differences and condition rules for scoring."""
    max_distance_km: float = SEARCH_RADIUS_KM
    max_bedroom_diff: int = 2
    max_bathroom_diff: int = 2
    max_condition_rank_gap: int = 4

    # A fixer-upper this close reveals the pre-renovation baseline value
    renovation_comparable_km: float = 2.0
    renovation_comparable_penalty: float = 0.1
    nearby_condition_gap: int = 2
    nearby_condition_penalty: float = 0.2

    # Condition-driven relaxation of price differences
    condition_price_factor: float = 0.6
    condition_price_cap: float = 0.3

    max_feature_bonus: float = 5.0

    def __post_init__(self):
        if self.max_distance_km <= 0:
            raise ConfigurationError("max_distance_km must be positive")
        if self.max_bedroom_diff <= 0 or self.max_bathroom_diff <= 0:
            raise ConfigurationError("room difference caps must be positive")
        if not 0 <= self.condition_price_cap <= 1:
            raise ConfigurationError("condition_price_cap must be between 0 and 1")


@dataclass(frozen=True)
class PriceBandConfig:
    """Price band factors relative to the subject price, per listing type."""
    luxury_threshold: float = LUXURY_THRESHOLD
    sale: tuple = (0.5, 1.5)
    sale_luxury: tuple = (0.2, 1.8)
    long_term: tuple = (0.6, 1.4)
    short_term: tuple = (0.4, 1.6)

    def __post_init__(self):
        for name in ("sale", "sale_luxury", "long_term", "short_term"):
            low, high = getattr(self, name)
            if not 0 <= low < 1 < high:
                raise ConfigurationError(
                    f"PriceBandConfig.{name} must satisfy 0 <= low < 1 < high"
                )


@dataclass(frozen=True)
class QualityWeights:
    """Weights of the four quality components."""
    recency: float = 0.25
    proximity: float = 0.30
    similarity: float = 0.35
    completeness: float = 0.10

    def __post_init__(self):
        _validate_weights("QualityWeights", self.as_dict())

    def as_dict(self) -> Dict[str, float]:
        return {
            "recency": self.recency,
            "proximity": self.proximity,
            "similarity": self.similarity,
            "completeness": self.completeness,
        }


@dataclass(frozen=True)
class QualityThresholds:
    """
    Step thresholds for recency (days) and proximity (km).

    Each tuple is (excellent, good, fair, poor).
    """
    recency_days: tuple = (7, 30, 90, 180)
    recency_scores: tuple = (1.0, 0.8, 0.6, 0.4)
    recency_decay_days: float = 180.0
    unknown_age_days: int = 365

    proximity_km: tuple = (0.5, 1.0, 2.0, 5.0)
    proximity_scores: tuple = (1.0, 0.85, 0.65, 0.45)
    proximity_decay_km: float = 10.0
    no_coordinates_score: float = 0.5

    score_floor: float = 0.1
    media_bonus: float = 0.1


@dataclass(frozen=True)
class MaturityBonusConfig:
    """Bonus for areas with a large history of comparables and analyses."""
    comparables_tiers: tuple = ((50, 0.10), (20, 0.05))
    analyses_tiers: tuple = ((20, 0.10), (10, 0.05))
    cap: float = 0.20


# Search area -> area names that share vocabulary but are different places
DEFAULT_LOCATION_EXCLUSIONS: Dict[str, FrozenSet[str]] = {
    "golden mile": frozenset({"new golden mile", "nuevo golden mile"}),
    "marbella golden mile": frozenset({"new golden mile", "nuevo golden mile"}),
    "new golden mile": frozenset({"marbella golden mile", "golden mile"}),
    "nuevo golden mile": frozenset({"marbella golden mile", "golden mile"}),
}


@dataclass(frozen=True)
class ComparablesConfig:
    """Complete configuration for one ComparableAnalysisService."""
    weights: SimilarityWeights = field(default_factory=SimilarityWeights)
    thresholds: SimilarityThresholds = field(default_factory=SimilarityThresholds)
    price_bands: PriceBandConfig = field(default_factory=PriceBandConfig)
    quality_weights: QualityWeights = field(default_factory=QualityWeights)
    quality_thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    maturity_bonus: MaturityBonusConfig = field(default_factory=MaturityBonusConfig)
    location_exclusions: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: dict(DEFAULT_LOCATION_EXCLUSIONS)
    )
    search_radius_km: float = SEARCH_RADIUS_KM
    display_count: int = DISPLAY_COUNT

    def __post_init__(self):
        if self.display_count <= 0:
            raise ConfigurationError("display_count must be positive")
        if self.search_radius_km <= 0:
            raise ConfigurationError("search_radius_km must be positive")

    @classmethod
    def builder(cls) -> "ComparablesConfigBuilder":
        return ComparablesConfigBuilder()


class ComparablesConfigBuilder:
    """
    Step-by-step construction of a ComparablesConfig.

    Example:
        config = (
            ComparablesConfig.builder()
            .with_weights(distance=0.5, size=0.1)
            .with_luxury_threshold(2_000_000)
            .build()
        )

    Partial weight overrides are merged onto the defaults; the merged set
    must still sum to 1.0.
    """

    def __init__(self):
        self._config = ComparablesConfig()

    def with_weights(self, **overrides: float) -> "ComparablesConfigBuilder":
        weights = SimilarityWeights(**{**self._config.weights.as_dict(), **overrides})
        self._config = replace(self._config, weights=weights)
        return self

    def with_thresholds(self, **overrides) -> "ComparablesConfigBuilder":
        self._config = replace(
            self._config, thresholds=replace(self._config.thresholds, **overrides)
        )
        return self

    def with_price_bands(self, **overrides) -> "ComparablesConfigBuilder":
        self._config = replace(
            self._config, price_bands=replace(self._config.price_bands, **overrides)
        )
        return self

    def with_luxury_threshold(self, threshold: float) -> "ComparablesConfigBuilder":
        return self.with_price_bands(luxury_threshold=threshold)

    def with_quality_weights(self, **overrides: float) -> "ComparablesConfigBuilder":
        weights = QualityWeights(**{**self._config.quality_weights.as_dict(), **overrides})
        self._config = replace(self._config, quality_weights=weights)
        return self

    def with_quality_thresholds(self, **overrides) -> "ComparablesConfigBuilder":
        self._config = replace(
            self._config,
            quality_thresholds=replace(self._config.quality_thresholds, **overrides),
        )
        return self

    def with_location_exclusions(
        self, exclusions: Mapping[str, "set[str]"]
    ) -> "ComparablesConfigBuilder":
        frozen = {key: frozenset(values) for key, values in exclusions.items()}
        self._config = replace(self._config, location_exclusions=frozen)
        return self

    def with_search_radius(self, radius_km: float) -> "ComparablesConfigBuilder":
        self._config = replace(self._config, search_radius_km=radius_km)
        return self

    def with_display_count(self, count: int) -> "ComparablesConfigBuilder":
        self._config = replace(self._config, display_count=count)
        return self

    def build(self) -> ComparablesConfig:
        return self._config
