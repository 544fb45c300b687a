"""
Market Aggregator

Market statistics over the full (non-windowed) scored candidate set:
- Median-focused price statistics (outlier resistant)
- Subject market position (vs mean/median, percentile, price per m²)
- Human-readable insights
- 8-bucket price histogram with the subject's bucket flagged
- Volatility by coefficient of variation
- Listing-type aware summary sentence
- Chart series for the report UI
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from core.exceptions import AggregationError
from utils.formatting import format_currency

from .models import ListingType, ScoredCandidate, SearchCriteria


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

HISTOGRAM_BUCKETS = 8

# Volatility bands on coefficient of variation
LOW_VOLATILITY_CV = 0.15
MODERATE_VOLATILITY_CV = 0.30
MIN_PRICES_FOR_VOLATILITY = 3

# Insight thresholds
PREMIUM_VS_MEDIAN = 1.2
VALUE_VS_MEDIAN = 0.8
TOP_PERCENTILE = 80
BOTTOM_PERCENTILE = 20
ROBUST_SAMPLE_SIZE = 10
PPSQM_ABOVE_MARKET = 1.15
PPSQM_BELOW_MARKET = 0.85

CURRENCY = "EUR"


# =============================================================================
# Statistic Helpers
# =============================================================================

def median(values: Sequence[float]) -> float:
    """
    Median of values.

    Raises:
        AggregationError: If values is empty
    """
    if not values:
        raise AggregationError("Cannot take the median of an empty set")
    ordered = sorted(values)
    n = len(ordered)
    mid = n // 2
    if n % 2 == 1:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def mean(values: Sequence[float]) -> float:
    """
    Arithmetic mean of values.

    Raises:
        AggregationError: If values is empty
    """
    if not values:
        raise AggregationError("Cannot take the mean of an empty set")
    return sum(values) / len(values)


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    """
    Weighted mean of values.

    Raises:
        AggregationError: If inputs are empty, of different length or all
            weights are zero
    """
    if not values or len(values) != len(weights):
        raise AggregationError("Weighted mean needs equal-length, non-empty inputs")
    total_weight = sum(weights)
    if total_weight <= 0:
        raise AggregationError("Weighted mean needs a positive total weight")
    return sum(v * w for v, w in zip(values, weights)) / total_weight


def percentile_rank(value: Optional[float], values: Sequence[float]) -> int:
    """Share of values at or below value, as a 0-100 integer. 50 if unknown."""
    if not value or not values:
        return 50
    at_or_below = sum(1 for v in values if v <= value)
    return round(at_or_below / len(values) * 100)


def classify_volatility(prices: Sequence[float]) -> str:
    """
    Volatility class from the coefficient of variation.

    Returns:
        "low", "moderate", "high", or "insufficient_data" for fewer than
        3 prices
    """
    if len(prices) < MIN_PRICES_FOR_VOLATILITY:
        return "insufficient_data"

    avg = mean(prices)
    if avg <= 0:
        return "insufficient_data"
    variance = sum((p - avg) ** 2 for p in prices) / len(prices)
    cv = math.sqrt(variance) / avg

    if cv < LOW_VOLATILITY_CV:
        return "low"
    if cv < MODERATE_VOLATILITY_CV:
        return "moderate"
    return "high"


# =============================================================================
# Result Models
# =============================================================================

@dataclass
class MarketStats:
    avg_price: int
    median_price: int
    avg_price_per_sqm: int
    median_price_per_sqm: int
    min_price: int
    max_price: int
    price_range: int
    sample_size: int
    weighted_avg_price: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "avgPrice": self.avg_price,
            "medianPrice": self.median_price,
            "avgPricePerSqm": self.avg_price_per_sqm,
            "medianPricePerSqm": self.median_price_per_sqm,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "priceRange": self.price_range,
            "sampleSize": self.sample_size,
            "weightedAvgPrice": self.weighted_avg_price,
        }


@dataclass
class MarketPosition:
    vs_average: Optional[float]
    vs_median: Optional[float]
    percentile: int
    market_position: str  # above_market / below_market
    price_per_sqm_vs_market: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "vsAverage": self.vs_average,
            "vsMedian": self.vs_median,
            "percentile": self.percentile,
            "marketPosition": self.market_position,
            "pricePerSqmVsMarket": self.price_per_sqm_vs_market,
        }


@dataclass
class PriceDistribution:
    histogram: List[int]
    subject_bucket: int  # -1 when the subject price is outside the range
    bucket_size: int
    min: int
    max: int
    labels: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "histogram": list(self.histogram),
            "subjectBucket": self.subject_bucket,
            "bucketSize": self.bucket_size,
            "min": self.min,
            "max": self.max,
            "labels": list(self.labels),
        }


@dataclass
class ChartData:
    """
    Per-comparable series for the report charts.

    Only priced comparables are included. Each series entry carries the
    comparable reference and address so charts can label points.
    """
    price_comparison: dict
    price_per_sqm: dict
    size_comparison: dict
    market_position: dict
    similarity_distribution: dict

    def to_dict(self) -> dict:
        return {
            "priceComparison": self.price_comparison,
            "pricePerSqm": self.price_per_sqm,
            "sizeComparison": self.size_comparison,
            "marketPosition": self.market_position,
            "similarityDistribution": self.similarity_distribution,
        }


@dataclass
class MarketContext:
    """Market statistics, subject position and insights for one analysis."""
    stats: MarketStats
    position: MarketPosition
    insights: List[str]
    price_distribution: PriceDistribution
    volatility: str
    comparable_count: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "stats": self.stats.to_dict(),
            "position": self.position.to_dict(),
            "insights": list(self.insights),
            "priceDistribution": self.price_distribution.to_dict(),
            "volatility": self.volatility,
            "comparableCount": self.comparable_count,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Aggregator
# =============================================================================

class MarketAggregator:
    """
    Builds a MarketContext from scored candidates.

    Returns None instead of raising when there is nothing to aggregate;
    callers must check for presence.
    """

    def aggregate(
        self,
        criteria: SearchCriteria,
        candidates: List[ScoredCandidate],
        quality_weights: Optional[Sequence[float]] = None,
    ) -> Optional[MarketContext]:
        """
        Aggregate market statistics.

        Args:
            criteria: Subject criteria (authoritative price, build area)
            candidates: Full scored candidate set
            quality_weights: Optional per-candidate weights aligned with
                candidates, used for the quality-weighted mean price

        Returns:
            MarketContext, or None if no candidate has a price
        """
        if not candidates:
            return None

        try:
            return self._aggregate(criteria, candidates, quality_weights)
        except AggregationError as e:
            logger.warning("Market aggregation skipped: %s", e)
            return None

    def _aggregate(
        self,
        criteria: SearchCriteria,
        candidates: List[ScoredCandidate],
        quality_weights: Optional[Sequence[float]],
    ) -> MarketContext:
        priced = [
            (c, quality_weights[i] if quality_weights else None)
            for i, c in enumerate(candidates)
            if c.price and c.price > 0
        ]
        prices = [c.price for c, _ in priced]
        if not prices:
            raise AggregationError(f"none of {len(candidates)} candidates has a price")

        per_sqm = [c.price_per_sqm for c, _ in priced if c.price_per_sqm]

        weighted_avg = None
        if quality_weights:
            weighted_avg = round(weighted_mean(prices, [w for _, w in priced]))

        stats = MarketStats(
            avg_price=round(mean(prices)),
            median_price=round(median(prices)),
            avg_price_per_sqm=round(mean(per_sqm)) if per_sqm else 0,
            median_price_per_sqm=round(median(per_sqm)) if per_sqm else 0,
            min_price=round(min(prices)),
            max_price=round(max(prices)),
            price_range=round(max(prices) - min(prices)),
            sample_size=len(prices),
            weighted_avg_price=weighted_avg,
        )

        position = self._position(criteria, prices, stats)
        insights = self._insights(position, len(prices))

        return MarketContext(
            stats=stats,
            position=position,
            insights=insights,
            price_distribution=self.price_distribution(prices, criteria.price),
            volatility=classify_volatility(prices),
            comparable_count=len(candidates),
        )

    @staticmethod
    def _position(
        criteria: SearchCriteria,
        prices: List[float],
        stats: MarketStats,
    ) -> MarketPosition:
        subject_price = criteria.price
        subject_ppsqm = None
        if subject_price and criteria.build_area:
            subject_ppsqm = round(subject_price / criteria.build_area)

        vs_average = round(subject_price / stats.avg_price, 3) if subject_price and stats.avg_price else None
        vs_median = round(subject_price / stats.median_price, 3) if subject_price and stats.median_price else None
        ppsqm_vs_market = None
        if subject_ppsqm and stats.median_price_per_sqm:
            ppsqm_vs_market = round(subject_ppsqm / stats.median_price_per_sqm, 3)

        above = bool(subject_price and subject_price > stats.median_price)
        return MarketPosition(
            vs_average=vs_average,
            vs_median=vs_median,
            percentile=percentile_rank(subject_price, prices),
            market_position="above_market" if above else "below_market",
            price_per_sqm_vs_market=ppsqm_vs_market,
        )

    @staticmethod
    def _insights(position: MarketPosition, sample_size: int) -> List[str]:
        insights = []

        # Median positioning
        vs_median = position.vs_median
        if vs_median is not None and vs_median > PREMIUM_VS_MEDIAN:
            insights.append(
                f"Property is priced {round((vs_median - 1) * 100)}% above market median, "
                "indicating premium positioning"
            )
        elif vs_median is not None and vs_median < VALUE_VS_MEDIAN:
            insights.append(
                f"Property is priced {round((1 - vs_median) * 100)}% below market median, "
                "representing potential value"
            )
        else:
            insights.append("Property is competitively priced within the market median range")

        # Percentile rank
        if position.percentile >= TOP_PERCENTILE:
            insights.append(
                f"Property ranks in the top {100 - position.percentile}% "
                "of comparable properties by price"
            )
        elif position.percentile <= BOTTOM_PERCENTILE:
            insights.append(
                f"Property ranks in the bottom {position.percentile}% "
                "of comparable properties by price"
            )

        # Sample robustness
        if sample_size >= ROBUST_SAMPLE_SIZE:
            insights.append(f"Analysis based on robust sample of {sample_size} comparable properties")
        else:
            insights.append(f"Limited market data: analysis based on {sample_size} properties")

        # Price per m² deviation
        ratio = position.price_per_sqm_vs_market
        if ratio:
            if ratio > PPSQM_ABOVE_MARKET:
                insights.append(f"Price per m² is {round((ratio - 1) * 100)}% above market average")
            elif ratio < PPSQM_BELOW_MARKET:
                insights.append(f"Price per m² is {round((1 - ratio) * 100)}% below market average")

        return insights

    @staticmethod
    def chart_data(criteria: SearchCriteria, candidates: List[ScoredCandidate]) -> ChartData:
        """
        Build chart series from the full candidate set.

        Unpriced candidates are left out. With no priced candidates the
        series are empty and every aggregate is 0.
        """
        priced = [c for c in candidates if c.price and c.price > 0]
        subject_price = criteria.price
        subject_size = criteria.build_area

        if not priced:
            return ChartData(
                price_comparison={"subject": subject_price, "comparables": [], "average": 0},
                price_per_sqm={"subject": 0, "comparables": []},
                size_comparison={"subject": subject_size, "comparables": []},
                market_position={
                    "subject": subject_price,
                    "marketRange": {"min": 0, "max": 0, "median": 0},
                },
                similarity_distribution={"scores": []},
            )

        prices = [c.price for c in priced]
        per_sqm = [c.price_per_sqm for c in priced if c.price_per_sqm]
        sizes = [c.record.build_area for c in priced if c.record.build_area]
        price_median = round(median(prices))

        subject_ppsqm = 0
        if subject_price and subject_size:
            subject_ppsqm = round(subject_price / subject_size)

        return ChartData(
            price_comparison={
                "subject": subject_price,
                "comparables": [
                    {
                        "price": c.price,
                        "address": c.record.address,
                        "distance": c.distance_km,
                        "reference": c.reference,
                    }
                    for c in priced
                ],
                "average": round(mean(prices)),
                "median": price_median,
                "min": round(min(prices)),
                "max": round(max(prices)),
            },
            price_per_sqm={
                "subject": subject_ppsqm,
                "comparables": [
                    {"pricePerSqm": c.price_per_sqm, "address": c.record.address, "reference": c.reference}
                    for c in priced
                ],
                "average": round(mean(per_sqm)) if per_sqm else 0,
            },
            size_comparison={
                "subject": subject_size,
                "comparables": [
                    {"size": c.record.build_area, "address": c.record.address, "reference": c.reference}
                    for c in priced
                ],
                "average": round(mean(sizes)) if sizes else 0,
            },
            market_position={
                "subject": subject_price,
                "marketRange": {
                    "min": round(min(prices)),
                    "max": round(max(prices)),
                    "median": price_median,
                },
                "percentile": percentile_rank(subject_price, prices),
            },
            similarity_distribution={
                "scores": [
                    {
                        "address": c.record.address,
                        "overallPercent": c.overall_percent,
                        "distancePercent": c.distance_percent,
                        "sizePercent": c.size_percent,
                        "pricePercent": c.price_percent,
                        "reference": c.reference,
                    }
                    for c in priced
                ],
            },
        )

    @staticmethod
    def price_distribution(prices: Sequence[float], subject_price: Optional[float]) -> PriceDistribution:
        """
        8 equal-width buckets between the lowest and highest price.

        The top bucket is closed so the maximum price lands in it. When all
        prices are equal everything goes into bucket 0.
        """
        if not prices:
            raise AggregationError("Cannot build a distribution without prices")

        low, high = min(prices), max(prices)
        spread = high - low
        bucket_size = spread / HISTOGRAM_BUCKETS

        def bucket_of(price: float) -> int:
            if bucket_size == 0:
                return 0
            return min(int((price - low) // bucket_size), HISTOGRAM_BUCKETS - 1)

        histogram = [0] * HISTOGRAM_BUCKETS
        for price in prices:
            histogram[bucket_of(price)] += 1

        subject_bucket = -1
        if subject_price and low <= subject_price <= high:
            subject_bucket = bucket_of(subject_price)

        labels = []
        for i in range(HISTOGRAM_BUCKETS):
            start = low + i * bucket_size
            end = low + (i + 1) * bucket_size
            labels.append(f"{format_currency(start, CURRENCY)}-{format_currency(end, CURRENCY)}")

        return PriceDistribution(
            histogram=histogram,
            subject_bucket=subject_bucket,
            bucket_size=round(bucket_size),
            min=round(low),
            max=round(high),
            labels=labels,
        )


# =============================================================================
# Summary
# =============================================================================

@dataclass(frozen=True)
class ListingTerminology:
    properties: str
    price_unit: str
    market_type: str
    comparison: str


LISTING_TERMINOLOGY = {
    ListingType.SALE: ListingTerminology(
        "sale properties", "sale price", "sales market", "comparable sales"
    ),
    ListingType.LONG_TERM: ListingTerminology(
        "long-term rental properties", "monthly rent", "rental market", "comparable rentals"
    ),
    ListingType.SHORT_TERM: ListingTerminology(
        "short-term rental properties", "weekly rate", "holiday rental market",
        "comparable holiday rentals",
    ),
}


def terminology_for(listing_type: Optional[ListingType]) -> ListingTerminology:
    return LISTING_TERMINOLOGY.get(
        listing_type, ListingTerminology("properties", "price", "market", "comparables")
    )


def build_summary(
    criteria: SearchCriteria,
    candidates: List[ScoredCandidate],
    context: Optional[MarketContext],
) -> str:
    """
    One-paragraph summary of an analysis run.

    Uses the market context when available and falls back to a simple
    average otherwise.
    """
    terms = terminology_for(criteria.listing_type)

    if not candidates:
        return f"No comparable {terms.properties} found for the given criteria."

    prices = sorted(c.price for c in candidates if c.price and c.price > 0)
    if not prices:
        return f"Found {len(candidates)} properties but no pricing data available."

    summary = f"Found {len(candidates)} comparable {terms.properties}"
    cities = sorted({c.record.city for c in candidates if c.record.city})
    if criteria.has_coordinates:
        summary += f" within {criteria.radius_km:g}km radius"
    elif len(cities) == 1:
        summary += f" in {cities[0]}"
    elif len(cities) > 1:
        summary += f" across {len(cities)} locations"

    avg_similarity = round(sum(c.overall_percent for c in candidates) / len(candidates))

    if context is not None:
        stats = context.stats
        summary += (
            f". Market median {terms.price_unit}: {format_currency(stats.median_price, CURRENCY)}"
            f", ranging from {format_currency(stats.min_price, CURRENCY)}"
            f" to {format_currency(stats.max_price, CURRENCY)}"
            f". Average similarity: {avg_similarity}%"
        )
        if context.position.market_position == "above_market":
            summary += f". Property positioned above {terms.market_type} median"
        else:
            summary += f". Property positioned below {terms.market_type} median"
    else:
        summary += (
            f". Average {terms.price_unit}: {format_currency(sum(prices) / len(prices), CURRENCY)}"
            f", ranging from {format_currency(prices[0], CURRENCY)}"
            f" to {format_currency(prices[-1], CURRENCY)}"
            f". Average similarity: {avg_similarity}%"
        )

    return summary + "."
