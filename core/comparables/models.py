"""
Data models for the comparables pipeline.

Defines the normalized property record consumed by every stage, the
immutable search criteria derived from a subject property, and the transient
scored candidate produced by the similarity scorer.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


class ListingType(Enum):
    """
    Listing type of a property.

    Determines which price field is authoritative and how wide the
    comparable price band is.
    """
    SALE = "sale"
    LONG_TERM = "long_term"
    SHORT_TERM = "short_term"

    @property
    def price_field(self) -> str:
        """Name of the authoritative price field for this listing type."""
        return _PRICE_FIELDS[self]


_PRICE_FIELDS = {
    ListingType.SALE: "sale_price",
    ListingType.LONG_TERM: "monthly_price",
    ListingType.SHORT_TERM: "weekly_price_from",
}


class Condition(Enum):
    """
    Condition rating of a property.

    Rank: higher is better. Value multiplier: expected price relative to a
    new build, used to relax price comparisons across condition gaps.
    """
    NEW = "new"
    EXCELLENT = "excellent"
    VERY_GOOD = "very-good"
    GOOD = "good"
    NEEDS_RENOVATION = "needs-renovation"
    NEEDS_COMPLETE_RENOVATION = "needs-complete-renovation"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["Condition"]:
        """Convert string to Condition, case-insensitive."""
        if not value:
            return None
        normalised = str(value).lower().strip().replace("_", "-").replace(" ", "-")
        for member in cls:
            if member.value == normalised:
                return member
        return None

    @property
    def rank(self) -> int:
        return _CONDITION_RANKS[self]

    @property
    def value_multiplier(self) -> float:
        return _CONDITION_MULTIPLIERS[self]

    @property
    def is_fixer_upper(self) -> bool:
        """Whether the property needs renovation work."""
        return self in (Condition.NEEDS_RENOVATION, Condition.NEEDS_COMPLETE_RENOVATION)


_CONDITION_RANKS = {
    Condition.NEW: 5,
    Condition.EXCELLENT: 4,
    Condition.VERY_GOOD: 3,
    Condition.GOOD: 2,
    Condition.NEEDS_RENOVATION: 1,
    Condition.NEEDS_COMPLETE_RENOVATION: 0,
}

_CONDITION_MULTIPLIERS = {
    Condition.NEW: 1.0,
    Condition.EXCELLENT: 0.95,
    Condition.VERY_GOOD: 0.90,
    Condition.GOOD: 0.85,
    Condition.NEEDS_RENOVATION: 0.70,
    Condition.NEEDS_COMPLETE_RENOVATION: 0.50,
}

# Numeric property type codes used by older session payloads
PROPERTY_TYPE_CODES = {
    0: "apartment",
    1: "villa",
    2: "townhouse",
    3: "penthouse",
    4: "plot",
    5: "commercial",
    6: "office",
    7: "garage",
    8: "warehouse",
    9: "country-house",
}


def normalise_property_type(value: Any) -> Optional[str]:
    """Map a numeric code or free-text property type onto a lower-case name."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return PROPERTY_TYPE_CODES.get(value)
    text = str(value).strip().lower()
    if text.isdigit():
        return PROPERTY_TYPE_CODES.get(int(text))
    return text or None


def _parse_list(value: Any) -> Tuple[str, ...]:
    """Accept a list, a JSON-encoded list or nothing."""
    if value is None:
        return ()
    if isinstance(value, str):
        try:
            value = json.loads(value or "null")
        except json.JSONDecodeError:
            return ()
        if value is None:
            return ()
    if isinstance(value, dict):
        return tuple(str(v) for v in value.values())
    if isinstance(value, (list, tuple, set)):
        return tuple(str(v) for v in value)
    return ()


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp %r ignored", value)
        return None


def _positive(value: Any) -> Optional[float]:
    """Coerce to a positive float, treating zero and junk as missing."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _coordinate(value: Any) -> Optional[float]:
    """Coerce to float; zero is the feed's placeholder for "not geocoded"."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number != 0 else None


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass
class PropertyRecord:
    """
    A normalized property listing.

    Only the price field matching the listing type is authoritative; use
    price_for() rather than reading price fields directly.
    """
    id: str
    reference: str = ""
    property_type: Optional[str] = None

    # Listing type flags
    is_sale: bool = False
    is_long_term: bool = False
    is_short_term: bool = False

    # Prices
    sale_price: Optional[float] = None
    monthly_price: Optional[float] = None
    weekly_price_from: Optional[float] = None
    weekly_price_to: Optional[float] = None
    price: Optional[float] = None  # Generic price of unknown listing type

    # Location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    address: str = ""

    # Structure
    build_area: Optional[float] = None  # m²
    plot_area: Optional[float] = None
    terrace_area: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    condition: Optional[str] = None
    orientation: Optional[str] = None
    energy_rating: Optional[str] = None
    year_built: Optional[int] = None

    features: Tuple[str, ...] = field(default_factory=tuple)
    images: Tuple[str, ...] = field(default_factory=tuple)
    last_updated: Optional[datetime] = None

    @property
    def has_coordinates(self) -> bool:
        return bool(self.latitude and self.longitude)

    @property
    def area_name(self) -> Optional[str]:
        """Most specific area name: urbanization, else suburb, else city."""
        return self.urbanization or self.suburb or self.city

    @property
    def condition_rating(self) -> Optional[Condition]:
        return Condition.from_string(self.condition)

    @property
    def listing_type(self) -> Optional[ListingType]:
        """Listing type from flags, then from populated price fields."""
        if self.is_sale:
            return ListingType.SALE
        if self.is_long_term:
            return ListingType.LONG_TERM
        if self.is_short_term:
            return ListingType.SHORT_TERM
        if self.sale_price:
            return ListingType.SALE
        if self.monthly_price:
            return ListingType.LONG_TERM
        if self.weekly_price_from or self.weekly_price_to:
            return ListingType.SHORT_TERM
        return None

    def price_for(self, listing_type: ListingType) -> Optional[float]:
        """
        Authoritative price for the given listing type.

        The generic price is only trusted when the record's own listing type
        is unknown or matches; a sale price is never returned for a rental.
        """
        if listing_type == ListingType.SALE:
            specific = self.sale_price
        elif listing_type == ListingType.LONG_TERM:
            specific = self.monthly_price
        else:
            specific = self.weekly_price_from or self.weekly_price_to

        if specific:
            return specific

        own_type = self.listing_type
        if self.price and (own_type is None or own_type == listing_type):
            return self.price
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PropertyRecord":
        """Build a record from a feed or API payload, accepting field aliases."""
        bedrooms = _positive(data.get("bedrooms"))
        bathrooms = _positive(data.get("bathrooms"))
        year_built = _positive(data.get("year_built"))
        property_type = normalise_property_type(
            _first(data, "property_type", "propertyType", "type")
        )

        return cls(
            id=str(_first(data, "id", "reference") or ""),
            reference=str(data.get("reference") or ""),
            property_type=property_type,
            is_sale=bool(data.get("is_sale")),
            is_long_term=bool(data.get("is_long_term")),
            is_short_term=bool(data.get("is_short_term")),
            sale_price=_positive(data.get("sale_price")),
            monthly_price=_positive(_first(data, "monthly_price", "rent_price")),
            weekly_price_from=_positive(_first(data, "weekly_price_from", "weekly_price")),
            weekly_price_to=_positive(data.get("weekly_price_to")),
            price=_positive(data.get("price")),
            latitude=_coordinate(_first(data, "latitude", "lat")),
            longitude=_coordinate(_first(data, "longitude", "lng")),
            urbanization=_first(data, "urbanization", "urbanization_name"),
            suburb=data.get("suburb") or None,
            city=data.get("city") or None,
            address=data.get("address") or "",
            build_area=_positive(
                _first(data, "build_area", "build_size", "build_square_meters", "buildArea", "size")
            ),
            plot_area=_positive(_first(data, "plot_area", "plot_size")),
            terrace_area=_positive(_first(data, "terrace_area", "terrace_size")),
            bedrooms=int(bedrooms) if bedrooms else None,
            bathrooms=int(bathrooms) if bathrooms else None,
            condition=_first(data, "condition", "condition_rating"),
            orientation=data.get("orientation") or None,
            energy_rating=data.get("energy_rating") or None,
            year_built=int(year_built) if year_built else None,
            features=_parse_list(data.get("features")),
            images=_parse_list(data.get("images")),
            last_updated=_parse_datetime(
                _first(data, "last_updated", "last_updated_at", "updated_at")
            ),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "reference": self.reference,
            "property_type": self.property_type,
            "listing_type": self.listing_type.value if self.listing_type else None,
            "sale_price": self.sale_price,
            "monthly_price": self.monthly_price,
            "weekly_price_from": self.weekly_price_from,
            "weekly_price_to": self.weekly_price_to,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "urbanization": self.urbanization,
            "suburb": self.suburb,
            "city": self.city,
            "address": self.address,
            "build_area": self.build_area,
            "plot_area": self.plot_area,
            "terrace_area": self.terrace_area,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "condition": self.condition,
            "orientation": self.orientation,
            "energy_rating": self.energy_rating,
            "year_built": self.year_built,
            "features": list(self.features),
            "images": list(self.images),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class LocationHint:
    """
    Location resolved by an upstream geocoder.

    Coordinates are only used when the subject property has none.
    """
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return bool(self.latitude and self.longitude)


@dataclass(frozen=True)
class SearchCriteria:
    """
    Search parameters derived from the subject property.

    Created once per analysis run and never mutated.
    """
    listing_type: ListingType
    price_field: str
    property_type: Optional[str] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None

    price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    build_area: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    condition: Optional[str] = None
    features: Tuple[str, ...] = ()

    reference: str = ""
    radius_km: float = 10.0

    @property
    def has_coordinates(self) -> bool:
        return bool(self.latitude and self.longitude)

    @property
    def has_location(self) -> bool:
        return bool(self.urbanization or self.suburb or self.city)

    @property
    def condition_rating(self) -> Optional[Condition]:
        return Condition.from_string(self.condition)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "listing_type": self.listing_type.value,
            "price_field": self.price_field,
            "property_type": self.property_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "urbanization": self.urbanization,
            "suburb": self.suburb,
            "city": self.city,
            "price": self.price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "build_area": self.build_area,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "condition": self.condition,
            "features": list(self.features),
            "reference": self.reference,
            "radius_km": self.radius_km,
        }


@dataclass(frozen=True)
class RetrievedCandidate:
    """A candidate record returned by a retriever, with optional distance."""
    record: PropertyRecord
    distance_km: Optional[float] = None


class DistanceSource(Enum):
    """How a candidate's distance to the subject was obtained."""
    RETRIEVER = "retriever"
    HAVERSINE = "haversine"
    HIERARCHY = "hierarchy"


@dataclass
class ScoredCandidate:
    """
    A candidate property with its similarity scores.

    Factor percentages are 0-100, higher is more similar. weighted_penalty
    is the 0-1 weighted sum of factor penalties before the feature bonus.
    Scoped to one analysis run; never persisted.
    """
    record: PropertyRecord
    price: Optional[float]
    distance_km: float
    distance_source: DistanceSource

    distance_percent: float
    size_percent: float
    price_percent: float
    bedroom_percent: float
    bathroom_percent: float
    condition_percent: float
    feature_bonus: float

    weighted_penalty: float
    overall_percent: float

    @property
    def reference(self) -> str:
        return self.record.reference

    @property
    def has_coordinates(self) -> bool:
        """Whether the distance came from real coordinates, not the area proxy."""
        return self.distance_source != DistanceSource.HIERARCHY

    @property
    def price_per_sqm(self) -> Optional[float]:
        if self.price and self.record.build_area:
            return round(self.price / self.record.build_area)
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        data = self.record.to_dict()
        data.update({
            "price": self.price,
            "price_per_sqm": self.price_per_sqm,
            "distance_km": self.distance_km,
            "distance_source": self.distance_source.value,
            "overall_percent": self.overall_percent,
            "distance_percent": self.distance_percent,
            "size_percent": self.size_percent,
            "price_percent": self.price_percent,
            "bedroom_percent": self.bedroom_percent,
            "bathroom_percent": self.bathroom_percent,
            "condition_percent": self.condition_percent,
            "feature_bonus": self.feature_bonus,
        })
        return data
