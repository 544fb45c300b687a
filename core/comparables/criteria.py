"""
Criteria Normalizer

Converts a subject property (plus an optional resolved-location hint) into
immutable SearchCriteria:
- Listing type detection (flags -> typed price -> price magnitude)
- Authoritative price field selection
- Price band per listing type and price tier
- Validation of the minimum location and property signals
"""

import logging
from typing import List, Optional, Tuple

from core.exceptions import CriteriaValidationError

from .config import PriceBandConfig, SEARCH_RADIUS_KM
from .models import ListingType, LocationHint, PropertyRecord, SearchCriteria


logger = logging.getLogger(__name__)


# =============================================================================
# Listing Type Heuristics
# =============================================================================

# Generic prices above this are almost always sale prices
SALE_PRICE_FLOOR = 100_000

# Monthly rents fall strictly between these bounds
LONG_TERM_PRICE_MIN = 500
LONG_TERM_PRICE_MAX = 20_000


def detect_listing_type(subject: PropertyRecord) -> ListingType:
    """
    Detect the listing type of a subject property.

    Priority:
    1. Explicit boolean flags
    2. A non-zero type-specific price field
    3. Magnitude of the generic price
    4. Sale (logged as a warning)
    """
    listing_type = subject.listing_type
    if listing_type is not None:
        return listing_type

    price = subject.price
    if price and price > 0:
        if price > SALE_PRICE_FLOOR:
            return ListingType.SALE
        if LONG_TERM_PRICE_MIN < price < LONG_TERM_PRICE_MAX:
            return ListingType.LONG_TERM
        if price < LONG_TERM_PRICE_MIN:
            return ListingType.SHORT_TERM

    logger.warning(
        "Could not determine listing type for property %s, assuming sale",
        subject.reference or subject.id,
    )
    return ListingType.SALE


def authoritative_price(subject: PropertyRecord, listing_type: ListingType) -> Optional[float]:
    """Subject price for the listing type, falling back to the generic price."""
    if listing_type == ListingType.SALE:
        price = subject.sale_price
    elif listing_type == ListingType.LONG_TERM:
        price = subject.monthly_price
    else:
        price = subject.weekly_price_from or subject.weekly_price_to
    return price or subject.price


def price_band(
    price: Optional[float],
    listing_type: ListingType,
    bands: PriceBandConfig,
) -> Tuple[Optional[float], Optional[float]]:
    """
    Calculate the comparable price band.

    Sale: ±50%, or 20%-180% above the luxury threshold.
    Long-term rental: ±40%. Short-term rental: ±60%.
    """
    if not price:
        return None, None

    if listing_type == ListingType.SALE:
        low, high = bands.sale_luxury if price > bands.luxury_threshold else bands.sale
    elif listing_type == ListingType.LONG_TERM:
        low, high = bands.long_term
    else:
        low, high = bands.short_term

    return price * low, price * high


class CriteriaNormalizer:
    """
    Builds SearchCriteria from a subject property.

    Has no side effects; the same input always yields equal criteria.
    """

    def __init__(
        self,
        price_bands: Optional[PriceBandConfig] = None,
        radius_km: float = SEARCH_RADIUS_KM,
    ):
        self._bands = price_bands or PriceBandConfig()
        self._radius_km = radius_km

    def normalize(
        self,
        subject: PropertyRecord,
        hint: Optional[LocationHint] = None,
    ) -> SearchCriteria:
        """
        Normalize a subject property into search criteria.

        Args:
            subject: The property being analysed
            hint: Optional resolved location; its coordinates are used only
                when the subject has none

        Returns:
            Validated SearchCriteria

        Raises:
            CriteriaValidationError: If location or property signals are missing
        """
        criteria = self.build(subject, hint)
        errors = self.validate(criteria)
        if errors:
            logger.warning(
                "Rejected criteria for property %s: %s",
                subject.reference or subject.id,
                "; ".join(errors),
            )
            raise CriteriaValidationError(errors)
        return criteria

    def build(
        self,
        subject: PropertyRecord,
        hint: Optional[LocationHint] = None,
    ) -> SearchCriteria:
        """Build criteria without validating them."""
        latitude, longitude = subject.latitude, subject.longitude
        if not subject.has_coordinates and hint is not None and hint.has_coordinates:
            logger.info(
                "Using resolved location coordinates for %s (property has none)",
                subject.reference or subject.id,
            )
            latitude, longitude = hint.latitude, hint.longitude

        urbanization = subject.urbanization or (hint.urbanization if hint else None)
        suburb = subject.suburb or (hint.suburb if hint else None)
        city = subject.city or (hint.city if hint else None)

        listing_type = detect_listing_type(subject)
        price = authoritative_price(subject, listing_type)
        min_price, max_price = price_band(price, listing_type, self._bands)

        logger.debug(
            "Criteria for %s: %s listing, %s=%s, band %s-%s",
            subject.reference or subject.id,
            listing_type.value,
            listing_type.price_field,
            price,
            min_price,
            max_price,
        )

        return SearchCriteria(
            listing_type=listing_type,
            price_field=listing_type.price_field,
            property_type=subject.property_type,
            latitude=latitude,
            longitude=longitude,
            urbanization=urbanization,
            suburb=suburb,
            city=city,
            price=price,
            min_price=min_price,
            max_price=max_price,
            build_area=subject.build_area,
            bedrooms=subject.bedrooms,
            bathrooms=subject.bathrooms,
            condition=subject.condition,
            features=tuple(subject.features),
            reference=subject.reference,
            radius_km=self._radius_km,
        )

    @staticmethod
    def validate(criteria: SearchCriteria) -> List[str]:
        """
        Check criteria against the minimum requirements.

        Requires (coordinates OR an area name) AND (property type AND
        (build area OR bedrooms OR price)).

        Returns:
            List of failed requirements (empty if valid)
        """
        errors: List[str] = []

        if not criteria.has_coordinates and not criteria.has_location:
            errors.append("coordinates or urbanization/suburb/city is required")

        if not criteria.property_type:
            errors.append("property_type is required")

        if not (criteria.build_area or criteria.bedrooms or criteria.price):
            errors.append("one of build_area, bedrooms or price is required")

        return errors

    def is_valid(self, criteria: SearchCriteria) -> bool:
        return not self.validate(criteria)
