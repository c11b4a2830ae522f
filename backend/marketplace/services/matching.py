"""Provider matching for a client's service request.

Candidates are providers serving the requested category in a location
that matches the postal code exactly or the city case-insensitively.
When a preferred instant is given, only providers with a recurring
availability entry for that weekday and time slot survive. Results are
ranked verified first, then by average rating (unrated counts as 0.0),
then by seniority.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from marketplace import config
from marketplace.models import ProviderMatch, ProviderProfile
from marketplace.services.errors import MarketplaceValidationError
from marketplace.services.provider_directory import ProviderDirectory, provider_directory

logger = logging.getLogger(__name__)

MORNING_START_HOUR = 8
AFTERNOON_START_HOUR = 12
EVENING_START_HOUR = 17
EVENING_END_HOUR = 21


def _local(instant: datetime, zone: ZoneInfo) -> datetime:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone)


def weekday_for(instant: datetime, zone: Optional[ZoneInfo] = None) -> int:
    """Local weekday with 0 = Sunday through 6 = Saturday."""
    local = _local(instant, zone or ZoneInfo(config.MATCH_TIMEZONE))
    return local.isoweekday() % 7


def time_slot_for(instant: datetime, zone: Optional[ZoneInfo] = None) -> str:
    hour = _local(instant, zone or ZoneInfo(config.MATCH_TIMEZONE)).hour
    if MORNING_START_HOUR <= hour < AFTERNOON_START_HOUR:
        return "MORNING"
    if AFTERNOON_START_HOUR <= hour < EVENING_START_HOUR:
        return "AFTERNOON"
    # [17:00, 21:00) and every hour outside the bookable day fall back to EVENING.
    return "EVENING"


class MatchingEngine:
    def __init__(self, directory: ProviderDirectory, timezone_name: Optional[str] = None):
        self.directory = directory
        self.zone = ZoneInfo(timezone_name or config.MATCH_TIMEZONE)

    def match_providers(
        self,
        category_id: str,
        postal_code: Optional[str] = None,
        city: Optional[str] = None,
        preferred_time: Optional[datetime] = None,
    ) -> List[ProviderMatch]:
        category_id = (category_id or "").strip()
        postal_code = (postal_code or "").strip()
        city = (city or "").strip()
        if not category_id:
            raise MarketplaceValidationError("category_id is required")
        if not postal_code and not city:
            raise MarketplaceValidationError("A postal code or a city is required")

        logger.info("Matching providers for category=%s, postal_code=%s, city=%s", category_id, postal_code, city)

        candidates = [
            profile
            for profile in self.directory.list_profiles_serving(category_id)
            if self._serves_location(profile, postal_code, city)
        ]

        if preferred_time is not None:
            weekday = weekday_for(preferred_time, self.zone)
            slot = time_slot_for(preferred_time, self.zone)
            candidates = [profile for profile in candidates if self._is_available(profile, weekday, slot)]

        candidates.sort(
            key=lambda p: (
                not p.is_verified,
                -(p.average_rating or 0.0),
                p.created_at,
            )
        )
        return [self._to_match(profile, category_id) for profile in candidates]

    def _serves_location(self, profile: ProviderProfile, postal_code: str, city: str) -> bool:
        wanted_city = city.casefold()
        for location in profile.locations:
            if postal_code and location.postal_code == postal_code:
                return True
            if wanted_city and location.city.casefold() == wanted_city:
                return True
        return False

    def _is_available(self, profile: ProviderProfile, weekday: int, slot: str) -> bool:
        return any(entry.weekday == weekday and entry.time_slot == slot for entry in profile.availabilities)

    def _to_match(self, profile: ProviderProfile, category_id: str) -> ProviderMatch:
        pricing = next((p for p in profile.pricings if p.category_id == category_id), None)
        return ProviderMatch(
            id=profile.id,
            user_id=profile.user_id,
            name=profile.name,
            photo_url=profile.photo_url,
            bio=profile.bio,
            languages=profile.languages,
            is_verified=profile.is_verified,
            average_rating=profile.average_rating,
            rating_count=profile.rating_count,
            city=profile.locations[0].city if profile.locations else None,
            pricing_type=pricing.pricing_type if pricing else None,
            hourly_rate=pricing.hourly_rate if pricing else None,
            fixed_price=pricing.fixed_price if pricing else None,
            min_hours=pricing.min_hours if pricing else None,
            currency=pricing.currency if pricing else None,
            response_time_minutes=profile.response_time_minutes,
        )


matching_engine = MatchingEngine(provider_directory)
