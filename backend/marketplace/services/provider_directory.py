import json
import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from marketplace.models import (
    Category,
    ProviderAvailability,
    ProviderLocation,
    ProviderPricing,
    ProviderProfile,
    ProviderProfileRequest,
)
from marketplace.services.catalog_store import CategoryStore, category_store
from marketplace.services.database import Database, database, new_id, utcnow_iso
from marketplace.services.errors import MarketplaceNotFoundError, MarketplaceValidationError
from marketplace.services.events import (
    PROVIDER_REJECTED,
    PROVIDER_VERIFIED,
    EventSink,
    MarketplaceEvent,
    publish_quietly,
)
from marketplace.services.identity_store import IdentityStore, identity_store
from marketplace.services.notifier import marketplace_notifier

logger = logging.getLogger(__name__)

TIME_SLOTS = ("MORNING", "AFTERNOON", "EVENING")
PRICING_TYPES = {"HOURLY", "FIXED"}
DEFAULT_CANTON = "JU"
DEFAULT_CURRENCY = "CHF"


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class ProviderDirectory:
    def __init__(
        self,
        db: Database,
        identity: IdentityStore,
        catalog: CategoryStore,
        events: Optional[EventSink] = None,
    ):
        self.db = db
        self.identity = identity
        self.catalog = catalog
        self.events = events

    def save_profile(self, user_id: str, request: ProviderProfileRequest) -> ProviderProfile:
        self.identity.get_user(user_id)
        languages = self._clean_languages(request.languages)
        category_ids = self._clean_category_ids(request.category_ids)
        locations = self._clean_locations(request.locations)
        availabilities = self._clean_availabilities(request.availabilities)
        pricings = self._clean_pricings(request.pricings)

        for category_id in {*category_ids, *(p.category_id for p in pricings or [])}:
            if not self.catalog.find_category(category_id):
                raise MarketplaceNotFoundError(f"Category not found: {category_id}")

        now = utcnow_iso()
        with self.db.transaction() as conn:
            self.identity.promote_within(conn, user_id)
            row = conn.execute("SELECT id FROM provider_profiles WHERE user_id = ?", (user_id,)).fetchone()
            if row:
                profile_id = str(row["id"])
                conn.execute(
                    """
                    UPDATE provider_profiles
                    SET bio = ?, photo_url = ?, languages_json = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (request.bio.strip(), request.photo_url, json.dumps(languages), now, profile_id),
                )
            else:
                profile_id = new_id("pp")
                conn.execute(
                    """
                    INSERT INTO provider_profiles (
                        id, user_id, bio, photo_url, languages_json, is_verified, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (profile_id, user_id, request.bio.strip(), request.photo_url, json.dumps(languages), now, now),
                )

            conn.execute("DELETE FROM provider_categories WHERE profile_id = ?", (profile_id,))
            conn.executemany(
                "INSERT INTO provider_categories (profile_id, category_id) VALUES (?, ?)",
                [(profile_id, category_id) for category_id in category_ids],
            )

            conn.execute("DELETE FROM provider_locations WHERE profile_id = ?", (profile_id,))
            conn.executemany(
                "INSERT INTO provider_locations (profile_id, postal_code, city, canton) VALUES (?, ?, ?, ?)",
                [(profile_id, loc.postal_code, loc.city, loc.canton) for loc in locations],
            )

            if availabilities is not None:
                conn.execute("DELETE FROM provider_availabilities WHERE profile_id = ?", (profile_id,))
                conn.executemany(
                    "INSERT INTO provider_availabilities (profile_id, weekday, time_slot) VALUES (?, ?, ?)",
                    [(profile_id, a.weekday, a.time_slot) for a in availabilities],
                )

            if pricings is not None:
                conn.execute("DELETE FROM provider_pricings WHERE profile_id = ?", (profile_id,))
                conn.executemany(
                    """
                    INSERT INTO provider_pricings (
                        profile_id, category_id, pricing_type, hourly_rate, fixed_price, min_hours, currency
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            profile_id,
                            p.category_id,
                            p.pricing_type,
                            p.hourly_rate,
                            p.fixed_price,
                            p.min_hours,
                            p.currency,
                        )
                        for p in pricings
                    ],
                )

        logger.info("Saved provider profile %s for user %s", profile_id, user_id)
        return self.get_profile(profile_id)

    def get_profile(self, profile_id: str) -> ProviderProfile:
        profiles = self._load_profiles("pp.id = ?", (profile_id,))
        if not profiles:
            raise MarketplaceNotFoundError("Provider profile not found")
        return profiles[0]

    def find_profile_for_user(self, user_id: str) -> Optional[ProviderProfile]:
        profiles = self._load_profiles("pp.user_id = ?", (user_id,))
        return profiles[0] if profiles else None

    def get_profile_for_user(self, user_id: str) -> ProviderProfile:
        profile = self.find_profile_for_user(user_id)
        if not profile:
            raise MarketplaceNotFoundError("Provider profile not found")
        return profile

    def list_profiles(self) -> List[ProviderProfile]:
        profiles = self._load_profiles("1 = 1", ())
        profiles.sort(key=lambda p: p.created_at, reverse=True)
        return profiles

    def list_profiles_serving(self, category_id: str) -> List[ProviderProfile]:
        return self._load_profiles(
            "pp.id IN (SELECT profile_id FROM provider_categories WHERE category_id = ?)",
            (category_id,),
        )

    def set_verification(self, profile_id: str, verified: bool, notes: Optional[str] = None) -> ProviderProfile:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE provider_profiles SET is_verified = ?, verification_notes = ?, updated_at = ? WHERE id = ?",
                (1 if verified else 0, notes, utcnow_iso(), profile_id),
            )
            if cursor.rowcount == 0:
                raise MarketplaceNotFoundError("Provider not found")
        profile = self.get_profile(profile_id)
        logger.info("Provider profile %s verification set to %s", profile_id, verified)
        publish_quietly(
            self.events,
            MarketplaceEvent(
                kind=PROVIDER_VERIFIED if verified else PROVIDER_REJECTED,
                profile=profile,
                reason=notes,
            ),
            logger,
        )
        return profile

    def rating_summary(self, provider_user_id: str) -> Tuple[Optional[float], int]:
        return self.rating_summaries([provider_user_id]).get(provider_user_id, (None, 0))

    def rating_summaries(self, provider_user_ids: Iterable[str]) -> Dict[str, Tuple[Optional[float], int]]:
        ids = list(dict.fromkeys(provider_user_ids))
        if not ids:
            return {}
        with self.db.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT provider_id, AVG(score) AS average, COUNT(*) AS total
                FROM ratings
                WHERE provider_id IN ({_placeholders(len(ids))})
                GROUP BY provider_id
                """,
                ids,
            ).fetchall()
        return {str(row["provider_id"]): (float(row["average"]), int(row["total"])) for row in rows}

    def _load_profiles(self, where: str, params: Sequence) -> List[ProviderProfile]:
        with self.db.transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT pp.*, u.name AS user_name, u.email AS user_email, u.phone AS user_phone
                FROM provider_profiles pp
                JOIN users u ON u.id = pp.user_id
                WHERE {where}
                ORDER BY pp.created_at
                """,
                tuple(params),
            ).fetchall()
            if not rows:
                return []
            profile_ids = [str(row["id"]) for row in rows]
            categories = self._load_categories(conn, profile_ids)
            locations = self._load_locations(conn, profile_ids)
            availabilities = self._load_availabilities(conn, profile_ids)
            pricings = self._load_pricings(conn, profile_ids)

        ratings = self.rating_summaries(str(row["user_id"]) for row in rows)
        profiles: List[ProviderProfile] = []
        for row in rows:
            profile_id = str(row["id"])
            average, count = ratings.get(str(row["user_id"]), (None, 0))
            profiles.append(
                ProviderProfile(
                    id=profile_id,
                    user_id=row["user_id"],
                    name=row["user_name"],
                    email=row["user_email"],
                    phone=row["user_phone"],
                    bio=row["bio"] or "",
                    photo_url=row["photo_url"],
                    languages=json.loads(row["languages_json"] or "[]"),
                    is_verified=bool(row["is_verified"]),
                    verification_notes=row["verification_notes"],
                    response_time_minutes=row["response_time_minutes"],
                    average_rating=average,
                    rating_count=count,
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    categories=categories.get(profile_id, []),
                    locations=locations.get(profile_id, []),
                    availabilities=availabilities.get(profile_id, []),
                    pricings=pricings.get(profile_id, []),
                )
            )
        return profiles

    def _load_categories(self, conn: sqlite3.Connection, profile_ids: List[str]) -> Dict[str, List[Category]]:
        rows = conn.execute(
            f"""
            SELECT pc.profile_id, c.*
            FROM provider_categories pc
            JOIN categories c ON c.id = pc.category_id
            WHERE pc.profile_id IN ({_placeholders(len(profile_ids))})
            ORDER BY c.sort_order, c.name
            """,
            profile_ids,
        ).fetchall()
        result: Dict[str, List[Category]] = {}
        for row in rows:
            result.setdefault(str(row["profile_id"]), []).append(
                Category(
                    id=row["id"],
                    slug=row["slug"],
                    name=row["name"],
                    description=row["description"],
                    icon=row["icon"],
                    sort_order=int(row["sort_order"]),
                )
            )
        return result

    def _load_locations(self, conn: sqlite3.Connection, profile_ids: List[str]) -> Dict[str, List[ProviderLocation]]:
        # Insertion order is kept: the first registered location is shown on match cards.
        rows = conn.execute(
            f"""
            SELECT profile_id, postal_code, city, canton
            FROM provider_locations
            WHERE profile_id IN ({_placeholders(len(profile_ids))})
            ORDER BY id
            """,
            profile_ids,
        ).fetchall()
        result: Dict[str, List[ProviderLocation]] = {}
        for row in rows:
            result.setdefault(str(row["profile_id"]), []).append(
                ProviderLocation(postal_code=row["postal_code"], city=row["city"], canton=row["canton"])
            )
        return result

    def _load_availabilities(
        self, conn: sqlite3.Connection, profile_ids: List[str]
    ) -> Dict[str, List[ProviderAvailability]]:
        rows = conn.execute(
            f"""
            SELECT profile_id, weekday, time_slot
            FROM provider_availabilities
            WHERE profile_id IN ({_placeholders(len(profile_ids))})
            ORDER BY weekday
            """,
            profile_ids,
        ).fetchall()
        result: Dict[str, List[ProviderAvailability]] = {}
        for row in rows:
            result.setdefault(str(row["profile_id"]), []).append(
                ProviderAvailability(weekday=int(row["weekday"]), time_slot=row["time_slot"])
            )
        for entries in result.values():
            entries.sort(key=lambda a: (a.weekday, TIME_SLOTS.index(a.time_slot)))
        return result

    def _load_pricings(self, conn: sqlite3.Connection, profile_ids: List[str]) -> Dict[str, List[ProviderPricing]]:
        rows = conn.execute(
            f"""
            SELECT pr.*, c.name AS category_name
            FROM provider_pricings pr
            JOIN categories c ON c.id = pr.category_id
            WHERE pr.profile_id IN ({_placeholders(len(profile_ids))})
            ORDER BY c.sort_order
            """,
            profile_ids,
        ).fetchall()
        result: Dict[str, List[ProviderPricing]] = {}
        for row in rows:
            result.setdefault(str(row["profile_id"]), []).append(
                ProviderPricing(
                    category_id=row["category_id"],
                    category_name=row["category_name"],
                    pricing_type=row["pricing_type"],
                    hourly_rate=row["hourly_rate"],
                    fixed_price=row["fixed_price"],
                    min_hours=row["min_hours"],
                    currency=row["currency"],
                )
            )
        return result

    def _clean_languages(self, languages: List[str]) -> List[str]:
        cleaned = list(dict.fromkeys(code.strip().lower() for code in languages if code and code.strip()))
        if not cleaned:
            raise MarketplaceValidationError("At least one language is required")
        return cleaned

    def _clean_category_ids(self, category_ids: List[str]) -> List[str]:
        cleaned = list(dict.fromkeys(value.strip() for value in category_ids if value and value.strip()))
        if not cleaned:
            raise MarketplaceValidationError("At least one category is required")
        return cleaned

    def _clean_locations(self, locations: List[ProviderLocation]) -> List[ProviderLocation]:
        cleaned: List[ProviderLocation] = []
        seen = set()
        for loc in locations:
            postal_code = (loc.postal_code or "").strip()
            city = (loc.city or "").strip()
            if not postal_code or not city:
                raise MarketplaceValidationError("Each location needs a postal code and a city")
            canton = (loc.canton or "").strip().upper() or DEFAULT_CANTON
            key = (postal_code, city.casefold(), canton)
            if key in seen:
                continue
            seen.add(key)
            cleaned.append(ProviderLocation(postal_code=postal_code, city=city, canton=canton))
        if not cleaned:
            raise MarketplaceValidationError("At least one location is required")
        return cleaned

    def _clean_availabilities(
        self, availabilities: Optional[List[ProviderAvailability]]
    ) -> Optional[List[ProviderAvailability]]:
        if availabilities is None:
            return None
        cleaned: List[ProviderAvailability] = []
        seen = set()
        for entry in availabilities:
            slot = (entry.time_slot or "").strip().upper()
            if not 0 <= entry.weekday <= 6:
                raise MarketplaceValidationError("weekday must be between 0 (Sunday) and 6 (Saturday)")
            if slot not in TIME_SLOTS:
                raise MarketplaceValidationError("Invalid time_slot. Allowed: MORNING, AFTERNOON, EVENING")
            if (entry.weekday, slot) in seen:
                continue
            seen.add((entry.weekday, slot))
            cleaned.append(ProviderAvailability(weekday=entry.weekday, time_slot=slot))
        return cleaned

    def _clean_pricings(self, pricings: Optional[List[ProviderPricing]]) -> Optional[List[ProviderPricing]]:
        if pricings is None:
            return None
        cleaned: Dict[str, ProviderPricing] = {}
        for entry in pricings:
            pricing_type = (entry.pricing_type or "").strip().upper()
            if pricing_type not in PRICING_TYPES:
                raise MarketplaceValidationError("Invalid pricing_type. Allowed: HOURLY, FIXED")
            if pricing_type == "HOURLY" and (entry.hourly_rate is None or entry.hourly_rate <= 0):
                raise MarketplaceValidationError("Hourly pricing needs a positive hourly_rate")
            if pricing_type == "FIXED" and (entry.fixed_price is None or entry.fixed_price <= 0):
                raise MarketplaceValidationError("Fixed pricing needs a positive fixed_price")
            if entry.min_hours is not None and entry.min_hours < 0:
                raise MarketplaceValidationError("min_hours cannot be negative")
            if entry.category_id in cleaned:
                raise MarketplaceValidationError(f"Duplicate pricing for category {entry.category_id}")
            cleaned[entry.category_id] = ProviderPricing(
                category_id=entry.category_id,
                pricing_type=pricing_type,
                hourly_rate=entry.hourly_rate if pricing_type == "HOURLY" else None,
                fixed_price=entry.fixed_price if pricing_type == "FIXED" else None,
                min_hours=entry.min_hours if pricing_type == "HOURLY" else None,
                currency=(entry.currency or DEFAULT_CURRENCY).strip().upper(),
            )
        return list(cleaned.values())


provider_directory = ProviderDirectory(database, identity_store, category_store, marketplace_notifier)
