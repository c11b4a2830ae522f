import os
import sys
import tempfile
from typing import List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Store singletons open their sqlite file at import time.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["MARKETPLACE_DB_PATH"] = os.path.join(_TEST_DATA_DIR, "marketplace.sqlite3")
os.environ["MARKETPLACE_SEED_DEMO"] = "true"
os.environ.pop("FIREBASE_CREDENTIALS_PATH", None)
os.environ.pop("AUTH_REQUIRED", None)

from marketplace.models import (  # noqa: E402
    BookingCreateRequest,
    ProviderAvailability,
    ProviderLocation,
    ProviderPricing,
    ProviderProfileRequest,
    User,
)
from marketplace.services.booking_lifecycle import BookingLifecycle  # noqa: E402
from marketplace.services.catalog_store import CategoryStore  # noqa: E402
from marketplace.services.database import Database  # noqa: E402
from marketplace.services.events import MarketplaceEvent  # noqa: E402
from marketplace.services.identity_store import IdentityStore  # noqa: E402
from marketplace.services.matching import MatchingEngine  # noqa: E402
from marketplace.services.message_store import MessageStore  # noqa: E402
from marketplace.services.provider_directory import ProviderDirectory  # noqa: E402
from marketplace.services.rating_store import RatingStore  # noqa: E402
from marketplace.services.report_store import ReportStore  # noqa: E402

BABYSITTING = "cat_babysitting"
HOME_SUPPORT = "cat_home_support"


class RecordingSink:
    def __init__(self):
        self.events: List[MarketplaceEvent] = []

    def publish(self, event: MarketplaceEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]


class Marketplace:
    """Stores wired against one throwaway sqlite file, plus small builders."""

    def __init__(self, db_path: str):
        self.sink = RecordingSink()
        self.db = Database(db_path=db_path)
        self.catalog = CategoryStore(self.db)
        self.catalog.seed_defaults()
        self.identity = IdentityStore(self.db)
        self.directory = ProviderDirectory(self.db, self.identity, self.catalog, self.sink)
        self.engine = MatchingEngine(self.directory, "Europe/Zurich")
        self.lifecycle = BookingLifecycle(self.db, self.identity, self.catalog, self.sink)
        self.messages = MessageStore(self.db, self.lifecycle, self.sink)
        self.ratings = RatingStore(self.db, self.lifecycle, self.sink)
        self.reports = ReportStore(self.db, self.identity)
        self._counter = 0

    def user(self, name: str, role: str = "CLIENT") -> User:
        self._counter += 1
        slug = name.lower().replace(" ", ".")
        return self.identity.create_user(email=f"{slug}.{self._counter}@test.ch", name=name, role=role)

    def provider(
        self,
        name: str,
        category_ids: Optional[List[str]] = None,
        locations: Optional[List[ProviderLocation]] = None,
        availabilities: Optional[List[ProviderAvailability]] = None,
        pricings: Optional[List[ProviderPricing]] = None,
        verified: bool = False,
    ):
        user = self.user(name)
        profile = self.directory.save_profile(
            user.id,
            ProviderProfileRequest(
                user_id=user.id,
                bio=f"{name} bio",
                languages=["fr"],
                category_ids=category_ids or [BABYSITTING],
                locations=locations or [ProviderLocation(postal_code="2800", city="Delémont")],
                availabilities=availabilities,
                pricings=pricings,
            ),
        )
        if verified:
            profile = self.directory.set_verification(profile.id, True, "Identity verified")
        return profile

    def booking(self, client_id: str, provider_id: Optional[str] = None, category_id: str = BABYSITTING):
        return self.lifecycle.create_booking(
            BookingCreateRequest(
                client_id=client_id,
                category_id=category_id,
                provider_id=provider_id,
                description="Two children, evening",
                postal_code="2800",
                city="Delémont",
            )
        )

    def completed_booking(self, client_id: str, provider_id: str):
        booking = self.booking(client_id, provider_id)
        self.lifecycle.accept_booking(booking.id, provider_id)
        return self.lifecycle.complete_booking(booking.id, provider_id)

    def rate(self, provider_user_id: str, score: int) -> None:
        rater = self.user("Rater")
        booking = self.completed_booking(rater.id, provider_user_id)
        self.ratings.submit_rating(booking.id, rater.id, score)

    def set_profile_created_at(self, profile_id: str, created_at: str) -> None:
        with self.db.transaction() as conn:
            conn.execute("UPDATE provider_profiles SET created_at = ? WHERE id = ?", (created_at, profile_id))


@pytest.fixture
def market(tmp_path) -> Marketplace:
    return Marketplace(str(tmp_path / "marketplace.sqlite3"))
