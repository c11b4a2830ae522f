import logging
from dataclasses import dataclass
from typing import List, Optional

from marketplace.models import (
    ProviderAvailability,
    ProviderLocation,
    ProviderPricing,
    ProviderProfileRequest,
)
from marketplace.services.catalog_store import CategoryStore
from marketplace.services.database import Database
from marketplace.services.identity_store import IdentityStore
from marketplace.services.provider_directory import TIME_SLOTS, ProviderDirectory

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@servantin.ch"
CLIENT_EMAIL = "client@test.ch"

# Monday (1) to Friday (5), every slot.
WORKWEEK_AVAILABILITY = [
    ProviderAvailability(weekday=day, time_slot=slot) for day in range(1, 6) for slot in TIME_SLOTS
]
DEFAULT_FIXED_PRICE = 150.0


@dataclass(frozen=True)
class DemoProvider:
    email: str
    name: str
    phone: str
    bio: str
    languages: List[str]
    category_slug: str
    locations: List[ProviderLocation]
    hourly_rate: Optional[float]
    min_hours: Optional[float]
    verified: bool


DEMO_PROVIDERS = [
    DemoProvider(
        email="marie.bernard@test.ch",
        name="Marie Bernard",
        phone="+41 79 234 56 78",
        bio="Experienced childcare professional with more than ten years of babysitting, "
        "trained in early childhood education.",
        languages=["fr", "de"],
        category_slug="babysitting",
        locations=[
            ProviderLocation(postal_code="2800", city="Delémont", canton="JU"),
            ProviderLocation(postal_code="2830", city="Courrendlin", canton="JU"),
        ],
        hourly_rate=35.0,
        min_hours=2.0,
        verified=True,
    ),
    DemoProvider(
        email="pierre.muller@test.ch",
        name="Pierre Müller",
        phone="+41 79 345 67 89",
        bio="Handyman with 15 years of experience: furniture assembly, small repairs and painting.",
        languages=["fr", "de", "en"],
        category_slug="home-support",
        locations=[
            ProviderLocation(postal_code="2800", city="Delémont", canton="JU"),
            ProviderLocation(postal_code="2900", city="Porrentruy", canton="JU"),
        ],
        hourly_rate=50.0,
        min_hours=1.0,
        verified=True,
    ),
    DemoProvider(
        email="sophie.martin@test.ch",
        name="Sophie Martin",
        phone="+41 79 456 78 90",
        bio="Certified care assistant specialised in supporting elderly people at home.",
        languages=["fr"],
        category_slug="elderly-support",
        locations=[ProviderLocation(postal_code="2800", city="Delémont", canton="JU")],
        hourly_rate=40.0,
        min_hours=3.0,
        verified=True,
    ),
    DemoProvider(
        email="lucas.weber@test.ch",
        name="Lucas Weber",
        phone="+41 79 567 89 01",
        bio="Independent accountant helping households and small businesses with tax returns and paperwork.",
        languages=["fr", "de", "en"],
        category_slug="tax-admin",
        locations=[
            ProviderLocation(postal_code="2800", city="Delémont", canton="JU"),
            ProviderLocation(postal_code="2900", city="Porrentruy", canton="JU"),
            ProviderLocation(postal_code="2720", city="Tramelan", canton="BE"),
        ],
        hourly_rate=80.0,
        min_hours=1.0,
        verified=False,
    ),
    DemoProvider(
        email="claire.favre@test.ch",
        name="Claire Favre",
        phone="+41 79 678 90 12",
        bio="Entrepreneurship coach: company creation, business plans and growth strategy.",
        languages=["fr", "en"],
        category_slug="entrepreneur-startup",
        locations=[ProviderLocation(postal_code="2800", city="Delémont", canton="JU")],
        hourly_rate=None,
        min_hours=None,
        verified=False,
    ),
]


@dataclass
class SeedSummary:
    categories_created: int = 0
    users_created: int = 0
    providers_created: int = 0


def seed_demo_data(db: Database) -> SeedSummary:
    """Seed the catalog and the demo accounts. Existing accounts are left alone."""
    catalog = CategoryStore(db)
    identity = IdentityStore(db)
    # No event sink: seeding never produces inbox notifications.
    directory = ProviderDirectory(db, identity, catalog)

    summary = SeedSummary(categories_created=catalog.seed_defaults())

    if not identity.find_by_email(ADMIN_EMAIL):
        identity.create_user(email=ADMIN_EMAIL, name="Platform Admin", role="ADMIN")
        summary.users_created += 1
    if not identity.find_by_email(CLIENT_EMAIL):
        identity.create_user(email=CLIENT_EMAIL, name="Jean Dupont", phone="+41 79 123 45 67")
        summary.users_created += 1

    for demo in DEMO_PROVIDERS:
        if identity.find_by_email(demo.email):
            continue
        user = identity.create_user(email=demo.email, name=demo.name, phone=demo.phone, role="PROVIDER")
        summary.users_created += 1
        category = catalog.get_category_by_slug(demo.category_slug)
        if demo.hourly_rate is not None:
            pricing = ProviderPricing(
                category_id=category.id,
                pricing_type="HOURLY",
                hourly_rate=demo.hourly_rate,
                min_hours=demo.min_hours,
            )
        else:
            pricing = ProviderPricing(category_id=category.id, pricing_type="FIXED", fixed_price=DEFAULT_FIXED_PRICE)
        profile = directory.save_profile(
            user.id,
            ProviderProfileRequest(
                user_id=user.id,
                bio=demo.bio,
                languages=demo.languages,
                category_ids=[category.id],
                locations=demo.locations,
                availabilities=WORKWEEK_AVAILABILITY,
                pricings=[pricing],
            ),
        )
        if demo.verified:
            directory.set_verification(profile.id, True, "Identity verified")
        summary.providers_created += 1

    logger.info(
        "Demo seed finished: %d categories, %d users, %d providers created",
        summary.categories_created,
        summary.users_created,
        summary.providers_created,
    )
    return summary
