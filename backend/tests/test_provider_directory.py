import os
import sqlite3
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from conftest import BABYSITTING, HOME_SUPPORT
from marketplace.models import (
    ProviderAvailability,
    ProviderLocation,
    ProviderPricing,
    ProviderProfileRequest,
)
from marketplace.services.errors import (
    MarketplaceConflictError,
    MarketplaceNotFoundError,
    MarketplaceValidationError,
)
from marketplace.services.events import PROVIDER_REJECTED, PROVIDER_VERIFIED


def _request(user_id, **overrides):
    payload = {
        "user_id": user_id,
        "bio": "Experienced sitter",
        "languages": ["fr", "DE", "fr"],
        "category_ids": [BABYSITTING],
        "locations": [ProviderLocation(postal_code="2800", city="Delémont", canton=None)],
    }
    payload.update(overrides)
    return ProviderProfileRequest(**payload)


def test_categories_are_seeded_once_in_display_order(market):
    assert market.catalog.seed_defaults() == 0
    categories = market.catalog.list_categories()
    assert categories[0].slug == "babysitting"
    assert [c.sort_order for c in categories] == sorted(c.sort_order for c in categories)
    assert market.catalog.get_category_by_slug("tax-admin").id == "cat_tax_admin"
    assert market.catalog.find_category("cat_missing") is None
    with pytest.raises(MarketplaceNotFoundError):
        market.catalog.get_category_by_slug("gardening")


def test_add_category_is_listed_by_sort_order(market):
    market.catalog.add_category(slug="gardening", name="Gardening", sort_order=-1)
    assert market.catalog.list_categories()[0].slug == "gardening"


def test_duplicate_email_is_a_conflict(market):
    market.identity.create_user(email="Same@Test.ch", name="First")
    with pytest.raises(MarketplaceConflictError):
        market.identity.create_user(email="same@test.ch", name="Second")
    with pytest.raises(MarketplaceValidationError):
        market.identity.create_user(email="no-at-sign", name="Broken")


def test_promote_to_provider_is_idempotent(market):
    user = market.user("Future Provider")
    assert market.identity.promote_to_provider(user.id).role == "PROVIDER"
    assert market.identity.promote_to_provider(user.id).role == "PROVIDER"
    admin = market.user("Admin", role="ADMIN")
    with pytest.raises(MarketplaceConflictError):
        market.identity.promote_to_provider(admin.id)
    with pytest.raises(MarketplaceNotFoundError):
        market.identity.promote_to_provider("usr_missing")


def test_failed_profile_write_leaves_user_a_client(market):
    user = market.user("Half Saved")
    with market.db.transaction() as conn:
        conn.execute(
            """
            CREATE TRIGGER reject_profiles BEFORE INSERT ON provider_profiles
            BEGIN SELECT RAISE(ABORT, 'profile storage unavailable'); END
            """
        )

    with pytest.raises(sqlite3.DatabaseError):
        market.directory.save_profile(user.id, _request(user.id))

    assert market.identity.get_user(user.id).role == "CLIENT"
    assert market.directory.find_profile_for_user(user.id) is None


def test_first_profile_save_promotes_client(market):
    user = market.user("Client Turned Provider")

    profile = market.directory.save_profile(user.id, _request(user.id))

    assert market.identity.get_user(user.id).role == "PROVIDER"
    assert profile.user_id == user.id
    assert profile.languages == ["fr", "de"]
    assert profile.locations[0].canton == "JU"
    assert profile.is_verified is False
    assert profile.average_rating is None
    assert [c.id for c in profile.categories] == [BABYSITTING]


def test_profile_update_replaces_children_and_keeps_omitted_ones(market):
    user = market.user("Updater")
    market.directory.save_profile(
        user.id,
        _request(
            user.id,
            availabilities=[ProviderAvailability(weekday=1, time_slot="morning")],
            pricings=[ProviderPricing(category_id=BABYSITTING, pricing_type="HOURLY", hourly_rate=30)],
        ),
    )

    updated = market.directory.save_profile(
        user.id,
        _request(
            user.id,
            category_ids=[HOME_SUPPORT],
            locations=[ProviderLocation(postal_code="2900", city="Porrentruy")],
        ),
    )

    assert [c.id for c in updated.categories] == [HOME_SUPPORT]
    assert [loc.city for loc in updated.locations] == ["Porrentruy"]
    assert [(a.weekday, a.time_slot) for a in updated.availabilities] == [(1, "MORNING")]
    assert updated.pricings[0].hourly_rate == 30

    cleared = market.directory.save_profile(user.id, _request(user.id, availabilities=[], pricings=[]))
    assert cleared.availabilities == []
    assert cleared.pricings == []
    assert len(market.directory.list_profiles()) == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"category_ids": []},
        {"locations": []},
        {"languages": []},
        {"availabilities": [ProviderAvailability(weekday=7, time_slot="MORNING")]},
        {"availabilities": [ProviderAvailability(weekday=1, time_slot="NIGHT")]},
        {"pricings": [ProviderPricing(category_id=BABYSITTING, pricing_type="HOURLY")]},
        {"pricings": [ProviderPricing(category_id=BABYSITTING, pricing_type="FIXED", hourly_rate=20)]},
        {"pricings": [ProviderPricing(category_id=BABYSITTING, pricing_type="DAILY", hourly_rate=20)]},
    ],
)
def test_invalid_profiles_are_rejected(market, overrides):
    user = market.user("Invalid")
    with pytest.raises(MarketplaceValidationError):
        market.directory.save_profile(user.id, _request(user.id, **overrides))
    assert market.identity.get_user(user.id).role == "CLIENT"


def test_unknown_category_in_profile_is_not_found(market):
    user = market.user("Unknown Category")
    with pytest.raises(MarketplaceNotFoundError):
        market.directory.save_profile(user.id, _request(user.id, category_ids=["cat_missing"]))


def test_verification_toggles_and_emits_events(market):
    profile = market.provider("To Verify")

    verified = market.directory.set_verification(profile.id, True, "Identity verified")
    rejected = market.directory.set_verification(profile.id, False, "Document expired")

    assert verified.is_verified is True
    assert rejected.is_verified is False
    assert rejected.verification_notes == "Document expired"
    assert market.sink.kinds()[-2:] == [PROVIDER_VERIFIED, PROVIDER_REJECTED]
    with pytest.raises(MarketplaceNotFoundError):
        market.directory.set_verification("pp_missing", True)


def test_rating_summary_reflects_submitted_ratings(market):
    profile = market.provider("Rated")
    assert market.directory.rating_summary(profile.user_id) == (None, 0)

    market.rate(profile.user_id, 4)
    market.rate(profile.user_id, 5)

    average, count = market.directory.rating_summary(profile.user_id)
    assert average == pytest.approx(4.5)
    assert count == 2
    assert market.directory.get_profile(profile.id).rating_count == 2
