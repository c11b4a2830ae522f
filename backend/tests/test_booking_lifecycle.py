import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from conftest import BABYSITTING
from marketplace.models import BookingCreateRequest
from marketplace.services.booking_lifecycle import BookingLifecycle
from marketplace.services.errors import (
    InvalidStateTransitionError,
    MarketplaceForbiddenError,
    MarketplaceNotFoundError,
    MarketplaceValidationError,
)
from marketplace.services.events import (
    BOOKING_ACCEPTED,
    BOOKING_CANCELED,
    BOOKING_COMPLETED,
    BOOKING_DECLINED,
    BOOKING_REQUESTED,
    BOOKING_STATUS_FORCED,
)


def _parties(market):
    client = market.user("Jean Dupont")
    provider = market.provider("Marie Bernard")
    return client, provider


def test_create_booking_starts_requested_and_emits_event(market):
    client, provider = _parties(market)

    booking = market.booking(client.id, provider.user_id)

    assert booking.status == "REQUESTED"
    assert booking.provider.id == provider.user_id
    assert booking.client.name == "Jean Dupont"
    assert booking.category.id == BABYSITTING
    assert booking.completed_at is None
    assert market.sink.kinds()[-1] == BOOKING_REQUESTED
    assert market.sink.events[-1].booking.id == booking.id


def test_create_booking_without_provider(market):
    client = market.user("Client")
    booking = market.booking(client.id)
    assert booking.status == "REQUESTED"
    assert booking.provider is None


def test_create_booking_validation(market):
    client, provider = _parties(market)
    with pytest.raises(MarketplaceValidationError):
        market.lifecycle.create_booking(
            BookingCreateRequest(client_id=client.id, description="x", postal_code="2800", city="Delémont")
        )
    with pytest.raises(MarketplaceNotFoundError):
        market.booking(client.id, category_id="cat_missing")
    with pytest.raises(MarketplaceNotFoundError):
        market.booking("usr_missing")
    with pytest.raises(MarketplaceValidationError):
        # Plain clients cannot be selected as provider.
        market.booking(client.id, market.user("Other Client").id)
    with pytest.raises(MarketplaceValidationError):
        market.lifecycle.create_booking(
            BookingCreateRequest(
                client_id=client.id,
                category_id=BABYSITTING,
                provider_id=provider.user_id,
                description="x",
                postal_code="2800",
                city="Delémont",
                urgency="yesterday",
            )
        )


def test_accept_then_complete_stamps_completed_at(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)

    accepted = market.lifecycle.accept_booking(booking.id, provider.user_id)
    completed = market.lifecycle.complete_booking(booking.id, provider.user_id)

    assert accepted.status == "ACCEPTED"
    assert completed.status == "COMPLETED"
    assert completed.completed_at is not None
    assert market.sink.kinds()[-2:] == [BOOKING_ACCEPTED, BOOKING_COMPLETED]


def test_completed_booking_cannot_be_canceled(market):
    client, provider = _parties(market)
    booking = market.completed_booking(client.id, provider.user_id)

    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.cancel_booking(booking.id, client.id)
    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.cancel_booking(booking.id, provider.user_id)
    assert market.lifecycle.get_booking(booking.id, client.id).status == "COMPLETED"


def test_decline_clears_provider_and_revokes_access(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)

    declined = market.lifecycle.decline_booking(booking.id, provider.user_id, "busy")

    assert declined.status == "DECLINED"
    assert declined.provider is None
    event = market.sink.events[-1]
    assert event.kind == BOOKING_DECLINED
    assert event.reason == "busy"
    assert event.previous_provider.id == provider.user_id

    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.accept_booking(booking.id, provider.user_id)
    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.get_booking(booking.id, provider.user_id)
    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.cancel_booking(booking.id, provider.user_id)


def test_decline_reason_is_kept_in_history_only(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    market.lifecycle.decline_booking(booking.id, provider.user_id, "busy")

    history = market.lifecycle.status_history(booking.id, client.id)

    assert [(h.from_status, h.to_status) for h in history] == [("NONE", "REQUESTED"), ("REQUESTED", "DECLINED")]
    assert history[-1].note == "busy"
    assert history[-1].actor_user_id == provider.user_id


def test_provider_actions_require_assigned_provider(market):
    client, provider = _parties(market)
    other = market.provider("Other Provider")
    booking = market.booking(client.id, provider.user_id)
    unassigned = market.booking(client.id)

    for action in (
        market.lifecycle.accept_booking,
        market.lifecycle.decline_booking,
        market.lifecycle.complete_booking,
    ):
        with pytest.raises(MarketplaceForbiddenError):
            action(booking.id, other.user_id)
        with pytest.raises(MarketplaceForbiddenError):
            action(unassigned.id, provider.user_id)


def test_wrong_state_transitions_are_rejected(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)

    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.complete_booking(booking.id, provider.user_id)

    market.lifecycle.accept_booking(booking.id, provider.user_id)
    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.accept_booking(booking.id, provider.user_id)
    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.decline_booking(booking.id, provider.user_id)


def test_cancel_keeps_provider_and_is_terminal(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    market.lifecycle.accept_booking(booking.id, provider.user_id)

    canceled = market.lifecycle.cancel_booking(booking.id, provider.user_id)

    assert canceled.status == "CANCELED"
    assert canceled.provider.id == provider.user_id
    assert market.sink.kinds()[-1] == BOOKING_CANCELED
    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.accept_booking(booking.id, provider.user_id)


def test_cancel_twice_returns_booking_without_second_event(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    market.lifecycle.cancel_booking(booking.id, client.id)
    published = len(market.sink.events)

    again = market.lifecycle.cancel_booking(booking.id, client.id)

    assert again.status == "CANCELED"
    assert len(market.sink.events) == published
    history = market.lifecycle.status_history(booking.id, client.id)
    assert [h.to_status for h in history] == ["REQUESTED", "CANCELED"]


def test_outsider_cannot_cancel_or_read(market):
    client, provider = _parties(market)
    outsider = market.user("Outsider")
    booking = market.booking(client.id, provider.user_id)

    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.cancel_booking(booking.id, outsider.id)
    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.get_booking(booking.id, outsider.id)
    with pytest.raises(MarketplaceNotFoundError):
        market.lifecycle.get_booking("bk_missing", client.id)


def test_reassign_after_decline(market):
    client, provider = _parties(market)
    replacement = market.provider("Replacement")
    booking = market.booking(client.id, provider.user_id)
    market.lifecycle.decline_booking(booking.id, provider.user_id)

    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.reassign_provider(booking.id, replacement.user_id, replacement.user_id)
    with pytest.raises(MarketplaceForbiddenError):
        market.lifecycle.reassign_provider(booking.id, provider.user_id, replacement.user_id)
    with pytest.raises(MarketplaceValidationError):
        market.lifecycle.reassign_provider(booking.id, client.id, client.id)

    reassigned = market.lifecycle.reassign_provider(booking.id, client.id, replacement.user_id)

    assert reassigned.status == "REQUESTED"
    assert reassigned.provider.id == replacement.user_id
    accepted = market.lifecycle.accept_booking(booking.id, replacement.user_id)
    assert accepted.status == "ACCEPTED"
    with pytest.raises(InvalidStateTransitionError):
        market.lifecycle.reassign_provider(booking.id, client.id, provider.user_id)


def test_admin_override_bypasses_guards(market):
    client, provider = _parties(market)
    booking = market.completed_booking(client.id, provider.user_id)

    reopened = market.lifecycle.admin_set_status(booking.id, "IN_PROGRESS")
    assert reopened.status == "IN_PROGRESS"

    # IN_PROGRESS is completable by the assigned provider.
    completed = market.lifecycle.complete_booking(booking.id, provider.user_id)
    assert completed.status == "COMPLETED"

    other = market.booking(client.id)
    forced = market.lifecycle.admin_set_status(other.id, "COMPLETED")
    assert forced.completed_at is not None
    assert market.sink.kinds()[-1] == BOOKING_STATUS_FORCED
    with pytest.raises(MarketplaceValidationError):
        market.lifecycle.admin_set_status(other.id, "ARCHIVED")
    with pytest.raises(MarketplaceNotFoundError):
        market.lifecycle.admin_set_status("bk_missing", "CANCELED")


def test_listings_and_admin_page(market):
    client, provider = _parties(market)
    first = market.booking(client.id, provider.user_id)
    second = market.booking(client.id, provider.user_id)
    market.lifecycle.accept_booking(first.id, provider.user_id)

    assert [b.id for b in market.lifecycle.list_client_bookings(client.id)] == [second.id, first.id]
    assert {b.id for b in market.lifecycle.list_provider_bookings(provider.user_id)} == {first.id, second.id}
    assert [b.id for b in market.lifecycle.list_pending_requests(provider.user_id)] == [second.id]

    page = market.lifecycle.list_all_bookings(page=0, size=1)
    assert page.total_elements == 2
    assert page.total_pages == 2
    assert page.first is True
    assert page.last is False
    assert [b.id for b in page.content] == [second.id]
    assert market.lifecycle.list_all_bookings(page=1, size=1).last is True


def test_unread_count_is_per_viewer(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    market.messages.send_message(booking.id, client.id, "Hello")
    market.messages.send_message(booking.id, client.id, "Are you free on Monday?")

    assert market.lifecycle.get_booking(booking.id, provider.user_id).unread_message_count == 2
    assert market.lifecycle.get_booking(booking.id, client.id).unread_message_count == 0
    assert market.lifecycle.list_provider_bookings(provider.user_id)[0].unread_message_count == 2


class _FailingSink:
    def publish(self, event):
        raise RuntimeError("smtp down")


def test_sink_failure_does_not_undo_transition(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    lifecycle = BookingLifecycle(market.db, market.identity, market.catalog, _FailingSink())

    accepted = lifecycle.accept_booking(booking.id, provider.user_id)

    assert accepted.status == "ACCEPTED"
    assert market.lifecycle.get_booking(booking.id, client.id).status == "ACCEPTED"


class _InterleavedLifecycle(BookingLifecycle):
    """Lets a competing decline commit between this call's read and its write."""

    def __init__(self, *args, competitor=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.competitor = competitor

    def _fetch_row(self, conn, booking_id):
        row = super()._fetch_row(conn, booking_id)
        if self.competitor is not None:
            competitor, self.competitor = self.competitor, None
            competitor()
        return row


def test_stale_accept_loses_to_committed_decline(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    racing = _InterleavedLifecycle(
        market.db,
        market.identity,
        market.catalog,
        market.sink,
        competitor=lambda: market.lifecycle.decline_booking(booking.id, provider.user_id, "busy"),
    )

    with pytest.raises(InvalidStateTransitionError):
        racing.accept_booking(booking.id, provider.user_id)

    final = market.lifecycle.get_booking(booking.id, client.id)
    assert final.status == "DECLINED"
    assert final.provider is None
    history = market.lifecycle.status_history(booking.id, client.id)
    assert [h.to_status for h in history] == ["REQUESTED", "DECLINED"]


def test_concurrent_accept_and_decline_have_one_winner(market):
    client, provider = _parties(market)
    booking = market.booking(client.id, provider.user_id)
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt(action):
        barrier.wait()
        try:
            action()
            outcomes.append("ok")
        except (InvalidStateTransitionError, MarketplaceForbiddenError) as exc:
            outcomes.append(type(exc).__name__)

    threads = [
        threading.Thread(target=attempt, args=(lambda: market.lifecycle.accept_booking(booking.id, provider.user_id),)),
        threading.Thread(target=attempt, args=(lambda: market.lifecycle.decline_booking(booking.id, provider.user_id),)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    final = market.lifecycle.get_booking_for_admin(booking.id)
    assert final.status in {"ACCEPTED", "DECLINED"}
    transitions = [h for h in market.lifecycle.status_history(booking.id, client.id) if h.from_status != "NONE"]
    assert len(transitions) == 1
