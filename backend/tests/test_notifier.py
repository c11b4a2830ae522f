import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from marketplace.services.booking_lifecycle import BookingLifecycle
from marketplace.services.message_store import MessageStore
from marketplace.services.notification_store import NotificationStore, web_url_for
from marketplace.services.notifier import MarketplaceNotifier, message_preview
from marketplace.services.push_sender import PushDelivery, PushSender
from marketplace.services.rating_store import RatingStore


class FakePushSender:
    def __init__(self, stale=None):
        self.calls = []
        self.stale = stale or []

    def send(self, tokens, title, body, data):
        self.calls.append({"tokens": tokens, "title": title, "body": body, "data": data})
        return PushDelivery(sent=len(tokens), stale_tokens=list(self.stale))


def _wired(market, sender=None):
    store = NotificationStore(sender or FakePushSender())
    notifier = MarketplaceNotifier(store)
    lifecycle = BookingLifecycle(market.db, market.identity, market.catalog, notifier)
    messages = MessageStore(market.db, lifecycle, notifier)
    ratings = RatingStore(market.db, lifecycle, notifier)
    return store, lifecycle, messages, ratings


def _request(market, lifecycle, client, provider):
    market.lifecycle = lifecycle
    return market.booking(client.id, provider.user_id)


def test_booking_requested_notifies_client_and_provider(market):
    store, lifecycle, _, _ = _wired(market)
    client = market.user("Jean Dupont")
    provider = market.provider("Marie Bernard")

    booking = _request(market, lifecycle, client, provider)

    client_inbox = store.list_for_user(client.id)
    provider_inbox = store.list_for_user(provider.user_id)
    assert client_inbox[0].title == "Your Service Request Has Been Submitted"
    assert provider_inbox[0].title == "New Service Request Received"
    assert "Jean Dupont" in provider_inbox[0].body
    assert "Babysitting" in provider_inbox[0].body
    assert provider_inbox[0].deep_link == f"booking:{booking.id}"


def test_decline_notification_names_previous_provider_and_reason(market):
    store, lifecycle, _, _ = _wired(market)
    client = market.user("Client")
    provider = market.provider("Marie Bernard")
    booking = _request(market, lifecycle, client, provider)

    lifecycle.decline_booking(booking.id, provider.user_id, "fully booked")

    latest = store.list_for_user(client.id)[0]
    assert latest.title == "Service Request Update"
    assert "Marie Bernard" in latest.body
    assert "fully booked" in latest.body


def test_completion_and_rating_notifications(market):
    store, lifecycle, _, ratings = _wired(market)
    client = market.user("Client")
    provider = market.provider("Provider")
    booking = _request(market, lifecycle, client, provider)
    lifecycle.accept_booking(booking.id, provider.user_id)
    assert store.list_for_user(client.id)[0].title == "Service Request Accepted!"

    lifecycle.complete_booking(booking.id, provider.user_id)
    ratings.submit_rating(booking.id, client.id, 4)

    assert store.list_for_user(client.id)[0].title == "Please Rate Your Experience"
    provider_titles = [n.title for n in store.list_for_user(provider.user_id)]
    assert provider_titles[:2] == ["You Received a New Rating", "Service Completed"]
    assert store.list_for_user(provider.user_id)[0].category == "rating"


def test_cancel_notifies_only_the_other_party(market):
    store, lifecycle, _, _ = _wired(market)
    client = market.user("Client")
    provider = market.provider("Provider")
    booking = _request(market, lifecycle, client, provider)
    before = len(store.list_for_user(client.id))

    lifecycle.cancel_booking(booking.id, client.id)

    assert store.list_for_user(provider.user_id)[0].title == "Service Request Canceled"
    assert len(store.list_for_user(client.id)) == before


def test_message_notification_goes_to_recipient_with_preview(market):
    store, lifecycle, messages, _ = _wired(market)
    client = market.user("Client")
    provider = market.provider("Provider")
    booking = _request(market, lifecycle, client, provider)

    messages.send_message(booking.id, client.id, "a" * 150)

    latest = store.list_for_user(provider.user_id)[0]
    assert latest.title == "New Message from Client"
    assert latest.category == "message"
    assert latest.body == "a" * 100 + "..."
    assert message_preview("short") == "short"


def test_verification_notification(market):
    store = NotificationStore(FakePushSender())
    market.directory.events = MarketplaceNotifier(store)
    profile = market.provider("Provider")

    market.directory.set_verification(profile.id, True, "Identity verified")

    latest = store.list_for_user(profile.user_id)[0]
    assert latest.title == "Your Provider Profile Has Been Verified!"
    assert latest.category == "verification"
    assert latest.deep_link == f"provider:{profile.id}"


def test_push_fanout_prunes_stale_tokens():
    sender = FakePushSender(stale=["old-token"])
    store = NotificationStore(sender)
    store.register_device_token("usr_1", "old-token")
    store.register_device_token("usr_1", "new-token")
    assert store.register_device_token("usr_1", "   ") is False

    record = store.create("usr_1", "Title", "Body", category="booking", deep_link="booking:bk_1")

    assert sender.calls[0]["tokens"] == ["new-token", "old-token"]
    assert sender.calls[0]["data"]["notification_id"] == record.id
    assert sender.calls[0]["data"]["url"].endswith("/bookings/bk_1")
    assert store.device_tokens("usr_1") == ["new-token"]


def test_inbox_read_state():
    store = NotificationStore(FakePushSender())
    first = store.create("usr_1", "One", "Body")
    store.create("usr_1", "Two", "Body")
    store.create("usr_2", "Other", "Body")

    assert [n.title for n in store.list_for_user("usr_1")] == ["Two", "One"]
    assert store.mark_read("usr_2", first.id) is None
    assert store.mark_read("usr_1", first.id).read is True
    assert [n.title for n in store.list_for_user("usr_1", unread_only=True)] == ["Two"]
    assert store.unread_count("usr_1") == 1
    assert store.mark_all_read("usr_1") == 1
    assert store.unread_count("usr_1") == 0


def test_push_sender_without_credentials_sends_nothing():
    sender = PushSender(credentials_path="")
    assert sender.enabled is False
    assert sender.send(["token"], "Title", "Body", {}) == PushDelivery()


def test_web_url_for_deep_links():
    assert web_url_for("booking:bk_1").endswith("/bookings/bk_1")
    assert web_url_for("provider:pp_1").endswith("/providers/pp_1")
    assert web_url_for(None) == web_url_for("unknown")
