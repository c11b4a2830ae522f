import logging
from typing import Callable, Dict, Optional

from marketplace.models import Booking
from marketplace.services.events import (
    BOOKING_ACCEPTED,
    BOOKING_CANCELED,
    BOOKING_COMPLETED,
    BOOKING_DECLINED,
    BOOKING_REASSIGNED,
    BOOKING_REQUESTED,
    BOOKING_STATUS_FORCED,
    MESSAGE_SENT,
    PROVIDER_REJECTED,
    PROVIDER_VERIFIED,
    RATING_RECEIVED,
    MarketplaceEvent,
)
from marketplace.services.notification_store import NotificationStore, notification_store

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_CHARS = 100


def booking_link(booking: Booking) -> str:
    return f"booking:{booking.id}"


def message_preview(content: str) -> str:
    if len(content) <= MESSAGE_PREVIEW_CHARS:
        return content
    return content[:MESSAGE_PREVIEW_CHARS] + "..."


class MarketplaceNotifier:
    """Turns committed marketplace events into inbox notifications."""

    def __init__(self, store: Optional[NotificationStore] = None):
        self.store = store or notification_store
        self._renderers: Dict[str, Callable[[MarketplaceEvent], None]] = {
            BOOKING_REQUESTED: self._booking_requested,
            BOOKING_REASSIGNED: self._booking_reassigned,
            BOOKING_ACCEPTED: self._booking_accepted,
            BOOKING_DECLINED: self._booking_declined,
            BOOKING_COMPLETED: self._booking_completed,
            BOOKING_CANCELED: self._booking_canceled,
            BOOKING_STATUS_FORCED: self._booking_status_forced,
            MESSAGE_SENT: self._message_sent,
            RATING_RECEIVED: self._rating_received,
            PROVIDER_VERIFIED: self._provider_verified,
            PROVIDER_REJECTED: self._provider_rejected,
        }

    def publish(self, event: MarketplaceEvent) -> None:
        renderer = self._renderers.get(event.kind)
        if renderer is None:
            logger.warning("No notification renderer for event kind %s", event.kind)
            return
        renderer(event)

    def _notify_booking(self, user_id: str, booking: Booking, title: str, body: str, category: str = "booking") -> None:
        self.store.create(
            user_id=user_id,
            title=title,
            body=body,
            category=category,
            deep_link=booking_link(booking),
        )

    def _booking_requested(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        self._notify_booking(
            booking.client.id,
            booking,
            "Your Service Request Has Been Submitted",
            f"Your {booking.category.name} request {booking.id} was submitted.",
        )
        if booking.provider:
            self._notify_new_request(booking)

    def _booking_reassigned(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        if booking.provider:
            self._notify_new_request(booking)

    def _notify_new_request(self, booking: Booking) -> None:
        assert booking.provider is not None
        self._notify_booking(
            booking.provider.id,
            booking,
            "New Service Request Received",
            f"{booking.client.name} requested {booking.category.name} in {booking.city} ({booking.id}).",
        )

    def _booking_accepted(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        provider_name = booking.provider.name if booking.provider else "Your provider"
        self._notify_booking(
            booking.client.id,
            booking,
            "Service Request Accepted!",
            f"{provider_name} accepted your {booking.category.name} request {booking.id}.",
        )

    def _booking_declined(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        provider_name = event.previous_provider.name if event.previous_provider else "The provider"
        body = f"{provider_name} is unable to take your {booking.category.name} request {booking.id}."
        if event.reason:
            body += f" Reason: {event.reason}"
        body += " You can choose another provider."
        self._notify_booking(booking.client.id, booking, "Service Request Update", body)

    def _booking_completed(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        provider_name = booking.provider.name if booking.provider else "your provider"
        self._notify_booking(
            booking.client.id,
            booking,
            "Please Rate Your Experience",
            f"Your {booking.category.name} service with {provider_name} is complete. How did it go?",
        )
        if booking.provider:
            self._notify_booking(
                booking.provider.id,
                booking,
                "Service Completed",
                f"Booking {booking.id} for {booking.client.name} is marked as completed.",
            )

    def _booking_canceled(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        recipients = [booking.client.id]
        if booking.provider:
            recipients.append(booking.provider.id)
        for user_id in recipients:
            if user_id == event.actor_user_id:
                continue
            self._notify_booking(
                user_id,
                booking,
                "Service Request Canceled",
                f"The {booking.category.name} booking {booking.id} has been canceled.",
            )

    def _booking_status_forced(self, event: MarketplaceEvent) -> None:
        booking = event.booking
        assert booking is not None
        recipients = [booking.client.id]
        if booking.provider:
            recipients.append(booking.provider.id)
        for user_id in recipients:
            self._notify_booking(
                user_id,
                booking,
                "Service Request Update",
                f"Booking {booking.id} is now {booking.status}.",
            )

    def _message_sent(self, event: MarketplaceEvent) -> None:
        booking, message = event.booking, event.message
        assert booking is not None and message is not None
        if message.sender_id == booking.client.id:
            recipient = booking.provider.id if booking.provider else None
        else:
            recipient = booking.client.id
        if not recipient:
            return
        self._notify_booking(
            recipient,
            booking,
            f"New Message from {message.sender_name}",
            message_preview(message.content),
            category="message",
        )

    def _rating_received(self, event: MarketplaceEvent) -> None:
        booking, rating = event.booking, event.rating
        assert booking is not None and rating is not None
        if not booking.provider:
            return
        self._notify_booking(
            booking.provider.id,
            booking,
            "You Received a New Rating",
            f"{booking.client.name} rated your {booking.category.name} service {rating.score}/5.",
            category="rating",
        )

    def _provider_verified(self, event: MarketplaceEvent) -> None:
        profile = event.profile
        assert profile is not None
        self.store.create(
            user_id=profile.user_id,
            title="Your Provider Profile Has Been Verified!",
            body="Your profile now shows the verified badge and ranks first in matching results.",
            category="verification",
            deep_link=f"provider:{profile.id}",
        )

    def _provider_rejected(self, event: MarketplaceEvent) -> None:
        profile = event.profile
        assert profile is not None
        body = "Your provider profile is not verified."
        if profile.verification_notes:
            body += f" Notes: {profile.verification_notes}"
        self.store.create(
            user_id=profile.user_id,
            title="Provider Verification Update",
            body=body,
            category="verification",
            deep_link=f"provider:{profile.id}",
        )


marketplace_notifier = MarketplaceNotifier()
