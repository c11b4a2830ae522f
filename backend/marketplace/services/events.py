import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from marketplace.models import Booking, BookingProviderSummary, Message, ProviderProfile, Rating

BOOKING_REQUESTED = "booking_requested"
BOOKING_ACCEPTED = "booking_accepted"
BOOKING_DECLINED = "booking_declined"
BOOKING_COMPLETED = "booking_completed"
BOOKING_CANCELED = "booking_canceled"
BOOKING_REASSIGNED = "booking_reassigned"
BOOKING_STATUS_FORCED = "booking_status_forced"
MESSAGE_SENT = "message_sent"
RATING_RECEIVED = "rating_received"
PROVIDER_VERIFIED = "provider_verified"
PROVIDER_REJECTED = "provider_rejected"


@dataclass(frozen=True)
class MarketplaceEvent:
    kind: str
    actor_user_id: Optional[str] = None
    booking: Optional[Booking] = None
    # Decline clears the assignment, so the declining provider travels here.
    previous_provider: Optional[BookingProviderSummary] = None
    reason: Optional[str] = None
    message: Optional[Message] = None
    rating: Optional[Rating] = None
    profile: Optional[ProviderProfile] = None


class EventSink(Protocol):
    def publish(self, event: MarketplaceEvent) -> None:
        ...


def publish_quietly(sink: Optional[EventSink], event: MarketplaceEvent, logger: logging.Logger) -> None:
    """Hand an already-committed change to the sink; delivery problems never propagate."""
    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception:
        booking_id = event.booking.id if event.booking else None
        logger.exception("Event dispatch failed: kind=%s booking=%s", event.kind, booking_id)
