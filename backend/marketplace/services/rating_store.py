import logging
import sqlite3
from typing import Optional

from marketplace.models import Rating
from marketplace.services.booking_lifecycle import BookingLifecycle, booking_lifecycle
from marketplace.services.database import Database, database, new_id, utcnow_iso
from marketplace.services.errors import (
    MarketplaceConflictError,
    MarketplaceForbiddenError,
    MarketplaceValidationError,
)
from marketplace.services.events import RATING_RECEIVED, EventSink, MarketplaceEvent, publish_quietly
from marketplace.services.notifier import marketplace_notifier

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5
MAX_COMMENT_LENGTH = 2000


class RatingStore:
    def __init__(self, db: Database, lifecycle: BookingLifecycle, events: Optional[EventSink] = None):
        self.db = db
        self.lifecycle = lifecycle
        self.events = events

    def submit_rating(self, booking_id: str, client_id: str, score: int, comment: Optional[str] = None) -> Rating:
        if not MIN_SCORE <= score <= MAX_SCORE:
            raise MarketplaceValidationError(f"score must be between {MIN_SCORE} and {MAX_SCORE}")
        comment = (comment or "").strip() or None
        if comment and len(comment) > MAX_COMMENT_LENGTH:
            raise MarketplaceValidationError(f"comment exceeds {MAX_COMMENT_LENGTH} characters")

        booking = self.lifecycle.require_party(booking_id, client_id)
        if booking.client.id != client_id:
            raise MarketplaceForbiddenError("Only the client can rate this booking")
        if booking.status != "COMPLETED":
            raise MarketplaceValidationError("Only completed bookings can be rated")
        if booking.provider is None:
            raise MarketplaceValidationError("Booking has no provider to rate")
        if booking.rating is not None:
            raise MarketplaceConflictError("This booking has already been rated")

        rating = Rating(
            id=new_id("rt"),
            booking_id=booking_id,
            score=score,
            comment=comment,
            created_at=utcnow_iso(),
        )
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO ratings (id, booking_id, client_id, provider_id, score, comment, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (rating.id, booking_id, client_id, booking.provider.id, score, comment, rating.created_at),
                )
        except sqlite3.IntegrityError:
            raise MarketplaceConflictError("This booking has already been rated") from None

        logger.info("Client %s rated booking %s with %d", client_id, booking_id, score)
        publish_quietly(
            self.events,
            MarketplaceEvent(
                kind=RATING_RECEIVED,
                actor_user_id=client_id,
                booking=booking.model_copy(update={"rating": rating}),
                rating=rating,
            ),
            logger,
        )
        return rating


rating_store = RatingStore(database, booking_lifecycle, marketplace_notifier)
