import logging
import sqlite3
from typing import List, Optional

from marketplace.models import Message
from marketplace.services.booking_lifecycle import BookingLifecycle, booking_lifecycle
from marketplace.services.database import Database, database, new_id, utcnow_iso
from marketplace.services.errors import MarketplaceValidationError
from marketplace.services.events import MESSAGE_SENT, EventSink, MarketplaceEvent, publish_quietly
from marketplace.services.notifier import marketplace_notifier

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


class MessageStore:
    """Per-booking conversation between the client and the assigned provider."""

    def __init__(self, db: Database, lifecycle: BookingLifecycle, events: Optional[EventSink] = None):
        self.db = db
        self.lifecycle = lifecycle
        self.events = events

    def send_message(self, booking_id: str, sender_id: str, content: str) -> Message:
        content = (content or "").strip()
        if not content:
            raise MarketplaceValidationError("Message content is required")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise MarketplaceValidationError(f"Message content exceeds {MAX_MESSAGE_LENGTH} characters")
        booking = self.lifecycle.require_party(booking_id, sender_id)

        message_id = new_id("msg")
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO messages (id, booking_id, sender_id, content, is_read, created_at)
                VALUES (?, ?, ?, ?, 0, ?)
                """,
                (message_id, booking_id, sender_id, content, utcnow_iso()),
            )
            row = self._fetch(conn, "m.id = ?", (message_id,))[0]
        message = self._row_to_message(row, sender_id)
        logger.info("User %s sent message %s on booking %s", sender_id, message_id, booking_id)
        publish_quietly(
            self.events,
            MarketplaceEvent(kind=MESSAGE_SENT, actor_user_id=sender_id, booking=booking, message=message),
            logger,
        )
        return message

    def list_messages(self, booking_id: str, viewer_id: str) -> List[Message]:
        """Mark the other party's messages as read, then return the whole thread."""
        self.lifecycle.require_party(booking_id, viewer_id)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE messages SET is_read = 1 WHERE booking_id = ? AND sender_id != ? AND is_read = 0",
                (booking_id, viewer_id),
            )
            rows = self._fetch(conn, "m.booking_id = ?", (booking_id,))
        return [self._row_to_message(row, viewer_id) for row in rows]

    def count_unread(self, booking_id: str, viewer_id: str) -> int:
        self.lifecycle.require_party(booking_id, viewer_id)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE booking_id = ? AND sender_id != ? AND is_read = 0",
                (booking_id, viewer_id),
            ).fetchone()
        return int(row[0])

    def _fetch(self, conn: sqlite3.Connection, where: str, params: tuple) -> List[sqlite3.Row]:
        return conn.execute(
            f"""
            SELECT m.*, u.name AS sender_name
            FROM messages m
            JOIN users u ON u.id = m.sender_id
            WHERE {where}
            ORDER BY m.created_at, m.rowid
            """,
            params,
        ).fetchall()

    def _row_to_message(self, row: sqlite3.Row, viewer_id: str) -> Message:
        return Message(
            id=row["id"],
            booking_id=row["booking_id"],
            sender_id=row["sender_id"],
            sender_name=row["sender_name"],
            content=row["content"],
            is_read=bool(row["is_read"]),
            is_own_message=row["sender_id"] == viewer_id,
            created_at=row["created_at"],
        )


message_store = MessageStore(database, booking_lifecycle, marketplace_notifier)
