"""Booking lifecycle state machine.

    REQUESTED -> ACCEPTED -> COMPLETED
    REQUESTED -> DECLINED -> REQUESTED (client attaches another provider)
    any state except COMPLETED -> CANCELED (a repeat cancel is a no-op)

IN_PROGRESS is a declared status that no transition enters yet;
completing from it is allowed so a later start step slots in without
touching the rest of the machine.

Each transition is one read-modify-write against the booking row,
guarded by the row's ``version`` column. Two concurrent transitions on
the same row cannot both win: the loser's conditional UPDATE matches no
row and surfaces as an InvalidStateTransitionError.
"""
import logging
import math
import sqlite3
from typing import Callable, Dict, List, Optional

from marketplace.models import (
    Booking,
    BookingCreateRequest,
    BookingPage,
    BookingParty,
    BookingProviderSummary,
    BookingStatusChange,
    Category,
    Rating,
)
from marketplace.services.catalog_store import CategoryStore, category_store
from marketplace.services.database import Database, database, new_id, utcnow_iso
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
    BOOKING_REASSIGNED,
    BOOKING_REQUESTED,
    BOOKING_STATUS_FORCED,
    EventSink,
    MarketplaceEvent,
    publish_quietly,
)
from marketplace.services.identity_store import IdentityStore, identity_store
from marketplace.services.notifier import marketplace_notifier

logger = logging.getLogger(__name__)

BOOKING_STATUSES = ("REQUESTED", "ACCEPTED", "DECLINED", "IN_PROGRESS", "COMPLETED", "CANCELED")
COMPLETABLE_STATUSES = {"ACCEPTED", "IN_PROGRESS"}
URGENCY_VALUES = {"flexible", "within_week", "urgent"}
MAX_PAGE_SIZE = 100

_BOOKING_VIEW_SQL = """
    SELECT
        b.*,
        c.slug AS category_slug,
        c.name AS category_name,
        c.description AS category_description,
        c.icon AS category_icon,
        c.sort_order AS category_sort_order,
        cu.name AS client_name,
        cu.email AS client_email,
        cu.phone AS client_phone,
        pu.name AS provider_name,
        pu.email AS provider_email,
        pu.phone AS provider_phone,
        pp.photo_url AS provider_photo_url,
        pp.is_verified AS provider_is_verified,
        (SELECT AVG(score) FROM ratings pr WHERE pr.provider_id = b.provider_id) AS provider_average_rating,
        r.id AS rating_id,
        r.score AS rating_score,
        r.comment AS rating_comment,
        r.created_at AS rating_created_at
    FROM bookings b
    JOIN categories c ON c.id = b.category_id
    JOIN users cu ON cu.id = b.client_id
    LEFT JOIN users pu ON pu.id = b.provider_id
    LEFT JOIN provider_profiles pp ON pp.user_id = b.provider_id
    LEFT JOIN ratings r ON r.booking_id = b.id
"""

Guard = Callable[[sqlite3.Row], None]


class BookingLifecycle:
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

    # -- creation --------------------------------------------------------

    def create_booking(self, request: BookingCreateRequest) -> Booking:
        category_id = (request.category_id or "").strip()
        description = request.description.strip()
        postal_code = request.postal_code.strip()
        city = request.city.strip()
        urgency = (request.urgency or "").strip().lower() or None
        if not category_id:
            raise MarketplaceValidationError("Category ID is required")
        if not description:
            raise MarketplaceValidationError("Description is required")
        if not postal_code:
            raise MarketplaceValidationError("Postal code is required")
        if not city:
            raise MarketplaceValidationError("City is required")
        if urgency is not None and urgency not in URGENCY_VALUES:
            raise MarketplaceValidationError("Invalid urgency. Allowed: flexible, within_week, urgent")
        self._validate_budget(request.budget_min, request.budget_max)

        if not self.identity.find_user(request.client_id):
            raise MarketplaceNotFoundError("Client not found")
        self.catalog.get_category(category_id)
        if request.provider_id is not None:
            self._validate_provider_choice(request.provider_id, request.client_id)

        booking_id = new_id("bk")
        now = utcnow_iso()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO bookings (
                    id, client_id, provider_id, category_id, status, description, postal_code, city,
                    address_text, scheduled_at, urgency, budget_min, budget_max, payment_status,
                    created_at, updated_at, completed_at, version
                ) VALUES (?, ?, ?, ?, 'REQUESTED', ?, ?, ?, ?, ?, ?, ?, ?, 'PENDING', ?, ?, NULL, 0)
                """,
                (
                    booking_id,
                    request.client_id,
                    request.provider_id,
                    category_id,
                    description,
                    postal_code,
                    city,
                    (request.address_text or "").strip() or None,
                    request.scheduled_at.isoformat() if request.scheduled_at else None,
                    urgency,
                    request.budget_min,
                    request.budget_max,
                    now,
                    now,
                ),
            )
            self._record_history(conn, booking_id, request.client_id, "NONE", "REQUESTED", "booking requested", now)
            booking = self._load_view(conn, booking_id, request.client_id)

        logger.info(
            "Created booking %s for client %s with provider %s",
            booking_id,
            request.client_id,
            request.provider_id,
        )
        publish_quietly(
            self.events,
            MarketplaceEvent(kind=BOOKING_REQUESTED, actor_user_id=request.client_id, booking=booking),
            logger,
        )
        return booking

    # -- reads -----------------------------------------------------------

    def get_booking(self, booking_id: str, viewer_id: str) -> Booking:
        with self.db.transaction() as conn:
            row = self._require_row(conn, booking_id)
            self._assert_party(row, viewer_id, "Access denied to this booking")
            return self._load_view(conn, booking_id, viewer_id)

    def get_booking_for_admin(self, booking_id: str) -> Booking:
        with self.db.transaction() as conn:
            self._require_row(conn, booking_id)
            return self._load_view(conn, booking_id, None)

    def list_client_bookings(self, client_id: str) -> List[Booking]:
        return self._list_views("b.client_id = ?", (client_id,), client_id)

    def list_provider_bookings(self, provider_id: str) -> List[Booking]:
        return self._list_views("b.provider_id = ?", (provider_id,), provider_id)

    def list_pending_requests(self, provider_id: str) -> List[Booking]:
        return self._list_views("b.provider_id = ? AND b.status = 'REQUESTED'", (provider_id,), provider_id)

    def list_all_bookings(self, page: int = 0, size: int = 20) -> BookingPage:
        if page < 0:
            raise MarketplaceValidationError("page must be zero or greater")
        if size <= 0 or size > MAX_PAGE_SIZE:
            raise MarketplaceValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")
        with self.db.transaction() as conn:
            total = int(conn.execute("SELECT COUNT(*) FROM bookings").fetchone()[0])
            rows = conn.execute(
                _BOOKING_VIEW_SQL + " ORDER BY b.created_at DESC LIMIT ? OFFSET ?",
                (size, page * size),
            ).fetchall()
            content = [self._row_to_booking(row, 0) for row in rows]
        total_pages = math.ceil(total / size) if total else 0
        return BookingPage(
            content=content,
            page=page,
            size=size,
            total_elements=total,
            total_pages=total_pages,
            first=page == 0,
            last=page >= total_pages - 1,
        )

    def count_by_status(self) -> Dict[str, int]:
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS total FROM bookings GROUP BY status").fetchall()
        counts = {status: 0 for status in BOOKING_STATUSES}
        counts.update({str(row["status"]): int(row["total"]) for row in rows})
        return counts

    def status_history(self, booking_id: str, viewer_id: str) -> List[BookingStatusChange]:
        with self.db.transaction() as conn:
            row = self._require_row(conn, booking_id)
            self._assert_party(row, viewer_id, "Access denied to this booking")
            rows = conn.execute(
                """
                SELECT actor_user_id, from_status, to_status, note, created_at
                FROM booking_status_history
                WHERE booking_id = ?
                ORDER BY created_at, rowid
                """,
                (booking_id,),
            ).fetchall()
        return [
            BookingStatusChange(
                actor_user_id=entry["actor_user_id"],
                from_status=entry["from_status"],
                to_status=entry["to_status"],
                note=entry["note"] or "",
                created_at=entry["created_at"],
            )
            for entry in rows
        ]

    # -- transitions -----------------------------------------------------

    def accept_booking(self, booking_id: str, provider_id: str) -> Booking:
        def guard(row: sqlite3.Row) -> None:
            self._assert_assigned_provider(row, provider_id, "Only the selected provider can accept this booking")
            self._assert_status(row, {"REQUESTED"}, "Booking is not in REQUESTED status")

        booking = self._transition(
            booking_id,
            actor_user_id=provider_id,
            guard=guard,
            to_status="ACCEPTED",
            event_kind=BOOKING_ACCEPTED,
        )
        logger.info("Provider %s accepted booking %s", provider_id, booking_id)
        return booking

    def decline_booking(self, booking_id: str, provider_id: str, reason: Optional[str] = None) -> Booking:
        def guard(row: sqlite3.Row) -> None:
            self._assert_assigned_provider(row, provider_id, "Only the selected provider can decline this booking")
            self._assert_status(row, {"REQUESTED"}, "Booking is not in REQUESTED status")

        reason = (reason or "").strip() or None
        booking = self._transition(
            booking_id,
            actor_user_id=provider_id,
            guard=guard,
            to_status="DECLINED",
            clear_provider=True,
            note=reason or "",
            event_kind=BOOKING_DECLINED,
            reason=reason,
        )
        logger.info("Provider %s declined booking %s: %s", provider_id, booking_id, reason)
        return booking

    def complete_booking(self, booking_id: str, provider_id: str) -> Booking:
        def guard(row: sqlite3.Row) -> None:
            self._assert_assigned_provider(row, provider_id, "Only the provider can complete this booking")
            self._assert_status(row, COMPLETABLE_STATUSES, "Booking cannot be completed in current status")

        booking = self._transition(
            booking_id,
            actor_user_id=provider_id,
            guard=guard,
            to_status="COMPLETED",
            stamp_completed=True,
            event_kind=BOOKING_COMPLETED,
        )
        logger.info("Provider %s completed booking %s", provider_id, booking_id)
        return booking

    def cancel_booking(self, booking_id: str, user_id: str) -> Booking:
        current = self.get_booking(booking_id, user_id)
        if current.status == "CANCELED":
            return current

        def guard(row: sqlite3.Row) -> None:
            self._assert_party(row, user_id, "Access denied to cancel this booking")
            if row["status"] == "COMPLETED":
                raise InvalidStateTransitionError("Completed bookings cannot be canceled")

        booking = self._transition(
            booking_id,
            actor_user_id=user_id,
            guard=guard,
            to_status="CANCELED",
            event_kind=BOOKING_CANCELED,
        )
        logger.info("User %s canceled booking %s", user_id, booking_id)
        return booking

    def reassign_provider(self, booking_id: str, client_id: str, provider_id: str) -> Booking:
        def guard(row: sqlite3.Row) -> None:
            if row["client_id"] != client_id:
                raise MarketplaceForbiddenError("Only the client can choose another provider")
            self._assert_status(row, {"DECLINED"}, "Booking is not in DECLINED status")
            self._validate_provider_choice(provider_id, client_id)

        booking = self._transition(
            booking_id,
            actor_user_id=client_id,
            guard=guard,
            to_status="REQUESTED",
            assign_provider=provider_id,
            note="provider reassigned",
            event_kind=BOOKING_REASSIGNED,
        )
        logger.info("Client %s reassigned booking %s to provider %s", client_id, booking_id, provider_id)
        return booking

    def admin_set_status(self, booking_id: str, status: str, admin_id: Optional[str] = None) -> Booking:
        """Force a status without any guard. Forcing COMPLETED stamps completed_at."""
        if status not in BOOKING_STATUSES:
            raise MarketplaceValidationError(f"Invalid status: {status}")
        booking = self._transition(
            booking_id,
            actor_user_id=admin_id,
            guard=lambda row: None,
            to_status=status,
            stamp_completed=status == "COMPLETED",
            note="admin override",
            event_kind=BOOKING_STATUS_FORCED,
            viewer_id=None,
        )
        logger.info("Admin %s forced booking %s to %s", admin_id, booking_id, status)
        return booking

    def require_party(self, booking_id: str, user_id: str) -> Booking:
        """Booking as seen by one of its parties; raises for everyone else."""
        return self.get_booking(booking_id, user_id)

    # -- internals -------------------------------------------------------

    _UNSET = object()

    def _transition(
        self,
        booking_id: str,
        *,
        actor_user_id: Optional[str],
        guard: Guard,
        to_status: str,
        event_kind: str,
        clear_provider: bool = False,
        assign_provider: Optional[str] = None,
        stamp_completed: bool = False,
        note: str = "",
        reason: Optional[str] = None,
        viewer_id: object = _UNSET,
    ) -> Booking:
        viewer = actor_user_id if viewer_id is self._UNSET else viewer_id
        with self.db.transaction() as conn:
            row = self._fetch_row(conn, booking_id)
            if not row:
                raise MarketplaceNotFoundError("Booking not found")
            guard(row)
            previous = self._load_view(conn, booking_id, None)

            now = utcnow_iso()
            assignments = ["status = ?", "updated_at = ?", "version = version + 1"]
            params: List[object] = [to_status, now]
            if clear_provider:
                assignments.append("provider_id = NULL")
            elif assign_provider is not None:
                assignments.append("provider_id = ?")
                params.append(assign_provider)
            if stamp_completed:
                assignments.append("completed_at = ?")
                params.append(now)
            params.extend([booking_id, row["version"]])

            cursor = conn.execute(
                f"UPDATE bookings SET {', '.join(assignments)} WHERE id = ? AND version = ?",
                tuple(params),
            )
            if cursor.rowcount != 1:
                raise InvalidStateTransitionError(
                    f"Booking was modified concurrently; it is no longer in {row['status']} status"
                )
            self._record_history(conn, booking_id, actor_user_id, row["status"], to_status, note, now)
            booking = self._load_view(conn, booking_id, viewer)  # type: ignore[arg-type]

        publish_quietly(
            self.events,
            MarketplaceEvent(
                kind=event_kind,
                actor_user_id=actor_user_id,
                booking=booking,
                previous_provider=previous.provider,
                reason=reason,
            ),
            logger,
        )
        return booking

    def _fetch_row(self, conn: sqlite3.Connection, booking_id: str) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()

    def _require_row(self, conn: sqlite3.Connection, booking_id: str) -> sqlite3.Row:
        row = self._fetch_row(conn, booking_id)
        if not row:
            raise MarketplaceNotFoundError("Booking not found")
        return row

    def _assert_party(self, row: sqlite3.Row, user_id: str, message: str) -> None:
        if row["client_id"] == user_id:
            return
        if row["provider_id"] is not None and row["provider_id"] == user_id:
            return
        raise MarketplaceForbiddenError(message)

    def _assert_assigned_provider(self, row: sqlite3.Row, provider_id: str, message: str) -> None:
        if row["provider_id"] is None or row["provider_id"] != provider_id:
            raise MarketplaceForbiddenError(message)

    def _assert_status(self, row: sqlite3.Row, allowed: set, message: str) -> None:
        if row["status"] not in allowed:
            raise InvalidStateTransitionError(message)

    def _validate_provider_choice(self, provider_id: str, client_id: str) -> None:
        provider = self.identity.find_user(provider_id)
        if not provider:
            raise MarketplaceNotFoundError("Provider not found")
        if provider.role != "PROVIDER":
            raise MarketplaceValidationError("Selected user is not a provider")
        if provider_id == client_id:
            raise MarketplaceValidationError("A provider cannot book themselves")

    def _validate_budget(self, budget_min: Optional[float], budget_max: Optional[float]) -> None:
        if budget_min is not None and budget_min < 0:
            raise MarketplaceValidationError("budget_min cannot be negative")
        if budget_max is not None and budget_max < 0:
            raise MarketplaceValidationError("budget_max cannot be negative")
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            raise MarketplaceValidationError("budget_min cannot exceed budget_max")

    def _record_history(
        self,
        conn: sqlite3.Connection,
        booking_id: str,
        actor_user_id: Optional[str],
        from_status: str,
        to_status: str,
        note: str,
        created_at: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO booking_status_history (id, booking_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (new_id("bsh"), booking_id, actor_user_id, from_status, to_status, note, created_at),
        )

    def _list_views(self, where: str, params: tuple, viewer_id: str) -> List[Booking]:
        with self.db.transaction() as conn:
            rows = conn.execute(
                _BOOKING_VIEW_SQL + f" WHERE {where} ORDER BY b.created_at DESC",
                params,
            ).fetchall()
            unread = self._unread_counts(conn, [str(row["id"]) for row in rows], viewer_id)
        return [self._row_to_booking(row, unread.get(str(row["id"]), 0)) for row in rows]

    def _load_view(self, conn: sqlite3.Connection, booking_id: str, viewer_id: Optional[str]) -> Booking:
        row = conn.execute(_BOOKING_VIEW_SQL + " WHERE b.id = ?", (booking_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Booking not found")
        unread = self._unread_counts(conn, [booking_id], viewer_id) if viewer_id else {}
        return self._row_to_booking(row, unread.get(booking_id, 0))

    def _unread_counts(self, conn: sqlite3.Connection, booking_ids: List[str], viewer_id: str) -> Dict[str, int]:
        if not booking_ids:
            return {}
        placeholders = ", ".join("?" for _ in booking_ids)
        rows = conn.execute(
            f"""
            SELECT booking_id, COUNT(*) AS unread
            FROM messages
            WHERE booking_id IN ({placeholders}) AND sender_id != ? AND is_read = 0
            GROUP BY booking_id
            """,
            (*booking_ids, viewer_id),
        ).fetchall()
        return {str(row["booking_id"]): int(row["unread"]) for row in rows}

    def _row_to_booking(self, row: sqlite3.Row, unread_count: int) -> Booking:
        provider = None
        if row["provider_id"] is not None:
            average = row["provider_average_rating"]
            provider = BookingProviderSummary(
                id=row["provider_id"],
                name=row["provider_name"],
                email=row["provider_email"],
                phone=row["provider_phone"],
                photo_url=row["provider_photo_url"],
                is_verified=bool(row["provider_is_verified"]),
                average_rating=float(average) if average is not None else None,
            )
        rating = None
        if row["rating_id"] is not None:
            rating = Rating(
                id=row["rating_id"],
                booking_id=row["id"],
                score=int(row["rating_score"]),
                comment=row["rating_comment"],
                created_at=row["rating_created_at"],
            )
        return Booking(
            id=row["id"],
            status=row["status"],
            description=row["description"],
            postal_code=row["postal_code"],
            city=row["city"],
            address_text=row["address_text"],
            scheduled_at=row["scheduled_at"],
            urgency=row["urgency"],
            budget_min=row["budget_min"],
            budget_max=row["budget_max"],
            payment_status=row["payment_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
            category=Category(
                id=row["category_id"],
                slug=row["category_slug"],
                name=row["category_name"],
                description=row["category_description"],
                icon=row["category_icon"],
                sort_order=int(row["category_sort_order"]),
            ),
            client=BookingParty(
                id=row["client_id"],
                name=row["client_name"],
                email=row["client_email"],
                phone=row["client_phone"],
            ),
            provider=provider,
            rating=rating,
            unread_message_count=unread_count,
        )


booking_lifecycle = BookingLifecycle(database, identity_store, category_store, marketplace_notifier)
