"""Trust and safety reports filed by users against a user or a booking.

    PENDING -> INVESTIGATING -> RESOLVED | DISMISSED

Admins may move a report between any statuses except back to PENDING
once it is RESOLVED or DISMISSED.
"""
import logging
import math
import sqlite3
from typing import List, Optional

from marketplace.models import Report, ReportCreateRequest, ReportPage, ReportStatistics
from marketplace.services.database import Database, database, new_id, utcnow_iso
from marketplace.services.errors import MarketplaceNotFoundError, MarketplaceValidationError
from marketplace.services.identity_store import IdentityStore, identity_store

logger = logging.getLogger(__name__)

REPORT_STATUSES = ("PENDING", "INVESTIGATING", "RESOLVED", "DISMISSED")
CLOSED_STATUSES = {"RESOLVED", "DISMISSED"}
REPORT_TYPES = {"INAPPROPRIATE_CONTENT", "FRAUD", "HARASSMENT", "SPAM", "SAFETY_CONCERN", "OTHER"}
MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 2000
MAX_PAGE_SIZE = 100

_REPORT_VIEW_SQL = """
    SELECT
        r.*,
        ru.name AS reporter_name,
        ru.email AS reporter_email,
        tu.name AS reported_user_name,
        au.name AS resolved_by_name
    FROM reports r
    JOIN users ru ON ru.id = r.reporter_id
    LEFT JOIN users tu ON tu.id = r.reported_user_id
    LEFT JOIN users au ON au.id = r.resolved_by
"""


class ReportStore:
    def __init__(self, db: Database, identity: IdentityStore):
        self.db = db
        self.identity = identity

    def create_report(self, request: ReportCreateRequest) -> Report:
        description = (request.description or "").strip()
        if not MIN_DESCRIPTION_LENGTH <= len(description) <= MAX_DESCRIPTION_LENGTH:
            raise MarketplaceValidationError(
                f"Description must be between {MIN_DESCRIPTION_LENGTH} and {MAX_DESCRIPTION_LENGTH} characters"
            )
        if request.report_type not in REPORT_TYPES:
            raise MarketplaceValidationError(f"Invalid report type: {request.report_type}")
        if not request.reported_user_id and not request.reported_booking_id:
            raise MarketplaceValidationError("Must specify either reported user or booking")

        if not self.identity.find_user(request.reporter_id):
            raise MarketplaceNotFoundError("Reporter not found")
        if request.reported_user_id and not self.identity.find_user(request.reported_user_id):
            raise MarketplaceNotFoundError("Reported user not found")

        report_id = new_id("rp")
        now = utcnow_iso()
        with self.db.transaction() as conn:
            if request.reported_booking_id:
                booking = conn.execute(
                    "SELECT id FROM bookings WHERE id = ?", (request.reported_booking_id,)
                ).fetchone()
                if not booking:
                    raise MarketplaceNotFoundError("Reported booking not found")
            conn.execute(
                """
                INSERT INTO reports (
                    id, reporter_id, reported_user_id, reported_booking_id, report_type,
                    description, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 'PENDING', ?, ?)
                """,
                (
                    report_id,
                    request.reporter_id,
                    request.reported_user_id or None,
                    request.reported_booking_id or None,
                    request.report_type,
                    description,
                    now,
                    now,
                ),
            )
            report = self._load(conn, report_id)

        logger.info("User %s created report %s of type %s", request.reporter_id, report_id, request.report_type)
        return report

    def list_for_user(self, user_id: str) -> List[Report]:
        """Reports the user filed or that name the user, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                _REPORT_VIEW_SQL
                + " WHERE r.reporter_id = ? OR r.reported_user_id = ?"
                + " ORDER BY r.created_at DESC, r.rowid DESC",
                (user_id, user_id),
            ).fetchall()
        return [self._row_to_report(row) for row in rows]

    def list_reports(self, page: int = 0, size: int = 20, status: Optional[str] = None) -> ReportPage:
        if page < 0:
            raise MarketplaceValidationError("page must be zero or greater")
        if size <= 0 or size > MAX_PAGE_SIZE:
            raise MarketplaceValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")
        if status is not None and status not in REPORT_STATUSES:
            raise MarketplaceValidationError(f"Invalid status: {status}")

        where, params = ("", ()) if status is None else (" WHERE r.status = ?", (status,))
        with self.db.transaction() as conn:
            total = int(conn.execute("SELECT COUNT(*) FROM reports r" + where, params).fetchone()[0])
            rows = conn.execute(
                _REPORT_VIEW_SQL + where + " ORDER BY r.created_at DESC, r.rowid DESC LIMIT ? OFFSET ?",
                (*params, size, page * size),
            ).fetchall()
        total_pages = math.ceil(total / size) if total else 0
        return ReportPage(
            content=[self._row_to_report(row) for row in rows],
            page=page,
            size=size,
            total_elements=total,
            total_pages=total_pages,
            first=page == 0,
            last=page >= total_pages - 1,
        )

    def get_report(self, report_id: str) -> Report:
        with self.db.transaction() as conn:
            return self._load(conn, report_id)

    def update_status(
        self,
        report_id: str,
        admin_id: str,
        status: str,
        admin_notes: Optional[str] = None,
    ) -> Report:
        if status not in REPORT_STATUSES:
            raise MarketplaceValidationError(f"Invalid status: {status}")
        if not self.identity.find_user(admin_id):
            raise MarketplaceNotFoundError("Admin user not found")

        notes = (admin_notes or "").strip() or None
        now = utcnow_iso()
        with self.db.transaction() as conn:
            current = self._load(conn, report_id)
            if current.status in CLOSED_STATUSES and status == "PENDING":
                raise MarketplaceValidationError("Cannot reopen a resolved or dismissed report")

            assignments = ["status = ?", "updated_at = ?"]
            params: List[object] = [status, now]
            if notes:
                assignments.append("admin_notes = ?")
                params.append(notes)
            if status in CLOSED_STATUSES:
                assignments.extend(["resolved_by = ?", "resolved_at = ?"])
                params.extend([admin_id, now])
            params.append(report_id)
            conn.execute(f"UPDATE reports SET {', '.join(assignments)} WHERE id = ?", tuple(params))
            report = self._load(conn, report_id)

        logger.info("Admin %s moved report %s from %s to %s", admin_id, report_id, current.status, status)
        return report

    def statistics(self) -> ReportStatistics:
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS total FROM reports GROUP BY status").fetchall()
        counts = {str(row["status"]): int(row["total"]) for row in rows}
        return ReportStatistics(
            pending=counts.get("PENDING", 0),
            investigating=counts.get("INVESTIGATING", 0),
            resolved=counts.get("RESOLVED", 0),
            dismissed=counts.get("DISMISSED", 0),
            total=sum(counts.get(status, 0) for status in REPORT_STATUSES),
        )

    def _load(self, conn: sqlite3.Connection, report_id: str) -> Report:
        row = conn.execute(_REPORT_VIEW_SQL + " WHERE r.id = ?", (report_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Report not found")
        return self._row_to_report(row)

    def _row_to_report(self, row: sqlite3.Row) -> Report:
        return Report(
            id=row["id"],
            reporter_id=row["reporter_id"],
            reporter_name=row["reporter_name"],
            reporter_email=row["reporter_email"],
            reported_user_id=row["reported_user_id"],
            reported_user_name=row["reported_user_name"],
            reported_booking_id=row["reported_booking_id"],
            report_type=row["report_type"],
            description=row["description"],
            status=row["status"],
            admin_notes=row["admin_notes"],
            resolved_by_id=row["resolved_by"],
            resolved_by_name=row["resolved_by_name"],
            resolved_at=row["resolved_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


report_store = ReportStore(db=database, identity=identity_store)
