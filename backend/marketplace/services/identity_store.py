import logging
import sqlite3
from typing import Optional

from marketplace.models import User
from marketplace.services.database import Database, database, new_id, utcnow_iso
from marketplace.services.errors import (
    MarketplaceConflictError,
    MarketplaceNotFoundError,
    MarketplaceValidationError,
)

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"CLIENT", "PROVIDER", "ADMIN"}


class IdentityStore:
    def __init__(self, db: Database):
        self.db = db

    def create_user(
        self,
        *,
        email: str,
        name: str,
        phone: Optional[str] = None,
        role: str = "CLIENT",
        user_id: Optional[str] = None,
    ) -> User:
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if not email or "@" not in email:
            raise MarketplaceValidationError("A valid email is required")
        if not name:
            raise MarketplaceValidationError("Name is required")
        if role not in ALLOWED_ROLES:
            raise MarketplaceValidationError("Invalid role. Allowed: CLIENT, PROVIDER, ADMIN")

        now = utcnow_iso()
        user = User(
            id=user_id or new_id("usr"),
            email=email,
            name=name,
            phone=(phone or "").strip() or None,
            role=role,  # type: ignore[arg-type]
            created_at=now,
        )
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, name, phone, role, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (user.id, user.email, user.name, user.phone, user.role, now, now),
                )
        except sqlite3.IntegrityError:
            raise MarketplaceConflictError("An account with this email already exists") from None
        logger.info("Created %s account %s", user.role, user.id)
        return user

    def find_user(self, user_id: str) -> Optional[User]:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user(self, user_id: str) -> User:
        user = self.find_user(user_id)
        if not user:
            raise MarketplaceNotFoundError("User not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", ((email or "").strip(),)).fetchone()
        return self._row_to_user(row) if row else None

    def is_admin(self, user_id: str) -> bool:
        user = self.find_user(user_id)
        return bool(user and user.role == "ADMIN")

    def promote_to_provider(self, user_id: str) -> User:
        """Move a CLIENT to the PROVIDER role.

        Calling it for an account that already is a provider changes
        nothing. Admin accounts are never turned into providers.
        """
        with self.db.transaction() as conn:
            return self.promote_within(conn, user_id)

    def promote_within(self, conn: sqlite3.Connection, user_id: str) -> User:
        """Promotion on a caller-owned connection; commits with the caller."""
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("User not found")
        role = row["role"]
        if role == "PROVIDER":
            return self._row_to_user(row)
        if role != "CLIENT":
            raise MarketplaceConflictError(f"A {role} account cannot become a provider")
        conn.execute(
            "UPDATE users SET role = 'PROVIDER', updated_at = ? WHERE id = ? AND role = 'CLIENT'",
            (utcnow_iso(), user_id),
        )
        updated = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        logger.info("Promoted user %s to PROVIDER", user_id)
        return self._row_to_user(updated)

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            phone=row["phone"],
            role=row["role"],
            created_at=row["created_at"],
        )


identity_store = IdentityStore(database)
