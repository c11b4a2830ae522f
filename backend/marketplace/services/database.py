import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from marketplace import config


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


@dataclass
class Database:
    """Shared sqlite file behind every marketplace store."""

    db_path: str

    def __post_init__(self) -> None:
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    name TEXT NOT NULL,
                    phone TEXT,
                    role TEXT NOT NULL DEFAULT 'CLIENT',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    slug TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    description TEXT,
                    icon TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_profiles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE REFERENCES users(id),
                    bio TEXT NOT NULL DEFAULT '',
                    photo_url TEXT,
                    languages_json TEXT NOT NULL DEFAULT '[]',
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    verification_notes TEXT,
                    response_time_minutes INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_categories (
                    profile_id TEXT NOT NULL REFERENCES provider_profiles(id) ON DELETE CASCADE,
                    category_id TEXT NOT NULL REFERENCES categories(id),
                    PRIMARY KEY (profile_id, category_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_locations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    profile_id TEXT NOT NULL REFERENCES provider_profiles(id) ON DELETE CASCADE,
                    postal_code TEXT NOT NULL,
                    city TEXT NOT NULL,
                    canton TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_availabilities (
                    profile_id TEXT NOT NULL REFERENCES provider_profiles(id) ON DELETE CASCADE,
                    weekday INTEGER NOT NULL,
                    time_slot TEXT NOT NULL,
                    UNIQUE (profile_id, weekday, time_slot)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provider_pricings (
                    profile_id TEXT NOT NULL REFERENCES provider_profiles(id) ON DELETE CASCADE,
                    category_id TEXT NOT NULL REFERENCES categories(id),
                    pricing_type TEXT NOT NULL,
                    hourly_rate REAL,
                    fixed_price REAL,
                    min_hours REAL,
                    currency TEXT NOT NULL DEFAULT 'CHF',
                    UNIQUE (profile_id, category_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bookings (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL REFERENCES users(id),
                    provider_id TEXT REFERENCES users(id),
                    category_id TEXT NOT NULL REFERENCES categories(id),
                    status TEXT NOT NULL,
                    description TEXT NOT NULL,
                    postal_code TEXT NOT NULL,
                    city TEXT NOT NULL,
                    address_text TEXT,
                    scheduled_at TEXT,
                    urgency TEXT,
                    budget_min REAL,
                    budget_max REAL,
                    payment_status TEXT NOT NULL DEFAULT 'PENDING',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_booking_client ON bookings(client_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_booking_provider ON bookings(provider_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_booking_status ON bookings(status)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS booking_status_history (
                    id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
                    actor_user_id TEXT,
                    from_status TEXT NOT NULL,
                    to_status TEXT NOT NULL,
                    note TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
                    sender_id TEXT NOT NULL REFERENCES users(id),
                    content TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_message_booking ON messages(booking_id)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ratings (
                    id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL UNIQUE REFERENCES bookings(id) ON DELETE CASCADE,
                    client_id TEXT NOT NULL REFERENCES users(id),
                    provider_id TEXT NOT NULL REFERENCES users(id),
                    score INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_rating_provider ON ratings(provider_id)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reports (
                    id TEXT PRIMARY KEY,
                    reporter_id TEXT NOT NULL REFERENCES users(id),
                    reported_user_id TEXT REFERENCES users(id),
                    reported_booking_id TEXT REFERENCES bookings(id) ON DELETE SET NULL,
                    report_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    admin_notes TEXT,
                    resolved_by TEXT REFERENCES users(id),
                    resolved_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_report_status ON reports(status)")
            self._ensure_column(conn, "provider_profiles", "response_time_minutes", "INTEGER")
            self._ensure_column(conn, "bookings", "version", "INTEGER NOT NULL DEFAULT 0")

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {row["name"] for row in columns}
        if column in existing:
            return
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


database = Database(db_path=config.DB_PATH)
