"""
SQLite database for deliveries, delivery photos and admin users.

Rows are exchanged as plain dictionaries; callers wrap them in the pydantic
models from models.py.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4


# Default database path
DEFAULT_DB_PATH = Path("data/pallet_tracking.db")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value: Any) -> str:
    """Plain string for enum members and strings alike."""
    return str(getattr(value, "value", value))


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


class DeliveryDatabase:
    """
    SQLite database for delivery persistence.

    Thread-safe: every call opens its own connection and SQLite handles
    concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path
        _ensure_db_dir(db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS deliveries (
                    id TEXT PRIMARY KEY,
                    driver_name TEXT NOT NULL,
                    driver_phone TEXT NOT NULL,
                    driver_email TEXT NOT NULL DEFAULT '',
                    company_name TEXT NOT NULL,
                    pickup_location TEXT NOT NULL,
                    delivery_location TEXT NOT NULL,
                    pallet_count INTEGER NOT NULL,
                    bill_of_lading_url TEXT,
                    signature_url TEXT,
                    status TEXT NOT NULL,
                    confirmed_at TEXT,
                    created_at TEXT NOT NULL,
                    chat_responses TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_deliveries_created_at
                ON deliveries(created_at DESC)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS delivery_photos (
                    id TEXT PRIMARY KEY,
                    delivery_id TEXT NOT NULL REFERENCES deliveries(id) ON DELETE CASCADE,
                    photo_url TEXT NOT NULL,
                    photo_type TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS admin_users (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)

    # -- Deliveries -------------------------------------------------------------
    def insert_delivery(self, delivery: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a delivery and return the stored row.

        Args:
            delivery: Delivery fields; id and created_at are generated when absent
        """
        record = {
            "id": delivery.get("id") or uuid4().hex,
            "created_at": delivery.get("created_at") or _utcnow(),
            **{k: v for k, v in delivery.items() if k not in ("id", "created_at")},
        }
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO deliveries (
                    id, driver_name, driver_phone, driver_email, company_name,
                    pickup_location, delivery_location, pallet_count,
                    bill_of_lading_url, signature_url, status,
                    confirmed_at, created_at, chat_responses
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record["id"],
                record["driver_name"],
                record["driver_phone"],
                record.get("driver_email") or "",
                record["company_name"],
                record["pickup_location"],
                record["delivery_location"],
                int(record["pallet_count"]),
                record.get("bill_of_lading_url") or "",
                record.get("signature_url") or "",
                _enum_value(record["status"]),
                _serialize_datetime(record.get("confirmed_at")),
                _serialize_datetime(record["created_at"]),
                json.dumps(record.get("chat_responses") or {}),
            ))
        return self.get_delivery(record["id"])  # type: ignore[return-value]

    def get_delivery(self, delivery_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM deliveries WHERE id = ?", (delivery_id,)
            ).fetchone()

            if not row:
                return None

            return self._delivery_row_to_dict(row)

    def list_deliveries(self) -> List[Dict[str, Any]]:
        """List all deliveries ordered by creation time (newest first)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM deliveries ORDER BY created_at DESC"
            ).fetchall()

            return [self._delivery_row_to_dict(row) for row in rows]

    def add_delivery_photo(self, delivery_id: str, photo_url: str, photo_type: str) -> Dict[str, Any]:
        record = {
            "id": uuid4().hex,
            "delivery_id": delivery_id,
            "photo_url": photo_url,
            "photo_type": _enum_value(photo_type),
            "created_at": _utcnow(),
        }
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO delivery_photos (id, delivery_id, photo_url, photo_type, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    record["id"],
                    record["delivery_id"],
                    record["photo_url"],
                    record["photo_type"],
                    _serialize_datetime(record["created_at"]),
                ),
            )
        return record

    def list_delivery_photos(self, delivery_id: str) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM delivery_photos WHERE delivery_id = ? ORDER BY created_at",
                (delivery_id,),
            ).fetchall()

            return [
                {
                    "id": row["id"],
                    "delivery_id": row["delivery_id"],
                    "photo_url": row["photo_url"],
                    "photo_type": row["photo_type"],
                    "created_at": _deserialize_datetime(row["created_at"]),
                }
                for row in rows
            ]

    # -- Admin users ---------------------------------------------------------------
    def add_admin_user(self, email: str, name: str, is_active: bool = True) -> Dict[str, Any]:
        """
        Add an admin user.

        Raises:
            ValueError: If an admin with this email already exists
        """
        record = {
            "id": uuid4().hex,
            "email": email.strip(),
            "name": name.strip(),
            "is_active": is_active,
            "created_at": _utcnow(),
        }
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO admin_users (id, email, name, is_active, created_at) VALUES (?, ?, ?, ?, ?)",
                    (
                        record["id"],
                        record["email"],
                        record["name"],
                        int(is_active),
                        _serialize_datetime(record["created_at"]),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Admin user {record['email']} already exists") from exc
        return record

    def get_admin_user(self, admin_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM admin_users WHERE id = ?", (admin_id,)).fetchone()
            return self._admin_row_to_dict(row) if row else None

    def list_admin_users(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """List admin users ordered by creation time (newest first)."""
        query = "SELECT * FROM admin_users"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query).fetchall()
            return [self._admin_row_to_dict(row) for row in rows]

    def set_admin_active(self, admin_id: str, is_active: bool) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE admin_users SET is_active = ? WHERE id = ?", (int(is_active), admin_id)
            )
            return cursor.rowcount > 0

    def delete_admin_user(self, admin_id: str) -> bool:
        """
        Delete an admin user.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM admin_users WHERE id = ?", (admin_id,))
            return cursor.rowcount > 0

    def _delivery_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a delivery dictionary."""
        return {
            "id": row["id"],
            "driver_name": row["driver_name"],
            "driver_phone": row["driver_phone"],
            "driver_email": row["driver_email"],
            "company_name": row["company_name"],
            "pickup_location": row["pickup_location"],
            "delivery_location": row["delivery_location"],
            "pallet_count": row["pallet_count"],
            "bill_of_lading_url": row["bill_of_lading_url"] or "",
            "signature_url": row["signature_url"] or "",
            "status": row["status"],
            "confirmed_at": _deserialize_datetime(row["confirmed_at"]),
            "created_at": _deserialize_datetime(row["created_at"]),
            "chat_responses": json.loads(row["chat_responses"] or "{}"),
        }

    def _admin_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "email": row["email"],
            "name": row["name"],
            "is_active": bool(row["is_active"]),
            "created_at": _deserialize_datetime(row["created_at"]),
        }
