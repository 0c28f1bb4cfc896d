"""SQLite receipt storage for Steward."""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date
from pathlib import Path

from steward.config import settings
from steward.models import Receipt, ReceiptCategory

# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS receipts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    merchant TEXT NOT NULL,
    total REAL NOT NULL,
    purchase_date TEXT NOT NULL,
    category TEXT,
    currency TEXT NOT NULL DEFAULT 'USD',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_receipts_user_date ON receipts(user_id, purchase_date);
CREATE INDEX IF NOT EXISTS idx_receipts_user_merchant ON receipts(user_id, merchant);
CREATE INDEX IF NOT EXISTS idx_receipts_user_category ON receipts(user_id, category);
"""

_COLUMNS = "id, user_id, merchant, total, purchase_date, category, currency"


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or settings.db_path
        if db_path is None:
            settings.ensure_directories()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def add_receipt(self, receipt: Receipt) -> bool:
        """Add a receipt. Returns True if added, False if the id already exists."""
        with self._get_connection() as conn:
            try:
                conn.execute(
                    f"INSERT INTO receipts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        str(receipt.id),
                        receipt.user_id,
                        receipt.merchant,
                        receipt.total,
                        receipt.purchase_date.isoformat(),
                        receipt.category.value if receipt.category else None,
                        receipt.currency,
                    ),
                )
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                return False

    def add_receipts_batch(self, receipts: list[Receipt]) -> tuple[int, int]:
        """Add multiple receipts. Returns (added_count, skipped_count)."""
        added = sum(1 for receipt in receipts if self.add_receipt(receipt))
        return added, len(receipts) - added

    def get_receipts(
        self,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        merchant: str | None = None,
        category: ReceiptCategory | str | None = None,
        limit: int | None = 10000,
    ) -> list[Receipt]:
        """Get a user's receipts with optional filters, newest first. limit=None returns all."""
        query = f"SELECT {_COLUMNS} FROM receipts WHERE user_id = ?"
        params: list = [user_id]

        if start_date:
            query += " AND purchase_date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            query += " AND purchase_date <= ?"
            params.append(end_date.isoformat())
        if merchant:
            # LIKE is case-insensitive for ASCII in SQLite
            query += " AND merchant LIKE ?"
            params.append(f"%{merchant}%")
        if category:
            query += " AND category = ?"
            params.append(category.value if isinstance(category, ReceiptCategory) else category)

        query += " ORDER BY purchase_date DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_receipt(row) for row in cursor.fetchall()]

    def get_receipt_count(self, user_id: str | None = None) -> int:
        """Get receipt count, for one user or overall."""
        with self._get_connection() as conn:
            if user_id:
                cursor = conn.execute("SELECT COUNT(*) FROM receipts WHERE user_id = ?", (user_id,))
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM receipts")
            return cursor.fetchone()[0]

    def _row_to_receipt(self, row: sqlite3.Row) -> Receipt:
        """Convert a database row to a Receipt model."""
        return Receipt(
            id=row["id"],
            user_id=row["user_id"],
            merchant=row["merchant"],
            total=row["total"],
            purchase_date=date.fromisoformat(row["purchase_date"]),
            category=ReceiptCategory(row["category"]) if row["category"] else None,
            currency=row["currency"],
        )


# Global database instance
db = Database()
