"""Claim-once store for consumed payment transactions."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class PaymentClaimRecord:
    """A transaction hash that has already bought access."""

    tx_hash: str
    network: str
    payer: str | None
    amount: int | None
    claimed_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PaymentClaimRecord":
        return cls(
            tx_hash=row["tx_hash"],
            network=row["network"],
            payer=row["payer"],
            amount=int(row["amount"]) if row["amount"] is not None else None,
            claimed_at=datetime.fromisoformat(row["claimed_at"]),
        )


class ClaimStore:
    """SQLite-backed record of consumed payments.

    The PRIMARY KEY on tx_hash makes try_claim atomic: exactly one caller
    inserts a given hash.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS payment_claims (
                tx_hash TEXT PRIMARY KEY,
                network TEXT NOT NULL,
                payer TEXT,
                amount TEXT,
                claimed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_payment_claims_payer ON payment_claims(payer);
        """)
        self.conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def try_claim(
        self,
        tx_hash: str,
        network: str,
        payer: str | None = None,
        amount: int | None = None,
    ) -> bool:
        """Record tx_hash as consumed.

        Returns:
            True if this call was the first to claim the hash.
        """
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                self.conn.execute(
                    """
                    INSERT INTO payment_claims (tx_hash, network, payer, amount, claimed_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        tx_hash.lower(),
                        network,
                        payer.lower() if payer else None,
                        str(amount) if amount is not None else None,
                        now,
                    ),
                )
            except sqlite3.IntegrityError:
                self.conn.rollback()
                return False
            self.conn.commit()
        return True

    def is_claimed(self, tx_hash: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "SELECT 1 FROM payment_claims WHERE tx_hash = ?", (tx_hash.lower(),)
            )
            return cursor.fetchone() is not None

    def get_claim(self, tx_hash: str) -> PaymentClaimRecord | None:
        with self._lock:
            cursor = self.conn.execute(
                "SELECT * FROM payment_claims WHERE tx_hash = ?", (tx_hash.lower(),)
            )
            row = cursor.fetchone()
        return PaymentClaimRecord.from_row(row) if row else None

    def list_claims(self, payer: str | None = None) -> list[PaymentClaimRecord]:
        """List claims, newest first, optionally for one payer."""
        with self._lock:
            if payer:
                cursor = self.conn.execute(
                    "SELECT * FROM payment_claims WHERE payer = ? ORDER BY claimed_at DESC",
                    (payer.lower(),),
                )
            else:
                cursor = self.conn.execute("SELECT * FROM payment_claims ORDER BY claimed_at DESC")
            rows = cursor.fetchall()
        return [PaymentClaimRecord.from_row(row) for row in rows]

    def get_stats(self) -> dict:
        """Get claim statistics."""
        with self._lock:
            cursor = self.conn.execute(
                "SELECT network, COUNT(*) AS count FROM payment_claims GROUP BY network"
            )
            by_network = {row["network"]: row["count"] for row in cursor}

        return {
            "total_claims": sum(by_network.values()),
            "claims_by_network": by_network,
        }
