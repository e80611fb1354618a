# app/services/store.py
"""
SQLite persistence for shared datasets, entitlements and the verified
arbitrage opportunities the pipeline publishes.

Each operation opens its own connection and runs a single statement, so
every read and write is atomic on its own. No transaction spans a dataset
lookup and an entitlement insert.

The process-wide store is created once by init_store() at application
startup, handed to callers through get_store(), and released by
close_store() on shutdown.
"""
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings
from app.x402.models import Entitlement, SharedDataset

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS shared_datasets (
    id TEXT PRIMARY KEY,
    items TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_shared_datasets_created_at
    ON shared_datasets (created_at);

CREATE TABLE IF NOT EXISTS entitlements (
    id TEXT PRIMARY KEY,
    wallet_address TEXT NOT NULL,
    shared_dataset_id TEXT REFERENCES shared_datasets (id),
    tx_hash TEXT NOT NULL,
    facilitator_response TEXT,
    valid_until TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entitlements_wallet_created_at
    ON entitlements (wallet_address, created_at);

CREATE TABLE IF NOT EXISTS verified_arbitrage_opportunities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    polymarket_question TEXT,
    kalshi_title TEXT,
    similarity_score REAL,
    poly_price_cents TEXT NOT NULL,
    kalshi_price_cents TEXT NOT NULL,
    price_diff_cents TEXT NOT NULL,
    direction_aligned INTEGER,
    direction_confidence REAL,
    direction_notes TEXT,
    poly_slug TEXT,
    kalshi_ticker TEXT,
    poly_end_date TEXT,
    kalshi_expiration_time TEXT
);
"""

OPPORTUNITY_COLUMNS = (
    "polymarket_question",
    "kalshi_title",
    "similarity_score",
    "poly_price_cents",
    "kalshi_price_cents",
    "price_diff_cents",
    "direction_aligned",
    "direction_confidence",
    "direction_notes",
    "poly_slug",
    "kalshi_ticker",
    "poly_end_date",
    "kalshi_expiration_time",
)


class StoreError(Exception):
    """A persistence operation failed (not raised for "row not found")."""


def dict_factory(cursor: sqlite3.Cursor, row: Tuple[Any, ...]) -> Dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime as fixed-width UTC ISO-8601 so text order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dataset_from_row(row: Dict[str, Any], prefix: str = "") -> SharedDataset:
    return SharedDataset(
        id=row[f"{prefix}id"],
        items=json.loads(row[f"{prefix}items"] or "[]"),
        created_at=parse_db_time(row[f"{prefix}created_at"]),
        expires_at=parse_db_time(row[f"{prefix}expires_at"]),
    )


def _entitlement_from_row(row: Dict[str, Any]) -> Entitlement:
    raw_response = row.get("facilitator_response")
    return Entitlement(
        id=row["id"],
        wallet_address=row["wallet_address"],
        shared_dataset_id=row.get("shared_dataset_id"),
        tx_hash=row["tx_hash"],
        facilitator_response=json.loads(raw_response) if raw_response else None,
        valid_until=parse_db_time(row["valid_until"]),
        created_at=parse_db_time(row["created_at"]),
    )


class DatasetStore:
    """Keyed store for shared datasets and the entitlements granted on them."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _fetch_one(self, query: str, params: Tuple[Any, ...]) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        try:
            return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _execute(self, query: str, params: Tuple[Any, ...]) -> None:
        conn = self._get_conn()
        try:
            conn.execute(query, params)
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the database file and tables if they do not exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_conn()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()
        logger.info(f"Dataset store ready at {self.db_path}")

    # --- Shared datasets ---

    def insert_dataset(
        self,
        items: List[Any],
        expires_at: datetime,
        created_at: Optional[datetime] = None,
        dataset_id: Optional[str] = None,
    ) -> SharedDataset:
        """Insert a dataset row. Normally done by the external pipeline."""
        dataset = SharedDataset(
            id=dataset_id or str(uuid.uuid4()),
            items=items,
            created_at=created_at or utcnow(),
            expires_at=expires_at,
        )
        self._execute(
            "INSERT INTO shared_datasets (id, items, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (
                dataset.id,
                json.dumps(dataset.items),
                to_db_time(dataset.created_at),
                to_db_time(dataset.expires_at),
            ),
        )
        return dataset

    def get_dataset(self, dataset_id: str) -> Optional[SharedDataset]:
        row = self._fetch_one("SELECT * FROM shared_datasets WHERE id = ?", (dataset_id,))
        return _dataset_from_row(row) if row else None

    def get_latest_active_dataset(self, now: datetime) -> Optional[SharedDataset]:
        """Most recently created dataset that has not yet expired."""
        row = self._fetch_one(
            "SELECT * FROM shared_datasets WHERE expires_at > ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (to_db_time(now),),
        )
        return _dataset_from_row(row) if row else None

    def get_latest_dataset(self) -> Optional[SharedDataset]:
        """Most recently created dataset regardless of expiry."""
        row = self._fetch_one(
            "SELECT * FROM shared_datasets ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (),
        )
        return _dataset_from_row(row) if row else None

    # --- Entitlements ---

    def insert_entitlement(
        self,
        wallet_address: str,
        shared_dataset_id: str,
        tx_hash: str,
        facilitator_response: Optional[Any],
        valid_until: datetime,
    ) -> Entitlement:
        """Insert an entitlement row and return it with generated id and timestamp."""
        entitlement = Entitlement(
            id=str(uuid.uuid4()),
            wallet_address=wallet_address.lower(),
            shared_dataset_id=shared_dataset_id,
            tx_hash=tx_hash,
            facilitator_response=facilitator_response,
            valid_until=valid_until,
            created_at=utcnow(),
        )
        self._execute(
            "INSERT INTO entitlements (id, wallet_address, shared_dataset_id, tx_hash, "
            "facilitator_response, valid_until, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                entitlement.id,
                entitlement.wallet_address,
                entitlement.shared_dataset_id,
                entitlement.tx_hash,
                json.dumps(facilitator_response) if facilitator_response is not None else None,
                to_db_time(entitlement.valid_until),
                to_db_time(entitlement.created_at),
            ),
        )
        return entitlement

    def get_latest_entitlement(
        self, wallet_address: str
    ) -> Optional[Tuple[Entitlement, Optional[SharedDataset]]]:
        """
        Most recent entitlement for a wallet, left-joined with its dataset.

        Returns:
            (entitlement, dataset or None), or None when the wallet has no
            entitlement
        """
        row = self._fetch_one(
            "SELECT e.*, d.id AS d_id, d.items AS d_items, "
            "d.created_at AS d_created_at, d.expires_at AS d_expires_at "
            "FROM entitlements e "
            "LEFT JOIN shared_datasets d ON d.id = e.shared_dataset_id "
            "WHERE e.wallet_address = ? "
            "ORDER BY e.created_at DESC, e.rowid DESC LIMIT 1",
            (wallet_address.lower(),),
        )
        if row is None:
            return None

        dataset = _dataset_from_row(row, prefix="d_") if row.get("d_id") else None
        return _entitlement_from_row(row), dataset

    # --- Arbitrage opportunities ---

    def insert_opportunity(self, row: Dict[str, Any]) -> None:
        """Insert a verified opportunity row. Normally done by the external pipeline."""
        columns = [name for name in OPPORTUNITY_COLUMNS if name in row]
        placeholders = ", ".join("?" for _ in columns)
        self._execute(
            f"INSERT INTO verified_arbitrage_opportunities ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(row[name] for name in columns),
        )

    def list_opportunities(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Verified opportunities ordered by price spread, widest first."""
        conn = self._get_conn()
        try:
            return conn.execute(
                "SELECT * FROM verified_arbitrage_opportunities "
                "ORDER BY CAST(price_diff_cents AS REAL) DESC, id ASC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()


# Process-wide store
_store: Optional[DatasetStore] = None
_store_lock = threading.Lock()


def init_store(db_path: Optional[str] = None) -> DatasetStore:
    """
    Create and initialize the process-wide store (idempotent).

    Returns:
        The singleton DatasetStore instance
    """
    global _store

    with _store_lock:
        if _store is None:
            store = DatasetStore(db_path or settings.DATABASE_PATH)
            store.initialize()
            _store = store

    return _store


def get_store() -> DatasetStore:
    """Get the process-wide store, initializing it on first use."""
    if _store is None:
        return init_store()
    return _store


def close_store() -> None:
    """Release the process-wide store (on shutdown, or between tests)."""
    global _store
    with _store_lock:
        _store = None
