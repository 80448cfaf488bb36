"""Tracked-state store for reconciled records."""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

import structlog

from ..models.addressing import AddressingMode
from ..models.state import RecordState

logger = structlog.get_logger(__name__)


class StateStore:
    """
    SQLite-based store of tracked record state.

    One row per record name. Only the locally-owned subset of extensible
    attributes is persisted; the reserved internal id lives in its own column.
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize StateStore.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn: sqlite3.Connection = self._initialize_db()

        logger.debug("StateStore initialized", db_path=str(self.db_path))

    def _initialize_db(self) -> sqlite3.Connection:
        """Initialize database schema."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                name TEXT PRIMARY KEY,
                ref TEXT NOT NULL,
                internal_id TEXT NOT NULL,
                fqdn TEXT NOT NULL,
                mode TEXT NOT NULL,
                ipv6_addr TEXT,
                cidr TEXT,
                filter_params TEXT,
                network_view TEXT,
                dns_view TEXT,
                ttl INTEGER,
                use_ttl INTEGER NOT NULL DEFAULT 0,
                comment TEXT,
                ext_attrs TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL
            )
        """
        )

        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_records_internal_id
            ON records(internal_id)
        """
        )

        conn.commit()

        logger.debug("Database schema initialized")
        return conn

    def put(self, name: str, state: RecordState) -> None:
        """
        Insert or replace the tracked state of a record.

        Args:
            name: Record name from the declaration file
            state: State returned by the reconciler
        """
        self.conn.execute(
            """
            INSERT OR REPLACE INTO records (
                name, ref, internal_id, fqdn, mode, ipv6_addr, cidr, filter_params,
                network_view, dns_view, ttl, use_ttl, comment, ext_attrs, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                state.ref,
                state.internal_id,
                state.fqdn,
                state.mode.value,
                state.ipv6_addr,
                state.cidr,
                state.filter_params,
                state.network_view,
                state.dns_view,
                state.ttl,
                int(state.use_ttl),
                state.comment,
                json.dumps(state.ext_attrs, sort_keys=True),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self.conn.commit()

        logger.debug("State saved", record=name, ref=state.ref)

    def get(self, name: str) -> RecordState | None:
        """
        Get the tracked state of a record.

        Returns:
            RecordState or None if the record is not tracked
        """
        cursor = self.conn.execute("SELECT * FROM records WHERE name = ?", (name,))
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_state(row)

    def delete(self, name: str) -> bool:
        """
        Forget a record.

        Returns:
            True if a row was removed
        """
        cursor = self.conn.execute("DELETE FROM records WHERE name = ?", (name,))
        self.conn.commit()
        removed = cursor.rowcount > 0

        if removed:
            logger.debug("State removed", record=name)
        return removed

    def all(self) -> dict[str, RecordState]:
        """Return every tracked record keyed by name, in name order."""
        cursor = self.conn.execute("SELECT * FROM records ORDER BY name ASC")
        return {row["name"]: self._row_to_state(row) for row in cursor.fetchall()}

    def names(self) -> list[str]:
        cursor = self.conn.execute("SELECT name FROM records ORDER BY name ASC")
        return [row["name"] for row in cursor.fetchall()]

    def _row_to_state(self, row: sqlite3.Row) -> RecordState:
        """
        Convert SQLite row to RecordState.

        Args:
            row: SQLite row object.

        Returns:
            RecordState object.
        """
        return RecordState(
            ref=row["ref"],
            internal_id=row["internal_id"],
            fqdn=row["fqdn"],
            mode=AddressingMode(row["mode"]),
            ipv6_addr=row["ipv6_addr"],
            cidr=row["cidr"],
            filter_params=row["filter_params"],
            network_view=row["network_view"],
            dns_view=row["dns_view"],
            ttl=row["ttl"],
            use_ttl=bool(row["use_ttl"]),
            comment=row["comment"],
            ext_attrs=json.loads(row["ext_attrs"] or "{}"),
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            logger.debug("StateStore closed")

    def __enter__(self) -> "StateStore":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        self.close()
