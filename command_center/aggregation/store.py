"""
Persistence for computed aggregations and performance snapshots.

Aggregations are keyed by {entity_id}_{fiscal_year}_{quarter-or-"full"} per
company. A put under an existing key replaces the record (last write wins).
Records are stored as the JSON of their to_dict() so reads rebuild them
exactly.

SQLiteStore opens a connection per call, so it is safe to share across the
engine's worker threads. InMemoryStore is for tests and ephemeral runs.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .models import AggregatedPerformance, PerformanceSnapshot, SnapshotFilters

logger = logging.getLogger(__name__)


class AggregationStore(Protocol):
    def get(self, company_id: str, key: str) -> AggregatedPerformance | None: ...

    def put(self, company_id: str, record: AggregatedPerformance) -> None: ...


class SnapshotStore(Protocol):
    def put_snapshot(self, company_id: str, snapshot: PerformanceSnapshot) -> None: ...

    def get_snapshot(self, company_id: str, snapshot_id: str) -> PerformanceSnapshot | None: ...

    def list_snapshots(
        self, company_id: str, filters: SnapshotFilters | None = None
    ) -> list[PerformanceSnapshot]: ...

    def delete_snapshot(self, company_id: str, snapshot_id: str) -> None: ...

    def delete_snapshots_before(self, company_id: str, cutoff: datetime) -> int: ...


def _matches(snapshot: PerformanceSnapshot, filters: SnapshotFilters) -> bool:
    if filters.level is not None and snapshot.level != filters.level:
        return False
    if filters.entity_id is not None and snapshot.entity_id != filters.entity_id:
        return False
    if filters.frequency is not None and snapshot.frequency != filters.frequency:
        return False
    if filters.fiscal_year is not None and snapshot.fiscal_year != filters.fiscal_year:
        return False
    if filters.quarter is not None and snapshot.fiscal_quarter != filters.quarter:
        return False
    if filters.start_date is not None and snapshot.snapshot_date < filters.start_date:
        return False
    if filters.end_date is not None and snapshot.snapshot_date > filters.end_date:
        return False
    return True


# =============================================================================
# IN-MEMORY
# =============================================================================


class InMemoryStore:
    """Dict-backed aggregation + snapshot store."""

    def __init__(self):
        self._aggregations: dict[tuple[str, str], dict] = {}
        self._snapshots: dict[tuple[str, str], dict] = {}

    def get(self, company_id: str, key: str) -> AggregatedPerformance | None:
        data = self._aggregations.get((company_id, key))
        return AggregatedPerformance.from_dict(data) if data else None

    def put(self, company_id: str, record: AggregatedPerformance) -> None:
        self._aggregations[(company_id, record.id)] = record.to_dict()

    def put_snapshot(self, company_id: str, snapshot: PerformanceSnapshot) -> None:
        self._snapshots[(company_id, snapshot.id)] = snapshot.to_dict()

    def get_snapshot(self, company_id: str, snapshot_id: str) -> PerformanceSnapshot | None:
        data = self._snapshots.get((company_id, snapshot_id))
        return PerformanceSnapshot.from_dict(data) if data else None

    def list_snapshots(
        self, company_id: str, filters: SnapshotFilters | None = None
    ) -> list[PerformanceSnapshot]:
        filters = filters or SnapshotFilters()
        snapshots = [
            PerformanceSnapshot.from_dict(data)
            for (cid, _), data in self._snapshots.items()
            if cid == company_id
        ]
        snapshots = [s for s in snapshots if _matches(s, filters)]
        snapshots.sort(key=lambda s: s.snapshot_date, reverse=True)
        return snapshots[: filters.limit] if filters.limit is not None else snapshots

    def delete_snapshot(self, company_id: str, snapshot_id: str) -> None:
        self._snapshots.pop((company_id, snapshot_id), None)

    def delete_snapshots_before(self, company_id: str, cutoff: datetime) -> int:
        stale = [
            key
            for key, data in self._snapshots.items()
            if key[0] == company_id and datetime.fromisoformat(data["snapshot_date"]) < cutoff
        ]
        for key in stale:
            del self._snapshots[key]
        return len(stale)


# =============================================================================
# SQLITE
# =============================================================================

_SCHEMA = """
CREATE TABLE IF NOT EXISTS performance_aggregations (
    company_id TEXT NOT NULL,
    id TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    fiscal_year INTEGER NOT NULL,
    quarter INTEGER,
    calculated_at TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS performance_snapshots (
    company_id TEXT NOT NULL,
    id TEXT NOT NULL,
    level TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    frequency TEXT NOT NULL,
    fiscal_year INTEGER NOT NULL,
    fiscal_quarter INTEGER NOT NULL,
    snapshot_date TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE INDEX IF NOT EXISTS idx_snapshots_entity
    ON performance_snapshots (company_id, entity_id, frequency, snapshot_date);
"""


class SQLiteStore:
    """SQLite-backed aggregation + snapshot store."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    # -- aggregations ---------------------------------------------------------

    def get(self, company_id: str, key: str) -> AggregatedPerformance | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT payload_json FROM performance_aggregations WHERE company_id = ? AND id = ?",
                (company_id, key),
            ).fetchone()
            return AggregatedPerformance.from_dict(json.loads(row["payload_json"])) if row else None
        finally:
            conn.close()

    def put(self, company_id: str, record: AggregatedPerformance) -> None:
        """Insert or replace the record under its key."""
        conn = self._connect()
        try:
            conn.execute(
                """INSERT OR REPLACE INTO performance_aggregations
                   (company_id, id, entity_id, fiscal_year, quarter, calculated_at, payload_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    company_id,
                    record.id,
                    record.entity_id,
                    record.fiscal_year,
                    record.quarter,
                    record.calculated_at.isoformat(),
                    json.dumps(record.to_dict()),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Saved aggregation %s for company %s", record.id, company_id)

    # -- snapshots ------------------------------------------------------------

    def put_snapshot(self, company_id: str, snapshot: PerformanceSnapshot) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """INSERT OR REPLACE INTO performance_snapshots
                   (company_id, id, level, entity_id, frequency, fiscal_year,
                    fiscal_quarter, snapshot_date, payload_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    company_id,
                    snapshot.id,
                    snapshot.level.value,
                    snapshot.entity_id,
                    snapshot.frequency.value,
                    snapshot.fiscal_year,
                    snapshot.fiscal_quarter,
                    snapshot.snapshot_date.isoformat(),
                    json.dumps(snapshot.to_dict()),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_snapshot(self, company_id: str, snapshot_id: str) -> PerformanceSnapshot | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT payload_json FROM performance_snapshots WHERE company_id = ? AND id = ?",
                (company_id, snapshot_id),
            ).fetchone()
            return PerformanceSnapshot.from_dict(json.loads(row["payload_json"])) if row else None
        finally:
            conn.close()

    def list_snapshots(
        self, company_id: str, filters: SnapshotFilters | None = None
    ) -> list[PerformanceSnapshot]:
        """Snapshots matching the filters, newest first."""
        filters = filters or SnapshotFilters()
        clauses = ["company_id = ?"]
        params: list = [company_id]
        if filters.level is not None:
            clauses.append("level = ?")
            params.append(filters.level.value)
        if filters.entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(filters.entity_id)
        if filters.frequency is not None:
            clauses.append("frequency = ?")
            params.append(filters.frequency.value)
        if filters.fiscal_year is not None:
            clauses.append("fiscal_year = ?")
            params.append(filters.fiscal_year)
        if filters.quarter is not None:
            clauses.append("fiscal_quarter = ?")
            params.append(filters.quarter)
        if filters.start_date is not None:
            clauses.append("snapshot_date >= ?")
            params.append(filters.start_date.isoformat())
        if filters.end_date is not None:
            clauses.append("snapshot_date <= ?")
            params.append(filters.end_date.isoformat())

        sql = (
            "SELECT payload_json FROM performance_snapshots WHERE "
            + " AND ".join(clauses)
            + " ORDER BY snapshot_date DESC"
        )
        if filters.limit is not None:
            sql += " LIMIT ?"
            params.append(filters.limit)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [PerformanceSnapshot.from_dict(json.loads(r["payload_json"])) for r in rows]
        finally:
            conn.close()

    def delete_snapshot(self, company_id: str, snapshot_id: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "DELETE FROM performance_snapshots WHERE company_id = ? AND id = ?",
                (company_id, snapshot_id),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_snapshots_before(self, company_id: str, cutoff: datetime) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM performance_snapshots WHERE company_id = ? AND snapshot_date < ?",
                (company_id, cutoff.isoformat()),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
