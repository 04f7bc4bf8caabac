"""
SQLite persistence for revealed geometry and the location history log.

Schema:
- `revealed_geometry` / `shared_geometry`: single-row tables (id = 1) holding the
  serialized GeoJSON geometry, point count and last-updated epoch-ms.
- `location_history`: append-only log of accepted fixes with their `source`.

Databases created before shared locations existed lack `location_history.source`;
`migrate()` adds it with a `'self'` default.

Every write happens inside one transaction so a geometry row and its history row are
committed together or not at all.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from fogmap.domain.models import HistorySource, VisitedLocationRecord

logger = logging.getLogger(__name__)

Slot = Literal["personal", "shared"]

SLOT_TABLES: dict[str, str] = {
    "personal": "revealed_geometry",
    "shared": "shared_geometry",
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS revealed_geometry (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  geojson TEXT NOT NULL,
  location_count INTEGER NOT NULL DEFAULT 0,
  last_updated INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS shared_geometry (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  geojson TEXT NOT NULL,
  location_count INTEGER NOT NULL DEFAULT 0,
  last_updated INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS location_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  latitude REAL NOT NULL,
  longitude REAL NOT NULL,
  timestamp INTEGER NOT NULL
);
"""


@dataclass(frozen=True)
class SlotRow:
    geojson: str
    location_count: int
    last_updated: int


class Database:
    """Thread-safe wrapper around one SQLite connection."""

    def __init__(self, path: str | Path):
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._path

    def open(self) -> None:
        if self._conn is not None:
            return
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn = conn
            with conn:
                conn.executescript(SCHEMA)
            self.migrate()
        logger.debug("Opened database %s", self._path)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("database is not open")
        return self._conn

    def migrate(self) -> None:
        """Apply one-time schema upgrades (idempotent)."""
        conn = self._require()
        with self._lock:
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(location_history)")}
            if "source" not in columns:
                logger.info("Migrating location_history: adding source column")
                with conn:
                    conn.execute(
                        "ALTER TABLE location_history ADD COLUMN source TEXT NOT NULL DEFAULT 'self'"
                    )
            with conn:
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_history_lat_lon "
                    "ON location_history (latitude, longitude)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_history_point "
                    "ON location_history (latitude, longitude, timestamp)"
                )

    def read_slot(self, slot: Slot) -> SlotRow | None:
        conn = self._require()
        table = SLOT_TABLES[slot]
        with self._lock:
            row = conn.execute(
                f"SELECT geojson, location_count, last_updated FROM {table} WHERE id = 1"
            ).fetchone()
        if row is None:
            return None
        return SlotRow(
            geojson=str(row["geojson"]),
            location_count=int(row["location_count"]),
            last_updated=int(row["last_updated"]),
        )

    def commit_mutation(
        self,
        slot: Slot,
        *,
        geojson: str,
        location_count: int,
        last_updated: int,
        latitude: float,
        longitude: float,
        timestamp: int,
        source: HistorySource,
    ) -> int:
        """Upsert the slot row and append one history row atomically; returns the history id."""
        conn = self._require()
        table = SLOT_TABLES[slot]
        with self._lock, conn:
            conn.execute(
                f"""INSERT INTO {table} (id, geojson, location_count, last_updated)
                    VALUES (1, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      geojson = excluded.geojson,
                      location_count = excluded.location_count,
                      last_updated = excluded.last_updated""",
                (geojson, int(location_count), int(last_updated)),
            )
            cur = conn.execute(
                "INSERT INTO location_history (latitude, longitude, timestamp, source) VALUES (?, ?, ?, ?)",
                (float(latitude), float(longitude), int(timestamp), source),
            )
            return int(cur.lastrowid)

    def history_exists(self, latitude: float, longitude: float, timestamp: int) -> bool:
        conn = self._require()
        with self._lock:
            row = conn.execute(
                "SELECT 1 FROM location_history WHERE latitude = ? AND longitude = ? AND timestamp = ? LIMIT 1",
                (float(latitude), float(longitude), int(timestamp)),
            ).fetchone()
        return row is not None

    def history(self, source: HistorySource | None = None) -> list[VisitedLocationRecord]:
        conn = self._require()
        sql = "SELECT id, latitude, longitude, timestamp, source FROM location_history"
        params: tuple = ()
        if source is not None:
            sql += " WHERE source = ?"
            params = (source,)
        sql += " ORDER BY timestamp ASC, id ASC"
        with self._lock:
            rows = conn.execute(sql, params).fetchall()
        return [
            VisitedLocationRecord(
                id=int(r["id"]),
                latitude=float(r["latitude"]),
                longitude=float(r["longitude"]),
                timestamp=int(r["timestamp"]),
                source=r["source"],
            )
            for r in rows
        ]

    def latest_history(self, source: HistorySource) -> tuple[float, float] | None:
        conn = self._require()
        with self._lock:
            row = conn.execute(
                "SELECT latitude, longitude FROM location_history WHERE source = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT 1",
                (source,),
            ).fetchone()
        return (float(row["latitude"]), float(row["longitude"])) if row is not None else None

    def history_in_box(
        self,
        *,
        min_lat: float,
        min_lon: float,
        max_lat: float,
        max_lon: float,
        source: HistorySource | None = None,
    ) -> list[tuple[float, float]]:
        conn = self._require()
        sql = """SELECT latitude, longitude FROM location_history
                 WHERE latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?"""
        params: tuple = (float(min_lat), float(max_lat), float(min_lon), float(max_lon))
        if source is not None:
            sql += " AND source = ?"
            params += (source,)
        with self._lock:
            rows = conn.execute(sql, params).fetchall()
        return [(float(r["latitude"]), float(r["longitude"])) for r in rows]

    def clear_all(self) -> None:
        conn = self._require()
        with self._lock, conn:
            for table in SLOT_TABLES.values():
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM location_history")
