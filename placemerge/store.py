"""SQLite location store used as the provider fallback and write-back target."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from .categories import POICategory
from .errors import PersistenceError
from .geo import bounding_box, haversine_m
from .models import Place, PlaceMetadata, utc_now

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "name", "category", "subcategory", "lat", "lon", "address", "description",
    "source", "external_id", "osm_id", "google_place_id", "rating", "review_count",
    "quality_score", "merge_status", "metadata_json", "last_updated",
)


class LocationStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open location store {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError as exc:
            logger.debug("WAL journal mode unavailable for %s: %s", self.db_path, exc)
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError as exc:
            logger.debug("Cannot set synchronous=NORMAL for %s: %s", self.db_path, exc)

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS locations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT NOT NULL,
                subcategory TEXT,
                lat REAL NOT NULL,
                lon REAL NOT NULL,
                address TEXT,
                description TEXT,
                source TEXT NOT NULL,
                external_id TEXT,
                osm_id TEXT,
                google_place_id TEXT,
                rating REAL,
                review_count INTEGER,
                quality_score REAL DEFAULT 0,
                merge_status TEXT,
                metadata_json TEXT,
                last_updated TEXT NOT NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_lat_lon ON locations (lat, lon)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_osm_id ON locations (osm_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_google_id ON locations (google_place_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_locations_updated ON locations (last_updated)")
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def find_nearby(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        categories: Optional[Sequence[POICategory]] = None,
        limit: int = 20,
    ) -> List[Place]:
        """Places within `radius_m`, best quality first."""
        box = bounding_box(lat, lon, radius_m)
        sql = "SELECT * FROM locations WHERE lat BETWEEN ? AND ?"
        params: List[Any] = [box["lat_min"], box["lat_max"]]
        if box["lon_min"] <= box["lon_max"]:
            sql += " AND lon BETWEEN ? AND ?"
        else:
            # Box crosses the antimeridian.
            sql += " AND (lon >= ? OR lon <= ?)"
        params.extend([box["lon_min"], box["lon_max"]])
        if categories:
            sql += f" AND category IN ({','.join('?' for _ in categories)})"
            params.extend(POICategory(c).value for c in categories)
        sql += " ORDER BY quality_score DESC, rating IS NULL, rating DESC, last_updated DESC"

        rows = self._query(sql, params)
        places: List[Place] = []
        for row in rows:
            distance = haversine_m(lat, lon, row["lat"], row["lon"])
            if distance > radius_m:
                continue
            places.append(_row_to_place(row, distance))
            if len(places) >= limit:
                break
        return places

    def find_by_id(self, place_id: str) -> Optional[Place]:
        rows = self._query("SELECT * FROM locations WHERE id = ?", [place_id])
        return _row_to_place(rows[0], 0.0) if rows else None

    def find_stale_locations(
        self, older_than_hours: float = 24, provider: Optional[str] = None
    ) -> List[Place]:
        cutoff = (utc_now() - timedelta(hours=older_than_hours)).isoformat()
        sql = "SELECT * FROM locations WHERE last_updated < ? AND source != 'manual'"
        params: List[Any] = [cutoff]
        if provider:
            sql += " AND source = ?"
            params.append(provider)
        sql += " ORDER BY last_updated ASC"
        return [_row_to_place(row, 0.0) for row in self._query(sql, params)]

    def upsert_location(self, place: Place, quality_score: float = 0.0) -> str:
        """Update the record matching this place's provider ids, or insert it.

        Matches by OSM id, then Google place id, then (external_id, source).
        Returns the stored row id.
        """
        meta = place.metadata
        osm_id = meta.osm.id if meta.osm else None
        google_id = meta.google.place_id if meta.google else None
        values = {
            "id": place.id,
            "name": place.name,
            "category": place.category.value,
            "subcategory": place.subcategory,
            "lat": place.latitude,
            "lon": place.longitude,
            "address": place.address,
            "description": place.description,
            "source": meta.source,
            "external_id": meta.external_id,
            "osm_id": osm_id,
            "google_place_id": google_id,
            "rating": meta.rating,
            "review_count": meta.review_count,
            "quality_score": quality_score,
            "merge_status": meta.merge_status,
            "metadata_json": json.dumps(meta.to_dict()),
            "last_updated": meta.last_updated.isoformat(),
        }

        with self._lock:
            try:
                existing_id = self._match_existing(osm_id, google_id, meta.external_id, meta.source)
                cur = self.conn.cursor()
                if existing_id is not None:
                    values["id"] = existing_id
                    assignments = ", ".join(f"{col} = ?" for col in _COLUMNS if col != "id")
                    cur.execute(
                        f"UPDATE locations SET {assignments} WHERE id = ?",
                        [values[col] for col in _COLUMNS if col != "id"] + [existing_id],
                    )
                else:
                    cur.execute(
                        f"INSERT OR REPLACE INTO locations ({', '.join(_COLUMNS)}) "
                        f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                        [values[col] for col in _COLUMNS],
                    )
                self.conn.commit()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to upsert location {place.id}: {exc}") from exc
        return values["id"]

    def count(self) -> int:
        rows = self._query("SELECT COUNT(*) AS n FROM locations", [])
        return int(rows[0]["n"])

    def _match_existing(
        self, osm_id: Optional[str], google_id: Optional[str], external_id: str, source: str
    ) -> Optional[str]:
        lookups = []
        if osm_id:
            lookups.append(("SELECT id FROM locations WHERE osm_id = ? LIMIT 1", (osm_id,)))
        if google_id:
            lookups.append(("SELECT id FROM locations WHERE google_place_id = ? LIMIT 1", (google_id,)))
        lookups.append(
            (
                "SELECT id FROM locations WHERE external_id = ? AND source = ? LIMIT 1",
                (external_id, source),
            )
        )
        cur = self.conn.cursor()
        for sql, params in lookups:
            cur.execute(sql, params)
            row = cur.fetchone()
            if row:
                return row["id"]
        return None

    def _query(self, sql: str, params: Sequence[Any]) -> List[sqlite3.Row]:
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute(sql, list(params))
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Location store query failed: {exc}") from exc


def _row_to_place(row: sqlite3.Row, distance: float) -> Place:
    metadata_data: Dict[str, Any] = json.loads(row["metadata_json"] or "{}")
    metadata_data.setdefault("source", row["source"])
    metadata_data.setdefault("externalId", row["external_id"] or row["id"])
    metadata_data["lastUpdated"] = row["last_updated"]
    return Place(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        subcategory=row["subcategory"] or "unknown",
        latitude=row["lat"],
        longitude=row["lon"],
        distance=distance,
        address=row["address"],
        description=row["description"],
        metadata=PlaceMetadata.from_dict(metadata_data),
    )
