# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import mysql.connector

from scour_service.config import MySQLSettings
from scour_service.db.base import IncidentStore, KVStore, SourceStore, TrendStore
from scour_service.db.mysql_pool import get_conn
from scour_service.db.schema import DDL, GEO_COLUMNS
from scour_service.errors import StoreError
from scour_service.schemas import Incident, Source, Trend
from scour_service.utils.countries import normalize_country

logger = logging.getLogger(__name__)

_INCIDENT_JSON = ("advice", "sources", "geo_json")
_TREND_JSON = ("countries", "alert_ids")
_INCIDENT_BOOL = ("published",)
_TREND_BOOL = ("auto_generated",)


class _MySQLBase:
    def __init__(self, cfg: Optional[MySQLSettings] = None) -> None:
        self.cfg = cfg

    def _run(self, sql: str, params: Sequence[Any] = (), *, fetch: bool = False) -> List[Dict[str, Any]]:
        cnx = get_conn(self.cfg)
        try:
            cur = cnx.cursor(dictionary=True)
            cur.execute(sql, list(params))
            rows = cur.fetchall() if fetch else []
            cur.close()
            return rows or []
        except mysql.connector.Error as e:
            raise StoreError(f"MySQL error: {e}") from e
        finally:
            cnx.close()


def _to_row(data: Dict[str, Any], json_cols: Sequence[str], bool_cols: Sequence[str]) -> Dict[str, Any]:
    out = dict(data)
    for c in json_cols:
        if c in out and out[c] is not None:
            out[c] = json.dumps(out[c], ensure_ascii=False)
    for c in bool_cols:
        if c in out:
            out[c] = 1 if out[c] else 0
    return out


def _from_row(row: Dict[str, Any], json_cols: Sequence[str], bool_cols: Sequence[str]) -> Dict[str, Any]:
    out = dict(row)
    for c in json_cols:
        v = out.get(c)
        if isinstance(v, (str, bytes, bytearray)):
            out[c] = json.loads(v)
    for c in bool_cols:
        if c in out:
            out[c] = bool(out[c])
    return out


def _upsert_sql(table: str, cols: Sequence[str], key: str = "id") -> str:
    col_sql = ", ".join(cols)
    ph = ", ".join(["%s"] * len(cols))
    upd = ", ".join(f"{c}=VALUES({c})" for c in cols if c != key)
    return f"INSERT INTO {table} ({col_sql}) VALUES ({ph}) ON DUPLICATE KEY UPDATE {upd}"


def ensure_schema(cfg: Optional[MySQLSettings] = None) -> None:
    base = _MySQLBase(cfg)
    for stmt in DDL:
        base._run(stmt)


class MySQLSourceStore(_MySQLBase, SourceStore):
    def _load(self, row: Dict[str, Any]) -> Source:
        return Source.model_validate(_from_row(row, ("topics",), ("enabled",)))

    def get(self, source_id: str) -> Optional[Source]:
        rows = self._run("SELECT * FROM sources WHERE id=%s", [source_id], fetch=True)
        return self._load(rows[0]) if rows else None

    def list_enabled(self, limit: Optional[int] = None) -> List[Source]:
        sql = "SELECT * FROM sources WHERE enabled=1 ORDER BY created_at DESC"
        params: List[Any] = []
        if limit:
            sql += " LIMIT %s"
            params.append(int(limit))
        return [self._load(r) for r in self._run(sql, params, fetch=True)]

    def upsert(self, source: Source) -> Source:
        row = _to_row(source.model_dump(), ("topics",), ("enabled",))
        cols = list(row.keys())
        self._run(_upsert_sql("sources", cols), [row[c] for c in cols])
        return source

    def set_enabled(self, source_id: str, enabled: bool, reason: Optional[str] = None) -> None:
        self._run(
            "UPDATE sources SET enabled=%s, disabled_reason=%s WHERE id=%s",
            [1 if enabled else 0, reason, source_id],
        )


class MySQLIncidentStore(_MySQLBase, IncidentStore):
    def __init__(self, cfg: Optional[MySQLSettings] = None) -> None:
        super().__init__(cfg)
        self._geo_columns = self._detect_geo_columns()

    def _detect_geo_columns(self) -> bool:
        rows = self._run(
            """
            SELECT COLUMN_NAME AS name FROM information_schema.columns
            WHERE table_schema = DATABASE() AND table_name = 'incidents'
            """,
            fetch=True,
        )
        present = {str(r["name"]).lower() for r in rows}
        ok = all(c in present for c in GEO_COLUMNS)
        if not ok:
            logger.warning(f"STORE incidents table lacks geo columns; inserts will omit {list(GEO_COLUMNS)}")
        return ok

    def supports_geo_columns(self) -> bool:
        return self._geo_columns

    def _load(self, row: Dict[str, Any]) -> Incident:
        return Incident.model_validate(_from_row(row, _INCIDENT_JSON, _INCIDENT_BOOL))

    def _write(self, incident: Incident) -> None:
        data = incident.model_dump(mode="json")
        if not self._geo_columns:
            for c in GEO_COLUMNS:
                data.pop(c, None)
        row = _to_row(data, _INCIDENT_JSON, _INCIDENT_BOOL)
        cols = list(row.keys())
        self._run(_upsert_sql("incidents", cols), [row[c] for c in cols])

    def insert(self, incident: Incident) -> Incident:
        self._write(incident)
        if not self._geo_columns:
            return incident.model_copy(update={c: None for c in GEO_COLUMNS})
        return incident

    def get(self, incident_id: str) -> Optional[Incident]:
        rows = self._run("SELECT * FROM incidents WHERE id=%s", [incident_id], fetch=True)
        return self._load(rows[0]) if rows else None

    def update(self, incident: Incident) -> Incident:
        self._write(incident)
        return incident

    def list_since(self, since_iso: str, *, country: Optional[str] = None, limit: int = 200) -> List[Incident]:
        rows = self._run(
            "SELECT * FROM incidents WHERE created_at >= %s ORDER BY created_at DESC LIMIT %s",
            [since_iso, int(limit) * 4 if country else int(limit)],
            fetch=True,
        )
        out = [self._load(r) for r in rows]
        if country:
            # country spellings vary; filter on the normalized name
            want = normalize_country(country)
            out = [i for i in out if normalize_country(i.country) == want]
        return out[:limit]

    def list_unmatched_reviewed(self, limit: int = 20) -> List[Incident]:
        rows = self._run(
            """
            SELECT * FROM incidents
            WHERE trend_id IS NULL AND (status IN ('approved', 'dismissed') OR published = 1)
            ORDER BY created_at DESC LIMIT %s
            """,
            [int(limit)],
            fetch=True,
        )
        return [self._load(r) for r in rows]


class MySQLTrendStore(_MySQLBase, TrendStore):
    def _load(self, row: Dict[str, Any]) -> Trend:
        return Trend.model_validate(_from_row(row, _TREND_JSON, _TREND_BOOL))

    def list_open(self, limit: int = 100) -> List[Trend]:
        rows = self._run(
            "SELECT * FROM trends WHERE status IN ('open', 'monitoring') ORDER BY last_seen DESC LIMIT %s",
            [int(limit)],
            fetch=True,
        )
        return [self._load(r) for r in rows]

    def get(self, trend_id: str) -> Optional[Trend]:
        rows = self._run("SELECT * FROM trends WHERE id=%s", [trend_id], fetch=True)
        return self._load(rows[0]) if rows else None

    def insert(self, trend: Trend) -> Trend:
        row = _to_row(trend.model_dump(mode="json"), _TREND_JSON, _TREND_BOOL)
        cols = list(row.keys())
        self._run(_upsert_sql("trends", cols), [row[c] for c in cols])
        return trend

    def update(self, trend: Trend) -> Trend:
        return self.insert(trend)


class MySQLKVStore(_MySQLBase, KVStore):
    def get(self, key: str) -> Optional[Any]:
        rows = self._run("SELECT v FROM app_kv WHERE k=%s", [key], fetch=True)
        if not rows:
            return None
        v = rows[0]["v"]
        return json.loads(v) if isinstance(v, (str, bytes, bytearray)) else v

    def set(self, key: str, value: Any) -> None:
        self._run(
            "INSERT INTO app_kv (k, v) VALUES (%s, %s) ON DUPLICATE KEY UPDATE v=VALUES(v)",
            [key, json.dumps(value, ensure_ascii=False)],
        )

    def acquire_lock(self, name: str, owner: str, ttl_s: float) -> bool:
        now = time.time()
        # assignments apply left to right: expires_at moves only when owner now matches
        self._run(
            """
            INSERT INTO app_locks (name, owner, expires_at) VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE
              owner = IF(expires_at < %s OR owner = VALUES(owner), VALUES(owner), owner),
              expires_at = IF(owner = VALUES(owner), VALUES(expires_at), expires_at)
            """,
            [name, owner, now + float(ttl_s), now],
        )
        rows = self._run("SELECT owner FROM app_locks WHERE name=%s", [name], fetch=True)
        return bool(rows) and rows[0]["owner"] == owner

    def release_lock(self, name: str, owner: str) -> None:
        self._run("DELETE FROM app_locks WHERE name=%s AND owner=%s", [name, owner])

    def increment_counter(self, kind: str, day: str, user_id: str) -> int:
        self._run(
            """
            INSERT INTO quota_counters (kind, day, user_id, count) VALUES (%s, %s, %s, 1)
            ON DUPLICATE KEY UPDATE count = count + 1
            """,
            [kind, day, user_id],
        )
        rows = self._run(
            "SELECT count FROM quota_counters WHERE kind=%s AND day=%s AND user_id=%s",
            [kind, day, user_id],
            fetch=True,
        )
        return int(rows[0]["count"]) if rows else 0
