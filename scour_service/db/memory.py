# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from scour_service.db.base import IncidentStore, KVStore, SourceStore, TrendStore
from scour_service.schemas import Incident, Source, Trend
from scour_service.utils.countries import same_country

_REVIEWED = ("approved", "dismissed")


class MemorySourceStore(SourceStore):
    def __init__(self) -> None:
        self._rows: Dict[str, Source] = {}
        self._lock = threading.Lock()

    def get(self, source_id: str) -> Optional[Source]:
        with self._lock:
            s = self._rows.get(source_id)
            return s.model_copy(deep=True) if s else None

    def list_enabled(self, limit: Optional[int] = None) -> List[Source]:
        with self._lock:
            rows = [s.model_copy(deep=True) for s in self._rows.values() if s.enabled]
        return rows[:limit] if limit else rows

    def upsert(self, source: Source) -> Source:
        with self._lock:
            self._rows[source.id] = source.model_copy(deep=True)
        return source

    def set_enabled(self, source_id: str, enabled: bool, reason: Optional[str] = None) -> None:
        with self._lock:
            s = self._rows.get(source_id)
            if s is None:
                return
            self._rows[source_id] = s.model_copy(update={"enabled": enabled, "disabled_reason": reason})


class MemoryIncidentStore(IncidentStore):
    def __init__(self, *, geo_columns: bool = True) -> None:
        self._rows: Dict[str, Incident] = {}
        self._geo_columns = bool(geo_columns)
        self._lock = threading.Lock()

    def supports_geo_columns(self) -> bool:
        return self._geo_columns

    def insert(self, incident: Incident) -> Incident:
        row = incident.model_copy(deep=True)
        if not self._geo_columns:
            row = row.model_copy(update={"lat": None, "lng": None, "radius_km": None, "geo_json": None})
        with self._lock:
            self._rows[row.id] = row
        return row

    def get(self, incident_id: str) -> Optional[Incident]:
        with self._lock:
            r = self._rows.get(incident_id)
            return r.model_copy(deep=True) if r else None

    def update(self, incident: Incident) -> Incident:
        with self._lock:
            self._rows[incident.id] = incident.model_copy(deep=True)
        return incident

    def list_since(self, since_iso: str, *, country: Optional[str] = None, limit: int = 200) -> List[Incident]:
        with self._lock:
            rows = [r for r in self._rows.values() if r.created_at >= since_iso]
        if country:
            rows = [r for r in rows if same_country(r.country, country)]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in rows[:limit]]

    def list_unmatched_reviewed(self, limit: int = 20) -> List[Incident]:
        with self._lock:
            rows = [
                r for r in self._rows.values()
                if r.trend_id is None and (r.status in _REVIEWED or r.published)
            ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in rows[:limit]]

    def all(self) -> List[Incident]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rows.values()]


class MemoryTrendStore(TrendStore):
    def __init__(self) -> None:
        self._rows: Dict[str, Trend] = {}
        self._lock = threading.Lock()

    def list_open(self, limit: int = 100) -> List[Trend]:
        with self._lock:
            rows = [t for t in self._rows.values() if t.status in ("open", "monitoring")]
        rows.sort(key=lambda t: t.last_seen, reverse=True)
        return [t.model_copy(deep=True) for t in rows[:limit]]

    def get(self, trend_id: str) -> Optional[Trend]:
        with self._lock:
            t = self._rows.get(trend_id)
            return t.model_copy(deep=True) if t else None

    def insert(self, trend: Trend) -> Trend:
        with self._lock:
            self._rows[trend.id] = trend.model_copy(deep=True)
        return trend

    def update(self, trend: Trend) -> Trend:
        return self.insert(trend)


class MemoryKVStore(KVStore):
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._counters: Dict[Tuple[str, str, str], int] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def acquire_lock(self, name: str, owner: str, ttl_s: float) -> bool:
        now = time.monotonic()
        with self._lock:
            held = self._locks.get(name)
            if held is not None and held[0] != owner and held[1] > now:
                return False
            self._locks[name] = (owner, now + float(ttl_s))
            return True

    def release_lock(self, name: str, owner: str) -> None:
        with self._lock:
            held = self._locks.get(name)
            if held is not None and held[0] == owner:
                del self._locks[name]

    def increment_counter(self, kind: str, day: str, user_id: str) -> int:
        k = (kind, day, user_id)
        with self._lock:
            self._counters[k] = self._counters.get(k, 0) + 1
            return self._counters[k]
