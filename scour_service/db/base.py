# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import abc
from typing import Any, List, Optional

from scour_service.schemas import Incident, ScourJob, Source, SourceHealthState, Trend


class SourceStore(abc.ABC):
    @abc.abstractmethod
    def get(self, source_id: str) -> Optional[Source]: ...

    @abc.abstractmethod
    def list_enabled(self, limit: Optional[int] = None) -> List[Source]: ...

    @abc.abstractmethod
    def upsert(self, source: Source) -> Source: ...

    @abc.abstractmethod
    def set_enabled(self, source_id: str, enabled: bool, reason: Optional[str] = None) -> None: ...


class IncidentStore(abc.ABC):
    @abc.abstractmethod
    def supports_geo_columns(self) -> bool:
        """Decided once when the store is opened."""

    @abc.abstractmethod
    def insert(self, incident: Incident) -> Incident: ...

    @abc.abstractmethod
    def get(self, incident_id: str) -> Optional[Incident]: ...

    @abc.abstractmethod
    def update(self, incident: Incident) -> Incident: ...

    @abc.abstractmethod
    def list_since(self, since_iso: str, *, country: Optional[str] = None, limit: int = 200) -> List[Incident]:
        """Incidents created at or after since_iso, newest first."""

    @abc.abstractmethod
    def list_unmatched_reviewed(self, limit: int = 20) -> List[Incident]:
        """Approved, dismissed or published incidents without a trend, newest first."""


class TrendStore(abc.ABC):
    @abc.abstractmethod
    def list_open(self, limit: int = 100) -> List[Trend]:
        """Trends in status open or monitoring."""

    @abc.abstractmethod
    def get(self, trend_id: str) -> Optional[Trend]: ...

    @abc.abstractmethod
    def insert(self, trend: Trend) -> Trend: ...

    @abc.abstractmethod
    def update(self, trend: Trend) -> Trend: ...


class KVStore(abc.ABC):
    @abc.abstractmethod
    def get(self, key: str) -> Optional[Any]: ...

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abc.abstractmethod
    def acquire_lock(self, name: str, owner: str, ttl_s: float) -> bool:
        """Take or renew the named lease; False if another owner holds an unexpired one."""

    @abc.abstractmethod
    def release_lock(self, name: str, owner: str) -> None: ...

    @abc.abstractmethod
    def increment_counter(self, kind: str, day: str, user_id: str) -> int:
        """Atomically add one to the (kind, day, user_id) counter and return the new value."""


# ---------------------------------------------------------------------
# Typed repositories over the generic key-value table
# ---------------------------------------------------------------------
class JobStore:
    LAST_JOB_KEY = "last_scour_job"

    def __init__(self, kv: KVStore) -> None:
        self.kv = kv

    @staticmethod
    def _key(job_id: str) -> str:
        return f"scour_job:{job_id}"

    def get(self, job_id: str) -> Optional[ScourJob]:
        raw = self.kv.get(self._key(job_id))
        if raw is None:
            return None
        return ScourJob.model_validate(raw)

    def save(self, job: ScourJob) -> None:
        self.kv.set(self._key(job.id), job.model_dump(mode="json"))

    def set_last(self, job_id: str) -> None:
        self.kv.set(self.LAST_JOB_KEY, job_id)

    def last_job_id(self) -> Optional[str]:
        v = self.kv.get(self.LAST_JOB_KEY)
        return str(v) if v else None

    def acquire(self, job_id: str, owner: str, ttl_s: float) -> bool:
        return self.kv.acquire_lock(f"scour_job_lock:{job_id}", owner, ttl_s)

    def release(self, job_id: str, owner: str) -> None:
        self.kv.release_lock(f"scour_job_lock:{job_id}", owner)


class HealthStore:
    def __init__(self, kv: KVStore) -> None:
        self.kv = kv

    @staticmethod
    def _key(source_id: str) -> str:
        return f"source_health:{source_id}"

    def get(self, source_id: str) -> SourceHealthState:
        raw = self.kv.get(self._key(source_id))
        if raw is None:
            return SourceHealthState(source_id=source_id)
        return SourceHealthState.model_validate(raw)

    def save(self, state: SourceHealthState) -> None:
        self.kv.set(self._key(state.source_id), state.model_dump(mode="json"))


class QuotaStore:
    def __init__(self, kv: KVStore) -> None:
        self.kv = kv

    def increment(self, kind: str, day: str, user_id: str) -> int:
        return self.kv.increment_counter(kind, day, user_id)
