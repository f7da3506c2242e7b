# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from scour_service.config import Settings
from scour_service.db.base import (
    HealthStore,
    IncidentStore,
    JobStore,
    KVStore,
    QuotaStore,
    SourceStore,
    TrendStore,
)


@dataclass
class Stores:
    sources: SourceStore
    incidents: IncidentStore
    trends: TrendStore
    kv: KVStore
    jobs: JobStore
    health: HealthStore
    quota: QuotaStore


def memory_stores(*, geo_columns: bool = True) -> Stores:
    from scour_service.db.memory import (
        MemoryIncidentStore,
        MemoryKVStore,
        MemorySourceStore,
        MemoryTrendStore,
    )

    kv = MemoryKVStore()
    return Stores(
        sources=MemorySourceStore(),
        incidents=MemoryIncidentStore(geo_columns=geo_columns),
        trends=MemoryTrendStore(),
        kv=kv,
        jobs=JobStore(kv),
        health=HealthStore(kv),
        quota=QuotaStore(kv),
    )


def build_stores(cfg: Optional[Settings] = None) -> Stores:
    if cfg is None:
        from scour_service.config import get_settings
        cfg = get_settings()

    if cfg.store_backend == "memory":
        return memory_stores()

    from scour_service.db.mysql_store import (
        MySQLIncidentStore,
        MySQLKVStore,
        MySQLSourceStore,
        MySQLTrendStore,
    )

    kv = MySQLKVStore(cfg.mysql)
    return Stores(
        sources=MySQLSourceStore(cfg.mysql),
        incidents=MySQLIncidentStore(cfg.mysql),
        trends=MySQLTrendStore(cfg.mysql),
        kv=kv,
        jobs=JobStore(kv),
        health=HealthStore(kv),
        quota=QuotaStore(kv),
    )


__all__ = [
    "Stores",
    "build_stores",
    "memory_stores",
    "SourceStore",
    "IncidentStore",
    "TrendStore",
    "KVStore",
    "JobStore",
    "HealthStore",
    "QuotaStore",
]
