# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations


class ScourError(RuntimeError):
    pass


class ConfigError(ScourError):
    pass


class StoreError(ScourError):
    pass


class JobNotFoundError(ScourError):
    pass


class JobBusyError(ScourError):
    pass


class SourceNotFoundError(ScourError):
    pass


class IncidentNotFoundError(ScourError):
    pass


class QuotaExceededError(ScourError):
    def __init__(self, kind: str, limit: int) -> None:
        super().__init__(f"daily {kind} quota exceeded (limit={limit})")
        self.kind = kind
        self.limit = limit
