# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
from typing import Optional

from scour_service.config import QuotaSettings
from scour_service.db.base import QuotaStore
from scour_service.errors import QuotaExceededError
from scour_service.utils.time import utc_today

logger = logging.getLogger(__name__)


class QuotaGate:
    """
    Per-user daily allowance for expensive calls ("llm", "search").
    A gate without a user id (admin or CLI) is unlimited and never touches the store.
    """

    def __init__(self, store: Optional[QuotaStore], cfg: QuotaSettings, user_id: Optional[str] = None) -> None:
        self.store = store
        self.cfg = cfg
        self.user_id = user_id

    @classmethod
    def unlimited(cls) -> "QuotaGate":
        return cls(None, QuotaSettings(), None)

    def limit_for(self, kind: str) -> int:
        if kind == "llm":
            return int(self.cfg.llm_per_day)
        if kind == "search":
            return int(self.cfg.search_per_day)
        raise ValueError(f"unknown quota kind: {kind}")

    def consume(self, kind: str) -> int:
        if self.user_id is None or self.store is None:
            return 0
        limit = self.limit_for(kind)
        used = self.store.increment(kind, utc_today().isoformat(), self.user_id)
        if used > limit:
            logger.warning(f"QUOTA exceeded | user={self.user_id} kind={kind} used={used} limit={limit}")
            raise QuotaExceededError(kind, limit)
        return used
