# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
from typing import Optional

from scour_service.config import ScourSettings
from scour_service.db.base import HealthStore, SourceStore
from scour_service.schemas import HealthEntry, Outcome, SourceHealthState

logger = logging.getLogger(__name__)


class SourceHealthTracker:
    """
    Rolling outcome history per source. The tracker never re-enables a source.
    When an operator re-enables one, its streaks restart and new runs are judged
    from zero.
    """

    def __init__(self, health: HealthStore, sources: SourceStore, cfg: Optional[ScourSettings] = None) -> None:
        self.health = health
        self.sources = sources
        self.cfg = cfg or ScourSettings()

    def get(self, source_id: str) -> SourceHealthState:
        return self.health.get(source_id)

    def record_outcome(
        self,
        source_id: str,
        outcome: Outcome,
        reason: Optional[str] = None,
        severity: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> SourceHealthState:
        st = self.health.get(source_id)
        if st.disabled_by_system:
            self._reset_if_reenabled(st)

        st.history.append(HealthEntry(outcome=outcome, reason=reason, severity=severity, confidence=confidence))
        st.history = st.history[-self.cfg.health_history_size :]
        st.total_runs += 1

        if outcome == "created":
            st.total_created += 1
            st.consecutive_no_create = 0
        elif outcome != "dup" or self.cfg.dup_counts_as_no_create:
            st.consecutive_no_create += 1

        if outcome in ("reject", "low"):
            st.consecutive_rejects += 1
        else:
            st.consecutive_rejects = 0

        tag = self._disable_tag(st)
        if tag and not st.disabled_by_system:
            st.disabled_by_system = True
            st.disabled_reason = tag
            self.sources.set_enabled(source_id, False, tag)
            logger.warning(
                f"HEALTH disabled | source={source_id} reason={tag} runs={st.total_runs} "
                f"no_create={st.consecutive_no_create} rejects={st.consecutive_rejects}"
            )

        self.health.save(st)
        return st

    def _reset_if_reenabled(self, st: SourceHealthState) -> None:
        source = self.sources.get(st.source_id)
        if source is None or not source.enabled:
            return
        logger.info(f"HEALTH re-enabled | source={st.source_id} previous_reason={st.disabled_reason}")
        st.disabled_by_system = False
        st.disabled_reason = None
        st.consecutive_rejects = 0
        st.consecutive_no_create = 0

    def _disable_tag(self, st: SourceHealthState) -> Optional[str]:
        if st.consecutive_rejects >= self.cfg.disable_reject_streak:
            return "reject_streak"
        if st.total_runs >= self.cfg.disable_min_runs and st.consecutive_no_create >= self.cfg.disable_no_create_streak:
            return "no_create_streak"
        return None
