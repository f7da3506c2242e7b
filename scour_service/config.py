# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from scour_service.errors import ConfigError


@dataclass(frozen=True)
class LLMSettings:
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.1
    timeout_s: float = 20.0
    max_tokens: Optional[int] = 1800


@dataclass(frozen=True)
class SearchSettings:
    provider: str          # "brave" | "serper"
    endpoint: str
    api_key: str
    timeout_s: float = 8.0
    results_per_query: int = 10


@dataclass(frozen=True)
class FetchSettings:
    timeout_s: float = 8.0
    max_chars: int = 3000
    min_chars: int = 100
    user_agent: str = "Mozilla/5.0 (compatible; scour-service/0.3)"


@dataclass(frozen=True)
class MySQLSettings:
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "scour"
    host: str = "localhost"
    pool_size: int = 4
    connect_timeout_s: float = 10.0


@dataclass(frozen=True)
class ScourSettings:
    # (min, max) bounds; request values are clamped into these.
    call_budget_s: Tuple[float, float] = (10.0, 85.0)
    source_timeout_s: Tuple[float, float] = (15.0, 55.0)
    batch_size: Tuple[int, int] = (1, 25)
    days_back: Tuple[int, int] = (1, 30)

    default_call_budget_s: float = 50.0
    default_source_timeout_s: float = 30.0
    default_batch_size: int = 5
    default_days_back: int = 7

    min_confidence: float = 0.55
    max_evidence: int = 8
    max_evidence_for_llm: int = 6
    recent_titles_limit: int = 30
    dedup_lookback_days: int = 14

    # Source health policy.
    health_history_size: int = 30
    disable_min_runs: int = 6
    disable_no_create_streak: int = 6
    disable_reject_streak: int = 5
    dup_counts_as_no_create: bool = True

    trend_batch_size: int = 20
    trend_match_candidates: int = 5

    # Early-signals sweep: one open-web query per (category query, country).
    early_signal_countries: Tuple[str, ...] = (
        "Thailand", "Greece", "Cyprus", "Georgia", "Italy", "Spain", "France",
        "United States", "Japan", "India", "Mexico", "Turkey", "Egypt", "Indonesia",
    )
    early_signal_max_queries: int = 300
    early_signal_days_back: int = 1


@dataclass(frozen=True)
class AuthSettings:
    admin_secret: str = ""
    # bearer token -> user id
    tokens: Dict[str, str] = field(default_factory=dict)
    # empty allowlist admits every resolved user
    allowlist: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QuotaSettings:
    llm_per_day: int = 400
    search_per_day: int = 800


@dataclass(frozen=True)
class Settings:
    llm: LLMSettings
    web_search: SearchSettings
    fetch: FetchSettings = FetchSettings()
    mysql: MySQLSettings = MySQLSettings()
    scour: ScourSettings = ScourSettings()
    auth: AuthSettings = AuthSettings()
    quota: QuotaSettings = QuotaSettings()

    store_backend: str = "mysql"   # mysql | memory
    server_host: str = "0.0.0.0"
    server_port: int = 8080


# Placeholders only; clients will error if keys are missing.
DEFAULT_SETTINGS = Settings(
    llm=LLMSettings(base_url="https://api.openai.com/v1", api_key="", model="gpt-4o-mini"),
    web_search=SearchSettings(
        provider="brave",
        endpoint="https://api.search.brave.com/res/v1/web/search",
        api_key="",
        timeout_s=8.0,
        results_per_query=10,
    ),
    mysql=MySQLSettings(
        port=3306,
        user="root",
        password="",
        database="scour",
        host="localhost",
        pool_size=8,
        connect_timeout_s=10.0,
    ),
)


def _from_env(base: Settings) -> Settings:
    env = os.environ
    llm = replace(
        base.llm,
        base_url=env.get("SCOUR_LLM_BASE_URL", base.llm.base_url),
        api_key=env.get("SCOUR_LLM_API_KEY", base.llm.api_key),
        model=env.get("SCOUR_LLM_MODEL", base.llm.model),
    )
    search = replace(
        base.web_search,
        provider=env.get("SCOUR_SEARCH_PROVIDER", base.web_search.provider),
        endpoint=env.get("SCOUR_SEARCH_ENDPOINT", base.web_search.endpoint),
        api_key=env.get("SCOUR_SEARCH_API_KEY", base.web_search.api_key),
    )
    mysql = replace(
        base.mysql,
        host=env.get("SCOUR_MYSQL_HOST", base.mysql.host),
        port=int(env.get("SCOUR_MYSQL_PORT", base.mysql.port)),
        user=env.get("SCOUR_MYSQL_USER", base.mysql.user),
        password=env.get("SCOUR_MYSQL_PASSWORD", base.mysql.password),
        database=env.get("SCOUR_MYSQL_DATABASE", base.mysql.database),
    )
    auth = replace(base.auth, admin_secret=env.get("SCOUR_ADMIN_SECRET", base.auth.admin_secret))
    return replace(
        base,
        llm=llm,
        web_search=search,
        mysql=mysql,
        auth=auth,
        store_backend=env.get("SCOUR_STORE", base.store_backend),
    )


def get_settings() -> Settings:
    """
    Create scour_service/local_settings.py with SETTINGS = Settings(...)
    to override the environment-derived defaults.
    """
    try:
        from .local_settings import SETTINGS as LOCAL_SETTINGS  # type: ignore
        return LOCAL_SETTINGS
    except ImportError:
        return _from_env(DEFAULT_SETTINGS)


def require_settings(cfg: Settings, *, llm: bool = True, search: bool = True) -> None:
    missing = []
    if llm:
        if not cfg.llm.base_url:
            missing.append("llm.base_url")
        if not cfg.llm.api_key:
            missing.append("llm.api_key")
    if search and not cfg.web_search.api_key:
        missing.append("web_search.api_key")
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")


def clamp(value: Optional[float], bounds: Tuple[float, float], default: float) -> float:
    v = default if value is None else float(value)
    lo, hi = bounds
    return max(lo, min(hi, v))


settings = get_settings()
