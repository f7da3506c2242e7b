# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import abc
import logging
import time
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from scour_service.clients.http import request_json
from scour_service.config import SearchSettings, get_settings
from scour_service.errors import ConfigError
from scour_service.schemas import SearchResult

logger = logging.getLogger(__name__)

Freshness = Literal["day", "week", "month"]


def freshness_for_days(days_back: int) -> Freshness:
    if days_back <= 1:
        return "day"
    if days_back <= 7:
        return "week"
    return "month"


class WebSearchClient(abc.ABC):
    @abc.abstractmethod
    async def search(
        self,
        query: str,
        num_results: int = 10,
        *,
        freshness: Optional[Freshness] = None,
    ) -> List[SearchResult]:
        raise NotImplementedError


class _ApiSearchClient(WebSearchClient):
    """Keyed JSON search API: subclasses build the request and map the provider's result items."""

    name = "search"

    def __init__(self, api_key: str, endpoint: str, *, timeout_s: float = 8.0) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout_s = float(timeout_s)

    @abc.abstractmethod
    async def _call(self, query: str, num_results: int, freshness: Optional[Freshness]) -> Any: ...

    @abc.abstractmethod
    def _items(self, data: Dict[str, Any]) -> List[SearchResult]: ...

    async def search(
        self,
        query: str,
        num_results: int = 10,
        *,
        freshness: Optional[Freshness] = None,
    ) -> List[SearchResult]:
        if not self.api_key:
            raise ConfigError(f"{self.name} API key not configured")

        t0 = time.perf_counter()
        data = await self._call(query, int(num_results), freshness)
        out = self._items(data) if isinstance(data, dict) else []
        out = [r for r in out if r.url][: int(num_results)]
        logger.info(
            f"SEARCH {self.name} | q={query!r} freshness={freshness} hits={len(out)} "
            f"ms={(time.perf_counter() - t0) * 1000:.0f}"
        )
        return out


def _result(title: Any, snippet: Any, link: Any, published: Any) -> SearchResult:
    link = str(link or "")
    return SearchResult(
        title=str(title or ""),
        snippet=str(snippet or ""),
        url=link,
        source=urlparse(link).netloc or None,
        published=str(published) if published else None,
    )


class BraveWebSearchClient(_ApiSearchClient):
    name = "brave"
    _FRESHNESS = {"day": "pd", "week": "pw", "month": "pm"}

    async def _call(self, query: str, num_results: int, freshness: Optional[Freshness]) -> Any:
        params: Dict[str, Any] = {"q": query, "count": num_results}
        if freshness:
            params["freshness"] = self._FRESHNESS[freshness]
        return await request_json(
            self.endpoint,
            params=params,
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
            timeout_s=self.timeout_s,
        )

    def _items(self, data: Dict[str, Any]) -> List[SearchResult]:
        rows = (data.get("web") or {}).get("results") or []
        # page_age is ISO; age is relative text ("2 days ago")
        return [_result(it.get("title"), it.get("description"), it.get("url"), it.get("page_age") or it.get("age")) for it in rows]


class SerperWebSearchClient(_ApiSearchClient):
    name = "serper"
    _FRESHNESS = {"day": "qdr:d", "week": "qdr:w", "month": "qdr:m"}

    async def _call(self, query: str, num_results: int, freshness: Optional[Freshness]) -> Any:
        payload: Dict[str, Any] = {"q": query, "num": num_results}
        if freshness:
            payload["tbs"] = self._FRESHNESS[freshness]
        return await request_json(
            self.endpoint,
            method="POST",
            json_body=payload,
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            timeout_s=self.timeout_s,
        )

    def _items(self, data: Dict[str, Any]) -> List[SearchResult]:
        rows = list(data.get("news") or []) + list(data.get("organic") or [])
        return [_result(it.get("title"), it.get("snippet"), it.get("link"), it.get("date")) for it in rows]


def client_from_settings(cfg: Optional[SearchSettings] = None) -> WebSearchClient:
    cfg = cfg or get_settings().web_search
    providers = {"brave": BraveWebSearchClient, "serper": SerperWebSearchClient}
    cls = providers.get(cfg.provider)
    if cls is None:
        raise ConfigError(f"Unknown web_search.provider: {cfg.provider}")
    return cls(api_key=cfg.api_key, endpoint=cfg.endpoint, timeout_s=cfg.timeout_s)
