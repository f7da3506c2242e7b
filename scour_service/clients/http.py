# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_AFTER_S = 5.0

# Content types worth turning into evidence text.
TEXT_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")
FEED_CONTENT_TYPES = ("application/atom+xml", "application/rss+xml", "application/xml", "text/xml")


class RequestFailed(RuntimeError):
    def __init__(self, url: str, status: Optional[int], detail: str) -> None:
        super().__init__(f"{detail} (status={status}) url={url}")
        self.url = url
        self.status = status


@dataclass(frozen=True)
class Page:
    text: str
    content_type: str
    final_url: str
    truncated: bool = False


def _retry_delay(resp: Optional[httpx.Response], backoff: float) -> float:
    """Search APIs send Retry-After on 429; honour it up to a small cap."""
    if resp is not None:
        raw = resp.headers.get("retry-after")
        if raw:
            try:
                return min(MAX_RETRY_AFTER_S, max(0.0, float(raw)))
            except ValueError:
                pass
    return backoff + random.random() * 0.2


async def request_json(
    url: str,
    *,
    method: str = "GET",
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: float = 8.0,
    max_retries: int = 1,
    backoff_base: float = 0.5,
    total_timeout_s: float = 9.0,
) -> Any:
    """
    JSON API call with bounded retries on throttling and 5xx. Returns None for empty bodies.
    Attempts and retry waits together stay within `total_timeout_s`; a retry that
    could not start before then fails immediately.
    """
    if not url:
        raise ValueError("request_json: url is empty")

    deadline = time.monotonic() + float(total_timeout_s)
    backoff = float(backoff_base)
    async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
        for attempt in range(max_retries + 1):
            resp: Optional[httpx.Response] = None
            attempt_timeout = max(0.1, min(float(timeout_s), deadline - time.monotonic()))
            try:
                resp = await client.request(
                    method.upper(), url, params=params, json=json_body, headers=headers, timeout=attempt_timeout
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= max_retries:
                    raise RequestFailed(url, None, f"{type(e).__name__}: {e}") from e
                logger.debug(f"http net error | attempt={attempt} err={type(e).__name__} url={url}")
            else:
                if resp.status_code < 400:
                    if resp.status_code == 204 or not resp.content:
                        return None
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise RequestFailed(url, resp.status_code, "response is not JSON") from e
                if resp.status_code not in RETRYABLE_STATUS or attempt >= max_retries:
                    raise RequestFailed(url, resp.status_code, f"HTTP error: {resp.text[:200]}")
                logger.debug(f"http retryable | attempt={attempt} status={resp.status_code} url={url}")

            delay = _retry_delay(resp, backoff)
            if time.monotonic() + delay >= deadline:
                status = resp.status_code if resp is not None else None
                raise RequestFailed(url, status, f"no time left to retry within {total_timeout_s:.1f}s")
            await asyncio.sleep(delay)
            backoff *= 2.0

    raise RequestFailed(url, None, "retries exhausted")


async def request_page(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: float = 8.0,
    max_bytes: int = 1_500_000,
    content_types: Tuple[str, ...] = TEXT_CONTENT_TYPES,
) -> Optional[Page]:
    """
    Stream an article page, stopping at `max_bytes`.
    Returns None when the content type is not in `content_types` (PDFs, images); raises RequestFailed on HTTP errors.
    """
    if not url:
        raise ValueError("request_page: url is empty")

    try:
        async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
            async with client.stream("GET", url, headers=headers) as resp:
                if resp.status_code >= 400:
                    raise RequestFailed(url, resp.status_code, "page fetch failed")
                ctype = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
                if ctype and not ctype.startswith(content_types):
                    logger.debug(f"http skip non-text | type={ctype} url={url}")
                    return None

                buf = bytearray()
                truncated = False
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) >= max_bytes:
                        truncated = True
                        break
                encoding = resp.encoding or "utf-8"
                final_url = str(resp.url)
    except httpx.HTTPError as e:
        raise RequestFailed(url, None, f"{type(e).__name__}: {e}") from e

    return Page(
        text=bytes(buf[:max_bytes]).decode(encoding, errors="ignore"),
        content_type=ctype or "text/html",
        final_url=final_url,
        truncated=truncated,
    )
