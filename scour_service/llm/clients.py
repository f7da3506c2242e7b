# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from scour_service.config import LLMSettings, get_settings
from scour_service.errors import ConfigError

logger = logging.getLogger(__name__)

_RETRY_STATUS = (429, 500, 502, 503)


class LLMError(RuntimeError):
    pass


@dataclass(frozen=True)
class LLMChatMessage:
    role: str
    content: str


class OpenAICompatibleClient:
    """
    Blocking Chat Completions client for drafting and trend matching.

    Every call asks for a JSON object (`response_format`) because all callers
    decode the reply strictly. Callers run it via asyncio.to_thread(...).
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_s: float = 20.0,
        default_model: str = "gpt-4o-mini",
        json_mode: bool = True,
        max_retries: int = 1,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout_s = float(timeout_s)
        self.default_model = default_model
        self.json_mode = json_mode
        self.max_retries = int(max_retries)

    @property
    def url(self) -> str:
        b = self.base_url
        return f"{b}/chat/completions" if b.endswith("/v1") else f"{b}/v1/chat/completions"

    def _payload(self, messages: List[LLMChatMessage], model: Optional[str], temperature: float,
                 max_tokens: int, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if extra:
            payload.update(extra)
        return payload

    def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        with httpx.Client(timeout=self.timeout_s) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    r = client.post(self.url, json=payload, headers=headers)
                except httpx.HTTPError as e:
                    if attempt >= self.max_retries:
                        raise LLMError(f"LLM transport error: {type(e).__name__}: {e}") from e
                    time.sleep(0.5 * (attempt + 1))
                    continue
                if r.status_code in _RETRY_STATUS and attempt < self.max_retries:
                    logger.warning(f"LLM retry | status={r.status_code} attempt={attempt}")
                    time.sleep(0.5 * (attempt + 1))
                    continue
                return r
        raise LLMError("LLM retries exhausted")

    def chat(
        self,
        messages: List[LLMChatMessage],
        *,
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 1800,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not self.base_url or not self.api_key:
            raise ConfigError("LLM base_url/api_key not configured")

        t0 = time.perf_counter()
        r = self._post(self._payload(messages, model, temperature, max_tokens, extra))
        if r.status_code >= 400:
            raise LLMError(f"LLM HTTP {r.status_code}: {r.text[:500]}")
        try:
            data = r.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected LLM response shape: {r.text[:500]}") from e

        usage = data.get("usage") or {}
        logger.info(
            f"LLM ok | model={data.get('model') or model or self.default_model} "
            f"in={usage.get('prompt_tokens')} out={usage.get('completion_tokens')} "
            f"ms={(time.perf_counter() - t0) * 1000:.0f}"
        )
        return content


def client_from_settings(cfg: Optional[LLMSettings] = None) -> OpenAICompatibleClient:
    cfg = cfg or get_settings().llm
    return OpenAICompatibleClient(
        base_url=cfg.base_url,
        api_key=cfg.api_key,
        timeout_s=cfg.timeout_s,
        default_model=cfg.model,
    )
