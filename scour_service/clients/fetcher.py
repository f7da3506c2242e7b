# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

from scour_service.clients.http import FEED_CONTENT_TYPES, RequestFailed, request_page
from scour_service.config import FetchSettings

logger = logging.getLogger(__name__)

_DROP_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "form", "aside", "iframe"]


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(_DROP_TAGS):
        tag.extract()
    # prefer the article body when the page marks one
    root = soup.find("article") or soup.find("main") or soup
    text = root.get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


class ContentFetcher:
    """Fetches a source page and reduces it to plain text for the fallback evidence path."""

    def __init__(self, cfg: Optional[FetchSettings] = None) -> None:
        self.cfg = cfg or FetchSettings()

    async def fetch_text(self, url: str) -> Optional[str]:
        try:
            page = await request_page(
                url,
                headers={"User-Agent": self.cfg.user_agent, "Accept": "text/html,application/xhtml+xml"},
                timeout_s=self.cfg.timeout_s,
            )
        except RequestFailed as e:
            logger.warning(f"FETCH failed | url={url} status={e.status} err={e}")
            return None
        if page is None:
            return None

        text = page.text if page.content_type == "text/plain" else html_to_text(page.text)
        logger.debug(f"FETCH ok | url={page.final_url} chars={len(text)} truncated={page.truncated}")
        return text[: self.cfg.max_chars]

    async def fetch_feed(self, url: str) -> Optional[str]:
        """Raw Atom/RSS document, or None when the URL does not serve a feed."""
        try:
            page = await request_page(
                url,
                headers={"User-Agent": self.cfg.user_agent, "Accept": ", ".join(FEED_CONTENT_TYPES)},
                timeout_s=self.cfg.timeout_s,
                content_types=FEED_CONTENT_TYPES,
            )
        except RequestFailed as e:
            logger.warning(f"FETCH feed failed | url={url} status={e.status} err={e}")
            return None
        return page.text if page is not None else None
