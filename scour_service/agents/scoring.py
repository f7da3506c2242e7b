# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urlparse


def domain_of(url: Optional[str]) -> str:
    try:
        netloc = urlparse(url or "").netloc.lower()
    except ValueError:
        return ""
    netloc = netloc.split("@")[-1].split(":")[0]
    return netloc[4:] if netloc.startswith("www.") else netloc


def domain_in(domain: str, allowed: Iterable[str]) -> bool:
    """Exact match or any subdomain of an allowed domain: news.bbc.co.uk is under bbc.co.uk."""
    d = (domain or "").lower().strip(".")
    return bool(d) and any(d == a or d.endswith("." + a) for a in allowed)


# Government suffixes: .gov, .gov.xx, .gouv.xx, .go.jp, .gob.xx, .mil
_GOV_RE = re.compile(r"(^|\.)(gov|gouv|gob|mil)(\.[a-z]{2})?$|(^|\.)go\.(jp|kr|id|th|ke|tz|ug)$")

CREDIBLE_DOMAINS = {
    # wire services and public broadcasters
    "reuters.com", "apnews.com", "afp.com", "bbc.com", "bbc.co.uk", "aljazeera.com",
    "dw.com", "france24.com", "npr.org", "cbc.ca", "abc.net.au", "nhk.or.jp",
    "rfi.fr", "euronews.com", "cnn.com", "nytimes.com", "theguardian.com",
    "washingtonpost.com", "bloomberg.com", "wsj.com", "ft.com",
    # multilateral bodies
    "who.int", "un.org", "reliefweb.int", "unhcr.org", "unicef.org", "ifrc.org",
    "wmo.int", "gdacs.org", "ecdc.europa.eu", "europa.eu",
}

LOW_QUALITY_HINTS = ("blogspot.", "wordpress.com", "medium.com", "substack.com", "tumblr.com")
LOW_QUALITY_DOMAINS = {
    "facebook.com", "x.com", "twitter.com", "instagram.com", "tiktok.com",
    "youtube.com", "reddit.com", "quora.com", "pinterest.com",
}

_GENERIC_ADVISORY_RE = re.compile(
    r"\b(\d+\s+(tips|things|ways|reasons|places)|top\s+\d+|things to know|what to know|"
    r"travel tips|safety tips|how to stay safe|is it safe to (visit|travel)|"
    r"ultimate guide|travel guide|best time to visit)\b",
    re.IGNORECASE,
)


def is_government_domain(domain: str) -> bool:
    return bool(_GOV_RE.search((domain or "").lower()))


def is_credible_url(url: Optional[str]) -> bool:
    d = domain_of(url)
    if not d:
        return False
    if is_government_domain(d):
        return True
    return domain_in(d, CREDIBLE_DOMAINS)


def is_low_quality_url(url: Optional[str]) -> bool:
    d = domain_of(url)
    if not d:
        return False
    if domain_in(d, LOW_QUALITY_DOMAINS):
        return True
    return any(h in d for h in LOW_QUALITY_HINTS)


def looks_generic_advisory(title: Optional[str], summary: Optional[str], urls: Iterable[str]) -> bool:
    """Listicles, guides and posts from low-quality hosts read as generic advice, not incidents."""
    text = f"{title or ''} {summary or ''}"
    if _GENERIC_ADVISORY_RE.search(text):
        return True
    urls = [u for u in urls if u]
    return bool(urls) and all(is_low_quality_url(u) for u in urls)


# Listing pages rather than articles.
_JUNK_PATH_RE = re.compile(
    r"/(tag|tags|category|categories|topic|topics|author|authors|opinion|search|page)(/|$|\?)",
    re.IGNORECASE,
)


def is_junk_url(url: Optional[str]) -> bool:
    if not url:
        return True
    try:
        p = urlparse(url)
    except ValueError:
        return True
    if p.scheme not in ("http", "https") or not p.netloc or "." not in p.netloc:
        return True
    if _JUNK_PATH_RE.search(p.path or "/"):
        return True
    if re.search(r"(^|&)(s|q)=", p.query or "") and (p.path or "/") in ("", "/"):
        return True
    return False


def is_valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        p = urlparse(url)
    except ValueError:
        return False
    return p.scheme in ("http", "https") and "." in p.netloc


def canonical_url(url: str) -> str:
    try:
        p = urlparse(url)
    except ValueError:
        return (url or "").strip().lower()
    path = (p.path or "/").rstrip("/") or "/"
    return f"{domain_of(url)}{path}".lower()
