# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Mapping, Optional

from scour_service.config import AuthSettings
from scour_service.errors import ScourError

ADMIN_HEADER = "X-Admin-Secret"


class AuthError(ScourError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str]
    admin: bool = False


def _bearer(headers: Mapping[str, str]) -> Optional[str]:
    raw = (headers.get("Authorization") or "").strip()
    if raw.lower().startswith("bearer "):
        tok = raw[7:].strip()
        return tok or None
    return None


def resolve_identity(headers: Mapping[str, str], cfg: AuthSettings) -> Identity:
    """Admin secret first, then bearer token -> user id, then the allowlist."""
    secret = headers.get(ADMIN_HEADER)
    if cfg.admin_secret and secret and hmac.compare_digest(secret, cfg.admin_secret):
        return Identity(user_id=None, admin=True)

    token = _bearer(headers)
    if token is None:
        raise AuthError("missing bearer token")
    user_id = cfg.tokens.get(token)
    if user_id is None:
        raise AuthError("unknown bearer token")
    if cfg.allowlist and user_id not in cfg.allowlist:
        raise ForbiddenError(f"user {user_id} is not allowed")
    return Identity(user_id=user_id)
