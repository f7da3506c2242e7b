# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

"""
Strict decoding of generative output.

Every call site decodes the raw completion into exactly one of four variants:

    Decoded(value)            schema-valid payload
    MalformedJSON(raw, error) no parseable JSON object in the text
    SchemaViolation(errors)   JSON parsed but the payload model rejected it
    LowConfidence(...)        schema-valid, but the payload declines or is unsure

Nothing is coalesced: a missing required field is a SchemaViolation, not a default.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Decoded(Generic[T]):
    value: T


@dataclass(frozen=True)
class MalformedJSON:
    raw: str
    error: str


@dataclass(frozen=True)
class SchemaViolation:
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LowConfidence:
    confidence: float
    reason: str


DecodeResult = Union[Decoded[T], MalformedJSON, SchemaViolation, LowConfidence]

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


def _strip_code_fences(text: str) -> str:
    s = (text or "").strip()
    m = _CODE_FENCE_RE.search(s)
    if m:
        return (m.group(1) or "").strip()
    return s


def _extract_first_object(text: str) -> Optional[str]:
    s = (text or "").strip()
    start = s.find("{")
    if start == -1:
        return None

    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def decode_json(
    raw: str,
    model: Type[T],
    *,
    low_confidence: Optional[Callable[[T], Optional[LowConfidence]]] = None,
) -> DecodeResult:
    cleaned = _strip_code_fences(raw)
    frag = _extract_first_object(cleaned)
    if frag is None:
        return MalformedJSON(raw=(raw or "")[:800], error="no JSON object found")

    try:
        obj = json.loads(frag)
    except json.JSONDecodeError as e:
        return MalformedJSON(raw=(raw or "")[:800], error=str(e))

    try:
        value = model.model_validate(obj)
    except ValidationError as e:
        return SchemaViolation(errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()])

    if low_confidence is not None:
        lc = low_confidence(value)
        if lc is not None:
            return lc
    return Decoded(value=value)
