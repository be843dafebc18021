"""
PII masking for labels that leave the service.

Redacts long account numbers, phone numbers and street addresses before a
merchant or category label enters a response dictionary.
"""

from __future__ import annotations

import re
from typing import Any

ACCOUNT_PATTERN = re.compile(r"\b\d{10,}\b")
PHONE_PATTERN = re.compile(r"\b(?:\+?\d{1,3}[\s-]?)?(\d{3})[\s-]?(\d{3,4})[\s-]?(\d{4})\b")
ADDRESS_PATTERN = re.compile(r"\b\d+\s+[A-Za-z]{2,}[^,\n]{2,}")


def mask(value: str | None) -> str | None:
    """Return `value` with direct identifiers obscured. Blank input is returned as-is."""
    if value is None or not value.strip():
        return value
    masked = ACCOUNT_PATTERN.sub("***", value)
    masked = PHONE_PATTERN.sub("***-****-****", masked)
    masked = ADDRESS_PATTERN.sub("***", masked)
    return masked


def mask_deep(payload: dict[str, Any] | None) -> dict[str, Any] | None:
    """Mask every string in a nested dict, in place."""
    if payload is None:
        return None
    for key, value in payload.items():
        if isinstance(value, str):
            payload[key] = mask(value)
        elif isinstance(value, dict):
            payload[key] = mask_deep(value)
    return payload
