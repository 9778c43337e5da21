"""Correlation references embedded in outbound quote messages.

Chat replies carry no threading headers, so when the token policy is active
each solicitation ends with a short ``[Ref: PWQ-XXXXXXXXXX]`` marker that the
supplier is asked to echo back.
"""

from __future__ import annotations

import re
import secrets
from typing import Optional

_TOKEN_PREFIX = "PWQ-"
_TOKEN_ALPHABET = "0123456789ABCDEF"
_TOKEN_LENGTH = 10

_TOKEN_PATTERN = re.compile(r"\bPWQ-([0-9A-F]{%d})\b" % _TOKEN_LENGTH, re.IGNORECASE)


def generate_correlation_token() -> str:
    suffix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(_TOKEN_LENGTH))
    return f"{_TOKEN_PREFIX}{suffix}"


def embed_correlation_token(text: str, token: str) -> str:
    """Append the reference marker for ``token`` unless ``text`` already has it."""

    if not token:
        raise ValueError("token is required")
    body = text or ""
    existing = extract_correlation_token(body)
    if existing and existing == token.upper():
        return body
    marker = f"[Ref: {token}]"
    if not body:
        return marker
    return f"{body.rstrip()}\n\n{marker}\nPlease keep this reference in your reply."


def extract_correlation_token(text: Optional[str]) -> Optional[str]:
    """Return the first reference token found in ``text`` (upper-cased)."""

    if not text:
        return None
    match = _TOKEN_PATTERN.search(text)
    if not match:
        return None
    return f"{_TOKEN_PREFIX}{match.group(1).upper()}"
