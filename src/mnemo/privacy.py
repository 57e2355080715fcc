"""Redaction of ``<private>…</private>`` spans before anything is written.

An unclosed ``<private>`` tag makes the rest of the text private.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

REDACTED = "[REDACTED]"
FULLY_PRIVATE_ERROR = "Cannot store fully private content"

_PRIVATE_SPAN = re.compile(r"<private>.*?(?:</private>|\Z)", re.IGNORECASE | re.DOTALL)


@dataclass
class GateResult:
    allowed: bool
    content: str = ""
    redacted: int = 0
    error: str | None = None


def strip_private_content(text: str) -> str:
    return _PRIVATE_SPAN.sub(REDACTED, text)


def is_fully_private(text: str) -> bool:
    """True when nothing but whitespace remains once private spans are removed."""
    return not _PRIVATE_SPAN.sub("", text).strip()


def check_content(text: str) -> GateResult:
    """Redact private spans; reject the write if everything is private."""
    if is_fully_private(text):
        return GateResult(allowed=False, error=FULLY_PRIVATE_ERROR)
    redacted = len(_PRIVATE_SPAN.findall(text))
    return GateResult(allowed=True, content=strip_private_content(text), redacted=redacted)
