"""Best-effort scrubbing of prompt-injection phrasing from knowledge text.

This lowers the odds that tenant-supplied reference material steers the model;
it is not a security boundary. The replacement marker matches none of the
patterns, so ``sanitize`` is idempotent.
"""

from __future__ import annotations

import re

REDACTION_MARKER = "[redacted]"

INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ignore\s+(all|previous)\s+instructions", re.IGNORECASE),
    re.compile(r"disregard\s+(all|previous|prior)\s+instructions", re.IGNORECASE),
    re.compile(r"system\s+prompt", re.IGNORECASE),
    re.compile(r"you\s+are\s+chatgpt", re.IGNORECASE),
    re.compile(r"jailbreak", re.IGNORECASE),
    re.compile(r"do\s+anything\s+now", re.IGNORECASE),
)


def sanitize(text: str) -> str:
    """Strip NUL bytes, redact known injection phrases, trim whitespace."""
    sanitized = text.replace("\0", "")
    for pattern in INJECTION_PATTERNS:
        sanitized = pattern.sub(REDACTION_MARKER, sanitized)
    return sanitized.strip()
