"""Security helpers for safer ingestion and quote verification."""

from __future__ import annotations

import re
from pathlib import Path

ALLOWED_EXTENSIONS = {".txt", ".md", ".rst", ".json", ".csv"}

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"ignore\s+the\s+above", re.IGNORECASE),
    re.compile(r"system\s+prompt", re.IGNORECASE),
    re.compile(r"developer\s+message", re.IGNORECASE),
    re.compile(r"reveal\s+(your\s+)?instructions", re.IGNORECASE),
    re.compile(r"jailbreak", re.IGNORECASE),
]


def validate_extension(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
        raise ValueError(f"Unsupported file extension '{ext}'. Allowed: {allowed}.")
    return ext


def sanitize_text(text: str) -> tuple[str, int]:
    """
    Returns sanitized text and number of filtered suspicious lines.

    Line breaks are preserved so paragraph boundaries survive for chunking.
    """
    clean_lines: list[str] = []
    filtered = 0
    for line in text.splitlines():
        if any(pattern.search(line) for pattern in _INJECTION_PATTERNS):
            filtered += 1
            continue
        clean_lines.append(line)
    sanitized = "\n".join(clean_lines).replace("\x00", " ").strip()
    return sanitized, filtered


def quote_word_count(quote: str) -> int:
    return len(quote.split())


def quote_supported_by_chunk(quote: str, chunk_text: str) -> bool:
    """Case-insensitive literal containment; blank quotes never count as support."""
    q = quote.strip().lower()
    if not q:
        return False
    return q in chunk_text.lower()
