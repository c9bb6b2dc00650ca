"""Deterministic tokenizer shared by indexing, querying and fuzzy matching."""

from __future__ import annotations

import re

# Bumped whenever tokenize() changes; persisted bundles record it.
TOKENIZER_VERSION = "word-casefold-1"

_WORD_RE = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Case-folded maximal runs of Unicode word characters, in order of appearance."""
    if not text:
        return []
    return _WORD_RE.findall(text.casefold())
