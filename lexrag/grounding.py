"""Quotation grounding gate between generated output and trusted facts."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from lexrag.config import MAX_QUOTE_WORDS
from lexrag.models import Chunk, Fact, ProposedFact
from lexrag.security import quote_supported_by_chunk, quote_word_count

log = logging.getLogger(__name__)


def chunk_lookup(chunks: Iterable[Chunk]) -> dict[str, Chunk]:
    return {chunk.chunk_id: chunk for chunk in chunks}


@dataclass
class GroundingResult:
    facts: list[Fact] = field(default_factory=list)
    rejected: list[tuple[ProposedFact, str]] = field(default_factory=list)

    @property
    def rejected_claims(self) -> list[str]:
        return [proposed.claim for proposed, _ in self.rejected]


def rejection_reason(
    proposed: ProposedFact,
    lookup: dict[str, Chunk],
    max_quote_words: int = MAX_QUOTE_WORDS,
) -> str | None:
    chunk = lookup.get(proposed.chunk_id)
    if chunk is None:
        return f"cites unknown chunk {proposed.chunk_id!r}"
    if quote_word_count(proposed.quote) > max_quote_words:
        return f"quote exceeds {max_quote_words} words"
    if not quote_supported_by_chunk(proposed.quote, chunk.text):
        return "quote not found verbatim in cited chunk"
    return None


def ground_facts(
    proposed: Sequence[ProposedFact],
    chunks: Iterable[Chunk],
    max_quote_words: int = MAX_QUOTE_WORDS,
) -> GroundingResult:
    """Keeps only facts whose quotation literally occurs in the cited chunk."""
    lookup = chunk_lookup(chunks)
    result = GroundingResult()
    seen: set[tuple[str, str, str]] = set()
    for item in proposed:
        reason = rejection_reason(item, lookup, max_quote_words)
        if reason is not None:
            log.warning("Discarding generated fact (%s): %r", reason, item.claim)
            result.rejected.append((item, reason))
            continue
        key = (item.claim.strip(), item.quote.strip().casefold(), item.chunk_id)
        if key in seen:
            continue
        seen.add(key)
        result.facts.append(
            Fact(
                claim=item.claim.strip(),
                quote=item.quote.strip(),
                chunk_id=item.chunk_id,
                doc_id=lookup[item.chunk_id].doc_id,
            )
        )
    return result
