"""First generation stage: retrieved chunks -> verified, quote-backed facts."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from lexrag.config import EXTRACTION_MAX_TOKENS, MAX_QUOTE_WORDS
from lexrag.grounding import ground_facts
from lexrag.llm_client import LLMClient
from lexrag.models import INSUFFICIENT_INFORMATION, ExtractionPayload, Fact
from lexrag.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from lexrag.retrieval import Candidate

log = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    facts: list[Fact] = field(default_factory=list)
    unknowns: list[str] = field(default_factory=list)
    rejected: int = 0


def _merge_unknowns(*groups: Sequence[str]) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for item in group:
            text = item.strip()
            if text and text not in merged:
                merged.append(text)
    return merged


class FactExtractor:
    def __init__(
        self,
        llm: LLMClient,
        *,
        max_quote_words: int = MAX_QUOTE_WORDS,
        max_tokens: int = EXTRACTION_MAX_TOKENS,
    ) -> None:
        self._llm = llm
        self._max_quote_words = max_quote_words
        self._max_tokens = max_tokens

    def extract(
        self,
        query: str,
        candidates: Sequence[Candidate],
        *,
        cancel: threading.Event | None = None,
    ) -> ExtractionResult:
        """
        Asks the generation service for cited facts and validates every quote.

        Facts whose quotation is missing from the cited chunk are dropped and
        their claims recorded as unknowns. Generation failures propagate so
        the caller decides how to degrade.
        """
        if not candidates:
            return ExtractionResult(unknowns=[INSUFFICIENT_INFORMATION])

        payload = self._llm.generate_structured(
            EXTRACTION_SYSTEM_PROMPT,
            build_extraction_prompt(query, candidates, self._max_quote_words),
            ExtractionPayload,
            max_tokens=self._max_tokens,
            cancel=cancel,
        )
        grounded = ground_facts(
            payload.facts,
            (candidate.chunk for candidate in candidates),
            max_quote_words=self._max_quote_words,
        )
        unknowns = _merge_unknowns(
            payload.unknowns,
            [f"Unverified claim: {claim}" for claim in grounded.rejected_claims],
        )
        if not grounded.facts and not unknowns:
            unknowns = [INSUFFICIENT_INFORMATION]
        log.info(
            "Extracted %d verified facts (%d rejected, %d unknowns).",
            len(grounded.facts),
            len(grounded.rejected),
            len(unknowns),
        )
        return ExtractionResult(
            facts=grounded.facts,
            unknowns=unknowns,
            rejected=len(grounded.rejected),
        )
