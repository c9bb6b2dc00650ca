"""Second generation stage: verified facts -> structured answer."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from lexrag.config import SYNTHESIS_MAX_TOKENS
from lexrag.llm_client import LLMClient
from lexrag.models import INSUFFICIENT_INFORMATION, Answer, Confidence, Fact, SynthesisPayload
from lexrag.prompts import SYNTHESIS_SYSTEM_PROMPT, build_synthesis_prompt

log = logging.getLogger(__name__)


def _select_facts(facts: Sequence[Fact], used: Sequence[int]) -> list[Fact]:
    selected: list[Fact] = []
    for number in used:
        if 1 <= number <= len(facts) and facts[number - 1] not in selected:
            selected.append(facts[number - 1])
    return selected or list(facts)


class AnswerSynthesizer:
    def __init__(self, llm: LLMClient, *, max_tokens: int = SYNTHESIS_MAX_TOKENS) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    def synthesize(
        self,
        query: str,
        facts: Sequence[Fact],
        unknowns: Sequence[str],
        *,
        cancel: threading.Event | None = None,
    ) -> Answer:
        payload = self._llm.generate_structured(
            SYNTHESIS_SYSTEM_PROMPT,
            build_synthesis_prompt(query, facts, unknowns),
            SynthesisPayload,
            max_tokens=self._max_tokens,
            cancel=cancel,
        )
        return self.enforce(query, payload, facts, unknowns)

    @staticmethod
    def enforce(
        query: str,
        payload: SynthesisPayload,
        facts: Sequence[Fact],
        unknowns: Sequence[str],
    ) -> Answer:
        """Applies the answer rules regardless of what the generation service claimed."""
        confidence = payload.confidence
        summary = payload.summary.strip()
        follow_ups = [item.strip() for item in payload.follow_ups if item.strip()]
        open_unknowns = list(unknowns)

        if not facts:
            if confidence is not Confidence.LOW:
                log.info("Downgrading confidence %s -> low: no verified facts.", confidence.value)
            confidence = Confidence.LOW
            # Without verified facts nothing in a generated summary is grounded.
            summary = INSUFFICIENT_INFORMATION
            if INSUFFICIENT_INFORMATION not in open_unknowns:
                open_unknowns.append(INSUFFICIENT_INFORMATION)
        if confidence is Confidence.HIGH:
            follow_ups = []

        return Answer(
            query=query,
            summary=summary or "No summary was produced.",
            confidence=confidence,
            facts=_select_facts(facts, payload.used_facts) if facts else [],
            unknowns=open_unknowns,
            follow_ups=follow_ups,
        )
