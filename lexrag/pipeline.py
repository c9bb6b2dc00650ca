"""End-to-end grounded answering: retrieve -> extract facts -> synthesize."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from lexrag.config import BM25_B, BM25_K1, TOP_K
from lexrag.errors import TransientGenerationError
from lexrag.extraction import FactExtractor
from lexrag.ingest import chunk_documents, ingest_texts, load_documents
from lexrag.lexical import LexicalIndex
from lexrag.llm_client import LLMClient, get_llm_client
from lexrag.models import (
    GENERATION_UNAVAILABLE,
    INSUFFICIENT_INFORMATION,
    Answer,
    Confidence,
    Document,
    Fact,
)
from lexrag.retrieval import Candidate, HybridRetriever, IndexStore, RetrievalSettings
from lexrag.synthesis import AnswerSynthesizer

log = logging.getLogger(__name__)
audit_log = logging.getLogger("lexrag.audit")


class QueryStage(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    EXTRACTED = "extracted"
    SYNTHESIZED = "synthesized"
    DEGRADED = "degraded"


_NEXT_STAGES = {
    QueryStage.CREATED: {QueryStage.PENDING},
    QueryStage.PENDING: {QueryStage.EXTRACTED, QueryStage.SYNTHESIZED, QueryStage.DEGRADED},
    QueryStage.EXTRACTED: {QueryStage.SYNTHESIZED, QueryStage.DEGRADED},
    QueryStage.SYNTHESIZED: set(),
    QueryStage.DEGRADED: set(),
}


@dataclass
class QueryRun:
    """One query's trip through the pipeline; each stage's output is kept."""

    query: str
    top_k: int
    stage: QueryStage = QueryStage.CREATED
    candidates: list[Candidate] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    unknowns: list[str] = field(default_factory=list)
    answer: Answer | None = None

    def advance(self, stage: QueryStage) -> None:
        if stage not in _NEXT_STAGES[self.stage]:
            raise RuntimeError(f"Illegal stage transition {self.stage.value} -> {stage.value}")
        log.debug("Query %r: %s -> %s", self.query, self.stage.value, stage.value)
        self.stage = stage


def insufficient_answer(query: str) -> Answer:
    return Answer(
        query=query,
        summary=INSUFFICIENT_INFORMATION,
        confidence=Confidence.LOW,
        unknowns=[INSUFFICIENT_INFORMATION],
        follow_ups=["Add documents that cover this question, or rephrase it."],
    )


def degraded_answer(query: str, facts: list[Fact], unknowns: list[str]) -> Answer:
    return Answer(
        query=query,
        summary=(
            "The generation service is unavailable; no answer could be synthesized "
            "from the retrieved text."
        ),
        confidence=Confidence.LOW,
        facts=facts,
        unknowns=[*unknowns, GENERATION_UNAVAILABLE],
        follow_ups=["Retry the question once the generation service recovers."],
    )


class RAGPipeline:
    def __init__(
        self,
        store: IndexStore | None = None,
        *,
        llm: LLMClient | None = None,
        settings: RetrievalSettings | None = None,
        documents: list[Document] | None = None,
        injection_lines_filtered: int = 0,
    ) -> None:
        self.store = store or IndexStore()
        self.documents = documents or []
        self.injection_lines_filtered = injection_lines_filtered
        self._llm = llm
        self.retriever = HybridRetriever(self.store, settings=settings)

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    @property
    def index(self) -> LexicalIndex:
        return self.store.current()

    def rebuild(
        self,
        documents: list[Document],
        *,
        k1: float = BM25_K1,
        b: float = BM25_B,
    ) -> LexicalIndex:
        index = self.store.rebuild(chunk_documents(documents), k1=k1, b=b)
        self.documents = list(documents)
        return index

    def save_index(self, path: str | Path) -> Path:
        return self.index.save(path)

    def run(
        self,
        query: str,
        top_k: int = TOP_K,
        *,
        cancel: threading.Event | None = None,
    ) -> QueryRun:
        run = QueryRun(query=query, top_k=top_k)
        # Usage errors surface here, before any generation call.
        run.candidates = self.retriever.retrieve(query, top_k)
        run.advance(QueryStage.PENDING)

        if not run.candidates:
            run.unknowns = [INSUFFICIENT_INFORMATION]
            run.answer = insufficient_answer(query)
            run.advance(QueryStage.SYNTHESIZED)
            return run

        try:
            extraction = FactExtractor(self.llm).extract(query, run.candidates, cancel=cancel)
        except TransientGenerationError as exc:
            log.error("Fact extraction unavailable for %r: %s", query, exc)
            run.answer = degraded_answer(query, [], [])
            run.unknowns = list(run.answer.unknowns)
            run.advance(QueryStage.DEGRADED)
            return run

        run.facts = extraction.facts
        run.unknowns = extraction.unknowns
        run.advance(QueryStage.EXTRACTED)
        for fact in run.facts:
            audit_log.info(
                "fact query=%r chunk=%s quote=%r claim=%r",
                query,
                fact.chunk_id,
                fact.quote,
                fact.claim,
            )

        try:
            run.answer = AnswerSynthesizer(self.llm).synthesize(
                query, run.facts, run.unknowns, cancel=cancel
            )
        except TransientGenerationError as exc:
            log.error("Answer synthesis unavailable for %r: %s", query, exc)
            run.answer = degraded_answer(query, run.facts, run.unknowns)
            run.advance(QueryStage.DEGRADED)
            return run

        run.advance(QueryStage.SYNTHESIZED)
        return run

    def ask(
        self,
        query: str,
        top_k: int = TOP_K,
        *,
        cancel: threading.Event | None = None,
    ) -> Answer:
        run = self.run(query, top_k, cancel=cancel)
        if run.answer is None:
            raise RuntimeError(
                f"Query {query!r} stopped at stage {run.stage.value} without an answer."
            )
        return run.answer


def build_pipeline_from_texts(
    pairs: Iterable[tuple[str, str]],
    *,
    llm: LLMClient | None = None,
    settings: RetrievalSettings | None = None,
) -> RAGPipeline:
    documents, filtered = ingest_texts(pairs)
    pipeline = RAGPipeline(llm=llm, settings=settings, injection_lines_filtered=filtered)
    pipeline.rebuild(documents)
    return pipeline


def build_pipeline_from_paths(
    document_paths: list[str],
    *,
    llm: LLMClient | None = None,
    settings: RetrievalSettings | None = None,
) -> RAGPipeline:
    documents, filtered = load_documents(document_paths)
    pipeline = RAGPipeline(llm=llm, settings=settings, injection_lines_filtered=filtered)
    pipeline.rebuild(documents)
    return pipeline


def load_pipeline(
    index_path: str | Path,
    *,
    llm: LLMClient | None = None,
    settings: RetrievalSettings | None = None,
) -> RAGPipeline:
    """Serves from a persisted bundle; IndexCorruptionError propagates to the caller."""
    return RAGPipeline(IndexStore(LexicalIndex.load(index_path)), llm=llm, settings=settings)


def write_answer(answer: Answer, output_json_path: str | Path) -> Path:
    out_path = Path(output_json_path).expanduser().resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(
        json.dumps(answer.model_dump(mode="json"), indent=2, ensure_ascii=True),
        encoding="utf-8",
    )
    return out_path
