"""Hybrid lexical retrieval: BM25 candidate generation plus fuzzy re-ranking."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

from lexrag.config import (
    BM25_B,
    BM25_K1,
    CANDIDATE_POOL_MULTIPLIER,
    FUZZY_WEIGHT_DIVISOR,
)
from lexrag.errors import UsageError
from lexrag.fuzzy import FuzzyReranker
from lexrag.lexical import LexicalIndex
from lexrag.models import Chunk
from lexrag.tokenizer import tokenize

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    chunk: Chunk
    position: int
    bm25_score: float
    fuzzy_score: int
    combined_score: float


@dataclass(frozen=True)
class RetrievalSettings:
    pool_multiplier: int = CANDIDATE_POOL_MULTIPLIER
    fuzzy_divisor: float = FUZZY_WEIGHT_DIVISOR

    def __post_init__(self) -> None:
        if self.pool_multiplier < 1:
            raise ValueError("pool_multiplier must be at least 1.")
        if self.fuzzy_divisor <= 0:
            raise ValueError("fuzzy_divisor must be positive.")


class IndexStore:
    """
    Holds the published index.

    Rebuilds run one at a time under the writer lock and are published by a
    single reference assignment, so a reader sees the old index or the new
    one, never a mix. Readers never take the lock.
    """

    def __init__(self, index: LexicalIndex | None = None) -> None:
        self._index = index if index is not None else LexicalIndex.build([])
        self._write_lock = threading.Lock()
        self._generation = 0

    def current(self) -> LexicalIndex:
        return self._index

    @property
    def generation(self) -> int:
        return self._generation

    def publish(self, index: LexicalIndex) -> None:
        with self._write_lock:
            self._swap(index)

    def rebuild(
        self,
        chunks: Sequence[Chunk],
        *,
        k1: float = BM25_K1,
        b: float = BM25_B,
    ) -> LexicalIndex:
        with self._write_lock:
            index = LexicalIndex.build(chunks, k1=k1, b=b)
            self._swap(index)
        return index

    def _swap(self, index: LexicalIndex) -> None:
        self._index = index
        self._generation += 1
        log.info("Published index generation %d (%d chunks).", self._generation, len(index))


class HybridRetriever:
    def __init__(
        self,
        index: IndexStore | LexicalIndex,
        *,
        reranker: FuzzyReranker | None = None,
        settings: RetrievalSettings | None = None,
    ) -> None:
        self._store = index if isinstance(index, IndexStore) else IndexStore(index)
        self._reranker = reranker or FuzzyReranker()
        self._settings = settings or RetrievalSettings()

    @property
    def store(self) -> IndexStore:
        return self._store

    def retrieve(self, query: str, k: int) -> list[Candidate]:
        if k <= 0:
            raise UsageError(f"k must be a positive integer, got {k}.")
        if not query or not query.strip():
            raise UsageError("Query must be a non-empty string.")

        started = time.perf_counter()
        # One read of the published reference per query.
        index = self._store.current()
        if len(index) == 0:
            return []

        query_tokens = tokenize(query)
        pool_size = min(self._settings.pool_multiplier * k, len(index))
        pool = index.ranked(query_tokens, limit=pool_size)

        candidates: list[Candidate] = []
        for position, bm25 in pool:
            chunk = index.chunks[position]
            fuzzy = self._reranker.score(query, chunk.text)
            candidates.append(
                Candidate(
                    chunk=chunk,
                    position=position,
                    bm25_score=bm25,
                    fuzzy_score=fuzzy,
                    combined_score=bm25 + fuzzy / self._settings.fuzzy_divisor,
                )
            )
        candidates.sort(key=lambda c: (-c.combined_score, c.position))
        result = candidates[:k]
        log.debug(
            "Retrieved %d/%d candidates for %r in %.1f ms",
            len(result),
            len(pool),
            query,
            (time.perf_counter() - started) * 1000.0,
        )
        return result
