"""BM25 lexical index with a versioned on-disk bundle."""

from __future__ import annotations

import hashlib
import json
import logging
import math
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from lexrag.config import BM25_B, BM25_K1
from lexrag.errors import IndexCorruptionError
from lexrag.models import Chunk
from lexrag.tokenizer import TOKENIZER_VERSION, tokenize

log = logging.getLogger(__name__)

INDEX_FORMAT_VERSION = 1
_AVGDL_TOLERANCE = 1e-9


def text_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TermStatistics:
    doc_freq: Mapping[str, int]
    total_chunks: int
    avg_chunk_length: float

    @classmethod
    def from_tokens(cls, tokenized: Sequence[Sequence[str]]) -> TermStatistics:
        doc_freq: Counter[str] = Counter()
        total_tokens = 0
        for tokens in tokenized:
            doc_freq.update(set(tokens))
            total_tokens += len(tokens)
        n = len(tokenized)
        if n == 0:
            avgdl = 0.0
        elif total_tokens == 0:
            # Nothing can match, but avgdl stays positive for any non-empty corpus.
            avgdl = 1.0
        else:
            avgdl = total_tokens / n
        return cls(doc_freq=dict(doc_freq), total_chunks=n, avg_chunk_length=avgdl)


@dataclass(frozen=True)
class _Posting:
    position: int
    term_freq: int


@dataclass
class LexicalIndex:
    """
    Immutable BM25 index over an ordered list of chunks.

    Positions (0..N-1) are the global chunk ordinals used for stable
    tie-breaking. Build a new index to change the corpus; never mutate one
    that has been published to readers.
    """

    chunks: tuple[Chunk, ...]
    tokenized: tuple[tuple[str, ...], ...]
    stats: TermStatistics
    k1: float = BM25_K1
    b: float = BM25_B
    stale: frozenset[int] = frozenset()
    _postings: dict[str, list[_Posting]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.k1 <= 0:
            raise ValueError(f"k1 must be positive, got {self.k1}.")
        if not 0.0 <= self.b <= 1.0:
            raise ValueError(f"b must be within [0, 1], got {self.b}.")
        if len(self.chunks) != len(self.tokenized):
            raise ValueError("Every chunk needs exactly one token sequence.")
        postings: dict[str, list[_Posting]] = {}
        for position, tokens in enumerate(self.tokenized):
            for term, freq in Counter(tokens).items():
                postings.setdefault(term, []).append(_Posting(position, freq))
        self._postings = postings

    @classmethod
    def build(
        cls,
        chunks: Sequence[Chunk],
        *,
        k1: float = BM25_K1,
        b: float = BM25_B,
    ) -> LexicalIndex:
        tokenized = tuple(tuple(tokenize(chunk.text)) for chunk in chunks)
        stats = TermStatistics.from_tokens(tokenized)
        index = cls(chunks=tuple(chunks), tokenized=tokenized, stats=stats, k1=k1, b=b)
        log.info(
            "Built lexical index: %d chunks, %d terms, avgdl=%.2f",
            stats.total_chunks,
            len(stats.doc_freq),
            stats.avg_chunk_length,
        )
        return index

    def __len__(self) -> int:
        return len(self.chunks)

    def is_stale(self, position: int) -> bool:
        return position in self.stale

    def idf(self, term: str) -> float:
        n_t = self.stats.doc_freq.get(term, 0)
        n = self.stats.total_chunks
        return math.log((n - n_t + 0.5) / (n_t + 0.5) + 1.0)

    def _term_weight(self, idf: float, term_freq: int, length: int) -> float:
        norm = 1.0 - self.b + self.b * length / self.stats.avg_chunk_length
        return idf * (term_freq * (self.k1 + 1.0)) / (term_freq + self.k1 * norm)

    def score(self, query_tokens: Sequence[str], position: int) -> float:
        """BM25 score of one chunk; distinct query terms only, stale chunks score 0."""
        if position in self.stale:
            return 0.0
        tokens = self.tokenized[position]
        counts = Counter(tokens)
        total = 0.0
        for term in dict.fromkeys(query_tokens):
            freq = counts.get(term, 0)
            if freq:
                total += self._term_weight(self.idf(term), freq, len(tokens))
        return total

    def get_scores(self, query_tokens: Sequence[str]) -> list[float]:
        """One score per chunk, in position order, zero-scoring chunks included."""
        scores = [0.0] * len(self.chunks)
        if not scores:
            return scores
        for term in dict.fromkeys(query_tokens):
            postings = self._postings.get(term)
            if not postings:
                continue
            idf = self.idf(term)
            for posting in postings:
                length = len(self.tokenized[posting.position])
                scores[posting.position] += self._term_weight(idf, posting.term_freq, length)
        for position in self.stale:
            scores[position] = 0.0
        return scores

    def ranked(
        self,
        query_tokens: Sequence[str],
        limit: int | None = None,
    ) -> list[tuple[int, float]]:
        """(position, score) pairs ordered by descending score, then ascending position."""
        scores = self.get_scores(query_tokens)
        order = sorted(
            (pos for pos in range(len(scores)) if pos not in self.stale),
            key=lambda pos: (-scores[pos], pos),
        )
        if limit is not None:
            order = order[: max(0, limit)]
        return [(pos, scores[pos]) for pos in order]

    def save(self, path: str | Path) -> Path:
        bundle = IndexBundle(
            format_version=INDEX_FORMAT_VERSION,
            tokenizer_version=TOKENIZER_VERSION,
            k1=self.k1,
            b=self.b,
            chunks=[
                BundleChunk(
                    chunk_id=chunk.chunk_id,
                    doc_id=chunk.doc_id,
                    ordinal=chunk.ordinal,
                    text=chunk.text,
                    digest=text_digest(chunk.text),
                    tokens=list(tokens),
                )
                for chunk, tokens in zip(self.chunks, self.tokenized, strict=True)
            ],
            stats=BundleStats(
                doc_freq=dict(self.stats.doc_freq),
                total_chunks=self.stats.total_chunks,
                avg_chunk_length=self.stats.avg_chunk_length,
            ),
        )
        out_path = Path(path).expanduser().resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps(bundle.model_dump(), ensure_ascii=True),
            encoding="utf-8",
        )
        log.info("Saved lexical index (%d chunks) to %s", len(self.chunks), out_path)
        return out_path

    @classmethod
    def load(cls, path: str | Path) -> LexicalIndex:
        in_path = Path(path).expanduser().resolve()
        try:
            raw = json.loads(in_path.read_text(encoding="utf-8"))
            bundle = IndexBundle.model_validate(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
            raise IndexCorruptionError(f"Unreadable index bundle {in_path}: {exc}") from exc
        return cls.from_bundle(bundle, source=str(in_path))

    @classmethod
    def from_bundle(cls, bundle: IndexBundle, source: str = "<bundle>") -> LexicalIndex:
        if bundle.format_version != INDEX_FORMAT_VERSION:
            raise IndexCorruptionError(
                f"{source}: index format version {bundle.format_version} "
                f"is not supported (expected {INDEX_FORMAT_VERSION})."
            )
        if bundle.tokenizer_version != TOKENIZER_VERSION:
            raise IndexCorruptionError(
                f"{source}: built with tokenizer {bundle.tokenizer_version!r}, "
                f"current tokenizer is {TOKENIZER_VERSION!r}."
            )

        _check_chunk_layout(bundle.chunks, source)
        tokenized = tuple(tuple(item.tokens) for item in bundle.chunks)
        expected = TermStatistics.from_tokens(tokenized)
        stored = bundle.stats
        if (
            stored.total_chunks != expected.total_chunks
            or stored.doc_freq != expected.doc_freq
            or abs(stored.avg_chunk_length - expected.avg_chunk_length) > _AVGDL_TOLERANCE
        ):
            raise IndexCorruptionError(
                f"{source}: stored term statistics disagree with the stored tokens."
            )

        stale: set[int] = set()
        for position, item in enumerate(bundle.chunks):
            if text_digest(item.text) != item.digest:
                log.error(
                    "Chunk %s has stale cached tokens; excluding it from scoring.",
                    item.chunk_id,
                )
                stale.add(position)

        try:
            chunks = tuple(
                Chunk(
                    chunk_id=item.chunk_id,
                    doc_id=item.doc_id,
                    ordinal=item.ordinal,
                    text=item.text,
                )
                for item in bundle.chunks
            )
            return cls(
                chunks=chunks,
                tokenized=tokenized,
                stats=expected,
                k1=bundle.k1,
                b=bundle.b,
                stale=frozenset(stale),
            )
        except (ValidationError, ValueError) as exc:
            raise IndexCorruptionError(f"{source}: {exc}") from exc


def _check_chunk_layout(chunks: Sequence[BundleChunk], source: str) -> None:
    seen_ids: set[str] = set()
    ordinals: dict[str, list[int]] = {}
    for item in chunks:
        if item.chunk_id in seen_ids:
            raise IndexCorruptionError(f"{source}: duplicate chunk id {item.chunk_id}.")
        seen_ids.add(item.chunk_id)
        ordinals.setdefault(item.doc_id, []).append(item.ordinal)
    for doc_id, values in ordinals.items():
        if sorted(values) != list(range(len(values))):
            raise IndexCorruptionError(
                f"{source}: chunk ordinals for {doc_id} are not dense and zero-based."
            )


class BundleChunk(BaseModel):
    chunk_id: str
    doc_id: str
    ordinal: int
    text: str
    digest: str
    tokens: list[str]


class BundleStats(BaseModel):
    doc_freq: dict[str, int]
    total_chunks: int
    avg_chunk_length: float


class IndexBundle(BaseModel):
    format_version: int
    tokenizer_version: str
    k1: float = Field(..., gt=0)
    b: float = Field(..., ge=0, le=1)
    chunks: list[BundleChunk]
    stats: BundleStats
