"""Token-order-insensitive fuzzy similarity used to re-rank BM25 candidates."""

from __future__ import annotations

from rapidfuzz import fuzz

from lexrag.tokenizer import tokenize


def _sorted_tokens(text: str) -> str:
    return " ".join(sorted(tokenize(text)))


def fuzzy_score(query_text: str, chunk_text: str) -> int:
    """
    Similarity in [0, 100] between the alphabetically sorted token sequences.

    100 means the same multiset of tokens (up to case); 0 means nothing in
    common. The Indel-based ratio is symmetric, so argument order never matters.
    """
    left = _sorted_tokens(query_text)
    right = _sorted_tokens(chunk_text)
    if not left and not right:
        return 100
    return int(round(fuzz.ratio(left, right)))


class FuzzyReranker:
    """Scores raw query text against raw chunk text; knows nothing about BM25."""

    def __init__(self, scorer=fuzzy_score) -> None:
        self._scorer = scorer

    def score(self, query_text: str, chunk_text: str) -> int:
        value = self._scorer(query_text, chunk_text)
        return max(0, min(100, int(value)))

    def score_many(self, query_text: str, chunk_texts: list[str]) -> list[int]:
        return [self.score(query_text, text) for text in chunk_texts]
