import threading

from lexrag.errors import UsageError
from lexrag.lexical import LexicalIndex
from lexrag.models import Chunk
from lexrag.retrieval import HybridRetriever, IndexStore, RetrievalSettings

CORPUS = (
    "The quick brown fox jumps over the lazy dog",
    "Never jump over the lazy dog quickly",
    "A quick brown dog outpaces a quick fox",
)
FILLER = "Quarterly revenue figures were audited by the finance team"


def _chunks(*texts: str, prefix: str = "doc") -> list[Chunk]:
    return [
        Chunk(chunk_id=f"{prefix}{idx}#0", doc_id=f"{prefix}{idx}", ordinal=0, text=text)
        for idx, text in enumerate(texts, start=1)
    ]


def _retriever(*texts: str, **kwargs) -> HybridRetriever:
    return HybridRetriever(LexicalIndex.build(_chunks(*texts)), **kwargs)


def test_quick_fox_ranks_matching_documents_above_non_matching() -> None:
    results = _retriever(*CORPUS).retrieve("quick fox", k=3)
    ranking = [c.chunk.doc_id for c in results]
    assert set(ranking[:2]) == {"doc1", "doc3"}
    assert ranking[2] == "doc2"
    assert results[2].bm25_score == 0.0


def test_combined_score_is_bm25_plus_weighted_fuzzy() -> None:
    for candidate in _retriever(*CORPUS).retrieve("quick fox", k=3):
        assert candidate.combined_score == candidate.bm25_score + candidate.fuzzy_score / 20.0
        assert 0 <= candidate.fuzzy_score <= 100


def test_typo_query_still_surfaces_related_documents_over_filler() -> None:
    retriever = _retriever(*CORPUS, FILLER)
    ranking = [c.chunk.doc_id for c in retriever.retrieve("qick fox", k=4)]
    assert ranking[-1] == "doc4"
    assert ranking.index("doc1") < ranking.index("doc4")
    assert ranking.index("doc3") < ranking.index("doc4")


def test_fuzzy_alone_orders_candidates_when_bm25_is_blind() -> None:
    results = _retriever(*CORPUS, FILLER).retrieve("qick", k=4)
    assert all(c.bm25_score == 0.0 for c in results)
    assert results[-1].chunk.doc_id == "doc4"
    assert results[0].fuzzy_score > results[-1].fuzzy_score


def test_retrieve_is_deterministic() -> None:
    retriever = _retriever(*CORPUS, FILLER)
    first = retriever.retrieve("lazy quick dog", k=3)
    for _ in range(5):
        assert retriever.retrieve("lazy quick dog", k=3) == first


def test_ties_keep_original_order() -> None:
    results = _retriever("same words", "same words", "same words").retrieve("same words", k=3)
    assert [c.position for c in results] == [0, 1, 2]


def test_candidate_pool_is_bounded_by_multiplier() -> None:
    texts = [f"alpha filler{idx}" for idx in range(10)] + ["alphabet soup"]
    seen: list[str] = []

    class RecordingReranker:
        def score(self, query_text: str, chunk_text: str) -> int:
            seen.append(chunk_text)
            return 0

    retriever = _retriever(*texts, reranker=RecordingReranker())
    results = retriever.retrieve("alpha", k=2)
    assert len(seen) == 6
    assert len(results) == 2

    seen.clear()
    settings = RetrievalSettings(pool_multiplier=1, fuzzy_divisor=10.0)
    _retriever(*texts, reranker=RecordingReranker(), settings=settings).retrieve("alpha", k=2)
    assert len(seen) == 2


def test_k_larger_than_corpus_returns_everything() -> None:
    results = _retriever(*CORPUS).retrieve("fox", k=50)
    assert len(results) == 3


def test_empty_corpus_returns_empty_list() -> None:
    assert HybridRetriever(LexicalIndex.build([])).retrieve("anything", k=3) == []
    assert HybridRetriever(IndexStore()).retrieve("anything", k=3) == []


def test_usage_errors_are_rejected() -> None:
    retriever = _retriever(*CORPUS)
    for query, k in (("fox", 0), ("fox", -2), ("", 3), ("   ", 3)):
        try:
            retriever.retrieve(query, k)
            raise AssertionError(f"Expected UsageError for {query!r}, {k}.")
        except UsageError:
            pass


def test_settings_validation() -> None:
    for kwargs in ({"pool_multiplier": 0}, {"fuzzy_divisor": 0.0}):
        try:
            RetrievalSettings(**kwargs)
            raise AssertionError(f"Expected ValueError for {kwargs}.")
        except ValueError:
            pass


def test_rebuild_publishes_a_whole_new_index() -> None:
    store = IndexStore(LexicalIndex.build(_chunks(*CORPUS)))
    retriever = HybridRetriever(store)
    old = store.current()
    store.rebuild(_chunks(FILLER, prefix="new"))
    assert store.generation == 1
    assert len(old) == 3
    assert [c.chunk.doc_id for c in retriever.retrieve("revenue", k=5)] == ["new1"]


def test_concurrent_readers_never_see_a_mixed_index() -> None:
    corpus_a = _chunks(*(f"alpha beta report {i}" for i in range(30)), prefix="A")
    corpus_b = _chunks(*(f"alpha beta summary {i}" for i in range(30)), prefix="B")
    store = IndexStore(LexicalIndex.build(corpus_a))
    retriever = HybridRetriever(store)
    errors: list[str] = []
    stop = threading.Event()

    def reader() -> None:
        while not stop.is_set():
            prefixes = {c.chunk.doc_id[0] for c in retriever.retrieve("alpha beta", k=10)}
            if len(prefixes) != 1:
                errors.append(f"mixed result: {prefixes}")

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for i in range(20):
        store.rebuild(corpus_b if i % 2 == 0 else corpus_a)
    stop.set()
    for thread in threads:
        thread.join()
    assert errors == []
