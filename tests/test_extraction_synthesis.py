import json

from lexrag.extraction import FactExtractor
from lexrag.llm_client import LLMClient
from lexrag.models import (
    INSUFFICIENT_INFORMATION,
    Answer,
    Chunk,
    Confidence,
    Fact,
    SynthesisPayload,
)
from lexrag.retrieval import Candidate
from lexrag.synthesis import AnswerSynthesizer

CHUNKS = [
    Chunk(
        chunk_id="doc1#0",
        doc_id="doc1",
        ordinal=0,
        text="The quick brown fox jumps over the lazy dog",
    ),
    Chunk(
        chunk_id="doc3#0",
        doc_id="doc3",
        ordinal=0,
        text="A quick brown dog outpaces a quick fox",
    ),
]
CANDIDATES = [
    Candidate(chunk=chunk, position=idx, bm25_score=1.0, fuzzy_score=30, combined_score=2.5)
    for idx, chunk in enumerate(CHUNKS)
]


class StubLLM(LLMClient):
    def __init__(self, payload: dict):
        self.payload = payload
        self.prompts: list[str] = []

    def _complete(self, system, user, *, max_tokens=None):
        self.prompts.append(user)
        return json.dumps(self.payload)


def _fact(quote: str = "quick brown fox", chunk: Chunk = CHUNKS[0]) -> Fact:
    return Fact(claim="A fox is quick.", quote=quote, chunk_id=chunk.chunk_id, doc_id=chunk.doc_id)


def test_fabricated_quote_is_moved_to_unknowns() -> None:
    llm = StubLLM(
        {
            "facts": [
                {"claim": "The fox is brown.", "quote": "Quick Brown Fox", "chunk_id": "doc1#0"},
                {"claim": "The fox is purple.", "quote": "a purple fox", "chunk_id": "doc1#0"},
                {"claim": "Dogs outpace foxes.", "quote": "outpaces a quick fox", "chunk_id": "doc3#0"},
            ],
            "unknowns": ["How fast is the fox?"],
        }
    )
    result = FactExtractor(llm).extract("what is the fox like?", CANDIDATES)
    assert [fact.claim for fact in result.facts] == ["The fox is brown.", "Dogs outpace foxes."]
    assert result.rejected == 1
    assert result.unknowns[0] == "How fast is the fox?"
    assert any("The fox is purple." in item for item in result.unknowns)
    lookup = {chunk.chunk_id: chunk.text.lower() for chunk in CHUNKS}
    for fact in result.facts:
        assert fact.quote.lower() in lookup[fact.chunk_id]


def test_quote_cited_to_the_wrong_chunk_is_rejected() -> None:
    llm = StubLLM(
        {
            "facts": [{"claim": "c", "quote": "outpaces a quick fox", "chunk_id": "doc1#0"}],
            "unknowns": [],
        }
    )
    result = FactExtractor(llm).extract("fox", CANDIDATES)
    assert result.facts == []
    assert result.unknowns == ["Unverified claim: c"]


def test_quote_word_cap_reaches_prompt_and_check() -> None:
    llm = StubLLM(
        {
            "facts": [
                {"claim": "Short.", "quote": "quick brown fox", "chunk_id": "doc1#0"},
                {"claim": "Long.", "quote": "quick brown fox jumps", "chunk_id": "doc1#0"},
            ],
            "unknowns": [],
        }
    )
    result = FactExtractor(llm, max_quote_words=3).extract("quick fox", CANDIDATES)
    assert "at most 3 words" in llm.prompts[0]
    assert "at most 25 words" not in llm.prompts[0]
    assert [fact.claim for fact in result.facts] == ["Short."]
    assert "Unverified claim: Long." in result.unknowns


def test_extraction_without_candidates_skips_generation() -> None:
    llm = StubLLM({"facts": [], "unknowns": []})
    result = FactExtractor(llm).extract("anything", [])
    assert result.facts == []
    assert result.unknowns == [INSUFFICIENT_INFORMATION]
    assert llm.prompts == []


def test_synthesis_prompt_never_includes_raw_chunk_text() -> None:
    llm = StubLLM({"summary": "A quick fox.", "confidence": "high", "used_facts": [1]})
    answer = AnswerSynthesizer(llm).synthesize("fox?", [_fact()], [])
    assert answer.confidence is Confidence.HIGH
    assert answer.facts == [_fact()]
    assert answer.follow_ups == []
    assert CHUNKS[0].text not in llm.prompts[0]


def test_confidence_downgraded_when_no_facts() -> None:
    llm = StubLLM(
        {
            "summary": "Foxes are definitely purple.",
            "confidence": "HIGH",
            "used_facts": [1],
            "follow_ups": ["Find more sources."],
        }
    )
    answer = AnswerSynthesizer(llm).synthesize("fox colour?", [], ["What colour?"])
    assert answer.confidence is Confidence.LOW
    assert answer.facts == []
    assert answer.summary == INSUFFICIENT_INFORMATION
    assert answer.unknowns == ["What colour?", INSUFFICIENT_INFORMATION]
    assert answer.follow_ups == ["Find more sources."]


def test_enforce_ignores_out_of_range_fact_numbers() -> None:
    facts = [_fact(), _fact("outpaces a quick fox", CHUNKS[1])]
    payload = SynthesisPayload(summary="s", confidence="medium", used_facts=[2, 9, 2])
    answer = AnswerSynthesizer.enforce("q", payload, facts, [])
    assert answer.facts == [facts[1]]

    payload = SynthesisPayload(summary="s", confidence="medium", used_facts=[0, 7])
    assert AnswerSynthesizer.enforce("q", payload, facts, []).facts == facts


def test_confidence_is_ordered_and_high_needs_facts() -> None:
    assert Confidence.LOW < Confidence.MEDIUM < Confidence.HIGH
    assert max([Confidence.MEDIUM, Confidence.HIGH, Confidence.LOW]) is Confidence.HIGH
    try:
        Answer(query="q", summary="s", confidence=Confidence.HIGH)
        raise AssertionError("Expected a validation error for high confidence without facts.")
    except ValueError as exc:
        assert "requires at least one" in str(exc)


def test_facts_are_immutable() -> None:
    fact = _fact()
    try:
        fact.quote = "something else"
        raise AssertionError("Expected frozen Fact to reject assignment.")
    except ValueError:
        pass
