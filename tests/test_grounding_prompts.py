from lexrag.grounding import ground_facts
from lexrag.llm_client import MockOfflineClient
from lexrag.models import Chunk, ExtractionPayload, Fact, ProposedFact, SynthesisPayload
from lexrag.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
    build_synthesis_prompt,
)
from lexrag.retrieval import Candidate

CHUNK = Chunk(
    chunk_id="report.txt#0",
    doc_id="report.txt",
    ordinal=0,
    text="Emission factors are explained in section 4.\nOffsets are reported separately.",
)


def _candidate(chunk: Chunk = CHUNK) -> Candidate:
    return Candidate(chunk=chunk, position=0, bm25_score=1.0, fuzzy_score=50, combined_score=3.5)


def test_extraction_prompt_includes_full_chunks_and_rules() -> None:
    prompt = build_extraction_prompt("Where are emission factors?", [_candidate()])
    assert "chunk_id: report.txt#0" in prompt
    assert "doc_id: report.txt" in prompt
    assert CHUNK.text in prompt
    assert "at most 25 words" in prompt
    assert '"unknowns"' in prompt
    assert "untrusted" in EXTRACTION_SYSTEM_PROMPT.lower()


def test_synthesis_prompt_carries_facts_not_chunk_text() -> None:
    fact = Fact(
        claim="Emission factors are in section 4.",
        quote="explained in section 4",
        chunk_id=CHUNK.chunk_id,
        doc_id=CHUNK.doc_id,
    )
    prompt = build_synthesis_prompt("q", [fact], ["Who audits offsets?"])
    assert '[F1] Emission factors are in section 4. | quote: "explained in section 4"' in prompt
    assert "- Who audits offsets?" in prompt
    assert "Offsets are reported separately." not in prompt


def test_grounding_keeps_verbatim_quotes_only() -> None:
    result = ground_facts(
        [
            ProposedFact(claim="real", quote="EMISSION factors are", chunk_id=CHUNK.chunk_id),
            ProposedFact(claim="fabricated", quote="factors are secret", chunk_id=CHUNK.chunk_id),
            ProposedFact(claim="wrong chunk", quote="section 4", chunk_id="other.txt#0"),
            ProposedFact(claim="long", quote=" ".join(["Offsets"] * 26), chunk_id=CHUNK.chunk_id),
            ProposedFact(claim="real", quote="EMISSION factors are", chunk_id=CHUNK.chunk_id),
        ],
        [CHUNK],
    )
    assert [fact.claim for fact in result.facts] == ["real"]
    assert result.facts[0].doc_id == "report.txt"
    assert result.rejected_claims == ["fabricated", "wrong chunk", "long"]
    for fact in result.facts:
        assert fact.quote.lower() in CHUNK.text.lower()


def test_mock_client_extracts_verbatim_quotes_from_prompt() -> None:
    prompt = build_extraction_prompt("emission factors", [_candidate()])
    payload = ExtractionPayload.model_validate(MockOfflineClient().generate_json("s", prompt))
    assert payload.facts[0].chunk_id == "report.txt#0"
    assert payload.facts[0].quote in CHUNK.text
    assert len(payload.facts[0].quote.split()) <= 25


def test_mock_client_reports_unknowns_for_unrelated_chunks() -> None:
    prompt = build_extraction_prompt("volcano eruptions", [_candidate()])
    payload = ExtractionPayload.model_validate(MockOfflineClient().generate_json("s", prompt))
    assert payload.facts == []
    assert payload.unknowns


def test_mock_client_synthesis_payload_cites_numbered_facts() -> None:
    fact = Fact(claim="c", quote="section 4", chunk_id=CHUNK.chunk_id, doc_id=CHUNK.doc_id)
    prompt = build_synthesis_prompt("q", [fact, fact], [])
    payload = SynthesisPayload.model_validate(MockOfflineClient().generate_json("s", prompt))
    assert payload.used_facts == [1, 2]
    assert payload.confidence.value == "medium"
