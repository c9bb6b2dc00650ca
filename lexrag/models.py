"""Shared data models for the lexical RAG engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

INSUFFICIENT_INFORMATION = "Insufficient information: no retrieved text addresses the question."
GENERATION_UNAVAILABLE = "generation service unavailable"


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    doc_id: str
    source: str
    text: str
    ingested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    doc_id: str
    ordinal: int = Field(..., ge=0, description="Zero-based position within the document.")
    text: str = Field(..., min_length=1)


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank >= other.rank


_CONFIDENCE_ORDER = (Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH)


class Fact(BaseModel):
    model_config = ConfigDict(frozen=True)

    claim: str
    quote: str = Field(..., description="Verbatim excerpt from the cited chunk.")
    chunk_id: str
    doc_id: str


class Answer(BaseModel):
    query: str
    summary: str
    confidence: Confidence
    facts: list[Fact] = Field(default_factory=list)
    unknowns: list[str] = Field(default_factory=list)
    follow_ups: list[str] = Field(
        default_factory=list,
        description="Action items for the caller when confidence is below high.",
    )

    @model_validator(mode="after")
    def _high_confidence_needs_facts(self) -> Answer:
        if self.confidence is Confidence.HIGH and not self.facts:
            raise ValueError("confidence 'high' requires at least one supporting fact")
        return self


# Payloads requested from the generation service. These are parsed first and
# only turned into Fact/Answer after grounding checks.


class ProposedFact(BaseModel):
    claim: str
    quote: str
    chunk_id: str


class ExtractionPayload(BaseModel):
    facts: list[ProposedFact] = Field(default_factory=list)
    unknowns: list[str] = Field(default_factory=list)


class SynthesisPayload(BaseModel):
    summary: str
    confidence: Confidence
    used_facts: list[int] = Field(
        default_factory=list,
        description="1-based indices into the numbered fact list.",
    )
    follow_ups: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value
