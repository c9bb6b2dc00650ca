"""Exception taxonomy shared across retrieval and generation."""

from __future__ import annotations


class UsageError(ValueError):
    """Raised synchronously for caller mistakes such as k <= 0 or an empty query."""


class IndexCorruptionError(RuntimeError):
    """Raised when a persisted index bundle cannot be trusted."""


class LLMServiceError(RuntimeError):
    """Raised when an LLM call fails after retries."""

    transient: bool = False


class TransientGenerationError(LLMServiceError):
    """Timeouts, rate limits and connection failures that outlived their retries."""

    transient = True


class MalformedResponseError(TransientGenerationError):
    """The provider answered, but not with the structured payload we asked for."""


class GenerationCancelled(LLMServiceError):
    """The caller cancelled an in-flight generation."""
