"""Provider-agnostic generation client: `generate(system, user) -> text`."""

from __future__ import annotations

import json
import logging
import os
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from lexrag.errors import (
    GenerationCancelled,
    LLMServiceError,
    MalformedResponseError,
    TransientGenerationError,
)
from lexrag.tokenizer import tokenize

log = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(?P<body>.*?)\s*```$", re.DOTALL)


class LLMClient:
    """Base class: providers implement `_complete`; retries and timeouts live here."""

    provider: str = "base"
    _last_call_ts: float = 0.0

    def _throttle(self) -> None:
        from lexrag.config import LLM_MIN_CALL_INTERVAL_S

        if LLM_MIN_CALL_INTERVAL_S <= 0:
            return
        elapsed = time.time() - self._last_call_ts
        if elapsed < LLM_MIN_CALL_INTERVAL_S:
            time.sleep(LLM_MIN_CALL_INTERVAL_S - elapsed)

    def _sleep_backoff(self, attempt: int, cancel: threading.Event | None = None) -> None:
        from lexrag.config import LLM_BACKOFF_BASE_S, LLM_BACKOFF_MAX_S

        base = max(0.1, LLM_BACKOFF_BASE_S)
        max_wait = max(base, LLM_BACKOFF_MAX_S)
        wait = min(max_wait, base * (2**attempt))
        jitter = random.uniform(0.0, base)  # nosec B311
        if cancel is None:
            time.sleep(wait + jitter)
        elif cancel.wait(wait + jitter):
            raise GenerationCancelled(f"{self.__class__.__name__} cancelled during backoff.")

    def _is_retryable_error(self, exc: BaseException) -> tuple[bool, str]:
        name = exc.__class__.__name__
        status_code = getattr(exc, "status_code", None)
        body = str(exc).lower()
        retryable_status = {408, 409, 429, 500, 502, 503, 504}
        retryable_name_markers = (
            "RateLimitError",
            "APITimeoutError",
            "APIConnectionError",
            "InternalServerError",
        )

        if isinstance(exc, (TimeoutError, ConnectionError)):
            return True, name
        if status_code in retryable_status:
            return True, f"status={status_code}"
        if any(marker in name for marker in retryable_name_markers):
            return True, name
        if "rate limit" in body or "too many requests" in body or "timeout" in body:
            return True, name
        return False, name

    def _complete(self, system: str, user: str, *, max_tokens: int | None = None) -> str:
        raise NotImplementedError

    def _call_with_timeout(
        self,
        system: str,
        user: str,
        max_tokens: int | None,
        timeout: float,
    ) -> str:
        # Each call runs on its own daemon thread; a hung call holds no shared slot.
        outcome: dict[str, object] = {}

        def _run() -> None:
            try:
                outcome["text"] = self._complete(system, user, max_tokens=max_tokens)
            except Exception as exc:
                outcome["error"] = exc

        worker = threading.Thread(target=_run, name="lexrag-llm", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            # The worker finishes in the background; its result is discarded.
            raise TimeoutError(f"generation exceeded {timeout:.1f}s")
        error = outcome.get("error")
        if error is not None:
            raise error
        return str(outcome["text"])

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        from lexrag.config import LLM_MAX_RETRIES, LLM_TIMEOUT_S

        call_timeout = timeout if timeout is not None else LLM_TIMEOUT_S
        attempts = max(1, LLM_MAX_RETRIES + 1)
        for attempt in range(attempts):
            if cancel is not None and cancel.is_set():
                raise GenerationCancelled(f"{self.__class__.__name__} cancelled by caller.")
            try:
                self._throttle()
                text = self._call_with_timeout(system, user, max_tokens, call_timeout)
                self._last_call_ts = time.time()
                return text
            except LLMServiceError:
                raise
            except Exception as exc:
                retryable, reason = self._is_retryable_error(exc)
                is_last = attempt == attempts - 1
                if not retryable:
                    raise LLMServiceError(
                        f"{self.__class__.__name__} rejected the request: {exc}"
                    ) from exc
                if is_last:
                    raise TransientGenerationError(
                        f"{self.__class__.__name__} failed after "
                        f"{attempt + 1}/{attempts} attempts: {exc}"
                    ) from exc
                log.warning(
                    "%s transient error (attempt %d/%d, reason=%s). Retrying...",
                    self.__class__.__name__,
                    attempt + 1,
                    attempts,
                    reason,
                )
                self._sleep_backoff(attempt, cancel)

        raise TransientGenerationError(f"{self.__class__.__name__} failed unexpectedly.")

    def generate_json(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict:
        text = self.generate(
            system,
            user,
            max_tokens=max_tokens,
            timeout=timeout,
            cancel=cancel,
        ).strip()
        # Handles JSON wrapped in markdown fences.
        match = _FENCE_RE.match(text)
        if match:
            text = match.group("body")
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise json.JSONDecodeError("Expected a JSON object", text, 0)
        return payload

    def generate_structured(
        self,
        system: str,
        user: str,
        schema: type[ModelT],
        *,
        max_tokens: int | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        parse_retries: int | None = None,
    ) -> ModelT:
        """Generates and validates against `schema`; malformed output is retried, then raised."""
        from lexrag.config import LLM_PARSE_RETRIES

        retries = LLM_PARSE_RETRIES if parse_retries is None else parse_retries
        attempts = max(1, retries + 1)
        for attempt in range(attempts):
            try:
                payload = self.generate_json(
                    system,
                    user,
                    max_tokens=max_tokens,
                    timeout=timeout,
                    cancel=cancel,
                )
                return schema.model_validate(payload)
            except (json.JSONDecodeError, ValidationError) as exc:
                if attempt == attempts - 1:
                    raise MalformedResponseError(
                        f"{self.__class__.__name__} returned no valid "
                        f"{schema.__name__} after {attempts} attempts: {exc}"
                    ) from exc
                log.warning(
                    "%s returned malformed %s (attempt %d/%d). Retrying...",
                    self.__class__.__name__,
                    schema.__name__,
                    attempt + 1,
                    attempts,
                )
        raise MalformedResponseError(f"{self.__class__.__name__} failed unexpectedly.")


def _chat_messages(system: str, user: str) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": user})
    return messages


class OpenAICompatibleClient(LLMClient):
    provider = "openai"

    def __init__(self) -> None:
        from openai import OpenAI

        from lexrag.config import LLM_TIMEOUT_S, OPENAI_API_KEY, OPENAI_BASE_URL

        if not OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai.")
        # Retries are handled by LLMClient.generate, not by the SDK.
        self._client = OpenAI(
            base_url=OPENAI_BASE_URL,
            api_key=OPENAI_API_KEY,
            timeout=LLM_TIMEOUT_S,
            max_retries=0,
        )

    def _complete(self, system: str, user: str, *, max_tokens: int | None = None) -> str:
        from lexrag.config import GENERATION_TEMPERATURE, OPENAI_MODEL

        kwargs: dict = {
            "model": OPENAI_MODEL,
            "messages": _chat_messages(system, user),
            "temperature": GENERATION_TEMPERATURE,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        resp = self._client.chat.completions.create(**kwargs)
        usage = resp.usage
        if usage:
            log.debug(
                "openai usage: prompt=%s completion=%s",
                getattr(usage, "prompt_tokens", 0),
                getattr(usage, "completion_tokens", 0),
            )
        return resp.choices[0].message.content or ""


class AzureOpenAIClient(LLMClient):
    provider = "azure_openai"

    def __init__(self) -> None:
        from openai import AzureOpenAI

        from lexrag.config import AZURE_API_KEY, AZURE_API_VERSION, AZURE_ENDPOINT, LLM_TIMEOUT_S

        if not AZURE_API_KEY:
            raise ValueError("AZURE_API_KEY is required when LLM_PROVIDER=azure_openai.")
        if not AZURE_ENDPOINT:
            raise ValueError("AZURE_ENDPOINT is required when LLM_PROVIDER=azure_openai.")

        self._client = AzureOpenAI(
            api_version=AZURE_API_VERSION,
            azure_endpoint=AZURE_ENDPOINT,
            api_key=AZURE_API_KEY,
            timeout=LLM_TIMEOUT_S,
            max_retries=0,
        )

    def _complete(self, system: str, user: str, *, max_tokens: int | None = None) -> str:
        from lexrag.config import AZURE_MODEL, GENERATION_TEMPERATURE

        kwargs: dict = {"model": AZURE_MODEL, "messages": _chat_messages(system, user)}
        if AZURE_MODEL.startswith("o"):
            if max_tokens is not None:
                kwargs["max_completion_tokens"] = max_tokens
        else:
            kwargs["temperature"] = GENERATION_TEMPERATURE
            if max_tokens is not None:
                kwargs["max_tokens"] = max_tokens
        resp = self._client.chat.completions.create(**kwargs)
        return resp.choices[0].message.content or ""


@dataclass(frozen=True)
class ContextRow:
    doc_id: str
    chunk_id: str
    text: str


class MockOfflineClient(LLMClient):
    """Deterministic stand-in that answers from the prompt alone, for offline runs."""

    provider = "mock"

    _CHUNK_RE = re.compile(
        r"<<<CHUNK (?P<n>\d+)>>>\ndoc_id: (?P<doc_id>[^\n]*)\nchunk_id: (?P<chunk_id>[^\n]*)\n"
        r"text:\n(?P<text>.*?)\n<<<END CHUNK (?P=n)>>>",
        re.DOTALL,
    )
    _QUESTION_RE = re.compile(r"QUESTION:\n(?P<q>.*?)\n\n", re.DOTALL)
    _FACT_RE = re.compile(r"^\[F(?P<n>\d+)\] ", re.MULTILINE)
    _LEADING_WORDS_RE = re.compile(r"\S+(?:\s+\S+){0,23}")

    def _extract_context_rows(self, prompt: str) -> list[ContextRow]:
        return [
            ContextRow(
                doc_id=match.group("doc_id"),
                chunk_id=match.group("chunk_id"),
                text=match.group("text"),
            )
            for match in self._CHUNK_RE.finditer(prompt)
        ]

    def _quote(self, text: str) -> str:
        # Leading words kept verbatim, including their original spacing.
        match = self._LEADING_WORDS_RE.search(text)
        return match.group(0) if match else ""

    def _extraction_payload(self, prompt: str) -> dict:
        match = self._QUESTION_RE.search(prompt)
        question = match.group("q").strip() if match else ""
        wanted = set(tokenize(question))
        facts = []
        for row in self._extract_context_rows(prompt):
            if not wanted & set(tokenize(row.text)):
                continue
            quote = self._quote(row.text)
            if quote:
                facts.append(
                    {
                        "claim": f"{row.doc_id} states: {quote}",
                        "quote": quote,
                        "chunk_id": row.chunk_id,
                    }
                )
        unknowns = [] if facts else [f"No supplied chunk addresses: {question}"]
        return {"facts": facts, "unknowns": unknowns}

    def _synthesis_payload(self, prompt: str) -> dict:
        fact_numbers = [int(m.group("n")) for m in self._FACT_RE.finditer(prompt)]
        if not fact_numbers:
            return {
                "summary": "Offline deterministic synthesis: no verified facts were supplied.",
                "confidence": "low",
                "used_facts": [],
                "follow_ups": ["Provide documents that cover the question."],
            }
        return {
            "summary": (
                f"Offline deterministic synthesis over {len(fact_numbers)} verified facts."
            ),
            "confidence": "medium",
            "used_facts": fact_numbers,
            "follow_ups": ["Review the cited quotes before relying on this summary."],
        }

    def _complete(self, system: str, user: str, *, max_tokens: int | None = None) -> str:
        del system, max_tokens
        if '"used_facts"' in user:
            payload = self._synthesis_payload(user)
        else:
            payload = self._extraction_payload(user)
        return json.dumps(payload)


def get_llm_client() -> LLMClient:
    from lexrag.config import LLM_PROVIDER, OFFLINE_MODE

    provider = os.getenv("LLM_PROVIDER", LLM_PROVIDER).strip().lower()
    offline = os.getenv("OFFLINE_MODE", "1" if OFFLINE_MODE else "0").strip().lower() in {
        "1",
        "true",
        "yes",
    }
    if offline:
        return MockOfflineClient()

    if provider == "openai":
        return OpenAICompatibleClient()
    if provider == "azure_openai":
        return AzureOpenAIClient()
    if provider == "mock":
        return MockOfflineClient()
    raise ValueError(f"Unknown LLM_PROVIDER={provider!r}")
