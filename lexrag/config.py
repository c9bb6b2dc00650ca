"""Centralized configuration for the lexical RAG engine."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(PROJECT_ROOT / ".env")

DATA_DIR = PROJECT_ROOT / "data"
OUTPUTS_DIR = PROJECT_ROOT / "outputs"


def bootstrap_runtime_dirs() -> None:
    for path in (DATA_DIR, OUTPUTS_DIR):
        path.mkdir(parents=True, exist_ok=True)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# LLM provider configuration
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
OFFLINE_MODE = os.getenv("OFFLINE_MODE", "0").strip().lower() in {"1", "true", "yes"}

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1/")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

AZURE_ENDPOINT = os.getenv("AZURE_ENDPOINT", "")
AZURE_API_KEY = os.getenv("AZURE_API_KEY", "")
AZURE_API_VERSION = os.getenv("AZURE_API_VERSION", "2024-12-01-preview")
AZURE_MODEL = os.getenv("AZURE_MODEL", "o4-mini")

# Generation and reliability
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.0"))
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "30.0"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
LLM_PARSE_RETRIES = int(os.getenv("LLM_PARSE_RETRIES", "1"))
LLM_BACKOFF_BASE_S = float(os.getenv("LLM_BACKOFF_BASE_S", "1.0"))
LLM_BACKOFF_MAX_S = float(os.getenv("LLM_BACKOFF_MAX_S", "8.0"))
LLM_MIN_CALL_INTERVAL_S = float(os.getenv("LLM_MIN_CALL_INTERVAL_S", "0.0"))
EXTRACTION_MAX_TOKENS = int(os.getenv("EXTRACTION_MAX_TOKENS", "1500"))
SYNTHESIS_MAX_TOKENS = int(os.getenv("SYNTHESIS_MAX_TOKENS", "800"))

# Ingestion and chunking
CHUNK_SEPARATOR = os.getenv("CHUNK_SEPARATOR", "\n\n").encode("utf-8").decode("unicode_escape")
SANITIZE_INGESTED_TEXT = os.getenv("SANITIZE_INGESTED_TEXT", "1").strip().lower() in {
    "1",
    "true",
    "yes",
}
MAX_DOCUMENTS = int(os.getenv("MAX_DOCUMENTS", "1000"))

# Lexical retrieval
BM25_K1 = float(os.getenv("BM25_K1", "1.5"))
BM25_B = float(os.getenv("BM25_B", "0.75"))
CANDIDATE_POOL_MULTIPLIER = int(os.getenv("CANDIDATE_POOL_MULTIPLIER", "3"))
FUZZY_WEIGHT_DIVISOR = float(os.getenv("FUZZY_WEIGHT_DIVISOR", "20.0"))
TOP_K = int(os.getenv("TOP_K", "5"))

# Grounding
MAX_QUOTE_WORDS = int(os.getenv("MAX_QUOTE_WORDS", "25"))
