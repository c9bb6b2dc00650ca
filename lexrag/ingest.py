"""Document ingestion and paragraph chunking."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from lexrag.config import CHUNK_SEPARATOR, MAX_DOCUMENTS, SANITIZE_INGESTED_TEXT
from lexrag.models import Chunk, Document
from lexrag.security import sanitize_text, validate_extension

log = logging.getLogger(__name__)


def chunk_text(text: str, separator: str = CHUNK_SEPARATOR) -> list[str]:
    """Split on the paragraph separator, trim each piece and drop the empty ones."""
    if not separator:
        raise ValueError("Chunk separator must be a non-empty string.")
    pieces = (piece.strip() for piece in text.split(separator))
    return [piece for piece in pieces if piece]


def normalize_document(text: str, separator: str = CHUNK_SEPARATOR) -> str:
    """Whitespace-normalized form that the surviving chunks reconstruct exactly."""
    return separator.join(chunk_text(text, separator))


def chunk_id_for(doc_id: str, ordinal: int) -> str:
    return f"{doc_id}#{ordinal}"


def chunk_documents(
    documents: list[Document],
    separator: str = CHUNK_SEPARATOR,
) -> list[Chunk]:
    all_chunks: list[Chunk] = []
    for doc in documents:
        pieces = chunk_text(doc.text, separator)
        if not pieces:
            log.info("Document %s produced no chunks.", doc.doc_id)
            continue
        for ordinal, piece in enumerate(pieces):
            all_chunks.append(
                Chunk(
                    chunk_id=chunk_id_for(doc.doc_id, ordinal),
                    doc_id=doc.doc_id,
                    ordinal=ordinal,
                    text=piece,
                )
            )
    return all_chunks


def ingest_texts(
    pairs: Iterable[tuple[str, str]],
    *,
    sanitize: bool = SANITIZE_INGESTED_TEXT,
) -> tuple[list[Document], int]:
    """
    Builds documents from (source_identifier, raw_text) pairs.

    Returns the documents and the number of prompt-injection lines filtered.
    """
    docs: list[Document] = []
    seen: set[str] = set()
    filtered_lines_total = 0
    for source_id, raw_text in pairs:
        source_id = source_id.strip()
        if not source_id:
            raise ValueError("Source identifier must be non-empty.")
        if source_id in seen:
            raise ValueError(f"Duplicate source identifier: {source_id}")
        seen.add(source_id)

        text = raw_text
        if sanitize:
            text, filtered = sanitize_text(raw_text)
            filtered_lines_total += filtered
        docs.append(Document(doc_id=source_id, source=source_id, text=text))

    if len(docs) > MAX_DOCUMENTS:
        raise ValueError(f"Expected at most {MAX_DOCUMENTS} documents, got {len(docs)}.")
    if filtered_lines_total:
        log.warning("Filtered %d suspicious lines during ingestion.", filtered_lines_total)
    return docs, filtered_lines_total


def load_documents(paths: list[str]) -> tuple[list[Document], int]:
    pairs: list[tuple[str, str]] = []
    for raw_path in paths:
        path = Path(raw_path).expanduser().resolve()
        if not path.exists() or not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        validate_extension(path.name)
        pairs.append((str(path), path.read_text(encoding="utf-8", errors="ignore")))
    return ingest_texts(pairs)
