"""CLI entrypoint for asking grounded questions over a text corpus."""

from __future__ import annotations

import argparse
import json
import logging
import os

from lexrag.config import LOG_LEVEL, TOP_K, bootstrap_runtime_dirs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Answer a question from plain-text documents with quote-backed facts."
    )
    parser.add_argument("--query", required=True, help="Question to answer.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--docs",
        nargs="+",
        help="Document paths (txt/md/rst/json/csv).",
    )
    source.add_argument(
        "--index",
        help="Previously saved index bundle to serve from.",
    )
    parser.add_argument(
        "--save-index",
        default=None,
        help="Write the index built from --docs to this path.",
    )
    parser.add_argument("--top-k", type=int, default=TOP_K, help="Chunks passed to extraction.")
    parser.add_argument(
        "--output",
        default="outputs/answer.json",
        help="Path for JSON answer output.",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run deterministic offline mode (no API keys or external model calls).",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    bootstrap_runtime_dirs()
    if args.offline:
        os.environ["OFFLINE_MODE"] = "1"
        os.environ["LLM_PROVIDER"] = "mock"

    from lexrag.pipeline import build_pipeline_from_paths, load_pipeline, write_answer

    if args.index:
        pipeline = load_pipeline(args.index)
    else:
        pipeline = build_pipeline_from_paths(args.docs)
        if args.save_index:
            pipeline.save_index(args.save_index)

    answer = pipeline.ask(args.query, args.top_k)
    write_answer(answer, args.output)
    print(json.dumps(answer.model_dump(mode="json"), indent=2, ensure_ascii=True))


if __name__ == "__main__":
    main()
