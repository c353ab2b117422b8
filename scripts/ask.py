#!/usr/bin/env python3
"""
Ask Script

Answers one question from the command line through the full RAG pipeline
and prints the answer, cited sources and stage timings.

Usage:
    python scripts/ask.py "price of dual gel insoles pro" [--mode fast] [--product NAME] [--json]
"""

import argparse
import asyncio
import json
import logging
import sys


def main():
    parser = argparse.ArgumentParser(description="Ask a question about the product documents")
    parser.add_argument("question", help="Question to answer")
    parser.add_argument("--mode", choices=["fast", "balanced", "accurate", "auto"], default=None,
                        help="Performance preset (auto picks one from the question)")
    parser.add_argument("--product", type=str, default=None, help="Product name hint")
    parser.add_argument("--retrieval-only", action="store_true", help="Skip answer generation")
    parser.add_argument("--json", action="store_true", help="Print the raw pipeline response as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    from dotenv import load_dotenv

    from catalog_rag.common.config import load_config
    from catalog_rag.common.errors import PipelineError
    from catalog_rag.common.presets import QueryOptions, recommend_mode
    from catalog_rag.retriever.pipeline import build_pipeline

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    mode = args.mode
    if mode == "auto":
        mode = recommend_mode(args.question).value
        print(f"[Ask] Performance mode: {mode}")

    overrides = {
        "product_name": args.product,
        "skip_generation": args.retrieval_only or None,
        "timeout_seconds": config.pipeline.timeout_seconds,
    }
    if mode:
        options = QueryOptions.from_preset(mode, **overrides)
    else:
        options = QueryOptions.from_config(config.pipeline, **overrides)

    async def run():
        pipeline = build_pipeline(config)
        try:
            return await pipeline.query(args.question, options)
        finally:
            await pipeline.close()

    try:
        result = asyncio.run(run())
    except PipelineError as e:
        print(f"[Ask] ERROR ({e.stage}): {e.user_message}")
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    if result.response:
        print(result.response)
        print()

    if result.sources:
        print("Sources:")
        for source in result.sources:
            print(f"  - {source.get('filename') or source.get('chunkId')} (score {source.get('rerankScore', 0):.2f})")

    if result.context_analysis.is_context_missing:
        topics = ", ".join(result.context_analysis.suggested_topics) or "none"
        print(f"[Ask] Missing context ({result.context_analysis.category}); suggested topics: {topics}")

    timings = ", ".join(f"{stage}={ms:.0f}ms" for stage, ms in result.stage_timings_ms.items())
    print(f"[Ask] {timings}")


if __name__ == "__main__":
    main()
