from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

from .cache import MemoryCache, SqliteCache
from .config import CACHE_PATH, LOG_LEVEL, OLLAMA_HOST, OLLAMA_MODEL
from .job_runner import InMemoryJobStore, run_analysis_job
from .llm import OllamaClient
from .models import SessionContext, Transcript

logger = logging.getLogger("speakcoach")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="speakcoach", description="Analyze a timed speech transcript")
    parser.add_argument("transcript", type=Path, help="Path to transcript JSON (text + timed words)")
    parser.add_argument("--language", default="en", help="Rule pack language (default: en)")
    parser.add_argument("--speech-type", default="general", choices=["general", "interview", "presentation"])
    parser.add_argument("--sessions", type=int, default=0, help="Number of earlier sessions by this speaker")
    parser.add_argument("--prompt", help="The question or topic the speaker was answering")
    parser.add_argument(
        "--continue-anyway", action="store_true", help="Analyze even if the response looks off-topic"
    )
    parser.add_argument("--model", default=OLLAMA_MODEL, help=f"Ollama model (default: {OLLAMA_MODEL})")
    parser.add_argument("--cache", default=CACHE_PATH, help="sqlite cache path (default: in-memory)")
    parser.add_argument("--output", type=Path, help="Write results here instead of stdout")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    with args.transcript.open("r", encoding="utf-8") as handle:
        transcript = Transcript.from_dict(json.load(handle))

    cache = SqliteCache(args.cache) if args.cache else MemoryCache()
    client = OllamaClient(model=args.model, host=OLLAMA_HOST)
    context = SessionContext(
        session_count=args.sessions,
        speech_type=args.speech_type,
        prompt_text=args.prompt,
        relevance_override=args.continue_anyway,
    )

    job_id = uuid.uuid4().hex
    store = InMemoryJobStore()
    asyncio.run(
        run_analysis_job(job_id, transcript, store, client=client, cache=cache, language=args.language, context=context)
    )

    job = store.get(job_id) or {}
    status = job.get("status")
    if status == "relevance_failed":
        relevance = job["results"]["relevance"]
        logger.warning(
            "Response looks off-topic (score %.2f): %s. Re-run with --continue-anyway to analyze it.",
            relevance["relevance_score"],
            relevance.get("feedback") or "no feedback",
        )
    elif status != "done":
        logger.error("Analysis failed: %s", job.get("error_message", "unknown error"))
        return 1

    payload = json.dumps(job["results"], indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        logger.info("Wrote results to %s", args.output)
    else:
        print(payload)
    return 0 if status == "done" else 2


if __name__ == "__main__":
    sys.exit(main())
