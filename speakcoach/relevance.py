from __future__ import annotations

import logging
import time
from typing import Any

from .config import RELEVANCE_THRESHOLD
from .llm import AiError, AiOk, ChatClient, request_json
from .models import RelevanceResult
from .prompts import relevance_check_messages

logger = logging.getLogger(__name__)

UNCHECKED_FEEDBACK = "Unable to check relevance - proceeding with analysis"


def _valid_relevance(content: dict[str, Any]) -> bool:
    score = content.get("relevance_score")
    return isinstance(score, (int, float)) and not isinstance(score, bool)


def check_relevance(
    client: ChatClient,
    transcript_text: str,
    prompt_text: str | None,
    language: str = "en",
    threshold: float = RELEVANCE_THRESHOLD,
) -> RelevanceResult:
    """
    Ask the model whether a response addresses the prompt it was given.

    A missing prompt or transcript skips the check. Any model failure is
    reported as on-topic so the speaker is never blocked by it.
    """
    if not (prompt_text or "").strip() or not transcript_text.strip():
        logger.warning("Skipping relevance check: missing prompt or transcript")
        return RelevanceResult(skipped=True)

    started = time.perf_counter()
    messages = relevance_check_messages(prompt_text, transcript_text, language)
    match request_json(client, messages, validate=_valid_relevance):
        case AiOk(value=content):
            score = min(max(float(content["relevance_score"]), 0.0), 1.0)
            feedback = content.get("feedback")
            result = RelevanceResult(
                on_topic=score >= threshold,
                relevance_score=score,
                feedback=str(feedback) if feedback else None,
                processing_time_ms=round((time.perf_counter() - started) * 1000),
            )
            logger.info("Relevance score=%.2f on_topic=%s", result.relevance_score, result.on_topic)
            return result
        case AiError(message=message):
            logger.error("Relevance check failed: %s", message)
            return RelevanceResult(feedback=UNCHECKED_FEEDBACK)
