from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Sequence
from datetime import date, datetime
from typing import Any, Protocol

from .achievements import AchievementDetector
from .ai_refiner import AiRefiner
from .cache import CacheStore
from .llm import ChatClient
from .metrics import Metrics
from .micro_tips import MicroTipGenerator
from .models import RelevanceResult, SessionContext, SessionRecord, Transcript
from .recommender import PriorityRecommender
from .relevance import check_relevance
from .rule_detector import RuleDetector
from .rulepacks import RulePackRepository

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def update(self, job_id: str, fields: dict[str, Any]) -> None: ...


class InMemoryJobStore:
    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def update(self, job_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            self.jobs.setdefault(job_id, {}).update(fields)

    def get(self, job_id: str) -> dict[str, Any] | None:
        return self.jobs.get(job_id)


async def run_analysis_job(
    job_id: str,
    transcript: Transcript,
    store: JobStore,
    *,
    client: ChatClient,
    cache: CacheStore,
    history: Sequence[SessionRecord] = (),
    language: str = "en",
    context: SessionContext | None = None,
    repository: RulePackRepository | None = None,
    completed_focus_weeks: Sequence[date] = (),
    now: Callable[[], datetime] = datetime.now,
) -> None:
    """Background pipeline: relevance check, rules + metrics in parallel, then AI refinement, then coaching output."""
    context = context or SessionContext(session_count=len(history))

    try:
        store.update(job_id, {"status": "processing"})

        if context.prompt_text and not context.relevance_override:
            relevance = await asyncio.to_thread(
                check_relevance, client, transcript.text, context.prompt_text, language
            )
        else:
            relevance = RelevanceResult(skipped=True)
        if not relevance.on_topic:
            logger.info("Job %s stopped: response is off-topic (score %.2f)", job_id, relevance.relevance_score)
            store.update(
                job_id,
                {
                    "status": "relevance_failed",
                    "results": {
                        "transcript": transcript.text,
                        "duration_ms": transcript.duration_ms,
                        "word_count": len(transcript.words),
                        "relevance": relevance.model_dump(mode="json"),
                    },
                },
            )
            return

        detector = RuleDetector(transcript, language=language, repository=repository)
        rule_issues, base_metrics = await asyncio.gather(
            asyncio.to_thread(detector.detect_all_issues),
            asyncio.to_thread(Metrics(transcript, language=language).calculate_all_metrics),
        )

        refiner = AiRefiner(client, cache, context=context, language=language)
        refinement = await asyncio.to_thread(
            refiner.refine_analysis, transcript, rule_issues, base_metrics.coaching_insights
        )
        issues = refinement.refined_issues

        # Re-score with the validated issue set
        metrics = await asyncio.to_thread(Metrics(transcript, issues, language=language).calculate_all_metrics)
        summary = metrics.session_summary()

        plan = PriorityRecommender(
            summary, issues, history, speech_context=context.speech_type
        ).generate_priority_recommendations()

        current = SessionRecord(id=job_id, created_at=now(), analysis_data=summary, issues=issues)
        achievements = AchievementDetector(
            [*history, current],
            today=lambda: now().date(),
            completed_focus_weeks=completed_focus_weeks,
        ).detect_achievements()

        focus_types = [area.type for area in plan.focus_this_week]
        tips = MicroTipGenerator(
            metrics,
            focus_areas=focus_types,
            primary_recommendation_type=focus_types[0] if focus_types else None,
        ).generate_tips()

        notes = []
        if not transcript.words:
            notes.append("Transcript has no timed words. Speaking metrics may be limited.")
        if refinement.fallback_mode:
            notes.append(f"AI refinement unavailable: {refinement.error}")

        results: dict[str, Any] = {
            "transcript": transcript.text,
            "duration_ms": transcript.duration_ms,
            "issues": [issue.model_dump(mode="json") for issue in issues],
            "rule_issue_count": len(rule_issues),
            "metrics": metrics.model_dump(mode="json"),
            "summary": summary,
            "ai_insights": refinement.ai_insights,
            "segment_analyses": refinement.segment_analyses,
            "coaching_recommendations": refinement.coaching_recommendations,
            "ai_metadata": refinement.metadata,
            "fallback_mode": refinement.fallback_mode,
            "recommendations": plan.model_dump(mode="json"),
            "achievements": [a.model_dump(mode="json") for a in achievements],
            "micro_tips": [tip.model_dump(mode="json") for tip in tips],
            "relevance": relevance.model_dump(mode="json"),
            "notes": notes,
        }

        store.update(job_id, {"status": "done", "results": results})

    except Exception as exc:
        logger.exception("Job %s failed: %s", job_id, exc)
        store.update(job_id, {"status": "error", "error_message": str(exc)})
