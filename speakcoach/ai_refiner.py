from __future__ import annotations

import json
import logging
import random
import threading
import time
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import numpy as np

from .cache import CacheStore, analysis_key, classification_key, coaching_key, content_hash
from .candidates import CandidateBuilder
from .config import (
    AI_CACHE_TTL_SECONDS,
    AI_CONFIDENCE_THRESHOLD,
    AI_MAX_SEGMENTS,
    AI_MAX_WORKERS,
    ANALYSIS_VERSION,
)
from .llm import AiError, AiOk, AiResult, ChatClient, request_json
from .metrics import OPTIMAL_WPM
from .models import PRIORITY_RANK, Candidate, Issue, RefinementResult, SessionContext, Transcript
from .prompts import (
    coaching_advice_messages,
    issue_classification_messages,
    segment_evaluation_messages,
    speech_analysis_messages,
)

logger = logging.getLogger(__name__)

CLASSIFICATION_BATCH_SIZE = 10
SEGMENT_MIN_MS = 3000
SEGMENT_MAX_MS = 20000
UNREVIEWED_CONFIDENCE = 0.6
DISPUTED_BELOW = 0.3
AI_TEXT_WORDS = 15

SIMILAR_KIND_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"filler_word", "filler"}),
    frozenset({"pace_issue", "pace_too_fast", "pace_too_slow"}),
    frozenset({"clarity_issue", "articulation"}),
    frozenset({"professionalism", "professional_issue"}),
)
SIMILARITY_THRESHOLD = 0.3

AI_CATEGORY_KINDS = {
    "pace": "pace_issue",
    "clarity": "clarity_issue",
    "filler": "filler_word",
    "professional": "professionalism",
    "confidence": "confidence_issue",
    "engagement": "engagement_issue",
}


def user_level(session_count: int) -> str:
    if session_count <= 5:
        return "beginner"
    if session_count <= 20:
        return "intermediate"
    return "advanced"


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _confidence(value: Any, default: float) -> float:
    return min(max(_as_float(value, default), 0.0), 1.0)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _severity(value: Any) -> str:
    value = str(value or "").lower()
    return value if value in ("low", "medium", "high") else "medium"


def _priority_rank(priority: str | None) -> int:
    return PRIORITY_RANK.get(str(priority or "").lower(), 4)


def _valid_evaluation(content: dict[str, Any]) -> bool:
    return isinstance(content.get("evaluation"), dict)


def analysis_confidence(analysis: dict[str, Any]) -> float:
    """0.7 base, +0.1 for concrete recommendations, +0.1 for consistent sub-scores."""
    confidence = 0.7
    areas = _as_list(analysis.get("improvement_areas"))
    if any(isinstance(area, dict) and area.get("specific_recommendation") for area in areas):
        confidence += 0.1

    assessment = analysis.get("overall_assessment")
    if not isinstance(assessment, dict):
        assessment = {}
    scores = [v for v in assessment.values() if isinstance(v, (int, float)) and not isinstance(v, bool)]
    if scores:
        spread = float(np.std(scores)) if len(scores) >= 2 else 0.0
        if spread < 20:
            confidence += 0.1
    return round(min(confidence, 1.0), 2)


class AiRefiner:
    """
    Refines rule-based findings with a chat model.

    Five stages: build candidate segments, let the model pick the ones worth
    a closer look, analyze those, validate the rule issues, then merge
    everything and produce coaching advice. Every model call returns an
    AiResult; a failed call degrades its own stage only.
    """

    def __init__(
        self,
        client: ChatClient,
        cache: CacheStore,
        context: SessionContext | None = None,
        language: str = "en",
        max_ai_segments: int = AI_MAX_SEGMENTS,
        confidence_threshold: float = AI_CONFIDENCE_THRESHOLD,
        cache_ttl: float = AI_CACHE_TTL_SECONDS,
        similar_kind_groups: Sequence[frozenset[str]] = SIMILAR_KIND_GROUPS,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        max_workers: int = AI_MAX_WORKERS,
        coaching_style: str = "supportive",
        rng: random.Random | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.context = context or SessionContext()
        self.language = language
        self.max_ai_segments = max_ai_segments
        self.confidence_threshold = confidence_threshold
        self.cache_ttl = cache_ttl
        self.similar_kind_groups = [frozenset(group) for group in similar_kind_groups]
        self.similarity_threshold = similarity_threshold
        self.max_workers = max(max_workers, 1)
        self.coaching_style = coaching_style
        self.rng = rng
        self.user_level = user_level(self.context.session_count)
        self._stats: Counter[str] = Counter()
        self._lock = threading.Lock()

    def refine_analysis(
        self,
        transcript: Transcript,
        rule_issues: Sequence[Issue],
        coaching_insights: dict[str, Any] | None = None,
    ) -> RefinementResult:
        """Never raises: any unexpected failure returns the rule issues in fallback mode."""
        started = time.perf_counter()
        self._stats = Counter()
        rule_issues = list(rule_issues)

        try:
            candidates = self._build_candidates(transcript, rule_issues)
            selected = self._select_segments(candidates, rule_issues, transcript.duration_ms or 0)
            analyses = self._analyze_segments(selected, rule_issues)
            classified = self._classify_issues(rule_issues)
            merged = self._merge_findings(classified, analyses)
            coaching = self._coaching_recommendations(merged, coaching_insights or {})
        except Exception as exc:
            logger.exception("AI refinement failed: %s", exc)
            return RefinementResult(
                refined_issues=rule_issues,
                metadata=self._metadata(started, len(rule_issues)),
                fallback_mode=True,
                error=str(exc),
            )

        metadata = self._metadata(started, len(rule_issues))
        metadata.update(
            candidates_built=len(candidates),
            segments_selected=len(selected),
            segments_analyzed=len(analyses),
        )

        if self._stats["ai_calls"] and self._stats["ai_failures"] == self._stats["ai_calls"]:
            logger.warning("All %d AI calls failed, keeping rule-based issues", self._stats["ai_calls"])
            return RefinementResult(
                refined_issues=rule_issues,
                coaching_recommendations=coaching,
                metadata=metadata,
                fallback_mode=True,
                error="all AI requests failed",
            )

        insights = [str(item) for a in analyses for item in _as_list(a["analysis"].get("coaching_insights"))]
        logger.info(
            "Refined %d rule issues into %d issues (%d segments analyzed, %d cache hits)",
            len(rule_issues),
            len(merged),
            len(analyses),
            self._stats["cache_hits"],
        )
        return RefinementResult(
            refined_issues=merged,
            ai_insights=insights,
            segment_analyses=[
                {
                    "start_ms": a["segment"].start_ms,
                    "end_ms": a["segment"].end_ms,
                    "text": a["segment"].text,
                    "analysis": a["analysis"],
                    "confidence": a["confidence"],
                }
                for a in analyses
            ],
            coaching_recommendations=coaching,
            metadata=metadata,
        )

    def _metadata(self, started: float, rule_issue_count: int) -> dict[str, Any]:
        return {
            "rule_issues_count": rule_issue_count,
            "ai_calls": self._stats["ai_calls"],
            "ai_failures": self._stats["ai_failures"],
            "cache_hits": self._stats["cache_hits"],
            "processing_time_ms": round((time.perf_counter() - started) * 1000),
            "user_level": self.user_level,
            "version": ANALYSIS_VERSION,
        }

    def _count(self, name: str) -> None:
        with self._lock:
            self._stats[name] += 1

    def _cached_request(
        self,
        key: str,
        messages: list[dict[str, str]],
        validate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> AiResult:
        cached = self.cache.get(key, self.cache_ttl)
        if cached is not None:
            self._count("cache_hits")
            return AiOk(cached)

        self._count("ai_calls")
        result = request_json(self.client, messages, validate=validate)
        match result:
            case AiOk(value=value):
                self.cache.set(key, value, self.cache_ttl)
            case AiError(message=message):
                self._count("ai_failures")
                logger.warning("AI request for %s failed: %s", key.split(":", 1)[0], message)
        return result

    # Stage 1

    def _build_candidates(self, transcript: Transcript, rule_issues: list[Issue]) -> list[Candidate]:
        builder = CandidateBuilder(
            transcript,
            rule_issues,
            max_candidates=self.max_ai_segments * 2,
            min_segment_ms=SEGMENT_MIN_MS,
            max_segment_ms=SEGMENT_MAX_MS,
            rng=self.rng,
        )
        return builder.build_candidates()

    # Stage 2

    def _select_segments(
        self, candidates: list[Candidate], rule_issues: list[Issue], total_duration_ms: int
    ) -> list[Candidate]:
        if not candidates:
            return []

        def evaluate(candidate: Candidate) -> dict[str, Any]:
            return self.evaluate_candidate(candidate, self._related_issues(candidate, rule_issues), total_duration_ms)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            evaluations = list(pool.map(evaluate, candidates))

        scored = [
            (candidate, _as_float((evaluation.get("evaluation") or {}).get("overall_score"), 0.0))
            for candidate, evaluation in zip(candidates, evaluations)
            if evaluation.get("recommended_for_ai_analysis") is True
        ]
        scored.sort(key=lambda pair: -pair[1])
        selected = [candidate for candidate, _ in scored[: self.max_ai_segments]]
        logger.info("Selected %d of %d candidate segments for AI analysis", len(selected), len(candidates))
        return selected

    def evaluate_candidate(
        self, candidate: Candidate, related_issues: list[Issue], total_duration_ms: int
    ) -> dict[str, Any]:
        key = analysis_key(content_hash(candidate.text), {"type": "segment_evaluation", "version": ANALYSIS_VERSION})
        messages = segment_evaluation_messages(candidate, related_issues, total_duration_ms, self.user_level)
        match self._cached_request(key, messages, validate=_valid_evaluation):
            case AiOk(value=evaluation):
                return evaluation
            case AiError(message=message):
                return {"evaluation": {"overall_score": 0.3}, "recommended_for_ai_analysis": False, "error": message}

    # Stage 3

    def _analyze_segments(self, selected: list[Candidate], rule_issues: list[Issue]) -> list[dict[str, Any]]:
        if not selected:
            return []

        def analyze(candidate: Candidate) -> AiResult:
            return self.analyze_segment(candidate, self._related_issues(candidate, rule_issues))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(analyze, selected))

        analyses = []
        for candidate, result in zip(selected, results):
            if isinstance(result, AiOk):
                analyses.append(
                    {"segment": candidate, "analysis": result.value, "confidence": analysis_confidence(result.value)}
                )
        return analyses

    def analyze_segment(self, candidate: Candidate, related_issues: list[Issue]) -> AiResult:
        key = analysis_key(
            content_hash(candidate.text),
            {"type": "speech_analysis", "user_level": self.user_level, "version": ANALYSIS_VERSION},
        )
        messages = speech_analysis_messages(
            candidate,
            related_issues,
            language=self.language,
            speech_type=self.context.speech_type,
            target_audience=self.context.target_audience,
        )
        return self._cached_request(key, messages, validate=lambda content: "overall_assessment" in content)

    @staticmethod
    def _related_issues(candidate: Candidate, rule_issues: list[Issue]) -> list[Issue]:
        return [issue for issue in rule_issues if issue.overlaps(candidate.start_ms, candidate.end_ms)]

    # Stage 4

    def _classify_issues(self, rule_issues: list[Issue]) -> list[Issue]:
        if not rule_issues:
            return []
        classified: list[Issue] = []
        for offset in range(0, len(rule_issues), CLASSIFICATION_BATCH_SIZE):
            batch = rule_issues[offset : offset + CLASSIFICATION_BATCH_SIZE]
            classified.extend(self.classify_batch(batch))
        return classified or rule_issues

    def classify_batch(self, issues: list[Issue]) -> list[Issue]:
        issues_hash = content_hash("|".join(f"{issue.kind}:{issue.text}" for issue in issues))
        key = classification_key(issues_hash, {"user_level": self.user_level, "version": ANALYSIS_VERSION})
        messages = issue_classification_messages(issues, self.user_level, self.context.session_count)
        result = self._cached_request(
            key, messages, validate=lambda content: isinstance(content.get("validated_issues"), list)
        )
        match result:
            case AiOk(value=classification):
                return self.merge_classification(issues, classification)
            case AiError():
                return issues

    def merge_classification(self, issues: list[Issue], classification: dict[str, Any]) -> list[Issue]:
        validated = [v for v in classification.get("validated_issues") or [] if isinstance(v, dict)]
        false_positives = [fp for fp in classification.get("false_positives") or [] if isinstance(fp, dict)]

        merged = []
        for issue in issues:
            validation = next(
                (
                    v
                    for v in validated
                    if v.get("original_detection") == issue.kind or self.similar_text(issue.text, v.get("context_text"))
                ),
                None,
            )
            if validation is not None:
                merged.append(
                    issue.annotate(
                        confidence=_confidence(validation.get("confidence"), 0.8),
                        ai_severity=validation.get("severity"),
                        ai_coaching_tip=validation.get("coaching_recommendation"),
                        impact=validation.get("impact_description"),
                        practice_exercise=validation.get("practice_exercise"),
                        priority=validation.get("priority"),
                        source="rule_ai_validated",
                        validation_status="confirmed",
                    )
                )
                continue

            false_positive = next((fp for fp in false_positives if fp.get("original_detection") == issue.kind), None)
            override = _as_float((false_positive or {}).get("confidence_override"), 1.0)
            if false_positive is not None and override < DISPUTED_BELOW:
                merged.append(
                    issue.annotate(
                        confidence=_confidence(override, 0.0),
                        validation_status="disputed",
                        ai_note=false_positive.get("reason"),
                    )
                )
            else:
                merged.append(issue.annotate(confidence=UNREVIEWED_CONFIDENCE, validation_status="not_reviewed"))

        # disputed issues stay for the user to review
        return [
            issue
            for issue in merged
            if issue.validation_status == "disputed" or (issue.confidence or 0.0) >= self.confidence_threshold
        ]

    def similar_text(self, first: str | None, second: str | None) -> bool:
        if not first or not second:
            return False
        common = set(first.lower().split()) & set(second.lower().split())
        total = set(first.split()) | set(second.split())
        if not total:
            return False
        return len(common) / len(total) > self.similarity_threshold

    # Stage 5

    def _merge_findings(self, classified: list[Issue], analyses: list[dict[str, Any]]) -> list[Issue]:
        merged = list(classified)
        for entry in analyses:
            segment: Candidate = entry["segment"]
            for area in _as_list(entry["analysis"].get("improvement_areas")):
                if not isinstance(area, dict):
                    continue
                ai_issue = self.issue_from_ai_finding(area, segment)
                if not self.is_duplicate(merged, ai_issue):
                    merged.append(ai_issue)
        merged.sort(key=lambda issue: (issue.start_ms, _priority_rank(issue.priority)))
        return merged

    @staticmethod
    def issue_from_ai_finding(area: dict[str, Any], segment: Candidate) -> Issue:
        category = str(area.get("category") or "")
        words = segment.text.split()
        text = " ".join(words[:AI_TEXT_WORDS]) + ("..." if len(words) > AI_TEXT_WORDS else "")
        return Issue(
            kind=AI_CATEGORY_KINDS.get(category.lower(), "other"),
            category=category,
            start_ms=segment.start_ms,
            end_ms=segment.end_ms,
            text=text,
            source="ai",
            severity=_severity(area.get("severity")),
            rationale=str(area.get("issue") or ""),
            tip=str(area.get("specific_recommendation") or ""),
            confidence=_confidence(area.get("confidence"), 0.8),
            validation_status="ai_generated",
            priority=area.get("priority"),
            specific_recommendation=area.get("specific_recommendation"),
        )

    def is_duplicate(self, existing: list[Issue], candidate: Issue) -> bool:
        return any(
            issue.overlaps(candidate.start_ms, candidate.end_ms) and self.similar_kinds(issue.kind, candidate.kind)
            for issue in existing
        )

    def similar_kinds(self, first: str, second: str) -> bool:
        if first == second:
            return True
        return any(first in group and second in group for group in self.similar_kind_groups)

    # Coaching

    def user_profile(self) -> dict[str, Any]:
        return {
            "session_count": self.context.session_count,
            "level": self.user_level,
            "goals": list(self.context.goals),
            "practice_time": "10-15 minutes",
        }

    def _coaching_recommendations(
        self, issues: list[Issue], coaching_insights: dict[str, Any]
    ) -> dict[str, Any] | None:
        if not issues:
            return None

        profile = self.user_profile()
        key = coaching_key(
            self.context.user_id,
            content_hash(json.dumps(profile, sort_keys=True)),
            content_hash(",".join(sorted(issue.kind for issue in issues))),
        )
        trends = {kind: {"count": count} for kind, count in Counter(issue.kind for issue in issues).items()}
        messages = coaching_advice_messages(
            profile,
            trends,
            standout_patterns(coaching_insights),
            micro_opportunities(coaching_insights),
            coaching_style=self.coaching_style,
        )
        match self._cached_request(key, messages, validate=bool):
            case AiOk(value=advice):
                return advice
            case AiError():
                return self.fallback_coaching(issues)

    def fallback_coaching(self, issues: list[Issue]) -> dict[str, Any]:
        counts = Counter(issue.kind for issue in issues)
        top = counts.most_common(1)[0][0] if counts else None
        return {
            "focus_areas": [
                {
                    "skill": top or "general_improvement",
                    "current_level": self.user_level,
                    "target_improvement": "Reduce frequency by 30%",
                    "timeline": "1-2 weeks",
                }
            ],
            "weekly_goals": [
                {
                    "goal": f"Work on {top or 'speaking clarity'}",
                    "strategies": ["Practice daily", "Record yourself"],
                    "measurement": "Track improvement in next session",
                    "difficulty": "medium",
                }
            ],
            "motivation_message": "Keep practicing - improvement comes with consistency!",
        }


def standout_patterns(insights: dict[str, Any]) -> list[str]:
    """Up to three notable patterns from the metrics coaching insights."""
    patterns = []

    pause = insights.get("pause_patterns") or {}
    if pause.get("quality_breakdown") == "mostly_good_with_awkward_long_pauses":
        patterns.append("pause_consistency_low_but_improving")
    elif pause.get("specific_issue"):
        patterns.append(f"awkward_long_pauses: {pause['specific_issue']}")

    pace = insights.get("pace_patterns") or {}
    if pace.get("trajectory") not in (None, "consistent_throughout", "insufficient_data"):
        patterns.append(f"pace_{pace['trajectory']}")
    if pace.get("trajectory") != "insufficient_data" and _as_float(pace.get("consistency"), 1.0) < 0.5:
        patterns.append("pace_inconsistent")

    energy = insights.get("energy_patterns") or {}
    if energy.get("pattern") == "low_energy_throughout":
        patterns.append("energy_flat_throughout_session")
    elif energy.get("needs_boost"):
        patterns.append("energy_needs_boost")

    smoothness = insights.get("smoothness_breakdown") or {}
    if _as_float(smoothness.get("word_flow_score"), 0) >= 80 and _as_float(smoothness.get("pause_consistency_score"), 100) < 50:
        patterns.append("word_pacing_excellent_but_pause_inconsistent")

    return patterns[:3]


def micro_opportunities(insights: dict[str, Any], optimal_wpm: tuple[float, float] = OPTIMAL_WPM) -> list[dict[str, str]]:
    """Up to two strengths worth acknowledging alongside the coaching plan."""
    opportunities = []

    hesitation = insights.get("hesitation_analysis") or {}
    if hesitation.get("total_count") and hesitation.get("typical_locations") == "mostly_at_sentence_starts":
        opportunities.append(
            {
                "type": "hesitation_location",
                "pattern": hesitation["typical_locations"],
                "suggestion": "Practice opening phrases to reduce sentence-start hesitations",
            }
        )

    optimal = _as_float(((insights.get("pause_patterns") or {}).get("distribution") or {}).get("optimal"), 0)
    if optimal > 60:
        opportunities.append(
            {
                "type": "pause_strength",
                "insight": f"{optimal:g}% of pauses are well-timed",
                "suggestion": "Leverage this strength while working on other areas",
            }
        )

    average_wpm = _as_float((insights.get("pace_patterns") or {}).get("average_wpm"), 0)
    if optimal_wpm[0] <= average_wpm <= optimal_wpm[1]:
        opportunities.append(
            {
                "type": "pace_strength",
                "insight": "Natural conversational pace",
                "suggestion": "Focus on maintaining this pace consistency",
            }
        )

    return opportunities[:2]
