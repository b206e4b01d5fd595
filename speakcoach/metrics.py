from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

import numpy as np

from .models import (
    BasicMetrics,
    ClarityMetrics,
    EngagementMetrics,
    FillerMetrics,
    FluencyMetrics,
    Issue,
    MetricsResult,
    OverallScores,
    PauseMetrics,
    SpeakingMetrics,
    Transcript,
)

logger = logging.getLogger(__name__)

OPTIMAL_WPM = (140, 160)
ACCEPTABLE_WPM = (120, 180)
SLOW_WPM_THRESHOLD = 120
FAST_WPM_THRESHOLD = 180

MIN_PAUSE_MS = 100
LONG_PAUSE_MS = 3000

CLARITY_WEIGHTS = {
    "filler_rate": 0.30,
    "pace_consistency": 0.25,
    "pause_quality": 0.20,
    "articulation": 0.15,
    "fluency": 0.10,
}

OVERALL_WEIGHTS = {
    "pace": 0.25,
    "clarity": 0.35,
    "fluency": 0.25,
    "engagement": 0.15,
}

FILLER_PATTERNS = {
    "en": {
        "um": r"\b(um|uhm)\b",
        "uh": r"\b(uh|er|ah)\b",
        "like": r"\blike\b",
        "you_know": r"\byou know\b",
        "basically": r"\bbasically\b",
        "actually": r"\bactually\b",
        "so": r"\bso\b(?!\s+(that|what|how|when|where|why))",
    },
    "es": {
        "eh": r"\b(eh|este|esto)\b",
        "pues": r"\bpues\b",
        "bueno": r"\bbueno\b",
        "o_sea": r"\bo sea\b",
        "como": r"\bcomo\b(?!\s+(que|si|cuando))",
    },
    "pt": {
        "eh": r"\b(eh|é)\b",
        "ah": r"\b(ah|hm|ahn)\b",
        "tipo": r"\btipo\b",
        "ne": r"\bné\b",
        "entao": r"\bentão\b",
        "assim": r"\bassim\b",
        "sei_la": r"\bsei lá\b",
        "meio_que": r"\bmeio que\b",
        "tipo_assim": r"\btipo assim\b",
        "mais_ou_menos": r"\bmais ou menos\b",
    },
}

HESITATION_PATTERNS = [re.compile(r"\b(um|uh|er|ah|hmm)\b", re.I), re.compile(r"\.\.\."), re.compile(r"--")]
RESTART_PATTERN = re.compile(r"\b\w+--?\s+\w+")
INCOMPLETE_PATTERNS = [
    re.compile(r"\b(and|but|so|then)\s*\.\.\.", re.I),
    re.compile(r"\b(i|we|they|it)\s+(was|were|will|would|should)\s*\.\.\.", re.I),
]
CAPS_PATTERN = re.compile(r"\b[A-Z]{2,}\b")
EMPHASIS_WORDS = re.compile(r"\b(amazing|fantastic|incredible|wow|great|excellent)\b", re.I)
REPETITION_PATTERN = re.compile(r"\b(\w+)\s+\1\b", re.I)
SENTENCE_START_FILLER = re.compile(r"^(um|uh|er|ah|like)$")


class MetricsError(Exception):
    pass


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population coefficient of variation; 0 for fewer than two values or a zero mean."""
    if len(values) < 2:
        return 0.0
    arr = np.asarray(values, dtype=float)
    mean = float(np.mean(arr))
    if mean == 0:
        return 0.0
    return float(np.std(arr)) / mean


def assess_speaking_rate(wpm: float) -> str:
    if wpm < SLOW_WPM_THRESHOLD:
        return "too_slow"
    if wpm < OPTIMAL_WPM[0]:
        return "slow"
    if wpm <= OPTIMAL_WPM[1]:
        return "optimal"
    if wpm <= FAST_WPM_THRESHOLD:
        return "fast"
    return "too_fast"


def score_speaking_pace(wpm: float) -> int:
    if OPTIMAL_WPM[0] <= wpm <= OPTIMAL_WPM[1]:
        return 100
    if ACCEPTABLE_WPM[0] <= wpm <= ACCEPTABLE_WPM[1]:
        return 85
    if 100 <= wpm < 120 or 180 < wpm <= 200:
        return 70
    if 80 <= wpm < 100 or 200 < wpm <= 250:
        return 50
    return 30


def score_to_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def assess_filler_density(rate_percentage: float) -> str:
    if rate_percentage <= 2:
        return "excellent"
    if rate_percentage <= 5:
        return "good"
    if rate_percentage <= 10:
        return "moderate"
    if rate_percentage <= 15:
        return "high"
    return "very_high"


def assess_pause_quality(avg_pause: float, longest_pause: float, long_pause_count: int, total_pauses: int) -> int:
    score = 100
    if avg_pause > 1500:
        score -= 20
    elif avg_pause > 1000:
        score -= 10

    if longest_pause > 5000:
        score -= 30
    elif longest_pause > 3000:
        score -= 15

    if total_pauses:
        ratio = long_pause_count / total_pauses
        if ratio > 0.2:
            score -= 25
        elif ratio > 0.1:
            score -= 10
    return max(score, 0)


def _improvement_potential(score: float) -> str:
    potential = 100 - score
    if potential <= 10:
        return "minimal"
    if potential <= 25:
        return "moderate"
    if potential <= 40:
        return "significant"
    return "high"


class Metrics:
    """
    Quantitative speaking metrics for one transcript.

    All scores are on a 0-100 scale; MetricsResult.session_summary() converts
    them to the 0..1 decimals stored per session.
    """

    def __init__(self, transcript: Transcript, issues: Sequence[Issue] = (), language: str = "en") -> None:
        self.transcript = transcript
        self.issues = list(issues)
        self.language = language
        self.words = transcript.words
        self.text = transcript.text or ""
        self.duration_ms = transcript.duration_ms or 0
        self.gaps = [b.start_ms - a.end_ms for a, b in zip(self.words, self.words[1:])]

    def calculate_all_metrics(self) -> MetricsResult:
        try:
            basic = self.basic_metrics()
            speaking = self.speaking_metrics()
            clarity = self.clarity_metrics()
            fluency = self.fluency_metrics()
            engagement = self.engagement_metrics()
            overall = self.overall_scores(speaking, clarity, fluency, engagement)
            return MetricsResult(
                basic_metrics=basic,
                speaking_metrics=speaking,
                clarity_metrics=clarity,
                fluency_metrics=fluency,
                engagement_metrics=engagement,
                overall_scores=overall,
                transcript_quality=self.transcript_quality(),
                confidence_level=self.confidence_level(),
                coaching_insights=self.coaching_insights(speaking, clarity, fluency, engagement),
            )
        except Exception as exc:
            logger.error("Metrics calculation failed: %s", exc)
            raise MetricsError(f"Failed to calculate metrics: {exc}") from exc

    # Basic and speaking

    def speaking_time_ms(self) -> int:
        return sum(word.duration_ms for word in self.words)

    def basic_metrics(self) -> BasicMetrics:
        speaking_time = self.speaking_time_ms()
        syllables = 0
        for word in self.words:
            groups = len(re.findall(r"[aeiouy]+", word.text.lower()))
            syllables += groups or (1 if word.text else 0)
        return BasicMetrics(
            word_count=len(self.words),
            unique_word_count=len({word.text.lower() for word in self.words}),
            duration_ms=self.duration_ms,
            duration_seconds=round(self.duration_ms / 1000, 2),
            speaking_time_ms=speaking_time,
            pause_time_ms=max(self.duration_ms - speaking_time, 0),
            average_word_length=round(sum(len(w.text) for w in self.words) / len(self.words), 2) if self.words else 0.0,
            syllable_count=syllables,
        )

    def words_per_minute(self) -> float:
        if not self.words or self.duration_ms <= 0:
            return 0.0
        return len(self.words) / (self.duration_ms / 60_000)

    def speaking_metrics(self) -> SpeakingMetrics:
        if not self.words or self.duration_ms <= 0:
            return SpeakingMetrics()
        wpm = self.words_per_minute()
        speaking_time = self.speaking_time_ms()
        effective = len(self.words) / (speaking_time / 60_000) if speaking_time > 0 else 0.0
        silence = self.duration_ms - speaking_time
        return SpeakingMetrics(
            words_per_minute=round(wpm, 1),
            effective_words_per_minute=round(effective, 1),
            speaking_rate_assessment=assess_speaking_rate(wpm),
            pace_consistency=self.pace_consistency(),
            pace_variation_coefficient=round(coefficient_of_variation([g for g in self.gaps if g > 50]), 3),
            speech_to_silence_ratio=round(speaking_time / silence, 2) if silence > 0 else None,
        )

    def _segment_wpms(self, size: int, stride: int) -> list[float]:
        wpms = []
        last_start = len(self.words) - size if stride < size else len(self.words) - 1
        for start in range(0, max(last_start, 0) + 1, stride):
            segment = self.words[start : start + size]
            if len(segment) < 3:
                continue
            span = segment[-1].end_ms - segment[0].start_ms
            if span <= 0:
                continue
            wpms.append(len(segment) / (span / 60_000))
        return wpms

    def pace_consistency(self) -> float:
        """Sliding windows with 50% overlap; lower WPM variation means higher consistency."""
        if len(self.words) < 10:
            return 100.0
        size = max(len(self.words) // 5, 10)
        wpms = self._segment_wpms(size, max(size // 2, 1))
        if len(wpms) < 2:
            return 100.0
        return round(max(0.0, 100 - coefficient_of_variation(wpms) * 100), 1)

    # Clarity

    def filler_metrics(self) -> FillerMetrics:
        lowered = self.text.lower()
        patterns = FILLER_PATTERNS.get(self.language, FILLER_PATTERNS["en"])
        breakdown = {name: len(re.findall(pattern, lowered, re.I)) for name, pattern in patterns.items()}
        total = sum(breakdown.values())
        rate = total / len(self.words) if self.words else 0.0
        minutes = self.duration_ms / 60_000
        return FillerMetrics(
            total_filler_count=total,
            filler_rate_percentage=round(rate * 100, 2),
            filler_rate_decimal=round(rate, 4),
            filler_rate_per_minute=round(total / minutes, 1) if minutes > 0 else 0.0,
            filler_breakdown=breakdown,
            filler_density=assess_filler_density(rate * 100),
        )

    def pause_metrics(self) -> PauseMetrics:
        pauses = [gap for gap in self.gaps if gap > MIN_PAUSE_MS]
        if not pauses:
            return PauseMetrics()

        avg_pause = float(np.mean(pauses))
        longest = max(pauses)
        long_count = sum(1 for p in pauses if p > LONG_PAUSE_MS)
        return PauseMetrics(
            total_pause_count=len(pauses),
            average_pause_ms=round(avg_pause),
            longest_pause_ms=longest,
            shortest_pause_ms=min(pauses),
            long_pause_count=long_count,
            very_short_pause_count=sum(1 for p in pauses if p < 200),
            pause_quality_score=assess_pause_quality(avg_pause, longest, long_count, len(pauses)),
            pause_distribution=self._pause_distribution(pauses),
        )

    @staticmethod
    def _pause_distribution(pauses: list[int]) -> dict[str, dict[str, float]]:
        ranges = {
            "optimal": (200, 800),
            "acceptable": (800, 1500),
            "long": (1500, 3000),
            "very_long": (3000, float("inf")),
        }
        distribution = {}
        for name, (low, high) in ranges.items():
            count = sum(1 for p in pauses if low <= p < high)
            distribution[name] = {"count": count, "percentage": round(count / len(pauses) * 100, 1)}
        return distribution

    def articulation_score(self) -> float:
        penalty = 10 * sum(1 for issue in self.issues if issue.kind == "articulation")
        return float(max(90 - penalty, 0))

    def clarity_metrics(self) -> ClarityMetrics:
        fillers = self.filler_metrics()
        pauses = self.pause_metrics()
        articulation = self.articulation_score()
        components = {
            "filler_rate": min(max(100 - fillers.filler_rate_percentage, 0), 100),
            "pace_consistency": float(score_speaking_pace(self.words_per_minute())),
            "pause_quality": min(max(pauses.pause_quality_score, 0), 100),
            "articulation": articulation,
            "fluency": self.fluency_score(),
        }
        clarity = sum(components[name] * weight for name, weight in CLARITY_WEIGHTS.items())
        return ClarityMetrics(
            clarity_score=round(min(max(clarity, 0), 100), 2),
            clarity_components=components,
            filler_metrics=fillers,
            pause_metrics=pauses,
            articulation_score=articulation,
        )

    # Fluency

    def count_hesitations(self) -> int:
        lowered = self.text.lower()
        return sum(len(pattern.findall(lowered)) for pattern in HESITATION_PATTERNS)

    def count_restarts(self) -> int:
        return len(RESTART_PATTERN.findall(self.text))

    def count_incomplete_thoughts(self) -> int:
        return sum(len(pattern.findall(self.text)) for pattern in INCOMPLETE_PATTERNS)

    def speech_smoothness(self) -> float:
        if len(self.words) < 5:
            return 100.0
        word_cv = coefficient_of_variation([word.duration_ms for word in self.words])
        pause_cv = coefficient_of_variation(self.gaps)
        word_smoothness = max(100 - word_cv * 50, 0)
        pause_smoothness = max(100 - pause_cv * 30, 0)
        return round((word_smoothness + pause_smoothness) / 2, 1)

    def fluency_score(self) -> float:
        base = 100 - 5 * self.count_hesitations() - 8 * self.count_restarts() - 10 * self.count_incomplete_thoughts()
        score = base * self.speech_smoothness() / 100
        return round(min(max(score, 0), 100), 1)

    def fluency_metrics(self) -> FluencyMetrics:
        restarts = self.count_restarts()
        incomplete = self.count_incomplete_thoughts()
        long_pauses = sum(1 for issue in self.issues if issue.kind == "long_pause")
        return FluencyMetrics(
            fluency_score=self.fluency_score(),
            hesitation_count=self.count_hesitations(),
            restart_count=restarts,
            incomplete_thoughts=incomplete,
            flow_interruptions=long_pauses + restarts + incomplete,
            speech_smoothness=self.speech_smoothness(),
        )

    # Engagement

    def energy_level(self) -> float:
        if not self.words:
            return 50.0
        indicators = (
            self.text.count("!")
            + len(CAPS_PATTERN.findall(self.text))
            + len(EMPHASIS_WORDS.findall(self.text))
            + self.text.count("?")
        )
        return round(min(50 + indicators / len(self.words) * 500, 100), 1)

    def pace_variation_score(self) -> float:
        if len(self.words) < 10:
            return 50.0
        size = max(len(self.words) // 5, 5)
        wpms = self._segment_wpms(size, size)
        if len(wpms) < 2:
            return 50.0
        cv = coefficient_of_variation(wpms)
        if 0.2 <= cv <= 0.4:
            return 100.0
        if 0.1 <= cv <= 0.6:
            return 80.0
        if 0.05 <= cv <= 0.8:
            return 60.0
        return 40.0

    def emphasis_patterns(self) -> dict[str, int]:
        return {
            "repetition_emphasis": len(REPETITION_PATTERN.findall(self.text)),
            "exclamation_emphasis": self.text.count("!"),
            "caps_emphasis": len(CAPS_PATTERN.findall(self.text)),
            "question_engagement": self.text.count("?"),
        }

    def engagement_metrics(self) -> EngagementMetrics:
        energy = self.energy_level()
        variation = self.pace_variation_score()
        emphasis = self.emphasis_patterns()
        score = min(100.0, (energy + variation) / 2 + min(20, 2 * sum(emphasis.values())))
        return EngagementMetrics(
            engagement_score=round(score, 1),
            energy_level=energy,
            pace_variation=variation,
            emphasis_patterns=emphasis,
            question_usage=self.text.count("?"),
            exclamation_usage=self.text.count("!"),
        )

    # Overall

    def overall_scores(
        self,
        speaking: SpeakingMetrics,
        clarity: ClarityMetrics,
        fluency: FluencyMetrics,
        engagement: EngagementMetrics,
    ) -> OverallScores:
        components = {
            "pace": float(score_speaking_pace(self.words_per_minute())),
            "clarity": clarity.clarity_score,
            "fluency": fluency.fluency_score,
            "engagement": engagement.engagement_score,
        }
        score = round(sum(components[name] * weight for name, weight in OVERALL_WEIGHTS.items()), 1)
        score = min(max(score, 0.0), 100.0)

        ranked = sorted(components.items(), key=lambda item: -item[1])
        strengths = [name.capitalize() for name, value in ranked if value >= 80][:3]
        weakest = sorted(components.items(), key=lambda item: item[1])
        areas = [name.capitalize() for name, value in weakest if value < 75][:3]

        return OverallScores(
            overall_score=score,
            grade=score_to_grade(score),
            component_scores={f"{name}_score": round(value, 2) for name, value in components.items()},
            improvement_potential=_improvement_potential(score),
            strengths=strengths,
            areas_for_improvement=areas,
        )

    def transcript_quality(self) -> str:
        indicators = [
            bool(self.words),
            bool(re.search(r"[.!?]", self.text)),
            len(self.text) > 50,
            any(word.confidence is not None for word in self.words),
        ]
        ratio = sum(indicators) / len(indicators)
        if ratio >= 0.8:
            return "high"
        if ratio >= 0.6:
            return "medium"
        if ratio >= 0.4:
            return "low"
        return "very_low"

    def confidence_level(self) -> float:
        confidence = 0.8  # word timings are always present on a validated transcript
        if len(self.text) > 100:
            confidence += 0.1
        if self.duration_ms < 5000:
            confidence -= 0.2
        if len(self.words) < 10:
            confidence -= 0.2
        return round(min(max(confidence, 0.0), 1.0), 2)

    # Coaching insights

    def coaching_insights(
        self,
        speaking: SpeakingMetrics | None = None,
        clarity: ClarityMetrics | None = None,
        fluency: FluencyMetrics | None = None,
        engagement: EngagementMetrics | None = None,
    ) -> dict[str, Any]:
        """Qualitative patterns behind the scores, used to pick micro-tips."""
        speaking = speaking or self.speaking_metrics()
        clarity = clarity or self.clarity_metrics()
        fluency = fluency or self.fluency_metrics()
        engagement = engagement or self.engagement_metrics()
        return {
            "pause_patterns": self._pause_patterns(clarity.pause_metrics),
            "pace_patterns": self._pace_patterns(speaking),
            "energy_patterns": self._energy_patterns(engagement),
            "smoothness_breakdown": self._smoothness_breakdown(clarity.pause_metrics, fluency),
            "hesitation_analysis": self._hesitation_analysis(clarity.filler_metrics),
        }

    @staticmethod
    def _pause_patterns(pauses: PauseMetrics) -> dict[str, Any]:
        dist = pauses.pause_distribution
        optimal = dist.get("optimal", {}).get("percentage", 0)
        long_pct = dist.get("long", {}).get("percentage", 0)
        very_long = dist.get("very_long", {}).get("percentage", 0)

        if pauses.pause_quality_score >= 80:
            breakdown = "mostly_optimal"
        elif long_pct > 20 or very_long > 10:
            breakdown = "mostly_good_with_awkward_long_pauses"
        elif optimal < 40:
            breakdown = "inconsistent_timing"
        else:
            breakdown = "generally_acceptable"

        return {
            "distribution": {
                "optimal": optimal,
                "acceptable": dist.get("acceptable", {}).get("percentage", 0),
                "long": long_pct,
                "very_long": very_long,
            },
            "quality_breakdown": breakdown,
            "specific_issue": f"{pauses.long_pause_count} pauses over 3 seconds" if pauses.long_pause_count else None,
            "average_pause_ms": pauses.average_pause_ms,
            "longest_pause_ms": pauses.longest_pause_ms,
        }

    def _pace_patterns(self, speaking: SpeakingMetrics) -> dict[str, Any]:
        if len(self.words) < 10:
            return {
                "trajectory": "insufficient_data",
                "consistency": 0,
                "variation_type": "unknown",
                "wpm_range": [0, 0],
                "average_wpm": 0,
            }
        size = max(len(self.words) // 5, 10)
        wpms = self._segment_wpms(size, size)
        return {
            "trajectory": _pace_trajectory(wpms),
            "consistency": round(speaking.pace_consistency / 100, 4),
            "variation_type": _pace_variation_type(wpms),
            "wpm_range": [round(min(wpms)), round(max(wpms))] if wpms else [0, 0],
            "average_wpm": speaking.words_per_minute,
        }

    @staticmethod
    def _energy_patterns(engagement: EngagementMetrics) -> dict[str, Any]:
        level = engagement.energy_level
        if level < 40:
            pattern = "low_energy_throughout"
        elif level > 75:
            pattern = "high_energy_throughout"
        else:
            pattern = "moderate_energy"
        elements = []
        if engagement.exclamation_usage:
            elements.append(f"{engagement.exclamation_usage} exclamations")
        if engagement.question_usage:
            elements.append(f"{engagement.question_usage} questions")
        return {
            "overall_level": level,
            "pattern": pattern,
            "engagement_elements": elements,
            "needs_boost": level < 50,
        }

    @staticmethod
    def _smoothness_breakdown(pauses: PauseMetrics, fluency: FluencyMetrics) -> dict[str, Any]:
        smoothness = fluency.speech_smoothness
        pause_quality = pauses.pause_quality_score
        if fluency.hesitation_count > 5:
            primary = "frequent_hesitations"
        elif fluency.restart_count > 3:
            primary = "frequent_restarts"
        elif pause_quality < 50:
            primary = "irregular_pauses"
        elif smoothness < 60:
            primary = "choppy_word_delivery"
        else:
            primary = None
        return {
            "word_flow_score": round(smoothness * 0.6 + pause_quality * 0.4, 1),
            "pause_consistency_score": pause_quality,
            "primary_issue": primary,
            "hesitation_count": fluency.hesitation_count,
            "restart_count": fluency.restart_count,
        }

    def _hesitation_analysis(self, fillers: FillerMetrics) -> dict[str, Any]:
        used = {name: count for name, count in fillers.filler_breakdown.items() if count}
        sentences = [s for s in re.split(r"[.!?]+", self.text.lower()) if s.strip()]
        starts = sum(1 for s in sentences if SENTENCE_START_FILLER.match(s.split()[0].strip(",")))
        return {
            "total_count": fillers.total_filler_count,
            "rate_percentage": fillers.filler_rate_percentage,
            "most_common": max(used, key=used.get) if used else None,
            "breakdown": fillers.filler_breakdown,
            "typical_locations": (
                "mostly_at_sentence_starts" if sentences and starts > len(sentences) * 0.5 else "distributed_throughout"
            ),
            "density": fillers.filler_density,
        }


def _pace_trajectory(wpms: list[float]) -> str:
    if len(wpms) < 3:
        return "insufficient_data"
    third = len(wpms) // 3
    first = float(np.mean(wpms[:third]))
    middle = float(np.mean(wpms[third : 2 * len(wpms) // 3]))
    last = float(np.mean(wpms[2 * len(wpms) // 3 :]))

    if middle > first * 1.2 and last < middle * 0.9:
        return "starts_slow_rushes_middle_settles"
    if middle > first * 1.15:
        return "starts_slow_accelerates"
    if first > last * 1.15:
        return "starts_fast_decelerates"
    if abs(first - last) < first * 0.1:
        return "consistent_throughout"
    return "variable"


def _pace_variation_type(wpms: list[float]) -> str:
    if not wpms:
        return "unknown"
    cv = coefficient_of_variation(wpms)
    if cv > 0.3:
        return "high_variance"
    if cv > 0.2:
        return "moderate_variance"
    if cv < 0.1:
        return "very_consistent"
    return "low_variance"
