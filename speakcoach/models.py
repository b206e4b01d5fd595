from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Severity = Literal["low", "medium", "high"]
IssueSource = Literal["rule", "ai", "rule_ai_validated"]
Priority = Literal["high", "medium", "low"]
CandidateSource = Literal["issue_based", "quality_segment", "random_sampling"]

PRIORITY_RANK = {"high": 1, "medium": 2, "low": 3}


class Word(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)
    confidence: float | None = Field(default=None, ge=0, le=1)

    @model_validator(mode="after")
    def _check_span(self) -> Word:
        if self.start_ms >= self.end_ms:
            raise ValueError(f"word {self.text!r} must start before it ends ({self.start_ms} >= {self.end_ms})")
        return self

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


class Transcript(BaseModel):
    text: str = ""
    words: list[Word] = Field(default_factory=list)
    duration_ms: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> Transcript:
        for prev, word in zip(self.words, self.words[1:]):
            if word.start_ms < prev.end_ms:
                raise ValueError(
                    f"words must be time-ordered and non-overlapping: {prev.text!r} ends at "
                    f"{prev.end_ms} but {word.text!r} starts at {word.start_ms}"
                )
        if self.duration_ms is None:
            self.duration_ms = self.words[-1].end_ms if self.words else 0
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transcript:
        """
        Build a transcript from loosely-shaped JSON.

        Word timings may be given in milliseconds (start_ms/end_ms) or in
        seconds (start/end, as speech-to-text engines emit them).
        """
        words = []
        for raw in data.get("words", []):
            text = raw.get("text", raw.get("word", ""))
            if "start_ms" in raw:
                start_ms, end_ms = int(raw["start_ms"]), int(raw["end_ms"])
            else:
                start_ms = int(round(float(raw["start"]) * 1000))
                end_ms = int(round(float(raw["end"]) * 1000))
            words.append(Word(text=text, start_ms=start_ms, end_ms=end_ms, confidence=raw.get("confidence")))

        text = data.get("text", data.get("transcript"))
        if text is None:
            text = " ".join(w.text for w in words)
        return cls(text=text, words=words, duration_ms=data.get("duration_ms"))

    @property
    def duration_minutes(self) -> float:
        return (self.duration_ms or 0) / 60_000


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    category: str = ""
    start_ms: int
    end_ms: int
    text: str
    source: IssueSource = "rule"
    severity: Severity = "low"
    rationale: str = ""
    tip: str = ""
    confidence: float | None = Field(default=None, ge=0, le=1)
    validation_status: str | None = None
    priority: str | None = None

    # Rule detector details
    pattern: str | None = None
    matched_words: list[str] = Field(default_factory=list)
    speaking_rate: float | None = None
    pause_duration_ms: int | None = None

    # AI annotations
    ai_severity: str | None = None
    ai_coaching_tip: str | None = None
    ai_note: str | None = None
    impact: str | None = None
    practice_exercise: str | None = None
    specific_recommendation: str | None = None

    def annotate(self, **changes: Any) -> Issue:
        """Return a new issue with the given fields replaced."""
        return self.model_copy(update=changes)

    def overlaps(self, start_ms: int, end_ms: int) -> bool:
        return self.start_ms <= end_ms and start_ms <= self.end_ms


class Candidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_ms: int
    end_ms: int
    text: str
    priority: Priority
    source: CandidateSource
    word_count: int
    duration_ms: int
    quality_score: float | None = None
    quality_factors: dict[str, float] = Field(default_factory=dict)
    target_issue: Issue | None = None


class BasicMetrics(BaseModel):
    word_count: int = 0
    unique_word_count: int = 0
    duration_ms: int = 0
    duration_seconds: float = 0.0
    speaking_time_ms: int = 0
    pause_time_ms: int = 0
    average_word_length: float = 0.0
    syllable_count: int = 0


class SpeakingMetrics(BaseModel):
    words_per_minute: float = 0.0
    effective_words_per_minute: float = 0.0
    speaking_rate_assessment: str = "unknown"
    pace_consistency: float = 0.0
    pace_variation_coefficient: float = 0.0
    speech_to_silence_ratio: float | None = 0.0


class FillerMetrics(BaseModel):
    total_filler_count: int = 0
    filler_rate_percentage: float = 0.0
    filler_rate_decimal: float = 0.0
    filler_rate_per_minute: float = 0.0
    filler_breakdown: dict[str, int] = Field(default_factory=dict)
    filler_density: str = "excellent"


class PauseMetrics(BaseModel):
    total_pause_count: int = 0
    average_pause_ms: int = 0
    longest_pause_ms: int = 0
    shortest_pause_ms: int = 0
    long_pause_count: int = 0
    very_short_pause_count: int = 0
    pause_quality_score: float = 50.0
    pause_distribution: dict[str, dict[str, float]] = Field(default_factory=dict)


class ClarityMetrics(BaseModel):
    clarity_score: float
    clarity_components: dict[str, float]
    filler_metrics: FillerMetrics
    pause_metrics: PauseMetrics
    articulation_score: float


class FluencyMetrics(BaseModel):
    fluency_score: float
    hesitation_count: int
    restart_count: int
    incomplete_thoughts: int
    flow_interruptions: int
    speech_smoothness: float


class EngagementMetrics(BaseModel):
    engagement_score: float
    energy_level: float
    pace_variation: float
    emphasis_patterns: dict[str, int]
    question_usage: int
    exclamation_usage: int


class OverallScores(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    grade: Literal["A", "B", "C", "D", "F"]
    component_scores: dict[str, float]
    improvement_potential: str
    strengths: list[str]
    areas_for_improvement: list[str]


class MetricsResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    basic_metrics: BasicMetrics
    speaking_metrics: SpeakingMetrics
    clarity_metrics: ClarityMetrics
    fluency_metrics: FluencyMetrics
    engagement_metrics: EngagementMetrics
    overall_scores: OverallScores
    transcript_quality: str = "unknown"
    confidence_level: float = 0.0
    coaching_insights: dict[str, Any] = Field(default_factory=dict)

    def session_summary(self) -> dict[str, Any]:
        """Flat per-session values as stored in a session's analysis data (scores as 0..1 decimals)."""
        return {
            "wpm": self.speaking_metrics.words_per_minute,
            "filler_rate": self.clarity_metrics.filler_metrics.filler_rate_decimal,
            "clarity_score": round(self.clarity_metrics.clarity_score / 100, 4),
            "fluency_score": round(self.fluency_metrics.fluency_score / 100, 4),
            "engagement_score": round(self.engagement_metrics.engagement_score / 100, 4),
            "pace_consistency": round(self.speaking_metrics.pace_consistency / 100, 4),
            "overall_score": round(self.overall_scores.overall_score / 100, 4),
            "long_pause_count": self.clarity_metrics.pause_metrics.long_pause_count,
            "average_pause_ms": self.clarity_metrics.pause_metrics.average_pause_ms,
            "longest_pause_ms": self.clarity_metrics.pause_metrics.longest_pause_ms,
            "grade": self.overall_scores.grade,
        }


class ImprovementArea(BaseModel):
    type: str
    current_value: float | None = None
    target_value: float | None = None
    severity: Severity | None = None
    potential_improvement: float = 0.0
    priority_score: float = 0.0
    effort_level: int = 3
    estimated_weeks: int = 1
    actionable_steps: list[str] = Field(default_factory=list)
    current_session_value: float | None = None
    historical_average: float | None = None
    trend: str | None = None
    contextual_message: dict[str, str] | None = None
    specific_issues: list[dict[str, Any]] = Field(default_factory=list)


class PriorityPlan(BaseModel):
    focus_this_week: list[ImprovementArea] = Field(default_factory=list)
    secondary_focus: list[ImprovementArea] = Field(default_factory=list)
    long_term_goals: list[ImprovementArea] = Field(default_factory=list)
    quick_wins: list[ImprovementArea] = Field(default_factory=list)
    practice_plan: dict[str, list[str]] = Field(default_factory=dict)


class Achievement(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    threshold: int
    current_value: float
    achieved_at: date | None = None
    title: str = ""
    description: str = ""
    icon: str = ""


class MicroTip(BaseModel):
    category: str
    title: str
    icon: str
    description: str
    action: str
    impact: int
    effort: int
    priority_score: float
    data: dict[str, Any] = Field(default_factory=dict)


class SessionRecord(BaseModel):
    """A prior session as returned by the history provider."""

    id: str
    created_at: datetime
    completed: bool = True
    analysis_data: dict[str, Any] = Field(default_factory=dict)
    issues: list[Issue] = Field(default_factory=list)


class SessionContext(BaseModel):
    user_id: str = "anonymous"
    session_count: int = 0
    speech_type: str = "general"
    target_audience: str = "general"
    goals: list[str] = Field(default_factory=lambda: ["clarity", "confidence"])
    prompt_text: str | None = None
    # set when the speaker chose to continue after an off-topic result
    relevance_override: bool = False


class RelevanceResult(BaseModel):
    on_topic: bool = True
    relevance_score: float = 1.0
    feedback: str | None = None
    processing_time_ms: int = 0
    skipped: bool = False


class RefinementResult(BaseModel):
    refined_issues: list[Issue]
    ai_insights: list[str] = Field(default_factory=list)
    segment_analyses: list[dict[str, Any]] = Field(default_factory=list)
    coaching_recommendations: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    fallback_mode: bool = False
    error: str | None = None
