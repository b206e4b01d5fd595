from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from .models import MetricsResult, MicroTip

IMPACT_HIGH = 3
IMPACT_MEDIUM = 2
IMPACT_LOW = 1

EFFORT_LOW = 1
EFFORT_MEDIUM = 2
EFFORT_HIGH = 3

MAX_TIPS = 3

CATEGORY_PATTERNS = (
    (re.compile(r"filler|um|uh"), "filler_words"),
    (re.compile(r"pace|speed|wpm"), "pace_consistency"),
    (re.compile(r"pause"), "pause_consistency"),
    (re.compile(r"energy|enthusiasm"), "energy"),
    (re.compile(r"fluen|smooth|flow"), "fluency"),
)

RECOMMENDATION_CATEGORIES = {
    "reduce_fillers": "filler_words",
    "improve_pace": "pace_consistency",
    "fix_long_pauses": "pause_consistency",
    "boost_engagement": "energy",
    "increase_fluency": "fluency",
    "enhance_clarity": "fluency",
}


def priority_score(impact: int, effort: int) -> float:
    return round(impact / effort, 2)


def normalize_category(area_name: str) -> str:
    normalized = re.sub(r"[^a-z_]", "_", str(area_name).lower())
    for pattern, category in CATEGORY_PATTERNS:
        if pattern.search(normalized):
            return category
    return normalized


def recommendation_category(recommendation_type: str) -> str:
    return RECOMMENDATION_CATEGORIES.get(str(recommendation_type), str(recommendation_type))


class MicroTipGenerator:
    """Small, quick-to-apply tips outside the user's current focus areas."""

    def __init__(
        self,
        metrics: MetricsResult | None,
        coaching_insights: dict[str, Any] | None = None,
        focus_areas: Sequence[str] = (),
        primary_recommendation_type: str | None = None,
    ) -> None:
        self.metrics = metrics
        if coaching_insights is None:
            coaching_insights = metrics.coaching_insights if metrics is not None else {}
        self.insights = coaching_insights
        self.focus_areas = list(focus_areas)
        self.primary_recommendation_type = primary_recommendation_type

    def generate_tips(self) -> list[MicroTip]:
        tips = [
            tip
            for tip in (self.pause_tip(), self.pace_tip(), self.energy_tip(), self.filler_tip(), self.fluency_tip())
            if tip is not None
        ]

        excluded = {normalize_category(area) for area in self.focus_areas}
        if self.primary_recommendation_type is not None:
            excluded.add(recommendation_category(self.primary_recommendation_type))
        tips = [tip for tip in tips if tip.category not in excluded]

        tips.sort(key=lambda tip: -tip.priority_score)
        return tips[:MAX_TIPS]

    def pause_tip(self) -> MicroTip | None:
        pauses = self.insights.get("pause_patterns") or {}
        if not pauses:
            return None
        quality = self.metrics.clarity_metrics.pause_metrics.pause_quality_score if self.metrics else 100
        if quality >= 70 or pauses.get("quality_breakdown") != "mostly_good_with_awkward_long_pauses":
            return None

        specific = pauses.get("specific_issue")
        detail = f"{specific.capitalize()} disrupted your flow." if specific else "Some pauses feel awkward."
        return MicroTip(
            category="pause_consistency",
            title="Pause Consistency",
            icon="🔄",
            description=f"Your pauses are somewhat erratic ({round(quality)}/100 consistency). {detail}",
            action="Aim for 0.5-1 second pauses between thoughts",
            impact=IMPACT_MEDIUM,
            effort=EFFORT_LOW,
            priority_score=priority_score(IMPACT_MEDIUM, EFFORT_LOW),
            data={"long_pause_count": specific, "current_score": quality},
        )

    def pace_tip(self) -> MicroTip | None:
        pace = self.insights.get("pace_patterns") or {}
        trajectory = pace.get("trajectory")
        if not pace or trajectory == "insufficient_data":
            return None
        consistency = pace.get("consistency", 1.0)
        if consistency >= 0.6 or trajectory == "consistent_throughout":
            return None

        low, high = (pace.get("wpm_range") or [0, 0])[:2]
        match trajectory:
            case "starts_slow_rushes_middle_settles":
                text = f"You start slow ({low} WPM) then rush in the middle ({high} WPM)"
            case "starts_slow_accelerates":
                text = "You start slow and gradually accelerate"
            case "starts_fast_decelerates":
                text = "You start fast and slow down as you continue"
            case _:
                text = f"Your pace varies significantly ({low}-{high} WPM)"
        return MicroTip(
            category="pace_consistency",
            title="Pace Consistency",
            icon="⚡",
            description=f"{text}. Consistency: {round(consistency * 100)}/100.",
            action="Practice maintaining steady pace throughout your talk",
            impact=IMPACT_MEDIUM,
            effort=EFFORT_MEDIUM,
            priority_score=priority_score(IMPACT_MEDIUM, EFFORT_MEDIUM),
            data={"trajectory": trajectory, "consistency": round(consistency * 100), "wpm_range": [low, high]},
        )

    def energy_tip(self) -> MicroTip | None:
        energy = self.insights.get("energy_patterns") or {}
        level = energy.get("overall_level", 100)
        if not energy.get("needs_boost") or level >= 40:
            return None
        return MicroTip(
            category="energy",
            title="Energy Level",
            icon="⚡",
            description=f"Your energy level is low ({round(level)}/100). "
            "Adding vocal variety and emphasis can make your speech more engaging.",
            action="Try using more varied intonation and emphasis on key points",
            impact=IMPACT_HIGH,
            effort=EFFORT_LOW,
            priority_score=priority_score(IMPACT_HIGH, EFFORT_LOW),
            data={"current_level": level, "engagement_elements": energy.get("engagement_elements", [])},
        )

    def filler_tip(self) -> MicroTip | None:
        hesitation = self.insights.get("hesitation_analysis") or {}
        rate = hesitation.get("rate_percentage") or 0
        most_common = hesitation.get("most_common")
        if rate <= 5 or not most_common:
            return None

        locations = hesitation.get("typical_locations")
        where = "mostly when starting new thoughts" if locations == "mostly_at_sentence_starts" else "throughout your speech"
        return MicroTip(
            category="filler_words",
            title="Reduce Filler Words",
            icon="🎤",
            description=f"You use filler words at {round(rate, 1)}% rate. Most common: '{most_common}' {where}.",
            action="Practice pausing silently instead of saying filler words",
            impact=IMPACT_HIGH,
            effort=EFFORT_MEDIUM,
            priority_score=priority_score(IMPACT_HIGH, EFFORT_MEDIUM),
            data={"filler_rate": rate, "most_common": most_common, "locations": locations},
        )

    def fluency_tip(self) -> MicroTip | None:
        smoothness = self.insights.get("smoothness_breakdown") or {}
        issue = smoothness.get("primary_issue")
        flow = smoothness.get("word_flow_score", 100)
        if not issue or flow >= 60:
            return None

        match issue:
            case "frequent_hesitations":
                text = f"You hesitate frequently ({smoothness.get('hesitation_count', 0)} times)"
            case "frequent_restarts":
                text = f"You restart sentences often ({smoothness.get('restart_count', 0)} times)"
            case "irregular_pauses":
                text = "Your pauses are irregular and disrupt flow"
            case "choppy_word_delivery":
                text = "Your word delivery feels choppy"
            case _:
                text = "Your speech flow could be smoother"
        return MicroTip(
            category="fluency",
            title="Speech Fluency",
            icon="💬",
            description=f"{text}. Flow score: {round(flow)}/100.",
            action="Practice completing thoughts smoothly without restarts",
            impact=IMPACT_MEDIUM,
            effort=EFFORT_MEDIUM,
            priority_score=priority_score(IMPACT_MEDIUM, EFFORT_MEDIUM),
            data={
                "primary_issue": issue,
                "word_flow_score": flow,
                "hesitation_count": smoothness.get("hesitation_count"),
                "restart_count": smoothness.get("restart_count"),
            },
        )
