from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Sequence
from typing import Any

from .models import ImprovementArea, Issue, PriorityPlan, SessionRecord

logger = logging.getLogger(__name__)

IMPACT_WEIGHT = 0.4
TRANSFERABILITY_WEIGHT = 0.3
EFFORT_WEIGHT = 0.2
CONTEXT_WEIGHT = 0.1

# 1 = easy .. 4 = hard
DIFFICULTY_LEVELS = {
    "reduce_fillers": 2,
    "improve_pace": 3,
    "enhance_clarity": 4,
    "boost_engagement": 3,
    "increase_fluency": 4,
    "fix_long_pauses": 2,
    "improve_professionalism": 2,
}

TRANSFERABILITY = {
    "reduce_fillers": 0.8,
    "enhance_clarity": 0.9,
    "improve_pace": 0.7,
    "increase_fluency": 0.6,
    "improve_professionalism": 0.7,
    "boost_engagement": 0.6,
    "fix_long_pauses": 0.4,
}

CONTEXT_RELEVANCE = {
    "interview": {
        "improve_professionalism": 0.9,
        "reduce_fillers": 0.9,
        "enhance_clarity": 0.8,
        "increase_fluency": 0.8,
        "fix_long_pauses": 0.7,
        "improve_pace": 0.6,
        "boost_engagement": 0.5,
    },
    "presentation": {
        "boost_engagement": 1.0,
        "enhance_clarity": 0.9,
        "improve_pace": 0.8,
        "increase_fluency": 0.8,
        "reduce_fillers": 0.7,
        "improve_professionalism": 0.6,
        "fix_long_pauses": 0.5,
    },
    "general": {
        "reduce_fillers": 0.8,
        "enhance_clarity": 0.8,
        "improve_pace": 0.7,
        "boost_engagement": 0.7,
        "increase_fluency": 0.7,
        "improve_professionalism": 0.7,
        "fix_long_pauses": 0.6,
    },
}

SEVERITY_WEEKS = {"high": 1.5, "medium": 1.0, "low": 0.5}

OPTIMAL_WPM = (140, 160)
ACCEPTABLE_WPM = (140, 180)
SLOW_TARGET_WPM = 150
FAST_TARGET_WPM = 165

ROLLING_WINDOW = 5

MESSAGE_LABELS = {
    "improve_pace": "pace",
    "reduce_fillers": "filler rate",
    "enhance_clarity": "clarity",
    "boost_engagement": "engagement",
    "increase_fluency": "fluency",
}

FIRST_SESSION_STEP = (
    "Record another session so I can analyze your speaking patterns and provide personalized recommendations."
)


def normalize_type(value: Any) -> str:
    return re.sub(r"[^a-z_]", "_", str(value).lower())


def matches_focus_type(recommendation_type: str | None, focus_type: str | None) -> bool:
    if recommendation_type is None or focus_type is None:
        return False
    return normalize_type(recommendation_type) == normalize_type(focus_type)


class PriorityRecommender:
    """
    Turns a session's metrics into a ranked list of improvement areas.

    `current` is the flat session summary (see MetricsResult.session_summary);
    `history` holds the user's earlier completed sessions, oldest first.
    """

    def __init__(
        self,
        current: dict[str, Any],
        issues: Sequence[Issue] = (),
        history: Sequence[SessionRecord] = (),
        total_sessions_count: int | None = None,
        speech_context: str = "general",
        optimal_wpm: tuple[float, float] = OPTIMAL_WPM,
        acceptable_wpm: tuple[float, float] = ACCEPTABLE_WPM,
    ) -> None:
        self.current = current
        self.issues = list(issues)
        self.sessions = [record.analysis_data for record in history] + [current]
        self.total_sessions_count = total_sessions_count if total_sessions_count is not None else len(self.sessions)
        self.speech_context = speech_context
        self.optimal_wpm = optimal_wpm
        self.acceptable_wpm = acceptable_wpm

    def generate_priority_recommendations(self) -> PriorityPlan:
        if not self.current:
            return PriorityPlan()

        if self.total_sessions_count == 1:
            return PriorityPlan(focus_this_week=[self.first_session_recommendation()])

        areas = self.calculate_priorities(self.identify_improvement_areas())
        logger.info("Ranked %d improvement areas (%s context)", len(areas), self.speech_context)
        return PriorityPlan(
            focus_this_week=areas[:2],
            secondary_focus=areas[2:5],
            long_term_goals=areas[5:],
            quick_wins=[area for area in areas if area.priority_score > 60 and area.effort_level <= 2][:2],
            practice_plan=self.practice_plan(areas[:3]),
        )

    @staticmethod
    def first_session_recommendation() -> ImprovementArea:
        return ImprovementArea(
            type="record_again_for_baseline",
            actionable_steps=[FIRST_SESSION_STEP],
            priority_score=100,
            effort_level=1,
            potential_improvement=0,
        )

    # Area detection

    def rolling_average(self, key: str) -> float:
        return self._average(self.sessions[-ROLLING_WINDOW:], key)

    def historical_average(self, key: str) -> float:
        return self._average(self.sessions, key)

    @staticmethod
    def _average(sessions: Sequence[dict[str, Any]], key: str) -> float:
        values = [s[key] for s in sessions if isinstance(s.get(key), (int, float))]
        return sum(values) / len(values) if values else 0.0

    def trend(self, current: float, average: float) -> str:
        """Direction of a lower-is-better metric against its average."""
        if len(self.sessions) < 2 or average == 0:
            return "stable"
        if current < average * 0.9:
            return "improving"
        if current > average * 1.1:
            return "worsening"
        return "stable"

    def identify_improvement_areas(self) -> list[dict[str, Any]]:
        areas = []

        filler_rate = self.rolling_average("filler_rate")
        if filler_rate > 0.03:
            average = self.historical_average("filler_rate")
            areas.append(
                {
                    "type": "reduce_fillers",
                    "current_value": filler_rate,
                    "current_session_value": self.current.get("filler_rate"),
                    "target_value": 0.02,
                    "historical_average": average,
                    "trend": self.trend(filler_rate, average),
                    "potential_improvement": min(max(filler_rate - 0.02, 0) / 0.10 * 0.15, 0.15),
                    "severity": "high" if filler_rate > 0.07 else "medium",
                    "specific_issues": self._issue_refs(i for i in self.issues if i.category == "filler_words"),
                }
            )

        wpm = self.rolling_average("wpm")
        low, high = self.acceptable_wpm
        if wpm < low or wpm > high:
            target = SLOW_TARGET_WPM if wpm < low else FAST_TARGET_WPM
            areas.append(
                {
                    "type": "improve_pace",
                    "current_value": wpm,
                    "current_session_value": self.current.get("wpm"),
                    "target_value": target,
                    "potential_improvement": max(self.wpm_score(target) - self.wpm_score(wpm), 0) * 0.10,
                    "severity": "high" if wpm < low - 20 or wpm > high + 20 else "medium",
                    "specific_issues": self._issue_refs(i for i in self.issues if i.category == "pace_issues"),
                }
            )

        for area_type, key, threshold, target, high_below, weight in (
            ("enhance_clarity", "clarity_score", 0.75, 0.85, 0.60, 0.35),
            ("boost_engagement", "engagement_score", 0.70, 0.80, 0.50, 0.15),
            ("increase_fluency", "fluency_score", 0.75, 0.85, 0.60, 0.25),
        ):
            value = self.rolling_average(key)
            if value < threshold:
                category = "clarity_issues" if area_type == "enhance_clarity" else None
                areas.append(
                    {
                        "type": area_type,
                        "current_value": value,
                        "current_session_value": self.current.get(key),
                        "target_value": target,
                        "potential_improvement": max(target - value, 0) * weight,
                        "severity": "high" if value < high_below else "medium",
                        "specific_issues": self._issue_refs(i for i in self.issues if category and i.category == category),
                    }
                )

        long_pauses = int(self.current.get("long_pause_count") or 0)
        if long_pauses > 2:
            areas.append(
                {
                    "type": "fix_long_pauses",
                    "current_value": long_pauses,
                    "target_value": 1,
                    "potential_improvement": (long_pauses - 1) / long_pauses * 0.10,
                    "severity": "high" if long_pauses > 5 else "medium",
                    "specific_issues": self._issue_refs(i for i in self.issues if "pause" in i.rationale.lower()),
                }
            )

        unprofessional = [i for i in self.issues if i.category == "professional_issues" or i.kind == "professionalism"]
        if len(unprofessional) > 3:
            count = len(unprofessional)
            areas.append(
                {
                    "type": "improve_professionalism",
                    "current_value": count,
                    "target_value": 1,
                    "potential_improvement": (count - 1) / count * 0.08,
                    "severity": "high" if count > 6 else "low",
                    "specific_issues": self._issue_refs(unprofessional),
                }
            )

        for area in areas:
            area["contextual_message"] = self.contextual_message(area)
        return areas

    @staticmethod
    def _issue_refs(issues) -> list[dict[str, Any]]:
        return [
            {"text": issue.text, "start_ms": issue.start_ms, "tip": issue.tip, "matched_words": issue.matched_words}
            for issue in list(issues)[:3]
        ]

    def wpm_score(self, wpm: float) -> float:
        if self.optimal_wpm[0] <= wpm <= self.optimal_wpm[1]:
            return 1.0
        if self.acceptable_wpm[0] <= wpm <= self.acceptable_wpm[1]:
            return 0.85
        if 90 <= wpm <= self.acceptable_wpm[0] or self.acceptable_wpm[1] <= wpm <= 190:
            return 0.70
        if 70 <= wpm <= 90 or 190 <= wpm <= 240:
            return 0.50
        return 0.30

    # Scoring

    def calculate_priorities(self, areas: list[dict[str, Any]]) -> list[ImprovementArea]:
        ranked = []
        for area in areas:
            difficulty = DIFFICULTY_LEVELS.get(area["type"], 3)
            ranked.append(
                ImprovementArea(
                    **area,
                    priority_score=round(self.priority_score(area), 2),
                    effort_level=difficulty,
                    estimated_weeks=max(round(difficulty * SEVERITY_WEEKS.get(area.get("severity"), 1.0)), 1),
                    actionable_steps=self.actionable_steps(area),
                )
            )
        ranked.sort(key=lambda area: -area.priority_score)
        return ranked

    def priority_score(self, area: dict[str, Any]) -> float:
        difficulty = DIFFICULTY_LEVELS.get(area["type"], 3)
        return 100 * (
            area["potential_improvement"] * IMPACT_WEIGHT
            + TRANSFERABILITY.get(area["type"], 0.5) * TRANSFERABILITY_WEIGHT
            + (5 - difficulty) / 4 * EFFORT_WEIGHT
            + self.context_relevance(area["type"]) * CONTEXT_WEIGHT
        )

    def context_relevance(self, area_type: str) -> float:
        return CONTEXT_RELEVANCE.get(self.speech_context, {}).get(area_type, 0.7)

    # Messages

    def _common_fillers(self) -> list[str]:
        counts = Counter(
            word.lower().strip(",.!?")
            for issue in self.issues
            if issue.category == "filler_words"
            for word in issue.matched_words
        )
        return [word for word, _ in counts.most_common(2)] or ["um", "uh"]

    def actionable_steps(self, area: dict[str, Any]) -> list[str]:
        current, target = area.get("current_value"), area.get("target_value")
        optimal = f"{self.optimal_wpm[0]:g}-{self.optimal_wpm[1]:g} WPM"

        match area["type"]:
            case "reduce_fillers":
                fillers = " and ".join(self._common_fillers())
                return [
                    f"In your recent sessions, you averaged {current * 100:.1f}% filler words - let's reduce that to {target * 100:.1f}%.",
                    f"Your most common fillers are '{fillers}'. Practice pausing for 1-2 seconds instead.",
                    "Record yourself for 2 minutes daily focusing on eliminating these specific words.",
                    f"Try the 'pause drill': speak on a topic and pause deliberately where you'd normally say {fillers}.",
                ]
            case "improve_pace" if current < self.acceptable_wpm[0]:
                return [
                    f"Your current pace is {round(current)} WPM. Let's increase it to {round(target)} WPM (optimal range: {optimal}).",
                    f"Practice with a metronome set to {round(target)} beats per minute (1 word per beat).",
                    "Read aloud for 5 minutes daily, gradually increasing speed while maintaining clarity.",
                    "Record yourself and check your WPM after each session to track improvement.",
                ]
            case "improve_pace":
                return [
                    f"Your pace is {round(current)} WPM - too fast. Let's bring it down to {round(target)} WPM (optimal range: {optimal}).",
                    "Practice deliberate pausing for 2-3 seconds between key points.",
                    "Focus on emphasizing important words by slowing down slightly on them.",
                    "Practice breathing techniques: inhale for 4 counts, exhale slowly while speaking.",
                ]
            case "enhance_clarity":
                return [
                    f"Your clarity score is {round(current * 100)}% - let's boost it to {round(target * 100)}% with articulation practice.",
                    "Practice tongue twisters for 5 minutes daily: 'She sells seashells' and 'Red leather, yellow leather'.",
                    "Record yourself reading complex passages and listen for mumbled words.",
                    "Focus on enunciating consonants clearly, especially at the ends of words.",
                ]
            case "boost_engagement":
                return [
                    f"Your engagement level is {round(current * 100)}% - aim for {round(target * 100)}% by adding vocal variety.",
                    "Practice varying your pitch: go higher for questions, lower for important points.",
                    "Record yourself telling an exciting story, exaggerating your energy level.",
                    "Add strategic pauses (2-3 seconds) before key points to build anticipation.",
                ]
            case "increase_fluency":
                return [
                    f"Your fluency is at {round(current * 100)}% - let's improve it to {round(target * 100)}% with consistent practice.",
                    "Practice impromptu speaking: set a timer for 1 minute and speak on a random topic.",
                    "Work on smooth transitions between ideas using phrases like 'building on that' or 'similarly'.",
                    "Record yourself explaining familiar topics without notes and focus on continuous flow.",
                ]
            case "fix_long_pauses":
                return [
                    f"You had {int(current)} long pauses in your last session - let's reduce that to 1-2 max.",
                    "Prepare 3-5 key talking points before recording to avoid searching for ideas.",
                    "Practice bridging phrases: 'What I mean by that is...', 'In other words...'",
                    "Keep brief notes nearby during practice to glance at without losing momentum.",
                ]
            case "improve_professionalism":
                return [
                    f"You had {int(current)} informal or unprofessional expressions in this session.",
                    "Swap casual contractions like 'gonna' and 'wanna' for 'going to' and 'want to'.",
                    "Record yourself and note every slang word, then rephrase those sentences aloud.",
                    "Before speaking, briefly outline your main points so you can choose your words deliberately.",
                ]
        return ["Practice specific exercises for this area", "Track progress daily", "Record and review regularly"]

    def practice_plan(self, areas: Sequence[ImprovementArea]) -> dict[str, list[str]]:
        plan: dict[str, list[str]] = {"daily_practice": [], "weekly_goals": [], "progress_tracking": []}
        for area in areas:
            current, target = area.current_value or 0, area.target_value or 0
            match area.type:
                case "reduce_fillers":
                    daily = "Practice 2-minute recording focusing on pausing instead of saying 'um' or 'uh'"
                    weekly = f"Reduce filler rate from {current * 100:.1f}% to {target * 100:.1f}%"
                    tracking = "Count filler words in each practice session"
                case "improve_pace":
                    daily = f"Practice speaking at {round(target)} WPM using a metronome or timer"
                    weekly = f"Adjust speaking pace from {round(current)} to {round(target)} words per minute"
                    tracking = "Record WPM in 1-minute practice sessions"
                case "enhance_clarity":
                    daily = "Practice enunciation exercises and record tongue twisters"
                    weekly = f"Improve clarity score from {round(current * 100)}% to {round(target * 100)}%"
                    tracking = "Ask others to rate your speech clarity on a 1-10 scale"
                case "boost_engagement":
                    daily = "Tell a 2-minute story aloud with exaggerated vocal variety"
                    weekly = f"Raise engagement from {round(current * 100)}% to {round(target * 100)}%"
                    tracking = "Note the questions and emphasis points you used in each recording"
                case "increase_fluency":
                    daily = "Speak for 1 minute on a random topic without stopping"
                    weekly = f"Improve fluency from {round(current * 100)}% to {round(target * 100)}%"
                    tracking = "Count restarts and hesitations in each practice session"
                case "fix_long_pauses":
                    daily = "Outline 3 talking points before each practice recording"
                    weekly = f"Cut long pauses from {int(current)} to {int(target)} per session"
                    tracking = "Note every pause longer than 3 seconds when reviewing recordings"
                case "improve_professionalism":
                    daily = "Rephrase one casual paragraph into formal language aloud"
                    weekly = f"Reduce informal expressions from {int(current)} to {int(target)} per session"
                    tracking = "List informal words flagged in each session"
                case _:
                    continue
            plan["daily_practice"].append(daily)
            plan["weekly_goals"].append(weekly)
            plan["progress_tracking"].append(tracking)
        return plan

    def achieved_target(self, area: dict[str, Any]) -> bool:
        session, target = area.get("current_session_value"), area.get("target_value")
        if session is None or target is None:
            return False
        match area["type"]:
            case "improve_pace":
                return self.acceptable_wpm[0] <= round(session) <= self.acceptable_wpm[1]
            case "reduce_fillers":
                return session <= target
            case "enhance_clarity" | "boost_engagement" | "increase_fluency":
                return session >= target
        return False

    def close_to_target(self, area: dict[str, Any], threshold: float = 0.10) -> bool:
        session, target = area.get("current_session_value"), area.get("target_value")
        if session is None or target is None:
            return False
        match area["type"]:
            case "improve_pace":
                return abs(session - target) <= target * threshold
            case "reduce_fillers":
                return target < session <= target * 1.2
            case "enhance_clarity" | "boost_engagement" | "increase_fluency":
                return target * (1 - threshold) <= session < target
        return False

    def contextual_message(self, area: dict[str, Any]) -> dict[str, str] | None:
        """Badge, title and body comparing this session with the rolling average."""
        area_type = area["type"]
        session, average, target = area.get("current_session_value"), area.get("current_value"), area.get("target_value")
        if area_type not in MESSAGE_LABELS or session is None or average is None or target is None:
            return None

        if area_type == "improve_pace":
            too_slow = average < self.acceptable_wpm[0]
            regression = session < average * 0.85 if too_slow else session > average * 1.15
        elif area_type == "reduce_fillers":
            regression = session > average * 1.15
        else:
            regression = session < average * 0.85

        label = MESSAGE_LABELS[area_type]
        now, avg, goal = (_format_value(area_type, v) for v in (session, average, target))

        if self.achieved_target(area):
            return {
                "badge": "GREAT SESSION 🎉",
                "title": f"Great {label} this session!",
                "body": f"You hit {now} this session. Your 5-session average is {avg}. "
                f"Keep practicing to make {goal} your consistent baseline.",
            }
        if regression:
            return {
                "badge": "SETBACK 😔",
                "title": f"Your {label} slipped this session",
                "body": f"This session came in at {now}, compared with your {avg} average. "
                f"Slip-ups happen. Refocus on the practice plan to get back toward {goal}.",
            }
        if self.close_to_target(area):
            return {
                "badge": "ALMOST THERE 💪",
                "title": "You're getting close!",
                "body": f"This session: {now}. Your 5-session average ({avg}) shows progress toward {goal}.",
            }
        return {
            "badge": "KEEP GOING 💪",
            "title": area_type.replace("_", " ").title(),
            "body": f"Your average {label} is {avg}. Let's move it to {goal} through consistent practice.",
        }


def _format_value(area_type: str, value: float) -> str:
    if area_type == "improve_pace":
        return f"{round(value)} WPM"
    if area_type == "reduce_fillers":
        return f"{value * 100:.1f}%"
    return f"{round(value * 100)}%"
