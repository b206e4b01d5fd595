from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from .models import Achievement, SessionRecord
from .recommender import ACCEPTABLE_WPM

logger = logging.getLogger(__name__)

MAX_ACHIEVEMENTS = 5
RECENT_DAYS = 7


@dataclass(frozen=True)
class AchievementFamily:
    thresholds: tuple[int, ...]
    icon: str
    title: str
    description: str


ACHIEVEMENT_TYPES = {
    "streak": AchievementFamily(
        (3, 7, 14, 30, 60, 100), "🔥", "{count}-Day Practice Streak", "Practiced for {count} consecutive days"
    ),
    "session_milestone": AchievementFamily(
        (5, 10, 25, 50, 100, 250, 500), "🎯", "{count} Sessions Completed", "Completed {count} total practice sessions"
    ),
    "filler_improvement": AchievementFamily(
        (10, 25, 50, 75), "💎", "{count}% Filler Reduction", "Reduced filler words by {count}% from your baseline"
    ),
    "clarity_master": AchievementFamily(
        (80, 85, 90, 95), "✨", "{count}% Clarity Score", "Achieved {count}% or higher clarity score"
    ),
    "pace_control": AchievementFamily(
        (3, 5, 10),
        "⚡",
        "{count} Sessions in Ideal Pace Range",
        "Maintained target pace in {count} consecutive sessions",
    ),
    "weekly_focus_champion": AchievementFamily(
        (1, 3, 5, 10), "🏆", "{count} Weekly Goals Completed", "Successfully completed {count} weekly focus goals"
    ),
}


class AchievementDetector:
    """
    Awards threshold achievements from a user's completed sessions.

    `today` is injectable so streaks can be tested across day boundaries.
    `completed_focus_weeks` holds the end dates of completed weekly focus goals.
    """

    def __init__(
        self,
        sessions: Sequence[SessionRecord],
        today: Callable[[], date] = date.today,
        acceptable_wpm: tuple[float, float] = ACCEPTABLE_WPM,
        completed_focus_weeks: Sequence[date] = (),
    ) -> None:
        completed = [s for s in sessions if s.completed]
        self.sessions = sorted(completed, key=lambda s: s.created_at, reverse=True)
        self.today = today
        self.acceptable_wpm = acceptable_wpm
        self.completed_focus_weeks = sorted(completed_focus_weeks)

    def detect_achievements(self) -> list[Achievement]:
        today = self.today()
        achievements: list[Achievement] = []
        for family, value in (
            ("streak", self.current_streak(today)),
            ("session_milestone", len(self.sessions)),
            ("filler_improvement", self.filler_improvement()),
            ("clarity_master", self.highest_clarity()),
            ("pace_control", self.pace_control_streak()),
            ("weekly_focus_champion", len(self.completed_focus_weeks)),
        ):
            achievements += self.achievements_for(family, value, today)

        # undated achievements sort last
        achievements.sort(key=lambda a: a.achieved_at or date.min, reverse=True)
        return achievements[:MAX_ACHIEVEMENTS]

    def detect_recent_milestones(self) -> list[Achievement]:
        cutoff = self.today() - timedelta(days=RECENT_DAYS)
        return [a for a in self.detect_achievements() if a.achieved_at is not None and a.achieved_at > cutoff]

    def current_streak(self, today: date | None = None) -> int:
        """Consecutive calendar days with a session, walking back from today."""
        day = today or self.today()
        practiced = {s.created_at.date() for s in self.sessions}
        streak = 0
        while day in practiced:
            streak += 1
            day -= timedelta(days=1)
        return streak

    def filler_improvement(self) -> int | None:
        """Percent drop in mean filler rate from the 3 earliest to the 3 latest sessions."""
        if len(self.sessions) < 5:
            return None
        baseline = _mean_filler(self.sessions[-3:])
        recent = _mean_filler(self.sessions[:3])
        if baseline == 0:
            return None
        improvement = round((baseline - recent) / baseline * 100)
        return improvement if improvement > 0 else None

    def highest_clarity(self) -> int | None:
        scores = [float(s.analysis_data.get("clarity_score") or 0) * 100 for s in self.sessions]
        return round(max(scores)) if scores else None

    def pace_control_streak(self) -> int:
        low, high = self.acceptable_wpm
        streak = 0
        for session in self.sessions:
            wpm = float(session.analysis_data.get("wpm") or 0)
            if not low <= wpm <= high:
                break
            streak += 1
        return streak

    def achievements_for(self, family: str, value: float | None, today: date) -> list[Achievement]:
        if not value or value <= 0:
            return []
        config = ACHIEVEMENT_TYPES[family]
        return [
            Achievement(
                type=family,
                threshold=threshold,
                current_value=value,
                achieved_at=self._achievement_date(family, threshold, today)
                if self._recently_achieved(family, threshold, value)
                else None,
                title=config.title.format(count=threshold),
                description=config.description.format(count=threshold),
                icon=config.icon,
            )
            for threshold in config.thresholds
            if value >= threshold
        ]

    @staticmethod
    def _recently_achieved(family: str, threshold: int, value: float) -> bool:
        following = next((t for t in ACHIEVEMENT_TYPES[family].thresholds if t > value), None)
        if following is None:
            return False
        return threshold * 0.8 <= value < following

    def _achievement_date(self, family: str, threshold: int, today: date) -> date:
        match family:
            case "streak":
                return today
            case "session_milestone":
                oldest_first = self.sessions[::-1]
                return oldest_first[threshold - 1].created_at.date() if len(oldest_first) >= threshold else today
            case "weekly_focus_champion":
                weeks = self.completed_focus_weeks
                return weeks[threshold - 1] if len(weeks) >= threshold else today
        return self.sessions[0].created_at.date() if self.sessions else today


def _mean_filler(sessions: Sequence[SessionRecord]) -> float:
    values = [float(s.analysis_data["filler_rate"]) for s in sessions if s.analysis_data.get("filler_rate") is not None]
    return sum(values) / len(sessions)
