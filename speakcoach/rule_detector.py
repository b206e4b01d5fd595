from __future__ import annotations

import bisect
import logging
import math

from .models import Issue, Transcript, Word
from .rulepacks import RegexRule, Rule, RuleLoadError, RulePackRepository, SpecialKind, SpecialRule

logger = logging.getLogger(__name__)

SLOW_WPM_THRESHOLD = 120
FAST_WPM_THRESHOLD = 180
LONG_PAUSE_MS = 3000
MIN_PAUSE_MS = 100

CATEGORY_KINDS = {
    "filler_words": "filler_word",
    "pace_issues": "pace_issue",
    "clarity_issues": "clarity_issue",
    "professional_issues": "professionalism",
    "articulation_issues": "articulation",
    "repetition_issues": "repetition",
}


class DetectionError(Exception):
    pass


class RuleDetector:
    """Applies a language's rule pack to a transcript and reports timestamped issues."""

    def __init__(
        self,
        transcript: Transcript,
        language: str = "en",
        repository: RulePackRepository | None = None,
    ) -> None:
        self.transcript = transcript
        self.language = language
        self.repository = repository or RulePackRepository()
        self.rules = self.repository.load_rules(language)
        self._issues: list[Issue] | None = None

    def rules_available(self) -> bool:
        return any(self.rules.values())

    def detect_all_issues(self) -> list[Issue]:
        issues: list[Issue] = []
        for category in self.rules:
            issues.extend(self._detect_category(category))
        issues.sort(key=lambda issue: issue.start_ms)
        self._issues = issues
        logger.info("Detected %d rule-based issues for language %s", len(issues), self.language)
        return issues

    def detect_category_issues(self, category: str) -> list[Issue]:
        return sorted(self._detect_category(category), key=lambda issue: issue.start_ms)

    def _detect_category(self, category: str) -> list[Issue]:
        issues: list[Issue] = []
        for rule in self.rules.get(category, []):
            try:
                issues.extend(self._detect_rule(rule, category))
            except RuleLoadError:
                raise
            except Exception as exc:
                raise DetectionError(f"Rule {rule.pattern!r} in {category} failed: {exc}") from exc
        return issues

    def _detect_rule(self, rule: Rule, category: str) -> list[Issue]:
        match rule:
            case RegexRule():
                return self._detect_pattern(rule, category)
            case SpecialRule(kind=SpecialKind.SLOW_PACE):
                return self._detect_pace(rule, category, too_fast=False)
            case SpecialRule(kind=SpecialKind.FAST_PACE):
                return self._detect_pace(rule, category, too_fast=True)
            case SpecialRule(kind=SpecialKind.LONG_PAUSE):
                return self._detect_long_pauses(rule, category)
        return []

    def _detect_pattern(self, rule: RegexRule, category: str) -> list[Issue]:
        matches = self._match_words(rule)
        if len(matches) < max(rule.min_matches, 1):
            return []

        issues = []
        for group in self._group_nearby(matches, rule.context_window):
            first_idx, last_idx = group[0][0], group[-1][1]
            first, last = self.transcript.words[first_idx], self.transcript.words[last_idx]
            issues.append(
                Issue(
                    kind=CATEGORY_KINDS.get(category, "other"),
                    category=category,
                    start_ms=first.start_ms,
                    end_ms=last.end_ms,
                    text=self._context_text(first_idx, last_idx, rule.context_window),
                    source="rule",
                    severity=rule.severity,
                    rationale=rule.description,
                    tip=rule.tip,
                    pattern=rule.pattern,
                    matched_words=[phrase for _, _, phrase in group],
                )
            )

        if rule.max_matches_per_minute and issues:
            limit = math.ceil(rule.max_matches_per_minute * self.transcript.duration_minutes)
            issues = issues[:limit]
        return issues

    def _match_words(self, rule: RegexRule) -> list[tuple[int, int, str]]:
        """Run the rule over the spoken words, returning (first word, last word, matched text) per hit."""
        words = self.transcript.words
        offsets = []
        position = 0
        for word in words:
            offsets.append(position)
            position += len(word.text) + 1
        spoken = " ".join(word.text for word in words)

        matches = []
        for found in rule.regex.finditer(spoken):
            if found.start() == found.end():
                continue
            first = bisect.bisect_right(offsets, found.start()) - 1
            last = bisect.bisect_right(offsets, found.end() - 1) - 1
            matches.append((first, last, found.group(0)))
        return matches

    def _group_nearby(
        self, matches: list[tuple[int, int, str]], context_window: int
    ) -> list[list[tuple[int, int, str]]]:
        """Group matches whose time gap is within context_window seconds."""
        groups: list[list[tuple[int, int, str]]] = []
        words = self.transcript.words
        for match in matches:
            if groups and words[match[0]].start_ms - words[groups[-1][-1][1]].end_ms <= context_window * 1000:
                groups[-1].append(match)
            else:
                groups.append([match])
        return groups

    def _context_text(self, start_idx: int, end_idx: int, context_window: int) -> str:
        words = self.transcript.words
        lo = max(start_idx - context_window, 0)
        hi = min(end_idx + context_window, len(words) - 1)
        return " ".join(word.text for word in words[lo : hi + 1])

    def _detect_pace(self, rule: SpecialRule, category: str, too_fast: bool) -> list[Issue]:
        if not self.transcript.words:
            return []
        wpm = self._speaking_rate()
        if too_fast and wpm <= FAST_WPM_THRESHOLD:
            return []
        if not too_fast and wpm >= SLOW_WPM_THRESHOLD:
            return []
        return [
            Issue(
                kind="pace_too_fast" if too_fast else "pace_too_slow",
                category=category,
                start_ms=0,
                end_ms=self.transcript.duration_ms or 0,
                text=self.transcript.text[:100] + "...",
                source="rule",
                severity=rule.severity,
                rationale=rule.description,
                tip=rule.tip,
                pattern=rule.pattern,
                speaking_rate=round(wpm, 1),
            )
        ]

    def _detect_long_pauses(self, rule: SpecialRule, category: str) -> list[Issue]:
        issues = []
        for current, following in _pairs(self.transcript.words):
            gap = following.start_ms - current.end_ms
            if gap > LONG_PAUSE_MS:
                issues.append(
                    Issue(
                        kind="long_pause",
                        category=category,
                        start_ms=current.end_ms,
                        end_ms=following.start_ms,
                        text=f"{current.text}... [pause: {gap / 1000:.1f}s] ...{following.text}",
                        source="rule",
                        severity=rule.severity,
                        rationale=rule.description,
                        tip=rule.tip,
                        pattern=rule.pattern,
                        pause_duration_ms=gap,
                    )
                )
        return issues

    def _speaking_rate(self) -> float:
        minutes = self.transcript.duration_minutes
        if not self.transcript.words or minutes <= 0:
            return 0.0
        return len(self.transcript.words) / minutes

    def calculate_metrics(self) -> dict[str, float | int]:
        """Cheap baseline statistics, used where the full metrics battery is unavailable."""
        words = self.transcript.words
        issues = self._issues if self._issues is not None else self.detect_all_issues()

        filler_regexes = [
            rule.regex for rule in self.rules.get("filler_words", []) if isinstance(rule, RegexRule)
        ]
        filler_count = sum(1 for word in words if any(regex.search(word.text) for regex in filler_regexes))
        pauses = [gap for gap in (b.start_ms - a.end_ms for a, b in _pairs(words)) if gap > MIN_PAUSE_MS]

        return {
            "word_count": len(words),
            "duration_ms": self.transcript.duration_ms or 0,
            "speaking_rate_wpm": round(self._speaking_rate(), 1),
            "filler_word_rate": round(filler_count / len(words) * 100, 1) if words else 0.0,
            "average_pause_ms": round(sum(pauses) / len(pauses)) if pauses else 0,
            "longest_pause_ms": max(pauses, default=0),
            "issue_count": len(issues),
            "clarity_score": max(0, 100 - 5 * len(issues)),
        }


def _pairs(words: list[Word]) -> zip:
    return zip(words, words[1:])
