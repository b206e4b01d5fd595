from __future__ import annotations

import logging
import math
import random
from collections.abc import Sequence

import numpy as np

from .models import PRIORITY_RANK, Candidate, Issue, Transcript, Word

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDIDATES = 10
DEFAULT_MIN_SEGMENT_MS = 2000
DEFAULT_MAX_SEGMENT_MS = 15000
DEFAULT_CONTEXT_BUFFER_MS = 1000

NATURAL_BREAK_MS = 1500
MIN_QUALITY_SCORE = 0.6
MAX_OVERLAP_RATIO = 0.3


def _join(words: Sequence[Word]) -> str:
    return " ".join(word.text for word in words)


def segments_overlap(a: Candidate, b: Candidate, max_ratio: float = MAX_OVERLAP_RATIO) -> bool:
    """True when the shared span exceeds max_ratio of the shorter segment."""
    overlap = min(a.end_ms, b.end_ms) - max(a.start_ms, b.start_ms)
    if overlap <= 0:
        return False
    shortest = min(a.duration_ms, b.duration_ms)
    if shortest <= 0:
        return True
    return overlap / shortest > max_ratio


def rate_score(wpm: float) -> float:
    if 140 <= wpm <= 160:
        return 1.0
    if 120 <= wpm <= 180:
        return 0.8
    if 100 <= wpm <= 200:
        return 0.5
    return 0.2


def word_length_score(avg_length: float) -> float:
    if 4.5 <= avg_length <= 6.5:
        return 1.0
    if 3.5 <= avg_length <= 7.5:
        return 0.7
    return 0.4


def pause_spread_score(stdev: float) -> float:
    if 200 <= stdev <= 800:
        return 1.0
    if 100 <= stdev <= 1200:
        return 0.6
    return 0.3


def diversity_score(text: str) -> float:
    tokens = text.lower().split()
    if not tokens:
        return 0.3
    ratio = len(set(tokens)) / len(tokens)
    if ratio > 0.8:
        return 1.0
    if ratio > 0.6:
        return 0.7
    if ratio > 0.4:
        return 0.5
    return 0.3


class CandidateBuilder:
    """Picks transcript segments worth a closer look by the AI pass."""

    def __init__(
        self,
        transcript: Transcript,
        issues: Sequence[Issue] = (),
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        min_segment_ms: int = DEFAULT_MIN_SEGMENT_MS,
        max_segment_ms: int = DEFAULT_MAX_SEGMENT_MS,
        context_buffer_ms: int = DEFAULT_CONTEXT_BUFFER_MS,
        rng: random.Random | None = None,
    ) -> None:
        self.words = transcript.words
        self.issues = list(issues)
        self.max_candidates = max_candidates
        self.min_segment_ms = min_segment_ms
        self.max_segment_ms = max_segment_ms
        self.context_buffer_ms = context_buffer_ms
        self.rng = rng or random.Random()

    def build_candidates(self) -> list[Candidate]:
        if not self.words or self.max_candidates <= 0:
            return []

        candidates = self.issue_based_candidates()
        if len(candidates) < self.max_candidates:
            candidates += self.quality_segment_candidates()
        if len(candidates) < self.max_candidates:
            candidates += self.random_candidates(self.max_candidates - len(candidates))

        selected = self.deduplicate(candidates)
        selected.sort(key=lambda c: (PRIORITY_RANK.get(c.priority, 4), -(c.quality_score or 0.5), c.start_ms))
        selected = selected[: self.max_candidates]
        logger.info("Built %d candidates from %d proposals over %d words", len(selected), len(candidates), len(self.words))
        return selected

    # Issue-based

    def issue_based_candidates(self) -> list[Candidate]:
        candidates: list[Candidate] = []
        budgets = (("high", math.ceil(self.max_candidates * 0.6)), ("medium", math.ceil(self.max_candidates * 0.8)))
        for severity, budget in budgets:
            if len(candidates) >= budget:
                continue
            for issue in self.issues:
                if issue.severity != severity:
                    continue
                candidate = self._candidate_from_issue(issue, severity)
                if candidate:
                    candidates.append(candidate)
                if len(candidates) >= budget:
                    break
        return candidates

    def _candidate_from_issue(self, issue: Issue, priority: str) -> Candidate | None:
        start_ms = max(issue.start_ms - self.context_buffer_ms, 0)
        end_ms = issue.end_ms + self.context_buffer_ms

        if end_ms - start_ms < self.min_segment_ms:
            needed = self.min_segment_ms - (end_ms - start_ms)
            start_ms = max(start_ms - needed // 2, 0)
            end_ms += needed // 2

        if end_ms - start_ms > self.max_segment_ms:
            excess = (end_ms - start_ms) - self.max_segment_ms
            start_ms += excess // 2
            end_ms -= excess // 2

        inside = [w for w in self.words if w.start_ms >= start_ms and w.end_ms <= end_ms]
        if not inside:
            return None
        return Candidate(
            start_ms=start_ms,
            end_ms=end_ms,
            text=_join(inside),
            priority=priority,
            source="issue_based",
            word_count=len(inside),
            duration_ms=end_ms - start_ms,
            target_issue=issue,
        )

    # Quality segments

    def quality_segment_candidates(self) -> list[Candidate]:
        limit = math.ceil(self.max_candidates * 0.3)
        return self._quality_segments()[:limit]

    def _quality_segments(self) -> list[Candidate]:
        segments = []
        start = 0
        while start < len(self.words):
            end = self.find_segment_end(start)
            if end <= start:
                break
            segment = self.score_segment(self.words[start : end + 1])
            if segment.quality_score is not None and segment.quality_score > MIN_QUALITY_SCORE:
                segments.append(segment)
            start = end + 1
        segments.sort(key=lambda c: -(c.quality_score or 0))
        return segments

    def find_segment_end(self, start: int) -> int:
        """
        Index of the last word of a segment starting at `start`.

        Stops at the first natural pause (>1.5s) once the segment is long
        enough, or when it reaches the midpoint of the allowed duration range.
        """
        words = self.words
        target = (self.min_segment_ms + self.max_segment_ms) // 2
        duration = 0
        for i in range(start, len(words)):
            if i > start:
                duration = words[i].end_ms - words[start].start_ms
                if duration >= target:
                    break
            if i < len(words) - 1:
                pause = words[i + 1].start_ms - words[i].end_ms
                if pause > NATURAL_BREAK_MS and duration >= self.min_segment_ms:
                    return i

        for i in range(start, len(words)):
            if words[i].end_ms - words[start].start_ms >= self.min_segment_ms:
                return i
        return start

    def score_segment(self, words: Sequence[Word]) -> Candidate:
        start_ms, end_ms = words[0].start_ms, words[-1].end_ms
        duration = end_ms - start_ms
        text = _join(words)
        wpm = len(words) / (duration / 60_000) if duration > 0 else 0.0
        pauses = [b.start_ms - a.end_ms for a, b in zip(words, words[1:])]
        pauses = [p for p in pauses if p > 50]

        factors = {
            "rate": rate_score(wpm),
            "word_length": word_length_score(sum(len(w.text) for w in words) / len(words)),
            "pause_spread": pause_spread_score(float(np.std(pauses)) if pauses else 0.0),
            "diversity": diversity_score(text),
        }
        return Candidate(
            start_ms=start_ms,
            end_ms=end_ms,
            text=text,
            priority="medium",
            source="quality_segment",
            word_count=len(words),
            duration_ms=duration,
            quality_score=round(sum(factors.values()) / len(factors), 4),
            quality_factors=factors,
        )

    # Random coverage

    def random_candidates(self, slots: int) -> list[Candidate]:
        candidates = []
        for _ in range(max(slots, 0)):
            start = self.rng.randrange(max(len(self.words) - 10, 1))
            end = self.find_segment_end(start)
            if end <= start:
                continue
            words = self.words[start : end + 1]
            candidates.append(
                Candidate(
                    start_ms=words[0].start_ms,
                    end_ms=words[-1].end_ms,
                    text=_join(words),
                    priority="low",
                    source="random_sampling",
                    word_count=len(words),
                    duration_ms=words[-1].end_ms - words[0].start_ms,
                )
            )
        return candidates

    @staticmethod
    def deduplicate(candidates: list[Candidate]) -> list[Candidate]:
        kept: list[Candidate] = []
        for candidate in sorted(candidates, key=lambda c: PRIORITY_RANK.get(c.priority, 4)):
            if not any(segments_overlap(candidate, existing) for existing in kept):
                kept.append(candidate)
        return kept
