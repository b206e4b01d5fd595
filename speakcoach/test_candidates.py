import random

from speakcoach.candidates import CandidateBuilder, diversity_score, rate_score, segments_overlap
from speakcoach.conftest import make_transcript
from speakcoach.models import Candidate, Issue

LONG_TEXT = " ".join(
    "today I want to walk you through our roadmap for the next quarter and explain "
    "why we picked these priorities over the alternatives we discussed last month".split() * 4
)


def candidate(start_ms, end_ms, priority="medium"):
    return Candidate(
        start_ms=start_ms,
        end_ms=end_ms,
        text="x",
        priority=priority,
        source="quality_segment",
        word_count=1,
        duration_ms=end_ms - start_ms,
    )


def issue(start_ms, end_ms, severity):
    return Issue(kind="filler_word", start_ms=start_ms, end_ms=end_ms, text="um", severity=severity)


def test_overlap_is_relative_to_shorter_segment():
    assert segments_overlap(candidate(0, 10_000), candidate(9_000, 12_000))
    assert not segments_overlap(candidate(0, 10_000), candidate(9_500, 14_000))
    assert not segments_overlap(candidate(0, 1_000), candidate(1_000, 2_000))


def test_scoring_helpers():
    assert rate_score(150) == 1.0
    assert rate_score(175) == 0.8
    assert rate_score(300) == 0.2
    assert diversity_score("") == 0.3
    assert diversity_score("a b c d e") == 1.0


def test_candidates_respect_budget_and_overlap():
    transcript = make_transcript(LONG_TEXT)
    issues = [issue(2000, 2300, "high"), issue(9000, 9300, "medium"), issue(20_000, 20_300, "high")]
    candidates = CandidateBuilder(transcript, issues, max_candidates=5, rng=random.Random(1)).build_candidates()

    assert 0 < len(candidates) <= 5
    for i, first in enumerate(candidates):
        for second in candidates[i + 1 :]:
            assert not segments_overlap(first, second)


def test_issue_candidates_are_padded_to_minimum_length():
    transcript = make_transcript(LONG_TEXT)
    builder = CandidateBuilder(transcript, [issue(5000, 5300, "high")], rng=random.Random(1))
    [built] = builder.issue_based_candidates()

    assert built.source == "issue_based"
    assert built.priority == "high"
    assert built.duration_ms >= 2000
    assert built.start_ms <= 5000 and built.end_ms >= 5300
    assert built.target_issue.start_ms == 5000


def test_low_severity_issues_do_not_seed_candidates():
    transcript = make_transcript(LONG_TEXT)
    builder = CandidateBuilder(transcript, [issue(5000, 5300, "low")], rng=random.Random(1))
    assert builder.issue_based_candidates() == []


def test_seeded_rng_is_deterministic():
    transcript = make_transcript(LONG_TEXT)
    first = CandidateBuilder(transcript, max_candidates=6, rng=random.Random(7)).build_candidates()
    second = CandidateBuilder(transcript, max_candidates=6, rng=random.Random(7)).build_candidates()
    assert first == second


def test_sorted_by_priority():
    transcript = make_transcript(LONG_TEXT)
    candidates = CandidateBuilder(
        transcript, [issue(20_000, 20_300, "high")], max_candidates=6, rng=random.Random(3)
    ).build_candidates()
    ranks = [{"high": 1, "medium": 2, "low": 3}[c.priority] for c in candidates]
    assert ranks == sorted(ranks)
    assert candidates[0].source == "issue_based"


def test_empty_transcript():
    assert CandidateBuilder(make_transcript(""), rng=random.Random(0)).build_candidates() == []
