import random

import pytest

from speakcoach.ai_refiner import (
    AiRefiner,
    analysis_confidence,
    micro_opportunities,
    standout_patterns,
    user_level,
)
from speakcoach.cache import MemoryCache
from speakcoach.conftest import FailingChatClient, FakeChatClient
from speakcoach.models import Candidate, Issue, SessionContext, Transcript
from speakcoach.rule_detector import RuleDetector

ENGAGEMENT_ANALYSIS = {
    "overall_assessment": {"clarity_score": 70, "overall_score": 72},
    "strengths": ["Clear opening"],
    "improvement_areas": [
        {
            "category": "engagement",
            "issue": "Delivery is flat",
            "confidence": 0.9,
            "severity": "medium",
            "specific_recommendation": "Vary your pitch on key words",
            "priority": "high",
        }
    ],
    "coaching_insights": ["Slow down at transitions"],
}

FILLERS_CONFIRMED = {
    "validated_issues": [
        {
            "original_detection": "filler_word",
            "confidence": 0.9,
            "severity": "high",
            "coaching_recommendation": "Pause instead of saying um",
            "priority": "high",
        }
    ],
    "false_positives": [],
}


def rule_issues_for(transcript, repository):
    return RuleDetector(transcript, repository=repository).detect_all_issues()


def refiner_for(client, cache=None, **kwargs):
    kwargs.setdefault("rng", random.Random(0))
    return AiRefiner(client, cache if cache is not None else MemoryCache(), **kwargs)


def issue(kind, text, start_ms=0, end_ms=1000, **kwargs):
    return Issue(kind=kind, start_ms=start_ms, end_ms=end_ms, text=text, **kwargs)


def segment(start_ms, end_ms, text):
    return Candidate(
        start_ms=start_ms,
        end_ms=end_ms,
        text=text,
        priority="medium",
        source="quality_segment",
        word_count=len(text.split()),
        duration_ms=end_ms - start_ms,
    )


@pytest.mark.parametrize("count, level", [(0, "beginner"), (5, "beginner"), (6, "intermediate"), (21, "advanced")])
def test_user_level(count, level):
    assert user_level(count) == level


def test_analysis_confidence():
    assert analysis_confidence(ENGAGEMENT_ANALYSIS) == pytest.approx(0.9)
    assert analysis_confidence({"overall_assessment": {"a": 10, "b": 90}}) == pytest.approx(0.7)
    assert analysis_confidence({"overall_assessment": "n/a"}) == pytest.approx(0.7)


def test_all_ai_failures_fall_back_to_rule_issues(filler_transcript, repository):
    rule_issues = rule_issues_for(filler_transcript, repository)
    client = FailingChatClient()

    result = refiner_for(client).refine_analysis(filler_transcript, rule_issues)

    assert result.fallback_mode is True
    assert result.error == "all AI requests failed"
    assert result.refined_issues == rule_issues
    assert result.metadata["ai_calls"] == len(client.calls) > 0
    assert result.metadata["ai_failures"] == len(client.calls)
    assert result.coaching_recommendations["motivation_message"].startswith("Keep practicing")
    assert result.coaching_recommendations["focus_areas"][0]["skill"] == "filler_word"


def test_unexpected_error_returns_rule_issues(filler_transcript, repository, monkeypatch):
    rule_issues = rule_issues_for(filler_transcript, repository)
    refiner = refiner_for(FakeChatClient())

    def boom(*args):
        raise RuntimeError("candidate builder exploded")

    monkeypatch.setattr(refiner, "_build_candidates", boom)
    result = refiner.refine_analysis(filler_transcript, rule_issues)

    assert result.fallback_mode is True
    assert result.error == "candidate builder exploded"
    assert result.refined_issues == rule_issues


def test_refinement_merges_ai_findings(filler_transcript, repository):
    rule_issues = rule_issues_for(filler_transcript, repository)
    client = FakeChatClient(analysis=ENGAGEMENT_ANALYSIS, classification=FILLERS_CONFIRMED)

    result = refiner_for(client).refine_analysis(filler_transcript, rule_issues)

    assert result.fallback_mode is False
    assert result.metadata["segments_analyzed"] == len(result.segment_analyses) > 0
    assert result.ai_insights == ["Slow down at transitions"] * len(result.segment_analyses)
    assert result.coaching_recommendations == {"focus_areas": [{"skill": "filler_word"}], "motivation_message": "Nice work"}

    validated = [i for i in result.refined_issues if i.source == "rule_ai_validated"]
    assert len(validated) == len(rule_issues)
    assert all(i.validation_status == "confirmed" and i.confidence == 0.9 for i in validated)

    found = [i for i in result.refined_issues if i.source == "ai"]
    assert found and all(i.kind == "engagement_issue" for i in found)
    assert [i.start_ms for i in result.refined_issues] == sorted(i.start_ms for i in result.refined_issues)


def test_second_run_is_served_from_cache(filler_transcript, repository):
    rule_issues = rule_issues_for(filler_transcript, repository)
    client = FakeChatClient(analysis=ENGAGEMENT_ANALYSIS, classification=FILLERS_CONFIRMED)
    cache = MemoryCache()

    first = refiner_for(client, cache).refine_analysis(filler_transcript, rule_issues)
    calls = len(client.calls)
    second = refiner_for(client, cache).refine_analysis(filler_transcript, rule_issues)

    assert len(client.calls) == calls
    assert second.metadata["ai_calls"] == 0
    assert second.metadata["cache_hits"] == first.metadata["ai_calls"] + first.metadata["cache_hits"]
    assert second.refined_issues == first.refined_issues


def test_evaluate_candidate_is_cached():
    client = FakeChatClient()
    refiner = refiner_for(client)
    candidate = segment(0, 4000, "we should start the project today")

    first = refiner.evaluate_candidate(candidate, [], 60_000)
    second = refiner.evaluate_candidate(candidate, [], 60_000)

    assert first == second
    assert client.calls == ["segment evaluator"]


def test_failed_evaluation_is_not_recommended():
    refiner = refiner_for(FailingChatClient())
    evaluation = refiner.evaluate_candidate(segment(0, 4000, "hello there"), [], 60_000)
    assert evaluation["recommended_for_ai_analysis"] is False
    assert evaluation["evaluation"]["overall_score"] == 0.3


def test_only_recommended_segments_are_selected():
    client = FakeChatClient(evaluation={"evaluation": {"overall_score": 0.9}, "recommended_for_ai_analysis": "yes"})
    refiner = refiner_for(client)
    assert refiner._select_segments([segment(0, 4000, "one two three")], [], 60_000) == []


def test_malformed_evaluation_is_not_recommended(filler_transcript, repository):
    rule_issues = rule_issues_for(filler_transcript, repository)
    client = FakeChatClient(
        evaluation={"evaluation": 0.8, "recommended_for_ai_analysis": True}, classification=FILLERS_CONFIRMED
    )

    result = refiner_for(client).refine_analysis(filler_transcript, rule_issues)

    assert result.fallback_mode is False
    assert result.metadata["segments_selected"] == 0
    assert "speech coach specializing" not in client.calls
    assert all(i.validation_status == "confirmed" for i in result.refined_issues)
    assert result.coaching_recommendations["motivation_message"] == "Nice work"


def test_string_insights_and_areas_are_not_split(filler_transcript, repository):
    rule_issues = rule_issues_for(filler_transcript, repository)
    analysis = dict(
        ENGAGEMENT_ANALYSIS, coaching_insights="Slow down", improvement_areas=ENGAGEMENT_ANALYSIS["improvement_areas"][0]
    )
    client = FakeChatClient(analysis=analysis, classification=FILLERS_CONFIRMED)

    result = refiner_for(client).refine_analysis(filler_transcript, rule_issues)

    assert result.ai_insights == ["Slow down"] * len(result.segment_analyses)
    assert any(i.kind == "engagement_issue" for i in result.refined_issues)


def test_merge_classification():
    refiner = refiner_for(FakeChatClient())
    issues = [
        issue("filler_word", "so um I think"),
        issue("professionalism", "we are gonna do it", start_ms=2000, end_ms=3000),
        issue("clarity_issue", "kind of maybe", start_ms=4000, end_ms=5000),
    ]
    classification = {
        "validated_issues": [{"original_detection": "filler_word", "confidence": 1.7, "severity": "high"}],
        "false_positives": [
            {"original_detection": "professionalism", "confidence_override": 0.1, "reason": "Quoting a customer"}
        ],
    }

    merged = refiner.merge_classification(issues, classification)

    assert [i.kind for i in merged] == ["filler_word", "professionalism"]
    confirmed, disputed = merged
    assert confirmed.validation_status == "confirmed"
    assert confirmed.source == "rule_ai_validated"
    assert confirmed.confidence == 1.0
    assert confirmed.ai_severity == "high"
    assert disputed.validation_status == "disputed"
    assert disputed.ai_note == "Quoting a customer"
    assert disputed.confidence == pytest.approx(0.1)
    assert issues[0].validation_status is None


def test_unreviewed_issues_kept_below_threshold():
    refiner = refiner_for(FakeChatClient(), confidence_threshold=0.5)
    merged = refiner.merge_classification([issue("clarity_issue", "kind of")], {"validated_issues": []})
    assert [(i.validation_status, i.confidence) for i in merged] == [("not_reviewed", 0.6)]


def test_validation_matches_by_context_text():
    refiner = refiner_for(FakeChatClient())
    merged = refiner.merge_classification(
        [issue("repetition", "you know I mean you know")],
        {"validated_issues": [{"original_detection": "other", "context_text": "you know I mean"}]},
    )
    assert merged[0].validation_status == "confirmed"
    assert merged[0].confidence == 0.8


def test_failed_classification_keeps_batch():
    refiner = refiner_for(FailingChatClient())
    issues = [issue("filler_word", "um")]
    assert refiner.classify_batch(issues) == issues


def test_duplicate_detection():
    refiner = refiner_for(FakeChatClient())
    existing = [issue("filler_word", "um", start_ms=0, end_ms=1000)]

    assert refiner.is_duplicate(existing, issue("filler", "um", start_ms=500, end_ms=1500))
    assert refiner.is_duplicate(existing, issue("filler_word", "uh", start_ms=900, end_ms=2000))
    assert not refiner.is_duplicate(existing, issue("clarity_issue", "um", start_ms=500, end_ms=1500))
    assert not refiner.is_duplicate(existing, issue("filler_word", "um", start_ms=5000, end_ms=6000))


def test_custom_similar_kind_groups():
    refiner = refiner_for(FakeChatClient(), similar_kind_groups=[frozenset({"filler_word", "repetition"})])
    assert refiner.similar_kinds("repetition", "filler_word")
    assert not refiner.similar_kinds("filler", "filler_word")


def test_issue_from_ai_finding():
    text = " ".join(f"w{i}" for i in range(20))
    found = AiRefiner.issue_from_ai_finding(
        {"category": "Pace", "issue": "Rushed", "severity": "urgent", "confidence": 0.75}, segment(1000, 9000, text)
    )
    assert found.kind == "pace_issue"
    assert found.source == "ai"
    assert found.validation_status == "ai_generated"
    assert found.severity == "medium"
    assert found.text == " ".join(f"w{i}" for i in range(15)) + "..."
    assert (found.start_ms, found.end_ms) == (1000, 9000)

    other = AiRefiner.issue_from_ai_finding({"category": "posture"}, segment(0, 100, "short"))
    assert other.kind == "other"
    assert other.text == "short"


def test_no_issues_means_no_coaching():
    result = refiner_for(FakeChatClient()).refine_analysis(Transcript(), [])
    assert result.refined_issues == []
    assert result.coaching_recommendations is None
    assert result.fallback_mode is False


def test_user_profile_reflects_context():
    context = SessionContext(user_id="u1", session_count=12, goals=["pace"])
    profile = refiner_for(FakeChatClient(), context=context).user_profile()
    assert profile == {"session_count": 12, "level": "intermediate", "goals": ["pace"], "practice_time": "10-15 minutes"}


def test_standout_patterns_and_micro_opportunities():
    insights = {
        "pause_patterns": {"quality_breakdown": "mostly_good_with_awkward_long_pauses", "distribution": {"optimal": 75}},
        "pace_patterns": {"trajectory": "starts_slow_accelerates", "consistency": 0.4, "average_wpm": 150},
        "energy_patterns": {"pattern": "low_energy_throughout", "needs_boost": True},
        "smoothness_breakdown": {"word_flow_score": 90, "pause_consistency_score": 30},
        "hesitation_analysis": {"total_count": 4, "typical_locations": "mostly_at_sentence_starts"},
    }

    assert standout_patterns(insights) == [
        "pause_consistency_low_but_improving",
        "pace_starts_slow_accelerates",
        "pace_inconsistent",
    ]
    assert [o["type"] for o in micro_opportunities(insights)] == ["hesitation_location", "pause_strength"]
    assert standout_patterns({}) == []
    assert micro_opportunities({}) == []
