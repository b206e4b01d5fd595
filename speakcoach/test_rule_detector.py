import pytest

from speakcoach.conftest import make_transcript, make_words
from speakcoach.models import Transcript, Word
from speakcoach.rule_detector import DetectionError, RuleDetector
from speakcoach.rulepacks import RuleLoadError


def test_filler_issues_are_grouped_and_sorted(filler_transcript, repository):
    issues = RuleDetector(filler_transcript, repository=repository).detect_all_issues()

    assert [issue.start_ms for issue in issues] == sorted(issue.start_ms for issue in issues)
    assert {issue.kind for issue in issues} == {"filler_word"}

    sounds = issues[0]
    assert sounds.start_ms == 400
    assert sounds.matched_words == ["um", "um", "uh"]
    assert sounds.severity == "medium"
    assert sounds.source == "rule"
    assert sounds.text.startswith("so um I think")


def test_min_matches_and_per_minute_cap(filler_transcript, repository):
    issues = RuleDetector(filler_transcript, repository=repository).detect_category_issues("filler_words")
    likes = [issue for issue in issues if issue.pattern == "\\blike\\b"]
    assert len(likes) == 1
    assert likes[0].matched_words == ["like", "like"]


def test_single_like_is_not_reported(repository):
    transcript = make_transcript("I would like to present our quarterly results to the whole team today")
    issues = RuleDetector(transcript, repository=repository).detect_category_issues("filler_words")
    assert issues == []


def test_matches_beyond_rate_limit_are_dropped(repository):
    words = [Word(text="basically", start_ms=i * 6000, end_ms=i * 6000 + 300) for i in range(6)]
    transcript = Transcript(text=" ".join(w.text for w in words), words=words)

    issues = RuleDetector(transcript, repository=repository).detect_category_issues("filler_words")
    basically = [issue for issue in issues if "basically" in issue.pattern]
    assert len(basically) == 2


def test_multi_word_phrases_are_matched(repository):
    transcript = make_transcript("you know I mean we should you know kind of start")
    detector = RuleDetector(transcript, repository=repository)

    [crutches] = detector.detect_category_issues("repetition_issues")
    assert crutches.kind == "repetition"
    assert crutches.matched_words == ["you know", "I mean", "you know"]
    assert (crutches.start_ms, crutches.end_ms) == (0, 3100)

    [hedge] = detector.detect_category_issues("clarity_issues")
    assert hedge.matched_words == ["kind of"]
    assert (hedge.start_ms, hedge.end_ms) == (3200, 3900)


def test_slow_pace(repository):
    transcript = make_transcript("we will now look at the numbers for this year", gap_ms=1000)
    issues = RuleDetector(transcript, repository=repository).detect_category_issues("pace_issues")

    assert [issue.kind for issue in issues] == ["pace_too_slow"]
    assert issues[0].speaking_rate == 50.0
    assert issues[0].start_ms == 0
    assert issues[0].end_ms == transcript.duration_ms
    assert issues[0].text.endswith("...")


def test_fast_pace(repository):
    transcript = make_transcript(" ".join(["word"] * 40), word_ms=150, gap_ms=0)
    issues = RuleDetector(transcript, repository=repository).detect_category_issues("pace_issues")
    assert [issue.kind for issue in issues] == ["pace_too_fast"]
    assert issues[0].speaking_rate == 400.0


def test_comfortable_pace_is_not_flagged(filler_transcript, repository):
    assert RuleDetector(filler_transcript, repository=repository).detect_category_issues("pace_issues") == []


def test_long_pause(repository):
    words = [Word(text="hello", start_ms=0, end_ms=300), Word(text="there", start_ms=4300, end_ms=4600)]
    transcript = Transcript(text="hello there", words=words)

    issues = RuleDetector(transcript, repository=repository).detect_all_issues()
    pauses = [issue for issue in issues if issue.kind == "long_pause"]
    assert len(pauses) == 1
    assert pauses[0].text == "hello... [pause: 4.0s] ...there"
    assert (pauses[0].start_ms, pauses[0].end_ms) == (300, 4300)
    assert pauses[0].pause_duration_ms == 4000


def test_empty_transcript_has_no_issues(repository):
    detector = RuleDetector(Transcript(), repository=repository)
    assert detector.rules_available()
    assert detector.detect_all_issues() == []


def test_unknown_language(repository):
    with pytest.raises(RuleLoadError):
        RuleDetector(make_transcript("hello"), language="xx", repository=repository)


def test_rule_failure_is_wrapped(filler_transcript, repository, monkeypatch):
    detector = RuleDetector(filler_transcript, repository=repository)

    def boom(rule, category):
        raise ValueError("bad rule")

    monkeypatch.setattr(detector, "_detect_pattern", boom)
    with pytest.raises(DetectionError, match="bad rule"):
        detector.detect_all_issues()


def test_calculate_metrics(filler_transcript, repository):
    metrics = RuleDetector(filler_transcript, repository=repository).calculate_metrics()

    assert metrics["word_count"] == 21
    assert metrics["filler_word_rate"] == round(6 / 21 * 100, 1)
    assert metrics["issue_count"] == 3
    assert metrics["clarity_score"] == 85
    assert metrics["average_pause_ms"] == 0
    assert metrics["longest_pause_ms"] == 0


def test_spanish_fillers(repository):
    words = make_words("bueno este eh pues vamos a empezar".split())
    transcript = Transcript(text="bueno este eh pues vamos a empezar", words=words)
    issues = RuleDetector(transcript, language="es", repository=repository).detect_category_issues("filler_words")
    assert issues
