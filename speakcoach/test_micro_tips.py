from speakcoach.metrics import Metrics
from speakcoach.micro_tips import MicroTipGenerator, normalize_category, priority_score, recommendation_category
from speakcoach.models import Transcript, Word

INSIGHTS = {
    "pace_patterns": {
        "trajectory": "starts_slow_rushes_middle_settles",
        "consistency": 0.4,
        "wpm_range": [110, 190],
        "average_wpm": 150,
    },
    "energy_patterns": {"overall_level": 30, "needs_boost": True, "engagement_elements": []},
    "hesitation_analysis": {"rate_percentage": 8.0, "most_common": "um", "typical_locations": "mostly_at_sentence_starts"},
    "smoothness_breakdown": {"primary_issue": "frequent_hesitations", "word_flow_score": 50, "hesitation_count": 7},
}


def test_priority_score():
    assert priority_score(3, 2) == 1.5
    assert priority_score(2, 3) == 0.67


def test_category_normalization():
    assert normalize_category("Filler Words") == "filler_words"
    assert normalize_category("improve_pace") == "pace_consistency"
    assert normalize_category("Speech Fluency") == "fluency"
    assert normalize_category("posture") == "posture"
    assert recommendation_category("boost_engagement") == "energy"
    assert recommendation_category("improve_professionalism") == "improve_professionalism"


def test_tips_ranked_by_impact_over_effort():
    tips = MicroTipGenerator(None, INSIGHTS).generate_tips()

    assert [tip.category for tip in tips] == ["energy", "filler_words", "pace_consistency"]
    energy, filler, pace = tips
    assert energy.priority_score == 3.0
    assert filler.description == "You use filler words at 8.0% rate. Most common: 'um' mostly when starting new thoughts."
    assert pace.description == "You start slow (110 WPM) then rush in the middle (190 WPM). Consistency: 40/100."


def test_focus_areas_are_excluded():
    tips = MicroTipGenerator(
        None, INSIGHTS, focus_areas=["Filler Words"], primary_recommendation_type="boost_engagement"
    ).generate_tips()
    assert [tip.category for tip in tips] == ["pace_consistency", "fluency"]
    assert tips[1].description == "You hesitate frequently (7 times). Flow score: 50/100."


def test_consistent_pace_gets_no_tip():
    insights = {"pace_patterns": {**INSIGHTS["pace_patterns"], "trajectory": "consistent_throughout"}}
    assert MicroTipGenerator(None, insights).generate_tips() == []


def test_pause_tip_from_metrics():
    words = [Word(text="first", start_ms=0, end_ms=300), Word(text="second", start_ms=6300, end_ms=6600)]
    metrics = Metrics(Transcript(text="first second", words=words)).calculate_all_metrics()

    tips = MicroTipGenerator(metrics).generate_tips()

    assert [tip.category for tip in tips] == ["pause_consistency"]
    assert tips[0].description == (
        "Your pauses are somewhat erratic (25/100 consistency). 1 pauses over 3 seconds disrupted your flow."
    )
    assert tips[0].data["current_score"] == 25


def test_no_insights_no_tips():
    assert MicroTipGenerator(None).generate_tips() == []
