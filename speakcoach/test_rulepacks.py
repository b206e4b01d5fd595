import json

import pytest

from speakcoach.rulepacks import RegexRule, RuleLoadError, RulePackRepository, SpecialKind, SpecialRule


def write_pack(directory, language, data):
    path = directory / f"{language}.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_bundled_languages_are_available(repository):
    assert {"en", "es", "pt"} <= set(repository.available_languages())


def test_english_pack_has_special_pace_rules(repository):
    rules = repository.load_rules("en")
    kinds = {rule.kind for rule in rules["pace_issues"] if isinstance(rule, SpecialRule)}
    assert kinds == {SpecialKind.SLOW_PACE, SpecialKind.FAST_PACE, SpecialKind.LONG_PAUSE}
    assert all(isinstance(rule, RegexRule) for rule in rules["filler_words"])


def test_load_rules_is_cached_until_reload(repository):
    first = repository.load_rules("en")
    assert repository.load_rules("en") is first
    repository.reload()
    assert repository.load_rules("en") is not first


def test_missing_language_raises(tmp_path):
    repo = RulePackRepository(tmp_path)
    with pytest.raises(RuleLoadError, match="Rules file not found for language: xx"):
        repo.load_rules("xx")


def test_unparseable_pack_raises(tmp_path):
    (tmp_path / "en.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(RuleLoadError):
        RulePackRepository(tmp_path).load_rules("en")


def test_invalid_regex_is_skipped(tmp_path):
    write_pack(
        tmp_path,
        "en",
        {
            "filler_words": [
                {"pattern": "(unclosed", "description": "broken", "tip": "n/a"},
                {"pattern": "\\bum\\b", "description": "um", "tip": "pause instead", "context_window": 2},
            ]
        },
    )
    rules = RulePackRepository(tmp_path).load_rules("en")
    assert len(rules["filler_words"]) == 1
    rule = rules["filler_words"][0]
    assert rule.pattern == "\\bum\\b"
    assert rule.context_window == 2
    assert rule.regex.search("UM")


def test_rules_for_category(repository):
    assert repository.rules_for_category("en", "filler_words")
    assert repository.rules_for_category("en", "no_such_category") == []


def test_validate_bundled_pack(repository):
    report = repository.validate_rules("en")
    assert report["valid"], report["errors"]
    assert report["stats"]["categories"] == len(repository.load_rules("en"))
    assert report["stats"]["total_rules"] > 0


def test_validate_reports_problems(tmp_path):
    write_pack(
        tmp_path,
        "en",
        {
            "filler_words": [
                {"pattern": "(unclosed", "description": "A broken pattern", "tip": "This tip is long enough"},
                {"pattern": "\\bum\\b", "description": "Filler sound", "severity": "extreme"},
                {"pattern": "\\bum\\b", "description": "dup", "tip": "short"},
            ]
        },
    )
    report = RulePackRepository(tmp_path).validate_rules("en")
    assert not report["valid"]
    assert any("invalid regex" in error for error in report["errors"])
    assert any("invalid severity" in error for error in report["errors"])
    assert any("missing required fields tip" in error for error in report["errors"])
    assert any("Duplicate pattern" in warning for warning in report["warnings"])
    assert report["stats"]["total_rules"] == 3


def test_validate_missing_language(tmp_path):
    report = RulePackRepository(tmp_path).validate_rules("de")
    assert report["valid"] is False
    assert report["errors"]
