from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_RULES_DIR = Path(__file__).parent / "rulepacks"

SEVERITIES = ("low", "medium", "high")
REQUIRED_FIELDS = ("pattern", "description", "tip")


class RuleLoadError(Exception):
    """Rule pack is missing or cannot be parsed."""


class SpecialKind(Enum):
    SLOW_PACE = "speaking_rate_below_120"
    FAST_PACE = "speaking_rate_above_180"
    LONG_PAUSE = "long_pause_over_3s"


@dataclass(frozen=True)
class RegexRule:
    pattern: str
    regex: re.Pattern
    category: str
    severity: str = "low"
    description: str = ""
    tip: str = ""
    min_matches: int = 1
    max_matches_per_minute: float | None = None
    context_window: int = 5


@dataclass(frozen=True)
class SpecialRule:
    kind: SpecialKind
    category: str
    severity: str = "low"
    description: str = ""
    tip: str = ""
    min_matches: int = 1
    max_matches_per_minute: float | None = None
    context_window: int = 5

    @property
    def pattern(self) -> str:
        return self.kind.value


Rule = RegexRule | SpecialRule


def _build_rule(raw: dict[str, Any], category: str) -> Rule | None:
    pattern = str(raw.get("pattern", ""))
    common = {
        "category": raw.get("category", category),
        "severity": raw.get("severity", "low"),
        "description": raw.get("description", ""),
        "tip": raw.get("tip", ""),
        "min_matches": int(raw.get("min_matches", 1)),
        "max_matches_per_minute": raw.get("max_matches_per_minute"),
        "context_window": int(raw.get("context_window", 5)),
    }

    try:
        return SpecialRule(kind=SpecialKind(pattern), **common)
    except ValueError:
        pass

    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.warning("Skipping rule in %s with invalid pattern %r: %s", category, pattern, exc)
        return None
    return RegexRule(pattern=pattern, regex=regex, **common)


class RulePackRepository:
    """Loads per-language rule packs from a directory of <language>.json files."""

    def __init__(self, rules_dir: Path | str = DEFAULT_RULES_DIR) -> None:
        self.rules_dir = Path(rules_dir)
        self._loaded: dict[str, dict[str, list[Rule]]] = {}

    def load_rules(self, language: str) -> dict[str, list[Rule]]:
        if language not in self._loaded:
            self._loaded[language] = self._parse(self._read(language))
            logger.info(
                "Loaded %d rules for language %s",
                sum(len(rules) for rules in self._loaded[language].values()),
                language,
            )
        return self._loaded[language]

    def reload(self) -> None:
        self._loaded.clear()

    def available_languages(self) -> list[str]:
        if not self.rules_dir.is_dir():
            return []
        return sorted(path.stem for path in self.rules_dir.glob("*.json"))

    def rules_for_category(self, language: str, category: str) -> list[Rule]:
        return self.load_rules(language).get(category, [])

    def _read(self, language: str) -> dict[str, Any]:
        path = self.rules_dir / f"{language}.json"
        if not path.is_file():
            raise RuleLoadError(f"Rules file not found for language: {language}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RuleLoadError(f"Failed to load rules for language {language}: {exc}") from exc
        if not isinstance(data, dict):
            raise RuleLoadError(f"Failed to load rules for language {language}: expected an object of categories")
        return data

    @staticmethod
    def _parse(data: dict[str, Any]) -> dict[str, list[Rule]]:
        rules: dict[str, list[Rule]] = {}
        for category, raw_rules in data.items():
            built = [_build_rule(raw, category) for raw in raw_rules or []]
            rules[category] = [rule for rule in built if rule is not None]
        return rules

    def validate_rules(self, language: str) -> dict[str, Any]:
        """Check a rule pack for structural problems without compiling it into the cache."""
        errors: list[str] = []
        warnings: list[str] = []
        severities: Counter[str] = Counter()
        seen_patterns: Counter[str] = Counter()
        total = 0

        try:
            data = self._read(language)
        except RuleLoadError as exc:
            return {"valid": False, "errors": [str(exc)], "warnings": [], "stats": {}}

        for category, raw_rules in data.items():
            if not isinstance(raw_rules, list):
                errors.append(f"{category}: rules must be a list")
                continue
            for index, raw in enumerate(raw_rules):
                total += 1
                where = f"{category}[{index}]"
                missing = [field for field in REQUIRED_FIELDS if not raw.get(field)]
                if missing:
                    errors.append(f"{where}: missing required fields {', '.join(missing)}")

                severity = raw.get("severity", "low")
                severities[severity] += 1
                if severity not in SEVERITIES:
                    errors.append(f"{where}: invalid severity {severity!r}")

                pattern = raw.get("pattern")
                if pattern:
                    seen_patterns[pattern] += 1
                    if pattern not in {kind.value for kind in SpecialKind}:
                        try:
                            re.compile(pattern)
                        except re.error as exc:
                            errors.append(f"{where}: invalid regex {pattern!r}: {exc}")

                if len(raw.get("description", "")) < 10:
                    warnings.append(f"{where}: description is very short")
                if len(raw.get("tip", "")) < 20:
                    warnings.append(f"{where}: tip is very short")

        for pattern, count in seen_patterns.items():
            if count > 1:
                warnings.append(f"Duplicate pattern {pattern!r} appears {count} times")

        return {
            "valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "stats": {
                "total_rules": total,
                "categories": len(data),
                "severities": dict(severities),
                "avg_rules_per_category": round(total / len(data), 2) if data else 0,
            },
        }
