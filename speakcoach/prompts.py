from __future__ import annotations

from typing import Any

from .models import Candidate, Issue

SPEECH_ANALYSIS_SYSTEM_PROMPT = """You are an expert speech coach specializing in {language} communication analysis.
Your role is to analyze speech segments for a {target_audience} audience and provide constructive feedback.

Focus on: clarity and articulation, professional language, confidence and presence, engagement, structure and flow.

Return ONLY a valid JSON object with this exact shape, no markdown, no explanation, no extra text:

{{
  "overall_assessment": {{
    "clarity_score": <integer 0-100>,
    "confidence_score": <integer 0-100>,
    "engagement_score": <integer 0-100>,
    "professionalism_score": <integer 0-100>,
    "overall_score": <integer 0-100>
  }},
  "strengths": ["<strength sentence>"],
  "improvement_areas": [
    {{
      "category": "<one of: pace, clarity, filler, professional, confidence, engagement>",
      "issue": "<what is wrong>",
      "confidence": <float 0.0-1.0>,
      "severity": "<one of: low, medium, high>",
      "specific_recommendation": "<specific advice>",
      "priority": "<one of: low, medium, high>"
    }}
  ],
  "coaching_insights": ["<insight sentence>"]
}}

Rules:
- Be constructive and specific.
- Focus on the 3-5 most impactful improvements rather than every minor issue.
- Consider the context and purpose of the speech."""

ISSUE_CLASSIFICATION_SYSTEM_PROMPT = """You are a speech pattern classifier. You review speech issues detected by simple rules and decide which ones are genuine.

For each detection decide whether it is a real problem, how confident you are (0.0-1.0), its severity and priority, and give one actionable coaching recommendation.
Beginners should get 1-2 fundamental issues with gentle guidance; advanced speakers get nuanced feedback.

Return ONLY a valid JSON object with this exact shape, no markdown, no explanation, no extra text:

{
  "validated_issues": [
    {
      "original_detection": "<issue type as given>",
      "validation": "confirmed",
      "confidence": <float 0.0-1.0>,
      "severity": "<one of: low, medium, high>",
      "impact_description": "<why it matters>",
      "coaching_recommendation": "<specific advice>",
      "priority": "<one of: low, medium, high>",
      "practice_exercise": "<short exercise>",
      "context_text": "<the detected text>"
    }
  ],
  "false_positives": [
    {
      "original_detection": "<issue type as given>",
      "reason": "<why this is not a problem>",
      "confidence_override": <float 0.0-1.0>
    }
  ],
  "summary": {
    "total_valid_issues": <integer>,
    "recommended_focus": "<one sentence>"
  }
}"""

COACHING_ADVICE_SYSTEM_PROMPT = """You are a personalized speech coach with a {coaching_style} approach. Create an individualized coaching plan from the user's progress and patterns.

Build on existing strengths, set specific measurable goals, and do not overwhelm the user.
When current session patterns are provided, refer to those specific moments instead of overall scores.

Return ONLY a valid JSON object with this exact shape, no markdown, no explanation, no extra text:

{{
  "focus_areas": [
    {{ "skill": "<skill>", "current_level": "<level>", "target_improvement": "<measurable target>", "timeline": "<e.g. 2 weeks>" }}
  ],
  "weekly_goals": [
    {{ "goal": "<goal>", "strategies": ["<strategy>"], "measurement": "<how to measure>", "difficulty": "<one of: easy, medium, hard>" }}
  ],
  "practice_plan": [
    {{ "exercise": "<exercise>", "duration": "<minutes>", "frequency": "<how often>", "focus": "<focus>", "week": <integer> }}
  ],
  "progress_acknowledgment": {{
    "recent_improvements": ["<improvement>"],
    "next_milestone": "<milestone>"
  }},
  "motivation_message": "<one encouraging sentence>"
}}"""

SEGMENT_EVALUATION_SYSTEM_PROMPT = """You are a speech segment evaluator. Decide whether a segment is worth a detailed coaching analysis.

Score educational value, issue density, representativeness and coaching potential from 0.0 to 1.0.

Return ONLY a valid JSON object with this exact shape, no markdown, no explanation, no extra text:

{
  "evaluation": {
    "educational_value": <float 0.0-1.0>,
    "issue_density": <float 0.0-1.0>,
    "representativeness": <float 0.0-1.0>,
    "coaching_potential": <float 0.0-1.0>,
    "overall_score": <float 0.0-1.0>
  },
  "key_learning_opportunities": ["<opportunity>"],
  "recommended_for_ai_analysis": <true or false>,
  "analysis_focus_areas": ["<focus area>"],
  "segment_summary": "<one sentence>"
}"""

RELEVANCE_CHECK_SYSTEM_PROMPT = """You are evaluating whether a spoken response addresses the core intent of a prompt.

Be generous and lenient. Only flag responses that clearly miss the main point:
- Open-ended prompts allow broad answers.
- Creative interpretations are usually valid.
- Consider cultural and linguistic nuances.

{language_instruction}

Return ONLY a valid JSON object with this exact shape, no markdown, no explanation, no extra text:

{{
  "relevance_score": <float 0.0-1.0>,
  "feedback": "<brief explanation of what was missed, if anything>"
}}

Score guide: 0.9-1.0 fully addresses the prompt, 0.7-0.8 minor gaps, 0.5-0.6 misses key elements, 0.0-0.4 clearly off-topic."""

RELEVANCE_LANGUAGE_INSTRUCTIONS = {
    "pt": "The prompt and response are in Portuguese.",
    "es": "The prompt and response are in Spanish.",
}


def _messages(system: str, user: str) -> list[dict[str, str]]:
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def segment_evaluation_messages(
    candidate: Candidate,
    related_issues: list[Issue],
    total_duration_ms: int,
    user_level: str,
) -> list[dict[str, str]]:
    lines = [
        "Evaluate this speech segment for AI analysis potential:",
        "",
        f'Segment text:\n"{candidate.text}"',
        "",
        f"- Duration: {candidate.duration_ms / 1000:.1f} seconds",
        f"- Word count: {candidate.word_count}",
        f"- Time range: {candidate.start_ms / 1000:.1f}s - {candidate.end_ms / 1000:.1f}s",
    ]
    if candidate.quality_score is not None:
        lines.append(f"- Quality score: {candidate.quality_score}")
    if related_issues:
        lines += ["", "Related rule-based issues:"]
        lines += [f"- {issue.kind}: {issue.severity} severity" for issue in related_issues]
    lines += [
        "",
        f"Session: {total_duration_ms / 1000:.0f}s total, user level {user_level}",
    ]
    return _messages(SEGMENT_EVALUATION_SYSTEM_PROMPT, "\n".join(lines))


def speech_analysis_messages(
    candidate: Candidate,
    related_issues: list[Issue],
    language: str,
    speech_type: str,
    target_audience: str,
) -> list[dict[str, str]]:
    system = SPEECH_ANALYSIS_SYSTEM_PROMPT.format(language=language, target_audience=target_audience)
    lines = [
        "Analyze this speech segment:",
        "",
        f'Transcript:\n"{candidate.text}"',
        "",
        f"Duration: {candidate.duration_ms / 1000:.1f} seconds",
        f"Word Count: {candidate.word_count} words",
        f"Speech Type: {speech_type}",
        f"Target Audience: {target_audience}",
    ]
    if related_issues:
        lines += ["", "Pre-detected Issues (for context):"]
        lines += [f"- {issue.kind}: {issue.text} (severity: {issue.severity})" for issue in related_issues]
    return _messages(system, "\n".join(lines))


def issue_classification_messages(
    issues: list[Issue],
    user_level: str,
    session_count: int,
    previous_issues: list[str] | None = None,
) -> list[dict[str, str]]:
    lines = ["Please validate and classify these detected speech issues:", ""]
    for idx, issue in enumerate(issues, start=1):
        lines += [
            f"Issue {idx}:",
            f"- Type: {issue.kind}",
            f'- Detected text: "{issue.text}"',
            f"- Current severity: {issue.severity}",
            f"- Detection rationale: {issue.rationale}",
            f"- Time range: {issue.start_ms / 1000:.1f}s - {issue.end_ms / 1000:.1f}s",
            "",
        ]
    lines.append(f"User Experience Level: {user_level}")
    lines.append(f"Session Count: {session_count} sessions completed")
    if previous_issues:
        lines.append(f"Recurring Issues: {', '.join(previous_issues)}")
    return _messages(ISSUE_CLASSIFICATION_SYSTEM_PROMPT, "\n".join(lines))


def coaching_advice_messages(
    user_profile: dict[str, Any],
    issue_trends: dict[str, dict[str, Any]],
    standout_patterns: list[str],
    micro_opportunities: list[dict[str, str]],
    coaching_style: str = "supportive",
) -> list[dict[str, str]]:
    system = COACHING_ADVICE_SYSTEM_PROMPT.format(coaching_style=coaching_style)
    lines = [
        "Create personalized coaching advice for this user:",
        "",
        "User profile:",
        f"- Total sessions: {user_profile.get('session_count', 0)}",
        f"- Experience level: {user_profile.get('level', 'beginner')}",
        f"- Primary goals: {', '.join(user_profile.get('goals', []))}",
        f"- Preferred practice time: {user_profile.get('practice_time', '10-15 minutes')}",
    ]
    if issue_trends:
        lines += ["", "Issues this session:"]
        lines += [f"- {kind}: {data['count']} occurrences" for kind, data in issue_trends.items()]
    if standout_patterns:
        lines += ["", "Standout patterns:"]
        lines += [f"- {pattern}" for pattern in standout_patterns]
    if micro_opportunities:
        lines += ["", "Micro-opportunities (strengths to acknowledge):"]
        for opportunity in micro_opportunities:
            lines.append(f"- {opportunity['type']}: {opportunity.get('insight') or opportunity.get('pattern')}")
            lines.append(f"  Suggestion: {opportunity['suggestion']}")
    return _messages(system, "\n".join(lines))


def relevance_check_messages(prompt_text: str, transcript_text: str, language: str = "en") -> list[dict[str, str]]:
    instruction = RELEVANCE_LANGUAGE_INSTRUCTIONS.get(
        language.split("-")[0], "The prompt and response are in English."
    )
    system = RELEVANCE_CHECK_SYSTEM_PROMPT.format(language_instruction=instruction)
    user = (
        f'Prompt: "{prompt_text}"\n\n'
        f'Response: "{transcript_text}"\n\n'
        "Does this response address the prompt's core intent? Provide your evaluation as JSON."
    )
    return _messages(system, user)
