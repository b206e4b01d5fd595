import json
import random

import pytest

from speakcoach.cache import MemoryCache
from speakcoach.models import Transcript, Word
from speakcoach.rulepacks import RulePackRepository


def make_words(texts, start=0, word_ms=300, gap_ms=100):
    """Evenly spaced words: each lasts word_ms and is followed by gap_ms of silence."""
    words = []
    t = start
    for text in texts:
        words.append(Word(text=text, start_ms=t, end_ms=t + word_ms))
        t += word_ms + gap_ms
    return words


def make_transcript(text, **kwargs):
    words = make_words(text.split(), **kwargs)
    return Transcript(text=text, words=words)


class FakeChatClient:
    """
    Stands in for OllamaClient. Picks a canned response by the system prompt
    it receives and records every call.
    """

    def __init__(self, evaluation=None, analysis=None, classification=None, coaching=None, relevance=None):
        self.responses = {
            "segment evaluator": evaluation
            if evaluation is not None
            else {"evaluation": {"overall_score": 0.8}, "recommended_for_ai_analysis": True},
            "speech coach specializing": analysis
            if analysis is not None
            else {
                "overall_assessment": {"clarity_score": 70, "overall_score": 72},
                "strengths": ["Clear opening"],
                "improvement_areas": [],
                "coaching_insights": ["Slow down at transitions"],
            },
            "speech pattern classifier": classification
            if classification is not None
            else {"validated_issues": [], "false_positives": []},
            "personalized speech coach": coaching
            if coaching is not None
            else {"focus_areas": [{"skill": "filler_word"}], "motivation_message": "Nice work"},
            "evaluating whether a spoken response": relevance
            if relevance is not None
            else {"relevance_score": 0.9, "feedback": "Addresses the prompt"},
        }
        self.calls = []

    def kind_of(self, messages):
        system = messages[0]["content"]
        for marker in self.responses:
            if marker in system:
                return marker
        raise AssertionError(f"unexpected prompt: {system[:60]}")

    def chat_completion(self, messages, temperature=0.3):
        kind = self.kind_of(messages)
        self.calls.append(kind)
        # round-trip through JSON so callers never share our dicts
        return {"parsed_content": json.loads(json.dumps(self.responses[kind])), "usage": {}}


class FailingChatClient:
    def __init__(self):
        self.calls = []

    def chat_completion(self, messages, temperature=0.3):
        self.calls.append(messages[0]["content"][:40])
        raise ConnectionError("ollama is not running")


@pytest.fixture
def repository():
    return RulePackRepository()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def filler_transcript():
    text = "so um I think we should um basically start the project and uh like I said like we need a plan"
    return make_transcript(text)
