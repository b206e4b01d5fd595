from .achievements import AchievementDetector
from .ai_refiner import AiRefiner
from .cache import MemoryCache, SqliteCache
from .candidates import CandidateBuilder
from .job_runner import run_analysis_job
from .llm import AiError, AiOk, OllamaClient
from .metrics import Metrics, MetricsError
from .micro_tips import MicroTipGenerator
from .models import Issue, MetricsResult, SessionContext, SessionRecord, Transcript, Word
from .recommender import PriorityRecommender
from .relevance import check_relevance
from .rule_detector import DetectionError, RuleDetector
from .rulepacks import RuleLoadError, RulePackRepository

__all__ = [
    "AchievementDetector",
    "AiError",
    "AiOk",
    "AiRefiner",
    "CandidateBuilder",
    "DetectionError",
    "Issue",
    "MemoryCache",
    "Metrics",
    "MetricsError",
    "MetricsResult",
    "MicroTipGenerator",
    "OllamaClient",
    "PriorityRecommender",
    "RuleDetector",
    "RuleLoadError",
    "RulePackRepository",
    "SessionContext",
    "SessionRecord",
    "SqliteCache",
    "Transcript",
    "Word",
    "check_relevance",
    "run_analysis_job",
]
