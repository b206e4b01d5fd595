from __future__ import annotations

import os

OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:8b")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_TIMEOUT_SECONDS = float(os.getenv("OLLAMA_TIMEOUT_SECONDS", "60"))

AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.3"))
AI_MAX_SEGMENTS = int(os.getenv("AI_MAX_SEGMENTS", "5"))
AI_CONFIDENCE_THRESHOLD = float(os.getenv("AI_CONFIDENCE_THRESHOLD", "0.7"))
AI_MAX_WORKERS = int(os.getenv("AI_MAX_WORKERS", "4"))
AI_CACHE_TTL_SECONDS = int(os.getenv("AI_CACHE_TTL_SECONDS", str(6 * 60 * 60)))
RELEVANCE_THRESHOLD = float(os.getenv("RELEVANCE_THRESHOLD", "0.6"))

CACHE_PATH = os.getenv("SPEAKCOACH_CACHE_PATH", "")  # empty = in-memory cache
CACHE_TIMEOUT_SECONDS = float(os.getenv("CACHE_TIMEOUT_SECONDS", "5"))

ANALYSIS_VERSION = os.getenv("ANALYSIS_VERSION", "1.0")
LOG_LEVEL = os.getenv("SPEAKCOACH_LOG_LEVEL", "INFO")
