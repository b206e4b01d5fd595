from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

import ollama

from .config import AI_TEMPERATURE, OLLAMA_HOST, OLLAMA_MODEL, OLLAMA_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_INSTRUCTION = (
    "Your previous response was not valid JSON. "
    "Return ONLY the JSON object. "
    "No markdown fences, no <think> blocks, no explanation."
)


class ChatClient(Protocol):
    def chat_completion(self, messages: list[dict[str, str]], temperature: float = AI_TEMPERATURE) -> dict[str, Any]: ...


@dataclass(frozen=True)
class AiOk(Generic[T]):
    value: T


@dataclass(frozen=True)
class AiError:
    message: str


AiResult = AiOk | AiError


def _strip_and_parse(raw: str) -> dict | None:
    """Strip qwen3 <think> blocks + markdown fences, then parse JSON."""
    text = re.sub(r"<think>.*?</think>", "", raw or "", flags=re.DOTALL).strip()

    text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"```\s*$", "", text, flags=re.MULTILINE).strip()

    # Extract the first {...} block in case there's surrounding text
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        text = match.group(0)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class OllamaClient:
    """
    Chat client for a local Ollama server.

    chat_completion never hides transport errors (connection refused,
    timeouts); it only absorbs malformed model output by returning
    parsed_content=None after one stricter retry.
    """

    def __init__(
        self,
        model: str = OLLAMA_MODEL,
        host: str = OLLAMA_HOST,
        timeout: float = OLLAMA_TIMEOUT_SECONDS,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.client = client or ollama.Client(host=host, timeout=timeout)

    def _chat(self, messages: list[dict[str, str]], temperature: float) -> tuple[str, dict[str, int]]:
        response = self.client.chat(
            model=self.model,
            messages=messages,
            format="json",
            options={"temperature": temperature},
            think=False,
        )
        usage = {
            "prompt_tokens": response.get("prompt_eval_count") or 0,
            "completion_tokens": response.get("eval_count") or 0,
        }
        return response["message"]["content"], usage

    def chat_completion(self, messages: list[dict[str, str]], temperature: float = AI_TEMPERATURE) -> dict[str, Any]:
        raw, usage = self._chat(messages, temperature)
        data = _strip_and_parse(raw)
        if data is not None:
            return {"parsed_content": data, "usage": usage}

        logger.warning("LLM returned invalid JSON on first attempt, retrying...")
        retry_messages = messages + [{"role": "user", "content": RETRY_INSTRUCTION}]
        raw, retry_usage = self._chat(retry_messages, temperature)
        usage = {key: usage[key] + retry_usage[key] for key in usage}
        data = _strip_and_parse(raw)
        if data is None:
            logger.error("LLM returned invalid JSON on retry")
        return {"parsed_content": data, "usage": usage}


def request_json(
    client: ChatClient,
    messages: list[dict[str, str]],
    temperature: float = AI_TEMPERATURE,
    validate: Callable[[dict[str, Any]], bool] | None = None,
) -> AiResult:
    """Call the client and turn every failure mode into an AiError value."""
    try:
        response = client.chat_completion(messages, temperature=temperature)
    except Exception as exc:
        logger.error("AI request failed: %s", exc)
        return AiError(f"request failed: {exc}")

    content = (response or {}).get("parsed_content")
    if not isinstance(content, dict):
        return AiError("response did not contain a JSON object")
    if validate is not None and not validate(content):
        return AiError("response JSON is missing required fields")
    return AiOk(content)
