from unittest.mock import MagicMock

import pytest

from speakcoach.llm import RETRY_INSTRUCTION, AiError, AiOk, OllamaClient, _strip_and_parse, request_json

MESSAGES = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]


def ollama_response(content, prompt_tokens=10, completion_tokens=5):
    return {"message": {"content": content}, "prompt_eval_count": prompt_tokens, "eval_count": completion_tokens}


@pytest.mark.parametrize(
    "raw",
    [
        '{"score": 3}',
        '<think>reasoning about {"score": 1}</think>{"score": 3}',
        '```json\n{"score": 3}\n```',
        'Here you go: {"score": 3} hope that helps',
    ],
)
def test_strip_and_parse(raw):
    assert _strip_and_parse(raw) == {"score": 3}


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", None])
def test_strip_and_parse_rejects_non_objects(raw):
    assert _strip_and_parse(raw) is None


def test_chat_completion_uses_json_mode():
    fake = MagicMock()
    fake.chat.return_value = ollama_response('{"ok": true}')
    client = OllamaClient(model="qwen3:8b", client=fake)

    result = client.chat_completion(MESSAGES, temperature=0.2)

    assert result == {"parsed_content": {"ok": True}, "usage": {"prompt_tokens": 10, "completion_tokens": 5}}
    kwargs = fake.chat.call_args.kwargs
    assert kwargs["model"] == "qwen3:8b"
    assert kwargs["format"] == "json"
    assert kwargs["options"] == {"temperature": 0.2}
    assert kwargs["think"] is False


def test_chat_completion_retries_once_on_bad_json():
    fake = MagicMock()
    fake.chat.side_effect = [ollama_response("sorry, no json"), ollama_response('{"ok": 1}')]
    client = OllamaClient(client=fake)

    result = client.chat_completion(MESSAGES)

    assert result["parsed_content"] == {"ok": 1}
    assert result["usage"] == {"prompt_tokens": 20, "completion_tokens": 10}
    retry_messages = fake.chat.call_args_list[1].kwargs["messages"]
    assert retry_messages[-1] == {"role": "user", "content": RETRY_INSTRUCTION}
    assert len(retry_messages) == len(MESSAGES) + 1


def test_chat_completion_gives_up_after_retry():
    fake = MagicMock()
    fake.chat.return_value = ollama_response("still not json")
    result = OllamaClient(client=fake).chat_completion(MESSAGES)
    assert result["parsed_content"] is None
    assert fake.chat.call_count == 2


def test_transport_errors_propagate():
    fake = MagicMock()
    fake.chat.side_effect = ConnectionError("refused")
    with pytest.raises(ConnectionError):
        OllamaClient(client=fake).chat_completion(MESSAGES)


def test_request_json_ok():
    client = MagicMock()
    client.chat_completion.return_value = {"parsed_content": {"overall_assessment": {}}, "usage": {}}
    result = request_json(client, MESSAGES, validate=lambda content: "overall_assessment" in content)
    assert result == AiOk({"overall_assessment": {}})


def test_request_json_turns_failures_into_errors():
    raising = MagicMock()
    raising.chat_completion.side_effect = TimeoutError("slow")
    assert isinstance(request_json(raising, MESSAGES), AiError)

    empty = MagicMock()
    empty.chat_completion.return_value = {"parsed_content": None}
    assert request_json(empty, MESSAGES) == AiError("response did not contain a JSON object")

    incomplete = MagicMock()
    incomplete.chat_completion.return_value = {"parsed_content": {"other": 1}}
    result = request_json(incomplete, MESSAGES, validate=lambda content: "overall_assessment" in content)
    assert result == AiError("response JSON is missing required fields")
