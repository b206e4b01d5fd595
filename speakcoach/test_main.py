import json

from speakcoach import __main__ as cli
from speakcoach.conftest import FailingChatClient, FakeChatClient

TRANSCRIPT = {
    "text": "um hello everyone um today I want to talk about basically our plan",
    "words": [
        {"word": word, "start": i * 0.4, "end": i * 0.4 + 0.3}
        for i, word in enumerate("um hello everyone um today I want to talk about basically our plan".split())
    ],
}


def test_cli_writes_results(tmp_path, monkeypatch):
    source = tmp_path / "talk.json"
    source.write_text(json.dumps(TRANSCRIPT), encoding="utf-8")
    output = tmp_path / "result.json"
    monkeypatch.setattr(cli, "OllamaClient", lambda **kwargs: FailingChatClient())

    code = cli.main([str(source), "--speech-type", "interview", "--cache", "", "--output", str(output)])

    assert code == 0
    results = json.loads(output.read_text(encoding="utf-8"))
    assert results["transcript"] == TRANSCRIPT["text"]
    assert results["fallback_mode"] is True
    assert any(issue["kind"] == "filler_word" for issue in results["issues"])


def test_cli_reports_failure(tmp_path, monkeypatch):
    source = tmp_path / "talk.json"
    source.write_text(json.dumps(TRANSCRIPT), encoding="utf-8")
    monkeypatch.setattr(cli, "OllamaClient", lambda **kwargs: FailingChatClient())

    assert cli.main([str(source), "--language", "xx", "--cache", ""]) == 1


def test_cli_reports_off_topic_response(tmp_path, monkeypatch):
    source = tmp_path / "talk.json"
    source.write_text(json.dumps(TRANSCRIPT), encoding="utf-8")
    output = tmp_path / "result.json"
    client = FakeChatClient(relevance={"relevance_score": 0.1, "feedback": "Unrelated answer"})
    monkeypatch.setattr(cli, "OllamaClient", lambda **kwargs: client)

    code = cli.main([str(source), "--prompt", "Why do you want this job?", "--cache", "", "--output", str(output)])

    assert code == 2
    assert json.loads(output.read_text(encoding="utf-8"))["relevance"]["feedback"] == "Unrelated answer"
