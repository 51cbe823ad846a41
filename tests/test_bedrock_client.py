import io
import json

import pytest

from nl_csvchat.bedrock.circuit import CircuitBreaker
from nl_csvchat.bedrock.client import BedrockClient, BedrockConfig
from nl_csvchat.data.session import Turn
from nl_csvchat.exceptions.errors import GenerationError

SHAPE = {"type": "object", "required": ["query"]}


class FakeRuntime:
    def __init__(self, *texts):
        self.texts = list(texts)
        self.requests = []

    def invoke_model(self, **kwargs):
        self.requests.append(json.loads(kwargs["body"].decode("utf-8")))
        text = self.texts.pop(0)
        if isinstance(text, Exception):
            raise text
        payload = {"content": [{"type": "text", "text": text}]}
        return {"body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


def _client(*texts, retries=1):
    runtime = FakeRuntime(*texts)
    cfg = BedrockConfig(region="us-east-1", chat_model_id="m", max_retries=retries)
    return BedrockClient(cfg, runtime=runtime), runtime


def test_plain_json_reply():
    client, _ = _client('{"query": "SELECT 1"}')
    assert client.generate_structured([Turn("user", "q")], SHAPE) == {"query": "SELECT 1"}


def test_fenced_json_with_prose_and_trailing_comma():
    client, _ = _client('Sure!\n```json\n{"query": "SELECT \\"a}\\"", "chartType": "line",}\n```\nDone.')
    assert client.generate_structured([Turn("user", "q")], SHAPE) == {"query": 'SELECT "a}"', "chartType": "line"}


def test_turns_are_mapped_to_messages_api():
    client, runtime = _client('{"query": "x"}')
    turns = [
        Turn("system", "schema text"),
        Turn("user", "first"),
        Turn("user", "second"),
        Turn("assistant", "SELECT 1"),
        Turn("user", "fix it"),
    ]
    client.generate_structured(turns, SHAPE)
    body = runtime.requests[0]
    assert body["system"] == "schema text"
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assert body["messages"][0]["content"] == "first\n\nsecond"
    assert body["messages"][-1]["content"].startswith("fix it")
    assert json.dumps(SHAPE) in body["messages"][-1]["content"]


def test_conversation_must_start_with_user():
    client, runtime = _client('{"query": "x"}')
    client.generate_structured([Turn("assistant", "hi")], SHAPE)
    roles = [m["role"] for m in runtime.requests[0]["messages"]]
    assert roles == ["user", "assistant", "user"]


@pytest.mark.parametrize("text", ["", "no json here", '{"query": ', '["a"]', '{"query": nope}'])
def test_unusable_reply_is_a_generation_error(text):
    client, _ = _client(text)
    with pytest.raises(GenerationError):
        client.generate_structured([Turn("user", "q")], SHAPE)


def test_transport_failure_after_retries(monkeypatch):
    monkeypatch.setattr("nl_csvchat.bedrock.client._sleep_backoff", lambda attempt: None)
    client, runtime = _client(RuntimeError("throttled"), RuntimeError("throttled"), retries=2)
    with pytest.raises(GenerationError):
        client.generate_structured([Turn("user", "q")], SHAPE)
    assert len(runtime.requests) == 2


def test_transport_failure_then_success(monkeypatch):
    monkeypatch.setattr("nl_csvchat.bedrock.client._sleep_backoff", lambda attempt: None)
    client, _ = _client(RuntimeError("throttled"), '{"query": "ok"}', retries=3)
    assert client.generate_structured([Turn("user", "q")], SHAPE) == {"query": "ok"}
    assert client.cb.failures == 0


def test_open_circuit_blocks_calls():
    client, runtime = _client('{"query": "x"}')
    client.cb = CircuitBreaker(threshold=1, reset_after=60.0, clock=lambda: 0.0)
    client.cb.record_failure()
    with pytest.raises(GenerationError, match="circuit"):
        client.generate_structured([Turn("user", "q")], SHAPE)
    assert runtime.requests == []


def test_circuit_breaker_half_opens_after_cool_down():
    now = [0.0]
    cb = CircuitBreaker(threshold=2, reset_after=10.0, clock=lambda: now[0])
    cb.record_failure()
    assert cb.allow()
    cb.record_failure()
    assert cb.is_open
    now[0] = 10.0
    assert cb.allow()
    cb.record_success()
    assert cb.failures == 0 and not cb.is_open
