from types import SimpleNamespace

import httpx
import openai
import pytest

from topic_timeline.errors import CompletionError, UpstreamAuthError
from topic_timeline.openai_client import CompletionClient
from topic_timeline.schemas import PresentDataShape

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class FakeCompletions:
    def __init__(self, content="{}", finish_reason="stop", error=None):
        self.content = content
        self.finish_reason = finish_reason
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=self.finish_reason)])


def client_with(completions: FakeCompletions) -> CompletionClient:
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return CompletionClient("sk-test", "gpt-4o-mini", sdk=sdk)


MESSAGES = [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]


def test_plain_call_returns_stripped_text():
    fc = FakeCompletions(content="  Price (USD)\n")
    assert client_with(fc).complete(MESSAGES, temperature=0.3, max_tokens=20) == "Price (USD)"
    assert fc.kwargs["model"] == "gpt-4o-mini"
    assert fc.kwargs["max_tokens"] == 20
    assert "response_format" not in fc.kwargs


def test_shape_is_sent_as_json_schema_and_model_can_be_overridden():
    fc = FakeCompletions(content='{"value": 1}')
    client_with(fc).complete(MESSAGES, shape=PresentDataShape, model="gpt-4o")
    assert fc.kwargs["model"] == "gpt-4o"
    rf = fc.kwargs["response_format"]
    assert rf["type"] == "json_schema"
    assert rf["json_schema"]["name"] == "PresentDataShape"
    assert "value" in rf["json_schema"]["schema"]["properties"]


def test_empty_reply_is_a_completion_error():
    with pytest.raises(CompletionError):
        client_with(FakeCompletions(content="   ")).complete(MESSAGES)
    with pytest.raises(CompletionError):
        client_with(FakeCompletions(content=None)).complete(MESSAGES)


def test_transport_errors_become_completion_errors():
    with pytest.raises(CompletionError) as exc:
        client_with(FakeCompletions(error=openai.APIConnectionError(request=REQUEST))).complete(MESSAGES)
    assert not isinstance(exc.value, UpstreamAuthError)

    with pytest.raises(CompletionError):
        client_with(FakeCompletions(error=openai.APITimeoutError(request=REQUEST))).complete(MESSAGES)


def test_auth_errors_are_upstream_auth_errors():
    response = httpx.Response(401, request=REQUEST)
    err = openai.AuthenticationError("invalid api key", response=response, body=None)
    with pytest.raises(UpstreamAuthError):
        client_with(FakeCompletions(error=err)).complete(MESSAGES)


def test_truncated_reply_is_still_returned():
    fc = FakeCompletions(content='{"value": 1', finish_reason="length")
    assert client_with(fc).complete(MESSAGES) == '{"value": 1'
