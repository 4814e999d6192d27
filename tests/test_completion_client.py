"""Tests for the completion client's retry and error classification."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from completion_client import (
    CompletionError,
    CompletionService,
    TerminalCompletionError,
    TransientCompletionError,
    classify_error,
)

URL = "https://api.openai.com/v1/chat/completions"


def _response(status):
    return httpx.Response(status, request=httpx.Request("POST", URL))


def rate_limited(code=None):
    body = {"code": code} if code else None
    return openai.RateLimitError("Rate limit reached", response=_response(429), body=body)


class FakeCompletions:
    """Plays back a list of outcomes: strings are replies, exceptions are raised."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        message = SimpleNamespace(content=outcome)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _service(outcomes):
    completions = FakeCompletions(outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    sleeps = []
    return CompletionService(client=client, sleep=sleeps.append), completions, sleeps


class TestComplete:
    """Test request building and retries."""

    def test_success(self):
        service, completions, sleeps = _service(['{"scenes": []}'])

        assert service.complete("prompt", system="system") == '{"scenes": []}'
        assert sleeps == []
        call = completions.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "prompt"},
        ]
        assert call["max_tokens"] == 4000

    def test_no_system_message(self):
        service, completions, _ = _service(["ok"])

        service.complete("prompt")

        assert completions.calls[0]["messages"] == [{"role": "user", "content": "prompt"}]

    def test_rate_limit_retried_with_backoff(self):
        service, completions, sleeps = _service([rate_limited(), rate_limited(), "ok"])

        assert service.complete("prompt") == "ok"
        assert sleeps == [2, 4]
        assert len(completions.calls) == 3

    def test_empty_reply_retried(self):
        service, _, sleeps = _service(["   ", "ok"])

        assert service.complete("prompt") == "ok"
        assert sleeps == [2]

    def test_retries_exhausted(self):
        errors = [openai.APIConnectionError(request=httpx.Request("POST", URL)) for _ in range(3)]
        service, completions, sleeps = _service(errors)

        with pytest.raises(CompletionError) as exc_info:
            service.complete("prompt", max_retries=3)

        assert not isinstance(exc_info.value, TerminalCompletionError)
        assert len(completions.calls) == 3
        assert sleeps == [2, 4]

    def test_quota_exhaustion_is_terminal(self):
        service, completions, sleeps = _service([rate_limited("insufficient_quota"), "never reached"])

        with pytest.raises(TerminalCompletionError):
            service.complete("prompt")

        assert len(completions.calls) == 1
        assert sleeps == []

    def test_bad_key_is_terminal(self):
        error = openai.AuthenticationError("Incorrect API key", response=_response(401), body=None)
        service, completions, _ = _service([error])

        with pytest.raises(TerminalCompletionError):
            service.complete("prompt")

        assert len(completions.calls) == 1


class TestClassifyError:
    """Test the transient/terminal taxonomy."""

    def test_server_error_transient(self):
        error = openai.InternalServerError("boom", response=_response(500), body=None)

        assert isinstance(classify_error(error), TransientCompletionError)

    def test_timeout_transient(self):
        error = openai.APITimeoutError(request=httpx.Request("POST", URL))

        assert isinstance(classify_error(error), TransientCompletionError)

    def test_credit_balance_terminal(self):
        error = openai.BadRequestError("Your credit balance is too low", response=_response(400), body=None)

        assert isinstance(classify_error(error), TerminalCompletionError)

    def test_permission_denied_terminal(self):
        error = openai.PermissionDeniedError("forbidden", response=_response(403), body=None)

        assert isinstance(classify_error(error), TerminalCompletionError)

    def test_plain_rate_limit_transient(self):
        assert isinstance(classify_error(rate_limited()), TransientCompletionError)
