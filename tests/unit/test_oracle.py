"""
Unit Tests for OpenAIOracle retry and timeout handling
"""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, OpenAIError

from agentic_tutor_pipeline.errors import OracleError
from agentic_tutor_pipeline.oracle import OpenAIOracle


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeCompletions:
    """Replays scripted outcomes for chat.completions.create."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "SLOW":
            await asyncio.sleep(1)
            return completion("too late")
        return completion(outcome)


def make_oracle(outcomes, **kwargs):
    completions = FakeCompletions(outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    params = {"model": "gpt-4o-mini", "max_retries": 2, "backoff_seconds": 0, "timeout": 0.5}
    params.update(kwargs)
    return OpenAIOracle(client=client, **params), completions


class TestOpenAIOracle:

    def test_requires_client_or_key(self):
        with pytest.raises(ValueError):
            OpenAIOracle(api_key=None)

    @pytest.mark.asyncio
    async def test_passes_generation_parameters(self):
        oracle, completions = make_oracle(["Some text"])
        text = await oracle.complete("Explain osmosis", temperature=0.7, max_tokens=2048)

        assert text == "Some text"
        call = completions.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 2048
        assert call["messages"][-1] == {"role": "user", "content": "Explain osmosis"}

    @pytest.mark.asyncio
    async def test_retries_empty_completion(self):
        oracle, completions = make_oracle(["", "   ", "Finally"])
        assert await oracle.complete("p", temperature=0.3, max_tokens=10) == "Finally"
        assert len(completions.calls) == 3

    @pytest.mark.asyncio
    async def test_retries_connection_error(self):
        error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        oracle, completions = make_oracle([error, "Recovered"])
        assert await oracle.complete("p", temperature=0.3, max_tokens=10) == "Recovered"
        assert len(completions.calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_then_success(self):
        oracle, completions = make_oracle(["SLOW", "Quick"], timeout=0.05)
        assert await oracle.complete("p", temperature=0.3, max_tokens=10) == "Quick"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        oracle, completions = make_oracle(["", "", "", "never reached"])
        with pytest.raises(OracleError):
            await oracle.complete("p", temperature=0.3, max_tokens=10)
        assert len(completions.calls) == 3

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self):
        oracle, completions = make_oracle([OpenAIError("invalid api key"), "unused"])
        with pytest.raises(OracleError):
            await oracle.complete("p", temperature=0.3, max_tokens=10)
        assert len(completions.calls) == 1
