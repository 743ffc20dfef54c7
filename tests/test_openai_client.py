"""
Tests for the OpenAI generator and the tiktoken counter, with fake clients.
"""

from types import SimpleNamespace

import pytest

from deployment.circuit_breaker import CircuitBreaker, CircuitOpenError
from generation.base import GenerationConfig, GenerationRequest, TokenCountRequest
from generation.openai_client import OpenAIGenerator, TiktokenCounter
from shared.config import OpenAIConfig
from shared.errors import GenerationError, TokenCountError


class FakeCompletions:
    def __init__(self, content='{"answer": "x"}', error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            id="chatcmpl-1",
            model=kwargs["model"],
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=11, completion_tokens=4, total_tokens=15),
        )


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def request(**config):
    return GenerationRequest(
        contents="Question:\nq\n\nContext:\n[a]\ntext",
        system_instruction="Answer from context.",
        model="gpt-4o-mini",
        generation_config=GenerationConfig(**config),
    )


class TestOpenAIGenerator:
    def test_generate_json(self):
        completions = FakeCompletions()
        generator = OpenAIGenerator(
            OpenAIConfig(api_key="k"), client=fake_client(completions), breaker=CircuitBreaker(name="g")
        )

        response = generator.generate(request(response_schema={"type": "object"}, max_output_tokens=300))

        assert response.text == '{"answer": "x"}'
        assert response.response_id == "chatcmpl-1"
        assert response.usage.prompt_token_count == 11
        assert response.usage.candidates_token_count == 4

        kwargs = completions.calls[0]
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 300
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][0]["content"].startswith("Answer from context.")
        assert "JSON" in kwargs["messages"][0]["content"]
        assert kwargs["messages"][1] == {"role": "user", "content": "Question:\nq\n\nContext:\n[a]\ntext"}

    def test_plain_text_mode(self):
        completions = FakeCompletions(content="plain")
        generator = OpenAIGenerator(client=fake_client(completions), breaker=CircuitBreaker(name="g"))

        response = generator.generate(request(response_mime_type="text/plain"))

        assert response.text == "plain"
        assert "response_format" not in completions.calls[0]
        assert completions.calls[0]["messages"][0]["content"] == "Answer from context."

    def test_null_content_is_empty_text(self):
        generator = OpenAIGenerator(
            client=fake_client(FakeCompletions(content=None)), breaker=CircuitBreaker(name="g")
        )
        assert generator.generate(request()).text == ""

    def test_client_errors_become_generation_errors(self):
        completions = FakeCompletions(error=RuntimeError("rate limited"))
        generator = OpenAIGenerator(client=fake_client(completions), breaker=CircuitBreaker(name="g"))

        with pytest.raises(GenerationError):
            generator.generate(request())

    def test_open_circuit_passes_through(self):
        breaker = CircuitBreaker(name="g", failure_threshold=1)
        completions = FakeCompletions(error=RuntimeError("down"))
        generator = OpenAIGenerator(client=fake_client(completions), breaker=breaker)

        with pytest.raises(GenerationError):
            generator.generate(request())
        with pytest.raises(CircuitOpenError):
            generator.generate(request())
        assert len(completions.calls) == 1


class FakeEncoding:
    def encode(self, text):
        return text.split()


class BrokenEncoding:
    def encode(self, text):
        raise ValueError("bad text")


class TestTiktokenCounter:
    def test_counts_messages_with_overhead(self):
        counter = TiktokenCounter(encoding=FakeEncoding())
        # system 2 + 4, user 3 + 4, reply primer 3
        assert counter.count_tokens(TokenCountRequest("c d e", "a b", "any-model")) == 16

    def test_empty_system_is_not_counted(self):
        counter = TiktokenCounter(encoding=FakeEncoding())
        assert counter.count_tokens(TokenCountRequest("c d e", "", "m")) == 10

    def test_more_context_costs_more(self):
        counter = TiktokenCounter(encoding=FakeEncoding())
        short = counter.count_tokens(TokenCountRequest("one", "s", "m"))
        longer = counter.count_tokens(TokenCountRequest("one two three", "s", "m"))
        assert longer > short

    def test_encoding_failure(self):
        counter = TiktokenCounter(encoding=BrokenEncoding())
        with pytest.raises(TokenCountError):
            counter.count_tokens(TokenCountRequest("x", "s", "m"))
