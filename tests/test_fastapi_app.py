"""
Tests for the HTTP surface, with the pipeline swapped for fake oracles.
"""

import pytest
from fastapi.testclient import TestClient

from answering.answer_pipeline import GroundedAnswerPipeline
from deployment.circuit_breaker import get_generation_breaker
from deployment.fastapi_app import app, get_pipeline
from shared.errors import CircuitOpenError, GenerationError

from tests.conftest import FakeGenerator, FakeTokenCounter

MODEL = "gemini-2.0-flash"


def _fail():
    raise RuntimeError("down")


@pytest.fixture
def counter():
    return FakeTokenCounter()


@pytest.fixture
def make_client(counter, selection_config):
    def factory(replies=('{"answer": "20 days", "citations": [{"chunk_id": "c1", "score": 0.9}]}',)):
        generator = FakeGenerator(replies)
        pipeline = GroundedAnswerPipeline(
            counter, generator, selection_config, default_model=MODEL
        )
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


CHUNKS = [
    {"id": "c1", "text": "Employees get 20 days of paid leave.", "source": "hr", "score": 0.9},
    {"id": "c2", "text": "Leave requests go through the portal.", "source": "hr", "score": 0.7},
]


class TestHealth:
    def test_healthy(self, make_client):
        response = make_client().get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["breakers"]["countTokens"]["state"] == "closed"
        assert body["breakers"]["generateContent"]["state"] == "closed"
        assert body["breakers"]["countTokens"]["failures"] == 0

    def test_degraded_when_a_breaker_is_open(self, make_client):
        breaker = get_generation_breaker()
        for _ in range(breaker.failure_threshold):
            with pytest.raises(RuntimeError):
                breaker.call(_fail)

        body = make_client().get("/health").json()

        assert body["status"] == "degraded"
        assert body["breakers"]["generateContent"]["state"] == "open"
        assert body["breakers"]["generateContent"]["failures"] == breaker.failure_threshold


class TestAnswerEndpoint:
    def test_answer(self, make_client):
        response = make_client().post(
            "/answer", json={"question": "How much leave?", "context_chunks": CHUNKS, "model": MODEL}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "20 days"
        assert body["citations"][0]["chunk_id"] == "c1"
        assert body["selected_chunk_ids"] == ["c1", "c2"]
        assert body["responseId"] == "resp-1"
        assert body["usage"]["totalTokenCount"] == 150
        assert body["metrics"]["action"] == "gen_answer_with_context"
        assert {"key": "chunks_selected", "value": "2"} in body["metrics_kv"]
        assert "X-Request-ID" in response.headers

    def test_chunk_ids_default_to_position(self, make_client):
        response = make_client().post(
            "/answer", json={"question": "q", "context_chunks": [{"text": "only text"}]}
        )
        assert response.json()["selected_chunk_ids"] == ["chunk-1"]

    def test_salience_only(self, make_client, counter):
        response = make_client().post(
            "/answer", json={"question": "What needs approval?", "salience_text": "Approve the budget"}
        )

        assert response.status_code == 200
        assert response.json()["selected_chunk_ids"] == ["salience"]
        assert counter.calls == 0

    def test_no_context_is_rejected(self, make_client):
        response = make_client().post("/answer", json={"question": "q", "context_chunks": []})

        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request"

    def test_unknown_strategy_is_rejected(self, make_client):
        response = make_client().post(
            "/answer", json={"question": "q", "context_chunks": CHUNKS, "trim_strategy": "nope"}
        )
        assert response.status_code == 422

    def test_generation_failure(self, make_client):
        response = make_client(replies=[GenerationError("HTTP 500")]).post(
            "/answer", json={"question": "q", "context_chunks": CHUNKS}
        )
        assert response.status_code == 502

    def test_open_circuit(self, make_client):
        response = make_client(replies=[CircuitOpenError("open")]).post(
            "/answer", json={"question": "q", "context_chunks": CHUNKS}
        )
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"


class TestContextEndpoint:
    def test_select(self, make_client):
        response = make_client().post(
            "/context/select",
            json={"question": "q", "context_chunks": CHUNKS, "max_chunks": 1},
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["id"] for c in body["selected"]] == ["c1"]
        assert body["context"].startswith("[c1] source=hr score=0.9\n")
        assert body["budget_tokens"] == 2488
        assert body["count_tokens_calls"] == 1
        assert body["used_pinned_fallback"] is False

    def test_budget_override(self, make_client):
        response = make_client().post(
            "/context/select",
            json={
                "question": "q",
                "context_chunks": CHUNKS,
                "max_prompt_tokens": 100,
                "reserve_output_tokens": 5000,
            },
        )
        assert response.json()["budget_tokens"] == 400
