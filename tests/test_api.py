"""Tests for the HTTP API."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from orchestrator.application.api.api_server import create_app
from orchestrator.application.services import Services
from orchestrator.infrastructure.config import Settings
from orchestrator.infrastructure.store import InMemoryStore
from tests.fakes import KeywordEmbeddingProvider


@pytest.fixture
def settings():
    return Settings(OPENAI_API_KEY=None, POLL_INTERVAL_MS=10, EMBEDDING_DELAY_MS=0, PREVIEW_TIMEOUT_S=5.0)


@pytest.fixture
def services(settings):
    store = InMemoryStore()
    return Services(settings, store, store)


@pytest.fixture
def client(services):
    """Client without background workers; tests drive the projector."""
    return TestClient(create_app(services, start_background=False))


def _post(client, type, payload=None, project_id="proj-1"):
    response = client.post("/api/events", json={
        "project_id": project_id,
        "type": type,
        "actor_id": "user-1",
        "payload": payload or {},
    })
    assert response.status_code == 201, response.text
    return response.json()


def _seed(client, services):
    _post(client, "project.created", {"name": "Orchestrator"})
    _post(client, "block.created", {"id": "b1", "title": "Auth flow", "priority": "high"})
    _post(client, "context.captured", {"id": "c1", "type": "decision", "content": "Use JWT", "block_id": "b1"})
    asyncio.run(services.projector.process_batch())


class TestEvents:

    def test_append_event(self, client):
        body = _post(client, "block.created", {"id": "b1", "title": "Auth"})

        assert body["success"] is True
        assert body["event"]["type"] == "block.created"
        assert body["event_id"] == body["event"]["id"]

    def test_unknown_type_is_bad_request(self, client):
        response = client.post("/api/events", json={"project_id": "proj-1", "type": "block.teleported"})

        assert response.status_code == 400
        assert response.json()["event_type"] == "block.teleported"

    def test_malformed_payload_is_bad_request(self, client):
        response = client.post("/api/events", json={
            "project_id": "proj-1", "type": "block.moved", "payload": {"id": "b1", "lane": "sideways"}
        })

        assert response.status_code == 400

    def test_missing_project_is_unprocessable(self, client):
        response = client.post("/api/events", json={"project_id": "", "type": "block.created"})

        assert response.status_code == 422

    def test_list_events_newest_first(self, client):
        first = _post(client, "project.created", {"name": "P"})
        second = _post(client, "block.created", {"id": "b1"})

        response = client.get("/api/projects/proj-1/events")

        assert response.status_code == 200
        assert [e["id"] for e in response.json()["events"]] == [second["event_id"], first["event_id"]]


class TestProjects:

    def test_context_preview(self, client, services):
        _seed(client, services)

        response = client.get("/api/projects/proj-1/context-preview", params={"max_tokens": 2000, "query": "jwt"})

        assert response.status_code == 200
        body = response.json()
        assert body["project_id"] == "proj-1"
        assert body["total_items"] == 2
        assert {i["id"] for i in body["preview"]} == {"b1", "c1"}
        assert body["summary"].startswith("Project: Orchestrator")

    def test_context_preview_include_flags(self, client, services):
        _seed(client, services)

        response = client.get("/api/projects/proj-1/context-preview", params={"include_context": "false"})

        assert [i["id"] for i in response.json()["preview"]] == ["b1"]

    def test_unknown_project_is_not_found(self, client):
        response = client.get("/api/projects/missing/context-preview")

        assert response.status_code == 404

    def test_invalid_budget_is_unprocessable(self, client, services):
        _seed(client, services)

        assert client.get("/api/projects/proj-1/context-preview", params={"max_tokens": 0}).status_code == 422

    def test_slow_preview_times_out(self, client, services, monkeypatch):
        services.settings.PREVIEW_TIMEOUT_S = 0.05

        async def slow_preview(project_id, options):
            await asyncio.sleep(1)

        monkeypatch.setattr(services.context, "build_preview", slow_preview)

        assert client.get("/api/projects/proj-1/context-preview").status_code == 504

    def test_blocks_and_graph(self, client, services):
        _seed(client, services)

        blocks = client.get("/api/projects/proj-1/blocks").json()["blocks"]
        graph = client.get("/api/projects/proj-1/graph").json()

        assert [b["id"] for b in blocks] == ["b1"]
        assert graph["links"][0]["context_id"] == "c1"
        assert graph["links"][0]["block_id"] == "b1"

    def test_search_falls_back_to_keywords(self, client, services):
        _seed(client, services)

        response = client.get("/api/projects/proj-1/search", params={"q": "auth flow"})

        assert response.status_code == 200
        hits = response.json()
        assert [h["id"] for h in hits] == ["b1"]
        assert hits[0]["similarity"] == 0.5


class TestEmbeddings:

    def test_process_without_provider_is_skipped(self, client):
        response = client.post("/api/embeddings/process")

        assert response.status_code == 200
        assert response.json() == {"processed": 0, "errors": 0, "skipped": 1}

    def test_process_with_provider(self, settings):
        store = InMemoryStore()
        services = Services(settings, store, store, embedding_provider=KeywordEmbeddingProvider())
        client = TestClient(create_app(services, start_background=False))
        _seed(client, services)

        response = client.post("/api/embeddings/process", params={"project_id": "proj-1"})

        assert response.json()["processed"] == 2
        health = client.get("/api/embeddings/health").json()
        assert health["provider_configured"] is True
        assert health["pending_embeddings"] == 0


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["store"] is True
        assert body["projector_running"] is False
        assert body["embeddings"]["provider_configured"] is False
        assert set(body["metrics"]) == {"counters", "gauges", "latencies"}

    def test_background_projector_runs_with_app(self, services):
        with TestClient(create_app(services)) as client:
            _post(client, "project.created", {"name": "Live"})
            _post(client, "block.created", {"id": "b1", "title": "Live block"})

            blocks = []
            for _ in range(200):
                blocks = client.get("/api/projects/proj-1/blocks").json()["blocks"]
                if blocks:
                    break
                time.sleep(0.01)

            assert client.get("/health").json()["projector_running"] is True

        assert [b["id"] for b in blocks] == ["b1"]
        assert not services.projector.is_running
