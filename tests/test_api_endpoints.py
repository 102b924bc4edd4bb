"""Tests for the HTTP API."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from agent_orchestrator.config import get_testing_config
from agent_orchestrator.factory import create_app


class FakeModelProvider:
    """Mock transport handler answering chat completions with an upper-cased prompt."""

    def __init__(self):
        self.payloads = []
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.payloads.append(payload)
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        prompt = payload["messages"][-1]["content"]
        return httpx.Response(200, json={
            "model": payload["model"],
            "choices": [{"message": {"role": "assistant", "content": prompt.upper()}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 5, "total_tokens": 10},
        })


@pytest.fixture
def provider():
    return FakeModelProvider()


@pytest.fixture
def client(provider):
    app = create_app(
        get_testing_config(),
        http_client=httpx.Client(transport=httpx.MockTransport(provider)),
    )
    with TestClient(app) as test_client:
        yield test_client


def create_agent(client, agent_id="writer", **overrides):
    payload = {"id": agent_id, "name": "Writer", "description": "Writes things."}
    payload.update(overrides)
    response = client.post("/api/v1/agents", json=payload)
    assert response.status_code == 201
    return response.json()


def create_workflow(client, nodes, edges=(), **overrides):
    payload = {"name": "Pipeline", "nodes": nodes, "edges": list(edges)}
    payload.update(overrides)
    response = client.post("/api/v1/workflows", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "is running" in response.json()["message"]

    def test_health_reports_components(self, client):
        create_agent(client)

        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["registered_agents"] == 1
        assert data["model_provider_configured"] is True
        assert data["engine"] == {"max_workers": 4, "active_runs": 0}


class TestWorkflowEndpoints:

    def test_create_and_get_workflow(self, client):
        created = create_workflow(
            client,
            nodes=[{"id": "a", "type": "prompt"}, {"id": "b", "type": "merge"}],
            edges=[{"source": "a", "target": "b"}],
        )

        assert created["status"] == "draft"
        assert created["edges"][0]["id"]

        response = client.get(f"/api/v1/workflows/{created['id']}")
        assert response.status_code == 200
        assert [node["id"] for node in response.json()["nodes"]] == ["a", "b"]

    def test_edge_to_unknown_node_is_rejected(self, client):
        response = client.post("/api/v1/workflows", json={
            "name": "Broken",
            "nodes": [{"id": "a", "type": "prompt"}],
            "edges": [{"source": "a", "target": "missing"}],
        })

        assert response.status_code == 422

    def test_duplicate_node_ids_are_rejected(self, client):
        response = client.post("/api/v1/workflows", json={
            "name": "Broken",
            "nodes": [{"id": "a", "type": "prompt"}, {"id": "a", "type": "merge"}],
        })

        assert response.status_code == 422

    def test_missing_workflow_is_404(self, client):
        response = client.get("/api/v1/workflows/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_list_and_filter_workflows(self, client):
        first = create_workflow(client, nodes=[{"id": "a", "type": "prompt"}])
        create_workflow(client, nodes=[{"id": "a", "type": "prompt"}], status="active")

        assert len(client.get("/api/v1/workflows").json()) == 2
        drafts = client.get("/api/v1/workflows", params={"status_filter": "draft"}).json()
        assert [wf["id"] for wf in drafts] == [first["id"]]

    def test_update_status(self, client):
        workflow = create_workflow(client, nodes=[{"id": "a", "type": "prompt"}])

        response = client.patch(f"/api/v1/workflows/{workflow['id']}/status", json={"status": "archived"})

        assert response.status_code == 200
        assert response.json()["status"] == "archived"

    def test_delete_workflow(self, client):
        workflow = create_workflow(client, nodes=[{"id": "a", "type": "prompt"}])

        assert client.delete(f"/api/v1/workflows/{workflow['id']}").status_code == 204
        assert client.get(f"/api/v1/workflows/{workflow['id']}").status_code == 404
        assert client.delete(f"/api/v1/workflows/{workflow['id']}").status_code == 404


class TestExecutionEndpoints:

    def test_execute_agent_workflow(self, client, provider):
        create_agent(client)
        workflow = create_workflow(
            client,
            nodes=[
                {"id": "draft", "type": "agent", "agent_id": "writer", "config": {"temperature": 0.4}},
                {"id": "review", "type": "prompt"},
            ],
            edges=[{"source": "draft", "target": "review"}],
        )

        response = client.post(f"/api/v1/workflows/{workflow['id']}/execute", json={"input": "hello"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["results"] == {"draft": "HELLO", "review": "hello"}
        assert data["errors"] == []
        assert provider.payloads[0]["temperature"] == 0.4

        record = client.get(f"/api/v1/executions/{data['execution_id']}").json()
        assert record["status"] == "completed"
        assert record["input"] == "hello"
        assert record["final_output"] == "hello"

        history = client.get(f"/api/v1/workflows/{workflow['id']}/executions").json()
        assert [item["id"] for item in history] == [data["execution_id"]]

    def test_failed_agent_node_is_reported(self, client, provider):
        create_agent(client)
        provider.fail = True
        workflow = create_workflow(
            client,
            nodes=[
                {"id": "draft", "type": "agent", "agent_id": "writer"},
                {"id": "other", "type": "prompt"},
            ],
        )

        data = client.post(f"/api/v1/workflows/{workflow['id']}/execute", json={"input": "x"}).json()

        assert data["status"] == "failed"
        assert data["results"] == {"other": "x"}
        assert data["errors"][0]["node_id"] == "draft"
        assert data["errors"][0]["error_type"] == "ModelProviderError"

    def test_execute_missing_workflow_is_404(self, client):
        response = client.post("/api/v1/workflows/nope/execute", json={"input": 1})

        assert response.status_code == 404

    def test_missing_execution_is_404(self, client):
        assert client.get("/api/v1/executions/nope").status_code == 404


class TestAgentEndpoints:

    def test_create_list_and_get_agent(self, client):
        create_agent(client, config={"max_concurrent_tasks": 2})

        agents = client.get("/api/v1/agents").json()
        assert [agent["id"] for agent in agents] == ["writer"]

        agent = client.get("/api/v1/agents/writer").json()
        assert agent["status"] == "idle"
        assert agent["config"]["max_concurrent_tasks"] == 2

    def test_agent_id_is_generated_when_omitted(self, client):
        response = client.post("/api/v1/agents", json={"name": "Anonymous"})

        assert response.status_code == 201
        assert response.json()["id"]

    def test_invoke_agent(self, client, provider):
        create_agent(client)

        response = client.post("/api/v1/agents/writer/invoke", json={"input": "ping", "context": {"max_tokens": 5}})

        data = response.json()
        assert data["success"] is True
        assert data["output"] == "PING"
        assert data["tokens_used"] == 10
        assert provider.payloads[0]["max_tokens"] == 5
        assert provider.payloads[0]["messages"][0]["content"] == "You are Writer. Writes things."

    def test_invoke_unknown_agent_reports_failure(self, client):
        data = client.post("/api/v1/agents/ghost/invoke", json={"input": "ping"}).json()

        assert data["success"] is False
        assert "Agent not found" in data["error"]

    def test_delete_agent(self, client):
        create_agent(client)

        assert client.delete("/api/v1/agents/writer").status_code == 204
        assert client.get("/api/v1/agents/writer").status_code == 404
        assert client.delete("/api/v1/agents/writer").status_code == 404

    def test_agent_stats(self, client):
        create_agent(client)
        create_agent(client, agent_id="reader", status="offline")

        response = client.get("/api/v1/agents/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_agents"] == 2
        assert data["by_status"]["idle"] == 1
        assert data["by_status"]["offline"] == 1
        assert data["active_invocations"] == 0


class TestPromptEndpoints:

    def create_prompt(self, client, **overrides):
        payload = {
            "name": "Greeting",
            "category": "chat",
            "template": "Hello {{ name }}, welcome to {{ place }}.",
            "variables": [
                {"name": "name"},
                {"name": "place", "required": False, "default_value": "the team"},
            ],
            "tags": ["onboarding"],
        }
        payload.update(overrides)
        response = client.post("/api/v1/prompts", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_get_and_list(self, client):
        prompt = self.create_prompt(client)

        assert prompt["id"]
        assert prompt["version"] == 1

        fetched = client.get(f"/api/v1/prompts/{prompt['id']}").json()
        assert fetched["template"] == "Hello {{ name }}, welcome to {{ place }}."

        listed = client.get("/api/v1/prompts", params={"category": "chat", "tags": "onboarding"}).json()
        assert [item["id"] for item in listed] == [prompt["id"]]
        assert client.get("/api/v1/prompts", params={"category": "completion"}).json() == []

    def test_duplicate_variable_names_are_rejected(self, client):
        response = client.post("/api/v1/prompts", json={
            "name": "Broken", "category": "chat", "template": "{{ a }}",
            "variables": [{"name": "a"}, {"name": "a"}],
        })

        assert response.status_code == 422

    def test_versioning_and_rollback(self, client):
        prompt = self.create_prompt(client)
        prompt_url = f"/api/v1/prompts/{prompt['id']}"

        updated = client.put(prompt_url, params={"create_version": "true"},
                             json={"template": "Hi {{ name }}!"}).json()
        assert updated["version"] == 2

        old = client.get(prompt_url, params={"version": 1}).json()
        assert old["template"].startswith("Hello")

        versions = client.get(f"{prompt_url}/versions").json()
        assert [version["version"] for version in versions] == [2, 1]

        restored = client.post(f"{prompt_url}/rollback/1").json()
        assert restored["version"] == 3
        assert restored["template"].startswith("Hello")

        assert client.post(f"{prompt_url}/rollback/7").status_code == 404

    def test_render(self, client):
        prompt = self.create_prompt(client)

        response = client.post(f"/api/v1/prompts/{prompt['id']}/render", json={"variables": {"name": "Ada"}})

        assert response.status_code == 200
        assert response.json()["rendered_text"] == "Hello Ada, welcome to the team."

    def test_render_without_required_variable_is_422(self, client):
        prompt = self.create_prompt(client)

        response = client.post(f"/api/v1/prompts/{prompt['id']}/render", json={"variables": {}})

        assert response.status_code == 422
        assert response.json()["error"] == "PromptRenderError"
        assert response.json()["details"]["missing_variables"] == ["name"]

    def test_delete_prompt(self, client):
        prompt = self.create_prompt(client)

        assert client.delete(f"/api/v1/prompts/{prompt['id']}").status_code == 204
        assert client.get(f"/api/v1/prompts/{prompt['id']}").status_code == 404
        assert client.delete(f"/api/v1/prompts/{prompt['id']}").status_code == 404


def test_monitoring_middleware_adds_headers(provider):
    config = get_testing_config().model_copy(update={"enable_performance_monitoring": True})
    app = create_app(config, http_client=httpx.Client(transport=httpx.MockTransport(provider)))

    with TestClient(app) as test_client:
        response = test_client.get("/api/v1/workflows/nope")

    assert response.status_code == 404
    assert "X-Request-ID" in response.headers
    assert response.headers["X-Response-Time"].endswith("s")
