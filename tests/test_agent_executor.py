"""Tests for the chat model client, agent registry and agent executor."""

import json
import threading

import httpx
import pytest

from agent_orchestrator.core.agent_executor import AgentExecutor
from agent_orchestrator.core.agent_registry import AgentRegistry
from agent_orchestrator.core.error_recovery import RetryConfig, RetryStrategy
from agent_orchestrator.core.exceptions import (
    AgentInvocationError,
    CircuitOpenError,
    ConfigurationError,
    ModelProviderError,
)
from agent_orchestrator.core.model_client import ChatModelClient
from agent_orchestrator.models.agent import (
    Agent,
    AgentConfig,
    AgentStatus,
    ModelPreference,
)

BASE_URL = "https://model.test/v1"


def completion_body(content="Hello there", model="qwen-plus", total_tokens=30):
    return {
        "id": "chatcmpl-1",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 20, "completion_tokens": 10, "total_tokens": total_tokens},
    }


def make_client(handler, api_key="test-key", max_attempts=3, failure_threshold=5):
    return ChatModelClient(
        api_key=api_key,
        base_url=BASE_URL,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        retry_strategy=RetryStrategy(
            RetryConfig(max_attempts=max_attempts, base_delay=0.0, jitter=False),
            failure_threshold=failure_threshold,
        ),
    )


class TestChatModelClient:
    """Test cases for the OpenAI-compatible client."""

    def test_chat_posts_completion_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)
        completion = client.chat([{"role": "user", "content": "hi"}], model="qwen-plus", temperature=0.5)

        assert completion.content == "Hello there"
        assert completion.total_tokens == 30
        assert completion.prompt_tokens == 20
        assert completion.model == "qwen-plus"

        request = requests[0]
        assert str(request.url) == f"{BASE_URL}/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = json.loads(request.content)
        assert payload == {
            "model": "qwen-plus",
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.5,
        }

    def test_default_model_is_used_when_none_given(self):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json=completion_body())

        make_client(handler).chat([{"role": "user", "content": "hi"}])

        assert payloads[0]["model"] == "qwen-turbo"

    def test_missing_api_key_is_configuration_error(self):
        client = make_client(lambda request: httpx.Response(200, json=completion_body()), api_key=None)

        assert not client.is_configured
        with pytest.raises(ConfigurationError):
            client.chat([{"role": "user", "content": "hi"}])

    def test_http_error_status_is_provider_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"error": "rate limited"})

        with pytest.raises(ModelProviderError) as exc_info:
            make_client(handler).chat([{"role": "user", "content": "hi"}])

        assert exc_info.value.details["status_code"] == 429
        assert exc_info.value.recoverable
        assert len(calls) == 3

    def test_server_error_is_retried_until_success(self):
        responses = [httpx.Response(503, text="busy"), httpx.Response(502, text="bad gateway"),
                     httpx.Response(200, json=completion_body(content="finally"))]

        client = make_client(lambda request: responses.pop(0))
        completion = client.chat([{"role": "user", "content": "hi"}])

        assert completion.content == "finally"
        assert responses == []

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "bad request"})

        with pytest.raises(ModelProviderError) as exc_info:
            make_client(handler).chat([{"role": "user", "content": "hi"}])

        assert exc_info.value.details["status_code"] == 400
        assert not exc_info.value.recoverable
        assert len(calls) == 1

    def test_repeated_failures_open_the_circuit_for_that_model(self):
        calls = []

        def handler(request):
            model = json.loads(request.content)["model"]
            calls.append(model)
            if model == "qwen-max":
                return httpx.Response(500, text="down")
            return httpx.Response(200, json=completion_body(model=model))

        client = make_client(handler, max_attempts=2, failure_threshold=2)

        with pytest.raises(ModelProviderError):
            client.chat([{"role": "user", "content": "hi"}], model="qwen-max")
        with pytest.raises(CircuitOpenError) as exc_info:
            client.chat([{"role": "user", "content": "hi"}], model="qwen-max")

        assert calls == ["qwen-max", "qwen-max"]
        assert exc_info.value.details["retry_after_seconds"] > 0
        assert client.chat([{"role": "user", "content": "hi"}], model="qwen-plus").content == "Hello there"
        assert client.retry_strategy.get_circuit_states() == {"qwen-max": "open", "qwen-plus": "closed"}

    def test_transport_error_is_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ModelProviderError):
            make_client(handler).chat([{"role": "user", "content": "hi"}])

    def test_malformed_response_is_provider_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"choices": []}))

        with pytest.raises(ModelProviderError):
            client.chat([{"role": "user", "content": "hi"}])

    def test_invalid_json_is_provider_error(self):
        client = make_client(lambda request: httpx.Response(200, content=b"not json"))

        with pytest.raises(ModelProviderError):
            client.chat([{"role": "user", "content": "hi"}])


class TestAgentRegistry:
    """Test cases for AgentRegistry."""

    def test_register_and_get_agent(self, agent_repository):
        registry = AgentRegistry(agent_repository)

        registry.register_agent(Agent(id="writer", name="Writer"))

        assert registry.is_agent_registered("writer")
        assert registry.get_agent("writer").name == "Writer"
        assert registry.get_registered_agents_count() == 1

    def test_register_existing_agent_updates_it(self, agent_repository):
        registry = AgentRegistry(agent_repository)
        registry.register_agent(Agent(id="writer", name="Writer"))

        registry.register_agent(Agent(id="writer", name="Senior Writer", description="Edits too"))

        assert agent_repository.find_by_id("writer").name == "Senior Writer"
        assert registry.get_agent("writer").description == "Edits too"
        assert len(registry.list_agents()) == 1

    def test_unregister_agent(self, agent_repository):
        registry = AgentRegistry(agent_repository)
        registry.register_agent(Agent(id="writer", name="Writer"))

        assert registry.unregister_agent("writer") is True
        assert registry.get_agent("writer") is None
        assert registry.unregister_agent("writer") is False

    def test_refresh_loads_agents_from_repository(self, agent_repository):
        agent_repository.create(Agent(id="a", name="A"))
        agent_repository.create(Agent(id="b", name="B", status=AgentStatus.OFFLINE))
        registry = AgentRegistry(agent_repository)

        assert registry.refresh() == 2
        assert registry.get_registered_agents_count() == 2
        assert [agent.id for agent in registry.list_agents(status=AgentStatus.OFFLINE)] == ["b"]

    def test_cache_miss_falls_back_to_repository(self, agent_repository):
        registry = AgentRegistry(agent_repository)
        agent_repository.create(Agent(id="late", name="Late"))

        assert registry.get_agent("late").name == "Late"

    def test_registry_stats_count_agents_by_status(self, agent_repository):
        registry = AgentRegistry(agent_repository)
        registry.register_agent(Agent(id="a", name="A"))
        registry.register_agent(Agent(id="b", name="B", status=AgentStatus.OFFLINE))
        registry.register_agent(Agent(id="c", name="C"))

        stats = registry.get_registry_stats()

        assert stats["total_agents"] == 3
        assert stats["cached_agents"] == 3
        assert stats["by_status"] == {"idle": 2, "busy": 0, "offline": 1, "error": 0}


@pytest.fixture
def registry(agent_repository):
    registry = AgentRegistry(agent_repository)
    registry.register_agent(Agent(
        id="writer",
        name="Writer",
        description="Writes concise summaries.",
        config=AgentConfig(
            timeout_ms=2000,
            model_preferences=[
                ModelPreference(model_id="qwen-max", priority=2),
                ModelPreference(model_id="qwen-plus", priority=1),
            ],
        ),
    ))
    return registry


class TestAgentExecutor:
    """Test cases for AgentExecutor."""

    def test_successful_invocation(self, registry):
        payloads = []

        def handler(request):
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json=completion_body(content="Short summary", total_tokens=42))

        executor = AgentExecutor(registry, make_client(handler))

        result = executor.invoke_agent("writer", {"text": "long"}, {"temperature": 0.1, "node_id": "n1"})

        assert result.success
        assert result.output == "Short summary"
        assert result.tokens_used == 42
        assert result.agent_id == "writer"
        assert result.error is None
        assert result.latency_ms >= 0

        payload = payloads[0]
        assert payload["model"] == "qwen-plus"
        assert payload["temperature"] == 0.1
        assert "max_tokens" not in payload
        assert payload["messages"] == [
            {"role": "system", "content": "You are Writer. Writes concise summaries."},
            {"role": "user", "content": '{"text": "long"}'},
        ]
        assert executor.get_active_task_count("writer") == 0

    def test_unknown_agent_fails_without_raising(self, registry):
        executor = AgentExecutor(registry, make_client(lambda request: httpx.Response(200, json=completion_body())))

        result = executor.invoke_agent("ghost", "hi")

        assert not result.success
        assert isinstance(result.error, AgentInvocationError)
        assert "Agent not found" in str(result.error)

    def test_offline_agent_is_not_available(self, registry):
        registry.register_agent(Agent(id="sleepy", name="Sleepy", status=AgentStatus.OFFLINE))
        executor = AgentExecutor(registry, make_client(lambda request: httpx.Response(200, json=completion_body())))

        result = executor.invoke_agent("sleepy", "hi")

        assert not result.success
        assert "status=offline" in str(result.error)

    def test_provider_failure_is_returned_in_result(self, registry):
        executor = AgentExecutor(registry, make_client(lambda request: httpx.Response(500, text="boom")))

        result = executor.invoke_agent("writer", "hi")

        assert not result.success
        assert isinstance(result.error, ModelProviderError)
        assert executor.get_active_task_count("writer") == 0

    def test_agent_at_capacity_rejects_further_invocations(self, registry):
        entered = threading.Event()
        release = threading.Event()

        def handler(request):
            entered.set()
            release.wait(5)
            return httpx.Response(200, json=completion_body())

        executor = AgentExecutor(registry, make_client(handler))
        agent = registry.get_agent("writer")
        results = {}

        worker = threading.Thread(target=lambda: results.update(first=executor.invoke_agent("writer", "one")))
        worker.start()
        try:
            assert entered.wait(5)
            assert executor.get_effective_status(agent) == AgentStatus.BUSY

            second = executor.invoke_agent("writer", "two")
        finally:
            release.set()
            worker.join(5)

        assert not second.success
        assert "status=busy" in str(second.error)
        assert results["first"].success
        assert executor.get_effective_status(agent) == AgentStatus.IDLE

    @pytest.mark.parametrize("input_data, expected", [
        ("plain text", "plain text"),
        ({"a": 1}, '{"a": 1}'),
        ([1, 2], "[1, 2]"),
        (42, "42"),
        (None, "None"),
    ])
    def test_build_prompt(self, input_data, expected):
        assert AgentExecutor.build_prompt(input_data) == expected
