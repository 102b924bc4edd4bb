"""Tests for the node-type dispatching executor."""

from unittest.mock import Mock

import pytest

from agent_orchestrator.core.exceptions import (
    AgentInvocationError,
    ModelProviderError,
    NodeConfigurationError,
)
from agent_orchestrator.core.node_executor import WorkflowNodeExecutor
from agent_orchestrator.models.agent import AgentInvocationResult
from agent_orchestrator.models.core import ExecutionContext, NodeType, WorkflowNode


@pytest.fixture
def context():
    return ExecutionContext(workflow_id="wf-1", execution_id="exec-1")


@pytest.fixture
def agent_invoker():
    invoker = Mock()
    invoker.invoke_agent.return_value = AgentInvocationResult(
        success=True, output="summary", tokens_used=12, latency_ms=5, agent_id="writer"
    )
    return invoker


def test_agent_node_invokes_agent_with_node_context(agent_invoker, context):
    executor = WorkflowNodeExecutor(agent_invoker)
    node = WorkflowNode(id="summarize", type=NodeType.AGENT, agent_id="writer", config={"temperature": 0.2})

    result = executor.execute(node, "long text", context)

    assert result.output == "summary"
    agent_invoker.invoke_agent.assert_called_once_with(
        "writer",
        "long text",
        {"workflow_id": "wf-1", "execution_id": "exec-1", "node_id": "summarize", "temperature": 0.2},
    )


def test_agent_node_without_agent_id_is_misconfigured(agent_invoker, context):
    executor = WorkflowNodeExecutor(agent_invoker)
    node = WorkflowNode(id="broken", type=NodeType.AGENT)

    with pytest.raises(NodeConfigurationError) as exc_info:
        executor.execute(node, "input", context)

    assert "missing agent_id" in str(exc_info.value)
    assert exc_info.value.context["node_id"] == "broken"
    agent_invoker.invoke_agent.assert_not_called()


def test_agent_failure_reraises_reported_error(agent_invoker, context):
    provider_error = ModelProviderError("Model provider returned HTTP 503", status_code=503)
    agent_invoker.invoke_agent.return_value = AgentInvocationResult(
        success=False, error=provider_error, agent_id="writer"
    )
    executor = WorkflowNodeExecutor(agent_invoker)
    node = WorkflowNode(id="summarize", type=NodeType.AGENT, agent_id="writer")

    with pytest.raises(ModelProviderError) as exc_info:
        executor.execute(node, "input", context)

    assert exc_info.value is provider_error


def test_agent_failure_without_error_raises_invocation_error(agent_invoker, context):
    agent_invoker.invoke_agent.return_value = AgentInvocationResult(success=False, agent_id="writer")
    executor = WorkflowNodeExecutor(agent_invoker)
    node = WorkflowNode(id="summarize", type=NodeType.AGENT, agent_id="writer")

    with pytest.raises(AgentInvocationError):
        executor.execute(node, "input", context)


@pytest.mark.parametrize("node_type", [NodeType.PROMPT, NodeType.CONDITION, NodeType.MERGE])
def test_non_agent_nodes_pass_input_through(agent_invoker, context, node_type):
    executor = WorkflowNodeExecutor(agent_invoker)
    node = WorkflowNode(id="step", type=node_type, prompt_id="p-1")

    result = executor.execute(node, {"value": 3}, context)

    assert result.output == {"value": 3}
    agent_invoker.invoke_agent.assert_not_called()
