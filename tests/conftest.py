"""Pytest configuration and fixtures."""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from agent_orchestrator.core.exceptions import StorageError
from agent_orchestrator.models.core import (
    ExecutionHandle,
    ExecutionStatusEnum,
    ExecutionUpdate,
    NodeResult,
    NodeType,
    Workflow,
    WorkflowConfig,
    WorkflowEdge,
    WorkflowNode,
)
from agent_orchestrator.storage.database import (
    create_database_engine,
    create_session_factory,
    create_tables,
)
from agent_orchestrator.storage.repositories import (
    AgentRepository,
    PromptRepository,
    WorkflowExecutionRepository,
    WorkflowRepository,
)


@pytest.fixture
def database_engine():
    """Create an in-memory database with all tables."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(database_engine):
    return create_session_factory(database_engine)


@pytest.fixture
def workflow_repository(session_factory):
    return WorkflowRepository(session_factory)


@pytest.fixture
def execution_repository(session_factory):
    return WorkflowExecutionRepository(session_factory)


@pytest.fixture
def agent_repository(session_factory):
    return AgentRepository(session_factory)


@pytest.fixture
def prompt_repository(session_factory):
    return PromptRepository(session_factory)


class InMemoryWorkflowStore:
    """Workflow store backed by a dict."""

    def __init__(self, *workflows: Workflow):
        self.workflows = {workflow.id: workflow for workflow in workflows}

    def add(self, workflow: Workflow) -> None:
        self.workflows[workflow.id] = workflow

    def find_by_id(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)


class RecordingExecutionStore:
    """Execution store that records every call."""

    def __init__(self, fail_updates: bool = False, reject_fields: Tuple[str, ...] = ()):
        self.created: List[Dict[str, Any]] = []
        self.updates: List[ExecutionUpdate] = []
        self.fail_updates = fail_updates
        self.reject_fields = set(reject_fields)

    def create(self, workflow_id: str, input_data: Any, status: ExecutionStatusEnum) -> ExecutionHandle:
        execution_id = f"exec-{len(self.created) + 1}"
        self.created.append({"id": execution_id, "workflow_id": workflow_id, "input": input_data, "status": status})
        return ExecutionHandle(id=execution_id)

    def update(self, execution_id: str, updates: ExecutionUpdate) -> None:
        if self.fail_updates or self.reject_fields & updates.model_fields_set:
            raise StorageError("Disk full", operation="update", table="workflow_executions")
        self.updates.append(updates)

    @property
    def last_update(self) -> ExecutionUpdate:
        return self.updates[-1]


class ScriptedNodeExecutor:
    """Node executor driven by per-node behaviours.

    A behaviour is a callable ``(input_data) -> output`` which may raise; nodes
    without one echo ``"<node_id>:<input>"``.
    """

    def __init__(self, behaviours: Optional[Dict[str, Callable[[Any], Any]]] = None):
        self.behaviours = behaviours or {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def execute(self, node: WorkflowNode, input_data: Any, context) -> NodeResult:
        with self._lock:
            self.calls.append({"node_id": node.id, "input": input_data, "thread": threading.current_thread().name})

        behaviour = self.behaviours.get(node.id)
        if behaviour is None:
            return NodeResult(output=f"{node.id}:{input_data}")
        return NodeResult(output=behaviour(input_data))

    @property
    def called_nodes(self) -> List[str]:
        return [call["node_id"] for call in self.calls]


def build_workflow(node_ids, edges=(), workflow_id="wf-1", max_execution_time_ms=60000, conditions=None):
    """Build a workflow of prompt nodes from ids and ``(source, target)`` pairs."""
    conditions = conditions or {}
    return Workflow(
        id=workflow_id,
        name=f"Workflow {workflow_id}",
        config=WorkflowConfig(max_execution_time_ms=max_execution_time_ms),
        nodes=[WorkflowNode(id=node_id, type=NodeType.PROMPT) for node_id in node_ids],
        edges=[
            WorkflowEdge(id=f"{source}->{target}", source=source, target=target,
                         condition=conditions.get((source, target)))
            for source, target in edges
        ],
    )


@pytest.fixture
def workflow_builder():
    return build_workflow


@pytest.fixture
def workflow_store():
    return InMemoryWorkflowStore()


@pytest.fixture
def execution_store():
    return RecordingExecutionStore()


@pytest.fixture
def node_executor_factory():
    return ScriptedNodeExecutor
