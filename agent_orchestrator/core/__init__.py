"""Core orchestrator components."""

from .exceptions import (
    WorkflowEngineError,
    NotFoundError,
    ExecutionEngineError,
    NoEntryNodesError,
    IncompleteGraphError,
    ExecutionTimeoutError,
    NodeExecutionError,
    NodeConfigurationError,
    AgentInvocationError,
    StorageError,
    ConfigurationError,
    ModelProviderError,
    CircuitOpenError,
    PromptRenderError,
)
from .logging import setup_logging, get_logger
from .workflow_engine import WorkflowEngine, WorkflowStore, ExecutionStore, NodeExecutor
from .node_executor import WorkflowNodeExecutor, AgentInvoker

__all__ = [
    "WorkflowEngineError",
    "NotFoundError",
    "ExecutionEngineError",
    "NoEntryNodesError",
    "IncompleteGraphError",
    "ExecutionTimeoutError",
    "NodeExecutionError",
    "NodeConfigurationError",
    "AgentInvocationError",
    "StorageError",
    "ConfigurationError",
    "ModelProviderError",
    "CircuitOpenError",
    "PromptRenderError",
    "setup_logging",
    "get_logger",
    "WorkflowEngine",
    "WorkflowStore",
    "ExecutionStore",
    "NodeExecutor",
    "WorkflowNodeExecutor",
    "AgentInvoker",
]
