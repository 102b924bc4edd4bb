"""Data models for the agent orchestrator."""

from .core import (
    WorkflowStatus,
    NodeType,
    ExecutionStatusEnum,
    RetryPolicy,
    WorkflowConfig,
    Position,
    WorkflowNode,
    WorkflowEdge,
    Workflow,
    ExecutionError,
    ExecutionContext,
    NodeResult,
    ExecutionHandle,
    ExecutionUpdate,
    ExecutionRecord,
)
from .agent import (
    AgentStatus,
    CapabilityType,
    CostTier,
    AgentCapability,
    ModelPreference,
    AgentConfig,
    Agent,
    AgentInvocationResult,
)
from .prompt import (
    PromptCategory,
    VariableType,
    PromptVariable,
    Prompt,
    PromptUpdate,
    PromptVersion,
    RenderedPrompt,
)

__all__ = [
    "WorkflowStatus",
    "NodeType",
    "ExecutionStatusEnum",
    "RetryPolicy",
    "WorkflowConfig",
    "Position",
    "WorkflowNode",
    "WorkflowEdge",
    "Workflow",
    "ExecutionError",
    "ExecutionContext",
    "NodeResult",
    "ExecutionHandle",
    "ExecutionUpdate",
    "ExecutionRecord",
    "AgentStatus",
    "CapabilityType",
    "CostTier",
    "AgentCapability",
    "ModelPreference",
    "AgentConfig",
    "Agent",
    "AgentInvocationResult",
    "PromptCategory",
    "VariableType",
    "PromptVariable",
    "Prompt",
    "PromptUpdate",
    "PromptVersion",
    "RenderedPrompt",
]
