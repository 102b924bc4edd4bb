"""Database models and storage layer."""

from .database import (
    Base,
    create_database_engine,
    create_session_factory,
    session_scope,
    create_tables,
    drop_tables,
)
from .models import (
    WorkflowModel,
    WorkflowNodeModel,
    WorkflowEdgeModel,
    WorkflowExecutionModel,
    AgentModel,
    PromptModel,
    PromptVersionModel,
)
from .repositories import WorkflowRepository, WorkflowExecutionRepository, AgentRepository, PromptRepository

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "WorkflowNodeModel",
    "WorkflowEdgeModel",
    "WorkflowExecutionModel",
    "AgentModel",
    "PromptModel",
    "PromptVersionModel",
    "WorkflowRepository",
    "WorkflowExecutionRepository",
    "AgentRepository",
    "PromptRepository",
]
