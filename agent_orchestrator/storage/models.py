"""SQLAlchemy database models for the agent orchestrator."""

from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Text, JSON, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False)  # draft, active, paused, archived
    config = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    nodes = relationship(
        "WorkflowNodeModel", back_populates="workflow",
        cascade="all, delete-orphan", order_by="WorkflowNodeModel.pk"
    )
    edges = relationship(
        "WorkflowEdgeModel", back_populates="workflow",
        cascade="all, delete-orphan", order_by="WorkflowEdgeModel.pk"
    )
    executions = relationship("WorkflowExecutionModel", back_populates="workflow", cascade="all, delete-orphan")


class WorkflowNodeModel(Base):
    """Database model for workflow nodes; pk preserves declaration order."""
    __tablename__ = "workflow_nodes"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    node_id = Column(String, nullable=False)
    type = Column(String, nullable=False)  # agent, prompt, condition, merge
    agent_id = Column(String)
    prompt_id = Column(String)
    config = Column(JSON)
    position_x = Column(Integer, default=0)
    position_y = Column(Integer, default=0)

    workflow = relationship("WorkflowModel", back_populates="nodes")


class WorkflowEdgeModel(Base):
    """Database model for workflow edges."""
    __tablename__ = "workflow_edges"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    edge_id = Column(String, nullable=False)
    source = Column(String, nullable=False)
    target = Column(String, nullable=False)
    condition = Column(JSON)

    workflow = relationship("WorkflowModel", back_populates="edges")


class WorkflowExecutionModel(Base):
    """Database model for workflow execution history."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # pending, running, completed, failed, cancelled
    input = Column(JSON)
    final_output = Column(JSON)
    node_results = Column(JSON)
    errors = Column(JSON)  # List of {node_id, error_type, message, timestamp}
    start_time = Column(DateTime, default=datetime.utcnow)
    end_time = Column(DateTime)

    workflow = relationship("WorkflowModel", back_populates="executions")


class AgentModel(Base):
    """Database model for registered agents."""
    __tablename__ = "agents"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False)  # idle, busy, offline, error
    capabilities = Column(JSON)
    config = Column(JSON)
    agent_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PromptModel(Base):
    """Database model for prompt templates; template and variables mirror the latest version."""
    __tablename__ = "prompts"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    category = Column(String, nullable=False)
    template = Column(Text, nullable=False)
    variables = Column(JSON)
    is_active = Column(Boolean, default=True)
    tags = Column(JSON)
    created_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    versions = relationship(
        "PromptVersionModel", back_populates="prompt",
        cascade="all, delete-orphan", order_by="PromptVersionModel.version"
    )


class PromptVersionModel(Base):
    """Database model for prompt template revisions."""
    __tablename__ = "prompt_versions"
    __table_args__ = (UniqueConstraint("prompt_id", "version", name="uq_prompt_version"),)

    id = Column(String, primary_key=True)
    prompt_id = Column(String, ForeignKey("prompts.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    template = Column(Text, nullable=False)
    variables = Column(JSON)
    is_active = Column(Boolean, default=True)
    created_by = Column(String)
    change_note = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    prompt = relationship("PromptModel", back_populates="versions")
