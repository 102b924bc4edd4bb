"""Core Pydantic models for workflows and their executions."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow definition."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class NodeType(str, Enum):
    """Closed set of workflow node kinds."""
    AGENT = "agent"
    PROMPT = "prompt"
    CONDITION = "condition"
    MERGE = "merge"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RetryPolicy(BaseModel):
    """Retry settings carried by workflow and agent configuration."""
    max_retries: int = Field(default=3, ge=0, description="Maximum number of retries")
    backoff_ms: int = Field(default=1000, ge=0, description="Initial backoff in milliseconds")
    backoff_multiplier: float = Field(default=2.0, gt=0, description="Backoff growth factor")


class WorkflowConfig(BaseModel):
    """Execution settings of a workflow."""
    max_execution_time_ms: Optional[int] = Field(
        default=60000,
        description="Deadline for a whole run in milliseconds; None disables it"
    )
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy, description="Retry policy (stored only)")
    save_results: bool = Field(default=True, description="Whether results should be persisted")

    @field_validator('max_execution_time_ms')
    @classmethod
    def validate_max_execution_time(cls, value):
        """Ensure the deadline is positive if specified."""
        if value is not None and value <= 0:
            raise ValueError("max_execution_time_ms must be a positive integer")
        return value


class Position(BaseModel):
    """Layout position of a node in an editor canvas."""
    x: int = 0
    y: int = 0


class WorkflowNode(BaseModel):
    """A typed node of a workflow graph."""
    id: str = Field(..., description="Node identifier, unique within the workflow")
    type: NodeType = Field(..., description="Node type")
    agent_id: Optional[str] = Field(None, description="Agent invoked by agent nodes")
    prompt_id: Optional[str] = Field(None, description="Prompt referenced by prompt nodes")
    config: Dict[str, Any] = Field(default_factory=dict, description="Free-form node configuration")
    position: Position = Field(default_factory=Position, description="Presentation-only layout position")


class WorkflowEdge(BaseModel):
    """A dependency between two workflow nodes."""
    id: str = Field(..., description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    condition: Optional[Dict[str, Any]] = Field(None, description="Stored condition, never evaluated")


class Workflow(BaseModel):
    """Complete workflow definition as read by the engine."""
    id: str
    name: str
    description: str = ""
    status: WorkflowStatus = WorkflowStatus.DRAFT
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionError(BaseModel):
    """An error recorded during a run. An empty node_id marks a workflow-level error."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    node_id: str = ""
    error: Exception
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def message(self) -> str:
        return str(self.error)

    @field_serializer('error')
    def serialize_error(self, error: Exception) -> Dict[str, Any]:
        return {"type": type(error).__name__, "message": str(error)}

    def to_record(self) -> Dict[str, Any]:
        """Flatten into the shape persisted by execution stores."""
        return {
            "node_id": self.node_id,
            "error_type": type(self.error).__name__,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class ExecutionContext(BaseModel):
    """In-memory state of one workflow run."""
    workflow_id: str
    execution_id: str
    status: ExecutionStatusEnum = ExecutionStatusEnum.PENDING
    current_node_id: Optional[str] = Field(None, description="Best-effort marker of the last dispatched node")
    results: Dict[str, Any] = Field(default_factory=dict, description="Output of every successful node")
    errors: List[ExecutionError] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None


class NodeResult(BaseModel):
    """Output produced by a node executor."""
    output: Any = None


class ExecutionHandle(BaseModel):
    """Identifier returned when an execution record is created."""
    id: str


class ExecutionUpdate(BaseModel):
    """Partial update of an execution record; only explicitly set fields apply."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: Optional[ExecutionStatusEnum] = None
    final_output: Any = None
    node_results: Optional[Dict[str, Any]] = None
    errors: Optional[List[ExecutionError]] = None
    end_time: Optional[datetime] = None


class ExecutionRecord(ExecutionHandle):
    """Persisted history of one workflow run."""
    workflow_id: str
    status: ExecutionStatusEnum
    input: Any = None
    final_output: Any = None
    node_results: Optional[Dict[str, Any]] = None
    errors: Optional[List[Dict[str, Any]]] = None
    start_time: datetime
    end_time: Optional[datetime] = None
