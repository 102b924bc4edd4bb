"""Pydantic models for agents and their invocations."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .core import RetryPolicy


class AgentStatus(str, Enum):
    """Availability of an agent."""
    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"
    ERROR = "error"


class CapabilityType(str, Enum):
    TEXT_GENERATION = "text_generation"
    IMAGE_ANALYSIS = "image_analysis"
    SPEECH_TO_TEXT = "speech_to_text"
    TEXT_TO_SPEECH = "text_to_speech"


class CostTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AgentCapability(BaseModel):
    type: CapabilityType
    models: List[str] = Field(default_factory=list)
    priority: int = 0


class ModelPreference(BaseModel):
    """A model the agent may run on; lower priority values are preferred."""
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    priority: int = 0
    cost_tier: CostTier = CostTier.MEDIUM


class AgentConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    max_concurrent_tasks: int = Field(default=1, ge=1, description="Concurrent invocations allowed")
    timeout_ms: int = Field(default=30000, gt=0, description="Provider call timeout in milliseconds")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    model_preferences: List[ModelPreference] = Field(default_factory=list)


class Agent(BaseModel):
    """An LLM-backed agent that workflow nodes can invoke."""
    id: str
    name: str
    description: str = ""
    capabilities: List[AgentCapability] = Field(default_factory=list)
    status: AgentStatus = AgentStatus.IDLE
    config: AgentConfig = Field(default_factory=AgentConfig)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def preferred_model(self) -> Optional[str]:
        """Return the model id with the best (lowest) priority, if any."""
        if not self.config.model_preferences:
            return None
        return min(self.config.model_preferences, key=lambda p: p.priority).model_id


class AgentInvocationResult(BaseModel):
    """Outcome of one agent invocation; failures are carried, not raised."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    output: Any = None
    error: Optional[Exception] = None
    tokens_used: Optional[int] = None
    latency_ms: int = 0
    agent_id: str
