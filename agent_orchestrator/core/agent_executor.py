"""Agent invocation on top of the chat model client."""

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

from ..models.agent import Agent, AgentInvocationResult, AgentStatus
from .agent_registry import AgentRegistry
from .exceptions import AgentInvocationError
from .logging import get_logger, log_with_context
from .model_client import ChatModelClient

logger = get_logger(__name__)

# Node/context keys forwarded to the provider as sampling parameters
_SAMPLING_KEYS = ("temperature", "max_tokens")


class AgentExecutor:
    """Invokes registered agents.

    An agent accepts at most ``config.max_concurrent_tasks`` invocations at a
    time; further calls fail fast with an ``AgentInvocationError`` instead of
    queueing. Invocation failures are returned in the result, never raised.
    """

    def __init__(self, agent_registry: AgentRegistry, model_client: ChatModelClient):
        self.agent_registry = agent_registry
        self.model_client = model_client
        self._active_tasks: Dict[str, int] = {}
        self._lock = threading.Lock()

    def invoke_agent(
        self,
        agent_id: str,
        input_data: Any,
        context: Optional[Dict[str, Any]] = None
    ) -> AgentInvocationResult:
        """
        Run an agent on an input.

        Args:
            agent_id: ID of the agent to invoke
            input_data: Input turned into the user message
            context: Execution context; sampling keys are forwarded to the provider

        Returns:
            Invocation result with output, token usage and latency
        """
        start_time = time.time()
        context = context or {}

        agent = self.agent_registry.get_agent(agent_id)
        if agent is None:
            return self._failure(agent_id, AgentInvocationError(f"Agent not found: {agent_id}", agent_id=agent_id),
                                 start_time)

        if agent.status in (AgentStatus.OFFLINE, AgentStatus.ERROR):
            return self._failure(
                agent_id,
                AgentInvocationError(f"Agent is not available: status={agent.status.value}", agent_id=agent_id),
                start_time
            )

        if not self._acquire_slot(agent):
            return self._failure(
                agent_id,
                AgentInvocationError(f"Agent is not available: status={AgentStatus.BUSY.value}", agent_id=agent_id),
                start_time
            )

        try:
            completion = self.model_client.chat(
                messages=[
                    {"role": "system", "content": f"You are {agent.name}. {agent.description}"},
                    {"role": "user", "content": self.build_prompt(input_data)},
                ],
                model=agent.preferred_model(),
                timeout=agent.config.timeout_ms / 1000.0,
                **{key: context[key] for key in _SAMPLING_KEYS if context.get(key) is not None},
            )

            latency_ms = int((time.time() - start_time) * 1000)
            log_with_context(
                logger, logging.INFO, "Agent invocation completed",
                agent_id=agent_id, latency_ms=latency_ms, tokens_used=completion.total_tokens,
                execution_id=context.get("execution_id"), node_id=context.get("node_id")
            )

            return AgentInvocationResult(
                success=True,
                output=completion.content,
                tokens_used=completion.total_tokens,
                latency_ms=latency_ms,
                agent_id=agent_id,
            )

        except Exception as e:
            return self._failure(agent_id, e, start_time)

        finally:
            self._release_slot(agent_id)

    @staticmethod
    def build_prompt(input_data: Any) -> str:
        """Render the workflow input as the user message."""
        if isinstance(input_data, str):
            return input_data
        if isinstance(input_data, (dict, list)):
            return json.dumps(input_data, default=str)
        return str(input_data)

    def get_active_task_count(self, agent_id: str) -> int:
        with self._lock:
            return self._active_tasks.get(agent_id, 0)

    def get_total_active_tasks(self) -> int:
        with self._lock:
            return sum(self._active_tasks.values())

    def get_effective_status(self, agent: Agent) -> AgentStatus:
        """Stored status, reported as busy while the agent is at capacity."""
        if agent.status != AgentStatus.IDLE:
            return agent.status
        if self.get_active_task_count(agent.id) >= agent.config.max_concurrent_tasks:
            return AgentStatus.BUSY
        return AgentStatus.IDLE

    def _acquire_slot(self, agent: Agent) -> bool:
        with self._lock:
            active = self._active_tasks.get(agent.id, 0)
            if active >= agent.config.max_concurrent_tasks:
                return False
            self._active_tasks[agent.id] = active + 1
            return True

    def _release_slot(self, agent_id: str) -> None:
        with self._lock:
            remaining = self._active_tasks.get(agent_id, 1) - 1
            if remaining > 0:
                self._active_tasks[agent_id] = remaining
            else:
                self._active_tasks.pop(agent_id, None)

    @staticmethod
    def _failure(agent_id: str, error: Exception, start_time: float) -> AgentInvocationResult:
        latency_ms = int((time.time() - start_time) * 1000)
        log_with_context(
            logger, logging.ERROR, f"Agent invocation failed: {str(error)}",
            agent_id=agent_id, latency_ms=latency_ms
        )
        return AgentInvocationResult(
            success=False,
            output=None,
            error=error,
            latency_ms=latency_ms,
            agent_id=agent_id,
        )
