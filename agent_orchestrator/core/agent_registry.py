"""Agent Registry component for managing invocable agents."""

import threading
from typing import Any, Dict, List, Optional

from ..models.agent import Agent, AgentStatus
from ..storage.repositories import AgentRepository
from .exceptions import StorageError
from .logging import get_logger

logger = get_logger(__name__)


class AgentRegistry:
    """Registry of agents backed by the database with an in-memory cache."""

    def __init__(self, agent_repository: AgentRepository):
        """Initialize the agent registry.

        Args:
            agent_repository: Repository used as the source of truth
        """
        self._repository = agent_repository
        self._memory_cache: Dict[str, Agent] = {}
        self._lock = threading.RLock()

    def register_agent(self, agent: Agent) -> Agent:
        """Register an agent, replacing any existing definition with the same id.

        Args:
            agent: Agent definition to register

        Returns:
            The stored agent
        """
        existing = self._repository.find_by_id(agent.id)
        if existing:
            logger.warning(f"Agent '{agent.id}' already registered, updating")
            stored = self._repository.update(agent)
        else:
            stored = self._repository.create(agent)

        with self._lock:
            self._memory_cache[stored.id] = stored

        logger.info(f"Registered agent '{stored.name}' ({stored.id})")
        return stored

    def unregister_agent(self, agent_id: str) -> bool:
        """Remove an agent. Returns False if it was not registered."""
        removed = self._repository.delete(agent_id)
        with self._lock:
            self._memory_cache.pop(agent_id, None)

        if removed:
            logger.info(f"Unregistered agent '{agent_id}'")
        else:
            logger.warning(f"Agent '{agent_id}' not found in registry")
        return removed

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        """Retrieve an agent, falling back to the repository on a cache miss."""
        with self._lock:
            agent = self._memory_cache.get(agent_id)
        if agent is not None:
            return agent

        agent = self._repository.find_by_id(agent_id)
        if agent is not None:
            with self._lock:
                self._memory_cache[agent_id] = agent
            logger.debug(f"Loaded agent '{agent_id}' from repository")
        return agent

    def list_agents(self, status: Optional[AgentStatus] = None) -> List[Agent]:
        """List registered agents, optionally filtered by status."""
        return self._repository.list(status=status)

    def refresh(self) -> int:
        """Reload the cache from the repository and return the number of agents."""
        logger.info("Refreshing agent registry from database")
        try:
            agents = self._repository.list()
        except StorageError as e:
            logger.error(f"Failed to refresh agent registry: {str(e)}")
            raise

        with self._lock:
            self._memory_cache = {agent.id: agent for agent in agents}

        logger.info(f"Agent registry refreshed with {len(agents)} agents")
        return len(agents)

    def is_agent_registered(self, agent_id: str) -> bool:
        return self.get_agent(agent_id) is not None

    def get_registered_agents_count(self) -> int:
        with self._lock:
            return len(self._memory_cache)

    def get_registry_stats(self) -> Dict[str, Any]:
        """Count stored agents in total and per stored status."""
        agents = self._repository.list()
        by_status = {status.value: 0 for status in AgentStatus}
        for agent in agents:
            by_status[agent.status.value] += 1

        with self._lock:
            cached = len(self._memory_cache)

        return {"total_agents": len(agents), "by_status": by_status, "cached_agents": cached}
