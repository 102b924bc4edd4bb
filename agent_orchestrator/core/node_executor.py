"""Node executor that dispatches workflow nodes by their type."""

import logging
from typing import Any, Callable, Dict, Optional, Protocol

from ..models.agent import AgentInvocationResult
from ..models.core import ExecutionContext, NodeResult, NodeType, WorkflowNode
from .exceptions import AgentInvocationError, ConfigurationError, NodeConfigurationError
from .logging import get_logger, log_with_context

logger = get_logger(__name__)


class AgentInvoker(Protocol):
    """Capability that runs an agent on an input."""

    def invoke_agent(
        self,
        agent_id: str,
        input_data: Any,
        context: Optional[Dict[str, Any]] = None
    ) -> AgentInvocationResult: ...


NodeHandler = Callable[[WorkflowNode, Any, ExecutionContext], NodeResult]


class WorkflowNodeExecutor:
    """Executes workflow nodes with one handler per node type.

    Agent nodes invoke their agent. Prompt, condition and merge nodes are
    pass-through: their output is the input they received.
    """

    def __init__(self, agent_invoker: AgentInvoker):
        self.agent_invoker = agent_invoker
        self._handlers: Dict[NodeType, NodeHandler] = {
            NodeType.AGENT: self._execute_agent,
            NodeType.PROMPT: self._execute_prompt,
            NodeType.CONDITION: self._execute_condition,
            NodeType.MERGE: self._execute_merge,
        }

        missing = set(NodeType) - set(self._handlers)
        if missing:
            raise ConfigurationError(
                f"No handler for node types: {', '.join(sorted(t.value for t in missing))}"
            )

    def execute(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        """
        Execute a node.

        Args:
            node: Node to execute
            input_data: Input value for the node
            context: Execution context of the run

        Returns:
            The node's output

        Raises:
            NodeConfigurationError: If the node misses configuration its type needs
            Exception: Whatever failure the agent invocation reported
        """
        handler = self._handlers[node.type]
        return handler(node, input_data, context)

    def _execute_agent(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        agent_id = node.agent_id
        if not agent_id:
            raise NodeConfigurationError(
                f"Node {node.id} is of type 'agent' but missing agent_id",
                node_id=node.id, execution_id=context.execution_id
            )

        log_with_context(
            logger, logging.INFO, "Executing agent node",
            workflow_id=context.workflow_id, execution_id=context.execution_id,
            node_id=node.id, agent_id=agent_id
        )

        agent_context = {
            "workflow_id": context.workflow_id,
            "execution_id": context.execution_id,
            "node_id": node.id,
            **node.config,
        }

        result = self.agent_invoker.invoke_agent(agent_id, input_data, agent_context)

        if not result.success:
            raise result.error or AgentInvocationError(
                f"Agent invocation failed for {agent_id}",
                agent_id=agent_id, node_id=node.id, execution_id=context.execution_id
            )

        return NodeResult(output=result.output)

    def _execute_prompt(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        """Pass-through; prompt rendering is not performed by the engine."""
        return NodeResult(output=input_data)

    def _execute_condition(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        """Pass-through; branching is expressed by edges, which are unconditional."""
        return NodeResult(output=input_data)

    def _execute_merge(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        """Pass-through; every node already receives the workflow input."""
        return NodeResult(output=input_data)
