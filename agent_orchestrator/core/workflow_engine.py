"""Workflow engine: layered, concurrent execution of workflow graphs."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..models.core import (
    ExecutionContext,
    ExecutionError,
    ExecutionHandle,
    ExecutionStatusEnum,
    ExecutionUpdate,
    NodeResult,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
)
from .exceptions import (
    ExecutionEngineError,
    ExecutionTimeoutError,
    IncompleteGraphError,
    NoEntryNodesError,
    NotFoundError,
)
from .logging import get_logger, log_with_context

logger = get_logger(__name__)


class WorkflowStore(Protocol):
    """Read access to workflow definitions."""

    def find_by_id(self, workflow_id: str) -> Optional[Workflow]: ...


class ExecutionStore(Protocol):
    """Persistence of execution runs."""

    def create(self, workflow_id: str, input_data: Any, status: ExecutionStatusEnum) -> ExecutionHandle: ...

    def update(self, execution_id: str, updates: ExecutionUpdate) -> Any: ...


class NodeExecutor(Protocol):
    """Turns one workflow node into a unit of work."""

    def execute(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult: ...


class WorkflowRunResult:
    """Aggregated outcome of one graph run."""

    def __init__(self, final_output: Any, node_results: Dict[str, Any]):
        self.final_output = final_output
        self.node_results = node_results


class WorkflowEngine:
    """Drives workflow graphs to completion in topological batches.

    Each run gets its own thread pool, so nodes left running by a timed-out
    run never hold workers that a later run needs. Every node of a batch is
    submitted to the run's pool and the coordinating thread waits for the
    whole batch before scheduling the next one. Node failures are recorded on
    the execution context and never stop the run; only structural failures
    (no entry nodes, unknown node ids) end it early.
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        execution_store: ExecutionStore,
        node_executor: NodeExecutor,
        max_workers: int = 10
    ):
        """Initialize the workflow engine.

        Args:
            workflow_store: Resolves workflow ids to definitions
            execution_store: Persists execution records
            node_executor: Executes individual nodes
            max_workers: Maximum number of nodes of one run executing at the same time
        """
        self.workflow_store = workflow_store
        self.execution_store = execution_store
        self.node_executor = node_executor
        self._max_workers = max_workers
        self._active_pools = set()
        self._pools_lock = threading.Lock()

        logger.info(f"WorkflowEngine initialized with max_workers={max_workers}")

    def start_execution(self, workflow_id: str, input_data: Any) -> ExecutionContext:
        """
        Execute a workflow and return the terminal execution context.

        Args:
            workflow_id: ID of the workflow to execute
            input_data: Opaque input handed unchanged to every node

        Returns:
            The execution context; inspect ``status`` and ``errors`` for failures

        Raises:
            NotFoundError: If the workflow does not exist (no record is created)
        """
        workflow = self.workflow_store.find_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}",
                                resource_type="workflow", resource_id=workflow_id)

        execution = self.execution_store.create(workflow_id, input_data, ExecutionStatusEnum.RUNNING)

        context = ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution.id,
            status=ExecutionStatusEnum.RUNNING,
            start_time=datetime.utcnow(),
        )

        log_with_context(
            logger, logging.INFO, f"Started workflow execution {execution.id}",
            workflow_id=workflow_id, execution_id=execution.id
        )

        try:
            run_result = self._run_workflow(workflow, input_data, context)

            context.status = (
                ExecutionStatusEnum.COMPLETED if not context.errors else ExecutionStatusEnum.FAILED
            )
            context.end_time = datetime.utcnow()
            updates = ExecutionUpdate(
                status=context.status,
                final_output=run_result.final_output,
                node_results=run_result.node_results,
                errors=context.errors,
                end_time=context.end_time,
            )

        except Exception as e:
            context.status = ExecutionStatusEnum.FAILED
            context.end_time = datetime.utcnow()
            context.errors.append(ExecutionError(node_id="", error=e, timestamp=context.end_time))
            updates = ExecutionUpdate(
                status=context.status,
                errors=context.errors,
                end_time=context.end_time,
            )

            log_with_context(
                logger, logging.ERROR, f"Workflow execution failed: {str(e)}",
                exc_info=True, workflow_id=workflow_id, execution_id=context.execution_id
            )

        self._persist(context, updates)

        log_with_context(
            logger, logging.INFO,
            f"Workflow execution {context.execution_id} finished with status {context.status.value}",
            workflow_id=workflow_id, execution_id=context.execution_id, error_count=len(context.errors)
        )
        return context

    def _persist(self, context: ExecutionContext, updates: ExecutionUpdate) -> None:
        """Write the final state; a failing store is logged, never raised.

        When the full update is rejected, the terminal status, errors and end
        time are written on their own so the record does not stay running.
        """
        try:
            self.execution_store.update(context.execution_id, updates)
            return
        except Exception as e:
            log_with_context(
                logger, logging.ERROR, f"Failed to persist execution {context.execution_id}: {str(e)}",
                exc_info=True, workflow_id=context.workflow_id, execution_id=context.execution_id
            )

        if updates.model_fields_set <= {"status", "errors", "end_time"}:
            return

        try:
            self.execution_store.update(context.execution_id, ExecutionUpdate(
                status=context.status,
                errors=context.errors,
                end_time=context.end_time,
            ))
        except Exception as e:
            log_with_context(
                logger, logging.ERROR,
                f"Failed to persist terminal status of execution {context.execution_id}: {str(e)}",
                exc_info=True, workflow_id=context.workflow_id, execution_id=context.execution_id
            )

    def _run_workflow(self, workflow: Workflow, input_data: Any, context: ExecutionContext) -> WorkflowRunResult:
        """
        Run the graph batch by batch and aggregate the results.

        Args:
            workflow: Workflow definition to execute
            input_data: Workflow input, given to every node
            context: Execution context collecting results and errors

        Returns:
            Final output and per-node outputs of the run

        Raises:
            NoEntryNodesError: If the graph has nodes but none without incoming edges
            ExecutionEngineError: If scheduling reaches a node id that is not defined
        """
        nodes_by_id: Dict[str, WorkflowNode] = {node.id: node for node in workflow.nodes}
        outgoing_edges, in_degree = self._build_dependency_graph(workflow)

        ready: List[str] = [node_id for node_id, count in in_degree.items() if count == 0]
        if not ready and workflow.nodes:
            raise NoEntryNodesError(workflow_id=workflow.id, execution_id=context.execution_id)

        deadline = self._compute_deadline(workflow)
        node_results: Dict[str, Any] = {}
        dispatched = set()
        timed_out = False

        pool = self._open_pool(len(workflow.nodes))
        try:
            while ready:
                batch = list(ready)
                ready.clear()

                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    break

                batch_nodes = []
                for node_id in batch:
                    node = nodes_by_id.get(node_id)
                    if node is None:
                        raise ExecutionEngineError(f"Node not found: {node_id}",
                                                   workflow_id=workflow.id, execution_id=context.execution_id)
                    batch_nodes.append(node)

                logger.debug(f"Dispatching batch {batch} for execution {context.execution_id}")
                timed_out = not self._execute_batch(pool, batch_nodes, input_data, context, node_results, deadline)
                dispatched.update(batch)
                if timed_out:
                    break

                for node_id in batch:
                    for edge in outgoing_edges.get(node_id, []):
                        remaining = in_degree.get(edge.target)
                        if remaining is None:
                            continue
                        in_degree[edge.target] = remaining - 1
                        if remaining - 1 == 0:
                            ready.append(edge.target)
        finally:
            self._release_pool(pool)

        if timed_out:
            max_ms = workflow.config.max_execution_time_ms
            context.errors.append(ExecutionError(
                node_id="",
                error=ExecutionTimeoutError(
                    f"Workflow execution exceeded {max_ms} ms",
                    max_execution_time_ms=max_ms,
                    workflow_id=workflow.id,
                    execution_id=context.execution_id,
                ),
            ))
            log_with_context(
                logger, logging.ERROR, "Workflow execution timed out",
                workflow_id=workflow.id, execution_id=context.execution_id
            )
        elif len(dispatched) < len(workflow.nodes):
            unprocessed = [node.id for node in workflow.nodes if node.id not in dispatched]
            context.errors.append(ExecutionError(
                node_id="",
                error=IncompleteGraphError(
                    unprocessed_nodes=unprocessed,
                    workflow_id=workflow.id,
                    execution_id=context.execution_id,
                ),
            ))
            log_with_context(
                logger, logging.ERROR, "Workflow execution incomplete",
                workflow_id=workflow.id, execution_id=context.execution_id, unprocessed_nodes=unprocessed
            )

        return WorkflowRunResult(
            final_output=self._collect_final_output(workflow, outgoing_edges, node_results),
            node_results=node_results,
        )

    def _open_pool(self, node_count: int) -> ThreadPoolExecutor:
        pool = ThreadPoolExecutor(
            max_workers=min(self._max_workers, max(1, node_count)),
            thread_name_prefix="workflow-node"
        )
        with self._pools_lock:
            self._active_pools.add(pool)
        return pool

    def _release_pool(self, pool: ThreadPoolExecutor) -> None:
        # Nodes still running after a timeout are abandoned, not joined
        pool.shutdown(wait=False, cancel_futures=True)
        with self._pools_lock:
            self._active_pools.discard(pool)

    @staticmethod
    def _build_dependency_graph(workflow: Workflow) -> Tuple[Dict[str, List[WorkflowEdge]], Dict[str, int]]:
        """Build outgoing-edge lists and in-degree counts for every node."""
        outgoing_edges: Dict[str, List[WorkflowEdge]] = {}
        in_degree: Dict[str, int] = {}
        for node in workflow.nodes:
            outgoing_edges[node.id] = []
            in_degree[node.id] = 0

        for edge in workflow.edges:
            if edge.source in outgoing_edges:
                outgoing_edges[edge.source].append(edge)
            in_degree[edge.target] = in_degree.get(edge.target, 0) + 1

        return outgoing_edges, in_degree

    @staticmethod
    def _compute_deadline(workflow: Workflow) -> Optional[float]:
        max_ms = workflow.config.max_execution_time_ms
        if max_ms is None:
            return None
        return time.monotonic() + max_ms / 1000.0

    def _execute_batch(
        self,
        pool: ThreadPoolExecutor,
        batch: List[WorkflowNode],
        input_data: Any,
        context: ExecutionContext,
        node_results: Dict[str, Any],
        deadline: Optional[float]
    ) -> bool:
        """
        Execute one batch concurrently and record every outcome.

        The coordinating thread is the only writer of ``node_results``,
        ``context.results`` and ``context.errors``.

        Returns:
            False if the deadline passed before the batch finished
        """
        futures: Dict[Future, WorkflowNode] = {
            pool.submit(self._dispatch_node, node, input_data, context): node
            for node in batch
        }

        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        done, not_done = wait(futures, timeout=timeout)

        for future in not_done:
            future.cancel()

        for future, node in futures.items():
            if future not in done:
                continue
            try:
                result = future.result()
            except Exception as e:
                context.errors.append(ExecutionError(node_id=node.id, error=e))
                log_with_context(
                    logger, logging.ERROR, f"Workflow node execution failed: {str(e)}",
                    workflow_id=context.workflow_id, execution_id=context.execution_id, node_id=node.id
                )
                continue

            node_results[node.id] = result.output
            context.results[node.id] = result.output

        return not not_done

    def _dispatch_node(self, node: WorkflowNode, input_data: Any, context: ExecutionContext) -> NodeResult:
        """Run a single node on a worker thread."""
        # Written by every worker of the batch; diagnostics only
        context.current_node_id = node.id
        return self.node_executor.execute(node, input_data, context)

    @staticmethod
    def _collect_final_output(
        workflow: Workflow,
        outgoing_edges: Dict[str, List[WorkflowEdge]],
        node_results: Dict[str, Any]
    ) -> Any:
        """Derive the run's output from its sink nodes."""
        sinks = [node.id for node in workflow.nodes if not outgoing_edges.get(node.id)]

        if len(sinks) == 1:
            return node_results.get(sinks[0])
        if len(sinks) > 1:
            return {node_id: node_results[node_id] for node_id in sinks if node_id in node_results}
        return None

    def get_engine_statistics(self) -> Dict[str, Any]:
        """Return the worker limit and the number of runs in flight."""
        with self._pools_lock:
            active_runs = len(self._active_pools)
        return {"max_workers": self._max_workers, "active_runs": active_runs}

    def shutdown(self, wait_for_nodes: bool = True) -> None:
        """Shut down the pools of runs still in flight."""
        with self._pools_lock:
            pools = list(self._active_pools)
        try:
            for pool in pools:
                pool.shutdown(wait=wait_for_nodes, cancel_futures=not wait_for_nodes)
            logger.info("WorkflowEngine shutdown completed")
        except Exception as e:
            logger.error(f"Error during WorkflowEngine shutdown: {str(e)}")
