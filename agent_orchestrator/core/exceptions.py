"""Custom exceptions for the agent orchestrator with detailed error information."""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"


class WorkflowEngineError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class NotFoundError(WorkflowEngineError):
    """Raised when a workflow, execution or agent cannot be resolved."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if resource_type:
            self.add_context(resource_type=resource_type)
        if resource_id:
            self.add_context(resource_id=resource_id)


class ExecutionEngineError(WorkflowEngineError):
    """Raised when a workflow run fails structurally, outside a single node."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class NoEntryNodesError(ExecutionEngineError):
    """Raised when a workflow has nodes but none of them is free of incoming edges."""

    def __init__(self, message: str = "Workflow has no entry nodes", **kwargs):
        super().__init__(message, **kwargs)


class IncompleteGraphError(ExecutionEngineError):
    """Recorded when a run finishes without dispatching every node."""

    def __init__(
        self,
        message: str = "Workflow execution did not process all nodes",
        unprocessed_nodes: Optional[list] = None,
        **kwargs
    ):
        super().__init__(message, severity=ErrorSeverity.MEDIUM, **kwargs)
        if unprocessed_nodes:
            self.add_details(unprocessed_nodes=unprocessed_nodes)


class ExecutionTimeoutError(ExecutionEngineError):
    """Recorded when a run exceeds the workflow's maximum execution time."""

    def __init__(
        self,
        message: str,
        max_execution_time_ms: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        if max_execution_time_ms is not None:
            self.add_details(max_execution_time_ms=max_execution_time_ms)


class NodeExecutionError(WorkflowEngineError):
    """Raised when node execution fails."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            recoverable=True,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class NodeConfigurationError(NodeExecutionError):
    """Raised when a node lacks the configuration its type requires."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class AgentInvocationError(NodeExecutionError):
    """Raised when an agent cannot be invoked or its invocation fails."""

    def __init__(self, message: str, agent_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if agent_id:
            self.add_context(agent_id=agent_id)


class PromptRenderError(WorkflowEngineError):
    """Raised when a prompt template cannot be rendered with the given variables."""

    def __init__(
        self,
        message: str,
        prompt_id: Optional[str] = None,
        missing_variables: Optional[list] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if prompt_id:
            self.add_context(prompt_id=prompt_id)
        if missing_variables:
            self.add_details(missing_variables=missing_variables)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class ModelProviderError(WorkflowEngineError):
    """Raised when the language-model provider call fails.

    Transport failures, rate limiting (429) and server errors (5xx) are
    recoverable; other HTTP statuses are not.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.NETWORK,
            recoverable=status_code is None or status_code == 429 or status_code >= 500,
            **kwargs
        )
        if model:
            self.add_context(model=model)
        if status_code is not None:
            self.add_details(status_code=status_code)


class CircuitOpenError(ModelProviderError):
    """Raised without calling the provider while its circuit breaker is open."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.recoverable = False
        if retry_after is not None:
            self.add_details(retry_after_seconds=round(retry_after, 3))


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
