"""Middleware and exception handlers for error handling and logging."""

import logging
import time
import uuid
from datetime import datetime
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    AgentInvocationError,
    CircuitOpenError,
    ModelProviderError,
    NotFoundError,
    PromptRenderError,
    WorkflowEngineError,
    create_error_response,
)
from .logging import (
    CORRELATION_FIELDS,
    clear_logging_context,
    get_logger,
    log_with_context,
    set_logging_context,
)


logger = get_logger(__name__)


def get_status_code_for_error(error: WorkflowEngineError) -> int:
    """Determine the HTTP status code for an orchestrator error."""
    if isinstance(error, NotFoundError):
        return 404
    elif isinstance(error, PromptRenderError):
        return 422
    elif isinstance(error, CircuitOpenError):
        return 503
    elif isinstance(error, ModelProviderError):
        return 502
    elif isinstance(error, AgentInvocationError):
        return 409
    return 500


async def workflow_engine_error_handler(request: Request, error: WorkflowEngineError) -> JSONResponse:
    """Render orchestrator errors raised by endpoints."""
    status_code = get_status_code_for_error(error)
    log_with_context(
        logger, logging.WARNING,
        f"Orchestrator error: {request.method} {request.url.path} - "
        f"Error: {error.error_code} - Status: {status_code}",
        error_details=error.to_dict(),
        **{key: error.context.get(key) for key in CORRELATION_FIELDS}
    )
    return JSONResponse(status_code=status_code, content=create_error_response(error))


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Adds request ids, logs requests and turns unexpected errors into 500 responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")

            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.utcnow().isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            clear_logging_context()


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware for performance monitoring and alerting."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        if duration > self.slow_request_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} - "
                f"Duration: {duration:.3f}s (threshold: {self.slow_request_threshold}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
