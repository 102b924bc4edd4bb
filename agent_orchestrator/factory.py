"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Engine, text

from .api.endpoints import router
from .config import AppConfig, get_config, validate_config
from .core.agent_executor import AgentExecutor
from .core.agent_registry import AgentRegistry
from .core.error_recovery import RetryConfig, RetryStrategy
from .core.exceptions import WorkflowEngineError
from .core.logging import get_logger, setup_logging
from .core.middleware import (
    ErrorHandlingMiddleware,
    PerformanceMonitoringMiddleware,
    workflow_engine_error_handler,
)
from .core.model_client import ChatModelClient
from .core.node_executor import WorkflowNodeExecutor
from .core.prompt_service import PromptService
from .core.workflow_engine import WorkflowEngine
from .storage.database import create_database_engine, create_session_factory, create_tables
from .storage.repositories import (
    AgentRepository,
    PromptRepository,
    WorkflowExecutionRepository,
    WorkflowRepository,
)

logger = get_logger(__name__)


class ApplicationContainer:
    """Container for the application's components, wired once per app."""

    def __init__(self, config: AppConfig, http_client: Optional[httpx.Client] = None):
        self.config = config

        self.database_engine: Engine = create_database_engine(config.database_url, echo=config.database_echo)
        self.session_factory = create_session_factory(self.database_engine)

        self.workflow_repository = WorkflowRepository(self.session_factory)
        self.execution_repository = WorkflowExecutionRepository(self.session_factory)
        self.agent_repository = AgentRepository(self.session_factory)
        self.prompt_repository = PromptRepository(self.session_factory)

        self.prompt_service = PromptService(self.prompt_repository)

        self.agent_registry = AgentRegistry(self.agent_repository)
        self.model_client = ChatModelClient(
            api_key=config.model_api_key,
            base_url=config.model_base_url,
            default_model=config.default_model,
            timeout=config.model_request_timeout,
            http_client=http_client,
            retry_strategy=RetryStrategy(
                RetryConfig(
                    max_attempts=config.model_max_attempts,
                    base_delay=config.model_retry_base_delay,
                    max_delay=config.model_retry_max_delay,
                ),
                failure_threshold=config.circuit_failure_threshold,
                recovery_timeout=config.circuit_recovery_timeout,
            ),
        )
        self.agent_executor = AgentExecutor(self.agent_registry, self.model_client)
        self.node_executor = WorkflowNodeExecutor(self.agent_executor)
        self.workflow_engine = WorkflowEngine(
            workflow_store=self.workflow_repository,
            execution_store=self.execution_repository,
            node_executor=self.node_executor,
            max_workers=config.node_worker_threads,
        )

    def initialize(self) -> None:
        """Create tables and load persisted agents."""
        create_tables(self.database_engine)
        logger.info("Database tables created")

        loaded = self.agent_registry.refresh()
        logger.info(f"Loaded {loaded} agents into the registry")

        if not self.model_client.is_configured:
            logger.warning("No model API key configured; agent invocations will fail")

    def shutdown(self) -> None:
        """Release the worker pool, HTTP client and database connections."""
        logger.info("Shutting down Agent Orchestrator")

        try:
            self.workflow_engine.shutdown()
        except Exception as e:
            logger.error(f"Error during workflow engine shutdown: {str(e)}")

        try:
            self.model_client.close()
        except Exception as e:
            logger.error(f"Error closing model client: {str(e)}")

        self.database_engine.dispose()

    def check_database(self) -> bool:
        try:
            with self.database_engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {str(e)}")
            return False


def create_lifespan_handler(config: AppConfig):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        container: ApplicationContainer = app.state.container
        try:
            container.initialize()
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        container.shutdown()

    return lifespan


def create_app(config: Optional[AppConfig] = None, http_client: Optional[httpx.Client] = None) -> FastAPI:
    """Create and configure FastAPI application instance.

    Args:
        config: Application configuration; loaded from the environment when omitted
        http_client: HTTP client used for model provider calls

    Returns:
        The configured application; its components live on ``app.state.container``
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Backend for defining agents and running agent workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )
    app.state.container = ApplicationContainer(config, http_client=http_client)

    app.add_exception_handler(WorkflowEngineError, workflow_engine_error_handler)

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
        app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    def health_check():
        """Health check including database connectivity and registry size."""
        container: ApplicationContainer = app.state.container
        database_ok = container.check_database()
        return {
            "status": "healthy" if database_ok else "degraded",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "database": "connected" if database_ok else "unavailable",
            "registered_agents": container.agent_registry.get_registered_agents_count(),
            "model_provider_configured": container.model_client.is_configured,
            "engine": container.workflow_engine.get_engine_statistics(),
            "model_circuits": container.model_client.retry_strategy.get_circuit_states(),
        }
