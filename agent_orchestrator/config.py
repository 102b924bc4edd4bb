"""Configuration management for the agent orchestrator."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum

from .core.model_client import DEFAULT_BASE_URL, DEFAULT_MODEL

ENV_PREFIX = "AGENT_ORCHESTRATOR_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""
    model_config = ConfigDict(protected_namespaces=())

    # Application settings
    app_name: str = Field(default="Agent Orchestrator", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./agent_orchestrator.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Workflow engine settings
    node_worker_threads: int = Field(
        default=10,
        description="Maximum number of workflow nodes executing at the same time"
    )

    # Model provider settings
    model_base_url: str = Field(default=DEFAULT_BASE_URL, description="OpenAI-compatible API base URL")
    model_api_key: Optional[str] = Field(default=None, description="Model provider API key")
    default_model: str = Field(default=DEFAULT_MODEL, description="Model used when an agent has no preference")
    model_request_timeout: float = Field(default=60.0, description="Model request timeout in seconds")
    model_max_attempts: int = Field(default=3, description="Attempts per model call, including the first")
    model_retry_base_delay: float = Field(default=1.0, description="Backoff before the first retry in seconds")
    model_retry_max_delay: float = Field(default=10.0, description="Upper bound of the retry backoff in seconds")
    circuit_failure_threshold: int = Field(
        default=5,
        description="Consecutive provider failures that open a model's circuit breaker"
    )
    circuit_recovery_timeout: float = Field(
        default=60.0,
        description="Seconds an open circuit breaker rejects calls before a trial call"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s%(correlation)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log records")

    # Performance monitoring settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )
    enable_performance_monitoring: bool = Field(
        default=True,
        description="Enable request logging and performance middleware"
    )

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "PATCH", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('node_worker_threads')
    @classmethod
    def validate_node_worker_threads(cls, v):
        if v < 1:
            raise ValueError("Node worker threads must be at least 1")
        return v

    @field_validator('model_max_attempts', 'circuit_failure_threshold')
    @classmethod
    def validate_at_least_one(cls, v):
        if v < 1:
            raise ValueError("Attempt counts and failure thresholds must be at least 1")
        return v

    @field_validator('model_retry_base_delay', 'model_retry_max_delay', 'circuit_recovery_timeout')
    @classmethod
    def validate_non_negative_seconds(cls, v):
        if v < 0:
            raise ValueError("Delays must not be negative")
        return v

    @field_validator('model_request_timeout', 'slow_request_threshold')
    @classmethod
    def validate_positive_seconds(cls, v):
        if v <= 0:
            raise ValueError("Timeouts and thresholds must be positive")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.startswith("sqlite")

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Agent Orchestrator"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./agent_orchestrator.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            node_worker_threads=get_env("NODE_WORKER_THREADS", 10, int),
            model_base_url=get_env("MODEL_BASE_URL", DEFAULT_BASE_URL),
            model_api_key=get_env("MODEL_API_KEY", None),
            default_model=get_env("DEFAULT_MODEL", DEFAULT_MODEL),
            model_request_timeout=get_env("MODEL_REQUEST_TIMEOUT", 60.0, float),
            model_max_attempts=get_env("MODEL_MAX_ATTEMPTS", 3, int),
            model_retry_base_delay=get_env("MODEL_RETRY_BASE_DELAY", 1.0, float),
            model_retry_max_delay=get_env("MODEL_RETRY_MAX_DELAY", 10.0, float),
            circuit_failure_threshold=get_env("CIRCUIT_FAILURE_THRESHOLD", 5, int),
            circuit_recovery_timeout=get_env("CIRCUIT_RECOVERY_TIMEOUT", 60.0, float),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(correlation)s"),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PATCH", "DELETE"], list),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and environment variables."""
    global _config

    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.node_worker_threads > 200:
        errors.append("Node worker thread limit above 200 is not supported")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        node_worker_threads=4,
        model_api_key="test-key",
        model_base_url="https://model.test/v1",
        model_retry_base_delay=0.0,
        enable_performance_monitoring=False,
    )
