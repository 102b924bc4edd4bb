"""HTTP API for the agent orchestrator."""

from .endpoints import router

__all__ = ["router"]
