"""Agent orchestrator: agents, workflows and a concurrent workflow engine."""

__version__ = "1.0.0"
