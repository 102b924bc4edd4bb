"""Entry point for running the agent orchestrator with uvicorn."""

import uvicorn

from .config import load_config
from .factory import create_app

config = load_config()
app = create_app(config)


def main() -> None:
    uvicorn.run("agent_orchestrator.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    main()
