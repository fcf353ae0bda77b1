"""Main entry point - wires the dispatcher and serves the HTTP API."""

import asyncio
import logging
import os
from pathlib import Path

import uvicorn
import yaml

from .errors import ConfigurationError
from .server import create_app
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENT_DISPATCH_CONFIG"


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return config


class DispatchApp:
    """Main application: session manager plus API server."""

    def __init__(self, config: dict):
        self.config = config

        # Server config
        self.host = config.get("server", {}).get("host", "127.0.0.1")
        self.port = config.get("server", {}).get("port", 8430)

        self.session_manager = SessionManager(config=config)
        self.app = create_app(session_manager=self.session_manager, config=config)

    async def start(self):
        """Serve until shutdown."""
        workers = self.session_manager.list_workers()
        available = [w["id"] for w in workers if w["available"]]
        logger.info(f"Workers configured: {len(workers)}, available: {', '.join(available) or 'none'}")
        logger.info(f"Restored {len(self.session_manager.sessions)} sessions")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        server = uvicorn.Server(config)

        logger.info(f"Starting server on http://{self.host}:{self.port}")
        await server.serve()

    async def stop(self):
        """Let best-effort background work finish."""
        logger.info("Stopping Agent Dispatch...")
        await self.session_manager.wait_for_background_tasks()
        logger.info("Shutdown complete")


async def main():
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(os.environ.get(CONFIG_ENV_VAR, "config.yaml"))

    app = DispatchApp(config)
    try:
        await app.start()
    finally:
        await app.stop()


def run():
    """Entry point for console script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
