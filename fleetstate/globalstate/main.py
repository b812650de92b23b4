"""
Global State Server - Main entry point.

This module starts a node of the global state service:
- Local engine and store (only when this node owns the data)
- Dispatch layer (local or forwarding to the remote owner)
- HTTP server exposing the peer routes

Usage:
    python -m fleetstate.globalstate.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The engine is opened before the HTTP server accepts requests
    - A forwarding node never opens local storage
    - Graceful shutdown stops the HTTP server before closing storage

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .api import create_http_app, run_http_server
from .config import EngineKind, LogFormat, ServerConfig
from .dispatch import GlobalState
from .engine import KVEngine, create_engine
from .store import LocalStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == LogFormat.JSON:
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class Server:
    """Global state node orchestrator.

    Attributes:
        config: Server configuration
        engine: Local engine (None on forwarding nodes)
        global_state: Dispatch layer shared by all handlers

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.engine: KVEngine | None = None
        self.global_state: GlobalState | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting global state server")
        self.config.log_config()

        try:
            local = None
            if not self.config.global_state.is_remote:
                if self.config.storage.engine == EngineKind.SQLITE:
                    Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(self.config.storage)
                self.engine.open()
                local = LocalStore(self.engine)
                logger.info(f"Storage engine opened: {self.config.storage.engine.value}")

            self.global_state = GlobalState(self.config.global_state, local=local)

            app = create_http_app(
                self.global_state,
                self.config.http,
                shared_secret=self.config.global_state.shared_secret,
            )

            self._running = True
            logger.info("Global state server started successfully")

            await run_http_server(
                app,
                host=self.config.http.host,
                port=self.config.http.port,
                shutdown_event=self._shutdown_event,
            )

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully. Safe to call more than once."""
        self._shutdown_event.set()

        if self.global_state:
            await self.global_state.close()
            self.global_state = None

        if self.engine:
            self.engine.close()
            self.engine = None

        if self._running:
            self._running = False
            logger.info("Global state server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
