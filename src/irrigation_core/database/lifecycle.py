"""
Database Lifecycle Runner

Owns one Database for a long-running process: connect, run periodic pool
stats and health probes, and on SIGTERM/SIGINT drain in-flight work for a
bounded time before closing. A second signal forces exit.

Usage:
    python -m irrigation_core.database.lifecycle

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: backend selection
    DB_STATS_INTERVAL: seconds between pool stats log lines
    DB_HEALTH_CHECK_INTERVAL: seconds between health probes
    DB_SHUTDOWN_TIMEOUT: seconds allowed for draining on shutdown
    LOG_LEVEL: logging level (default: INFO)
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from ..observability import configure_logging
from .base import Database
from .factory import create_database

logger = logging.getLogger(__name__)


class DatabaseLifecycle:
    """
    Manages a Database with graceful shutdown.
    """

    def __init__(self, database: Optional[Database] = None):
        self.database = database or create_database()
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def install_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _handle_shutdown_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            logger.warning("Received %s again, forcing exit", sig.name)
            sys.exit(1)

        logger.info("Received %s, initiating graceful shutdown", sig.name)
        self._shutdown_requested = True
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def start(self) -> None:
        await self.database.connect()
        self.database.start_monitoring()

    async def stop(self) -> None:
        timeout = self.database.config.shutdown_timeout_s
        logger.info("Closing database (drain timeout %ss)", timeout)
        await self.database.close(timeout)
        logger.info("Database closed")

    async def run(self) -> None:
        """Hold the database open until shutdown is requested."""
        self.install_signal_handlers()
        try:
            await self.start()
            logger.info("Database lifecycle running: %r", self.database)
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("Database lifecycle error: %s", e, exc_info=True)
            raise
        finally:
            self.remove_signal_handlers()
            await self.stop()

    async def health_check(self) -> dict:
        result = await self.database.health_check()
        result["shutdown_requested"] = self._shutdown_requested
        return result


async def main():
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    await DatabaseLifecycle().run()


if __name__ == "__main__":
    asyncio.run(main())
