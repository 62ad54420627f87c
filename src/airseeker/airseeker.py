"""
Airseeker service.

This module contains the main service that starts the beacon fetch loops and
the data feed update loops and coordinates their shutdown.
"""

import asyncio
import logging
import signal

from .beacon_fetcher import initiate_fetching_beacon_data
from .config import AirseekerConfig
from .data_feed_updater import initiate_data_feed_updates
from .providers import initialize_providers
from .state import StateStore

logger = logging.getLogger(__name__)


class Airseeker:
    """
    Main service that runs all fetch and update loops.

    This class focuses on lifecycle management. The loops share a
    :class:`StateStore` and stop cooperatively once its stop flag is set.
    """

    HEALTH_CHECK_INTERVAL = 1.0  # seconds

    def __init__(self, config: AirseekerConfig):
        """
        Initialize Airseeker.

        Args:
            config: Validated Airseeker configuration
        """
        self.config = config
        self.store = StateStore(config)
        self.running = False

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass  # Never installed

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any loop task has ended before shutdown."""
        for name, task in tasks.items():
            if task.done():
                try:
                    await task
                    logger.error(f"{name} task exited unexpectedly")
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _drain_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Let in-flight iterations finish after the stop flag is set."""
        self.store.stop()
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for name, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.error(f"{name} task failed during shutdown: {result}")

    async def run(self) -> None:
        """Main event loop of the service."""
        self.running = True
        logger.info("Airseeker starting...")
        self.config.log_config()

        self.store.set_providers(initialize_providers(self.config))

        tasks: dict[str, asyncio.Task] = {}
        try:
            for index, coroutine in enumerate(initiate_fetching_beacon_data(self.store)):
                tasks[f"fetch-{index}"] = asyncio.create_task(coroutine)
            for index, coroutine in enumerate(initiate_data_feed_updates(self.store)):
                tasks[f"update-{index}"] = asyncio.create_task(coroutine)

            self._install_signal_handlers()
            logger.info(f"Started {len(tasks)} loops, waiting for shutdown...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.HEALTH_CHECK_INTERVAL)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self._drain_tasks(tasks)
            self._remove_signal_handlers()
            self.running = False
            logger.info("Airseeker stopped")

    def stop(self) -> None:
        """Stop the service."""
        self.running = False
        self.shutdown_event.set()
