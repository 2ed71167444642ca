"""Process entry point: the HTTP API and the relayer loop side by side.

Both share one AddressRegistry, so the per-owner lock that keeps address
creation idempotent covers API requests and relayer lookups alike.
"""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from bridgerelay.api.app import create_app
from bridgerelay.config import Settings, get_settings
from bridgerelay.ledger.database import close_db, init_db
from bridgerelay.registry import get_registry
from bridgerelay.scanner.runner import RelayerRunner, build_runner

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Owns the relayer runner and the uvicorn server for one process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.runner: Optional[RelayerRunner] = None
        self.server: Optional[uvicorn.Server] = None
        self._stopping = asyncio.Event()

    def _log_startup(self) -> None:
        s = self.settings
        logger.info(f"Starting bridge relayer ({s.environment})")
        logger.info(f"Source chain: {s.source_network_name} (chain id {s.source_chain_id})")
        if s.dry_run:
            logger.warning("DRY_RUN enabled - using the simulated chain")
        if not s.has_operator:
            logger.warning("OPERATOR_PRIVATE_KEY not set - bridge attempts will fail at gas funding")

    async def start(self) -> None:
        """Run until shutdown() is called, then stop both services."""
        configure_logging(self.settings)
        self._log_startup()

        await init_db()

        registry = get_registry(self.settings)
        self.runner = build_runner(self.settings, registry=registry)
        self.server = uvicorn.Server(
            uvicorn.Config(
                create_app(registry=registry),
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
        )

        relayer = asyncio.create_task(self._supervise("relayer", self.runner.run()))
        api = asyncio.create_task(self._supervise("api", self.server.serve()))
        logger.info(f"API listening on {self.settings.api_host}:{self.settings.api_port}")

        await self._stopping.wait()

        # The in-flight tick may be mid-bridge; give it time to reach a receipt
        self.runner.stop()
        self.server.should_exit = True
        done, pending = await asyncio.wait(
            {relayer, api}, timeout=self.settings.confirmation_timeout * 2
        )
        for task in pending:
            logger.warning(f"Cancelling {task.get_name()} after shutdown timeout")
            task.cancel()
        await asyncio.gather(*done, *pending, return_exceptions=True)

        await self.runner.scanner.chain.close()
        await close_db()
        logger.info("Shutdown complete")

    async def _supervise(self, name: str, coro) -> None:
        asyncio.current_task().set_name(name)
        try:
            await coro
        except asyncio.CancelledError:
            logger.info(f"{name} cancelled")
            raise
        except Exception as e:
            logger.error(f"{name} crashed: {e}")
            self.shutdown()
            raise

    def shutdown(self) -> None:
        """Ask both services to stop."""
        if not self._stopping.is_set():
            logger.info("Shutdown requested")
            self._stopping.set()


def main():
    """Console script entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
