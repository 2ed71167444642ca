"""Relayer runner.

Drives the deposit scanner on a fixed-rate timer and hands every new
deposit to the bridge executor. A tick is complete only when all bridge
attempts it started have finished, and ticks never overlap.

Usage:
    python -m bridgerelay.scanner.runner --interval 10
    python -m bridgerelay.scanner.runner --once
"""

import argparse
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from bridgerelay.bridge.base import BridgeResult
from bridgerelay.bridge.executor import BridgeExecutor
from bridgerelay.chain import SimulatedChain, get_chain_client
from bridgerelay.chain.base import SourceChainClient
from bridgerelay.config import Settings, get_settings
from bridgerelay.errors import BridgeError
from bridgerelay.ledger.database import close_db, get_db, init_db
from bridgerelay.ledger.repository import RelayerRepository
from bridgerelay.messaging.oft import simulated_quote_handler
from bridgerelay.registry import AddressRegistry, get_registry
from bridgerelay.scanner.deposits import DepositEvent, DepositScanner
from bridgerelay.scanner.fingerprints import (
    FingerprintStore,
    InMemoryFingerprintStore,
    SqlFingerprintStore,
)

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Outcome of one scan tick."""

    events: list[DepositEvent] = field(default_factory=list)
    completed: list[BridgeResult] = field(default_factory=list)
    failed: list[BridgeError] = field(default_factory=list)
    duration: float = 0.0


class AttemptRecorder:
    """Writes bridge attempts to the ledger for manual recovery.

    Recording failures are logged and never abort a bridge in flight.
    """

    async def start(self, event: DepositEvent) -> Optional[int]:
        try:
            async with get_db() as session:
                attempt = await RelayerRepository(session).create_bridge_attempt(
                    event.deposit_address, event.owner_id, event.observed_amount
                )
                return attempt.id
        except Exception as e:
            logger.error(f"Failed to record bridge attempt for {event.deposit_address}: {e}")
            return None

    async def funded(self, attempt_id: Optional[int], fund_tx_hash: str) -> None:
        if attempt_id is None:
            return
        try:
            async with get_db() as session:
                await RelayerRepository(session).mark_bridge_attempt_funded(
                    attempt_id, fund_tx_hash
                )
        except Exception as e:
            logger.error(f"Failed to record funding of bridge attempt {attempt_id}: {e}")

    async def complete(self, attempt_id: Optional[int], result: BridgeResult) -> None:
        if attempt_id is None:
            return
        try:
            async with get_db() as session:
                await RelayerRepository(session).complete_bridge_attempt(
                    attempt_id,
                    fund_tx_hash=result.fund_tx_hash,
                    send_tx_hash=result.send_tx_hash,
                    native_fee=result.native_fee,
                    fee_source=result.fee_source.value,
                )
        except Exception as e:
            logger.error(f"Failed to record completion of bridge attempt {attempt_id}: {e}")

    async def fail(self, attempt_id: Optional[int], error: BridgeError) -> None:
        if attempt_id is None:
            return
        try:
            async with get_db() as session:
                await RelayerRepository(session).fail_bridge_attempt(
                    attempt_id,
                    step=error.step,
                    error_message=str(error),
                    fund_tx_hash=error.fund_tx_hash,
                )
        except Exception as e:
            logger.error(f"Failed to record failure of bridge attempt {attempt_id}: {e}")


class RelayerRunner:
    """Fixed-rate scan loop feeding the bridge executor."""

    def __init__(
        self,
        scanner: DepositScanner,
        executor: BridgeExecutor,
        interval: float = 10.0,
        recorder: Optional[AttemptRecorder] = None,
    ):
        """Initialize the runner.

        Args:
            scanner: Deposit scanner
            executor: Bridge executor
            interval: Seconds between tick deadlines
            recorder: Optional ledger recorder for bridge attempts
        """
        self.scanner = scanner
        self.executor = executor
        self.interval = interval
        self.recorder = recorder
        self.ticks = 0
        self._stop_event = asyncio.Event()

    async def _dispatch(self, event: DepositEvent) -> Union[BridgeResult, BridgeError]:
        attempt_id = await self.recorder.start(event) if self.recorder else None

        async def on_funded(fund_tx_hash: str) -> None:
            # Recorded before any token movement
            await self.recorder.funded(attempt_id, fund_tx_hash)

        try:
            result = await self.executor.execute(
                event, on_funded=on_funded if self.recorder else None
            )
        except BridgeError as e:
            if self.recorder:
                await self.recorder.fail(attempt_id, e)
            return e

        if self.recorder:
            await self.recorder.complete(attempt_id, result)
        return result

    async def tick(self) -> TickReport:
        """Scan once and bridge every new deposit, waiting for all attempts."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        report = TickReport()

        report.events = await self.scanner.scan_once()
        if report.events:
            logger.info(f"Found {len(report.events)} new deposit(s)")
            outcomes = await asyncio.gather(*(self._dispatch(e) for e in report.events))
            for outcome in outcomes:
                if isinstance(outcome, BridgeError):
                    report.failed.append(outcome)
                else:
                    report.completed.append(outcome)

        report.duration = loop.time() - started
        self.ticks += 1
        return report

    async def run(self) -> None:
        """Run ticks until stop() is called.

        Deadlines are spaced by the interval from the first tick. A tick
        that overruns one or more deadlines is followed immediately by
        the next tick; missed deadlines are skipped, not replayed.
        """
        loop = asyncio.get_running_loop()
        self._stop_event.clear()
        logger.info(f"Starting relayer (interval: {self.interval}s)")

        next_deadline = loop.time()
        while not self._stop_event.is_set():
            delay = next_deadline - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            try:
                report = await self.tick()
                logger.debug(
                    f"Tick {self.ticks} finished in {report.duration:.3f}s "
                    f"({len(report.events)} events, {len(report.failed)} failed)"
                )
            except Exception as e:
                logger.error(f"Tick failed: {e}")

            next_deadline += self.interval
            now = loop.time()
            if now > next_deadline:
                missed = math.ceil((now - next_deadline) / self.interval)
                logger.warning(f"Tick overran its interval, skipping {missed} deadline(s)")
                next_deadline += missed * self.interval

        logger.info("Relayer stopped")

    def stop(self) -> None:
        """Stop after the in-flight tick."""
        self._stop_event.set()


def build_runner(
    settings: Optional[Settings] = None,
    registry: Optional[AddressRegistry] = None,
    chain: Optional[SourceChainClient] = None,
    fingerprints: Optional[FingerprintStore] = None,
) -> RelayerRunner:
    """Wire registry, chain, scanner and executor from settings."""
    settings = settings or get_settings()
    registry = registry or get_registry(settings)
    chain = chain or get_chain_client(settings)

    if isinstance(chain, SimulatedChain):
        chain.register_call_handler(
            settings.token_address, simulated_quote_handler(settings.fallback_fee_wei)
        )

    if fingerprints is None:
        fingerprints = (
            SqlFingerprintStore() if settings.persist_fingerprints else InMemoryFingerprintStore()
        )

    scanner = DepositScanner(
        registry=registry,
        chain=chain,
        token_address=settings.token_address,
        fingerprints=fingerprints,
        concurrency=settings.scan_concurrency,
    )
    executor = BridgeExecutor.from_settings(registry, chain, settings)

    return RelayerRunner(
        scanner=scanner,
        executor=executor,
        interval=settings.scan_interval,
        recorder=AttemptRecorder(),
    )


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the deposit bridge relayer")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between scans (default: SCAN_INTERVAL)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    await init_db()
    runner = build_runner(settings)
    if args.interval:
        runner.interval = args.interval

    try:
        if args.once:
            report = await runner.tick()
            print(
                f"Processed {len(report.events)} deposits "
                f"({len(report.completed)} bridged, {len(report.failed)} failed)"
            )
        else:
            await runner.run()
    finally:
        await runner.scanner.chain.close()
        await close_db()


def cli():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
