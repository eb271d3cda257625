"""Long-running agent: startup checks plus the three periodic timers."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from . import config_store
from .analysis import AnalysisPipeline
from .config import settings
from .governance_client import GovernanceClient
from .neurons import ensure_minimum_dissolve_delay, resolve_voting_neuron
from .scheduler import execute_due_votes
from .sync import sync_new_proposals

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]


class Orchestrator:
    """Drives sync, vote execution and analysis on independent timers.

    Every tick runs as its own task, so a slow tick never delays the next one
    and an exception in a tick is logged without stopping its timer.
    """

    def __init__(self, governance: GovernanceClient, pipeline: AnalysisPipeline | None = None) -> None:
        self.governance = governance
        self.pipeline = pipeline or AnalysisPipeline()
        self.shutdown_requested = False
        self._stopped = asyncio.Event()
        self._timers: list[asyncio.Task[None]] = []
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._ticks)

    async def sync_tick(self) -> None:
        result = await sync_new_proposals(self.governance)
        logger.info("Sync: %d new proposals (%s)", result.new_count, result.stop_reason)

    async def vote_tick(self) -> None:
        result = await execute_due_votes(self.governance)
        if result.total:
            logger.info(
                "Vote sweep: %d executed, %d failed", len(result.executed), len(result.failed)
            )

    async def analysis_tick(self) -> None:
        if self.pipeline.busy:
            return
        neuron_id = await resolve_voting_neuron(self.governance)
        if neuron_id is None:
            return
        await self.pipeline.process_next_unanalyzed(neuron_id)

    async def _run_tick(self, name: str, callback: TickCallback) -> None:
        try:
            await callback()
        except Exception:
            logger.exception("Error in %s tick", name)

    def spawn_tick(self, name: str, callback: TickCallback) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run_tick(name, callback), name=f"tick:{name}")
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def _timer(self, name: str, interval: float, callback: TickCallback) -> None:
        logger.info("Running %s every %s seconds", name, interval)
        while not self.shutdown_requested:
            await asyncio.sleep(interval)
            if self.shutdown_requested:
                break
            self.spawn_tick(name, callback)

    async def start(self) -> None:
        """Seed config, top up dissolve delay, run the initial sync, then start timers."""
        await config_store.ensure_config_defaults()
        await ensure_minimum_dissolve_delay(self.governance)
        await self._run_tick("sync", self.sync_tick)

        timers = [
            ("sync", settings.sync_interval_seconds, self.sync_tick),
            ("vote", settings.vote_sweep_interval_seconds, self.vote_tick),
            ("analysis", settings.analysis_interval_seconds, self.analysis_tick),
        ]
        for name, interval, callback in timers:
            self._timers.append(
                asyncio.create_task(self._timer(name, interval, callback), name=f"timer:{name}")
            )

    def request_shutdown(self) -> None:
        self.shutdown_requested = True
        self._stopped.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.request_shutdown)

    async def stop(self) -> None:
        """Stop the timers and wait for in-flight ticks to finish."""
        self.request_shutdown()
        for task in self._timers:
            task.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        if self._ticks:
            logger.info("Waiting for %d in-flight ticks", len(self._ticks))
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def run_forever(self) -> None:
        self._install_signal_handlers()
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.stop()
        logger.info("Shutdown complete")
