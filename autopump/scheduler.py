"""
AutoPump Scheduler - periodic fee monitoring with a single-flight claim lock.

Features:
- Interval ticks every CHECK_INTERVAL_MINUTES
- Pause/resume persisted in system_status
- Manual trigger that is refused, never queued, while a claim is running
- Bounded in-memory history of recent errors
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from autopump.config import AutoPumpConfig
from autopump.errors import AutoPumpError, ClaimInProgress, ConfigurationError, PersistenceError
from autopump.types import FeeDecision, OrchestrationResult, SchedulerState

logger = logging.getLogger(__name__)

MAX_RECENT_ERRORS = 10
MONITOR_RETENTION_DAYS = 30


class ClaimLock:
    """
    Non-blocking single-flight guard around an asyncio.Lock.

    A caller that finds the lock held is turned away instead of waiting.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self.acquired_at: Optional[float] = None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def try_acquire(self) -> bool:
        if self._lock.locked():
            return False
        # An unlocked asyncio.Lock is acquired without suspending
        await self._lock.acquire()
        self.acquired_at = time.time()
        logger.info("[SCHEDULER] Claim lock acquired")
        return True

    def release(self) -> None:
        if self._lock.locked():
            self._lock.release()
            held = time.time() - (self.acquired_at or time.time())
            self.acquired_at = None
            logger.info(f"[SCHEDULER] Claim lock released after {held:.1f}s")

    @asynccontextmanager
    async def hold(self):
        """Hold the lock for the block, or raise ClaimInProgress if it is taken."""
        if not await self.try_acquire():
            raise ClaimInProgress()
        try:
            yield self
        finally:
            self.release()


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class AutoPumpScheduler:
    """Drives the monitor and orchestrator, and exposes the control surface."""

    def __init__(
        self,
        config: AutoPumpConfig,
        store,
        monitor,
        orchestrator,
        lock: Optional[ClaimLock] = None,
    ):
        self.config = config
        self.store = store
        self.monitor = monitor
        self.orchestrator = orchestrator
        self.lock = lock or ClaimLock()

        self.interval_seconds = config.check_interval_minutes * 60
        self.checks_performed = 0
        self.claims_triggered = 0
        self.last_check_time: Optional[float] = None
        self.next_check_time: Optional[float] = None
        self.recent_errors: Deque[Dict[str, Any]] = deque(maxlen=MAX_RECENT_ERRORS)

        self._running = False
        self._checking = False
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SchedulerState:
        if self.lock.locked:
            return SchedulerState.CLAIM_LOCKED
        if self._checking:
            return SchedulerState.CHECKING
        return SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_initial_check: bool = True) -> None:
        """Start the interval loop. The first check runs immediately when auto-claim is on."""
        if self._running:
            logger.warning("[SCHEDULER] Already running")
            return

        try:
            await self.store.cleanup_old_monitor_checks(MONITOR_RETENTION_DAYS)
        except PersistenceError as e:
            logger.warning(f"[SCHEDULER] Monitor check cleanup failed: {e.message}")

        self._running = True
        initial = run_initial_check and self.config.auto_claim_enabled
        self._task = asyncio.create_task(self._run_loop(initial))
        logger.info(
            f"[SCHEDULER] Started: every {self.config.check_interval_minutes} minutes, "
            f"auto_claim={self.config.auto_claim_enabled}"
        )

    async def stop(self) -> None:
        if not self._running:
            logger.warning("[SCHEDULER] Not running")
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[SCHEDULER] Stopped")

    async def _run_loop(self, run_initial: bool) -> None:
        if not run_initial:
            self.next_check_time = time.time() + self.interval_seconds
            await asyncio.sleep(self.interval_seconds)

        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[SCHEDULER] Tick crashed: {e}")
                await self._record_error(f"{type(e).__name__}: {e}")

            self.next_check_time = time.time() + self.interval_seconds
            logger.info(f"[SCHEDULER] Next check in {self.config.check_interval_minutes} minutes")
            await asyncio.sleep(self.interval_seconds)

    # ------------------------------------------------------------------
    # Monitoring task
    # ------------------------------------------------------------------

    async def tick(self, ignore_pause: bool = False) -> Optional[OrchestrationResult]:
        """
        One monitoring pass.

        Returns:
            The pipeline result when a claim ran, otherwise None
        """
        try:
            if not ignore_pause:
                status = await self.store.get_system_status()
                if status.is_paused:
                    logger.warning("[SCHEDULER] System is paused, skipping check")
                    return None

            if self.lock.locked:
                logger.info("[SCHEDULER] Claim already in progress, skipping this check")
                return None

            self._checking = True
            self.checks_performed += 1
            self.last_check_time = time.time()
            logger.info(f"[SCHEDULER] Check #{self.checks_performed} started")
            await self.store.record_check()

            decision = await self.monitor.should_claim()
            if not decision.should_claim:
                logger.info(f"[SCHEDULER] No action needed: {decision.reason}")
                return None

            if not self.config.auto_claim_enabled:
                logger.info("[SCHEDULER] Auto-claim disabled, manual claim required")
                return None

            if not await self.lock.try_acquire():
                logger.info("[SCHEDULER] Claim lock taken before claim could start, skipping")
                return None
            try:
                self.claims_triggered += 1
                logger.info("[SCHEDULER] Threshold met, triggering claim pipeline")
                result = await self.orchestrator.run(force=False)
            finally:
                self.lock.release()

            await self._after_run(result)
            return result

        except AutoPumpError as e:
            logger.error(f"[SCHEDULER] Check failed ({e.code}): {e.message}")
            await self._record_error(e.message)
            return None
        finally:
            self._checking = False

    async def _after_run(self, result: OrchestrationResult) -> None:
        if result.success:
            logger.info("[SCHEDULER] Claim pipeline completed successfully")
        elif not result.skipped:
            await self._record_error(result.error or "Claim pipeline failed")

    async def _record_error(self, message: str) -> None:
        self.recent_errors.append({"timestamp": time.time(), "message": message})
        try:
            await self.store.record_error(message)
        except PersistenceError as e:
            logger.error(f"[SCHEDULER] Could not persist error: {e.message}")

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def trigger(self, force: bool = False) -> OrchestrationResult:
        """
        Run the pipeline now.

        Raises:
            ConfigurationError: If manual claims are disabled
            ClaimInProgress: If a claim is already running
        """
        if not self.config.enable_manual_claim:
            raise ConfigurationError("Manual claims are disabled")

        async with self.lock.hold():
            logger.info(f"[SCHEDULER] Manual claim triggered (force={force})")
            self.claims_triggered += 1
            result = await self.orchestrator.run(force=force)

        await self._after_run(result)
        return result

    async def check_only(self) -> FeeDecision:
        """Evaluate the threshold without claiming."""
        return await self.monitor.should_claim()

    async def force_check(self) -> Optional[OrchestrationResult]:
        """Run a monitoring pass now, ignoring pause but respecting the claim lock."""
        if self.lock.locked:
            logger.warning("[SCHEDULER] Cannot force check - claim already in progress")
            raise ClaimInProgress()
        logger.info("[SCHEDULER] Force check triggered")
        return await self.tick(ignore_pause=True)

    async def pause(self) -> None:
        await self.store.set_paused(True)
        logger.info("[SCHEDULER] Monitoring paused")

    async def resume(self) -> None:
        await self.store.set_paused(False)
        logger.info("[SCHEDULER] Monitoring resumed")

    async def get_status(self) -> Dict[str, Any]:
        system = await self.store.get_system_status()
        stats = await self.store.get_system_stats()
        return {
            "state": self.state.value,
            "is_running": self._running,
            "claim_in_progress": self.lock.locked,
            "checks_performed": self.checks_performed,
            "claims_triggered": self.claims_triggered,
            "last_check_time": _iso(self.last_check_time),
            "next_check_time": _iso(self.next_check_time),
            "recent_errors": [
                {"timestamp": _iso(err["timestamp"]), "message": err["message"]}
                for err in self.recent_errors
            ],
            "system": system.to_dict(),
            "stats": asdict(stats),
            "config": self.config.to_public_dict(),
        }
