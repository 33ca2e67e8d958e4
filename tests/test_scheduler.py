"""
Tests for the scheduler, its claim lock and the control surface.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from autopump.errors import ClaimInProgress, ConfigurationError, TradeServiceUnavailable
from autopump.scheduler import AutoPumpScheduler, ClaimLock
from autopump.types import FeeDecision, OrchestrationResult, PipelineStage, SchedulerState


def decision(should_claim=True):
    return FeeDecision(should_claim=should_claim, claimable_fees=60_000_000, reason="test")


@pytest.fixture
def monitor():
    mock = MagicMock()
    mock.should_claim = AsyncMock(return_value=decision(True))
    return mock


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.run = AsyncMock(return_value=OrchestrationResult(success=True))
    return mock


@pytest.fixture
def scheduler(config, store, monitor, orchestrator):
    return AutoPumpScheduler(config, store, monitor, orchestrator)


class GatedOrchestrator:
    """Orchestrator whose run blocks until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.runs = 0

    async def run(self, force=False):
        self.runs += 1
        self.started.set()
        await self.release.wait()
        return OrchestrationResult(success=True)


class TestClaimLock:

    @pytest.mark.asyncio
    async def test_try_acquire_is_exclusive(self):
        lock = ClaimLock()

        assert await lock.try_acquire() is True
        assert lock.locked is True
        assert lock.acquired_at is not None
        assert await lock.try_acquire() is False

        lock.release()
        assert lock.locked is False
        assert lock.acquired_at is None

    @pytest.mark.asyncio
    async def test_hold_refuses_when_taken(self):
        lock = ClaimLock()
        await lock.try_acquire()

        with pytest.raises(ClaimInProgress):
            async with lock.hold():
                pass

        lock.release()

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self):
        lock = ClaimLock()

        with pytest.raises(RuntimeError):
            async with lock.hold():
                raise RuntimeError("boom")

        assert lock.locked is False

    def test_release_when_free_is_noop(self):
        ClaimLock().release()


class TestTick:

    @pytest.mark.asyncio
    async def test_threshold_met_runs_pipeline(self, scheduler, store, orchestrator):
        result = await scheduler.tick()

        assert result.success is True
        orchestrator.run.assert_awaited_once_with(force=False)
        assert store.status.total_checks == 1
        assert scheduler.checks_performed == 1
        assert scheduler.claims_triggered == 1
        assert scheduler.lock.locked is False
        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_below_threshold_does_not_run(self, scheduler, monitor, orchestrator):
        monitor.should_claim.return_value = decision(False)

        assert await scheduler.tick() is None
        orchestrator.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paused_skips(self, scheduler, store, monitor):
        store.status.is_paused = True

        assert await scheduler.tick() is None
        monitor.should_claim.assert_not_awaited()
        assert store.status.total_checks == 0

    @pytest.mark.asyncio
    async def test_locked_skips(self, scheduler, monitor):
        await scheduler.lock.try_acquire()

        assert await scheduler.tick() is None
        monitor.should_claim.assert_not_awaited()
        assert scheduler.state is SchedulerState.CLAIM_LOCKED

    @pytest.mark.asyncio
    async def test_auto_claim_disabled_only_checks(self, make_config, store, monitor, orchestrator):
        scheduler = AutoPumpScheduler(make_config(auto_claim_enabled=False), store, monitor, orchestrator)

        assert await scheduler.tick() is None
        monitor.should_claim.assert_awaited_once()
        orchestrator.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_run_counts_error(self, scheduler, store, orchestrator):
        orchestrator.run.return_value = OrchestrationResult(
            success=False, failed_stage=PipelineStage.BUYBACK, error="PumpPortal unreachable"
        )

        await scheduler.tick()

        assert store.status.error_count == 1
        assert store.status.last_error == "PumpPortal unreachable"
        assert scheduler.recent_errors[-1]["message"] == "PumpPortal unreachable"

    @pytest.mark.asyncio
    async def test_skipped_run_is_not_an_error(self, scheduler, store, orchestrator):
        orchestrator.run.return_value = OrchestrationResult(success=False, skipped=True, error="below threshold")

        await scheduler.tick()

        assert store.status.error_count == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_recorded_not_raised(self, scheduler, store, monitor):
        store.fail_on = "record_check"

        assert await scheduler.tick() is None
        monitor.should_claim.assert_not_awaited()
        assert len(scheduler.recent_errors) == 1

    @pytest.mark.asyncio
    async def test_recent_errors_bounded(self, scheduler, store, orchestrator):
        orchestrator.run.return_value = OrchestrationResult(success=False, error="failed")

        for _ in range(15):
            await scheduler.tick()

        assert len(scheduler.recent_errors) == 10
        assert store.status.error_count == 15


class TestTrigger:

    @pytest.mark.asyncio
    async def test_manual_trigger(self, scheduler, orchestrator):
        result = await scheduler.trigger(force=True)

        assert result.success is True
        orchestrator.run.assert_awaited_once_with(force=True)
        assert scheduler.lock.locked is False

    @pytest.mark.asyncio
    async def test_manual_claims_disabled(self, make_config, store, monitor, orchestrator):
        scheduler = AutoPumpScheduler(make_config(enable_manual_claim=False), store, monitor, orchestrator)

        with pytest.raises(ConfigurationError):
            await scheduler.trigger()
        orchestrator.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_are_single_flight(self, config, store, monitor):
        """A second trigger during a running claim is refused, not queued."""
        gated = GatedOrchestrator()
        scheduler = AutoPumpScheduler(config, store, monitor, gated)

        first = asyncio.create_task(scheduler.trigger())
        await gated.started.wait()

        with pytest.raises(ClaimInProgress):
            await scheduler.trigger()
        assert await scheduler.tick() is None

        gated.release.set()
        result = await first

        assert result.success is True
        assert gated.runs == 1
        assert scheduler.lock.locked is False

    @pytest.mark.asyncio
    async def test_lock_released_when_run_raises(self, scheduler, orchestrator):
        orchestrator.run.side_effect = TradeServiceUnavailable("down", "buy")

        with pytest.raises(TradeServiceUnavailable):
            await scheduler.trigger()

        assert scheduler.lock.locked is False


class TestControl:

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, scheduler, store):
        await scheduler.pause()
        assert store.status.is_paused is True

        await scheduler.resume()
        assert store.status.is_paused is False

    @pytest.mark.asyncio
    async def test_force_check_ignores_pause(self, scheduler, store, orchestrator):
        store.status.is_paused = True

        result = await scheduler.force_check()

        assert result.success is True
        orchestrator.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_check_refused_while_locked(self, scheduler):
        await scheduler.lock.try_acquire()

        with pytest.raises(ClaimInProgress):
            await scheduler.force_check()

    @pytest.mark.asyncio
    async def test_check_only_never_claims(self, scheduler, orchestrator):
        result = await scheduler.check_only()

        assert result.should_claim is True
        orchestrator.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status(self, scheduler, config):
        await scheduler.tick()

        status = await scheduler.get_status()

        assert status["state"] == "idle"
        assert status["is_running"] is False
        assert status["claim_in_progress"] is False
        assert status["checks_performed"] == 1
        assert status["claims_triggered"] == 1
        assert status["last_check_time"] is not None
        assert status["system"]["total_checks"] == 1
        assert status["stats"]["total_claims"] == 0
        assert status["config"]["token_mint"] == config.token_mint
        assert "creator_wallet_secret" not in status["config"]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_initial_check_and_stop(self, scheduler, monitor, store):
        await scheduler.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert scheduler.is_running is True
        await scheduler.stop()

        assert scheduler.is_running is False
        monitor.should_claim.assert_awaited()
        assert store.cleanups == [30]

    @pytest.mark.asyncio
    async def test_no_initial_check_waits_an_interval(self, scheduler, monitor):
        await scheduler.start(run_initial_check=False)
        await asyncio.sleep(0)

        assert scheduler.next_check_time is not None
        await scheduler.stop()
        monitor.should_claim.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_block_start(self, scheduler, store):
        store.fail_on = "cleanup_old_monitor_checks"

        await scheduler.start(run_initial_check=False)

        assert scheduler.is_running is True
        await scheduler.stop()
