"""
Tests for the command-line runner.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import run_autopump
from autopump.errors import ClaimInProgress, ConfigurationError
from autopump.types import FeeDecision, OrchestrationResult


@pytest.fixture
def wired(config):
    """Patch the runner so initialize() wires a mocked scheduler."""
    scheduler = MagicMock()
    scheduler.is_running = False
    scheduler.check_only = AsyncMock(return_value=FeeDecision(True, 60_000_000, "threshold met"))
    scheduler.trigger = AsyncMock(return_value=OrchestrationResult(success=True, run_id="run1"))
    scheduler.get_status = AsyncMock(return_value={"state": "idle"})
    store = MagicMock()
    store.get_transaction_history = AsyncMock(return_value=[{"type": "burn", "signature": "abc"}])

    async def initialize(self):
        self.scheduler = scheduler
        self.store = store

    with patch.object(run_autopump, "load_config", return_value=config), patch.object(
        run_autopump, "setup_logging"
    ), patch.object(run_autopump.AutoPumpService, "initialize", initialize):
        yield scheduler


class TestMain:

    @pytest.mark.asyncio
    async def test_configuration_error_exit_code(self):
        with patch.object(run_autopump, "load_config", side_effect=ConfigurationError("Missing required TOKEN_MINT")):
            assert await run_autopump.main([]) == 2

    @pytest.mark.asyncio
    async def test_check_only(self, wired, capsys):
        assert await run_autopump.main(["--check-only"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["should_claim"] is True
        wired.trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_trigger_with_force(self, wired, capsys):
        assert await run_autopump.main(["--trigger", "--force"]) == 0

        wired.trigger.assert_awaited_once_with(force=True)
        assert json.loads(capsys.readouterr().out)["run_id"] == "run1"

    @pytest.mark.asyncio
    async def test_failed_trigger_exit_code(self, wired):
        wired.trigger.return_value = OrchestrationResult(success=False, error="boom")

        assert await run_autopump.main(["--trigger"]) == 1

    @pytest.mark.asyncio
    async def test_trigger_while_claim_running(self, wired):
        wired.trigger.side_effect = ClaimInProgress()

        assert await run_autopump.main(["--trigger"]) == 1

    @pytest.mark.asyncio
    async def test_status(self, wired, capsys):
        assert await run_autopump.main(["--status"]) == 0

        assert json.loads(capsys.readouterr().out) == {"state": "idle"}

    @pytest.mark.asyncio
    async def test_history(self, wired, capsys):
        assert await run_autopump.main(["--history", "5"]) == 0

        assert json.loads(capsys.readouterr().out) == [{"type": "burn", "signature": "abc"}]
