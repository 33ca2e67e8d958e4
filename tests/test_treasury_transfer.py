"""
Tests for the treasury transfer and operating-key loading.
"""

import base58
import pytest
from solders.keypair import Keypair

from autopump.errors import ConfigurationError, TransactionFailed
from autopump.services.treasury import TreasuryService
from autopump.solana_wallet import load_keypair_from_secret

from conftest import TREASURY_ADDRESS, FakeLedger


class TestTreasuryService:

    @pytest.mark.asyncio
    async def test_transfers_exact_share(self, config, keypair):
        ledger = FakeLedger()
        service = TreasuryService(config, ledger, keypair)

        signature = await service.transfer(50_000_000)

        assert ledger.transfers == [(TREASURY_ADDRESS, 50_000_000)]
        assert signature == ledger.signatures[0]

    @pytest.mark.asyncio
    async def test_failure_propagates(self, config, keypair):
        ledger = FakeLedger()
        ledger.send_error = TransactionFailed("Transaction failed after 3 attempts: timed out", attempts=3)

        with pytest.raises(TransactionFailed):
            await TreasuryService(config, ledger, keypair).transfer(50_000_000)


class TestLoadKeypair:

    def test_round_trip(self):
        keypair = Keypair()
        secret = base58.b58encode(bytes(keypair)).decode()

        assert load_keypair_from_secret(f"  {secret}\n").pubkey() == keypair.pubkey()

    def test_invalid_base58(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_keypair_from_secret("0OIl" * 16)

        assert "0OIl" not in exc_info.value.message

    def test_wrong_length(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_keypair_from_secret(base58.b58encode(b"\x01" * 32).decode())

        assert exc_info.value.details == {"length": 32}
