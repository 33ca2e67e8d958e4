"""
Tests for amount conversion and the incinerator burn.
"""

import pytest
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import decode_transfer_checked, get_associated_token_address

from autopump.config import INCINERATOR_ADDRESS
from autopump.errors import InvalidBurnAmount, TransactionFailed
from autopump.services.burn import BurnService, to_raw_amount, verify_burn_address
from autopump.types import TxStatus

from conftest import TOKEN_MINT, FakeLedger, account, new_signature

MINT = Pubkey.from_string(TOKEN_MINT)
INCINERATOR = Pubkey.from_string(INCINERATOR_ADDRESS)


class TestToRawAmount:

    @pytest.mark.parametrize(
        "amount,decimals,expected",
        [
            ("194000.5", 6, 194_000_500_000),
            ("1", 9, 1_000_000_000),
            ("0.000001", 6, 1),
            ("1.9999999", 6, 1_999_999),
            ("18446744073709.551615", 6, 2**64 - 1),
        ],
    )
    def test_exact_conversion(self, amount, decimals, expected):
        assert to_raw_amount(amount, decimals) == expected

    def test_below_smallest_unit(self):
        with pytest.raises(InvalidBurnAmount) as exc_info:
            to_raw_amount("0.0000001", 6)
        assert exc_info.value.token_amount == "0.0000001"

    @pytest.mark.parametrize(
        "amount", ["0", "-5", "NaN", "Infinity", "abc", "", "1E+1000000", "20000000000000", "18446744073709.551616"]
    )
    def test_rejects_invalid(self, amount):
        with pytest.raises(InvalidBurnAmount):
            to_raw_amount(amount, 6)


def test_verify_burn_address():
    assert verify_burn_address(INCINERATOR_ADDRESS) is True
    assert verify_burn_address(str(Pubkey.new_unique())) is False


class TestBurnService:

    @pytest.fixture
    def burn_ledger(self):
        ledger = FakeLedger(decimals=6)
        ledger.accounts[TOKEN_MINT] = account(lamports=1_461_600, owner=TOKEN_PROGRAM_ID, data=b"\x00" * 82)
        return ledger

    @pytest.mark.asyncio
    async def test_creates_incinerator_account_once(self, config, store, keypair, burn_ledger):
        """The first burn creates the destination account, the second reuses it."""
        service = BurnService(config, burn_ledger, store, keypair)
        destination = get_associated_token_address(INCINERATOR, MINT, TOKEN_PROGRAM_ID)

        first = await service.burn(buyback_id=1, token_amount="194000.5")

        assert first.created_incinerator_account is True
        create_ix, transfer_ix = burn_ledger.sent_instructions[0]
        assert create_ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID

        params = decode_transfer_checked(transfer_ix)
        assert params.amount == 194_000_500_000
        assert params.decimals == 6
        assert params.dest == destination
        assert params.owner == keypair.pubkey()
        assert params.source == get_associated_token_address(keypair.pubkey(), MINT, TOKEN_PROGRAM_ID)

        burn_ledger.accounts[str(destination)] = account(lamports=2_039_280, owner=TOKEN_PROGRAM_ID)
        second = await service.burn(buyback_id=2, token_amount="10")

        assert second.created_incinerator_account is False
        assert len(burn_ledger.sent_instructions[1]) == 1
        assert decode_transfer_checked(burn_ledger.sent_instructions[1][0]).amount == 10_000_000

    @pytest.mark.asyncio
    async def test_records_confirmed_burn(self, config, store, keypair, burn_ledger):
        service = BurnService(config, burn_ledger, store, keypair)

        result = await service.burn(buyback_id=3, token_amount="194000.5")

        row = store.burns[result.burn_id]
        assert row["buyback_id"] == 3
        assert row["tokens_burned"] == "194000.5"
        assert row["status"] is TxStatus.CONFIRMED
        assert result.raw_amount == 194_000_500_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.0000001", "20000000000000"])
    async def test_invalid_amount_sends_nothing(self, config, store, keypair, burn_ledger, amount):
        service = BurnService(config, burn_ledger, store, keypair)

        with pytest.raises(InvalidBurnAmount):
            await service.burn(buyback_id=1, token_amount=amount)

        assert burn_ledger.sent_instructions == []
        assert store.burns == {}

    @pytest.mark.asyncio
    async def test_missing_mint(self, config, store, keypair):
        service = BurnService(config, FakeLedger(), store, keypair)

        with pytest.raises(TransactionFailed):
            await service.burn(buyback_id=1, token_amount="1")

    @pytest.mark.asyncio
    async def test_failed_send_with_signature_is_recorded(self, config, store, keypair, burn_ledger):
        signature = new_signature()
        burn_ledger.send_error = TransactionFailed("custom program error: 0x1", signature=signature)
        service = BurnService(config, burn_ledger, store, keypair)

        with pytest.raises(TransactionFailed):
            await service.burn(buyback_id=4, token_amount="5")

        (row,) = store.burns.values()
        assert row["signature"] == signature
        assert row["status"] is TxStatus.FAILED
