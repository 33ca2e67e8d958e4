"""
AutoPump Test Configuration

Shared fixtures: an in-memory store, a scripted ledger, a stub trade
service and a config factory. No network or database is touched.
"""

import dataclasses
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from autopump.config import build_config
from autopump.errors import PersistenceError
from autopump.types import SystemStats, SystemStatus, TxStatus

TOKEN_MINT = "So11111111111111111111111111111111111111112"
TREASURY_ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


def unsigned_tx_bytes(payer: Pubkey) -> bytes:
    """Serialized unsigned v0 transaction with `payer` as the only signer."""
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=Pubkey.new_unique(), lamports=1))
    message = MessageV0.try_compile(payer, [ix], [], Hash.default())
    return bytes(VersionedTransaction.populate(message, [Signature.default()]))


def new_signature() -> str:
    return str(Signature.new_unique())


# =============================================================================
# Config
# =============================================================================

@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def base_env(keypair) -> Dict[str, str]:
    return {
        "CREATOR_WALLET_SECRET": base58.b58encode(bytes(keypair)).decode(),
        "TREASURY_WALLET_ADDRESS": TREASURY_ADDRESS,
        "TOKEN_MINT": TOKEN_MINT,
    }


@pytest.fixture
def make_config(base_env):
    """Factory building a validated config with field overrides."""

    def _make(**overrides):
        config = build_config(base_env)
        return dataclasses.replace(config, **overrides) if overrides else config

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


# =============================================================================
# In-memory store
# =============================================================================

class FakeStore:
    """Mirrors PostgresStore semantics: unique signatures, rows written with their terminal status."""

    def __init__(self):
        self.claims: Dict[int, Dict[str, Any]] = {}
        self.buybacks: Dict[int, Dict[str, Any]] = {}
        self.burns: Dict[int, Dict[str, Any]] = {}
        self.monitor_checks: List[Dict[str, Any]] = []
        self.status = SystemStatus()
        self.fail_on: Optional[str] = None
        self.cleanups: List[int] = []

    def _check(self, operation: str) -> None:
        if self.fail_on == operation:
            raise PersistenceError(f"Database {operation} failed: ConnectionError", operation)

    def _settle(self, operation: str, table: Dict[int, Dict[str, Any]], row: Dict[str, Any], status, error) -> int:
        self._check(operation)
        if any(existing["signature"] == row["signature"] for existing in table.values()):
            raise PersistenceError(f"Database {operation} failed: UniqueViolationError", operation)
        row_id = len(table) + 1
        table[row_id] = {"id": row_id, **row, "status": status, "error_message": error}
        return row_id

    async def settle_claim(self, signature, claimed_amount, treasury_amount, buyback_amount, status, error_message=None):
        claim_id = self._settle(
            "settle_claim",
            self.claims,
            {
                "signature": signature,
                "claimed_amount": claimed_amount,
                "treasury_amount": treasury_amount,
                "buyback_amount": buyback_amount,
            },
            status,
            error_message,
        )
        if status is TxStatus.CONFIRMED:
            self.status.total_claims += 1
        return claim_id

    async def settle_buyback(self, claim_id, signature, tokens_purchased, sol_spent, status, error_message=None):
        return self._settle(
            "settle_buyback",
            self.buybacks,
            {"claim_id": claim_id, "signature": signature, "tokens_purchased": tokens_purchased, "sol_spent": sol_spent},
            status,
            error_message,
        )

    async def settle_burn(self, buyback_id, signature, tokens_burned, status, error_message=None):
        return self._settle(
            "settle_burn",
            self.burns,
            {"buyback_id": buyback_id, "signature": signature, "tokens_burned": tokens_burned},
            status,
            error_message,
        )

    async def insert_monitor_check(self, claimable_fees, threshold, triggered, notes=None):
        self._check("insert_monitor_check")
        self.monitor_checks.append(
            {"claimable_fees": claimable_fees, "threshold": threshold, "triggered": triggered, "notes": notes}
        )
        return len(self.monitor_checks)

    async def get_system_status(self):
        self._check("get_system_status")
        return dataclasses.replace(self.status)

    async def set_paused(self, paused):
        self.status.is_paused = paused

    async def record_check(self):
        self._check("record_check")
        self.status.total_checks += 1

    async def record_error(self, message):
        self._check("record_error")
        self.status.error_count += 1
        self.status.last_error = message

    async def get_system_stats(self):
        return SystemStats(total_claims=len(self.claims), is_paused=self.status.is_paused)

    async def cleanup_old_monitor_checks(self, days_to_keep=30):
        self._check("cleanup_old_monitor_checks")
        self.cleanups.append(days_to_keep)
        return 0


@pytest.fixture
def store():
    return FakeStore()


# =============================================================================
# Scripted ledger
# =============================================================================

class FakeLedger:
    """
    Stand-in for LedgerClient.

    `balances` is consumed one value per get_balance call; the last value
    repeats once the script runs out.

    `confirm_errors` scripts send_and_confirm outcomes per call: an exception
    entry fails that call after the transaction was submitted, None succeeds.
    """

    def __init__(self, balances: Optional[List[int]] = None, decimals: int = 6):
        self.balances = list(balances or [0])
        self.decimals = decimals
        self.accounts: Dict[str, Any] = {}
        self.token_change: Tuple[int, str] = (0, "0")
        self.sent: List[Any] = []
        self.sent_instructions: List[List[Any]] = []
        self.transfers: List[Tuple[str, int]] = []
        self.send_error: Optional[Exception] = None
        self.confirm_errors: List[Optional[Exception]] = []
        self.signatures: List[str] = []

    def _next_signature(self) -> str:
        signature = new_signature()
        self.signatures.append(signature)
        return signature

    async def get_balance(self, address):
        if len(self.balances) > 1:
            return self.balances.pop(0)
        return self.balances[0]

    async def get_account_info(self, address):
        return self.accounts.get(str(address))

    async def get_token_decimals(self, mint):
        return self.decimals

    async def get_minimum_balance_for_rent_exemption(self, data_len):
        return 890_880 + data_len * 6_960

    async def get_token_balance_change(self, signature, owner, mint):
        return self.token_change

    async def send_and_confirm(self, signed_tx, *, rebuild=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(signed_tx)
        scripted = self.confirm_errors.pop(0) if self.confirm_errors else None
        if scripted is not None:
            raise scripted
        return self._next_signature()

    async def send_instructions(self, payer, instructions):
        if self.send_error is not None:
            raise self.send_error
        self.sent_instructions.append(list(instructions))
        return self._next_signature()

    async def transfer_sol(self, payer, destination, lamports):
        if self.send_error is not None:
            raise self.send_error
        self.transfers.append((str(destination), lamports))
        return self._next_signature()


def account(lamports: int = 0, owner: Optional[Pubkey] = None, data: bytes = b"") -> SimpleNamespace:
    return SimpleNamespace(lamports=lamports, owner=owner or Pubkey.default(), data=data)


@pytest.fixture
def ledger():
    return FakeLedger()


# =============================================================================
# Stub trade service
# =============================================================================

class StubTradeClient:
    """Returns real unsigned transactions for the given wallet, or raises `error`."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.claim_calls: List[str] = []
        self.buy_calls: List[Tuple[str, str, int]] = []

    async def build_claim_transaction(self, wallet):
        self.claim_calls.append(wallet)
        if self.error is not None:
            raise self.error
        return unsigned_tx_bytes(Pubkey.from_string(wallet))

    async def build_buy_transaction(self, wallet, mint, amount_lamports):
        self.buy_calls.append((wallet, mint, amount_lamports))
        if self.error is not None:
            raise self.error
        return unsigned_tx_bytes(Pubkey.from_string(wallet))


@pytest.fixture
def trade_client():
    return StubTradeClient()
