"""
PumpPortal trade-local API client and pump.fun on-chain readers.

The trade service builds unsigned transactions; signing and submission stay
with the caller so the operating key never leaves the process.

Usage:
    api = PumpPortalClient()
    tx_bytes = await api.build_claim_transaction(wallet_address)
"""

import logging
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx
from solders.pubkey import Pubkey

from autopump.config import LAMPORTS_PER_SOL
from autopump.errors import TradeServiceRejected, TradeServiceUnavailable
from autopump.solana_execution import LedgerClient

logger = logging.getLogger(__name__)

PUMP_PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
CREATOR_VAULT_SEED = b"creator-vault"
BONDING_CURVE_SEED = b"bonding-curve"

NOTHING_TO_CLAIM_MARKERS = ("no fees", "nothing to claim")


class PumpPortalClient:
    """
    Client for the PumpPortal trade-local endpoint.

    Both builders return the raw unsigned transaction bytes.
    """

    BASE_URL = "https://pumpportal.fun/api"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        slippage_bps: int = 100,
        priority_fee_sol: float = 0.0001,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.slippage_bps = slippage_bps
        self.priority_fee_sol = priority_fee_sol
        # Reused across requests
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": "AutoPump/1.0",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _trade_local(self, action: str, payload: Dict[str, Any]) -> bytes:
        try:
            response = await self._client.post(f"{self.base_url}/trade-local", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"PumpPortal {action} request failed: {type(e).__name__}")
            raise TradeServiceUnavailable(f"PumpPortal unreachable: {type(e).__name__}", action)

        if response.status_code != 200:
            text = response.text[:300]
            lower = text.lower()
            if any(marker in lower for marker in NOTHING_TO_CLAIM_MARKERS):
                raise TradeServiceRejected("No creator fees available to claim", action, response.status_code)
            if response.status_code >= 500:
                raise TradeServiceUnavailable(
                    f"PumpPortal API error: {response.status_code} {text}", action
                )
            raise TradeServiceRejected(
                f"PumpPortal API error: {response.status_code} {text}", action, response.status_code
            )

        if not response.content:
            raise TradeServiceRejected("PumpPortal returned an empty transaction", action, response.status_code)

        logger.debug(f"PumpPortal {action} transaction built ({len(response.content)} bytes)")
        return response.content

    async def build_claim_transaction(self, wallet: str) -> bytes:
        """Build an unsigned transaction collecting all creator fees for `wallet`."""
        return await self._trade_local(
            "collectCreatorFee",
            {
                "publicKey": wallet,
                "action": "collectCreatorFee",
                "priorityFee": self.priority_fee_sol,
            },
        )

    async def build_buy_transaction(self, wallet: str, mint: str, amount_lamports: int) -> bytes:
        """
        Build an unsigned buy spending exactly `amount_lamports` of SOL.

        Args:
            wallet: Buyer's public key
            mint: Token mint to buy
            amount_lamports: SOL budget in lamports
        """
        if amount_lamports <= 0:
            raise ValueError("Buy amount must be positive")
        return await self._trade_local(
            "buy",
            {
                "publicKey": wallet,
                "action": "buy",
                "mint": mint,
                "amount": amount_lamports / LAMPORTS_PER_SOL,
                "denominatedInSol": "true",
                "slippage": self.slippage_bps / 100,
                "priorityFee": self.priority_fee_sol,
                "pool": "pump",
            },
        )


def derive_creator_vault(creator: Union[str, Pubkey]) -> Pubkey:
    creator_key = creator if isinstance(creator, Pubkey) else Pubkey.from_string(creator)
    vault, _bump = Pubkey.find_program_address([CREATOR_VAULT_SEED, bytes(creator_key)], PUMP_PROGRAM_ID)
    return vault


def derive_bonding_curve(mint: Union[str, Pubkey]) -> Pubkey:
    mint_key = mint if isinstance(mint, Pubkey) else Pubkey.from_string(mint)
    curve, _bump = Pubkey.find_program_address([BONDING_CURVE_SEED, bytes(mint_key)], PUMP_PROGRAM_ID)
    return curve


@dataclass
class BondingCurveState:
    """Reserves of a pump.fun bonding curve, all in base units."""
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool

    # 8-byte anchor discriminator, five u64 fields, one bool
    LAYOUT = "<8xQQQQQ?"

    @classmethod
    def from_account_data(cls, data: bytes) -> "BondingCurveState":
        size = struct.calcsize(cls.LAYOUT)
        if len(data) < size:
            raise ValueError(f"Bonding curve data too short: {len(data)} < {size}")
        vtr, vsr, rtr, rsr, supply, complete = struct.unpack_from(cls.LAYOUT, data)
        return cls(vtr, vsr, rtr, rsr, supply, complete)

    def tokens_out(self, sol_in_lamports: int) -> int:
        """Constant-product quote, before fees and slippage."""
        if sol_in_lamports <= 0 or self.virtual_token_reserves == 0:
            return 0
        k = self.virtual_sol_reserves * self.virtual_token_reserves
        new_sol = self.virtual_sol_reserves + sol_in_lamports
        new_tokens = -(-k // new_sol)
        return max(0, self.virtual_token_reserves - new_tokens)


class CreatorVaultReader:
    """Reads pump.fun state straight from the chain."""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def get_claimable_fees(self, creator: str) -> int:
        """
        Creator-vault lamports above its rent-exempt minimum.

        Returns 0 when the vault does not exist yet.
        """
        vault = derive_creator_vault(creator)
        info = await self.ledger.get_account_info(vault)
        if info is None:
            logger.info(f"[MONITOR] Creator vault {vault} not found, nothing accrued")
            return 0

        rent_exempt = await self.ledger.get_minimum_balance_for_rent_exemption(len(info.data))
        claimable = max(0, int(info.lamports) - rent_exempt)
        logger.debug(
            f"[MONITOR] Vault {vault}: balance={info.lamports} rent_exempt={rent_exempt} claimable={claimable}"
        )
        return claimable

    async def get_bonding_curve(self, mint: str) -> Optional[BondingCurveState]:
        curve = derive_bonding_curve(mint)
        info = await self.ledger.get_account_info(curve)
        if info is None:
            return None
        return BondingCurveState.from_account_data(bytes(info.data))
