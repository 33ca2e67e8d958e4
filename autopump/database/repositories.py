"""
Persistence for claims, buybacks, burns, monitor checks and system status.

All monetary values cross this boundary in base units (lamports, raw token
units); burn amounts are the single exception and are kept as the display
string that was burned.
"""

import functools
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import asyncpg

from autopump.config import lamports_to_sol
from autopump.database.postgres_client import PostgresClient
from autopump.database.schema import SCHEMA_SQL
from autopump.errors import PersistenceError
from autopump.solana_execution import explorer_url
from autopump.types import (
    BurnRecord,
    BuybackRecord,
    ClaimRecord,
    MonitorCheck,
    SystemStats,
    SystemStatus,
    TxStatus,
)

logger = logging.getLogger(__name__)

STORE_ERRORS = (asyncpg.PostgresError, ConnectionError, OSError)

_INSERT_CLAIM = """
    INSERT INTO claims (signature, claimed_amount, treasury_amount, buyback_amount, status)
    VALUES ($1, $2, $3, $4, 'pending')
    RETURNING id
"""
_INSERT_BUYBACK = """
    INSERT INTO buybacks (claim_id, signature, tokens_purchased, sol_spent, status)
    VALUES ($1, $2, $3, $4, 'pending')
    RETURNING id
"""
_INSERT_BURN = """
    INSERT INTO burns (buyback_id, signature, tokens_burned, status)
    VALUES ($1, $2, $3, 'pending')
    RETURNING id
"""
_UPDATE_STATUS = "UPDATE {table} SET status = $2, error_message = $3 WHERE id = $1 AND status = 'pending'"
_RECORD_CLAIM = "UPDATE system_status SET total_claims = total_claims + 1, updated_at = NOW() WHERE id = 1"


def _persistence(operation: str):
    """Translate driver failures into PersistenceError tagged with the operation."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except STORE_ERRORS as e:
                logger.error(f"Database {operation} failed: {type(e).__name__}: {e}")
                raise PersistenceError(f"Database {operation} failed: {type(e).__name__}", operation) from e

        return wrapper

    return decorator


def _decimal_str(value: Any) -> str:
    if value is None:
        return "0"
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


class PostgresStore:
    """Repository over a shared PostgresClient."""

    def __init__(self, client: PostgresClient):
        self.client = client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_persistence("initialize_schema")
    async def initialize_schema(self) -> None:
        logger.info("Initializing database schema...")
        await self.client.execute(SCHEMA_SQL)
        logger.info("Database schema initialized")

    async def health_check(self) -> bool:
        return await self.client.health_check()

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    @_persistence("settle_claim")
    async def settle_claim(
        self,
        signature: str,
        claimed_amount: int,
        treasury_amount: int,
        buyback_amount: int,
        status: TxStatus,
        error_message: Optional[str] = None,
    ) -> int:
        """
        Record a claim and its terminal status in one database transaction.

        A confirmed claim also increments system_status.total_claims. Either
        every write lands or none does, so a settled claim never stays pending.
        """
        async with self.client.transaction() as conn:
            claim_id = await conn.fetchval(
                _INSERT_CLAIM, signature, claimed_amount, treasury_amount, buyback_amount
            )
            await conn.execute(_UPDATE_STATUS.format(table="claims"), claim_id, status.value, error_message)
            if status is TxStatus.CONFIRMED:
                await conn.execute(_RECORD_CLAIM)
        logger.info(f"[DB] Claim {claim_id} {status.value} ({signature[:16]}...)")
        return claim_id

    @_persistence("get_claim")
    async def get_claim(self, claim_id: int) -> Optional[ClaimRecord]:
        row = await self.client.fetchrow("SELECT * FROM claims WHERE id = $1", claim_id)
        return _claim_from_row(row) if row else None

    @_persistence("get_recent_claims")
    async def get_recent_claims(self, limit: int = 10) -> List[ClaimRecord]:
        rows = await self.client.fetch("SELECT * FROM claims ORDER BY timestamp DESC LIMIT $1", limit)
        return [_claim_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Buybacks
    # ------------------------------------------------------------------

    @_persistence("settle_buyback")
    async def settle_buyback(
        self,
        claim_id: int,
        signature: str,
        tokens_purchased: int,
        sol_spent: int,
        status: TxStatus,
        error_message: Optional[str] = None,
    ) -> int:
        """Record a buyback and its terminal status in one database transaction."""
        async with self.client.transaction() as conn:
            buyback_id = await conn.fetchval(
                _INSERT_BUYBACK, claim_id, signature, Decimal(tokens_purchased), sol_spent
            )
            await conn.execute(_UPDATE_STATUS.format(table="buybacks"), buyback_id, status.value, error_message)
        logger.info(f"[DB] Buyback {buyback_id} {status.value} for claim {claim_id}")
        return buyback_id

    @_persistence("get_buyback")
    async def get_buyback(self, buyback_id: int) -> Optional[BuybackRecord]:
        row = await self.client.fetchrow("SELECT * FROM buybacks WHERE id = $1", buyback_id)
        if not row:
            return None
        return BuybackRecord(
            id=row["id"],
            claim_id=row["claim_id"],
            signature=row["signature"],
            tokens_purchased=int(row["tokens_purchased"]),
            sol_spent=int(row["sol_spent"]),
            status=TxStatus(row["status"]),
            error_message=row.get("error_message"),
            timestamp=row.get("timestamp"),
        )

    # ------------------------------------------------------------------
    # Burns
    # ------------------------------------------------------------------

    @_persistence("settle_burn")
    async def settle_burn(
        self,
        buyback_id: int,
        signature: str,
        tokens_burned: str,
        status: TxStatus,
        error_message: Optional[str] = None,
    ) -> int:
        """Record a burn and its terminal status in one database transaction."""
        async with self.client.transaction() as conn:
            burn_id = await conn.fetchval(_INSERT_BURN, buyback_id, signature, Decimal(tokens_burned))
            await conn.execute(_UPDATE_STATUS.format(table="burns"), burn_id, status.value, error_message)
        logger.info(f"[DB] Burn {burn_id} {status.value} for buyback {buyback_id}")
        return burn_id

    @_persistence("get_burn")
    async def get_burn(self, burn_id: int) -> Optional[BurnRecord]:
        row = await self.client.fetchrow("SELECT * FROM burns WHERE id = $1", burn_id)
        if not row:
            return None
        return BurnRecord(
            id=row["id"],
            buyback_id=row["buyback_id"],
            signature=row["signature"],
            tokens_burned=_decimal_str(row["tokens_burned"]),
            status=TxStatus(row["status"]),
            error_message=row.get("error_message"),
            timestamp=row.get("timestamp"),
        )

    # ------------------------------------------------------------------
    # Monitor checks
    # ------------------------------------------------------------------

    @_persistence("insert_monitor_check")
    async def insert_monitor_check(
        self, claimable_fees: int, threshold: int, triggered: bool, notes: Optional[str] = None
    ) -> int:
        return await self.client.fetchval(
            """
            INSERT INTO monitor_checks (claimable_fees, threshold, triggered, notes)
            VALUES ($1, $2, $3, $4)
            RETURNING id
            """,
            claimable_fees,
            threshold,
            triggered,
            notes,
        )

    @_persistence("get_recent_monitor_checks")
    async def get_recent_monitor_checks(self, limit: int = 100) -> List[MonitorCheck]:
        rows = await self.client.fetch(
            "SELECT * FROM monitor_checks ORDER BY timestamp DESC LIMIT $1", limit
        )
        return [
            MonitorCheck(
                id=row["id"],
                claimable_fees=int(row["claimable_fees"]),
                threshold=int(row["threshold"]),
                triggered=row["triggered"],
                notes=row.get("notes"),
                timestamp=row.get("timestamp"),
            )
            for row in rows
        ]

    @_persistence("cleanup_old_monitor_checks")
    async def cleanup_old_monitor_checks(self, days_to_keep: int = 30) -> int:
        result = await self.client.execute(
            "DELETE FROM monitor_checks WHERE timestamp < NOW() - make_interval(days => $1)",
            days_to_keep,
        )
        deleted = int(result.split()[-1])
        logger.info(f"[DB] Cleaned up {deleted} monitor checks older than {days_to_keep} days")
        return deleted

    # ------------------------------------------------------------------
    # System status
    # ------------------------------------------------------------------

    @_persistence("get_system_status")
    async def get_system_status(self) -> SystemStatus:
        row = await self.client.fetchrow("SELECT * FROM system_status WHERE id = 1")
        if not row:
            return SystemStatus()
        return SystemStatus(
            is_paused=row["is_paused"],
            last_check_timestamp=row.get("last_check_timestamp"),
            total_checks=row["total_checks"],
            total_claims=row["total_claims"],
            error_count=row["error_count"],
            last_error=row.get("last_error"),
            last_error_timestamp=row.get("last_error_timestamp"),
        )

    @_persistence("set_paused")
    async def set_paused(self, paused: bool) -> None:
        await self.client.execute(
            "UPDATE system_status SET is_paused = $1, updated_at = NOW() WHERE id = 1", paused
        )
        logger.info(f"[DB] System {'paused' if paused else 'resumed'}")

    @_persistence("record_check")
    async def record_check(self) -> None:
        await self.client.execute(
            """
            UPDATE system_status
            SET total_checks = total_checks + 1, last_check_timestamp = NOW(), updated_at = NOW()
            WHERE id = 1
            """
        )

    @_persistence("record_error")
    async def record_error(self, message: str) -> None:
        await self.client.execute(
            """
            UPDATE system_status
            SET error_count = error_count + 1, last_error = $1,
                last_error_timestamp = NOW(), updated_at = NOW()
            WHERE id = 1
            """,
            message,
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    @_persistence("get_system_stats")
    async def get_system_stats(self) -> SystemStats:
        total = await self.client.fetchrow("SELECT * FROM stats_total") or {}
        buybacks = await self.client.fetchrow("SELECT * FROM stats_buybacks") or {}
        burns = await self.client.fetchrow("SELECT * FROM stats_burns") or {}
        status = await self.client.fetchrow("SELECT is_paused FROM system_status WHERE id = 1") or {}

        return SystemStats(
            total_claimed_sol=lamports_to_sol(int(total.get("total_claimed_fees") or 0)),
            total_treasury_sol=lamports_to_sol(int(total.get("total_treasury_transferred") or 0)),
            total_buyback_sol=lamports_to_sol(int(total.get("total_buyback_spent") or 0)),
            total_tokens_burned=_decimal_str(burns.get("total_tokens_burned")),
            total_claims=int(total.get("total_claims") or 0),
            total_buybacks=int(buybacks.get("total_buybacks") or 0),
            total_burns=int(burns.get("total_burns") or 0),
            last_claim_timestamp=total.get("last_claim_timestamp"),
            is_paused=bool(status.get("is_paused", False)),
        )

    @_persistence("get_transaction_history")
    async def get_transaction_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = await self.client.fetch("SELECT * FROM recent_activity LIMIT $1", limit)
        history = []
        for row in rows:
            history.append(
                {
                    "type": row["type"],
                    "signature": row["signature"],
                    "amount": _decimal_str(row["amount"]),
                    "timestamp": row["timestamp"].isoformat() if row.get("timestamp") else None,
                    "status": row["status"],
                    "explorer_url": explorer_url(row["signature"]),
                }
            )
        return history


def _claim_from_row(row: Dict[str, Any]) -> ClaimRecord:
    return ClaimRecord(
        id=row["id"],
        signature=row["signature"],
        claimed_amount=int(row["claimed_amount"]),
        treasury_amount=int(row["treasury_amount"]),
        buyback_amount=int(row["buyback_amount"]),
        status=TxStatus(row["status"]),
        error_message=row.get("error_message"),
        timestamp=row.get("timestamp"),
    )
