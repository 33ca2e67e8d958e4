"""
AutoPump Runner
Main entry point for the fee claim → buyback → burn service

Usage:
    python run_autopump.py                 # run the scheduler until SIGINT/SIGTERM
    python run_autopump.py --check-only    # print the threshold decision and exit
    python run_autopump.py --trigger       # run one pipeline now and exit
    python run_autopump.py --status        # print scheduler and system status
    python run_autopump.py --history 20    # print the 20 most recent transactions
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from typing import Optional

from autopump.config import AutoPumpConfig, load_config
from autopump.database import PostgresClient, PostgresStore
from autopump.errors import AutoPumpError, ConfigurationError
from autopump.logging_config import setup_logging
from autopump.notifications import WebhookNotifier
from autopump.pumpportal import CreatorVaultReader, PumpPortalClient
from autopump.scheduler import AutoPumpScheduler
from autopump.services import (
    BurnService,
    BuybackService,
    ClaimOrchestrator,
    FeeClaimService,
    FeeMonitor,
    TreasuryService,
    vault_estimator,
)
from autopump.solana_execution import LedgerClient
from autopump.solana_wallet import load_keypair_from_secret

logger = logging.getLogger("autopump")


class AutoPumpService:
    """
    Wires configuration, clients, stages and the scheduler together.
    """

    def __init__(self, config: AutoPumpConfig):
        self.config = config
        self.ledger: Optional[LedgerClient] = None
        self.trade_client: Optional[PumpPortalClient] = None
        self.db: Optional[PostgresClient] = None
        self.store: Optional[PostgresStore] = None
        self.notifier: Optional[WebhookNotifier] = None
        self.scheduler: Optional[AutoPumpScheduler] = None

    async def initialize(self) -> None:
        config = self.config
        keypair = load_keypair_from_secret(config.creator_wallet_secret)
        wallet = str(keypair.pubkey())
        logger.info(f"Operating wallet: {wallet[:8]}...")

        self.ledger = LedgerClient(
            config.rpc_endpoint,
            commitment=config.commitment,
            max_retries=config.max_retries,
            confirmation_timeout=config.confirmation_timeout_seconds,
        )
        if not await self.ledger.check_connection():
            logger.warning("Solana RPC not reachable at startup; checks will retry on schedule")

        self.db = PostgresClient(config.database_url, pool_size=config.db_pool_size)
        await self.db.connect()
        self.store = PostgresStore(self.db)
        await self.store.initialize_schema()

        self.trade_client = PumpPortalClient(
            config.pump_api_base,
            slippage_bps=config.slippage_bps,
            priority_fee_sol=config.priority_fee_sol,
        )
        vault_reader = CreatorVaultReader(self.ledger)
        self.notifier = WebhookNotifier(config.webhook_url, token_symbol=config.token_symbol)

        monitor = FeeMonitor(config, self.store, vault_estimator(vault_reader, wallet))
        orchestrator = ClaimOrchestrator(
            monitor=monitor,
            claim_service=FeeClaimService(config, self.ledger, self.trade_client, self.store, keypair),
            treasury_service=TreasuryService(config, self.ledger, keypair),
            buyback_service=BuybackService(
                config, self.ledger, self.trade_client, self.store, keypair, vault_reader
            ),
            burn_service=BurnService(config, self.ledger, self.store, keypair),
            notifier=self.notifier,
        )
        self.scheduler = AutoPumpScheduler(config, self.store, monitor, orchestrator)
        logger.info("AutoPump initialized successfully")

    async def shutdown(self) -> None:
        logger.info("Shutting down AutoPump...")
        if self.scheduler and self.scheduler.is_running:
            await self.scheduler.stop()
        if self.notifier:
            await self.notifier.close()
        if self.trade_client:
            await self.trade_client.close()
        if self.ledger:
            await self.ledger.close()
        if self.db:
            await self.db.close()
        logger.info("AutoPump stopped")


async def run_forever(service: AutoPumpService, initial_check: bool) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await service.scheduler.start(run_initial_check=initial_check)
    logger.info("AutoPump running...")
    await stop_event.wait()
    logger.info("Received shutdown signal")


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="AutoPump fee claim, buyback and burn service")
    parser.add_argument("--check-only", action="store_true", help="Evaluate the claim threshold and exit")
    parser.add_argument("--trigger", action="store_true", help="Run one claim pipeline now and exit")
    parser.add_argument("--force", action="store_true", help="With --trigger, ignore the threshold")
    parser.add_argument("--status", action="store_true", help="Print status and exit")
    parser.add_argument("--history", type=int, metavar="N", help="Print the N most recent transactions and exit")
    parser.add_argument("--no-initial-check", action="store_true", help="Wait one interval before the first check")
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2

    setup_logging(log_dir=config.log_dir, level=config.log_level, json_format=config.log_json)

    service = AutoPumpService(config)
    try:
        await service.initialize()

        if args.check_only:
            decision = await service.scheduler.check_only()
            print(json.dumps(asdict(decision), indent=2))
            return 0
        if args.trigger:
            result = await service.scheduler.trigger(force=args.force)
            print(json.dumps(result.to_dict(), indent=2, default=str))
            return 0 if result.success or result.skipped else 1
        if args.status:
            print(json.dumps(await service.scheduler.get_status(), indent=2, default=str))
            return 0
        if args.history:
            print(json.dumps(await service.store.get_transaction_history(args.history), indent=2))
            return 0

        await run_forever(service, initial_check=not args.no_initial_check)
        return 0
    except AutoPumpError as e:
        logger.error(f"Fatal error ({e.code}): {e.message}")
        return 1
    except ConnectionError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        await service.shutdown()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
