"""Community pot entry point: wires the services together and exposes the CLI."""
import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from tabulate import tabulate

from config.settings import AppConfig, TransferConfig, load_config
from database.database import Database
from database.ledger import LedgerStore
from database.models import PayoutOutcome
from services.enrollment_service import EnrollmentManager
from services.erc20_transfer_service import Erc20TransferExecutor
from services.payout_service import PayoutExecutor
from services.relay_transfer_service import RelayTransferExecutor
from services.scheduler_service import CycleScheduler
from services.status_service import StatusProjector
from services.transfer_interface import TransferExecutor
from utils.addresses import format_address
from utils.exceptions import (
    BusinessConflictError,
    MissingSecretError,
    PotError,
    UnauthorizedError,
    ValidationError,
)
from utils.logging import setup_logger
from utils.permissions import PayoutPermissions

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFLICT = 2


def build_transfer_executor(config: TransferConfig) -> TransferExecutor:
    """Pick the transfer executor named by the configuration."""
    if config.backend == "relay":
        return RelayTransferExecutor.from_config(config)
    return Erc20TransferExecutor.from_config(config)


class PotApp:
    """Process-wide owner of the database and service objects."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        transfer_executor: Optional[TransferExecutor] = None
    ):
        # Load configuration first
        self.config = config or load_config()

        setup_logger(None, self.config.logging.log_file, self.config.logging.level)
        for name in ['aiosqlite', 'asyncio', 'web3', 'urllib3', 'sqlalchemy.engine']:
            logging.getLogger(name).setLevel(logging.WARNING)
        self.logger = logging.getLogger(__name__)

        # Initialized in setup()
        self.database: Optional[Database] = None
        self.store: Optional[LedgerStore] = None
        self.projector: Optional[StatusProjector] = None
        self.enrollment: Optional[EnrollmentManager] = None
        self.scheduler: Optional[CycleScheduler] = None
        self.payout_executor: Optional[PayoutExecutor] = None
        self.permissions = PayoutPermissions(self.config.payout.secret)
        self.transfer_executor = transfer_executor
        self._started = False

    async def setup(self) -> None:
        """Initialize the database and services once."""
        if self._started:
            return
        try:
            self.logger.info(f"Connecting to database at {self.config.database.url}")
            self.database = Database(self.config.database.url)
            await self.database.create_all()

            share_decimals = self.config.pot.share_decimals
            self.store = LedgerStore(self.database)
            self.projector = StatusProjector(self.store, share_decimals)
            self.enrollment = EnrollmentManager(self.store, self.projector)
            self.scheduler = CycleScheduler(self.store, self.config.pot)

            if self.transfer_executor is None:
                self.transfer_executor = build_transfer_executor(self.config.transfer)
            self.payout_executor = PayoutExecutor(
                self.store,
                self.transfer_executor,
                self.config.payout,
                share_decimals
            )
            self._started = True
        except Exception as e:
            self.logger.error(f"Error during setup: {e}")
            raise

    async def close(self) -> None:
        """Release network clients and drain the connection pool."""
        if self.transfer_executor is not None:
            await self.transfer_executor.close()
        if self.database is not None:
            await self.database.close()
        self._started = False

    async def __aenter__(self) -> "PotApp":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="community-pot",
        description="Enrollment and payout engine for the community pot"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    seed = commands.add_parser("seed", help="Open a new cycle")
    seed.add_argument("--amount", type=Decimal, help="Pot total to distribute")
    seed.add_argument(
        "--scheduled-at",
        type=datetime.fromisoformat,
        help="ISO timestamp of the distribution (default: next scheduled slot)"
    )
    seed.add_argument("--max-participants", type=int)
    network = seed.add_mutually_exclusive_group()
    network.add_argument("--testnet", dest="test_mode", action="store_true", default=None)
    network.add_argument("--mainnet", dest="test_mode", action="store_false")

    commands.add_parser("rollover", help="Lock the due cycle and open the next one")

    status = commands.add_parser("status", help="Show the open cycle")
    status.add_argument("--visitor")
    status.add_argument("--address")

    join = commands.add_parser("join", help="Enroll an address into the open cycle")
    join.add_argument("address")
    join.add_argument("--visitor")
    join.add_argument("--previous-address")
    join.add_argument("--previous-cycle")

    payout = commands.add_parser("payout", help="Pay out the earliest due cycle")
    payout.add_argument("--dry-run", action="store_true")
    payout.add_argument(
        "--secret",
        help="Payout secret (default: COMMUNITY_POT_PAYOUT_SECRET)"
    )

    outcomes = commands.add_parser("outcomes", help="Show the payout audit trail of a cycle")
    outcomes.add_argument("cycle_id")
    return parser


def render_outcomes(outcomes: List[PayoutOutcome]) -> str:
    """Plain-text table of payout outcomes."""
    rows = [
        [
            o.attempted_at.strftime("%Y-%m-%d %H:%M:%S"),
            format_address(o.address),
            o.share_amount,
            o.outcome.value,
            o.attempt,
            "yes" if o.is_simulated else "",
            o.transfer_id or o.failure_reason or "",
        ]
        for o in outcomes
    ]
    return tabulate(
        rows,
        headers=["Attempted", "Address", "Share", "Outcome", "Attempt", "Simulated", "Transfer / reason"],
        tablefmt="simple"
    )


async def run_command(app: PotApp, args: argparse.Namespace) -> Union[Dict[str, Any], str]:
    """Execute one parsed command against a running app."""
    if args.command == "seed":
        await app.scheduler.open_cycle(
            amount=args.amount,
            scheduled_at=args.scheduled_at,
            max_participants=args.max_participants,
            is_test_mode=args.test_mode
        )
        return (await app.projector.status()).to_dict()

    if args.command == "rollover":
        await app.scheduler.rollover()
        return (await app.projector.status()).to_dict()

    if args.command == "status":
        return (await app.projector.status(args.visitor, args.address)).to_dict()

    if args.command == "join":
        snapshot = await app.enrollment.join(
            args.address,
            previous_address=args.previous_address,
            previous_cycle_id=args.previous_cycle,
            visitor_id=args.visitor
        )
        return snapshot.to_dict()

    if args.command == "payout":
        secret = args.secret if args.secret is not None else os.getenv("COMMUNITY_POT_PAYOUT_SECRET")
        app.permissions.check_secret(secret)
        summary = await app.payout_executor.execute(dry_run=args.dry_run)
        return summary.to_dict()

    if args.command == "outcomes":
        if await app.store.get_cycle(args.cycle_id) is None:
            raise ValidationError(f"Unknown cycle: {args.cycle_id}")
        outcomes = await app.store.list_outcomes(args.cycle_id)
        if not outcomes:
            return f"No payout outcomes recorded for cycle {args.cycle_id}"
        return render_outcomes(outcomes)

    raise ValueError(f"Unknown command: {args.command}")


async def _main(args: argparse.Namespace, config: Optional[AppConfig]) -> Union[Dict[str, Any], str]:
    async with PotApp(config) as app:
        return await run_command(app, args)


def main(argv: Optional[List[str]] = None, config: Optional[AppConfig] = None) -> int:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)
    logger = logging.getLogger(__name__)

    try:
        result = asyncio.run(_main(args, config))
    except BusinessConflictError as e:
        print(json.dumps({"error": e.code, "message": str(e)}))
        return EXIT_CONFLICT
    except (ValidationError, UnauthorizedError) as e:
        print(json.dumps({"error": type(e).__name__, "message": str(e)}))
        return EXIT_FATAL
    except MissingSecretError as e:
        logger.critical(f"Fatal configuration error: {e}")
        print(json.dumps({"error": "missing_secret", "message": str(e)}))
        return EXIT_FATAL
    except PotError as e:
        logger.error(f"Command failed: {e}")
        print(json.dumps({"error": type(e).__name__, "message": str(e)}))
        return EXIT_FATAL

    if isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result, indent=2, default=str))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
