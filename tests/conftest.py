"""Shared fixtures: a throwaway SQLite ledger and a scripted transfer executor."""
import asyncio
import hashlib
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from config.settings import PayoutConfig, PotConfig
from database.database import Database
from database.ledger import LedgerStore
from database.models import Cycle, utc_now
from services.enrollment_service import EnrollmentManager
from services.payout_service import PayoutExecutor
from services.scheduler_service import CycleScheduler
from services.status_service import StatusProjector
from services.transfer_interface import TransferExecutor


def make_address(n: int) -> str:
    return "0x" + f"{n:040x}"


class FakeTransferExecutor(TransferExecutor):
    """Records every send and fails on demand."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Decimal, bool]] = []
        self.failures: Dict[str, Exception] = {}
        self.delay: Optional[float] = None
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    @property
    def backend_name(self) -> str:
        return "fake"

    async def send(self, address: str, amount: Decimal, test_mode: bool) -> str:
        self.calls.append((address, amount, test_mode))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        failure = self.failures.get(address)
        if failure is not None:
            raise failure
        digest = hashlib.sha256(f"{address}:{len(self.calls)}".encode()).hexdigest()
        return f"0x{digest}"

    async def close(self) -> None:
        self.closed = True

    def addresses_sent(self) -> List[str]:
        return [address for address, _, _ in self.calls]


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'pot.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database) -> LedgerStore:
    return LedgerStore(database)


@pytest.fixture
def pot_config() -> PotConfig:
    return PotConfig(default_amount=Decimal("100.00"), default_max_participants=10)


@pytest.fixture
def payout_config() -> PayoutConfig:
    return PayoutConfig(
        secret="s3cret",
        max_attempts=3,
        transfer_timeout_seconds=5.0,
        lease_seconds=600
    )


@pytest.fixture
def scheduler(store, pot_config) -> CycleScheduler:
    return CycleScheduler(store, pot_config)


@pytest.fixture
def projector(store) -> StatusProjector:
    return StatusProjector(store, share_decimals=2)


@pytest.fixture
def enrollment(store, projector) -> EnrollmentManager:
    return EnrollmentManager(store, projector)


@pytest.fixture
def transfers() -> FakeTransferExecutor:
    return FakeTransferExecutor()


@pytest.fixture
def executor(store, transfers, payout_config) -> PayoutExecutor:
    return PayoutExecutor(store, transfers, payout_config, share_decimals=2)


@pytest.fixture
async def open_cycle(scheduler) -> Cycle:
    return await scheduler.open_cycle(
        amount=Decimal("100.00"),
        scheduled_at=utc_now() + timedelta(days=1),
        max_participants=10,
        is_test_mode=True
    )


async def make_due(
    scheduler: CycleScheduler,
    cycle: Cycle,
    amount: Decimal = Decimal("100.00"),
    max_participants: int = 10
) -> None:
    """Move a cycle's schedule into the past so the executor picks it up."""
    await scheduler.seed_condition(
        cycle.id,
        amount=amount,
        scheduled_at=utc_now() - timedelta(minutes=1),
        max_participants=max_participants,
        is_test_mode=True
    )
