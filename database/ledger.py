"""Ledger store: the only shared mutable state of the pot.

All reads and writes of cycles, conditions, participants and payout outcomes
go through a :class:`LedgerTransaction`. The store maps driver failures to
:class:`StoreUnavailableError` and uniqueness violations to a
:class:`ConflictKind`, so callers never look at driver error codes.

The claim is a compare-and-set on ``(status, attempts)``: every successful
claim bumps ``attempts``, so two executors that read the same cycle can never
both win, whether the cycle is fresh or being resumed.
"""
import enum
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set, TypeVar
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from utils.exceptions import StoreUnavailableError
from .database import Database
from .models import (
    Cycle,
    CycleCondition,
    CycleStatus,
    OutcomeKind,
    Participant,
    PayoutOutcome,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DUE_STATUSES = (CycleStatus.OPEN, CycleStatus.LOCKED, CycleStatus.PROCESSING)
ERROR_MAX_LENGTH = 500


class ConflictKind(enum.Enum):
    """Outcome of a write that may collide with a uniqueness rule."""
    NONE = "none"
    DUPLICATE_ADDRESS = "duplicate_address"
    DUPLICATE_VISITOR = "duplicate_visitor"
    OPEN_CYCLE_EXISTS = "open_cycle_exists"


def _truncate(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:ERROR_MAX_LENGTH]


def _processing_by(cycle_id: str, attempt: Optional[int]) -> list:
    """Filter for a processing cycle, optionally owned by claim ``attempt``."""
    conditions = [Cycle.id == cycle_id, Cycle.status == CycleStatus.PROCESSING]
    if attempt is not None:
        conditions.append(Cycle.attempts == attempt)
    return conditions


class LedgerTransaction:
    """Queries and writes bound to one database transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Cycles

    async def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        return await self.session.get(Cycle, cycle_id)

    async def get_open_cycle(self) -> Optional[Cycle]:
        result = await self.session.execute(
            select(Cycle)
            .where(Cycle.status == CycleStatus.OPEN)
            .order_by(Cycle.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_cycle(
        self,
        amount: Decimal,
        scheduled_at: datetime,
        max_participants: int,
        is_test_mode: bool,
        label: Optional[str] = None
    ) -> tuple[Optional[Cycle], ConflictKind]:
        """Insert a new open cycle together with its condition.

        On conflict the currently open cycle is returned when it is known.
        """
        existing = await self.get_open_cycle()
        if existing is not None:
            return existing, ConflictKind.OPEN_CYCLE_EXISTS

        cycle = Cycle(label=label, status=CycleStatus.OPEN)
        cycle.condition = CycleCondition(
            amount=amount,
            scheduled_at=scheduled_at,
            is_test_mode=is_test_mode,
            max_participants=max_participants
        )
        self.session.add(cycle)
        try:
            await self.session.flush()
        except IntegrityError:
            return None, ConflictKind.OPEN_CYCLE_EXISTS
        return cycle, ConflictKind.NONE

    async def upsert_condition(
        self,
        cycle_id: str,
        amount: Decimal,
        scheduled_at: datetime,
        max_participants: int,
        is_test_mode: bool
    ) -> CycleCondition:
        condition = await self.session.get(CycleCondition, cycle_id)
        if condition is None:
            condition = CycleCondition(cycle_id=cycle_id)
            self.session.add(condition)
        condition.amount = amount
        condition.scheduled_at = scheduled_at
        condition.max_participants = max_participants
        condition.is_test_mode = is_test_mode
        await self.session.flush()
        return condition

    async def transition_cycle(
        self,
        cycle_id: str,
        expected: CycleStatus,
        new: CycleStatus
    ) -> bool:
        """Move a cycle between states only if it is still in ``expected``."""
        result = await self.session.execute(
            update(Cycle)
            .where(Cycle.id == cycle_id, Cycle.status == expected)
            .values(status=new, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_due_cycle(self, now: datetime) -> Optional[Cycle]:
        """Earliest unfinished cycle whose schedule has passed."""
        result = await self.session.execute(
            select(Cycle)
            .join(CycleCondition, CycleCondition.cycle_id == Cycle.id)
            .where(
                Cycle.status.in_(DUE_STATUSES),
                CycleCondition.scheduled_at <= now
            )
            .order_by(CycleCondition.scheduled_at, Cycle.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def claim_cycle(
        self,
        cycle_id: str,
        expected_status: CycleStatus,
        expected_attempts: int,
        lease_until: datetime
    ) -> bool:
        """Atomically take a due cycle into processing.

        Returns False when another executor changed the cycle since it was read.
        """
        result = await self.session.execute(
            update(Cycle)
            .where(
                Cycle.id == cycle_id,
                Cycle.status == expected_status,
                Cycle.attempts == expected_attempts
            )
            .values(
                status=CycleStatus.PROCESSING,
                attempts=Cycle.attempts + 1,
                lease_expires_at=lease_until,
                updated_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def renew_lease(self, cycle_id: str, attempt: int, lease_until: datetime) -> bool:
        """Extend the lease of the run holding claim ``attempt``.

        Returns False once another run has claimed the cycle since.
        """
        result = await self.session.execute(
            update(Cycle)
            .where(
                Cycle.id == cycle_id,
                Cycle.status == CycleStatus.PROCESSING,
                Cycle.attempts == attempt
            )
            .values(lease_expires_at=lease_until, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish_cycle(
        self,
        cycle_id: str,
        status: CycleStatus,
        error: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> bool:
        """Close out a processing cycle as completed or failed.

        With ``attempt`` set, only the run holding that claim may finish it.
        """
        now = utc_now()
        result = await self.session.execute(
            update(Cycle)
            .where(*_processing_by(cycle_id, attempt))
            .values(
                status=status,
                lease_expires_at=None,
                executed_at=now,
                execution_error=_truncate(error),
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_cycle(
        self,
        cycle_id: str,
        error: Optional[str],
        attempt: Optional[int] = None
    ) -> bool:
        """Drop the lease on a processing cycle so a later run can resume it."""
        result = await self.session.execute(
            update(Cycle)
            .where(*_processing_by(cycle_id, attempt))
            .values(
                lease_expires_at=None,
                execution_error=_truncate(error),
                updated_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Participants

    async def count_participants(self, cycle_id: str) -> int:
        count = await self.session.scalar(
            select(func.count()).select_from(Participant).where(
                Participant.cycle_id == cycle_id
            )
        )
        return count or 0

    async def list_participants(self, cycle_id: str) -> List[Participant]:
        """Participants of a cycle in ascending address order."""
        result = await self.session.execute(
            select(Participant)
            .where(Participant.cycle_id == cycle_id)
            .order_by(Participant.address)
        )
        return list(result.scalars().all())

    async def find_participant_by_address(self, cycle_id: str, address: str) -> Optional[Participant]:
        result = await self.session.execute(
            select(Participant).where(
                Participant.cycle_id == cycle_id,
                Participant.address == address
            )
        )
        return result.scalar_one_or_none()

    async def find_participant_by_visitor(self, cycle_id: str, visitor_id: str) -> Optional[Participant]:
        result = await self.session.execute(
            select(Participant).where(
                Participant.cycle_id == cycle_id,
                Participant.visitor_id == visitor_id
            )
        )
        return result.scalar_one_or_none()

    async def insert_participant(
        self,
        cycle_id: str,
        address: str,
        visitor_id: Optional[str]
    ) -> ConflictKind:
        if await self.find_participant_by_address(cycle_id, address) is not None:
            return ConflictKind.DUPLICATE_ADDRESS
        if visitor_id and await self.find_participant_by_visitor(cycle_id, visitor_id) is not None:
            return ConflictKind.DUPLICATE_VISITOR

        self.session.add(Participant(
            cycle_id=cycle_id,
            address=address,
            visitor_id=visitor_id,
            joined_at=utc_now()
        ))
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent join for the same address
            return ConflictKind.DUPLICATE_ADDRESS
        return ConflictKind.NONE

    async def delete_participant(self, participant_id: int) -> None:
        await self.session.execute(
            delete(Participant).where(Participant.id == participant_id)
        )

    # Outcomes

    async def record_outcome(
        self,
        cycle_id: str,
        address: str,
        share_amount: Decimal,
        outcome: OutcomeKind,
        attempt: int,
        transfer_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        is_simulated: bool = False
    ) -> PayoutOutcome:
        row = PayoutOutcome(
            cycle_id=cycle_id,
            address=address,
            share_amount=share_amount,
            outcome=outcome,
            attempt=attempt,
            transfer_id=transfer_id,
            failure_reason=_truncate(failure_reason),
            is_simulated=is_simulated,
            attempted_at=utc_now()
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def paid_addresses(self, cycle_id: str) -> Set[str]:
        """Addresses holding a real (non-simulated) succeeded outcome."""
        result = await self.session.execute(
            select(PayoutOutcome.address).where(
                PayoutOutcome.cycle_id == cycle_id,
                PayoutOutcome.outcome == OutcomeKind.SUCCEEDED,
                PayoutOutcome.is_simulated.is_(False)
            ).distinct()
        )
        return set(result.scalars().all())

    async def list_outcomes(self, cycle_id: str) -> List[PayoutOutcome]:
        result = await self.session.execute(
            select(PayoutOutcome)
            .where(PayoutOutcome.cycle_id == cycle_id)
            .order_by(PayoutOutcome.id)
        )
        return list(result.scalars().all())


class LedgerStore:
    """Durable store for cycles, conditions, participants and outcomes."""

    def __init__(self, database: Database):
        self.db = database
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerTransaction]:
        """Run the enclosed block as one atomic unit.

        The unit commits when the block exits normally and rolls back when it
        raises, including when a business error is raised by the caller.
        """
        try:
            async with self.db.session() as session:
                async with session.begin():
                    yield LedgerTransaction(session)
        except (OperationalError, InterfaceError) as e:
            self.logger.error(f"Ledger store unavailable: {e}")
            raise StoreUnavailableError(str(e)) from e

    async def _once(self, operation: Callable[[LedgerTransaction], Awaitable[T]]) -> T:
        async with self.transaction() as tx:
            return await operation(tx)

    async def get_open_cycle(self) -> Optional[Cycle]:
        return await self._once(lambda tx: tx.get_open_cycle())

    async def get_cycle(self, cycle_id: str) -> Optional[Cycle]:
        return await self._once(lambda tx: tx.get_cycle(cycle_id))

    async def find_due_cycle(self, now: datetime) -> Optional[Cycle]:
        return await self._once(lambda tx: tx.find_due_cycle(now))

    async def claim_cycle(
        self,
        cycle_id: str,
        expected_status: CycleStatus,
        expected_attempts: int,
        lease_until: datetime
    ) -> bool:
        return await self._once(
            lambda tx: tx.claim_cycle(cycle_id, expected_status, expected_attempts, lease_until)
        )

    async def transition_cycle(self, cycle_id: str, expected: CycleStatus, new: CycleStatus) -> bool:
        return await self._once(lambda tx: tx.transition_cycle(cycle_id, expected, new))

    async def renew_lease(self, cycle_id: str, attempt: int, lease_until: datetime) -> bool:
        return await self._once(lambda tx: tx.renew_lease(cycle_id, attempt, lease_until))

    async def finish_cycle(
        self,
        cycle_id: str,
        status: CycleStatus,
        error: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> bool:
        return await self._once(lambda tx: tx.finish_cycle(cycle_id, status, error, attempt))

    async def release_cycle(self, cycle_id: str, error: Optional[str], attempt: Optional[int] = None) -> bool:
        return await self._once(lambda tx: tx.release_cycle(cycle_id, error, attempt))

    async def list_participants(self, cycle_id: str) -> List[Participant]:
        return await self._once(lambda tx: tx.list_participants(cycle_id))

    async def paid_addresses(self, cycle_id: str) -> Set[str]:
        return await self._once(lambda tx: tx.paid_addresses(cycle_id))

    async def list_outcomes(self, cycle_id: str) -> List[PayoutOutcome]:
        return await self._once(lambda tx: tx.list_outcomes(cycle_id))

    async def record_outcome(self, **kwargs) -> PayoutOutcome:
        return await self._once(lambda tx: tx.record_outcome(**kwargs))
