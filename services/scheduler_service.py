"""Administrative seeding and rollover of cycles."""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from config.settings import PotConfig
from database.ledger import ConflictKind, LedgerStore
from database.models import Cycle, CycleCondition, CycleStatus, ensure_utc, utc_now
from utils.exceptions import CycleAlreadyOpenError, InvalidAmountError, NoOpenCycleError

logger = logging.getLogger(__name__)


class CycleScheduler:
    """Opens, seeds and locks cycles on the weekly distribution schedule."""

    def __init__(self, store: LedgerStore, config: PotConfig):
        self.store = store
        self.config = config
        self.logger = logging.getLogger(__name__)

    def next_distribution_at(self, reference: Optional[datetime] = None) -> datetime:
        """Next distribution instant after ``reference``, in UTC."""
        zone = ZoneInfo(self.config.timezone)
        local = ensure_utc(reference or utc_now()).astimezone(zone)
        days_ahead = (self.config.distribution_weekday - local.isoweekday()) % 7
        candidate = (local + timedelta(days=days_ahead)).replace(
            hour=self.config.distribution_hour,
            minute=self.config.distribution_minute,
            second=0,
            microsecond=0
        )
        if candidate <= local:
            candidate = (local + timedelta(days=days_ahead + 7)).replace(
                hour=self.config.distribution_hour,
                minute=self.config.distribution_minute,
                second=0,
                microsecond=0
            )
        return candidate.astimezone(timezone.utc)

    def label_for(self, scheduled_at: datetime) -> str:
        return ensure_utc(scheduled_at).astimezone(ZoneInfo(self.config.timezone)).strftime("%Y-%m-%d")

    async def open_cycle(
        self,
        amount: Optional[Decimal] = None,
        scheduled_at: Optional[datetime] = None,
        max_participants: Optional[int] = None,
        is_test_mode: Optional[bool] = None
    ) -> Cycle:
        """Create a new open cycle, using configured defaults for omitted values.

        Raises:
            CycleAlreadyOpenError: If a cycle is already open
            InvalidAmountError: If amount or cap is not positive
        """
        amount = self.config.default_amount if amount is None else Decimal(amount)
        max_participants = max_participants or self.config.default_max_participants
        if amount <= 0 or max_participants <= 0:
            raise InvalidAmountError("Amount and max participants must be positive")
        scheduled_at = ensure_utc(scheduled_at) if scheduled_at else self.next_distribution_at()
        if is_test_mode is None:
            is_test_mode = self.config.default_test_mode

        async with self.store.transaction() as tx:
            cycle, conflict = await tx.create_cycle(
                amount=amount,
                scheduled_at=scheduled_at,
                max_participants=max_participants,
                is_test_mode=is_test_mode,
                label=self.label_for(scheduled_at)
            )
            if conflict is ConflictKind.OPEN_CYCLE_EXISTS:
                raise CycleAlreadyOpenError(cycle.id if cycle else "unknown")

        self.logger.info(
            f"Opened cycle {cycle.label}: {amount} for up to {max_participants} participants",
            extra={'cycle_id': cycle.id}
        )
        return cycle

    async def ensure_open_cycle(self) -> Cycle:
        """Return the open cycle, creating one from defaults when none exists."""
        cycle = await self.store.get_open_cycle()
        if cycle is not None:
            return cycle
        try:
            return await self.open_cycle()
        except CycleAlreadyOpenError:
            # Another process opened it in the meantime
            cycle = await self.store.get_open_cycle()
            if cycle is None:
                raise
            return cycle

    async def seed_condition(
        self,
        cycle_id: str,
        amount: Decimal,
        scheduled_at: datetime,
        max_participants: int,
        is_test_mode: bool
    ) -> CycleCondition:
        """Insert or overwrite the payout parameters of a cycle."""
        if amount <= 0 or max_participants <= 0:
            raise InvalidAmountError("Amount and max participants must be positive")
        async with self.store.transaction() as tx:
            condition = await tx.upsert_condition(
                cycle_id=cycle_id,
                amount=Decimal(amount),
                scheduled_at=ensure_utc(scheduled_at),
                max_participants=max_participants,
                is_test_mode=is_test_mode
            )
        self.logger.info("Seeded payout condition", extra={'cycle_id': cycle_id})
        return condition

    async def lock_cycle(self, cycle_id: str) -> bool:
        """Stop enrollment for a cycle. Returns False if it was not open."""
        locked = await self.store.transition_cycle(cycle_id, CycleStatus.OPEN, CycleStatus.LOCKED)
        if locked:
            self.logger.info("Cycle locked", extra={'cycle_id': cycle_id})
        return locked

    async def rollover(self, now: Optional[datetime] = None) -> Cycle:
        """Lock the open cycle once it is due and open the next one.

        Returns the cycle that is open afterwards.
        """
        now = ensure_utc(now or utc_now())
        current = await self.store.get_open_cycle()
        if current is not None:
            condition = current.condition
            if condition is None or ensure_utc(condition.scheduled_at) > now:
                return current
            await self.lock_cycle(current.id)

        try:
            return await self.open_cycle(scheduled_at=self.next_distribution_at(now))
        except CycleAlreadyOpenError:
            cycle = await self.store.get_open_cycle()
            if cycle is None:
                raise NoOpenCycleError("Rollover raced with another scheduler")
            return cycle
