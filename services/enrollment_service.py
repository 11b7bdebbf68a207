"""Admission of payout addresses into the open cycle."""
import logging
from typing import Optional

from database.ledger import ConflictKind, LedgerStore, LedgerTransaction
from database.models import Participant, ensure_utc, utc_now
from services.status_service import StatusProjector, StatusSnapshot
from utils.addresses import normalize_address, normalize_optional_address
from utils.exceptions import (
    AddressAlreadyJoinedError,
    CapacityExceededError,
    NoOpenCycleError,
)

logger = logging.getLogger(__name__)


class EnrollmentManager:
    """Joins callers to the open cycle, one address per slot."""

    def __init__(self, store: LedgerStore, projector: StatusProjector):
        self.store = store
        self.projector = projector
        self.logger = logging.getLogger(__name__)

    async def join(
        self,
        address: str,
        previous_address: Optional[str] = None,
        previous_cycle_id: Optional[str] = None,
        visitor_id: Optional[str] = None
    ) -> StatusSnapshot:
        """Admit ``address`` into the open cycle, or move the caller's slot to it.

        ``previous_address`` and ``previous_cycle_id`` are hints from the
        caller's session. They are only honoured when the stored row they point
        at belongs to the same caller.

        Raises:
            InvalidAddressError: If the address is malformed
            NoOpenCycleError: If no cycle accepts participants
            CapacityExceededError: If the cycle is full and the caller holds no slot
            AddressAlreadyJoinedError: If another caller holds the address
        """
        normalized = normalize_address(address)
        previous = normalize_optional_address(previous_address)

        async with self.store.transaction() as tx:
            cycle = await tx.get_open_cycle()
            if cycle is None or cycle.condition is None:
                raise NoOpenCycleError()
            condition = cycle.condition
            if ensure_utc(condition.scheduled_at) <= utc_now():
                raise NoOpenCycleError(f"Enrollment for cycle {cycle.id} has closed")

            holder = await tx.find_participant_by_address(cycle.id, normalized)
            if holder is not None:
                if holder.visitor_id != visitor_id:
                    raise AddressAlreadyJoinedError(cycle.id, normalized)
                self.logger.debug(
                    "Address already enrolled, nothing to do",
                    extra={'cycle_id': cycle.id, 'address': normalized}
                )
                return await self.projector.project(tx, cycle, visitor_id, normalized)

            own_slot = await self._find_own_slot(
                tx, cycle.id, normalized, visitor_id, previous, previous_cycle_id
            )
            if own_slot is None:
                count = await tx.count_participants(cycle.id)
                if count >= condition.max_participants:
                    raise CapacityExceededError(cycle.id, condition.max_participants)
            else:
                self.logger.info(
                    f"Replacing address {own_slot.address}",
                    extra={'cycle_id': cycle.id, 'address': normalized}
                )
                await tx.delete_participant(own_slot.id)

            conflict = await tx.insert_participant(cycle.id, normalized, visitor_id)
            if conflict is not ConflictKind.NONE:
                raise AddressAlreadyJoinedError(cycle.id, normalized)

            # A concurrent join may have taken the last slot after our count
            if await tx.count_participants(cycle.id) > condition.max_participants:
                raise CapacityExceededError(cycle.id, condition.max_participants)

            self.logger.info(
                "Participant joined",
                extra={'cycle_id': cycle.id, 'address': normalized}
            )
            return await self.projector.project(tx, cycle, visitor_id, normalized)

    async def _find_own_slot(
        self,
        tx: LedgerTransaction,
        cycle_id: str,
        address: str,
        visitor_id: Optional[str],
        previous_address: Optional[str],
        previous_cycle_id: Optional[str]
    ) -> Optional[Participant]:
        """The caller's existing row in this cycle, if any."""
        if visitor_id:
            slot = await tx.find_participant_by_visitor(cycle_id, visitor_id)
            if slot is not None:
                return slot

        if previous_address and previous_cycle_id == cycle_id and previous_address != address:
            slot = await tx.find_participant_by_address(cycle_id, previous_address)
            if slot is not None and slot.visitor_id == visitor_id:
                return slot
            if slot is not None:
                self.logger.warning(
                    "Ignoring replacement hint for an address owned by another caller",
                    extra={'cycle_id': cycle_id, 'address': previous_address}
                )
        return None
