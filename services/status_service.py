"""Read-only view of the open cycle."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from database.ledger import LedgerStore, LedgerTransaction
from database.models import Cycle, Participant, ensure_utc, utc_now
from services.distribution import compute_shares
from utils.addresses import normalize_optional_address
from utils.exceptions import InvalidAmountError

logger = logging.getLogger(__name__)


@dataclass
class ParticipantView:
    """One enrolled participant as listed in the snapshot."""
    id: int
    address: str
    joined_at: datetime
    is_viewer: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "joinedAt": self.joined_at.isoformat(),
            "isViewer": self.is_viewer,
        }


@dataclass
class StatusSnapshot:
    """Current cycle, its condition, head count and the caller's membership."""
    cycle_id: Optional[str] = None
    label: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[Decimal] = None
    scheduled_at: Optional[datetime] = None
    is_test_mode: Optional[bool] = None
    max_participants: Optional[int] = None
    participant_count: int = 0
    spots_remaining: int = 0
    countdown_seconds: int = 0
    per_participant_amount: Optional[Decimal] = None
    viewer_enrolled: bool = False
    viewer_address: Optional[str] = None
    viewer_participant_id: Optional[int] = None
    participants: List[ParticipantView] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": None if self.cycle_id is None else {
                "id": self.cycle_id,
                "label": self.label,
                "status": self.status,
                "amount": str(self.amount),
                "scheduledAt": self.scheduled_at.isoformat() if self.scheduled_at else None,
                "isTestMode": self.is_test_mode,
                "maxParticipants": self.max_participants,
                "participantCount": self.participant_count,
                "spotsRemaining": self.spots_remaining,
                "countdownSeconds": self.countdown_seconds,
            },
            "perParticipantAmount": (
                str(self.per_participant_amount) if self.per_participant_amount is not None else None
            ),
            "viewer": {
                "enrolled": self.viewer_enrolled,
                "address": self.viewer_address,
                "participantId": self.viewer_participant_id,
            },
            "participants": [p.to_dict() for p in self.participants],
        }


def find_viewer(
    participants: List[Participant],
    visitor_id: Optional[str],
    address: Optional[str]
) -> Optional[Participant]:
    """Resolve the caller's row, trusting an address hint only if it is not someone else's."""
    if visitor_id:
        for participant in participants:
            if participant.visitor_id == visitor_id:
                return participant
    if address:
        for participant in participants:
            if participant.address == address and participant.visitor_id in (None, visitor_id):
                return participant
    return None


class StatusProjector:
    """Composes the status snapshot shown to participants."""

    def __init__(self, store: LedgerStore, share_decimals: int = 2):
        self.store = store
        self.share_decimals = share_decimals
        self.logger = logging.getLogger(__name__)

    async def status(
        self,
        visitor_id: Optional[str] = None,
        address: Optional[str] = None
    ) -> StatusSnapshot:
        """Snapshot of the open cycle as seen by the caller.

        Raises:
            StoreUnavailableError: If the ledger store cannot be reached
        """
        async with self.store.transaction() as tx:
            cycle = await tx.get_open_cycle()
            if cycle is None:
                return StatusSnapshot()
            return await self.project(tx, cycle, visitor_id, address)

    async def project(
        self,
        tx: LedgerTransaction,
        cycle: Cycle,
        visitor_id: Optional[str],
        address: Optional[str]
    ) -> StatusSnapshot:
        participants = await tx.list_participants(cycle.id)
        viewer = find_viewer(participants, visitor_id, normalize_optional_address(address))
        snapshot = StatusSnapshot(
            cycle_id=cycle.id,
            label=cycle.label,
            status=cycle.status.value,
            participant_count=len(participants),
            viewer_enrolled=viewer is not None,
            viewer_address=viewer.address if viewer else None,
            viewer_participant_id=viewer.id if viewer else None,
            participants=[
                ParticipantView(
                    id=p.id,
                    address=p.address,
                    joined_at=ensure_utc(p.joined_at),
                    is_viewer=viewer is not None and p.id == viewer.id
                )
                for p in sorted(participants, key=lambda p: (ensure_utc(p.joined_at), p.id))
            ]
        )

        condition = cycle.condition
        if condition is None:
            return snapshot

        scheduled_at = ensure_utc(condition.scheduled_at)
        snapshot.amount = condition.amount
        snapshot.scheduled_at = scheduled_at
        snapshot.is_test_mode = condition.is_test_mode
        snapshot.max_participants = condition.max_participants
        snapshot.spots_remaining = max(condition.max_participants - len(participants), 0)
        snapshot.countdown_seconds = max(0, int((scheduled_at - utc_now()).total_seconds()))

        if participants:
            try:
                shares = compute_shares(
                    condition.amount,
                    [p.address for p in participants],
                    self.share_decimals
                )
                snapshot.per_participant_amount = shares[0].amount
            except InvalidAmountError as e:
                self.logger.warning(f"Cannot preview shares for cycle {cycle.id}: {e}")
        return snapshot
