"""Payout executor: claims a due cycle and pays its participants exactly once.

The executor keeps no state between runs. Everything it needs to resume after
a crash lives in the ledger: the cycle status and attempt counter, and the
append-only payout outcomes. A participant counts as paid only once a real
``succeeded`` outcome has been written for it.

A claim is owned by the run whose attempt number matches the cycle's
``attempts`` column. The owner renews its lease before every transfer, and
every write that ends or releases the claim is conditioned on that number, so
a run that has been superseded stops instead of paying alongside its
successor.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from config.settings import PayoutConfig
from database.ledger import LedgerStore
from database.models import Cycle, CycleStatus, OutcomeKind, ensure_utc, utc_now
from services.distribution import Share, compute_shares
from services.transfer_interface import TransferExecutor
from utils.exceptions import (
    ConfigurationError,
    InvalidAmountError,
    StoreUnavailableError,
    TransferError,
    TransferTimeoutError,
)

logger = logging.getLogger(__name__)


class PayoutStatus(str, enum.Enum):
    NOTHING_DUE = "nothing_due"
    ALREADY_CLAIMED = "already_claimed"
    CLAIM_LOST = "claim_lost"
    DRY_RUN = "dry_run"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class PayoutSummary:
    """Result of one ``execute`` call."""
    status: PayoutStatus
    message: str
    dry_run: bool = False
    cycle_id: Optional[str] = None
    total_participants: int = 0
    succeeded: int = 0
    failed: int = 0
    already_paid: int = 0
    transfer_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "dryRun": self.dry_run,
            "message": self.message,
            "cycleId": self.cycle_id,
            "participantCount": self.total_participants,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "alreadyPaid": self.already_paid,
            "transactionHashes": list(self.transfer_ids),
        }


class PayoutExecutor:
    """Disburses the pot of the earliest due cycle."""

    def __init__(
        self,
        store: LedgerStore,
        transfer_executor: TransferExecutor,
        config: PayoutConfig,
        share_decimals: int = 2
    ):
        self.store = store
        self.transfer_executor = transfer_executor
        self.config = config
        self.share_decimals = share_decimals
        self.logger = logging.getLogger(__name__)

    def _lease_until(self) -> datetime:
        return utc_now() + timedelta(seconds=self.config.lease_seconds)

    async def execute(self, dry_run: bool = False) -> PayoutSummary:
        """Claim and pay the earliest due cycle.

        Safe to call any number of times from any number of processes: only
        the caller that wins the claim disburses. Always returns a summary.
        """
        cycle: Optional[Cycle] = None
        attempt: Optional[int] = None
        try:
            now = utc_now()
            cycle = await self.store.find_due_cycle(now)
            if cycle is None:
                return PayoutSummary(
                    status=PayoutStatus.NOTHING_DUE,
                    message="No cycle is due for payout",
                    dry_run=dry_run
                )

            if dry_run:
                return await self._simulate(cycle)

            lease = ensure_utc(cycle.lease_expires_at)
            if cycle.status is CycleStatus.PROCESSING and lease is not None and lease > now:
                return self._already_claimed(cycle)

            if not await self.store.claim_cycle(cycle.id, cycle.status, cycle.attempts, self._lease_until()):
                return self._already_claimed(cycle)

            attempt = cycle.attempts + 1
            self.logger.info(
                f"Claimed cycle (attempt {attempt}/{self.config.max_attempts})",
                extra={'cycle_id': cycle.id}
            )
            return await self._disburse(cycle, attempt)

        except StoreUnavailableError as e:
            self.logger.error(f"Payout aborted, ledger store unavailable: {e}")
            return PayoutSummary(
                status=PayoutStatus.ERROR,
                message=f"Ledger store unavailable: {e}",
                dry_run=dry_run,
                cycle_id=cycle.id if cycle else None
            )
        except Exception as e:
            self.logger.critical(
                f"Payout aborted by unexpected error: {e}",
                exc_info=True,
                extra={'cycle_id': cycle.id if cycle else None}
            )
            if cycle is not None and attempt is not None:
                await self._release_after_error(cycle.id, attempt, str(e))
            return PayoutSummary(
                status=PayoutStatus.ERROR,
                message=f"Payout aborted: {e}",
                dry_run=dry_run,
                cycle_id=cycle.id if cycle else None
            )

    async def _release_after_error(self, cycle_id: str, attempt: int, error: str) -> None:
        """Best-effort release so the next run need not wait for the lease."""
        try:
            await self.store.release_cycle(cycle_id, error, attempt)
        except Exception as e:
            self.logger.error(
                f"Could not release cycle, it resumes once the lease expires: {e}",
                extra={'cycle_id': cycle_id}
            )

    def _already_claimed(self, cycle: Cycle) -> PayoutSummary:
        self.logger.info("Cycle is being paid by another executor", extra={'cycle_id': cycle.id})
        return PayoutSummary(
            status=PayoutStatus.ALREADY_CLAIMED,
            message="Cycle already claimed by another payout run",
            cycle_id=cycle.id
        )

    def _claim_lost(self, cycle: Cycle, summary: PayoutSummary) -> PayoutSummary:
        summary.status = PayoutStatus.CLAIM_LOST
        summary.message = (
            f"Claim taken over by another payout run after "
            f"{summary.succeeded} transfers, stopping"
        )
        self.logger.warning(summary.message, extra={'cycle_id': cycle.id})
        return summary

    async def _disburse(self, cycle: Cycle, attempt: int) -> PayoutSummary:
        condition = cycle.condition
        participants = await self.store.list_participants(cycle.id)
        if not participants:
            if not await self.store.finish_cycle(cycle.id, CycleStatus.COMPLETED, attempt=attempt):
                return self._claim_lost(cycle, PayoutSummary(PayoutStatus.CLAIM_LOST, "", cycle_id=cycle.id))
            self.logger.info("Cycle closed without participants", extra={'cycle_id': cycle.id})
            return PayoutSummary(
                status=PayoutStatus.COMPLETED,
                message="Cycle closed without participants",
                cycle_id=cycle.id
            )

        try:
            shares = compute_shares(
                condition.amount,
                [p.address for p in participants],
                self.share_decimals
            )
        except InvalidAmountError as e:
            self.logger.critical(f"Cannot split pot: {e}", extra={'cycle_id': cycle.id})
            await self.store.finish_cycle(cycle.id, CycleStatus.FAILED, str(e), attempt=attempt)
            return PayoutSummary(
                status=PayoutStatus.FAILED,
                message=f"Payout failed: {e}",
                cycle_id=cycle.id,
                total_participants=len(participants)
            )

        summary = PayoutSummary(
            status=PayoutStatus.PARTIAL,
            message="",
            cycle_id=cycle.id,
            total_participants=len(shares)
        )
        paid = await self.store.paid_addresses(cycle.id)
        last_failure: Optional[str] = None

        for share in shares:
            if share.address in paid:
                summary.already_paid += 1
                continue

            # The lease outlives one transfer, so no other run can claim mid-send
            if not await self.store.renew_lease(cycle.id, attempt, self._lease_until()):
                return self._claim_lost(cycle, summary)

            try:
                transfer_id, failure = await self._transfer(share, condition.is_test_mode)
            except ConfigurationError as e:
                self.logger.critical(f"Payout aborted: {e}", extra={'cycle_id': cycle.id})
                await self.store.release_cycle(cycle.id, str(e), attempt)
                summary.status = PayoutStatus.ERROR
                summary.message = f"Payout aborted: {e}"
                return summary

            if transfer_id is not None:
                await self.store.record_outcome(
                    cycle_id=cycle.id,
                    address=share.address,
                    share_amount=share.amount,
                    outcome=OutcomeKind.SUCCEEDED,
                    attempt=attempt,
                    transfer_id=transfer_id
                )
                summary.succeeded += 1
                summary.transfer_ids.append(transfer_id)
            else:
                await self.store.record_outcome(
                    cycle_id=cycle.id,
                    address=share.address,
                    share_amount=share.amount,
                    outcome=OutcomeKind.FAILED,
                    attempt=attempt,
                    failure_reason=failure
                )
                summary.failed += 1
                last_failure = failure

        return await self._finalize(cycle, attempt, summary, last_failure)

    async def _transfer(self, share: Share, test_mode: bool) -> Tuple[Optional[str], Optional[str]]:
        """Send one share. Returns (transfer_id, None) or (None, failure_reason)."""
        timeout = self.config.transfer_timeout_seconds
        try:
            transfer_id = await asyncio.wait_for(
                self.transfer_executor.send(share.address, share.amount, test_mode),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            reason = str(TransferTimeoutError(share.address, timeout))
        except TransferError as e:
            reason = str(e)
        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.error(
                f"Unexpected transfer error: {e}",
                exc_info=True,
                extra={'address': share.address}
            )
            reason = f"Unexpected transfer error: {e}"
        else:
            self.logger.info(
                f"Paid {share.amount} (tx: {transfer_id})",
                extra={'address': share.address}
            )
            return transfer_id, None

        self.logger.warning(f"Transfer failed: {reason}", extra={'address': share.address})
        return None, reason

    async def _finalize(
        self,
        cycle: Cycle,
        attempt: int,
        summary: PayoutSummary,
        last_failure: Optional[str]
    ) -> PayoutSummary:
        paid_total = summary.succeeded + summary.already_paid
        if summary.failed == 0:
            if not await self.store.finish_cycle(cycle.id, CycleStatus.COMPLETED, attempt=attempt):
                return self._claim_lost(cycle, summary)
            summary.status = PayoutStatus.COMPLETED
            summary.message = (
                f"Distributed {cycle.condition.amount} to {summary.total_participants} participants"
            )
            self.logger.info(summary.message, extra={'cycle_id': cycle.id})
        elif attempt >= self.config.max_attempts:
            if not await self.store.finish_cycle(cycle.id, CycleStatus.FAILED, last_failure, attempt):
                return self._claim_lost(cycle, summary)
            summary.status = PayoutStatus.FAILED
            summary.message = (
                f"Retry budget exhausted after {attempt} attempts: "
                f"{paid_total}/{summary.total_participants} paid, manual intervention required"
            )
            self.logger.critical(summary.message, extra={'cycle_id': cycle.id})
        else:
            if not await self.store.release_cycle(cycle.id, last_failure, attempt):
                return self._claim_lost(cycle, summary)
            summary.status = PayoutStatus.PARTIAL
            summary.message = (
                f"Paid {paid_total}/{summary.total_participants} participants, "
                f"{summary.failed} failed and will be retried"
            )
            self.logger.warning(summary.message, extra={'cycle_id': cycle.id})
        return summary

    async def _simulate(self, cycle: Cycle) -> PayoutSummary:
        """Dry run: plan the payout and record simulated outcomes only."""
        participants = await self.store.list_participants(cycle.id)
        summary = PayoutSummary(
            status=PayoutStatus.DRY_RUN,
            message="",
            dry_run=True,
            cycle_id=cycle.id,
            total_participants=len(participants)
        )
        if not participants:
            summary.message = "Dry run: cycle has no participants"
            return summary

        try:
            shares = compute_shares(
                cycle.condition.amount,
                [p.address for p in participants],
                self.share_decimals
            )
        except InvalidAmountError as e:
            summary.message = f"Dry run: cannot split pot: {e}"
            return summary

        paid = await self.store.paid_addresses(cycle.id)
        for share in shares:
            if share.address in paid:
                summary.already_paid += 1
                continue
            await self.store.record_outcome(
                cycle_id=cycle.id,
                address=share.address,
                share_amount=share.amount,
                outcome=OutcomeKind.SUCCEEDED,
                attempt=cycle.attempts,
                is_simulated=True
            )
            summary.succeeded += 1

        summary.message = (
            f"Dry run: would distribute {cycle.condition.amount} "
            f"to {len(shares)} participants ({summary.succeeded} simulated)"
        )
        self.logger.info(summary.message, extra={'cycle_id': cycle.id, 'dry_run': True})
        return summary
