"""Tests for the ledger store's atomic operations."""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from database.ledger import ConflictKind
from database.models import Cycle, CycleStatus, OutcomeKind, utc_now

from conftest import make_address


@pytest.mark.asyncio
async def test_second_open_cycle_is_reported_as_conflict(store, open_cycle):
    async with store.transaction() as tx:
        cycle, conflict = await tx.create_cycle(
            amount=Decimal("10"),
            scheduled_at=utc_now(),
            max_participants=2,
            is_test_mode=True
        )
    assert conflict is ConflictKind.OPEN_CYCLE_EXISTS
    assert cycle.id == open_cycle.id


@pytest.mark.asyncio
async def test_single_open_cycle_enforced_by_index(store, open_cycle):
    with pytest.raises(IntegrityError):
        async with store.transaction() as tx:
            tx.session.add(Cycle(status=CycleStatus.OPEN))
            await tx.session.flush()


@pytest.mark.asyncio
async def test_duplicate_participant_conflicts(store, open_cycle):
    async with store.transaction() as tx:
        assert await tx.insert_participant(open_cycle.id, make_address(1), "v1") is ConflictKind.NONE
        assert await tx.insert_participant(open_cycle.id, make_address(1), "v2") is ConflictKind.DUPLICATE_ADDRESS
        assert await tx.insert_participant(open_cycle.id, make_address(2), "v1") is ConflictKind.DUPLICATE_VISITOR
        assert await tx.count_participants(open_cycle.id) == 1


@pytest.mark.asyncio
async def test_business_error_rolls_back_transaction(store, open_cycle):
    with pytest.raises(RuntimeError):
        async with store.transaction() as tx:
            await tx.insert_participant(open_cycle.id, make_address(1), None)
            raise RuntimeError("abort")

    assert await store.list_participants(open_cycle.id) == []


@pytest.mark.asyncio
async def test_claim_is_compare_and_set(store, open_cycle):
    lease = utc_now() + timedelta(minutes=5)

    assert await store.claim_cycle(open_cycle.id, CycleStatus.OPEN, 0, lease)
    assert not await store.claim_cycle(open_cycle.id, CycleStatus.OPEN, 0, lease)

    cycle = await store.get_cycle(open_cycle.id)
    assert cycle.status is CycleStatus.PROCESSING
    assert cycle.attempts == 1
    assert cycle.lease_expires_at is not None


@pytest.mark.asyncio
async def test_resume_claim_requires_matching_attempts(store, open_cycle):
    lease = utc_now() + timedelta(minutes=5)
    await store.claim_cycle(open_cycle.id, CycleStatus.OPEN, 0, lease)
    await store.release_cycle(open_cycle.id, "transfer failed")

    assert not await store.claim_cycle(open_cycle.id, CycleStatus.PROCESSING, 0, lease)
    assert await store.claim_cycle(open_cycle.id, CycleStatus.PROCESSING, 1, lease)
    assert (await store.get_cycle(open_cycle.id)).attempts == 2


@pytest.mark.asyncio
async def test_finish_only_from_processing(store, open_cycle):
    assert not await store.finish_cycle(open_cycle.id, CycleStatus.COMPLETED)

    await store.claim_cycle(open_cycle.id, CycleStatus.OPEN, 0, utc_now())
    assert await store.finish_cycle(open_cycle.id, CycleStatus.FAILED, "x" * 900)

    cycle = await store.get_cycle(open_cycle.id)
    assert cycle.status is CycleStatus.FAILED
    assert cycle.executed_at is not None
    assert cycle.lease_expires_at is None
    assert len(cycle.execution_error) == 500


@pytest.mark.asyncio
async def test_due_cycle_is_earliest_scheduled(store, scheduler, open_cycle):
    assert await store.find_due_cycle(utc_now()) is None

    await scheduler.lock_cycle(open_cycle.id)
    later = await scheduler.open_cycle(scheduled_at=utc_now() - timedelta(minutes=1))
    await scheduler.seed_condition(
        open_cycle.id,
        amount=Decimal("100"),
        scheduled_at=utc_now() - timedelta(hours=1),
        max_participants=10,
        is_test_mode=True
    )

    due = await store.find_due_cycle(utc_now())
    assert due.id == open_cycle.id
    assert due.id != later.id


@pytest.mark.asyncio
async def test_paid_addresses_ignore_simulated_and_failed(store, open_cycle):
    common = dict(cycle_id=open_cycle.id, share_amount=Decimal("10"), attempt=1)
    await store.record_outcome(address=make_address(1), outcome=OutcomeKind.SUCCEEDED, transfer_id="0x1", **common)
    await store.record_outcome(address=make_address(2), outcome=OutcomeKind.FAILED, failure_reason="boom", **common)
    await store.record_outcome(address=make_address(3), outcome=OutcomeKind.SUCCEEDED, is_simulated=True, **common)

    assert await store.paid_addresses(open_cycle.id) == {make_address(1)}
    outcomes = await store.list_outcomes(open_cycle.id)
    assert [o.outcome for o in outcomes] == [OutcomeKind.SUCCEEDED, OutcomeKind.FAILED, OutcomeKind.SUCCEEDED]


@pytest.mark.asyncio
async def test_outcome_for_unknown_cycle_is_rejected(store):
    with pytest.raises(IntegrityError):
        await store.record_outcome(
            cycle_id="no-such-cycle",
            address=make_address(1),
            share_amount=Decimal("1"),
            outcome=OutcomeKind.FAILED,
            attempt=1
        )


@pytest.mark.asyncio
async def test_stale_attempt_cannot_touch_cycle(store, open_cycle):
    lease = utc_now() + timedelta(minutes=5)
    await store.claim_cycle(open_cycle.id, CycleStatus.OPEN, 0, lease)
    await store.claim_cycle(open_cycle.id, CycleStatus.PROCESSING, 1, lease)

    later = utc_now() + timedelta(minutes=30)
    assert not await store.renew_lease(open_cycle.id, 1, later)
    assert not await store.release_cycle(open_cycle.id, "stale", attempt=1)
    assert not await store.finish_cycle(open_cycle.id, CycleStatus.COMPLETED, attempt=1)

    cycle = await store.get_cycle(open_cycle.id)
    assert cycle.status is CycleStatus.PROCESSING
    assert cycle.lease_expires_at is not None
    assert cycle.execution_error is None

    assert await store.renew_lease(open_cycle.id, 2, later)
    assert await store.finish_cycle(open_cycle.id, CycleStatus.COMPLETED, attempt=2)
    assert (await store.get_cycle(open_cycle.id)).status is CycleStatus.COMPLETED
