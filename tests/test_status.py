"""Tests for the status snapshot."""
from decimal import Decimal

import pytest

from conftest import make_address


@pytest.mark.asyncio
async def test_empty_snapshot_without_open_cycle(projector):
    snapshot = await projector.status()

    assert snapshot.cycle_id is None
    assert snapshot.to_dict() == {
        "cycle": None,
        "perParticipantAmount": None,
        "viewer": {"enrolled": False, "address": None, "participantId": None},
        "participants": [],
    }


@pytest.mark.asyncio
async def test_snapshot_of_open_cycle(projector, enrollment, open_cycle):
    for n in range(1, 4):
        await enrollment.join(make_address(n), visitor_id=f"v{n}")

    snapshot = await projector.status(visitor_id="v2")

    assert snapshot.cycle_id == open_cycle.id
    assert snapshot.status == "open"
    assert snapshot.amount == Decimal("100.00")
    assert snapshot.max_participants == 10
    assert snapshot.participant_count == 3
    assert snapshot.spots_remaining == 7
    assert 0 < snapshot.countdown_seconds <= 24 * 3600
    assert snapshot.per_participant_amount == Decimal("33.34")
    assert snapshot.viewer_enrolled
    assert snapshot.viewer_address == make_address(2)


@pytest.mark.asyncio
async def test_viewer_by_address(projector, enrollment, open_cycle):
    await enrollment.join(make_address(1))

    snapshot = await projector.status(address=make_address(1).upper().replace("0X", "0x"))

    assert snapshot.viewer_enrolled
    assert snapshot.viewer_address == make_address(1)


@pytest.mark.asyncio
async def test_address_hint_does_not_reveal_other_visitors(projector, enrollment, open_cycle):
    await enrollment.join(make_address(1), visitor_id="v1")

    snapshot = await projector.status(visitor_id="v2", address=make_address(1))

    assert not snapshot.viewer_enrolled
    assert snapshot.viewer_address is None


@pytest.mark.asyncio
async def test_snapshot_dict_uses_wire_names(projector, enrollment, open_cycle):
    await enrollment.join(make_address(1), visitor_id="v1")

    payload = (await projector.status(visitor_id="v1")).to_dict()

    cycle = payload["cycle"]
    assert cycle["id"] == open_cycle.id
    assert cycle["label"] == open_cycle.label
    assert cycle["isTestMode"] is True
    assert cycle["participantCount"] == 1
    assert cycle["spotsRemaining"] == 9
    assert Decimal(cycle["amount"]) == Decimal("100")
    assert cycle["scheduledAt"].endswith("+00:00")
    assert payload["perParticipantAmount"] == "100.00"
    assert payload["viewer"]["enrolled"] is True
    assert payload["viewer"]["address"] == make_address(1)
    [entry] = payload["participants"]
    assert entry["id"] == payload["viewer"]["participantId"]
    assert entry["address"] == make_address(1)
    assert entry["isViewer"] is True
    assert entry["joinedAt"].endswith("+00:00")


@pytest.mark.asyncio
async def test_participants_listed_in_join_order(projector, enrollment, open_cycle):
    # Joined in reverse address order
    for n in (3, 1, 2):
        await enrollment.join(make_address(n), visitor_id=f"v{n}")

    snapshot = await projector.status(visitor_id="v1")

    assert [p.address for p in snapshot.participants] == [make_address(3), make_address(1), make_address(2)]
    assert [p.is_viewer for p in snapshot.participants] == [False, True, False]
    assert snapshot.viewer_participant_id == snapshot.participants[1].id
    joined = [p.joined_at for p in snapshot.participants]
    assert joined == sorted(joined)


@pytest.mark.asyncio
async def test_anonymous_caller_sees_participants(projector, enrollment, open_cycle):
    await enrollment.join(make_address(1), visitor_id="v1")
    await enrollment.join(make_address(2), visitor_id="v2")

    payload = (await projector.status()).to_dict()

    assert payload["viewer"] == {"enrolled": False, "address": None, "participantId": None}
    assert [p["address"] for p in payload["participants"]] == [make_address(1), make_address(2)]
    assert not any(p["isViewer"] for p in payload["participants"])
    assert all("visitor" not in key.lower() for p in payload["participants"] for key in p)
