import pytest

from domain import TokenSource, TokenStatus
from errors import InvalidCapacity, SlotNotFound
from tests.conftest import at


def occupancy_matches_tokens(engine):
    for slot in engine.get_all_slots():
        holders = [
            t for t in engine.get_all_tokens()
            if t.slot_id == slot.slot_id and t.holds_capacity
        ]
        if slot.current_occupancy != len(holders):
            return False
    return True


def test_emergency_with_no_later_slot_records_failure(engine, make_slot):
    slot = make_slot(9, 1)
    online = engine.allocate("P1", "Asha", "D1", TokenSource.ONLINE_BOOKING, at(9)).token
    assert slot.current_occupancy == 1

    result = engine.allocate_emergency("P2", "Bala", "D1", "collapse")

    assert slot.current_occupancy == 2
    report = result.reallocation
    assert report.overflow == 1
    assert report.moved == []
    assert len(report.failed) == 1
    failure = report.failed[0]
    assert failure.token_id == online.token_id
    assert failure.slot_id == slot.slot_id
    assert report.remaining_overflow == 1
    assert not report.resolved
    assert online.slot_id == slot.slot_id
    assert online.status == TokenStatus.ALLOCATED
    assert online.reallocated_count == 0
    assert occupancy_matches_tokens(engine)


def test_emergency_moves_online_booking_to_next_slot(engine, make_slot):
    first = make_slot(9, 1)
    second = make_slot(10, 1)
    online = engine.allocate("P1", "Asha", "D1", TokenSource.ONLINE_BOOKING, at(9)).token
    assert online.slot_id == first.slot_id

    result = engine.allocate_emergency("P2", "Bala", "D1")

    assert result.slot_id == first.slot_id
    assert online.status == TokenStatus.REALLOCATED
    assert online.slot_id == second.slot_id
    assert online.reallocated_count == 1
    assert first.current_occupancy == 1
    assert second.current_occupancy == 1
    assert result.reallocation.resolved
    assert [m.token_id for m in result.reallocation.moved] == [online.token_id]
    assert occupancy_matches_tokens(engine)


def test_lowest_priority_token_moves_first(engine, make_slot):
    first = make_slot(9, 3)
    make_slot(12, 3)
    paid = engine.allocate("P1", "Asha", "D1", TokenSource.PAID_PRIORITY, at(9)).token
    walk_in = engine.allocate("P2", "Bala", "D1", TokenSource.WALK_IN, at(9)).token
    follow_up = engine.allocate("P3", "Chen", "D1", TokenSource.FOLLOW_UP, at(9)).token
    assert first.current_occupancy == 3

    engine.allocate_emergency("P4", "Devi", "D1")

    assert walk_in.status == TokenStatus.REALLOCATED
    assert paid.slot_id == first.slot_id
    assert follow_up.slot_id == first.slot_id


def test_waiting_bonus_protects_long_waiting_patients(engine, make_slot, clock):
    first = make_slot(13, 2)
    make_slot(14, 2)
    walk_in = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(13)).token
    follow_up = engine.allocate("P2", "Bala", "D1", TokenSource.FOLLOW_UP, at(13)).token
    engine.check_in(walk_in.token_id)
    clock.advance(240)  # 120 bonus points lifts the walk-in to 220

    engine.allocate_emergency("P3", "Chen", "D1")

    assert walk_in.slot_id == first.slot_id
    assert follow_up.status == TokenStatus.REALLOCATED


def test_equal_priority_newest_token_moves(engine, make_slot):
    first = make_slot(9, 2)
    make_slot(10, 2)
    older = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token
    newer = engine.allocate("P2", "Bala", "D1", TokenSource.WALK_IN, at(9)).token

    engine.allocate_emergency("P3", "Chen", "D1")

    assert older.slot_id == first.slot_id
    assert newer.status == TokenStatus.REALLOCATED


def test_target_is_earliest_later_slot_with_space(engine, make_slot):
    first = make_slot(9, 1)
    full_ten = make_slot(10, 0)
    eleven = make_slot(11, 2)
    twelve = make_slot(12, 2)
    token = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token

    engine.allocate_emergency("P2", "Bala", "D1")

    assert token.slot_id == eleven.slot_id
    assert full_ten.current_occupancy == 0
    assert twelve.current_occupancy == 0
    assert first.current_occupancy == 1


def test_other_doctors_slots_are_not_targets(engine, make_slot):
    make_slot(9, 1, doctor_id="D1")
    other = make_slot(10, 5, doctor_id="D2")
    token = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token

    result = engine.allocate_emergency("P2", "Bala", "D1")

    assert len(result.reallocation.failed) == 1
    assert token.status == TokenStatus.ALLOCATED
    assert other.current_occupancy == 0


def test_partial_failure_still_moves_others(engine, make_slot):
    first = make_slot(9, 2)
    second = make_slot(10, 1)
    walk_in = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token
    follow_up = engine.allocate("P2", "Bala", "D1", TokenSource.FOLLOW_UP, at(9)).token

    result = engine.adjust_capacity(first.slot_id, 0)

    report = result.reallocation
    assert report.overflow == 2
    assert [m.token_id for m in report.moved] == [walk_in.token_id]
    assert [f.token_id for f in report.failed] == [follow_up.token_id]
    assert report.remaining_overflow == 1
    assert walk_in.slot_id == second.slot_id
    assert follow_up.slot_id == first.slot_id
    assert first.current_occupancy == 1
    assert second.current_occupancy == 1
    assert occupancy_matches_tokens(engine)


def test_emergency_tokens_stay_put(engine, make_slot):
    first = make_slot(9, 2)
    make_slot(10, 5)
    e1 = engine.allocate_emergency("P1", "Asha", "D1").token
    e2 = engine.allocate_emergency("P2", "Bala", "D1").token

    result = engine.adjust_capacity(first.slot_id, 1)

    assert result.reallocation.moved == []
    assert result.reallocation.failed == []
    assert e1.slot_id == e2.slot_id == first.slot_id
    assert first.current_occupancy == 2


def test_reallocated_token_can_move_again(engine, make_slot):
    first = make_slot(9, 1)
    second = make_slot(10, 1)
    third = make_slot(11, 1)
    token = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token
    engine.allocate_emergency("P2", "Bala", "D1")
    assert token.slot_id == second.slot_id

    engine.adjust_capacity(second.slot_id, 0)

    assert token.slot_id == third.slot_id
    assert token.reallocated_count == 2
    assert token.status == TokenStatus.REALLOCATED
    assert first.current_occupancy == 1


def test_checked_in_tokens_can_be_moved(engine, make_slot):
    first = make_slot(9, 1)
    second = make_slot(10, 1)
    token = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token
    engine.check_in(token.token_id)

    engine.adjust_capacity(first.slot_id, 0)

    assert token.status == TokenStatus.REALLOCATED
    assert token.slot_id == second.slot_id
    assert token.checked_in_at is not None


def test_consulting_token_is_not_moved(engine, make_slot):
    first = make_slot(9, 1)
    make_slot(10, 1)
    token = engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9)).token
    engine.check_in(token.token_id)
    engine.start_consultation(token.token_id)

    result = engine.adjust_capacity(first.slot_id, 0)

    assert token.status == TokenStatus.IN_CONSULTATION
    assert token.slot_id == first.slot_id
    assert result.reallocation.remaining_overflow == 1


def test_capacity_increase_does_not_reallocate(engine, make_slot):
    slot = make_slot(9, 1)
    engine.allocate("P1", "Asha", "D1", TokenSource.WALK_IN, at(9))

    result = engine.adjust_capacity(slot.slot_id, 4)

    assert result.previous_capacity == 1
    assert result.slot.max_capacity == 4
    assert result.reallocation is None


def test_adjust_capacity_validation(engine, make_slot):
    slot = make_slot(9, 1)
    with pytest.raises(InvalidCapacity):
        engine.adjust_capacity(slot.slot_id, -1)
    with pytest.raises(SlotNotFound):
        engine.adjust_capacity("missing", 3)
    assert slot.max_capacity == 1
