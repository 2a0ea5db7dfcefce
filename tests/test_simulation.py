from datetime import datetime

from domain import TokenSource
from simulation import run_simulation


def test_simulated_day_keeps_books_balanced(capsys):
    engine = run_simulation(datetime(2026, 3, 2))

    for slot in engine.get_all_slots():
        holders = [
            t for t in engine.get_all_tokens()
            if t.slot_id == slot.slot_id and t.holds_capacity
        ]
        assert slot.current_occupancy == len(holders)

    stats = engine.statistics()
    assert stats.total_tokens == 13
    assert stats.emergency_tokens == 1
    assert stats.cancelled_tokens == 1
    assert stats.completed_tokens == 3
    assert any(t.reallocated_count for t in engine.get_all_tokens())

    emergency = next(t for t in engine.get_all_tokens() if t.source == TokenSource.EMERGENCY)
    assert emergency.slot_id == engine.get_doctor_slots("DR001")[0].slot_id

    out = capsys.readouterr().out
    assert "Emergency token" in out
    assert "Overall:" in out
