from datetime import datetime, time, timedelta
from typing import Optional

from config import configure_logging, get_settings
from domain import TokenSource, TokenStatus, dynamic_priority, wait_minutes
from engine import TokenEngine

DOCTORS = [
    ("DR001", "Dr. Sayan", "Cardiology", [8, 10, 8]),
    ("DR002", "Dr. Srikrishna", "Orthopedics", [6, 8, 6]),
    ("DR003", "Dr. Tanaya", "General Medicine", [12, 15, 12]),
]


class SimulatedClock:
    """Clock pinned to one OPD day; advanced explicitly by the script."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: int) -> None:
        self.current += timedelta(minutes=minutes)


def run_simulation(day: Optional[datetime] = None) -> TokenEngine:
    """
    Simulate one OPD day with 3 doctors.

    Demonstrates:
    - Slot selection by preferred time and load.
    - Emergency insertion and automatic reallocation.
    - Check-in driven priority growth.
    - Cancellations, no-shows and consultations.
    - Capacity reduction when a doctor runs late.
    """
    day = day or datetime.combine(datetime.now().date(), time())

    def at(hour: int, minute: int = 0) -> datetime:
        return day.replace(hour=hour, minute=minute)

    clock = SimulatedClock(at(8, 30))
    engine = TokenEngine(clock=clock)

    for doctor_id, name, department, capacities in DOCTORS:
        for offset, capacity in enumerate(capacities):
            engine.create_slot(
                doctor_id, name, department, at(9 + offset), at(10 + offset), capacity
            )
    print("Slots created:", len(engine.get_all_slots()))

    engine.allocate("PAT001", "Ramesh", "DR001", TokenSource.ONLINE_BOOKING, at(9, 15), "Regular checkup")
    engine.allocate("PAT002", "Sunita", "DR001", TokenSource.ONLINE_BOOKING, at(9, 30), "Medication review")
    engine.allocate("PAT003", "Arjun", "DR002", TokenSource.ONLINE_BOOKING, at(9), "Knee pain")
    engine.allocate("PAT004", "Meera", "DR003", TokenSource.ONLINE_BOOKING, at(10), "Fever and cough")
    engine.allocate("PAT005", "Vikram", "DR003", TokenSource.ONLINE_BOOKING, at(10, 30), "Diabetes checkup")

    engine.allocate("PAT006", "Lakshmi", "DR001", TokenSource.WALK_IN, at(9), "Chest discomfort")
    engine.allocate("PAT007", "Rajiv", "DR002", TokenSource.WALK_IN, at(9, 15), "Back pain")
    engine.allocate("PAT008", "Anita", "DR003", TokenSource.WALK_IN, at(9), "General consultation")

    engine.allocate("PAT009", "Suresh (Paid)", "DR001", TokenSource.PAID_PRIORITY, at(9), "Health screening")
    engine.allocate("PAT010", "Divya (Paid)", "DR003", TokenSource.PAID_PRIORITY, at(9), "Executive checkup")

    # Shrink the first slot so the emergency below overflows it
    first_slot = engine.get_doctor_slots("DR001")[0]
    engine.adjust_capacity(first_slot.slot_id, first_slot.current_occupancy)

    res = engine.allocate_emergency("PAT_EMG_001", "Mohan (Emergency)", "DR001", "Severe chest pain")
    print("Emergency token", res.token.token_number, "in slot", res.slot_id)
    if res.reallocation:
        for move in res.reallocation.moved:
            print("  Moved token", move.token_number, "to slot", move.to_slot_id)
        for failure in res.reallocation.failed:
            print("  Could not move token", failure.token_number, "-", failure.reason)

    second = engine.get_all_tokens()[1]
    engine.cancel(second.token_id)
    print("Cancelled:", second.patient_name)

    clock.advance(20)
    waiting = [
        t for t in engine.get_all_tokens()
        if t.status in (TokenStatus.ALLOCATED, TokenStatus.REALLOCATED)
    ][:6]
    for token in waiting:
        engine.check_in(token.token_id)
        print("Checked in token", token.token_number, token.patient_name)

    for token in [t for t in engine.get_all_tokens() if t.status == TokenStatus.ALLOCATED][:1]:
        engine.mark_no_show(token.token_id)
        print("No-show:", token.patient_name)

    clock.advance(30)
    now = engine.now()
    checked_in = sorted(
        (t for t in engine.get_all_tokens() if t.status == TokenStatus.CHECKED_IN),
        key=lambda t: dynamic_priority(t, now),
        reverse=True,
    )[:3]
    for token in checked_in:
        engine.start_consultation(token.token_id)
        engine.complete_consultation(token.token_id)
        print(
            "Consulted token", token.token_number, token.patient_name,
            "after waiting", wait_minutes(token, now), "minutes",
        )

    late_slot = engine.get_doctor_slots("DR002")[0]
    print("Dr. Srikrishna running late, capacity", late_slot.max_capacity, "-> 1")
    engine.adjust_capacity(late_slot.slot_id, 1)

    engine.allocate("PAT011", "Rohan (Follow-up)", "DR001", TokenSource.FOLLOW_UP, at(11), "Post-surgery")
    engine.allocate("PAT012", "Kavita (Follow-up)", "DR003", TokenSource.FOLLOW_UP, at(11, 30), "BP monitoring")

    now = engine.now()
    for doctor_id, name, _, _ in DOCTORS:
        print(f"\nQueue for {name}")
        for position, t in enumerate(engine.doctor_queue(doctor_id, now)[:5], start=1):
            print(
                f"  {position}. #{t.token_number} {t.patient_name} "
                f"[{t.source.value}] priority={dynamic_priority(t, now):.1f} status={t.status.value}"
            )
        stats = engine.statistics(doctor_id)
        print(f"  Stats: {stats.as_dict()}")

    print("\nOverall:", engine.statistics().as_dict())
    return engine


if __name__ == "__main__":
    configure_logging(get_settings())
    run_simulation()
