from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from domain import (
    AllocationResult,
    CapacityAdjustment,
    DoctorSummary,
    ReallocationFailed,
    ReallocationReport,
    Slot,
    Statistics,
    Token,
    TokenMove,
    TokenSource,
    TokenStatus,
    dynamic_priority,
    minutes_between,
)
from errors import (
    CapacityExhausted,
    InvalidCapacity,
    InvalidSlot,
    InvalidTransition,
    NoEligibleSlot,
    SlotNotFound,
    TokenNotFound,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# action -> (statuses it may start from, status it ends in)
TRANSITIONS: Dict[str, Tuple[FrozenSet[TokenStatus], TokenStatus]] = {
    "check_in": (
        frozenset({TokenStatus.ALLOCATED, TokenStatus.REALLOCATED}),
        TokenStatus.CHECKED_IN,
    ),
    "start_consultation": (
        frozenset({TokenStatus.CHECKED_IN}),
        TokenStatus.IN_CONSULTATION,
    ),
    "complete_consultation": (
        frozenset({TokenStatus.IN_CONSULTATION}),
        TokenStatus.COMPLETED,
    ),
    "cancel": (
        frozenset(
            {TokenStatus.ALLOCATED, TokenStatus.CHECKED_IN, TokenStatus.REALLOCATED}
        ),
        TokenStatus.CANCELLED,
    ),
    "mark_no_show": (
        frozenset({TokenStatus.ALLOCATED, TokenStatus.CHECKED_IN}),
        TokenStatus.NO_SHOW,
    ),
}


class TokenEngine:
    """
    In-memory token allocation engine.

    Responsibilities:
    - Keeps the slot and token stores for one run.
    - Picks the best slot for a request by time proximity and load.
    - Inserts emergencies into the current or next slot, even past capacity.
    - Moves the lowest-priority movable tokens out of overflowing slots.
    - Drives the token lifecycle and answers queue / statistics queries.

    Every public method runs under one re-entrant lock, so each operation
    (including any reallocation it triggers) is atomic to other threads.
    """

    def __init__(self, clock: Optional[Clock] = None, relaxed_time: bool = False) -> None:
        self.slots: Dict[str, Slot] = {}
        self.tokens: Dict[str, Token] = {}
        self.relaxed_time = relaxed_time
        self._clock: Clock = clock or datetime.now
        self._next_token_number = 1
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------ slots

    def create_slot(
        self,
        doctor_id: str,
        doctor_name: str,
        department: Optional[str],
        start_time: datetime,
        end_time: datetime,
        max_capacity: int,
        notes: Optional[str] = None,
    ) -> Slot:
        if end_time <= start_time:
            raise InvalidSlot("Slot end time must be after its start time")
        if max_capacity < 0:
            raise InvalidSlot("Slot capacity cannot be negative")

        slot = Slot(
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            department=department,
            start_time=start_time,
            end_time=end_time,
            max_capacity=max_capacity,
            notes=notes,
        )
        with self._lock:
            self.slots[slot.slot_id] = slot
        logger.info(
            "Created slot %s for %s (%s - %s, capacity %d)",
            slot.slot_id, doctor_name, start_time, end_time, max_capacity,
        )
        return slot

    def get_slot(self, slot_id: str) -> Slot:
        with self._lock:
            if slot_id not in self.slots:
                raise SlotNotFound(slot_id)
            return self.slots[slot_id]

    def get_all_slots(self) -> List[Slot]:
        with self._lock:
            return list(self.slots.values())

    def get_doctor_slots(self, doctor_id: str) -> List[Slot]:
        with self._lock:
            return sorted(
                (s for s in self.slots.values() if s.doctor_id == doctor_id),
                key=lambda s: s.start_time,
            )

    def list_doctors(self) -> List[DoctorSummary]:
        with self._lock:
            doctors: Dict[str, DoctorSummary] = {}
            for slot in self.slots.values():
                if slot.doctor_id not in doctors:
                    doctors[slot.doctor_id] = DoctorSummary(
                        doctor_id=slot.doctor_id,
                        doctor_name=slot.doctor_name,
                        department=slot.department,
                    )
            return list(doctors.values())

    def adjust_capacity(self, slot_id: str, new_capacity: int) -> CapacityAdjustment:
        if new_capacity < 0:
            raise InvalidCapacity("Capacity cannot be negative")

        with self._lock:
            slot = self.get_slot(slot_id)
            previous = slot.max_capacity
            slot.max_capacity = new_capacity
            logger.info(
                "Adjusted capacity for slot %s from %d to %d", slot_id, previous, new_capacity
            )

            report = None
            if new_capacity < slot.current_occupancy:
                report = self._reallocate_overflow(slot)
            return CapacityAdjustment(slot=slot, previous_capacity=previous, reallocation=report)

    # ------------------------------------------------------------- allocation

    def allocate(
        self,
        patient_id: str,
        patient_name: str,
        doctor_id: str,
        source: TokenSource,
        preferred_time: datetime,
        notes: Optional[str] = None,
    ) -> AllocationResult:
        source = TokenSource(source)
        with self._lock:
            slot = self._find_best_slot(doctor_id, preferred_time, source)
            if slot is None:
                raise CapacityExhausted(
                    f"No available slots found for doctor {doctor_id} "
                    f"near preferred time {preferred_time}"
                )

            token = self._issue_token(patient_id, patient_name, slot, source, notes)
            logger.info(
                "Allocated token %d to patient %s in slot %s (source: %s)",
                token.token_number, patient_name, slot.slot_id, source.value,
            )

            report = None
            if slot.overflow > 0:
                report = self._reallocate_overflow(slot)
            return AllocationResult(token=token, slot_id=slot.slot_id, reallocation=report)

    def allocate_emergency(
        self,
        patient_id: str,
        patient_name: str,
        doctor_id: str,
        notes: Optional[str] = None,
    ) -> AllocationResult:
        with self._lock:
            slot = self._find_emergency_slot(doctor_id)
            if slot is None:
                raise NoEligibleSlot(f"No active or upcoming slots for doctor {doctor_id}")

            token = self._issue_token(
                patient_id,
                patient_name,
                slot,
                TokenSource.EMERGENCY,
                f"EMERGENCY: {notes}" if notes else "EMERGENCY",
            )
            logger.warning(
                "EMERGENCY token %d allocated to %s in slot %s (occupancy %d/%d)",
                token.token_number, patient_name, slot.slot_id,
                slot.current_occupancy, slot.max_capacity,
            )

            report = None
            if slot.overflow > 0:
                report = self._reallocate_overflow(slot)
            return AllocationResult(token=token, slot_id=slot.slot_id, reallocation=report)

    def _issue_token(
        self,
        patient_id: str,
        patient_name: str,
        slot: Slot,
        source: TokenSource,
        notes: Optional[str],
    ) -> Token:
        token = Token(
            patient_id=patient_id,
            patient_name=patient_name,
            slot_id=slot.slot_id,
            doctor_id=slot.doctor_id,
            source=source,
            token_number=self._next_token_number,
            created_at=self.now(),
            notes=notes,
        )
        self._next_token_number += 1
        self.tokens[token.token_id] = token
        slot.increment_occupancy()
        return token

    def _candidate_slots(self, doctor_id: str) -> List[Slot]:
        now = self.now()
        return [
            slot
            for slot in self.slots.values()
            if slot.doctor_id == doctor_id
            and slot.is_active
            and (self.relaxed_time or slot.is_open(now))
        ]

    def _find_best_slot(
        self, doctor_id: str, preferred_time: datetime, source: TokenSource
    ) -> Optional[Slot]:
        candidates = [
            slot
            for slot in self._candidate_slots(doctor_id)
            if source == TokenSource.EMERGENCY or slot.has_capacity()
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda slot: self._slot_score(slot, preferred_time))

    @staticmethod
    def _slot_score(slot: Slot, preferred_time: datetime) -> float:
        """Lower is better: minutes away from the preferred time plus load penalty."""
        if preferred_time <= slot.start_time:
            proximity = minutes_between(preferred_time, slot.start_time)
        else:
            proximity = minutes_between(slot.start_time, preferred_time)
        if slot.max_capacity == 0:
            return float("inf")
        return proximity + slot.current_occupancy * 100.0 / slot.max_capacity

    def _find_emergency_slot(self, doctor_id: str) -> Optional[Slot]:
        candidates = self._candidate_slots(doctor_id)
        if not candidates:
            return None
        return min(candidates, key=lambda slot: slot.start_time)

    # ----------------------------------------------------------- reallocation

    def _reallocate_overflow(self, slot: Slot) -> ReallocationReport:
        overflow = slot.overflow
        report = ReallocationReport(slot_id=slot.slot_id, overflow=max(0, overflow))
        if overflow <= 0:
            return report

        logger.warning(
            "Slot %s has overflow of %d. Initiating reallocation.", slot.slot_id, overflow
        )

        now = self.now()
        movable = [
            t for t in self.tokens.values()
            if t.slot_id == slot.slot_id and t.can_be_reallocated()
        ]
        # lowest priority first; among equals the newest token gives way
        movable.sort(key=lambda t: (dynamic_priority(t, now), -t.token_number))

        for token in movable[:overflow]:
            target = self._find_next_available_slot(slot.doctor_id, slot.end_time)
            if target is None:
                reason = f"No later slot with spare capacity for doctor {slot.doctor_id}"
                report.failed.append(
                    ReallocationFailed(
                        token_id=token.token_id,
                        token_number=token.token_number,
                        slot_id=slot.slot_id,
                        reason=reason,
                    )
                )
                logger.error(
                    "Could not find alternative slot for token %d. Patient must be notified.",
                    token.token_number,
                )
                continue

            slot.decrement_occupancy()
            target.increment_occupancy()
            token.slot_id = target.slot_id
            token.status = TokenStatus.REALLOCATED
            token.reallocated_count += 1
            report.moved.append(
                TokenMove(
                    token_id=token.token_id,
                    token_number=token.token_number,
                    from_slot_id=slot.slot_id,
                    to_slot_id=target.slot_id,
                )
            )
            logger.info(
                "Reallocated token %d from slot %s to slot %s",
                token.token_number, slot.slot_id, target.slot_id,
            )

        report.remaining_overflow = max(0, slot.overflow)
        return report

    def _find_next_available_slot(self, doctor_id: str, not_before: datetime) -> Optional[Slot]:
        candidates = [
            s
            for s in self.slots.values()
            if s.doctor_id == doctor_id
            and s.is_active
            and s.start_time >= not_before
            and s.has_capacity()
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda s: s.start_time)

    # -------------------------------------------------------------- lifecycle

    def get_token(self, token_id: str) -> Token:
        with self._lock:
            if token_id not in self.tokens:
                raise TokenNotFound(token_id)
            return self.tokens[token_id]

    def get_all_tokens(self) -> List[Token]:
        with self._lock:
            return list(self.tokens.values())

    def _transition(self, token_id: str, action: str) -> Token:
        allowed, target = TRANSITIONS[action]
        token = self.get_token(token_id)
        if token.status not in allowed:
            raise InvalidTransition(
                f"Cannot {action.replace('_', ' ')} token {token.token_number} "
                f"in {token.status.value} state"
            )
        token.status = target
        return token

    def check_in(self, token_id: str) -> Token:
        with self._lock:
            token = self._transition(token_id, "check_in")
            token.checked_in_at = self.now()
        logger.info("Checked in token %d for patient %s", token.token_number, token.patient_name)
        return token

    def start_consultation(self, token_id: str) -> Token:
        with self._lock:
            token = self._transition(token_id, "start_consultation")
            token.consultation_started_at = self.now()
        logger.info("Started consultation for token %d", token.token_number)
        return token

    def complete_consultation(self, token_id: str) -> Token:
        with self._lock:
            token = self._transition(token_id, "complete_consultation")
            token.consultation_completed_at = self.now()
            self._release(token)
        logger.info("Completed consultation for token %d", token.token_number)
        return token

    def cancel(self, token_id: str) -> Token:
        with self._lock:
            token = self._transition(token_id, "cancel")
            self._release(token)
        logger.info("Cancelled token %d for patient %s", token.token_number, token.patient_name)
        return token

    def mark_no_show(self, token_id: str) -> Token:
        with self._lock:
            token = self._transition(token_id, "mark_no_show")
            self._release(token)
        logger.info("Marked token %d as no-show", token.token_number)
        return token

    def _release(self, token: Token) -> None:
        slot = self.slots.get(token.slot_id)
        if slot is not None:
            slot.decrement_occupancy()

    # ---------------------------------------------------------------- queries

    def doctor_queue(self, doctor_id: str, now: Optional[datetime] = None) -> List[Token]:
        with self._lock:
            now = now or self.now()
            queue = []
            for token in self.tokens.values():
                if token.doctor_id != doctor_id or not token.status.is_active:
                    continue
                slot = self.slots.get(token.slot_id)
                if slot is not None and slot.is_open(now):
                    queue.append(token)
            queue.sort(key=lambda t: (-dynamic_priority(t, now), t.token_number))
            return queue

    def statistics(self, doctor_id: Optional[str] = None) -> Statistics:
        with self._lock:
            tokens = [
                t for t in self.tokens.values()
                if doctor_id is None or t.doctor_id == doctor_id
            ]
            stats = Statistics(
                total_tokens=len(tokens),
                active_tokens=sum(1 for t in tokens if t.status.is_active),
                completed_tokens=sum(1 for t in tokens if t.status == TokenStatus.COMPLETED),
                cancelled_tokens=sum(1 for t in tokens if t.status == TokenStatus.CANCELLED),
                no_show_tokens=sum(1 for t in tokens if t.status == TokenStatus.NO_SHOW),
                emergency_tokens=sum(1 for t in tokens if t.source == TokenSource.EMERGENCY),
            )
            if doctor_id is not None:
                slots = self.get_doctor_slots(doctor_id)
                stats.total_slots = len(slots)
                stats.average_utilization = (
                    sum(s.utilization_percentage() for s in slots) / len(slots)
                    if slots
                    else 0.0
                )
            return stats
