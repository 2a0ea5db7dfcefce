from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    NO_ELIGIBLE_SLOT = "no_eligible_slot"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_REQUEST = "invalid_request"


class EngineError(Exception):
    """Base for every error the engine reports to its caller."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SlotNotFound(EngineError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, slot_id: str) -> None:
        super().__init__(f"Slot {slot_id} not found")
        self.slot_id = slot_id


class TokenNotFound(EngineError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, token_id: str) -> None:
        super().__init__(f"Token {token_id} not found")
        self.token_id = token_id


class CapacityExhausted(EngineError):
    kind = ErrorKind.CAPACITY_EXHAUSTED


class NoEligibleSlot(EngineError):
    kind = ErrorKind.NO_ELIGIBLE_SLOT


class InvalidTransition(EngineError):
    kind = ErrorKind.INVALID_TRANSITION


class InvalidSlot(EngineError):
    kind = ErrorKind.INVALID_REQUEST


class InvalidCapacity(EngineError):
    kind = ErrorKind.INVALID_REQUEST
