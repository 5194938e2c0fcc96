from __future__ import annotations

from enum import Enum


class IngestionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    def can_transition_to(self, target: "IngestionStatus") -> bool:
        return target in _TRANSITIONS[self]

    def allowed_transitions(self) -> frozenset["IngestionStatus"]:
        return _TRANSITIONS[self]

    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    def is_active(self) -> bool:
        return self in (IngestionStatus.RUNNING, IngestionStatus.RETRYING)


_TRANSITIONS: dict[IngestionStatus, frozenset[IngestionStatus]] = {
    IngestionStatus.PENDING: frozenset({IngestionStatus.RUNNING, IngestionStatus.FAILED}),
    IngestionStatus.RUNNING: frozenset(
        {IngestionStatus.COMPLETED, IngestionStatus.FAILED, IngestionStatus.RETRYING}
    ),
    IngestionStatus.COMPLETED: frozenset(),
    IngestionStatus.FAILED: frozenset({IngestionStatus.RETRYING, IngestionStatus.PENDING}),
    IngestionStatus.RETRYING: frozenset({IngestionStatus.RUNNING, IngestionStatus.FAILED}),
}
