"""Detected change lifecycle.

Owns creation of detected changes and every status transition. Transitions
are validated against ALLOWED_TRANSITIONS and then written through an atomic
compare-and-set that also appends the lifecycle event, so a status never
changes without its audit record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import logfire

from src.constants import MAX_HYPOTHESIS_CHARS
from src.db.change_repository import ChangeRepository
from src.models.change_models import (
    ActorType,
    ChangeLifecycleEvent,
    ChangeStatus,
    DetectedChange,
    DetectedChangeCreate,
)

ALLOWED_TRANSITIONS: dict[ChangeStatus, frozenset[ChangeStatus]] = {
    ChangeStatus.WATCHING: frozenset(
        {
            ChangeStatus.VALIDATED,
            ChangeStatus.REGRESSED,
            ChangeStatus.INCONCLUSIVE,
            ChangeStatus.REVERTED,
        }
    ),
    ChangeStatus.VALIDATED: frozenset({ChangeStatus.REVERTED}),
    ChangeStatus.REGRESSED: frozenset({ChangeStatus.REVERTED}),
    ChangeStatus.INCONCLUSIVE: frozenset({ChangeStatus.REVERTED}),
    ChangeStatus.REVERTED: frozenset(),
}


class ChangeLifecycleError(Exception):
    """Base exception for change lifecycle errors."""

    pass


class ChangeNotFoundError(ChangeLifecycleError):
    """Raised when a change id does not exist (or is not the owner's)."""

    pass


class InvalidTransitionError(ChangeLifecycleError):
    """Raised when a status move is not in the transition table."""

    def __init__(self, from_status: ChangeStatus, to_status: ChangeStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition change from {from_status.value} to {to_status.value}"
        )


class InvalidHypothesisError(ChangeLifecycleError):
    pass


def can_transition(from_status: ChangeStatus, to_status: ChangeStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


class ChangeLifecycleStore:
    """Create changes and move them through their statuses.

    Example:
        >>> store = ChangeLifecycleStore(ChangeRepository(client))
        >>> change = store.create("owner-1", DetectedChangeCreate(...))
        >>> store.transition(change.id, ChangeStatus.VALIDATED, "7d improved",
        ...                  ActorType.SYSTEM, checkpoint_id=cp.id)
    """

    def __init__(
        self,
        changes: ChangeRepository,
        clock: Callable[[], datetime] | None = None,
    ):
        self._changes = changes
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, owner_id: str, change: DetectedChangeCreate) -> DetectedChange:
        """Record a newly detected difference; status always starts at watching."""
        created = self._changes.insert_change(owner_id, change, self._clock())
        logfire.info(
            "Detected change recorded",
            change_id=created.id,
            page_id=created.page_id,
            element=created.element,
        )
        return created

    def get(self, change_id: str) -> DetectedChange:
        change = self._changes.get_change(change_id)
        if change is None:
            raise ChangeNotFoundError(f"Change {change_id} not found")
        return change

    def transition(
        self,
        change_id: str,
        new_status: ChangeStatus,
        reason: str,
        actor_type: ActorType,
        *,
        checkpoint_id: str | None = None,
        correlation_metrics: dict[str, Any] | None = None,
        actor_id: str | None = None,
        current: DetectedChange | None = None,
    ) -> DetectedChange | None:
        """
        Move a change to ``new_status``.

        Args:
            current: The change as the caller last read it; its status is the
                     compare-and-set guard. Loaded fresh when omitted.

        Returns:
            The updated change, or None when another writer changed the
            status first (the move is dropped, not retried).

        Raises:
            ChangeNotFoundError: Unknown change id
            InvalidTransitionError: Move not allowed from the current status
        """
        change = current or self.get(change_id)
        if not can_transition(change.status, new_status):
            logfire.warning(
                "Rejected change transition",
                change_id=change_id,
                from_status=change.status.value,
                to_status=new_status.value,
            )
            raise InvalidTransitionError(change.status, new_status)

        updated = self._changes.apply_transition(
            change_id,
            change.status,
            new_status,
            reason,
            actor_type,
            actor_id=actor_id,
            checkpoint_id=checkpoint_id,
            correlation_metrics=correlation_metrics,
        )
        if updated is None:
            logfire.info(
                "Change transition lost race, status already moved",
                change_id=change_id,
                expected_status=change.status.value,
                to_status=new_status.value,
            )
            return None

        logfire.info(
            "Change transitioned",
            change_id=change_id,
            from_status=change.status.value,
            to_status=new_status.value,
            actor_type=actor_type.value,
        )
        return updated

    def mark_reverted(
        self,
        change_id: str,
        reason: str,
        actor_type: ActorType = ActorType.SYSTEM,
    ) -> DetectedChange | None:
        """Record that a later scan shows the change was undone.

        A change that is already reverted is returned unchanged.
        """
        change = self.get(change_id)
        if change.status == ChangeStatus.REVERTED:
            return change
        return self.transition(
            change_id, ChangeStatus.REVERTED, reason, actor_type, current=change
        )

    def set_hypothesis(self, change_id: str, owner_id: str, text: str) -> DetectedChange:
        """Store the owner's guess at why the change was made."""
        hypothesis = (text or "").strip()[:MAX_HYPOTHESIS_CHARS]
        if not hypothesis:
            raise InvalidHypothesisError("Hypothesis must not be empty")

        updated = self._changes.update_hypothesis(
            change_id, owner_id, hypothesis, self._clock()
        )
        if updated is None:
            raise ChangeNotFoundError(f"Change {change_id} not found")
        return updated

    def history(self, change_id: str) -> list[ChangeLifecycleEvent]:
        """Lifecycle events oldest first."""
        return self._changes.list_lifecycle_events(change_id)
