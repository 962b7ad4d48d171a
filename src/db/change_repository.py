"""Detected change, checkpoint and lifecycle event repository."""

from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

import logfire
from supabase import Client

from src.constants import CHECKPOINT_LOOKUP_BATCH_SIZE, QUERY_PAGE_SIZE
from src.db.query_executor import fetch_all, timed_query
from src.models.change_models import (
    ActorType,
    ChangeCheckpoint,
    ChangeCheckpointCreate,
    ChangeLifecycleEvent,
    ChangeStatus,
    DetectedChange,
    DetectedChangeCreate,
)


class ChangeRepository:
    """Persistence for ``detected_changes`` and its child tables.

    Status writes go through the ``transition_change_status`` database
    function so the compare-and-set update and its lifecycle event commit
    together. Checkpoints and lifecycle events are insert-only; the database
    rejects updates to them.
    """

    def __init__(
        self,
        client: Client,
        page_size: int = QUERY_PAGE_SIZE,
        batch_size: int = CHECKPOINT_LOOKUP_BATCH_SIZE,
    ):
        self._client = client
        self._page_size = page_size
        self._batch_size = batch_size

    # =========================================================================
    # Changes
    # =========================================================================

    def insert_change(
        self, owner_id: str, change: DetectedChangeCreate, detected_at: datetime
    ) -> DetectedChange:
        data = change.model_dump(mode="json", exclude={"first_detected_at"})
        data.update(
            {
                "owner_id": owner_id,
                "first_detected_at": (change.first_detected_at or detected_at).isoformat(),
                "status": ChangeStatus.WATCHING.value,
            }
        )
        with timed_query("insert_change", page_id=change.page_id, element=change.element):
            result = self._client.table("detected_changes").insert(data).execute()
        if not result.data:
            raise ValueError("Failed to create detected change")
        return DetectedChange(**result.data[0])

    def get_change(self, change_id: str) -> DetectedChange | None:
        with timed_query("get_change", change_id=change_id):
            result = (
                self._client.table("detected_changes")
                .select("*")
                .eq("id", change_id)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return DetectedChange(**result.data[0])

    def list_changes_for_page(
        self, page_id: str, owner_id: str | None = None
    ) -> list[DetectedChange]:
        with timed_query("list_changes_for_page", page_id=page_id):
            query = self._client.table("detected_changes").select("*").eq("page_id", page_id)
            if owner_id is not None:
                query = query.eq("owner_id", owner_id)
            result = query.order("first_detected_at", desc=True).execute()
        return [DetectedChange(**row) for row in result.data or []]

    def list_checkpoint_candidates(self, detected_before: datetime) -> list[DetectedChange]:
        """
        Non-reverted changes first detected at or before ``detected_before``.

        Loaded page by page so a large backlog never arrives in one response.
        """
        with timed_query(
            "list_checkpoint_candidates", detected_before=detected_before.isoformat()
        ):
            rows = fetch_all(
                lambda: (
                    self._client.table("detected_changes")
                    .select("*")
                    .neq("status", ChangeStatus.REVERTED.value)
                    .lte("first_detected_at", detected_before.isoformat())
                    .order("first_detected_at")
                    .order("id")
                ),
                self._page_size,
            )
        return [DetectedChange(**row) for row in rows]

    def update_hypothesis(
        self, change_id: str, owner_id: str, hypothesis: str, at: datetime
    ) -> DetectedChange | None:
        with timed_query("update_hypothesis", change_id=change_id):
            result = (
                self._client.table("detected_changes")
                .update({"hypothesis": hypothesis, "hypothesis_at": at.isoformat()})
                .eq("id", change_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        if not result.data:
            return None
        return DetectedChange(**result.data[0])

    def apply_transition(
        self,
        change_id: str,
        expected_status: ChangeStatus,
        new_status: ChangeStatus,
        reason: str,
        actor_type: ActorType,
        *,
        actor_id: str | None = None,
        checkpoint_id: str | None = None,
        correlation_metrics: dict[str, Any] | None = None,
    ) -> DetectedChange | None:
        """
        Atomically move a change from ``expected_status`` to ``new_status``.

        Returns:
            The updated change, or None when the stored status no longer
            matched ``expected_status`` (another writer got there first).
        """
        params = {
            "p_change_id": change_id,
            "p_expected_status": expected_status.value,
            "p_new_status": new_status.value,
            "p_reason": reason,
            "p_actor_type": actor_type.value,
            "p_actor_id": actor_id,
            "p_checkpoint_id": checkpoint_id,
            "p_correlation_metrics": correlation_metrics,
        }
        with timed_query(
            "transition_change_status",
            change_id=change_id,
            from_status=expected_status.value,
            to_status=new_status.value,
        ):
            result = self._client.rpc("transition_change_status", params).execute()

        rows = result.data or []
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return None
        return DetectedChange(**rows[0])

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def _batched(self, ids: Iterable[str]) -> Iterable[list[str]]:
        unique = sorted(set(ids))
        for start in range(0, len(unique), self._batch_size):
            yield unique[start : start + self._batch_size]

    def get_checkpoint_horizons(self, change_ids: Iterable[str]) -> dict[str, set[int]]:
        """Horizons already written, keyed by change id."""
        horizons: dict[str, set[int]] = defaultdict(set)
        for batch in self._batched(change_ids):
            with timed_query("get_checkpoint_horizons", batch_size=len(batch)):
                result = (
                    self._client.table("change_checkpoints")
                    .select("change_id, horizon_days")
                    .in_("change_id", batch)
                    .execute()
                )
            for row in result.data or []:
                horizons[row["change_id"]].add(int(row["horizon_days"]))
        return dict(horizons)

    def list_checkpoints(
        self, change_ids: Iterable[str]
    ) -> dict[str, list[ChangeCheckpoint]]:
        """Checkpoints keyed by change id, ordered by horizon."""
        checkpoints: dict[str, list[ChangeCheckpoint]] = defaultdict(list)
        for batch in self._batched(change_ids):
            with timed_query("list_checkpoints", batch_size=len(batch)):
                result = (
                    self._client.table("change_checkpoints")
                    .select("*")
                    .in_("change_id", batch)
                    .order("horizon_days")
                    .execute()
                )
            for row in result.data or []:
                checkpoints[row["change_id"]].append(ChangeCheckpoint(**row))
        return dict(checkpoints)

    def insert_checkpoint(self, checkpoint: ChangeCheckpointCreate) -> ChangeCheckpoint | None:
        """
        Write a checkpoint unless one exists for (change, horizon).

        Returns:
            The new checkpoint, or None when the horizon was already written.
        """
        data = checkpoint.model_dump(mode="json")
        with timed_query(
            "insert_checkpoint",
            change_id=checkpoint.change_id,
            horizon_days=checkpoint.horizon_days,
        ):
            result = (
                self._client.table("change_checkpoints")
                .upsert(
                    data,
                    on_conflict="change_id,horizon_days",
                    ignore_duplicates=True,
                )
                .execute()
            )
        if not result.data:
            logfire.info(
                "Checkpoint already written",
                change_id=checkpoint.change_id,
                horizon_days=checkpoint.horizon_days,
            )
            return None
        return ChangeCheckpoint(**result.data[0])

    # =========================================================================
    # Lifecycle events
    # =========================================================================

    def list_lifecycle_events(self, change_id: str) -> list[ChangeLifecycleEvent]:
        with timed_query("list_lifecycle_events", change_id=change_id):
            result = (
                self._client.table("change_lifecycle_events")
                .select("*")
                .eq("change_id", change_id)
                .order("created_at")
                .execute()
            )
        return [ChangeLifecycleEvent(**row) for row in result.data or []]
