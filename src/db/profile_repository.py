"""Owner profile repository (billing/identity snapshot, read-only)."""

from typing import Iterable

import logfire
from supabase import Client

from src.constants import PROFILE_LOOKUP_CHUNK_SIZE
from src.db.query_executor import timed_query
from src.models.tier_models import OwnerProfile

PROFILE_COLUMNS = (
    "id, subscription_tier, subscription_status, trial_ends_at, timezone, bonus_pages"
)


def _to_profile(row: dict) -> OwnerProfile:
    return OwnerProfile(
        id=row["id"],
        subscription_tier=row.get("subscription_tier"),
        subscription_status=row.get("subscription_status"),
        trial_ends_at=row.get("trial_ends_at"),
        timezone=row.get("timezone") or "UTC",
        bonus_pages=row.get("bonus_pages") or 0,
    )


class ProfileRepository:
    """Reads owner profiles from the ``profiles`` table."""

    def __init__(self, client: Client, chunk_size: int = PROFILE_LOOKUP_CHUNK_SIZE):
        self._client = client
        self._chunk_size = chunk_size

    def get_profiles(self, owner_ids: Iterable[str]) -> dict[str, OwnerProfile]:
        """
        Batch-load profiles keyed by owner id.

        Lookups are chunked so the ``in`` filter stays within URL limits.
        Owners without a profile row are simply absent from the result.
        """
        ids = sorted(set(owner_ids))
        profiles: dict[str, OwnerProfile] = {}

        for start in range(0, len(ids), self._chunk_size):
            chunk = ids[start : start + self._chunk_size]
            with timed_query("get_profiles", chunk_start=start, chunk_size=len(chunk)):
                result = (
                    self._client.table("profiles")
                    .select(PROFILE_COLUMNS)
                    .in_("id", chunk)
                    .execute()
                )
            for row in result.data or []:
                profile = _to_profile(row)
                profiles[profile.id] = profile

        logfire.debug(
            "Profiles resolved",
            requested=len(ids),
            found=len(profiles),
        )
        return profiles

    def get_profile(self, owner_id: str) -> OwnerProfile | None:
        with timed_query("get_profile", owner_id=owner_id):
            result = (
                self._client.table("profiles")
                .select(PROFILE_COLUMNS)
                .eq("id", owner_id)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return _to_profile(result.data[0])
