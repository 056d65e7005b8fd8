"""Retention policy store.

Users may override the retention period of any category. The four swept
categories always have a system default, so the merged view of a user's
policies contains every default plus any extra keys the user created.
"""

from fingov.core.clock import Clock, now_ms
from fingov.core.exceptions import ValidationError
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.tables import RETENTION_POLICIES
from fingov.governance.types import (
    DEFAULT_RETENTION_DAYS,
    MAX_RETENTION_DAYS,
    AppliedPolicy,
    PolicySource,
    RetentionPolicy,
)

logger = get_logger(__name__)


def clamp_retention_days(days: int | float) -> int:
    """Clamp a retention period to [0, 3650] whole days."""
    return max(0, min(MAX_RETENTION_DAYS, int(days)))


def default_policies() -> dict[str, AppliedPolicy]:
    """System default policies keyed by policy key."""
    return {
        category.value: AppliedPolicy(
            policy_key=category.value,
            retention_days=days,
            enabled=True,
            source=PolicySource.DEFAULT,
        )
        for category, days in DEFAULT_RETENTION_DAYS.items()
    }


def merge_policies(rows: list[RetentionPolicy]) -> dict[str, AppliedPolicy]:
    """Merge user policy rows over the defaults. A user row wins per key."""
    merged = default_policies()
    # Most recently updated row wins if duplicates exist
    for row in sorted(rows, key=lambda r: (r.updated_at or r.creation_time, r.id)):
        merged[row.policy_key] = AppliedPolicy(
            id=row.id,
            policy_key=row.policy_key,
            retention_days=clamp_retention_days(row.retention_days),
            enabled=row.enabled,
            source=PolicySource.DB,
            updated_at=row.updated_at,
        )
    return merged


class RetentionPolicyStore:
    """Per-user retention policies with defaults merged in."""

    def __init__(self, repository: RowRepository, audit: AuditWriter, clock: Clock = now_ms):
        self._repository = repository
        self._audit = audit
        self._clock = clock

    async def list_rows(self, user_id: str) -> list[RetentionPolicy]:
        rows = await self._repository.list_owned_by_user(RETENTION_POLICIES, user_id)
        return [RetentionPolicy.from_row(r) for r in rows]

    async def merged(self, user_id: str) -> dict[str, AppliedPolicy]:
        """Effective policies for a user keyed by policy key."""
        return merge_policies(await self.list_rows(user_id))

    async def list_policies(self, user_id: str) -> list[AppliedPolicy]:
        """Effective policies sorted by key."""
        merged = await self.merged(user_id)
        return [merged[key] for key in sorted(merged)]

    async def upsert_policy(
        self,
        user_id: str,
        policy_key: str,
        retention_days: int | float,
        enabled: bool | None = True,
        policy_id: str | None = None,
    ) -> AppliedPolicy:
        """Create or update a user's policy.

        Matches by ``policy_id`` when given, otherwise by policy key.

        Raises:
            ValidationError: If the policy key is blank
            NotFoundError: If ``policy_id`` is not a policy owned by the user
        """
        key = (policy_key or "").strip()
        if not key:
            raise ValidationError("Policy key is required", field="policy_key")

        now = self._clock()
        values = {
            "user_id": user_id,
            "policy_key": key,
            "retention_days": clamp_retention_days(retention_days),
            "enabled": True if enabled is None else bool(enabled),
            "updated_at": now,
        }

        existing: RetentionPolicy | None = None
        if policy_id:
            row = await self._repository.get_owned_or_fail(RETENTION_POLICIES, policy_id, user_id)
            existing = RetentionPolicy.from_row(row)
        else:
            matches = [p for p in await self.list_rows(user_id) if p.policy_key == key]
            if matches:
                existing = max(matches, key=lambda r: (r.updated_at or r.creation_time, r.id))

        if existing is not None:
            await self._repository.patch(RETENTION_POLICIES, existing.id, values)
            record_id = existing.id
            action = "retention_policy_update"
            before = existing.to_row()
        else:
            record_id = await self._repository.insert(RETENTION_POLICIES, values)
            action = "retention_policy_create"
            before = None

        await self._audit.record(
            action,
            "retention_policy",
            record_id,
            user_id,
            before=before,
            after=values,
        )
        logger.info(
            "Retention policy saved",
            user_id=user_id,
            policy_key=key,
            retention_days=values["retention_days"],
            enabled=values["enabled"],
        )

        return AppliedPolicy(
            id=record_id,
            policy_key=key,
            retention_days=values["retention_days"],
            enabled=values["enabled"],
            source=PolicySource.DB,
            updated_at=now,
        )
