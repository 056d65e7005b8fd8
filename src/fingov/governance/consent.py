"""Consent tracking.

Each user has at most one consent settings row holding the current flags,
and an append-only log with one entry per flag change.
"""

from pydantic import BaseModel, Field

from fingov.core.clock import Clock, now_ms
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.tables import CONSENT_LOGS, CONSENT_SETTINGS
from fingov.governance.types import ConsentLog, ConsentSettings, ConsentType

logger = get_logger(__name__)

DEFAULT_CONSENT_VERSION = "v2"


class ConsentState(BaseModel):
    """Current consent flags. A user without a settings row has both off."""

    settings_id: str | None = None
    analytics_enabled: bool = False
    diagnostics_enabled: bool = False
    updated_at: int | None = None


class ConsentUpdateResult(BaseModel):
    """Outcome of a consent update."""

    state: ConsentState
    changed: list[ConsentType] = Field(default_factory=list)
    log_ids: list[str] = Field(default_factory=list)


class ConsentTracker:
    """Reads and updates a user's consent flags."""

    def __init__(self, repository: RowRepository, audit: AuditWriter, clock: Clock = now_ms):
        self._repository = repository
        self._audit = audit
        self._clock = clock

    async def _current_row(self, user_id: str) -> ConsentSettings | None:
        rows = await self._repository.list_owned_by_user(CONSENT_SETTINGS, user_id)
        if not rows:
            return None
        records = [ConsentSettings.from_row(r) for r in rows]
        return max(records, key=lambda r: (r.updated_at or r.creation_time, r.id))

    async def get_state(self, user_id: str) -> ConsentState:
        """Get the user's current consent flags."""
        current = await self._current_row(user_id)
        if current is None:
            return ConsentState()
        return ConsentState(
            settings_id=current.id,
            analytics_enabled=current.analytics_enabled,
            diagnostics_enabled=current.diagnostics_enabled,
            updated_at=current.updated_at,
        )

    async def list_logs(self, user_id: str) -> list[ConsentLog]:
        """List consent changes, newest first."""
        rows = await self._repository.list_owned_by_user(CONSENT_LOGS, user_id)
        logs = [ConsentLog.from_row(r) for r in rows]
        return sorted(logs, key=lambda log: (log.age_reference_ms, log.id), reverse=True)

    async def update(
        self,
        user_id: str,
        analytics_enabled: bool | None = None,
        diagnostics_enabled: bool | None = None,
        version: str | None = None,
        reason: str | None = None,
    ) -> ConsentUpdateResult:
        """Update consent flags.

        A flag passed as None keeps its prior value. One log row is written
        per flag whose value actually changed.

        Args:
            user_id: Owner of the settings
            analytics_enabled: New analytics flag, or None to keep
            diagnostics_enabled: New diagnostics flag, or None to keep
            version: Consent text version (default "v2")
            reason: Optional free-text reason stored on each log

        Returns:
            The new state and the log rows written
        """
        now = self._clock()
        before = await self.get_state(user_id)

        next_values = {
            ConsentType.ANALYTICS: (
                before.analytics_enabled if analytics_enabled is None else analytics_enabled
            ),
            ConsentType.DIAGNOSTICS: (
                before.diagnostics_enabled if diagnostics_enabled is None else diagnostics_enabled
            ),
        }
        previous = {
            ConsentType.ANALYTICS: before.analytics_enabled,
            ConsentType.DIAGNOSTICS: before.diagnostics_enabled,
        }
        changed = [t for t in ConsentType if next_values[t] != previous[t]]

        values = {
            "user_id": user_id,
            "analytics_enabled": next_values[ConsentType.ANALYTICS],
            "diagnostics_enabled": next_values[ConsentType.DIAGNOSTICS],
            "updated_at": now,
        }
        if before.settings_id is None:
            settings_id = await self._repository.insert(CONSENT_SETTINGS, values)
        else:
            settings_id = before.settings_id
            await self._repository.patch(CONSENT_SETTINGS, settings_id, values)

        consent_version = (version or "").strip() or DEFAULT_CONSENT_VERSION
        log_ids: list[str] = []
        for consent_type in changed:
            log_id = await self._repository.insert(
                CONSENT_LOGS,
                {
                    "user_id": user_id,
                    "consent_type": consent_type.value,
                    "enabled": next_values[consent_type],
                    "version": consent_version,
                    "reason": reason,
                    "created_at": now,
                },
            )
            log_ids.append(log_id)

        after = ConsentState(
            settings_id=settings_id,
            analytics_enabled=values["analytics_enabled"],
            diagnostics_enabled=values["diagnostics_enabled"],
            updated_at=now,
        )

        await self._audit.record(
            "consent_settings_update",
            "consent_settings",
            settings_id,
            user_id,
            before=before.model_dump(exclude={"settings_id"}),
            after=after.model_dump(exclude={"settings_id"}),
            metadata={
                "changed": [t.value for t in changed],
                "version": consent_version,
                "reason": reason,
            },
        )

        logger.info(
            "Consent settings updated",
            user_id=user_id,
            changed=[t.value for t in changed],
        )
        return ConsentUpdateResult(state=after, changed=changed, log_ids=log_ids)
