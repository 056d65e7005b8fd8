"""Audit writer for governance actions.

Audit events are append-only rows in ``finance_audit_events``. Writing
them is best-effort: a failed audit write is logged and never fails the
operation being audited.
"""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from fingov.core.clock import Clock, now_ms
from fingov.core.logging import get_logger
from fingov.db.repositories.rows import RowRepository
from fingov.governance.tables import FINANCE_AUDIT_EVENTS
from fingov.governance.types import AuditEvent

logger = get_logger(__name__)

PREVIEW_MAX_CHARS = 1500


def to_json(value: Any) -> str | None:
    """Serialize an audit payload; None stays None."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


def preview_json(value: str | None) -> str | None:
    """Truncate a JSON payload for display."""
    if value is None:
        return None
    if len(value) <= PREVIEW_MAX_CHARS:
        return value
    return value[: PREVIEW_MAX_CHARS - 1] + "…"


@dataclass
class AuditTrailFilters:
    """Filters for the audit trail query. Times are epoch ms."""

    from_ms: int | None = None
    to_ms: int | None = None
    action: str | None = None
    entity_type: str | None = None
    search: str | None = None
    limit: int | None = None


class AuditTrailEntry(BaseModel):
    id: str
    action: str
    entity_type: str
    entity_id: str
    created_at: int
    before_preview: str | None = None
    after_preview: str | None = None
    metadata_preview: str | None = None


class AuditFilterOptions(BaseModel):
    actions: list[str] = Field(default_factory=list)
    entity_types: list[str] = Field(default_factory=list)


class AuditTrail(BaseModel):
    """Filtered, newest-first slice of a user's audit events."""

    entries: list[AuditTrailEntry]
    total_count: int
    filtered_count: int
    applied_limit: int
    filter_options: AuditFilterOptions


class AuditWriter:
    """Appends audit events and answers audit trail queries.

    Example:
        writer = AuditWriter(repository)
        await writer.record(
            "consent_settings_update", "consent_settings", settings_id, user_id,
            before={"analytics_enabled": False}, after={"analytics_enabled": True},
        )
    """

    def __init__(
        self,
        repository: RowRepository,
        clock: Clock = now_ms,
        source: str = "fingov",
        default_limit: int = 250,
        min_limit: int = 50,
        max_limit: int = 2000,
    ):
        self._repository = repository
        self._clock = clock
        self.source = source
        self.default_limit = default_limit
        self.min_limit = min_limit
        self.max_limit = max_limit

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        user_id: str | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Append an audit event.

        Returns:
            The new event id, or None if the write failed
        """
        now = self._clock()
        meta = {"source": self.source, "recorded_at": now, **(metadata or {})}
        try:
            return await self._repository.insert(
                FINANCE_AUDIT_EVENTS,
                {
                    "action": action,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "user_id": user_id,
                    "before_json": to_json(before),
                    "after_json": to_json(after),
                    "metadata_json": to_json(meta),
                    "created_at": now,
                },
            )
        except Exception as e:
            logger.warning(
                "Audit write failed",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(e),
            )
            return None

    async def query_trail(
        self, user_id: str, filters: AuditTrailFilters | None = None
    ) -> AuditTrail:
        """Query a user's audit events, newest first."""
        filters = filters or AuditTrailFilters()
        limit = self._clamp_limit(filters.limit)

        rows = await self._repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, user_id)
        events = sorted(
            (AuditEvent.from_row(row) for row in rows),
            key=lambda e: (e.age_reference_ms, e.id),
            reverse=True,
        )

        options = AuditFilterOptions(
            actions=sorted({e.action for e in events}),
            entity_types=sorted({e.entity_type for e in events}),
        )

        search = (filters.search or "").strip().lower()
        action = (filters.action or "").strip()
        entity_type = (filters.entity_type or "").strip()

        matched: list[AuditEvent] = []
        for event in events:
            created = event.age_reference_ms
            if filters.from_ms is not None and created < filters.from_ms:
                continue
            if filters.to_ms is not None and created > filters.to_ms:
                continue
            if action and action != "all" and event.action != action:
                continue
            if entity_type and entity_type != "all" and event.entity_type != entity_type:
                continue
            if search and search not in self._search_text(event):
                continue
            matched.append(event)

        return AuditTrail(
            entries=[self._to_entry(e) for e in matched[:limit]],
            total_count=len(events),
            filtered_count=len(matched),
            applied_limit=limit,
            filter_options=options,
        )

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        return max(self.min_limit, min(self.max_limit, int(limit)))

    @staticmethod
    def _search_text(event: AuditEvent) -> str:
        parts = [
            event.action,
            event.entity_type,
            event.entity_id,
            event.before_json or "",
            event.after_json or "",
            event.metadata_json or "",
        ]
        return " ".join(parts).lower()

    @staticmethod
    def _to_entry(event: AuditEvent) -> AuditTrailEntry:
        return AuditTrailEntry(
            id=event.id,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            created_at=event.age_reference_ms,
            before_preview=preview_json(event.before_json),
            after_preview=preview_json(event.after_json),
            metadata_preview=preview_json(event.metadata_json),
        )
