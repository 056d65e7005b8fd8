"""Unit tests for consent tracking."""

import json

import pytest

from fingov.core.clock import FixedClock
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.consent import ConsentTracker
from fingov.governance.tables import CONSENT_LOGS, CONSENT_SETTINGS, FINANCE_AUDIT_EVENTS
from fingov.governance.types import ConsentType


@pytest.fixture
def tracker(repository: InMemoryRowRepository, clock: FixedClock) -> ConsentTracker:
    """Create a consent tracker."""
    return ConsentTracker(repository, AuditWriter(repository, clock=clock), clock=clock)


@pytest.mark.asyncio
class TestConsentState:
    """Tests for reading consent state."""

    async def test_defaults_to_disabled(self, tracker: ConsentTracker):
        """Test a user without settings has both flags off."""
        state = await tracker.get_state("user_1")

        assert state.settings_id is None
        assert state.analytics_enabled is False
        assert state.diagnostics_enabled is False


@pytest.mark.asyncio
class TestConsentUpdate:
    """Tests for updating consent flags."""

    async def test_toggle_analytics_writes_one_log(
        self, tracker: ConsentTracker, repository: InMemoryRowRepository
    ):
        """Test toggling one flag writes exactly one log row."""
        result = await tracker.update("user_1", analytics_enabled=True)

        assert result.changed == [ConsentType.ANALYTICS]
        assert len(result.log_ids) == 1
        assert result.state.analytics_enabled is True
        assert result.state.diagnostics_enabled is False

        logs = await repository.list_owned_by_user(CONSENT_LOGS, "user_1")
        assert len(logs) == 1
        assert logs[0]["consent_type"] == "analytics"
        assert logs[0]["enabled"] is True
        assert logs[0]["version"] == "v2"

    async def test_unchanged_flags_write_no_logs(
        self, tracker: ConsentTracker, repository: InMemoryRowRepository
    ):
        """Test re-sending the current value writes no log row."""
        await tracker.update("user_1", analytics_enabled=True)
        result = await tracker.update("user_1", analytics_enabled=True, diagnostics_enabled=False)

        assert result.changed == []
        assert result.log_ids == []
        assert repository.count(CONSENT_LOGS) == 1

    async def test_single_settings_row(
        self, tracker: ConsentTracker, repository: InMemoryRowRepository
    ):
        """Test repeated updates keep one settings row per user."""
        await tracker.update("user_1", analytics_enabled=True)
        await tracker.update("user_1", diagnostics_enabled=True)

        assert repository.count(CONSENT_SETTINGS) == 1
        state = await tracker.get_state("user_1")
        assert state.analytics_enabled is True
        assert state.diagnostics_enabled is True

    async def test_both_flags_changed(self, tracker: ConsentTracker):
        """Test changing both flags writes two logs."""
        result = await tracker.update(
            "user_1", analytics_enabled=True, diagnostics_enabled=True, version="v3"
        )

        assert set(result.changed) == {ConsentType.ANALYTICS, ConsentType.DIAGNOSTICS}
        logs = await tracker.list_logs("user_1")
        assert {log.version for log in logs} == {"v3"}

    async def test_update_is_audited(
        self, tracker: ConsentTracker, repository: InMemoryRowRepository
    ):
        """Test updates write a consent_settings_update audit event."""
        await tracker.update("user_1", diagnostics_enabled=True, reason="support ticket")

        events = await repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, "user_1")
        assert len(events) == 1
        assert events[0]["action"] == "consent_settings_update"
        metadata = json.loads(events[0]["metadata_json"])
        assert metadata["changed"] == ["diagnostics"]
        assert metadata["reason"] == "support ticket"

    async def test_logs_newest_first(self, tracker: ConsentTracker, clock: FixedClock):
        """Test consent logs are listed newest first."""
        await tracker.update("user_1", analytics_enabled=True)
        clock.advance(1000)
        await tracker.update("user_1", analytics_enabled=False)

        logs = await tracker.list_logs("user_1")
        assert [log.enabled for log in logs] == [False, True]
