"""Unit tests for the governance engine facade."""

import json

import pytest

from fingov.core.clock import MS_PER_DAY, FixedClock
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.engine import (
    GovernanceEngine,
    get_governance_engine,
    initialize_governance_engine,
    reset_governance_engine,
)
from fingov.governance.tables import ERASURE_MARKERS, FINANCE_AUDIT_EVENTS
from fingov.storage.blobs import InMemoryBlobStore


@pytest.mark.asyncio
class TestManualCleanup:
    """Tests for the caller-scoped retention cleanup."""

    async def test_cleanup_is_audited(
        self, engine: GovernanceEngine, repository: InMemoryRowRepository, clock: FixedClock
    ):
        """Test a manual cleanup records a run event with the summary."""
        request = await engine.request_export("user_1")
        await engine.generate_export("user_1", request.id)
        clock.advance(8 * MS_PER_DAY)

        summary = await engine.run_retention_cleanup("user_1", dry_run=False)

        events = await repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, "user_1")
        [run] = [e for e in events if e["action"] == "retention_cleanup_run"]
        after = json.loads(run["after_json"])
        assert after["deleted"]["user_exports"] == summary.deleted.user_exports == 1
        assert "per_user" not in after
        assert json.loads(run["metadata_json"])["dry_run"] is False

    async def test_cleanup_defaults_to_dry_run(self, engine: GovernanceEngine):
        """Test the manual cleanup is a dry run unless asked otherwise."""
        summary = await engine.run_retention_cleanup("user_1")

        assert summary.dry_run is True


@pytest.mark.asyncio
class TestInterruptedErasureThreshold:
    """Tests for the configured interrupted erasure threshold."""

    async def test_default_threshold_from_settings(
        self, engine: GovernanceEngine, repository: InMemoryRowRepository, clock: FixedClock
    ):
        """Test the default threshold is INTERRUPTED_ERASURE_AFTER_MINUTES."""
        await repository.insert(
            ERASURE_MARKERS,
            {"user_id": "user_1", "owner_key": "clerk:user_1", "started_at": clock.current},
        )
        clock.advance(29 * 60_000)
        assert await engine.find_interrupted_erasures() == []

        clock.advance(60_000)
        assert len(await engine.find_interrupted_erasures()) == 1

    async def test_explicit_threshold(
        self, engine: GovernanceEngine, repository: InMemoryRowRepository, clock: FixedClock
    ):
        """Test an explicit threshold overrides settings."""
        await repository.insert(
            ERASURE_MARKERS,
            {"user_id": "user_1", "owner_key": "clerk:user_1", "started_at": clock.current},
        )

        assert len(await engine.find_interrupted_erasures(older_than_ms=0)) == 1


class TestEngineSingleton:
    """Tests for the module-level engine."""

    def teardown_method(self):
        reset_governance_engine()

    def test_initialize_replaces_engine(self, test_settings):
        """Test initialize installs the engine returned by get."""
        engine = initialize_governance_engine(
            InMemoryRowRepository(), InMemoryBlobStore(), settings=test_settings
        )

        assert get_governance_engine() is engine

    def test_reset_drops_engine(self, test_settings):
        """Test reset forgets the installed engine."""
        engine = initialize_governance_engine(
            InMemoryRowRepository(), InMemoryBlobStore(), settings=test_settings
        )

        reset_governance_engine()

        assert get_governance_engine() is not engine

    def test_settings_reach_components(self, test_settings):
        """Test engine settings configure the components it wires."""
        test_settings.ERASURE_CONFIRMATION_PHRASE = "ERASE"
        test_settings.EXPORT_LINK_TTL_DAYS = 3

        engine = GovernanceEngine(InMemoryRowRepository(), InMemoryBlobStore(), test_settings)

        assert engine.erasure.confirmation_phrase == "ERASE"
        assert engine.exports.link_ttl_days == 3
