"""Unit tests for retention policies."""

import pytest

from fingov.core.clock import FixedClock
from fingov.core.exceptions import NotFoundError, ValidationError
from fingov.db.repositories.rows import InMemoryRowRepository
from fingov.governance.audit import AuditWriter
from fingov.governance.policies import (
    RetentionPolicyStore,
    clamp_retention_days,
    default_policies,
    merge_policies,
)
from fingov.governance.tables import FINANCE_AUDIT_EVENTS, RETENTION_POLICIES
from fingov.governance.types import PolicySource, RetentionPolicy


@pytest.fixture
def store(repository: InMemoryRowRepository, clock: FixedClock) -> RetentionPolicyStore:
    """Create a policy store with an audit writer."""
    return RetentionPolicyStore(repository, AuditWriter(repository, clock=clock), clock=clock)


class TestClampRetentionDays:
    """Tests for clamp_retention_days."""

    @pytest.mark.parametrize(
        "days,expected",
        [(-5, 0), (0, 0), (30, 30), (3650, 3650), (99999, 3650), (7.9, 7)],
    )
    def test_clamps_to_range(self, days, expected):
        """Test values are clamped to 0..3650 whole days."""
        assert clamp_retention_days(days) == expected


class TestMergePolicies:
    """Tests for merging user rows over defaults."""

    def test_defaults(self):
        """Test the four swept categories have defaults."""
        defaults = default_policies()

        assert {k: p.retention_days for k, p in defaults.items()} == {
            "exports": 7,
            "deletion_jobs": 30,
            "consent_logs": 730,
            "finance_audit_events": 365,
        }
        assert all(p.source == PolicySource.DEFAULT for p in defaults.values())

    def test_user_row_overrides_default(self):
        """Test a user row replaces the default for its key."""
        merged = merge_policies(
            [
                RetentionPolicy(
                    id="p1", user_id="u1", policy_key="exports", retention_days=14, enabled=False
                )
            ]
        )

        assert merged["exports"].retention_days == 14
        assert merged["exports"].enabled is False
        assert merged["exports"].source == PolicySource.DB
        assert merged["consent_logs"].source == PolicySource.DEFAULT

    def test_extra_user_keys_are_kept(self):
        """Test keys outside the defaults survive the merge."""
        merged = merge_policies(
            [RetentionPolicy(id="p1", user_id="u1", policy_key="receipts", retention_days=90)]
        )
        assert "receipts" in merged
        assert len(merged) == 5

    def test_stored_values_are_clamped(self):
        """Test out-of-range stored values are clamped on read."""
        merged = merge_policies(
            [RetentionPolicy(id="p1", user_id="u1", policy_key="exports", retention_days=-3)]
        )
        assert merged["exports"].retention_days == 0

    def test_latest_duplicate_wins(self):
        """Test the most recently updated duplicate row wins."""
        merged = merge_policies(
            [
                RetentionPolicy(
                    id="p2", user_id="u1", policy_key="exports", retention_days=20, updated_at=200
                ),
                RetentionPolicy(
                    id="p1", user_id="u1", policy_key="exports", retention_days=10, updated_at=100
                ),
            ]
        )
        assert merged["exports"].retention_days == 20


@pytest.mark.asyncio
class TestRetentionPolicyStore:
    """Tests for RetentionPolicyStore."""

    async def test_list_policies_sorted_by_key(self, store: RetentionPolicyStore):
        """Test policies are returned in key order."""
        policies = await store.list_policies("user_1")

        keys = [p.policy_key for p in policies]
        assert keys == sorted(keys)
        assert len(keys) == 4

    async def test_upsert_creates_then_updates(
        self, store: RetentionPolicyStore, repository: InMemoryRowRepository
    ):
        """Test a second upsert with the same key updates in place."""
        created = await store.upsert_policy("user_1", "exports", 14)
        updated = await store.upsert_policy("user_1", " exports ", 21, enabled=False)

        assert created.id == updated.id
        assert repository.count(RETENTION_POLICIES) == 1

        merged = await store.merged("user_1")
        assert merged["exports"].retention_days == 21
        assert merged["exports"].enabled is False

    async def test_upsert_clamps_days(self, store: RetentionPolicyStore):
        """Test retention days are clamped before storage."""
        policy = await store.upsert_policy("user_1", "consent_logs", 100_000)
        assert policy.retention_days == 3650

    async def test_upsert_blank_key_rejected(self, store: RetentionPolicyStore):
        """Test a blank policy key is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await store.upsert_policy("user_1", "   ", 10)
        assert exc_info.value.field == "policy_key"

    async def test_upsert_by_foreign_id_rejected(self, store: RetentionPolicyStore):
        """Test a policy id owned by another user is not found."""
        other = await store.upsert_policy("user_2", "exports", 10)

        with pytest.raises(NotFoundError):
            await store.upsert_policy("user_1", "exports", 10, policy_id=other.id)

    async def test_upsert_writes_audit_events(
        self, store: RetentionPolicyStore, repository: InMemoryRowRepository
    ):
        """Test create and update are audited with distinct actions."""
        await store.upsert_policy("user_1", "exports", 14)
        await store.upsert_policy("user_1", "exports", 15)

        events = await repository.list_owned_by_user(FINANCE_AUDIT_EVENTS, "user_1")
        assert sorted(e["action"] for e in events) == [
            "retention_policy_create",
            "retention_policy_update",
        ]

    async def test_policies_are_per_user(self, store: RetentionPolicyStore):
        """Test one user's override does not affect another user."""
        await store.upsert_policy("user_1", "exports", 1)

        merged = await store.merged("user_2")
        assert merged["exports"].retention_days == 7
        assert merged["exports"].source == PolicySource.DEFAULT
