"""Data governance: exports, retention, deletion jobs, consent and erasure.

Usage:
    from fingov.governance import GovernanceEngine
    from fingov.db.repositories import InMemoryRowRepository
    from fingov.storage import InMemoryBlobStore

    engine = GovernanceEngine(InMemoryRowRepository(), InMemoryBlobStore())
    request = await engine.request_export("user_1", format="csv")
    generated = await engine.generate_export("user_1", request.id)
"""

from fingov.governance.audit import AuditTrailFilters, AuditWriter
from fingov.governance.consent import ConsentTracker
from fingov.governance.engine import (
    GovernanceEngine,
    get_governance_engine,
    initialize_governance_engine,
    reset_governance_engine,
)
from fingov.governance.erasure import AccountErasureWorkflow
from fingov.governance.exports import ExportWorkflow, GeneratedExport
from fingov.governance.jobs import DeletionJobTracker
from fingov.governance.policies import RetentionPolicyStore
from fingov.governance.retention import RetentionSweepEngine
from fingov.governance.scheduler import RetentionSchedulerConfig, RetentionSweepScheduler
from fingov.governance.workspace import GovernanceWorkspace

__all__ = [
    "AccountErasureWorkflow",
    "AuditTrailFilters",
    "AuditWriter",
    "ConsentTracker",
    "DeletionJobTracker",
    "ExportWorkflow",
    "GeneratedExport",
    "GovernanceEngine",
    "GovernanceWorkspace",
    "RetentionPolicyStore",
    "RetentionSchedulerConfig",
    "RetentionSweepEngine",
    "RetentionSweepScheduler",
    "get_governance_engine",
    "initialize_governance_engine",
    "reset_governance_engine",
]
