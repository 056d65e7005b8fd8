"""Table names and table groupings used by governance operations."""

# Governance tables
USER_EXPORTS = "user_exports"
USER_EXPORT_DOWNLOADS = "user_export_downloads"
RETENTION_POLICIES = "retention_policies"
DELETION_JOBS = "deletion_jobs"
CONSENT_SETTINGS = "consent_settings"
CONSENT_LOGS = "consent_logs"
FINANCE_AUDIT_EVENTS = "finance_audit_events"
ERASURE_MARKERS = "erasure_markers"

# Finance tables referenced by exports
PURCHASES = "purchases"
PURCHASE_SPLITS = "purchase_splits"
LEDGER_ENTRIES = "ledger_entries"
LEDGER_LINES = "ledger_lines"

FINANCE_TABLES: tuple[str, ...] = (
    "accounts",
    "incomes",
    "bills",
    "cards",
    "loans",
    PURCHASES,
    PURCHASE_SPLITS,
    "purchase_split_templates",
    LEDGER_ENTRIES,
    LEDGER_LINES,
    "planning_month_versions",
    "planning_action_tasks",
    "personal_finance_states",
    "goals",
    "goal_events",
    "envelope_budgets",
    "finance_preferences",
    "transaction_rules",
    "income_allocation_rules",
    "income_allocation_suggestions",
    "subscription_price_changes",
    "monthly_cycle_runs",
    "month_close_snapshots",
    "cycle_audit_logs",
    "income_payment_checks",
    "loan_events",
    "cycle_step_alerts",
)

PRIVACY_TABLES: tuple[str, ...] = (
    CONSENT_SETTINGS,
    CONSENT_LOGS,
    RETENTION_POLICIES,
    DELETION_JOBS,
    USER_EXPORTS,
    USER_EXPORT_DOWNLOADS,
)

# Tables scanned to find the users a system-wide sweep must visit
SWEEP_USER_SOURCE_TABLES: tuple[str, ...] = (
    RETENTION_POLICIES,
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
    DELETION_JOBS,
    CONSENT_LOGS,
    FINANCE_AUDIT_EVENTS,
)

# Tables erased for a user, matched by user_id
ERASURE_USER_TABLES: tuple[str, ...] = (
    "account_reconciliation_checks",
    "accounts",
    "account_transfers",
    "bill_payment_checks",
    "bills",
    "cards",
    "client_ops_metrics",
    CONSENT_LOGS,
    CONSENT_SETTINGS,
    "cycle_audit_logs",
    "cycle_step_alerts",
    "dashboard_states",
    DELETION_JOBS,
    "envelope_budgets",
    FINANCE_AUDIT_EVENTS,
    "finance_preferences",
    "goal_events",
    "goals",
    "income_allocation_rules",
    "income_allocation_suggestions",
    "income_change_events",
    "income_payment_checks",
    "incomes",
    LEDGER_ENTRIES,
    LEDGER_LINES,
    "loan_cycle_audit_entries",
    "loan_events",
    "loans",
    "month_close_snapshots",
    "monthly_cycle_runs",
    "personal_finance_states",
    "planning_action_tasks",
    "planning_month_versions",
    "purchase_month_close_runs",
    PURCHASES,
    PURCHASE_SPLITS,
    "purchase_split_templates",
    RETENTION_POLICIES,
    "settings_profiles",
    "subscription_price_changes",
    "transaction_rules",
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
)

# Tables erased for a user, matched by owner key
ERASURE_OWNER_KEY_TABLES: tuple[str, ...] = (
    "dashboard_preferences",
    "dashboard_snapshots",
)

# Tables whose rows may reference a stored blob through storage_id
STORAGE_REFERENCING_TABLES: tuple[str, ...] = (
    USER_EXPORT_DOWNLOADS,
    USER_EXPORTS,
)
