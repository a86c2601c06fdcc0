"""Session ledger: tasks, usage records and cost accounting.

Usage:
    from codeplan.session import SessionLedger, SessionStore

    ledger = SessionLedger(store=SessionStore(".codeplan/sessions"))
    summary = ledger.get_session_summary()
"""

from codeplan.session.ledger import SessionLedger, format_duration
from codeplan.session.models import (
    Report,
    ReportType,
    SessionData,
    SessionSettings,
    SessionSummary,
    TaskRecord,
    UsageRecord,
)
from codeplan.session.pricing import calculate_cost, lookup_rate
from codeplan.session.store import SessionStore

__all__ = [
    "Report",
    "ReportType",
    "SessionData",
    "SessionLedger",
    "SessionSettings",
    "SessionStore",
    "SessionSummary",
    "TaskRecord",
    "UsageRecord",
    "calculate_cost",
    "format_duration",
    "lookup_rate",
]
