"""
Payroll state: record and session models plus the in-memory record store.

The store mirrors ledger-held records and is only ever replaced wholesale by
`RecordStore.sync_all`; nothing patches it locally.
"""

from .models import PayrollForm, PayrollRecord, SessionState
from .record_store import RecordStore, SyncReport

__all__ = ["PayrollForm", "PayrollRecord", "SessionState", "RecordStore", "SyncReport"]
