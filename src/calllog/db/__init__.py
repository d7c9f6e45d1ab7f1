"""Database layer for the call history store.

This module provides SQLite database access with async operations.

Usage:
    from calllog.db import CallLogStore, Call

    store = CallLogStore("data/calllog.db")
    await store.initialize()

    await store.add_call(Call(number="5551234", type=CallType.MISSED, date=1700000000000))
"""

from calllog.db.models import (
    SCHEMA_VERSION,
    init_database,
    verify_schema,
)
from calllog.db.store import (
    CALL_PROJECTION,
    VOICEMAIL_STATUS_PROJECTION,
    Call,
    CallLogStore,
    ResultSet,
    VoicemailStatus,
    storage_fault_for,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "CallLogStore",
    "ResultSet",
    "storage_fault_for",
    "CALL_PROJECTION",
    "VOICEMAIL_STATUS_PROJECTION",
    # Dataclasses
    "Call",
    "VoicemailStatus",
]
