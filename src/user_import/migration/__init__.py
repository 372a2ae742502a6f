"""
Import pipeline for tenant users.

Mapping, dedup, batch writing, the error ledger and the session state
machine that drives them.
"""

from user_import.migration.dedup import DedupResolver
from user_import.migration.ledger import ErrorLedger
from user_import.migration.mapper import RecordMapper, normalize_email
from user_import.migration.orchestrator import ImportOrchestrator
from user_import.migration.preview import Preview, PreviewSampler
from user_import.migration.state import SessionStore
from user_import.migration.writer import BatchWriter

__all__ = [
    "RecordMapper",
    "normalize_email",
    "DedupResolver",
    "BatchWriter",
    "ErrorLedger",
    "PreviewSampler",
    "Preview",
    # Session state machine
    "ImportOrchestrator",
    "SessionStore",
]
