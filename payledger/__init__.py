"""
Activation Payment Portal

This package provides:
- A flat-file record store with backups and autosave shadows
- A user directory with case-insensitive unique emails
- Admin credit/debit paired with transaction records
- A best-effort admin audit trail
- Activation payments: gift card review, USDT and card settlement
"""

from .audit import AuditLog
from .models import (
    PaymentMethod,
    Role,
    SubmissionStatus,
    TransactionStatus,
    TransactionType,
)
from .service import LedgerService
from .storage import Collection, RecordStore
from .submissions import SubmissionWorkflow
from .users import UserDirectory

__all__ = [
    "AuditLog",
    "Collection",
    "LedgerService",
    "PaymentMethod",
    "RecordStore",
    "Role",
    "SubmissionStatus",
    "SubmissionWorkflow",
    "TransactionStatus",
    "TransactionType",
    "UserDirectory",
]
