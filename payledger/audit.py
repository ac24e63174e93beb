import logging
from typing import Any, Optional

from .models import AdminLogEntry
from .storage import Collection, RecordStore

log = logging.getLogger(__name__)

DEFAULT_ORIGIN = "127.0.0.1"


class AuditLog:
    """Append-only trail of admin and payment actions."""

    def __init__(self, store: RecordStore):
        self.store = store

    def record(
        self,
        action: str,
        acting_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
        origin: Optional[str] = None,
    ) -> bool:
        # Best-effort: a failed audit write never fails the caller.
        try:
            entry = AdminLogEntry(
                action=action,
                admin_id=acting_id,
                details=details or {},
                ip=origin or DEFAULT_ORIGIN,
            )
            with self.store.edit(Collection.ADMIN_LOGS) as logs:
                logs.append(entry.to_record())
        except Exception:
            log.exception("Error saving admin log for action %s", action)
            return False
        return True

    def recent(self, limit: int = 100) -> list[dict]:
        logs = self.store.load(Collection.ADMIN_LOGS)
        return list(reversed(logs[-limit:])) if limit > 0 else []
