import logging
from typing import Optional

from .audit import AuditLog
from .config import Settings
from .service import LedgerService
from .storage import AutosaveTimer, Collection, RecordStore
from .submissions import SubmissionWorkflow
from .uploads import UploadStore
from .users import UserDirectory

log = logging.getLogger(__name__)


class Portal:
    """Wires the store and the services that share it."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store = RecordStore(settings.data_dir)
        self.users = UserDirectory(self.store)
        self.audit = AuditLog(self.store)
        self.ledger = LedgerService(self.store, self.users, self.audit)
        self.submissions = SubmissionWorkflow(
            self.store, self.ledger, self.audit,
            usdt_wallet_address=settings.usdt_wallet_address,
        )
        self.uploads = UploadStore(settings.uploads_dir, settings.max_upload_bytes)
        self._autosave: Optional[AutosaveTimer] = None

    def startup(self) -> None:
        self.store.initialize()
        self.settings.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.users.seed_admins(self.settings.admin_seeds)
        log.info("Found %d user(s) in %s", len(self.users.all()), self.settings.data_dir)

        self._autosave = AutosaveTimer(self.store, self.settings.autosave_interval_seconds)
        self._autosave.start()
        log.info("Auto-save running every %ss", self.settings.autosave_interval_seconds)

    def shutdown(self) -> None:
        if self._autosave is not None:
            self._autosave.stop()
            self._autosave = None
        with self.store.guard(Collection.USERS):
            self.store.save(Collection.USERS, self.store.load(Collection.USERS))
        self.store.emergency_backup(Collection.USERS)
        log.info("Users saved before shutdown")
