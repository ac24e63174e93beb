"""
Flat-file record store.

Each collection is one JSON document on disk (a mapping for users, a list for
everything else). Every operation reads or rewrites the whole document. Writes
copy the previous content to ``<file>.backup`` and then atomically replace the
file, so readers see either the old or the new document. A per-collection
re-entrant lock serializes read-modify-write cycles inside one process; it does
nothing across processes.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from .exceptions import StorageCorruptError
from .models import epoch_ms

log = logging.getLogger(__name__)

Document = Union[dict, list]


class Collection(str, Enum):
    USERS = "users"
    TRANSACTIONS = "transactions"
    ADMIN_LOGS = "admin_logs"
    PAYMENT_SUBMISSIONS = "payment_submissions"
    GIFT_CARD_SUBMISSIONS = "gift_card_submissions"

    @property
    def filename(self) -> str:
        return f"{self.value}.json"

    @property
    def document_type(self) -> type:
        return dict if self is Collection.USERS else list

    def default(self) -> Document:
        return self.document_type()


class RecordStore:
    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self._guards: dict[Collection, threading.RLock] = {}
        self._guards_lock = threading.Lock()

    def path(self, collection: Collection) -> Path:
        return self.data_dir / Collection(collection).filename

    def guard(self, collection: Collection) -> threading.RLock:
        collection = Collection(collection)
        with self._guards_lock:
            if collection not in self._guards:
                self._guards[collection] = threading.RLock()
            return self._guards[collection]

    # ------------------------------------------------------------------
    # load / save
    # ------------------------------------------------------------------

    def load(self, collection: Collection) -> Document:
        collection = Collection(collection)
        path = self.path(collection)
        with self.guard(collection):
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                return collection.default()
            except OSError:
                log.exception("Error reading %s, using default", path.name)
                return collection.default()

            if not raw.strip():
                return collection.default()

            try:
                return self._parse(collection, raw)
            except StorageCorruptError as exc:
                log.warning("%s is corrupt (%s); using default", path.name, exc)
                self._preserve_corrupt(path)
                return collection.default()

    def save(self, collection: Collection, document: Document) -> bool:
        collection = Collection(collection)
        path = self.path(collection)
        with self.guard(collection):
            try:
                payload = json.dumps(document, indent=2, ensure_ascii=False)
            except (TypeError, ValueError):
                log.exception("Refusing to save unserializable %s", path.name)
                return False
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                self._backup_current(path)
                self._atomic_write(path, payload)
            except OSError:
                log.exception("Error saving %s", path.name)
                return False
        log.debug("Saved %s", path.name)
        return True

    @contextmanager
    def edit(self, collection: Collection) -> Iterator[Document]:
        """Hold the collection's guard, yield its document, save it on clean exit."""
        with self.guard(collection):
            document = self.load(collection)
            yield document
            self.save(collection, document)

    # ------------------------------------------------------------------
    # startup, shadows, shutdown
    # ------------------------------------------------------------------

    def initialize(self) -> int:
        """Create missing files, restoring from autosave shadows where possible."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        restored = 0
        for collection in Collection:
            with self.guard(collection):
                if self._initialize_one(collection):
                    restored += 1
        log.info("Data directory %s ready, %d file(s) restored from autosave", self.data_dir, restored)
        return restored

    def snapshot(self) -> int:
        """Copy every collection to its ``.autosave`` shadow."""
        written = 0
        for collection in Collection:
            with self.guard(collection):
                document = self.load(collection)
                try:
                    self._atomic_write(self._shadow(collection, "autosave"),
                                       json.dumps(document, indent=2, ensure_ascii=False))
                    written += 1
                except OSError:
                    log.exception("Autosave of %s failed", collection.filename)
        return written

    def emergency_backup(self, collection: Collection) -> Optional[Path]:
        collection = Collection(collection)
        target = self._shadow(collection, f"emergency-{epoch_ms()}")
        with self.guard(collection):
            document = self.load(collection)
            try:
                self._atomic_write(target, json.dumps(document, indent=2, ensure_ascii=False))
            except OSError:
                log.exception("Emergency backup of %s failed", collection.filename)
                return None
        log.info("Emergency backup created: %s", target.name)
        return target

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _initialize_one(self, collection: Collection) -> bool:
        path = self.path(collection)
        current = path.read_bytes() if path.exists() else b""

        if not current.strip():
            shadow = self._shadow(collection, "autosave")
            if shadow.exists():
                shadow_raw = shadow.read_bytes()
                if shadow_raw.strip():
                    try:
                        restored = self._parse(collection, shadow_raw)
                    except StorageCorruptError:
                        log.warning("Autosave for %s is corrupt, ignoring it", path.name)
                    else:
                        self._atomic_write(path, json.dumps(restored, indent=2, ensure_ascii=False))
                        log.info("Restored %s from autosave", path.name)
                        return True
            self._atomic_write(path, json.dumps(collection.default(), indent=2))
            log.info("Initialized empty file: %s", path.name)
            return False

        try:
            self._parse(collection, current)
        except StorageCorruptError as exc:
            log.warning("%s is corrupt (%s); recreating it", path.name, exc)
            self._preserve_corrupt(path)
            self._atomic_write(path, json.dumps(collection.default(), indent=2))
        return False

    @staticmethod
    def _parse(collection: Collection, raw: bytes) -> Any:
        # UnicodeDecodeError is a ValueError: undecodable bytes count as corruption.
        try:
            document = json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise StorageCorruptError(str(exc)) from exc
        if not isinstance(document, collection.document_type):
            raise StorageCorruptError(
                f"expected {collection.document_type.__name__}, got {type(document).__name__}"
            )
        return document

    def _shadow(self, collection: Collection, suffix: str) -> Path:
        path = self.path(collection)
        return path.with_name(f"{path.name}.{suffix}")

    def _preserve_corrupt(self, path: Path) -> None:
        target = path.with_name(f"{path.name}.corrupted-{epoch_ms()}")
        try:
            shutil.copyfile(path, target)
            log.info("Backed up corrupted file to %s", target.name)
        except OSError:
            log.exception("Failed to back up corrupted file %s", path.name)

    @staticmethod
    def _backup_current(path: Path) -> None:
        try:
            current = path.read_bytes()
        except FileNotFoundError:
            return
        except OSError:
            log.exception("Could not read %s for backup", path.name)
            return
        if current.strip():
            try:
                path.with_name(f"{path.name}.backup").write_bytes(current)
            except OSError:
                log.exception("Could not create backup of %s", path.name)

    @staticmethod
    def _atomic_write(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


class AutosaveTimer(threading.Thread):
    """Periodically shadows every collection; for crash recovery only."""

    def __init__(self, store: RecordStore, interval_seconds: float):
        super().__init__(name="autosave", daemon=True)
        self.store = store
        self.interval_seconds = interval_seconds
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval_seconds):
            try:
                written = self.store.snapshot()
                log.info("Auto-save completed (%d collections)", written)
            except Exception:
                log.exception("Auto-save error")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stopped.set()
        if self.is_alive():
            self.join(timeout)
