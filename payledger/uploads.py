import logging
import re
import secrets
from pathlib import Path
from typing import Union

from fastapi import UploadFile

from .exceptions import UploadTooLargeError
from .models import epoch_ms

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(original: str) -> str:
    name = Path(original or "upload").name
    return _UNSAFE_CHARS.sub("_", name).strip("._") or "upload"


class UploadStore:
    """Evidence images on disk; submissions keep only the stored filename."""

    def __init__(self, uploads_dir: Union[str, Path], max_bytes: int):
        self.uploads_dir = Path(uploads_dir)
        self.max_bytes = max_bytes

    def save(self, upload: UploadFile) -> str:
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{epoch_ms()}-{secrets.randbelow(10**9)}-{safe_filename(upload.filename)}"
        target = self.uploads_dir / filename

        written = 0
        with target.open("wb") as out:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_bytes:
                    break
                out.write(chunk)

        if written > self.max_bytes:
            target.unlink(missing_ok=True)
            raise UploadTooLargeError(f"{upload.filename} exceeds the {self.max_bytes} byte limit")
        log.info("Stored upload %s (%d bytes)", filename, written)
        return filename

    def discard(self, *filenames: str) -> None:
        for filename in filenames:
            try:
                self.path_for(filename).unlink(missing_ok=True)
            except OSError:
                log.exception("Could not remove upload %s", filename)

    def path_for(self, filename: str) -> Path:
        return self.uploads_dir / Path(filename).name
