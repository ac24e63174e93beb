import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

log = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_INTERVAL_SECONDS = 120
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_USER_COOKIE_MAX_AGE = 30 * 24 * 60 * 60
DEFAULT_ADMIN_COOKIE_MAX_AGE = 8 * 60 * 60


def _env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    value = default
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            log.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
            value = default
    if minimum is not None and value < minimum:
        return minimum
    return value


@dataclass
class AdminSeed:
    email: str
    password: str
    name: str = "Administrator"
    balance: float = 0.0


@dataclass
class Settings:
    data_dir: Path = Path("data")
    uploads_dir: Path = Path("uploads")
    autosave_interval_seconds: int = DEFAULT_AUTOSAVE_INTERVAL_SECONDS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    user_cookie_max_age: int = DEFAULT_USER_COOKIE_MAX_AGE
    admin_cookie_max_age: int = DEFAULT_ADMIN_COOKIE_MAX_AGE
    usdt_wallet_address: str = ""
    frontend_origin: Optional[str] = None
    log_level: str = "INFO"
    admin_seeds: list[AdminSeed] = field(default_factory=list)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path=env_file, override=False)
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            uploads_dir=Path(os.getenv("UPLOADS_DIR", "uploads")),
            autosave_interval_seconds=_env_int(
                "AUTOSAVE_INTERVAL_SECONDS", DEFAULT_AUTOSAVE_INTERVAL_SECONDS, minimum=1
            ),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES, minimum=1024),
            user_cookie_max_age=_env_int("USER_COOKIE_MAX_AGE", DEFAULT_USER_COOKIE_MAX_AGE, minimum=60),
            admin_cookie_max_age=_env_int("ADMIN_COOKIE_MAX_AGE", DEFAULT_ADMIN_COOKIE_MAX_AGE, minimum=60),
            usdt_wallet_address=os.getenv("USDT_WALLET_ADDRESS", ""),
            frontend_origin=os.getenv("FRONTEND_ORIGIN") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            admin_seeds=load_admin_seeds(),
        )


def load_admin_seeds() -> list[AdminSeed]:
    """
    Admin accounts to seed on startup.

    Reads ADMIN_EMAIL / ADMIN_PASSWORD (/ ADMIN_NAME) for a single admin and
    ADMIN_SEED_FILE for a JSON list of {email, password, name?, balance?}.
    Nothing is seeded when neither is configured.
    """
    seeds: list[AdminSeed] = []

    email = os.getenv("ADMIN_EMAIL", "").strip()
    password = os.getenv("ADMIN_PASSWORD", "")
    if email and password:
        seeds.append(AdminSeed(email=email, password=password,
                               name=os.getenv("ADMIN_NAME", "Administrator")))

    seed_file = os.getenv("ADMIN_SEED_FILE")
    if seed_file:
        try:
            entries = json.loads(Path(seed_file).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.exception("Could not read admin seed file %s", seed_file)
            entries = []
        if not isinstance(entries, list):
            log.error("Admin seed file %s must hold a JSON list, got %s", seed_file, type(entries).__name__)
            entries = []
        for entry in entries:
            seed = _seed_from_entry(entry)
            if seed is not None:
                seeds.append(seed)

    return seeds


def _seed_from_entry(entry) -> Optional[AdminSeed]:
    if not isinstance(entry, dict) or not entry.get("email") or not entry.get("password"):
        log.warning("Skipping admin seed without email/password")
        return None
    try:
        balance = float(entry.get("balance", 0) or 0)
    except (TypeError, ValueError):
        log.warning("Admin seed %s has a non-numeric balance %r, using 0", entry["email"], entry.get("balance"))
        balance = 0.0
    return AdminSeed(
        email=entry["email"],
        password=entry["password"],
        name=entry.get("name", "Administrator"),
        balance=balance,
    )
