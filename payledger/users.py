import copy
import logging
from typing import Any, Optional

from .config import AdminSeed
from .exceptions import (
    AuthenticationError,
    DuplicateEmailError,
    ProtectedAdminError,
    RestrictedFieldError,
    UserNotFoundError,
)
from .models import Role, User, UserRecord, epoch_ms
from .storage import Collection, RecordStore

log = logging.getLogger(__name__)

RESTRICTED_FIELDS = frozenset({"id", "created", "createdBy"})


def _same_email(a: Any, b: str) -> bool:
    return isinstance(a, str) and a.lower() == b.lower()


class UserDirectory:
    """
    Users keyed by opaque id.

    Email uniqueness (case-insensitive) is checked at creation time only.
    Passwords are stored and compared as plain text.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def all(self) -> dict[str, UserRecord]:
        return self.store.load(Collection.USERS)

    def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        user = self.all().get(user_id)
        return copy.deepcopy(user) if user is not None else None

    def get(self, user_id: str) -> UserRecord:
        user = self.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def find_by_email(self, email: str) -> Optional[tuple[str, UserRecord]]:
        for user_id, user in self.all().items():
            if _same_email(user.get("email"), email):
                return user_id, copy.deepcopy(user)
        return None

    def require_by_email(self, email: str) -> tuple[str, UserRecord]:
        found = self.find_by_email(email or "")
        if found is None:
            raise UserNotFoundError(f'User with email "{email}" not found')
        return found

    def search(self, term: str = "") -> dict[str, UserRecord]:
        users = self.all()
        if not term:
            return users
        needle = term.lower()
        return {
            user_id: user for user_id, user in users.items()
            if needle in str(user.get("name", "")).lower()
            or needle in str(user.get("email", "")).lower()
            or needle in user_id.lower()
        }

    def create(self, candidate: User, *, id_prefix: str = "user_") -> str:
        with self.store.edit(Collection.USERS) as users:
            if any(_same_email(u.get("email"), candidate.email) for u in users.values()):
                raise DuplicateEmailError(f"Email {candidate.email} already exists")

            stamp = epoch_ms()
            user_id = f"{id_prefix}{stamp}"
            while user_id in users:
                stamp += 1
                user_id = f"{id_prefix}{stamp}"

            record = candidate.model_copy(update={"id": user_id, "email": candidate.email.lower()})
            users[user_id] = record.to_record()

        log.info("Created %s user %s", record.role, user_id)
        return user_id

    def update_field(self, user_id: str, field: str, value: Any) -> Any:
        """Overwrite one field without type checking; returns the previous value."""
        if field in RESTRICTED_FIELDS:
            raise RestrictedFieldError(f"Cannot update {field} field")
        with self.store.edit(Collection.USERS) as users:
            if user_id not in users:
                raise UserNotFoundError(f"User {user_id} not found")
            old_value = users[user_id].get(field)
            users[user_id][field] = value
        return old_value

    def delete(self, user_id: str, acting_admin_id: str) -> UserRecord:
        with self.store.edit(Collection.USERS) as users:
            user = users.get(user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            if user.get("role") == Role.ADMIN.value and user_id != acting_admin_id:
                raise ProtectedAdminError("Cannot delete other admins")
            del users[user_id]
        log.info("Deleted user %s (by %s)", user_id, acting_admin_id)
        return user

    def authenticate(self, email: str, password: str, *, role: Optional[Role] = None) -> tuple[str, UserRecord]:
        for user_id, user in self.all().items():
            if not _same_email(user.get("email"), email) or user.get("password") != password:
                continue
            if role is not None and user.get("role") != role.value:
                continue
            return user_id, user
        raise AuthenticationError("Invalid email or password")

    def seed_admins(self, seeds: list[AdminSeed]) -> list[str]:
        """Insert configured admins as admin001, admin002, ... when missing."""
        created = []
        with self.store.edit(Collection.USERS) as users:
            for index, seed in enumerate(seeds, start=1):
                admin_id = f"admin{index:03d}"
                if admin_id in users:
                    continue
                if any(_same_email(u.get("email"), seed.email) for u in users.values()):
                    log.warning("Skipping admin seed %s: email already registered", seed.email)
                    continue
                users[admin_id] = User(
                    id=admin_id,
                    name=seed.name,
                    email=seed.email.lower(),
                    password=seed.password,
                    balance=seed.balance,
                    role=Role.ADMIN,
                    activated=True,
                    admin_level="super",
                ).to_record()
                created.append(admin_id)
        if created:
            log.info("Seeded admin users: %s", ", ".join(created))
        return created
