import pytest

from payledger.audit import AuditLog
from payledger.config import AdminSeed
from payledger.models import User
from payledger.service import LedgerService
from payledger.storage import RecordStore
from payledger.submissions import SubmissionWorkflow
from payledger.users import UserDirectory

ADMIN_SEED = AdminSeed(email="root@example.com", password="root-pass", name="Root Admin", balance=1000000.0)
OTHER_ADMIN_SEED = AdminSeed(email="ops@example.com", password="ops-pass", name="Ops Admin")


@pytest.fixture
def store(tmp_path):
    store = RecordStore(tmp_path / "data")
    store.initialize()
    return store


@pytest.fixture
def users(store):
    return UserDirectory(store)


@pytest.fixture
def audit(store):
    return AuditLog(store)


@pytest.fixture
def ledger(store, users, audit):
    return LedgerService(store, users, audit)


@pytest.fixture
def workflow(store, ledger):
    return SubmissionWorkflow(store, ledger, usdt_wallet_address="TTestWalletAddress")


@pytest.fixture
def admin_id(users):
    return users.seed_admins([ADMIN_SEED, OTHER_ADMIN_SEED])[0]


@pytest.fixture
def user_id(users):
    return users.create(User(name="Jane Doe", email="Jane@Example.com", password="hunter2"))
