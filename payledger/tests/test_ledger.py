"""
Unit Tests for the Ledger Service

Tests cover:
1. Admin credit flow
2. Admin debit flow and insufficient balance
3. Amount validation
4. Activation fee recording and settlement
5. Audit trail side effects
"""

import pytest

from payledger.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    UserNotFoundError,
)
from payledger.models import PaymentMethod, TransactionStatus, TransactionType, User
from payledger.storage import Collection


def _transactions(store):
    return store.load(Collection.TRANSACTIONS)


class TestCreditFlow:
    """Tests for admin credits."""

    def test_credit_success(self, ledger, store, users, user_id, admin_id):
        """Test that a credit raises the balance and appends one transaction."""
        update = ledger.credit(user_id, 500, "Welcome bonus", admin_id)

        # Verify balance
        assert update.old_balance == 0.0
        assert update.new_balance == 500.0
        assert users.get(user_id)["balance"] == 500.0

        # Verify transaction
        transactions = _transactions(store)
        assert len(transactions) == 1
        transaction = transactions[0]
        assert transaction["type"] == TransactionType.ADMIN_CREDIT.value
        assert transaction["amount"] == 500.0
        assert transaction["from"] == "ADMIN"
        assert transaction["fromId"] == admin_id
        assert transaction["fromName"] == "Root Admin"
        assert transaction["to"] == user_id
        assert transaction["toEmail"] == "jane@example.com"
        assert transaction["note"] == "Welcome bonus"
        assert transaction == update.transaction

    def test_credit_accepts_numeric_strings(self, ledger, user_id, admin_id):
        """Test that amounts are parsed like form input."""
        update = ledger.credit(user_id, "12.50", None, admin_id)

        assert update.new_balance == 12.5
        assert update.transaction["note"] == "Admin credit by Root Admin"

    def test_credits_accumulate(self, ledger, user_id, admin_id):
        """Test that successive credits add up."""
        ledger.credit(user_id, 100, None, admin_id)
        update = ledger.credit(user_id, 200, None, admin_id)

        assert update.old_balance == 100.0
        assert update.new_balance == 300.0

    @pytest.mark.parametrize("amount", ["abc", "", None, 0, -5, "nan", "inf", True])
    def test_invalid_amount_rejected(self, ledger, store, users, user_id, admin_id, amount):
        """Test that non-positive or non-finite amounts change nothing."""
        with pytest.raises(InvalidAmountError):
            ledger.credit(user_id, amount, None, admin_id)

        assert _transactions(store) == []
        assert users.get(user_id)["balance"] == 0.0

    def test_credit_unknown_user(self, ledger, store, admin_id):
        """Test that crediting a missing user fails cleanly."""
        with pytest.raises(UserNotFoundError):
            ledger.credit("user_0", 10, None, admin_id)

        assert _transactions(store) == []


class TestDebitFlow:
    """Tests for admin debits."""

    def test_debit_success(self, ledger, store, user_id, admin_id):
        """Test that a debit lowers the balance and records the counterparty."""
        ledger.credit(user_id, 100, None, admin_id)

        update = ledger.debit(user_id, 40, "Correction", admin_id)

        assert update.new_balance == 60.0
        transaction = _transactions(store)[-1]
        assert transaction["type"] == TransactionType.ADMIN_DEBIT.value
        assert transaction["from"] == user_id
        assert transaction["to"] == "ADMIN"
        assert transaction["toId"] == admin_id
        assert transaction["amount"] == 40.0

    def test_debit_of_entire_balance(self, ledger, user_id, admin_id):
        """Test that the full balance may be debited."""
        ledger.credit(user_id, 75, None, admin_id)

        assert ledger.debit(user_id, 75, None, admin_id).new_balance == 0.0

    def test_insufficient_balance(self, ledger, store, users, user_id, admin_id):
        """Test that overdrawing fails and leaves everything untouched."""
        ledger.credit(user_id, 50, None, admin_id)
        before = _transactions(store)

        with pytest.raises(InsufficientBalanceError):
            ledger.debit(user_id, 50.01, None, admin_id)

        assert _transactions(store) == before
        assert users.get(user_id)["balance"] == 50.0

    def test_debit_validates_amount(self, ledger, user_id, admin_id):
        """Test that debits reject invalid amounts too."""
        with pytest.raises(InvalidAmountError):
            ledger.debit(user_id, "-1", None, admin_id)

    def test_balance_reconciles_with_transactions(self, ledger, store, users, user_id, admin_id):
        """Test that credits minus debits match the stored balance."""
        ledger.credit(user_id, 100, None, admin_id)
        ledger.credit(user_id, 250, None, admin_id)
        ledger.debit(user_id, 30, None, admin_id)
        with pytest.raises(InsufficientBalanceError):
            ledger.debit(user_id, 1000, None, admin_id)

        transactions = _transactions(store)
        credits = sum(t["amount"] for t in transactions if t["type"] == "admin_credit")
        debits = sum(t["amount"] for t in transactions if t["type"] == "admin_debit")
        assert credits - debits == users.get(user_id)["balance"] == 320.0


class TestAuditTrail:
    """Tests for audit entries written by balance changes."""

    def test_credit_is_audited(self, ledger, audit, user_id, admin_id):
        """Test that an add_balance entry carries old and new balances."""
        ledger.credit(user_id, 20, "Promo", admin_id, origin="10.0.0.7")

        entry = audit.recent(1)[0]
        assert entry["action"] == "add_balance"
        assert entry["adminId"] == admin_id
        assert entry["ip"] == "10.0.0.7"
        assert entry["details"]["oldBalance"] == 0.0
        assert entry["details"]["newBalance"] == 20.0
        assert entry["details"]["targetUser"] == user_id

    def test_audit_failure_does_not_block_credit(self, ledger, users, user_id, admin_id):
        """Test that a broken audit log never fails the primary operation."""
        class BrokenStore:
            def edit(self, collection):
                raise OSError("disk full")

        ledger.audit.store = BrokenStore()

        update = ledger.credit(user_id, 5, None, admin_id)

        assert update.new_balance == 5.0
        assert users.get(user_id)["balance"] == 5.0
        assert ledger.audit.record("noop", admin_id) is False


class TestActivationFees:
    """Tests for activation fee recording and settlement."""

    def test_fee_is_two_percent_of_balance(self, ledger, users, user_id, admin_id):
        """Test the activation fee formula."""
        ledger.credit(user_id, 500, None, admin_id)

        assert ledger.activation_fee(users.get(user_id)) == 10.0

    def test_record_does_not_touch_balance(self, ledger, store, users, user_id, admin_id):
        """Test that recording a fee leaves the balance alone."""
        ledger.credit(user_id, 500, None, admin_id)

        transaction = ledger.record_activation_fee(
            user_id, 10.0, PaymentMethod.GIFTCARD, evidence={"images": {"front": "f", "back": "b"}},
        )

        assert users.get(user_id)["balance"] == 500.0
        assert transaction["type"] == "activation_fee"
        assert transaction["to"] == "system"
        assert transaction["status"] == "pending"
        assert transaction["paymentMethod"] == "giftcard"
        assert transaction["images"] == {"front": "f", "back": "b"}
        assert _transactions(store)[-1] == transaction

    def test_usdt_settles_immediately(self, ledger, store, users, user_id):
        """Test that USDT fees complete and activate right away."""
        recorded = ledger.record_activation_fee(user_id, 0.0, PaymentMethod.USDT)

        settled = ledger.settle_activation_fee(user_id, PaymentMethod.USDT)

        assert settled["id"] == recorded["id"]
        assert settled["status"] == TransactionStatus.COMPLETED.value
        assert _transactions(store)[-1]["status"] == "completed"
        assert users.get(user_id)["activated"] is True

    def test_gift_card_is_deferred(self, ledger, store, users, user_id):
        """Test that gift card fees wait for approval."""
        ledger.record_activation_fee(user_id, 0.0, PaymentMethod.GIFTCARD)

        assert ledger.settle_activation_fee(user_id, PaymentMethod.GIFTCARD) is None
        assert _transactions(store)[-1]["status"] == "pending"
        assert users.get(user_id)["activated"] is False


class TestHistory:
    """Tests for transaction reads."""

    def test_history_only_includes_own_transactions(self, ledger, users, user_id, admin_id):
        """Test that a user's history covers both directions, newest first."""
        other_id = users.create(User(name="Other", email="other@example.com", password="pw"))
        ledger.credit(user_id, 100, "first", admin_id)
        ledger.credit(other_id, 100, None, admin_id)
        ledger.debit(user_id, 10, "second", admin_id)

        history = ledger.history(user_id)

        assert [t["note"] for t in history] == ["second", "first"]

    def test_recent_is_newest_first(self, ledger, user_id, admin_id):
        """Test that recent() returns the last N in reverse order."""
        for n in range(3):
            ledger.credit(user_id, n + 1, f"n{n}", admin_id)

        assert [t["note"] for t in ledger.recent(2)] == ["n2", "n1"]
