import logging
import math
from typing import Any, Optional

from .audit import AuditLog
from .exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerServiceError,
    UserNotFoundError,
)
from .models import (
    ACTIVATION_FEE_RATE,
    ADMIN_PARTY,
    SYSTEM_PARTY,
    BalanceUpdate,
    PaymentMethod,
    Transaction,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
    UserRecord,
)
from .storage import Collection, RecordStore
from .users import UserDirectory

log = logging.getLogger(__name__)

ACTIVATION_PAYEE_NAME = "Activation"


def parse_amount(value: Any) -> float:
    if isinstance(value, bool):
        raise InvalidAmountError("Invalid amount. Please enter a positive number.")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidAmountError("Invalid amount. Please enter a positive number.") from None
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidAmountError("Invalid amount. Please enter a positive number.")
    return amount


def balance_of(user: UserRecord) -> float:
    try:
        return float(user.get("balance") or 0)
    except (TypeError, ValueError):
        raise LedgerServiceError(f"User {user.get('id')} has a non-numeric balance") from None


class LedgerService:
    """
    Balance mutations paired with transaction records.

    Balance is a stored field updated in lockstep with the transaction log, not
    derived from it. Users and transactions are two files written one after
    the other; a crash between the writes leaves them out of step.
    """

    def __init__(
        self,
        store: RecordStore,
        users: Optional[UserDirectory] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.store = store
        self.users = users or UserDirectory(store)
        self.audit = audit or AuditLog(store)

    # ------------------------------------------------------------------
    # admin balance adjustments
    # ------------------------------------------------------------------

    def credit(
        self,
        target_user_id: str,
        amount: Any,
        note: Optional[str],
        acting_admin_id: str,
        origin: Optional[str] = None,
    ) -> BalanceUpdate:
        amount_num = parse_amount(amount)
        admin_name = self._admin_name(acting_admin_id)

        with self.store.guard(Collection.USERS), self.store.guard(Collection.TRANSACTIONS):
            users = self.store.load(Collection.USERS)
            user = users.get(target_user_id)
            if user is None:
                raise UserNotFoundError(f"User {target_user_id} not found")

            old_balance = balance_of(user)
            user["balance"] = old_balance + amount_num

            transaction = Transaction(
                type=TransactionType.ADMIN_CREDIT,
                from_=ADMIN_PARTY,
                fromId=acting_admin_id,
                from_name=admin_name,
                to=target_user_id,
                to_name=user.get("name"),
                toEmail=user.get("email"),
                amount=amount_num,
                note=note or f"Admin credit by {admin_name}",
            ).to_record()
            self._persist(users, transaction)

        update = BalanceUpdate(
            user_id=target_user_id,
            old_balance=old_balance,
            new_balance=user["balance"],
            transaction=transaction,
        )
        log.info("Credited %.2f to %s (balance %.2f -> %.2f)",
                 amount_num, target_user_id, old_balance, update.new_balance)
        self._audit_adjustment("add_balance", acting_admin_id, user, update, note, origin)
        return update

    def debit(
        self,
        target_user_id: str,
        amount: Any,
        note: Optional[str],
        acting_admin_id: str,
        origin: Optional[str] = None,
    ) -> BalanceUpdate:
        amount_num = parse_amount(amount)
        admin_name = self._admin_name(acting_admin_id)

        with self.store.guard(Collection.USERS), self.store.guard(Collection.TRANSACTIONS):
            users = self.store.load(Collection.USERS)
            user = users.get(target_user_id)
            if user is None:
                raise UserNotFoundError(f"User {target_user_id} not found")

            old_balance = balance_of(user)
            if old_balance < amount_num:
                raise InsufficientBalanceError(old_balance, amount_num)
            user["balance"] = old_balance - amount_num

            transaction = Transaction(
                type=TransactionType.ADMIN_DEBIT,
                from_=target_user_id,
                from_name=user.get("name"),
                fromEmail=user.get("email"),
                to=ADMIN_PARTY,
                toId=acting_admin_id,
                to_name=admin_name,
                amount=amount_num,
                note=note or f"Admin debit by {admin_name}",
            ).to_record()
            self._persist(users, transaction)

        update = BalanceUpdate(
            user_id=target_user_id,
            old_balance=old_balance,
            new_balance=user["balance"],
            transaction=transaction,
        )
        log.info("Debited %.2f from %s (balance %.2f -> %.2f)",
                 amount_num, target_user_id, old_balance, update.new_balance)
        self._audit_adjustment("deduct_balance", acting_admin_id, user, update, note, origin)
        return update

    # ------------------------------------------------------------------
    # activation fees
    # ------------------------------------------------------------------

    @staticmethod
    def activation_fee(user: UserRecord) -> float:
        return balance_of(user) * ACTIVATION_FEE_RATE

    def record_activation_fee(
        self,
        user_id: str,
        amount: float,
        method: PaymentMethod,
        evidence: Optional[dict[str, Any]] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        note: Optional[str] = None,
    ) -> TransactionRecord:
        """Append an activation_fee transaction. The balance is not touched."""
        method = PaymentMethod(method)
        user = self.users.get(user_id)
        transaction = Transaction(
            type=TransactionType.ACTIVATION_FEE,
            from_=user_id,
            from_name=user.get("name"),
            to=SYSTEM_PARTY,
            to_name=ACTIVATION_PAYEE_NAME,
            amount=amount,
            note=note or f"Activation fee via {method.value}",
            payment_method=method,
            status=status,
            **(evidence or {}),
        ).to_record()

        with self.store.edit(Collection.TRANSACTIONS) as transactions:
            transactions.append(transaction)
        return transaction

    def settle_activation_fee(
        self,
        user_id: str,
        method: PaymentMethod,
        transaction_id: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        """
        Complete an activation fee paid with a method that needs no review.

        USDT and card payments flip the fee transaction to completed and
        activate the user right away. Gift cards stay pending until a
        submission is approved, so nothing happens here for them.
        """
        method = PaymentMethod(method)
        if not method.settles_immediately:
            return None

        with self.store.guard(Collection.USERS), self.store.guard(Collection.TRANSACTIONS):
            users = self.store.load(Collection.USERS)
            if user_id not in users:
                raise UserNotFoundError(f"User {user_id} not found")
            transactions = self.store.load(Collection.TRANSACTIONS)

            transaction = self._find_pending_fee(transactions, user_id, method, transaction_id)
            if transaction is not None:
                transaction["status"] = TransactionStatus.COMPLETED.value
            users[user_id]["activated"] = True

            self.store.save(Collection.TRANSACTIONS, transactions)
            self.store.save(Collection.USERS, users)

        log.info("Activation fee via %s settled for %s", method.value, user_id)
        return transaction

    def confirm_gift_card_fee(
        self,
        user_id: str,
        transaction_id: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        """
        Activate the user and complete their pending gift-card fee.

        With a transaction id only that transaction is completed. Without one
        (submissions stored before fees were linked) the user's first pending
        gift-card fee is used.
        """
        with self.store.guard(Collection.USERS), self.store.guard(Collection.TRANSACTIONS):
            users = self.store.load(Collection.USERS)
            if user_id in users:
                users[user_id]["activated"] = True
            else:
                log.warning("Approving gift card for unknown user %s", user_id)

            transactions = self.store.load(Collection.TRANSACTIONS)
            transaction = next(
                (t for t in transactions
                 if t.get("from") == user_id
                 and t.get("paymentMethod") == PaymentMethod.GIFTCARD.value
                 and t.get("status") == TransactionStatus.PENDING.value
                 and (transaction_id is None or t.get("id") == transaction_id)),
                None,
            )
            if transaction is None and transaction_id is not None:
                log.warning("Fee transaction %s for %s is missing or not pending", transaction_id, user_id)
            if transaction is not None:
                transaction["status"] = TransactionStatus.COMPLETED.value
                transaction["note"] = "Gift card payment approved by admin"

            self.store.save(Collection.USERS, users)
            self.store.save(Collection.TRANSACTIONS, transactions)
        return transaction

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def history(self, user_id: str) -> list[TransactionRecord]:
        transactions = [
            t for t in reversed(self.store.load(Collection.TRANSACTIONS))
            if user_id in (t.get("from"), t.get("to"), t.get("fromId"), t.get("toId"))
        ]
        # Stable sort: equal timestamps keep newest-appended first.
        transactions.sort(key=lambda t: t.get("timestamp", ""), reverse=True)
        return transactions

    def recent(self, limit: int = 50) -> list[TransactionRecord]:
        transactions = self.store.load(Collection.TRANSACTIONS)
        return list(reversed(transactions[-limit:])) if limit > 0 else []

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _persist(self, users: dict, transaction: TransactionRecord) -> None:
        with self.store.edit(Collection.TRANSACTIONS) as transactions:
            transactions.append(transaction)
        self.store.save(Collection.USERS, users)

    def _admin_name(self, admin_id: str) -> str:
        admin = self.users.find_by_id(admin_id)
        return admin.get("name", admin_id) if admin else admin_id

    @staticmethod
    def _find_pending_fee(
        transactions: list,
        user_id: str,
        method: PaymentMethod,
        transaction_id: Optional[str],
    ) -> Optional[TransactionRecord]:
        if transaction_id is not None:
            return next((t for t in transactions if t.get("id") == transaction_id), None)
        for transaction in reversed(transactions):
            if (transaction.get("type") == TransactionType.ACTIVATION_FEE.value
                    and transaction.get("from") == user_id
                    and transaction.get("paymentMethod") == method.value
                    and transaction.get("status") == TransactionStatus.PENDING.value):
                return transaction
        return None

    def _audit_adjustment(
        self,
        action: str,
        acting_admin_id: str,
        user: UserRecord,
        update: BalanceUpdate,
        note: Optional[str],
        origin: Optional[str],
    ) -> None:
        self.audit.record(action, acting_admin_id, {
            "targetUser": update.user_id,
            "targetUserName": user.get("name"),
            "targetUserEmail": user.get("email"),
            "amount": update.transaction["amount"],
            "oldBalance": update.old_balance,
            "newBalance": update.new_balance,
            "note": note,
        }, origin)
