import logging
from typing import Optional

from .audit import AuditLog
from .exceptions import (
    InvalidStateTransitionError,
    MissingEvidenceError,
    SubmissionNotFoundError,
)
from .models import (
    CardPaymentRequest,
    PaymentMethod,
    Submission,
    SubmissionRecord,
    SubmissionStatus,
    TransactionRecord,
    TransactionStatus,
    utc_now_iso,
)
from .service import LedgerService
from .storage import Collection, RecordStore

log = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class SubmissionWorkflow:
    """
    Activation payments and their admin disposition.

    Gift-card submissions start pending and move to approved or rejected
    exactly once. USDT and card payments are settled on submission and are
    recorded as already approved.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: Optional[LedgerService] = None,
        audit: Optional[AuditLog] = None,
        usdt_wallet_address: str = "",
    ):
        self.store = store
        self.ledger = ledger or LedgerService(store)
        self.audit = audit or self.ledger.audit
        self.users = self.ledger.users
        self.usdt_wallet_address = usdt_wallet_address

    # ------------------------------------------------------------------
    # user-facing payments
    # ------------------------------------------------------------------

    def submit_gift_card(
        self,
        user_id: str,
        front_image: Optional[str],
        back_image: Optional[str],
        origin: Optional[str] = None,
    ) -> tuple[SubmissionRecord, TransactionRecord]:
        if not front_image or not back_image:
            raise MissingEvidenceError("Both images are required")

        user = self.users.get(user_id)
        fee = self.ledger.activation_fee(user)
        images = {"front": front_image, "back": back_image}

        transaction = self.ledger.record_activation_fee(
            user_id, fee, PaymentMethod.GIFTCARD,
            evidence={"images": images},
            status=TransactionStatus.PENDING,
            note="Activation fee via gift card (pending verification)",
        )
        submission = Submission(
            user_id=user_id,
            user_name=user.get("name", ""),
            user_email=user.get("email", ""),
            activation_fee=fee,
            payment_method=PaymentMethod.GIFTCARD,
            fee_transaction_id=transaction["id"],
            images=images,
            ip=origin or "127.0.0.1",
        ).to_record()
        with self.store.edit(Collection.GIFT_CARD_SUBMISSIONS) as submissions:
            submissions.append(submission)

        self._audit_payment(user, fee, PaymentMethod.GIFTCARD, SubmissionStatus.PENDING,
                            {"images": images}, origin)
        return submission, transaction

    def submit_usdt(
        self,
        user_id: str,
        transaction_id: str,
        origin: Optional[str] = None,
    ) -> tuple[SubmissionRecord, TransactionRecord]:
        if not transaction_id:
            raise MissingEvidenceError("Transaction ID is required")
        evidence = {"transactionId": transaction_id, "walletAddress": self.usdt_wallet_address}
        return self._settle_now(
            user_id, PaymentMethod.USDT, evidence,
            note=f"Activation fee via USDT (TXID: {transaction_id})",
            origin=origin,
        )

    def submit_card(
        self,
        user_id: str,
        card: CardPaymentRequest,
        origin: Optional[str] = None,
    ) -> tuple[SubmissionRecord, TransactionRecord]:
        # Only the holder, masked number and expiry are kept; the CVV never is.
        evidence = {"card": {
            "holder": card.cardholder_name,
            "number": card.masked_number(),
            "expiry": card.expiry,
        }}
        return self._settle_now(
            user_id, PaymentMethod.CARD, evidence,
            note=f"Activation fee via card ({card.masked_number()})",
            origin=origin,
        )

    # ------------------------------------------------------------------
    # admin disposition
    # ------------------------------------------------------------------

    def approve(
        self,
        submission_id: str,
        acting_admin_id: str,
        origin: Optional[str] = None,
    ) -> SubmissionRecord:
        with self.store.guard(Collection.GIFT_CARD_SUBMISSIONS):
            submissions = self.store.load(Collection.GIFT_CARD_SUBMISSIONS)
            submission = self._resolvable(submissions, submission_id)

            submission["status"] = SubmissionStatus.APPROVED.value
            submission["approvedBy"] = acting_admin_id
            submission["approvedAt"] = utc_now_iso()

            self.store.save(Collection.GIFT_CARD_SUBMISSIONS, submissions)
            self.ledger.confirm_gift_card_fee(submission.get("userId"), submission.get("feeTransactionId"))

        self.audit.record("approve_giftcard", acting_admin_id, {
            "userId": submission.get("userId"),
            "userName": submission.get("userName"),
            "amount": submission.get("activationFee"),
            "submissionId": submission_id,
        }, origin)
        log.info("Gift card submission %s approved by %s", submission_id, acting_admin_id)
        return submission

    def reject(
        self,
        submission_id: str,
        reason: Optional[str],
        acting_admin_id: str,
        origin: Optional[str] = None,
    ) -> SubmissionRecord:
        with self.store.edit(Collection.GIFT_CARD_SUBMISSIONS) as submissions:
            submission = self._resolvable(submissions, submission_id)
            submission["status"] = SubmissionStatus.REJECTED.value
            submission["rejectedBy"] = acting_admin_id
            submission["rejectedAt"] = utc_now_iso()
            submission["rejectionReason"] = reason or "No reason provided"

        self.audit.record("reject_giftcard", acting_admin_id, {
            "userId": submission.get("userId"),
            "userName": submission.get("userName"),
            "reason": reason,
            "submissionId": submission_id,
        }, origin)
        log.info("Gift card submission %s rejected by %s", submission_id, acting_admin_id)
        return submission

    def recent(self, limit: int = 50) -> list[SubmissionRecord]:
        submissions = self.store.load(Collection.GIFT_CARD_SUBMISSIONS)
        return list(reversed(submissions[-limit:])) if limit > 0 else []

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolvable(submissions: list, submission_id: str) -> SubmissionRecord:
        # The key may be a submission timestamp or a user id.
        matches = [
            s for s in submissions
            if s.get("timestamp") == submission_id or s.get("userId") == submission_id
        ]
        if not matches:
            raise SubmissionNotFoundError("Submission not found")
        # Stored records are not validated; older ones may lack fields.
        for candidate in matches:
            if candidate.get("status") == SubmissionStatus.PENDING.value:
                return candidate
        raise InvalidStateTransitionError(
            f"Submission {submission_id} is already {matches[0].get('status')}"
        )

    def _settle_now(
        self,
        user_id: str,
        method: PaymentMethod,
        evidence: dict,
        note: str,
        origin: Optional[str],
    ) -> tuple[SubmissionRecord, TransactionRecord]:
        user = self.users.get(user_id)
        fee = self.ledger.activation_fee(user)

        transaction = self.ledger.record_activation_fee(
            user_id, fee, method, evidence=evidence,
            status=TransactionStatus.PENDING, note=note,
        )
        transaction = self.ledger.settle_activation_fee(user_id, method, transaction["id"]) or transaction

        now = utc_now_iso()
        submission = Submission(
            user_id=user_id,
            user_name=user.get("name", ""),
            user_email=user.get("email", ""),
            activation_fee=fee,
            payment_method=method,
            status=SubmissionStatus.APPROVED,
            timestamp=now,
            approved_by=SYSTEM_ACTOR,
            approved_at=now,
            ip=origin or "127.0.0.1",
            **evidence,
        ).to_record()
        with self.store.edit(Collection.PAYMENT_SUBMISSIONS) as submissions:
            submissions.append(submission)

        self._audit_payment(user, fee, method, TransactionStatus.COMPLETED, evidence, origin)
        return submission, transaction

    def _audit_payment(self, user, fee, method, status, evidence, origin) -> None:
        self.audit.record("activation_payment", SYSTEM_ACTOR, {
            "userId": user.get("id"),
            "userName": user.get("name"),
            "userEmail": user.get("email"),
            "amount": fee,
            "method": method.value,
            "status": status.value,
            **evidence,
        }, origin)
