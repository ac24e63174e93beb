import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Persisted records stay plain JSON documents; these aliases document intent.
UserRecord = dict[str, Any]
TransactionRecord = dict[str, Any]
SubmissionRecord = dict[str, Any]

ADMIN_PARTY = "ADMIN"
SYSTEM_PARTY = "system"
ACTIVATION_FEE_RATE = 0.02


def utc_now_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def epoch_ms() -> int:
    return int(time.time() * 1000)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class TransactionType(str, Enum):
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"
    ACTIVATION_FEE = "activation_fee"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    GIFTCARD = "giftcard"
    USDT = "usdt"
    CARD = "card"

    @property
    def settles_immediately(self) -> bool:
        return self in (PaymentMethod.USDT, PaymentMethod.CARD)


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Record(BaseModel):
    """Base for documents written to the record store (camelCase on disk)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
    )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(Record):
    id: str = ""
    name: str
    email: str
    password: str
    balance: float = 0.0
    role: Role = Role.USER
    status: str = "active"
    activated: bool = False
    created: str = Field(default_factory=utc_now_iso)
    created_by: Optional[str] = None
    admin_level: Optional[str] = None


class Transaction(Record):
    id: str = Field(default_factory=lambda: uuid4().hex)
    type: TransactionType
    from_: str = Field(alias="from")
    to: str
    from_name: Optional[str] = None
    to_name: Optional[str] = None
    amount: float
    note: str = ""
    timestamp: str = Field(default_factory=utc_now_iso)
    status: Optional[TransactionStatus] = None
    payment_method: Optional[PaymentMethod] = None


class AdminLogEntry(Record):
    action: str
    admin_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)
    ip: str = "127.0.0.1"


class Submission(Record):
    user_id: str
    user_name: str = ""
    user_email: str = ""
    activation_fee: float = 0.0
    payment_method: PaymentMethod = PaymentMethod.GIFTCARD
    status: SubmissionStatus = SubmissionStatus.PENDING
    timestamp: str = Field(default_factory=utc_now_iso)
    ip: str = "127.0.0.1"
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    fee_transaction_id: Optional[str] = None


class BalanceUpdate(BaseModel):
    user_id: str
    old_balance: float
    new_balance: float
    transaction: dict


# ---------- Requests ----------

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class BalanceAdjustRequest(BaseModel):
    email: str
    amount: Any = Field(..., description="Parsed as a positive finite number")
    note: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"email": "jane@example.com", "amount": 500, "note": "Welcome bonus"}
    })


class UpdateUserRequest(BaseModel):
    email: str
    field: str
    value: Any = None


class CreateUserRequest(BaseModel):
    name: str
    email: str
    password: str
    initial_balance: Any = Field(default=0, alias="initialBalance")
    role: Role = Role.USER

    model_config = ConfigDict(populate_by_name=True)


class DeleteUserRequest(BaseModel):
    email: str


class SubmissionActionRequest(BaseModel):
    submission_id: str = Field(..., alias="submissionId")
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class UsdtPaymentRequest(BaseModel):
    transaction_id: str = Field(default="", alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)


class CardPaymentRequest(BaseModel):
    cardholder_name: str = Field(..., alias="cardholderName", min_length=1)
    card_number: str = Field(..., alias="cardNumber", min_length=12)
    expiry: str = Field(..., min_length=4)
    cvv: str = Field(..., min_length=3, max_length=4)

    model_config = ConfigDict(populate_by_name=True)

    def masked_number(self) -> str:
        digits = "".join(ch for ch in self.card_number if ch.isdigit())
        return f"**** **** **** {digits[-4:]}"
