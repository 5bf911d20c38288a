"""
Status vocabularies and their transition tables.

Values are stored as plain strings in the database; these enums are the only
place the allowed values and moves between them are spelled out.
"""
from enum import Enum


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class SlotStatus(_StrEnum):
    AVAILABLE = "available"
    HELD = "held"
    BOOKED = "booked"
    CANCELLED = "cancelled"


class BookingSlotStatus(_StrEnum):
    PENDING = "pending"
    BOOKED = "booked"
    CANCELLED = "cancelled"


class BookingStatus(_StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in BOOKING_TRANSITIONS[self]


BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# statuses that count as a promotion "usage"
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.COMPLETED.value,
)


class BookingPaymentStatus(_StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentStatus(_StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in PAYMENT_TRANSITIONS[self]


PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


class PaymentMethod(_StrEnum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    EWALLET = "ewallet"
    CASH = "cash"


class FieldStatus(_StrEnum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class QuantityStatus(_StrEnum):
    AVAILABLE = "available"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class DiscountType(_StrEnum):
    PERCENT = "percent"
    FIXED = "fixed"


class PromotionStatus(_StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    EXPIRED = "expired"
    DISABLED = "disabled"


# statuses an owner may store; the rest are derived from the time window
STICKY_PROMOTION_STATUSES = {PromotionStatus.DRAFT, PromotionStatus.DISABLED}
SETTABLE_PROMOTION_STATUSES = {
    PromotionStatus.ACTIVE,
    PromotionStatus.DRAFT,
    PromotionStatus.DISABLED,
}


class WalletTransactionType(_StrEnum):
    CREDIT_SETTLEMENT = "credit_settlement"
    DEBIT_PAYOUT = "debit_payout"
    REFUND_PAYOUT = "refund_payout"
    DEBIT_REFUND = "debit_refund"

    @property
    def sign(self) -> int:
        if self in (WalletTransactionType.CREDIT_SETTLEMENT, WalletTransactionType.REFUND_PAYOUT):
            return 1
        return -1


class WalletTransactionStatus(_StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    REVERSED = "reversed"


class PayoutStatus(_StrEnum):
    REQUESTED = "requested"
    PAID = "paid"
    REJECTED = "rejected"
