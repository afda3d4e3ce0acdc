"""
Ledger and order payment enumerations.

Values are stored as-is (e.g. 'Pending'), matching what the POS client and
the summary view expect.
"""

import enum

from sqlalchemy import Enum


class TransactionType(str, enum.Enum):
    """Ledger entry direction."""
    DEBIT = "debit"  # Increases what the customer owes
    CREDIT = "credit"  # Decreases what the customer owes


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"
    REFUNDED = "Refunded"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    EASYPAISA = "EasyPaisa"
    JAZZCASH = "JazzCash"
    BANK = "Bank"
    CARD = "Card"
    ACCOUNT = "Account"  # Billed to the customer's ledger
    SPLIT = "Split"  # Several methods, see order_payment_transactions
    UNPAID = "Unpaid"


class BalanceKind(str, enum.Enum):
    """How a balance is presented to staff."""
    OUTSTANDING = "outstanding"  # Customer owes money
    CREDIT = "credit"  # Customer has paid in advance
    CLEAR = "clear"


# Methods a customer can pay with at the counter or when settling an account
CAPTURE_METHODS = (
    PaymentMethod.CASH,
    PaymentMethod.EASYPAISA,
    PaymentMethod.JAZZCASH,
    PaymentMethod.BANK,
    PaymentMethod.CARD,
)

UNPAID_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PARTIAL)


def value_enum(enum_cls) -> Enum:
    """Column type persisting enum values rather than member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=20,
    )
