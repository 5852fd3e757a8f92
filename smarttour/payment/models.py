"""Settlement records and the monetary stores payments draw from."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from smarttour.catalog.models import enum_column


class PaymentMethod(str, Enum):
    EXTERNAL = "external"
    SAVINGS = "savings"
    VAULT = "vault"


class VaultMode(str, Enum):
    BALANCE = "balance"
    DEPOSIT = "deposit"


class SavingsTxnKind(str, Enum):
    DEPOSIT = "deposit"
    PAYMENT = "payment"


class Payment(SQLModel, table=True):
    """Immutable record of a successful settlement. Failures go to the audit trail only."""

    id: Optional[int] = Field(default=None, primary_key=True)
    tourist_id: int = Field(index=True)
    booking_id: Optional[int] = Field(default=None, foreign_key="booking.id", index=True)
    cart_id: Optional[int] = Field(default=None, foreign_key="cart.id", index=True)
    amount: float
    currency: str
    method: PaymentMethod = Field(sa_column=enum_column(PaymentMethod, nullable=False))
    reference: str = Field(unique=True, index=True)
    status: str = "successful"
    ledger_amount: Optional[float] = None
    ledger_unit: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, unique=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SavingsAccount(SQLModel, table=True):
    tourist_id: int = Field(primary_key=True)
    balance: float = 0.0
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SavingsTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tourist_id: int = Field(index=True)
    kind: SavingsTxnKind = Field(sa_column=enum_column(SavingsTxnKind, nullable=False))
    amount: float
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class VaultAccount(SQLModel, table=True):
    """
    Local mirror of a tourist's ledger balance (in ledger units).

    The ledger is authoritative; `synced_at` records when the mirror was last
    refreshed so callers can tell when it is stale.
    """

    tourist_id: int = Field(primary_key=True)
    wallet_address: Optional[str] = None
    balance: float = 0.0
    synced_at: Optional[datetime] = None
