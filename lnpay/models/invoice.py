"""Invoice model - one row per gateway invoice, keyed by the gateway id."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, Numeric, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from lnpay.database import Base
from lnpay.fsm.states import InvoiceStatus


class Invoice(Base):
    """
    Lightning invoice issued through the payment gateway.
    amount is fixed at creation; status only moves forward.
    """

    __tablename__ = "lightning_invoices"

    # Gateway-assigned invoice id
    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    # Locally generated order reference (ORD-...)
    order_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="USD",
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # BOLT11 payment request
    payment_request: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Hosted checkout page
    checkout_link: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    customer_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Last known gateway payload plus metadata of the last applied event
    provider_snapshot: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.order_id} {self.status}>"

    @property
    def current_status(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status.is_terminal
