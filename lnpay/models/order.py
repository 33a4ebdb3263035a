"""Order model - thin projection of an invoice for fulfillment."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from lnpay.database import Base
from lnpay.fsm.states import InvoiceStatus


class Order(Base):
    """
    Created in the same transaction as its invoice.
    status mirrors the invoice and is only written by the guarded transition.
    """

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    invoice_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("lightning_invoices.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.PENDING.value,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Set when fulfillment has been claimed for dispatch
    fulfillment_dispatched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_id} {self.status}>"
