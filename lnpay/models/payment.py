"""Payment model - settled payment records, append-only."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, ForeignKey, Numeric, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lnpay.database import Base


class Payment(Base):
    """
    Written once, in the transaction that moves an invoice into paid.
    invoice_id is unique so a second row cannot exist for the same invoice.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    invoice_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("lightning_invoices.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Settled amount (USD)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    payment_hash: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )

    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Gateway payload that triggered settlement
    raw_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.invoice_id}>"
