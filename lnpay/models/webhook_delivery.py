"""WebhookDelivery model - processed gateway deliveries for idempotency."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from lnpay.database import Base


class WebhookDelivery(Base):
    """
    One row per successfully processed webhook delivery.
    Rows are only written after processing, so a failed delivery is retried.
    """

    __tablename__ = "webhook_deliveries"

    # Gateway delivery id (unique per delivery, reused on redelivery)
    delivery_id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )

    invoice_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    event_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # applied | unchanged | ignored
    outcome: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WebhookDelivery {self.delivery_id} {self.event_type} {self.outcome}>"
