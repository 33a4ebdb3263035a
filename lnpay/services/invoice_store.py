"""
Invoice Store - durable invoices, orders, payments and webhook deliveries.

Status changes only happen through `compare_and_set_status`, an
`UPDATE ... WHERE id = :id AND status = :expected`, so two writers can never
both move the same invoice out of the same status, even across processes.
In-process writers additionally serialize on a per-invoice lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from lnpay.errors import DuplicateOrderError
from lnpay.fsm.states import InvoiceStatus, TERMINAL_STATUSES
from lnpay.models.invoice import Invoice
from lnpay.models.order import Order
from lnpay.models.payment import Payment
from lnpay.models.webhook_delivery import WebhookDelivery

logger = logging.getLogger(__name__)


class KeyedLock:
    """One asyncio.Lock per key; entries are dropped once nobody holds or waits."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InvoiceStore:
    """Repository over the invoice tables. Each call runs in its own transaction."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker
        self._locks = KeyedLock()

    def locked(self, invoice_id: str):
        """Serialize writers of one invoice within this process."""
        return self._locks.hold(invoice_id)

    # --- Invoices -----------------------------------------------------

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        """Insert an invoice and its order atomically."""
        order = Order(
            order_id=invoice.order_id,
            invoice_id=invoice.id,
            amount=invoice.amount,
            status=invoice.status,
            created_at=invoice.created_at,
        )
        async with self.session_maker() as session:
            session.add(invoice)
            session.add(order)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.error(f"Invoice insert conflict for order {invoice.order_id}: {e.orig}")
                raise DuplicateOrderError(f"Order {invoice.order_id} already exists") from e
        return invoice

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        async with self.session_maker() as session:
            return await session.get(Invoice, invoice_id)

    async def order_id_exists(self, order_id: str) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Order.order_id).where(Order.order_id == order_id)
            )
            return result.scalar_one_or_none() is not None

    async def compare_and_set_status(
        self,
        invoice_id: str,
        expected: InvoiceStatus,
        new: InvoiceStatus,
        now: datetime,
        snapshot: Optional[Dict[str, Any]] = None,
        payment: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move `invoice_id` from `expected` to `new` if it is still `expected`.

        In the same transaction: mirrors the order status, stamps paid_at or
        cancelled_at (only if unset) and inserts the payment row if given.
        Returns False if another writer changed the status first.
        """
        values: Dict[str, Any] = {"status": new.value, "updated_at": now}
        if snapshot is not None:
            values["provider_snapshot"] = snapshot
        if new is InvoiceStatus.PAID:
            values["paid_at"] = func.coalesce(Invoice.paid_at, now)
        if new is InvoiceStatus.CANCELLED:
            values["cancelled_at"] = func.coalesce(Invoice.cancelled_at, now)

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Invoice)
                    .where(Invoice.id == invoice_id, Invoice.status == expected.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return False

                await session.execute(
                    update(Order)
                    .where(Order.invoice_id == invoice_id)
                    .values(status=new.value)
                    .execution_options(synchronize_session=False)
                )
                if payment is not None:
                    session.add(Payment(invoice_id=invoice_id, completed_at=now, **payment))
        return True

    async def update_snapshot(self, invoice_id: str, snapshot: Dict[str, Any], now: datetime) -> None:
        """Replace the provider snapshot without touching status."""
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Invoice)
                    .where(Invoice.id == invoice_id)
                    .values(provider_snapshot=snapshot, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

    async def list_invoices(
        self,
        offset: int,
        limit: int,
        status: Optional[InvoiceStatus] = None,
        customer_email: Optional[str] = None,
    ) -> Tuple[List[Invoice], int]:
        """Newest first. Returns one page and the total matching count."""
        filters = []
        if status is not None:
            filters.append(Invoice.status == status.value)
        if customer_email:
            filters.append(Invoice.customer_email == customer_email)

        async with self.session_maker() as session:
            total = await session.scalar(
                select(func.count()).select_from(Invoice).where(*filters)
            )
            result = await session.execute(
                select(Invoice)
                .where(*filters)
                .order_by(Invoice.created_at.desc(), Invoice.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), int(total or 0)

    async def status_totals(self, since: datetime) -> List[Tuple[str, int, Any]]:
        """(status, count, summed amount) for invoices created since `since`."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Invoice.status, func.count(), func.sum(Invoice.amount))
                .where(Invoice.created_at >= since)
                .group_by(Invoice.status)
            )
            return [tuple(row) for row in result.all()]

    async def list_open_invoice_ids(self, created_after: datetime, limit: int) -> List[str]:
        """Non-terminal invoices, oldest first."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Invoice.id)
                .where(
                    Invoice.status.not_in([s.value for s in TERMINAL_STATUSES]),
                    Invoice.created_at >= created_after,
                )
                .order_by(Invoice.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- Orders -------------------------------------------------------

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self.session_maker() as session:
            return await session.get(Order, order_id)

    async def claim_fulfillment(self, order_id: str, now: datetime) -> bool:
        """Mark an order as dispatched. Only the first claimant gets True."""
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(
                        Order.order_id == order_id,
                        Order.fulfillment_dispatched_at.is_(None),
                    )
                    .values(fulfillment_dispatched_at=now)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def release_fulfillment(self, order_id: str) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Order)
                    .where(Order.order_id == order_id)
                    .values(fulfillment_dispatched_at=None)
                    .execution_options(synchronize_session=False)
                )

    async def list_undispatched_paid_orders(self, paid_before: datetime, limit: int) -> List[Order]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Order)
                .join(Invoice, Invoice.id == Order.invoice_id)
                .where(
                    Order.status == InvoiceStatus.PAID.value,
                    Order.fulfillment_dispatched_at.is_(None),
                    Invoice.paid_at <= paid_before,
                )
                .limit(limit)
            )
            return list(result.scalars().all())

    # --- Payments -----------------------------------------------------

    async def get_payments(self, invoice_id: str) -> List[Payment]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Payment).where(Payment.invoice_id == invoice_id)
            )
            return list(result.scalars().all())

    # --- Webhook deliveries -------------------------------------------

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async with self.session_maker() as session:
            return await session.get(WebhookDelivery, delivery_id)

    async def record_delivery(self, delivery: WebhookDelivery) -> bool:
        """Insert a delivery record. False if it was already recorded."""
        async with self.session_maker() as session:
            session.add(delivery)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Delivery {delivery.delivery_id} already recorded")
                return False
        return True
