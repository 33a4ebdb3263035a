"""
Invoice Service - Lightning invoice lifecycle.

Creation, status refresh (poll path), cancellation, listing and statistics.
Every status change, whether it comes from a poll, a webhook or a
cancellation, goes through `apply_status`.
"""

import logging
import math
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from lnpay.errors import (
    GatewayError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from lnpay.fsm.machine import TransitionResult, can_transition
from lnpay.fsm.mapper import map_gateway_status
from lnpay.fsm.states import InvoiceStatus, StatsTimeframe
from lnpay.models.invoice import Invoice
from lnpay.services.fulfillment_service import FulfillmentNotifier, build_fulfillment_notifier
from lnpay.services.gateway import GatewayClient, build_gateway_client
from lnpay.services.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)

MIN_AMOUNT = Decimal("20")
MAX_AMOUNT = Decimal("100")
CENT = Decimal("0.01")
DEFAULT_DESCRIPTION = "Lightning payment"
MAX_PAGE_SIZE = 100
ORDER_ID_ATTEMPTS = 3

TIMEFRAME_WINDOWS = {
    StatsTimeframe.DAY: timedelta(days=1),
    StatsTimeframe.WEEK: timedelta(days=7),
    StatsTimeframe.MONTH: timedelta(days=30),
}

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_id(now: datetime) -> str:
    """ORD-<epoch ms>-<9 random base36 chars>. Uniqueness is enforced on insert."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ORD-{int(now.timestamp() * 1000)}-{suffix}"


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


class InvoiceService:
    """Lifecycle manager for Lightning invoices."""

    def __init__(
        self,
        store: InvoiceStore,
        gateway: GatewayClient,
        fulfillment: FulfillmentNotifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.clock = clock

    # --- Creation -----------------------------------------------------

    async def create_invoice(
        self,
        amount: Any,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a Lightning invoice.

        1. Validate amount ($20-$100)
        2. Generate a unique order id
        3. Create the invoice on the gateway
        4. Persist invoice + order as pending

        Nothing is persisted unless the gateway confirmed the invoice.
        """
        amount = self.validate_amount(amount)
        description = (description or "").strip() or DEFAULT_DESCRIPTION
        customer_email = (customer_email or "").strip() or None

        now = self.clock()
        order_id = await self._new_order_id(now)

        gateway_invoice = await self.gateway.create_invoice(
            amount=amount,
            description=description,
            order_id=order_id,
            customer_email=customer_email,
        )

        invoice = Invoice(
            id=gateway_invoice.id,
            order_id=order_id,
            amount=amount,
            currency="USD",
            description=description,
            status=InvoiceStatus.PENDING.value,
            payment_request=gateway_invoice.payment_request,
            checkout_link=gateway_invoice.checkout_link,
            customer_email=customer_email,
            provider_snapshot={"created": gateway_invoice.raw},
            created_at=now,
            updated_at=now,
            expires_at=gateway_invoice.expires_at,
        )
        await self.store.insert_invoice(invoice)

        logger.info(
            f"Lightning invoice created: {invoice.id} order {order_id} ${amount}",
            extra={"invoice_id": invoice.id, "order_id": order_id, "amount": str(amount)},
        )
        return self.public_view(invoice)

    @staticmethod
    def validate_amount(amount: Any) -> Decimal:
        if isinstance(amount, bool):
            raise ValidationError("Amount must be a number")
        value = _to_decimal(amount)
        if value is None:
            raise ValidationError("Amount must be a number")
        if value < MIN_AMOUNT or value > MAX_AMOUNT:
            raise ValidationError("Amount must be between $20 and $100")
        if value != value.quantize(CENT):
            raise ValidationError("Amount must have at most two decimal places")
        return value.quantize(CENT)

    async def _new_order_id(self, now: datetime) -> str:
        for _ in range(ORDER_ID_ATTEMPTS):
            order_id = generate_order_id(now)
            if not await self.store.order_id_exists(order_id):
                return order_id
            logger.warning(f"Order id collision: {order_id}")
        raise InternalError("Could not allocate a unique order id")

    # --- Guarded transition -------------------------------------------

    async def apply_status(
        self,
        invoice_id: str,
        new_status: InvoiceStatus,
        metadata: Optional[Dict[str, Any]] = None,
        source: str = "manual",
        paid_amount: Any = None,
        payment_hash: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move an invoice to `new_status` if the state machine allows it.

        Illegal or stale requests (terminal current status, backwards move,
        same status) are logged and ignored. The transition into paid also
        records the single payment row and, after commit, notifies
        fulfillment. Only the call that performed the transition notifies.
        """
        new_status = InvoiceStatus(new_status)

        async with self.store.locked(invoice_id):
            invoice = await self._require(invoice_id)
            current = invoice.current_status

            if not can_transition(current, new_status):
                logger.warning(
                    f"Ignored transition {current.value} -> {new_status.value} "
                    f"for invoice {invoice_id} (source: {source})",
                    extra={"invoice_id": invoice_id, "source": source},
                )
                return TransitionResult(invoice_id, current, current, changed=False)

            now = self.clock()
            snapshot = self._merge_snapshot(invoice, source, metadata or {}, now)

            payment = None
            if new_status is InvoiceStatus.PAID:
                reported = _to_decimal(paid_amount)
                payment = {
                    "amount": reported if reported is not None else invoice.amount,
                    "payment_hash": payment_hash,
                    "raw_payload": metadata or {},
                }

            changed = await self.store.compare_and_set_status(
                invoice_id,
                expected=current,
                new=new_status,
                now=now,
                snapshot=snapshot,
                payment=payment,
            )
            if not changed:
                latest = await self._require(invoice_id)
                logger.warning(
                    f"Lost status race for invoice {invoice_id}: "
                    f"expected {current.value}, found {latest.status}"
                )
                return TransitionResult(invoice_id, current, latest.current_status, changed=False)

        logger.info(
            f"Invoice {invoice_id} status {current.value} -> {new_status.value} (source: {source})",
            extra={"invoice_id": invoice_id, "status": new_status.value, "source": source},
        )
        result = TransitionResult(invoice_id, current, new_status, changed=True)

        if result.became_paid:
            await self.dispatch_fulfillment(invoice.order_id, invoice_id, invoice.amount)

        return result

    async def dispatch_fulfillment(self, order_id: str, invoice_id: str, amount: Decimal) -> bool:
        """Notify fulfillment once per order. A failed dispatch is released for retry."""
        if not await self.store.claim_fulfillment(order_id, self.clock()):
            logger.info(f"Fulfillment for order {order_id} already dispatched")
            return False

        try:
            await self.fulfillment.notify_paid(order_id, invoice_id, amount)
        except Exception as e:
            logger.error(f"Fulfillment dispatch failed for order {order_id}: {e}", exc_info=True)
            await self.store.release_fulfillment(order_id)
            return False
        return True

    @staticmethod
    def _merge_snapshot(
        invoice: Invoice,
        source: str,
        data: Dict[str, Any],
        now: datetime,
    ) -> Dict[str, Any]:
        snapshot = dict(invoice.provider_snapshot or {})
        snapshot[source] = {**data, "recorded_at": now.isoformat()}
        return snapshot

    # --- Reads --------------------------------------------------------

    async def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """
        Local invoice merged with a best-effort gateway refresh.

        Terminal invoices are served from the store. Gateway failures never
        fail the read; the last persisted state is returned instead.
        """
        invoice = await self._require(invoice_id)
        if not invoice.is_terminal:
            invoice = await self.refresh_invoice(invoice_id)
        return self.invoice_view(invoice)

    async def refresh_invoice(self, invoice_id: str) -> Invoice:
        """Poll the gateway and apply its status through the guarded update."""
        invoice = await self._require(invoice_id)

        try:
            snapshot = await self.gateway.get_invoice(invoice_id)
        except GatewayError as e:
            logger.warning(
                f"Failed to fetch gateway status for {invoice_id}, serving local state: {e.message}"
            )
            return invoice

        poll_data = {
            "gateway_status": snapshot.status,
            "paid_amount": str(snapshot.paid_amount) if snapshot.paid_amount is not None else None,
            "invoice": snapshot.raw,
        }

        target = map_gateway_status(snapshot.status)
        if target is None:
            logger.warning(f"Unknown gateway status {snapshot.status!r} for invoice {invoice_id}")

        current = invoice.current_status
        if target is not None and target is not current:
            if can_transition(current, target):
                result = await self.apply_status(
                    invoice_id,
                    target,
                    metadata=poll_data,
                    source="poll",
                    paid_amount=snapshot.paid_amount,
                )
                if result.changed:
                    return await self._require(invoice_id)
            else:
                # Gateway lagging behind a webhook, e.g. still New while processing
                logger.debug(
                    f"Gateway status {snapshot.status} behind local {current.value} "
                    f"for invoice {invoice_id}"
                )

        async with self.store.locked(invoice_id):
            invoice = await self._require(invoice_id)
            now = self.clock()
            await self.store.update_snapshot(
                invoice_id,
                self._merge_snapshot(invoice, "poll", poll_data, now),
                now,
            )
        return await self._require(invoice_id)

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        invoice = await self.store.get_invoice(order.invoice_id)
        return {
            "order_id": order.order_id,
            "invoice_id": order.invoice_id,
            "amount": order.amount,
            "status": order.status,
            "payment_status": invoice.status if invoice else None,
            "created_at": order.created_at,
        }

    # --- Cancellation -------------------------------------------------

    async def cancel_invoice(self, invoice_id: str) -> Dict[str, Any]:
        invoice = await self._require(invoice_id)
        if not invoice.is_terminal:
            # A payment may have settled since the last webhook
            invoice = await self.refresh_invoice(invoice_id)

        if invoice.is_terminal:
            raise InvalidStateError(f"Cannot cancel {invoice.status} invoice")

        result = await self.apply_status(
            invoice_id,
            InvoiceStatus.CANCELLED,
            metadata={"reason": "Manual cancellation"},
            source="cancel",
        )
        if not result.changed:
            raise InvalidStateError(f"Cannot cancel {result.status.value} invoice")

        invoice = await self._require(invoice_id)
        logger.info(f"Invoice cancelled: {invoice_id}")
        return {
            "success": True,
            "invoice_id": invoice_id,
            "status": InvoiceStatus.CANCELLED.value,
            "cancelled_at": invoice.cancelled_at,
        }

    # --- Listing & statistics -----------------------------------------

    async def list_invoices(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        status_filter = None
        if status:
            try:
                status_filter = InvoiceStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status}")

        invoices, total = await self.store.list_invoices(
            offset=(page - 1) * limit,
            limit=limit,
            status=status_filter,
            customer_email=customer_email,
        )
        return {
            "invoices": [self.invoice_view(invoice) for invoice in invoices],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    async def get_stats(self, timeframe: str = "day") -> Dict[str, Any]:
        """Aggregate invoices created within a rolling day/week/month window."""
        try:
            window = TIMEFRAME_WINDOWS[StatsTimeframe(timeframe)]
        except ValueError:
            raise ValidationError("timeframe must be one of: day, week, month")

        rows = await self.store.status_totals(self.clock() - window)

        counts: Dict[str, int] = {}
        amounts: Dict[str, Decimal] = {}
        for status, count, amount in rows:
            counts[status] = int(count)
            amounts[status] = _to_decimal(amount) or Decimal("0")

        total = sum(counts.values())
        paid = counts.get(InvoiceStatus.PAID.value, 0)

        return {
            "total": total,
            "paid": paid,
            "pending": counts.get(InvoiceStatus.PENDING.value, 0),
            "expired": counts.get(InvoiceStatus.EXPIRED.value, 0),
            "totalAmount": float(sum(amounts.values(), Decimal("0"))),
            "paidAmount": float(amounts.get(InvoiceStatus.PAID.value, Decimal("0"))),
            "conversionRate": (paid / total) * 100 if total > 0 else 0,
        }

    # --- Reconciliation -----------------------------------------------

    async def reconcile_open_invoices(
        self,
        max_age: timedelta = timedelta(days=1),
        limit: int = 100,
    ) -> int:
        """Poll the gateway for open invoices. Returns how many changed status."""
        invoice_ids = await self.store.list_open_invoice_ids(self.clock() - max_age, limit)
        changed = 0
        for invoice_id in invoice_ids:
            before = await self._require(invoice_id)
            after = await self.refresh_invoice(invoice_id)
            if after.status != before.status:
                changed += 1
        logger.info(f"Reconciled {len(invoice_ids)} open invoices, {changed} changed")
        return changed

    async def redispatch_fulfillment(
        self,
        grace: timedelta = timedelta(minutes=2),
        limit: int = 100,
    ) -> int:
        """Dispatch paid orders whose fulfillment was never claimed."""
        orders = await self.store.list_undispatched_paid_orders(self.clock() - grace, limit)
        dispatched = 0
        for order in orders:
            if await self.dispatch_fulfillment(order.order_id, order.invoice_id, order.amount):
                dispatched += 1
        if orders:
            logger.info(f"Redispatched fulfillment for {dispatched}/{len(orders)} orders")
        return dispatched

    # --- Views --------------------------------------------------------

    @staticmethod
    def public_view(invoice: Invoice) -> Dict[str, Any]:
        """What the payer sees after creation. No gateway internals."""
        return {
            "id": invoice.id,
            "order_id": invoice.order_id,
            "amount": invoice.amount,
            "description": invoice.description,
            "payment_request": invoice.payment_request,
            "checkout_link": invoice.checkout_link,
            "status": invoice.status,
            "expires_at": invoice.expires_at,
            "created_at": invoice.created_at,
        }

    @staticmethod
    def invoice_view(invoice: Invoice) -> Dict[str, Any]:
        return {
            "id": invoice.id,
            "order_id": invoice.order_id,
            "status": invoice.status,
            "amount": invoice.amount,
            "description": invoice.description,
            "payment_request": invoice.payment_request,
            "checkout_link": invoice.checkout_link,
            "customer_email": invoice.customer_email,
            "paid_at": invoice.paid_at,
            "cancelled_at": invoice.cancelled_at,
            "expires_at": invoice.expires_at,
            "created_at": invoice.created_at,
            "updated_at": invoice.updated_at,
        }

    async def _require(self, invoice_id: str) -> Invoice:
        invoice = await self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice


def build_invoice_service(
    session_maker: Optional[async_sessionmaker] = None,
    gateway: Optional[GatewayClient] = None,
    fulfillment: Optional[FulfillmentNotifier] = None,
) -> InvoiceService:
    """Wire the lifecycle manager from configuration."""
    from lnpay.database import get_session_maker

    return InvoiceService(
        store=InvoiceStore(session_maker or get_session_maker()),
        gateway=gateway or build_gateway_client(),
        fulfillment=fulfillment or build_fulfillment_notifier(),
    )
