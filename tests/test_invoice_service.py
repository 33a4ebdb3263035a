"""
Tests for InvoiceService (invoice lifecycle).
"""

import asyncio
import logging
import random
from datetime import timedelta
from decimal import Decimal

import pytest

from lnpay.errors import (
    GatewayError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from lnpay.fsm.machine import can_transition
from lnpay.fsm.states import GatewayInvoiceStatus, InvoiceStatus


# --- Creation ---------------------------------------------------------


@pytest.mark.asyncio
async def test_create_invoice(service, store, gateway):
    created = await service.create_invoice(50, "Coffee beans", "buyer@example.com")

    assert created["status"] == "pending"
    assert created["amount"] == Decimal("50.00")
    assert created["order_id"].startswith("ORD-")
    assert created["payment_request"].startswith("lnbc")
    assert created["checkout_link"].endswith(created["id"])
    assert created["id"] in gateway.invoices

    invoice = await store.get_invoice(created["id"])
    assert invoice.description == "Coffee beans"
    assert invoice.customer_email == "buyer@example.com"

    order = await store.get_order(created["order_id"])
    assert order.invoice_id == created["id"]
    assert order.status == "pending"
    assert order.fulfillment_dispatched_at is None


@pytest.mark.asyncio
async def test_create_invoice_default_description(service):
    created = await service.create_invoice("20.00", "   ")
    assert created["description"] == "Lightning payment"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [20, "20.00", Decimal("75.5"), 99.99, 100])
async def test_create_invoice_accepts_bounds(service, amount):
    created = await service.create_invoice(amount)
    assert Decimal("20") <= created["amount"] <= Decimal("100")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [
    19.99, 100.01, 0, -50, 1000, "abc", None, "NaN", "Infinity", True, "50.001",
])
async def test_create_invoice_rejects_amount(service, store, gateway, amount):
    with pytest.raises(ValidationError):
        await service.create_invoice(amount)

    _, total = await store.list_invoices(offset=0, limit=10)
    assert total == 0
    assert gateway.invoices == {}


@pytest.mark.asyncio
async def test_create_invoice_gateway_failure_persists_nothing(service, store, gateway):
    gateway.unavailable = True

    with pytest.raises(GatewayError):
        await service.create_invoice(50)

    _, total = await store.list_invoices(offset=0, limit=10)
    assert total == 0


@pytest.mark.asyncio
async def test_validate_amount_quantizes():
    from lnpay.services.invoice_service import InvoiceService

    assert InvoiceService.validate_amount("42.5") == Decimal("42.50")


# --- Guarded transitions ----------------------------------------------


@pytest.mark.asyncio
async def test_apply_status_paid_records_payment_and_notifies(service, store, notifier):
    created = await service.create_invoice(50)

    result = await service.apply_status(
        created["id"], InvoiceStatus.PAID, {"source": "test"},
        paid_amount="49.90", payment_hash="abc123",
    )

    assert result.changed
    assert result.became_paid
    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "paid"
    assert invoice.paid_at is not None

    payments = await store.get_payments(created["id"])
    assert len(payments) == 1
    assert payments[0].amount == Decimal("49.90")
    assert payments[0].payment_hash == "abc123"

    order = await store.get_order(created["order_id"])
    assert order.status == "paid"
    assert order.fulfillment_dispatched_at is not None
    assert notifier.calls == [(created["order_id"], created["id"], Decimal("50.00"))]


@pytest.mark.asyncio
async def test_apply_status_payment_defaults_to_invoice_amount(service, store):
    created = await service.create_invoice(30)

    await service.apply_status(created["id"], InvoiceStatus.PAID)

    payments = await store.get_payments(created["id"])
    assert payments[0].amount == Decimal("30.00")


@pytest.mark.asyncio
async def test_apply_status_records_reported_zero_amount(service, store):
    created = await service.create_invoice(30)

    await service.apply_status(created["id"], InvoiceStatus.PAID, paid_amount="0")

    payments = await store.get_payments(created["id"])
    assert payments[0].amount == Decimal("0")


@pytest.mark.asyncio
async def test_apply_status_unknown_invoice(service):
    with pytest.raises(NotFoundError):
        await service.apply_status("inv_missing", InvoiceStatus.PAID)


@pytest.mark.asyncio
async def test_concurrent_paid_is_idempotent(service, store, notifier):
    created = await service.create_invoice(50)

    results = await asyncio.gather(*[
        service.apply_status(created["id"], InvoiceStatus.PAID, {"attempt": i})
        for i in range(10)
    ])

    assert sum(1 for r in results if r.changed) == 1
    assert all(r.status is InvoiceStatus.PAID for r in results)

    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "paid"
    assert len(await store.get_payments(created["id"])) == 1
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_paid_at_set_once(service, store):
    created = await service.create_invoice(50)

    await service.apply_status(created["id"], InvoiceStatus.PAID)
    first = (await store.get_invoice(created["id"])).paid_at
    await service.apply_status(created["id"], InvoiceStatus.PAID)
    await service.apply_status(created["id"], InvoiceStatus.EXPIRED)

    invoice = await store.get_invoice(created["id"])
    assert invoice.paid_at == first
    assert invoice.status == "paid"


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(5))
async def test_terminal_status_is_absorbing(service, store, seed):
    rng = random.Random(seed)
    created = await service.create_invoice(50)
    expected = InvoiceStatus.PENDING

    for _ in range(12):
        target = rng.choice(list(InvoiceStatus))
        result = await service.apply_status(created["id"], target)

        if can_transition(expected, target):
            assert result.changed
            expected = target
        else:
            assert not result.changed

        invoice = await store.get_invoice(created["id"])
        assert invoice.status == expected.value

    payments = await store.get_payments(created["id"])
    assert len(payments) == (1 if expected is InvoiceStatus.PAID else 0)


@pytest.mark.asyncio
async def test_store_compare_and_set_guards_stale_writer(service, store, clock):
    """Second writer expecting the old status loses, even without the lock."""
    created = await service.create_invoice(50)

    first = await store.compare_and_set_status(
        created["id"], InvoiceStatus.PENDING, InvoiceStatus.EXPIRED, clock(),
    )
    second = await store.compare_and_set_status(
        created["id"], InvoiceStatus.PENDING, InvoiceStatus.PAID, clock(),
        payment={"amount": Decimal("50")},
    )

    assert first is True
    assert second is False
    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "expired"
    assert await store.get_payments(created["id"]) == []


# --- Fulfillment ------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_fulfillment_is_redispatched(service, store, notifier, clock):
    created = await service.create_invoice(50)
    notifier.fail = True

    result = await service.apply_status(created["id"], InvoiceStatus.PAID)

    assert result.changed
    order = await store.get_order(created["order_id"])
    assert order.fulfillment_dispatched_at is None

    notifier.fail = False
    clock.advance(timedelta(minutes=5))
    assert await service.redispatch_fulfillment() == 1
    assert notifier.calls == [(created["order_id"], created["id"], Decimal("50.00"))]

    # Already claimed
    assert await service.redispatch_fulfillment() == 0
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_redispatch_waits_for_grace_period(service, notifier):
    created = await service.create_invoice(50)
    notifier.fail = True
    await service.apply_status(created["id"], InvoiceStatus.PAID)
    notifier.fail = False

    assert await service.redispatch_fulfillment(grace=timedelta(hours=1)) == 0
    assert notifier.calls == []


# --- Reads & refresh --------------------------------------------------


@pytest.mark.asyncio
async def test_get_invoice_refreshes_from_gateway(service, gateway, notifier):
    created = await service.create_invoice(50)
    gateway.set_status(created["id"], GatewayInvoiceStatus.SETTLED)

    view = await service.get_invoice(created["id"])

    assert view["status"] == "paid"
    assert view["paid_at"] is not None
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_get_invoice_falls_back_to_local_state(service, gateway):
    created = await service.create_invoice(50)
    gateway.unavailable = True

    view = await service.get_invoice(created["id"])

    assert view["status"] == "pending"
    assert view["id"] == created["id"]


@pytest.mark.asyncio
async def test_get_invoice_terminal_skips_gateway(service, gateway):
    created = await service.create_invoice(50)
    await service.apply_status(created["id"], InvoiceStatus.EXPIRED)
    gateway.set_status(created["id"], GatewayInvoiceStatus.SETTLED)

    view = await service.get_invoice(created["id"])

    assert view["status"] == "expired"


@pytest.mark.asyncio
async def test_refresh_stores_poll_snapshot(service, store, gateway):
    created = await service.create_invoice(50)
    gateway.set_status(created["id"], GatewayInvoiceStatus.PROCESSING)

    invoice = await service.refresh_invoice(created["id"])

    assert invoice.status == "processing"
    assert invoice.provider_snapshot["poll"]["gateway_status"] == "Processing"
    assert "created" in invoice.provider_snapshot


@pytest.mark.asyncio
async def test_refresh_without_change_keeps_status(service, store):
    created = await service.create_invoice(50)

    invoice = await service.refresh_invoice(created["id"])

    assert invoice.status == "pending"
    assert invoice.provider_snapshot["poll"]["gateway_status"] == "New"


@pytest.mark.asyncio
async def test_refresh_behind_local_status_is_quiet(service, store, caplog):
    """Gateway still says New after a webhook moved the invoice to processing."""
    created = await service.create_invoice(50)
    await service.apply_status(created["id"], InvoiceStatus.PROCESSING, source="webhook")

    with caplog.at_level(logging.DEBUG, logger="lnpay.services.invoice_service"):
        invoice = await service.refresh_invoice(created["id"])

    assert invoice.status == "processing"
    assert invoice.provider_snapshot["poll"]["gateway_status"] == "New"
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


@pytest.mark.asyncio
async def test_get_invoice_unknown(service):
    with pytest.raises(NotFoundError):
        await service.get_invoice("inv_nope")


@pytest.mark.asyncio
async def test_get_order(service):
    created = await service.create_invoice(60)

    order = await service.get_order(created["order_id"])

    assert order["invoice_id"] == created["id"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"

    with pytest.raises(NotFoundError):
        await service.get_order("ORD-0-missing")


# --- Cancellation -----------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_pending_invoice(service, store):
    created = await service.create_invoice(50)

    result = await service.cancel_invoice(created["id"])

    assert result["success"] is True
    assert result["status"] == "cancelled"
    assert result["cancelled_at"] is not None
    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "cancelled"
    assert invoice.cancelled_at is not None


@pytest.mark.asyncio
async def test_cancel_paid_invoice_fails(service, store):
    created = await service.create_invoice(50)
    await service.apply_status(created["id"], InvoiceStatus.PAID)

    with pytest.raises(InvalidStateError):
        await service.cancel_invoice(created["id"])

    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "paid"
    assert invoice.cancelled_at is None


@pytest.mark.asyncio
async def test_cancel_detects_settlement_at_gateway(service, store, gateway, notifier):
    created = await service.create_invoice(50)
    gateway.set_status(created["id"], GatewayInvoiceStatus.SETTLED)

    with pytest.raises(InvalidStateError):
        await service.cancel_invoice(created["id"])

    invoice = await store.get_invoice(created["id"])
    assert invoice.status == "paid"
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_cancel_unknown_invoice(service):
    with pytest.raises(NotFoundError):
        await service.cancel_invoice("inv_nope")


# --- Listing & stats --------------------------------------------------


@pytest.mark.asyncio
async def test_list_invoices_pagination(service):
    created = [await service.create_invoice(20 + i) for i in range(25)]
    newest_first = [c["id"] for c in reversed(created)]

    page = await service.list_invoices(page=2, limit=10)

    assert [i["id"] for i in page["invoices"]] == newest_first[10:20]
    assert page["pagination"] == {"page": 2, "limit": 10, "total": 25, "pages": 3}

    last = await service.list_invoices(page=3, limit=10)
    assert [i["id"] for i in last["invoices"]] == newest_first[20:]


@pytest.mark.asyncio
async def test_list_invoices_filters(service):
    first = await service.create_invoice(50, customer_email="a@example.com")
    await service.create_invoice(50, customer_email="b@example.com")
    await service.apply_status(first["id"], InvoiceStatus.PAID)

    paid = await service.list_invoices(status="paid")
    assert [i["id"] for i in paid["invoices"]] == [first["id"]]

    by_email = await service.list_invoices(customer_email="b@example.com")
    assert by_email["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_list_invoices_empty(service):
    result = await service.list_invoices()
    assert result == {"invoices": [], "pagination": {"page": 1, "limit": 10, "total": 0, "pages": 0}}


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"page": 0},
    {"limit": 0},
    {"limit": 101},
    {"status": "refunded"},
])
async def test_list_invoices_rejects_bad_params(service, kwargs):
    with pytest.raises(ValidationError):
        await service.list_invoices(**kwargs)


@pytest.mark.asyncio
async def test_stats_empty(service):
    stats = await service.get_stats("day")

    assert stats["total"] == 0
    assert stats["conversionRate"] == 0
    assert stats["totalAmount"] == 0


@pytest.mark.asyncio
async def test_stats_counts_and_amounts(service):
    paid = await service.create_invoice(50)
    await service.create_invoice(30)
    expired = await service.create_invoice(20)
    await service.create_invoice(100)
    await service.apply_status(paid["id"], InvoiceStatus.PAID)
    await service.apply_status(expired["id"], InvoiceStatus.EXPIRED)

    stats = await service.get_stats("day")

    assert stats == {
        "total": 4,
        "paid": 1,
        "pending": 2,
        "expired": 1,
        "totalAmount": 200.0,
        "paidAmount": 50.0,
        "conversionRate": 25.0,
    }


@pytest.mark.asyncio
async def test_stats_timeframe_window(service, clock):
    await service.create_invoice(50)
    clock.advance(timedelta(days=3))
    await service.create_invoice(40)

    assert (await service.get_stats("day"))["total"] == 1
    assert (await service.get_stats("week"))["total"] == 2

    clock.advance(timedelta(days=29))
    assert (await service.get_stats("month"))["total"] == 1


@pytest.mark.asyncio
async def test_stats_rejects_unknown_timeframe(service):
    with pytest.raises(ValidationError):
        await service.get_stats("year")


# --- Reconciliation ---------------------------------------------------


@pytest.mark.asyncio
async def test_reconcile_open_invoices(service, store, gateway, notifier):
    settled = await service.create_invoice(50)
    expired = await service.create_invoice(50)
    untouched = await service.create_invoice(50)
    gateway.set_status(settled["id"], GatewayInvoiceStatus.SETTLED)
    gateway.set_status(expired["id"], GatewayInvoiceStatus.EXPIRED)

    changed = await service.reconcile_open_invoices()

    assert changed == 2
    assert (await store.get_invoice(settled["id"])).status == "paid"
    assert (await store.get_invoice(expired["id"])).status == "expired"
    assert (await store.get_invoice(untouched["id"])).status == "pending"
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_reconcile_skips_when_gateway_down(service, store, gateway):
    created = await service.create_invoice(50)
    gateway.set_status(created["id"], GatewayInvoiceStatus.SETTLED)
    gateway.unavailable = True

    assert await service.reconcile_open_invoices() == 0
    assert (await store.get_invoice(created["id"])).status == "pending"


@pytest.mark.asyncio
async def test_reconcile_continues_after_single_failure(service, store, gateway):
    first = await service.create_invoice(50)
    second = await service.create_invoice(50)
    gateway.set_status(first["id"], GatewayInvoiceStatus.SETTLED)
    gateway.set_status(second["id"], GatewayInvoiceStatus.SETTLED)
    gateway.fail_next(1)

    assert await service.reconcile_open_invoices() == 1
    assert await service.reconcile_open_invoices() == 1
    assert (await store.get_invoice(first["id"])).status == "paid"
    assert (await store.get_invoice(second["id"])).status == "paid"


# --- Internals --------------------------------------------------------


@pytest.mark.asyncio
async def test_lock_entries_are_released(service, store):
    created = await service.create_invoice(50)

    await asyncio.gather(*[
        service.apply_status(created["id"], InvoiceStatus.PROCESSING) for _ in range(5)
    ])

    assert len(store._locks) == 0


@pytest.mark.asyncio
async def test_order_id_collision_retries(service, store, monkeypatch):
    existing = await service.create_invoice(50)
    ids = iter([existing["order_id"], "ORD-1-fresh"])
    monkeypatch.setattr(
        "lnpay.services.invoice_service.generate_order_id", lambda now: next(ids),
    )

    created = await service.create_invoice(40)

    assert created["order_id"] == "ORD-1-fresh"


@pytest.mark.asyncio
async def test_order_id_exhaustion(service, monkeypatch):
    existing = await service.create_invoice(50)
    monkeypatch.setattr(
        "lnpay.services.invoice_service.generate_order_id", lambda now: existing["order_id"],
    )

    with pytest.raises(InternalError):
        await service.create_invoice(40)
