"""Tests for exactly-once callback application."""

from decimal import Decimal

import pytest

from shop4me.errors import CallbackPayloadError
from shop4me.models import (
    AttemptStatus,
    OrderStatus,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
)
from shop4me.services.callback_processor import CallbackProcessor
from shop4me.services.order_store import OrderStore
from shop4me.services.payment_service import PaymentService


@pytest.fixture
def processor(session, clock):
    return CallbackProcessor(session, clock=clock)


@pytest.fixture
def store(session, clock):
    return OrderStore(session, clock)


@pytest.fixture
def pending_order(session, order_factory, stub_provider, mpesa_config, clock):
    """A DRAFT order with an accepted STK push."""

    async def _create(**overrides):
        order = await order_factory(**overrides)
        result = await PaymentService(
            session, stub_provider, mpesa_config=mpesa_config, clock=clock
        ).initiate_payment(order.id, "0712345678")
        return order, result.checkout_request_id

    return _create


class TestSuccessCallback:
    async def test_marks_order_paid_and_processing(
        self, processor, store, pending_order, stub_provider
    ):
        order, checkout_id = await pending_order()

        result = await processor.process_callback(
            stub_provider.build_callback(checkout_id, receipt="NLJ7RT61SV")
        )

        assert result.processed is True
        assert result.already_processed is False
        assert result.message == "Payment recorded"

        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.PAID
        assert refreshed.order_status == OrderStatus.PROCESSING
        assert refreshed.mpesa_receipt == "NLJ7RT61SV"
        assert refreshed.amount_collected == Decimal("1000.00")
        assert refreshed.payment_due_at is None

        logs = await store.list_status_logs(order.id)
        assert [log.status for log in logs] == [OrderStatus.PENDING_PAYMENT, OrderStatus.PROCESSING]
        assert logs[-1].actor == StatusActor.SYSTEM
        assert logs[-1].note == "Payment received. M-Pesa Receipt: NLJ7RT61SV"

        [attempt] = await store.list_attempts(order.id)
        assert attempt.status == AttemptStatus.PAID
        assert attempt.mpesa_receipt == "NLJ7RT61SV"

    async def test_duplicate_delivery_changes_nothing(
        self, processor, store, pending_order, stub_provider
    ):
        order, checkout_id = await pending_order()
        payload = stub_provider.build_callback(checkout_id, receipt="NLJ7RT61SV")

        first = await processor.process_callback(payload)
        second = await processor.process_callback(payload)

        assert first.already_processed is False
        assert second.processed is True
        assert second.already_processed is True
        logs = await store.list_status_logs(order.id)
        assert len(logs) == 2

    async def test_paid_during_fulfillment_keeps_status(
        self, processor, store, pending_order, stub_provider, session, clock
    ):
        order, checkout_id = await pending_order()
        # Admin moved the unpaid order on before the money arrived
        await store.update_order(order.id, {"order_status": OrderStatus.SHOPPING})
        await session.commit()

        await processor.process_callback(stub_provider.build_callback(checkout_id))

        refreshed = await store.require(order.id)
        assert refreshed.order_status == OrderStatus.SHOPPING
        assert refreshed.payment_status == PaymentStatus.PAID
        logs = await store.list_status_logs(order.id)
        assert logs[-1].status == OrderStatus.SHOPPING

    async def test_paid_after_cancellation_is_flagged(
        self, processor, store, pending_order, stub_provider, session
    ):
        order, checkout_id = await pending_order()
        await store.update_order(order.id, {"order_status": OrderStatus.CANCELLED})
        await session.commit()

        result = await processor.process_callback(stub_provider.build_callback(checkout_id))

        assert result.processed is True
        refreshed = await store.require(order.id)
        assert refreshed.order_status == OrderStatus.CANCELLED
        assert refreshed.payment_status == PaymentStatus.PAID
        assert refreshed.reconciliation_status == ReconciliationStatus.DISCREPANCY

    async def test_missing_receipt_is_not_applied(
        self, processor, store, pending_order, stub_provider
    ):
        order, checkout_id = await pending_order()

        result = await processor.process_callback(
            stub_provider.build_callback(checkout_id, receipt=None)
        )

        assert result.processed is False
        assert result.message == "Missing receipt number"
        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.PENDING
        [attempt] = await store.list_attempts(order.id)
        assert attempt.status == AttemptStatus.PENDING

    async def test_rollback_when_audit_write_fails(
        self, processor, store, pending_order, stub_provider, monkeypatch
    ):
        order, checkout_id = await pending_order()

        async def broken_append(*args, **kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(processor.store, "append_status_log", broken_append)

        with pytest.raises(RuntimeError):
            await processor.process_callback(stub_provider.build_callback(checkout_id))

        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.PENDING
        assert refreshed.order_status == OrderStatus.PENDING_PAYMENT
        [attempt] = await store.list_attempts(order.id)
        assert attempt.status == AttemptStatus.PENDING


class TestFailureCallback:
    async def test_cancels_order(self, processor, store, pending_order, stub_provider):
        order, checkout_id = await pending_order()

        result = await processor.process_callback(
            stub_provider.build_callback(
                checkout_id, result_code=1032, result_desc="Request cancelled by user"
            )
        )

        assert result.processed is True
        assert result.message == "Payment failure recorded"
        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.FAILED
        assert refreshed.order_status == OrderStatus.CANCELLED
        assert refreshed.cancellation_reason == "Payment failed: Request cancelled by user"
        assert refreshed.mpesa_receipt is None

        logs = await store.list_status_logs(order.id)
        assert logs[-1].status == OrderStatus.CANCELLED
        [attempt] = await store.list_attempts(order.id)
        assert attempt.status == AttemptStatus.FAILED
        assert attempt.result_code == 1032

    async def test_duplicate_failure(self, processor, store, pending_order, stub_provider):
        order, checkout_id = await pending_order()
        payload = stub_provider.build_callback(checkout_id, result_code=1037)

        await processor.process_callback(payload)
        second = await processor.process_callback(payload)

        assert second.already_processed is True
        assert len(await store.list_status_logs(order.id)) == 2

    async def test_superseded_request_only_resolves_attempt(
        self, processor, store, pending_order, stub_provider, session, mpesa_config, clock
    ):
        order, old_checkout_id = await pending_order()
        clock.advance(minutes=6)
        retry = await PaymentService(
            session, stub_provider, mpesa_config=mpesa_config, clock=clock
        ).initiate_payment(order.id, "0712345678")

        result = await processor.process_callback(
            stub_provider.build_callback(old_checkout_id, result_code=1032)
        )

        assert result.processed is True
        assert result.message == "Superseded payment request resolved"
        refreshed = await store.require(order.id)
        assert refreshed.order_status == OrderStatus.PENDING_PAYMENT
        assert refreshed.payment_status == PaymentStatus.PENDING
        assert refreshed.checkout_request_id == retry.checkout_request_id
        statuses = {a.checkout_request_id: a.status for a in await store.list_attempts(order.id)}
        assert statuses == {
            old_checkout_id: AttemptStatus.FAILED,
            retry.checkout_request_id: AttemptStatus.PENDING,
        }

    async def test_success_for_superseded_request_still_pays(
        self, processor, store, pending_order, stub_provider, session, mpesa_config, clock
    ):
        order, old_checkout_id = await pending_order()
        clock.advance(minutes=6)
        await PaymentService(
            session, stub_provider, mpesa_config=mpesa_config, clock=clock
        ).initiate_payment(order.id, "0712345678")

        result = await processor.process_callback(
            stub_provider.build_callback(old_checkout_id, receipt="OLD0000001")
        )

        assert result.message == "Payment recorded"
        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.PAID
        assert refreshed.mpesa_receipt == "OLD0000001"

    async def test_second_payment_on_paid_order_is_flagged(
        self, processor, store, pending_order, stub_provider, session, mpesa_config, clock
    ):
        order, old_checkout_id = await pending_order()
        clock.advance(minutes=6)
        retry = await PaymentService(
            session, stub_provider, mpesa_config=mpesa_config, clock=clock
        ).initiate_payment(order.id, "0712345678")
        await processor.process_callback(
            stub_provider.build_callback(old_checkout_id, receipt="OLD0000001")
        )
        second = stub_provider.build_callback(retry.checkout_request_id, receipt="NEW0000002")

        result = await processor.process_callback(second)

        assert result.processed is True
        assert result.already_processed is False
        assert result.message == "Second payment flagged for refund"
        refreshed = await store.require(order.id)
        assert refreshed.mpesa_receipt == "OLD0000001"
        assert refreshed.reconciliation_status == ReconciliationStatus.DISCREPANCY
        logs = await store.list_status_logs(order.id)
        assert logs[-1].actor == StatusActor.SYSTEM
        assert "NEW0000002" in logs[-1].note
        attempts = {a.checkout_request_id: a for a in await store.list_attempts(order.id)}
        assert attempts[retry.checkout_request_id].status == AttemptStatus.PAID
        assert attempts[retry.checkout_request_id].mpesa_receipt == "NEW0000002"

        again = await processor.process_callback(second)

        assert again.already_processed is True
        assert len(await store.list_status_logs(order.id)) == len(logs)

    async def test_failure_for_other_request_after_payment_resolves_attempt(
        self, processor, store, pending_order, stub_provider, session, mpesa_config, clock
    ):
        order, old_checkout_id = await pending_order()
        clock.advance(minutes=6)
        retry = await PaymentService(
            session, stub_provider, mpesa_config=mpesa_config, clock=clock
        ).initiate_payment(order.id, "0712345678")
        await processor.process_callback(
            stub_provider.build_callback(retry.checkout_request_id, receipt="NEW0000002")
        )
        logs_before = len(await store.list_status_logs(order.id))

        result = await processor.process_callback(
            stub_provider.build_callback(old_checkout_id, result_code=1032)
        )

        assert result.message == "Superseded payment request resolved"
        refreshed = await store.require(order.id)
        assert refreshed.payment_status == PaymentStatus.PAID
        assert refreshed.reconciliation_status == ReconciliationStatus.NOT_REQUIRED
        assert len(await store.list_status_logs(order.id)) == logs_before
        statuses = {a.checkout_request_id: a.status for a in await store.list_attempts(order.id)}
        assert statuses[old_checkout_id] == AttemptStatus.FAILED


class TestUnknownAndInvalid:
    async def test_unknown_checkout_request_id(self, processor):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "1-2-3",
                    "CheckoutRequestID": "ws_CO_UNKNOWN",
                    "ResultCode": 0,
                    "ResultDesc": "ok",
                }
            }
        }

        result = await processor.process_callback(payload)

        assert result.processed is False
        assert result.message == "Order not found"

    async def test_invalid_envelope(self, processor):
        with pytest.raises(CallbackPayloadError):
            await processor.process_callback({"Body": {}})
