"""API endpoint integration tests.

Drives checkout, STK push, callbacks, admin actions and the reconciliation
trigger through HTTP against the stub M-Pesa provider.
"""

from decimal import Decimal
from uuid import uuid4

from httpx import AsyncClient

from shop4me.providers import MpesaStubProvider

from .conftest import ADMIN_HEADERS, CRON_SECRET, CUSTOMER_HEADERS, OTHER_CUSTOMER_HEADERS

CART = {
    "customer_name": "Wanjiru Kamau",
    "customer_phone": "0712345678",
    "items": [
        {"name": "Unga 2kg", "price": "230", "quantity": 2},
        {"name": "Tomatoes", "price": "20", "quantity": 5},
    ],
    "service_fee": "150",
    "total": "710",
    "landmark": "Opposite Naivas",
}


async def create_order(client: AsyncClient, headers: dict = CUSTOMER_HEADERS) -> str:
    response = await client.post("/api/v1/orders", headers=headers, json=CART)
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def start_payment(client: AsyncClient, order_id: str) -> str:
    response = await client.post(
        f"/api/v1/orders/{order_id}/payments",
        headers=CUSTOMER_HEADERS,
        json={"phone": "+254712345678"},
    )
    assert response.status_code == 200, response.text
    return response.json()["checkout_request_id"]


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestCheckout:
    async def test_create_order(self, client: AsyncClient):
        response = await client.post("/api/v1/orders", headers=CUSTOMER_HEADERS, json=CART)

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["order_status"] == "DRAFT"
        assert data["payment_status"] == "PENDING"
        assert data["customer_phone"] == "254712345678"
        assert Decimal(data["total_estimate"]) == Decimal("710")
        assert [item["name_override"] for item in data["items"]] == ["Unga 2kg", "Tomatoes"]

    async def test_requires_sign_in(self, client: AsyncClient):
        response = await client.post("/api/v1/orders", json=CART)

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    async def test_field_errors(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/orders",
            headers=CUSTOMER_HEADERS,
            json={**CART, "customer_name": "", "total": "900"},
        )

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["field_errors"]["customer_name"] == "Name is required"
        assert data["field_errors"]["cart"] == "Cart total mismatch. Refresh and try again."

    async def test_schema_errors_are_rejected_by_fastapi(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/orders", headers=CUSTOMER_HEADERS, json={"customer_name": "x"}
        )
        assert response.status_code == 422


class TestOrderAccess:
    async def test_owner_sees_detail_with_history(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.get(f"/api/v1/orders/{order_id}", headers=CUSTOMER_HEADERS)

        assert response.status_code == 200
        logs = response.json()["status_logs"]
        assert [(log["status"], log["note"]) for log in logs] == [("DRAFT", "Order created")]

    async def test_other_customer_is_forbidden(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.get(f"/api/v1/orders/{order_id}", headers=OTHER_CUSTOMER_HEADERS)

        assert response.status_code == 403

    async def test_admin_sees_any_order(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.get(f"/api/v1/orders/{order_id}", headers=ADMIN_HEADERS)

        assert response.status_code == 200

    async def test_status_polling(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.get(f"/api/v1/orders/{order_id}/status")

        assert response.status_code == 200
        data = response.json()
        assert data["paymentStatus"] == "PENDING"
        assert data["orderStatus"] == "DRAFT"
        assert data["mpesaReceipt"] is None
        assert "lastUpdated" in data

    async def test_unknown_order(self, client: AsyncClient):
        response = await client.get(f"/api/v1/orders/{uuid4()}/status")

        assert response.status_code == 404
        assert response.json()["code"] == "ORDER_NOT_FOUND"


class TestPayments:
    async def test_initiate_payment(self, client: AsyncClient, stub_provider):
        order_id = await create_order(client)

        response = await client.post(
            f"/api/v1/orders/{order_id}/payments",
            headers=CUSTOMER_HEADERS,
            json={"phone": "0712345678"},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["ok"] is True
        assert data["checkout_request_id"].startswith("ws_CO_")
        assert stub_provider.requests[0].amount_minor == 71000

        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["orderStatus"] == "PENDING_PAYMENT"
        assert status["checkoutRequestId"] == data["checkout_request_id"]

    async def test_second_push_inside_cooldown(self, client: AsyncClient):
        order_id = await create_order(client)
        await start_payment(client, order_id)

        response = await client.post(
            f"/api/v1/orders/{order_id}/payments",
            headers=CUSTOMER_HEADERS,
            json={"phone": "0712345678"},
        )

        assert response.status_code == 409
        assert response.json()["code"] == "PAYMENT_IN_PROGRESS"

    async def test_invalid_phone(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.post(
            f"/api/v1/orders/{order_id}/payments",
            headers=CUSTOMER_HEADERS,
            json={"phone": "12345"},
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_PHONE"

    async def test_provider_rejection_is_bad_gateway(self, client: AsyncClient, app):
        order_id = await create_order(client)
        app.state.provider = MpesaStubProvider(reject_with=("1", "Insufficient balance"))

        response = await client.post(
            f"/api/v1/orders/{order_id}/payments",
            headers=CUSTOMER_HEADERS,
            json={"phone": "0712345678"},
        )

        assert response.status_code == 502
        assert response.json() == {"detail": "Insufficient balance", "code": "1"}
        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["orderStatus"] == "DRAFT"


class TestMpesaCallback:
    async def test_success_callback(self, client: AsyncClient, stub_provider):
        order_id = await create_order(client)
        checkout_id = await start_payment(client, order_id)
        payload = stub_provider.build_callback(checkout_id, receipt="NLJ7RT61SV")

        response = await client.post("/api/v1/mpesa/callback", json=payload)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "message": "Payment recorded"}
        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["paymentStatus"] == "PAID"
        assert status["orderStatus"] == "PROCESSING"
        assert status["mpesaReceipt"] == "NLJ7RT61SV"

        duplicate = await client.post("/api/v1/mpesa/callback", json=payload)
        assert duplicate.status_code == 200
        assert duplicate.json() == {"ok": True, "message": "Already processed"}

        detail = await client.get(f"/api/v1/orders/{order_id}", headers=CUSTOMER_HEADERS)
        assert [log["status"] for log in detail.json()["status_logs"]] == [
            "DRAFT",
            "PENDING_PAYMENT",
            "PROCESSING",
        ]

    async def test_failure_callback_cancels(self, client: AsyncClient, stub_provider):
        order_id = await create_order(client)
        checkout_id = await start_payment(client, order_id)

        response = await client.post(
            "/api/v1/mpesa/callback",
            json=stub_provider.build_callback(checkout_id, result_code=1032),
        )

        assert response.json()["ok"] is True
        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["paymentStatus"] == "FAILED"
        assert status["orderStatus"] == "CANCELLED"

    async def test_unknown_request_is_acknowledged(self, client: AsyncClient):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "1-2-3",
                    "CheckoutRequestID": "ws_CO_NOPE",
                    "ResultCode": 1,
                    "ResultDesc": "Insufficient balance",
                }
            }
        }

        response = await client.post("/api/v1/mpesa/callback", json=payload)

        assert response.status_code == 200
        assert response.json() == {"ok": False, "message": "Order not found"}

    async def test_invalid_structure(self, client: AsyncClient):
        response = await client.post("/api/v1/mpesa/callback", json={"Body": {}})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "message": "Invalid callback structure"}

    async def test_invalid_json(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/mpesa/callback",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400


class TestAdminEndpoints:
    async def test_customer_is_forbidden(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.post(
            f"/api/v1/admin/orders/{order_id}/status",
            headers=CUSTOMER_HEADERS,
            json={"status": "CANCELLED"},
        )

        assert response.status_code == 403

    async def test_fulfillment_flow_with_override(self, client: AsyncClient, stub_provider):
        order_id = await create_order(client)
        checkout_id = await start_payment(client, order_id)
        await client.post(
            "/api/v1/mpesa/callback", json=stub_provider.build_callback(checkout_id)
        )

        for status in ("SHOPPING", "OUT_FOR_DELIVERY", "DELIVERED"):
            response = await client.post(
                f"/api/v1/admin/orders/{order_id}/status",
                headers=ADMIN_HEADERS,
                json={"status": status},
            )
            assert response.status_code == 200, response.text
            assert response.json()["warnings"] == []

        blocked = await client.post(
            f"/api/v1/admin/orders/{order_id}/status",
            headers=ADMIN_HEADERS,
            json={"status": "CANCELLED", "note": "Customer complaint"},
        )
        assert blocked.status_code == 409
        assert blocked.json()["code"] == "CONFIRMATION_REQUIRED"
        assert "already marked as delivered" in blocked.json()["detail"]

        confirmed = await client.post(
            f"/api/v1/admin/orders/{order_id}/status",
            headers=ADMIN_HEADERS,
            json={"status": "CANCELLED", "note": "Customer complaint", "confirm_override": True},
        )
        assert confirmed.status_code == 200
        order = confirmed.json()["order"]
        assert order["order_status"] == "CANCELLED"
        assert order["payment_status"] == "PAID"
        assert order["cancellation_reason"] == "Customer complaint"

    async def test_invalid_transition(self, client: AsyncClient):
        order_id = await create_order(client)

        response = await client.post(
            f"/api/v1/admin/orders/{order_id}/status",
            headers=ADMIN_HEADERS,
            json={"status": "DELIVERED"},
        )

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    async def test_expenses_and_financials(self, client: AsyncClient, stub_provider):
        order_id = await create_order(client)
        checkout_id = await start_payment(client, order_id)
        await client.post(
            "/api/v1/mpesa/callback", json=stub_provider.build_callback(checkout_id)
        )

        expense = await client.post(
            f"/api/v1/admin/orders/{order_id}/expenses",
            headers=ADMIN_HEADERS,
            json={"cost": "520", "delivery_fee": "100", "note": "Market run"},
        )
        assert expense.status_code == 201, expense.text

        empty = await client.post(
            f"/api/v1/admin/orders/{order_id}/expenses",
            headers=ADMIN_HEADERS,
            json={"note": "nothing"},
        )
        assert empty.status_code == 422

        response = await client.get(
            f"/api/v1/admin/orders/{order_id}/financials", headers=ADMIN_HEADERS
        )
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["items_subtotal"]) == Decimal("560")
        assert Decimal(data["amount_collected"]) == Decimal("710")
        assert Decimal(data["expenses_total"]) == Decimal("620")
        assert Decimal(data["realized_profit"]) == Decimal("90")


class TestReconciliationTrigger:
    async def test_requires_cron_secret(self, client: AsyncClient):
        missing = await client.post("/api/v1/cron/reconcile")
        wrong = await client.post(
            "/api/v1/cron/reconcile", headers={"Authorization": "Bearer nope"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401

    async def test_expires_stale_payment(self, client: AsyncClient, clock):
        order_id = await create_order(client)
        await start_payment(client, order_id)
        clock.advance(minutes=36)

        response = await client.post(
            "/api/v1/cron/reconcile", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["expired"] == 1
        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["orderStatus"] == "CANCELLED"
        assert status["paymentStatus"] == "FAILED"
        detail = (
            await client.get(f"/api/v1/orders/{order_id}", headers=CUSTOMER_HEADERS)
        ).json()
        assert detail["reconciliation_status"] == "COMPLETED"

    async def test_usage(self, client: AsyncClient):
        response = await client.get("/api/v1/cron/reconcile")

        assert response.status_code == 200
        assert "POST" in response.json()["usage"]
