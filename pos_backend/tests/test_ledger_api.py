"""
Ledger API Tests.

End-to-end flows through the HTTP surface: registering customers, billing
Account orders, recording payments, statements and role checks.
"""

import csv
import io
from decimal import Decimal

import pytest

from pos_backend.app.models.customer import Customer
from pos_backend.app.models.ledger_enums import OrderStatus, PaymentMethod


@pytest.fixture
async def ali(client, tenant):
    response = await client.post(
        "/v1/customers",
        json={"full_name": "Ali Raza", "phone": "03001234567", "credit_limit": "5000"},
        headers=tenant.headers(tenant.cashier),
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_register_and_search_customers(client, tenant, ali):
    headers = tenant.headers(tenant.cashier)

    duplicate = await client.post(
        "/v1/customers", json={"full_name": "Someone Else", "phone": "03001234567"}, headers=headers
    )
    assert duplicate.status_code == 409

    await client.post("/v1/customers", json={"full_name": "Sara Khan", "phone": "03339876543"}, headers=headers)

    response = await client.get("/v1/customers", params={"search": "1234"}, headers=headers)
    assert response.status_code == 200
    assert [customer["full_name"] for customer in response.json()] == ["Ali Raza"]

    response = await client.get(f"/v1/customers/{ali['id']}", headers=headers)
    assert response.json()["phone"] == "03001234567"
    assert Decimal(response.json()["credit_limit"]) == Decimal("5000")


@pytest.mark.asyncio
async def test_account_order_to_settlement_flow(client, tenant, ali, db_session, make_order, clock):
    """Bill an Account order, take a partial payment, then read it all back."""
    headers = tenant.headers(tenant.cashier)
    customer = await db_session.get(Customer, ali["id"])
    order = await make_order(customer=customer, total="1500")

    billed = await client.post(f"/v1/orders/{order.id}/account-debit", headers=headers)
    assert billed.status_code == 200
    assert billed.json()["created"] is True
    assert Decimal(billed.json()["entry"]["balance_after"]) == Decimal("1500")

    again = await client.post(f"/v1/orders/{order.id}/account-debit", headers=headers)
    assert again.json()["created"] is False
    assert again.json()["entry"]["id"] == billed.json()["entry"]["id"]

    completed = await client.post(f"/v1/orders/{order.id}/complete", headers=headers)
    assert completed.json()["decision"] == "account"
    assert completed.json()["order"]["order_status"] == "Completed"
    assert completed.json()["order"]["payment_status"] == "Pending"

    clock.advance(hours=3)
    paid = await client.post(
        f"/v1/ledger/customers/{ali['id']}/payments",
        json={"amount": 500, "payment_method": "Cash"},
        headers=headers,
    )
    assert paid.status_code == 200
    body = paid.json()
    assert body["payment"]["payment_number"] == "PAY-000001"
    assert Decimal(body["balance_before"]) == Decimal("1500")
    assert Decimal(body["balance_after"]) == Decimal("1000")
    assert body["allocations"] == []
    assert body["display"]["kind"] == "outstanding"
    assert body["side_effects"] == [{"name": "audit_log", "ok": True, "error": None}]

    summary = await client.get(f"/v1/ledger/customers/{ali['id']}/summary", headers=headers)
    assert summary.status_code == 200
    assert Decimal(summary.json()["summary"]["account_balance"]) == Decimal("1000")
    assert summary.json()["summary"]["unpaid_orders_count"] == 1
    assert summary.json()["summary"]["is_stale"] is False
    assert summary.json()["side_effects"] == [{"name": "ledger_cache", "ok": True, "error": None}]

    statement = await client.get(f"/v1/ledger/customers/{ali['id']}/statement", headers=headers)
    entries = statement.json()["statement"]["entries"]
    assert [entry["transaction_type"] for entry in entries] == ["debit", "credit"]
    assert entries[0]["order_number"] == order.order_number

    unpaid = await client.get(f"/v1/ledger/customers/{ali['id']}/unpaid-orders", headers=headers)
    assert [row["id"] for row in unpaid.json()] == [order.id]

    details = await client.get(f"/v1/ledger/payments/{body['payment']['id']}", headers=headers)
    assert details.json()["customer_name"] == "Ali Raza"
    assert details.json()["allocations"] == []

    with_balance = await client.get("/v1/ledger/customers/with-balance", headers=headers)
    assert [row["customer_id"] for row in with_balance.json()] == [ali["id"]]


@pytest.mark.asyncio
async def test_statement_csv_download(client, tenant, ali):
    headers = tenant.headers(tenant.manager)
    await client.post(
        f"/v1/ledger/customers/{ali['id']}/entries",
        json={"transaction_type": "debit", "amount": "250", "description": "Opening balance"},
        headers=headers,
    )

    response = await client.get(f"/v1/ledger/customers/{ali['id']}/statement.csv", headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == "attachment; filename=Ledger_Ali_Raza_2026-10-17.csv"
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == ["Date", "Description", "Order #", "Debit (Dr)", "Credit (Cr)", "Balance"]
    assert rows[1] == ["17 Oct 2026", "Opening balance", "-", "250.00", "", "250.00"]
    assert ["Account Balance", "", "", "", "", "250.00"] in rows


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -100])
async def test_invalid_payment_names_the_operation(client, tenant, ali, amount):
    response = await client.post(
        f"/v1/ledger/customers/{ali['id']}/payments",
        json={"amount": amount},
        headers=tenant.headers(tenant.cashier),
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_LEDGER_AMOUNT"
    assert response.json()["message"].startswith("Failed to record payment:")


@pytest.mark.asyncio
async def test_payment_to_unknown_customer(client, tenant):
    response = await client.post(
        "/v1/ledger/customers/9999/payments", json={"amount": 100}, headers=tenant.headers()
    )

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_CUSTOMER_NOT_FOUND"
    assert response.json()["message"] == "Failed to record payment: Customer with ID 9999 not found"


@pytest.mark.asyncio
async def test_other_tenant_cannot_read_customer(client, tenant, other_tenant, ali):
    response = await client.get(
        f"/v1/ledger/customers/{ali['id']}/summary", headers=other_tenant.headers()
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_entries_need_manager(client, tenant, ali):
    payload = {"transaction_type": "credit", "amount": "100", "description": "Goodwill adjustment"}

    denied = await client.post(
        f"/v1/ledger/customers/{ali['id']}/entries", json=payload, headers=tenant.headers(tenant.cashier)
    )
    assert denied.status_code == 403

    allowed = await client.post(
        f"/v1/ledger/customers/{ali['id']}/entries", json=payload, headers=tenant.headers(tenant.manager)
    )
    assert allowed.status_code == 200
    assert Decimal(allowed.json()["entry"]["balance_after"]) == Decimal("-100")


@pytest.mark.asyncio
async def test_record_only_entry_via_api(client, tenant, ali, db_session, make_order):
    customer = await db_session.get(Customer, ali["id"])
    order = await make_order(customer=customer, total="800")
    headers = tenant.headers(tenant.manager)
    await client.post(f"/v1/orders/{order.id}/account-debit", headers=headers)

    response = await client.post(
        f"/v1/ledger/customers/{ali['id']}/entries/record-only",
        json={"transaction_type": "credit", "amount": "300", "description": "Applied to order", "order_id": order.id},
        headers=headers,
    )

    assert response.status_code == 200
    entry = response.json()["entry"]
    assert Decimal(entry["balance_before"]) == Decimal(entry["balance_after"]) == Decimal("800")


@pytest.mark.asyncio
async def test_entry_linked_to_foreign_order_rejected(client, tenant, ali, make_order):
    order = await make_order(customer=None, payment_method=PaymentMethod.CASH)

    response = await client.post(
        f"/v1/ledger/customers/{ali['id']}/entries",
        json={"transaction_type": "debit", "amount": "50", "description": "Charge", "order_id": order.id},
        headers=tenant.headers(tenant.manager),
    )

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_integrity_reconcile_and_audit_trail(client, tenant, ali, db_session):
    headers = tenant.headers(tenant.manager)
    await client.post(
        f"/v1/ledger/customers/{ali['id']}/payments", json={"amount": 200}, headers=tenant.headers(tenant.cashier)
    )

    report = await client.get(f"/v1/ledger/customers/{ali['id']}/integrity", headers=headers)
    assert report.json()["is_valid"] is True

    reconcile = await client.post(f"/v1/ledger/customers/{ali['id']}/reconcile", headers=headers)
    assert reconcile.json()["changed"] is False

    trail = await client.get(f"/v1/ledger/customers/{ali['id']}/audit-trail", headers=headers)
    assert trail.status_code == 200
    actions = [event["action"] for event in trail.json()]
    assert actions == ["PAYMENT_RECORDED", "CUSTOMER_CREATED"]
    assert trail.json()[0]["actor_username"] == tenant.cashier.username

    denied = await client.get(f"/v1/ledger/customers/{ali['id']}/integrity", headers=tenant.headers(tenant.cashier))
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_split_payment_via_api(client, tenant, make_order):
    order = await make_order(total="1200", payment_method=PaymentMethod.UNPAID)
    headers = tenant.headers(tenant.cashier)

    needs_payment = await client.post(f"/v1/orders/{order.id}/complete", headers=headers)
    assert needs_payment.json()["payment_required"] is True

    response = await client.post(
        f"/v1/orders/{order.id}/split-payment",
        json={"payments": [
            {"payment_method": "Cash", "amount": "500"},
            {"payment_method": "EasyPaisa", "amount": "700", "reference_number": "EP-1"},
        ]},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["order"]["payment_status"] == "Paid"
    assert response.json()["order"]["payment_method"] == "Split"

    legs = await client.get(f"/v1/orders/{order.id}/payment-transactions", headers=headers)
    assert [Decimal(leg["amount"]) for leg in legs.json()] == [Decimal("500"), Decimal("700")]


@pytest.mark.asyncio
async def test_single_payment_via_api(client, tenant, make_order):
    order = await make_order(total="1000", payment_method=PaymentMethod.CASH)

    response = await client.post(
        f"/v1/orders/{order.id}/payment",
        json={"payment_method": "Cash", "discount_type": "fixed", "discount_value": "150", "cash_received": "1000"},
        headers=tenant.headers(tenant.cashier),
    )

    assert response.status_code == 200
    assert Decimal(response.json()["order"]["total_amount"]) == Decimal("850")
    assert Decimal(response.json()["change_due"]) == Decimal("150")


@pytest.mark.asyncio
async def test_status_update_via_api(client, tenant, make_order):
    order = await make_order(payment_method=PaymentMethod.CASH, order_status=OrderStatus.COMPLETED)
    headers = tenant.headers(tenant.cashier)

    response = await client.patch(
        f"/v1/orders/{order.id}/status", json={"order_status": "Cancelled"}, headers=headers
    )

    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ORDER_STATUS"
    assert response.json()["message"].startswith("Failed to update order status:")


@pytest.mark.asyncio
async def test_requests_need_a_token(client):
    response = await client.get("/v1/ledger/customers")

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_bad_token_and_inactive_staff_are_rejected(client, tenant, db_session):
    bad = await client.get("/v1/ledger/customers", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert bad.json()["error_code"] == "ERR_AUTH_001"

    tenant.cashier.is_active = False
    await db_session.commit()

    inactive = await client.get("/v1/ledger/customers", headers=tenant.headers(tenant.cashier))
    assert inactive.status_code == 403
    assert inactive.json()["error_code"] == "ERR_PERM_001"


@pytest.mark.asyncio
async def test_health_reports_cache_and_echoes_correlation_id(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "till-7-req-42"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["cache"] == "up"
    assert response.headers["X-Correlation-ID"] == "till-7-req-42"
    assert "X-Process-Time" in response.headers
