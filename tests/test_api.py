"""HTTP API tests, served in-process through httpx's ASGI transport."""

import httpx
import pytest
import pytest_asyncio

from bankpay.main import app

from tests.helpers import MELLAT_CALLBACK


@pytest_asyncio.fixture
async def client(online_payment):
    app.state.online_payment = online_payment
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del app.state.online_payment


async def request_payment(client, tracking_number=1001, gateway="mellat", amount="125000"):
    return await client.post(
        "/api/payments",
        json={"tracking_number": tracking_number, "amount": amount, "gateway": gateway},
    )


@pytest.mark.asyncio
async def test_returns_transporter(client, fake_bank):
    """POST /payments returns the transporter and derives the callback URL."""
    response = await request_payment(client)

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] is True
    assert body["reference_id"] == "REF123"
    assert body["transporter"]["method"] == "post"
    assert body["transporter"]["fields"] == {"RefId": "REF123"}
    assert fake_bank.fields("bpPayRequest")["callBackUrl"].endswith("/api/payments/1001/callback")


@pytest.mark.asyncio
async def test_business_failure_is_a_200_with_message(client, fake_bank):
    """A bank refusal is a normal response carrying the message."""
    fake_bank.results["bpPayRequest"] = "21"

    body = (await request_payment(client)).json()

    assert body["succeeded"] is False
    assert body["message"]
    assert body["transporter"] is None


@pytest.mark.asyncio
async def test_duplicate_tracking_number_is_a_conflict(client):
    """Reusing a tracking number answers 409."""
    await request_payment(client)
    response = await request_payment(client)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_gateway(client):
    """An unregistered gateway answers 400."""
    response = await request_payment(client, gateway="nowhere")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_invalid_amount(client):
    """A non-positive amount answers 422."""
    response = await request_payment(client, amount="0")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_fractional_amount_below_one_unit(client, fake_bank):
    """An amount that would truncate to zero is refused before reaching the bank."""
    response = await request_payment(client, amount="0.5")

    assert response.status_code == 422
    assert fake_bank.calls == []


@pytest.mark.asyncio
async def test_gateway_unreachable(client, fake_bank):
    """A transport failure answers 502."""
    fake_bank.failures["bpPayRequest"] = [httpx.ConnectError("refused")]

    response = await request_payment(client)

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_posted_form_verifies(client, fake_bank):
    """A form-posted callback is verified and settled."""
    await request_payment(client)

    response = await client.post("/api/payments/1001/callback", data=MELLAT_CALLBACK)

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] is True
    assert body["transaction_code"] == "55667788"
    assert body["requires_reconciliation"] is False
    assert fake_bank.operations() == ["bpPayRequest", "bpVerifyRequest", "bpSettleRequest"]


@pytest.mark.asyncio
async def test_query_string_callback(client):
    """A GET callback with a query string is verified."""
    await request_payment(client)

    response = await client.get("/api/payments/1001/callback", params=MELLAT_CALLBACK)

    assert response.json()["succeeded"] is True


@pytest.mark.asyncio
async def test_repeated_callback_is_idempotent(client, fake_bank):
    """A repeated callback returns the same body without a second verify."""
    await request_payment(client)
    first = await client.post("/api/payments/1001/callback", data=MELLAT_CALLBACK)
    second = await client.post("/api/payments/1001/callback", data=MELLAT_CALLBACK)

    assert first.json() == second.json()
    assert fake_bank.operations().count("bpVerifyRequest") == 1


@pytest.mark.asyncio
async def test_callback_for_unknown_tracking_number(client):
    """A callback for an unknown tracking number answers 404."""
    response = await client.post("/api/payments/404/callback", data=MELLAT_CALLBACK)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_full_refund_endpoint(client, fake_bank):
    """An empty refund body reverses the full amount."""
    await request_payment(client)
    await client.post("/api/payments/1001/callback", data=MELLAT_CALLBACK)

    response = await client.post("/api/payments/1001/refund", json={})

    assert response.status_code == 200
    assert response.json()["succeeded"] is True
    assert fake_bank.fields("bpReversalRequest")["saleReferenceId"] == "55667788"


@pytest.mark.asyncio
async def test_refund_before_verify_is_a_conflict(client):
    """Refunding an unverified payment answers 409."""
    await request_payment(client)

    response = await client.post("/api/payments/1001/refund", json={})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_partial_refund_on_virtual_gateway(client):
    """A refund amount is honoured on gateways with partial refunds."""
    body = (await request_payment(client, gateway="virtual", amount="1000")).json()
    ref_id = body["transporter"]["fields"]["RefId"]
    await client.get(
        "/api/payments/1001/callback",
        params={"Result": "0", "RefId": ref_id, "TransactionCode": "VTX-1"},
    )

    response = await client.post("/api/payments/1001/refund", json={"amount": "400"})

    assert response.json()["amount"] == "400"


@pytest.mark.asyncio
async def test_trace_lists_transactions(client):
    """The trace shows the state and every stored transaction."""
    await request_payment(client)
    await client.post("/api/payments/1001/callback", data={**MELLAT_CALLBACK, "ResCode": "17"})
    await client.post("/api/payments/1001/callback", data=MELLAT_CALLBACK)

    body = (await client.get("/api/payments/1001")).json()

    assert body["state"] == "settled"
    assert [(tx["type"], tx["succeeded"]) for tx in body["transactions"]] == [
        ("request", True),
        ("verify", False),
        ("verify", True),
    ]


@pytest.mark.asyncio
async def test_trace_for_unknown_payment(client):
    """The trace of an unknown payment answers 404."""
    response = await client.get("/api/payments/404")
    assert response.status_code == 404
