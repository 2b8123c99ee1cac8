"""Shared test constants and the fake Mellat web service."""

import xml.etree.ElementTree as ET
from datetime import datetime

import httpx

from bankpay.models.payment import GatewayAccount

MELLAT_ACCOUNT = GatewayAccount(
    gateway="mellat",
    terminal_id="1234567",
    user_name="merchant",
    user_password="s3cret",
    name="main",
)
VIRTUAL_ACCOUNT = GatewayAccount(gateway="virtual", terminal_id="virtual")

FIXED_NOW = datetime(2024, 5, 1, 14, 30, 5)
CALLBACK_URL = "https://shop.example.com/payments/1001/callback"

MELLAT_CALLBACK = {"ResCode": "0", "RefId": "REF123", "SaleOrderId": "1001", "SaleReferenceId": "55667788"}


def soap_response(operation: str, value: str) -> str:
    return (
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body>"
        f'<ns2:{operation}Response xmlns:ns2="http://interfaces.core.sw.bps.com/">'
        f"<return>{value}</return>"
        f"</ns2:{operation}Response>"
        "</soap:Body>"
        "</soap:Envelope>"
    )


class FakeMellatBank:
    """
    Stands in for the Mellat web service behind an httpx.MockTransport.

    Answers each SOAP operation with a configurable result and records
    every call with its parsed fields.
    """

    def __init__(self):
        self.results = {
            "bpPayRequest": "0,REF123",
            "bpCumulativeDynamicPayRequest": "0,REF123",
            "bpVerifyRequest": "0",
            "bpSettleRequest": "45",
            "bpReversalRequest": "0",
        }
        # operation -> exceptions or status codes served before the result
        self.failures: dict[str, list] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.urls: list[str] = []

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    def fields(self, operation: str) -> dict[str, str]:
        return next(fields for op, fields in self.calls if op == operation)

    def handler(self, request: httpx.Request) -> httpx.Response:
        root = ET.fromstring(request.content)
        body = next(el for el in root if el.tag.endswith("Body"))
        call = body[0]
        operation = call.tag.rsplit("}", 1)[-1]
        fields = {child.tag: child.text or "" for child in call}

        self.calls.append((operation, fields))
        self.urls.append(str(request.url))

        pending = self.failures.get(operation)
        if pending:
            failure = pending.pop(0)
            if isinstance(failure, int):
                return httpx.Response(failure, text="unavailable")
            raise failure

        return httpx.Response(200, text=soap_response(operation, self.results[operation]))
