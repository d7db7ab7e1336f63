"""Tests for the Mollie client, using a stub in place of requests.Session."""

import pytest
import requests

from gateway import GatewayConfigError, GatewayError, MollieGateway


class StubResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


class StubSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_missing_key_fails_before_any_request():
    session = StubSession(StubResponse(body={}))
    gateway = MollieGateway("", session=session)
    with pytest.raises(GatewayConfigError):
        gateway.get_payment("tr_1")
    assert session.calls == []


def test_create_payment_sends_mollie_payload():
    body = {"id": "tr_abc", "_links": {"checkout": {"href": "https://www.mollie.com/checkout/abc"}}}
    session = StubSession(StubResponse(201, body))
    gateway = MollieGateway("test_key", base_url="https://api.mollie.test/v2/", session=session, timeout=3)

    payment = gateway.create_payment("14.99", "Marcodonato Pro - Maandelijkse toegang",
                                     "https://app/payment/success?plan=Pro", "https://app/payment/webhook",
                                     {"userId": "1", "plan": "Pro"})

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://api.mollie.test/v2/payments")
    assert kwargs["headers"] == {"Authorization": "Bearer test_key"}
    assert kwargs["timeout"] == 3
    assert kwargs["json"]["amount"] == {"currency": "EUR", "value": "14.99"}
    assert kwargs["json"]["metadata"] == {"userId": "1", "plan": "Pro"}
    assert kwargs["json"]["webhookUrl"] == "https://app/payment/webhook"
    assert gateway.checkout_url(payment) == "https://www.mollie.com/checkout/abc"


def test_get_payment_uses_id_in_path():
    session = StubSession(StubResponse(200, {"id": "tr_x", "status": "paid"}))
    payment = MollieGateway("test_key", session=session).get_payment("tr_x")
    assert payment["status"] == "paid"
    assert session.calls[0][:2] == ("GET", "https://api.mollie.com/v2/payments/tr_x")


def test_error_status_raises_gateway_error():
    session = StubSession(StubResponse(422, {"detail": "bad amount"}))
    with pytest.raises(GatewayError) as excinfo:
        MollieGateway("test_key", session=session).get_payment("tr_x")
    assert excinfo.value.status_code == 422


def test_network_error_raises_gateway_error():
    session = StubSession(error=requests.ConnectionError("connection refused"))
    with pytest.raises(GatewayError):
        MollieGateway("test_key", session=session).get_payment("tr_x")


def test_non_json_body_raises_gateway_error():
    session = StubSession(StubResponse(200, None))
    with pytest.raises(GatewayError):
        MollieGateway("test_key", session=session).get_payment("tr_x")


def test_checkout_url_missing_link():
    with pytest.raises(GatewayError):
        MollieGateway.checkout_url({"id": "tr_x", "_links": {}})
