"""Thin client for the Mollie v2 payments API."""
import logging

import requests

logger = logging.getLogger(__name__)

MOLLIE_API_URL = "https://api.mollie.com/v2"
CURRENCY = "EUR"


class PaymentError(Exception):
    pass


class GatewayConfigError(PaymentError):
    """The gateway cannot be used at all (no API key)."""


class GatewayError(PaymentError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class MollieGateway:
    def __init__(self, api_key, base_url=MOLLIE_API_URL, session=None, timeout=10):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method, path, **kwargs):
        if not self.api_key:
            raise GatewayConfigError("MOLLIE_API_KEY is not configured")
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = self.session.request(method, url, headers=headers,
                                            timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GatewayError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise GatewayError(f"{method} {path} returned {response.status_code}",
                               status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"{method} {path} returned a non-JSON body",
                               status_code=response.status_code) from exc

    def create_payment(self, amount, description, redirect_url, webhook_url, metadata):
        """Create a hosted-checkout payment and return Mollie's payment object."""
        payload = {
            "amount": {"currency": CURRENCY, "value": amount},
            "description": description,
            "redirectUrl": redirect_url,
            "webhookUrl": webhook_url,
            "metadata": metadata,
        }
        payment = self._request("POST", "/payments", json=payload)
        logger.info("Created Mollie payment %s (%s %s)", payment.get("id"), CURRENCY, amount)
        return payment

    def get_payment(self, payment_id):
        return self._request("GET", f"/payments/{payment_id}")

    @staticmethod
    def checkout_url(payment):
        try:
            return payment["_links"]["checkout"]["href"]
        except (KeyError, TypeError) as exc:
            raise GatewayError("payment has no checkout link") from exc
