"""
Paystack API client.

Only the two calls the payment flow needs are wrapped:

- POST /transaction/initialize: create a transaction and get the checkout URL
- GET  /transaction/verify/<reference>: authoritative transaction outcome

Amounts are sent and received in minor units (kobo), i.e. naira x 100.
Connection errors and timeouts are retried a few times with exponential
backoff; anything else, including an unsuccessful or malformed response,
raises ExternalProviderError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import PAYMENT_PROVIDER_TIMEOUT, PAYSTACK_BASE_URL
from .errors import ExternalProviderError

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount: int) -> int:
    return int(amount) * MINOR_UNITS_PER_MAJOR


@dataclass
class ProviderInitResult:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass
class ProviderVerification:
    status: str  # provider transaction status: success, failed, abandoned, ongoing...
    amount_minor: Optional[int]
    reference: str

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status in ("failed", "reversed")


class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: int = PAYMENT_PROVIDER_TIMEOUT,
    ):
        if not secret_key:
            raise ValueError("Paystack secret key is required")
        self._secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )
    def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        if method == "POST":
            return requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        return requests.get(url, headers=self._headers(), timeout=self.timeout)

    def _call(self, operation: str, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._send(method, path, payload)
        except requests.RequestException as exc:
            logger.warning("Paystack %s request failed: %s", operation, exc)
            raise ExternalProviderError(operation, str(exc)) from exc

        try:
            body = response.json()
        except ValueError as exc:
            logger.warning("Paystack %s returned non-JSON (HTTP %s)", operation, response.status_code)
            raise ExternalProviderError(operation, f"invalid JSON (HTTP {response.status_code})") from exc

        if not isinstance(body, dict):
            raise ExternalProviderError(operation, "unexpected response shape")
        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.warning("Paystack %s rejected: %s", operation, message)
            raise ExternalProviderError(operation, message)

        data = body.get("data")
        if not isinstance(data, dict):
            raise ExternalProviderError(operation, "response has no data")
        return data

    def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProviderInitResult:
        payload = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        data = self._call("initialize", "POST", "/transaction/initialize", payload)

        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise ExternalProviderError("initialize", "missing authorization_url")

        logger.info("Paystack transaction initialized: %s", reference)
        return ProviderInitResult(
            authorization_url=authorization_url,
            reference=data.get("reference") or reference,
            access_code=data.get("access_code"),
        )

    def verify_transaction(self, reference: str) -> ProviderVerification:
        data = self._call("verify", "GET", f"/transaction/verify/{reference}")

        status = data.get("status")
        if not status:
            raise ExternalProviderError("verify", "missing transaction status")

        amount = data.get("amount")
        return ProviderVerification(
            status=str(status),
            amount_minor=int(amount) if amount is not None else None,
            reference=data.get("reference") or reference,
        )
