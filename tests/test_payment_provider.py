"""
Tests for the Paystack client. HTTP calls are mocked at ``requests``.
"""
from unittest.mock import patch

import pytest
import requests

from chow_bot.errors import ExternalProviderError
from chow_bot.payment_provider import PaystackClient, ProviderVerification, to_minor_units
from tests.test_helpers import provider_response

INIT_OK = {
    "status": True,
    "message": "Authorization URL created",
    "data": {
        "authorization_url": "https://checkout.paystack.test/abc",
        "access_code": "abc",
        "reference": "pay_1_xyz",
    },
}


def test_minor_units():
    assert to_minor_units(2500) == 250000
    assert to_minor_units(0) == 0


def test_secret_key_required():
    with pytest.raises(ValueError):
        PaystackClient("")


class TestInitialize:
    @patch("chow_bot.payment_provider.requests.post")
    def test_success(self, mock_post, paystack):
        mock_post.return_value = provider_response(INIT_OK)

        result = paystack.initialize_transaction(
            email="customerabc@restaurant.com",
            amount_minor=250000,
            reference="pay_1_xyz",
            callback_url="http://testserver/api/payment/verify",
            metadata={"orderId": "1"},
        )

        assert result.authorization_url == "https://checkout.paystack.test/abc"
        assert result.access_code == "abc"
        assert result.reference == "pay_1_xyz"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.paystack.test/transaction/initialize"
        assert kwargs["headers"]["Authorization"] == "Bearer sk_test_secret"
        assert kwargs["json"]["amount"] == 250000
        assert kwargs["json"]["callback_url"] == "http://testserver/api/payment/verify"
        assert kwargs["json"]["metadata"] == {"orderId": "1"}
        assert kwargs["timeout"] == 5

    @patch("chow_bot.payment_provider.requests.post")
    def test_rejected(self, mock_post, paystack):
        mock_post.return_value = provider_response({"status": False, "message": "Invalid key"}, status_code=401)

        with pytest.raises(ExternalProviderError) as exc_info:
            paystack.initialize_transaction("a@b.c", 100, "pay_1_x", "http://cb")

        assert exc_info.value.operation == "initialize"
        assert exc_info.value.reason == "Invalid key"

    @patch("chow_bot.payment_provider.requests.post")
    def test_missing_authorization_url(self, mock_post, paystack):
        mock_post.return_value = provider_response({"status": True, "data": {"reference": "pay_1_x"}})

        with pytest.raises(ExternalProviderError):
            paystack.initialize_transaction("a@b.c", 100, "pay_1_x", "http://cb")

    @patch("chow_bot.payment_provider.requests.post")
    def test_non_json_body(self, mock_post, paystack):
        response = provider_response(None, status_code=502)
        response.json.side_effect = ValueError("no json")
        mock_post.return_value = response

        with pytest.raises(ExternalProviderError) as exc_info:
            paystack.initialize_transaction("a@b.c", 100, "pay_1_x", "http://cb")
        assert "502" in exc_info.value.reason

    @patch("chow_bot.payment_provider.requests.post")
    def test_connection_errors_are_retried(self, mock_post, paystack):
        mock_post.side_effect = [requests.ConnectionError("reset"), provider_response(INIT_OK)]

        result = paystack.initialize_transaction("a@b.c", 100, "pay_1_xyz", "http://cb")

        assert result.authorization_url == "https://checkout.paystack.test/abc"
        assert mock_post.call_count == 2

    @patch("chow_bot.payment_provider.requests.post")
    def test_persistent_timeout(self, mock_post, paystack):
        mock_post.side_effect = requests.Timeout("slow")

        with pytest.raises(ExternalProviderError):
            paystack.initialize_transaction("a@b.c", 100, "pay_1_x", "http://cb")
        assert mock_post.call_count == 3


class TestVerify:
    @patch("chow_bot.payment_provider.requests.get")
    def test_success(self, mock_get, paystack):
        mock_get.return_value = provider_response({
            "status": True,
            "data": {"status": "success", "amount": 250000, "reference": "pay_1_xyz"},
        })

        verification = paystack.verify_transaction("pay_1_xyz")

        assert verification == ProviderVerification(status="success", amount_minor=250000, reference="pay_1_xyz")
        assert verification.succeeded
        assert not verification.failed
        assert mock_get.call_args[0][0] == "https://api.paystack.test/transaction/verify/pay_1_xyz"

    @pytest.mark.parametrize("status,succeeded,failed", [
        ("failed", False, True),
        ("reversed", False, True),
        ("abandoned", False, False),
        ("ongoing", False, False),
    ])
    @patch("chow_bot.payment_provider.requests.get")
    def test_statuses(self, mock_get, paystack, status, succeeded, failed):
        mock_get.return_value = provider_response({"status": True, "data": {"status": status, "amount": 100}})

        verification = paystack.verify_transaction("pay_1_x")

        assert verification.succeeded is succeeded
        assert verification.failed is failed
        assert verification.reference == "pay_1_x"

    @patch("chow_bot.payment_provider.requests.get")
    def test_unknown_reference(self, mock_get, paystack):
        mock_get.return_value = provider_response(
            {"status": False, "message": "Transaction reference not found"}, status_code=400
        )

        with pytest.raises(ExternalProviderError) as exc_info:
            paystack.verify_transaction("pay_1_nope")
        assert exc_info.value.operation == "verify"

    @patch("chow_bot.payment_provider.requests.get")
    def test_missing_status(self, mock_get, paystack):
        mock_get.return_value = provider_response({"status": True, "data": {"amount": 100}})

        with pytest.raises(ExternalProviderError):
            paystack.verify_transaction("pay_1_x")
