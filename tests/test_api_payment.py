"""
Tests for the payment endpoints.

The shared client runs with simulated payments; provider-backed tests
override the coordinator dependency with a mocked Paystack client.
"""
from unittest.mock import patch

import pytest

from chow_bot.dependencies import get_payment_coordinator
from chow_bot.services.payment import PaymentCoordinator
from tests.test_helpers import BASE_URL, paystack_init_body, paystack_verify_body, provider_response

USER = "pay-user"


def fill(client, *names, user_id=USER):
    menu = {item["name"]: item["id"] for item in client.get("/api/menu").json()["items"]}
    for name in names:
        client.post("/api/chat/message", json={"userId": user_id, "message": f"add:{menu[name]}"})


def initialize(client, user_id=USER):
    return client.post("/api/payment/initialize", json={"userId": user_id})


def verify(client, reference, status=None, user_id=USER):
    body = {"reference": reference, "userId": user_id}
    if status is not None:
        body["status"] = status
    return client.post("/api/payment/verify", json=body)


@pytest.fixture
def paystack_client(client, paystack):
    """The shared client with a Paystack-backed coordinator."""
    storage = client.app_storage
    client.app.dependency_overrides[get_payment_coordinator] = lambda: PaymentCoordinator(
        storage, provider=paystack, base_url=BASE_URL, allow_simulation=True
    )
    return client


class TestInitialize:
    def test_simulated_initialize(self, client):
        fill(client, "Jollof Rice with Chicken", "Chapman Drink")

        response = initialize(client)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["message"] == "Demo payment initialized successfully"
        data = body["data"]
        assert data["amount"] == 3300
        assert data["provider"] == "simulated"
        assert data["reference"].startswith("sim_")
        assert data["authorization_url"] == f"{BASE_URL}/api/payment/simulate?reference={data['reference']}"
        assert data["poll_interval_seconds"] > 0
        assert data["poll_timeout_seconds"] >= data["poll_interval_seconds"]

    def test_nothing_to_pay(self, client):
        response = initialize(client, user_id="new-user")

        assert response.status_code == 400
        assert response.json() == {"status": False, "message": "No order to pay for. Please place an order first."}

    def test_empty_cart(self, client):
        client.app_storage.create_user(USER)
        client.app_storage.get_or_create_cart(USER)

        response = initialize(client)

        assert response.status_code == 400
        assert response.json()["status"] is False

    def test_get_gives_instructions(self, client):
        response = client.get("/api/payment/initialize")

        assert response.status_code == 200
        assert "POST" in response.json()["error"]

    @patch("chow_bot.payment_provider.requests.post")
    def test_paystack_initialize(self, mock_post, paystack_client):
        mock_post.side_effect = lambda url, json, headers, timeout: provider_response(
            paystack_init_body(json["reference"])
        )
        fill(paystack_client, "Pepper Soup")

        body = initialize(paystack_client).json()

        assert body["message"] == "Paystack payment initialized successfully"
        assert body["data"]["provider"] == "paystack"
        assert body["data"]["authorization_url"] == "https://checkout.paystack.test/abc"
        assert mock_post.call_args.kwargs["json"]["callback_url"] == f"{BASE_URL}/api/payment/verify"

    def test_provider_unavailable_without_simulation(self, client):
        storage = client.app_storage
        client.app.dependency_overrides[get_payment_coordinator] = lambda: PaymentCoordinator(
            storage, provider=None, base_url=BASE_URL, allow_simulation=False
        )
        fill(client, "Pepper Soup")

        response = initialize(client)

        assert response.status_code == 502
        assert response.json()["status"] is False


class TestVerify:
    def test_simulated_success(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        response = verify(client, reference, "success")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["message"] == "Payment verified successfully"
        assert body["data"]["amount"] == 1500
        assert body["data"]["status"] == "success"

        current = client.get(f"/api/orders/current/{USER}").json()
        assert current == {"items": [], "total": 0, "id": None, "status": None, "paymentStatus": None}

    def test_simulated_failure(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        body = verify(client, reference, "failed").json()

        assert body["status"] is False
        assert body["data"]["status"] == "failed"
        current = client.get(f"/api/orders/current/{USER}").json()
        assert current["status"] == "placed"
        assert current["paymentStatus"] == "failed"

    def test_poll_without_outcome_is_pending(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        body = verify(client, reference).json()

        assert body["status"] is True
        assert body["data"]["status"] == "pending"

    def test_verify_twice(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        verify(client, reference, "success")
        body = verify(client, reference, "success").json()

        assert body["data"]["status"] == "success"
        history = client.get(f"/api/orders/history/{USER}").json()
        assert len(history) == 1

    def test_unknown_reference(self, client):
        response = verify(client, "sim_99_nope", "success")

        assert response.status_code == 404
        assert response.json() == {"status": False, "message": "Order not found"}

    def test_wrong_user(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        response = verify(client, reference, "success", user_id="intruder")

        assert response.status_code == 404

    def test_invalid_claim_rejected(self, client):
        response = client.post(
            "/api/payment/verify",
            json={"reference": "sim_1_x", "userId": USER, "status": "paid"},
        )
        assert response.status_code == 422

    @patch("chow_bot.payment_provider.requests.get")
    @patch("chow_bot.payment_provider.requests.post")
    def test_paystack_claim_is_reverified(self, mock_post, mock_get, paystack_client):
        mock_post.side_effect = lambda url, json, headers, timeout: provider_response(
            paystack_init_body(json["reference"])
        )
        mock_get.return_value = provider_response(paystack_verify_body("ongoing", amount=150000))
        fill(paystack_client, "Pepper Soup")
        reference = initialize(paystack_client).json()["data"]["reference"]

        body = verify(paystack_client, reference, "success").json()

        assert body["data"]["status"] == "pending"
        assert mock_get.call_args[0][0].endswith(f"/transaction/verify/{reference}")


class TestRedirectAndSimulationPages:
    @patch("chow_bot.payment_provider.requests.get")
    @patch("chow_bot.payment_provider.requests.post")
    def test_paystack_redirect_success(self, mock_post, mock_get, paystack_client):
        mock_post.side_effect = lambda url, json, headers, timeout: provider_response(
            paystack_init_body(json["reference"])
        )
        mock_get.return_value = provider_response(paystack_verify_body("success", amount=150000))
        fill(paystack_client, "Pepper Soup")
        reference = initialize(paystack_client).json()["data"]["reference"]

        response = paystack_client.get(f"/api/payment/verify?trxref={reference}&reference={reference}")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Payment Successful!" in response.text
        assert "payment_complete" in response.text
        assert reference in response.text
        history = paystack_client.get(f"/api/orders/history/{USER}").json()
        assert history[0]["status"] == "paid"

    def test_redirect_without_reference(self, client):
        response = client.get("/api/payment/verify")
        assert response.status_code == 400

    def test_redirect_unknown_reference(self, client):
        response = client.get("/api/payment/verify?reference=pay_1_unknown")

        assert response.status_code == 404
        assert "Payment Not Found" in response.text

    def test_redirect_escapes_reference(self, client):
        response = client.get("/api/payment/verify", params={"reference": "<script>alert(1)</script>"})

        assert "<script>alert(1)</script>" not in response.text
        assert "&lt;script&gt;" in response.text

    def test_simulation_page(self, client):
        fill(client, "Pepper Soup", "Chapman Drink")
        reference = initialize(client).json()["data"]["reference"]

        response = client.get(f"/api/payment/simulate?reference={reference}")

        assert response.status_code == 200
        assert "Payment Demo" in response.text
        assert "1x Pepper Soup" in response.text
        assert "₦2300" in response.text
        assert '"/api/payment/verify"' in response.text
        assert f'"{reference}"' in response.text

    def test_simulation_page_on_root_mount(self, client):
        fill(client, "Pepper Soup")
        reference = initialize(client).json()["data"]["reference"]

        response = client.get(f"/payment/simulate?reference={reference}")

        assert '"/payment/verify"' in response.text

    def test_simulation_page_unknown_reference(self, client):
        response = client.get("/api/payment/simulate?reference=sim_1_missing")
        assert response.status_code == 404

    @patch("chow_bot.payment_provider.requests.post")
    def test_simulation_page_refuses_paystack_reference(self, mock_post, paystack_client):
        mock_post.side_effect = lambda url, json, headers, timeout: provider_response(
            paystack_init_body(json["reference"])
        )
        fill(paystack_client, "Pepper Soup")
        reference = initialize(paystack_client).json()["data"]["reference"]

        response = paystack_client.get(f"/api/payment/simulate?reference={reference}")

        assert response.status_code == 404
