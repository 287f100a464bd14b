"""
Payment Routes for Chow Bot
===========================

Endpoints:
----------
- POST /payment/initialize: Start a payment for the user's order
- GET  /payment/initialize: Usage hint (the endpoint is POST only)
- POST /payment/verify: Client poll / simulation result; reconciles a reference
- GET  /payment/verify?reference=: Paystack redirect target
- GET  /payment/simulate?reference=: Local simulation page

Payment Window Flow:
--------------------
1. The chat widget calls POST /payment/initialize and opens
   ``authorization_url`` in a new window.
2. The widget polls POST /payment/verify every few seconds until the
   outcome is no longer ``pending`` or the poll ceiling is reached.
3. The payment window (Paystack redirect or simulation page) notifies the
   opener with ``{type: "payment_complete", status, reference}``.

Stopping the poll never cancels or fails a payment; the next status check
picks up the outcome.
"""

import html
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from .. import config
from ..dependencies import get_payment_coordinator
from ..dialogue import format_money
from ..errors import ExternalProviderError, InvalidTransition, NotFound
from ..schemas.payment import (
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentIntentOut,
    PaymentResultOut,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)
from ..services.payment import OUTCOME_FAILED, OUTCOME_SUCCESS, PROVIDER_SIMULATED, PaymentCoordinator
from .chat import limiter

logger = logging.getLogger(__name__)

payment_router = APIRouter(prefix="/payment", tags=["Payment"])


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": False, "message": message})


def _base_url(request: Request) -> str:
    return config.PUBLIC_BASE_URL or str(request.base_url).rstrip("/")


def _js_string(value: Optional[str]) -> str:
    """JSON-encode for inline <script> use."""
    return json.dumps(value).replace("</", "<\\/")


# =============================================================================
# Initialize
# =============================================================================

@payment_router.post("/initialize", response_model=PaymentInitializeResponse)
@limiter.limit(config.get_rate_limit_chat)
def initialize_payment(
    request: Request,
    req: PaymentInitializeRequest,
    payments: PaymentCoordinator = Depends(get_payment_coordinator),
):
    try:
        intent = payments.initiate(req.userId, base_url=_base_url(request))
    except NotFound:
        return _failure(400, "No order to pay for. Please place an order first.")
    except InvalidTransition as exc:
        return _failure(400, str(exc))
    except ExternalProviderError:
        logger.warning("Payment initialization failed for session %s", req.userId, exc_info=True)
        return _failure(502, "Payment service is unavailable. Please try again shortly.")

    if intent.provider == PROVIDER_SIMULATED:
        message = "Demo payment initialized successfully"
    else:
        message = "Paystack payment initialized successfully"

    return PaymentInitializeResponse(
        status=True,
        message=message,
        data=PaymentIntentOut(
            authorization_url=intent.authorization_url,
            reference=intent.reference,
            amount=intent.amount,
            provider=intent.provider,
            poll_interval_seconds=intent.poll_interval_seconds,
            poll_timeout_seconds=intent.poll_timeout_seconds,
        ),
    )


@payment_router.get("/initialize")
def initialize_payment_instructions():
    return {
        "error": "Please use POST method for payment initialization",
        "instruction": "This endpoint should be called via POST request from the chat interface",
    }


# =============================================================================
# Verify
# =============================================================================

@payment_router.post("/verify", response_model=PaymentVerifyResponse)
@limiter.limit(config.get_rate_limit_chat)
def verify_payment(
    request: Request,
    req: PaymentVerifyRequest,
    payments: PaymentCoordinator = Depends(get_payment_coordinator),
):
    try:
        result = payments.reconcile(req.reference, claimed_outcome=req.status, session_id=req.userId)
    except NotFound:
        return _failure(404, "Order not found")

    data = PaymentResultOut(orderId=result.order_id, amount=result.amount, status=result.status)
    if result.status == OUTCOME_SUCCESS:
        return PaymentVerifyResponse(status=True, message="Payment verified successfully", data=data)
    if result.status == OUTCOME_FAILED:
        return PaymentVerifyResponse(status=False, message="Payment verification failed", data=data)
    return PaymentVerifyResponse(status=True, message="Payment is awaiting confirmation", data=data)


_RESULT_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>{title} - Restaurant ChatBot</title>
    <style>
        body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; background: {background}; }}
        .container {{ background: white; color: #333; padding: 40px; border-radius: 15px;
                      box-shadow: 0 10px 30px rgba(0,0,0,0.3); max-width: 480px; margin: 0 auto; }}
        button {{ padding: 12px 30px; border: none; border-radius: 8px; cursor: pointer;
                  background: #2196F3; color: white; font-size: 16px; }}
    </style>
</head>
<body>
    <div class="container">
        <div style="font-size: 4em;">{icon}</div>
        <h1>{title}</h1>
        <p><strong>Reference:</strong> {reference}</p>
        <p>{body}</p>
        <button onclick="closeAndNotify()">Close Window</button>
    </div>
    <script>
        var outcome = {status_js};
        var reference = {reference_js};
        function closeAndNotify() {{
            if (window.opener && outcome !== "pending") {{
                window.opener.postMessage({{type: "payment_complete", status: outcome, reference: reference}}, "*");
            }}
            window.close();
        }}
        if (outcome !== "pending") {{
            setTimeout(closeAndNotify, 5000);
        }}
    </script>
</body>
</html>
"""


def _result_page(reference: str, status: str, amount: Optional[int] = None, status_code: int = 200) -> HTMLResponse:
    if status == OUTCOME_SUCCESS:
        title, icon, background = "Payment Successful!", "✅", "#4CAF50"
        body = "Thank you for your order! Your payment has been processed successfully."
        if amount is not None:
            body = f"Amount: {html.escape(format_money(amount))}. " + body
    elif status == OUTCOME_FAILED:
        title, icon, background = "Payment Failed", "❌", "#f44336"
        body = "Your payment could not be completed. Return to the chat to try again."
    elif status == "not_found":
        title, icon, background = "Payment Not Found", "❓", "#9E9E9E"
        body = "We could not find a payment with this reference."
    else:
        title, icon, background = "Payment Processing", "⏳", "#FF9800"
        body = "Your payment is still being confirmed. You can close this window; the chat will update."

    page = _RESULT_PAGE.format(
        title=title,
        icon=icon,
        background=background,
        reference=html.escape(reference or ""),
        body=body,
        status_js=_js_string(status if status in (OUTCOME_SUCCESS, OUTCOME_FAILED) else "pending"),
        reference_js=_js_string(reference),
    )
    return HTMLResponse(content=page, status_code=status_code)


@payment_router.get("/verify", response_class=HTMLResponse)
def verify_payment_redirect(
    reference: Optional[str] = Query(None),
    trxref: Optional[str] = Query(None),
    payments: PaymentCoordinator = Depends(get_payment_coordinator),
):
    """Provider redirect target. The outcome is re-verified, never taken from the query."""
    reference = reference or trxref
    if not reference:
        return HTMLResponse(content="No reference provided", status_code=400)

    try:
        result = payments.reconcile(reference)
    except NotFound:
        return _result_page(reference, "not_found", status_code=404)

    return _result_page(reference, result.status, amount=result.amount)


# =============================================================================
# Simulation
# =============================================================================

_SIMULATION_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>Payment Demo - Restaurant ChatBot</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 500px; margin: 50px auto; padding: 20px;
                background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); min-height: 100vh; }}
        .payment-container {{ background: white; padding: 30px; border-radius: 15px;
                              box-shadow: 0 10px 30px rgba(0,0,0,0.2); }}
        .order-item {{ display: flex; justify-content: space-between; padding: 8px 0; border-bottom: 1px solid #eee; }}
        .order-total {{ display: flex; justify-content: space-between; font-size: 1.2em; font-weight: bold;
                        color: #4CAF50; margin-top: 15px; padding-top: 15px; border-top: 2px solid #4CAF50; }}
        button {{ padding: 12px 24px; margin: 10px 5px; border: none; border-radius: 8px; cursor: pointer;
                  font-size: 16px; color: white; }}
        .success-btn {{ background: #4CAF50; }}
        .fail-btn {{ background: #f44336; }}
    </style>
</head>
<body>
    <div class="payment-container">
        <h1 style="text-align: center; color: #333;">💳 Payment Demo</h1>
        <h3 style="color: #666;">Order Summary:</h3>
        {lines}
        <div class="order-total"><span>Total Amount:</span><span>{total}</span></div>
        <div style="text-align: center; margin: 30px 0;">
            <p><strong>Select payment outcome:</strong></p>
            <button class="success-btn" onclick="completePayment('success')">✅ Simulate Successful Payment</button>
            <button class="fail-btn" onclick="completePayment('failed')">❌ Simulate Failed Payment</button>
        </div>
        <div id="statusMessage" style="text-align: center; min-height: 40px;"></div>
    </div>
    <script>
        var reference = {reference_js};
        var userId = {user_js};
        var verifyUrl = {verify_url_js};
        function completePayment(status) {{
            var statusEl = document.getElementById("statusMessage");
            statusEl.textContent = "Processing...";
            fetch(verifyUrl, {{
                method: "POST",
                headers: {{"Content-Type": "application/json"}},
                body: JSON.stringify({{reference: reference, userId: userId, status: status}})
            }}).then(function (response) {{
                return response.json();
            }}).then(function (data) {{
                var outcome = (data.data && data.data.status) || status;
                statusEl.textContent = outcome === "success" ? "✅ Payment Successful!" : "❌ Payment Failed!";
                if (window.opener) {{
                    window.opener.postMessage({{type: "payment_complete", status: outcome, reference: reference}}, "*");
                }}
                setTimeout(function () {{ window.close(); }}, 2000);
            }}).catch(function () {{
                statusEl.textContent = "Could not reach the server. Please try again.";
            }});
        }}
    </script>
</body>
</html>
"""


@payment_router.get("/simulate", response_class=HTMLResponse)
def simulate_payment(
    request: Request,
    reference: str = Query(..., min_length=1),
    payments: PaymentCoordinator = Depends(get_payment_coordinator),
):
    """Local stand-in for the provider checkout; only serves simulated references."""
    try:
        attempt, order = payments.lookup(reference)
    except NotFound:
        return HTMLResponse(content="Payment not found", status_code=404)
    if attempt.provider != PROVIDER_SIMULATED:
        return HTMLResponse(content="Payment not found", status_code=404)

    lines = "\n".join(
        '<div class="order-item"><span>{qty}x {name}</span><span>{price}</span></div>'.format(
            qty=line.quantity,
            name=html.escape(line.name),
            price=html.escape(format_money(line.line_total)),
        )
        for line in order.items
    )
    verify_url = request.url.path.rsplit("/", 1)[0] + "/verify"

    page = _SIMULATION_PAGE.format(
        lines=lines,
        total=html.escape(format_money(order.total)),
        reference_js=_js_string(attempt.reference),
        user_js=_js_string(order.session_id),
        verify_url_js=_js_string(verify_url),
    )
    return HTMLResponse(content=page)
