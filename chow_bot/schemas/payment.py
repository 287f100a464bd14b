"""
Payment Schemas for Chow Bot
============================

Request and response models for the payment endpoints.

Endpoint Coverage:
------------------
- POST /payment/initialize: Start a payment attempt for the user's order
- POST /payment/verify: Reconcile a payment reference (client poll)

Response Envelope:
------------------
Payment responses use the ``{status, message, data}`` envelope the chat
widget expects. ``status`` is a boolean success flag; ``data.status`` is the
payment outcome (``success``, ``failed`` or ``pending``). A ``pending``
outcome keeps the client polling.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class PaymentInitializeRequest(BaseModel):
    userId: str = Field(..., min_length=1, max_length=200)


class PaymentIntentOut(BaseModel):
    authorization_url: str
    reference: str
    amount: int
    provider: str
    poll_interval_seconds: int
    poll_timeout_seconds: int


class PaymentInitializeResponse(BaseModel):
    status: bool
    message: str
    data: Optional[PaymentIntentOut] = None


class PaymentVerifyRequest(BaseModel):
    """
    Body for POST /payment/verify.

    Attributes:
        reference: Payment reference returned by initialize
        userId: Session id that owns the order
        status: Outcome chosen on the simulation page. Ignored for
                provider-backed references, which are always re-verified.
    """
    reference: str = Field(..., min_length=1, max_length=200)
    userId: str = Field(..., min_length=1, max_length=200)
    status: Optional[Literal["success", "failed"]] = None


class PaymentResultOut(BaseModel):
    orderId: int
    amount: int
    status: str


class PaymentVerifyResponse(BaseModel):
    status: bool
    message: str
    data: Optional[PaymentResultOut] = None
