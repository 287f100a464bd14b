"""
Payment Coordination Service for Chow Bot
=========================================

Turns a cart into an out-of-band payment attempt and later reconciles the
attempt's outcome back onto exactly one order.

Payment References:
-------------------
``<prefix>_<orderId>_<random>`` where prefix is ``pay`` for Paystack and
``sim`` for the local simulation, and the random part comes from
``secrets.token_urlsafe`` so a reference cannot be derived from the order id.
Every attempt is kept, so an older reference still reconciles after the user
retried payment with a new one.

Initiation Order:
-----------------
1. Place the order (pending -> placed).
2. Record the attempt (and set it as the order's payment reference).
3. Call the provider.

Recording before the provider call means any transaction the provider
creates is always reconcilable. When the provider fails, the attempt is
marked ``abandoned`` and a simulated attempt is issued instead, unless
simulation is disabled.

Trust Model:
------------
- Paystack attempts: the outcome always comes from the provider's verify
  endpoint and the verified amount must equal the order total. A client
  claim is ignored.
- Simulated attempts: the client-claimed outcome is taken as is. This is a
  development/demo mode only.

Reconciliation is idempotent: once an order is paid, further calls report
success without changing anything.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from .. import config
from ..errors import ExternalProviderError, InvalidTransition, NotFound, PaymentReferenceCollision
from ..payment_provider import PaystackClient, to_minor_units
from ..storage.base import OrderRecord, PaymentAttemptRecord, StorageBackend
from .order import (
    OrderStatus,
    PaymentStatus,
    get_current_order,
    get_payable_order,
    mark_paid,
    mark_payment_failed,
    order_history,
    place_order,
)
from .session import normalize_session_id

logger = logging.getLogger(__name__)

PROVIDER_PAYSTACK = "paystack"
PROVIDER_SIMULATED = "simulated"

REFERENCE_PREFIXES = {
    PROVIDER_PAYSTACK: "pay",
    PROVIDER_SIMULATED: "sim",
}

MAX_REFERENCE_ATTEMPTS = 5

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"


@dataclass
class PaymentIntent:
    reference: str
    authorization_url: str
    amount: int
    order_id: int
    provider: str
    poll_interval_seconds: int = config.PAYMENT_POLL_INTERVAL_SECONDS
    poll_timeout_seconds: int = config.PAYMENT_POLL_TIMEOUT_SECONDS


@dataclass
class ReconciliationResult:
    reference: str
    order_id: int
    amount: int
    status: str  # success / failed / pending
    order_status: str
    changed: bool = False


def generate_reference(prefix: str, order_id: int) -> str:
    return f"{prefix}_{order_id}_{secrets.token_urlsafe(12)}"


def customer_email(session_id: str) -> str:
    """Synthetic address for anonymous sessions; the provider requires one."""
    local = re.sub(r"[^A-Za-z0-9._-]", "", session_id)[:64] or "guest"
    return f"customer{local}@{config.CUSTOMER_EMAIL_DOMAIN}"


def build_default_provider() -> Optional[PaystackClient]:
    if not config.is_provider_configured():
        return None
    return PaystackClient(
        config.PAYSTACK_SECRET_KEY,
        base_url=config.PAYSTACK_BASE_URL,
        timeout=config.PAYMENT_PROVIDER_TIMEOUT,
    )


class PaymentCoordinator:
    def __init__(
        self,
        storage: StorageBackend,
        provider: Optional[PaystackClient] = None,
        base_url: str = config.PUBLIC_BASE_URL,
        allow_simulation: bool = config.PAYMENT_ALLOW_SIMULATION,
    ):
        self.storage = storage
        self.provider = provider
        self.base_url = base_url
        self.allow_simulation = allow_simulation

    @classmethod
    def from_config(cls, storage: StorageBackend) -> "PaymentCoordinator":
        return cls(
            storage,
            provider=build_default_provider(),
            base_url=config.PUBLIC_BASE_URL,
            allow_simulation=config.PAYMENT_ALLOW_SIMULATION,
        )

    # =========================================================================
    # Initiation
    # =========================================================================

    def initiate(self, session_id: str, base_url: Optional[str] = None) -> PaymentIntent:
        """
        Start a payment attempt for the session's payable order.

        Raises:
            NotFound: unknown session or nothing payable
            InvalidTransition: the cart is empty
            ExternalProviderError: provider failed and simulation is disabled
        """
        session_id = normalize_session_id(session_id)
        user = self.storage.get_user(session_id)
        if user is None:
            raise NotFound("User", session_id)

        order = get_payable_order(self.storage, user)
        if order is None:
            raise NotFound("Payable order", session_id)
        if not order.items or order.total <= 0:
            raise InvalidTransition("Your cart is empty. Add items before paying.", current=order.status)

        order = place_order(self.storage, order.id)
        base = (base_url or self.base_url or "").rstrip("/")

        if self.provider is not None:
            try:
                return self._initiate_with_provider(order, base)
            except ExternalProviderError:
                if not self.allow_simulation:
                    raise
                logger.warning("Falling back to simulated payment for order #%d", order.id)
        elif not self.allow_simulation:
            raise ExternalProviderError("initialize", "no payment provider configured")

        return self._initiate_simulated(order, base)

    def _record_attempt(self, order: OrderRecord, provider: str) -> PaymentAttemptRecord:
        prefix = REFERENCE_PREFIXES[provider]
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            reference = generate_reference(prefix, order.id)
            try:
                return self.storage.record_payment_attempt(
                    order_id=order.id,
                    reference=reference,
                    provider=provider,
                    amount=order.total,
                )
            except PaymentReferenceCollision:
                logger.warning("Payment reference collision for order #%d, regenerating", order.id)
        raise PaymentReferenceCollision(f"{prefix}_{order.id}_*")

    def _initiate_with_provider(self, order: OrderRecord, base: str) -> PaymentIntent:
        attempt = self._record_attempt(order, PROVIDER_PAYSTACK)
        metadata = {
            "userId": order.session_id,
            "orderId": str(order.id),
            "custom_fields": [
                {
                    "display_name": "Order Items",
                    "variable_name": "order_items",
                    "value": ", ".join(f"{line.quantity}x {line.name}" for line in order.items),
                }
            ],
        }
        try:
            result = self.provider.initialize_transaction(
                email=customer_email(order.session_id),
                amount_minor=to_minor_units(order.total),
                reference=attempt.reference,
                callback_url=f"{base}/api/payment/verify",
                metadata=metadata,
            )
        except ExternalProviderError:
            self.storage.update_payment_attempt(attempt.reference, status="abandoned")
            raise

        self.storage.update_payment_attempt(attempt.reference, authorization_url=result.authorization_url)
        logger.info("Paystack payment %s initiated for order #%d", attempt.reference, order.id)
        return PaymentIntent(
            reference=attempt.reference,
            authorization_url=result.authorization_url,
            amount=order.total,
            order_id=order.id,
            provider=PROVIDER_PAYSTACK,
        )

    def _initiate_simulated(self, order: OrderRecord, base: str) -> PaymentIntent:
        attempt = self._record_attempt(order, PROVIDER_SIMULATED)
        authorization_url = f"{base}/api/payment/simulate?reference={attempt.reference}"
        self.storage.update_payment_attempt(attempt.reference, authorization_url=authorization_url)
        logger.info("Simulated payment %s initiated for order #%d", attempt.reference, order.id)
        return PaymentIntent(
            reference=attempt.reference,
            authorization_url=authorization_url,
            amount=order.total,
            order_id=order.id,
            provider=PROVIDER_SIMULATED,
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def lookup(self, reference: str, session_id: Optional[str] = None):
        """
        Resolve a reference to ``(attempt, order)``.

        A session id that does not own the order is treated like an unknown
        reference so one session cannot probe another's payments.
        """
        attempt = self.storage.get_payment_attempt(reference) if reference else None
        if attempt is None:
            raise NotFound("Payment", reference)
        order = self.storage.get_order(attempt.order_id)
        if order is None:
            raise NotFound("Payment", reference)
        if session_id is not None and order.session_id != session_id.strip():
            raise NotFound("Payment", reference)
        return attempt, order

    def reconcile(
        self,
        reference: str,
        claimed_outcome: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ReconciliationResult:
        attempt, order = self.lookup(reference, session_id)

        if order.status == OrderStatus.PAID.value:
            return self._result(attempt, order, OUTCOME_SUCCESS, changed=False)

        if attempt.provider == PROVIDER_PAYSTACK:
            outcome = self._verify_with_provider(attempt, order)
        elif not self.allow_simulation:
            logger.warning("Ignoring claimed outcome for %s: simulated payments are disabled", attempt.reference)
            outcome = OUTCOME_PENDING
        else:
            outcome = (claimed_outcome or "").strip().lower()
            if outcome not in (OUTCOME_SUCCESS, OUTCOME_FAILED):
                outcome = OUTCOME_PENDING

        if outcome == OUTCOME_SUCCESS:
            order, changed = mark_paid(self.storage, order.id)
            self.storage.update_payment_attempt(attempt.reference, status="success")
            if changed:
                logger.info("Payment %s confirmed order #%d", attempt.reference, order.id)
            return self._result(attempt, order, OUTCOME_SUCCESS, changed)

        if outcome == OUTCOME_FAILED:
            order, changed = mark_payment_failed(self.storage, order.id)
            self.storage.update_payment_attempt(attempt.reference, status="failed")
            if order.status == OrderStatus.PAID.value:
                # Another attempt already paid this order
                return self._result(attempt, order, OUTCOME_SUCCESS, changed=False)
            return self._result(attempt, order, OUTCOME_FAILED, changed)

        return self._result(attempt, order, OUTCOME_PENDING, changed=False)

    def _verify_with_provider(self, attempt: PaymentAttemptRecord, order: OrderRecord) -> str:
        if self.provider is None:
            logger.warning("Cannot verify %s: payment provider not configured", attempt.reference)
            return OUTCOME_PENDING
        try:
            verification = self.provider.verify_transaction(attempt.reference)
        except ExternalProviderError:
            logger.warning("Verification of %s deferred, provider unavailable", attempt.reference)
            return OUTCOME_PENDING

        if verification.succeeded:
            expected = to_minor_units(order.total)
            if verification.amount_minor != expected:
                logger.warning(
                    "Amount mismatch for %s: provider %s, expected %d",
                    attempt.reference,
                    verification.amount_minor,
                    expected,
                )
                return OUTCOME_FAILED
            return OUTCOME_SUCCESS
        if verification.failed:
            return OUTCOME_FAILED
        return OUTCOME_PENDING

    @staticmethod
    def _result(attempt: PaymentAttemptRecord, order: OrderRecord, status: str, changed: bool) -> ReconciliationResult:
        return ReconciliationResult(
            reference=attempt.reference,
            order_id=order.id,
            amount=order.total,
            status=status,
            order_status=order.status,
            changed=changed,
        )

    # =========================================================================
    # Status
    # =========================================================================

    def payment_status(self, session_id: str) -> Optional[ReconciliationResult]:
        """
        Status of the session's latest payment, without starting a new one.

        An unresolved Paystack attempt is re-verified with the provider; any
        other attempt is reported from the stored order state.
        """
        session_id = normalize_session_id(session_id)
        user = self.storage.get_user(session_id)
        if user is None:
            return None

        order = get_current_order(self.storage, user)
        if order is None or order.status not in (OrderStatus.PLACED.value, OrderStatus.PAID.value):
            history = order_history(self.storage, user)
            order = history[0] if history else None
        if order is None or not order.payment_reference:
            return None

        attempt = self.storage.get_payment_attempt(order.payment_reference)
        if attempt is None:
            return None

        if (
            attempt.provider == PROVIDER_PAYSTACK
            and attempt.status == "pending"
            and order.status != OrderStatus.PAID.value
        ):
            return self.reconcile(attempt.reference, session_id=session_id)

        if order.status == OrderStatus.PAID.value:
            status = OUTCOME_SUCCESS
        elif order.payment_status == PaymentStatus.FAILED.value:
            status = OUTCOME_FAILED
        else:
            status = OUTCOME_PENDING
        return self._result(attempt, order, status, changed=False)
