"""
Error taxonomy for Chow Bot.

Handlers and services raise these; the dialogue engine turns them into
conversational replies and the JSON routes turn them into status codes:

- NotFound            -> guidance reply / 404
- InvalidTransition   -> guidance reply / 400
- ExternalProviderError -> logged, recovered by the simulated payment flow
- PersistenceError    -> "please try again" reply / 503
"""

from typing import Optional


class ChowBotError(Exception):
    """Base exception for all chow bot errors."""

    pass


class NotFound(ChowBotError):
    """Raised when a menu item, order, user or payment reference is absent."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvalidTransition(ChowBotError):
    """Raised when an operation is not allowed in the current order state."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(message)


class ExternalProviderError(ChowBotError):
    """Raised when the payment provider is unreachable or answers badly."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Payment provider {operation} failed: {reason}")


class PersistenceError(ChowBotError):
    """Raised when the storage backend cannot complete an operation."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        self.operation = operation
        self.reason = reason
        msg = f"Storage operation failed: {operation}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class DuplicateSessionError(ChowBotError):
    """Raised by a backend when a user already exists for a session id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"User already exists for session: {session_id}")


class PaymentReferenceCollision(ChowBotError):
    """Raised by a backend when a payment reference is already taken."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Payment reference already in use: {reference}")
