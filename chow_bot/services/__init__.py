"""
Services Package for Chow Bot
=============================

Business logic that sits between the dialogue engine / HTTP routes and the
storage backend. Every service receives its storage backend as an argument
instead of reaching for a global, so tests can hand in a fresh backend.

Available Services:
-------------------
- **session**: Get-or-create of the anonymous chat user for a session id
- **order**: Cart mutations and the order state machine
- **payment**: Payment initiation and reconciliation

Usage:
------
    from chow_bot.services.session import get_or_create_user
    from chow_bot.services.order import add_item_to_cart, cancel_cart
    from chow_bot.services.payment import PaymentCoordinator
"""

from . import session
from . import order
from . import payment

__all__ = ["session", "order", "payment"]
