"""
Routes Package for Chow Bot
===========================

API route definitions grouped by domain. Each module defines a FastAPI
APIRouter.

- chat.py: Option-token chat endpoint
- payment.py: Payment initialize/verify and the simulation page
- orders.py: Current order and order history
- menu.py: Public menu listing

Router Registration:
--------------------
``create_app`` registers every router twice:
1. /api/* - the paths the chat widget calls
2. /*     - root paths

Error Handling:
---------------
Chat replies never fail; see chat.py. JSON endpoints rely on the
application's exception handlers:
- 400: InvalidTransition
- 404: NotFound
- 429: rate limited
- 502: ExternalProviderError
- 503: PersistenceError
"""

from .chat import chat_router, limiter
from .payment import payment_router
from .orders import orders_router
from .menu import menu_router

__all__ = [
    "chat_router",
    "payment_router",
    "orders_router",
    "menu_router",
    "limiter",
]
