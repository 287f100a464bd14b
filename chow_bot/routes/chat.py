"""
Chat Routes for Chow Bot
========================

Endpoints:
----------
- POST /chat/message: Send an option token, receive the next reply

Conversation Flow:
------------------
1. The client generates a session id and sends ``main-menu`` (or any token)
2. Each reply lists options; the client sends back the chosen ``value``
3. An option with ``action: "initiate_payment"`` is not sent back; the
   client calls POST /payment/initialize instead

The chat surface has no error page. Every failure is answered with a
well-formed reply carrying the main options.

Rate Limiting:
--------------
Chat and payment endpoints are rate limited per client address
(default: 30/minute).
"""

import logging

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import RATE_LIMIT_ENABLED, get_rate_limit_chat
from ..dependencies import get_dialogue_engine
from ..dialogue import DialogueEngine, degraded_reply
from ..schemas.chat import ChatMessageRequest, ChatMessageResponse

logger = logging.getLogger(__name__)

chat_router = APIRouter(prefix="/chat", tags=["Chat"])

# In-memory limiter storage; use storage_uri="redis://..." with several workers
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)


@chat_router.post("/message", response_model=ChatMessageResponse)
@limiter.limit(get_rate_limit_chat)
def chat_message(
    request: Request,
    req: ChatMessageRequest,
    engine: DialogueEngine = Depends(get_dialogue_engine),
) -> ChatMessageResponse:
    """Handle one option token and return the next reply."""
    try:
        reply = engine.handle(req.userId, req.message)
    except Exception:
        logger.error("Chat handling failed for session %s", req.userId, exc_info=True)
        reply = degraded_reply()
    return ChatMessageResponse(**reply.to_dict())
