"""
Session Store for Chow Bot
==========================

Maps the client-generated session id onto a persistent chat user. Users are
created lazily on first contact and never deleted.

Concurrent first contact:
-------------------------
Two simultaneous first messages for one session id both miss the lookup and
both try to create. The backend's uniqueness guarantee on session id makes
the loser raise DuplicateSessionError, which is resolved here by fetching
the winner's user.
"""

import logging

from ..errors import DuplicateSessionError, InvalidTransition, PersistenceError
from ..storage.base import StorageBackend, UserRecord

logger = logging.getLogger(__name__)


def normalize_session_id(session_id: str) -> str:
    if session_id is None or not str(session_id).strip():
        raise InvalidTransition("A session id is required")
    return str(session_id).strip()


def get_or_create_user(storage: StorageBackend, session_id: str) -> UserRecord:
    """
    Return the user for ``session_id``, creating it on first contact.

    Also records the contact time on existing users.
    """
    session_id = normalize_session_id(session_id)

    user = storage.get_user(session_id)
    if user is not None:
        storage.touch_user(session_id)
        return user

    try:
        user = storage.create_user(session_id)
        logger.info("Created chat user for session %s", session_id)
        return user
    except DuplicateSessionError:
        logger.debug("Session %s created concurrently, fetching existing user", session_id)
        user = storage.get_user(session_id)
        if user is None:
            raise PersistenceError("get_or_create_user", "user vanished after duplicate insert")
        return user
