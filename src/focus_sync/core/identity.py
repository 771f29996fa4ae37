# src/focus_sync/core/identity.py

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    """Signed-in user as supplied by the auth collaborator."""

    user_id: str
    access_token: str | None = None


class SessionIdentity:
    """
    Mutable holder for the current identity (IdentityProvider).

    The repository and the PostgREST client share one instance, so signing in
    switches both the data routing and the bearer token at once.
    """

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity

    def current(self) -> Identity | None:
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        if not identity.user_id or not identity.user_id.strip():
            raise ValueError("user_id is required")
        self._identity = identity
        logger.info("Signed in user_id=%s", identity.user_id)

    def sign_out(self) -> None:
        if self._identity is not None:
            logger.info("Signed out user_id=%s", self._identity.user_id)
        self._identity = None
