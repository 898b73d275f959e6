"""Session store backed by the signed session cookie.

Every view builds one ``SessionStore`` from ``request.session`` and passes
it down; nothing else reads the cookie. ``invalidate()`` is the only way a
session ends: it clears the stored token and profile. The caller then
raises ``AuthExpired``, which the web layer turns into a redirect to the
login page.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

from cashflow_portal.models import User

log = logging.getLogger(__name__)

TOKEN_KEY = "accessToken"
USER_KEY = "currentUser"


class SessionStore:
    """Bearer token + cached profile for one browser."""

    def __init__(self, storage: MutableMapping[str, Any]):
        self._storage = storage

    # ── Token ─────────────────────────────────────────────────────────

    @property
    def token(self) -> str | None:
        token = self._storage.get(TOKEN_KEY)
        return token or None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def start(self, token: str) -> None:
        """Begin a new session with a freshly issued bearer token."""
        self._storage.clear()
        self._storage[TOKEN_KEY] = token

    # ── Profile ───────────────────────────────────────────────────────

    @property
    def user(self) -> User | None:
        raw = self._storage.get(USER_KEY)
        if not raw:
            return None
        try:
            return User.model_validate(raw)
        except ValueError:
            log.warning("Discarding malformed cached profile")
            self._storage.pop(USER_KEY, None)
            return None

    def remember_user(self, user: User) -> None:
        self._storage[USER_KEY] = user.model_dump(mode="json")

    # ── Teardown ──────────────────────────────────────────────────────

    def invalidate(self) -> None:
        """Clear token and profile."""
        if self.token is not None:
            log.info("Session invalidated")
        self._storage.pop(TOKEN_KEY, None)
        self._storage.pop(USER_KEY, None)
