"""Identity Directory - username lookup for call targeting.

Stands in for the external registration collaborator. The relay only needs
one consistent username -> session mapping; storage and credentials belong
to the deployment's user service.
"""

from __future__ import annotations

from typing import Protocol

from webphone.observability.logging import get_logger

logger = get_logger(__name__)


class RegistrationError(Exception):
    """Registration rejected by the directory."""


class IdentityDirectory(Protocol):
    """Capability the router uses for registration and target lookup."""

    async def register(self, session_id: str, username: str) -> str:
        """Bind username to session_id; return the registered name."""
        ...

    def lookup(self, username: str) -> str | None:
        """Return the session currently registered as username."""
        ...

    def forget(self, session_id: str) -> None:
        """Drop any binding held by session_id."""
        ...


class InMemoryDirectory:
    """Process-local directory; one username per connected session."""

    def __init__(self) -> None:
        self._by_username: dict[str, str] = {}
        self._by_session: dict[str, str] = {}

    async def register(self, session_id: str, username: str) -> str:
        owner = self._by_username.get(username)
        if owner is not None and owner != session_id:
            raise RegistrationError(f"Username already taken: {username}")

        previous = self._by_session.get(session_id)
        if previous is not None and previous != username:
            self._by_username.pop(previous, None)

        self._by_username[username] = session_id
        self._by_session[session_id] = username
        logger.info("user_registered", session_id=session_id, username=username)
        return username

    def lookup(self, username: str) -> str | None:
        return self._by_username.get(username)

    def forget(self, session_id: str) -> None:
        username = self._by_session.pop(session_id, None)
        if username is not None:
            self._by_username.pop(username, None)

    def usernames(self) -> list[str]:
        """Registered usernames."""
        return list(self._by_username)
