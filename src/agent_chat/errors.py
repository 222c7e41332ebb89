"""Exception types shared across the service.

Not-found outcomes are not exceptions: loaders and the session store return
``None`` and the caller decides what that means.
"""

from __future__ import annotations


class AgentChatError(Exception):
    """Base class for all agent-chat errors."""


class StorageError(AgentChatError):
    """A datastore operation failed (connection, constraint, write)."""

    def __init__(self, operation: str, entity: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.entity = entity
        self.cause = cause
        message = f"Failed to {operation} {entity}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ConfigurationError(AgentChatError):
    """Required configuration is missing or invalid."""


class SessionNotFoundError(AgentChatError):
    """A runner was asked to drive a session that does not exist."""

    def __init__(self, app_name: str, user_id: str, session_id: str) -> None:
        self.app_name = app_name
        self.user_id = user_id
        self.session_id = session_id
        super().__init__(f"Session not found: {app_name}/{user_id}/{session_id}")


class AIClientError(AgentChatError):
    """The model backend rejected or failed a request."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")
