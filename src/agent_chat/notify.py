"""Notify a running agent server that a chatbot's configuration changed.

Used by ``agent-chat reload`` and by dashboard-side processes, which
register ``ReloadNotifier.notify`` as a ChatbotRepository change hook.
Delivery is best-effort; failures are logged and never propagate into the
write that triggered them.
"""

from __future__ import annotations

from typing import Optional

import httpx

from agent_chat.errors import ConfigurationError
from agent_chat.log import get_logger

logger = get_logger(__name__)

INTERNAL_TOKEN_HEADER = "X-Internal-Token"


class ReloadNotifier:
    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, chatbot_id: str) -> bool:
        """POST the reload endpoint. Returns whether the server accepted it."""
        try:
            if not self._token:
                raise ConfigurationError("Internal token not configured")
            response = await self._client.post(
                f"{self._base_url}/api/internal/reload/{chatbot_id}",
                headers={INTERNAL_TOKEN_HEADER: self._token},
            )
            response.raise_for_status()
        except (httpx.HTTPError, ConfigurationError) as e:
            logger.warning("reload_notify_failed", chatbot_id=chatbot_id, error=str(e))
            return False
        logger.debug("reload_notified", chatbot_id=chatbot_id)
        return True

    async def close(self) -> None:
        await self._client.aclose()
