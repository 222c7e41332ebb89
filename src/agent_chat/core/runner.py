"""Agent runner and the per-chatbot runner cache."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from typing import Callable

from agent_chat.ai.client import AIClient
from agent_chat.ai.conversation import USER_AUTHOR, build_messages
from agent_chat.core.agent_factory import AgentDefinition
from agent_chat.errors import AIClientError, SessionNotFoundError
from agent_chat.log import get_logger
from agent_chat.storage.models import Event
from agent_chat.storage.session_store import GetSessionConfig, SessionStore

logger = get_logger(__name__)

MODEL_ROLE = "model"


def _text_content(role: str, text: str) -> dict:
    return {"role": role, "parts": [{"text": text}]}


class AgentRunner:
    """Drives one agent through conversation turns against the session store."""

    def __init__(
        self,
        agent: AgentDefinition,
        app_name: str,
        session_store: SessionStore,
        ai_client: AIClient,
        history_limit: int = 50,
    ):
        self.agent = agent
        self.app_name = app_name
        self._sessions = session_store
        self._ai_client = ai_client
        self._history_limit = history_limit

    async def run(self, user_id: str, session_id: str, message: str) -> AsyncIterator[Event]:
        """Record the user's message, ask the model, record and yield its reply."""
        session = await self._sessions.get_session(
            self.app_name,
            user_id,
            session_id,
            GetSessionConfig(num_recent_events=self._history_limit),
        )
        if session is None:
            raise SessionNotFoundError(self.app_name, user_id, session_id)

        invocation_id = f"e-{uuid.uuid4()}"
        await self._sessions.append_event(
            session,
            Event(
                invocation_id=invocation_id,
                author=USER_AUTHOR,
                content=_text_content(USER_AUTHOR, message),
            ),
        )

        try:
            response = await self._ai_client.chat(
                system=self.agent.instruction,
                messages=build_messages(session.events),
                model=self.agent.model,
                max_tokens=self.agent.max_tokens,
                temperature=self.agent.temperature,
            )
        except AIClientError as e:
            logger.error(
                "agent_turn_failed",
                agent=self.agent.name,
                session_id=session_id,
                error_code=e.code,
            )
            reply = Event(
                invocation_id=invocation_id,
                author=self.agent.name,
                turn_complete=True,
                error_code=e.code,
                error_message=e.message,
            )
        else:
            reply = Event(
                invocation_id=invocation_id,
                author=self.agent.name,
                content=_text_content(MODEL_ROLE, response.text),
                turn_complete=True,
                usage_metadata={
                    "input_tokens": response.input_tokens,
                    "output_tokens": response.output_tokens,
                },
                finish_reason=response.stop_reason,
            )

        yield await self._sessions.append_event(session, reply)


class RunnerCache:
    """Long-lived runners keyed by chatbot id.

    A cached runner is reused only while it is bound to the exact agent
    instance the factory currently returns; a rebuilt agent gets a new runner.
    """

    def __init__(self) -> None:
        self._runners: dict[str, AgentRunner] = {}

    def get(self, chatbot_id: str) -> AgentRunner | None:
        return self._runners.get(chatbot_id)

    def get_or_create(
        self,
        chatbot_id: str,
        agent: AgentDefinition,
        factory: Callable[[AgentDefinition], AgentRunner],
    ) -> AgentRunner:
        runner = self._runners.get(chatbot_id)
        if runner is None or runner.agent is not agent:
            runner = factory(agent)
            self._runners[chatbot_id] = runner
            logger.debug("runner_created", chatbot_id=chatbot_id, agent=agent.name)
        return runner

    def invalidate(self, chatbot_id: str) -> None:
        self._runners.pop(chatbot_id, None)

    def clear(self) -> None:
        self._runners.clear()

    def ids(self) -> list[str]:
        return list(self._runners.keys())
