"""Shared fixtures: a temporary SQLite database and the components built on it."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from agent_chat.ai.client import AIClient, AIResponse
from agent_chat.core.agent_factory import AgentFactory
from agent_chat.core.cache import ConfigCache
from agent_chat.core.loader import ConfigLoader
from agent_chat.storage.chatbot_repo import ChatbotRepository
from agent_chat.storage.database import Database
from agent_chat.storage.session_store import SessionStore


class FakeClock:
    """Manually advanced clock for TTL and timestamp tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAIClient(AIClient):
    """Records every call and answers with canned text or a canned error."""

    def __init__(self, reply: str = "Hello!", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> AIResponse:
        self.calls.append(
            {
                "system": system,
                "messages": [dict(m) for m in messages],
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        return AIResponse(text=self.reply, input_tokens=12, output_tokens=3, stop_reason="end_turn")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def repo(db: Database) -> ChatbotRepository:
    return ChatbotRepository(db)


@pytest.fixture
def cache(clock: FakeClock) -> ConfigCache:
    return ConfigCache(clock=clock)


@pytest.fixture
def loader(repo: ChatbotRepository, cache: ConfigCache) -> ConfigLoader:
    return ConfigLoader(repo, cache)


@pytest.fixture
def factory(loader: ConfigLoader) -> AgentFactory:
    return AgentFactory(loader)


@pytest.fixture
def session_store(db: Database, clock: FakeClock) -> SessionStore:
    return SessionStore(db, clock=clock)


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()
