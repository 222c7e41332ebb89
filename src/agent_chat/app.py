"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from agent_chat.ai.client import AIClient, AnthropicClient
from agent_chat.config import AppConfig
from agent_chat.core.agent_factory import AgentFactory
from agent_chat.core.cache import ConfigCache
from agent_chat.core.loader import ConfigLoader, ResolvedChatbotConfig
from agent_chat.core.runner import AgentRunner, RunnerCache
from agent_chat.errors import ConfigurationError
from agent_chat.log import get_logger
from agent_chat.storage.chatbot_repo import ChatbotRepository
from agent_chat.storage.database import Database
from agent_chat.storage.session_store import SessionStore

logger = get_logger(__name__)

APP_NAME_PREFIX = "chatbot_"


def app_name_for(chatbot_id: str) -> str:
    return f"{APP_NAME_PREFIX}{chatbot_id}"


def chatbot_id_from_app_name(app_name: str) -> str:
    return app_name.removeprefix(APP_NAME_PREFIX)


class AgentChatApp:
    """Owns every process-wide cache and store; one instance per server."""

    def __init__(self, config: AppConfig, ai_client: AIClient | None = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.chatbot_repo = ChatbotRepository(self.db)
        self.config_cache = ConfigCache(default_ttl=config.cache.ttl_seconds)
        self.loader = ConfigLoader(self.chatbot_repo, self.config_cache, config.defaults)
        self.agent_factory = AgentFactory(self.loader)
        self.session_store = SessionStore(self.db)
        self.runner_cache = RunnerCache()
        self._ai_client = ai_client

        # Dashboard writes made through this process invalidate local caches
        self.chatbot_repo.on_change(self._on_chatbot_changed)

    async def start(self) -> None:
        """Initialize storage."""
        await self.db.initialize()
        logger.info("agent_chat_started", db_path=self.config.storage.db_path)

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        if self._ai_client is not None:
            await self._ai_client.close()
        await self.db.close()
        logger.info("agent_chat_stopped")

    @property
    def ai_client(self) -> AIClient:
        if self._ai_client is None:
            if not self.config.anthropic:
                raise ConfigurationError("No 'anthropic' section in config; cannot run agents")
            self._ai_client = AnthropicClient(self.config.anthropic)
        return self._ai_client

    async def get_runner(self, chatbot: ResolvedChatbotConfig) -> AgentRunner:
        """Resolve the agent for a chatbot and return its (possibly cached) runner."""
        agent = await self.agent_factory.get_or_build_agent(chatbot)
        return self.runner_cache.get_or_create(
            chatbot.id,
            agent,
            lambda a: AgentRunner(
                agent=a,
                app_name=app_name_for(chatbot.id),
                session_store=self.session_store,
                ai_client=self.ai_client,
                history_limit=self.config.runner.history_limit,
            ),
        )

    def invalidate(self, chatbot_id: str) -> None:
        """Drop the cached agent, runner and config for one chatbot."""
        self.agent_factory.invalidate_agent(chatbot_id)
        self.runner_cache.invalidate(chatbot_id)
        self.loader.invalidate_all(chatbot_id)

    async def reload(self, chatbot_id: str) -> ResolvedChatbotConfig | None:
        """Administrative cache-bust: invalidate everything, then read config fresh."""
        self.invalidate(chatbot_id)
        chatbot = await self.loader.reload_chatbot_config(chatbot_id)
        logger.info("chatbot_reloaded", chatbot_id=chatbot_id, found=chatbot is not None)
        return chatbot

    async def _on_chatbot_changed(self, chatbot_id: str) -> None:
        self.invalidate(chatbot_id)
