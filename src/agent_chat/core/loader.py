"""Resolve chatbot, widget and knowledge configuration through the config cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from agent_chat.config import ChatbotDefaults
from agent_chat.core.cache import CacheNamespace, ConfigCache
from agent_chat.core.types import WidgetPosition
from agent_chat.log import get_logger
from agent_chat.storage.chatbot_repo import ChatbotRepository
from agent_chat.storage.models import ChatbotRecord, KnowledgeEntry, WidgetConfigRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedChatbotConfig:
    """A chatbot with every nullable column defaulted."""

    id: str
    tenant_id: str
    name: str
    description: Optional[str]
    system_prompt: str
    model: str
    temperature: float
    max_tokens: int
    is_active: bool
    settings: dict[str, Any]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class WidgetConfig:
    chatbot_id: str
    position: WidgetPosition = WidgetPosition.BOTTOM_RIGHT
    primary_color: str = "#6366f1"
    background_color: str = "#ffffff"
    text_color: str = "#1f2937"
    font_family: str = "Inter, system-ui, sans-serif"
    border_radius: int = 12
    title: str = "Chat with us"
    subtitle: Optional[str] = None
    welcome_message: str = "Hi! How can I help you today?"
    placeholder: str = "Type your message..."
    launcher_icon: str = "chat"
    launcher_icon_url: Optional[str] = None
    auto_open: bool = False
    auto_open_delay: int = 3000  # milliseconds
    show_branding: bool = True
    allowed_domains: list[str] = field(default_factory=list)


def resolve_chatbot_config(
    record: ChatbotRecord, defaults: ChatbotDefaults
) -> ResolvedChatbotConfig:
    """Apply defaults to a stored chatbot row. Pure; no I/O."""
    return ResolvedChatbotConfig(
        id=record.id,
        tenant_id=record.tenant_id,
        name=record.name,
        description=record.description,
        system_prompt=record.system_prompt if record.system_prompt is not None else defaults.system_prompt,
        model=record.model or defaults.model,
        temperature=float(record.temperature) if record.temperature is not None else defaults.temperature,
        max_tokens=record.max_tokens if record.max_tokens is not None else defaults.max_tokens,
        is_active=record.is_active if record.is_active is not None else True,
        settings=dict(record.settings) if record.settings is not None else {},
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def resolve_widget_config(record: WidgetConfigRecord) -> WidgetConfig:
    """Apply widget defaults to every NULL column.

    A stored position the widget cannot render falls back to the default.
    """
    overrides = {
        name: getattr(record, name)
        for name in WidgetConfig.__dataclass_fields__
        if name != "chatbot_id" and getattr(record, name, None) is not None
    }
    if "position" in overrides:
        try:
            overrides["position"] = WidgetPosition(overrides["position"])
        except ValueError:
            logger.warning(
                "widget_position_invalid",
                chatbot_id=record.chatbot_id,
                position=overrides.pop("position"),
            )
    return WidgetConfig(chatbot_id=record.chatbot_id, **overrides)


def fallback_widget_config(chatbot: ResolvedChatbotConfig) -> WidgetConfig:
    """Widget settings served for a chatbot that has no widget row yet."""
    return WidgetConfig(chatbot_id=chatbot.id, title=chatbot.name)


class ConfigLoader:
    """Cache-through access to chatbot configuration.

    A missing chatbot or widget returns None; datastore failures propagate as
    StorageError without retries.
    """

    def __init__(
        self,
        repo: ChatbotRepository,
        cache: ConfigCache,
        defaults: ChatbotDefaults | None = None,
    ):
        self._repo = repo
        self._cache = cache
        self._defaults = defaults or ChatbotDefaults()

    @property
    def cache(self) -> ConfigCache:
        return self._cache

    async def load_chatbot_config(self, chatbot_id: str) -> ResolvedChatbotConfig | None:
        cached = self._cache.get(CacheNamespace.CHATBOT, chatbot_id)
        if cached is not None:
            return cached

        record = await self._repo.get_chatbot(chatbot_id)
        if record is None:
            logger.warning("chatbot_not_found", chatbot_id=chatbot_id)
            return None

        resolved = resolve_chatbot_config(record, self._defaults)
        self._cache.set(CacheNamespace.CHATBOT, chatbot_id, resolved)
        return resolved

    async def load_widget_config(self, chatbot_id: str) -> WidgetConfig | None:
        cached = self._cache.get(CacheNamespace.WIDGET, chatbot_id)
        if cached is not None:
            return cached

        record = await self._repo.get_widget_config(chatbot_id)
        if record is None:
            logger.warning("widget_config_not_found", chatbot_id=chatbot_id)
            return None

        resolved = resolve_widget_config(record)
        self._cache.set(CacheNamespace.WIDGET, chatbot_id, resolved)
        return resolved

    async def load_knowledge_for_chatbot(self, chatbot_id: str) -> list[KnowledgeEntry]:
        """Completed text knowledge with content, oldest first. Empty list if none."""
        cached = self._cache.get(CacheNamespace.KNOWLEDGE, chatbot_id)
        if cached is not None:
            return list(cached)

        rows = await self._repo.list_text_knowledge(chatbot_id)
        entries = [
            KnowledgeEntry(id=row.id, name=row.name, text_content=row.text_content)
            for row in rows
            if row.text_content
        ]
        self._cache.set(CacheNamespace.KNOWLEDGE, chatbot_id, tuple(entries))
        return entries

    def invalidate_all(self, chatbot_id: str) -> None:
        self._cache.invalidate_all(chatbot_id)

    async def reload_chatbot_config(self, chatbot_id: str) -> ResolvedChatbotConfig | None:
        """Drop every cached namespace for the chatbot and read it fresh."""
        self._cache.invalidate_all(chatbot_id)
        return await self.load_chatbot_config(chatbot_id)

    async def is_chatbot_active(self, chatbot_id: str) -> bool:
        chatbot = await self.load_chatbot_config(chatbot_id)
        return chatbot.is_active if chatbot is not None else False
