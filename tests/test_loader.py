from unittest.mock import AsyncMock

import pytest

from agent_chat.config import DEFAULT_SYSTEM_PROMPT, ChatbotDefaults
from agent_chat.core.cache import CacheNamespace
from agent_chat.core.loader import (
    ConfigLoader,
    WidgetConfig,
    fallback_widget_config,
    resolve_chatbot_config,
    resolve_widget_config,
)
from agent_chat.core.types import KnowledgeSourceType, ProcessingStatus, WidgetPosition
from agent_chat.storage.models import ChatbotRecord, WidgetConfigRecord


def _record(**overrides) -> ChatbotRecord:
    values = dict(
        id="bot-1",
        tenant_id="tenant-1",
        name="Support",
        created_at="2025-01-01T00:00:00.000000",
        updated_at="2025-01-01T00:00:00.000000",
    )
    values.update(overrides)
    return ChatbotRecord(**values)


class TestResolveChatbotConfig:
    def test_null_columns_get_defaults(self):
        resolved = resolve_chatbot_config(_record(), ChatbotDefaults())

        assert resolved.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert resolved.model == "claude-sonnet-4-20250514"
        assert resolved.temperature == 0.7
        assert resolved.max_tokens == 2048
        assert resolved.is_active is True
        assert resolved.settings == {}

    def test_stored_values_win(self):
        resolved = resolve_chatbot_config(
            _record(
                system_prompt="Be terse.",
                model="claude-haiku",
                temperature=0.0,
                max_tokens=256,
                is_active=False,
                settings={"tone": "dry"},
            ),
            ChatbotDefaults(),
        )

        assert resolved.system_prompt == "Be terse."
        assert resolved.model == "claude-haiku"
        assert resolved.temperature == 0.0
        assert resolved.max_tokens == 256
        assert resolved.is_active is False
        assert resolved.settings == {"tone": "dry"}

    def test_empty_system_prompt_is_kept(self):
        resolved = resolve_chatbot_config(_record(system_prompt=""), ChatbotDefaults())
        assert resolved.system_prompt == ""

    def test_configured_defaults(self):
        defaults = ChatbotDefaults(model="claude-opus", temperature=0.2, max_tokens=512)
        resolved = resolve_chatbot_config(_record(), defaults)

        assert resolved.model == "claude-opus"
        assert resolved.temperature == 0.2
        assert resolved.max_tokens == 512


class TestResolveWidgetConfig:
    def test_all_defaults(self):
        record = WidgetConfigRecord(
            id="w-1", chatbot_id="bot-1", created_at="x", updated_at="x"
        )
        assert resolve_widget_config(record) == WidgetConfig(chatbot_id="bot-1")

    def test_overrides_kept(self):
        record = WidgetConfigRecord(
            id="w-1",
            chatbot_id="bot-1",
            created_at="x",
            updated_at="x",
            title="Ask Pip",
            primary_color="#000000",
            auto_open=True,
            show_branding=False,
            allowed_domains=["example.com"],
        )
        widget = resolve_widget_config(record)

        assert widget.title == "Ask Pip"
        assert widget.primary_color == "#000000"
        assert widget.auto_open is True
        assert widget.show_branding is False
        assert widget.allowed_domains == ["example.com"]
        assert widget.position == "bottom-right"
        assert widget.auto_open_delay == 3000

    def test_position_is_typed(self):
        record = WidgetConfigRecord(
            id="w-1", chatbot_id="bot-1", created_at="x", updated_at="x", position="top-left"
        )
        assert resolve_widget_config(record).position is WidgetPosition.TOP_LEFT

    def test_unrenderable_position_falls_back_to_default(self):
        record = WidgetConfigRecord(
            id="w-1", chatbot_id="bot-1", created_at="x", updated_at="x", position="middle"
        )
        assert resolve_widget_config(record).position is WidgetPosition.BOTTOM_RIGHT

    def test_fallback_uses_chatbot_name(self):
        chatbot = resolve_chatbot_config(_record(name="Acme Help"), ChatbotDefaults())
        widget = fallback_widget_config(chatbot)

        assert widget.chatbot_id == "bot-1"
        assert widget.title == "Acme Help"
        assert widget.welcome_message == "Hi! How can I help you today?"


@pytest.mark.asyncio
async def test_load_chatbot_applies_defaults(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1", system_prompt="Be terse.")

    config = await loader.load_chatbot_config("bot-1")

    assert config is not None
    assert config.system_prompt == "Be terse."
    assert config.temperature == 0.7
    assert config.is_active is True


@pytest.mark.asyncio
async def test_load_missing_chatbot_returns_none(loader):
    assert await loader.load_chatbot_config("nope") is None
    assert await loader.is_chatbot_active("nope") is False


@pytest.mark.asyncio
async def test_chatbot_reads_are_cached_until_invalidated(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    repo.get_chatbot = AsyncMock(wraps=repo.get_chatbot)

    first = await loader.load_chatbot_config("bot-1")
    second = await loader.load_chatbot_config("bot-1")

    assert first is second
    assert repo.get_chatbot.await_count == 1

    loader.invalidate_all("bot-1")
    await loader.load_chatbot_config("bot-1")
    assert repo.get_chatbot.await_count == 2


@pytest.mark.asyncio
async def test_chatbot_reread_after_ttl(repo, loader, clock):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    repo.get_chatbot = AsyncMock(wraps=repo.get_chatbot)

    await loader.load_chatbot_config("bot-1")
    clock.advance(loader.cache.default_ttl + 1)
    await loader.load_chatbot_config("bot-1")

    assert repo.get_chatbot.await_count == 2


@pytest.mark.asyncio
async def test_not_found_is_not_cached(repo, loader):
    assert await loader.load_chatbot_config("bot-1") is None

    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    assert await loader.load_chatbot_config("bot-1") is not None


@pytest.mark.asyncio
async def test_stale_until_reload(repo, loader):
    # No change hook is registered here, so only an explicit reload sees the edit
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1", system_prompt="v1")
    await loader.load_chatbot_config("bot-1")

    await repo.update_chatbot("bot-1", system_prompt="v2")
    stale = await loader.load_chatbot_config("bot-1")
    fresh = await loader.reload_chatbot_config("bot-1")

    assert stale.system_prompt == "v1"
    assert fresh.system_prompt == "v2"


@pytest.mark.asyncio
async def test_is_chatbot_active(repo, loader):
    await repo.create_chatbot("tenant-1", "On", chatbot_id="on")
    await repo.create_chatbot("tenant-1", "Off", chatbot_id="off", is_active=False)

    assert await loader.is_chatbot_active("on") is True
    assert await loader.is_chatbot_active("off") is False


@pytest.mark.asyncio
async def test_knowledge_is_completed_text_in_creation_order(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    await repo.add_knowledge_source("bot-1", "Shipping", text_content="Ships in 2 days.")
    await repo.add_knowledge_source("bot-1", "Blank", text_content="")
    await repo.add_knowledge_source(
        "bot-1", "Draft", text_content="Not ready.", status=ProcessingStatus.PENDING
    )
    await repo.add_knowledge_source(
        "bot-1",
        "Site",
        type=KnowledgeSourceType.URL,
        source_url="https://example.com",
        text_content="Crawled text.",
        status=ProcessingStatus.COMPLETED,
    )
    await repo.add_knowledge_source("bot-1", "Returns", text_content="Refunds within 30 days.")

    entries = await loader.load_knowledge_for_chatbot("bot-1")

    assert [e.name for e in entries] == ["Shipping", "Returns"]
    assert entries[1].text_content == "Refunds within 30 days."


@pytest.mark.asyncio
async def test_knowledge_empty_list_when_none(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    assert await loader.load_knowledge_for_chatbot("bot-1") == []


@pytest.mark.asyncio
async def test_knowledge_is_cached(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    await repo.add_knowledge_source("bot-1", "FAQ", text_content="Answers.")
    repo.list_text_knowledge = AsyncMock(wraps=repo.list_text_knowledge)

    first = await loader.load_knowledge_for_chatbot("bot-1")
    first.clear()
    second = await loader.load_knowledge_for_chatbot("bot-1")

    assert repo.list_text_knowledge.await_count == 1
    assert [e.name for e in second] == ["FAQ"]
    assert isinstance(loader.cache.get(CacheNamespace.KNOWLEDGE, "bot-1"), tuple)


@pytest.mark.asyncio
async def test_widget_config_missing_returns_none(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    assert await loader.load_widget_config("bot-1") is None


@pytest.mark.asyncio
async def test_widget_config_defaults_and_overrides(repo, loader):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    await repo.upsert_widget_config("bot-1", title="Help desk", border_radius=4)

    widget = await loader.load_widget_config("bot-1")

    assert widget.title == "Help desk"
    assert widget.border_radius == 4
    assert widget.primary_color == "#6366f1"
    assert widget.placeholder == "Type your message..."


@pytest.mark.asyncio
async def test_custom_defaults_flow_through_loader(repo, cache):
    loader = ConfigLoader(repo, cache, ChatbotDefaults(max_tokens=99))
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    config = await loader.load_chatbot_config("bot-1")

    assert config.max_tokens == 99
