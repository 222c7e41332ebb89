import pytest

from agent_chat.core.types import KnowledgeSourceType, ProcessingStatus, WidgetPosition
from agent_chat.errors import StorageError
from agent_chat.storage.chatbot_repo import _read_back


@pytest.fixture
def changes(repo):
    seen = []

    async def record(chatbot_id):
        seen.append(chatbot_id)

    repo.on_change(record)
    return seen


@pytest.mark.asyncio
async def test_create_and_get_chatbot(repo):
    created = await repo.create_chatbot(
        "tenant-1",
        "Support",
        chatbot_id="bot-1",
        temperature=0.2,
        is_active=True,
        settings={"tone": "dry"},
    )

    loaded = await repo.get_chatbot("bot-1")

    assert loaded == created
    assert loaded.temperature == 0.2
    assert loaded.is_active is True
    assert loaded.settings == {"tone": "dry"}
    assert loaded.system_prompt is None
    assert loaded.created_at == loaded.updated_at


@pytest.mark.asyncio
async def test_unknown_fields_rejected(repo):
    with pytest.raises(ValueError):
        await repo.create_chatbot("tenant-1", "Support", colour="red")


@pytest.mark.asyncio
async def test_temperature_out_of_range_is_storage_error(repo):
    with pytest.raises(StorageError):
        await repo.create_chatbot("tenant-1", "Support", temperature=2.5)


@pytest.mark.asyncio
async def test_update_bumps_updated_at_and_notifies(repo, changes):
    created = await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    updated = await repo.update_chatbot("bot-1", system_prompt="Be terse.")

    assert updated.system_prompt == "Be terse."
    assert updated.updated_at > created.updated_at
    assert changes == ["bot-1"]


@pytest.mark.asyncio
async def test_update_missing_chatbot(repo, changes):
    assert await repo.update_chatbot("nope", name="x") is None
    assert changes == []


@pytest.mark.asyncio
async def test_failing_hook_does_not_fail_write(repo, changes):
    async def broken(chatbot_id):
        raise RuntimeError("cache unreachable")

    repo.on_change(broken)
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    assert (await repo.update_chatbot("bot-1", name="Renamed")).name == "Renamed"
    assert changes == ["bot-1"]


@pytest.mark.asyncio
async def test_delete_chatbot_cascades(repo, db, changes):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    await repo.upsert_widget_config("bot-1", title="Hi")
    await repo.add_knowledge_source("bot-1", "FAQ", text_content="Answers.")

    assert await repo.delete_chatbot("bot-1") is True

    assert await repo.get_chatbot("bot-1") is None
    assert await repo.get_widget_config("bot-1") is None
    assert await repo.list_knowledge_sources("bot-1") == []
    assert await repo.delete_chatbot("bot-1") is False


@pytest.mark.asyncio
async def test_upsert_widget_config_merges(repo, changes):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    first = await repo.upsert_widget_config("bot-1", title="Hi", allowed_domains=["a.com"])
    second = await repo.upsert_widget_config("bot-1", primary_color="#000000")

    assert second.id == first.id
    assert second.title == "Hi"
    assert second.primary_color == "#000000"
    assert second.allowed_domains == ["a.com"]
    assert changes == ["bot-1", "bot-1"]


@pytest.mark.asyncio
async def test_knowledge_status_defaults(repo):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    text = await repo.add_knowledge_source("bot-1", "FAQ", text_content="Answers.")
    url = await repo.add_knowledge_source(
        "bot-1", "Site", type=KnowledgeSourceType.URL, source_url="https://example.com"
    )

    assert text.status is ProcessingStatus.COMPLETED
    assert url.status is ProcessingStatus.PENDING
    assert KnowledgeSourceType.TEXT.is_supported
    assert not url.type.is_supported


@pytest.mark.asyncio
async def test_update_and_delete_knowledge_notify_owner(repo, changes):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")
    source = await repo.add_knowledge_source("bot-1", "FAQ", text_content="v1")

    updated = await repo.update_knowledge_source(source.id, text_content="v2")
    assert updated.text_content == "v2"
    assert await repo.delete_knowledge_source(source.id) is True
    assert await repo.delete_knowledge_source(source.id) is False
    assert await repo.update_knowledge_source(source.id, name="x") is None

    assert changes == ["bot-1", "bot-1", "bot-1"]


@pytest.mark.asyncio
async def test_knowledge_requires_existing_chatbot(repo):
    with pytest.raises(StorageError):
        await repo.add_knowledge_source("missing", "FAQ", text_content="Answers.")


@pytest.mark.asyncio
async def test_widget_position_validated(repo, changes):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    stored = await repo.upsert_widget_config("bot-1", position=WidgetPosition.TOP_LEFT)
    assert stored.position == "top-left"

    with pytest.raises(ValueError):
        await repo.upsert_widget_config("bot-1", position="middle")
    assert (await repo.get_widget_config("bot-1")).position == "top-left"
    assert changes == ["bot-1"]


def test_missing_row_after_write_is_storage_error():
    with pytest.raises(StorageError) as exc_info:
        _read_back(None, "chatbot bot-1")

    assert exc_info.value.operation == "read back"
    assert _read_back("row", "chatbot bot-1") == "row"


@pytest.mark.asyncio
async def test_failed_write_is_rolled_back(repo, db):
    await repo.create_chatbot("tenant-1", "Support", chatbot_id="bot-1")

    with pytest.raises(StorageError):
        await repo.create_chatbot("tenant-1", "Duplicate", chatbot_id="bot-1")

    assert not db.conn.in_transaction
