"""Chatbot, widget and knowledge-source repository.

Reads serve the config loader. Writes are the dashboard's mutation path; after
each committed write the registered change hooks run with the owning chatbot
id so caches can be invalidated. A failing hook is logged and never fails the
write it follows.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Awaitable, Callable, Optional, TypeVar

from agent_chat.core.types import KnowledgeSourceType, ProcessingStatus, WidgetPosition
from agent_chat.errors import StorageError
from agent_chat.log import get_logger
from agent_chat.storage.database import Database, storage_errors, utc_now_iso
from agent_chat.storage.models import ChatbotRecord, KnowledgeSourceRecord, WidgetConfigRecord

logger = get_logger(__name__)

ChangeHook = Callable[[str], Awaitable[None]]
_T = TypeVar("_T")

_CHATBOT_FIELDS = frozenset({
    "name", "description", "system_prompt", "model", "temperature",
    "max_tokens", "is_active", "settings",
})
_WIDGET_FIELDS = frozenset({
    "position", "primary_color", "background_color", "text_color", "font_family",
    "border_radius", "title", "subtitle", "welcome_message", "placeholder",
    "launcher_icon", "launcher_icon_url", "auto_open", "auto_open_delay",
    "show_branding", "allowed_domains",
})
_KNOWLEDGE_FIELDS = frozenset({
    "name", "text_content", "source_url", "file_url", "status", "error_message",
})
# Python-side names that are stored as JSON text
_JSON_COLUMNS = {"settings": "settings_json", "allowed_domains": "allowed_domains_json"}


def _bool_or_none(value: Any) -> Optional[bool]:
    return None if value is None else bool(value)


def _read_back(record: _T | None, entity: str) -> _T:
    """A row just written must be readable on the same connection."""
    if record is None:
        raise StorageError("read back", entity)
    return record


def _to_column(name: str, value: Any) -> tuple[str, Any]:
    if name in _JSON_COLUMNS:
        return _JSON_COLUMNS[name], None if value is None else json.dumps(value)
    if isinstance(value, bool):
        return name, int(value)
    return name, value


class ChatbotRepository:
    """CRUD over chatbots, widget configs and knowledge sources."""

    def __init__(self, db: Database):
        self._db = db
        self._hooks: list[ChangeHook] = []

    def on_change(self, hook: ChangeHook) -> None:
        """Register a coroutine called with the chatbot id after every mutation."""
        self._hooks.append(hook)

    async def _notify(self, chatbot_id: str) -> None:
        for hook in self._hooks:
            try:
                await hook(chatbot_id)
            except Exception as e:
                logger.warning("change_hook_failed", chatbot_id=chatbot_id, error=str(e))

    # -- chatbots ---------------------------------------------------------

    async def get_chatbot(self, chatbot_id: str) -> ChatbotRecord | None:
        async with storage_errors(self._db, "load", f"chatbot {chatbot_id}"):
            cursor = await self._db.conn.execute(
                "SELECT * FROM chatbots WHERE id = ? LIMIT 1", (chatbot_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_chatbot(row) if row else None

    async def create_chatbot(
        self,
        tenant_id: str,
        name: str,
        *,
        chatbot_id: str | None = None,
        **fields: Any,
    ) -> ChatbotRecord:
        """Insert a chatbot. Unknown keyword fields raise ValueError."""
        unknown = set(fields) - _CHATBOT_FIELDS
        if unknown:
            raise ValueError(f"Unknown chatbot fields: {sorted(unknown)}")
        chatbot_id = chatbot_id or str(uuid.uuid4())
        now = utc_now_iso()
        columns = {"id": chatbot_id, "tenant_id": tenant_id, "name": name,
                   "created_at": now, "updated_at": now}
        for key, value in fields.items():
            column, stored = _to_column(key, value)
            columns[column] = stored

        placeholders = ", ".join("?" for _ in columns)
        async with storage_errors(self._db, "create", f"chatbot {chatbot_id}"):
            await self._db.conn.execute(
                f"INSERT INTO chatbots ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(columns.values()),
            )
            await self._db.conn.commit()
        logger.info("chatbot_created", chatbot_id=chatbot_id, tenant_id=tenant_id)
        return _read_back(await self.get_chatbot(chatbot_id), f"chatbot {chatbot_id}")

    async def update_chatbot(self, chatbot_id: str, **fields: Any) -> ChatbotRecord | None:
        """Partially update a chatbot and bump ``updated_at``. Returns None if absent."""
        unknown = set(fields) - _CHATBOT_FIELDS
        if unknown:
            raise ValueError(f"Unknown chatbot fields: {sorted(unknown)}")
        assignments = dict(_to_column(k, v) for k, v in fields.items())
        assignments["updated_at"] = utc_now_iso()

        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        async with storage_errors(self._db, "update", f"chatbot {chatbot_id}"):
            cursor = await self._db.conn.execute(
                f"UPDATE chatbots SET {set_clause} WHERE id = ?",
                (*assignments.values(), chatbot_id),
            )
            await self._db.conn.commit()
        if cursor.rowcount == 0:
            return None
        await self._notify(chatbot_id)
        return await self.get_chatbot(chatbot_id)

    async def delete_chatbot(self, chatbot_id: str) -> bool:
        """Delete a chatbot; widget, knowledge and sessions cascade."""
        async with storage_errors(self._db, "delete", f"chatbot {chatbot_id}"):
            cursor = await self._db.conn.execute(
                "DELETE FROM chatbots WHERE id = ?", (chatbot_id,)
            )
            await self._db.conn.commit()
        await self._notify(chatbot_id)
        return cursor.rowcount > 0

    # -- widget configs ---------------------------------------------------

    async def get_widget_config(self, chatbot_id: str) -> WidgetConfigRecord | None:
        async with storage_errors(self._db, "load", f"widget config for {chatbot_id}"):
            cursor = await self._db.conn.execute(
                "SELECT * FROM widget_configs WHERE chatbot_id = ? LIMIT 1", (chatbot_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_widget(row) if row else None

    async def upsert_widget_config(self, chatbot_id: str, **fields: Any) -> WidgetConfigRecord:
        unknown = set(fields) - _WIDGET_FIELDS
        if unknown:
            raise ValueError(f"Unknown widget fields: {sorted(unknown)}")
        if fields.get("position") is not None:
            # raises ValueError for anything the widget cannot render
            fields["position"] = WidgetPosition(fields["position"]).value
        now = utc_now_iso()
        columns = dict(_to_column(k, v) for k, v in fields.items())
        insert_columns = {"id": str(uuid.uuid4()), "chatbot_id": chatbot_id,
                          "created_at": now, "updated_at": now, **columns}
        updates = ", ".join(f"{c} = excluded.{c}" for c in (*columns, "updated_at"))

        async with storage_errors(self._db, "save", f"widget config for {chatbot_id}"):
            await self._db.conn.execute(
                f"""INSERT INTO widget_configs ({', '.join(insert_columns)})
                    VALUES ({', '.join('?' for _ in insert_columns)})
                    ON CONFLICT(chatbot_id) DO UPDATE SET {updates}""",
                tuple(insert_columns.values()),
            )
            await self._db.conn.commit()
        await self._notify(chatbot_id)
        return _read_back(
            await self.get_widget_config(chatbot_id), f"widget config for {chatbot_id}"
        )

    # -- knowledge sources ------------------------------------------------

    async def list_text_knowledge(self, chatbot_id: str) -> list[KnowledgeSourceRecord]:
        """Completed text sources for a chatbot, oldest first."""
        async with storage_errors(self._db, "load", f"knowledge for {chatbot_id}"):
            cursor = await self._db.conn.execute(
                """SELECT * FROM knowledge_sources
                   WHERE chatbot_id = ? AND type = ? AND status = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (chatbot_id, KnowledgeSourceType.TEXT.value, ProcessingStatus.COMPLETED.value),
            )
            rows = await cursor.fetchall()
        return [self._row_to_knowledge(row) for row in rows]

    async def list_knowledge_sources(self, chatbot_id: str) -> list[KnowledgeSourceRecord]:
        async with storage_errors(self._db, "list", f"knowledge sources for {chatbot_id}"):
            cursor = await self._db.conn.execute(
                """SELECT * FROM knowledge_sources WHERE chatbot_id = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (chatbot_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_knowledge(row) for row in rows]

    async def get_knowledge_source(self, source_id: str) -> KnowledgeSourceRecord | None:
        async with storage_errors(self._db, "load", f"knowledge source {source_id}"):
            cursor = await self._db.conn.execute(
                "SELECT * FROM knowledge_sources WHERE id = ? LIMIT 1", (source_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_knowledge(row) if row else None

    async def add_knowledge_source(
        self,
        chatbot_id: str,
        name: str,
        *,
        type: KnowledgeSourceType = KnowledgeSourceType.TEXT,
        text_content: str | None = None,
        source_url: str | None = None,
        file_url: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> KnowledgeSourceRecord:
        """Insert a knowledge source.

        Text needs no processing step, so text sources default to ``completed``;
        every other kind starts ``pending``.
        """
        if status is None:
            status = (
                ProcessingStatus.COMPLETED
                if type is KnowledgeSourceType.TEXT
                else ProcessingStatus.PENDING
            )
        source_id = str(uuid.uuid4())
        now = utc_now_iso()
        async with storage_errors(self._db, "create", f"knowledge source for {chatbot_id}"):
            await self._db.conn.execute(
                """INSERT INTO knowledge_sources
                   (id, chatbot_id, type, name, text_content, source_url, file_url,
                    status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (source_id, chatbot_id, type.value, name, text_content, source_url,
                 file_url, status.value, now, now),
            )
            await self._db.conn.commit()
        await self._notify(chatbot_id)
        return _read_back(
            await self.get_knowledge_source(source_id), f"knowledge source {source_id}"
        )

    async def update_knowledge_source(
        self, source_id: str, **fields: Any
    ) -> KnowledgeSourceRecord | None:
        unknown = set(fields) - _KNOWLEDGE_FIELDS
        if unknown:
            raise ValueError(f"Unknown knowledge fields: {sorted(unknown)}")
        existing = await self.get_knowledge_source(source_id)
        if existing is None:
            return None
        assignments = {k: (v.value if isinstance(v, ProcessingStatus) else v)
                       for k, v in fields.items()}
        assignments["updated_at"] = utc_now_iso()
        set_clause = ", ".join(f"{column} = ?" for column in assignments)

        async with storage_errors(self._db, "update", f"knowledge source {source_id}"):
            await self._db.conn.execute(
                f"UPDATE knowledge_sources SET {set_clause} WHERE id = ?",
                (*assignments.values(), source_id),
            )
            await self._db.conn.commit()
        await self._notify(existing.chatbot_id)
        return await self.get_knowledge_source(source_id)

    async def delete_knowledge_source(self, source_id: str) -> bool:
        existing = await self.get_knowledge_source(source_id)
        if existing is None:
            return False
        async with storage_errors(self._db, "delete", f"knowledge source {source_id}"):
            await self._db.conn.execute(
                "DELETE FROM knowledge_sources WHERE id = ?", (source_id,)
            )
            await self._db.conn.commit()
        await self._notify(existing.chatbot_id)
        return True

    # -- row mapping ------------------------------------------------------

    @staticmethod
    def _row_to_chatbot(row) -> ChatbotRecord:
        settings = row["settings_json"]
        return ChatbotRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"],
            system_prompt=row["system_prompt"],
            model=row["model"],
            temperature=row["temperature"],
            max_tokens=row["max_tokens"],
            is_active=_bool_or_none(row["is_active"]),
            settings=json.loads(settings) if settings is not None else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_widget(row) -> WidgetConfigRecord:
        domains = row["allowed_domains_json"]
        return WidgetConfigRecord(
            id=row["id"],
            chatbot_id=row["chatbot_id"],
            position=row["position"],
            primary_color=row["primary_color"],
            background_color=row["background_color"],
            text_color=row["text_color"],
            font_family=row["font_family"],
            border_radius=row["border_radius"],
            title=row["title"],
            subtitle=row["subtitle"],
            welcome_message=row["welcome_message"],
            placeholder=row["placeholder"],
            launcher_icon=row["launcher_icon"],
            launcher_icon_url=row["launcher_icon_url"],
            auto_open=_bool_or_none(row["auto_open"]),
            auto_open_delay=row["auto_open_delay"],
            show_branding=_bool_or_none(row["show_branding"]),
            allowed_domains=json.loads(domains) if domains is not None else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_knowledge(row) -> KnowledgeSourceRecord:
        return KnowledgeSourceRecord(
            id=row["id"],
            chatbot_id=row["chatbot_id"],
            type=KnowledgeSourceType(row["type"]),
            name=row["name"],
            text_content=row["text_content"],
            source_url=row["source_url"],
            file_url=row["file_url"],
            status=ProcessingStatus(row["status"]),
            error_message=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
