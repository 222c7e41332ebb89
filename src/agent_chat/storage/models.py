"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from agent_chat.core.types import KnowledgeSourceType, ProcessingStatus


@dataclass
class ChatbotRecord:
    """A chatbot row as stored; nullable columns stay ``None`` here."""

    id: str
    tenant_id: str
    name: str
    created_at: str
    updated_at: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    is_active: Optional[bool] = None
    settings: Optional[dict[str, Any]] = None


@dataclass
class WidgetConfigRecord:
    id: str
    chatbot_id: str
    created_at: str
    updated_at: str
    position: Optional[str] = None
    primary_color: Optional[str] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    font_family: Optional[str] = None
    border_radius: Optional[int] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    welcome_message: Optional[str] = None
    placeholder: Optional[str] = None
    launcher_icon: Optional[str] = None
    launcher_icon_url: Optional[str] = None
    auto_open: Optional[bool] = None
    auto_open_delay: Optional[int] = None
    show_branding: Optional[bool] = None
    allowed_domains: Optional[list[str]] = None


@dataclass
class KnowledgeSourceRecord:
    id: str
    chatbot_id: str
    type: KnowledgeSourceType
    name: str
    status: ProcessingStatus
    created_at: str
    updated_at: str
    text_content: Optional[str] = None
    source_url: Optional[str] = None
    file_url: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class KnowledgeEntry:
    """Text knowledge eligible for prompt construction."""

    id: str
    name: str
    text_content: str


@dataclass(frozen=True, slots=True)
class SessionMetadata:
    """Visitor details captured when a session is created."""

    chatbot_id: Optional[str] = None
    visitor_id: Optional[str] = None
    visitor_name: Optional[str] = None
    visitor_email: Optional[str] = None
    page_url: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class EventActions:
    state_delta: dict[str, Any] = field(default_factory=dict)
    artifact_delta: dict[str, Any] = field(default_factory=dict)
    transfer_to_agent: Optional[str] = None
    escalate: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_delta": self.state_delta,
            "artifact_delta": self.artifact_delta,
            "transfer_to_agent": self.transfer_to_agent,
            "escalate": self.escalate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EventActions:
        data = data or {}
        return cls(
            state_delta=dict(data.get("state_delta") or {}),
            artifact_delta=dict(data.get("artifact_delta") or {}),
            transfer_to_agent=data.get("transfer_to_agent"),
            escalate=data.get("escalate"),
        )


@dataclass(frozen=True)
class Event:
    """One immutable record in a session transcript.

    ``id`` and ``timestamp`` are assigned on append when left unset.
    ``content`` is opaque JSON; the runner writes ``{"role", "parts": [{"text"}]}``.
    """

    invocation_id: str
    author: Optional[str] = None
    content: Any = None
    actions: EventActions = field(default_factory=EventActions)
    id: Optional[str] = None
    timestamp: Optional[float] = None
    branch: Optional[str] = None
    long_running_tool_ids: Optional[list[str]] = None
    grounding_metadata: Optional[dict[str, Any]] = None
    partial: bool = False
    turn_complete: Optional[bool] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    custom_metadata: Optional[dict[str, Any]] = None
    usage_metadata: Optional[dict[str, Any]] = None
    finish_reason: Optional[str] = None

    def text(self) -> str:
        """Concatenate the text parts of the content payload."""
        if not isinstance(self.content, dict):
            return ""
        parts = self.content.get("parts") or []
        return "".join(p["text"] for p in parts if isinstance(p, dict) and p.get("text"))


@dataclass
class Session:
    id: str
    app_name: str
    user_id: str
    state: dict[str, Any] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)
    last_update_time: float = 0.0
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
