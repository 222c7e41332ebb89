"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class KnowledgeSourceType(StrEnum):
    FILE = "file"
    URL = "url"
    TEXT = "text"
    SITEMAP = "sitemap"

    @property
    def is_supported(self) -> bool:
        """Only direct text is read by the agent runtime; the other kinds have no ingestion path."""
        return self is KnowledgeSourceType.TEXT


class ProcessingStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WidgetPosition(StrEnum):
    BOTTOM_RIGHT = "bottom-right"
    BOTTOM_LEFT = "bottom-left"
    TOP_RIGHT = "top-right"
    TOP_LEFT = "top-left"
