"""Convert a session transcript into Anthropic API message format."""

from __future__ import annotations

from typing import Any, Sequence

from agent_chat.storage.models import Event

USER_AUTHOR = "user"


def build_messages(events: Sequence[Event]) -> list[dict[str, Any]]:
    """Turn stored events into alternating user/assistant messages.

    Events without text (errors, partial chunks, state-only updates) are
    skipped. Consecutive events from the same side are joined into one
    message, and the list never starts with an assistant turn.
    """
    messages: list[dict[str, Any]] = []

    for event in events:
        if event.partial or event.error_code:
            continue
        text = event.text()
        if not text:
            continue

        role = "user" if event.author == USER_AUTHOR else "assistant"
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + text
        else:
            messages.append({"role": role, "content": text})

    return messages
