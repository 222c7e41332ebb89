"""Durable session storage with an append-only event log.

A session is addressed by the triple (app_name, user_id, session_id); every
read and delete requires all three to match. Events are never updated once
inserted, and reading a session always goes to the database so that separate
processes and restarts see the same transcript.
"""

from __future__ import annotations

import dataclasses
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from agent_chat.log import get_logger
from agent_chat.storage.database import Database, storage_errors
from agent_chat.storage.models import Event, EventActions, Session, SessionMetadata

logger = get_logger(__name__)

# State keys with this prefix live for one invocation only and are never persisted
TEMP_STATE_PREFIX = "temp:"


@dataclass(frozen=True, slots=True)
class GetSessionConfig:
    """Event filters for ``get_session``.

    ``after_timestamp`` is applied in the query; ``num_recent_events`` trims the
    filtered result afterwards, so the two compose as "last N after T".
    """

    after_timestamp: Optional[float] = None
    num_recent_events: Optional[int] = None

    def __post_init__(self) -> None:
        if self.num_recent_events is not None and self.num_recent_events < 0:
            raise ValueError("num_recent_events must be >= 0")


def apply_event(session: Session, event: Event, *, now: float) -> Event:
    """Fold an event into an in-memory session.

    Merges the state delta into ``session.state`` (last write wins per key),
    fills in a missing id and timestamp, and appends the result to
    ``session.events``. Returns the stamped event.
    """
    for key, value in event.actions.state_delta.items():
        if key.startswith(TEMP_STATE_PREFIX):
            continue
        session.state[key] = value

    stamped = dataclasses.replace(
        event,
        id=event.id or uuid.uuid4().hex,
        timestamp=event.timestamp if event.timestamp is not None else now,
    )
    session.events.append(stamped)
    return stamped


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _loads(value: Optional[str]) -> Any:
    return None if value is None else json.loads(value)


class SessionStore:
    """CRUD over sessions plus the event append protocol."""

    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self._db = db
        self._clock = clock

    async def create_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str | None = None,
        state: dict[str, Any] | None = None,
        metadata: SessionMetadata | None = None,
    ) -> Session:
        """Persist a new session and return it with an empty event list."""
        session_id = session_id or f"session_{uuid.uuid4()}"
        state = dict(state or {})
        metadata = metadata or SessionMetadata()
        now = self._clock()

        async with storage_errors(self._db, "create", f"session {session_id}"):
            await self._db.conn.execute(
                """INSERT INTO sessions
                   (id, app_name, user_id, chatbot_id, state_json, last_update_time,
                    visitor_id, visitor_name, visitor_email, page_url, user_agent)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session_id,
                    app_name,
                    user_id,
                    metadata.chatbot_id,
                    json.dumps(state),
                    now,
                    metadata.visitor_id,
                    metadata.visitor_name,
                    metadata.visitor_email,
                    metadata.page_url,
                    metadata.user_agent,
                ),
            )
            await self._db.conn.commit()

        logger.info("session_created", app_name=app_name, user_id=user_id, session_id=session_id)
        return Session(
            id=session_id,
            app_name=app_name,
            user_id=user_id,
            state=state,
            events=[],
            last_update_time=now,
            metadata=metadata,
        )

    async def get_session(
        self,
        app_name: str,
        user_id: str,
        session_id: str,
        config: GetSessionConfig | None = None,
    ) -> Session | None:
        """Load a session with its events ordered by timestamp, or None."""
        config = config or GetSessionConfig()
        async with storage_errors(self._db, "load", f"session {session_id}"):
            cursor = await self._db.conn.execute(
                """SELECT * FROM sessions
                   WHERE id = ? AND app_name = ? AND user_id = ?
                   LIMIT 1""",
                (session_id, app_name, user_id),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            event_rows = []
            # num_recent_events=0 asks for the session row only
            if config.num_recent_events != 0:
                if config.after_timestamp is not None:
                    cursor = await self._db.conn.execute(
                        """SELECT * FROM events WHERE session_id = ? AND timestamp > ?
                           ORDER BY timestamp ASC, rowid ASC""",
                        (session_id, config.after_timestamp),
                    )
                else:
                    cursor = await self._db.conn.execute(
                        """SELECT * FROM events WHERE session_id = ?
                           ORDER BY timestamp ASC, rowid ASC""",
                        (session_id,),
                    )
                event_rows = await cursor.fetchall()

        events = [self._row_to_event(r) for r in event_rows]
        if config.num_recent_events and len(events) > config.num_recent_events:
            events = events[-config.num_recent_events:]

        session = self._row_to_session(row)
        session.events = events
        return session

    async def list_sessions(self, app_name: str, user_id: str) -> list[Session]:
        """List a user's sessions, most recently updated first, without events."""
        async with storage_errors(self._db, "list", f"sessions for {app_name}/{user_id}"):
            cursor = await self._db.conn.execute(
                """SELECT * FROM sessions WHERE app_name = ? AND user_id = ?
                   ORDER BY last_update_time DESC""",
                (app_name, user_id),
            )
            rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def delete_session(self, app_name: str, user_id: str, session_id: str) -> None:
        """Delete a session and, by cascade, its events. Absent rows are not an error."""
        async with storage_errors(self._db, "delete", f"session {session_id}"):
            cursor = await self._db.conn.execute(
                "DELETE FROM sessions WHERE id = ? AND app_name = ? AND user_id = ?",
                (session_id, app_name, user_id),
            )
            await self._db.conn.commit()
        logger.info("session_deleted", session_id=session_id, existed=cursor.rowcount > 0)

    async def append_event(self, session: Session, event: Event) -> Event:
        """Record an event and the session state it produces.

        The event row is committed first. If that fails the session row is not
        touched. If the session update fails afterwards, the event is kept and
        the stored state and last update time lag until the next append;
        re-read the session to reconcile.
        """
        now = self._clock()
        previous_state = dict(session.state)
        stamped = apply_event(session, event, now=now)

        try:
            async with storage_errors(self._db, "append event to", f"session {session.id}"):
                await self._db.conn.execute(
                    """INSERT INTO events
                       (id, session_id, invocation_id, author, content_json, actions_json,
                        timestamp, branch, long_running_tool_ids_json, grounding_metadata_json,
                        partial, turn_complete, error_code, error_message,
                        custom_metadata_json, usage_metadata_json, finish_reason)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    self._event_to_row(session.id, stamped),
                )
                await self._db.conn.commit()
        except Exception:
            # Nothing was stored; undo the in-memory fold
            session.events.pop()
            session.state.clear()
            session.state.update(previous_state)
            raise

        async with storage_errors(self._db, "update", f"session {session.id}"):
            await self._db.conn.execute(
                """UPDATE sessions SET state_json = ?, last_update_time = ?
                   WHERE id = ? AND app_name = ? AND user_id = ?""",
                (json.dumps(session.state), now, session.id, session.app_name, session.user_id),
            )
            await self._db.conn.commit()

        session.last_update_time = now
        return stamped

    @staticmethod
    def _row_to_session(row) -> Session:
        return Session(
            id=row["id"],
            app_name=row["app_name"],
            user_id=row["user_id"],
            state=json.loads(row["state_json"]) if row["state_json"] else {},
            events=[],
            last_update_time=row["last_update_time"],
            metadata=SessionMetadata(
                chatbot_id=row["chatbot_id"],
                visitor_id=row["visitor_id"],
                visitor_name=row["visitor_name"],
                visitor_email=row["visitor_email"],
                page_url=row["page_url"],
                user_agent=row["user_agent"],
            ),
        )

    @staticmethod
    def _row_to_event(row) -> Event:
        turn_complete = row["turn_complete"]
        return Event(
            id=row["id"],
            invocation_id=row["invocation_id"],
            author=row["author"],
            content=_loads(row["content_json"]),
            actions=EventActions.from_dict(_loads(row["actions_json"])),
            timestamp=row["timestamp"],
            branch=row["branch"],
            long_running_tool_ids=_loads(row["long_running_tool_ids_json"]),
            grounding_metadata=_loads(row["grounding_metadata_json"]),
            partial=bool(row["partial"]),
            turn_complete=None if turn_complete is None else bool(turn_complete),
            error_code=row["error_code"],
            error_message=row["error_message"],
            custom_metadata=_loads(row["custom_metadata_json"]),
            usage_metadata=_loads(row["usage_metadata_json"]),
            finish_reason=row["finish_reason"],
        )

    @staticmethod
    def _event_to_row(session_id: str, event: Event) -> tuple[Any, ...]:
        return (
            event.id,
            session_id,
            event.invocation_id,
            event.author,
            _dumps(event.content),
            json.dumps(event.actions.to_dict()),
            event.timestamp,
            event.branch,
            _dumps(event.long_running_tool_ids),
            _dumps(event.grounding_metadata),
            int(event.partial),
            None if event.turn_complete is None else int(event.turn_complete),
            event.error_code,
            event.error_message,
            _dumps(event.custom_metadata),
            _dumps(event.usage_metadata),
            event.finish_reason,
        )
