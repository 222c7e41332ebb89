"""HTTP API consumed by the embeddable chat widget and the dashboard."""

from __future__ import annotations

import hmac
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Header, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from agent_chat.app import AgentChatApp, app_name_for, chatbot_id_from_app_name
from agent_chat.core.loader import WidgetConfig, fallback_widget_config
from agent_chat.errors import AgentChatError, ConfigurationError
from agent_chat.log import bind_request_context, clear_request_context, get_logger
from agent_chat.storage.models import Event, Session, SessionMetadata
from agent_chat.storage.session_store import GetSessionConfig

logger = get_logger(__name__)

EMPTY_REPLY = "I couldn't generate a response."


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSessionRequest(_CamelModel):
    chatbot_id: Optional[str] = Field(default=None, alias="chatbotId")
    visitor_id: Optional[str] = Field(default=None, alias="visitorId")
    visitor_name: Optional[str] = Field(default=None, alias="visitorName")
    visitor_email: Optional[str] = Field(default=None, alias="visitorEmail")
    page_url: Optional[str] = Field(default=None, alias="pageUrl")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")


class SessionKey(_CamelModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    app_name: Optional[str] = Field(default=None, alias="appName")


class ChatRequest(SessionKey):
    message: Optional[str] = None


def _failure(response: Response, status_code: int, error: str) -> dict[str, Any]:
    response.status_code = status_code
    return {"success": False, "error": error}


def _session_summary(session: Session) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "appName": session.app_name,
        "userId": session.user_id,
        "state": session.state,
        "lastUpdateTime": session.last_update_time,
        "chatbotId": session.metadata.chatbot_id,
        "visitorId": session.metadata.visitor_id,
        "visitorName": session.metadata.visitor_name,
        "visitorEmail": session.metadata.visitor_email,
        "pageUrl": session.metadata.page_url,
        "userAgent": session.metadata.user_agent,
    }


def _event_payload(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "invocationId": event.invocation_id,
        "author": event.author,
        "content": event.content,
        "timestamp": event.timestamp,
        "turnComplete": event.turn_complete,
        "errorCode": event.error_code,
        "errorMessage": event.error_message,
        "finishReason": event.finish_reason,
    }


def _widget_payload(widget: WidgetConfig) -> dict[str, Any]:
    return {
        "title": widget.title,
        "subtitle": widget.subtitle,
        "welcomeMessage": widget.welcome_message,
        "placeholder": widget.placeholder,
        "primaryColor": widget.primary_color,
        "backgroundColor": widget.background_color,
        "textColor": widget.text_color,
        "fontFamily": widget.font_family,
        "borderRadius": widget.border_radius,
        "position": widget.position,
        "launcherIcon": widget.launcher_icon,
        "launcherIconUrl": widget.launcher_icon_url,
        "autoOpen": widget.auto_open,
        "autoOpenDelay": widget.auto_open_delay,
        "showBranding": widget.show_branding,
    }


def check_internal_token(expected: Optional[str], provided: Optional[str]) -> bool:
    """Return whether ``provided`` matches; raise if no token is configured."""
    if not expected:
        raise ConfigurationError("Internal token not configured")
    # compare_digest rejects non-ASCII str; header values may hold any latin-1 byte
    return provided is not None and hmac.compare_digest(
        provided.encode("utf-8"), expected.encode("utf-8")
    )


def create_app(chat_app: AgentChatApp, manage_lifecycle: bool = True) -> FastAPI:
    """Build the FastAPI application around an AgentChatApp.

    With ``manage_lifecycle`` the lifespan handler starts and stops the
    AgentChatApp; tests pass an already started instance and ``False``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await chat_app.start()
        yield
        if manage_lifecycle:
            await chat_app.stop()

    api = FastAPI(title="agent-chat", lifespan=lifespan)
    api.add_middleware(
        CORSMiddleware,
        allow_origins=chat_app.config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    api.state.chat_app = chat_app

    @api.middleware("http")
    async def request_context(request: Request, call_next):
        clear_request_context()
        bind_request_context(method=request.method, path=request.url.path)
        return await call_next(request)

    @api.post("/api/session")
    async def create_session(
        body: CreateSessionRequest, request: Request, response: Response
    ) -> dict[str, Any]:
        if not body.chatbot_id:
            return _failure(response, status.HTTP_400_BAD_REQUEST, "chatbotId is required")
        try:
            chatbot = await chat_app.loader.load_chatbot_config(body.chatbot_id)
            if chatbot is None:
                return _failure(response, status.HTTP_404_NOT_FOUND, "Chatbot not found")
            if not chatbot.is_active:
                return _failure(response, status.HTTP_403_FORBIDDEN, "Chatbot is not active")

            user_id = body.visitor_id or f"visitor_{uuid.uuid4()}"
            app_name = app_name_for(chatbot.id)
            session = await chat_app.session_store.create_session(
                app_name=app_name,
                user_id=user_id,
                session_id=f"session_{uuid.uuid4()}",
                state={"chatbot_id": chatbot.id},
                metadata=SessionMetadata(
                    chatbot_id=chatbot.id,
                    visitor_id=body.visitor_id,
                    visitor_name=body.visitor_name,
                    visitor_email=body.visitor_email,
                    page_url=body.page_url,
                    user_agent=body.user_agent or request.headers.get("user-agent"),
                ),
            )
        except AgentChatError as e:
            logger.error("create_session_failed", chatbot_id=body.chatbot_id, error=str(e))
            return _failure(response, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create session")

        return {
            "success": True,
            "sessionId": session.id,
            "userId": user_id,
            "appName": app_name,
            "message": "Session created successfully",
        }

    @api.post("/api/chat")
    async def chat(body: ChatRequest, response: Response) -> dict[str, Any]:
        if not (body.session_id and body.user_id and body.app_name and body.message):
            return _failure(
                response,
                status.HTTP_400_BAD_REQUEST,
                "sessionId, userId, appName, and message are required",
            )
        chatbot_id = chatbot_id_from_app_name(body.app_name)
        bind_request_context(chatbot_id=chatbot_id, session_id=body.session_id)
        try:
            session = await chat_app.session_store.get_session(
                body.app_name, body.user_id, body.session_id, GetSessionConfig(num_recent_events=0)
            )
            if session is None:
                return _failure(
                    response,
                    status.HTTP_404_NOT_FOUND,
                    "Session not found. Please create a new session.",
                )
            if not await chat_app.loader.is_chatbot_active(chatbot_id):
                return _failure(response, status.HTTP_403_FORBIDDEN, "Chatbot is no longer active")

            chatbot = await chat_app.loader.load_chatbot_config(chatbot_id)
            if chatbot is None:
                return _failure(
                    response, status.HTTP_404_NOT_FOUND, "Chatbot configuration not found"
                )

            runner = await chat_app.get_runner(chatbot)
            reply = ""
            async for event in runner.run(body.user_id, body.session_id, body.message):
                reply += event.text()
        except AgentChatError as e:
            logger.error("chat_failed", session_id=body.session_id, error=str(e))
            return _failure(
                response, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process message"
            )

        return {"success": True, "response": reply or EMPTY_REPLY}

    @api.post("/api/session/end")
    async def end_session(body: SessionKey, response: Response) -> dict[str, Any]:
        if not (body.session_id and body.user_id and body.app_name):
            return _failure(
                response, status.HTTP_400_BAD_REQUEST, "sessionId, userId, and appName are required"
            )
        try:
            await chat_app.session_store.delete_session(body.app_name, body.user_id, body.session_id)
        except AgentChatError as e:
            # The session may already be gone; ending is best-effort for the widget
            logger.warning("end_session_failed", session_id=body.session_id, error=str(e))
            return {"success": True, "message": "Session ended"}
        return {"success": True, "message": "Session ended successfully"}

    @api.get("/api/sessions/{app_name}/{user_id}")
    async def list_sessions(app_name: str, user_id: str, response: Response) -> dict[str, Any]:
        try:
            sessions = await chat_app.session_store.list_sessions(app_name, user_id)
        except AgentChatError as e:
            logger.error("list_sessions_failed", app_name=app_name, error=str(e))
            return _failure(response, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to list sessions")
        return {"success": True, "sessions": [_session_summary(s) for s in sessions]}

    @api.get("/api/session/{app_name}/{user_id}/{session_id}/events")
    async def session_events(
        app_name: str,
        user_id: str,
        session_id: str,
        response: Response,
        after: Optional[float] = None,
        limit: Optional[int] = Query(default=None, ge=0),
    ) -> dict[str, Any]:
        try:
            session = await chat_app.session_store.get_session(
                app_name,
                user_id,
                session_id,
                GetSessionConfig(after_timestamp=after, num_recent_events=limit),
            )
        except AgentChatError as e:
            logger.error("session_events_failed", session_id=session_id, error=str(e))
            return _failure(response, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to load session")
        if session is None:
            return _failure(response, status.HTTP_404_NOT_FOUND, "Session not found")
        return {
            "success": True,
            "session": _session_summary(session),
            "events": [_event_payload(e) for e in session.events],
        }

    @api.get("/api/widget/{chatbot_id}/config")
    async def widget_config(chatbot_id: str, response: Response) -> dict[str, Any]:
        try:
            chatbot = await chat_app.loader.load_chatbot_config(chatbot_id)
            if chatbot is None:
                return _failure(response, status.HTTP_404_NOT_FOUND, "Chatbot not found")
            if not chatbot.is_active:
                return _failure(response, status.HTTP_403_FORBIDDEN, "Chatbot is not active")
            widget = await chat_app.loader.load_widget_config(chatbot_id)
        except AgentChatError as e:
            logger.error("widget_config_failed", chatbot_id=chatbot_id, error=str(e))
            return _failure(
                response,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Failed to fetch widget configuration",
            )
        return {
            "success": True,
            "config": _widget_payload(widget or fallback_widget_config(chatbot)),
        }

    @api.post("/api/internal/reload/{chatbot_id}")
    async def reload(
        chatbot_id: str,
        response: Response,
        x_internal_token: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        try:
            authorized = check_internal_token(
                chat_app.config.server.internal_api_token, x_internal_token
            )
        except ConfigurationError as e:
            logger.error("reload_rejected", chatbot_id=chatbot_id, error=str(e))
            return _failure(response, status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        if not authorized:
            return _failure(response, status.HTTP_401_UNAUTHORIZED, "Unauthorized")

        try:
            await chat_app.reload(chatbot_id)
        except AgentChatError as e:
            logger.error("reload_failed", chatbot_id=chatbot_id, error=str(e))
            return _failure(
                response, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to reload configuration"
            )
        return {"success": True, "message": f"Configuration reloaded for chatbot {chatbot_id}"}

    @api.get("/api/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return api
