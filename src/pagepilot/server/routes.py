"""FastAPI routes mirroring the session caller interface."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pagepilot.errors import (
    ApprovalExpired,
    ApprovalNotPending,
    ApprovalPending,
    ModelUnavailable,
    PagePilotError,
    SchemaError,
    SessionExists,
    SessionNotFound,
    ToolNotFound,
)
from pagepilot.logging import get_logger
from pagepilot.runtime import Runtime
from pagepilot.server.websocket import serve_page_context
from pagepilot.session.models import ApprovalAction

log = get_logger("server")

_STATUS_CODES: dict[type[PagePilotError], int] = {
    SessionNotFound: 404,
    SessionExists: 409,
    ApprovalPending: 409,
    ApprovalNotPending: 409,
    ApprovalExpired: 410,
    SchemaError: 422,
    ToolNotFound: 422,
    ModelUnavailable: 502,
}


def status_for(error: PagePilotError) -> int:
    for error_type, status in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return status
    return 500


class CreateSessionBody(BaseModel):
    session_id: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_.-]+$")
    title: str | None = None


class MessageBody(BaseModel):
    text: str = Field(min_length=1)


class ApprovalBody(BaseModel):
    decision: ApprovalAction
    arguments: dict[str, Any] | None = None


def create_app(runtime: Runtime) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(
        title="PagePilot",
        description="Session orchestrator for page-acting agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.exception_handler(PagePilotError)
    async def pagepilot_error_handler(request: Request, exc: PagePilotError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        content: dict[str, Any] = {"error": exc.kind, "detail": str(exc)}
        if isinstance(exc, SchemaError):
            content["problems"] = exc.problems
        return JSONResponse(status_code=status, content=content)

    _register_routes(app, runtime)
    return app


def _register_routes(app: FastAPI, runtime: Runtime) -> None:
    sessions = runtime.sessions

    @app.post("/sessions", status_code=201)
    async def create_session(body: CreateSessionBody | None = None) -> dict[str, Any]:
        body = body or CreateSessionBody()
        session = await sessions.create_session(body.session_id, body.title)
        return session.summary()

    @app.get("/sessions")
    async def list_sessions() -> list[dict[str, Any]]:
        return [s.summary() for s in await sessions.list_sessions()]

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> dict[str, Any]:
        session = await sessions.get_session(session_id)
        return session.to_dict()

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str) -> None:
        await sessions.delete_session(session_id)

    @app.post("/sessions/{session_id}/messages")
    async def submit_message(session_id: str, body: MessageBody) -> dict[str, Any]:
        outcome = await sessions.submit_user_message(session_id, body.text)
        return outcome.to_dict()

    @app.post("/sessions/{session_id}/approval")
    async def resolve_approval(session_id: str, body: ApprovalBody) -> dict[str, Any]:
        outcome = await sessions.resolve_approval(session_id, body.decision, body.arguments)
        return outcome.to_dict()

    @app.get("/pages")
    async def list_pages() -> dict[str, Any]:
        return {
            "active": runtime.contexts.active_id,
            "pages": runtime.contexts.list_contexts(),
        }

    @app.get("/tools")
    async def list_tools() -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "sensitive": tool.sensitive,
                "target": tool.target.value,
                "parameters": tool.json_schema(),
            }
            for tool in runtime.tools
        ]

    @app.websocket("/pages/{context_id}")
    async def page_endpoint(websocket: WebSocket, context_id: str) -> None:
        await serve_page_context(websocket, context_id, runtime)
