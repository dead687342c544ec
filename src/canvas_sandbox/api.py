# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from canvas_sandbox.agent import AgentTurn, AgentTurnController
from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.exceptions import ModelStreamError, ProvisionError
from canvas_sandbox.factory import SandboxFactory
from canvas_sandbox.models import SandboxHandle
from canvas_sandbox.progress import GLOBAL_LOG, GlobalLog, ProgressReporter
from canvas_sandbox.provisioner import Provisioner
from canvas_sandbox.session_manager import DEFAULT_SESSION, SessionCache
from canvas_sandbox.utils.logger import logger

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_format(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


class ChatRequest(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)
    session_id: str = DEFAULT_SESSION


class AgentRequest(BaseModel):
    """Prompt for the agent process inside a sandbox.

    With `agentUrl` set the given sandbox is used as is. Otherwise the sandbox
    cached for `sessionKey` is reused or provisioned.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    id: str | None = None
    agent_url: str | None = Field(default=None, alias="agentUrl")
    preview_token: str | None = Field(default=None, alias="previewToken")
    session_id: str | None = Field(default=None, alias="sessionId")
    session_key: str = Field(default=DEFAULT_SESSION, alias="sessionKey")


def build_controller(config: SandboxConfig | None = None, global_log: GlobalLog | None = None) -> AgentTurnController:
    """Wire provider, provisioner, session cache and controller from configuration."""
    config = config or SandboxConfig()
    provider = SandboxFactory.get_provider(config)
    sessions = SessionCache(Provisioner(provider, config), config)
    return AgentTurnController(sessions, config, global_log=global_log)


async def _prime(turn: AgentTurn) -> tuple[list[dict[str, Any]], AsyncIterator[dict[str, Any]]]:
    """Pull events up to the first model output.

    A model failure before anything was produced surfaces here as an
    exception, so it can still become a plain HTTP error response.
    """
    events = turn.events()
    buffered: list[dict[str, Any]] = []
    async for event in events:
        buffered.append(event)
        if event["type"] != "step":
            break
    return buffered, events


def create_app(
    controller: AgentTurnController | None = None,
    config: SandboxConfig | None = None,
    global_log: GlobalLog | None = None,
) -> FastAPI:
    """Build the chat API.

    Without a controller, one is wired from configuration when the app starts
    and the log buffer is sized from `global_log_capacity`.
    """
    if global_log is not None:
        log = global_log
    elif controller is not None:
        log = controller.global_log if controller.global_log is not None else GLOBAL_LOG
    else:
        config = config or SandboxConfig()
        log = GlobalLog(config.global_log_capacity)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.controller is None:
            app.state.controller = build_controller(config, global_log=log)
        yield
        logger.info("Shutting down sandbox sessions")
        await app.state.controller.sessions.shutdown()

    app = FastAPI(title="canvas-sandbox", lifespan=lifespan)
    app.state.controller = controller

    @app.post("/api/chat", response_model=None)
    async def chat(request: ChatRequest) -> StreamingResponse | JSONResponse:
        agent: AgentTurnController = app.state.controller
        try:
            turn = await agent.handle_turn(request.messages, request.session_id)
        except ProvisionError as e:
            logger.error(f"Failed to start sandbox: {e}")
            return JSONResponse(status_code=503, content={"error": str(e), "phase": e.phase.value})

        try:
            buffered, events = await _prime(turn)
        except ModelStreamError as e:
            return JSONResponse(status_code=e.status_code or 502, content={"error": e.detail})

        async def stream() -> AsyncIterator[str]:
            for event in buffered:
                yield sse_format(event)
            try:
                async for event in events:
                    yield sse_format(event)
            except Exception as e:
                logger.exception("Turn failed mid-stream")
                yield sse_format({"type": "error", "error": str(e)})

        headers = {**SSE_HEADERS, "X-Sandbox-URL": turn.sandbox_url, "X-Turn-Id": turn.turn_id}
        return StreamingResponse(stream(), media_type="text/event-stream", headers=headers)

    @app.post("/api/agent")
    async def run_agent(request: AgentRequest) -> JSONResponse:
        agent: AgentTurnController = app.state.controller
        if request.agent_url:
            handle = SandboxHandle(id=request.id or "", base_url=request.agent_url, access_token=request.preview_token)
        else:
            try:
                handle, _ = await agent.sessions.get_or_provision(ProgressReporter(log), request.session_key)
            except ProvisionError as e:
                logger.error(f"Failed to start sandbox: {e}")
                return JSONResponse(status_code=503, content={"error": str(e), "phase": e.phase.value})

        sandbox = {"id": handle.id, "agentUrl": handle.base_url, "previewToken": handle.access_token}
        try:
            response = await agent.sessions.provisioner.call_agent(handle, request.prompt, request.session_id)
        except httpx.HTTPError as e:
            logger.error(f"Agent call failed: {e}")
            return JSONResponse(status_code=502, content={"ok": False, "error": f"Agent request failed: {e}", **sandbox})

        if not response.is_success:
            logger.error(f"Agent call failed: {response.status_code} {response.reason_phrase} {response.text}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": f"Agent HTTP {response.status_code}: {response.text}", **sandbox},
            )
        return JSONResponse(content={**sandbox, **response.json()})

    @app.post("/api/chat/{turn_id}/cancel", status_code=202)
    async def cancel(turn_id: str) -> dict[str, str]:
        if not app.state.controller.cancel(turn_id):
            raise HTTPException(status_code=404, detail=f"Unknown turn: {turn_id}")
        return {"status": "cancelling", "turn_id": turn_id}

    @app.get("/api/logs")
    async def get_logs(limit: int | None = Query(default=None, ge=0)) -> dict[str, list[str]]:
        return {"logs": log.tail(limit)}

    @app.delete("/api/logs")
    async def clear_logs() -> dict[str, bool]:
        log.clear()
        return {"cleared": True}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def serve() -> None:
    """Entry point for the HTTP server."""
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":  # pragma: no cover
    serve()
