"""
HTTP and WebSocket surface for a preview session.

The presentation layer reads the RunnerView from GET /state (or receives it
over WS /ws whenever it changes) and drives the session with the POST
actions. Requests rejected by a precondition answer 409.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import GuardError
from .log_config import configure_logging, get_logger
from .runner.orchestrator import Orchestrator
from .types import ExecutionStep, FileArtifact, RunnerView

configure_logging()
log = get_logger("web_api")

WS_POLL_INTERVAL = 0.25
WS_PING_INTERVAL = 30.0


class FilesRequest(BaseModel):
    files: list[FileArtifact] = Field(default_factory=list)
    visible: bool = True


class PreviewAckRequest(BaseModel):
    generation: int | None = None


class ActionResponse(BaseModel):
    step: ExecutionStep | None = None
    state: RunnerView


def create_app(orchestrator: Orchestrator) -> FastAPI:
    """Build the API around an orchestrator owned by the caller."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.close()

    app = FastAPI(title="livepreview", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.exception_handler(GuardError)
    async def guard_error_handler(request: Request, exc: GuardError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    async def run_action(
        action: str,
        call: Callable[[], Awaitable[ExecutionStep | None]],
    ) -> ActionResponse:
        start_time = time.time()
        outcome = "success"
        try:
            step = await call()
            if step is not None and step.status == "error":
                outcome = "error"
            return ActionResponse(step=step, state=orchestrator.view())
        except GuardError:
            outcome = "rejected"
            raise
        finally:
            log.info(
                "api.action",
                action=action,
                outcome=outcome,
                duration_ms=int((time.time() - start_time) * 1000),
            )

    @app.get("/health")
    async def health_check() -> dict:
        return {"status": "ok"}

    @app.get("/state", response_model=RunnerView)
    async def get_state() -> RunnerView:
        return orchestrator.view()

    @app.post("/files", response_model=ActionResponse)
    async def post_files(request: FilesRequest) -> ActionResponse:
        return await run_action(
            "files",
            lambda: orchestrator.update_files(request.files, visible=request.visible),
        )

    @app.post("/install", response_model=ActionResponse)
    async def post_install() -> ActionResponse:
        return await run_action("install", orchestrator.install)

    @app.post("/start", response_model=ActionResponse)
    async def post_start() -> ActionResponse:
        return await run_action("start", orchestrator.start)

    @app.post("/stop", response_model=ActionResponse)
    async def post_stop() -> ActionResponse:
        return await run_action("stop", orchestrator.stop)

    @app.post("/preview/refresh")
    async def post_preview_refresh() -> dict:
        return {"accepted": orchestrator.refresh_preview(), "state": orchestrator.view()}

    @app.post("/preview/loaded")
    async def post_preview_loaded(request: PreviewAckRequest) -> dict:
        return {
            "accepted": orchestrator.preview_loaded(request.generation),
            "state": orchestrator.view(),
        }

    @app.post("/preview/failed")
    async def post_preview_failed(request: PreviewAckRequest) -> dict:
        return {
            "accepted": orchestrator.preview_failed(request.generation),
            "state": orchestrator.view(),
        }

    @app.websocket("/ws")
    async def state_websocket(websocket: WebSocket) -> None:
        await websocket.accept()
        log.info("ws.connect")

        async def push_state() -> None:
            last_sent = ""
            last_activity = time.monotonic()
            while True:
                payload = orchestrator.view().model_dump_json()
                if payload != last_sent:
                    await websocket.send_text(f'{{"type": "state", "state": {payload}}}')
                    last_sent = payload
                    last_activity = time.monotonic()
                elif time.monotonic() - last_activity > WS_PING_INTERVAL:
                    await websocket.send_json({"type": "ping", "timestamp": time.time()})
                    last_activity = time.monotonic()
                await asyncio.sleep(WS_POLL_INTERVAL)

        sender = asyncio.create_task(push_state())
        try:
            # Client messages carry nothing; reading detects the disconnect.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            log.info("ws.disconnect")
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    return app
