"""Watch hub REST and websocket API (FastAPI)."""

import asyncio
import contextlib
import logging
import threading
from typing import Any, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from src.filewatcher.codec import decode_events
from src.filewatcher.exceptions import MalformedMessageError, MalformedWatchConfigError
from src.filewatcher.models import (
    ChangeBatch,
    DebugMessage,
    ProjectWatchConfig,
    WatchAck,
    encode_push_message,
    projects_to_dicts,
)

from .config import HubConfig
from .exceptions import ProjectNotFoundError, ProtocolViolationError
from .registry import WatchRegistry
from .sessions import PushSession, SessionBroadcaster
from .sink import DeliverySink
from .violations import ViolationRecorder

logger = logging.getLogger(__name__)

PUSH_CHANNEL_PATH = "/websockets/file-changes/v1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _violation_response(e: ProtocolViolationError) -> JSONResponse:
    return JSONResponse(
        {"error": str(e), "kind": e.violation.kind.value},
        status_code=409,
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    registry: Optional[WatchRegistry] = None,
    sink: Optional[DeliverySink] = None,
    cfg: Optional[HubConfig] = None,
) -> FastAPI:
    cfg = cfg or HubConfig()
    if registry is None:
        registry = WatchRegistry(
            SessionBroadcaster(),
            ViolationRecorder(strict=cfg.strict_violations),
        )
    if sink is None:
        sink = DeliverySink(registry)
    broadcaster = registry.broadcaster

    app = FastAPI(title="Watch Hub API", docs_url=None, redoc_url=None)

    # Store references on app state
    app.state.cfg = cfg
    app.state.registry = registry
    app.state.sink = sink
    app.state.broadcaster = broadcaster

    @app.get("/health")
    async def health():
        return {"status": "ok", "projects": len(registry), "sessions": len(broadcaster)}

    # ------------------------------------------------------------------
    # Watch list
    # ------------------------------------------------------------------

    @app.get("/api/v1/projects/watchlist")
    async def get_watchlist():
        return {"projects": projects_to_dicts(registry.list_projects())}

    @app.post("/api/v1/projects/watchlist")
    async def register_project(request: Request):
        payload = await _read_json(request)
        try:
            config = ProjectWatchConfig.from_dict(payload)
            stored = registry.register(config)
        except MalformedWatchConfigError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return stored.to_dict()

    @app.delete("/api/v1/projects/{project_id}")
    async def unregister_project(project_id: str):
        try:
            registry.unregister(project_id)
        except ProjectNotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        return {"success": True}

    @app.get("/api/v1/projects/{project_id}/watch-status")
    async def watch_status(project_id: str):
        try:
            config = registry.get(project_id)
        except ProjectNotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        return {
            "projectID": project_id,
            "projectWatchStateId": config.watch_state_id,
            "state": registry.get_state(project_id).value,
        }

    # ------------------------------------------------------------------
    # File changes
    # ------------------------------------------------------------------

    @app.post("/api/v1/projects/{project_id}/file-changes")
    async def post_file_changes(project_id: str, request: Request, timestamp: Optional[str] = None):
        try:
            batch_timestamp = int(timestamp)
        except (TypeError, ValueError):
            return JSONResponse({"error": "Query parameter 'timestamp' must be an integer"}, status_code=400)

        payload = await _read_json(request)
        msg = payload.get("msg") if isinstance(payload, dict) else None
        if not isinstance(msg, str):
            return JSONResponse({"error": "Body must be an object with a 'msg' string"}, status_code=400)
        try:
            events = decode_events(msg)
        except MalformedMessageError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        batch = ChangeBatch(project_id, batch_timestamp, tuple(events))
        try:
            result = sink.accept(batch)
        except ProtocolViolationError as e:
            return _violation_response(e)
        return result.to_dict()

    @app.get("/api/v1/projects/{project_id}/file-changes")
    async def get_file_changes(project_id: str):
        return {
            "projectID": project_id,
            "events": [e.to_dict() for e in sink.get_events(project_id)],
        }

    @app.put("/api/v1/projects/{project_id}/file-changes/{watch_state_id}/status")
    async def put_watch_status(
        project_id: str,
        watch_state_id: str,
        request: Request,
        clientUuid: Optional[str] = None,
    ):
        payload = await _read_json(request)
        success = payload.get("success") if isinstance(payload, dict) else None
        if not isinstance(success, bool):
            return JSONResponse({"error": "Body must be an object with a 'success' boolean"}, status_code=400)
        if not clientUuid:
            return JSONResponse({"error": "Query parameter 'clientUuid' is required"}, status_code=400)

        ack = WatchAck(project_id, watch_state_id, success, client_uuid=clientUuid)
        try:
            state = registry.record_ack(ack)
        except ProtocolViolationError as e:
            return _violation_response(e)
        return {"projectID": project_id, "state": state.value}

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------

    @app.post("/api/v1/debug")
    async def post_debug(request: Request):
        payload = await _read_json(request)
        msg = payload.get("msg") if isinstance(payload, dict) else None
        if not isinstance(msg, str):
            return JSONResponse({"error": "Body must be an object with a 'msg' string"}, status_code=400)
        sent = broadcaster.broadcast(encode_push_message(DebugMessage(msg)))
        return {"sessions": sent}

    @app.websocket(PUSH_CHANNEL_PATH)
    async def push_channel(websocket: WebSocket):
        session = PushSession(websocket, asyncio.get_running_loop())
        broadcaster.add_session(session)
        try:
            await websocket.accept()
            writer = asyncio.create_task(session.run_writer())
            try:
                while True:
                    # Producers only send keepalives
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                session.close()
                writer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await writer
        finally:
            broadcaster.remove_session(session)

    return app


class WatchHubService:
    """Wrapper to run the FastAPI server via uvicorn in a background thread."""

    def __init__(
        self,
        cfg: HubConfig,
        registry: Optional[WatchRegistry] = None,
        sink: Optional[DeliverySink] = None,
    ):
        self.cfg = cfg
        self.host = cfg.host
        self.port = cfg.port
        self.app = create_app(registry, sink, cfg)
        self.registry: WatchRegistry = self.app.state.registry
        self.sink: DeliverySink = self.app.state.sink
        self._thread: Optional[threading.Thread] = None
        self._server: Any = None

    def start(self) -> None:
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        self._thread = threading.Thread(target=self._server.run, daemon=True)
        self._thread.start()
        logger.info("Watch hub listening on %s:%d", self.host, self.port)

    def stop(self) -> None:
        self.registry.broadcaster.close_all()
        if self._server:
            self._server.should_exit = True
            self._server = None
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
