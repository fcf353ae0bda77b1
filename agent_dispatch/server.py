"""FastAPI server exposing dispatch operations."""

import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .errors import (
    ConfigurationError,
    DispatchError,
    DuplicateSession,
    LaunchFailed,
    RoutingUnavailable,
    SessionNotFound,
    TaskAlreadyActive,
    TaskStoreError,
    TmuxError,
)
from .models import LifecycleSignal, Session, SessionMode, SignalType

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ConfigurationError: 400,
    RoutingUnavailable: 400,
    SessionNotFound: 404,
    DuplicateSession: 409,
    TaskAlreadyActive: 409,
    LaunchFailed: 500,
    TmuxError: 500,
    TaskStoreError: 502,
}


def status_for(error: DispatchError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log slow requests. Spawns are expected to be slow, so the threshold is configurable."""

    def __init__(self, app, config: Optional[dict] = None):
        super().__init__(app)
        self.config = config or {}

        server_timeouts = self.config.get("timeouts", {}).get("server", {})
        self.slow_threshold = server_timeouts.get("slow_request_threshold_seconds", 30.0)
        self.timing_threshold = server_timeouts.get("request_timing_threshold_seconds", 1.0)

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        if elapsed > self.slow_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} "
                f"took {elapsed:.2f}s"
            )
        elif elapsed > self.timing_threshold:
            logger.info(
                f"Request: {request.method} {request.url.path} "
                f"took {elapsed*1000:.0f}ms"
            )

        return response


class SpawnRequest(BaseModel):
    """Request to start a worker."""
    task_id: Optional[str] = None
    worker: Optional[str] = None
    model: Optional[str] = None
    project: Optional[str] = None
    mode: str = "task"  # "task" or "plan"


class FollowupRequest(BaseModel):
    """Follow-up text for whoever holds a task."""
    text: str
    project: Optional[str] = None


class SendInputRequest(BaseModel):
    """Request to send input to a session."""
    text: str


class PauseRequest(BaseModel):
    task_id: Optional[str] = None
    reason: Optional[str] = None
    kill: bool = True


class SignalRequest(BaseModel):
    """Signal document written by an observer or the worker itself."""
    type: str
    task_id: Optional[str] = None
    payload: dict = {}


class SessionResponse(BaseModel):
    """Response containing session info."""
    session_name: str
    agent_name: str
    worker_id: str
    model_id: str
    project_path: str
    task_id: Optional[str] = None
    mode: str
    state: str
    created_at: str


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(**session.to_dict())


def create_app(
    session_manager=None,
    config: Optional[dict] = None,
    lifespan=None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        session_manager: SessionManager instance
        config: Configuration dictionary
        lifespan: Optional ASGI lifespan context manager

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Agent Dispatch",
        description="Launch coding-agent workers in tmux and route follow-up input to them",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config or {}
    app.add_middleware(RequestTimingMiddleware, config=config)
    app.state.session_manager = session_manager

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        status = status_for(exc)
        body = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, LaunchFailed):
            body.update({
                "session_name": exc.session_name,
                "screen_tail": exc.screen_tail,
                "recovery_hint": exc.recovery_hint,
            })
        if isinstance(exc, TaskStoreError) and exc.stderr:
            body["stderr"] = exc.stderr
        if isinstance(exc, (DuplicateSession, TaskAlreadyActive)):
            body["session_name"] = exc.session_name
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content=body)

    def _manager():
        if not app.state.session_manager:
            raise HTTPException(status_code=503, detail="Session manager not configured")
        return app.state.session_manager

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/workers")
    async def list_workers():
        """List configured workers and whether each can run right now."""
        return {"workers": _manager().list_workers()}

    @app.get("/workers/{worker_id}/models")
    async def list_models(worker_id: str):
        """Models for a worker: configured plus provider catalog."""
        manager = _manager()
        if manager.registry.get(worker_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown worker '{worker_id}'")
        return await manager.list_models(worker_id)

    @app.post("/work/spawn")
    async def spawn(request: SpawnRequest):
        """Start a worker. Returns 202 when a permission dialog needs a human."""
        try:
            mode = SessionMode(request.mode)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid mode: {request.mode}")

        result = await _manager().spawn(
            task_id=request.task_id,
            worker_id=request.worker,
            model=request.model,
            project=request.project,
            mode=mode,
        )
        if result.pending_acceptance:
            body = result.to_dict()
            body["message"] = (
                "The worker is showing a permission dialog. "
                "Open the terminal and answer it to continue."
            )
            return JSONResponse(status_code=202, content=body)
        return result.to_dict()

    @app.post("/tasks/{task_id}/followup")
    async def followup(task_id: str, request: FollowupRequest):
        """Deliver follow-up text to the task's worker, resuming or spawning as needed."""
        outcome = await _manager().send_followup(task_id, request.text, project=request.project)
        spawned = outcome["spawn"]
        injection = outcome["injection"]
        body = {
            "resume": outcome["resume"].to_dict(),
            "spawn": spawned.to_dict() if spawned else None,
            "injection": {
                "delivered": injection.delivered,
                "attempts": injection.attempts,
                "state": injection.state.value,
            } if injection else None,
        }
        if spawned and spawned.pending_acceptance:
            return JSONResponse(status_code=202, content=body)
        return body

    @app.get("/sessions")
    async def list_sessions():
        """List registered sessions."""
        return {"sessions": [_session_response(s) for s in _manager().list_sessions()]}

    @app.get("/sessions/{session_name}", response_model=SessionResponse)
    async def get_session(session_name: str):
        """Get session details."""
        session = _manager().get_session(session_name)
        if not session:
            raise HTTPException(status_code=404, detail="Session not found")
        return _session_response(session)

    @app.post("/sessions/{session_name}/input")
    async def send_input(session_name: str, request: SendInputRequest):
        """Inject text into a running session."""
        result = await _manager().send_input(session_name, request.text)
        return {
            "session_name": session_name,
            "delivered": result.delivered,
            "attempts": result.attempts,
            "state": result.state.value,
        }

    @app.post("/sessions/{session_name}/pause")
    async def pause(session_name: str, request: PauseRequest):
        """Pause a session so a later follow-up can resume it."""
        signal = await _manager().pause(
            session_name, task_id=request.task_id, reason=request.reason, kill=request.kill
        )
        return {"status": "paused", "signal": signal.to_dict()}

    @app.post("/sessions/{session_name}/restart")
    async def restart(session_name: str):
        """Kill and relaunch a session with the same identity and task."""
        result = await _manager().restart(session_name)
        if result.pending_acceptance:
            return JSONResponse(status_code=202, content=result.to_dict())
        return result.to_dict()

    @app.delete("/sessions/{session_name}")
    async def kill_session(session_name: str):
        """Kill a session."""
        await _manager().kill(session_name)
        return {"status": "killed", "session_name": session_name}

    @app.get("/sessions/{session_name}/signal")
    async def get_signal(session_name: str):
        """Read the session's lifecycle signal."""
        signal = _manager().signals.read(session_name)
        if signal is None:
            raise HTTPException(status_code=404, detail="No signal for session")
        return signal.to_dict()

    @app.put("/sessions/{session_name}/signal")
    async def put_signal(session_name: str, request: SignalRequest):
        """Overwrite the session's lifecycle signal. Any state may replace any other."""
        try:
            signal_type = SignalType(request.type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid signal type: {request.type}")
        signal = LifecycleSignal(
            type=signal_type,
            session_id=session_name,
            task_id=request.task_id,
            payload=request.payload,
        )
        _manager().signals.write(signal)
        return signal.to_dict()

    @app.delete("/sessions/{session_name}/signal")
    async def clear_signal(session_name: str):
        """Remove the session's lifecycle signal."""
        cleared = _manager().signals.clear(session_name)
        return {"cleared": cleared, "session_name": session_name}

    return app
