"""
FastAPI application for the DocGovern server.
"""

import asyncio
import json
import logging
import queue
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..database import get_database
from ..models import Actor, ActorRole, GovernedDocument, OperationResult
from ..service import GovernanceService
from ..sinks import LoggingNotificationDispatcher, QueueBroadcaster
from .config import ServerConfig

logger = logging.getLogger("docgovern.server")

# Seconds an idle event stream waits before sending a keep-alive ping.
SSE_PING_SECONDS = 15.0


class DocumentCreate(BaseModel):
    kind: str
    title: str
    content: Dict[str, Any] = Field(default_factory=dict)
    scope: Optional[str] = None
    batch_id: Optional[str] = None
    artifact_ref: Optional[str] = None


class DocumentUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[Dict[str, Any]] = None
    artifact_ref: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


def _respond(result: OperationResult) -> JSONResponse:
    """Map an outcome-tagged result onto an HTTP response."""
    headers = {}
    if isinstance(result.value, GovernedDocument):
        headers["ETag"] = str(result.value.version)
    return JSONResponse(
        status_code=result.http_status,
        content=result.to_dict(),
        headers=headers,
    )


async def iter_events(
    listener: queue.Queue,
    document_id: Optional[str] = None,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ping_seconds: float = SSE_PING_SECONDS,
) -> AsyncIterator[Dict[str, str]]:
    """Turn a broadcaster listener into SSE messages, pinging while idle."""
    while True:
        if is_disconnected is not None and await is_disconnected():
            return
        try:
            event = await asyncio.to_thread(listener.get, True, ping_seconds)
        except queue.Empty:
            yield {"event": "ping", "data": ""}
            continue
        data = event.get("data", {})
        if document_id and data.get("document_id") != document_id:
            continue
        yield {"event": event.get("type", "message"), "data": json.dumps(data)}


def create_app(config: Optional[ServerConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = get_database(config.database_url)
        broadcaster = QueueBroadcaster()
        service = GovernanceService.build(
            db,
            config.governance,
            notifier=LoggingNotificationDispatcher(),
            broadcaster=broadcaster,
        )
        app.state.db = db
        app.state.config = config
        app.state.broadcaster = broadcaster
        app.state.service = service

        sweeper = service.sweeper() if config.run_sweeper else None
        app.state.sweeper = sweeper
        if sweeper is not None:
            sweeper.start()
        logger.info("DocGovern ready (sweeper %s)", "on" if sweeper else "off")
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.stop()

    app = FastAPI(
        title="DocGovern Server",
        description="Lifecycle and concurrency control for moderated documents",
        version="0.1.0",
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_service() -> GovernanceService:
        return app.state.service

    def validate_api_key(x_api_key: str = Header(None)) -> str:
        if x_api_key is None or x_api_key not in app.state.config.api_keys:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")
        return x_api_key

    def get_actor(
        x_actor_id: str = Header(None),
        x_actor_role: str = Header("editor"),
    ) -> Actor:
        if not x_actor_id:
            raise HTTPException(status_code=400, detail="X-Actor-Id header required")
        try:
            role = ActorRole(x_actor_role.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown actor role: {x_actor_role}")
        return Actor(x_actor_id, role)

    def get_version_header(if_match: str = Header(None)) -> Optional[int]:
        if if_match is None:
            return None
        try:
            return int(if_match.strip('"'))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid If-Match header: {if_match}")

    def require_version(if_match: Optional[int] = Depends(get_version_header)) -> int:
        if if_match is None:
            raise HTTPException(status_code=400, detail="If-Match header required")
        return if_match

    @app.get("/health")
    async def health():
        connected = app.state.db.is_connected()
        return JSONResponse(
            status_code=200 if connected else 503,
            content={
                "status": "ok" if connected else "degraded",
                "database": connected,
                "listeners": app.state.broadcaster.listener_count,
            },
        )

    # ==================== Documents ====================

    @app.post("/api/v1/documents")
    async def create_document(
        request: DocumentCreate,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
    ):
        result = service.create(
            actor,
            request.kind,
            request.title,
            content=request.content,
            scope=request.scope,
            batch_id=request.batch_id,
            artifact_ref=request.artifact_ref,
        )
        response = _respond(result)
        if result.ok:
            response.status_code = 201
        return response

    @app.get("/api/v1/documents")
    async def list_documents(
        kind: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        include_archived: bool = Query(False),
        limit: int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
    ):
        return _respond(
            service.list_documents(
                kind=kind,
                status=status,
                include_archived=include_archived,
                limit=limit,
                offset=offset,
            )
        )

    @app.get("/api/v1/documents/{document_id}")
    async def get_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
    ):
        return _respond(service.get(document_id))

    @app.put("/api/v1/documents/{document_id}")
    async def update_document(
        document_id: str,
        request: DocumentUpdate,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: int = Depends(require_version),
    ):
        changes = request.model_dump(exclude_none=True)
        return _respond(service.update_with_version(actor, document_id, if_match, **changes))

    @app.delete("/api/v1/documents/{document_id}")
    async def purge_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
    ):
        return _respond(service.purge(actor, document_id))

    @app.get("/api/v1/documents/{document_id}/audit")
    async def get_audit_trail(
        document_id: str,
        limit: int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
    ):
        return _respond(service.audit_trail(document_id, limit=limit, offset=offset))

    # ==================== Leases ====================

    @app.post("/api/v1/documents/{document_id}/lease")
    async def acquire_lease(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
    ):
        return _respond(service.acquire_lease(actor, document_id))

    @app.patch("/api/v1/documents/{document_id}/lease")
    async def renew_lease(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
    ):
        return _respond(service.renew_lease(actor, document_id))

    @app.delete("/api/v1/documents/{document_id}/lease")
    async def release_lease(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
    ):
        result = service.release_lease(actor, document_id)
        if result.ok:
            return {"outcome": result.kind.value, "released": result.value}
        return _respond(result)

    # ==================== Transitions ====================

    @app.post("/api/v1/documents/{document_id}/submit")
    async def submit_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: int = Depends(require_version),
    ):
        return _respond(service.submit(actor, document_id, if_match))

    @app.post("/api/v1/documents/{document_id}/approve")
    async def approve_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: Optional[int] = Depends(get_version_header),
    ):
        return _respond(service.approve(actor, document_id, if_match))

    @app.post("/api/v1/documents/{document_id}/reject")
    async def reject_document(
        document_id: str,
        request: Optional[RejectRequest] = None,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: Optional[int] = Depends(get_version_header),
    ):
        reason = request.reason if request else None
        return _respond(service.reject(actor, document_id, reason, if_match))

    @app.post("/api/v1/documents/{document_id}/archive")
    async def archive_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: Optional[int] = Depends(get_version_header),
    ):
        return _respond(service.archive(actor, document_id, if_match))

    @app.post("/api/v1/documents/{document_id}/restore")
    async def restore_document(
        document_id: str,
        service: GovernanceService = Depends(get_service),
        api_key: str = Depends(validate_api_key),
        actor: Actor = Depends(get_actor),
        if_match: Optional[int] = Depends(get_version_header),
    ):
        return _respond(service.restore(actor, document_id, if_match))

    # ==================== Realtime ====================

    @app.get("/api/v1/events")
    async def subscribe_events(
        request: Request,
        document_id: Optional[str] = Query(None),
        api_key: str = Depends(validate_api_key),
    ):
        """SSE stream of lifecycle events, optionally filtered to one document."""
        broadcaster: QueueBroadcaster = app.state.broadcaster
        listener = broadcaster.subscribe()

        async def event_generator():
            try:
                async for message in iter_events(listener, document_id, request.is_disconnected):
                    yield message
            finally:
                broadcaster.unsubscribe(listener)

        return EventSourceResponse(event_generator())

    return app


class DocGovernServer:
    """High-level server class for running DocGovern."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        api_keys: Optional[set] = None,
        config: Optional[ServerConfig] = None,
        **kwargs,
    ):
        if config is None:
            config = ServerConfig(
                host=host,
                port=port,
                database_url=database_url,
                api_keys=api_keys or ServerConfig().api_keys,
                **kwargs,
            )
        self.config = config
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()
