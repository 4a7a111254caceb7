"""FastAPI application factory for the Ontime Sync web relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import TYPE_CHECKING, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ontime_sync import __version__
from ontime_sync.core.errors import RequestError
from ontime_sync.core.events import ComponentStatus
from ontime_sync.web.routes import WebState, router
from ontime_sync.web.websocket import ConnectionManager, WebSocketBridge

if TYPE_CHECKING:
    from ontime_sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def create_app(engine: SyncEngine) -> FastAPI:
    """Create and configure the FastAPI application.

    The app subscribes to the engine's event bus so component statuses
    are kept for REST queries and every state change is broadcast to
    connected WebSocket clients via ``WebSocketBridge``.
    """
    state = WebState()
    manager = ConnectionManager()
    bridge = WebSocketBridge(engine, manager)
    event_bus = engine.event_bus

    async def _on_status(event: ComponentStatus) -> None:
        state.update_component_status(asdict(event))

    # Subscribe eagerly; EventBus.subscribe is synchronous and the
    # handlers are valid as soon as the app object exists.
    event_bus.subscribe(ComponentStatus, _on_status)
    bridge.start()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Ontime Sync web relay started")
        yield
        event_bus.unsubscribe(ComponentStatus, _on_status)
        bridge.stop()
        logger.info("Ontime Sync web relay stopped")

    app = FastAPI(title="Ontime Sync", version=__version__, lifespan=lifespan)

    app.state.engine = engine
    app.state.web_state = state
    app.state.ws_manager = manager

    @app.exception_handler(RequestError)
    async def _request_error(request: Request, exc: RequestError) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"ok": False, "error": str(exc), "upstream_status": exc.status_code},
        )

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})

    app.include_router(router)
    return app
