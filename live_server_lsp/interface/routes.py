import asyncio
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass, field

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic import BaseModel, Field

from ..core.registry import DEFAULT_SERVER, RegistryStore, server_url
from ..core.broadcaster import ChangeEvent, EventBroadcaster, Subscription
from ..core.heartbeat import Prober
from ..monitoring.metrics import MetricsTracker
from .dashboard_page import render_dashboard

logger = logging.getLogger(__name__)

router = APIRouter()

@dataclass
class CoordinatorState:
    """Shared handles injected into every request handler"""
    registry: RegistryStore
    broadcaster: EventBroadcaster
    prober: Prober
    metrics: MetricsTracker = field(default_factory=MetricsTracker)

class ServerReport(BaseModel):
    """Body of a registration request"""
    name: str
    server: Optional[str] = None
    port: int = Field(ge=1, le=65535)

def get_state(request: Request) -> CoordinatorState:
    return request.app.state.coordinator

def get_ws_state(websocket: WebSocket) -> CoordinatorState:
    return websocket.app.state.coordinator

@router.get("/", response_class=HTMLResponse)
async def index(state: CoordinatorState = Depends(get_state)):
    """Human dashboard listing the registered servers"""
    entries = await state.registry.snapshot()
    return HTMLResponse(render_dashboard([entry.as_pair() for entry in entries]))

@router.post("/ping", response_class=PlainTextResponse)
async def ping():
    return "pong"

@router.post("/register", response_class=PlainTextResponse)
async def register(report: ServerReport, state: CoordinatorState = Depends(get_state)):
    """Accept a preview server after it answers a ping.

    A server that cannot be reached is declined silently; the caller gets
    the same empty answer either way.
    """
    try:
        url = server_url(report.server or DEFAULT_SERVER, report.port)
    except ValueError as e:
        logger.info(f"Declined registration of {report.name}: bad server address {report.server!r} ({e})")
        state.metrics.increment('registry.declined')
        return ""
    if not await state.prober(url):
        logger.info(f"Declined registration of {report.name}: {url} is unreachable")
        state.metrics.increment('registry.declined')
        return ""

    if await state.registry.add(report.name, url):
        state.metrics.increment('registry.registered')
        state.broadcaster.publish(ChangeEvent(added=True, name=report.name, url=url))
    return ""

@router.post("/ports")
async def ports(state: CoordinatorState = Depends(get_state)) -> List[Tuple[str, str]]:
    entries = await state.registry.snapshot()
    return [entry.as_pair() for entry in entries]

@router.get("/metrics")
async def metrics(state: CoordinatorState = Depends(get_state)):
    return state.metrics.get_all_metrics()

@router.websocket("/ws")
async def events(websocket: WebSocket, state: CoordinatorState = Depends(get_ws_state)):
    """Push every change event to the client until either side closes"""
    await websocket.accept()
    subscription = state.broadcaster.subscribe()
    logger.debug("Event subscriber connected")

    reader = asyncio.create_task(_discard_incoming(websocket))
    writer = asyncio.create_task(_forward_events(websocket, subscription))
    try:
        await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (reader, writer):
            task.cancel()
        await asyncio.gather(reader, writer, return_exceptions=True)
        subscription.close()
        logger.debug("Event subscriber disconnected")

async def _discard_incoming(websocket: WebSocket):
    """Read and ignore client frames so a close is noticed"""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
    except (WebSocketDisconnect, RuntimeError):
        return

async def _forward_events(websocket: WebSocket, subscription: Subscription):
    try:
        while True:
            event = await subscription.get()
            await websocket.send_text(event.to_json())
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug(f"Stopped forwarding events: {e!r}")
