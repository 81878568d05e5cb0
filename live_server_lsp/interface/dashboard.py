import asyncio
import ipaddress
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.websockets import WebSocketClose

from ..core.config_manager import ServerConfig
from ..core.registry import RegistryStore
from ..core.broadcaster import EventBroadcaster
from ..core.heartbeat import HeartbeatMonitor, Prober
from ..core.prober import LivenessProber, PING_PATH
from ..core.embedded import bind_host, bind_socket, run_app
from ..monitoring.metrics import MetricsTracker
from .routes import CoordinatorState, router

logger = logging.getLogger(__name__)

# Always answered so remote preview servers can be probed for liveness.
OPEN_PATHS = frozenset({PING_PATH})

def is_loopback(host: Optional[str]) -> bool:
    if not host:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False

class LocalhostGuard:
    """ASGI middleware rejecting non-loopback clients before routing"""

    def __init__(self, app, public: bool = False):
        self.app = app
        self.public = public

    async def __call__(self, scope, receive, send):
        if self.public or scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        host = client[0] if client else None
        if is_loopback(host) or scope.get("path") in OPEN_PATHS:
            await self.app(scope, receive, send)
            return

        logger.warning(f"Rejected {scope['type']} request from {host} to {scope.get('path')}")
        if scope["type"] == "http":
            response = PlainTextResponse("localhost only", status_code=403)
        else:
            response = WebSocketClose(code=1008)
        await response(scope, receive, send)

class Dashboard:
    """Builds the coordinator's HTTP application"""

    def __init__(self, state: CoordinatorState, public: bool = False):
        self.state = state
        self.public = public
        self.app = FastAPI(title="Live Server Dashboard", docs_url=None, redoc_url=None)
        self.app.state.coordinator = state
        self._setup_middleware()
        self._setup_error_handlers()
        self.app.include_router(router)

    def _setup_middleware(self):
        self.app.add_middleware(LocalhostGuard, public=self.public)

    def _setup_error_handlers(self):
        @self.app.exception_handler(RequestValidationError)
        async def validation_error_handler(request: Request, exc: RequestValidationError):
            self.state.metrics.record_error('invalid_request', str(exc))
            return JSONResponse(
                status_code=422,
                content={
                    "code": "VALIDATION_ERROR",
                    "message": "Invalid request body",
                    "details": exc.errors()
                }
            )

def create_state(config: ServerConfig, prober: Optional[Prober] = None,
                 metrics: Optional[MetricsTracker] = None) -> CoordinatorState:
    metrics = metrics or MetricsTracker()
    return CoordinatorState(
        registry=RegistryStore(),
        broadcaster=EventBroadcaster(config.event_buffer, metrics=metrics),
        prober=prober or LivenessProber(config.probe_timeout),
        metrics=metrics
    )

class CoordinatorServer:
    """The dashboard process: registry, heartbeat and HTTP surface"""

    def __init__(self, config: Optional[ServerConfig] = None,
                 state: Optional[CoordinatorState] = None):
        self.config = config or ServerConfig()
        self.state = state or create_state(self.config)
        self.dashboard = Dashboard(self.state, public=self.config.public)
        self.heartbeat = HeartbeatMonitor(
            self.state.registry,
            self.state.broadcaster,
            self.state.prober,
            interval=self.config.heartbeat_interval,
            metrics=self.state.metrics
        )
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()

    @property
    def app(self) -> FastAPI:
        return self.dashboard.app

    async def start(self):
        """Bind the coordinator port and start serving in the background.

        Raises OSError when the port is already taken.
        """
        if self.config.public:
            logger.warning("Coordinator exposed beyond localhost; registration is unauthenticated")
        sock = bind_socket(self.config.port, bind_host(self.config.public))
        self._ready.clear()
        self._task = asyncio.create_task(run_app(self.app, sock, on_ready=self._on_ready))
        self.heartbeat.start()
        await self._wait_ready()

    async def _on_ready(self, port: int):
        logger.info(f"Coordinator listening on port {port}")
        self._ready.set()

    async def _wait_ready(self):
        ready = asyncio.create_task(self._ready.wait())
        await asyncio.wait({ready, self._task}, return_when=asyncio.FIRST_COMPLETED)
        if not ready.done():
            ready.cancel()
            # Surface the startup failure.
            await self._task

    async def serve_forever(self):
        await self.start()
        try:
            await self._task
        finally:
            await self.stop()

    async def stop(self):
        """Stop the heartbeat and the HTTP server"""
        await self.heartbeat.stop()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        close = getattr(self.state.prober, "close", None)
        if close is not None:
            await close()
        logger.info("Coordinator stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
