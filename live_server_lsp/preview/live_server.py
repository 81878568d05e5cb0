import asyncio
import html
import json
import logging
import mimetypes
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from ..core.embedded import bind_host, bind_socket, run_app
from .file_access import WorkspaceFiles
from .signal import SignalChannel

logger = logging.getLogger(__name__)

RELOAD_PATH = "/__livereload"

class HotReloadManager:
    """Tells connected browsers which file changed"""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    async def apply_changes(self, path: str):
        await self._broadcast(self._create_reload_message(path))

    async def _broadcast(self, message: str):
        clients = list(self.clients)
        if clients:
            results = await asyncio.gather(
                *[client.send_text(message) for client in clients],
                return_exceptions=True
            )
            for client, result in zip(clients, results):
                if isinstance(result, Exception):
                    self.clients.discard(client)

    def _create_reload_message(self, path: str) -> str:
        return json.dumps({"reload": path})

    async def follow(self, signal: SignalChannel):
        """Forward every workspace signal to the browsers"""
        async for path in signal.listen():
            await self.apply_changes(path)

class LivePreviewServer:
    def __init__(self, root: Path, signal: SignalChannel, files: WorkspaceFiles):
        self.root = Path(os.path.normpath(root))
        self.signal = signal
        self.files = files
        self.hot_reload = HotReloadManager()
        self.app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        self._register_routes()

    def _register_routes(self):
        @self.app.post("/ping", response_class=PlainTextResponse)
        async def ping():
            return "pong"

        @self.app.websocket(RELOAD_PATH)
        async def live_reload(websocket: WebSocket):
            await websocket.accept()
            self.hot_reload.clients.add(websocket)
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                self.hot_reload.clients.discard(websocket)

        @self.app.get("/{path:path}")
        async def static(path: str):
            return await self.handle_request(path)

    def resolve(self, path: str) -> Path:
        """Map a request path to a file inside the root"""
        target = Path(os.path.normpath(self.root / path.lstrip("/")))
        if target != self.root and self.root not in target.parents:
            raise HTTPException(status_code=404)
        return target

    async def handle_request(self, path: str) -> Response:
        target = self.resolve(path)
        if await asyncio.to_thread(target.is_dir):
            index = target / "index.html"
            if self.files.cache.get_path(index) is not None or await asyncio.to_thread(index.is_file):
                target = index
            else:
                return HTMLResponse(await self._render_listing(target))
        try:
            file = await self.files.open_file(target)
        except FileNotFoundError:
            raise HTTPException(status_code=404)
        content = await file.read()
        media_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
        return Response(content, media_type=media_type)

    async def _render_listing(self, directory: Path) -> str:
        entries = await self.files.list_dir(directory)
        directories = await asyncio.to_thread(lambda: {entry for entry in entries if entry.is_dir()})
        items = []
        for entry in entries:
            relative = entry.relative_to(self.root).as_posix()
            label = entry.name + ("/" if entry in directories else "")
            items.append(f'<li><a href="/{html.escape(relative)}">{html.escape(label)}</a></li>')
        title = html.escape("/" + directory.relative_to(self.root).as_posix().lstrip("."))
        return f"<!DOCTYPE html><title>{title}</title><h1>{title}</h1><ul>{''.join(items)}</ul>"

async def serve(root: Path, port: int, public: bool, signal: SignalChannel,
                files: WorkspaceFiles,
                on_ready: Optional[Callable[[int], Awaitable[None]]] = None):
    """Serve a workspace until cancelled.

    Raises OSError straight away when ``port`` cannot be bound.
    """
    server = LivePreviewServer(root, signal, files)
    sock = bind_socket(port, bind_host(public))
    reload_task = asyncio.create_task(server.hot_reload.follow(signal))
    logger.info(f"Serving {server.root} on port {port}")
    try:
        await run_app(server.app, sock, on_ready=on_ready)
    finally:
        reload_task.cancel()
        await asyncio.gather(reload_task, return_exceptions=True)
