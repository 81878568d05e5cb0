import asyncio
import logging
import webbrowser
from typing import Callable, Iterable, List, Optional, Tuple

import aiohttp
from lsprotocol import types
from pygls.exceptions import JsonRpcInvalidParams
from pygls.workspace import PositionCodec

from ..core.config_manager import ServerConfig
from ..core.embedded import LOCAL_HOST
from ..interface.client import (
    CoordinatorUnavailable, allocate_port, announce, fetch_ports, next_free_port
)
from ..interface.dashboard import CoordinatorServer
from ..monitoring.metrics import MetricsTracker
from ..preview.live_server import serve as serve_preview
from ..workspace.positions import TextEdit
from ..workspace.supervisor import PreviewSupervisor
from ..workspace.sync_manager import WorkspaceFolder, WorkspaceSyncEngine, uri_to_path

logger = logging.getLogger(__name__)

OPEN_PROJECT_COMMAND = "openProjectWeb"
OPEN_DASHBOARD_COMMAND = "openProjectsWeb"

class LiveServerSession:
    """State of one editor session: its workspaces and their preview servers"""

    def __init__(self, config: ServerConfig, ls, serve=serve_preview,
                 open_browser: Callable[[str], bool] = webbrowser.open,
                 metrics: Optional[MetricsTracker] = None):
        self.config = config
        self.ls = ls
        self.serve = serve
        self.open_browser = open_browser
        self.metrics = metrics or MetricsTracker()
        self.engine = WorkspaceSyncEngine(config.eager, metrics=self.metrics)
        self.tasks: List[asyncio.Task] = []
        self.coordinator: Optional[CoordinatorServer] = None
        self._http: Optional[aiohttp.ClientSession] = None

    # --- Editor messages ---

    def log(self, message: str, level: types.MessageType = types.MessageType.Info):
        logger.info(message)
        self.ls.window_log_message(types.LogMessageParams(type=level, message=message))

    def show(self, message: str, level: types.MessageType = types.MessageType.Info):
        self.ls.window_show_message(types.ShowMessageParams(type=level, message=message))

    # --- Lifecycle ---

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return self._http

    async def ensure_coordinator(self) -> bool:
        """Make sure a coordinator answers on the base port.

        Starts one inside this process when nobody is listening yet. Returns
        False when no coordinator could be reached or started.
        """
        try:
            await fetch_ports(self.http, self.config.port)
            return True
        except CoordinatorUnavailable:
            pass

        coordinator = CoordinatorServer(self.config)
        try:
            await coordinator.start()
        except OSError as e:
            # Another session won the race for the port.
            logger.info(f"Coordinator port {self.config.port} taken: {e}")
        else:
            self.coordinator = coordinator
            self.log(f"Started dashboard on port {self.config.port}")

        try:
            await fetch_ports(self.http, self.config.port)
            return True
        except CoordinatorUnavailable as e:
            self.log(f"Dashboard unavailable: {e}", types.MessageType.Warning)
            return False

    async def initialized(self, folders: Iterable[Tuple[Optional[str], str]]):
        """Allocate ports for the workspace folders and start their previews"""
        self.log("LiveServer Initialized!")
        has_coordinator = await self.ensure_coordinator()

        for name, uri in folders:
            root = uri_to_path(uri)
            taken = {folder.port for folder in self.engine.folders}
            port = None
            if has_coordinator:
                try:
                    port = await allocate_port(self.http, self.config.port, LOCAL_HOST, exclude=taken)
                except CoordinatorUnavailable as e:
                    logger.warning(f"Falling back to local port search: {e}")
            if port is None:
                port = next_free_port(self.config.port + 1, taken)

            folder = self.engine.add_folder(name, root, port)
            supervisor = PreviewSupervisor(
                folder,
                eager=self.config.eager,
                public=self.config.public,
                serve=self.serve,
                announce=self._announce if has_coordinator else None,
                allocate=self._reallocate if has_coordinator else None
            )
            self.tasks.append(supervisor.start())
            self.log(f"Opened workspace: {folder.name} at port {folder.port}")

    async def _announce(self, folder: WorkspaceFolder):
        await announce(self.http, self.config.port, folder.name, folder.port)

    async def _reallocate(self, start: int) -> int:
        taken = {folder.port for folder in self.engine.folders}
        return await allocate_port(self.http, self.config.port, LOCAL_HOST, exclude=taken, start=start)

    async def shutdown(self):
        """Cancel every preview server and the embedded dashboard"""
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        if self.coordinator is not None:
            await self.coordinator.stop()
            self.coordinator = None
        if self._http is not None:
            await self._http.close()
            self._http = None

    # --- Documents ---

    def did_open(self, uri: str, text: str):
        self._updated(uri, self.engine.open(uri, text))

    def did_change(self, uri: str, edits: List[TextEdit], codec: Optional[PositionCodec] = None):
        self._updated(uri, self.engine.change(uri, edits, codec))

    def did_save(self, uri: str):
        self._updated(uri, self.engine.save(uri))

    def did_close(self, uri: str):
        self.engine.close(uri)

    def _updated(self, uri: str, signalled: Optional[str]):
        if signalled is not None:
            self.log(f"Uri updated: {uri}")

    # --- Code actions and commands ---

    def code_actions(self, uri: str) -> List[types.CodeAction]:
        dashboard_title = f"Open Dashboard: {LOCAL_HOST}:{self.config.port}"
        actions = [
            types.CodeAction(
                title=dashboard_title,
                kind=types.CodeActionKind.Empty,
                command=types.Command(title=dashboard_title, command=OPEN_DASHBOARD_COMMAND, arguments=[]),
                is_preferred=False
            )
        ]
        folder = self.engine.find_folder(uri)
        if folder is not None:
            title = f"Open Project: {LOCAL_HOST}:{folder.port}"
            actions.append(types.CodeAction(
                title=title,
                kind=types.CodeActionKind.Empty,
                command=types.Command(title=title, command=OPEN_PROJECT_COMMAND, arguments=[str(folder.root)]),
                is_preferred=False
            ))
        return actions

    async def open_project_web(self, root: Optional[str]):
        if not isinstance(root, str):
            raise JsonRpcInvalidParams("URL argument missing")
        folder = self.engine.folder_for_root(root)
        if folder is None:
            raise JsonRpcInvalidParams("URL argument invalid")
        await self._open(f"http://{LOCAL_HOST}:{folder.port}")

    async def open_dashboard(self):
        await self._open(f"http://{LOCAL_HOST}:{self.config.port}")

    async def _open(self, url: str):
        try:
            opened = await asyncio.to_thread(self.open_browser, url)
            error = None if opened else "no browser available"
        except webbrowser.Error as e:
            error = str(e)
        if error is not None:
            self.show(f"failed to open browser {error}", types.MessageType.Warning)
            raise JsonRpcInvalidParams("failed to open browser")
