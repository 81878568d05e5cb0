import asyncio
import errno
import logging
from typing import Awaitable, Callable, Optional

from .sync_manager import WorkspaceFolder
from ..interface.client import MAX_PORT
from ..preview.file_access import WorkspaceFiles
from ..preview.live_server import serve as serve_preview

logger = logging.getLogger(__name__)

Announcer = Callable[[WorkspaceFolder], Awaitable[None]]
# Given the lowest acceptable port, returns one no registered server advertises.
Allocator = Callable[[int], Awaitable[int]]

class PreviewSupervisor:
    """Keeps one workspace's preview server running.

    A port that turns out to be taken at bind time is expected when several
    editors start at once; the supervisor picks a port above it and tries
    again until it binds or is cancelled. With an allocator the next port
    also skips whatever the coordinator lists by then.
    """

    def __init__(self, folder: WorkspaceFolder, eager: bool, public: bool = False,
                 serve=serve_preview, announce: Optional[Announcer] = None,
                 allocate: Optional[Allocator] = None,
                 max_attempts: Optional[int] = None):
        self.folder = folder
        self.public = public
        self.files = WorkspaceFiles(folder.cache, eager)
        self.serve = serve
        self.announce = announce
        self.allocate = allocate
        self.max_attempts = max_attempts
        self.attempts = 0

    async def run(self):
        while True:
            self.attempts += 1
            try:
                await self.serve(self.folder.root, self.folder.port, self.public,
                                 self.folder.signal, self.files, self._on_ready)
                logger.info(f"Preview for {self.folder.name} stopped")
                return
            except OSError as e:
                if e.errno not in (errno.EADDRINUSE, errno.EACCES, None):
                    raise
                if self.max_attempts is not None and self.attempts >= self.max_attempts:
                    raise
                if self.folder.port >= MAX_PORT:
                    raise
                busy = self.folder.port
                self.folder.port = await self._next_port(busy + 1)
                logger.warning(f"Port {busy} busy for {self.folder.name}, trying {self.folder.port}")

    async def _next_port(self, start: int) -> int:
        if self.allocate is None:
            return start
        try:
            return await self.allocate(start)
        except ConnectionError as e:
            logger.warning(f"Could not reallocate for {self.folder.name}: {e}")
            return start

    async def _on_ready(self, port: int):
        self.folder.port = port
        if self.announce is None:
            return
        try:
            await self.announce(self.folder)
        except ConnectionError as e:
            logger.warning(f"Could not announce {self.folder.name}: {e}")

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run(), name=f"preview:{self.folder.name}")
