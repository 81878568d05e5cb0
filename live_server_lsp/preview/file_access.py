import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Protocol

from ..workspace.sync_manager import DocumentCache

logger = logging.getLogger(__name__)

class File(Protocol):
    async def read(self) -> bytes:
        ...

class MemoryFile:
    """An open editor buffer"""

    def __init__(self, content: str):
        self.content = content

    async def read(self) -> bytes:
        return self.content.encode("utf-8")

class DiskFile:
    def __init__(self, path: Path):
        self.path = path

    async def read(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)

class WorkspaceFiles:
    """File access for one workspace's preview server.

    In eager mode a file with an open editor buffer is served from memory;
    everything else comes from disk.
    """

    def __init__(self, cache: DocumentCache, eager: bool):
        self.cache = cache
        self.eager = eager

    async def open_file(self, path: Path) -> File:
        if self.eager:
            content: Optional[str] = self.cache.get_path(path)
            if content is not None:
                return MemoryFile(content)
        if not await asyncio.to_thread(path.is_file):
            raise FileNotFoundError(str(path))
        return DiskFile(path)

    async def list_dir(self, path: Path) -> List[Path]:
        return await asyncio.to_thread(lambda: sorted(path.iterdir()))
