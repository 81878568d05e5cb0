import logging
import os
from pathlib import Path, PurePath
from typing import Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass, field
from urllib.parse import unquote, urlparse

from pygls.workspace import PositionCodec

from .positions import TextEdit, apply_edits
from ..preview.signal import SignalChannel
from ..monitoring.metrics import MetricsTracker

logger = logging.getLogger(__name__)

def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)

def _normalize(path: PurePath) -> str:
    return os.path.normpath(str(path))

class DocumentCache:
    """Text of the documents currently open in the editor, keyed by URI"""

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._uris_by_path: Dict[str, str] = {}

    def put(self, uri: str, text: str):
        self._documents[uri] = text
        self._uris_by_path[_normalize(uri_to_path(uri))] = uri

    def get(self, uri: str) -> Optional[str]:
        return self._documents.get(uri)

    def get_path(self, path: PurePath) -> Optional[str]:
        uri = self._uris_by_path.get(_normalize(path))
        return self._documents.get(uri) if uri is not None else None

    def remove(self, uri: str) -> Optional[str]:
        self._uris_by_path.pop(_normalize(uri_to_path(uri)), None)
        return self._documents.pop(uri, None)

    def __contains__(self, uri: str) -> bool:
        return uri in self._documents

    def __len__(self) -> int:
        return len(self._documents)

@dataclass
class WorkspaceFolder:
    """One editor workspace and the state of its preview server"""
    name: str
    root: Path
    port: int = 0
    signal: SignalChannel = field(default_factory=SignalChannel)
    cache: DocumentCache = field(default_factory=DocumentCache)

    def contains(self, path: PurePath) -> bool:
        root = PurePath(_normalize(self.root))
        target = PurePath(_normalize(path))
        return target == root or root in target.parents

    def relative_path(self, path: PurePath) -> str:
        return PurePath(_normalize(path)).relative_to(_normalize(self.root)).as_posix()

def folder_name(name: Optional[str], root: Path) -> str:
    """Name shown for a workspace: the editor's, else the folder's own"""
    if name:
        return name
    return root.name or "Unnamed Workspace"

class WorkspaceSyncEngine:
    """Routes document events to workspaces and raises reload signals.

    In eager mode open and changed buffers are mirrored in memory and every
    open/change/save reloads the preview. In lazy mode only saves reload,
    and the preview reads the file from disk.
    """

    def __init__(self, eager: bool = False, metrics: Optional[MetricsTracker] = None,
                 on_signal: Optional[Callable[[WorkspaceFolder, str], None]] = None):
        self.eager = eager
        self.metrics = metrics or MetricsTracker()
        self.on_signal = on_signal
        self.folders: List[WorkspaceFolder] = []

    def add_folder(self, name: Optional[str], root: Path, port: int = 0) -> WorkspaceFolder:
        root = Path(_normalize(root))
        folder = WorkspaceFolder(name=folder_name(name, root), root=root, port=port)
        self.folders.append(folder)
        return folder

    def find_folder(self, uri: str) -> Optional[WorkspaceFolder]:
        """The workspace owning a document; the most specific root wins"""
        path = uri_to_path(uri)
        matches = [folder for folder in self.folders if folder.contains(path)]
        if not matches:
            return None
        return max(matches, key=lambda folder: len(folder.root.parts))

    def folder_for_root(self, root: str) -> Optional[WorkspaceFolder]:
        target = _normalize(Path(root))
        for folder in self.folders:
            if _normalize(folder.root) == target:
                return folder
        return None

    def open(self, uri: str, text: str) -> Optional[str]:
        folder = self.find_folder(uri)
        if folder is None:
            return None
        if self.eager:
            folder.cache.put(uri, text)
            return self._signal(folder, uri)
        return None

    def change(self, uri: str, edits: Iterable[TextEdit],
               codec: Optional[PositionCodec] = None) -> Optional[str]:
        folder = self.find_folder(uri)
        if folder is None:
            return None
        if not self.eager:
            return None
        text = folder.cache.get(uri)
        edits = list(edits)
        if text is None:
            # Only a full replacement can seed a document we never saw opened.
            full = [i for i, edit in enumerate(edits) if edit.is_full]
            if not full:
                logger.debug(f"Ignoring range edits for unknown document {uri}")
                return self._signal(folder, uri)
            text, edits = edits[full[-1]].text, edits[full[-1] + 1:]
        folder.cache.put(uri, apply_edits(text, edits, codec))
        return self._signal(folder, uri)

    def save(self, uri: str) -> Optional[str]:
        folder = self.find_folder(uri)
        if folder is None:
            return None
        return self._signal(folder, uri)

    def close(self, uri: str):
        folder = self.find_folder(uri)
        if folder is not None:
            folder.cache.remove(uri)

    def _signal(self, folder: WorkspaceFolder, uri: str) -> str:
        relative = folder.relative_path(uri_to_path(uri))
        folder.signal.send_signal(relative)
        self.metrics.increment('workspace.signals')
        if self.on_signal:
            self.on_signal(folder, relative)
        return relative
