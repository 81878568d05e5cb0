import logging
from typing import List, Optional, Tuple

from lsprotocol import types
from pygls.lsp.server import LanguageServer

from ..core.config_manager import ServerConfig
from ..workspace.positions import Position, TextEdit
from .session import LiveServerSession, OPEN_DASHBOARD_COMMAND, OPEN_PROJECT_COMMAND

logger = logging.getLogger(__name__)

SERVER_NAME = "live-server-lsp"
SERVER_VERSION = "0.1.0"

def to_text_edit(change) -> TextEdit:
    """Convert an LSP content change into a TextEdit"""
    change_range = getattr(change, "range", None)
    if change_range is None:
        return TextEdit(text=change.text)
    return TextEdit(
        text=change.text,
        start=Position(change_range.start.line, change_range.start.character),
        end=Position(change_range.end.line, change_range.end.character)
    )

def workspace_folders(ls: LanguageServer) -> List[Tuple[Optional[str], str]]:
    """(name, uri) of every folder the editor reported at initialization"""
    folders = [(folder.name, folder.uri) for folder in ls.workspace.folders.values()]
    if not folders and ls.workspace.root_uri:
        folders.append((None, ls.workspace.root_uri))
    return folders

def build_server(config: ServerConfig, **session_options) -> LanguageServer:
    server = LanguageServer(
        SERVER_NAME,
        SERVER_VERSION,
        text_document_sync_kind=types.TextDocumentSyncKind.Incremental
    )
    session = LiveServerSession(config, server, **session_options)
    server.live_session = session

    @server.feature(types.INITIALIZED)
    async def initialized(ls: LanguageServer, params: types.InitializedParams):
        await session.initialized(workspace_folders(ls))

    @server.feature(types.TEXT_DOCUMENT_DID_OPEN)
    def did_open(ls: LanguageServer, params: types.DidOpenTextDocumentParams):
        session.did_open(params.text_document.uri, params.text_document.text)

    @server.feature(types.TEXT_DOCUMENT_DID_CHANGE)
    def did_change(ls: LanguageServer, params: types.DidChangeTextDocumentParams):
        edits = [to_text_edit(change) for change in params.content_changes]
        session.did_change(params.text_document.uri, edits, ls.workspace.position_codec)

    @server.feature(types.TEXT_DOCUMENT_DID_SAVE)
    def did_save(ls: LanguageServer, params: types.DidSaveTextDocumentParams):
        session.did_save(params.text_document.uri)

    @server.feature(types.TEXT_DOCUMENT_DID_CLOSE)
    def did_close(ls: LanguageServer, params: types.DidCloseTextDocumentParams):
        session.did_close(params.text_document.uri)

    @server.feature(types.TEXT_DOCUMENT_CODE_ACTION)
    def code_action(ls: LanguageServer, params: types.CodeActionParams) -> List[types.CodeAction]:
        return session.code_actions(params.text_document.uri)

    @server.command(OPEN_PROJECT_COMMAND)
    async def open_project_web(ls: LanguageServer, root: Optional[str] = None):
        session.log("run openProjectWeb")
        await session.open_project_web(root)

    @server.command(OPEN_DASHBOARD_COMMAND)
    async def open_dashboard(ls: LanguageServer):
        session.log("run openProjectsWeb")
        await session.open_dashboard()

    @server.feature(types.SHUTDOWN)
    async def shutdown(ls: LanguageServer, params=None):
        await session.shutdown()

    return server

def run(config: ServerConfig):
    """Serve the editor over stdio until it disconnects"""
    server = build_server(config)
    logger.info(f"Starting language server (eager={config.eager}, dashboard port {config.port})")
    server.start_io()
