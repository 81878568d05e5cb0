import asyncio
import contextlib
import logging
import socket
from typing import Awaitable, Callable, Optional

import uvicorn

logger = logging.getLogger(__name__)

LOCAL_HOST = "127.0.0.1"
PUBLIC_HOST = "0.0.0.0"

def bind_host(public: bool) -> str:
    return PUBLIC_HOST if public else LOCAL_HOST

def bind_socket(port: int, host: str = LOCAL_HOST) -> socket.socket:
    """Bind a listening socket, raising OSError when the port is taken"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(128)
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock

class EmbeddedServer(uvicorn.Server):
    """uvicorn server that shares the caller's event loop.

    Several of these run side by side in one process, so none of them
    touches the process signal handlers.
    """

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self):
        pass

async def run_app(app, sock: socket.socket,
                  on_ready: Optional[Callable[[int], Awaitable[None]]] = None,
                  ready_timeout: float = 5.0):
    """Serve an ASGI app on an already bound socket until it stops.

    ``on_ready`` is awaited with the bound port once the server accepts
    connections. Cancelling the caller shuts the server down.
    """
    port = sock.getsockname()[1]
    config = uvicorn.Config(app, log_level="warning", access_log=False, lifespan="off")
    server = EmbeddedServer(config)
    serve_task = asyncio.create_task(server.serve(sockets=[sock]))
    try:
        deadline = asyncio.get_running_loop().time() + ready_timeout
        while not server.started and not serve_task.done():
            if asyncio.get_running_loop().time() > deadline:
                raise TimeoutError(f"Server on port {port} did not start")
            await asyncio.sleep(0.02)
        if server.started and on_ready is not None:
            await on_ready(port)
        # Shielded so a cancelled caller still gets a graceful shutdown below.
        await asyncio.shield(serve_task)
    except BaseException:
        server.should_exit = True
        if not serve_task.done():
            await asyncio.wait([serve_task], timeout=ready_timeout)
        raise
    finally:
        sock.close()
