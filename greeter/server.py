import asyncio
import contextlib
import logging
import signal
import socket
import sys
import threading
from typing import Optional

import h11
import uvicorn
from uvicorn.protocols.http.h11_impl import H11Protocol

from .config import Settings
from .main import create_app

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownNoticeFilter(logging.Filter):
    """Drop uvicorn's own shutdown notice; GreeterServer logs its own."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage() != "Shutting down"


shutdown_notice_filter = ShutdownNoticeFilter()


class ListenerBindError(RuntimeError):
    def __init__(self, host: str, port: int, cause: OSError):
        super().__init__(f"cannot listen on {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause


class GreeterConfig(uvicorn.Config):
    def __init__(self, app, read_header_timeout: float = 10.0, **kwargs):
        super().__init__(app, **kwargs)
        self.read_header_timeout = read_header_timeout


class HeaderTimeoutProtocol(H11Protocol):
    """h11 protocol that closes connections which are slow to send headers.

    The clock starts when the connection opens and again after each response
    on a kept-alive connection. It stops once a full request head has been
    parsed; request bodies are not bounded.
    """

    _header_timer: Optional[asyncio.TimerHandle] = None

    def connection_made(self, transport) -> None:
        super().connection_made(transport)
        self._arm_header_timer()

    def data_received(self, data: bytes) -> None:
        super().data_received(data)
        if self.conn.their_state is not h11.IDLE:
            self._cancel_header_timer()

    def on_response_complete(self) -> None:
        super().on_response_complete()
        if not self.transport.is_closing() and self.conn.their_state is h11.IDLE:
            self._arm_header_timer()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._cancel_header_timer()
        super().connection_lost(exc)

    def _arm_header_timer(self) -> None:
        self._cancel_header_timer()
        self._header_timer = self.loop.call_later(
            self.config.read_header_timeout, self._on_header_timeout
        )

    def _cancel_header_timer(self) -> None:
        if self._header_timer is not None:
            self._header_timer.cancel()
            self._header_timer = None

    def _on_header_timeout(self) -> None:
        self._header_timer = None
        if not self.transport.is_closing():
            logger.debug("Closing connection: request headers not received in time")
            self.transport.close()


class GreeterServer(uvicorn.Server):
    """uvicorn server whose shutdown drains for a bounded time."""

    def __init__(self, config: GreeterConfig, shutdown_timeout: float):
        super().__init__(config)
        self.shutdown_timeout = shutdown_timeout

    @contextlib.contextmanager
    def capture_signals(self):
        # Exit normally once drained instead of re-delivering the signal.
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        original = {sig: signal.signal(sig, self.handle_exit) for sig in HANDLED_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in original.items():
                signal.signal(sig, handler)

    async def shutdown(self, sockets: Optional[list] = None) -> None:
        logger.info("Shutting down the server...")
        try:
            await asyncio.wait_for(super().shutdown(sockets=sockets), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "HTTP shutdown error: requests still in flight after %.0fs", self.shutdown_timeout
            )
            return
        logger.info("Shutdown complete.")


def bind_listener(settings: Settings) -> socket.socket:
    try:
        return socket.create_server((settings.host, settings.port))
    except OSError as exc:
        raise ListenerBindError(settings.host, settings.port, exc) from exc


def build_server(settings: Settings) -> GreeterServer:
    logging.getLogger("uvicorn.error").addFilter(shutdown_notice_filter)
    config = GreeterConfig(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        http=HeaderTimeoutProtocol,
        read_header_timeout=settings.read_header_timeout,
        timeout_graceful_shutdown=None,
        log_config=None,
    )
    return GreeterServer(config, shutdown_timeout=settings.shutdown_timeout)


def run(settings: Optional[Settings] = None) -> None:
    settings = settings or Settings()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logger.info("Starting HTTP Greeter on port %d", settings.port)
    try:
        sock = bind_listener(settings)
    except ListenerBindError as exc:
        logger.critical("HTTP listen error: %s", exc)
        sys.exit(1)
    build_server(settings).run(sockets=[sock])
