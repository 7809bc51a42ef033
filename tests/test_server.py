import logging
import os
import signal
import socket
import threading
import time

import httpx
import pytest

from greeter.config import Settings
from greeter.server import GreeterServer, ListenerBindError, bind_listener, build_server, run


def start(settings):
    sock = bind_listener(settings)
    server = build_server(settings)
    thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while not server.started and time.monotonic() < deadline:
        time.sleep(0.02)
    assert server.started
    return server, thread, sock.getsockname()[1]


@pytest.fixture
def occupied_port():
    holder = socket.create_server(("127.0.0.1", 0))
    yield holder.getsockname()[1]
    holder.close()


def test_bind_failure(occupied_port):
    with pytest.raises(ListenerBindError) as info:
        bind_listener(Settings(host="127.0.0.1", port=occupied_port))
    assert info.value.port == occupied_port


def test_run_exits_when_port_taken(occupied_port):
    with pytest.raises(SystemExit) as info:
        run(Settings(host="127.0.0.1", port=occupied_port))
    assert info.value.code == 1


def test_graceful_shutdown(caplog):
    caplog.set_level(logging.INFO)
    server, thread, port = start(Settings(host="127.0.0.1", port=0, shutdown_timeout=2.0))

    response = httpx.get(f"http://127.0.0.1:{port}/greeter/greet", params={"name": "Alice"})
    assert response.text == "Hello, Alice!\n"

    server.handle_exit(signal.SIGTERM, None)
    thread.join(timeout=5)
    assert not thread.is_alive()

    messages = [record.getMessage() for record in caplog.records]
    assert messages.count("Shutting down the server...") == 1
    assert messages.count("Shutdown complete.") == 1
    assert "Shutting down" not in messages
    assert not any(message.startswith("HTTP shutdown error") for message in messages)


def test_shutdown_gives_up_on_stuck_request(caplog):
    caplog.set_level(logging.INFO)
    server, thread, port = start(Settings(host="127.0.0.1", port=0, shutdown_timeout=0.5))

    # Headers complete, body never arrives: the request stays in flight.
    conn = socket.create_connection(("127.0.0.1", port))
    try:
        conn.sendall(
            b"POST /greeter/user-info HTTP/1.1\r\nHost: test\r\n"
            b"Content-Type: application/json\r\nContent-Length: 100\r\n\r\n{"
        )
        time.sleep(0.3)
        server.handle_exit(signal.SIGTERM, None)
        thread.join(timeout=5)
    finally:
        conn.close()

    assert not thread.is_alive()
    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("HTTP shutdown error") for message in messages)
    assert "Shutdown complete." not in messages


def test_slow_headers_are_cut_off():
    settings = Settings(host="127.0.0.1", port=0, read_header_timeout=0.3)
    server, thread, port = start(settings)
    try:
        conn = socket.create_connection(("127.0.0.1", port))
        conn.settimeout(5)
        try:
            conn.sendall(b"GET /greeter/greet HTTP/1.1\r\nHost: test\r\n")
            started = time.monotonic()
            assert conn.recv(1024) == b""
            assert time.monotonic() - started < 3
        finally:
            conn.close()

        # A prompt request on the same server is unaffected.
        response = httpx.get(f"http://127.0.0.1:{port}/greeter/farewell")
        assert response.text == "Goodbye, Stranger! Have a great day!\n"
    finally:
        server.handle_exit(signal.SIGTERM, None)
        thread.join(timeout=5)


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_signal_on_main_thread(monkeypatch, caplog, signum):
    caplog.set_level(logging.INFO)
    original_startup = GreeterServer.startup
    previous_handler = signal.getsignal(signum)

    async def startup_then_signal(self, sockets=None):
        await original_startup(self, sockets=sockets)
        threading.Timer(0.2, os.kill, args=(os.getpid(), signum)).start()

    monkeypatch.setattr(GreeterServer, "startup", startup_then_signal)

    run(Settings(host="127.0.0.1", port=0, shutdown_timeout=2.0))

    messages = [record.getMessage() for record in caplog.records]
    assert messages.count("Shutting down the server...") == 1
    assert messages.count("Shutdown complete.") == 1
    assert "Shutting down" not in messages
    assert signal.getsignal(signum) == previous_handler
