"""Shared test fixtures."""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, Tuple

import pytest

ENV_VARS = [
    "TOOLCHAIN_BASE_URL",
    "TOOLCHAIN_BRANCH",
    "TOOLCHAIN_FILE",
    "TOOLCHAIN_OUTPUT",
    "TOOLCHAIN_TIMEOUT_SECONDS",
    "TOOLCHAIN_VERIFY_TLS",
    "TEST_COMMAND",
    "ABORT_ON_FETCH_FAILURE",
    "OTEL_ENABLED",
    "OTEL_SERVICE_NAME",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_RESOURCE_ATTRIBUTES",
    "OTEL_INSTRUMENT_REQUESTS",
    "OTEL_EXPORTER_OTLP_INSECURE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from runner configuration in the host environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")


class PinServer:
    """Static file server: maps request paths to (status, body)."""

    def __init__(self) -> None:
        self.routes: Dict[str, Tuple[int, bytes]] = {}
        self.requests: list[str] = []
        self._httpd = ThreadingHTTPServer(("127.0.0.1", 0), self._handler())
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    def add(self, path: str, body: bytes, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()

    def _handler(self) -> type:
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                server.requests.append(self.path)
                status, body = server.routes.get(self.path, (404, b"not found\n"))
                self.send_response(status)
                self.send_header("Content-Type", "text/plain")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: object) -> None:  # noqa: A002
                pass

        return Handler


@pytest.fixture
def pin_server() -> Iterator[PinServer]:
    server = PinServer()
    server.start()
    try:
        yield server
    finally:
        server.stop()


@pytest.fixture
def workdir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Run the test inside an empty working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path
