from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(project_root))


@pytest.fixture
def start_server(tmp_path):
    """Start HTTPServer instances on free ports, serving tmp_path."""
    from http1server.server import HTTPServer

    servers = []

    def _start(**kwargs):
        kwargs.setdefault("host", "127.0.0.1")
        kwargs.setdefault("port", 0)
        kwargs.setdefault("root", str(tmp_path))
        kwargs.setdefault("drain_delay", 0.0)
        server = HTTPServer(**kwargs)
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append((server, thread))
        return server

    yield _start

    for server, thread in servers:
        server.stop()
        thread.join(timeout=5)
