from __future__ import annotations

import socket
import sys
import time
from pathlib import Path


def read_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def exchange(address, payload: bytes = b"", timeout: float = 10.0) -> bytes:
    """Send a raw request and read until the server closes the connection."""
    with socket.create_connection(address, timeout=timeout) as sock:
        if payload:
            sock.sendall(payload)
        return read_all(sock)


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def write_cgi_script(path: Path, body: str, mode: int = 0o755) -> Path:
    """Write a Python CGI script that runs under the current interpreter."""
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(mode)
    return path
