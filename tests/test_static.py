from __future__ import annotations

import builtins
import os

import pytest

from http1server import static as static_module
from http1server.request import parse_request
from http1server.response import format_http_date
from http1server.static import StaticFileHandler, compress_text, resolve_resource

MTIME = 1_000_000_000


def _request(method: str, target: str, *headers: str):
    raw = f"{method} {target} HTTP/1.0\r\n" + "".join(f"{h}\r\n" for h in headers) + "\r\n"
    request = parse_request(raw)
    assert request is not None
    return request


@pytest.fixture
def site(tmp_path):
    (tmp_path / "docs").mkdir()
    page = tmp_path / "index.html"
    page.write_text("<html>\n  <body>Hello  world</body>\n</html>\n", encoding="utf-8")
    image = tmp_path / "logo.png"
    image.write_bytes(bytes(range(256)))
    for path in (page, image):
        os.utime(path, (MTIME, MTIME))
    return tmp_path


def test_resolve_resource_flags_paths_outside_root(tmp_path) -> None:
    path, inside = resolve_resource(str(tmp_path), "/docs/a.txt")
    assert path == os.path.join(str(tmp_path), "docs", "a.txt")
    assert inside

    _, inside = resolve_resource(str(tmp_path), "/../etc/passwd")
    assert not inside


def test_missing_file_is_404(site) -> None:
    response = StaticFileHandler(str(site)).handle(_request("GET", "/missing.html"))
    assert response.status == 404


def test_directory_is_400(site) -> None:
    handler = StaticFileHandler(str(site))
    assert handler.handle(_request("GET", "/docs")).status == 400
    assert handler.handle(_request("HEAD", "/")).status == 400


def test_path_traversal_is_403(site) -> None:
    response = StaticFileHandler(str(site / "docs")).handle(_request("GET", "/../index.html"))
    assert response.status == 403


def test_unreadable_file_is_403(site, monkeypatch) -> None:
    secret = site / "secret.txt"
    secret.write_text("hidden", encoding="utf-8")

    def _open(file, *args, **kwargs):
        if os.path.basename(os.fspath(file)) == secret.name:
            raise PermissionError(13, "Permission denied", str(secret))
        return builtins.open(file, *args, **kwargs)

    monkeypatch.setattr(static_module, "open", _open, raising=False)
    response = StaticFileHandler(str(site)).handle(_request("GET", "/secret.txt"))

    assert response.status == 403
    assert response.to_bytes() == b"HTTP/1.0 403 Forbidden\r\n"


def test_get_binary_file_returns_raw_bytes(site) -> None:
    response = StaticFileHandler(str(site)).handle(_request("GET", "/logo.png"))

    assert response.status == 200
    assert response.get_header("Content-Type") == "image/png"
    assert response.get_header("Content-Length") == "256"
    assert response.get_header("Last-Modified") == format_http_date(MTIME)
    assert response.body == bytes(range(256)) + b"\r\n"


def test_get_text_file_compresses_whitespace(site) -> None:
    response = StaticFileHandler(str(site)).handle(_request("GET", "/index.html"))

    assert response.status == 200
    assert response.get_header("Content-Type") == "text/html"
    assert response.get_header("Content-Length") == str((site / "index.html").stat().st_size)
    assert response.body == b"<html><body>Helloworld</body></html>\r\n"


def test_head_has_headers_but_no_body(site) -> None:
    response = StaticFileHandler(str(site)).handle(_request("HEAD", "/logo.png"))

    assert response.status == 200
    assert response.get_header("Content-Length") == "256"
    assert response.body is None
    assert response.to_bytes().endswith(b"\r\n\r\n")


def test_get_not_modified_since_mtime_is_304(site) -> None:
    handler = StaticFileHandler(str(site))

    same = handler.handle(_request("GET", "/logo.png", f"If-Modified-Since: {format_http_date(MTIME)}"))
    later = handler.handle(_request("GET", "/logo.png", f"If-Modified-Since: {format_http_date(MTIME + 60)}"))

    for response in (same, later):
        assert response.status == 304
        assert response.get_header("Expires") is not None
        assert response.body is None


def test_get_modified_after_date_is_200(site) -> None:
    response = StaticFileHandler(str(site)).handle(
        _request("GET", "/logo.png", f"If-Modified-Since: {format_http_date(MTIME - 60)}")
    )
    assert response.status == 200


def test_unparseable_if_modified_since_is_ignored(site) -> None:
    response = StaticFileHandler(str(site)).handle(_request("GET", "/logo.png", "If-Modified-Since: whenever"))
    assert response.status == 200


def test_head_is_never_conditional(site) -> None:
    response = StaticFileHandler(str(site)).handle(
        _request("HEAD", "/logo.png", f"If-Modified-Since: {format_http_date(MTIME + 60)}")
    )
    assert response.status == 200
    assert response.body is None


def test_repeated_get_has_identical_headers_except_expires(site) -> None:
    handler = StaticFileHandler(str(site))
    first = handler.handle(_request("GET", "/logo.png"))
    second = handler.handle(_request("GET", "/logo.png"))

    def _stable(response):
        return [(k, v) for k, v in response.headers if k != "Expires"]

    assert _stable(first) == _stable(second)
    assert first.body == second.body


def test_compress_text() -> None:
    assert compress_text(b"a b\r\n\tc\n") == b"abc"
