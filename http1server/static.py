"""
GET and HEAD handling against the filesystem.
"""

import logging
import os
from typing import Optional, Tuple

from .request import HTTPRequest
from .response import HTTPResponse, build_headers, expires_value, file_extension, parse_http_date


logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = ("txt", "html")


def resolve_resource(root: str, target: str) -> Tuple[str, bool]:
    """
    Map a request target onto a path under the document root.

    Args:
        root: Document root (usually the working directory)
        target: Request target, starting with ``/``

    Returns:
        Tuple of (absolute path, whether it stays inside the root)
    """
    root = os.path.abspath(root)
    path = os.path.normpath(os.path.join(root, target.lstrip("/")))
    inside = os.path.commonpath([path, root]) == root
    return path, inside


def check_resource(path: str, inside_root: bool) -> Optional[HTTPResponse]:
    """Return an error response if the resource cannot be served, else None."""
    if not inside_root:
        logger.warning(f"Security violation - path outside document root: {path}")
        return HTTPResponse.error(403)

    if not os.path.exists(path):
        logger.warning(f"File not found: {path}")
        return HTTPResponse.error(404)

    if os.path.isdir(path):
        logger.warning(f"Path is a directory: {path}")
        return HTTPResponse.error(400)

    return None


def compress_text(content: bytes) -> bytes:
    """Concatenate the whitespace-delimited tokens of a text document."""
    text = content.decode("utf-8", errors="replace")
    return "".join(text.split()).encode("utf-8")


class StaticFileHandler:
    """Serves files below a document root for GET and HEAD requests."""

    def __init__(self, root: Optional[str] = None):
        self.root = root if root is not None else os.getcwd()

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Handle a GET or HEAD request.

        Args:
            request: Parsed request with method GET or HEAD

        Returns:
            Response to write to the client
        """
        path, inside = resolve_resource(self.root, request.target)
        error = check_resource(path, inside)
        if error is not None:
            return error

        # HEAD is never conditional.
        if request.method == "GET" and self._not_modified(path, request):
            logger.info(f"Not modified since {request.header('If-Modified-Since')}: {path}")
            return HTTPResponse(304, [("Expires", expires_value())])

        try:
            with open(path, "rb") as f:
                headers = build_headers(path)
                if request.method == "HEAD":
                    return HTTPResponse(200, headers)
                content = f.read()
        except PermissionError:
            logger.warning(f"Read permission denied: {path}")
            return HTTPResponse.error(403)

        if file_extension(path) in TEXT_EXTENSIONS:
            content = compress_text(content)

        logger.info(f"Serving file: {path} ({len(content)} bytes)")
        return HTTPResponse(200, headers, content + b"\r\n")

    def _not_modified(self, path: str, request: HTTPRequest) -> bool:
        since = parse_http_date(request.header("If-Modified-Since"))
        if since is None:
            return False
        # Last-Modified has whole-second precision, so compare at that precision.
        modified = int(os.path.getmtime(path))
        return modified <= since
