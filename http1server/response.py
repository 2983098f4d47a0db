"""
Response construction: status lines, the standard header block and
buffered writing of the finished response to a connection.
"""

import datetime
import io
import os
import time
from typing import BinaryIO, List, Optional, Tuple


HTTP_VERSION = "HTTP/1.0"
HTTP_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"

# Far-future offset for the Expires header, in seconds.
EXPIRES_OFFSET = 525600

ALLOW = "GET, POST, HEAD"
CONTENT_ENCODING = "identity"
POST_CONTENT_TYPE = "text/html"

STATUS_REASONS = {
    200: "OK",
    204: "No Content",
    304: "Not Modified",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    411: "Length Required",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
    505: "HTTP Version Not Supported",
}

MIME_MAJOR_TYPES = {
    "txt": "text",
    "html": "text",
    "png": "image",
    "jpeg": "image",
    "gif": "image",
    "pdf": "application",
    "x-gzip": "application",
    "zip": "application",
    "octet-stream": "application",
}

Headers = List[Tuple[str, str]]


def format_http_date(timestamp: float) -> str:
    """Format seconds since the epoch as an HTTP date in GMT."""
    moment = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)
    return moment.strftime(HTTP_DATE_FORMAT)


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """
    Parse an HTTP date into seconds since the epoch.

    Args:
        value: Header value such as ``Tue, 15 Nov 1994 08:12:31 GMT``

    Returns:
        Epoch seconds, or None if the value is missing or malformed
    """
    if not value:
        return None
    try:
        moment = datetime.datetime.strptime(value.strip(), HTTP_DATE_FORMAT)
    except ValueError:
        return None
    return moment.replace(tzinfo=datetime.timezone.utc).timestamp()


def file_extension(path: str) -> str:
    """Return the text after the last dot of the file name."""
    name = os.path.basename(path)
    return name[name.rfind(".") + 1:]


def content_type_for(path: str) -> str:
    extension = file_extension(path)
    major = MIME_MAJOR_TYPES.get(extension)
    if major is None:
        return "application/octet-stream"
    return f"{major}/{extension}"


def expires_value(now: Optional[float] = None) -> str:
    if now is None:
        now = time.time()
    return format_http_date(now + EXPIRES_OFFSET)


def build_headers(path: str, content_length: Optional[int] = None) -> Headers:
    """
    Build the standard header block for a resource.

    Args:
        path: Filesystem path of the resource
        content_length: Explicit payload length; when given the POST variant
            is produced (``text/html`` with this length)

    Returns:
        Ordered list of (name, value) header pairs
    """
    stat = os.stat(path)

    if content_length is None:
        content_type = content_type_for(path)
        content_length = stat.st_size
    else:
        content_type = POST_CONTENT_TYPE

    return [
        ("Content-Type", content_type),
        ("Content-Length", str(content_length)),
        ("Last-Modified", format_http_date(stat.st_mtime)),
        ("Content-Encoding", CONTENT_ENCODING),
        ("Allow", ALLOW),
        ("Expires", expires_value()),
    ]


class HTTPResponse:
    """A single HTTP/1.0 response."""

    def __init__(self, status: int, headers: Optional[Headers] = None, body: Optional[bytes] = None):
        if status not in STATUS_REASONS:
            raise ValueError(f"Unsupported status code: {status}")
        self.status = status
        self.headers = list(headers or [])
        self.body = body

    @classmethod
    def error(cls, status: int) -> "HTTPResponse":
        """Bare status-line response used for every error path."""
        return cls(status)

    @property
    def reason(self) -> str:
        return STATUS_REASONS[self.status]

    @property
    def status_line(self) -> str:
        return f"{HTTP_VERSION} {self.status} {self.reason}"

    def get_header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key == name:
                return value
        return None

    def write_to(self, wfile: BinaryIO) -> None:
        """
        Write the response to a buffered binary stream.

        The header block is terminated by a blank line only when there are
        headers; a bare error response is just its status line.
        """
        wfile.write(f"{self.status_line}\r\n".encode("iso-8859-1"))
        for key, value in self.headers:
            wfile.write(f"{key}: {value}\r\n".encode("iso-8859-1"))
        if self.headers:
            wfile.write(b"\r\n")
        if self.body:
            wfile.write(self.body)

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.write_to(buffer)
        return buffer.getvalue()

    def __repr__(self) -> str:
        return f"<HTTPResponse {self.status} {self.reason}>"
