"""
Request parsing for the HTTP/1.0 server.

The raw request text is validated against the request-line grammar first;
only a request that passes ``correct_format`` is turned into an
``HTTPRequest``. Header and body extraction afterwards may therefore assume
a well-formed request line.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import unquote_to_bytes


CRLF = "\r\n"

HTTP_METHODS = ("GET", "POST", "HEAD", "DELETE", "PUT", "LINK", "UNLINK")
SUPPORTED_METHODS = ("GET", "HEAD", "POST")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_PERCENT_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_VERSION_NUMBER = re.compile(r"\d+(\.\d+)?", re.ASCII)


class PercentDecodeError(ValueError):
    """Raised when a payload holds a malformed percent escape."""


@dataclass
class HTTPRequest:
    """A request that passed format validation."""

    method: str
    target: str
    version: str
    version_number: float
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        # Case-sensitive on purpose: the server only recognizes canonical names.
        return self.headers.get(name)

    @property
    def is_actionable(self) -> bool:
        return self.method in SUPPORTED_METHODS


def correct_format(raw: str) -> bool:
    """
    Check that a raw request starts with a valid HTTP request line.

    Args:
        raw: Raw request text, CRLF delimited

    Returns:
        True if the request line is ``METHOD /target HTTP/x.y``
    """
    if not raw:
        return False

    request_line = raw.split(CRLF)[0]
    if not request_line:
        return False

    if request_line[0] == " " or request_line[-1] == " ":
        return False

    tokens = request_line.split(" ")
    if len(tokens) != 3:
        return False

    method, target, version = tokens

    if method != method.upper() or method not in HTTP_METHODS:
        return False

    if not target.startswith("/"):
        return False

    return _version_number(version) is not None


def _version_number(version: str) -> Optional[float]:
    parts = version.split("/")
    if len(parts) != 2 or parts[0] != "HTTP":
        return None
    if not _VERSION_NUMBER.fullmatch(parts[1]):
        return None
    return float(parts[1])


def parse_request(raw: str) -> Optional[HTTPRequest]:
    """
    Parse raw request text into an HTTPRequest.

    Args:
        raw: Raw request text as read from the connection

    Returns:
        Parsed request, or None if the request line is malformed
    """
    if not correct_format(raw):
        return None

    lines = raw.split(CRLF)
    method, target, version = lines[0].split(" ")

    headers = {}
    body = None
    for i, line in enumerate(lines[1:], 1):
        if line == "":
            # Only one payload line is supported.
            if i + 1 < len(lines) and lines[i + 1]:
                body = lines[i + 1]
            break

        if ":" in line:
            name, value = line.split(":", 1)
            headers[name] = value.strip()

    return HTTPRequest(
        method=method,
        target=target,
        version=version,
        version_number=_version_number(version),
        headers=headers,
        body=body,
    )


def parse_content_length(value: Optional[str]) -> Optional[int]:
    """Return a non-negative Content-Length, or None if missing or invalid."""
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def url_decode(text: str) -> bytes:
    """
    Decode a form-urlencoded payload.

    Every ``%XX`` escape is decoded; ``+`` is passed through unchanged.

    Args:
        text: Encoded payload

    Returns:
        Decoded payload bytes

    Raises:
        PercentDecodeError: If a ``%`` is not followed by two hex digits
    """
    bad = _PERCENT_ESCAPE.search(text)
    if bad:
        raise PercentDecodeError(f"Malformed percent escape at offset {bad.start()}")
    try:
        encoded = text.encode("iso-8859-1")
    except UnicodeEncodeError as e:
        raise PercentDecodeError(f"Payload is not ISO-8859-1 text: {e}") from e
    return unquote_to_bytes(encoded)
