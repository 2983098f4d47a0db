"""Minimal HTTP/1.0 origin server with static files and CGI."""

from .request import HTTPRequest, correct_format, parse_request
from .response import HTTPResponse
from .server import HTTPServer, configure_logging, main

__version__ = "1.0.0"

__all__ = [
    "HTTPRequest",
    "HTTPResponse",
    "HTTPServer",
    "configure_logging",
    "correct_format",
    "main",
    "parse_request",
]
