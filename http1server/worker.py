"""
Per-connection request handling.

A ConnectionWorker owns one accepted socket for its whole life: it reads a
single request, dispatches it, writes exactly one response and closes the
connection.
"""

import logging
import re
import socket
import time
from typing import Optional, Tuple

from .cgi_handler import CGIInvoker
from .request import parse_request
from .response import HTTPResponse
from .static import StaticFileHandler


logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 3.0
READ_IDLE_TIMEOUT = 0.5
DRAIN_DELAY = 0.25
WRITE_TIMEOUT = 30.0
RECV_BUFFER_SIZE = 8192
MAX_REQUEST_SIZE = 65536

_CONTENT_LENGTH = re.compile(rb"\r\nContent-Length:[ \t]*(\d+)")


def message_complete(data: bytes) -> bool:
    """
    Tell whether a buffer holds a complete request.

    A request is complete once the header block has ended and, if it
    declares a Content-Length, that many body bytes have arrived.
    """
    end = data.find(b"\r\n\r\n")
    if end < 0:
        return False
    match = _CONTENT_LENGTH.search(data, 0, end + 2)
    if match is None:
        return True
    return len(data) - (end + 4) >= int(match.group(1))


def message_truncated(data: bytes) -> bool:
    """
    Tell whether reading stopped before the request was whole: the size cap
    was hit first, or the body is shorter than its declared Content-Length.
    """
    if len(data) >= MAX_REQUEST_SIZE and not message_complete(data):
        return True
    end = data.find(b"\r\n\r\n")
    if end < 0:
        return False
    match = _CONTENT_LENGTH.search(data, 0, end + 2)
    return match is not None and len(data) - (end + 4) < int(match.group(1))


def discard_pending_input(client_socket: socket.socket) -> None:
    """Drop unread input so closing the socket does not reset the peer."""
    try:
        client_socket.setblocking(False)
        while client_socket.recv(RECV_BUFFER_SIZE):
            pass
    except OSError:
        # Nothing left to read, or the peer is already gone.
        pass


class ConnectionWorker:
    """Handles a single client connection end to end."""

    def __init__(
        self,
        client_socket: socket.socket,
        client_address: Tuple[str, int],
        static_handler: StaticFileHandler,
        cgi_invoker: CGIInvoker,
        accepted_at: Optional[float] = None,
        request_timeout: float = REQUEST_TIMEOUT,
        drain_delay: float = DRAIN_DELAY,
    ):
        self.client_socket = client_socket
        self.client_address = client_address
        self.static_handler = static_handler
        self.cgi_invoker = cgi_invoker
        self.accepted_at = accepted_at if accepted_at is not None else time.monotonic()
        self.request_timeout = request_timeout
        self.drain_delay = drain_delay
        self.connection_id = f"{client_address[0]}:{client_address[1]}"
        self.responded = False

    def run(self) -> None:
        """Process the connection and always close it afterwards."""
        response = None
        try:
            response = self.process()
        except PermissionError as e:
            logger.warning(f"Permission denied while handling {self.connection_id}: {e}")
            response = HTTPResponse.error(403)
        except Exception:
            logger.exception(f"Error processing request from {self.connection_id}")
            response = HTTPResponse.error(500)
        finally:
            self.finish(response)

    def process(self) -> HTTPResponse:
        """
        Read, validate and dispatch the request.

        Returns:
            The single response for this connection
        """
        try:
            raw = self.read_request()
        except socket.timeout:
            logger.info(f"Request timeout for {self.connection_id}")
            return HTTPResponse.error(408)

        if message_truncated(raw):
            logger.warning(f"Incomplete request from {self.connection_id} ({len(raw)} bytes)")
            return HTTPResponse.error(400)

        request = parse_request(raw.decode("iso-8859-1"))
        if request is None:
            logger.warning(f"Invalid request from {self.connection_id}")
            return HTTPResponse.error(400)

        logger.info(f"{request.method} {request.target} {request.version} from {self.connection_id}")

        if request.version_number > 1.0:
            return HTTPResponse.error(505)

        if not request.is_actionable:
            return HTTPResponse.error(501)

        if request.method == "POST":
            server_name, server_port = self.client_socket.getsockname()[:2]
            return self.cgi_invoker.handle(request, server_name, server_port)

        return self.static_handler.handle(request)

    def read_request(self) -> bytes:
        """
        Read one request from the socket.

        Blocks for the first bytes until ``request_timeout`` seconds after
        acceptance, then keeps reading while more data is promptly available.

        Raises:
            socket.timeout: If no data arrived in time
        """
        remaining = self.accepted_at + self.request_timeout - time.monotonic()
        self.client_socket.settimeout(max(remaining, 0.001))
        data = self.client_socket.recv(RECV_BUFFER_SIZE)
        if not data:
            return data

        self.client_socket.settimeout(READ_IDLE_TIMEOUT)
        while len(data) < MAX_REQUEST_SIZE and not message_complete(data):
            try:
                chunk = self.client_socket.recv(RECV_BUFFER_SIZE)
            except socket.timeout:
                break
            if not chunk:
                break
            data += chunk
        return data

    def finish(self, response: Optional[HTTPResponse]) -> None:
        """Write the response and close input, output and socket in order."""
        wfile = None
        try:
            if response is not None and not self.responded:
                self.responded = True
                self.client_socket.settimeout(WRITE_TIMEOUT)
                wfile = self.client_socket.makefile("wb")
                response.write_to(wfile)
                wfile.flush()
                logger.info(f"Response to {self.connection_id}: {response.status_line}")
                time.sleep(self.drain_delay)
        except OSError as e:
            logger.warning(f"Error sending response to {self.connection_id}: {e}")

        discard_pending_input(self.client_socket)
        try:
            self.client_socket.shutdown(socket.SHUT_RD)
        except OSError as e:
            logger.debug(f"Error closing input for {self.connection_id}: {e}")
        if wfile is not None:
            try:
                wfile.close()
            except OSError as e:
                logger.debug(f"Error closing output for {self.connection_id}: {e}")
        try:
            self.client_socket.close()
        except OSError as e:
            logger.debug(f"Error closing socket for {self.connection_id}: {e}")
