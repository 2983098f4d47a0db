#!/usr/bin/env python3
"""
Multi-threaded HTTP/1.0 Server

Accepts TCP connections, admits each one to a bounded worker pool (or turns
it away with 503 when the pool is saturated) and serves exactly one request
per connection:
- GET/HEAD of static files with conditional GET
- POST to CGI scripts with a CGI environment
"""

import errno
import logging
import signal
import socket
import sys
import threading
import time
from typing import Optional, Tuple

from .cgi_handler import CGIInvoker
from .pool import WorkerPool
from .response import HTTPResponse
from .static import StaticFileHandler
from .worker import DRAIN_DELAY, REQUEST_TIMEOUT, ConnectionWorker, discard_pending_input


logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_CORE_THREADS = 5
DEFAULT_MAX_THREADS = 50
LISTEN_BACKLOG = 50

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

TRANSIENT_ACCEPT_ERRORS = frozenset(
    {errno.ECONNABORTED, errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM, errno.EPROTO, errno.EINTR}
)

SERVICE_UNAVAILABLE = HTTPResponse.error(503).to_bytes()


def configure_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger with a console handler and an optional
    file handler. Safe to call more than once.

    Args:
        level: Logging level for the package logger
        log_file: Path of a log file to append to, if any

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger("http1server")
    package_logger.setLevel(level)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    # Prevent duplicate logs
    package_logger.propagate = False
    return package_logger


class HTTPServer:
    """
    HTTP/1.0 server with a single accept loop and a bounded worker pool.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = 8080,
        core_threads: int = DEFAULT_CORE_THREADS,
        max_threads: int = DEFAULT_MAX_THREADS,
        root: Optional[str] = None,
        request_timeout: float = REQUEST_TIMEOUT,
        drain_delay: float = DRAIN_DELAY,
        cgi_timeout: Optional[float] = None,
    ):
        """
        Initialize the HTTP server with configuration parameters.

        Args:
            host: Server host address
            port: Server port number, 0 picks a free port
            core_threads: Worker threads kept alive while idle
            max_threads: Maximum number of concurrent connections
            root: Document root (default: current working directory)
            request_timeout: Seconds to wait for the first request bytes
            drain_delay: Seconds to wait after writing before closing
            cgi_timeout: Seconds a CGI script may run, None for no limit
        """
        self.host = host
        self.port = port
        self.request_timeout = request_timeout
        self.drain_delay = drain_delay
        self.server_socket = None
        self.running = False

        self.pool = WorkerPool(core_threads, max_threads)
        self.static_handler = StaticFileHandler(root)
        self.cgi_invoker = CGIInvoker(root, cgi_timeout)

        self.stats_lock = threading.Lock()
        self.total_connections = 0
        self.rejected_connections = 0

        logger.info(f"HTTP Server initialized: {host}:{port}, core_threads={core_threads}, max_threads={max_threads}")

    @property
    def server_address(self) -> Tuple[str, int]:
        if self.server_socket is None:
            return self.host, self.port
        return self.server_socket.getsockname()[:2]

    def bind(self) -> None:
        """
        Create the listening socket.

        Raises:
            OSError: If the socket cannot be bound (EADDRINUSE when the port
                is taken)
        """
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(LISTEN_BACKLOG)
        except OSError:
            server_socket.close()
            raise

        self.server_socket = server_socket
        self.running = True
        host, port = self.server_address
        logger.info(f"Server listening on {host}:{port}")

    def start(self) -> None:
        """Bind and serve until stopped."""
        self.bind()
        self.serve_forever()

    def serve_forever(self) -> None:
        """Main accept loop. Returns once the listening socket is closed."""
        if self.server_socket is None:
            raise RuntimeError("Server socket is not bound")

        logger.info("Server ready to accept connections...")
        while self.running:
            try:
                client_socket, client_address = self.server_socket.accept()
            except OSError as e:
                if not self.running or self.server_socket.fileno() == -1:
                    break
                if e.errno not in TRANSIENT_ACCEPT_ERRORS:
                    logger.error(f"Error accepting connection: {e}")
                else:
                    logger.warning(f"Transient error accepting connection: {e}")
                continue

            self._dispatch(client_socket, client_address)

        logger.info("Accept loop finished")

    def _dispatch(self, client_socket: socket.socket, client_address: Tuple[str, int]) -> None:
        accepted_at = time.monotonic()
        client_socket.setblocking(True)

        with self.stats_lock:
            self.total_connections += 1

        worker = ConnectionWorker(
            client_socket,
            client_address,
            self.static_handler,
            self.cgi_invoker,
            accepted_at=accepted_at,
            request_timeout=self.request_timeout,
            drain_delay=self.drain_delay,
        )
        if self.pool.try_submit(worker.run):
            logger.info(f"New connection from {client_address[0]}:{client_address[1]}")
            return

        logger.warning(f"Pool saturated, rejecting {client_address[0]}:{client_address[1]}")
        with self.stats_lock:
            self.rejected_connections += 1
        self._reject(client_socket)

    def _reject(self, client_socket: socket.socket) -> None:
        """Answer 503 and close without handing the socket to a worker."""
        try:
            client_socket.sendall(SERVICE_UNAVAILABLE)
        except OSError as e:
            logger.debug(f"Error sending 503: {e}")
        discard_pending_input(client_socket)
        try:
            client_socket.close()
        except OSError as e:
            logger.debug(f"Error closing rejected socket: {e}")

    def stop(self) -> None:
        """
        Stop the HTTP server gracefully.

        Shutting the listening socket down wakes a blocked accept(), which
        then fails and ends the accept loop.
        """
        if not self.running:
            return
        logger.info("Stopping HTTP server...")
        self.running = False

        if self.server_socket:
            try:
                self.server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Listening sockets are not connected on every platform.
                pass
            self.server_socket.close()

        self.pool.shutdown()

        with self.stats_lock:
            logger.info(
                f"Server stopped. Total connections: {self.total_connections}, rejected: {self.rejected_connections}"
            )


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for the HTTP server.

    Usage: http1server <port> [host] [max_threads]
    """
    args = sys.argv[1:] if argv is None else argv

    if len(args) < 1:
        print("Program requires a port number as command line input.")
        return 1

    try:
        port = int(args[0])
    except ValueError:
        port = -1
    if not (0 <= port <= 65535):
        print("Port number must be a non-negative integer less than 65536.")
        return 1

    host = args[1] if len(args) >= 2 else DEFAULT_HOST

    max_threads = DEFAULT_MAX_THREADS
    if len(args) >= 3:
        try:
            max_threads = int(args[2])
        except ValueError:
            max_threads = 0
        if max_threads < 1:
            print("Max threads must be a positive integer.")
            return 1

    configure_logging()

    server = HTTPServer(host, port, core_threads=min(DEFAULT_CORE_THREADS, max_threads), max_threads=max_threads)
    try:
        server.bind()
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            print("That port is already in use. Try a different port.")
        else:
            print("Something went wrong when trying to construct your server socket. Try again.")
        return 1

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        server.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    print(f"Starting HTTP server on {host}:{server.server_address[1]} with {max_threads} threads...")
    print("Press Ctrl+C to stop the server")
    try:
        server.serve_forever()
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
