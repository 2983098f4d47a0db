"""
POST handling: run a CGI script with the decoded form payload on stdin and
return whatever it writes to stdout.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, Optional

from .request import FORM_CONTENT_TYPE, HTTPRequest, PercentDecodeError, parse_content_length, url_decode
from .response import HTTPResponse, build_headers, file_extension
from .static import check_resource, resolve_resource


logger = logging.getLogger(__name__)

CGI_EXTENSION = "cgi"


@dataclass(frozen=True)
class CGIEnvironment:
    """Environment handed to a CGI script."""

    content_length: int
    script_name: str
    server_name: str
    server_port: int
    http_from: Optional[str] = None
    http_user_agent: Optional[str] = None

    def to_environ(self) -> Dict[str, str]:
        environ = {
            "CONTENT_LENGTH": str(self.content_length),
            "SCRIPT_NAME": self.script_name,
            "SERVER_NAME": self.server_name,
            "SERVER_PORT": str(self.server_port),
        }
        if self.http_from is not None:
            environ["HTTP_FROM"] = self.http_from
        if self.http_user_agent is not None:
            environ["HTTP_USER_AGENT"] = self.http_user_agent
        return environ


class CGIInvoker:
    """Executes ``.cgi`` resources for POST requests."""

    def __init__(self, root: Optional[str] = None, timeout: Optional[float] = None):
        """
        Args:
            root: Document root (defaults to the working directory)
            timeout: Seconds to wait for a script before killing it; None
                waits until the script exits
        """
        self.root = root if root is not None else os.getcwd()
        self.timeout = timeout

    def handle(self, request: HTTPRequest, server_name: str, server_port: int) -> HTTPResponse:
        """
        Handle a POST request.

        Args:
            request: Parsed request with method POST
            server_name: Address of the server side of the connection
            server_port: Port of the server side of the connection

        Returns:
            Response to write to the client
        """
        path, inside = resolve_resource(self.root, request.target)
        error = check_resource(path, inside)
        if error is not None:
            return error

        content_length = parse_content_length(request.header("Content-Length"))
        if content_length is None:
            logger.warning(f"Missing or invalid Content-Length for POST: {request.header('Content-Length')}")
            return HTTPResponse.error(411)

        content_type = request.header("Content-Type")
        if content_type != FORM_CONTENT_TYPE:
            logger.warning(f"Invalid Content-Type for POST: {content_type}")
            return HTTPResponse.error(500)

        if file_extension(request.target).lower() != CGI_EXTENSION:
            logger.warning(f"POST to non-CGI resource: {request.target}")
            return HTTPResponse.error(405)

        payload = b""
        if request.body is not None:
            try:
                payload = url_decode(request.body)
            except PercentDecodeError as e:
                logger.warning(f"Undecodable POST payload: {e}")
                return HTTPResponse.error(400)
            content_length = len(payload)

        environment = CGIEnvironment(
            content_length=content_length,
            script_name=request.target,
            server_name=server_name,
            server_port=server_port,
            http_from=request.header("From"),
            http_user_agent=request.header("User-Agent"),
        )

        try:
            output = self._run(path, environment, payload)
        except PermissionError:
            logger.warning(f"Execute permission denied: {path}")
            return HTTPResponse.error(403)
        except subprocess.TimeoutExpired:
            logger.error(f"CGI script timed out after {self.timeout}s: {path}")
            return HTTPResponse.error(500)
        except OSError as e:
            logger.error(f"Failed to execute CGI script {path}: {e}")
            return HTTPResponse.error(500)

        headers = build_headers(path, content_length=len(output))
        if not output:
            return HTTPResponse(204, headers)
        return HTTPResponse(200, headers, output + b"\r\n")

    def _run(self, path: str, environment: CGIEnvironment, payload: bytes) -> bytes:
        logger.info(f"Running CGI script: {path} (CONTENT_LENGTH={environment.content_length})")

        process = subprocess.Popen(
            [path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            env=environment.to_environ(),
            cwd=os.path.dirname(path),
        )
        try:
            output, _ = process.communicate(input=payload, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise

        if process.returncode != 0:
            logger.warning(f"CGI script {path} exited with status {process.returncode}")
        return output
