"""HTTP transport to the VMM's API over a Unix domain socket."""

from __future__ import annotations

import http.client
import logging
import socket
from typing import Any, Optional

from firecracker_sdk.operations import NoContent, Operation, OperationParams

DEFAULT_HOST = "localhost"
DEFAULT_BASE_PATH = "/"


class _UnixHTTPConnection(http.client.HTTPConnection):
    """An HTTP connection whose socket is a Unix domain socket."""

    def __init__(self, socket_path: str, host: str, timeout: Optional[float]) -> None:
        super().__init__(host, timeout=timeout)
        self._socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(self.timeout)
            sock.connect(self._socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class UnixSocketTransport:
    """Sends API operations to the VMM listening on ``socket_path``."""

    def __init__(
        self,
        socket_path: str,
        logger: Optional[Any] = None,
        debug: bool = False,
        host: str = DEFAULT_HOST,
        base_path: str = DEFAULT_BASE_PATH,
    ) -> None:
        self.socket_path = socket_path
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.debug = debug
        self.host = host
        self.base_path = base_path

    def _url(self, operation: Operation) -> str:
        base = self.base_path.rstrip("/")
        path = operation.path if operation.path.startswith("/") else "/" + operation.path
        return base + path

    def submit(self, operation: Operation, params: Optional[OperationParams] = None) -> NoContent:
        """Send ``operation`` with ``params`` and interpret the reply.

        Raises ``OperationError`` when the server rejects the request and
        ``OSError`` when the socket cannot be reached.
        """
        params = params if params is not None else OperationParams()
        body = params.encode_body()
        headers = {"Accept": "application/json", "Host": self.host}
        if body is not None:
            headers["Content-Type"] = "application/json"
        url = self._url(operation)

        if self.debug:
            self.logger.debug("%s %s body=%r", operation.method, url, body)

        connection = _UnixHTTPConnection(self.socket_path, self.host, params.timeout)
        try:
            connection.request(operation.method, url, body=body, headers=headers)
            response = connection.getresponse()
            data = response.read()
            status = response.status
        finally:
            connection.close()

        if self.debug:
            self.logger.debug("%s %s -> %d %r", operation.method, url, status, data)

        return operation.read_response(status, data)