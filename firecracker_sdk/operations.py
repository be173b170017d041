"""Parameters and response reading for the metadata-store API operations."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

# Request timeout used when none is given, in seconds.
DEFAULT_TIMEOUT = 30.0

Body = Union[bytes, bytearray, str, None]


@dataclass
class ErrorPayload:
    """The error document the VMM returns with a failed request."""

    fault_message: str = ""

    @classmethod
    def from_body(cls, body: Body) -> "ErrorPayload":
        """Decode a JSON error document; an empty body gives an empty payload."""
        if body is None:
            return cls()
        text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
        if not text.strip():
            return cls()
        data = json.loads(text)
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"error payload must be a JSON object, got {type(data).__name__}")
        message = data.get("fault_message", "")
        if message is None:
            message = ""
        if not isinstance(message, str):
            raise ValueError("fault_message must be a string")
        return cls(fault_message=message)


@dataclass(frozen=True)
class Operation:
    """An API endpoint: its operation id, HTTP method and path."""

    id: str
    method: str
    path: str

    @property
    def _prefix(self) -> str:
        return f"[{self.method} {self.path}]"

    def read_response(self, code: int, body: Body = None) -> "NoContent":
        """Interpret a server reply.

        204 and other 2xx codes return a ``NoContent``; 400 and every other
        code raise ``OperationError``. A body that is not valid JSON raises
        ``ValueError``.
        """
        if code == 204:
            return NoContent(self, code)
        payload = ErrorPayload.from_body(body)
        if code == 400:
            raise OperationError(self, code, payload, bad_request=True)
        if code // 100 == 2:
            return NoContent(self, code, payload)
        raise OperationError(self, code, payload)


@dataclass(frozen=True)
class NoContent:
    """A successful reply; ``payload`` is set for 2xx codes other than 204."""

    operation: Operation
    code: int = 204
    payload: Optional[ErrorPayload] = None

    def __str__(self) -> str:
        op = self.operation
        if self.code == 204:
            return f"{op._prefix}[{self.code}] {op.id}NoContent "
        return f"{op._prefix}[{self.code}] {op.id} default  {self.payload!r}"


class OperationError(Exception):
    """The server rejected an operation."""

    def __init__(
        self,
        operation: Operation,
        code: int,
        payload: ErrorPayload,
        bad_request: bool = False,
    ) -> None:
        self.operation = operation
        self.code = code
        self.payload = payload
        self.bad_request = bad_request
        label = f"{operation.id}BadRequest" if bad_request else f"{operation.id} default"
        super().__init__(f"{operation._prefix}[{code}] {label}  {payload!r}")

    @property
    def fault_message(self) -> str:
        return self.payload.fault_message


@dataclass(frozen=True)
class OperationParams:
    """The body and timeout sent with an operation."""

    body: Any = None
    timeout: float = DEFAULT_TIMEOUT

    def with_body(self, body: Any) -> "OperationParams":
        return dataclasses.replace(self, body=body)

    def with_timeout(self, timeout: float) -> "OperationParams":
        return dataclasses.replace(self, timeout=timeout)

    def encode_body(self) -> Optional[bytes]:
        """The body as JSON bytes, or ``None`` when there is no body."""
        if self.body is None:
            return None
        body = self.body
        if dataclasses.is_dataclass(body) and not isinstance(body, type):
            body = dataclasses.asdict(body)
        return json.dumps(body).encode("utf-8")


PUT_MMDS = Operation("putMmds", "PUT", "/mmds")
PUT_MMDS_CONFIG = Operation("putMmdsConfig", "PUT", "/mmds/config")