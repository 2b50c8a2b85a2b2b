"""Wire-level protocol for peer-to-peer requests.

Every message is a JSON object sent over TCP with a 4-byte big-endian
length prefix so the receiver knows exactly how many bytes to read.  One
connection carries exactly one request and one response.

Request format
--------------
{
    "path": "/ping",          # application-defined route
    "source": "10.0.0.5:30002",  # requesting node id
    "payload": { ... }        # request body
}

Response format
---------------
{
    "status": 200,            # HTTP-style status code
    "payload": { ... },       # response body
    "error": ""               # human-readable reason when status != 200
}
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from loguru import logger

MAX_MESSAGE_SIZE = 16 * 1024 * 1024


class Status(IntEnum):
    """Response status codes."""

    OK = 200
    BAD_REQUEST = 400
    NOT_FOUND = 404
    HANDLER_ERROR = 500


def normalize_path(path: str) -> str:
    """Return *path* with a leading ``/``."""
    path = path.strip()
    if not path:
        raise ValueError("path must not be empty")
    return path if path.startswith("/") else "/" + path


@dataclass
class MeshRequest:
    """One request sent to a peer."""

    path: str
    source: str = ""
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "source": self.source, "payload": self.payload}

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "MeshRequest":
        path = obj.get("path")
        if not isinstance(path, str) or not path:
            raise ValueError("request path missing")
        payload = obj.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError("request payload must be an object")
        source = obj.get("source", "")
        return cls(path=path, source=str(source), payload=payload)


@dataclass
class MeshResponse:
    """The single response to a ``MeshRequest``."""

    status: int = Status.OK
    payload: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == Status.OK

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"status": int(self.status), "payload": self.payload}
        if self.error:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "MeshResponse":
        status = obj.get("status")
        if not isinstance(status, int) or isinstance(status, bool):
            raise ValueError("response status must be an integer")
        payload = obj.get("payload", {})
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError("response payload must be an object")
        return cls(status=status, payload=payload, error=str(obj.get("error", "")))

    @classmethod
    def failure(cls, status: int, error: str) -> "MeshResponse":
        return cls(status=status, payload={}, error=error)


def encode_message(obj: dict[str, Any]) -> bytes:
    """Serialise to length-prefixed JSON bytes."""
    body = json.dumps(obj, ensure_ascii=False).encode("utf-8")
    return struct.pack("!I", len(body)) + body


async def read_message(reader: Any) -> dict[str, Any] | None:
    """Read one length-prefixed JSON object from an ``asyncio.StreamReader``.

    Returns *None* on malformed data (bad JSON, non-object body, oversized
    length).  Early EOF raises ``asyncio.IncompleteReadError``.
    """
    header = await reader.readexactly(4)
    (length,) = struct.unpack("!I", header)
    if length > MAX_MESSAGE_SIZE:
        logger.warning("[Mesh/Protocol] message too large: {} bytes", length)
        return None
    body = await reader.readexactly(length)
    try:
        obj = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("[Mesh/Protocol] malformed message: {}", exc)
        return None
    if not isinstance(obj, dict):
        logger.warning("[Mesh/Protocol] message is not a JSON object")
        return None
    return obj
