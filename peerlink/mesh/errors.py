"""Error types raised by the mesh core.

Errors inside the long-running loops (announcer, listener, server) are
logged and contained.  Everything below is what synchronous callers
(node startup, ``send``) get to see.
"""

from __future__ import annotations

import errno


class MeshError(Exception):
    """Base class for all mesh errors."""


# -- startup -----------------------------------------------------------------

class NoAddressFoundError(MeshError):
    """No non-loopback IPv4 address is bound to any local interface."""


class BindError(MeshError):
    """A discovery or serving socket could not be bound."""


class AddressInUseError(BindError):
    """The requested port is already taken.

    Raised as-is, never retried internally: the application picks another
    port and tries again.
    """


# -- peer lookup ---------------------------------------------------------------

class PeerNotFoundError(MeshError, KeyError):
    """The peer id is not in the peer table."""

    def __init__(self, peer_id: str):
        super().__init__(peer_id)
        self.peer_id = peer_id

    def __str__(self) -> str:
        return f"unknown peer {self.peer_id!r}"


# -- send ----------------------------------------------------------------------

class ConnectionFailedError(MeshError):
    """The peer was unreachable, refused the connection, or hung up early."""


class SendTimeoutError(ConnectionFailedError):
    """The exchange did not complete before the deadline."""


class NonSuccessStatusError(MeshError):
    """The peer answered with a failure status."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"peer returned status {status}: {message}" if message
                         else f"peer returned status {status}")
        self.status = status
        self.message = message


class PathNotFoundError(NonSuccessStatusError):
    """No handler is registered for the requested path on the peer."""


class MalformedResponseError(MeshError):
    """The response body could not be decoded into a payload mapping."""


def as_bind_error(exc: OSError, where: str) -> BindError:
    """Translate a failed ``bind()`` into the matching ``BindError``."""
    if exc.errno == errno.EADDRINUSE:
        return AddressInUseError(f"{where} already in use")
    return BindError(f"cannot bind {where}: {exc}")
