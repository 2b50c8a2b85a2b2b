"""Peer descriptors and the thread-safe peer table.

The table is written by the discovery listener only, and read from
anywhere: the event loop, the messenger, or plain application threads.
A ``threading.Lock`` (not an ``asyncio.Lock``) guards it for that reason.
Descriptors are frozen, so a reader holds either the old or the new one,
never a mix.

Peers are never removed: there is no expiry.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from peerlink.mesh.errors import PeerNotFoundError


@dataclass(frozen=True)
class PeerDescriptor:
    """A remote node discovered via broadcast."""

    id: str
    address: str
    port: int

    @classmethod
    def from_address(cls, address: str, port: int) -> "PeerDescriptor":
        return cls(id=f"{address}:{port}", address=address, port=port)

    @classmethod
    def from_id(cls, text: str) -> "PeerDescriptor | None":
        """Parse ``"<address>:<port>"``; return ``None`` if malformed.

        Exactly one ``:`` is allowed, the address must be non-empty and the
        port a decimal integer in ``[0, 65535]``.
        """
        text = text.strip()
        parts = text.split(":")
        if len(parts) != 2:
            return None
        address, port_text = parts
        if not address or any(c.isspace() for c in address):
            return None
        if not port_text.isascii() or not port_text.isdigit():
            return None
        port = int(port_text)
        if port > 65535:
            return None
        return cls.from_address(address, port)


PeerCallback = Callable[[PeerDescriptor], None]


class PeerTable:
    """Mapping of peer id to ``PeerDescriptor``.

    Parameters
    ----------
    self_id:
        The owning node's id.  Upserts for it are refused, so the table
        never contains the node itself.
    """

    def __init__(self, self_id: str | None = None):
        self.self_id = self_id
        self._peers: dict[str, PeerDescriptor] = {}
        self._lock = threading.Lock()
        self._on_added: list[PeerCallback] = []

    # -- writes --------------------------------------------------------------

    def upsert(self, descriptor: PeerDescriptor) -> bool:
        """Insert or overwrite *descriptor*.

        Returns ``True`` if the table changed.  An identical re-insert and
        an attempt to insert the node itself both return ``False``.
        """
        if descriptor.id == self.self_id:
            return False

        with self._lock:
            current = self._peers.get(descriptor.id)
            if current == descriptor:
                return False
            self._peers[descriptor.id] = descriptor

        if current is None:
            logger.info(
                f"[Mesh/Peers] new peer: {descriptor.id} "
                f"@ {descriptor.address}:{descriptor.port}"
            )
            self._notify_added(descriptor)
        else:
            logger.debug(
                f"[Mesh/Peers] peer {descriptor.id} moved to "
                f"{descriptor.address}:{descriptor.port}"
            )
        return True

    # -- reads ---------------------------------------------------------------

    def get(self, peer_id: str) -> PeerDescriptor:
        """Return the descriptor for *peer_id* or raise ``PeerNotFoundError``."""
        with self._lock:
            try:
                return self._peers[peer_id]
            except KeyError:
                raise PeerNotFoundError(peer_id) from None

    def find(self, peer_id: str) -> PeerDescriptor | None:
        with self._lock:
            return self._peers.get(peer_id)

    def snapshot(self) -> list[PeerDescriptor]:
        """Point-in-time copy of all known peers (order irrelevant)."""
        with self._lock:
            return list(self._peers.values())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    # -- hooks ---------------------------------------------------------------

    def on_peer_added(self, callback: PeerCallback) -> None:
        """Register a callback invoked once per newly discovered peer."""
        self._on_added.append(callback)

    def _notify_added(self, descriptor: PeerDescriptor) -> None:
        for cb in self._on_added:
            try:
                cb(descriptor)
            except Exception as exc:
                logger.error(f"[Mesh/Peers] peer-added callback error: {exc}")
