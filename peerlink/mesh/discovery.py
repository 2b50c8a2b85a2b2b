"""UDP broadcast discovery for LAN peers.

How it works
------------
1. Each node periodically broadcasts its own id on a well-known UDP port
   (9876) every 2 seconds.
2. Every node listens on the same port and records each id it hears in its
   ``PeerTable``, skipping its own echo.
3. Peers are never expired.

The announcement payload is plain UTF-8 text, no framing:
    10.0.0.5:30001
"""

from __future__ import annotations

import asyncio
import socket

from loguru import logger

from peerlink.mesh.address import NodeIdentity
from peerlink.mesh.errors import as_bind_error
from peerlink.mesh.peers import PeerDescriptor, PeerTable
from peerlink.mesh.resilience import supervised_task

DISCOVERY_PORT = 9876
BROADCAST_INTERVAL = 2.0
BROADCAST_ADDRESS = "255.255.255.255"
MAX_DATAGRAM = 1024


def encode_announcement(identity: NodeIdentity) -> bytes:
    return identity.id.encode("utf-8")


def decode_announcement(data: bytes) -> PeerDescriptor | None:
    """Decode an announcement datagram; ``None`` means discard it."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return PeerDescriptor.from_id(text)


class UDPDiscovery:
    """Broadcast-based peer discovery over UDP.

    Parameters
    ----------
    identity:
        This node's identity; it is what gets announced.
    peers:
        The table that decoded announcements are written to.
    udp_port:
        The shared UDP port for announcements (default 9876).
    broadcast_address:
        Destination address of announcements (default ``255.255.255.255``).
    broadcast_interval:
        Seconds between announcements (default 2).
    announce_to:
        Explicit ``(host, port)`` destination, overriding
        ``broadcast_address``/``udp_port`` for sending only.  Lets several
        nodes in one process talk over loopback.
    """

    def __init__(
        self,
        identity: NodeIdentity,
        peers: PeerTable,
        udp_port: int = DISCOVERY_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
        broadcast_interval: float = BROADCAST_INTERVAL,
        announce_to: tuple[str, int] | None = None,
    ):
        self.identity = identity
        self.peers = peers
        self.udp_port = udp_port
        self.broadcast_interval = broadcast_interval
        self.announce_to = announce_to or (broadcast_address, udp_port)

        self._listen_sock: socket.socket | None = None
        self._send_sock: socket.socket | None = None
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Bind the sockets and start the announcer and listener.

        Raises ``BindError`` (or ``AddressInUseError``) if the discovery
        port cannot be bound; nothing is left running in that case.
        """
        if self._running:
            return

        listen_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            listen_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    listen_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            listen_sock.bind(("", self.udp_port))
        except OSError as exc:
            listen_sock.close()
            raise as_bind_error(exc, f"discovery port udp/{self.udp_port}") from exc
        listen_sock.setblocking(False)

        send_sock: socket.socket | None = None
        try:
            send_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            send_sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            send_sock.setblocking(False)
        except OSError as exc:
            if send_sock is not None:
                send_sock.close()
            listen_sock.close()
            raise as_bind_error(exc, "discovery broadcast socket") from exc

        self._listen_sock = listen_sock
        self._send_sock = send_sock
        self._running = True
        self._tasks = [
            supervised_task(self._announce_loop(), name=f"announce-{self.identity.id}"),
            supervised_task(self._listen_loop(), name=f"listen-{self.identity.id}"),
        ]
        logger.info(
            f"[Mesh/Discovery] started: node={self.identity.id} udp={self.udp_port} "
            f"announce_to={self.announce_to[0]}:{self.announce_to[1]}"
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for sock in (self._send_sock, self._listen_sock):
            if sock is not None:
                sock.close()
        self._send_sock = None
        self._listen_sock = None
        logger.info(f"[Mesh/Discovery] stopped: node={self.identity.id}")

    # -- announcer -----------------------------------------------------------

    async def _announce_loop(self) -> None:
        loop = asyncio.get_running_loop()
        message = encode_announcement(self.identity)
        while self._running:
            try:
                await loop.sock_sendto(self._send_sock, message, self.announce_to)  # type: ignore[arg-type]
            except OSError as exc:
                logger.warning(f"[Mesh/Discovery] broadcast error: {exc}")
            await asyncio.sleep(self.broadcast_interval)

    # -- listener ------------------------------------------------------------

    async def _listen_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                data, addr = await loop.sock_recvfrom(self._listen_sock, MAX_DATAGRAM)  # type: ignore[arg-type]
            except OSError as exc:
                if not self._running:
                    break
                logger.warning(f"[Mesh/Discovery] receive error: {exc}")
                await asyncio.sleep(0.1)
                continue
            self.handle_datagram(data, addr)

    def handle_datagram(self, data: bytes, addr: tuple[str, int] | None = None) -> bool:
        """Process one announcement.  Returns ``True`` if the table changed."""
        peer = decode_announcement(data)
        if peer is None:
            logger.debug(f"[Mesh/Discovery] ignoring malformed announcement from {addr}: {data[:64]!r}")
            return False
        if peer.id == self.identity.id:
            return False  # own echo
        return self.peers.upsert(peer)
