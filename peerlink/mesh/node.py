"""A peerlink node: identity, discovery, peer table and messenger in one.

Nothing here is process-global, so several nodes can live in one process
(each with its own table, sockets and handlers).

Usage
-----
>>> node = PeerNode.from_config()
>>> node.register_handler("/ping", lambda payload, ctx: {"port": ctx.node.id})
>>> async with node:
...     peer = await node.wait_for_peer("10.0.0.5:30002")
...     reply = await node.send(peer, "/ping", {})
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import Any

from loguru import logger

from peerlink.config.schema import NodeConfig
from peerlink.mesh.address import NodeIdentity, choose_ephemeral_port, resolve_local_address
from peerlink.mesh.discovery import UDPDiscovery
from peerlink.mesh.peers import PeerDescriptor, PeerTable
from peerlink.mesh.transport import Messenger, RequestHandler


class PeerNode:
    """One discoverable, addressable node on the LAN.

    Parameters
    ----------
    identity:
        Address and port this node announces and serves on.
    config:
        Optional settings; defaults reproduce the fixed protocol constants.
    announce_to:
        Explicit announcement destination, see ``UDPDiscovery``.
    """

    def __init__(
        self,
        identity: NodeIdentity,
        config: NodeConfig | None = None,
        *,
        announce_to: tuple[str, int] | None = None,
    ):
        self.config = config or NodeConfig()
        self.identity = identity
        self.peers = PeerTable(self_id=identity.id)
        self.messenger = Messenger(
            identity,
            host=self.config.bind_host,
            send_timeout=self.config.send_timeout,
        )
        self.discovery = UDPDiscovery(
            identity,
            self.peers,
            udp_port=self.config.discovery_port,
            broadcast_address=self.config.broadcast_address,
            broadcast_interval=self.config.broadcast_interval,
            announce_to=announce_to,
        )

    @classmethod
    def from_config(cls, config: NodeConfig | None = None, **kwargs: Any) -> "PeerNode":
        """Build a node, resolving address and port that the config leaves open.

        Raises ``NoAddressFoundError`` when no host is configured and no
        usable interface address exists.
        """
        config = config or NodeConfig()
        identity = NodeIdentity(
            address=config.host or resolve_local_address(),
            port=config.port or choose_ephemeral_port(),
        )
        return cls(identity, config, **kwargs)

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def running(self) -> bool:
        return self.messenger.serving and self.discovery.running

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start serving, then start discovery.

        Any bind failure is raised and leaves the node fully stopped.
        """
        await self.messenger.start()
        try:
            await self.discovery.start()
        except Exception:
            await self.messenger.stop()
            raise
        logger.info(f"[Mesh/Node] node {self.id} up")

    async def stop(self) -> None:
        await self.discovery.stop()
        await self.messenger.stop()
        logger.info(f"[Mesh/Node] node {self.id} down")

    async def __aenter__(self) -> "PeerNode":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # -- messaging -----------------------------------------------------------

    def register_handler(self, path: str, handler: RequestHandler) -> None:
        self.messenger.register_handler(path, handler)

    def route(self, path: str):
        return self.messenger.route(path)

    def _resolve(self, peer: PeerDescriptor | str) -> PeerDescriptor:
        if isinstance(peer, str):
            return self.peers.get(peer)
        return peer

    async def send(
        self,
        peer: PeerDescriptor | str,
        path: str,
        payload: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request to *peer* (a descriptor or a known peer id)."""
        return await self.messenger.send(self._resolve(peer), path, payload, timeout=timeout)

    def send_blocking(
        self,
        peer: PeerDescriptor | str,
        path: str,
        payload: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return self.messenger.send_blocking(self._resolve(peer), path, payload, timeout=timeout)

    async def wait_for_peer(
        self,
        peer_id: str,
        timeout: float = 10.0,
        poll_interval: float = 0.05,
    ) -> PeerDescriptor:
        """Wait until *peer_id* shows up in the peer table.

        Raises ``asyncio.TimeoutError`` if it does not within *timeout*.
        """
        deadline = time.monotonic() + timeout
        while True:
            peer = self.peers.find(peer_id)
            if peer is not None:
                return peer
            if time.monotonic() >= deadline:
                raise asyncio.TimeoutError(f"peer {peer_id} not discovered within {timeout}s")
            await asyncio.sleep(poll_interval)
