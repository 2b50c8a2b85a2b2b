"""Local network identity: own IPv4 address, ephemeral port, node id."""

from __future__ import annotations

import ipaddress
import random
import socket
from dataclasses import dataclass

import psutil
from loguru import logger

from peerlink.mesh.errors import NoAddressFoundError

PORT_MIN = 1024
PORT_MAX = 65535  # exclusive upper bound for chosen ports


@dataclass(frozen=True)
class NodeIdentity:
    """Address and port a node is reachable on.

    The id is always ``"<address>:<port>"`` so two nodes in one broadcast
    domain can only collide if they share both.
    """

    address: str
    port: int

    def __post_init__(self) -> None:
        if not self.address:
            raise ValueError("node address must not be empty")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"node port out of range: {self.port}")

    @property
    def id(self) -> str:
        return f"{self.address}:{self.port}"

    @classmethod
    def local(cls, port: int | None = None) -> "NodeIdentity":
        """Build an identity from the first usable interface address."""
        return cls(
            address=resolve_local_address(),
            port=port or choose_ephemeral_port(),
        )

    def __str__(self) -> str:
        return self.id


def resolve_local_address() -> str:
    """Return the first non-loopback IPv4 address of any local interface.

    Interfaces are scanned in the order the OS reports them.  Raises
    ``NoAddressFoundError`` if there is none (or if the interface list
    cannot be read at all).
    """
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        raise NoAddressFoundError(f"cannot enumerate interfaces: {exc}") from exc

    for name, addrs in interfaces.items():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.address:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            logger.debug(f"[Mesh/Address] using {ip} from interface {name}")
            return str(ip)

    raise NoAddressFoundError("no non-loopback IPv4 address on any interface")


def choose_ephemeral_port() -> int:
    """Pick a pseudo-random port in ``[1024, 65535)``.

    The port is not probed; binding it may still fail with
    ``AddressInUseError``.
    """
    return random.randrange(PORT_MIN, PORT_MAX)
