"""peerlink - LAN peer discovery and request/response messaging."""

from peerlink.mesh.address import NodeIdentity, choose_ephemeral_port, resolve_local_address
from peerlink.mesh.errors import (
    AddressInUseError,
    BindError,
    ConnectionFailedError,
    MalformedResponseError,
    MeshError,
    NoAddressFoundError,
    NonSuccessStatusError,
    PathNotFoundError,
    PeerNotFoundError,
    SendTimeoutError,
)
from peerlink.mesh.node import PeerNode
from peerlink.mesh.peers import PeerDescriptor, PeerTable
from peerlink.mesh.transport import Messenger, RequestContext

__version__ = "0.1.0"

__all__ = [
    "AddressInUseError",
    "BindError",
    "ConnectionFailedError",
    "MalformedResponseError",
    "MeshError",
    "Messenger",
    "NoAddressFoundError",
    "NodeIdentity",
    "NonSuccessStatusError",
    "PathNotFoundError",
    "PeerDescriptor",
    "PeerNode",
    "PeerNotFoundError",
    "PeerTable",
    "RequestContext",
    "SendTimeoutError",
    "choose_ephemeral_port",
    "resolve_local_address",
]
