"""Configuration schema using Pydantic."""

from typing import Any

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_snake
from pydantic_settings import BaseSettings

from peerlink.mesh.discovery import BROADCAST_ADDRESS, BROADCAST_INTERVAL, DISCOVERY_PORT
from peerlink.mesh.transport import DEFAULT_SEND_TIMEOUT


class NodeConfig(BaseSettings):
    """Settings for one peerlink node.

    Every field has a working default; environment variables use the
    ``PEERLINK_`` prefix (e.g. ``PEERLINK_PORT=30001``).  Keys may be given
    in camelCase or snake_case (``bindHost`` or ``bind_host``).
    """

    host: str = ""                 # Identity address. Empty = first non-loopback IPv4
    port: int = Field(default=0, ge=0, le=65535)  # Messaging TCP port. 0 = random ephemeral
    bind_host: str = "0.0.0.0"     # Interface the messaging server binds on
    send_timeout: float = Field(default=DEFAULT_SEND_TIMEOUT, gt=0)  # Seconds per send exchange

    # Protocol constants; only override when embedding or testing
    discovery_port: int = Field(default=DISCOVERY_PORT, ge=1, le=65535)
    broadcast_interval: float = Field(default=BROADCAST_INTERVAL, gt=0)
    broadcast_address: str = BROADCAST_ADDRESS

    model_config = ConfigDict(env_prefix="PEERLINK_")

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        # camelCase -> snake_case; field aliases would bypass env_prefix.
        if isinstance(data, dict):
            return {to_snake(k) if isinstance(k, str) else k: v for k, v in data.items()}
        return data
