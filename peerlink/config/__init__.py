"""Configuration for peerlink nodes."""

from peerlink.config.schema import NodeConfig

__all__ = ["NodeConfig"]
