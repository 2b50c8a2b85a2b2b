"""Tests for local address resolution, port choice and NodeIdentity."""

import socket
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from peerlink.mesh.address import (
    PORT_MAX,
    PORT_MIN,
    NodeIdentity,
    choose_ephemeral_port,
    resolve_local_address,
)
from peerlink.mesh.errors import NoAddressFoundError


def _addr(family, address):
    return SimpleNamespace(family=family, address=address, netmask=None, broadcast=None, ptp=None)


class TestResolveLocalAddress:
    def test_skips_loopback_and_ipv6(self):
        interfaces = {
            "lo": [_addr(socket.AF_INET, "127.0.0.1"), _addr(socket.AF_INET6, "::1")],
            "eth0": [_addr(socket.AF_INET6, "fe80::1"), _addr(socket.AF_INET, "10.0.0.5")],
            "wlan0": [_addr(socket.AF_INET, "192.168.1.20")],
        }
        with patch("peerlink.mesh.address.psutil.net_if_addrs", return_value=interfaces):
            assert resolve_local_address() == "10.0.0.5"

    def test_no_address(self):
        interfaces = {"lo": [_addr(socket.AF_INET, "127.0.0.1")]}
        with patch("peerlink.mesh.address.psutil.net_if_addrs", return_value=interfaces):
            with pytest.raises(NoAddressFoundError):
                resolve_local_address()

    def test_no_interfaces(self):
        with patch("peerlink.mesh.address.psutil.net_if_addrs", return_value={}):
            with pytest.raises(NoAddressFoundError):
                resolve_local_address()

    def test_enumeration_failure(self):
        with patch("peerlink.mesh.address.psutil.net_if_addrs", side_effect=OSError("denied")):
            with pytest.raises(NoAddressFoundError):
                resolve_local_address()


class TestChooseEphemeralPort:
    def test_range(self):
        for _ in range(500):
            port = choose_ephemeral_port()
            assert PORT_MIN <= port < PORT_MAX

    def test_bounds(self):
        assert PORT_MIN == 1024
        assert PORT_MAX == 65535


class TestNodeIdentity:
    def test_id(self):
        ident = NodeIdentity("10.0.0.5", 30001)
        assert ident.id == "10.0.0.5:30001"
        assert str(ident) == "10.0.0.5:30001"

    def test_immutable(self):
        ident = NodeIdentity("10.0.0.5", 30001)
        with pytest.raises(AttributeError):
            ident.port = 1  # type: ignore[misc]

    @pytest.mark.parametrize("address,port", [("10.0.0.5", 0), ("10.0.0.5", 65536), ("", 80)])
    def test_invalid(self, address, port):
        with pytest.raises(ValueError):
            NodeIdentity(address, port)

    def test_local(self):
        with patch("peerlink.mesh.address.resolve_local_address", return_value="10.0.0.5"):
            ident = NodeIdentity.local(port=30001)
        assert ident.id == "10.0.0.5:30001"
