"""Shared helpers for tests that use real sockets on localhost."""

import socket

import pytest


def _free_port(kind: int) -> int:
    with socket.socket(socket.AF_INET, kind) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_tcp_port():
    return lambda: _free_port(socket.SOCK_STREAM)


@pytest.fixture
def free_udp_port():
    return lambda: _free_port(socket.SOCK_DGRAM)
