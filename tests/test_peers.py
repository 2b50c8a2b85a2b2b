"""Tests for PeerDescriptor parsing and the PeerTable."""

import threading

import pytest

from peerlink.mesh.errors import PeerNotFoundError
from peerlink.mesh.peers import PeerDescriptor, PeerTable


class TestPeerDescriptor:
    def test_from_id(self):
        peer = PeerDescriptor.from_id("10.0.0.5:30002")
        assert peer == PeerDescriptor(id="10.0.0.5:30002", address="10.0.0.5", port=30002)

    def test_from_id_strips_trailing_newline(self):
        peer = PeerDescriptor.from_id("10.0.0.5:30002\n")
        assert peer is not None
        assert peer.id == "10.0.0.5:30002"

    def test_from_id_canonicalises_port(self):
        peer = PeerDescriptor.from_id("10.0.0.5:0080")
        assert peer is not None
        assert peer.port == 80
        assert peer.id == "10.0.0.5:80"

    def test_port_bounds(self):
        assert PeerDescriptor.from_id("1.2.3.4:0").port == 0
        assert PeerDescriptor.from_id("1.2.3.4:65535").port == 65535
        assert PeerDescriptor.from_id("1.2.3.4:65536") is None
        assert PeerDescriptor.from_id("1.2.3.4:99999") is None

    @pytest.mark.parametrize("text", [
        "not-an-address",
        "1.2.3.4",
        "1.2.3.4:",
        ":8080",
        "1.2.3.4:abc",
        "1.2.3.4:-1",
        "1.2.3.4:+80",
        "1.2.3.4:80:90",
        "a b:80",
        "",
    ])
    def test_malformed(self, text):
        assert PeerDescriptor.from_id(text) is None


class TestPeerTable:
    def test_upsert_and_get(self):
        table = PeerTable(self_id="10.0.0.5:30001")
        peer = PeerDescriptor.from_address("10.0.0.5", 30002)
        assert table.upsert(peer) is True
        assert table.get("10.0.0.5:30002") == peer
        assert "10.0.0.5:30002" in table
        assert len(table) == 1

    def test_upsert_is_idempotent(self):
        table = PeerTable()
        peer = PeerDescriptor.from_address("10.0.0.7", 4000)
        assert table.upsert(peer) is True
        before = table.snapshot()
        assert table.upsert(peer) is False
        assert table.snapshot() == before

    def test_upsert_overwrites_changed_descriptor(self):
        table = PeerTable()
        table.upsert(PeerDescriptor(id="node", address="10.0.0.7", port=4000))
        assert table.upsert(PeerDescriptor(id="node", address="10.0.0.7", port=4001)) is True
        assert table.get("node").port == 4001
        assert len(table) == 1

    def test_refuses_self(self):
        table = PeerTable(self_id="10.0.0.5:30001")
        assert table.upsert(PeerDescriptor.from_address("10.0.0.5", 30001)) is False
        assert len(table) == 0

    def test_get_unknown_raises(self):
        table = PeerTable()
        with pytest.raises(PeerNotFoundError) as info:
            table.get("ghost:1")
        assert info.value.peer_id == "ghost:1"
        # also usable as a plain KeyError
        with pytest.raises(KeyError):
            table.get("ghost:1")
        assert table.find("ghost:1") is None

    def test_snapshot_is_a_copy(self):
        table = PeerTable()
        table.upsert(PeerDescriptor.from_address("10.0.0.2", 1))
        snap = table.snapshot()
        table.upsert(PeerDescriptor.from_address("10.0.0.3", 1))
        assert len(snap) == 1
        assert sorted(table.ids()) == ["10.0.0.2:1", "10.0.0.3:1"]

    def test_on_peer_added_only_for_new_ids(self):
        table = PeerTable()
        seen = []
        table.on_peer_added(seen.append)
        peer = PeerDescriptor.from_address("10.0.0.2", 1)
        table.upsert(peer)
        table.upsert(peer)
        table.upsert(PeerDescriptor(id=peer.id, address="10.0.0.9", port=2))
        assert seen == [peer]

    def test_callback_error_is_contained(self):
        table = PeerTable()

        def boom(_peer):
            raise RuntimeError("callback failed")

        table.on_peer_added(boom)
        assert table.upsert(PeerDescriptor.from_address("10.0.0.2", 1)) is True
        assert "10.0.0.2:1" in table

    def test_concurrent_snapshots_see_whole_descriptors(self):
        table = PeerTable()
        stop = threading.Event()
        bad: list[PeerDescriptor] = []

        def writer():
            i = 0
            while not stop.is_set():
                n = i % 200
                table.upsert(PeerDescriptor(id="moving", address=f"10.0.0.{n}", port=1000 + n))
                table.upsert(PeerDescriptor.from_address(f"10.1.0.{n}", 2000 + n))
                i += 1

        def reader():
            while not stop.is_set():
                for peer in table.snapshot():
                    if peer.id == "moving":
                        if int(peer.address.rsplit(".", 1)[1]) + 1000 != peer.port:
                            bad.append(peer)
                    elif peer.id != f"{peer.address}:{peer.port}":
                        bad.append(peer)

        threads = [threading.Thread(target=writer)] + [
            threading.Thread(target=reader) for _ in range(4)
        ]
        for t in threads:
            t.start()
        stop.wait(0.5)
        stop.set()
        for t in threads:
            t.join()

        assert bad == []
        assert "moving" in table
