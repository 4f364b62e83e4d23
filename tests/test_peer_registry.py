"""
Tests for peer liveness tracking.
"""

import asyncio

import pytest

from peervault.p2p.network import NetworkCollaborator, NullNetwork, PeerInfo
from peervault.p2p.peer_registry import PeerRegistry


@pytest.fixture
def registry():
    return PeerRegistry(local_peer_id="peer-local", heartbeat_timeout=30, heartbeat_interval=10)


@pytest.mark.unit
class TestPeerRegistry:

    def test_heartbeat_registers_peer(self, registry):
        registry.mark_peer_online("peer-a", now=100.0)

        peer = registry.get_peer("peer-a")
        assert peer.is_connected
        assert peer.last_seen == 100.0

    def test_local_peer_never_registered(self, registry):
        registry.mark_peer_online("peer-local")

        assert registry.get_all_peers() == []

    def test_silent_peer_goes_offline(self, registry):
        registry.mark_peer_online("peer-a", now=100.0)
        registry.mark_peer_online("peer-b", now=120.0)

        went_offline = registry.check_heartbeats(now=131.0)

        assert went_offline == ["peer-a"]
        assert not registry.is_connected("peer-a")
        assert registry.is_connected("peer-b")
        assert [p.peer_id for p in registry.get_connected_peers()] == ["peer-b"]

    def test_offline_peer_comes_back(self, registry):
        registry.mark_peer_online("peer-a", now=100.0)
        registry.check_heartbeats(now=200.0)

        registry.mark_peer_online("peer-a", now=201.0)

        assert registry.is_connected("peer-a")
        assert len(registry.get_all_peers()) == 1

    def test_update_peer_stats(self, registry):
        registry.mark_peer_online("peer-a")
        registry.update_peer_stats("peer-a", files_count=4, storage_used=2048)
        registry.update_peer_stats("peer-unknown", files_count=1, storage_used=1)

        stats = registry.get_stats()
        assert stats == {"online_peers": 1, "total_peers": 1, "total_storage": 2048}

    def test_observe_merges_reported_peer(self, registry):
        registry.observe(PeerInfo(peer_id="peer-a", last_seen=50.0, files_count=3, storage_used=10))

        peer = registry.get_peer("peer-a")
        assert peer.files_count == 3
        assert peer.is_connected
        assert registry.observe(PeerInfo(peer_id="peer-local")) is None

    def test_new_peers_and_stats_mark_dirty(self, registry):
        assert not registry.dirty

        registry.mark_peer_online("peer-a")
        assert registry.dirty

        registry.dirty = False
        registry.mark_peer_online("peer-a")
        assert not registry.dirty

        registry.update_peer_stats("peer-a", files_count=1, storage_used=10)
        assert registry.dirty

    def test_load_restores_peers_disconnected(self, registry):
        registry.mark_peer_online("peer-a", now=100.0)
        registry.update_peer_stats("peer-a", files_count=4, storage_used=2048)
        records = registry.to_records()

        restored = PeerRegistry(local_peer_id="peer-local")
        count = restored.load(records + [{"peer_id": "peer-local"}, {"files_count": 1}])

        assert count == 1
        peer = restored.get_peer("peer-a")
        assert peer.files_count == 4
        assert peer.storage_used == 2048
        assert not peer.is_connected
        assert not restored.dirty
        assert restored.get_stats() == {"online_peers": 0, "total_peers": 1, "total_storage": 0}

    @pytest.mark.asyncio
    async def test_background_monitor(self):
        registry = PeerRegistry(heartbeat_timeout=0.05, heartbeat_interval=0.02)
        registry.mark_peer_online("peer-a")

        await registry.start()
        try:
            await asyncio.sleep(0.2)
        finally:
            await registry.stop()

        assert not registry.is_connected("peer-a")
        assert not registry.running


@pytest.mark.unit
class TestNullNetwork:

    def test_satisfies_protocol(self):
        assert isinstance(NullNetwork(), NetworkCollaborator)

    @pytest.mark.asyncio
    async def test_no_peers_no_blobs(self):
        network = NullNetwork()

        assert await network.peer_list() == []
        assert await network.request_blob("peer-a", "ab") is None
        assert not await network.send_blob("peer-a", "ab", b"x", None)
