"""
Shared fixtures for the PeerVault test suite.
"""

import asyncio
import shutil
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from peervault.config import EngineConfig
from peervault.p2p.network import PeerInfo


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, isolated component tests")
    config.addinivalue_line("markers", "integration: tests spanning several components")


# ===== FIXTURES =====

@pytest.fixture
def temp_storage_dir():
    """Create a temporary directory for storage tests."""
    temp_dir = tempfile.mkdtemp(prefix="peervault_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def engine_config(temp_storage_dir):
    """Engine config with a cheap KDF and short peer timeouts."""
    return EngineConfig(
        storage_dir=temp_storage_dir,
        kdf_iterations=1000,
        peer_request_timeout=0.5,
    )


@pytest.fixture
def sample_data():
    """Provide sample data for testing."""
    return b"Hello, peers! This is sample data for testing. " * 100


class FakeNetwork:
    """
    In-memory network collaborator.

    Peers listed in ``peers`` are reported as connected. Blobs pushed with
    send_blob land in ``remote_blobs`` and are served back by request_blob.
    """

    def __init__(self, peers: Optional[List[str]] = None):
        self.peers = list(peers or [])
        self.remote_blobs: Dict[Tuple[str, str], bytes] = {}
        self.added: List[str] = []
        self.deleted: List[str] = []
        self.refuse: set = set()
        self.hang: set = set()
        self.requests: List[Tuple[str, str]] = []

    async def peer_list(self) -> List[PeerInfo]:
        now = time.time()
        return [PeerInfo(peer_id=peer_id, last_seen=now) for peer_id in self.peers]

    async def send_blob(self, peer_id, content_id, data, metadata) -> bool:
        if peer_id in self.hang:
            await _forever()
        if peer_id in self.refuse:
            return False
        self.remote_blobs[(peer_id, content_id)] = data
        return True

    async def request_blob(self, peer_id: str, content_id: str) -> Optional[bytes]:
        self.requests.append((peer_id, content_id))
        if peer_id in self.hang:
            await _forever()
        return self.remote_blobs.get((peer_id, content_id))

    async def on_file_added(self, metadata) -> None:
        self.added.append(metadata.content_id)

    async def on_file_deleted(self, content_id: str) -> None:
        self.deleted.append(content_id)


async def _forever():
    await asyncio.Event().wait()


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def network_factory():
    """Build a FakeNetwork with a given list of connected peers."""
    return FakeNetwork
