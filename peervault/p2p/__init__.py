"""
PeerVault P2P surface.

The transport itself is external. This package holds the interface the
storage engine talks to and the registry that tracks peer liveness.
"""

from .network import NetworkCollaborator, NullNetwork, PeerInfo
from .peer_registry import PeerRegistry

__all__ = ["NetworkCollaborator", "NullNetwork", "PeerInfo", "PeerRegistry"]
