"""
Configuration for the PeerVault storage engine and API server.

Values come from keyword arguments or from ``PEERVAULT_*`` environment
variables via ``from_env()``.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


MIB = 1024 * 1024


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class EngineConfig(BaseModel):
    """Storage engine configuration."""

    storage_dir: Path = Field(
        default=Path("./peervault_storage"),
        description="Base directory for the durable tiers"
    )
    database_name: str = Field(
        default="peervault.db",
        description="SQLite file for the transactional tier (inside storage_dir)"
    )
    cache_capacity: Optional[int] = Field(
        default=None,
        description="Max blobs held in the volatile cache (None = unbounded)"
    )
    flat_max_blob_size: int = Field(
        default=10 * MIB,
        description="Largest blob the flat key-value tier will persist"
    )
    hash_algorithm: str = Field(
        default="sha256",
        description="Content hash algorithm (sha256, sha3_256, blake2b, sha512)"
    )
    max_retries: int = Field(
        default=3,
        description="Recovery attempts before an unrecoverable record is evicted"
    )
    default_capacity_gb: float = Field(
        default=1.0,
        description="Storage capacity used until the user sets one"
    )
    unit_price_per_gb: float = Field(
        default=1.0,
        description="Monthly cost per GB of capacity"
    )
    heartbeat_timeout: float = Field(
        default=30.0,
        description="Seconds without a heartbeat before a peer is marked offline"
    )
    heartbeat_interval: float = Field(
        default=10.0,
        description="Seconds between heartbeat checks"
    )
    peer_request_timeout: float = Field(
        default=10.0,
        description="Timeout for a single remote peer call"
    )
    replication_enabled: bool = Field(
        default=True,
        description="Push new blobs to connected peers on ingest"
    )
    kdf_iterations: int = Field(
        default=200_000,
        description="PBKDF2 iterations for passphrase key derivation"
    )

    @property
    def database_path(self) -> Path:
        return self.storage_dir / self.database_name

    @property
    def flat_dir(self) -> Path:
        return self.storage_dir / "flat"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from ``PEERVAULT_*`` environment variables."""
        cache_capacity = os.getenv("PEERVAULT_CACHE_CAPACITY")
        return cls(
            storage_dir=Path(os.getenv("PEERVAULT_STORAGE_DIR", "./peervault_storage")),
            cache_capacity=int(cache_capacity) if cache_capacity else None,
            flat_max_blob_size=int(os.getenv("PEERVAULT_FLAT_MAX_BLOB_SIZE", str(10 * MIB))),
            hash_algorithm=os.getenv("PEERVAULT_HASH_ALGORITHM", "sha256"),
            max_retries=int(os.getenv("PEERVAULT_MAX_RETRIES", "3")),
            default_capacity_gb=float(os.getenv("PEERVAULT_CAPACITY_GB", "1.0")),
            unit_price_per_gb=float(os.getenv("PEERVAULT_UNIT_PRICE", "1.0")),
            heartbeat_timeout=float(os.getenv("PEERVAULT_HEARTBEAT_TIMEOUT", "30")),
            heartbeat_interval=float(os.getenv("PEERVAULT_HEARTBEAT_INTERVAL", "10")),
            peer_request_timeout=float(os.getenv("PEERVAULT_PEER_TIMEOUT", "10")),
            replication_enabled=_env_bool("PEERVAULT_REPLICATION_ENABLED", "true"),
            kdf_iterations=int(os.getenv("PEERVAULT_KDF_ITERATIONS", "200000")),
        )


class ServerConfig(BaseModel):
    """API server configuration."""

    host: str = Field(
        default="127.0.0.1",
        description="Server host (use 0.0.0.0 for Docker/cloud)"
    )
    port: int = Field(default=8001, description="Server port")
    reload: bool = Field(default=False, description="Auto-reload on code changes")
    max_file_size: int = Field(
        default=100 * MIB,
        description="Maximum upload size in bytes"
    )
    log_dir: Path = Field(default=Path("logs"), description="Directory for server logs")

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=os.getenv("PEERVAULT_API_HOST", "127.0.0.1"),
            port=int(os.getenv("PEERVAULT_API_PORT", "8001")),
            reload=_env_bool("RELOAD", "false"),
            max_file_size=int(os.getenv("PEERVAULT_MAX_UPLOAD", str(100 * MIB))),
            log_dir=Path(os.getenv("PEERVAULT_LOG_DIR", "logs")),
        )
