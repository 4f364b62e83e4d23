"""
PeerVault Storage API Server

FastAPI server exposing the local storage engine over HTTP.

Endpoints:
- GET /health - Health check
- GET /api/v1/status - Engine status and configuration
- POST /api/v1/upload - Store a file
- GET /api/v1/download/{content_id} - Retrieve a file
- GET /api/v1/metadata/{content_id} - Get file metadata
- GET /api/v1/files - List indexed files
- GET /api/v1/search?q= - Search by name or content ID
- DELETE /api/v1/files/{content_id} - Delete a file
- GET /api/v1/quota - Storage quota
- PUT /api/v1/quota - Set storage capacity
- POST /api/v1/validate - Run the recovery sweep
- GET /api/v1/peers - Known peers and network stats
- POST /api/v1/peers/{peer_id}/heartbeat - Peer heartbeat

Encrypted files take their passphrase in the X-Passphrase header.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, File, Header, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from loguru import logger

from peervault import __version__
from peervault.config import EngineConfig, ServerConfig
from peervault.core.metadata_index import FileMetadata
from peervault.core.quota import StorageQuota
from peervault.core.storage_engine import StorageEngine
from peervault.errors import DecryptionError, PeerVaultError, RetrievalError, ValidationError


# =============================================================================
# API Models
# =============================================================================

class MetadataResponse(BaseModel):
    """File metadata response."""

    id: str
    content_id: str
    checksum: str
    name: str
    mime_type: str
    size: int
    uploaded_at: float
    last_modified: float
    indexed: bool
    owner_peer_id: str
    replicated_on: List[str]
    is_encrypted: bool
    encryption_key_id: Optional[str]
    is_valid: bool
    retry_count: int

    @classmethod
    def from_metadata(cls, metadata: FileMetadata) -> "MetadataResponse":
        return cls(**metadata.to_dict())


class QuotaResponse(BaseModel):
    """Storage quota response."""

    total_capacity_gb: float
    used_gb: float
    available_gb: float
    monthly_cost: float
    usage_percent: float

    @classmethod
    def from_quota(cls, quota: StorageQuota) -> "QuotaResponse":
        return cls(
            total_capacity_gb=quota.total_capacity_gb,
            used_gb=quota.used_gb,
            available_gb=quota.available_gb,
            monthly_cost=quota.monthly_cost,
            usage_percent=quota.usage_percent,
        )


class QuotaUpdate(BaseModel):
    total_capacity_gb: float = Field(..., ge=0, description="New capacity in GB")


class ValidationReportResponse(BaseModel):
    """Recovery sweep report."""

    checked: int
    healthy: List[str]
    recovered: List[str]
    recovering: List[str]
    evicted: List[str]
    errors: List[str]


class PeerResponse(BaseModel):
    peer_id: str
    last_seen: float
    files_count: int
    storage_used: int
    is_connected: bool


class PeersResponse(BaseModel):
    peers: List[PeerResponse]
    stats: Dict[str, Any]


class PeerStatsUpdate(BaseModel):
    files_count: Optional[int] = Field(default=None, ge=0)
    storage_used: Optional[int] = Field(default=None, ge=0)


# =============================================================================
# Helpers
# =============================================================================

def content_disposition(filename: str) -> str:
    """Attachment header for any file name: ASCII fallback plus RFC 5987 UTF-8 form."""
    fallback = "".join(c if " " <= c <= "~" and c not in "\"\\" else "_" for c in filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    engine_config: Optional[EngineConfig] = None,
    server_config: Optional[ServerConfig] = None,
) -> FastAPI:
    """
    Build the API application.

    The engine is created and initialized in the lifespan and kept on
    ``app.state.engine``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        config = engine_config or EngineConfig.from_env()
        engine = StorageEngine(config)
        report = await engine.initialize()
        await engine.peers.start()

        app.state.engine = engine
        app.state.server_config = server_config or ServerConfig.from_env()

        logger.info("✅ PeerVault storage engine initialized")
        logger.info("   Storage dir: {}", config.storage_dir)
        logger.info("   Peer ID: {}", engine.local_peer_id)
        logger.info("   Files: {} ({} evicted at startup)", len(engine.index), len(report.evicted))

        yield

        # Shutdown
        await engine.close()
        logger.info("✅ PeerVault API server shutdown complete")

    app = FastAPI(
        title="PeerVault Storage API",
        description="Local content-addressed storage for a peer-to-peer file browser",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PeerVaultError)
    async def peervault_error_handler(request: Request, exc: PeerVaultError):
        if isinstance(exc, ValidationError):
            code = status.HTTP_400_BAD_REQUEST
        elif isinstance(exc, RetrievalError):
            code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, DecryptionError):
            code = status.HTTP_403_FORBIDDEN
        else:
            code = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error("{} {} failed: {}", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    # -------------------------------------------------------------------------
    # Health & Status
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check(request: Request):
        engine: StorageEngine = request.app.state.engine
        return {
            "status": "healthy",
            "service": "peervault-storage-api",
            "storage_initialized": engine.initialized,
        }

    @app.get("/api/v1/status")
    async def get_status(request: Request):
        engine: StorageEngine = request.app.state.engine
        return {
            "service": "PeerVault Storage",
            "version": __version__,
            "peer_id": engine.local_peer_id,
            "storage": {
                "directory": str(engine.config.storage_dir),
                "hash_algorithm": engine.config.hash_algorithm,
                "flat_max_blob_size": engine.config.flat_max_blob_size,
                "replication_enabled": engine.config.replication_enabled,
            },
            "stats": engine.get_stats(),
        }

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    @app.post(
        "/api/v1/upload",
        response_model=MetadataResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def upload_file(
        request: Request,
        file: UploadFile = File(...),
        indexed: bool = False,
        x_passphrase: Optional[str] = Header(default=None),
    ):
        """
        Store an uploaded file.

        Identical content returns the existing record.
        """
        engine: StorageEngine = request.app.state.engine
        max_size = request.app.state.server_config.max_file_size

        content = await file.read()
        if len(content) > max_size:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large (max {max_size} bytes)",
            )

        metadata = await engine.add_file(
            content,
            name=file.filename or "",
            mime_type=file.content_type,
            indexed=indexed,
            passphrase=x_passphrase,
        )
        logger.info("✅ Uploaded file: {} ({})", metadata.name, metadata.content_id)
        return MetadataResponse.from_metadata(metadata)

    @app.get("/api/v1/download/{content_id}")
    async def download_file(
        request: Request,
        content_id: str,
        x_passphrase: Optional[str] = Header(default=None),
    ):
        engine: StorageEngine = request.app.state.engine
        metadata = engine.get_metadata(content_id)
        data = await engine.get_file(content_id, passphrase=x_passphrase)

        logger.info("📥 Downloaded file: {} ({} bytes)", metadata.name, len(data))
        return Response(
            content=data,
            media_type=metadata.mime_type,
            headers={
                "Content-Disposition": content_disposition(metadata.name),
                "X-Content-ID": content_id,
            },
        )

    @app.get("/api/v1/metadata/{content_id}", response_model=MetadataResponse)
    async def get_metadata(request: Request, content_id: str):
        metadata = request.app.state.engine.get_metadata(content_id)
        if metadata is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Metadata for {content_id} not found",
            )
        return MetadataResponse.from_metadata(metadata)

    @app.get("/api/v1/files", response_model=List[MetadataResponse])
    async def list_files(request: Request, limit: int = 100):
        records = request.app.state.engine.get_file_index()
        records.sort(key=lambda r: r.uploaded_at, reverse=True)
        return [MetadataResponse.from_metadata(r) for r in records[:limit]]

    @app.get("/api/v1/search", response_model=List[MetadataResponse])
    async def search_files(request: Request, q: str):
        return [MetadataResponse.from_metadata(r) for r in request.app.state.engine.search_files(q)]

    @app.delete("/api/v1/files/{content_id}")
    async def delete_file(request: Request, content_id: str):
        metadata = await request.app.state.engine.delete_file(content_id)
        logger.info("🗑️ Deleted file: {}", metadata.name)
        return {"message": f"File {content_id} deleted successfully"}

    # -------------------------------------------------------------------------
    # Quota & Maintenance
    # -------------------------------------------------------------------------

    @app.get("/api/v1/quota", response_model=QuotaResponse)
    async def get_quota(request: Request):
        return QuotaResponse.from_quota(request.app.state.engine.get_storage_quota())

    @app.put("/api/v1/quota", response_model=QuotaResponse)
    async def set_quota(request: Request, update: QuotaUpdate):
        quota = await request.app.state.engine.set_storage_quota(update.total_capacity_gb)
        logger.info("Storage capacity set to {} GB", update.total_capacity_gb)
        return QuotaResponse.from_quota(quota)

    @app.post("/api/v1/validate", response_model=ValidationReportResponse)
    async def validate_files(request: Request):
        report = await request.app.state.engine.validate_all_files()
        return ValidationReportResponse(
            checked=report.checked,
            healthy=report.healthy,
            recovered=report.recovered,
            recovering=report.recovering,
            evicted=report.evicted,
            errors=report.errors,
        )

    # -------------------------------------------------------------------------
    # Peers
    # -------------------------------------------------------------------------

    @app.get("/api/v1/peers", response_model=PeersResponse)
    async def list_peers(request: Request):
        engine: StorageEngine = request.app.state.engine
        return PeersResponse(
            peers=[
                PeerResponse(
                    peer_id=p.peer_id,
                    last_seen=p.last_seen,
                    files_count=p.files_count,
                    storage_used=p.storage_used,
                    is_connected=p.is_connected,
                )
                for p in engine.peers.get_all_peers()
            ],
            stats=engine.get_network_stats(),
        )

    @app.post("/api/v1/peers/{peer_id}/heartbeat")
    async def peer_heartbeat(request: Request, peer_id: str, update: Optional[PeerStatsUpdate] = None):
        engine: StorageEngine = request.app.state.engine
        if peer_id == engine.local_peer_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot send a heartbeat for the local peer",
            )

        await engine.mark_peer_online(peer_id)
        if update is not None and update.files_count is not None and update.storage_used is not None:
            await engine.update_peer_stats(peer_id, update.files_count, update.storage_used)
        return {"peer_id": peer_id, "is_connected": True}

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run API server."""
    server_config = ServerConfig.from_env()

    logger.add(
        str(server_config.log_dir / "peervault_api_{time}.log"),
        rotation="1 day",
        retention="30 days",
        level="INFO",
    )

    logger.info("🚀 Starting PeerVault API server on {}:{}", server_config.host, server_config.port)
    logger.info("   Reload: {}", server_config.reload)

    uvicorn.run(
        "peervault.api_server:create_app",
        factory=True,
        host=server_config.host,
        port=server_config.port,
        reload=server_config.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
