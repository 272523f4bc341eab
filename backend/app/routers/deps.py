"""Shared FastAPI dependencies: credentials and per-request service construction."""

from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.services.agent_key_registry import AgentIdentity, AgentKeyRegistry
from app.services.certification_engine import CertificationEngine
from app.services.crypto_utils import build_password_hasher
from app.services.download_token_store import DownloadTokenStore
from app.services.storage_service import ArtifactFetcher
from app.services.token_codec import TokenCodec


def verify_internal_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> None:
    """Verify the internal API key used by admin tooling and the email sender."""
    if not settings.internal_api_key:
        raise HTTPException(status_code=503, detail="Internal endpoints not configured")
    if x_api_key != settings.internal_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip() or None


def get_token_codec(request: Request) -> TokenCodec:
    codec = getattr(request.app.state, "token_codec", None)
    if codec is None:
        codec = TokenCodec(settings.token_secret)
    return codec


def get_agent_registry(db: Session = Depends(get_db)) -> AgentKeyRegistry:
    return AgentKeyRegistry(db, build_password_hasher(settings), settings.agent_key_prefix)


def get_download_store(db: Session = Depends(get_db)) -> DownloadTokenStore:
    return DownloadTokenStore(db, settings)


def get_certification_engine(db: Session = Depends(get_db)) -> CertificationEngine:
    return CertificationEngine(db)


def get_artifact_fetcher() -> ArtifactFetcher:
    return ArtifactFetcher(settings)


def authenticate_agent(
    authorization: str | None = Header(None),
    registry: AgentKeyRegistry = Depends(get_agent_registry),
) -> AgentIdentity:
    """Missing, malformed, unknown and revoked keys are all the same 401."""
    key = extract_bearer_token(authorization)
    identity = None
    if key:
        identity = registry.authenticate(key, timeout=settings.persistence_timeout_seconds)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return identity


def require_agent(permission: str) -> Callable[..., AgentIdentity]:
    """Dependency factory: an authenticated agent holding ``permission`` (admins always pass)."""

    def dependency(identity: AgentIdentity = Depends(authenticate_agent)) -> AgentIdentity:
        if not identity.can(permission):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return dependency
