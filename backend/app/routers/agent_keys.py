import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db, persistence_guard
from app.middleware.rate_limit import limiter
from app.models.user import User
from app.routers.deps import get_agent_registry, verify_internal_api_key
from app.schemas.agent_key import (
    AgentKeyCreate,
    AgentKeyCreateResponse,
    AgentKeyInfo,
    AgentKeyListResponse,
    AgentKeyRevokeResponse,
)
from app.services.agent_key_registry import AgentKeyRegistry

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
logger = structlog.get_logger()


@router.post("/internal/agent-keys", response_model=AgentKeyCreateResponse, status_code=201)
@limiter.limit(settings.rate_limit_internal)
async def create_agent_key(
    request: Request,
    key_data: AgentKeyCreate,
    db: Session = Depends(get_db),
    registry: AgentKeyRegistry = Depends(get_agent_registry),
):
    """
    Create an agent key (internal endpoint).

    The plaintext key is in this response and nowhere else.
    """
    with persistence_guard(db, "user.lookup"):
        owner = db.get(User, key_data.owner_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Owner not found")

    try:
        plaintext, record = registry.generate(
            key_data.owner_id,
            key_data.permissions,
            name=key_data.name,
            timeout=settings.persistence_timeout_seconds,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AgentKeyCreateResponse(
        key=plaintext,
        key_id=record.id,
        owner_id=record.owner_id,
        permissions=list(record.permissions),
        created_at=record.created_at,
    )


@router.get("/internal/agent-keys", response_model=AgentKeyListResponse)
@limiter.limit(settings.rate_limit_internal)
async def list_agent_keys(
    request: Request,
    owner_id: str | None = Query(None, max_length=36),
    registry: AgentKeyRegistry = Depends(get_agent_registry),
):
    keys = registry.list_keys(owner_id, timeout=settings.persistence_timeout_seconds)
    return AgentKeyListResponse(
        keys=[
            AgentKeyInfo(
                key_id=k.id,
                owner_id=k.owner_id,
                name=k.name,
                key_prefix=k.key_prefix,
                permissions=list(k.permissions or ()),
                created_at=k.created_at,
                last_used_at=k.last_used_at,
                revoked_at=k.revoked_at,
            )
            for k in keys
        ]
    )


@router.delete("/internal/agent-keys/{key_id}", response_model=AgentKeyRevokeResponse)
@limiter.limit(settings.rate_limit_internal)
async def revoke_agent_key(
    request: Request,
    key_id: str,
    owner_id: str | None = Query(None, max_length=36),
    registry: AgentKeyRegistry = Depends(get_agent_registry),
):
    revoked = registry.revoke(key_id, owner_id=owner_id, timeout=settings.persistence_timeout_seconds)
    if not revoked:
        raise HTTPException(status_code=404, detail="Active key not found")
    return AgentKeyRevokeResponse(key_id=key_id, revoked=True)
