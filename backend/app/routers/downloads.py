from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.middleware.rate_limit import limiter
from app.routers.deps import get_artifact_fetcher, get_download_store, require_agent
from app.schemas.download import (
    ActiveDownloadToken,
    ActiveDownloadTokenResponse,
    DownloadErrorResponse,
    DownloadTokenCreate,
    DownloadTokenCreateResponse,
)
from app.services.agent_key_registry import AgentIdentity
from app.services.download_token_store import DownloadTokenStore, RedemptionStatus, has_purchase
from app.services.errors import PersistenceError
from app.services.storage_service import ArtifactFetcher

router = APIRouter()
logger = structlog.get_logger()


def download_error(error: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=DownloadErrorResponse(error=error, message=message).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@router.post("/skills/download-token", response_model=DownloadTokenCreateResponse, status_code=201)
@limiter.limit(settings.rate_limit_agent)
async def create_download_token(
    request: Request,
    token_data: DownloadTokenCreate,
    db: Session = Depends(get_db),
    store: DownloadTokenStore = Depends(get_download_store),
    agent: AgentIdentity = Depends(require_agent("download")),
):
    """Issue a download grant for a skill the agent's owner has purchased."""
    if not has_purchase(db, agent.owner_id, token_data.skill_id):
        raise HTTPException(status_code=403, detail="Skill not purchased")

    grant = store.issue(agent.owner_id, token_data.skill_id, timeout=settings.persistence_timeout_seconds)
    return DownloadTokenCreateResponse(token=grant.token, expires_at=grant.expires_at)


@router.get("/skills/download-token", response_model=ActiveDownloadTokenResponse)
@limiter.limit(settings.rate_limit_agent)
async def get_active_download_token(
    request: Request,
    skill_id: str = Query(..., min_length=1, max_length=36),
    store: DownloadTokenStore = Depends(get_download_store),
    agent: AgentIdentity = Depends(require_agent("download")),
):
    """Return the newest still-usable grant, or ``{"token": null}``."""
    active = store.find_active(agent.owner_id, skill_id, timeout=settings.persistence_timeout_seconds)
    if active is None:
        return ActiveDownloadTokenResponse(token=None)
    return ActiveDownloadTokenResponse(
        token=ActiveDownloadToken(
            token=active.token,
            expires_at=active.expires_at,
            used_count=active.use_count,
            max_uses=active.max_uses,
        )
    )


@router.get(
    "/skills/download",
    responses={
        200: {"content": {"application/zip": {}}, "description": "Skill archive"},
        400: {"model": DownloadErrorResponse},
        404: {"model": DownloadErrorResponse},
        500: {"model": DownloadErrorResponse},
    },
)
@limiter.limit(settings.rate_limit_downloads)
async def download_skill(
    request: Request,
    token: str | None = Query(None),
    store: DownloadTokenStore = Depends(get_download_store),
    fetcher: ArtifactFetcher = Depends(get_artifact_fetcher),
):
    """
    Redeem a download grant and stream the skill archive.

    Every grant failure (unknown, revoked, expired, exhausted, refunded) is
    the same INVALID_TOKEN answer.
    """
    if not token:
        return download_error("MISSING_TOKEN", "The token parameter is required", 400)

    try:
        redemption = store.redeem(token, timeout=settings.persistence_timeout_seconds)
    except PersistenceError:
        return download_error("INTERNAL_ERROR", "Internal server error", 500)

    if redemption.status is RedemptionStatus.ARTIFACT_UNAVAILABLE:
        return download_error("FILE_NOT_FOUND", "Skill archive not found", 404)
    if not redemption.ok:
        return download_error("INVALID_TOKEN", "Download token is invalid, expired or used up", 404)

    location = redemption.location
    content = await fetcher.fetch(location.file_url)
    if content is None:
        return download_error("FILE_NOT_FOUND", "Skill archive not found", 404)

    logger.info(
        "skill_downloaded",
        skill_id=location.artifact_id,
        owner_id=location.owner_id,
        uses_remaining=location.uses_remaining,
    )
    return Response(
        content=content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{location.filename}"',
            "X-Skill-Name": quote(location.title),
            "X-Skill-Version": location.version,
            "Cache-Control": "no-store",
        },
    )
