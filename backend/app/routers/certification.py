import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db, persistence_guard
from app.middleware.rate_limit import limiter
from app.models.certification import CertificationRequest
from app.models.skill import Skill
from app.routers.deps import (
    authenticate_agent,
    get_certification_engine,
    require_agent,
    verify_internal_api_key,
)
from app.schemas.certification import (
    CertificationRequestCreate,
    CertificationRequestInfo,
    CertificationReviewCreate,
    CertificationReviewResponse,
    CertificationStatusResponse,
    CertifyResponse,
    CriteriaListResponse,
    CriterionInfo,
    CriterionResultInfo,
    ScoreResponse,
)
from app.services.agent_key_registry import AgentIdentity
from app.services.certification_checks import Level
from app.services.certification_engine import CertificationEngine, CertificationStatus

router = APIRouter()
logger = structlog.get_logger()


def status_response(status: CertificationStatus) -> CertificationStatusResponse:
    return CertificationStatusResponse(
        skill_id=status.skill_id,
        current_level=str(status.level),
        next_level=str(status.next_level) if status.next_level else None,
        quality_score=status.quality_score,
        progress_percentage=status.progress_percentage,
        criteria_status=[
            CriterionResultInfo(
                criteria_id=r.criterion_id,
                name=r.name,
                description=r.description,
                level=str(r.level),
                weight=r.weight,
                auto_checkable=r.auto_checkable,
                status=str(r.status),
                value=r.value,
            )
            for r in status.criteria_results
        ],
        missing_criteria=status.missing_criteria,
        can_request_upgrade=status.can_request_upgrade,
        pending_request_id=status.pending_request_id,
    )


def request_info(request: CertificationRequest) -> CertificationRequestInfo:
    return CertificationRequestInfo(
        request_id=request.id,
        skill_id=request.skill_id,
        target_level=request.target_level,
        status=request.status,
        requested_by=request.requested_by,
        requested_at=request.requested_at,
        quality_score_at_request=request.quality_score_at_request,
        reviewed_by=request.reviewed_by,
        reviewed_at=request.reviewed_at,
        feedback=request.feedback,
    )


@router.get("/certification/criteria", response_model=CriteriaListResponse)
async def list_criteria(engine: CertificationEngine = Depends(get_certification_engine)):
    """Criteria per level, heaviest first."""
    grouped = engine.list_criteria(timeout=settings.persistence_timeout_seconds)

    def infos(level: Level) -> list[CriterionInfo]:
        return [
            CriterionInfo(
                id=c.id,
                level=c.level,
                name=c.name,
                description=c.description,
                weight=c.weight,
                auto_checkable=c.auto_checkable,
            )
            for c in grouped[level]
        ]

    return CriteriaListResponse(
        bronze=infos(Level.BRONZE),
        silver=infos(Level.SILVER),
        gold=infos(Level.GOLD),
    )


@router.get("/skills/{skill_id}/certification-status", response_model=CertificationStatusResponse)
async def get_certification_status(
    skill_id: str,
    engine: CertificationEngine = Depends(get_certification_engine),
):
    status = engine.evaluate(skill_id, timeout=settings.persistence_timeout_seconds)
    return status_response(status)


@router.post("/skills/{skill_id}/certify", response_model=CertifyResponse)
@limiter.limit(settings.rate_limit_agent)
async def certify_skill(
    request: Request,
    skill_id: str,
    engine: CertificationEngine = Depends(get_certification_engine),
    agent: AgentIdentity = Depends(require_agent("certify")),
):
    """Run automatic certification: promote as far as criteria allow, then rescore."""
    report = engine.certify(skill_id, agent.owner_id, timeout=settings.persistence_timeout_seconds)
    return CertifyResponse(
        skill_id=skill_id,
        previous_level=str(report.promotion.previous),
        level=str(report.promotion.level),
        promoted=report.promotion.changed,
        quality_score=report.quality_score,
        status=status_response(report.status),
    )


@router.post(
    "/skills/{skill_id}/certification-request",
    response_model=CertificationRequestInfo,
    status_code=201,
)
@limiter.limit(settings.rate_limit_agent)
async def request_certification(
    request: Request,
    skill_id: str,
    request_data: CertificationRequestCreate,
    db: Session = Depends(get_db),
    engine: CertificationEngine = Depends(get_certification_engine),
    agent: AgentIdentity = Depends(authenticate_agent),
):
    """Open a manual review request. Only the skill's creator (or an admin) may ask."""
    with persistence_guard(db, "skill.lookup"):
        skill = db.get(Skill, skill_id)
    if skill is None:
        raise HTTPException(status_code=404, detail="Skill not found")
    if skill.creator_id != agent.owner_id and not agent.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    created = engine.request_review(
        skill_id,
        agent.owner_id,
        request_data.requested_level,
        timeout=settings.persistence_timeout_seconds,
    )
    return request_info(created)


@router.post(
    "/internal/certification-requests/{request_id}/review",
    response_model=CertificationReviewResponse,
)
@limiter.limit(settings.rate_limit_internal)
async def review_certification_request(
    request: Request,
    request_id: str,
    review_data: CertificationReviewCreate,
    engine: CertificationEngine = Depends(get_certification_engine),
    _: None = Depends(verify_internal_api_key),
):
    reviewed, promotion = engine.review_request(
        request_id,
        review_data.reviewer_id,
        review_data.decision,
        review_data.feedback,
        timeout=settings.persistence_timeout_seconds,
    )
    return CertificationReviewResponse(
        request=request_info(reviewed),
        level=str(promotion.level) if promotion else None,
        promoted=promotion.changed if promotion else False,
    )


@router.post("/internal/skills/{skill_id}/certification/score", response_model=ScoreResponse)
@limiter.limit(settings.rate_limit_internal)
async def rescore_skill(
    request: Request,
    skill_id: str,
    engine: CertificationEngine = Depends(get_certification_engine),
    _: None = Depends(verify_internal_api_key),
):
    quality_score = engine.score(skill_id, timeout=settings.persistence_timeout_seconds)
    return ScoreResponse(skill_id=skill_id, quality_score=quality_score)
