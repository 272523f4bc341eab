from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db, persistence_guard
from app.middleware.rate_limit import limiter
from app.models.user import User
from app.routers.deps import get_token_codec, verify_internal_api_key
from app.schemas.identity import VerificationTokenCreate, VerificationTokenResponse
from app.services.errors import PersistenceError
from app.services.token_codec import TokenCodec

router = APIRouter()
logger = structlog.get_logger()


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_base_url.rstrip('/')}{path}", status_code=307)


@router.post(
    "/internal/verification-tokens",
    response_model=VerificationTokenResponse,
    status_code=201,
)
@limiter.limit(settings.rate_limit_internal)
async def create_verification_token(
    request: Request,
    token_data: VerificationTokenCreate,
    codec: TokenCodec = Depends(get_token_codec),
    _: None = Depends(verify_internal_api_key),
):
    """
    Issue an email confirmation token (internal endpoint).

    Called by the email sender; the token ends up in the confirmation link.
    """
    token, expires_at = codec.issue_with_expiry(
        token_data.user_id, settings.identity_token_ttl_seconds * 1000
    )
    logger.info("verification_token_issued", user_id=token_data.user_id)
    return VerificationTokenResponse(token=token, expires_at=expires_at)


@router.get("/auth/verify-email")
@limiter.limit(settings.rate_limit_verify)
async def verify_email(
    request: Request,
    token: str | None = Query(None),
    codec: TokenCodec = Depends(get_token_codec),
    db: Session = Depends(get_db),
):
    """
    Confirm an email address from a signed link.

    Always answers with a redirect; the error discriminator is informational.
    """
    if not token:
        return _redirect("/auth/verify-email?error=missing-token")

    user_id = codec.verify(token)
    if user_id is None:
        logger.info("email_verification_rejected")
        return _redirect("/auth/verify-email?error=invalid-token")

    try:
        with persistence_guard(db, "user.verify_email"):
            user = db.get(User, user_id)
            if user is None:
                logger.warning("email_verification_unknown_user", user_id=user_id)
                return _redirect("/auth/verify-email?error=invalid-token")
            if user.email_verified_at is None:
                user.email_verified_at = datetime.now(UTC).replace(tzinfo=None)
                db.commit()
    except PersistenceError:
        return _redirect("/auth/verify-email?error=server")

    logger.info("email_verified", user_id=user_id)
    return _redirect("/login?verified=true")
