from pydantic import BaseModel, Field

from app.schemas.common import UTCDateTime


class VerificationTokenCreate(BaseModel):
    """Internal request from the email sender."""

    user_id: str = Field(..., min_length=1, max_length=36)


class VerificationTokenResponse(BaseModel):
    token: str
    expires_at: UTCDateTime
