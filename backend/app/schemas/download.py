from pydantic import BaseModel, Field

from app.schemas.common import UTCDateTime


class DownloadTokenCreate(BaseModel):
    skill_id: str = Field(..., min_length=1, max_length=36)


class DownloadTokenCreateResponse(BaseModel):
    """The plaintext grant token; also retrievable later through the active-grant lookup."""

    token: str
    expires_at: UTCDateTime


class ActiveDownloadToken(BaseModel):
    token: str
    expires_at: UTCDateTime
    used_count: int
    max_uses: int


class ActiveDownloadTokenResponse(BaseModel):
    token: ActiveDownloadToken | None = None


class DownloadErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
