from pydantic import BaseModel, Field

from app.schemas.common import UTCDateTime


class CriterionInfo(BaseModel):
    id: str
    level: str
    name: str
    description: str | None = None
    weight: float
    auto_checkable: bool


class CriteriaListResponse(BaseModel):
    bronze: list[CriterionInfo]
    silver: list[CriterionInfo]
    gold: list[CriterionInfo]


class CriterionResultInfo(BaseModel):
    criteria_id: str
    name: str
    description: str | None = None
    level: str
    weight: float
    auto_checkable: bool
    status: str
    value: str | None = None


class CertificationStatusResponse(BaseModel):
    skill_id: str
    current_level: str
    next_level: str | None = None
    quality_score: float
    progress_percentage: int
    criteria_status: list[CriterionResultInfo]
    missing_criteria: list[str]
    can_request_upgrade: bool
    pending_request_id: str | None = None


class CertifyResponse(BaseModel):
    success: bool = True
    skill_id: str
    previous_level: str
    level: str
    promoted: bool
    quality_score: float
    status: CertificationStatusResponse


class CertificationRequestCreate(BaseModel):
    requested_level: str = Field(..., pattern="^(bronze|silver|gold)$")


class CertificationRequestInfo(BaseModel):
    request_id: str
    skill_id: str
    target_level: str
    status: str
    requested_by: str
    requested_at: UTCDateTime
    quality_score_at_request: float
    reviewed_by: str | None = None
    reviewed_at: UTCDateTime | None = None
    feedback: str | None = None


class CertificationReviewCreate(BaseModel):
    decision: str = Field(..., pattern="^(approved|rejected)$")
    reviewer_id: str = Field(..., min_length=1, max_length=36)
    feedback: str | None = Field(None, max_length=2000)


class CertificationReviewResponse(BaseModel):
    request: CertificationRequestInfo
    level: str | None = None
    promoted: bool = False


class ScoreResponse(BaseModel):
    skill_id: str
    quality_score: float
