from app.schemas.agent_key import (
    AgentKeyCreate,
    AgentKeyCreateResponse,
    AgentKeyInfo,
    AgentKeyListResponse,
    AgentKeyRevokeResponse,
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
from app.schemas.download import (
    ActiveDownloadToken,
    ActiveDownloadTokenResponse,
    DownloadErrorResponse,
    DownloadTokenCreate,
    DownloadTokenCreateResponse,
)
from app.schemas.identity import VerificationTokenCreate, VerificationTokenResponse

__all__ = [
    "ActiveDownloadToken",
    "ActiveDownloadTokenResponse",
    "AgentKeyCreate",
    "AgentKeyCreateResponse",
    "AgentKeyInfo",
    "AgentKeyListResponse",
    "AgentKeyRevokeResponse",
    "CertificationRequestCreate",
    "CertificationRequestInfo",
    "CertificationReviewCreate",
    "CertificationReviewResponse",
    "CertificationStatusResponse",
    "CertifyResponse",
    "CriteriaListResponse",
    "CriterionInfo",
    "CriterionResultInfo",
    "DownloadErrorResponse",
    "DownloadTokenCreate",
    "DownloadTokenCreateResponse",
    "ScoreResponse",
    "VerificationTokenCreate",
    "VerificationTokenResponse",
]
