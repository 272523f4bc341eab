from pydantic import BaseModel, Field

from app.schemas.common import UTCDateTime


class AgentKeyCreate(BaseModel):
    """Internal request to create an agent key (admin tooling)."""

    owner_id: str = Field(..., min_length=1, max_length=36)
    permissions: list[str] = Field(..., min_length=1)
    name: str | None = Field(None, max_length=100)


class AgentKeyCreateResponse(BaseModel):
    """Response containing the plaintext key (only returned once at creation)."""

    key: str
    key_id: str
    owner_id: str
    permissions: list[str]
    created_at: UTCDateTime


class AgentKeyInfo(BaseModel):
    """Key metadata; never includes the hash."""

    key_id: str
    owner_id: str
    name: str | None = None
    key_prefix: str
    permissions: list[str]
    created_at: UTCDateTime
    last_used_at: UTCDateTime | None = None
    revoked_at: UTCDateTime | None = None


class AgentKeyListResponse(BaseModel):
    keys: list[AgentKeyInfo]


class AgentKeyRevokeResponse(BaseModel):
    key_id: str
    revoked: bool
