"""
Persisted, consumable download grants.

Unlike identity tokens, grants are stored: they must be revocable,
use-limited and auditable. The plaintext token is the lookup key.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.config import Settings
from app.database import Deadline, persistence_guard
from app.models.download_grant import DownloadGrant
from app.models.purchase import Purchase
from app.models.skill import Skill
from app.services.crypto_utils import random_suffix

logger = structlog.get_logger()

TOKEN_PREFIX = "dl_"
TOKEN_MAX_LENGTH = 64


class RedemptionStatus(StrEnum):
    REDEEMED = "redeemed"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    NOT_PURCHASED = "not_purchased"
    ARTIFACT_UNAVAILABLE = "artifact_unavailable"


@dataclass(frozen=True, slots=True)
class ArtifactLocation:
    owner_id: str
    artifact_id: str
    file_url: str
    title: str
    slug: str
    version: str
    uses_remaining: int

    @property
    def filename(self) -> str:
        return f"{self.slug}-{self.version}.zip"


@dataclass(frozen=True, slots=True)
class Redemption:
    status: RedemptionStatus
    location: ArtifactLocation | None = None

    @property
    def ok(self) -> bool:
        return self.status is RedemptionStatus.REDEEMED


@dataclass(frozen=True, slots=True)
class IssuedGrant:
    token: str
    expires_at: datetime
    max_uses: int


@dataclass(frozen=True, slots=True)
class ActiveGrant:
    token: str
    expires_at: datetime
    use_count: int
    max_uses: int


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def has_purchase(db: Session, user_id: str, skill_id: str) -> bool:
    """Whether ``user_id`` holds a purchase record for ``skill_id``."""
    with persistence_guard(db, "purchase.lookup"):
        found = db.execute(
            select(Purchase.id).where(Purchase.user_id == user_id, Purchase.skill_id == skill_id)
        ).first()
    return found is not None


class DownloadTokenStore:
    """Issues, looks up and redeems download grants."""

    def __init__(self, db: Session, settings: Settings):
        self._db = db
        self._ttl = timedelta(days=settings.download_token_ttl_days)
        self._max_uses = settings.download_token_max_uses

    def issue(self, owner_id: str, artifact_id: str, *, timeout: float | None = None) -> IssuedGrant:
        """
        Create a new grant for a purchased skill.

        The purchase check belongs to the caller. Older grants stay valid.
        Returns the plaintext token.
        """
        deadline = Deadline(timeout)
        token = f"{TOKEN_PREFIX}{random_suffix()}"
        expires_at = _utcnow() + self._ttl

        grant = DownloadGrant(
            token=token,
            owner_id=owner_id,
            artifact_id=artifact_id,
            expires_at=expires_at,
            max_uses=self._max_uses,
            use_count=0,
        )

        with persistence_guard(self._db, "download_grant.issue", deadline):
            self._db.add(grant)
            self._db.flush()
            deadline.check("download_grant.issue")
            self._db.commit()

        logger.info(
            "download_grant_issued",
            grant_id=grant.id,
            owner_id=owner_id,
            artifact_id=artifact_id,
            max_uses=self._max_uses,
        )
        return IssuedGrant(token=token, expires_at=expires_at, max_uses=self._max_uses)

    def find_active(
        self, owner_id: str, artifact_id: str, *, timeout: float | None = None
    ) -> ActiveGrant | None:
        """Most recently created active grant for (owner, artifact), if any."""
        deadline = Deadline(timeout)
        now = _utcnow()
        with persistence_guard(self._db, "download_grant.find_active", deadline):
            grant = self._db.execute(
                select(DownloadGrant)
                .where(
                    DownloadGrant.owner_id == owner_id,
                    DownloadGrant.artifact_id == artifact_id,
                    DownloadGrant.revoked.is_(False),
                    DownloadGrant.expires_at > now,
                    DownloadGrant.use_count < DownloadGrant.max_uses,
                )
                .order_by(DownloadGrant.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            deadline.check("download_grant.find_active")

        if grant is None:
            return None
        return ActiveGrant(
            token=grant.token,
            expires_at=grant.expires_at,
            use_count=grant.use_count,
            max_uses=grant.max_uses,
        )

    def redeem(self, token: str, *, timeout: float | None = None) -> Redemption:
        """
        Consume one use of a grant and return where the archive lives.

        The increment is a single conditional UPDATE, so concurrent
        redemptions of the same token are linearized by the database: with
        one use left exactly one caller succeeds. Entitlement and archive
        checks run inside the same transaction and roll the increment back
        when they fail.
        """
        if not isinstance(token, str) or not token.startswith(TOKEN_PREFIX) or len(token) > TOKEN_MAX_LENGTH:
            return Redemption(RedemptionStatus.MALFORMED)

        deadline = Deadline(timeout)
        now = _utcnow()

        with persistence_guard(self._db, "download_grant.redeem", deadline):
            deadline.check("download_grant.redeem")
            claimed = self._db.execute(
                update(DownloadGrant)
                .where(
                    DownloadGrant.token == token,
                    DownloadGrant.revoked.is_(False),
                    DownloadGrant.expires_at > now,
                    DownloadGrant.use_count < DownloadGrant.max_uses,
                )
                .values(use_count=DownloadGrant.use_count + 1)
                .returning(
                    DownloadGrant.owner_id,
                    DownloadGrant.artifact_id,
                    DownloadGrant.use_count,
                    DownloadGrant.max_uses,
                )
                .execution_options(synchronize_session=False)
            ).first()

            if claimed is None:
                self._db.rollback()
                status = self._classify_failure(token, now)
                logger.info("download_grant_rejected", status=str(status), token_prefix=token[:8])
                return Redemption(status)

            owner_id, artifact_id, use_count, max_uses = claimed
            status, skill = self._resolve_artifact(owner_id, artifact_id)
            if status is not RedemptionStatus.REDEEMED:
                self._db.rollback()
                logger.info(
                    "download_grant_rejected",
                    status=str(status),
                    owner_id=owner_id,
                    artifact_id=artifact_id,
                )
                return Redemption(status)

            location = ArtifactLocation(
                owner_id=owner_id,
                artifact_id=artifact_id,
                file_url=skill.file_url,
                title=skill.title,
                slug=skill.slug,
                version=skill.version,
                uses_remaining=max_uses - use_count,
            )
            deadline.check("download_grant.redeem")
            self._db.commit()

        logger.info(
            "download_grant_redeemed",
            owner_id=owner_id,
            artifact_id=artifact_id,
            use_count=use_count,
            max_uses=max_uses,
        )
        return Redemption(RedemptionStatus.REDEEMED, location)

    def _classify_failure(self, token: str, now: datetime) -> RedemptionStatus:
        grant = self._db.execute(
            select(DownloadGrant).where(DownloadGrant.token == token)
        ).scalar_one_or_none()
        if grant is None:
            return RedemptionStatus.NOT_FOUND
        if grant.revoked:
            return RedemptionStatus.REVOKED
        if now >= grant.expires_at:
            return RedemptionStatus.EXPIRED
        # Otherwise a concurrent redemption took the last use
        return RedemptionStatus.EXHAUSTED

    def _resolve_artifact(self, owner_id: str, artifact_id: str) -> tuple[RedemptionStatus, Skill | None]:
        purchase = self._db.execute(
            select(Purchase.id).where(Purchase.user_id == owner_id, Purchase.skill_id == artifact_id)
        ).first()
        if purchase is None:
            return RedemptionStatus.NOT_PURCHASED, None

        skill = self._db.get(Skill, artifact_id)
        if skill is None or not skill.file_url:
            return RedemptionStatus.ARTIFACT_UNAVAILABLE, None
        return RedemptionStatus.REDEEMED, skill
