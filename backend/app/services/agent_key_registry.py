"""
Agent API keys.

Keys look like ``<public prefix><random suffix>``. Only an indexable
fragment of the key and its Argon2id hash are stored; the plaintext is
returned once, at creation.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from argon2 import PasswordHasher
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.database import Deadline, persistence_guard
from app.models.agent_credential import AgentCredential
from app.models.user import User
from app.services.crypto_utils import hash_secret, random_suffix, verify_secret

logger = structlog.get_logger()

# Characters of the random suffix stored alongside the public prefix
PREFIX_FRAGMENT_LENGTH = 8
MAX_KEY_LENGTH = 128

PERMISSIONS = frozenset({"download", "certify", "publish"})
ADMIN_ROLE = "admin"


@dataclass(frozen=True, slots=True)
class AgentIdentity:
    """Result of a successful authentication."""

    key_id: str
    owner_id: str
    owner_role: str
    permissions: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return self.owner_role == ADMIN_ROLE

    def can(self, permission: str) -> bool:
        """Admins bypass capability checks entirely."""
        return self.is_admin or permission in self.permissions


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class AgentKeyRegistry:
    """Generates, verifies, authenticates and revokes agent keys."""

    def __init__(self, db: Session, hasher: PasswordHasher, key_prefix: str):
        if not key_prefix:
            raise ValueError("key_prefix must not be empty")
        self._db = db
        self._hasher = hasher
        self._key_prefix = key_prefix

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    def new_plaintext_key(self) -> str:
        """Fixed public prefix + 192 bits of URL-safe randomness."""
        return f"{self._key_prefix}{random_suffix()}"

    def lookup_fragment(self, key: str) -> str:
        return key[: len(self._key_prefix) + PREFIX_FRAGMENT_LENGTH]

    def generate(
        self,
        owner_id: str,
        permissions: Iterable[str],
        name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> tuple[str, AgentCredential]:
        """
        Create a key for ``owner_id``.

        Returns (plaintext_key, record). The plaintext is not retrievable later.
        """
        requested = sorted(set(permissions))
        unknown = set(requested) - PERMISSIONS
        if unknown:
            raise ValueError(f"Unknown permissions: {', '.join(sorted(unknown))}")
        if not requested:
            raise ValueError("At least one permission is required")

        deadline = Deadline(timeout)
        plaintext = self.new_plaintext_key()
        record = AgentCredential(
            owner_id=owner_id,
            name=name,
            key_prefix=self.lookup_fragment(plaintext),
            secret_hash=hash_secret(self._hasher, plaintext),
            permissions=requested,
        )

        with persistence_guard(self._db, "agent_key.generate", deadline):
            self._db.add(record)
            self._db.flush()
            deadline.check("agent_key.generate")
            self._db.commit()
            self._db.refresh(record)

        logger.info("agent_key_created", key_id=record.id, owner_id=owner_id, permissions=requested)
        return plaintext, record

    def verify(self, candidate_key: str, stored_hash: str) -> bool:
        """Compare a candidate against a stored hash. Never raises."""
        return verify_secret(self._hasher, candidate_key, stored_hash)

    def authenticate(self, candidate_key: str, *, timeout: float | None = None) -> AgentIdentity | None:
        """
        Resolve a presented key to its owner and capabilities.

        Keys without the public prefix are rejected before any database
        access; Argon2 verification only runs for prefix-matched candidates.
        """
        if (
            not isinstance(candidate_key, str)
            or not candidate_key.startswith(self._key_prefix)
            or len(candidate_key) <= len(self._key_prefix)
            or len(candidate_key) > MAX_KEY_LENGTH
        ):
            return None

        deadline = Deadline(timeout)
        fragment = self.lookup_fragment(candidate_key)
        with persistence_guard(self._db, "agent_key.authenticate", deadline):
            candidates = (
                self._db.execute(
                    select(AgentCredential).where(
                        AgentCredential.key_prefix == fragment,
                        AgentCredential.revoked_at.is_(None),
                    )
                )
                .scalars()
                .all()
            )

            for credential in candidates:
                if not self.verify(candidate_key, credential.secret_hash):
                    continue

                owner = self._db.get(User, credential.owner_id)
                if owner is None:
                    logger.warning("agent_key_owner_missing", key_id=credential.id)
                    return None

                credential.last_used_at = _utcnow()
                deadline.check("agent_key.authenticate")
                self._db.commit()

                logger.info("agent_key_authenticated", key_id=credential.id, owner_id=owner.id)
                return AgentIdentity(
                    key_id=credential.id,
                    owner_id=owner.id,
                    owner_role=owner.role,
                    permissions=frozenset(credential.permissions or ()),
                )

        return None

    def revoke(self, key_id: str, owner_id: str | None = None, *, timeout: float | None = None) -> bool:
        """Revoke an active key. Scoped to ``owner_id`` when given."""
        stmt = update(AgentCredential).where(
            AgentCredential.id == key_id,
            AgentCredential.revoked_at.is_(None),
        )
        if owner_id is not None:
            stmt = stmt.where(AgentCredential.owner_id == owner_id)

        deadline = Deadline(timeout)
        with persistence_guard(self._db, "agent_key.revoke", deadline):
            result = self._db.execute(
                stmt.values(revoked_at=_utcnow()).execution_options(synchronize_session=False)
            )
            deadline.check("agent_key.revoke")
            self._db.commit()

        revoked = result.rowcount == 1
        if revoked:
            logger.info("agent_key_revoked", key_id=key_id)
        return revoked

    def list_keys(
        self, owner_id: str | None = None, *, timeout: float | None = None
    ) -> list[AgentCredential]:
        """Keys newest first, optionally for a single owner."""
        deadline = Deadline(timeout)
        stmt = select(AgentCredential).order_by(AgentCredential.created_at.desc())
        if owner_id is not None:
            stmt = stmt.where(AgentCredential.owner_id == owner_id)
        with persistence_guard(self._db, "agent_key.list", deadline):
            keys = list(self._db.execute(stmt).scalars().all())
            deadline.check("agent_key.list")
        return keys
