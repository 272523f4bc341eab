"""Tests for agent key generation, verification and authentication."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from argon2 import PasswordHasher
from sqlalchemy import select

from app.models.agent_credential import AgentCredential
from app.services.agent_key_registry import PREFIX_FRAGMENT_LENGTH, AgentKeyRegistry
from app.services.crypto_utils import build_password_hasher, hash_secret
from app.services.errors import PersistenceTimeoutError
from tests.test_utils import create_user, make_settings, utcnow

PREFIX = "clf_sk_live_"


@pytest.fixture
def owner(db_session):
    return create_user(db_session)


class TestGenerate:
    def test_generate_returns_plaintext_once(self, registry, owner):
        plaintext, record = registry.generate(owner.id, ["download"], name="ci-agent")

        assert plaintext.startswith(PREFIX)
        assert len(plaintext) - len(PREFIX) == 32
        assert record.key_prefix == plaintext[: len(PREFIX) + PREFIX_FRAGMENT_LENGTH]
        assert record.secret_hash.startswith("$argon2id$")
        assert plaintext not in record.secret_hash
        assert record.permissions == ["download"]
        assert record.name == "ci-agent"
        assert record.revoked_at is None

    def test_permissions_are_deduplicated_and_sorted(self, registry, owner):
        _, record = registry.generate(owner.id, ["publish", "download", "publish"])
        assert record.permissions == ["download", "publish"]

    def test_unknown_permission_rejected(self, registry, owner):
        with pytest.raises(ValueError, match="Unknown permissions: admin"):
            registry.generate(owner.id, ["download", "admin"])

    def test_empty_permissions_rejected(self, registry, owner):
        with pytest.raises(ValueError):
            registry.generate(owner.id, [])

    def test_empty_prefix_rejected(self, db_session):
        with pytest.raises(ValueError):
            AgentKeyRegistry(db_session, PasswordHasher(), "")

    def test_ten_thousand_keys_and_hashes_are_distinct(self, registry, test_settings):
        hasher = build_password_hasher(test_settings)
        keys = [registry.new_plaintext_key() for _ in range(10_000)]
        hashes = {hash_secret(hasher, key) for key in keys}

        assert len(set(keys)) == 10_000
        assert len(hashes) == 10_000
        assert all(key.startswith(PREFIX) for key in keys)


class TestVerify:
    @pytest.fixture
    def stored(self, registry, owner):
        return registry.generate(owner.id, ["download"])

    def test_correct_key(self, registry, stored):
        plaintext, record = stored
        assert registry.verify(plaintext, record.secret_hash) is True

    @pytest.mark.parametrize("candidate", ["", "x", PREFIX, PREFIX + "wrong", "\ud800", "k" * 5000])
    def test_wrong_candidates(self, registry, stored, candidate):
        _, record = stored
        assert registry.verify(candidate, record.secret_hash) is False

    @pytest.mark.parametrize("stored_hash", ["", "not-a-hash", "$argon2id$garbage", None])
    def test_malformed_stored_hash(self, registry, stored, stored_hash):
        plaintext, _ = stored
        assert registry.verify(plaintext, stored_hash) is False

    @pytest.mark.parametrize("candidate", [None, 123, b"bytes"])
    def test_non_string_candidate(self, registry, stored, candidate):
        _, record = stored
        assert registry.verify(candidate, record.secret_hash) is False


class TestAuthenticate:
    def test_valid_key_resolves_owner_and_permissions(self, db_session, registry, owner):
        plaintext, record = registry.generate(owner.id, ["download", "certify"])

        identity = registry.authenticate(plaintext)

        assert identity.key_id == record.id
        assert identity.owner_id == owner.id
        assert identity.owner_role == "user"
        assert identity.permissions == frozenset({"download", "certify"})
        assert identity.can("download")
        assert not identity.can("publish")

        db_session.refresh(record)
        assert record.last_used_at is not None

    @pytest.mark.parametrize(
        "candidate",
        ["", "sk_live_abcdef", "clf_sk_test_abcdef", PREFIX, PREFIX + "x" * 200, None, 7],
    )
    def test_prefix_short_circuit_skips_persistence(self, candidate):
        db = MagicMock()
        registry = AgentKeyRegistry(db, MagicMock(), PREFIX)

        assert registry.authenticate(candidate) is None
        db.execute.assert_not_called()
        db.get.assert_not_called()

    def test_unknown_key(self, registry, owner):
        registry.generate(owner.id, ["download"])
        assert registry.authenticate(PREFIX + "unknownunknownunknownunknownabcd") is None

    def test_tampered_key(self, registry, owner):
        plaintext, _ = registry.generate(owner.id, ["download"])
        tampered = plaintext[:-1] + ("A" if plaintext[-1] != "A" else "B")
        assert registry.authenticate(tampered) is None

    def test_revoked_key(self, registry, owner):
        plaintext, record = registry.generate(owner.id, ["download"])
        assert registry.revoke(record.id) is True
        assert registry.authenticate(plaintext) is None

    def test_missing_owner(self, db_session, registry, owner):
        plaintext, _ = registry.generate(owner.id, ["download"])
        db_session.delete(owner)
        db_session.commit()

        assert registry.authenticate(plaintext) is None

    def test_fragment_collision_resolves_by_hash(self, db_session, registry, owner, test_settings):
        plaintext, record = registry.generate(owner.id, ["download"])
        other = create_user(db_session)
        db_session.add(
            AgentCredential(
                owner_id=other.id,
                key_prefix=record.key_prefix,
                secret_hash=hash_secret(build_password_hasher(test_settings), plaintext + "other"),
                permissions=["certify"],
            )
        )
        db_session.commit()

        identity = registry.authenticate(plaintext)

        assert identity.owner_id == owner.id

    def test_admin_bypasses_capabilities(self, db_session, registry):
        admin = create_user(db_session, role="admin")
        plaintext, _ = registry.generate(admin.id, ["download"])

        identity = registry.authenticate(plaintext)

        assert identity.is_admin
        assert identity.can("certify")
        assert identity.can("publish")

    def test_custom_prefix(self, db_session, owner):
        settings = make_settings(agent_key_prefix="ag_test_")
        registry = AgentKeyRegistry(db_session, build_password_hasher(settings), settings.agent_key_prefix)
        plaintext, _ = registry.generate(owner.id, ["download"])

        assert plaintext.startswith("ag_test_")
        assert registry.authenticate(plaintext).owner_id == owner.id


class TestRevokeAndList:
    def test_revoke_only_once(self, registry, owner):
        _, record = registry.generate(owner.id, ["download"])
        assert registry.revoke(record.id) is True
        assert registry.revoke(record.id) is False

    def test_revoke_scoped_to_owner(self, db_session, registry, owner):
        _, record = registry.generate(owner.id, ["download"])
        stranger = create_user(db_session)

        assert registry.revoke(record.id, owner_id=stranger.id) is False
        assert registry.revoke(record.id, owner_id=owner.id) is True

    def test_revoke_unknown(self, registry):
        assert registry.revoke("missing-id") is False

    def test_list_newest_first_and_filtered(self, db_session, registry, owner):
        _, older = registry.generate(owner.id, ["download"], name="older")
        older.created_at = utcnow() - timedelta(hours=1)
        db_session.commit()
        _, newer = registry.generate(owner.id, ["certify"], name="newer")
        other = create_user(db_session)
        registry.generate(other.id, ["publish"])

        keys = registry.list_keys(owner.id)

        assert [k.name for k in keys] == ["newer", "older"]
        assert len(registry.list_keys()) == 3


class TestDeadlines:
    def test_generate_expired_deadline_persists_nothing(self, db_session, registry, owner):
        with pytest.raises(PersistenceTimeoutError):
            registry.generate(owner.id, ["download"], timeout=0)

        assert db_session.execute(select(AgentCredential)).first() is None

    def test_authenticate_expired_deadline_leaves_last_used_untouched(self, db_session, registry, owner):
        plaintext, record = registry.generate(owner.id, ["download"])

        with pytest.raises(PersistenceTimeoutError):
            registry.authenticate(plaintext, timeout=0)

        db_session.refresh(record)
        assert record.last_used_at is None

    def test_revoke_expired_deadline_keeps_key_active(self, db_session, registry, owner):
        plaintext, record = registry.generate(owner.id, ["download"])

        with pytest.raises(PersistenceTimeoutError):
            registry.revoke(record.id, timeout=0)

        db_session.refresh(record)
        assert record.revoked_at is None
        assert registry.authenticate(plaintext) is not None

    def test_list_expired_deadline(self, registry, owner):
        registry.generate(owner.id, ["download"])

        with pytest.raises(PersistenceTimeoutError):
            registry.list_keys(owner.id, timeout=0)

    def test_generous_deadline(self, registry, owner):
        plaintext, _ = registry.generate(owner.id, ["download"], timeout=30)

        assert registry.authenticate(plaintext, timeout=30) is not None
