"""Tests for the per-user credential vault (/settings/api-keys).

Covers:
- Upsert semantics: one row per (user, provider), id kept, fresh nonce, 201 vs 200
- Masking: list carries a fixed mask, reveal shows first/last four characters
- Ownership: another user's key id is indistinguishable from a missing one (404)
- Resolution: usage accounting, inactive keys, undecryptable keys
- No ciphertext, nonce, hash or plaintext in responses or logs
"""

import logging
from uuid import uuid4

import pytest
from sqlalchemy import text

from querygenie.errors import ApiErrorCode, NotFoundError
from querygenie.services import user_keys as user_keys_service
from querygenie.services.user_keys import LIST_MASK, REVEAL_MASK, mask_for_reveal
from tests.factories import create_test_user
from tests.helpers import assert_error, auth_headers

OPENAI_KEY = "sk-test-openai-1234567890abcdef"
ANTHROPIC_KEY = "sk-ant-REDACTED"
SECRET_FIELDS = {"encrypted_key", "key_nonce", "master_key_version", "key_hash", "key"}


@pytest.fixture(autouse=True)
def _vault_key(master_key):
    """Every test in this module runs with the deterministic master key."""
    return master_key


def key_row(session, key_id):
    return session.execute(
        text("""
            SELECT encrypted_key, key_nonce, key_hash, usage_count, last_used_at, is_active
            FROM user_api_keys WHERE id = :id
        """),
        {"id": key_id},
    ).fetchone()


class TestMaskForReveal:
    def test_prefix_and_suffix_visible(self):
        assert mask_for_reveal("sk-abcdefgh1234") == "sk-a" + REVEAL_MASK + "1234"

    def test_short_key_fully_masked(self):
        assert mask_for_reveal("12345678") == REVEAL_MASK


# =============================================================================
# Service
# =============================================================================


class TestUpsert:
    def test_first_submit_creates(self, db_session):
        user_id, _ = create_test_user(db_session)

        key_out, created = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "Work key", OPENAI_KEY
        )

        assert created is True
        assert key_out.provider == "openai"
        assert key_out.masked_key == LIST_MASK
        assert key_out.is_active is True
        assert key_out.usage_count == 0
        row = key_row(db_session, key_out.id)
        assert OPENAI_KEY.encode() not in bytes(row.encrypted_key)
        assert len(bytes(row.key_nonce)) == 24

    def test_resubmit_replaces_in_place(self, db_session):
        user_id, _ = create_test_user(db_session)
        first, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "Old", OPENAI_KEY
        )
        first_row = key_row(db_session, first.id)

        second, created = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "New", OPENAI_KEY + "-rotated"
        )

        assert created is False
        assert second.id == first.id
        assert second.name == "New"
        second_row = key_row(db_session, second.id)
        assert bytes(second_row.key_nonce) != bytes(first_row.key_nonce)
        assert second_row.key_hash != first_row.key_hash
        count = db_session.execute(
            text("SELECT count(*) FROM user_api_keys WHERE user_id = :u"), {"u": user_id}
        ).scalar()
        assert count == 1

    def test_resubmit_reactivates(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "gemini", "G", "AIza-test-key-value"
        )
        user_keys_service.update_user_key(db_session, user_id, key_out.id, is_active=False)

        again, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "gemini", "G", "AIza-test-key-value"
        )

        assert again.is_active is True

    def test_plaintext_never_logged(self, db_session, caplog):
        caplog.set_level(logging.INFO)
        user_id, _ = create_test_user(db_session)

        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "Work", OPENAI_KEY
        )
        user_keys_service.reveal_user_key(db_session, user_id, key_out.id)
        user_keys_service.resolve_credential(db_session, user_id, "openai")

        captured = "\n".join(str(r.__dict__) for r in caplog.records)
        assert "user_key_created" in captured
        assert OPENAI_KEY not in captured


class TestListRevealUpdateDelete:
    def test_list_ordered_by_provider_and_masked(self, db_session):
        user_id, _ = create_test_user(db_session)
        user_keys_service.upsert_user_key(db_session, user_id, "openai", "O", OPENAI_KEY)
        user_keys_service.upsert_user_key(db_session, user_id, "anthropic", "A", ANTHROPIC_KEY)

        keys = user_keys_service.list_user_keys(db_session, user_id)

        assert [k.provider for k in keys] == ["anthropic", "openai"]
        assert all(k.masked_key == LIST_MASK for k in keys)
        for k in keys:
            assert SECRET_FIELDS.isdisjoint(k.model_dump())

    def test_reveal_shows_edges_only(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )

        revealed = user_keys_service.reveal_user_key(db_session, user_id, key_out.id)

        assert revealed.masked_key == OPENAI_KEY[:4] + REVEAL_MASK + OPENAI_KEY[-4:]

    def test_other_users_key_is_not_found(self, db_session):
        owner_id, _ = create_test_user(db_session)
        intruder_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, owner_id, "openai", "O", OPENAI_KEY
        )

        for call in (
            lambda: user_keys_service.reveal_user_key(db_session, intruder_id, key_out.id),
            lambda: user_keys_service.update_user_key(
                db_session, intruder_id, key_out.id, is_active=False
            ),
            lambda: user_keys_service.delete_user_key(db_session, intruder_id, key_out.id),
        ):
            with pytest.raises(NotFoundError) as exc_info:
                call()
            assert exc_info.value.code == ApiErrorCode.E_KEY_NOT_FOUND

        assert key_row(db_session, key_out.id).is_active is True

    def test_update_name_and_flag(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )

        updated = user_keys_service.update_user_key(
            db_session, user_id, key_out.id, is_active=False, name="Paused"
        )

        assert updated.is_active is False
        assert updated.name == "Paused"

    def test_delete_removes_row(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )

        user_keys_service.delete_user_key(db_session, user_id, key_out.id)

        assert key_row(db_session, key_out.id) is None
        with pytest.raises(NotFoundError):
            user_keys_service.delete_user_key(db_session, user_id, key_out.id)

    def test_available_providers(self, db_session):
        user_id, _ = create_test_user(db_session)
        user_keys_service.upsert_user_key(db_session, user_id, "openai", "O", OPENAI_KEY)
        paused, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "anthropic", "A", ANTHROPIC_KEY
        )
        user_keys_service.update_user_key(db_session, user_id, paused.id, is_active=False)

        check = user_keys_service.available_providers(db_session, user_id)

        assert check.has_any is True
        assert [(p.provider, p.models) for p in check.providers] == [
            ("openai", ["gpt-3.5-turbo", "gpt-4"])
        ]

    def test_no_keys_means_nothing_available(self, db_session):
        user_id, _ = create_test_user(db_session)

        check = user_keys_service.available_providers(db_session, user_id)

        assert check.has_any is False
        assert check.providers == []


class TestResolveCredential:
    def test_resolves_and_counts_usage(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )

        credential = user_keys_service.resolve_credential(db_session, user_id, "openai")

        assert credential is not None
        assert credential.api_key == OPENAI_KEY
        assert credential.user_key_id == key_out.id
        assert OPENAI_KEY not in repr(credential)
        row = key_row(db_session, key_out.id)
        assert row.usage_count == 1
        assert row.last_used_at is not None

    def test_inactive_key_not_resolved(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )
        user_keys_service.update_user_key(db_session, user_id, key_out.id, is_active=False)

        assert user_keys_service.resolve_credential(db_session, user_id, "openai") is None
        assert key_row(db_session, key_out.id).usage_count == 0

    def test_missing_provider_not_resolved(self, db_session):
        user_id, _ = create_test_user(db_session)

        assert user_keys_service.resolve_credential(db_session, user_id, "gemini") is None

    def test_corrupted_ciphertext_not_resolved(self, db_session):
        user_id, _ = create_test_user(db_session)
        key_out, _ = user_keys_service.upsert_user_key(
            db_session, user_id, "openai", "O", OPENAI_KEY
        )
        db_session.execute(
            text("UPDATE user_api_keys SET encrypted_key = :junk WHERE id = :id"),
            {"junk": b"\x00" * 48, "id": key_out.id},
        )

        assert user_keys_service.resolve_credential(db_session, user_id, "openai") is None
        assert key_row(db_session, key_out.id).usage_count == 0


# =============================================================================
# HTTP
# =============================================================================


class TestApiKeyRoutes:
    @pytest.fixture
    def user_id(self, direct_db):
        user_id = uuid4()
        direct_db.register_cleanup("users", "id", user_id)
        return user_id

    def test_post_201_then_200_same_id(self, auth_client, user_id):
        headers = auth_headers(user_id)
        body = {"name": "Work", "provider": "OpenAI", "key": f"  {OPENAI_KEY}  "}

        first = auth_client.post("/settings/api-keys", json=body, headers=headers)
        second = auth_client.post(
            "/settings/api-keys", json={**body, "key": OPENAI_KEY + "x"}, headers=headers
        )

        assert first.status_code == 201, first.text
        assert second.status_code == 200, second.text
        assert first.json()["data"]["id"] == second.json()["data"]["id"]
        assert first.json()["data"]["provider"] == "openai"
        assert SECRET_FIELDS.isdisjoint(first.json()["data"])
        assert OPENAI_KEY not in first.text

    @pytest.mark.parametrize(
        "body",
        [
            {"name": "x", "provider": "mistral", "key": OPENAI_KEY},
            {"name": "x", "provider": "openai", "key": "short"},
            {"name": "x", "provider": "openai", "key": "k" * 501},
            {"name": "", "provider": "openai", "key": OPENAI_KEY},
        ],
    )
    def test_invalid_bodies_rejected(self, auth_client, user_id, body):
        response = auth_client.post(
            "/settings/api-keys", json=body, headers=auth_headers(user_id)
        )

        assert_error(response, 400, "E_INVALID_REQUEST")

    def test_list_reveal_check(self, auth_client, user_id):
        headers = auth_headers(user_id)
        created = auth_client.post(
            "/settings/api-keys",
            json={"name": "Claude", "provider": "anthropic", "key": ANTHROPIC_KEY},
            headers=headers,
        ).json()["data"]

        listed = auth_client.get("/settings/api-keys", headers=headers)
        revealed = auth_client.get(f"/settings/api-keys/{created['id']}/reveal", headers=headers)
        check = auth_client.get("/settings/api-keys/check", headers=headers)

        assert [k["masked_key"] for k in listed.json()["data"]] == [LIST_MASK]
        assert revealed.json()["data"]["masked_key"] == (
            ANTHROPIC_KEY[:4] + REVEAL_MASK + ANTHROPIC_KEY[-4:]
        )
        assert check.json()["data"] == {
            "providers": [{"provider": "anthropic", "models": ["claude"]}],
            "has_any": True,
        }
        assert ANTHROPIC_KEY not in listed.text + revealed.text + check.text

    def test_cross_user_patch_is_404(self, auth_client, direct_db, user_id):
        intruder_id = uuid4()
        direct_db.register_cleanup("users", "id", intruder_id)
        created = auth_client.post(
            "/settings/api-keys",
            json={"name": "Mine", "provider": "openai", "key": OPENAI_KEY},
            headers=auth_headers(user_id),
        ).json()["data"]

        response = auth_client.patch(
            f"/settings/api-keys/{created['id']}",
            json={"isActive": False},
            headers=auth_headers(intruder_id),
        )

        assert_error(response, 404, "E_KEY_NOT_FOUND")

    def test_patch_and_delete(self, auth_client, user_id):
        headers = auth_headers(user_id)
        created = auth_client.post(
            "/settings/api-keys",
            json={"name": "Mine", "provider": "gemini", "key": "AIza-test-key-value"},
            headers=headers,
        ).json()["data"]

        patched = auth_client.patch(
            f"/settings/api-keys/{created['id']}", json={"isActive": False}, headers=headers
        )
        deleted = auth_client.delete(f"/settings/api-keys/{created['id']}", headers=headers)
        missing = auth_client.delete(f"/settings/api-keys/{created['id']}", headers=headers)

        assert patched.status_code == 200
        assert patched.json()["data"]["is_active"] is False
        assert deleted.status_code == 204
        assert_error(missing, 404, "E_KEY_NOT_FOUND")

    def test_requires_authentication(self, auth_client):
        assert_error(auth_client.get("/settings/api-keys"), 401, "E_UNAUTHENTICATED")
