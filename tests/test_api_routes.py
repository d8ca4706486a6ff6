"""Tests for the local FastAPI surface (accounts, vault items, health, search)."""

import asyncio
import base64

import pytest
from fastapi.testclient import TestClient

from homevault.api import security
from homevault.api.main import app
from homevault.api.services import services
from homevault.config import VaultSettings

SESSION_TOKEN = "test-session-token"
STRONG_PASSWORD = "Correct-Horse-Battery-9"
NEW_PASSWORD = "Brand-New-Secret-42x"


def _auth_header(token=SESSION_TOKEN):
    return {"X-Session-Token": token}


@pytest.fixture
def session_token():
    old_token = security._SESSION_TOKEN
    security._SESSION_TOKEN = SESSION_TOKEN
    yield SESSION_TOKEN
    security._SESSION_TOKEN = old_token


@pytest.fixture
def client(tmp_path, shell, session_token):
    """TestClient over an engine started in a temp data dir (startup hook not run)."""
    settings = VaultSettings(data_dir=tmp_path / "data", kdf_iterations=1000)
    asyncio.run(services.start(settings))
    services.vault.shell = shell
    yield TestClient(app)
    asyncio.run(services.stop())


def _register(client, email="alice@example.com", password=STRONG_PASSWORD):
    resp = client.post(
        "/api/accounts/register",
        json={"email": email, "password": password},
        headers=_auth_header(),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Session token ────────────────────────────────────────────────────

class TestSessionToken:
    def test_missing_token(self, client):
        assert client.get("/api/accounts/status").status_code == 401

    def test_wrong_token(self, client):
        resp = client.get("/api/accounts/status", headers=_auth_header("wrong-token"))
        assert resp.status_code == 401

    def test_vault_routes_need_token_too(self, client):
        assert client.get("/api/credentials").status_code == 401

    def test_token_handout(self, client):
        assert client.get("/api/session").json() == {"session_token": SESSION_TOKEN}

    def test_engine_not_started(self, session_token):
        client = TestClient(app)
        resp = client.get("/api/accounts/status", headers=_auth_header())
        assert resp.status_code == 503


# ── Accounts ─────────────────────────────────────────────────────────

class TestAccountRoutes:
    def test_locked_by_default(self, client):
        body = client.get("/api/accounts/status", headers=_auth_header()).json()
        assert body == {"unlocked": False, "email": None, "must_change_password": False}
        assert client.get("/api/credentials", headers=_auth_header()).status_code == 403
        assert client.get("/api/accounts/me", headers=_auth_header()).status_code == 403

    def test_register_unlocks(self, client):
        body = _register(client)
        assert body["email"] == "alice@example.com"
        assert body["must_change_password"] is True
        assert len(body["mnemonic_words"]) == 12

        status = client.get("/api/accounts/status", headers=_auth_header()).json()
        assert status["unlocked"] is True
        assert status["email"] == "alice@example.com"

    def test_weak_password_is_400(self, client):
        resp = client.post(
            "/api/accounts/register",
            json={"email": "bob@example.com", "password": "hunter2"},
            headers=_auth_header(),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]

    def test_logout_and_login(self, client):
        _register(client)
        assert client.post("/api/accounts/logout", headers=_auth_header()).status_code == 200
        assert client.get("/api/credentials", headers=_auth_header()).status_code == 403

        bad = client.post(
            "/api/accounts/login",
            json={"email": "alice@example.com", "password": "Wrong-Password-123"},
            headers=_auth_header(),
        )
        assert bad.status_code == 401

        good = client.post(
            "/api/accounts/login",
            json={"email": "alice@example.com", "password": STRONG_PASSWORD},
            headers=_auth_header(),
        )
        assert good.status_code == 200
        assert good.json()["email"] == "alice@example.com"

    def test_profile(self, client):
        _register(client)
        resp = client.put(
            "/api/accounts/profile",
            json={"display_name": "Alice L"},
            headers=_auth_header(),
        )
        assert resp.status_code == 200
        me = client.get("/api/accounts/me", headers=_auth_header()).json()
        assert me["display_name"] == "Alice L"
        assert me["avatar"] is None

    def test_change_password(self, client):
        _register(client)
        resp = client.post(
            "/api/accounts/password",
            json={"current_password": STRONG_PASSWORD, "new_password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert resp.status_code == 200
        assert resp.json()["must_change_password"] is False

        client.post("/api/accounts/logout", headers=_auth_header())
        relogin = client.post(
            "/api/accounts/login",
            json={"email": "alice@example.com", "password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert relogin.status_code == 200

    def test_recovery_flow(self, client):
        words = _register(client)["mnemonic_words"]
        client.post("/api/accounts/logout", headers=_auth_header())

        challenge = client.post(
            "/api/accounts/recovery/challenge",
            json={"email": "alice@example.com"},
            headers=_auth_header(),
        ).json()
        answers = {str(p): words[p] for p in challenge["positions"]}

        resp = client.post(
            "/api/accounts/recovery/reset",
            json={"email": "alice@example.com", "answers": answers, "new_password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert resp.status_code == 200, resp.text
        assert client.get("/api/accounts/status", headers=_auth_header()).json()["unlocked"] is True

    def test_recovery_wrong_word_is_403(self, client):
        words = _register(client)["mnemonic_words"]
        challenge = client.post(
            "/api/accounts/recovery/challenge",
            json={"email": "alice@example.com"},
            headers=_auth_header(),
        ).json()
        answers = {str(p): words[p] for p in challenge["positions"]}
        answers[str(challenge["positions"][0])] = "wrong-word"

        resp = client.post(
            "/api/accounts/recovery/reset",
            json={"email": "alice@example.com", "answers": answers, "new_password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert resp.status_code == 403

    def test_recovery_reset_without_challenge(self, client):
        _register(client)
        resp = client.post(
            "/api/accounts/recovery/reset",
            json={"email": "alice@example.com", "answers": {"0": "x"}, "new_password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert resp.status_code == 403

    def test_challenge_size_fixed_by_server(self, client):
        _register(client)
        challenge = client.post(
            "/api/accounts/recovery/challenge",
            json={"email": "alice@example.com", "size": 1},
            headers=_auth_header(),
        ).json()
        assert len(challenge["positions"]) == 3

    def test_single_word_answer_rejected(self, client):
        words = _register(client)["mnemonic_words"]
        challenge = client.post(
            "/api/accounts/recovery/challenge",
            json={"email": "alice@example.com"},
            headers=_auth_header(),
        ).json()
        position = challenge["positions"][0]

        resp = client.post(
            "/api/accounts/recovery/reset",
            json={"email": "alice@example.com", "answers": {str(position): words[position]},
                  "new_password": NEW_PASSWORD},
            headers=_auth_header(),
        )
        assert resp.status_code == 403

    def test_failed_reset_needs_new_challenge(self, client):
        words = _register(client)["mnemonic_words"]
        challenge = client.post(
            "/api/accounts/recovery/challenge",
            json={"email": "alice@example.com"},
            headers=_auth_header(),
        ).json()
        answers = {str(p): words[p] for p in challenge["positions"]}
        wrong = dict(answers)
        wrong[str(challenge["positions"][0])] = "wrong-word"
        body = {"email": "alice@example.com", "new_password": NEW_PASSWORD}

        first = client.post("/api/accounts/recovery/reset", json={**body, "answers": wrong}, headers=_auth_header())
        retry = client.post("/api/accounts/recovery/reset", json={**body, "answers": answers}, headers=_auth_header())

        assert first.status_code == 403
        assert retry.status_code == 403
        login = client.post(
            "/api/accounts/login",
            json={"email": "alice@example.com", "password": STRONG_PASSWORD},
            headers=_auth_header(),
        )
        assert login.status_code == 200

    def test_reveal_mnemonic(self, client):
        words = _register(client)["mnemonic_words"]
        resp = client.post("/api/accounts/mnemonic", json={"password": STRONG_PASSWORD}, headers=_auth_header())
        assert resp.json() == {"words": words}

        wrong = client.post("/api/accounts/mnemonic", json={"password": "Nope-Nope-123"}, headers=_auth_header())
        assert wrong.status_code == 401

    def test_delete_account(self, client):
        _register(client)
        resp = client.post("/api/accounts/delete", json={"password": STRONG_PASSWORD}, headers=_auth_header())
        assert resp.status_code == 200
        assert client.get("/api/accounts/status", headers=_auth_header()).json()["unlocked"] is False

        login = client.post(
            "/api/accounts/login",
            json={"email": "alice@example.com", "password": STRONG_PASSWORD},
            headers=_auth_header(),
        )
        assert login.status_code == 401


# ── Vault items ──────────────────────────────────────────────────────

class TestVaultRoutes:
    def test_credential_crud(self, client):
        _register(client)
        created = client.post(
            "/api/credentials",
            json={"title": "Bank", "username": "me", "password": "bank-secret", "tags": ["money"]},
            headers=_auth_header(),
        )
        assert created.status_code == 201
        entry = created.json()
        assert "password" not in entry and "password_cipher" not in entry

        listed = client.get("/api/credentials", params={"tag": "MONEY"}, headers=_auth_header()).json()
        assert [e["id"] for e in listed] == [entry["id"]]

        revealed = client.get(f"/api/credentials/{entry['id']}/reveal", headers=_auth_header()).json()
        assert revealed["password"] == "bank-secret"
        assert revealed["strength"]["meets_requirement"] is False

        updated = client.put(
            f"/api/credentials/{entry['id']}",
            json={"title": "My Bank"},
            headers=_auth_header(),
        ).json()
        assert updated["title"] == "My Bank"

        assert client.delete(f"/api/credentials/{entry['id']}", headers=_auth_header()).status_code == 200
        assert client.get("/api/credentials", headers=_auth_header()).json() == []

    def test_unknown_credential_is_400(self, client):
        _register(client)
        resp = client.get("/api/credentials/999/reveal", headers=_auth_header())
        assert resp.status_code == 400

    def test_sites(self, client):
        _register(client)
        site = client.post(
            "/api/sites",
            json={"title": "Docs", "url": "docs.example.com"},
            headers=_auth_header(),
        ).json()
        assert site["url"] == "https://docs.example.com"

        client.put(f"/api/sites/{site['id']}", json={"description": "Manuals"}, headers=_auth_header())
        sites = client.get("/api/sites", headers=_auth_header()).json()
        assert sites[0]["description"] == "Manuals"

        client.delete(f"/api/sites/{site['id']}", headers=_auth_header())
        assert client.get("/api/sites", headers=_auth_header()).json() == []

    def test_documents(self, client, shell):
        _register(client)
        doc = client.post(
            "/api/documents",
            json={
                "title": "Passport",
                "file_name": "passport.pdf",
                "file_base64": base64.b64encode(b"%PDF scan").decode(),
                "link_url": "gov.example.com/passport",
            },
            headers=_auth_header(),
        )
        assert doc.status_code == 201, doc.text
        body = doc.json()
        assert body["document"]["kind"] == "file+link"
        assert body["document"]["file"]["size"] == len(b"%PDF scan")

        opened = client.post(f"/api/documents/{body['id']}/open", headers=_auth_header())
        assert opened.status_code == 200
        assert len(shell.paths) == 1

        assert client.delete(f"/api/documents/{body['id']}", headers=_auth_header()).status_code == 200
        assert client.get("/api/documents", headers=_auth_header()).json() == []

    def test_document_bad_base64(self, client):
        _register(client)
        resp = client.post(
            "/api/documents",
            json={"title": "Broken", "file_base64": "***"},
            headers=_auth_header(),
        )
        assert resp.status_code == 400

    def test_document_needs_file_or_link(self, client):
        _register(client)
        resp = client.post("/api/documents", json={"title": "Empty"}, headers=_auth_header())
        assert resp.status_code == 400

    def test_health_report(self, client):
        _register(client)
        weak = client.post(
            "/api/credentials",
            json={"title": "Old forum", "username": "me", "password": "hunter2"},
            headers=_auth_header(),
        ).json()
        for title in ("Mail", "Shop"):
            client.post(
                "/api/credentials",
                json={"title": title, "username": "me", "password": "Reused-Secret-2024"},
                headers=_auth_header(),
            )

        report = client.get("/api/health", headers=_auth_header()).json()
        assert report["stats"]["total"] == 3
        assert report["categories"]["weak"] == [weak["id"]]
        assert len(report["categories"]["reused"]) == 2
        assert report["categories"]["stale"] == []

    def test_search(self, client):
        _register(client)
        client.post(
            "/api/credentials",
            json={"title": "Online Banking", "username": "me", "password": "x"},
            headers=_auth_header(),
        )
        client.post("/api/sites", json={"title": "Recipes", "url": "cooking.example.com"}, headers=_auth_header())

        hits = client.get("/api/search", params={"q": "bank"}, headers=_auth_header()).json()
        assert [hit["title"] for hit in hits] == ["Online Banking"]
        assert hits[0]["kind"] == "password"

        everything = client.get("/api/search", headers=_auth_header()).json()
        assert len(everything) == 2

    def test_generate_password(self, client):
        _register(client)
        resp = client.get("/api/generate-password", params={"length": 24}, headers=_auth_header())
        assert len(resp.json()["password"]) == 24


# ── Backup ───────────────────────────────────────────────────────────

class TestBackupRoutes:
    def test_export_then_import(self, client):
        _register(client)
        client.post(
            "/api/credentials",
            json={"title": "Bank", "username": "me", "password": "bank-secret"},
            headers=_auth_header(),
        )
        exported = client.get("/api/backup", headers=_auth_header()).json()
        assert exported["email"] == "alice@example.com"
        assert "bank-secret" not in exported["backup"]

        client.post(
            "/api/credentials",
            json={"title": "Forum", "username": "me", "password": "forum-secret"},
            headers=_auth_header(),
        )
        resp = client.post("/api/backup", json={"backup": exported["backup"]}, headers=_auth_header())

        assert resp.status_code == 200, resp.text
        assert resp.json()["credentials"] == 1
        titles = [c["title"] for c in client.get("/api/credentials", headers=_auth_header()).json()]
        assert titles == ["Bank"]

    def test_garbage_backup_is_409(self, client):
        _register(client)
        resp = client.post("/api/backup", json={"backup": "not-a-backup"}, headers=_auth_header())
        assert resp.status_code == 409

    def test_backup_needs_unlocked_account(self, client):
        assert client.get("/api/backup", headers=_auth_header()).status_code == 403
