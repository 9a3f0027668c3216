"""
HTTP surface tests.

Services are wired onto app.state directly (no lifespan), backed by the
in-memory store.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from credentia.clients.memory_store import InMemoryDocumentStore
from credentia.clients.notifications import LogNotificationSender
from credentia.clients.store import Collection
from credentia.config import load_config
from credentia.errors import StoreUnavailable
from credentia.main import app, build_services
from credentia.primitives.records import Template, TemplateStatus

_REVIEWER = {"id": "client-1", "display_name": "Client Reviewer"}


def _wire(api_keys: list[str] | None = None) -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    config = load_config(
        overrides={
            "server": {"api_keys": api_keys or []},
            "verification": {"scrypt_n": 1024},
        }
    )
    build_services(app, config, store, LogNotificationSender())
    return store


def _seed_template(store: InMemoryDocumentStore, **overrides) -> None:
    fields = {"id": "T1", "name": "Data Science Certificate", "recipient_name": "Jane Doe"}
    fields.update(overrides)
    template = Template(**fields)
    asyncio.run(store.put(Collection.TEMPLATES, template.id, template.model_dump(mode="json")))


def _decide(client: TestClient, template_id: str = "T1", **body):
    payload = {"decision": "approve", "comment": "", "reviewer": _REVIEWER}
    payload.update(body)
    return client.post(f"/api/v1/templates/{template_id}/decision", json=payload)


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return _wire()


@pytest.fixture()
def client(store) -> TestClient:
    return TestClient(app)


# ─── Health ─────────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["store"]["backend"] == "memory"


# ─── Decisions ──────────────────────────────────────────────────


class TestDecisionRoute:
    def test_approve(self, client, store):
        _seed_template(store)

        response = _decide(client)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["template_status"] == "client_approved"
        assert data["certificate"]["needs_claiming"] is True
        assert data["resolution"] == "placeholder"
        assert data["replayed"] is False

    def test_replay(self, client, store):
        _seed_template(store)
        first = _decide(client).json()["data"]

        second = _decide(client).json()["data"]

        assert second["replayed"] is True
        assert second["certificate"]["id"] == first["certificate"]["id"]

    def test_missing_comment_is_422(self, client, store):
        _seed_template(store)

        response = _decide(client, decision="reject", comment="")

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_decision_is_422(self, client, store):
        _seed_template(store)
        assert _decide(client, decision="escalate").status_code == 422

    def test_unknown_template_is_404(self, client):
        response = _decide(client, template_id="nope")
        assert response.status_code == 404
        assert response.json()["code"] == "TEMPLATE_NOT_FOUND"

    def test_invalid_transition_is_409(self, client, store):
        _seed_template(store, status=TemplateStatus.CLIENT_REJECTED)

        response = _decide(client)

        assert response.status_code == 409
        assert response.json()["details"]["current_status"] == "client_rejected"

    def test_store_unavailable_is_503(self, client):
        workflow = MagicMock()
        workflow.submit_decision = AsyncMock(side_effect=StoreUnavailable("down"))
        app.state.workflow = workflow

        assert _decide(client).status_code == 503


# ─── Reviewer Reads ─────────────────────────────────────────────


class TestReadRoutes:
    def test_pending_and_history(self, client, store):
        _seed_template(store, id="A")
        _seed_template(store, id="B")
        _decide(client, template_id="A", decision="request_revision", comment="Fix date")

        pending = client.get("/api/v1/templates/pending").json()["data"]
        history = client.get("/api/v1/templates/A/reviews").json()["data"]

        assert [t["id"] for t in pending] == ["B"]
        assert history[0]["action"] == "revision_requested"
        assert history[0]["comments"] == "Fix date"

    def test_unclaimed(self, client, store):
        _seed_template(store)
        _decide(client)

        unclaimed = client.get("/api/v1/certificates/unclaimed").json()["data"]

        assert len(unclaimed) == 1
        assert "access_password_hash" not in unclaimed[0]


# ─── Public Verification ────────────────────────────────────────


class TestVerifyRoute:
    def test_unknown_token_is_generic_404(self, client):
        response = client.post("/api/v1/verify", json={"token": "nope"})

        assert response.status_code == 404
        assert response.json() == {
            "status": "not_found",
            "error": "Certificate could not be verified",
        }

    def test_password_flow(self, client, store):
        _seed_template(store)
        approved = _decide(client, access_password="open-sesame").json()["data"]
        token = approved["certificate"]["verification_id"]

        required = client.post("/api/v1/verify", json={"token": token})
        wrong = client.post("/api/v1/verify", json={"token": token, "password": "guess"})
        right = client.post("/api/v1/verify", json={"token": token, "password": "open-sesame"})

        assert required.status_code == 401
        assert "data" not in required.json()
        assert wrong.status_code == 403
        assert wrong.json()["error"] == "Certificate could not be verified"
        assert right.status_code == 200
        view = right.json()["data"]
        assert view["recipient_name"] == "Jane Doe"
        assert "access_password_hash" not in view
        assert "resolution" not in view["metadata"]

    def test_code_from_verification_url(self, client, store):
        _seed_template(store)
        cert = _decide(client).json()["data"]["certificate"]

        by_code = client.post("/api/v1/verify", json={"code": cert["verification_code"]})
        by_pair = client.post(
            "/api/v1/verify", json={"code": cert["verification_code"], "id": cert["id"]}
        )
        wrong_pair = client.post(
            "/api/v1/verify", json={"code": cert["verification_code"], "id": "someone-else"}
        )

        assert by_code.status_code == 200
        assert by_code.json()["data"]["id"] == cert["id"]
        assert by_pair.status_code == 200
        assert wrong_pair.status_code == 404
        assert wrong_pair.json()["error"] == "Certificate could not be verified"

    def test_expired_certificate_is_410(self, client, store):
        _seed_template(store)
        cert = _decide(client).json()["data"]["certificate"]
        asyncio.run(
            store.update_if(
                Collection.CERTIFICATES, cert["id"], {}, {"expires_at": "2000-01-01T00:00:00Z"}
            )
        )

        response = client.post("/api/v1/verify", json={"token": cert["verification_id"]})

        assert response.status_code == 410
        assert response.json() == {
            "status": "expired",
            "error": "Certificate could not be verified",
        }

    def test_each_verification_is_audited(self, client, store):
        _seed_template(store)
        token = _decide(client).json()["data"]["certificate"]["verification_id"]
        before = store.count(Collection.ACTIVITIES)

        client.post("/api/v1/verify", json={"token": token})
        client.post("/api/v1/verify", json={"token": "nope"})

        assert store.count(Collection.ACTIVITIES) == before + 2


# ─── Authentication ─────────────────────────────────────────────


class TestApiKeys:
    def test_protected_routes_need_key(self):
        store = _wire(api_keys=["secret"])
        _seed_template(store)
        client = TestClient(app)

        assert _decide(client).status_code == 401
        assert client.get("/api/v1/templates/pending").status_code == 401

        authed = client.get(
            "/api/v1/templates/pending", headers={"X-Credentia-API-Key": "secret"}
        )
        assert authed.status_code == 200

        bearer = client.get(
            "/api/v1/templates/pending", headers={"Authorization": "Bearer secret"}
        )
        assert bearer.status_code == 200

    def test_public_routes_stay_open(self):
        _wire(api_keys=["secret"])
        client = TestClient(app)

        assert client.get("/health").status_code == 200
        assert client.post("/api/v1/verify", json={"token": "nope"}).status_code == 404


# ─── CORS ───────────────────────────────────────────────────────


class TestCors:
    def test_default_frontend_origin_allowed(self, client):
        response = client.options(
            "/api/v1/verify",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_origins_are_not_a_server_config_field(self):
        config = load_config()
        assert not hasattr(config.server, "cors_origins")
