# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for plan CRUD API endpoints."""

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.auth import TokenVerificationError
from app.dependencies import get_identity_verifier, get_store
from app.main import create_app
from app.services.memory_store import InMemoryStore
from app.services.store import StoreUnavailableError

PLANS = "/api/v1/plans"
KEY = "12xvxc345ssdsds-508"
AUTH = {"Authorization": "Bearer good-token"}


class FakeVerifier:
    """Accepts only the token 'good-token'."""

    def verify(self, token):
        if token != "good-token":
            raise TokenVerificationError("Token verification failed: bad signature")
        return {"sub": "user-1", "email": "user@example.com"}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def app(store):
    """Create the application with an in-memory store and fake verifier."""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_identity_verifier] = lambda: FakeVerifier()
    return app


@pytest.fixture
def client(app):
    """Create a test client for the FastAPI application."""
    return TestClient(app)


@pytest.fixture
def created(client, plan_document):
    """Create the sample plan and return the POST response."""
    response = client.post(PLANS, json=plan_document, headers=AUTH)
    assert response.status_code == 201
    return response


class TestAuthentication:
    """Tests for the bearer token gate."""

    def test_missing_authorization_returns_401(self, client):
        response = client.get(f"{PLANS}/{KEY}")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_non_bearer_scheme_returns_401(self, client):
        response = client.get(f"{PLANS}/{KEY}", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_empty_bearer_token_returns_401(self, client):
        response = client.get(f"{PLANS}/{KEY}", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    def test_invalid_token_returns_403(self, client):
        response = client.get(f"{PLANS}/{KEY}", headers={"Authorization": "Bearer bad-token"})

        assert response.status_code == 403
        assert response.json()["detail"].startswith("Forbidden")

    def test_auth_checked_before_body_is_processed(self, client, store, plan_document):
        """Test that unauthenticated writes never reach the store."""
        response = client.post(PLANS, json=plan_document)

        assert response.status_code == 401
        assert len(store) == 0

    @pytest.mark.parametrize("body", ["{bad", "", "NaN"])
    def test_malformed_body_without_credentials_returns_401(self, client, body):
        """Test that authentication is decided before the body is parsed."""
        response = client.post(
            PLANS, content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_malformed_body_with_rejected_token_returns_403(self, client):
        response = client.put(
            f"{PLANS}/{KEY}",
            content="{bad",
            headers={"Authorization": "Bearer bad-token", "Content-Type": "application/json"},
        )

        assert response.status_code == 403

    def test_health_is_not_authenticated(self, client):
        assert client.get("/health").status_code == 200


class TestCreatePlan:
    """Tests for POST /plans."""

    def test_create_returns_201_with_etag(self, created, plan_document):
        """Test that creation returns the document, ETag and Location."""
        body = created.json()

        assert body == {"message": "Plan created", "data": plan_document}
        assert created.headers["ETag"].startswith('"')
        assert created.headers["Location"].endswith(f"{PLANS}/{KEY}")

    def test_duplicate_create_returns_409_with_original(self, client, created, make_plan):
        """Test that a duplicate key returns the original document unchanged."""
        response = client.post(PLANS, json=make_plan(planType="outOfNetwork"), headers=AUTH)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["message"] == "Conflict: Plan already exists"
        assert detail["data"]["planType"] == "inNetwork"
        assert response.headers["ETag"] == created.headers["ETag"]

        current = client.get(f"{PLANS}/{KEY}", headers=AUTH)
        assert current.json()["planType"] == "inNetwork"

    def test_schema_failure_returns_400_with_errors(self, client, store, plan_document):
        """Test that schema violations return the list of violated constraints."""
        del plan_document["planType"]

        response = client.post(PLANS, json=plan_document, headers=AUTH)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["errors"][0]["loc"] == "planType"
        assert len(store) == 0

    def test_malformed_json_returns_400(self, client):
        """Test that malformed JSON is reported as a bad request."""
        response = client.post(
            PLANS,
            content="not valid json",
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid request body"

    def test_non_finite_number_returns_400_and_stores_nothing(self, client, store, make_plan):
        """Test that NaN, which is not JSON, is rejected instead of poisoning the record."""
        plan = make_plan()
        plan["planCostShares"]["deductible"] = float("nan")

        response = client.post(
            PLANS,
            content=json.dumps(plan),
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert len(store) == 0
        assert client.get(f"{PLANS}/{KEY}", headers=AUTH).status_code == 404

    @pytest.mark.parametrize("key", ["a/b", "__plan__", ".."])
    def test_unaddressable_key_returns_400_and_stores_nothing(
        self, client, store, make_plan, key
    ):
        """Test that a key that cannot be a single URL segment is rejected up front."""
        response = client.post(PLANS, json=make_plan(object_id=key), headers=AUTH)

        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["type"] == "invalid_key"
        assert len(store) == 0

    def test_missing_body_returns_400(self, client):
        response = client.post(PLANS, headers=AUTH)
        assert response.status_code == 400


class TestGetPlan:
    """Tests for GET /plans/{key}."""

    def test_create_then_read_round_trip(self, client, created, plan_document):
        """Test that GET returns the created document with the same ETag."""
        response = client.get(f"{PLANS}/{KEY}", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == plan_document
        assert response.headers["ETag"] == created.headers["ETag"]

    def test_if_none_match_current_tag_returns_304(self, client, created):
        """Test that a matching If-None-Match returns 304 with an empty body."""
        response = client.get(
            f"{PLANS}/{KEY}", headers={**AUTH, "If-None-Match": created.headers["ETag"]}
        )

        assert response.status_code == 304
        assert response.content == b""
        assert response.headers["ETag"] == created.headers["ETag"]

    def test_if_none_match_other_tag_returns_200(self, client, created, plan_document):
        response = client.get(f"{PLANS}/{KEY}", headers={**AUTH, "If-None-Match": '"other"'})

        assert response.status_code == 200
        assert response.json() == plan_document

    def test_weak_if_none_match_returns_304(self, client, created):
        """Test that If-None-Match compares weakly."""
        response = client.get(
            f"{PLANS}/{KEY}",
            headers={**AUTH, "If-None-Match": "W/" + created.headers["ETag"]},
        )

        assert response.status_code == 304

    def test_reserved_key_returns_404(self, client):
        assert client.get(f"{PLANS}/__plan__", headers=AUTH).status_code == 404

    def test_missing_plan_returns_404(self, client):
        response = client.get(f"{PLANS}/missing", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"detail": "Plan not found"}


class TestReplacePlan:
    """Tests for PUT /plans/{key}."""

    def test_optimistic_replace_and_stale_replay(self, client, created, make_plan):
        """Test that PUT succeeds with the current tag and a replay with the old tag fails."""
        tag = client.get(f"{PLANS}/{KEY}", headers=AUTH).headers["ETag"]
        replacement = make_plan(planType="outOfNetwork")

        first = client.put(f"{PLANS}/{KEY}", json=replacement, headers={**AUTH, "If-Match": tag})

        assert first.status_code == 200
        assert first.json() == {"message": "Plan replaced", "data": replacement}
        assert first.headers["ETag"] != tag

        replay = client.put(f"{PLANS}/{KEY}", json=replacement, headers={**AUTH, "If-Match": tag})

        assert replay.status_code == 412
        assert replay.json()["detail"] == "Precondition Failed: ETag does not match"

    def test_replace_without_if_match_returns_412(self, client, created, plan_document):
        response = client.put(f"{PLANS}/{KEY}", json=plan_document, headers=AUTH)
        assert response.status_code == 412

    def test_replace_missing_plan_returns_404(self, client, plan_document):
        response = client.put(
            f"{PLANS}/{KEY}", json=plan_document, headers={**AUTH, "If-Match": '"x"'}
        )
        assert response.status_code == 404

    def test_replace_invalid_document_returns_400(self, client, created, plan_document):
        plan_document["planCostShares"]["copay"] = "free"

        response = client.put(
            f"{PLANS}/{KEY}",
            json=plan_document,
            headers={**AUTH, "If-Match": created.headers["ETag"]},
        )

        assert response.status_code == 400

    def test_replace_with_other_key_returns_400(self, client, created, make_plan):
        response = client.put(
            f"{PLANS}/{KEY}",
            json=make_plan(object_id="another-plan"),
            headers={**AUTH, "If-Match": created.headers["ETag"]},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["errors"][0]["type"] == "key_mismatch"


class TestUpdatePlan:
    """Tests for PATCH /plans/{key}."""

    def test_patch_merges_and_returns_new_etag(self, client, created):
        response = client.patch(
            f"{PLANS}/{KEY}",
            json={"planType": "outOfNetwork"},
            headers={**AUTH, "If-Match": created.headers["ETag"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Plan updated"
        assert body["data"]["planType"] == "outOfNetwork"
        assert body["data"]["creationDate"] == "12-12-2017"
        assert response.headers["ETag"] != created.headers["ETag"]

        fetched = client.get(f"{PLANS}/{KEY}", headers=AUTH)
        assert fetched.headers["ETag"] == response.headers["ETag"]

    def test_invalid_merge_returns_400_and_leaves_plan_unchanged(
        self, client, created, plan_document
    ):
        """Test that a merge producing an invalid plan is rejected atomically."""
        response = client.patch(
            f"{PLANS}/{KEY}",
            json={"planCostShares": {"copay": 5}},
            headers={**AUTH, "If-Match": created.headers["ETag"]},
        )

        assert response.status_code == 400

        fetched = client.get(f"{PLANS}/{KEY}", headers=AUTH)
        assert fetched.json() == plan_document
        assert fetched.headers["ETag"] == created.headers["ETag"]

    def test_patch_unknown_field_returns_400(self, client, created):
        response = client.patch(
            f"{PLANS}/{KEY}",
            json={"color": "blue"},
            headers={**AUTH, "If-Match": created.headers["ETag"]},
        )
        assert response.status_code == 400

    def test_patch_stale_tag_returns_412(self, client, created):
        response = client.patch(
            f"{PLANS}/{KEY}", json={"planType": "x"}, headers={**AUTH, "If-Match": '"stale"'}
        )
        assert response.status_code == 412

    def test_patch_missing_plan_returns_404(self, client):
        response = client.patch(
            f"{PLANS}/missing", json={"planType": "x"}, headers={**AUTH, "If-Match": '"x"'}
        )
        assert response.status_code == 404

    def test_patch_with_weak_etag_form_fails(self, client, created):
        """Test that If-Match compares strongly, so the weak form of the current tag fails."""
        response = client.patch(
            f"{PLANS}/{KEY}",
            json={"planType": "outOfNetwork"},
            headers={**AUTH, "If-Match": "W/" + created.headers["ETag"]},
        )
        assert response.status_code == 412
        assert client.get(f"{PLANS}/{KEY}", headers=AUTH).json()["planType"] == "inNetwork"


class TestDeletePlan:
    """Tests for DELETE /plans/{key}."""

    def test_delete_returns_204_with_empty_body(self, client, created):
        response = client.delete(f"{PLANS}/{KEY}", headers=AUTH)

        assert response.status_code == 204
        assert response.content == b""
        assert client.get(f"{PLANS}/{KEY}", headers=AUTH).status_code == 404

    def test_delete_with_matching_if_match(self, client, created):
        response = client.delete(
            f"{PLANS}/{KEY}", headers={**AUTH, "If-Match": created.headers["ETag"]}
        )
        assert response.status_code == 204

    def test_delete_with_stale_if_match_returns_412(self, client, created):
        response = client.delete(f"{PLANS}/{KEY}", headers={**AUTH, "If-Match": '"stale"'})

        assert response.status_code == 412
        assert client.get(f"{PLANS}/{KEY}", headers=AUTH).status_code == 200

    def test_delete_never_created_returns_404(self, client):
        assert client.delete(f"{PLANS}/never", headers=AUTH).status_code == 404

    def test_delete_already_deleted_returns_404(self, client, created):
        assert client.delete(f"{PLANS}/{KEY}", headers=AUTH).status_code == 204
        assert client.delete(f"{PLANS}/{KEY}", headers=AUTH).status_code == 404


class TestStoreErrors:
    """Tests for store failures surfacing as generic 500 responses."""

    @pytest.fixture
    def failing_app(self):
        store = MagicMock()
        store.get.side_effect = StoreUnavailableError("Redis GET failed for key 10.0.0.5")
        app = create_app()
        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_identity_verifier] = lambda: FakeVerifier()
        return app

    @pytest.mark.parametrize(
        "method,path,kwargs",
        [
            ("get", f"{PLANS}/{KEY}", {}),
            ("delete", f"{PLANS}/{KEY}", {}),
            ("patch", f"{PLANS}/{KEY}", {"json": {"planType": "x"}}),
        ],
    )
    def test_store_error_returns_500_without_details(self, failing_app, method, path, kwargs):
        client = TestClient(failing_app)

        response = getattr(client, method)(path, headers=AUTH, **kwargs)

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert "Redis" not in response.text

    def test_create_store_error_returns_500(self, failing_app, plan_document):
        client = TestClient(failing_app)

        response = client.post(PLANS, json=plan_document, headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}


def test_plans_endpoints_in_openapi_docs(client):
    """Test that the plans endpoints are documented in the OpenAPI schema."""
    response = client.get("/openapi.json")

    assert response.status_code == 200
    paths = response.json()["paths"]
    assert PLANS in paths
    assert set(paths[f"{PLANS}/{{key}}"]) == {"get", "put", "patch", "delete"}


def test_write_endpoints_document_json_body(client):
    """Test that bodies decoded after authentication still appear in the schema."""
    paths = client.get("/openapi.json").json()["paths"]

    assert "requestBody" in paths[PLANS]["post"]
    assert "requestBody" in paths[f"{PLANS}/{{key}}"]["put"]
    assert "requestBody" in paths[f"{PLANS}/{{key}}"]["patch"]
    assert "requestBody" not in paths[f"{PLANS}/{{key}}"]["delete"]
