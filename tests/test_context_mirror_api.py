"""Tests for the context mirror endpoint.

The assessment store and generation client are in-memory fakes; auth is
overridden for end users and exercised for real with the admin API key.
"""

import re
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from cortex_insights.api.insights import get_assessment_store, get_insight_cache
from cortex_insights.core.auth_middleware import AuthContext, get_current_user
from cortex_insights.core.context_templates import TEMPLATES, Archetype
from cortex_insights.core.insight_cache import InsightCache
from cortex_insights.core.insight_errors import GenerationTransportError
from cortex_insights.core.insight_orchestrator import InsightOrchestrator
from cortex_insights.main import app
from tests.fakes.fake_db import FakeAssessmentStore
from tests.fakes.fake_generation import FakeClock, ScriptedGenerator
from tests.fixtures_context_mirror import (
    ASSESSMENT_ID,
    MODEL_PAYLOAD,
    OTHER_ASSESSMENT_ID,
    OTHER_USER_ID,
    OWNER_ID,
    REGULATED_PROFILE,
)

URL = "/v1/insights/context-mirror"
ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}
INCIDENT_RE = re.compile(r"^INC-\d{4}-[A-Z0-9]{8}$")


@pytest.fixture
def store():
    store = FakeAssessmentStore()
    store.add_assessment(ASSESSMENT_ID, OWNER_ID, context_profile=REGULATED_PROFILE)
    store.add_assessment(OTHER_ASSESSMENT_ID, OTHER_USER_ID, context_profile=None)
    return store


@pytest.fixture
def generator():
    return ScriptedGenerator(MODEL_PAYLOAD, MODEL_PAYLOAD)


@pytest.fixture
def client(store, generator):
    clock = FakeClock()
    cache = InsightCache(
        orchestrator=InsightOrchestrator(generator=generator, clock=clock),
        store=store,
        clock=clock,
    )
    app.dependency_overrides[get_assessment_store] = lambda: store
    app.dependency_overrides[get_insight_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as_user(user_id: str) -> None:
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id=user_id, token="token")


def _assert_error(response, status: int) -> dict:
    assert response.status_code == status
    body = response.json()
    assert set(body) == {"userMessage", "incidentId", "httpStatus"}
    assert body["httpStatus"] == status
    assert INCIDENT_RE.match(body["incidentId"])
    return body


class TestContextMirrorEndpoint:
    def test_owner_gets_payload(self, client):
        _as_user(OWNER_ID)

        response = client.post(URL, json={"assessmentId": ASSESSMENT_ID})

        assert response.status_code == 200
        body = response.json()
        assert body["headline"] == MODEL_PAYLOAD["headline"]
        assert len(body["actions"]) == 3
        assert len(body["watchouts"]) == 2
        assert "debug" not in body

    def test_repeat_request_is_served_from_cache(self, client, generator):
        _as_user(OWNER_ID)

        first = client.post(URL, json={"assessmentId": ASSESSMENT_ID}).json()
        second = client.post(URL, json={"assessmentId": ASSESSMENT_ID}).json()

        assert first == second
        assert generator.calls == 1

    def test_unauthenticated(self, client):
        _assert_error(client.post(URL, json={"assessmentId": ASSESSMENT_ID}), 401)

    def test_wrong_api_key_is_unauthenticated(self, client):
        response = client.post(
            URL, json={"assessmentId": ASSESSMENT_ID}, headers={"X-API-Key": "nope"}
        )
        _assert_error(response, 401)

    @pytest.mark.parametrize("body", [{"assessmentId": "not-a-uuid"}, {}, {"assessment": ASSESSMENT_ID}])
    def test_malformed_request(self, client, body):
        _as_user(OWNER_ID)
        _assert_error(client.post(URL, json=body), 400)

    def test_unknown_assessment(self, client):
        _as_user(OWNER_ID)
        response = client.post(URL, json={"assessmentId": "00000000-0000-4000-8000-000000000000"})
        _assert_error(response, 404)

    def test_other_users_assessment_looks_missing(self, client):
        _as_user(OTHER_USER_ID)
        _assert_error(client.post(URL, json={"assessmentId": ASSESSMENT_ID}), 404)

    def test_missing_profile(self, client):
        _as_user(OTHER_USER_ID)
        body = _assert_error(client.post(URL, json={"assessmentId": OTHER_ASSESSMENT_ID}), 400)
        assert "profile" in body["userMessage"].lower()

    def test_generation_failure_still_returns_200(self, store):
        generator = ScriptedGenerator(GenerationTransportError("down"))
        cache = InsightCache(
            orchestrator=InsightOrchestrator(generator=generator), store=store
        )
        app.dependency_overrides[get_assessment_store] = lambda: store
        app.dependency_overrides[get_insight_cache] = lambda: cache
        _as_user(OWNER_ID)
        try:
            response = TestClient(app).post(URL, json={"assessmentId": ASSESSMENT_ID})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert response.json()["headline"] == TEMPLATES[Archetype.REGULATED].headline


class TestAdminAccess:
    def test_admin_debug_includes_diagnostics(self, client):
        response = client.post(
            URL, params={"debug": "true"}, json={"assessmentId": ASSESSMENT_ID}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        debug = response.json()["debug"]
        assert debug["final_source"] == "primary_model"
        assert len(debug["attempts"]) == 1
        assert debug["attempts"][0]["prompt_variant"] == "primary"

    def test_debug_ignored_for_end_users(self, client):
        _as_user(OWNER_ID)
        response = client.post(URL, params={"debug": "true"}, json={"assessmentId": ASSESSMENT_ID})

        assert response.status_code == 200
        assert "debug" not in response.json()

    def test_admin_refresh_regenerates(self, client, generator):
        client.post(URL, json={"assessmentId": ASSESSMENT_ID}, headers=ADMIN_HEADERS)
        client.post(
            URL, params={"refresh": "true"}, json={"assessmentId": ASSESSMENT_ID}, headers=ADMIN_HEADERS
        )
        assert generator.calls == 2

    def test_refresh_ignored_for_end_users(self, client, generator):
        _as_user(OWNER_ID)
        client.post(URL, json={"assessmentId": ASSESSMENT_ID})
        client.post(URL, params={"refresh": "true"}, json={"assessmentId": ASSESSMENT_ID})
        assert generator.calls == 1


class TestDegradePath:
    def test_unexpected_error_serves_fallback(self, client, store):
        broken = MagicMock()
        broken.get = AsyncMock(side_effect=RuntimeError("boom"))
        app.dependency_overrides[get_insight_cache] = lambda: broken
        _as_user(OWNER_ID)

        response = client.post(URL, json={"assessmentId": ASSESSMENT_ID})

        assert response.status_code == 200
        body = response.json()
        assert body["headline"] == TEMPLATES[Archetype.REGULATED].headline
        assert body["disclaimer"] == TEMPLATES[Archetype.REGULATED].disclaimer

    def test_unexpected_error_without_profile_is_500(self, client, store):
        store.fail_reads = True
        _as_user(OWNER_ID)

        body = _assert_error(client.post(URL, json={"assessmentId": ASSESSMENT_ID}), 500)
        assert "try again" in body["userMessage"].lower()

