import pytest
from fastapi.testclient import TestClient

from eventmet.adapters import InMemoryEventStore
from eventmet.adapters.fastapi_app import create_app
from eventmet.chat import Completion
from eventmet.models import now_ms
from eventmet.settings import Settings

ADMIN = {"Authorization": "Bearer pw"}


class FakeClient:
    def complete(self, system_prompt, messages):
        return Completion(text="See you at the Firkin Fête.", input_tokens=500, output_tokens=20, model="claude-3-5-haiku-20241022")


class FailingClient:
    def complete(self, system_prompt, messages):
        raise RuntimeError("upstream down")


def _settings(**overrides):
    values = {
        "admin_password": "pw",
        "cron_secret": "cron",
        "tracking_background": False,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def client(corpus, store):
    app = create_app(settings=_settings(), store=store, corpus=corpus, completion_client=FakeClient())
    return TestClient(app)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "eventmet", "pages": 2}


def test_admin_routes_require_bearer_token(client):
    assert client.get("/api/admin/analytics").status_code == 401
    assert client.get("/api/admin/analytics", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/api/admin/analytics", headers=ADMIN).status_code == 200


def test_unknown_analytics_type_is_rejected(client):
    response = client.get("/api/admin/analytics", params={"type": "bogus"}, headers=ADMIN)

    assert response.status_code == 400


def test_chat_is_tracked_and_visible_in_analytics(client, store):
    response = client.post(
        "/api/chat",
        json={
            "session_id": "session_1_abc",
            "user_id": "u1",
            "messages": [{"role": "user", "content": "when is the firkin event"}],
            "device": {"type": "mobile", "browser": "Safari", "touch_enabled": True},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "session_1_abc"
    assert body["reply"] == "See you at the Firkin Fête."
    assert body["usage"] == {"input": 500, "output": 20}

    realtime = client.get("/api/admin/analytics", params={"type": "realtime"}, headers=ADMIN).json()
    assert realtime["total_messages"] == 1
    assert realtime["total_tokens"] == 520
    assert realtime["error_rate"] == "0.00"

    devices = client.get("/api/admin/analytics", params={"type": "devices"}, headers=ADMIN).json()
    assert devices["device"]["device_types"] == {"mobile": 1}

    queries = client.get("/api/admin/queries", headers=ADMIN).json()["queries"]
    assert queries[0]["text"] == "when is the firkin event"
    assert queries[0]["category"] == "schedule"

    combined = client.get("/api/admin/analytics", params={"type": "all"}, headers=ADMIN).json()
    assert set(combined) == {"realtime", "daily", "sessions", "users", "billing"}
    assert combined["sessions"][0]["session_id"] == "session_1_abc"


def test_chat_generates_a_session_id(client):
    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.json()["session_id"].startswith("session_")


def test_chat_rejects_invalid_payloads(client):
    assert client.post("/api/chat", json={"messages": []}).status_code == 422
    for context in (
        {"device": {"type": "mobile", "pixel_ratio": "retina"}},
        {"location": {"timezone_offset": "east"}},
        {"performance": {"page_load_time": "slow"}},
        {"device": "iphone"},
    ):
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}], **context})
        assert response.status_code == 422


def test_badly_typed_context_never_breaks_device_analytics(client, store):
    client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "device": {"type": "mobile", "pixel_ratio": "retina"}},
    )
    client.post(
        "/api/chat",
        json={
            "messages": [{"role": "user", "content": "hi"}],
            "device": {"type": "tablet", "pixel_ratio": "2", "colour": "red"},
            "location": {"timezone": "Europe/Paris", "languages": ["fr-FR"]},
        },
    )

    response = client.get("/api/admin/analytics", params={"type": "devices"}, headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["device"]["device_types"] == {"tablet": 1}
    assert response.json()["device"]["pixel_ratios"] == {"2.0": 1}


def test_chat_failure_returns_500_and_records_error(corpus, store):
    app = create_app(settings=_settings(), store=store, corpus=corpus, completion_client=FailingClient())
    client = TestClient(app)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    stats = client.get("/api/admin/analytics", headers=ADMIN).json()
    assert stats["error_count"] == 1


def test_chat_without_completion_client_is_unavailable(corpus, store):
    client = TestClient(create_app(settings=_settings(), store=store, corpus=corpus))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 503


def test_search_diagnostics(client):
    response = client.get("/api/admin/search", params={"q": "when is the firkin event"}, headers=ADMIN)

    body = response.json()
    assert [result["title"] for result in body["results"]] == ["Firkin Fête"]
    assert body["context"].startswith("--- [EVENT DATA]")


def test_cron_cleanup_requires_secret(client):
    assert client.get("/api/cron/cleanup").status_code == 401
    assert client.get("/api/cron/cleanup", headers=ADMIN).status_code == 401

    response = client.get("/api/cron/cleanup", headers={"Authorization": "Bearer cron"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["events_deleted"] == 0


def test_cron_cleanup_without_any_secret_is_a_server_error(corpus, store):
    settings = _settings(admin_password=None, cron_secret=None)
    client = TestClient(create_app(settings=settings, store=store, corpus=corpus))

    assert client.get("/api/cron/cleanup", headers={"Authorization": "Bearer x"}).status_code == 500


def test_admin_rate_limit(corpus, store):
    settings = _settings(rate_limit_enabled=True, admin_rate_limit=2)
    client = TestClient(create_app(settings=settings, store=store, corpus=corpus))

    for _ in range(2):
        assert client.get("/api/admin/analytics", headers=ADMIN).status_code == 200
    response = client.get("/api/admin/analytics", headers=ADMIN)

    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1
    assert response.headers["X-RateLimit-Limit"] == "2"


def test_background_tracking_adds_response_tokens_to_the_session(corpus, store):
    app = create_app(settings=_settings(tracking_background=True), store=store, corpus=corpus, completion_client=FakeClient())

    with TestClient(app) as client:
        for _ in range(5):
            response = client.post(
                "/api/chat",
                json={"session_id": "session_bg", "messages": [{"role": "user", "content": "when is the firkin"}]},
            )
            assert response.status_code == 200

    session = store.get_session("session_bg", now_ms())
    assert session.message_count == 5
    assert session.total_tokens == 5 * 520
