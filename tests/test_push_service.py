import pytest
import requests

from studio_booking import push_service, settings


class FakeResponse:
    def __init__(self, data, ok=True):
        self._data = data
        self.ok = ok

    def json(self):
        return self._data


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_APP_ID", "app-123")
    monkeypatch.setattr(settings, "ONESIGNAL_REST_API_KEY", "rest-key")


def test_payload_targets_users_by_external_id():
    payload = push_service.build_payload("Hi", "Hello", target_user_ids=[4, 9])

    assert payload["include_aliases"] == {"external_id": ["4", "9"]}
    assert payload["target_channel"] == "push"
    assert "filters" not in payload


def test_payload_defaults_to_administrators():
    payload = push_service.build_payload("Hi", "Hello")

    assert payload["filters"] == [{"field": "tag", "key": "role", "relation": "=", "value": "administrator"}]


def test_payload_role_and_url():
    payload = push_service.build_payload("Hi", "Hello", target_role="trainee", url="https://studio.example/sessions")

    assert payload["filters"][0]["value"] == "trainee"
    assert payload["url"] == "https://studio.example/sessions"


def test_grant_payload(monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_ANDROID_CHANNEL_ID", "chan-1")

    payload = push_service.grant_tickets_payload(7, 5)

    assert payload["priority"] == 10
    assert payload["android_channel_id"] == "chan-1"
    assert payload["contents"]["en"].startswith("5 new tickets")


def test_send_push_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_REST_API_KEY", "")

    with pytest.raises(push_service.PushNotConfigured):
        push_service.send_push({})


def test_send_push_posts_with_basic_auth(configured, monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers))
        return FakeResponse({"id": "n-1", "recipients": 1})

    monkeypatch.setattr(requests, "post", fake_post)

    result = push_service.send_push(push_service.build_payload("Hi", "Hello", target_user_ids=[1]))

    assert result["id"] == "n-1"
    url, body, headers = calls[0]
    assert url == settings.ONESIGNAL_API_URL
    assert body["app_id"] == "app-123"
    assert headers["Authorization"] == "Basic rest-key"


def test_send_push_errors_field_raises(configured, monkeypatch):
    monkeypatch.setattr(
        requests, "post",
        lambda *a, **kw: FakeResponse({"errors": ["All included players are not subscribed"]})
    )

    with pytest.raises(push_service.PushError) as exc:
        push_service.send_push({})

    assert exc.value.details == ["All included players are not subscribed"]


def test_notify_safely_swallows_failures(configured, monkeypatch):
    def broken_post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(requests, "post", broken_post)

    assert push_service.notify_tickets_granted(1, 2) is False


def test_session_cancelled_without_refunds_sends_nothing(monkeypatch):
    sent = []
    monkeypatch.setattr(push_service, "send_push", sent.append)

    assert push_service.notify_session_cancelled([], "Yoga") is False
    assert sent == []


def test_notification_endpoint(client, admin_headers, monkeypatch):
    sent = []
    monkeypatch.setattr(push_service, "send_push", lambda payload: sent.append(payload) or {"id": "n-2", "recipients": 3})

    r = client.post("/api/notifications", headers=admin_headers, json={"title": "Studio news", "message": "New schedule"})

    assert r.json() == {"success": True, "id": "n-2", "recipients": 3}
    assert sent[0]["filters"][0]["value"] == "administrator"


def test_notification_endpoint_not_configured(client, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "ONESIGNAL_REST_API_KEY", "")

    r = client.post("/api/notifications", headers=admin_headers, json={"title": "Hi", "message": "Hello"})

    assert r.status_code == 500


def test_grant_notification_requires_amount(client, admin_headers):
    r = client.post("/api/notifications/grant-tickets", headers=admin_headers, json={"user_id": 1, "amount": 0})

    assert r.status_code == 400
    assert r.json()["detail"] == "Missing required fields"


def test_notifications_are_admin_only(client, trainee_headers):
    r = client.post("/api/notifications", headers=trainee_headers, json={"title": "Hi", "message": "Hello"})

    assert r.status_code == 403
