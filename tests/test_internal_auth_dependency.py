# tests/test_internal_auth_dependency.py
from http import HTTPStatus

from booklink.api.dependencies import internal_auth as auth_module


class DummySettingsProd:
    APP_ENV = "prod"
    INTERNAL_API_KEY = "supersecret"


class DummySettingsProdUnconfigured:
    APP_ENV = "prod"
    INTERNAL_API_KEY = None


class DummySettingsLocalWithKey:
    APP_ENV = "local"
    INTERNAL_API_KEY = "localsecret"


def test_internal_endpoint_401_when_key_missing_in_prod(monkeypatch, client):
    """
    In non-local env (APP_ENV='prod') with INTERNAL_API_KEY set, calling an
    /internal endpoint without the X-Internal-Api-Key header should return 401.
    """
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post("/internal/booking-requests/some-token/cancel")
    assert resp.status_code == HTTPStatus.UNAUTHORIZED
    body = resp.json()
    assert "invalid or missing" in body["detail"].lower()


def test_internal_endpoint_401_when_key_wrong_in_prod(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post(
        "/internal/booking-requests/some-token/cancel",
        headers={"X-Internal-Api-Key": "wrong-key"},
    )
    assert resp.status_code == HTTPStatus.UNAUTHORIZED


def test_internal_endpoint_passes_when_key_correct_in_prod(monkeypatch, client, make_booking):
    """
    Correct key => request reaches the route.
    """
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())
    make_booking("tok-auth")

    resp = client.post(
        "/internal/booking-requests/tok-auth/cancel",
        headers={"X-Internal-Api-Key": "supersecret"},
    )
    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["bookingStatus"] == "Cancelled"


def test_internal_endpoint_500_when_key_not_configured_in_prod(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProdUnconfigured())

    resp = client.post("/internal/meetings/1/booking-requests")
    assert resp.status_code == HTTPStatus.INTERNAL_SERVER_ERROR


def test_local_env_enforces_key_once_configured(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsLocalWithKey())

    resp = client.post("/internal/meetings/1/booking-requests")
    assert resp.status_code == HTTPStatus.UNAUTHORIZED


def test_public_routes_never_require_internal_key(monkeypatch, client):
    monkeypatch.setattr(auth_module, "get_settings", lambda: DummySettingsProd())

    resp = client.post("/public/booking/info", json={"token": "missing"})
    assert resp.status_code == HTTPStatus.NOT_FOUND
