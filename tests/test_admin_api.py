from __future__ import annotations

from conftest import auth_headers, catalog_document
from marketplace.entitlements.service import EntitlementService


def admin_headers():
    return auth_headers("admin-1", roles=("admin",))


def _grant(app, user_id, provider_id, tier_id="sevenDays", payment_id=None):
    session = app.state.session_factory()
    try:
        service = EntitlementService(session, app.state.catalog_loader, clock=app.state.clock)
        return service.grant_tier(user_id, provider_id, tier_id, payment_id or f"pay_{user_id}_{provider_id}")
    finally:
        session.close()


def _settings_body(**overrides):
    body = catalog_document()
    body.update(overrides)
    return body


# =============================================================================
# Connections list
# =============================================================================

def test_admin_routes_reject_non_admins(client):
    assert client.get("/api/admin/connections", headers=auth_headers()).status_code == 403
    assert client.get("/api/admin/connection-access-settings", headers=auth_headers()).status_code == 403
    assert client.get("/api/admin/connections").status_code == 401


def test_list_connections_enriches_names_and_status(client, app, clock):
    _grant(app, "user-1", "provider-1", "oneTime")
    clock.advance(minutes=5)
    _grant(app, "ghost", "provider-2")
    clock.advance(days=2)

    response = client.get("/api/admin/connections", headers=admin_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    newest, oldest = body["connections"]
    assert newest["user_name"] == "Unknown User"
    assert newest["provider_name"] == "Provider provider-2"
    assert newest["access_label"] == "7 Days Access"
    assert newest["status"] == "active_timed"
    assert oldest["user_name"] == "Customer user-1"
    assert oldest["status"] == "expired"
    assert oldest["review_requested"] is False


def test_list_total_counts_all_records_when_paged(client, app, clock):
    for user_id in ("user-1", "user-2", "user-3"):
        _grant(app, user_id, "provider-1")
        clock.advance(minutes=1)

    body = client.get("/api/admin/connections?limit=2&offset=1", headers=admin_headers()).json()

    assert body["total"] == 3
    assert [c["user_id"] for c in body["connections"]] == ["user-2", "user-1"]


def test_admin_listing_does_not_trigger_reviews(client, app, clock):
    _grant(app, "user-1", "provider-1", "oneTime")
    clock.advance(days=2)

    client.get("/api/admin/connections", headers=admin_headers())
    pending = client.get("/api/reviews/pending", headers=auth_headers("user-1")).json()

    assert pending["pending"] is None


def test_delete_connection(client, app):
    _grant(app, "user-1", "provider-1")

    response = client.delete("/api/admin/connections/user-1/provider-1", headers=admin_headers())
    state = client.get("/api/connections/provider-1", headers=auth_headers("user-1")).json()

    assert response.status_code == 200
    assert response.json() == {"deleted": True}
    assert state["status"] == "no_access"


def test_delete_missing_connection_is_404(client):
    response = client.delete("/api/admin/connections/user-1/provider-1", headers=admin_headers())

    assert response.status_code == 404


# =============================================================================
# Access settings
# =============================================================================

def test_get_access_settings_uses_stored_keys(client):
    response = client.get("/api/admin/connection-access-settings", headers=admin_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["isFreeAccessFallbackEnabled"] is True
    assert body["freeAccessDurationMinutes"] == 30
    assert body["connectionAccessOptions"][1] == {
        "id": "sevenDays",
        "label": "7 Days Access",
        "price": 250,
        "durationDays": 7,
        "enabled": True,
    }
    assert body["connectionAccessOptions"][3]["durationDays"] is None


def test_update_access_settings_applies_to_next_connect(client):
    body = _settings_body(freeAccessDurationMinutes=15)
    for option in body["connectionAccessOptions"]:
        option["enabled"] = False

    response = client.put("/api/admin/connection-access-settings", json=body, headers=admin_headers())
    connect = client.post("/api/connections/provider-1/connect", headers=auth_headers()).json()

    assert response.status_code == 200
    assert response.json()["freeAccessDurationMinutes"] == 15
    assert response.json()["updatedAt"] is not None
    assert connect["offer"]["kind"] == "free"
    assert connect["access"]["remaining_seconds"] == 15 * 60


def test_update_keeps_existing_grant_expiry(client, app, clock):
    record = _grant(app, "user-1", "provider-1", "sevenDays")
    body = _settings_body()
    body["connectionAccessOptions"][1]["durationDays"] = 2

    client.put("/api/admin/connection-access-settings", json=body, headers=admin_headers())
    state = client.get("/api/connections/provider-1", headers=auth_headers()).json()

    assert state["status"] == "active_timed"
    assert state["remaining_seconds"] == int((record.expires_at - clock.now).total_seconds())


def test_update_rejects_invalid_settings(client):
    too_short = _settings_body(freeAccessDurationMinutes=0)
    negative = _settings_body()
    negative["connectionAccessOptions"][0]["price"] = -1
    no_days = _settings_body()
    del no_days["connectionAccessOptions"][0]["durationDays"]
    short_disclaimer = _settings_body(disclaimerEmailContent="too short")

    for body in (too_short, negative, no_days, short_disclaimer):
        response = client.put("/api/admin/connection-access-settings", json=body, headers=admin_headers())
        assert response.status_code == 422


def test_lifetime_duration_is_cleared_on_save(client):
    body = _settings_body()
    body["connectionAccessOptions"][3]["durationDays"] = 99

    response = client.put("/api/admin/connection-access-settings", json=body, headers=admin_headers())

    assert response.status_code == 200
    assert response.json()["connectionAccessOptions"][3]["durationDays"] is None
