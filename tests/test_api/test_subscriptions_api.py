"""
Tests for Subscriptions JSON API
"""
import pytest

from subtracker.infrastructure.store.base import StoreError

API = "/api/v1/subscriptions"

NETFLIX = {
    "service_name": "Netflix",
    "category": "Entertainment",
    "price": 80,
    "billing_cycle": "Monthly",
    "payment_method": "Card",
}


def _create(client, **overrides):
    response = client.post(f"{API}/", json={**NETFLIX, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["id"]


def test_requires_authentication(client):
    response = client.get(f"{API}/")

    assert response.status_code == 401
    assert response.json() == {"detail": "Not authenticated"}


def test_create_and_list(authenticated_client):
    sub_id = _create(authenticated_client)

    data = authenticated_client.get(f"{API}/").json()

    assert [s["id"] for s in data["subscriptions"]] == [sub_id]
    assert data["monthly_total"] == 80
    assert data["yearly_total"] == 960
    assert data["active_count"] == 1
    assert data["total_count"] == 1
    assert data["loading"] is False


def test_create_validation_error(authenticated_client):
    response = authenticated_client.post(f"{API}/", json={**NETFLIX, "price": 0})

    assert response.status_code == 422
    assert response.json() == {"detail": "Price must be greater than 0."}


def test_get_one(authenticated_client):
    sub_id = _create(authenticated_client, notes="4K")

    data = authenticated_client.get(f"{API}/{sub_id}").json()

    assert data["id"] == sub_id
    assert data["service_name"] == "Netflix"
    assert data["notes"] == "4K"
    assert data["is_active"] is True
    assert data["renewal_date"] > data["created_at"]


def test_get_missing_returns_404(authenticated_client):
    response = authenticated_client.get(f"{API}/nope")

    assert response.status_code == 404
    assert response.json() == {"detail": "Subscription not found."}


def test_update(authenticated_client):
    sub_id = _create(authenticated_client)

    response = authenticated_client.put(
        f"{API}/{sub_id}",
        json={**NETFLIX, "price": "99,90", "billing_cycle": "Yearly", "renewal_date": "2026-09-01"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["price"] == pytest.approx(99.9)
    assert data["billing_cycle"] == "Yearly"


def test_status_toggle_and_filter(authenticated_client):
    active_id = _create(authenticated_client)
    paused_id = _create(authenticated_client, service_name="Gym", category="Fitness & Health")

    response = authenticated_client.patch(f"{API}/{paused_id}/status", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    data = authenticated_client.get(f"{API}/", params={"status": "active"}).json()
    assert [s["id"] for s in data["subscriptions"]] == [active_id]
    assert data["filters"] == {"status": "active"}

    inactive = authenticated_client.get(f"{API}/", params={"status": "inactive"}).json()
    assert [s["id"] for s in inactive["subscriptions"]] == [paused_id]
    assert inactive["monthly_total"] == 0


def test_invalid_filter_returns_422(authenticated_client):
    response = authenticated_client.get(f"{API}/", params={"category": "Food"})

    assert response.status_code == 422
    assert response.json() == {"detail": "Invalid category filter."}


def test_delete(authenticated_client):
    sub_id = _create(authenticated_client)

    assert authenticated_client.delete(f"{API}/{sub_id}").status_code == 204
    # повторное удаление - не ошибка
    assert authenticated_client.delete(f"{API}/{sub_id}").status_code == 204
    assert authenticated_client.get(f"{API}/{sub_id}").status_code == 404


def test_store_failure_returns_502(authenticated_client, store, monkeypatch):
    def fail(path, value):
        raise StoreError("Store write failed. Please try again.")

    monkeypatch.setattr(store, "write", fail)

    response = authenticated_client.post(f"{API}/", json=NETFLIX)

    assert response.status_code == 502
    assert response.json() == {"detail": "Store write failed. Please try again."}


def test_unknown_api_path_is_not_redirected(client):
    response = client.get("/api/v1/unknown", follow_redirects=False)
    assert response.status_code == 404
