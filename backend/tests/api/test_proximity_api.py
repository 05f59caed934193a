import pytest

from app.domain.geo.geodesy import Coordinate, default_location, project_point
from app.infra import jwt as jwt_helper

HEADERS = {"X-User-Id": "viewer"}


@pytest.mark.asyncio
async def test_nearby_requires_auth(api_client):
	response = await api_client.get("/nearby")
	assert response.status_code == 401
	assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_nearby_dev_header_rejected_in_production(api_client):
	from app.settings import settings

	settings.environment = "production"
	response = await api_client.get("/nearby", headers=HEADERS)
	assert response.status_code == 401


@pytest.mark.asyncio
async def test_nearby_lists_users_with_range_view(api_client, store):
	base = default_location()
	store.add_user("near", location=project_point(base, 1.0, 90))
	store.add_user("far", location=project_point(base, 8.0, 90))
	store.add_user("hidden", location=project_point(base, 2.0, 0), hide_exact_location=True)
	store.add_user("lost", location=None)

	response = await api_client.get("/nearby", params={"radius_km": 5}, headers=HEADERS)
	assert response.status_code == 200
	body = response.json()
	assert body["outcome"] == "ran"
	assert body["radius_km"] == 5.0
	items = {item["id"]: item for item in body["items"]}
	assert set(items) == {"near", "far", "hidden", "lost"}
	assert items["near"]["distance_km"] == pytest.approx(1.0, abs=0.01)
	assert items["lost"]["distance_km"] is None
	assert items["lost"]["display"] is None
	assert items["hidden"]["location_hidden"] is True
	assert set(body["in_range"]) == {"near", "hidden", "lost"}


@pytest.mark.asyncio
async def test_nearby_second_call_is_throttled(api_client, store):
	first = await api_client.get("/nearby", headers=HEADERS)
	second = await api_client.get("/nearby", params={"refresh": "true"}, headers=HEADERS)
	assert first.json()["outcome"] == "ran"
	assert second.json()["outcome"] == "throttled"
	assert store.summary_calls == 1


@pytest.mark.asyncio
async def test_nearby_rejects_radius_out_of_range(api_client):
	response = await api_client.get("/nearby", params={"radius_km": 25}, headers=HEADERS)
	assert response.status_code == 422
	assert "request_id" in response.json()


@pytest.mark.asyncio
async def test_nearby_accepts_bearer_token(api_client):
	token = jwt_helper.encode_access({"sub": "viewer"})
	response = await api_client.get("/nearby", headers={"Authorization": f"Bearer {token}"})
	assert response.status_code == 200


@pytest.mark.asyncio
async def test_location_update_moves_viewer(api_client, store, registry):
	base = default_location()
	store.add_user("near", location=project_point(base, 1.0, 90))
	response = await api_client.post(
		"/location",
		json={"lat": 10.0, "lng": 20.0, "hide_exact_location": True},
		headers=HEADERS,
	)
	assert response.status_code == 200
	assert response.json() == {"ok": True, "lat": 10.0, "lng": 20.0}
	assert store.location_writes == [("viewer", Coordinate(10.0, 20.0), True)]
	assert registry.get("viewer").fetcher.viewer_location == Coordinate(10.0, 20.0)

	body = (await api_client.get("/nearby", headers=HEADERS)).json()
	assert body["in_range"] == []


@pytest.mark.asyncio
async def test_location_update_validates_payload(api_client):
	response = await api_client.post("/location", json={"lat": 95.0, "lng": 0.0}, headers=HEADERS)
	assert response.status_code == 422
	assert response.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_location_write_failure_returns_503(api_client, store):
	store.fail_location = True
	response = await api_client.post("/location", json={"lat": 1.0, "lng": 2.0}, headers=HEADERS)
	assert response.status_code == 503
	assert response.json()["detail"] == "location_write_failed"


@pytest.mark.asyncio
async def test_presence_offline_beacon(api_client, store):
	response = await api_client.post("/presence/offline", headers=HEADERS)
	assert response.status_code == 202
	assert store.best_effort_writes == [("viewer", False)]


@pytest.mark.asyncio
async def test_hidden_user_distance_is_coarsened(api_client, store):
	base = default_location()
	store.add_user("hidden", location=project_point(base, 3.3358, 90), hide_exact_location=True)
	store.add_user("open", location=project_point(base, 3.3358, 270))

	response = await api_client.get("/nearby", params={"radius_km": 3.35}, headers=HEADERS)
	items = {item["id"]: item for item in response.json()["items"]}
	assert items["hidden"]["distance_km"] == pytest.approx(3.4)
	assert items["open"]["distance_km"] == pytest.approx(3.336, abs=0.001)
	assert response.json()["in_range"] == ["open"]
