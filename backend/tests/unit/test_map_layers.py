import random

import pytest

from app.domain.geo.geodesy import Coordinate, distance_km, project_point
from app.domain.map import styles
from app.domain.map.layers import LayerState, MapState, PrivacyCircleLayer, RadiusCircleLayer, UserMarkerLayer
from app.domain.map.surface import MapFeature, Role, VectorMapSurface
from app.domain.proximity.models import FriendRequest, NearbyUser, PrivacySettings

ORIGIN = Coordinate(0.0, 0.0)


def _user(user_id, km, bearing=90.0, *, hidden=False, business=False):
	location = project_point(ORIGIN, km, bearing)
	return NearbyUser(
		id=user_id,
		name=user_id.title(),
		is_online=True,
		location=location,
		distance=distance_km(ORIGIN, location),
		location_settings=PrivacySettings(hide_exact_location=hidden),
		is_business=business,
	)


def test_radius_circle_redraw_is_idempotent():
	surface = VectorMapSurface()
	layer = RadiusCircleLayer(surface, MapState(viewer_id="me", location=ORIGIN, radius_km=3))
	for _ in range(25):
		layer.redraw()
	[circle] = surface.features(Role.RADIUS_CIRCLE)
	assert circle.radius_m == 3000.0
	assert layer.state is LayerState.STATIC


def test_radius_circle_absent_without_tracking_or_location():
	surface = VectorMapSurface()
	state = MapState(viewer_id="me", location=ORIGIN, tracking=False)
	layer = RadiusCircleLayer(surface, state)
	layer.redraw()
	assert surface.features(Role.RADIUS_CIRCLE) == []

	state.tracking = True
	state.location = None
	layer.redraw()
	assert layer.state is LayerState.ABSENT


def test_privacy_toggle_on_then_off_leaves_nothing_scheduled(frames):
	surface = VectorMapSurface()
	state = MapState(viewer_id="me", location=ORIGIN)
	layer = PrivacyCircleLayer(surface, state, frames)

	state.privacy = True
	layer.redraw()
	assert layer.state is LayerState.ANIMATED
	assert frames.pending == 1
	frames.run_frame()
	frames.run_frame()
	assert frames.pending == 1

	state.privacy = False
	layer.redraw()
	assert frames.pending == 0
	assert surface.features(Role.PRIVACY_CIRCLE) == []
	assert layer.state is LayerState.ABSENT


def test_privacy_pulse_stays_in_bounds(frames):
	surface = VectorMapSurface()
	state = MapState(viewer_id="me", location=ORIGIN, privacy=True)
	layer = PrivacyCircleLayer(surface, state, frames)
	layer.redraw()
	layer.redraw()
	assert frames.pending == 1
	assert len(surface.features(Role.PRIVACY_CIRCLE)) == 1

	opacities = []
	for _ in range(400):
		frames.run_frame()
		opacities.append(surface.get(PrivacyCircleLayer.FEATURE_ID).style.opacity)
	assert min(opacities) >= 0.2
	assert max(opacities) <= 0.4
	assert max(opacities) - min(opacities) > 0.1

	circle = surface.get(PrivacyCircleLayer.FEATURE_ID)
	assert circle.center == ORIGIN
	assert circle.radius_m == 5000.0


def test_privacy_circle_follows_location(frames):
	surface = VectorMapSurface()
	state = MapState(viewer_id="me", location=ORIGIN, privacy=True)
	layer = PrivacyCircleLayer(surface, state, frames)
	layer.redraw()
	state.location = Coordinate(10.0, 20.0)
	layer.redraw()
	assert surface.get(PrivacyCircleLayer.FEATURE_ID).center == Coordinate(10.0, 20.0)
	assert frames.pending == 1


def test_user_markers_filtered_by_radius():
	surface = VectorMapSurface(resolution=5)
	state = MapState(
		viewer_id="me",
		location=ORIGIN,
		radius_km=5,
		users=(_user("near", 1.0), _user("far", 6.0), NearbyUser(id="lost", name="Lost", is_online=True)),
	)
	layer = UserMarkerLayer(surface, state, show_labels=True)
	layer.redraw()

	assert surface.get("self") is not None
	assert [f.user_id for f in surface.features(Role.OTHER)] == ["near"]
	assert surface.get("user:near").style.label == "Near"
	assert layer.position_of("far") is None

	state.radius_km = 10
	layer.redraw()
	assert {f.user_id for f in surface.features(Role.OTHER)} == {"near", "far"}


def test_private_users_drawn_offset_and_unlabelled():
	surface = VectorMapSurface(resolution=5)
	hidden = _user("hidden", 2.0, hidden=True)
	state = MapState(viewer_id="me", location=ORIGIN, users=(hidden,))
	layer = UserMarkerLayer(surface, state, rng=random.Random(5), show_labels=True)
	layer.redraw()

	marker = surface.get("user:hidden")
	assert marker.style.radius == styles.PRIVATE_RADIUS
	assert marker.style.label is None
	assert marker.center != hidden.location
	assert distance_km(marker.center, hidden.location) <= 0.05
	assert layer.position_of("hidden") == marker.center


def test_self_marker_hidden_in_privacy_mode():
	surface = VectorMapSurface(resolution=5)
	state = MapState(viewer_id="me", location=ORIGIN, privacy=True)
	UserMarkerLayer(surface, state).redraw()
	assert surface.get("self") is None


def test_marker_styles_follow_friend_status_and_selection():
	surface = VectorMapSurface(resolution=5)
	state = MapState(
		viewer_id="me",
		location=ORIGIN,
		users=(_user("friend", 1.0, 0.0), _user("pending", 1.0, 90.0), _user("mover", 1.0, 180.0)),
		friend_requests=(
			FriendRequest(sender_id="me", receiver_id="friend", status="accepted"),
			FriendRequest(sender_id="pending", receiver_id="me", status="pending"),
		),
		moving_user_ids=frozenset({"mover"}),
		selected_user_id="pending",
	)
	UserMarkerLayer(surface, state).redraw()
	assert surface.get("user:friend").style.fill == styles.POSITIVE_FILL
	assert surface.get("user:pending").style.fill == styles.PENDING_FILL
	assert surface.get("user:pending").style.stroke == styles.SELECTED_STROKE
	assert surface.get("user:mover").style.fill == styles.POSITIVE_FILL


def test_zoomed_out_markers_cluster():
	surface = VectorMapSurface(resolution=100)
	users = (
		_user("a", 1.0, 0.0, business=True),
		_user("b", 1.05, 0.0, business=True),
		_user("c", 1.1, 0.0, business=True),
		_user("solo", 4.0, 180.0),
	)
	state = MapState(viewer_id="me", location=ORIGIN, users=users)
	layer = UserMarkerLayer(surface, state, cluster_resolution=40, cluster_radius_km=0.5)
	assert layer.clustered
	layer.redraw()

	[cluster] = surface.features(Role.CLUSTER)
	assert cluster.properties["count"] == 3
	assert cluster.style.label == "3"
	assert cluster.style.fill == styles.BUSINESS_FILL
	assert [f.user_id for f in surface.features(Role.OTHER)] == ["solo"]

	surface.set_resolution(10)
	layer.redraw()
	assert surface.features(Role.CLUSTER) == []
	assert len(surface.features(Role.OTHER)) == 4


def test_surface_geojson_and_clicks():
	surface = VectorMapSurface()
	surface.add_feature(
		MapFeature(id="x", role=Role.OTHER, center=Coordinate(1.0, 2.0), style=styles.user_marker_style(is_self=False))
	)
	surface.add_feature(
		MapFeature(id="c", role=Role.RADIUS_CIRCLE, center=ORIGIN, style=styles.radius_circle_style(), shape="circle", radius_m=10)
	)
	collection = surface.to_geojson()
	assert [feature["id"] for feature in collection["features"]] == ["c", "x"]
	assert collection["features"][1]["geometry"]["coordinates"] == [2.0, 1.0]

	clicks = []
	remove = surface.on_click(clicks.append)
	surface.click(ORIGIN)
	remove()
	surface.click(ORIGIN)
	assert clicks == [ORIGIN]

	with pytest.raises(KeyError):
		surface.restyle("missing", styles.radius_circle_style())
	with pytest.raises(ValueError):
		surface.set_resolution(0)
