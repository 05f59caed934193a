import pytest

from app.domain.geo.geodesy import Coordinate, project_point
from app.domain.map import styles
from app.domain.map.clustering import ClusterPoint, adaptive_radius, cluster_points
from app.domain.map.oscillator import PulseOscillator
from app.domain.proximity.models import FriendRequest


def test_self_marker_ignores_other_inputs():
	style = styles.user_marker_style(is_self=True, name="Me", selected=True, show_labels=True, status="accepted")
	assert style.fill == styles.SELF_FILL
	assert style.radius == styles.SELF_RADIUS
	assert style.label is None


@pytest.mark.parametrize(
	"kwargs,fill",
	[
		({"moving": True}, styles.POSITIVE_FILL),
		({"status": "accepted"}, styles.POSITIVE_FILL),
		({"status": "pending"}, styles.PENDING_FILL),
		({}, styles.DEFAULT_FILL),
	],
)
def test_other_marker_fill(kwargs, fill):
	assert styles.user_marker_style(is_self=False, name="Sam", **kwargs).fill == fill


def test_private_marker_is_small_and_unlabelled():
	style = styles.user_marker_style(is_self=False, name="Sam", privacy=True, show_labels=True)
	assert style.radius == styles.PRIVATE_RADIUS
	assert style.label is None


def test_selected_and_labelled_marker():
	plain = styles.user_marker_style(is_self=False, name="Sam", show_labels=True)
	selected = styles.user_marker_style(is_self=False, name="Sam", show_labels=True, selected=True)
	assert plain.label == "Sam"
	assert selected.radius > plain.radius
	assert selected.stroke == styles.SELECTED_STROKE
	assert selected.z_index > plain.z_index


def test_friend_status_accepted_wins():
	requests = [
		FriendRequest(sender_id="me", receiver_id="sam", status="pending"),
		FriendRequest(sender_id="sam", receiver_id="me", status="accepted"),
		FriendRequest(sender_id="me", receiver_id="alex", status="rejected"),
	]
	assert styles.friend_status("sam", requests) == "accepted"
	assert styles.friend_status("alex", requests) == "none"
	assert styles.friend_status("quinn", requests) == "none"


def test_cluster_radius_monotonic_and_clamped():
	radii = [styles.cluster_radius(count) for count in range(1, 200)]
	assert radii == sorted(radii)
	assert radii[0] == styles.CLUSTER_MIN_RADIUS
	assert radii[-1] == styles.CLUSTER_MAX_RADIUS


def test_cluster_marker_labels_count():
	style = styles.cluster_marker_style(4, business=True)
	assert style.label == "4"
	assert style.fill == styles.BUSINESS_FILL
	assert styles.cluster_marker_style(1).label is None


def test_circle_styles():
	assert styles.privacy_circle_style(0.3).opacity == 0.3
	assert styles.radius_circle_style().opacity == styles.RADIUS_FILL_OPACITY
	assert styles.privacy_circle_style(0.2).with_opacity(0.4).as_dict()["opacity"] == 0.4


def test_oscillator_is_a_bounded_triangle_wave():
	osc = PulseOscillator.for_duration(0.0, 1.0, 4, 1)
	values = [osc.step() for _ in range(9)]
	assert values == [0.25, 0.5, 0.75, 1.0, 0.75, 0.5, 0.25, 0.0, 0.25]
	osc.reset()
	assert osc.value == 0.0 and osc.direction == 1

	pulse = PulseOscillator.for_duration(0.2, 0.4, 3000, 16)
	assert all(0.2 <= pulse.step() <= 0.4 for _ in range(1000))


def test_oscillator_rejects_bad_bounds():
	with pytest.raises(ValueError):
		PulseOscillator(minimum=0.5, maximum=0.1, step_size=0.1)
	with pytest.raises(ValueError):
		PulseOscillator.for_duration(0.2, 0.4, 0, 16)


def test_clustering_groups_close_points():
	base = Coordinate(0.0, 0.0)
	points = [
		ClusterPoint("a", base),
		ClusterPoint("b", project_point(base, 0.1, 90)),
		ClusterPoint("c", project_point(base, 0.2, 0)),
		ClusterPoint("far", project_point(base, 5.0, 45)),
	]
	clusters = cluster_points(points, 0.5)
	sizes = sorted(cluster.size for cluster in clusters)
	assert sizes == [1, 3]
	big = next(cluster for cluster in clusters if cluster.size == 3)
	assert {member.user_id for member in big.members} == {"a", "b", "c"}
	assert not big.is_business


def test_adaptive_radius_depends_on_density():
	assert adaptive_radius([ClusterPoint("a", Coordinate(0, 0))], 0.5) == 0.5
	dense = [ClusterPoint(f"u{idx}", Coordinate(0.0001 * idx, 0.0)) for idx in range(12)]
	sparse = [ClusterPoint(f"u{idx}", Coordinate(1.0 * idx, 0.0)) for idx in range(12)]
	assert adaptive_radius(dense, 0.5) == pytest.approx(0.3)
	assert adaptive_radius(sparse, 0.5) == pytest.approx(0.75)
	assert cluster_points([]) == []
