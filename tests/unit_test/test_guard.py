import pytest

from autodrive.agent.decision.guard import apply_memory_safety_guard, memory_blocked_sectors, world_region_to_sector
from autodrive.agent.decision.schemas import CollisionSummary


@pytest.mark.parametrize("front", [1.0, 1.8, 2.2, 2.3, 2.4, 2.49])
@pytest.mark.parametrize("throttle", [0.3, 0.6, 1.0])
@pytest.mark.parametrize("distance", [2.0, 50.0])
def test_forward_throttle_capped_when_front_in_danger(make_snapshot, front, throttle, distance):
    snap = make_snapshot(rays=9.0, front=front, left_diag=front, right_diag=front,
                         distance_to_target=distance, angle_to_target=0.0)
    out = apply_memory_safety_guard(snap, None, "F", throttle, 0.0)
    assert out.throttle <= 0.22 + 1e-9


def test_close_target_approach_skips_reroute_but_keeps_danger_cap(make_snapshot):
    snap = make_snapshot(rays=9.0, front=2.4, left_diag=2.4, right_diag=2.4,
                         distance_to_target=2.0, angle_to_target=0.0)
    out = apply_memory_safety_guard(snap, None, "F", 0.8, 0.0)
    assert out.profile.allow_final_forward_approach
    assert out.throttle == 0.22
    assert out.steering == 0.0
    assert out.guard_reason == "front_danger_clamp"


def test_blocked_front_reroutes_to_open_side(make_snapshot):
    snap = make_snapshot(rays=9.0, front=2.7)
    out = apply_memory_safety_guard(snap, None, "F", 0.5, 0.0)
    assert out.guard_applied
    assert out.guard_reason == "forward_guard_F_to_L"
    assert out.steering == 0.62
    assert out.throttle == 0.34
    assert out.profile.sensor_blocked_sectors == ["F"]


def test_reverse_denied_when_rear_blocked(make_snapshot):
    snap = make_snapshot(rays=9.0, front=3.0, back=1.5)
    out = apply_memory_safety_guard(snap, None, "B", -0.5, 0.3)
    assert out.throttle == 0.0
    assert out.guard_reason == "rear_blocked"


def test_rear_tight_with_open_front_prefers_forward(make_snapshot):
    snap = make_snapshot(rays=9.0, back=2.5)
    out = apply_memory_safety_guard(snap, None, "B", -0.5, 0.0)
    assert out.throttle == 0.2
    assert out.steering == 0.62
    assert out.guard_reason == "rear_tight_prefer_forward"


def test_repeated_wall_collision_blocks_sector(make_snapshot):
    collision = CollisionSummary(total_count=3, same_wall_consecutive_repeat_count=2, last_region="OUTER_SOUTH")
    assert memory_blocked_sectors(None, collision, 0.0) == ["F"]

    out = apply_memory_safety_guard(make_snapshot(rays=9.0), None, "F", 0.5, 0.0, collision=collision)
    assert out.profile.memory_blocked_sectors == ["F"]
    assert out.guard_reason == "forward_guard_F_to_L"


def test_clear_surroundings_leave_controls_untouched(make_snapshot):
    out = apply_memory_safety_guard(make_snapshot(rays=9.0), None, "F", 0.5, 0.1, thought="go")
    assert not out.guard_applied
    assert (out.throttle, out.steering, out.thought) == (0.5, 0.1, "go")


def test_world_region_to_sector():
    # heading 0 faces +Z (south); +X (east) is on the left
    assert world_region_to_sector("OUTER_SOUTH", 0.0) == "F"
    assert world_region_to_sector("OUTER_NORTH", 0.0) == "B"
    assert world_region_to_sector("OUTER_EAST", 0.0) == "L"
    assert world_region_to_sector("OUTER_WEST", 0.0) == "R"
    assert world_region_to_sector("INNER_OBSTACLE", 0.0) is None


if __name__ == "__main__":
    pytest.main(["-v", __file__])
