import pytest

from autodrive.agent.decision.config import MemoryConfig, WorldBounds
from autodrive.agent.decision.memory import GridCell, SpatialMemoryGrid, relative_sector


def _grid() -> SpatialMemoryGrid:
    return SpatialMemoryGrid(MemoryConfig(world_bounds=WorldBounds()))


def test_visits_monotonic_and_risk_converges(make_snapshot):
    grid = _grid()
    grid.update(make_snapshot(rays=9.0, world_x=1.0, world_z=1.0), now=1000.0)
    cell = grid.get(0, 0)
    assert cell.visits == 1
    assert cell.risk == 0.0

    # every ray at 2.0 m -> instantaneous risk (3.2 - 2.0) / 3.2
    expected = (3.2 - 2.0) / 3.2
    previous_visits, previous_risk = cell.visits, cell.risk
    for i in range(40):
        grid.update(make_snapshot(rays=2.0, world_x=1.0, world_z=1.0), now=1001.0 + i)
        assert cell.visits == previous_visits + 1
        assert cell.risk >= previous_risk
        previous_visits, previous_risk = cell.visits, cell.risk
    assert abs(cell.risk - expected) < 0.01


def test_snapshot_without_pose_is_ignored(make_snapshot):
    grid = _grid()
    grid.update(make_snapshot(world_x=None, world_z=None), now=1000.0)
    assert grid.cells == {}
    assert grid.build_context(make_snapshot(world_x=None, world_z=None)) is None


def test_rays_mark_open_and_obstacle_evidence(make_snapshot):
    grid = _grid()
    # front ray hits at 3 m from (1, 1), heading 0 -> +Z: hit lands in cell (0, 2)
    grid.update(make_snapshot(rays=9.0, front=3.0, world_x=1.0, world_z=1.0), now=1000.0)
    hit = grid.get(0, 2)
    assert hit is not None
    assert hit.obstacle_hits >= 1
    assert hit.risk >= 0.74


def test_no_go_candidate_scores_below_clean_neighbour():
    grid = _grid()
    grid.cells[(1, 0)] = GridCell(risk=0.9, obstacle_hits=3, open_hits=0)
    grid.cells[(-1, 0)] = GridCell(open_hits=3)

    blocked = grid.evaluate_candidate(1.0, 1.0, 0.0, 0, 0, 1, 0)
    clean = grid.evaluate_candidate(1.0, 1.0, 0.0, 0, 0, -1, 0)
    assert blocked.is_no_go
    assert "obstacleDominant" in blocked.no_go_reasons
    assert not clean.is_no_go
    assert blocked.score < clean.score


def test_outside_bounds_candidate_is_no_go():
    grid = _grid()
    # origin cell (9, 0); neighbour (10, 0) has its centre at x=21 > max_x
    outside = grid.evaluate_candidate(18.5, 1.0, 0.0, 9, 0, 10, 0)
    assert outside.outside_bounds
    assert "outsideBounds" in outside.no_go_reasons


def test_build_context_queries_neighbourhood_and_loop_rate(make_snapshot):
    grid = _grid()
    snap = make_snapshot(world_x=1.0, world_z=1.0)
    for i in range(10):
        grid.update(snap, now=1000.0 + i)

    ctx = grid.build_context(snap)
    assert (ctx.ix, ctx.iz) == (0, 0)
    assert ctx.candidate_count == 24
    assert ctx.current_cell["visits"] == 10
    assert ctx.loop_rate == 1.0
    assert ctx.loop_warning == "HIGH_REVISIT_LOOP_RISK"
    assert [s.sector for s in ctx.sector_safety] == ["L", "F", "R", "B"]
    assert ctx.preferred_sector in ("L", "F", "R", "B")
    scores = [c.score for c in ctx.top_candidates]
    assert scores == sorted(scores, reverse=True)


def test_relative_sector_follows_heading_convention():
    # heading 0 faces +Z; +X is on the left
    assert relative_sector(0, 0, 0, 0, 5) == "F"
    assert relative_sector(0, 0, 0, 0, -5) == "B"
    assert relative_sector(0, 0, 0, 5, 0) == "L"
    assert relative_sector(0, 0, 0, -5, 0) == "R"
    # facing +X (heading 90), +Z is now on the right
    assert relative_sector(0, 0, 90, 0, 5) == "R"


def test_reset_clears_cells_and_path(make_snapshot):
    grid = _grid()
    grid.update(make_snapshot(sensor_range=20.0), now=1000.0)
    assert grid.sensor_range == 20.0
    grid.reset()
    assert grid.cells == {}
    assert len(grid.path) == 0
    assert grid.sensor_range == 10.0


def test_invalid_memory_config_raises():
    with pytest.raises(ValueError):
        MemoryConfig(cell_size=0)
    with pytest.raises(ValueError):
        MemoryConfig(sensor_range_min=40.0, sensor_range_max=30.0)


if __name__ == "__main__":
    pytest.main(["-v", __file__])
