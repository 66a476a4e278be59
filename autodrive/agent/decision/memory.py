from __future__ import annotations

"""
Spatial Memory Grid (non-LLM, persistent per run).

A sparse map of world cells keyed by integer (ix, iz) = floor(world / cell_size).
Every sensor tick integrates all eight rays:
- traversed sub-cells before a hit accumulate "open" evidence
- the terminal cell of a real hit accumulates "obstacle" evidence with an
  immediate risk floor (the outer world wall is a harder hazard than interior
  obstacles)

Queries rank neighbouring cells as movement candidates (novelty / openness vs.
risk / target-absence / distance) and tag unsafe ones with no-go reasons.
The grid is approximate by nature and degrades to defaults for unseen cells;
nothing in here raises.
"""

import logging
import math
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

import numpy as np

from .config import MemoryConfig, WorldBounds
from .schemas import SECTORS, SENSOR_RAYS, SensorSnapshot, clamp

logger = logging.getLogger(__name__)

CellKey = Tuple[int, int]

OUTER_WALL_REPEAT_HARD_NO_GO_HITS = 2
OBSTACLE_REPEAT_HARD_NO_GO_HITS = 3
LOOP_WARNING_RATE = 0.35


def _round(value: float, digits: int = 3) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return round(value, digits)


def relative_sector(from_x: float, from_z: float, heading_deg: float, to_x: float, to_z: float) -> str:
    """Bucket the bearing from (from_x, from_z) to (to_x, to_z) relative to heading."""
    dx = to_x - from_x
    dz = to_z - from_z
    mag = math.hypot(dx, dz)
    if mag < 1e-6:
        return "F"

    heading_rad = math.radians(heading_deg)
    fx = math.sin(heading_rad)
    fz = math.cos(heading_rad)

    dot = clamp((fx * dx + fz * dz) / mag, -1.0, 1.0)
    cross_y = fx * dz - fz * dx
    angle = math.degrees(math.atan2(cross_y, dot))
    if abs(angle) <= 30:
        return "F"
    if abs(angle) >= 150:
        return "B"
    return "R" if angle > 0 else "L"


def _bounds_penalty(x: float, z: float, bounds: Optional[WorldBounds]) -> Tuple[bool, float]:
    if bounds is None:
        return False, 0.0
    if not bounds.contains(x, z):
        return True, 2.0
    edge_dist = min(x - bounds.min_x, bounds.max_x - x, z - bounds.min_z, bounds.max_z - z)
    if edge_dist < bounds.soft_margin:
        return False, ((bounds.soft_margin - edge_dist) / bounds.soft_margin) * 0.55
    return False, 0.0


def _near_outer_boundary(x: float, z: float, bounds: Optional[WorldBounds], margin: float) -> bool:
    if bounds is None:
        return False
    return (
        abs(x - bounds.min_x) <= margin
        or abs(x - bounds.max_x) <= margin
        or abs(z - bounds.min_z) <= margin
        or abs(z - bounds.max_z) <= margin
    )


@dataclass
class GridCell:
    visits: int = 0
    last_seen: float = 0.0
    risk: float = 0.0
    stuck_count: int = 0
    target_hit_count: int = 0
    target_miss_count: int = 0
    target_absence: float = 0.0
    last_target_seen_at: float = 0.0
    last_target_miss_at: float = 0.0
    obstacle_hits: int = 0
    outer_wall_hits: int = 0
    open_hits: int = 0


@dataclass
class Candidate:
    ix: int
    iz: int
    dx: int
    dz: int
    visits: int
    risk: float
    novelty: float
    open_bias: float
    distance: float
    sector: str
    score: float
    target_penalty: float
    target_hit_count: int
    target_miss_count: int
    target_absence: float
    barrier_blocked: bool
    outside_bounds: bool
    obstacle_dominant: bool
    obstacle_hits: int
    outer_wall_hits: int
    open_hits: int
    repeat_penalty: float
    has_data: bool
    no_go_reasons: List[str] = field(default_factory=list)

    @property
    def is_no_go(self) -> bool:
        return bool(self.no_go_reasons)

    def summary(self, include_flags: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ix": self.ix,
            "iz": self.iz,
            "sector": self.sector,
            "score": _round(self.score),
            "risk": _round(self.risk),
            "visits": self.visits,
            "targetHitCount": self.target_hit_count,
            "targetMissCount": self.target_miss_count,
            "targetAbsence": _round(self.target_absence),
            "targetPenalty": _round(self.target_penalty),
            "obstacleHits": self.obstacle_hits,
            "outerWallHits": self.outer_wall_hits,
            "repeatPenalty": _round(self.repeat_penalty),
        }
        if include_flags:
            out["isNoGo"] = self.is_no_go
            out["noGoReasons"] = list(self.no_go_reasons)
        return out


@dataclass
class SectorSafety:
    sector: str
    total_count: int
    safe_count: int
    no_go_count: int
    no_go_ratio: float
    best_safe_score: Optional[float]


@dataclass
class MemoryContext:
    """Result of one memory query around the current pose."""

    ix: int
    iz: int
    current_cell: Dict[str, Any]
    loop_rate: float
    loop_warning: str
    preferred_sector: str
    sector_scores: List[Dict[str, float]]
    frontier: List[Candidate]
    risky: List[Candidate]
    mapped_cells: int
    recent_path_length: int
    sensor_range: float
    candidate_count: int
    safe_candidate_count: int
    no_go_count: int
    no_go_ratio: float
    target_cold_count: int
    target_cold_ratio: float
    top_candidates: List[Candidate]
    top_safe_candidates: List[Candidate]
    preferred_candidate: Optional[Candidate]
    sector_safety: List[SectorSafety]


class SpatialMemoryGrid:
    """Sparse exploration memory. Single owner; no locking."""

    def __init__(self, config: Optional[MemoryConfig] = None):
        self.config = config or MemoryConfig()
        self.cell_size = float(self.config.cell_size)
        self.sensor_range = float(self.config.sensor_range)
        self.world_bounds = self.config.world_bounds
        self.cells: Dict[CellKey, GridCell] = {}
        self.path: Deque[Tuple[int, int, float]] = deque(maxlen=self.config.max_path)

    # ------------------------------------------------------------------ geometry

    def to_grid(self, x: float, z: float) -> CellKey:
        return int(math.floor(x / self.cell_size)), int(math.floor(z / self.cell_size))

    def cell_center(self, ix: int, iz: int) -> Tuple[float, float]:
        return (ix + 0.5) * self.cell_size, (iz + 0.5) * self.cell_size

    def _inside(self, x: float, z: float) -> bool:
        return self.world_bounds is None or self.world_bounds.contains(x, z)

    def _clamp_to_bounds(self, x: float, z: float, eps: float = 0.001) -> Tuple[float, float]:
        b = self.world_bounds
        if b is None:
            return x, z
        return clamp(x, b.min_x + eps, b.max_x - eps), clamp(z, b.min_z + eps, b.max_z - eps)

    # ------------------------------------------------------------------ cells

    def get(self, ix: int, iz: int) -> Optional[GridCell]:
        return self.cells.get((ix, iz))

    def _get_or_create(self, ix: int, iz: int) -> GridCell:
        cell = self.cells.get((ix, iz))
        if cell is None:
            cell = GridCell()
            self.cells[(ix, iz)] = cell
        return cell

    def _prune_if_needed(self) -> None:
        if len(self.cells) <= self.config.max_cells:
            return
        ordered = sorted(self.cells.items(), key=lambda item: item[1].last_seen)
        to_delete = max(1, int(len(ordered) * 0.1))
        for key, _ in ordered[:to_delete]:
            del self.cells[key]
        logger.debug("[Drive] Memory: pruned %d cells (%d left)", to_delete, len(self.cells))

    @staticmethod
    def is_obstacle_dominant(cell: Optional[GridCell]) -> bool:
        if cell is None:
            return False
        risk = clamp(cell.risk, 0.0, 1.0)
        repeated_outer_wall = cell.outer_wall_hits >= OUTER_WALL_REPEAT_HARD_NO_GO_HITS
        repeated_obstacle = cell.obstacle_hits >= 2 and cell.obstacle_hits >= cell.open_hits * 0.9
        single_hard_obstacle = cell.obstacle_hits >= 1 and (cell.open_hits == 0 or risk >= 0.62)
        return repeated_outer_wall or repeated_obstacle or single_hard_obstacle

    def has_barrier_between(self, from_ix: int, from_iz: int, to_ix: int, to_iz: int) -> bool:
        dx = to_ix - from_ix
        dz = to_iz - from_iz
        steps = max(abs(dx), abs(dz))
        if steps <= 1:
            target = self.cells.get((to_ix, to_iz))
            if target is None:
                return False
            return self.is_obstacle_dominant(target) or clamp(target.risk, 0.0, 1.0) > 0.72

        for i in range(1, steps):
            sx = int(math.floor(from_ix + dx * i / steps + 0.5))
            sz = int(math.floor(from_iz + dz * i / steps + 0.5))
            cell = self.cells.get((sx, sz))
            if cell is None:
                continue
            if self.is_obstacle_dominant(cell) or clamp(cell.risk, 0.0, 1.0) > 0.78:
                return True
        return False

    # ------------------------------------------------------------------ update

    def update(self, snapshot: SensorSnapshot, now: Optional[float] = None) -> None:
        """Integrate one sensor tick. Snapshots without a pose are ignored."""
        if not snapshot.has_position:
            return
        now = time.time() if now is None else now
        x, z = snapshot.world_x, snapshot.world_z
        cfg = self.config
        if snapshot.sensor_range is not None:
            self.sensor_range = clamp(snapshot.sensor_range, cfg.sensor_range_min, cfg.sensor_range_max)
        sensor_range = self.sensor_range

        ix, iz = self.to_grid(x, z)
        current = self._get_or_create(ix, iz)

        ray_dists = [snapshot.ray(name, sensor_range) for name, _ in SENSOR_RAYS]
        risk_instant = clamp((3.2 - min(ray_dists)) / 3.2, 0.0, 1.0)

        current.visits += 1
        current.last_seen = now
        if current.visits == 1:
            current.risk = risk_instant
        else:
            current.risk = current.risk * 0.85 + risk_instant * 0.15
        if snapshot.is_stuck:
            current.stuck_count += 1

        hit_count = snapshot.target_hit_count
        if hit_count > 0:
            current.target_hit_count += hit_count
            current.last_target_seen_at = now
            current.target_absence = clamp(current.target_absence * 0.75, 0.0, 1.0)
        else:
            current.target_miss_count += 1
            current.last_target_miss_at = now
            current.target_absence = clamp(clamp(current.target_absence, 0.0, 1.0) * 0.92 + 0.08, 0.0, 1.0)

        self.path.append((ix, iz, now))

        for (name, offset_deg), dist in zip(SENSOR_RAYS, ray_dists):
            self._integrate_ray(x, z, snapshot.heading_deg + offset_deg, dist, sensor_range, now)

        self._prune_if_needed()

    def _integrate_ray(self, x: float, z: float, world_deg: float, dist: float, sensor_range: float, now: float) -> None:
        world_rad = math.radians(world_deg)
        dir_x = math.sin(world_rad)
        dir_z = math.cos(world_rad)
        ray_dist = clamp(dist, 0.0, sensor_range)
        has_hit = ray_dist < sensor_range - 0.05
        travel = ray_dist if has_hit else sensor_range

        step = max(0.35, self.cell_size * 0.6)
        seen_open = set()
        for t in np.arange(step, max(step, travel - 0.15), step):
            sx = x + dir_x * float(t)
            sz = z + dir_z * float(t)
            if not self._inside(sx, sz):
                break
            key = self.to_grid(sx, sz)
            if key in seen_open:
                continue
            seen_open.add(key)
            cell = self._get_or_create(*key)
            cell.open_hits += 1
            cell.last_seen = now

        if has_hit:
            hx, hz = self._clamp_to_bounds(x + dir_x * ray_dist, z + dir_z * ray_dist)
            if not self._inside(hx, hz):
                return
            cell = self._get_or_create(*self.to_grid(hx, hz))
            local_risk = clamp((sensor_range - ray_dist) / sensor_range, 0.0, 1.0)
            impact_risk = clamp(local_risk * 0.85 + 0.15, 0.0, 1.0)
            near_outer = _near_outer_boundary(hx, hz, self.world_bounds, max(0.4, self.cell_size * 0.65))
            if near_outer:
                floor = 0.94 if ray_dist < 3.2 else 0.84
            elif ray_dist < 2.8:
                floor = 0.88
            elif ray_dist < 4.2:
                floor = 0.74
            else:
                floor = 0.58
            cell.obstacle_hits += 1
            if near_outer:
                cell.outer_wall_hits += 1
            cell.last_seen = now
            cell.risk = max(cell.risk * 0.78 + impact_risk * 0.22, floor)
        else:
            ox = x + dir_x * sensor_range * 0.8
            oz = z + dir_z * sensor_range * 0.8
            if self._inside(ox, oz):
                cell = self._get_or_create(*self.to_grid(ox, oz))
                cell.open_hits += 1
                cell.last_seen = now

    # ------------------------------------------------------------------ queries

    def evaluate_candidate(
        self, origin_x: float, origin_z: float, heading_deg: float, origin_ix: int, origin_iz: int, nix: int, niz: int
    ) -> Candidate:
        cell = self.cells.get((nix, niz))
        visits = cell.visits if cell else 0
        risk = clamp(cell.risk, 0.0, 1.0) if cell else 0.0
        open_hits = cell.open_hits if cell else 0
        obstacle_hits = cell.obstacle_hits if cell else 0
        outer_wall_hits = cell.outer_wall_hits if cell else 0
        evidence = open_hits + obstacle_hits
        obstacle_dominant = self.is_obstacle_dominant(cell)
        open_bias = open_hits / max(1, evidence)
        novelty = 1.0 / (1 + visits)
        target_hits = cell.target_hit_count if cell else 0
        target_misses = cell.target_miss_count if cell else 0
        target_absence = clamp(cell.target_absence, 0.0, 1.0) if cell else 0.0
        if target_hits > 0:
            target_penalty = 0.0
        else:
            target_penalty = clamp(target_absence * 0.6 + max(0, target_misses - 2) / 45.0, 0.0, 0.9)

        dx = nix - origin_ix
        dz = niz - origin_iz
        distance = math.hypot(dx, dz)
        cx, cz = self.cell_center(nix, niz)
        sector = relative_sector(origin_x, origin_z, heading_deg, cx, cz)
        barrier_blocked = self.has_barrier_between(origin_ix, origin_iz, nix, niz)
        outside, edge_penalty = _bounds_penalty(cx, cz, self.world_bounds)
        unknown_penalty = 0.15 if evidence == 0 else 0.0
        obstacle_repeat_penalty = clamp(max(0, obstacle_hits - 1) * 0.12, 0.0, 0.85)
        outer_wall_repeat_penalty = clamp(outer_wall_hits * 0.22, 0.0, 1.2)
        repeat_penalty = clamp(obstacle_repeat_penalty + outer_wall_repeat_penalty, 0.0, 1.5)

        score = novelty * 0.95 + open_bias * 0.4 - risk * 0.95 - target_penalty * 0.95 - distance * 0.09
        if visits == 0 and not barrier_blocked and not outside:
            score += 0.22
        score -= edge_penalty
        score -= unknown_penalty
        if barrier_blocked:
            score -= 0.9
        if outside:
            score -= 1.2
        if obstacle_dominant:
            score -= 0.95
        if obstacle_hits >= 1 and risk >= 0.62:
            score -= 0.55
        if obstacle_hits >= OBSTACLE_REPEAT_HARD_NO_GO_HITS:
            score -= 0.45
        if outer_wall_hits >= OUTER_WALL_REPEAT_HARD_NO_GO_HITS:
            score -= 0.85
        score -= repeat_penalty

        candidate = Candidate(
            ix=nix,
            iz=niz,
            dx=dx,
            dz=dz,
            visits=visits,
            risk=risk,
            novelty=novelty,
            open_bias=open_bias,
            distance=distance,
            sector=sector,
            score=score,
            target_penalty=target_penalty,
            target_hit_count=target_hits,
            target_miss_count=target_misses,
            target_absence=target_absence,
            barrier_blocked=barrier_blocked,
            outside_bounds=outside,
            obstacle_dominant=obstacle_dominant,
            obstacle_hits=obstacle_hits,
            outer_wall_hits=outer_wall_hits,
            open_hits=open_hits,
            repeat_penalty=repeat_penalty,
            has_data=cell is not None,
        )
        candidate.no_go_reasons = no_go_reasons(candidate)
        return candidate

    def query_candidates(self, origin_x: float, origin_z: float, heading_deg: float, radius_cells: int = 2) -> List[Candidate]:
        """All cells within `radius_cells` of the origin (origin excluded), best score first."""
        ix, iz = self.to_grid(origin_x, origin_z)
        out: List[Candidate] = []
        for dz in range(-radius_cells, radius_cells + 1):
            for dx in range(-radius_cells, radius_cells + 1):
                if dx == 0 and dz == 0:
                    continue
                out.append(self.evaluate_candidate(origin_x, origin_z, heading_deg, ix, iz, ix + dx, iz + dz))
        out.sort(key=lambda c: c.score, reverse=True)
        return out

    def loop_rate(self, ix: int, iz: int, window: int = 80) -> Tuple[float, int]:
        recent = list(self.path)[-window:]
        if not recent:
            return 0.0, 0
        same = sum(1 for px, pz, _ in recent if px == ix and pz == iz)
        return same / len(recent), len(recent)

    def build_context(
        self,
        snapshot: SensorSnapshot,
        radius_cells: int = 2,
        max_frontier: int = 6,
        max_risky: int = 5,
    ) -> Optional[MemoryContext]:
        if not snapshot.has_position:
            return None
        x, z = snapshot.world_x, snapshot.world_z
        heading = snapshot.heading_deg
        ix, iz = self.to_grid(x, z)
        cell = self.cells.get((ix, iz)) or GridCell()

        candidates = self.query_candidates(x, z, heading, radius_cells)

        totals = {s: {"novelty": 0.0, "risk": 0.0, "open": 0.0, "targetPenalty": 0.0, "count": 0} for s in SECTORS}
        for c in candidates:
            if c.outside_bounds:
                continue
            bucket = totals[c.sector]
            bucket["novelty"] += c.novelty
            bucket["risk"] += c.risk
            bucket["open"] += c.open_bias
            bucket["targetPenalty"] += c.target_penalty
            bucket["count"] += 1

        sector_scores: List[Dict[str, Any]] = []
        for sector, bucket in totals.items():
            count = max(1, bucket["count"])
            novelty = bucket["novelty"] / count
            risk = bucket["risk"] / count
            open_ = bucket["open"] / count
            target_penalty = bucket["targetPenalty"] / count
            score = novelty * 1.2 + open_ * 0.4 - risk * 0.95 - target_penalty * 0.9
            sector_scores.append(
                {
                    "sector": sector,
                    "score": _round(score),
                    "novelty": _round(novelty),
                    "risk": _round(risk),
                    "open": _round(open_),
                    "targetPenalty": _round(target_penalty),
                    "_raw": score,
                }
            )
        # stable sort keeps L/F/R/B order on ties
        sector_scores.sort(key=lambda s: s["_raw"], reverse=True)
        for s in sector_scores:
            s.pop("_raw")
        preferred_sector = sector_scores[0]["sector"] if sector_scores else "F"

        safe = [c for c in candidates if not c.is_no_go]
        frontier = [c for c in safe if c.risk < 0.9][:max_frontier]
        risky = sorted((c for c in candidates if c.risk > 0.5), key=lambda c: c.risk, reverse=True)[:max_risky]

        loop_rate, recent_len = self.loop_rate(ix, iz)
        no_go_count = len(candidates) - len(safe)
        preferred = next((c for c in safe if c.sector == preferred_sector), None)
        if preferred is None:
            preferred = safe[0] if safe else (candidates[0] if candidates else None)

        sector_safety: List[SectorSafety] = []
        for sector in SECTORS:
            in_sector = [c for c in candidates if c.sector == sector]
            sector_safe = [c for c in in_sector if not c.is_no_go]
            total = len(in_sector)
            sector_safety.append(
                SectorSafety(
                    sector=sector,
                    total_count=total,
                    safe_count=len(sector_safe),
                    no_go_count=total - len(sector_safe),
                    no_go_ratio=_round((total - len(sector_safe)) / total if total else 0.0),
                    best_safe_score=_round(sector_safe[0].score) if sector_safe else None,
                )
            )

        open_bias = cell.open_hits / max(1, cell.open_hits + cell.obstacle_hits)
        novelty = 1.0 / (1 + cell.visits)
        target_absence = clamp(cell.target_absence, 0.0, 1.0)
        target_penalty = 0.0 if cell.target_hit_count > 0 else target_absence * 0.65
        weight = novelty * 0.95 + open_bias * 0.4 - clamp(cell.risk, 0.0, 1.0) * 0.95 - target_penalty
        target_cold = sum(1 for c in candidates if c.target_penalty > 0.35)

        return MemoryContext(
            ix=ix,
            iz=iz,
            current_cell={
                "ix": ix,
                "iz": iz,
                "visits": cell.visits,
                "risk": _round(cell.risk),
                "stuckCount": cell.stuck_count,
                "targetHitCount": cell.target_hit_count,
                "targetMissCount": cell.target_miss_count,
                "targetAbsence": _round(target_absence),
                "obstacleHits": cell.obstacle_hits,
                "outerWallHits": cell.outer_wall_hits,
                "weightScore": _round(weight),
            },
            loop_rate=_round(loop_rate),
            loop_warning="HIGH_REVISIT_LOOP_RISK" if loop_rate > LOOP_WARNING_RATE else "LOW",
            preferred_sector=preferred_sector,
            sector_scores=sector_scores,
            frontier=frontier,
            risky=risky,
            mapped_cells=len(self.cells),
            recent_path_length=recent_len,
            sensor_range=_round(self.sensor_range, 2),
            candidate_count=len(candidates),
            safe_candidate_count=len(safe),
            no_go_count=no_go_count,
            no_go_ratio=_round(no_go_count / len(candidates) if candidates else 0.0),
            target_cold_count=target_cold,
            target_cold_ratio=_round(target_cold / len(candidates) if candidates else 0.0),
            top_candidates=candidates[:3],
            top_safe_candidates=safe[:3],
            preferred_candidate=preferred,
            sector_safety=sector_safety,
        )

    def visualization(self, snapshot: SensorSnapshot, radius_cells: int = 8) -> Optional[Dict[str, Any]]:
        """Heatmap payload around the current pose (read-only)."""
        if not snapshot.has_position:
            return None
        x, z = snapshot.world_x, snapshot.world_z
        ix, iz = self.to_grid(x, z)
        context = self.build_context(snapshot, radius_cells=max(2, radius_cells // 3), max_frontier=8, max_risky=6)
        frontier_keys = {(c.ix, c.iz) for c in context.frontier}
        risky_keys = {(c.ix, c.iz) for c in context.risky}

        cells = []
        for dz in range(-radius_cells, radius_cells + 1):
            for dx in range(-radius_cells, radius_cells + 1):
                c = self.evaluate_candidate(x, z, snapshot.heading_deg, ix, iz, ix + dx, iz + dz)
                entry = c.summary(include_flags=True)
                entry.update(
                    {
                        "dx": dx,
                        "dz": dz,
                        "isCurrent": dx == 0 and dz == 0,
                        "isFrontier": (c.ix, c.iz) in frontier_keys,
                        "isRisky": (c.ix, c.iz) in risky_keys,
                        "hasData": c.has_data,
                    }
                )
                cells.append(entry)

        recent_path = [{"dx": px - ix, "dz": pz - iz} for px, pz, _ in list(self.path)[-120:]]
        return {
            "center": {"ix": ix, "iz": iz},
            "headingDeg": _round(snapshot.heading_deg, 1),
            "cellSize": self.cell_size,
            "sensorRange": _round(self.sensor_range, 2),
            "radiusCells": radius_cells,
            "cells": cells,
            "preferredSector": context.preferred_sector,
            "loopRate": context.loop_rate,
            "loopWarning": context.loop_warning,
            "recentPath": recent_path,
        }

    def reset(self) -> None:
        self.cells.clear()
        self.path.clear()
        self.sensor_range = float(self.config.sensor_range)

    def snapshot(self) -> List[Dict[str, Any]]:
        """Export every cell as a plain dict copy."""
        return [dict(ix=ix, iz=iz, **asdict(cell)) for (ix, iz), cell in self.cells.items()]


def no_go_reasons(candidate: Candidate) -> List[str]:
    reasons = []
    if candidate.outside_bounds:
        reasons.append("outsideBounds")
    if candidate.barrier_blocked:
        reasons.append("barrierBlocked")
    if candidate.obstacle_dominant:
        reasons.append("obstacleDominant")
    if candidate.obstacle_hits >= 1 and candidate.risk >= 0.62:
        reasons.append("recentObstacleHit")
    if candidate.obstacle_hits >= OBSTACLE_REPEAT_HARD_NO_GO_HITS:
        reasons.append("obstacleRepeat")
    if candidate.outer_wall_hits >= OUTER_WALL_REPEAT_HARD_NO_GO_HITS:
        reasons.append("outerWallRepeat")
    if candidate.repeat_penalty >= 0.85:
        reasons.append("repeatPenaltyHigh")
    if candidate.risk >= 0.78:
        reasons.append("highRisk")
    return reasons
