"""A* pathfinding and movement-range search for Gridskirmish.

Costs follow the 5-10-5 diagonal rule, which depends on how many diagonal
steps the path has already taken. Search nodes are therefore keyed by
(position, diagonal parity) rather than by position alone.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math

from pydantic import BaseModel

from config import DEFAULT_MOVEMENT_SPEED, SQUARE_SIZE_FT, STAIR_CLIMB_COST_FT
from engine.footprint import Fit, fit_at, occupied_cells, squeezed_footprint
from engine.grid import in_bounds, path_heuristic
from models.grid import GridCell, Terrain
from models.results import Path

logger = logging.getLogger(__name__)

_NEIGHBOR_OFFSETS = [
    (dx, dy) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dx, dy) != (0, 0)
]


class MovementContext(BaseModel):
    """Mover speeds that change terrain costs."""
    walk_speed: int = DEFAULT_MOVEMENT_SPEED
    swim_speed: int | None = None


class StepCost(BaseModel):
    """Cost of one step and the diagonal parity after it."""
    cost: int
    parity: int                     # Diagonal steps taken so far, mod 2
    squeezed: bool = False


def adjacent_cost(
    from_pos: tuple[int, int],
    to_pos: tuple[int, int],
    parity: int,
) -> tuple[int, int]:
    """Base cost of a single step under the alternating diagonal rule.

    Args:
        from_pos: (x, y) the step starts from.
        to_pos: Adjacent (x, y) the step ends on.
        parity: Number of diagonals already taken on this path, mod 2.

    Returns:
        (cost_ft, new_parity). The first, third, fifth... diagonal costs
        5ft, every other one 10ft; straight steps always cost 5ft.
    """
    dx = abs(to_pos[0] - from_pos[0])
    dy = abs(to_pos[1] - from_pos[1])
    if dx == 0 and dy == 0:
        return 0, parity
    if dx == 1 and dy == 1:
        cost = SQUARE_SIZE_FT if parity == 0 else SQUARE_SIZE_FT * 2
        return cost, 1 - parity
    return SQUARE_SIZE_FT, parity


def _terrain_cost(
    base: int,
    cells: list[tuple[int, int]],
    grid: list[list[GridCell]],
    context: MovementContext | None,
) -> int:
    """Apply the terrain multiplier for the cells a footprint lands on."""
    terrains = {grid[y][x].terrain for x, y in cells}
    if Terrain.DIFFICULT in terrains or Terrain.HAZARD in terrains:
        return base * 2
    if Terrain.WATER in terrains:
        if context is not None and context.swim_speed:
            return math.ceil(base * context.walk_speed / context.swim_speed)
        return base * 2
    return base


def step_cost(
    grid: list[list[GridCell]],
    from_pos: tuple[int, int],
    to_pos: tuple[int, int],
    parity: int,
    footprint: int = 1,
    occupied: set[tuple[int, int]] | None = None,
    context: MovementContext | None = None,
) -> StepCost | None:
    """Cost for a footprint to step from one anchor to an adjacent one.

    Args:
        grid: The battle grid.
        from_pos: Current anchor (x, y).
        to_pos: Adjacent anchor (x, y).
        parity: Diagonal parity carried along the path so far.
        footprint: Edge length of the mover's footprint in squares.
        occupied: Cells held by other combatants.
        context: Mover speeds for water terrain.

    Returns:
        The StepCost, or None if the step is impossible.
    """
    fx, fy = from_pos
    tx, ty = to_pos
    if not in_bounds(fx, fy, grid) or not in_bounds(tx, ty, grid):
        return None

    fit = fit_at(to_pos, footprint, grid, occupied or set())
    if fit is None:
        return None
    squeezed = fit == Fit.SQUEEZE

    from_cell = grid[fy][fx]
    to_cell = grid[ty][tx]
    base, new_parity = adjacent_cost(from_pos, to_pos, parity)

    if from_cell.elevation != to_cell.elevation:
        stairs = from_cell.stair_connection
        if (
            stairs is None
            or stairs.target_x != tx
            or stairs.target_y != ty
            or stairs.target_elevation != to_cell.elevation
        ):
            return None
        cost = base + STAIR_CLIMB_COST_FT
    else:
        edge = squeezed_footprint(footprint) if squeezed else footprint
        cost = _terrain_cost(base, occupied_cells(to_pos, edge), grid, context)

    if squeezed:
        cost *= 2
    return StepCost(cost=cost, parity=new_parity, squeezed=squeezed)


def find_path(
    grid: list[list[GridCell]],
    start: tuple[int, int],
    end: tuple[int, int],
    occupied: set[tuple[int, int]] | None = None,
    max_cost: int | None = None,
    footprint: int = 1,
    context: MovementContext | None = None,
) -> Path | None:
    """A* search for the cheapest path between two anchors.

    The destination may be occupied by another combatant (so "can I reach
    my target's square" queries work); obstacles always block.

    Args:
        grid: The battle grid.
        start: Starting anchor (x, y).
        end: Destination anchor (x, y).
        occupied: Cells held by other combatants.
        max_cost: Optional budget in feet; costlier paths are pruned.
        footprint: Edge length of the mover's footprint in squares.
        context: Mover speeds for water terrain.

    Returns:
        The Path (inclusive of start and end) with its cost, or None if
        the destination can't be reached.
    """
    if not in_bounds(end[0], end[1], grid):
        return None
    if fit_at(end, footprint, grid, set()) is None:
        return None
    if start == end:
        return Path(positions=[start], cost=0)

    blocked = set(occupied or ())
    end_cells = set(occupied_cells(end, footprint))
    blocked -= end_cells

    counter = itertools.count()
    start_state = (start, 0)
    best: dict[tuple[tuple[int, int], int], int] = {start_state: 0}
    came_from: dict[tuple[tuple[int, int], int], tuple[tuple[tuple[int, int], int], bool]] = {}
    closed: set[tuple[tuple[int, int], int]] = set()
    h0 = path_heuristic(end[0] - start[0], end[1] - start[1])
    open_heap: list[tuple[float, int, int, tuple[int, int], int]] = [
        (h0, next(counter), 0, start, 0)
    ]

    while open_heap:
        _, _, g, pos, parity = heapq.heappop(open_heap)
        state = (pos, parity)
        if pos == end:
            return _reconstruct(came_from, state, g)
        if state in closed:
            continue
        closed.add(state)

        for dx, dy in _NEIGHBOR_OFFSETS:
            neighbor = (pos[0] + dx, pos[1] + dy)
            if not in_bounds(neighbor[0], neighbor[1], grid):
                continue
            step = step_cost(grid, pos, neighbor, parity, footprint, blocked, context)
            if step is None:
                continue
            tentative = g + step.cost
            if max_cost is not None and tentative > max_cost:
                continue
            next_state = (neighbor, step.parity)
            if next_state in closed:
                continue
            if tentative < best.get(next_state, math.inf):
                best[next_state] = tentative
                came_from[next_state] = (state, step.squeezed)
                h = path_heuristic(end[0] - neighbor[0], end[1] - neighbor[1])
                heapq.heappush(
                    open_heap, (tentative + h, next(counter), tentative, neighbor, step.parity)
                )

    logger.debug("No path from %s to %s (budget %s)", start, end, max_cost)
    return None


def _reconstruct(came_from: dict, state: tuple[tuple[int, int], int], cost: int) -> Path:
    """Walk parent links back to the start."""
    positions = [state[0]]
    squeezing = False
    while state in came_from:
        state, squeezed = came_from[state]
        squeezing = squeezing or squeezed
        positions.append(state[0])
    positions.reverse()
    return Path(positions=positions, cost=cost, squeezing=squeezing)


def calculate_path_cost(
    grid: list[list[GridCell]],
    path: list[tuple[int, int]],
    footprint: int = 1,
    context: MovementContext | None = None,
) -> int | None:
    """Replay a path step by step and total its cost.

    Occupancy is ignored; obstacles, elevation and terrain are not.

    Returns:
        Cost in feet, or None if some step is impossible.
    """
    total = 0
    parity = 0
    for from_pos, to_pos in zip(path, path[1:]):
        step = step_cost(grid, from_pos, to_pos, parity, footprint, None, context)
        if step is None:
            return None
        total += step.cost
        parity = step.parity
    return total


def get_reachable_positions(
    grid: list[list[GridCell]],
    start: tuple[int, int],
    budget: int,
    occupied: set[tuple[int, int]] | None = None,
    footprint: int = 1,
    context: MovementContext | None = None,
) -> dict[tuple[int, int], int]:
    """Every anchor reachable within a movement budget, with its cost.

    Uses the same step costs as find_path, including diagonal parity, so a
    highlighted square is one the mover can actually reach. Occupied cells
    are never valid destinations here.

    Args:
        grid: The battle grid.
        start: Starting anchor (x, y).
        budget: Movement available in feet.
        occupied: Cells held by other combatants.
        footprint: Edge length of the mover's footprint in squares.
        context: Mover speeds for water terrain.

    Returns:
        Mapping of (x, y) -> cheapest cost in feet, excluding the start.
    """
    blocked = set(occupied or ())
    counter = itertools.count()
    best: dict[tuple[tuple[int, int], int], int] = {(start, 0): 0}
    heap: list[tuple[int, int, tuple[int, int], int]] = [(0, next(counter), start, 0)]
    reachable: dict[tuple[int, int], int] = {}

    while heap:
        cost, _, pos, parity = heapq.heappop(heap)
        if cost > best.get((pos, parity), math.inf):
            continue
        if pos != start and cost < reachable.get(pos, math.inf):
            reachable[pos] = cost

        for dx, dy in _NEIGHBOR_OFFSETS:
            neighbor = (pos[0] + dx, pos[1] + dy)
            step = step_cost(grid, pos, neighbor, parity, footprint, blocked, context)
            if step is None:
                continue
            new_cost = cost + step.cost
            if new_cost > budget:
                continue
            state = (neighbor, step.parity)
            if new_cost < best.get(state, math.inf):
                best[state] = new_cost
                heapq.heappush(heap, (new_cost, next(counter), neighbor, step.parity))

    return reachable
