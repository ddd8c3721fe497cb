"""Tests for A* pathfinding and reachable-set search."""

import itertools

from engine.grid import create_grid, path_heuristic
from engine.pathfinding import (
    MovementContext,
    adjacent_cost,
    calculate_path_cost,
    find_path,
    get_reachable_positions,
    step_cost,
)
from models.grid import Obstacle, StairConnection, Terrain


def _wall() -> Obstacle:
    return Obstacle(type="wall")


def _corridor_grid():
    """8x3 grid with a one-square gap at y=1 between walls at x=3..4."""
    grid = create_grid(8, 3)
    for x in (3, 4):
        grid[0][x].obstacle = _wall()
        grid[2][x].obstacle = _wall()
    return grid


class TestAdjacentCost:
    """Tests for adjacent_cost()."""

    def test_straight(self):
        assert adjacent_cost((0, 0), (1, 0), 0) == (5, 0)
        assert adjacent_cost((0, 0), (1, 0), 1) == (5, 1)

    def test_diagonals_alternate(self):
        assert adjacent_cost((0, 0), (1, 1), 0) == (5, 1)
        assert adjacent_cost((1, 1), (2, 2), 1) == (10, 0)


class TestFindPath:
    """Tests for find_path()."""

    def test_two_diagonals_cost_fifteen(self):
        grid = create_grid(20, 20)
        path = find_path(grid, (0, 0), (2, 2), max_cost=30)
        assert path is not None
        assert path.cost == 15
        assert path.positions[0] == (0, 0)
        assert path.positions[-1] == (2, 2)

    def test_start_is_end(self):
        path = find_path(create_grid(5, 5), (1, 1), (1, 1))
        assert path.cost == 0
        assert path.positions == [(1, 1)]

    def test_wall_detour(self):
        grid = create_grid(5, 5)
        for y in range(4):
            grid[y][2].obstacle = _wall()
        path = find_path(grid, (0, 0), (4, 0))
        assert path is not None
        assert (2, 4) in path.positions
        assert all(grid[y][x].obstacle is None for x, y in path.positions)

    def test_unreachable_returns_none(self):
        grid = create_grid(5, 5)
        for y in range(5):
            grid[y][2].obstacle = _wall()
        assert find_path(grid, (0, 0), (4, 0)) is None

    def test_budget_exceeded_returns_none(self):
        grid = create_grid(20, 20)
        assert find_path(grid, (0, 0), (10, 0), max_cost=30) is None

    def test_obstacle_destination_returns_none(self):
        grid = create_grid(5, 5)
        grid[0][3].obstacle = _wall()
        assert find_path(grid, (0, 0), (3, 0)) is None

    def test_occupied_destination_is_allowed(self):
        grid = create_grid(5, 5)
        path = find_path(grid, (0, 0), (3, 0), occupied={(3, 0)})
        assert path is not None
        assert path.cost == 15

    def test_occupied_cells_block_passage(self):
        grid = create_grid(5, 1)
        assert find_path(grid, (0, 0), (4, 0), occupied={(2, 0)}) is None

    def test_difficult_terrain_doubles(self):
        grid = create_grid(5, 1)
        grid[0][1].terrain = Terrain.DIFFICULT
        path = find_path(grid, (0, 0), (2, 0))
        assert path.cost == 15

    def test_water_uses_swim_speed(self):
        grid = create_grid(3, 1)
        grid[0][1].terrain = Terrain.WATER
        swimmer = MovementContext(walk_speed=30, swim_speed=30)
        assert find_path(grid, (0, 0), (1, 0), context=swimmer).cost == 5
        assert find_path(grid, (0, 0), (1, 0)).cost == 10
        slow = MovementContext(walk_speed=30, swim_speed=20)
        assert find_path(grid, (0, 0), (1, 0), context=slow).cost == 8

    def test_elevation_needs_stairs(self):
        grid = create_grid(3, 1)
        grid[0][1].elevation = 1
        grid[0][2].elevation = 1
        assert find_path(grid, (0, 0), (2, 0)) is None

        grid[0][0].stair_connection = StairConnection(target_x=1, target_y=0, target_elevation=1)
        path = find_path(grid, (0, 0), (2, 0))
        assert path.cost == 15       # 5 + 5 climb, then 5

    def test_large_creature_squeezes_through_corridor(self):
        """Three squeezed steps cost 10ft each instead of 5ft."""
        grid = _corridor_grid()
        path = find_path(grid, (0, 1), (6, 1), footprint=2)
        assert path is not None
        assert path.squeezing
        assert path.cost == 45

    def test_squeezed_step_costs_double(self):
        grid = _corridor_grid()
        step = step_cost(grid, (2, 1), (3, 1), 0, footprint=2)
        assert step.squeezed
        assert step.cost == 10
        normal = step_cost(grid, (0, 1), (1, 1), 0, footprint=2)
        assert not normal.squeezed
        assert normal.cost == 5

    def test_cost_at_least_heuristic_for_straight_runs(self):
        grid = create_grid(8, 8)
        for end in [(7, 0), (0, 5), (3, 0)]:
            path = find_path(grid, (0, 0), end)
            assert path.cost >= path_heuristic(end[0], end[1])

    def test_heuristic_overestimates_single_diagonal(self):
        """One diagonal costs 5ft but the estimate is 7.5ft."""
        grid = create_grid(4, 4)
        path = find_path(grid, (0, 0), (1, 1))
        assert path.cost == 5
        assert path.cost < path_heuristic(1, 1)

    def test_even_diagonal_paths_match_heuristic(self):
        grid = create_grid(10, 10)
        for n in (2, 4, 6):
            assert find_path(grid, (0, 0), (n, n)).cost == path_heuristic(n, n)


class TestCalculatePathCost:
    """Tests for calculate_path_cost()."""

    def test_replays_parity(self):
        grid = create_grid(5, 5)
        assert calculate_path_cost(grid, [(0, 0), (1, 1), (2, 2), (3, 3)]) == 20

    def test_impossible_step(self):
        grid = create_grid(5, 5)
        grid[1][1].obstacle = _wall()
        assert calculate_path_cost(grid, [(0, 0), (1, 1)]) is None


class TestGetReachablePositions:
    """Tests for get_reachable_positions()."""

    def test_budget_thirty(self):
        grid = create_grid(20, 20)
        reachable = get_reachable_positions(grid, (0, 0), 30)
        assert reachable[(2, 2)] == 15
        assert reachable[(4, 4)] == 30
        assert reachable[(6, 0)] == 30
        assert (5, 5) not in reachable
        assert (0, 0) not in reachable

    def test_agrees_with_find_path(self):
        grid = create_grid(8, 8)
        grid[3][3].obstacle = _wall()
        grid[2][4].terrain = Terrain.DIFFICULT
        reachable = get_reachable_positions(grid, (1, 1), 30)
        assert (3, 3) not in reachable
        for x, y in itertools.product(range(8), range(8)):
            if (x, y) in ((1, 1), (3, 3)):
                continue
            path = find_path(grid, (1, 1), (x, y))
            assert path is not None
            if path.cost <= 30:
                assert reachable[(x, y)] <= path.cost, (x, y)
            if (x, y) in reachable:
                assert reachable[(x, y)] <= path.cost

    def test_occupied_cells_excluded(self):
        grid = create_grid(5, 5)
        reachable = get_reachable_positions(grid, (0, 0), 30, occupied={(1, 0)})
        assert (1, 0) not in reachable
