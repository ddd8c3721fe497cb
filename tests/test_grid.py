"""Tests for grid, distance, and line-of-sight logic."""

import itertools

import pytest

from engine.grid import (
    chebyshev_feet,
    create_grid,
    distance,
    distance_feet,
    has_line_of_sight,
    in_bounds,
    is_adjacent,
    line_of_sight_blocker,
    path_heuristic,
    trace_line,
)
from models.grid import Obstacle


def _wall() -> Obstacle:
    return Obstacle(type="wall")


class TestCreateGrid:
    """Tests for create_grid()."""

    def test_dimensions(self):
        grid = create_grid(5, 3)
        assert len(grid) == 3      # height (rows)
        assert len(grid[0]) == 5   # width (cols)

    def test_cells_are_open(self):
        grid = create_grid(3, 3)
        for row in grid:
            for cell in row:
                assert cell.terrain is None
                assert cell.obstacle is None
                assert cell.occupied_by is None

    def test_coordinates_correct(self):
        grid = create_grid(4, 4)
        assert grid[2][3].x == 3
        assert grid[2][3].y == 2

    def test_in_bounds(self):
        grid = create_grid(4, 2)
        assert in_bounds(3, 1, grid)
        assert not in_bounds(4, 1, grid)
        assert not in_bounds(0, -1, grid)
        assert not in_bounds(0, 0, [])


class TestDistance:
    """Tests for distance() and the 5-10-5 rule."""

    def test_same_position(self):
        assert distance((0, 0), (0, 0)) == 0

    def test_cardinal_distance(self):
        assert distance((0, 0), (3, 0)) == 15
        assert distance((0, 0), (0, 4)) == 20

    @pytest.mark.parametrize("diagonals,expected", [(1, 5), (2, 15), (3, 20), (4, 30)])
    def test_diagonal_law(self, diagonals, expected):
        assert distance_feet(diagonals, diagonals) == expected
        assert expected == diagonals * 5 + (diagonals // 2) * 5

    def test_mixed_offset(self):
        """2 diagonals + 2 straights: 15 + 10."""
        assert distance((0, 0), (2, 4)) == 25

    def test_symmetric(self):
        assert distance((1, 2), (4, 6)) == distance((4, 6), (1, 2))

    def test_chebyshev_reach(self):
        assert chebyshev_feet((0, 0), (2, 2)) == 10


class TestIsAdjacent:
    """Tests for is_adjacent()."""

    def test_cardinal_and_diagonal(self):
        assert is_adjacent((5, 5), (6, 5))
        assert is_adjacent((5, 5), (4, 4))

    def test_not_adjacent(self):
        assert not is_adjacent((0, 0), (2, 0))
        assert not is_adjacent((0, 0), (0, 2))


class TestPathHeuristic:
    """Tests for path_heuristic()."""

    def test_straight_matches_distance(self):
        assert path_heuristic(4, 0) == 20

    def test_diagonals_use_average_cost(self):
        assert path_heuristic(2, 2) == 15
        assert path_heuristic(1, 1) == 7.5   # Real cost is 5: overestimates by 2.5


class TestTraceLine:
    """Tests for trace_line()."""

    def test_excludes_endpoints(self):
        assert trace_line((0, 0), (3, 0)) == [(1, 0), (2, 0)]

    def test_diagonal(self):
        assert trace_line((0, 0), (3, 3)) == [(1, 1), (2, 2)]

    def test_adjacent_has_no_intermediate_cells(self):
        assert trace_line((0, 0), (1, 1)) == []


class TestLineOfSight:
    """Tests for has_line_of_sight() and line_of_sight_blocker()."""

    def test_clear_line(self):
        grid = create_grid(10, 10)
        assert has_line_of_sight(grid, (0, 0), (9, 9))

    def test_wall_blocks(self):
        grid = create_grid(10, 10)
        grid[0][3].obstacle = _wall()
        assert not has_line_of_sight(grid, (0, 0), (6, 0))
        assert line_of_sight_blocker(grid, (0, 0), (6, 0)) == (3, 0)

    def test_low_obstacle_does_not_block(self):
        grid = create_grid(10, 10)
        grid[0][3].obstacle = Obstacle(type="table", blocks_line_of_sight=False)
        assert has_line_of_sight(grid, (0, 0), (6, 0))

    def test_adjacent_always_visible(self):
        grid = create_grid(5, 5)
        grid[1][1].obstacle = _wall()
        assert has_line_of_sight(grid, (1, 1), (2, 2))

    def test_extra_blocking_cells(self):
        grid = create_grid(10, 10)
        assert line_of_sight_blocker(grid, (0, 0), (6, 0), blocking_cells={(4, 0)}) == (4, 0)

    def test_symmetry(self):
        """Sight is the same from either end for every pair on a cluttered grid."""
        grid = create_grid(7, 7)
        for x, y in [(2, 1), (3, 3), (4, 5), (1, 4), (5, 2)]:
            grid[y][x].obstacle = _wall()
        cells = [(x, y) for y in range(7) for x in range(7)]
        for a, b in itertools.combinations(cells, 2):
            assert has_line_of_sight(grid, a, b) == has_line_of_sight(grid, b, a), (a, b)
