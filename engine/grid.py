"""2D grid, distance, and line-of-sight logic for Gridskirmish."""

from __future__ import annotations

from collections.abc import Iterable

from config import SQUARE_SIZE_FT
from models.grid import GridCell


def create_grid(width: int, height: int) -> list[list[GridCell]]:
    """Initialize an empty grid of GridCells.

    Args:
        width: Number of columns.
        height: Number of rows.

    Returns:
        A 2D list indexed as grid[y][x].
    """
    return [
        [GridCell(x=x, y=y) for x in range(width)]
        for y in range(height)
    ]


def in_bounds(x: int, y: int, grid: list[list[GridCell]]) -> bool:
    """Check if coordinates are within grid bounds."""
    if not grid:
        return False
    return 0 <= y < len(grid) and 0 <= x < len(grid[0])


def distance_feet(dx: int, dy: int) -> int:
    """Movement distance in feet for an offset, using the 5-10-5 rule.

    Every second diagonal step costs 10ft instead of 5ft, so one diagonal
    is 5ft, two are 15ft, three are 20ft and four are 30ft.

    Args:
        dx: Horizontal offset in squares.
        dy: Vertical offset in squares.

    Returns:
        Distance in feet.
    """
    abs_dx = abs(dx)
    abs_dy = abs(dy)
    diagonals = min(abs_dx, abs_dy)
    straights = max(abs_dx, abs_dy) - diagonals
    return (straights + diagonals + diagonals // 2) * SQUARE_SIZE_FT


def distance(pos1: tuple[int, int], pos2: tuple[int, int]) -> int:
    """Calculate 5-10-5 distance in feet between two grid positions.

    Args:
        pos1: (x, y) of first position.
        pos2: (x, y) of second position.

    Returns:
        Distance in feet.
    """
    return distance_feet(pos2[0] - pos1[0], pos2[1] - pos1[1])


def chebyshev_feet(pos1: tuple[int, int], pos2: tuple[int, int]) -> int:
    """Straight-line reach distance: every square, diagonal or not, is 5ft.

    Used for weapon range and reach checks.
    """
    return max(abs(pos1[0] - pos2[0]), abs(pos1[1] - pos2[1])) * SQUARE_SIZE_FT


def is_adjacent(pos1: tuple[int, int], pos2: tuple[int, int]) -> bool:
    """Check if two positions are adjacent (within 5ft, including diagonals)."""
    return chebyshev_feet(pos1, pos2) <= SQUARE_SIZE_FT


def path_heuristic(dx: int, dy: int) -> float:
    """A* estimate: 7.5ft per diagonal (mean of 5 and 10), 5ft per straight."""
    abs_dx = abs(dx)
    abs_dy = abs(dy)
    diagonals = min(abs_dx, abs_dy)
    straights = max(abs_dx, abs_dy) - diagonals
    return diagonals * 7.5 + straights * SQUARE_SIZE_FT


def trace_line(start: tuple[int, int], end: tuple[int, int]) -> list[tuple[int, int]]:
    """Cells crossed by a Bresenham line, excluding both endpoints.

    Args:
        start: (x, y) the line starts from.
        end: (x, y) the line ends at.

    Returns:
        Intermediate cells in order from start to end.
    """
    x0, y0 = start
    x1, y1 = end

    dx = abs(x1 - x0)
    dy = abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx - dy

    cells: list[tuple[int, int]] = []
    while True:
        if (x0, y0) != start and (x0, y0) != end:
            cells.append((x0, y0))
        if x0 == x1 and y0 == y1:
            break
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x0 += sx
        if e2 < dx:
            err += dx
            y0 += sy

    return cells


def blocks_line_of_sight(cell: GridCell) -> bool:
    return cell.obstacle is not None and cell.obstacle.blocks_line_of_sight


def line_of_sight_blocker(
    grid: list[list[GridCell]],
    pos1: tuple[int, int],
    pos2: tuple[int, int],
    blocking_cells: Iterable[tuple[int, int]] = (),
) -> tuple[int, int] | None:
    """Find the first cell that blocks sight between two positions.

    The line is always traced from the lower endpoint to the higher one, so
    the result doesn't depend on which side is looking.

    Args:
        grid: The battle grid.
        pos1: (x, y) of one end.
        pos2: (x, y) of the other end.
        blocking_cells: Extra opaque cells, e.g. from a fog zone.

    Returns:
        The blocking cell, or None if sight is clear.
    """
    if is_adjacent(pos1, pos2):
        return None

    extra = set(blocking_cells)
    start, end = sorted((pos1, pos2))
    for x, y in trace_line(start, end):
        if (x, y) in extra:
            return (x, y)
        if in_bounds(x, y, grid) and blocks_line_of_sight(grid[y][x]):
            return (x, y)
    return None


def has_line_of_sight(
    grid: list[list[GridCell]],
    pos1: tuple[int, int],
    pos2: tuple[int, int],
    blocking_cells: Iterable[tuple[int, int]] = (),
) -> bool:
    """Check if pos1 can see pos2.

    Positions within 5ft of each other always see each other. Otherwise any
    intermediate cell with a sight-blocking obstacle breaks the line.

    Args:
        grid: The battle grid.
        pos1: (x, y) of observer.
        pos2: (x, y) of target.
        blocking_cells: Extra opaque cells, e.g. from a fog zone.

    Returns:
        True if line of sight is clear.
    """
    return line_of_sight_blocker(grid, pos1, pos2, blocking_cells) is None
