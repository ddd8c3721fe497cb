"""Creature size and multi-cell footprint logic for Gridskirmish."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from engine.grid import in_bounds
from models.conditions import Condition
from models.creatures import Size

if TYPE_CHECKING:
    from models.combatant import Combatant
    from models.grid import GridCell

SIZE_ORDER = [Size.TINY, Size.SMALL, Size.MEDIUM, Size.LARGE, Size.HUGE, Size.GARGANTUAN]

_FOOTPRINT_SQUARES = {
    Size.TINY: 1,
    Size.SMALL: 1,
    Size.MEDIUM: 1,
    Size.LARGE: 2,
    Size.HUGE: 3,
    Size.GARGANTUAN: 4,
}

_VISUAL_SCALE = {
    Size.TINY: 0.6,
    Size.SMALL: 0.8,
    Size.MEDIUM: 1.0,
    Size.LARGE: 1.0,                # Multi-square tokens aren't scaled
    Size.HUGE: 1.0,
    Size.GARGANTUAN: 1.0,
}


class Fit(str, Enum):
    """How a footprint fits at an anchor."""
    NORMAL = "normal"
    SQUEEZE = "squeeze"


def footprint_size(size: Size | int) -> int:
    """Edge length in squares of a creature's footprint."""
    if isinstance(size, int):
        return size
    return _FOOTPRINT_SQUARES[size]


def visual_scale(size: Size) -> float:
    """Token scale factor for sub-medium creatures."""
    return _VISUAL_SCALE[size]


def shift_size(size: Size, steps: int) -> Size:
    """Move up or down the size order, capped at both ends."""
    index = SIZE_ORDER.index(size) + steps
    return SIZE_ORDER[max(0, min(len(SIZE_ORDER) - 1, index))]


def effective_size(combatant: Combatant) -> Size:
    """A combatant's size after Enlarge/Reduce-style conditions.

    Enlarged and reduced together cancel out.
    """
    enlarged = combatant.has_condition(Condition.ENLARGED)
    reduced = combatant.has_condition(Condition.REDUCED)
    if enlarged and not reduced:
        return shift_size(combatant.base_size, 1)
    if reduced and not enlarged:
        return shift_size(combatant.base_size, -1)
    return combatant.base_size


def occupied_cells(anchor: tuple[int, int], size: Size | int) -> list[tuple[int, int]]:
    """Every cell of a footprint, anchored at its top-left corner.

    Args:
        anchor: (x, y) of the top-left cell.
        size: Size category or edge length in squares.

    Returns:
        size² cells, row by row.
    """
    edge = footprint_size(size)
    ax, ay = anchor
    return [(ax + dx, ay + dy) for dy in range(edge) for dx in range(edge)]


def combatant_cells(combatant: Combatant) -> list[tuple[int, int]]:
    """Cells a placed combatant covers; empty if it isn't on the grid."""
    if combatant.position is None:
        return []
    return occupied_cells(combatant.position, effective_size(combatant))


def footprint_in_bounds(
    anchor: tuple[int, int],
    size: Size | int,
    grid: list[list[GridCell]],
) -> bool:
    edge = footprint_size(size)
    ax, ay = anchor
    return in_bounds(ax, ay, grid) and in_bounds(ax + edge - 1, ay + edge - 1, grid)


def footprint_clear_of_obstacles(
    anchor: tuple[int, int],
    size: Size | int,
    grid: list[list[GridCell]],
) -> bool:
    """True if the footprint is in bounds and no cell blocks movement."""
    for x, y in occupied_cells(anchor, size):
        if not in_bounds(x, y, grid):
            return False
        obstacle = grid[y][x].obstacle
        if obstacle is not None and obstacle.blocks_movement:
            return False
    return True


def footprint_clear_of_combatants(
    anchor: tuple[int, int],
    size: Size | int,
    occupied: set[tuple[int, int]],
) -> bool:
    return not any(cell in occupied for cell in occupied_cells(anchor, size))


def can_squeeze(size: Size | int) -> bool:
    """Only multi-square creatures can squeeze."""
    return footprint_size(size) > 1


def squeezed_footprint(size: Size | int) -> int:
    """Footprint edge while squeezing: one square smaller, at least 1."""
    return max(1, footprint_size(size) - 1)


def fit_at(
    anchor: tuple[int, int],
    size: Size | int,
    grid: list[list[GridCell]],
    occupied: set[tuple[int, int]],
) -> Fit | None:
    """Check whether a footprint fits at an anchor, squeezing if needed.

    The normal footprint is tried first. If it doesn't fit and the creature
    can squeeze, the one-smaller footprint is tried.

    Args:
        anchor: (x, y) of the top-left cell.
        size: Size category or edge length in squares.
        grid: The battle grid.
        occupied: Cells held by other combatants.

    Returns:
        Fit.NORMAL, Fit.SQUEEZE, or None if neither fits.
    """
    if footprint_clear_of_obstacles(anchor, size, grid) and footprint_clear_of_combatants(
        anchor, size, occupied
    ):
        return Fit.NORMAL
    if not can_squeeze(size):
        return None
    squeezed = squeezed_footprint(size)
    if footprint_clear_of_obstacles(anchor, squeezed, grid) and footprint_clear_of_combatants(
        anchor, squeezed, occupied
    ):
        return Fit.SQUEEZE
    return None


def footprints_adjacent(
    anchor1: tuple[int, int],
    size1: Size | int,
    anchor2: tuple[int, int],
    size2: Size | int,
) -> bool:
    """True if any cell of one footprint touches any cell of the other."""
    cells2 = occupied_cells(anchor2, size2)
    for x1, y1 in occupied_cells(anchor1, size1):
        for x2, y2 in cells2:
            dx = abs(x1 - x2)
            dy = abs(y1 - y2)
            if dx <= 1 and dy <= 1 and (dx, dy) != (0, 0):
                return True
    return False


def footprint_distance(
    anchor1: tuple[int, int],
    size1: Size | int,
    anchor2: tuple[int, int],
    size2: Size | int,
) -> int:
    """Closest Chebyshev distance in squares between two footprints."""
    cells2 = occupied_cells(anchor2, size2)
    return min(
        max(abs(x1 - x2), abs(y1 - y2))
        for x1, y1 in occupied_cells(anchor1, size1)
        for x2, y2 in cells2
    )
