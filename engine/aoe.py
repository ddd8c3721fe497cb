"""Area-of-effect templates for Gridskirmish.

Cones and lines snap to one of eight compass directions from the caster.
Spheres, cylinders and cubes are centred on the target cell.
"""

from __future__ import annotations

import math
from enum import Enum

from config import SQUARE_SIZE_FT
from engine.grid import distance_feet, in_bounds
from models.grid import GridCell
from models.spells import AoEShape


class Direction(str, Enum):
    """Compass directions; north is towards y = 0."""
    N = "N"
    NE = "NE"
    E = "E"
    SE = "SE"
    S = "S"
    SW = "SW"
    W = "W"
    NW = "NW"

    @property
    def vector(self) -> tuple[int, int]:
        return _VECTORS[self]

    @property
    def is_diagonal(self) -> bool:
        dx, dy = _VECTORS[self]
        return dx != 0 and dy != 0


_VECTORS = {
    Direction.N: (0, -1),
    Direction.NE: (1, -1),
    Direction.E: (1, 0),
    Direction.SE: (1, 1),
    Direction.S: (0, 1),
    Direction.SW: (-1, 1),
    Direction.W: (-1, 0),
    Direction.NW: (-1, -1),
}

# Counter-clockwise from east in screen coordinates (y grows downward)
_BY_OCTANT = [
    Direction.E, Direction.SE, Direction.S, Direction.SW,
    Direction.W, Direction.NW, Direction.N, Direction.NE,
]


def snap_direction(origin: tuple[int, int], target: tuple[int, int]) -> Direction:
    """Snap the origin→target angle to the nearest of eight directions.

    A zero-length vector points east.
    """
    angle = math.atan2(target[1] - origin[1], target[0] - origin[0])
    octant = round(angle / (math.pi / 4)) % 8
    return _BY_OCTANT[octant]


def _squares(size_ft: int) -> int:
    return math.ceil(size_ft / SQUARE_SIZE_FT)


def cone_cells(origin: tuple[int, int], direction: Direction, size_ft: int) -> set[tuple[int, int]]:
    """Cells of a cone anchored on the origin cell.

    Cardinal cones grow one cell per row: row r (1-based, starting on the
    origin) holds r cells centred on the axis. Diagonal cones fill the
    quadrant wedge between both axes, keeping cells whose 5-10-5 distance
    from the origin is under the cone's length.
    """
    length = _squares(size_ft)
    ox, oy = origin
    dx, dy = direction.vector
    cells: set[tuple[int, int]] = set()

    if direction.is_diagonal:
        for i in range(length):
            for j in range(length):
                if distance_feet(i, j) < size_ft:
                    cells.add((ox + i * dx, oy + j * dy))
        return cells

    px, py = -dy, dx                # Perpendicular axis
    for row in range(1, length + 1):
        step = row - 1
        low = -((row - 1) // 2)
        for offset in range(low, low + row):
            cells.add((ox + dx * step + px * offset, oy + dy * step + py * offset))
    return cells


def line_cells(origin: tuple[int, int], direction: Direction, size_ft: int) -> set[tuple[int, int]]:
    """A one-cell-wide ray of size/5 cells starting next to the origin."""
    ox, oy = origin
    dx, dy = direction.vector
    return {(ox + dx * k, oy + dy * k) for k in range(1, _squares(size_ft) + 1)}


def sphere_cells(center: tuple[int, int], radius_ft: int) -> set[tuple[int, int]]:
    """Cells whose 5-10-5 distance from the centre is strictly under the radius."""
    reach = _squares(radius_ft)
    cx, cy = center
    return {
        (cx + dx, cy + dy)
        for dy in range(-reach, reach + 1)
        for dx in range(-reach, reach + 1)
        if distance_feet(dx, dy) < radius_ft
    }


def cube_cells(center: tuple[int, int], size_ft: int) -> set[tuple[int, int]]:
    """A square of ceil(size/5) cells per side centred on the target.

    Even-sized cubes extend one cell further up and left of the target.
    """
    edge = _squares(size_ft)
    start = -(edge // 2)
    cx, cy = center
    return {
        (cx + dx, cy + dy)
        for dy in range(start, start + edge)
        for dx in range(start, start + edge)
    }


def originates_from_caster(shape: AoEShape) -> bool:
    """Cones and lines start at the caster; other shapes are placed."""
    return shape in (AoEShape.CONE, AoEShape.LINE)


def get_aoe_affected_cells(
    shape: AoEShape,
    size_ft: int,
    origin: tuple[int, int],
    target: tuple[int, int],
    grid: list[list[GridCell]] | None = None,
) -> set[tuple[int, int]]:
    """Cells covered by an area of effect.

    Args:
        shape: Template type.
        size_ft: Cone/line length, sphere radius or cube edge in feet.
        origin: Caster cell; sets the direction of cones and lines.
        target: Cursor cell; the centre of spheres, cylinders and cubes.
        grid: If given, cells outside it are dropped.

    Returns:
        Set of (x, y) cells.
    """
    if shape == AoEShape.CONE:
        cells = cone_cells(origin, snap_direction(origin, target), size_ft)
    elif shape == AoEShape.LINE:
        cells = line_cells(origin, snap_direction(origin, target), size_ft)
    elif shape in (AoEShape.SPHERE, AoEShape.CYLINDER):
        cells = sphere_cells(target, size_ft)
    elif shape == AoEShape.CUBE:
        cells = cube_cells(target, size_ft)
    else:
        cells = set()

    if grid is not None:
        cells = {(x, y) for x, y in cells if in_bounds(x, y, grid)}
    return cells
