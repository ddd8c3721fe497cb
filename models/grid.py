"""Battle grid cell models for Gridskirmish."""

from enum import Enum

from pydantic import BaseModel


class Terrain(str, Enum):
    """Terrain tags a cell may carry."""
    DIFFICULT = "difficult"         # Double movement cost
    HAZARD = "hazard"               # Double cost, damages on arrival
    WATER = "water"                 # Swim speed applies


class Obstacle(BaseModel):
    """Something standing in a cell: a wall, pillar, boulder."""
    type: str                       # e.g., "wall", "pillar"
    blocks_movement: bool = True
    blocks_line_of_sight: bool = True


class StairConnection(BaseModel):
    """A one-way link from a cell to an adjacent cell at another elevation."""
    target_x: int
    target_y: int
    target_elevation: int
    direction: str = "up"           # "up" or "down"


class GridCell(BaseModel):
    """A single cell on the battle grid."""
    x: int
    y: int
    terrain: Terrain | None = None
    obstacle: Obstacle | None = None
    elevation: int = 0
    stair_connection: StairConnection | None = None
    occupied_by: str | None = None  # Combatant id claiming this cell
