"""Starting positions for a quick encounter setup."""

from pydantic import BaseModel

from models.creatures import Monster


class MonsterGroup(BaseModel):
    """Several copies of one monster stat block."""
    monster: Monster
    count: int = 1


def calculate_combatant_positions(
    character_count: int,
    monster_count: int,
    grid_width: int,
    grid_height: int,
) -> tuple[list[tuple[int, int]], list[tuple[int, int]]]:
    """Lay out both sides on opposite edges of the grid.

    Characters stand in one column at x=2, vertically centred. Monsters
    stand at x=width-3, also centred, wrapping into further columns two
    squares to the left once a column is full.

    Args:
        character_count: Number of characters to place.
        monster_count: Number of monsters to place.
        grid_width: Grid width in squares.
        grid_height: Grid height in squares.

    Returns:
        (character_positions, monster_positions).
    """
    char_start_y = max(1, (grid_height - character_count) // 2)
    character_positions = [(2, char_start_y + i) for i in range(character_count)]

    monster_start_y = max(1, (grid_height - monster_count) // 2)
    monster_x = grid_width - 3
    rows = max(1, grid_height - 2)
    monster_positions = []
    for i in range(monster_count):
        row = i % rows
        col = i // rows
        monster_positions.append((monster_x - col * 2, monster_start_y + row))

    return character_positions, monster_positions
