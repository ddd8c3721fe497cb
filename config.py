"""Engine-wide configuration constants for Gridskirmish."""

import os

GRID_WIDTH = int(os.environ.get("GRID_WIDTH", "20"))    # Grid width in 5ft squares
GRID_HEIGHT = int(os.environ.get("GRID_HEIGHT", "20"))  # Grid height in 5ft squares
SQUARE_SIZE_FT = 5       # Each square = 5 feet
DEFAULT_MOVEMENT_SPEED = 30  # feet per turn (6 squares)
MIN_COMBATANTS = 2           # Needed to start combat
DEATH_SAVE_DC = 10
HAZARD_DAMAGE_DICE = "1d4"   # Rolled when a move ends on hazard terrain
HAZARD_DAMAGE_TYPE = "fire"
STAIR_CLIMB_COST_FT = 5      # Surcharge for changing elevation via stairs
PUSH_DISTANCE_SQUARES = 2    # Push mastery shove distance
SLOW_SPEED_REDUCTION_FT = 10
MONSTER_TOPPLE_DC = 13       # Topple DC when the attacker is a monster
PUSHING_ATTACK_SQUARES = 3   # Pushing Attack shoves up to 15ft
SECOND_WIND_DICE = "1d10"    # Plus the character level
DEFAULT_RANGED_RANGE_FT = 30  # Ranged weapons without a listed range
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
ENCOUNTER_NAME = "Gridskirmish Encounter"  # Name of the single in-process encounter
SAVE_FILE = os.environ.get("SAVE_FILE", "")  # Empty keeps the encounter in memory only
