"""Combat state, phase, movement, reaction and log models for Gridskirmish."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from models.combatant import Combatant
from models.grid import GridCell
from models.creatures import Maneuver
from models.results import ManeuverResult, MasteryResult
from models.spells import ZoneSave


class CombatPhase(str, Enum):
    """Phases of an encounter."""
    SETUP = "setup"                 # Placing combatants
    INITIATIVE = "initiative"       # Rolling initiative
    COMBAT = "combat"               # Turns in progress
    AWAITING_REACTION = "awaiting_reaction"  # Paused for a reaction decision
    VICTORY = "victory"             # Every monster down
    DEFEAT = "defeat"               # Every character dead


class LogEntryType(str, Enum):
    """Tags for combat log entries."""
    INITIATIVE = "initiative"
    MOVEMENT = "movement"
    ATTACK = "attack"
    DAMAGE = "damage"
    HEAL = "heal"
    SPELL = "spell"
    CONDITION = "condition"
    DEATH = "death"
    OTHER = "other"


class CombatLogEntry(BaseModel):
    """One line of the narrative combat log."""
    id: str
    timestamp: datetime
    round: int
    type: LogEntryType
    actor_id: str | None = None
    actor_name: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    message: str
    details: str | None = None      # Roll breakdowns, etc.


class MovementAnimation(BaseModel):
    """Stepper over a committed path; advanced by an external driver."""
    combatant_id: str
    path: list[tuple[int, int]]
    current_index: int = 0


class PendingMovement(BaseModel):
    """A computed move waiting to be settled."""
    combatant_id: str
    to: tuple[int, int]
    path: list[tuple[int, int]]
    path_cost: int
    threatening_enemy_ids: list[str] = []
    resolved_enemy_ids: list[str] = []  # Opportunity attacks already taken


class ReactionContext(BaseModel):
    """Why combat is paused and what happens once the reaction is decided."""
    trigger: str = "on_hit"         # "on_hit" or "on_miss"
    reacting_combatant_id: str
    triggering_combatant_id: str
    available_spell_ids: list[str] = []
    available_maneuvers: list[Maneuver] = []
    attack_total: int
    target_ac: int
    damage: int = 0
    damage_type: str | None = None
    is_critical: bool = False
    is_opportunity_attack: bool = False
    weapon_id: str | None = None    # Weapon behind the attack; None for monsters and unarmed
    pending_mastery: MasteryResult | None = None  # Applied if the hit still lands
    pending_maneuver: ManeuverResult | None = None


class Zone(BaseModel):
    """A persistent spell area placed on the grid."""
    id: str
    zone_type: str                  # e.g., "fog", "grease"
    caster_id: str
    spell_id: str
    source: str                     # Source tag shared with the casting's conditions
    cells: list[tuple[int, int]]
    duration_rounds: int | None = None
    blocks_line_of_sight: bool = False
    difficult_terrain: bool = False
    save: ZoneSave | None = None
    save_dc: int | None = None


class CombatState(BaseModel):
    """The full state of one encounter."""
    phase: CombatPhase = CombatPhase.SETUP
    grid: list[list[GridCell]]      # 2D grid [y][x]
    combatants: dict[str, Combatant] = {}  # combatant_id -> Combatant
    turn_order: list[str] = []      # Fixed at combat start
    current_turn_index: int = 0
    round: int = 0
    log: list[CombatLogEntry] = []
    movement_animation: MovementAnimation | None = None
    pending_movement: PendingMovement | None = None
    pending_reaction: ReactionContext | None = None
    zones: list[Zone] = []

    @property
    def width(self) -> int:
        return len(self.grid[0]) if self.grid else 0

    @property
    def height(self) -> int:
        return len(self.grid)
