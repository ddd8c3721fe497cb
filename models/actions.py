"""Intent request and response models for Gridskirmish."""

from enum import Enum

from pydantic import BaseModel

from models.creatures import Maneuver


class ActionType(str, Enum):
    """Intents an external controller (AI or client) can submit."""
    MOVE = "move"
    ATTACK = "attack"
    DODGE = "dodge"
    DASH = "dash"                   # Double movement
    DISENGAGE = "disengage"         # Move without opportunity attacks
    CAST_SPELL = "cast_spell"
    SECOND_WIND = "second_wind"
    ACTION_SURGE = "action_surge"
    CUNNING_ACTION = "cunning_action"  # Dash or Disengage as a bonus action
    MANEUVER = "maneuver"           # Bonus-action maneuver, e.g. Evasive Footwork
    END_TURN = "end_turn"


class ActionRequest(BaseModel):
    """A controller's requested action for the current combatant."""
    combatant_id: str
    action_type: ActionType
    target_id: str | None = None        # For attacks and targeted spells
    target_ids: list[str] = []          # For multi-target spells
    target_position: tuple[int, int] | None = None  # For movement and area spells
    use_ranged: bool = False            # Attack with the ranged weapon
    spell_id: str | None = None
    slot_level: int | None = None
    projectile_assignments: dict[str, int] = {}  # target_id -> projectiles
    maneuver: Maneuver | None = None    # Declared with an attack, or a bonus-action maneuver
    cunning_action: ActionType | None = None  # DASH or DISENGAGE


class ActionResult(BaseModel):
    """The engine's response after processing an intent."""
    success: bool
    action_type: ActionType
    description: str                    # Human-readable narrative
    attack_roll: int | None = None
    hit: bool | None = None
    damage_dealt: int | None = None
    target_hp_remaining: int | None = None
    movement_path: list[tuple[int, int]] | None = None
    error: str | None = None            # If the intent was rejected
    error_code: str | None = None
