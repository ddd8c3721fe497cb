"""Condition tags and active-condition records for Gridskirmish."""

from enum import Enum

from pydantic import BaseModel

from models.abilities import Ability


class Condition(str, Enum):
    """Closed set of conditions a combatant can carry."""
    # Standard conditions
    BLINDED = "blinded"
    CHARMED = "charmed"
    DEAFENED = "deafened"
    FRIGHTENED = "frightened"
    GRAPPLED = "grappled"
    INCAPACITATED = "incapacitated"
    INVISIBLE = "invisible"
    PARALYZED = "paralyzed"
    PETRIFIED = "petrified"
    POISONED = "poisoned"
    PRONE = "prone"
    RESTRAINED = "restrained"
    STUNNED = "stunned"
    UNCONSCIOUS = "unconscious"
    EXHAUSTION = "exhaustion"
    # Action-based
    DODGING = "dodging"
    DISENGAGING = "disengaging"
    SHIELDED = "shielded"           # AC from a reaction spell such as Shield
    WARDED = "warded"               # Blade Ward: -1d4 to attacks against
    NO_REACTIONS = "no_reactions"
    # Weapon mastery
    SAPPED = "sapped"               # Disadvantage on next attack
    # Maneuvers
    EVASIVE = "evasive"             # Evasive Footwork: superiority die added to AC
    # Size shifts
    ENLARGED = "enlarged"
    REDUCED = "reduced"


INDEFINITE = -1  # Duration sentinel: never decremented


class RepeatSave(BaseModel):
    """A save the affected creature repeats to shake off a condition."""
    ability: Ability
    dc: int
    on_end_of_turn: bool = False
    on_damage: bool = False
    advantage_on_damage: bool = False
    upgrade_to: Condition | None = None    # Replaces the condition on a failed save
    upgrade_ends_on_damage: bool = False   # Carried onto the upgraded condition


class ActiveCondition(BaseModel):
    """A condition currently applied to a combatant."""
    condition: Condition
    duration: int | None = None     # Rounds remaining; None or INDEFINITE = indefinite
    source: str | None = None       # Shared by all conditions from one casting
    repeat_save: RepeatSave | None = None
    ends_on_damage: bool = False
    ac_bonus: int = 0               # Added to AC while active

    @property
    def is_indefinite(self) -> bool:
        return self.duration is None or self.duration == INDEFINITE
