"""Spell definition models for Gridskirmish."""

from enum import Enum

from pydantic import BaseModel

from models.abilities import Ability
from models.conditions import Condition


class CastingTime(str, Enum):
    """Which part of the action economy a spell spends."""
    ACTION = "action"
    BONUS_ACTION = "bonus_action"
    REACTION = "reaction"


class AoEShape(str, Enum):
    """Area-of-effect templates."""
    CONE = "cone"
    LINE = "line"
    CUBE = "cube"
    SPHERE = "sphere"
    CYLINDER = "cylinder"


class SpellDamage(BaseModel):
    """Damage a spell deals."""
    dice: str                       # e.g., "8d6"
    type: str                       # e.g., "fire"
    scaling: dict[int, str] = {}    # Cantrip dice by caster level, e.g. {5: "2d10"}


class AreaOfEffect(BaseModel):
    """Shape and size of an area spell."""
    shape: AoEShape
    size: int                       # Length, radius or edge in feet
    origin: str = "point"           # "self" (emanates from caster) or "point"


class Projectiles(BaseModel):
    """Multi-projectile spells such as Magic Missile."""
    count: int                      # Projectiles at base level
    damage_per_projectile: str      # e.g., "1d4+1"
    per_slot_level: int = 0         # Extra projectiles per slot above base


class RepeatSaveSpec(BaseModel):
    """How an affected creature may repeat the save against a spell."""
    ability: Ability
    on_end_of_turn: bool = False
    on_damage: bool = False
    advantage_on_damage: bool = False
    on_fail_condition: Condition | None = None  # Upgrade applied on a failed repeat
    on_fail_ends_on_damage: bool = False


class UpcastRule(BaseModel):
    """Fixed increments granted per slot level above the spell's level."""
    dice_per_level: str | None = None   # e.g., "1d6"
    per_levels: int = 1                 # Levels above base per increment
    radius_per_level: int = 0           # Feet of AoE size per increment
    targets_per_level: int = 0          # Extra targets per increment


class ZoneSave(BaseModel):
    """Save imposed on creatures entering or starting in a zone."""
    ability: Ability
    condition: Condition | None = None
    damage: SpellDamage | None = None


class ZoneSpec(BaseModel):
    """A persistent area left on the grid, e.g. fog or grease."""
    zone_type: str                  # e.g., "fog", "grease"
    duration_rounds: int | None = None
    blocks_line_of_sight: bool = False
    difficult_terrain: bool = False
    save: ZoneSave | None = None


class ReactionSpec(BaseModel):
    """Trigger and effect of a reaction spell."""
    trigger: str = "on_hit"
    ac_bonus: int = 0


class Spell(BaseModel):
    """A spell a character can cast."""
    id: str
    name: str
    level: int = 0                  # 0 = cantrip
    casting_time: CastingTime = CastingTime.ACTION
    range_ft: int = 60              # 0 = self, 5 = touch
    concentration: bool = False
    damage: SpellDamage | None = None
    saving_throw: Ability | None = None
    half_on_save: bool = True
    attack_type: str | None = None  # "melee" or "ranged" spell attack
    auto_hit: bool = False
    area: AreaOfEffect | None = None
    projectiles: Projectiles | None = None
    max_targets: int = 1
    condition_on_hit: Condition | None = None
    conditions_on_failed_save: list[Condition] = []
    conditions_on_self: list[Condition] = []
    conditions_on_target: list[Condition] = []  # Applied without a save
    condition_duration: int | None = None
    save_advantage_in_combat: bool = False
    repeat_save: RepeatSaveSpec | None = None
    ends_on_damage: bool = False
    upcast: UpcastRule | None = None
    zone: ZoneSpec | None = None
    reaction: ReactionSpec | None = None
