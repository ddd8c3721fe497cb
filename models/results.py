"""Typed outcomes of rule resolution: rolls, attacks, saves, paths."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel

from models.conditions import Condition
from models.creatures import Maneuver, WeaponMastery


class RollMode(str, Enum):
    """How a d20 is rolled."""
    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"


class DiceResult(BaseModel):
    """Result of a dice roll."""
    total: int
    rolls: list[int]
    modifier: int
    notation: str
    breakdown: str = ""             # e.g. "[3, 5]+2 = 10"


class D20Roll(BaseModel):
    """A d20 roll with the detail needed for logging."""
    total: int
    rolls: list[int]                # Every die rolled, including rerolls
    modifier: int
    natural_roll: int               # The kept die
    mode: RollMode = RollMode.NORMAL
    breakdown: str

    @property
    def is_natural_20(self) -> bool:
        return self.natural_roll == 20

    @property
    def is_natural_1(self) -> bool:
        return self.natural_roll == 1


class AttackResult(BaseModel):
    """Outcome of a single attack roll."""
    hit: bool
    critical: bool = False
    critical_miss: bool = False
    attack_roll: D20Roll
    target_ac: int
    damage: DiceResult | None = None
    damage_type: str | None = None
    savage_attacks_damage: DiceResult | None = None
    sneak_attack_damage: DiceResult | None = None
    sneak_attack_used: bool = False
    maneuver_damage: int = 0        # Superiority die added by a maneuver

    @property
    def total_damage(self) -> int:
        """Weapon damage plus every bonus component."""
        total = self.maneuver_damage
        for part in (self.damage, self.savage_attacks_damage, self.sneak_attack_damage):
            if part is not None:
                total += part.total
        return max(0, total)


class TargetCheck(BaseModel):
    """Whether an attacker can target a creature, and why not."""
    can_attack: bool
    reason: Literal["out_of_range", "no_line_of_sight"] | None = None
    blocked_by: tuple[int, int] | None = None


class SavingThrowResult(BaseModel):
    """Outcome of a saving throw against a DC."""
    roll: D20Roll
    modifier: int
    dc: int
    success: bool


class DeathSaveResult(BaseModel):
    """Outcome of one death saving throw."""
    roll: D20Roll
    success: bool
    critical_success: bool = False  # Natural 20: back up at 1 HP
    critical_failure: bool = False  # Natural 1: counts as two failures


class MasteryResult(BaseModel):
    """What a weapon mastery would do; the orchestrator applies it."""
    mastery: WeaponMastery
    applied: bool
    description: str
    push_to: tuple[int, int] | None = None
    squares_pushed: int = 0
    condition: Condition | None = None
    condition_duration: int | None = None
    speed_reduction: int = 0
    vex_expires_on_round: int | None = None
    save: SavingThrowResult | None = None
    graze_damage: int = 0
    cleave_target_ids: list[str] = []
    allows_extra_attack: bool = False


class ManeuverResult(BaseModel):
    """What a maneuver would do once its attack lands."""
    maneuver: Maneuver
    applied: bool
    description: str
    die_roll: int = 0
    bonus_damage: int = 0
    save: SavingThrowResult | None = None
    condition: Condition | None = None
    condition_duration: int | None = None
    push_to: tuple[int, int] | None = None
    squares_pushed: int = 0
    sweep_target_id: str | None = None
    sweep_damage: int = 0
    damage_type: str | None = None  # Of the sweep damage


class Path(BaseModel):
    """A pathfinding result: cells from start to end and the feet it costs."""
    positions: list[tuple[int, int]]
    cost: int
    squeezing: bool = False         # Some step only fit by squeezing


class SpellTargetResult(BaseModel):
    """How a spell resolved against one target."""
    target_id: str
    target_name: str
    hit: bool | None = None         # Spell attacks only
    critical: bool = False
    attack_roll: D20Roll | None = None
    target_ac: int | None = None
    save: SavingThrowResult | None = None
    damage: int = 0
    damage_type: str | None = None
    breakdown: str = ""
    projectile_damages: list[int] = []
    conditions: list[Condition] = []


class SpellCastResult(BaseModel):
    """Everything a casting produced, for the orchestrator to apply."""
    spell_id: str
    slot_level: int
    source: str | None = None       # Tag shared by the casting's conditions and zone
    targets: list[SpellTargetResult] = []
    affected_cells: list[tuple[int, int]] = []
    zone_id: str | None = None
