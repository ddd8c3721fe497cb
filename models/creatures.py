"""Character and monster stat-block models for Gridskirmish."""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from models.abilities import Ability, AbilityScores
from models.spells import Spell


class Size(str, Enum):
    """Creature size categories, smallest first."""
    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"
    GARGANTUAN = "gargantuan"


class FightingStyle(str, Enum):
    """Fighting styles that modify attacks or AC."""
    ARCHERY = "archery"             # +2 to ranged attack rolls
    DEFENSE = "defense"             # +1 AC
    DUELING = "dueling"             # +2 damage with a one-handed melee weapon


class WeaponMastery(str, Enum):
    """Weapon mastery properties."""
    CLEAVE = "cleave"
    GRAZE = "graze"
    NICK = "nick"
    PUSH = "push"
    SAP = "sap"
    SLOW = "slow"
    TOPPLE = "topple"
    VEX = "vex"


class Maneuver(str, Enum):
    """Battle Master maneuvers fuelled by superiority dice."""
    PRECISION_ATTACK = "precision_attack"   # Die added to the attack roll
    TRIP_ATTACK = "trip_attack"
    MENACING_ATTACK = "menacing_attack"
    PUSHING_ATTACK = "pushing_attack"
    SWEEPING_ATTACK = "sweeping_attack"
    EVASIVE_FOOTWORK = "evasive_footwork"   # Bonus action
    RIPOSTE = "riposte"                     # Reaction to a melee miss
    PARRY = "parry"                         # Reaction to a melee hit


class ClassFeature(str, Enum):
    """Limited-use class features tracked per combatant."""
    SECOND_WIND = "second_wind"
    ACTION_SURGE = "action_surge"
    INDOMITABLE = "indomitable"
    CUNNING_ACTION = "cunning_action"
    COMBAT_SUPERIORITY = "combat_superiority"  # Uses are superiority dice


class RacialTrait(str, Enum):
    """Racial traits the combat rules know about."""
    LUCKY = "lucky"                 # Reroll natural 1s on attacks and saves
    SAVAGE_ATTACKS = "savage_attacks"  # Extra weapon die on a crit
    RELENTLESS_ENDURANCE = "relentless_endurance"  # Drop to 1 HP instead of 0, once


class Weapon(BaseModel):
    """A weapon a character can wield."""
    id: str                         # e.g., "longsword"
    name: str
    damage_dice: str                # e.g., "1d8"
    damage_type: str                # e.g., "slashing"
    weapon_type: Literal["melee", "ranged"] = "melee"
    properties: list[str] = []      # e.g., ["finesse", "light", "reach"]
    range_normal: int | None = None  # For ranged weapons
    range_long: int | None = None   # Disadvantage range
    mastery: WeaponMastery | None = None

    @property
    def is_ranged(self) -> bool:
        return self.weapon_type == "ranged"

    def has_property(self, name: str) -> bool:
        return name in self.properties


class MonsterAction(BaseModel):
    """An attack listed in a monster stat block."""
    name: str                       # e.g., "Scimitar"
    attack_bonus: int | None = None
    damage_dice: str | None = None  # e.g., "1d6+2"
    damage_type: str | None = None
    reach: int | None = None        # Melee reach in feet
    range_normal: int | None = None
    range_long: int | None = None

    @property
    def is_ranged(self) -> bool:
        return self.range_normal is not None and self.reach is None


class SpellSlot(BaseModel):
    """Slots of one spell level."""
    max: int
    current: int


class Character(BaseModel):
    """A player character stat block."""
    kind: Literal["character"] = "character"
    id: str
    name: str
    level: int = 1
    race: str = "human"
    size: Size = Size.MEDIUM
    racial_traits: list[RacialTrait] = []
    ability_scores: AbilityScores = AbilityScores()
    proficiency_bonus: int = 2
    max_hp: int
    current_hp: int | None = None   # Defaults to max_hp when added to combat
    armor_class: int
    speed: int = 30                 # Walking speed in feet
    swim_speed: int | None = None
    fighting_style: FightingStyle | None = None
    saving_throw_proficiencies: list[Ability] = []
    save_advantages: list[Ability] = []  # Racial advantage on these saves
    melee_weapon: Weapon | None = None
    ranged_weapon: Weapon | None = None
    mastered_weapon_ids: list[str] = []
    mastery_count_by_level: dict[int, int] = {}  # e.g. {1: 2, 4: 3, 10: 4}
    attacks_per_action: int = 1     # Extra Attack raises this
    critical_range: int = 20        # Improved Critical lowers this
    sneak_attack_dice: str | None = None  # e.g., "2d6"
    class_features: list[ClassFeature] = []
    maneuvers: list[Maneuver] = []
    spellcasting_ability: Ability | None = None
    spells: list[Spell] = []
    spell_slots: dict[int, SpellSlot] = {}  # slot level -> slots

    def has_trait(self, trait: RacialTrait) -> bool:
        return trait in self.racial_traits


class Monster(BaseModel):
    """A monster stat block."""
    kind: Literal["monster"] = "monster"
    id: str
    name: str
    size: Size = Size.MEDIUM
    armor_class: int
    hp: int
    speed: int = 30
    swim_speed: int | None = None
    ability_scores: AbilityScores = AbilityScores()
    proficiency_bonus: int = 2
    saving_throws: dict[Ability, int] = {}  # Explicit save bonuses
    actions: list[MonsterAction] = []


Actor = Annotated[Union[Character, Monster], Field(discriminator="kind")]
