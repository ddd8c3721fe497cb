"""Combatant model: a stat block plus its mutable combat state."""

from pydantic import BaseModel, Field

from models.abilities import AbilityScores
from models.conditions import ActiveCondition, Condition
from models.creatures import Actor, Character, Monster, Size


class DeathSaves(BaseModel):
    """Death saving throw tally for a character at 0 HP."""
    successes: int = 0
    failures: int = 0


class VexedBy(BaseModel):
    """Vex mastery mark: the attacker has advantage on its next attack."""
    attacker_id: str
    expires_on_round: int


class Combatant(BaseModel):
    """A character or monster taking part in combat."""
    id: str
    name: str
    actor: Actor                    # Character or Monster stat block
    current_hp: int
    max_hp: int
    temporary_hp: int = 0
    position: tuple[int, int] | None = None  # Footprint anchor (top-left)
    initiative: int = 0
    conditions: list[ActiveCondition] = []
    has_acted: bool = False
    has_bonus_acted: bool = False
    has_reacted: bool = False
    attacks_made_this_turn: int = 0
    movement_used: int = 0          # Feet; negative after Dash
    used_sneak_attack_this_turn: bool = False
    used_cleave_this_turn: bool = False
    used_nick_this_turn: bool = False
    bonus_attacks_available: int = 0  # Extra attacks granted by Nick
    used_action_surge_this_turn: bool = False
    speed_reduction: int = 0        # From Slow mastery, cleared when its turn ends
    vexed_by: VexedBy | None = None
    racial_ability_uses: dict[str, int] = {}
    class_feature_uses: dict[str, int] = {}  # ClassFeature value -> uses left
    death_saves: DeathSaves = Field(default_factory=DeathSaves)
    is_stable: bool = False
    concentrating_on: str | None = None     # Spell id being concentrated on
    concentration_source: str | None = None  # Source tag of that casting

    @property
    def is_character(self) -> bool:
        return isinstance(self.actor, Character)

    @property
    def is_monster(self) -> bool:
        return isinstance(self.actor, Monster)

    @property
    def side(self) -> str:
        """Team tag: every character is allied with every other character."""
        return self.actor.kind

    @property
    def base_size(self) -> Size:
        return self.actor.size

    @property
    def ability_scores(self) -> AbilityScores:
        return self.actor.ability_scores

    @property
    def proficiency_bonus(self) -> int:
        return self.actor.proficiency_bonus

    @property
    def speed(self) -> int:
        return self.actor.speed

    @property
    def swim_speed(self) -> int | None:
        return self.actor.swim_speed

    @property
    def base_armor_class(self) -> int:
        return self.actor.armor_class

    @property
    def is_dead(self) -> bool:
        """Monsters die at 0 HP; characters after three failed death saves."""
        if isinstance(self.actor, Monster):
            return self.current_hp <= 0
        return self.death_saves.failures >= 3

    def has_condition(self, *conditions: Condition) -> bool:
        """True if any of the given conditions is active."""
        return any(c.condition in conditions for c in self.conditions)

    def is_ally_of(self, other: "Combatant") -> bool:
        return self.side == other.side
