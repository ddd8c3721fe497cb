"""Limited-use class features: Second Wind, Action Surge, Indomitable,
Cunning Action and the superiority dice behind Combat Superiority.

Uses are kept on the combatant in class_feature_uses, keyed by the
feature's value. The tables below give the uses a character gets at each
level; the engine fills class_feature_uses from them when combat starts.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from config import SECOND_WIND_DICE
from engine.dice import roll
from models.creatures import Character, ClassFeature
from models.results import DiceResult

if TYPE_CHECKING:
    from models.combatant import Combatant

# Level -> uses; the highest key not above the character's level wins
FEATURE_USES_BY_LEVEL: dict[ClassFeature, dict[int, int]] = {
    ClassFeature.SECOND_WIND: {1: 2, 4: 3, 10: 4},
    ClassFeature.ACTION_SURGE: {2: 1, 17: 2},
    ClassFeature.INDOMITABLE: {9: 1, 13: 2, 17: 3},
    ClassFeature.COMBAT_SUPERIORITY: {3: 4, 7: 5, 15: 6},
}


def value_at_level(table: dict[int, int], level: int) -> int:
    """The entry with the highest level key not above level; 0 if none."""
    eligible = [lvl for lvl in table if lvl <= level]
    if not eligible:
        return 0
    return table[max(eligible)]


def has_feature(combatant: Combatant, feature: ClassFeature) -> bool:
    actor = combatant.actor
    return isinstance(actor, Character) and feature in actor.class_features


def max_feature_uses(character: Character, feature: ClassFeature) -> int:
    """Uses per combat at the character's level; 0 if the feature is missing.

    Features without a table (Cunning Action) cost a bonus action instead
    of a use and report 0.
    """
    if feature not in character.class_features or feature not in FEATURE_USES_BY_LEVEL:
        return 0
    return value_at_level(FEATURE_USES_BY_LEVEL[feature], character.level)


def feature_uses_remaining(combatant: Combatant, feature: ClassFeature) -> int:
    """Uses left; falls back to the level maximum if combat never set them."""
    actor = combatant.actor
    if not isinstance(actor, Character):
        return 0
    if feature.value in combatant.class_feature_uses:
        return combatant.class_feature_uses[feature.value]
    return max_feature_uses(actor, feature)


def initial_feature_uses(combatant: Combatant) -> dict[str, int]:
    """Full uses for every tracked feature the combatant has."""
    actor = combatant.actor
    if not isinstance(actor, Character):
        return {}
    return {
        feature.value: max_feature_uses(actor, feature)
        for feature in actor.class_features
        if feature in FEATURE_USES_BY_LEVEL
    }


def roll_second_wind(character: Character, rng: random.Random | None = None) -> DiceResult:
    """1d10 + character level."""
    return roll(f"{SECOND_WIND_DICE}+{character.level}", rng=rng)


def indomitable_bonus(character: Character) -> int:
    """Indomitable's reroll adds the character level."""
    return character.level


def feature_name(feature: ClassFeature) -> str:
    return feature.value.replace("_", " ").title()
