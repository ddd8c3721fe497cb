"""Battle Master maneuvers.

As with weapon masteries, every function here only works out what a
maneuver would do and returns a ManeuverResult. The combat engine checks
that the maneuver can be used, spends the superiority die and applies the
result.
"""

from __future__ import annotations

import random
from collections.abc import Iterable
from typing import TYPE_CHECKING

from config import PUSHING_ATTACK_SQUARES, SQUARE_SIZE_FT
from engine.class_features import feature_uses_remaining, value_at_level
from engine.dice import roll
from engine.mastery import is_pushable, shove_destination
from engine.rules import attack_range, distance_between, get_armor_class, roll_saving_throw
from models.abilities import Ability
from models.conditions import Condition
from models.creatures import Character, ClassFeature, Maneuver, Weapon
from models.results import DiceResult, ManeuverResult

if TYPE_CHECKING:
    from models.combatant import Combatant
    from models.grid import GridCell

SUPERIORITY_DIE_BY_LEVEL = {3: 8, 10: 10, 18: 12}

# When each maneuver is declared
MANEUVER_TRIGGERS: dict[Maneuver, str] = {
    Maneuver.PRECISION_ATTACK: "pre_attack",
    Maneuver.TRIP_ATTACK: "on_hit",
    Maneuver.MENACING_ATTACK: "on_hit",
    Maneuver.PUSHING_ATTACK: "on_hit",
    Maneuver.SWEEPING_ATTACK: "on_hit",
    Maneuver.EVASIVE_FOOTWORK: "bonus_action",
    Maneuver.RIPOSTE: "reaction",
    Maneuver.PARRY: "reaction",
}

# Reaction trigger on the ReactionContext -> the maneuver it offers
REACTION_MANEUVERS: dict[str, Maneuver] = {
    "on_hit": Maneuver.PARRY,
    "on_miss": Maneuver.RIPOSTE,
}


def maneuver_name(maneuver: Maneuver) -> str:
    return maneuver.value.replace("_", " ").title()


def superiority_die_size(character: Character) -> int:
    return value_at_level(SUPERIORITY_DIE_BY_LEVEL, character.level) or 8


def superiority_dice_remaining(combatant: Combatant) -> int:
    return feature_uses_remaining(combatant, ClassFeature.COMBAT_SUPERIORITY)


def knows_maneuver(combatant: Combatant, maneuver: Maneuver) -> bool:
    actor = combatant.actor
    return (
        isinstance(actor, Character)
        and ClassFeature.COMBAT_SUPERIORITY in actor.class_features
        and maneuver in actor.maneuvers
    )


def roll_superiority_die(character: Character, rng: random.Random | None = None) -> DiceResult:
    return roll(f"1d{superiority_die_size(character)}", rng=rng)


def maneuver_save_dc(attacker: Combatant) -> int:
    """8 + proficiency + the better of STR and DEX."""
    scores = attacker.ability_scores
    best = max(scores.modifier(Ability.STRENGTH), scores.modifier(Ability.DEXTERITY))
    return 8 + attacker.actor.proficiency_bonus + best


def trip_attack(
    attacker: Combatant,
    target: Combatant,
    die_roll: int,
    rng: random.Random | None = None,
) -> ManeuverResult:
    """Die added to damage; a Large or smaller target saves (STR) or falls prone."""
    base = dict(maneuver=Maneuver.TRIP_ATTACK, die_roll=die_roll, bonus_damage=die_roll)
    if not is_pushable(target):
        return ManeuverResult(applied=False, description=f"{target.name} is too large to trip", **base)
    if target.has_condition(Condition.PRONE):
        return ManeuverResult(applied=False, description=f"{target.name} is already prone", **base)
    save = roll_saving_throw(target, Ability.STRENGTH, maneuver_save_dc(attacker), rng=rng)
    if save.success:
        return ManeuverResult(
            applied=False,
            description=f"{target.name} keeps its footing ({save.roll.breakdown} vs DC {save.dc})",
            save=save,
            **base,
        )
    return ManeuverResult(
        applied=True,
        description=f"{target.name} is tripped and falls prone ({save.roll.breakdown} vs DC {save.dc})",
        save=save,
        condition=Condition.PRONE,
        **base,
    )


def menacing_attack(
    attacker: Combatant,
    target: Combatant,
    die_roll: int,
    rng: random.Random | None = None,
) -> ManeuverResult:
    """Die added to damage; the target saves (WIS) or is frightened."""
    base = dict(maneuver=Maneuver.MENACING_ATTACK, die_roll=die_roll, bonus_damage=die_roll)
    save = roll_saving_throw(target, Ability.WISDOM, maneuver_save_dc(attacker), rng=rng)
    if save.success:
        return ManeuverResult(
            applied=False,
            description=f"{target.name} shrugs off the threat ({save.roll.breakdown} vs DC {save.dc})",
            save=save,
            **base,
        )
    return ManeuverResult(
        applied=True,
        description=f"{target.name} is frightened of {attacker.name} ({save.roll.breakdown} vs DC {save.dc})",
        save=save,
        condition=Condition.FRIGHTENED,
        condition_duration=2,           # Lasts through the attacker's next turn
        **base,
    )


def pushing_attack(
    attacker: Combatant,
    target: Combatant,
    die_roll: int,
    grid: list[list[GridCell]],
    combatants: Iterable[Combatant],
    rng: random.Random | None = None,
) -> ManeuverResult:
    """Die added to damage; a Large or smaller target saves (STR) or is pushed 15ft."""
    base = dict(maneuver=Maneuver.PUSHING_ATTACK, die_roll=die_roll, bonus_damage=die_roll)
    if not is_pushable(target):
        return ManeuverResult(applied=False, description=f"{target.name} is too large to push", **base)
    save = roll_saving_throw(target, Ability.STRENGTH, maneuver_save_dc(attacker), rng=rng)
    if save.success:
        return ManeuverResult(
            applied=False,
            description=f"{target.name} holds its ground ({save.roll.breakdown} vs DC {save.dc})",
            save=save,
            **base,
        )
    destination, moved = shove_destination(attacker, target, grid, combatants, PUSHING_ATTACK_SQUARES)
    if moved == 0:
        return ManeuverResult(applied=False, description="Push blocked", save=save, **base)
    return ManeuverResult(
        applied=True,
        description=f"{target.name} is pushed {moved * SQUARE_SIZE_FT}ft",
        save=save,
        push_to=destination,
        squares_pushed=moved,
        **base,
    )


def sweeping_attack(
    attacker: Combatant,
    target: Combatant,
    die_roll: int,
    attack_total: int,
    weapon: Weapon,
    combatants: Iterable[Combatant],
) -> ManeuverResult:
    """Carry the swing into a second enemy beside the target.

    The second creature must be within 5ft of the target and within the
    attacker's reach. If the original attack roll would hit it, it takes
    the die in damage.
    """
    reach = attack_range(weapon)
    for other in combatants:
        if other.id in (attacker.id, target.id) or other.is_ally_of(attacker):
            continue
        if other.current_hp <= 0 or other.position is None:
            continue
        if distance_between(other, target) > SQUARE_SIZE_FT or distance_between(attacker, other) > reach:
            continue
        if attack_total < get_armor_class(other):
            return ManeuverResult(
                maneuver=Maneuver.SWEEPING_ATTACK, applied=False, die_roll=die_roll,
                description=f"The sweep misses {other.name}",
                sweep_target_id=other.id,
            )
        return ManeuverResult(
            maneuver=Maneuver.SWEEPING_ATTACK,
            applied=True,
            die_roll=die_roll,
            description=f"The sweep carries into {other.name} for {die_roll} damage",
            sweep_target_id=other.id,
            sweep_damage=die_roll,
            damage_type=weapon.damage_type,
        )
    return ManeuverResult(
        maneuver=Maneuver.SWEEPING_ATTACK, applied=False, die_roll=die_roll,
        description="No second target to sweep",
    )


def apply_on_hit_maneuver(
    attacker: Combatant,
    target: Combatant,
    maneuver: Maneuver,
    die_roll: int,
    attack_total: int,
    weapon: Weapon,
    grid: list[list[GridCell]],
    combatants: Iterable[Combatant],
    rng: random.Random | None = None,
) -> ManeuverResult:
    """Compute what an on-hit maneuver does after its attack lands.

    Args:
        attacker: The Battle Master.
        target: The creature that was hit.
        maneuver: An on-hit maneuver.
        die_roll: The superiority die already rolled for it.
        attack_total: The attack roll total, for Sweeping Attack.
        weapon: The weapon used.
        grid: The battle grid, for Pushing Attack.
        combatants: Everyone on the field.
        rng: Optional Random instance for the target's save.

    Returns:
        The ManeuverResult; the engine adds bonus_damage to the hit and
        applies the rest once the hit is final.
    """
    combatants = list(combatants)
    if maneuver == Maneuver.TRIP_ATTACK:
        return trip_attack(attacker, target, die_roll, rng)
    if maneuver == Maneuver.MENACING_ATTACK:
        return menacing_attack(attacker, target, die_roll, rng)
    if maneuver == Maneuver.PUSHING_ATTACK:
        return pushing_attack(attacker, target, die_roll, grid, combatants, rng)
    if maneuver == Maneuver.SWEEPING_ATTACK:
        return sweeping_attack(attacker, target, die_roll, attack_total, weapon, combatants)
    raise ValueError(f"{maneuver.value} is not an on-hit maneuver")


def parry_reduction(reactor: Combatant, die_roll: int, damage: int) -> int:
    """Die + DEX modifier, never more than the damage taken."""
    reduction = die_roll + reactor.ability_scores.modifier(Ability.DEXTERITY)
    return max(0, min(reduction, damage))
