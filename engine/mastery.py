"""Weapon mastery effects.

Every function here only computes what a mastery would do and returns a
MasteryResult; the combat engine decides whether and how to apply it.
"""

from __future__ import annotations

import random
from collections.abc import Iterable
from typing import TYPE_CHECKING

from config import (
    MONSTER_TOPPLE_DC,
    PUSH_DISTANCE_SQUARES,
    SLOW_SPEED_REDUCTION_FT,
    SQUARE_SIZE_FT,
)
from engine.footprint import (
    SIZE_ORDER,
    combatant_cells,
    effective_size,
    footprint_clear_of_combatants,
    footprint_clear_of_obstacles,
)
from engine.rules import attack_range, distance_between, roll_saving_throw, weapon_ability_modifier
from models.abilities import Ability
from models.conditions import Condition
from models.creatures import Character, Size, Weapon, WeaponMastery
from models.results import MasteryResult

if TYPE_CHECKING:
    from models.combatant import Combatant
    from models.grid import GridCell


def max_mastered_weapons(character: Character) -> int:
    """Mastery slots for the character's level.

    Uses the entry with the highest level key not above the character's
    level; no entry means no masteries.
    """
    eligible = [lvl for lvl in character.mastery_count_by_level if lvl <= character.level]
    if not eligible:
        return 0
    return character.mastery_count_by_level[max(eligible)]


def active_mastered_weapon_ids(character: Character) -> list[str]:
    """The mastered weapon ids that fit under the level cap, in listed order."""
    return character.mastered_weapon_ids[: max_mastered_weapons(character)]


def has_mastered_weapon(character: Character, weapon: Weapon) -> bool:
    return weapon.mastery is not None and weapon.id in active_mastered_weapon_ids(character)


def get_active_mastery(attacker: Combatant, weapon: Weapon | None) -> WeaponMastery | None:
    """The mastery property the attacker can use with this weapon, if any."""
    actor = attacker.actor
    if weapon is None or not isinstance(actor, Character):
        return None
    if not has_mastered_weapon(actor, weapon):
        return None
    return weapon.mastery


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def is_pushable(target: Combatant) -> bool:
    """Only Large or smaller creatures can be shoved."""
    return SIZE_ORDER.index(effective_size(target)) <= SIZE_ORDER.index(Size.LARGE)


def shove_destination(
    attacker: Combatant,
    target: Combatant,
    grid: list[list[GridCell]],
    combatants: Iterable[Combatant],
    max_squares: int,
) -> tuple[tuple[int, int], int]:
    """Walk the target straight away from the attacker, square by square.

    Stops early at the grid edge, an obstacle, or a living creature.
    Returns the final anchor and how many squares it moved.
    """
    step = (
        _sign(target.position[0] - attacker.position[0]),
        _sign(target.position[1] - attacker.position[1]),
    )
    if step == (0, 0):
        return target.position, 0

    occupied: set[tuple[int, int]] = set()
    for other in combatants:
        if other.id != target.id and other.current_hp > 0:
            occupied.update(combatant_cells(other))

    size = effective_size(target)
    current = target.position
    moved = 0
    for _ in range(max_squares):
        candidate = (current[0] + step[0], current[1] + step[1])
        if not footprint_clear_of_obstacles(candidate, size, grid):
            break
        if not footprint_clear_of_combatants(candidate, size, occupied):
            break
        current = candidate
        moved += 1
    return current, moved


def push(
    attacker: Combatant,
    target: Combatant,
    grid: list[list[GridCell]],
    combatants: Iterable[Combatant],
) -> MasteryResult:
    """Shove the target up to PUSH_DISTANCE_SQUARES straight away from the attacker."""
    if not is_pushable(target):
        return MasteryResult(
            mastery=WeaponMastery.PUSH, applied=False,
            description=f"{target.name} is too large to push",
        )

    current, moved = shove_destination(attacker, target, grid, combatants, PUSH_DISTANCE_SQUARES)
    if moved == 0:
        return MasteryResult(mastery=WeaponMastery.PUSH, applied=False, description="Push blocked")

    feet = moved * SQUARE_SIZE_FT
    description = f"{target.name} is pushed {feet}ft"
    if moved < PUSH_DISTANCE_SQUARES:
        description += " (partially blocked)"
    return MasteryResult(
        mastery=WeaponMastery.PUSH,
        applied=True,
        description=description,
        push_to=current,
        squares_pushed=moved,
    )


def sap(target: Combatant) -> MasteryResult:
    return MasteryResult(
        mastery=WeaponMastery.SAP,
        applied=True,
        description=f"{target.name} is sapped (disadvantage on its next attack)",
        condition=Condition.SAPPED,
        condition_duration=2,           # Survives the tick at the start of its next turn
    )


def slow(target: Combatant) -> MasteryResult:
    if target.speed_reduction >= SLOW_SPEED_REDUCTION_FT:
        return MasteryResult(
            mastery=WeaponMastery.SLOW, applied=False,
            description=f"{target.name} is already slowed",
        )
    return MasteryResult(
        mastery=WeaponMastery.SLOW,
        applied=True,
        description=f"{target.name}'s speed drops by {SLOW_SPEED_REDUCTION_FT}ft",
        speed_reduction=SLOW_SPEED_REDUCTION_FT,
    )


def topple_dc(attacker: Combatant) -> int:
    """8 + proficiency + the better of STR and DEX; fixed DC for monsters."""
    actor = attacker.actor
    if not isinstance(actor, Character):
        return MONSTER_TOPPLE_DC
    scores = actor.ability_scores
    best = max(scores.modifier(Ability.STRENGTH), scores.modifier(Ability.DEXTERITY))
    return 8 + actor.proficiency_bonus + best


def topple(
    attacker: Combatant,
    target: Combatant,
    rng: random.Random | None = None,
) -> MasteryResult:
    """Constitution save or be knocked prone."""
    if target.has_condition(Condition.PRONE):
        return MasteryResult(
            mastery=WeaponMastery.TOPPLE, applied=False,
            description=f"{target.name} is already prone",
        )
    save = roll_saving_throw(target, Ability.CONSTITUTION, topple_dc(attacker), rng=rng)
    if save.success:
        return MasteryResult(
            mastery=WeaponMastery.TOPPLE,
            applied=False,
            description=f"{target.name} keeps its footing ({save.roll.breakdown} vs DC {save.dc})",
            save=save,
        )
    return MasteryResult(
        mastery=WeaponMastery.TOPPLE,
        applied=True,
        description=f"{target.name} is knocked prone ({save.roll.breakdown} vs DC {save.dc})",
        condition=Condition.PRONE,
        condition_duration=None,
        save=save,
    )


def vex(attacker: Combatant, target: Combatant, current_round: int) -> MasteryResult:
    expires = current_round + 1
    return MasteryResult(
        mastery=WeaponMastery.VEX,
        applied=True,
        description=f"{attacker.name} has advantage on its next attack against {target.name}",
        vex_expires_on_round=expires,
    )


def graze(attacker: Combatant, weapon: Weapon) -> MasteryResult:
    """On a miss: damage equal to the attack's ability modifier, minimum 0."""
    damage = max(0, weapon_ability_modifier(attacker.actor, weapon))
    return MasteryResult(
        mastery=WeaponMastery.GRAZE,
        applied=damage > 0,
        description=f"Graze deals {damage} damage",
        graze_damage=damage,
    )


def cleave(
    attacker: Combatant,
    target: Combatant,
    weapon: Weapon,
    combatants: Iterable[Combatant],
) -> MasteryResult:
    """Find enemies next to the target that the attacker can also reach.

    Allies, the dead, the attacker and the original target are excluded.
    Cleave works once per turn.
    """
    if attacker.used_cleave_this_turn:
        return MasteryResult(
            mastery=WeaponMastery.CLEAVE, applied=False,
            description="Cleave already used this turn",
        )

    reach = attack_range(weapon)
    candidates = []
    for other in combatants:
        if other.id in (attacker.id, target.id) or other.is_ally_of(attacker):
            continue
        if other.current_hp <= 0 or other.position is None:
            continue
        if distance_between(other, target) > SQUARE_SIZE_FT:
            continue
        if distance_between(attacker, other) > reach:
            continue
        candidates.append(other.id)

    if not candidates:
        return MasteryResult(
            mastery=WeaponMastery.CLEAVE, applied=False,
            description="No second target to cleave",
        )
    return MasteryResult(
        mastery=WeaponMastery.CLEAVE,
        applied=True,
        description=f"Cleave can strike {len(candidates)} more target(s)",
        cleave_target_ids=candidates,
    )


def nick(attacker: Combatant, weapon: Weapon) -> MasteryResult:
    """A light weapon allows one extra attack per turn as part of the action."""
    if not weapon.has_property("light"):
        return MasteryResult(
            mastery=WeaponMastery.NICK, applied=False,
            description=f"{weapon.name} is not a light weapon",
        )
    if attacker.used_nick_this_turn:
        return MasteryResult(
            mastery=WeaponMastery.NICK, applied=False,
            description="Nick already used this turn",
        )
    return MasteryResult(
        mastery=WeaponMastery.NICK,
        applied=True,
        description=f"{attacker.name} can make an extra attack with {weapon.name}",
        allows_extra_attack=True,
    )


def apply_mastery_on_hit(
    attacker: Combatant,
    target: Combatant,
    weapon: Weapon | None,
    grid: list[list[GridCell]],
    combatants: Iterable[Combatant],
    current_round: int,
    rng: random.Random | None = None,
) -> MasteryResult | None:
    """Compute the on-hit effect of the attacker's mastery with this weapon.

    Args:
        attacker: The attacking combatant.
        target: The creature that was hit.
        weapon: The weapon used.
        grid: The battle grid, for Push.
        combatants: Everyone on the field, for Push and Cleave.
        current_round: Round number, for Vex expiry.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        The MasteryResult, or None when no mastery applies (no weapon, not
        mastered, or an on-miss-only property like Graze).
    """
    mastery = get_active_mastery(attacker, weapon)
    if mastery is None:
        return None
    combatants = list(combatants)

    if mastery == WeaponMastery.PUSH:
        return push(attacker, target, grid, combatants)
    if mastery == WeaponMastery.SAP:
        return sap(target)
    if mastery == WeaponMastery.SLOW:
        return slow(target)
    if mastery == WeaponMastery.TOPPLE:
        return topple(attacker, target, rng)
    if mastery == WeaponMastery.VEX:
        return vex(attacker, target, current_round)
    if mastery == WeaponMastery.CLEAVE:
        return cleave(attacker, target, weapon, combatants)
    if mastery == WeaponMastery.NICK:
        return nick(attacker, weapon)
    return None


def apply_mastery_on_miss(attacker: Combatant, weapon: Weapon | None) -> MasteryResult | None:
    """Graze is the only mastery that does anything on a miss."""
    mastery = get_active_mastery(attacker, weapon)
    if mastery != WeaponMastery.GRAZE:
        return None
    return graze(attacker, weapon)
