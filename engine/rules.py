"""5e combat rules: attack resolution, advantage, range, saves, death saves."""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from config import DEATH_SAVE_DC, DEFAULT_RANGED_RANGE_FT, SQUARE_SIZE_FT
from engine.dice import reroll_natural_one, roll, roll_d20, roll_damage, roll_mode
from engine.footprint import effective_size, footprint_distance
from engine.grid import distance, line_of_sight_blocker
from models.abilities import Ability
from models.conditions import Condition
from models.creatures import Character, FightingStyle, Monster, MonsterAction, RacialTrait, Weapon
from models.results import (
    AttackResult,
    D20Roll,
    DeathSaveResult,
    RollMode,
    SavingThrowResult,
    TargetCheck,
)

if TYPE_CHECKING:
    from models.combatant import Combatant
    from models.grid import GridCell

logger = logging.getLogger(__name__)

_ATTACKER_DISADVANTAGE = (
    Condition.BLINDED,
    Condition.FRIGHTENED,
    Condition.POISONED,
    Condition.RESTRAINED,
    Condition.PRONE,
    Condition.SAPPED,
)
_GRANTS_ADVANTAGE_AGAINST = (
    Condition.BLINDED,
    Condition.PARALYZED,
    Condition.RESTRAINED,
    Condition.STUNNED,
    Condition.UNCONSCIOUS,
)
_HELPLESS = (Condition.PARALYZED, Condition.UNCONSCIOUS)
_INCAPACITATING = (
    Condition.INCAPACITATED,
    Condition.PARALYZED,
    Condition.PETRIFIED,
    Condition.STUNNED,
    Condition.UNCONSCIOUS,
)
_IMMOBILIZING = (
    Condition.GRAPPLED,
    Condition.PARALYZED,
    Condition.PETRIFIED,
    Condition.RESTRAINED,
    Condition.STUNNED,
    Condition.UNCONSCIOUS,
)
_DIE_SIZE = re.compile(r"d(\d+)")


def calculate_ability_modifier(score: int) -> int:
    """Calculate ability modifier from a score using the 5e formula.

    Args:
        score: The ability score (e.g. 16).

    Returns:
        The modifier (e.g. +3 for score 16).
    """
    return (score - 10) // 2


def distance_between(a: Combatant, b: Combatant) -> int:
    """Straight-line distance in feet between the closest footprint cells."""
    if a.position is None or b.position is None:
        raise ValueError("Both combatants must be placed on the grid")
    squares = footprint_distance(a.position, effective_size(a), b.position, effective_size(b))
    return squares * SQUARE_SIZE_FT


def roll_initiative(combatant: Combatant, rng: random.Random | None = None) -> D20Roll:
    """Roll initiative for a combatant: d20 + dexterity modifier."""
    dex_mod = combatant.ability_scores.modifier(Ability.DEXTERITY)
    return roll_d20(dex_mod, rng=rng)


# ---------------------------------------------------------------------------
# Attack and damage bonuses
# ---------------------------------------------------------------------------


def weapon_ability_modifier(character: Character, weapon: Weapon) -> int:
    """Finesse uses the better of STR and DEX; ranged uses DEX; melee uses STR."""
    scores = character.ability_scores
    if weapon.has_property("finesse"):
        return max(scores.modifier(Ability.STRENGTH), scores.modifier(Ability.DEXTERITY))
    if weapon.is_ranged:
        return scores.modifier(Ability.DEXTERITY)
    return scores.modifier(Ability.STRENGTH)


def character_attack_bonus(character: Character, weapon: Weapon) -> int:
    """Ability modifier + proficiency, plus Archery for ranged weapons."""
    bonus = weapon_ability_modifier(character, weapon) + character.proficiency_bonus
    if weapon.is_ranged and character.fighting_style == FightingStyle.ARCHERY:
        bonus += 2
    return bonus


def character_damage_bonus(character: Character, weapon: Weapon) -> int:
    """Ability modifier, plus Dueling for one-handed melee weapons."""
    bonus = weapon_ability_modifier(character, weapon)
    if (
        character.fighting_style == FightingStyle.DUELING
        and not weapon.is_ranged
        and not weapon.has_property("two-handed")
    ):
        bonus += 2
    return bonus


def get_armor_class(combatant: Combatant) -> int:
    """Base AC plus Defense style and any AC carried by conditions (Shield, Evasive Footwork)."""
    ac = combatant.base_armor_class
    actor = combatant.actor
    if isinstance(actor, Character) and actor.fighting_style == FightingStyle.DEFENSE:
        ac += 1
    ac += sum(active.ac_bonus for active in combatant.conditions)
    return ac


def _with_modifier(dice: str, modifier: int) -> str:
    return f"{dice}+{modifier}" if modifier >= 0 else f"{dice}{modifier}"


# ---------------------------------------------------------------------------
# Advantage, range and targeting
# ---------------------------------------------------------------------------


def get_attack_advantage(
    attacker: Combatant,
    target: Combatant,
    is_ranged: bool = False,
    current_round: int = 0,
    advantage: bool = False,
    disadvantage: bool = False,
) -> RollMode:
    """Work out advantage/disadvantage from both sides' conditions.

    Args:
        attacker: The attacking combatant.
        target: The combatant being attacked.
        is_ranged: Whether this is a ranged attack.
        current_round: Round number, for Vex expiry.
        advantage: Advantage from some outside source.
        disadvantage: Disadvantage from some outside source.

    Returns:
        The resulting RollMode; advantage and disadvantage cancel.
    """
    if attacker.has_condition(Condition.INVISIBLE):
        advantage = True
    if attacker.has_condition(*_ATTACKER_DISADVANTAGE):
        disadvantage = True

    if target.has_condition(*_GRANTS_ADVANTAGE_AGAINST):
        advantage = True
    if target.has_condition(Condition.INVISIBLE):
        disadvantage = True
    if target.has_condition(Condition.PRONE):
        if not is_ranged and distance_between(attacker, target) <= SQUARE_SIZE_FT:
            advantage = True
        else:
            disadvantage = True
    if target.has_condition(Condition.DODGING):
        disadvantage = True

    vex = target.vexed_by
    if vex is not None and vex.attacker_id == attacker.id and vex.expires_on_round >= current_round:
        advantage = True

    return roll_mode(advantage, disadvantage)


def is_ranged_attack(weapon: Weapon | None = None, monster_action: MonsterAction | None = None) -> bool:
    if weapon is not None:
        return weapon.is_ranged
    if monster_action is not None:
        return monster_action.is_ranged
    return False


def attack_range(weapon: Weapon | None = None, monster_action: MonsterAction | None = None) -> int:
    """Reach or normal range in feet; unarmed strikes reach 5ft."""
    if weapon is not None:
        if not weapon.is_ranged:
            return 10 if weapon.has_property("reach") else SQUARE_SIZE_FT
        return weapon.range_normal or DEFAULT_RANGED_RANGE_FT
    if monster_action is not None:
        if monster_action.reach:
            return monster_action.reach
        if monster_action.range_normal:
            return monster_action.range_normal
    return SQUARE_SIZE_FT


def is_in_range(
    attacker: Combatant,
    target: Combatant,
    weapon: Weapon | None = None,
    monster_action: MonsterAction | None = None,
) -> bool:
    return distance_between(attacker, target) <= attack_range(weapon, monster_action)


def can_target_with_ranged_attack(
    grid: list[list[GridCell]],
    attacker_pos: tuple[int, int],
    target_pos: tuple[int, int],
    range_ft: int | None = None,
    blocking_cells: Iterable[tuple[int, int]] = (),
) -> TargetCheck:
    """Range and sight check for a ranged attack between two cells.

    Args:
        grid: The battle grid.
        attacker_pos: (x, y) the shot comes from.
        target_pos: (x, y) aimed at.
        range_ft: Maximum range; None skips the range check.
        blocking_cells: Extra opaque cells, e.g. from a fog zone.

    Returns:
        TargetCheck; when sight is blocked, blocked_by names the cell.
    """
    if range_ft is not None and distance(attacker_pos, target_pos) > range_ft:
        return TargetCheck(can_attack=False, reason="out_of_range")
    blocker = line_of_sight_blocker(grid, attacker_pos, target_pos, blocking_cells)
    if blocker is not None:
        return TargetCheck(can_attack=False, reason="no_line_of_sight", blocked_by=blocker)
    return TargetCheck(can_attack=True)


def can_attack_target(
    attacker: Combatant,
    target: Combatant,
    grid: list[list[GridCell]],
    weapon: Weapon | None = None,
    monster_action: MonsterAction | None = None,
    blocking_cells: Iterable[tuple[int, int]] = (),
) -> TargetCheck:
    """Check range, then (ranged attacks only) line of sight.

    Args:
        attacker: The attacking combatant.
        target: The intended target.
        grid: The battle grid.
        weapon: Character weapon, if any.
        monster_action: Monster attack, if any.
        blocking_cells: Extra opaque cells, e.g. from a fog zone.

    Returns:
        TargetCheck with reason "out_of_range" or "no_line_of_sight" on failure.
    """
    if not is_in_range(attacker, target, weapon, monster_action):
        return TargetCheck(can_attack=False, reason="out_of_range")
    if is_ranged_attack(weapon, monster_action):
        return can_target_with_ranged_attack(
            grid, attacker.position, target.position, blocking_cells=blocking_cells
        )
    return TargetCheck(can_attack=True)


def has_ranged_disadvantage(
    attacker: Combatant,
    target: Combatant,
    combatants: Iterable[Combatant],
    weapon: Weapon | None = None,
    monster_action: MonsterAction | None = None,
) -> bool:
    """Ranged attacks suffer disadvantage with a hostile within 5ft or at long range."""
    if not is_ranged_attack(weapon, monster_action):
        return False
    for other in combatants:
        if other.id == attacker.id or other.is_ally_of(attacker):
            continue
        if other.current_hp <= 0 or other.position is None:
            continue
        if distance_between(attacker, other) <= SQUARE_SIZE_FT:
            return True
    return distance_between(attacker, target) > attack_range(weapon, monster_action)


def can_sneak_attack(
    attacker: Combatant,
    target: Combatant,
    weapon: Weapon | None,
    mode: RollMode,
    used_this_turn: bool,
    combatants: Iterable[Combatant],
) -> bool:
    """Sneak Attack: finesse or ranged weapon, once per turn, never with
    disadvantage, and either advantage or an ally next to the target."""
    actor = attacker.actor
    if not isinstance(actor, Character) or not actor.sneak_attack_dice:
        return False
    if used_this_turn or weapon is None:
        return False
    if not (weapon.has_property("finesse") or weapon.is_ranged):
        return False
    if mode == RollMode.DISADVANTAGE:
        return False
    if mode == RollMode.ADVANTAGE:
        return True
    for other in combatants:
        if other.id == attacker.id or not other.is_ally_of(attacker):
            continue
        if other.current_hp <= 0 or other.position is None:
            continue
        if distance_between(other, target) <= SQUARE_SIZE_FT:
            return True
    return False


def apply_blade_ward(d20: D20Roll, target: Combatant, rng: random.Random) -> D20Roll:
    """Subtract 1d4 from an attack roll against a warded target."""
    if not target.has_condition(Condition.WARDED):
        return d20
    penalty = rng.randint(1, 4)
    return d20.model_copy(
        update={
            "total": d20.total - penalty,
            "breakdown": f"{d20.breakdown} - {penalty} [Blade Ward]",
        }
    )


# ---------------------------------------------------------------------------
# Attack resolution
# ---------------------------------------------------------------------------


def resolve_attack(
    attacker: Combatant,
    target: Combatant,
    weapon: Weapon | None = None,
    monster_action: MonsterAction | None = None,
    combatants: Iterable[Combatant] = (),
    current_round: int = 0,
    advantage: bool = False,
    disadvantage: bool = False,
    used_sneak_attack: bool = False,
    extra_attack_bonus: int = 0,
    rng: random.Random | None = None,
) -> AttackResult:
    """Roll an attack and, on a hit, its damage.

    Nothing is mutated: the caller applies damage and bookkeeping.

    Args:
        attacker: The attacking combatant.
        target: The combatant being attacked.
        weapon: Character weapon; None with no monster action = unarmed strike.
        monster_action: Monster stat-block attack.
        combatants: Everyone on the field, for the Sneak Attack ally check.
        current_round: Round number, for Vex expiry.
        advantage: Advantage from an outside source.
        disadvantage: Disadvantage from an outside source.
        used_sneak_attack: Sneak Attack already spent this turn.
        extra_attack_bonus: Added to the roll, e.g. a Precision Attack die.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        AttackResult with the roll, hit/crit flags and damage components.
    """
    rng = rng or random.Random()
    actor = attacker.actor

    if isinstance(actor, Character) and weapon is not None:
        attack_bonus = character_attack_bonus(actor, weapon)
        damage_notation = _with_modifier(weapon.damage_dice, character_damage_bonus(actor, weapon))
        damage_type = weapon.damage_type
    elif isinstance(actor, Monster) and monster_action is not None:
        attack_bonus = monster_action.attack_bonus or 0
        damage_notation = monster_action.damage_dice or "1d4"
        damage_type = monster_action.damage_type or "bludgeoning"
    else:
        str_mod = attacker.ability_scores.modifier(Ability.STRENGTH)
        attack_bonus = str_mod
        damage_notation = _with_modifier("1", str_mod)
        damage_type = "bludgeoning"

    attack_bonus += extra_attack_bonus
    ranged = is_ranged_attack(weapon, monster_action)
    mode = get_attack_advantage(
        attacker, target, ranged, current_round, advantage, disadvantage
    )
    target_ac = get_armor_class(target)

    d20 = roll_d20(
        attack_bonus,
        advantage=mode == RollMode.ADVANTAGE,
        disadvantage=mode == RollMode.DISADVANTAGE,
        rng=rng,
    )
    if isinstance(actor, Character) and actor.has_trait(RacialTrait.LUCKY):
        d20 = reroll_natural_one(d20, rng)

    if d20.is_natural_1:
        return AttackResult(
            hit=False, critical_miss=True, attack_roll=d20, target_ac=target_ac
        )

    d20 = apply_blade_ward(d20, target, rng)

    crit_range = actor.critical_range if isinstance(actor, Character) else 20
    critical = d20.natural_roll >= crit_range
    hit = critical or d20.total >= target_ac
    if not hit:
        return AttackResult(hit=False, attack_roll=d20, target_ac=target_ac)

    if not critical and target.has_condition(*_HELPLESS):
        critical = distance_between(attacker, target) <= SQUARE_SIZE_FT

    damage = roll_damage(damage_notation, critical=critical, rng=rng)

    savage = None
    if critical and weapon is not None and isinstance(actor, Character):
        if actor.has_trait(RacialTrait.SAVAGE_ATTACKS):
            match = _DIE_SIZE.search(weapon.damage_dice)
            savage = roll(f"1d{match.group(1) if match else 6}", rng=rng)

    sneak = None
    if can_sneak_attack(attacker, target, weapon, mode, used_sneak_attack, combatants):
        sneak = roll(actor.sneak_attack_dice, rng=rng, critical=critical)

    logger.debug(
        "%s -> %s: %s vs AC %d, %s damage",
        attacker.name, target.name, d20.breakdown, target_ac, damage.total,
    )
    return AttackResult(
        hit=True,
        critical=critical,
        attack_roll=d20,
        target_ac=target_ac,
        damage=damage,
        damage_type=damage_type,
        savage_attacks_damage=savage,
        sneak_attack_damage=sneak,
        sneak_attack_used=sneak is not None,
    )


# ---------------------------------------------------------------------------
# Saving throws and death saves
# ---------------------------------------------------------------------------


def saving_throw_modifier(combatant: Combatant, ability: Ability) -> int:
    """Monster stat-block save bonus if listed, else modifier (+ proficiency)."""
    actor = combatant.actor
    if isinstance(actor, Monster) and ability in actor.saving_throws:
        return actor.saving_throws[ability]
    modifier = actor.ability_scores.modifier(ability)
    if isinstance(actor, Character) and ability in actor.saving_throw_proficiencies:
        modifier += actor.proficiency_bonus
    return modifier


def roll_saving_throw(
    combatant: Combatant,
    ability: Ability,
    dc: int,
    advantage: bool = False,
    disadvantage: bool = False,
    bonus: int = 0,
    rng: random.Random | None = None,
) -> SavingThrowResult:
    """Roll a saving throw against a DC.

    Racial save advantages on the character are added automatically, and
    Lucky rerolls a natural 1.

    Args:
        combatant: The creature saving.
        ability: Which ability the save uses.
        dc: Difficulty class.
        advantage: Advantage from an outside source.
        disadvantage: Disadvantage from an outside source.
        bonus: Flat bonus, e.g. Indomitable adding the character level.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        SavingThrowResult; success iff total >= dc.
    """
    rng = rng or random.Random()
    actor = combatant.actor
    if isinstance(actor, Character) and ability in actor.save_advantages:
        advantage = True

    modifier = saving_throw_modifier(combatant, ability) + bonus
    d20 = roll_d20(modifier, advantage=advantage, disadvantage=disadvantage, rng=rng)
    if isinstance(actor, Character) and actor.has_trait(RacialTrait.LUCKY):
        d20 = reroll_natural_one(d20, rng)

    return SavingThrowResult(roll=d20, modifier=modifier, dc=dc, success=d20.total >= dc)


def roll_death_save(rng: random.Random | None = None) -> DeathSaveResult:
    """Flat d20: 10+ succeeds, natural 20 revives, natural 1 is two failures."""
    d20 = roll_d20(rng=rng)
    return DeathSaveResult(
        roll=d20,
        success=d20.total >= DEATH_SAVE_DC,
        critical_success=d20.is_natural_20,
        critical_failure=d20.is_natural_1,
    )


def spellcasting_modifier(character: Character) -> int:
    ability = character.spellcasting_ability or Ability.INTELLIGENCE
    return character.ability_scores.modifier(ability)


def spell_save_dc(character: Character) -> int:
    """8 + proficiency + spellcasting modifier."""
    return 8 + character.proficiency_bonus + spellcasting_modifier(character)


def spell_attack_bonus(character: Character) -> int:
    """Proficiency + spellcasting modifier."""
    return character.proficiency_bonus + spellcasting_modifier(character)


def can_take_actions(combatant: Combatant) -> bool:
    return not combatant.has_condition(*_INCAPACITATING)


def can_move(combatant: Combatant) -> bool:
    return not combatant.has_condition(*_IMMOBILIZING)
