"""Spell casting rules: validation, scaling, targeting and resolution.

Resolution is pure. resolve_spell works out rolls, damage and the
conditions each target should receive; the combat engine spends the slot,
applies damage and conditions, and places any zone.
"""

from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from config import SQUARE_SIZE_FT
from engine.aoe import get_aoe_affected_cells, originates_from_caster
from engine.dice import parse, roll, roll_d20
from engine.errors import (
    AlreadyActedError,
    InvalidOperationError,
    NoLineOfSightError,
    NoResourceRemainingError,
    OutOfRangeError,
)
from engine.footprint import combatant_cells, effective_size, footprint_distance
from engine.grid import line_of_sight_blocker
from engine.rules import (
    apply_blade_ward,
    distance_between,
    get_armor_class,
    get_attack_advantage,
    roll_saving_throw,
    spell_attack_bonus,
    spell_save_dc,
)
from models.combat_state import Zone
from models.conditions import INDEFINITE, ActiveCondition, Condition, RepeatSave
from models.creatures import Character
from models.results import RollMode, SpellCastResult, SpellTargetResult
from models.spells import CastingTime, RepeatSaveSpec, Spell

if TYPE_CHECKING:
    from models.combatant import Combatant
    from models.grid import GridCell

logger = logging.getLogger(__name__)


def get_known_spell(character: Character, spell_id: str) -> Spell:
    """Look up one of the character's spells.

    Raises:
        InvalidOperationError: If the character doesn't know the spell.
    """
    for spell in character.spells:
        if spell.id == spell_id:
            return spell
    raise InvalidOperationError(
        f"{character.name} does not know spell '{spell_id}'",
        details={"spell_id": spell_id},
    )


def spell_source(caster_id: str, spell: Spell) -> str:
    """Source tag shared by every condition and zone from one casting.

    Concentration spells get a stable tag per caster and spell so the
    effects can be cleared when concentration ends.
    """
    if spell.concentration:
        return f"concentration:{caster_id}:{spell.id}"
    return f"spell:{caster_id}:{spell.id}:{uuid.uuid4().hex[:8]}"


def validate_spell_cast(caster: Combatant, spell: Spell, slot_level: int | None = None) -> int:
    """Check the action economy and slots for a proactive casting.

    Args:
        caster: The casting combatant (must be a character).
        spell: The spell being cast.
        slot_level: Slot to spend; defaults to the spell's own level.

    Returns:
        The slot level that will be spent (0 for cantrips).

    Raises:
        InvalidOperationError: For reaction spells or non-casters.
        AlreadyActedError: If the action or bonus action is spent.
        NoResourceRemainingError: If no slot of that level is left.
    """
    actor = caster.actor
    if not isinstance(actor, Character):
        raise InvalidOperationError(f"{caster.name} cannot cast spells")
    if spell.casting_time == CastingTime.REACTION:
        raise InvalidOperationError(f"{spell.name} can only be cast as a reaction")
    if spell.casting_time == CastingTime.BONUS_ACTION:
        if caster.has_bonus_acted:
            raise AlreadyActedError(f"{caster.name} has already used their bonus action")
    elif caster.has_acted:
        raise AlreadyActedError(f"{caster.name} has already used their action")

    if spell.level == 0:
        return 0

    level = slot_level if slot_level is not None else spell.level
    if level < spell.level:
        raise InvalidOperationError(
            f"{spell.name} needs a level {spell.level} slot or higher",
            details={"slot_level": level},
        )
    slot = actor.spell_slots.get(level)
    if slot is None or slot.current <= 0:
        raise NoResourceRemainingError(
            f"{caster.name} has no level {level} spell slots left",
            details={"slot_level": level},
        )
    return level


def upcast_increments(spell: Spell, slot_level: int) -> int:
    """Whole upcast steps earned by casting above the spell's level."""
    if spell.upcast is None or spell.level == 0 or slot_level <= spell.level:
        return 0
    return (slot_level - spell.level) // max(1, spell.upcast.per_levels)


def spell_damage_dice(spell: Spell, caster_level: int, slot_level: int) -> str | None:
    """Damage notation after cantrip scaling or upcasting.

    Cantrips take the scaling entry for the highest caster level reached.
    Leveled spells add dice_per_level per upcast step, e.g. '8d6+2d6'.
    """
    if spell.damage is None:
        return None
    dice = spell.damage.dice

    if spell.level == 0 and spell.damage.scaling:
        reached = [lvl for lvl in spell.damage.scaling if lvl <= caster_level]
        if reached:
            dice = spell.damage.scaling[max(reached)]
        return dice

    steps = upcast_increments(spell, slot_level)
    if steps and spell.upcast.dice_per_level:
        extra, _ = parse(spell.upcast.dice_per_level)
        for count, sides in extra:
            dice += f"+{count * steps}d{sides}"
    return dice


def upcast_area_size(spell: Spell, slot_level: int) -> int:
    if spell.area is None:
        return 0
    bonus = spell.upcast.radius_per_level if spell.upcast else 0
    return spell.area.size + bonus * upcast_increments(spell, slot_level)


def upcast_max_targets(spell: Spell, slot_level: int) -> int:
    bonus = spell.upcast.targets_per_level if spell.upcast else 0
    return spell.max_targets + bonus * upcast_increments(spell, slot_level)


def projectile_count(spell: Spell, slot_level: int) -> int:
    """Projectiles at this slot level: per_slot_level extra per level above base."""
    if spell.projectiles is None:
        return 0
    extra = max(0, slot_level - spell.level) * spell.projectiles.per_slot_level
    return spell.projectiles.count + extra


def find_aoe_targets(
    caster: Combatant,
    cells: Iterable[tuple[int, int]],
    combatants: Iterable[Combatant],
) -> list[Combatant]:
    """Living enemies of the caster with any footprint cell in the area."""
    area = set(cells)
    targets = []
    for other in combatants:
        if other.id == caster.id or other.is_ally_of(caster):
            continue
        if other.current_hp <= 0 or other.position is None:
            continue
        if any(cell in area for cell in combatant_cells(other)):
            targets.append(other)
    return targets


def check_spell_range(
    caster: Combatant,
    spell: Spell,
    grid: list[list[GridCell]],
    target: Combatant | None = None,
    point: tuple[int, int] | None = None,
    blocking_cells: Iterable[tuple[int, int]] = (),
) -> None:
    """Raise if a creature or point is beyond the spell's range or out of sight.

    Raises:
        OutOfRangeError: Beyond range_ft.
        NoLineOfSightError: An opaque cell is in the way.
    """
    if target is not None:
        feet = distance_between(caster, target)
        destination = target.position
    else:
        squares = footprint_distance(caster.position, effective_size(caster), point, 1)
        feet = squares * SQUARE_SIZE_FT
        destination = point

    if feet > spell.range_ft:
        raise OutOfRangeError(
            f"{spell.name} has a range of {spell.range_ft}ft ({feet}ft away)",
            details={"range_ft": spell.range_ft, "distance_ft": feet},
        )
    if feet > SQUARE_SIZE_FT:
        blocker = line_of_sight_blocker(grid, caster.position, destination, blocking_cells)
        if blocker is not None:
            raise NoLineOfSightError(
                f"Line of sight blocked at {blocker}",
                details={"blocked_by": list(blocker)},
            )


def resolve_spell_attack(
    caster: Combatant,
    target: Combatant,
    spell: Spell,
    damage_dice: str | None,
    current_round: int = 0,
    rng: random.Random | None = None,
) -> SpellTargetResult:
    """Spell attack roll against the target's AC.

    Natural 1 misses and natural 20 crits, as with weapons.
    """
    rng = rng or random.Random()
    mode = get_attack_advantage(
        caster, target, is_ranged=spell.attack_type == "ranged", current_round=current_round
    )
    d20 = roll_d20(
        spell_attack_bonus(caster.actor),
        advantage=mode == RollMode.ADVANTAGE,
        disadvantage=mode == RollMode.DISADVANTAGE,
        rng=rng,
    )
    target_ac = get_armor_class(target)
    result = SpellTargetResult(
        target_id=target.id, target_name=target.name, target_ac=target_ac
    )

    if d20.is_natural_1:
        result.hit = False
        result.attack_roll = d20
        result.breakdown = f"{d20.breakdown} (natural 1)"
        return result

    d20 = apply_blade_ward(d20, target, rng)
    result.attack_roll = d20
    result.critical = d20.is_natural_20
    result.hit = result.critical or d20.total >= target_ac
    result.breakdown = f"{d20.breakdown} vs AC {target_ac}"
    if not result.hit:
        return result

    if damage_dice:
        damage = roll(damage_dice, rng=rng, critical=result.critical)
        result.damage = max(0, damage.total)
        result.damage_type = spell.damage.type
        result.breakdown += f"; damage {damage.breakdown}"
    if spell.condition_on_hit is not None:
        result.conditions = [spell.condition_on_hit]
    return result


def resolve_spell_save(
    caster: Combatant,
    target: Combatant,
    spell: Spell,
    damage_dice: str | None,
    rng: random.Random | None = None,
) -> SpellTargetResult:
    """The target saves against the caster's spell save DC.

    A failed save takes full damage and the spell's failed-save conditions.
    A success takes half damage when the spell allows it, otherwise none.
    """
    rng = rng or random.Random()
    dc = spell_save_dc(caster.actor)
    save = roll_saving_throw(
        target, spell.saving_throw, dc, advantage=spell.save_advantage_in_combat, rng=rng
    )
    result = SpellTargetResult(
        target_id=target.id,
        target_name=target.name,
        save=save,
        breakdown=f"{spell.saving_throw.value} save {save.roll.breakdown} vs DC {dc}",
    )

    if damage_dice:
        damage = roll(damage_dice, rng=rng)
        amount = max(0, damage.total)
        if save.success:
            amount = amount // 2 if spell.half_on_save else 0
        result.damage = amount
        result.damage_type = spell.damage.type
        result.breakdown += f"; damage {damage.breakdown}"
        if save.success and spell.half_on_save:
            result.breakdown += " (halved)"

    if not save.success:
        result.conditions = list(spell.conditions_on_failed_save)
    return result


def resolve_auto_hit(
    target: Combatant,
    spell: Spell,
    damage_dice: str | None,
    rng: random.Random | None = None,
) -> SpellTargetResult:
    result = SpellTargetResult(target_id=target.id, target_name=target.name, hit=True)
    if damage_dice:
        damage = roll(damage_dice, rng=rng)
        result.damage = max(0, damage.total)
        result.damage_type = spell.damage.type
        result.breakdown = damage.breakdown
    result.conditions = list(spell.conditions_on_target)
    return result


def resolve_projectiles(
    spell: Spell,
    slot_level: int,
    assignments: dict[str, int],
    combatants: dict[str, Combatant],
    rng: random.Random | None = None,
) -> list[SpellTargetResult]:
    """Roll each projectile separately and total it per target.

    Args:
        spell: A spell with projectiles, e.g. Magic Missile.
        slot_level: Slot spent, which sets the projectile count.
        assignments: target_id -> projectiles assigned by the caller.
        combatants: Roster used to look up targets.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        One SpellTargetResult per living assigned target.

    Raises:
        InvalidOperationError: If more projectiles are assigned than exist.
    """
    available = projectile_count(spell, slot_level)
    assigned = sum(assignments.values())
    if assigned > available:
        raise InvalidOperationError(
            f"{assigned} projectiles assigned but only {available} available",
            details={"assigned": assigned, "available": available},
        )

    rng = rng or random.Random()
    results = []
    for target_id, count in assignments.items():
        target = combatants.get(target_id)
        if target is None or target.current_hp <= 0 or count <= 0:
            continue
        rolls = [
            max(0, roll(spell.projectiles.damage_per_projectile, rng=rng).total)
            for _ in range(count)
        ]
        results.append(
            SpellTargetResult(
                target_id=target.id,
                target_name=target.name,
                hit=True,
                damage=sum(rolls),
                damage_type=spell.damage.type if spell.damage else "force",
                breakdown=f"{count} projectile(s): {rolls}",
                projectile_damages=rolls,
            )
        )
    return results


def build_spell_conditions(
    conditions: Iterable[Condition],
    duration: int | None,
    source: str,
    repeat_save: RepeatSaveSpec | None = None,
    save_dc: int | None = None,
    ends_on_damage: bool = False,
) -> list[ActiveCondition]:
    """Turn a spell's condition list into ActiveConditions sharing one source.

    Only the first condition carries the repeat save; a successful repeat
    removes every condition with the same source.
    """
    built = []
    for index, condition in enumerate(conditions):
        repeat = None
        if index == 0 and repeat_save is not None and save_dc is not None:
            repeat = RepeatSave(
                ability=repeat_save.ability,
                dc=save_dc,
                on_end_of_turn=repeat_save.on_end_of_turn,
                on_damage=repeat_save.on_damage,
                advantage_on_damage=repeat_save.advantage_on_damage,
                upgrade_to=repeat_save.on_fail_condition,
                upgrade_ends_on_damage=repeat_save.on_fail_ends_on_damage,
            )
        built.append(
            ActiveCondition(
                condition=condition,
                duration=duration if duration is not None else INDEFINITE,
                source=source,
                repeat_save=repeat,
                ends_on_damage=ends_on_damage,
            )
        )
    return built


def build_zone(
    spell: Spell,
    caster: Combatant,
    source: str,
    cells: Iterable[tuple[int, int]],
) -> Zone:
    """Initial footprint and parameters of a persistent spell zone."""
    zone = spell.zone
    save_dc = spell_save_dc(caster.actor) if zone.save is not None else None
    return Zone(
        id=f"zone-{uuid.uuid4().hex[:8]}",
        zone_type=zone.zone_type,
        caster_id=caster.id,
        spell_id=spell.id,
        source=source,
        cells=sorted(cells),
        duration_rounds=zone.duration_rounds,
        blocks_line_of_sight=zone.blocks_line_of_sight,
        difficult_terrain=zone.difficult_terrain,
        save=zone.save,
        save_dc=save_dc,
    )


def resolve_spell(
    caster: Combatant,
    spell: Spell,
    slot_level: int,
    grid: list[list[GridCell]],
    combatants: dict[str, Combatant],
    target_ids: list[str] | None = None,
    target_position: tuple[int, int] | None = None,
    projectile_assignments: dict[str, int] | None = None,
    current_round: int = 0,
    blocking_cells: Iterable[tuple[int, int]] = (),
    source: str | None = None,
    rng: random.Random | None = None,
) -> tuple[SpellCastResult, Zone | None]:
    """Work out everything a casting does without mutating state.

    Args:
        caster: The casting character's combatant.
        spell: The spell cast.
        slot_level: Slot spent (0 for cantrips).
        grid: The battle grid.
        combatants: The live roster.
        target_ids: Chosen targets for single or multi-target spells.
        target_position: Aim point for area spells.
        projectile_assignments: target_id -> projectile count.
        current_round: Round number, for Vex-style advantage.
        blocking_cells: Extra opaque cells, e.g. fog zones.
        source: Source tag for the casting; generated when omitted.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        (SpellCastResult, Zone or None). Zones share the casting's source.

    Raises:
        InvalidOperationError: Missing or too many targets.
        OutOfRangeError: A target or point is beyond range.
        NoLineOfSightError: A target or point can't be seen.
    """
    rng = rng or random.Random()
    character = caster.actor
    source = source or spell_source(caster.id, spell)
    damage_dice = spell_damage_dice(spell, character.level, slot_level)
    cast = SpellCastResult(spell_id=spell.id, slot_level=slot_level, source=source)
    zone = None

    if spell.projectiles is not None:
        assignments = projectile_assignments or {}
        for target_id in assignments:
            target = combatants.get(target_id)
            if target is not None:
                check_spell_range(caster, spell, grid, target=target, blocking_cells=blocking_cells)
        cast.targets = resolve_projectiles(spell, slot_level, assignments, combatants, rng)
        return cast, zone

    if spell.area is not None:
        if originates_from_caster(spell.area.shape) or spell.area.origin == "self":
            aim = target_position or caster.position
        else:
            if target_position is None:
                raise InvalidOperationError(f"{spell.name} needs a target position")
            check_spell_range(
                caster, spell, grid, point=target_position, blocking_cells=blocking_cells
            )
            aim = target_position
        cells = get_aoe_affected_cells(
            spell.area.shape, upcast_area_size(spell, slot_level), caster.position, aim, grid
        )
        cast.affected_cells = sorted(cells)
        if spell.zone is not None:
            zone = build_zone(spell, caster, source, cells)
            cast.zone_id = zone.id
        targets = find_aoe_targets(caster, cells, combatants.values())
    else:
        ids = target_ids or []
        limit = upcast_max_targets(spell, slot_level)
        if len(ids) > limit:
            raise InvalidOperationError(
                f"{spell.name} can affect at most {limit} target(s)",
                details={"max_targets": limit},
            )
        targets = []
        for target_id in ids:
            target = combatants.get(target_id)
            if target is None:
                raise InvalidOperationError(f"Target '{target_id}' not found")
            check_spell_range(caster, spell, grid, target=target, blocking_cells=blocking_cells)
            targets.append(target)
        if not targets and (spell.damage or spell.saving_throw or spell.attack_type):
            raise InvalidOperationError(f"{spell.name} needs a target")

    for target in targets:
        if spell.attack_type:
            result = resolve_spell_attack(caster, target, spell, damage_dice, current_round, rng)
        elif spell.saving_throw is not None:
            result = resolve_spell_save(caster, target, spell, damage_dice, rng)
        else:
            result = resolve_auto_hit(target, spell, damage_dice, rng)
        cast.targets.append(result)

    logger.debug(
        "%s casts %s at slot %d: %d target(s)", caster.name, spell.name, slot_level, len(cast.targets)
    )
    return cast, zone
