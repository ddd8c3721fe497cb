"""Dice rolling utilities for Gridskirmish."""

import logging
import random
import re

from models.results import D20Roll, DiceResult, RollMode

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(r"^[+-]?(\d*d\d+|\d+)([+-](\d*d\d+|\d+))*$")
_TERM = re.compile(r"([+-]?)(?:(\d*)d(\d+)|(\d+))")


def _format_modifier(modifier: int) -> str:
    """Render a modifier as '+3', '-1' or ''."""
    if modifier > 0:
        return f"+{modifier}"
    if modifier < 0:
        return str(modifier)
    return ""


def parse(notation: str) -> tuple[list[tuple[int, int]], int]:
    """Split dice notation into dice terms and a flat modifier.

    Accepts single terms ('1d20', 'd6', '7'), modifiers ('2d6+3', '4d6-1')
    and sums of dice ('8d6+2d6+1').

    Args:
        notation: Dice notation string.

    Returns:
        (dice, modifier) where dice is a list of (count, sides); a
        subtracted dice term has a negative count.

    Raises:
        ValueError: If the notation can't be parsed.
    """
    cleaned = notation.replace(" ", "").lower()
    if not cleaned or not _EXPRESSION.match(cleaned):
        raise ValueError(f"Invalid dice notation: {notation}")

    dice: list[tuple[int, int]] = []
    modifier = 0
    for sign, count, sides, flat in _TERM.findall(cleaned):
        factor = -1 if sign == "-" else 1
        if sides:
            dice.append((factor * (int(count) if count else 1), int(sides)))
        else:
            modifier += factor * int(flat)
    return dice, modifier


def roll(
    notation: str,
    rng: random.Random | None = None,
    critical: bool = False,
) -> DiceResult:
    """Parse and roll dice notation like '2d6+3', '1d20', '4d6-1'.

    Args:
        notation: Dice notation string (e.g. "2d6+3").
        rng: Optional Random instance for seeded/testing rolls.
        critical: Roll every die twice (critical hit); the modifier is not doubled.

    Returns:
        DiceResult with total, individual rolls, modifier, and breakdown.
    """
    rng = rng or random.Random()
    dice, modifier = parse(notation)

    rolls: list[int] = []
    total = modifier
    for count, sides in dice:
        times = abs(count) * (2 if critical else 1)
        for _ in range(times):
            value = rng.randint(1, sides)
            rolls.append(value)
            total += value if count > 0 else -value

    prefix = "CRIT! " if critical else ""
    if rolls:
        breakdown = f"{prefix}[{', '.join(str(r) for r in rolls)}]{_format_modifier(modifier)} = {total}"
    else:
        breakdown = f"{prefix}{total}"

    return DiceResult(
        total=total,
        rolls=rolls,
        modifier=modifier,
        notation=notation.strip().lower(),
        breakdown=breakdown,
    )


def roll_damage(
    notation: str,
    critical: bool = False,
    rng: random.Random | None = None,
) -> DiceResult:
    """Roll damage dice, doubling the dice (not the modifier) on a crit."""
    return roll(notation, rng=rng, critical=critical)


def roll_mode(advantage: bool, disadvantage: bool) -> RollMode:
    """Combine advantage and disadvantage; both present cancel out."""
    if advantage and not disadvantage:
        return RollMode.ADVANTAGE
    if disadvantage and not advantage:
        return RollMode.DISADVANTAGE
    return RollMode.NORMAL


def roll_d20(
    modifier: int = 0,
    advantage: bool = False,
    disadvantage: bool = False,
    rng: random.Random | None = None,
) -> D20Roll:
    """Roll a d20 plus a modifier, optionally with advantage or disadvantage.

    Args:
        modifier: Flat bonus added to the kept die.
        advantage: Roll twice, take the higher.
        disadvantage: Roll twice, take the lower.
        rng: Optional Random instance for seeded/testing rolls.

    Returns:
        The D20Roll with a breakdown like '[14]+5 = 19' or
        'Adv[3, 17→17]+5 = 22'.
    """
    rng = rng or random.Random()
    mode = roll_mode(advantage, disadvantage)
    mod_str = _format_modifier(modifier)

    if mode == RollMode.NORMAL:
        rolls = [rng.randint(1, 20)]
        kept = rolls[0]
        breakdown = f"[{kept}]{mod_str} = {kept + modifier}"
    else:
        rolls = [rng.randint(1, 20), rng.randint(1, 20)]
        kept = max(rolls) if mode == RollMode.ADVANTAGE else min(rolls)
        prefix = "Adv" if mode == RollMode.ADVANTAGE else "Dis"
        breakdown = f"{prefix}[{rolls[0]}, {rolls[1]}→{kept}]{mod_str} = {kept + modifier}"

    return D20Roll(
        total=kept + modifier,
        rolls=rolls,
        modifier=modifier,
        natural_roll=kept,
        mode=mode,
        breakdown=breakdown,
    )


def reroll_natural_one(d20: D20Roll, rng: random.Random | None = None) -> D20Roll:
    """Reroll a natural 1 once, keeping the new die (Halfling Lucky).

    Returns the roll unchanged if it wasn't a natural 1.
    """
    if not d20.is_natural_1:
        return d20
    rng = rng or random.Random()
    new_roll = rng.randint(1, 20)
    total = new_roll + d20.modifier
    logger.debug("Lucky reroll: 1 -> %d", new_roll)
    return d20.model_copy(
        update={
            "natural_roll": new_roll,
            "total": total,
            "rolls": [*d20.rolls, new_roll],
            "breakdown": f"Lucky[1→{new_roll}]{_format_modifier(d20.modifier)} = {total}",
        }
    )
