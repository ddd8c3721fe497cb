"""Stat blocks, spells and a scripted RNG shared by the test modules."""

import random

from engine.combat import CombatEngine, create_combatant
from models.abilities import Ability, AbilityScores
from models.combatant import Combatant
from models.conditions import Condition
from models.creatures import (
    Character,
    ClassFeature,
    Maneuver,
    Monster,
    MonsterAction,
    SpellSlot,
    Weapon,
)
from models.spells import (
    AoEShape,
    AreaOfEffect,
    CastingTime,
    Projectiles,
    ReactionSpec,
    RepeatSaveSpec,
    Spell,
    SpellDamage,
    UpcastRule,
    ZoneSpec,
)


class ScriptedRandom(random.Random):
    """Random whose randint hands out queued values first.

    Once the queue is empty it falls back to normal seeded rolls.
    """

    def __init__(self, *values: int):
        super().__init__(0)
        self.queue = list(values)

    def randint(self, a: int, b: int) -> int:
        if self.queue:
            return self.queue.pop(0)
        return super().randint(a, b)


def make_weapon(weapon_id: str = "longsword", **overrides) -> Weapon:
    fields = dict(
        id=weapon_id,
        name=weapon_id.replace("_", " ").title(),
        damage_dice="1d8",
        damage_type="slashing",
    )
    fields.update(overrides)
    return Weapon(**fields)


def make_bow(**overrides) -> Weapon:
    fields = dict(
        damage_dice="1d8",
        damage_type="piercing",
        weapon_type="ranged",
        range_normal=80,
        range_long=320,
    )
    fields.update(overrides)
    return make_weapon("longbow", **fields)


def make_character(char_id: str = "hero", **overrides) -> Character:
    """A level 1 fighter: STR 16, DEX 14, AC 15, 20 HP, longsword."""
    fields = dict(
        id=char_id,
        name=char_id.title(),
        max_hp=20,
        armor_class=15,
        ability_scores=AbilityScores(strength=16, dexterity=14, constitution=14),
        melee_weapon=make_weapon(),
    )
    fields.update(overrides)
    return Character(**fields)


def make_battle_master(char_id: str = "hero", **overrides) -> Character:
    """The default fighter at level 3 with four d8 superiority dice and every maneuver."""
    fields = dict(
        level=3,
        class_features=[ClassFeature.COMBAT_SUPERIORITY],
        maneuvers=list(Maneuver),
    )
    fields.update(overrides)
    return make_character(char_id, **fields)


def make_wizard(char_id: str = "wizard", spells: list[Spell] | None = None, **overrides) -> Character:
    """A level 5 wizard with INT 16 (spell attack +5, save DC 13)."""
    fields = dict(
        id=char_id,
        name=char_id.title(),
        level=5,
        proficiency_bonus=2,
        max_hp=22,
        armor_class=12,
        ability_scores=AbilityScores(intelligence=16, dexterity=14),
        spellcasting_ability=Ability.INTELLIGENCE,
        spells=spells or [],
        spell_slots={1: SpellSlot(max=4, current=4), 2: SpellSlot(max=3, current=3),
                     3: SpellSlot(max=2, current=2)},
    )
    fields.update(overrides)
    return Character(**fields)


def make_monster(monster_id: str = "goblin", **overrides) -> Monster:
    """A goblin-ish monster: AC 13, 7 HP, +4 scimitar for 1d6+2."""
    fields = dict(
        id=monster_id,
        name=monster_id.title(),
        armor_class=13,
        hp=7,
        ability_scores=AbilityScores(dexterity=14),
        actions=[
            MonsterAction(
                name="Scimitar",
                attack_bonus=4,
                damage_dice="1d6+2",
                damage_type="slashing",
                reach=5,
            )
        ],
    )
    fields.update(overrides)
    return Monster(**fields)


def make_combatant(actor, position: tuple[int, int] | None = None, **overrides) -> Combatant:
    combatant = create_combatant(actor)
    combatant.position = position
    for key, value in overrides.items():
        setattr(combatant, key, value)
    return combatant


def make_engine(*placements, width: int = 10, height: int = 10, rng=None) -> CombatEngine:
    """Engine in setup with (actor, position) pairs already added."""
    engine = CombatEngine(width=width, height=height, rng=rng or ScriptedRandom())
    for actor, position in placements:
        engine.add_combatant(actor, position)
    return engine


def start_with_turn(engine: CombatEngine, combatant_id: str) -> None:
    """Start combat and rig the turn order so combatant_id acts first."""
    engine.start_combat()
    state = engine.state
    state.turn_order.remove(combatant_id)
    state.turn_order.insert(0, combatant_id)
    state.current_turn_index = 0


# Spells ---------------------------------------------------------------------

FIRE_BOLT = Spell(
    id="fire_bolt",
    name="Fire Bolt",
    range_ft=120,
    attack_type="ranged",
    damage=SpellDamage(dice="1d10", type="fire", scaling={5: "2d10", 11: "3d10"}),
)

BURNING_HANDS = Spell(
    id="burning_hands",
    name="Burning Hands",
    level=1,
    range_ft=0,
    saving_throw=Ability.DEXTERITY,
    damage=SpellDamage(dice="3d6", type="fire"),
    area=AreaOfEffect(shape=AoEShape.CONE, size=15, origin="self"),
    upcast=UpcastRule(dice_per_level="1d6"),
)

FIREBALL = Spell(
    id="fireball",
    name="Fireball",
    level=3,
    range_ft=150,
    saving_throw=Ability.DEXTERITY,
    damage=SpellDamage(dice="8d6", type="fire"),
    area=AreaOfEffect(shape=AoEShape.SPHERE, size=20),
    upcast=UpcastRule(dice_per_level="1d6"),
)

MAGIC_MISSILE = Spell(
    id="magic_missile",
    name="Magic Missile",
    level=1,
    range_ft=120,
    auto_hit=True,
    damage=SpellDamage(dice="1d4+1", type="force"),
    projectiles=Projectiles(count=3, damage_per_projectile="1d4+1", per_slot_level=1),
)

SHIELD = Spell(
    id="shield",
    name="Shield",
    level=1,
    casting_time=CastingTime.REACTION,
    range_ft=0,
    reaction=ReactionSpec(trigger="on_hit", ac_bonus=5),
)

HOLD_PERSON = Spell(
    id="hold_person",
    name="Hold Person",
    level=2,
    range_ft=60,
    concentration=True,
    saving_throw=Ability.WISDOM,
    conditions_on_failed_save=[Condition.PARALYZED],
    repeat_save=RepeatSaveSpec(ability=Ability.WISDOM, on_end_of_turn=True),
    upcast=UpcastRule(targets_per_level=1),
)

SLEEPY_SONG = Spell(
    id="sleepy_song",
    name="Sleepy Song",
    level=1,
    range_ft=60,
    concentration=True,
    saving_throw=Ability.WISDOM,
    conditions_on_failed_save=[Condition.INCAPACITATED],
    repeat_save=RepeatSaveSpec(
        ability=Ability.WISDOM,
        on_end_of_turn=True,
        on_fail_condition=Condition.UNCONSCIOUS,
        on_fail_ends_on_damage=True,
    ),
)

FOG_CLOUD = Spell(
    id="fog_cloud",
    name="Fog Cloud",
    level=1,
    range_ft=120,
    concentration=True,
    area=AreaOfEffect(shape=AoEShape.SPHERE, size=10),
    zone=ZoneSpec(zone_type="fog", duration_rounds=10, blocks_line_of_sight=True),
)

BLADE_WARD = Spell(
    id="blade_ward",
    name="Blade Ward",
    range_ft=0,
    conditions_on_self=[Condition.WARDED],
    condition_duration=1,
)
