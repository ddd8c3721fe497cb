"""Tests for spell validation, scaling, targeting and resolution."""

import pytest

from engine.errors import (
    AlreadyActedError,
    InvalidOperationError,
    NoLineOfSightError,
    NoResourceRemainingError,
    OutOfRangeError,
)
from engine.grid import create_grid
from engine.spells import (
    build_spell_conditions,
    check_spell_range,
    get_known_spell,
    projectile_count,
    resolve_projectiles,
    resolve_spell,
    spell_damage_dice,
    spell_source,
    upcast_area_size,
    upcast_max_targets,
    validate_spell_cast,
)
from models.abilities import Ability
from models.conditions import INDEFINITE, Condition
from models.grid import Obstacle
from models.spells import RepeatSaveSpec

from factories import (
    BLADE_WARD,
    BURNING_HANDS,
    FIRE_BOLT,
    FIREBALL,
    FOG_CLOUD,
    HOLD_PERSON,
    MAGIC_MISSILE,
    SHIELD,
    ScriptedRandom,
    make_character,
    make_combatant,
    make_monster,
    make_wizard,
)


def _roster(*combatants):
    return {c.id: c for c in combatants}


def _wizard(position=(0, 0), **fields):
    spells = [FIRE_BOLT, BURNING_HANDS, FIREBALL, MAGIC_MISSILE, SHIELD, HOLD_PERSON,
              FOG_CLOUD, BLADE_WARD]
    return make_combatant(make_wizard(spells=spells, **fields), position)


class TestValidateSpellCast:
    """Tests for validate_spell_cast()."""

    def test_cantrip_needs_no_slot(self):
        assert validate_spell_cast(_wizard(), FIRE_BOLT) == 0

    def test_defaults_to_spell_level(self):
        assert validate_spell_cast(_wizard(), FIREBALL) == 3

    def test_upcast_slot(self):
        assert validate_spell_cast(_wizard(), BURNING_HANDS, slot_level=2) == 2

    def test_slot_below_spell_level(self):
        with pytest.raises(InvalidOperationError):
            validate_spell_cast(_wizard(), FIREBALL, slot_level=2)

    def test_no_slots_left(self):
        wizard = _wizard()
        wizard.actor.spell_slots[3].current = 0
        with pytest.raises(NoResourceRemainingError):
            validate_spell_cast(wizard, FIREBALL)

    def test_action_already_used(self):
        wizard = _wizard()
        wizard.has_acted = True
        with pytest.raises(AlreadyActedError):
            validate_spell_cast(wizard, FIRE_BOLT)

    def test_reaction_spell_rejected(self):
        with pytest.raises(InvalidOperationError):
            validate_spell_cast(_wizard(), SHIELD)

    def test_monster_cannot_cast(self):
        goblin = make_combatant(make_monster(), (0, 0))
        with pytest.raises(InvalidOperationError):
            validate_spell_cast(goblin, FIRE_BOLT)

    def test_unknown_spell(self):
        with pytest.raises(InvalidOperationError):
            get_known_spell(make_wizard(), "wish")


class TestScaling:
    """Tests for cantrip scaling and upcasting."""

    @pytest.mark.parametrize("level,dice", [(1, "1d10"), (4, "1d10"), (5, "2d10"), (11, "3d10")])
    def test_cantrip_scaling(self, level, dice):
        assert spell_damage_dice(FIRE_BOLT, level, 0) == dice

    def test_upcast_adds_dice(self):
        assert spell_damage_dice(FIREBALL, 5, 3) == "8d6"
        assert spell_damage_dice(FIREBALL, 9, 5) == "8d6+2d6"

    def test_upcast_targets(self):
        assert upcast_max_targets(HOLD_PERSON, 2) == 1
        assert upcast_max_targets(HOLD_PERSON, 4) == 3

    def test_area_without_upcast_radius(self):
        assert upcast_area_size(FIREBALL, 5) == 20

    def test_projectile_count(self):
        assert projectile_count(MAGIC_MISSILE, 1) == 3
        assert projectile_count(MAGIC_MISSILE, 3) == 5

    def test_spell_without_damage(self):
        assert spell_damage_dice(HOLD_PERSON, 5, 2) is None


class TestCheckSpellRange:
    """Tests for check_spell_range()."""

    def test_out_of_range(self):
        grid = create_grid(30, 1)
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (25, 0))
        with pytest.raises(OutOfRangeError):
            check_spell_range(wizard, FIRE_BOLT, grid, target=goblin)

    def test_wall_blocks_sight(self):
        grid = create_grid(10, 1)
        grid[0][3].obstacle = Obstacle(type="wall")
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (6, 0))
        with pytest.raises(NoLineOfSightError):
            check_spell_range(wizard, FIRE_BOLT, grid, target=goblin)

    def test_point_in_range(self):
        grid = create_grid(10, 10)
        check_spell_range(_wizard(), FIREBALL, grid, point=(9, 9))


class TestResolveSpell:
    """Tests for resolve_spell()."""

    def test_spell_attack_hit(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (3, 0))
        cast, zone = resolve_spell(
            wizard, FIRE_BOLT, 0, grid, _roster(wizard, goblin),
            target_ids=["goblin"], rng=ScriptedRandom(10, 4, 6),
        )
        assert zone is None
        [result] = cast.targets
        assert result.hit
        assert result.damage == 10      # 2d10 at level 5
        assert result.damage_type == "fire"

    def test_spell_attack_natural_one(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (3, 0))
        cast, _ = resolve_spell(
            wizard, FIRE_BOLT, 0, grid, _roster(wizard, goblin),
            target_ids=["goblin"], rng=ScriptedRandom(1),
        )
        assert cast.targets[0].hit is False
        assert cast.targets[0].damage == 0

    def test_fireball_saves_and_skips_allies(self):
        grid = create_grid(12, 12)
        wizard = _wizard()
        first = make_combatant(make_monster("goblin_a"), (5, 5))
        second = make_combatant(make_monster("goblin_b"), (6, 5))
        ally = make_combatant(make_character(), (5, 6))
        rng = ScriptedRandom(5, *[3] * 8, 15, *[3] * 8)

        cast, _ = resolve_spell(
            wizard, FIREBALL, 3, grid, _roster(wizard, first, second, ally),
            target_position=(5, 5), rng=rng,
        )
        by_id = {t.target_id: t for t in cast.targets}
        assert set(by_id) == {"goblin_a", "goblin_b"}
        assert not by_id["goblin_a"].save.success
        assert by_id["goblin_a"].damage == 24
        assert by_id["goblin_b"].save.success
        assert by_id["goblin_b"].damage == 12
        assert (5, 5) in cast.affected_cells

    def test_area_needs_position(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        with pytest.raises(InvalidOperationError):
            resolve_spell(wizard, FIREBALL, 3, grid, _roster(wizard))

    def test_self_cone_aims_from_caster(self):
        grid = create_grid(10, 10)
        wizard = _wizard((0, 5))
        goblin = make_combatant(make_monster(), (1, 5))
        behind = make_combatant(make_monster("behind"), (0, 0))
        cast, _ = resolve_spell(
            wizard, BURNING_HANDS, 1, grid, _roster(wizard, goblin, behind),
            target_position=(5, 5), rng=ScriptedRandom(),
        )
        assert [t.target_id for t in cast.targets] == ["goblin"]

    def test_too_many_targets(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        a = make_combatant(make_monster("a"), (2, 0))
        b = make_combatant(make_monster("b"), (3, 0))
        with pytest.raises(InvalidOperationError):
            resolve_spell(wizard, HOLD_PERSON, 2, grid, _roster(wizard, a, b), target_ids=["a", "b"])

    def test_failed_save_applies_conditions(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (2, 0))
        cast, _ = resolve_spell(
            wizard, HOLD_PERSON, 2, grid, _roster(wizard, goblin),
            target_ids=["goblin"], rng=ScriptedRandom(4),
        )
        assert cast.targets[0].conditions == [Condition.PARALYZED]
        assert cast.source == "concentration:wizard:hold_person"

    def test_missing_target(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        with pytest.raises(InvalidOperationError):
            resolve_spell(wizard, FIRE_BOLT, 0, grid, _roster(wizard))

    def test_zone_shares_source(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        cast, zone = resolve_spell(
            wizard, FOG_CLOUD, 1, grid, _roster(wizard), target_position=(5, 5)
        )
        assert zone is not None
        assert zone.id == cast.zone_id
        assert zone.source == cast.source
        assert zone.blocks_line_of_sight
        assert zone.duration_rounds == 10
        assert (5, 5) in zone.cells

    def test_self_spell_has_no_targets(self):
        grid = create_grid(10, 10)
        wizard = _wizard()
        cast, zone = resolve_spell(wizard, BLADE_WARD, 0, grid, _roster(wizard))
        assert cast.targets == []
        assert zone is None


class TestProjectiles:
    """Tests for resolve_projectiles()."""

    def test_each_projectile_rolls(self):
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (2, 0))
        orc = make_combatant(make_monster("orc"), (3, 0))
        results = resolve_projectiles(
            MAGIC_MISSILE, 1, {"goblin": 2, "orc": 1}, _roster(wizard, goblin, orc),
            rng=ScriptedRandom(1, 2, 3),
        )
        by_id = {r.target_id: r for r in results}
        assert by_id["goblin"].projectile_damages == [2, 3]
        assert by_id["goblin"].damage == 5
        assert by_id["orc"].damage == 4

    def test_over_assignment_rejected(self):
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (2, 0))
        with pytest.raises(InvalidOperationError):
            resolve_projectiles(MAGIC_MISSILE, 1, {"goblin": 4}, _roster(wizard, goblin))

    def test_upcast_adds_projectiles(self):
        wizard = _wizard()
        goblin = make_combatant(make_monster(), (2, 0))
        results = resolve_projectiles(
            MAGIC_MISSILE, 2, {"goblin": 4}, _roster(wizard, goblin), rng=ScriptedRandom(1, 1, 1, 1)
        )
        assert results[0].damage == 8


class TestBuildSpellConditions:
    """Tests for build_spell_conditions() and spell_source()."""

    def test_repeat_save_only_on_first(self):
        repeat = RepeatSaveSpec(ability=Ability.WISDOM, on_end_of_turn=True)
        built = build_spell_conditions(
            [Condition.PARALYZED, Condition.INCAPACITATED], None, "src", repeat, save_dc=13
        )
        assert built[0].repeat_save.dc == 13
        assert built[1].repeat_save is None
        assert all(c.duration == INDEFINITE for c in built)
        assert all(c.source == "src" for c in built)

    def test_timed_conditions(self):
        [built] = build_spell_conditions([Condition.WARDED], 1, "src")
        assert built.duration == 1
        assert not built.is_indefinite

    def test_source_tags(self):
        assert spell_source("wizard", HOLD_PERSON) == "concentration:wizard:hold_person"
        tag = spell_source("wizard", FIRE_BOLT)
        assert tag.startswith("spell:wizard:fire_bolt:")
        assert tag != spell_source("wizard", FIRE_BOLT)
