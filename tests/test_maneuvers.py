"""Tests for Battle Master maneuvers."""

import pytest

from engine.grid import create_grid
from engine.maneuvers import (
    apply_on_hit_maneuver,
    knows_maneuver,
    maneuver_name,
    maneuver_save_dc,
    menacing_attack,
    parry_reduction,
    pushing_attack,
    roll_superiority_die,
    superiority_dice_remaining,
    superiority_die_size,
    sweeping_attack,
    trip_attack,
)
from models.abilities import AbilityScores
from models.conditions import ActiveCondition, Condition
from models.creatures import Maneuver, Size

from factories import (
    ScriptedRandom,
    make_battle_master,
    make_character,
    make_combatant,
    make_monster,
    make_weapon,
)


def _hero(position=(0, 0), **fields):
    return make_combatant(make_battle_master(**fields), position)


class TestSuperiorityDice:
    """Tests for die size, dice left and who knows which maneuver."""

    def test_die_grows_with_level(self):
        assert superiority_die_size(make_battle_master()) == 8
        assert superiority_die_size(make_battle_master(level=10)) == 10
        assert superiority_die_size(make_battle_master(level=18)) == 12

    def test_dice_left_default_to_level_maximum(self):
        hero = _hero()
        assert superiority_dice_remaining(hero) == 4
        hero.class_feature_uses = {"combat_superiority": 1}
        assert superiority_dice_remaining(hero) == 1
        assert superiority_dice_remaining(_hero(level=7)) == 5

    def test_knows_maneuver(self):
        hero = _hero(maneuvers=[Maneuver.PARRY])
        assert knows_maneuver(hero, Maneuver.PARRY)
        assert not knows_maneuver(hero, Maneuver.RIPOSTE)
        plain = make_combatant(make_character(maneuvers=[Maneuver.PARRY]), (0, 0))
        assert not knows_maneuver(plain, Maneuver.PARRY)
        assert not knows_maneuver(make_combatant(make_monster(), (0, 0)), Maneuver.PARRY)

    def test_roll_die(self):
        assert roll_superiority_die(make_battle_master(), ScriptedRandom(5)).total == 5

    def test_save_dc_uses_best_physical_modifier(self):
        assert maneuver_save_dc(_hero()) == 13
        nimble = _hero(ability_scores=AbilityScores(strength=8, dexterity=18))
        assert maneuver_save_dc(nimble) == 14

    def test_name(self):
        assert maneuver_name(Maneuver.EVASIVE_FOOTWORK) == "Evasive Footwork"


class TestTripAttack:
    """Tests for trip_attack()."""

    def test_failed_save_knocks_prone(self):
        goblin = make_combatant(make_monster(), (1, 0))
        result = trip_attack(_hero(), goblin, 5, rng=ScriptedRandom(2))
        assert result.applied
        assert result.condition == Condition.PRONE
        assert result.bonus_damage == 5
        assert result.save.dc == 13

    def test_successful_save_keeps_bonus_damage(self):
        goblin = make_combatant(make_monster(), (1, 0))
        result = trip_attack(_hero(), goblin, 5, rng=ScriptedRandom(15))
        assert not result.applied
        assert result.condition is None
        assert result.bonus_damage == 5

    def test_huge_target_not_tripped(self):
        giant = make_combatant(make_monster("giant", size=Size.HUGE), (1, 0))
        result = trip_attack(_hero(), giant, 3, rng=ScriptedRandom())
        assert not result.applied
        assert result.save is None
        assert "too large" in result.description

    def test_already_prone(self):
        goblin = make_combatant(
            make_monster(), (1, 0), conditions=[ActiveCondition(condition=Condition.PRONE)]
        )
        assert not trip_attack(_hero(), goblin, 3, rng=ScriptedRandom()).applied


class TestMenacingAttack:
    """Tests for menacing_attack()."""

    def test_failed_save_frightens(self):
        goblin = make_combatant(make_monster(), (1, 0))
        result = menacing_attack(_hero(), goblin, 4, rng=ScriptedRandom(2))
        assert result.condition == Condition.FRIGHTENED
        assert result.condition_duration == 2

    def test_successful_save(self):
        goblin = make_combatant(make_monster(), (1, 0))
        result = menacing_attack(_hero(), goblin, 4, rng=ScriptedRandom(18))
        assert not result.applied
        assert result.save.success


class TestPushingAttack:
    """Tests for pushing_attack()."""

    def test_pushes_three_squares(self):
        grid = create_grid(10, 10)
        hero = _hero((2, 2))
        goblin = make_combatant(make_monster(), (3, 2))
        result = pushing_attack(hero, goblin, 6, grid, [hero, goblin], rng=ScriptedRandom(2))
        assert result.applied
        assert result.push_to == (6, 2)
        assert result.squares_pushed == 3
        assert result.bonus_damage == 6

    def test_blocked_push(self):
        grid = create_grid(10, 10)
        hero = _hero((2, 2))
        goblin = make_combatant(make_monster(), (3, 2))
        other = make_combatant(make_monster("other"), (4, 2))
        result = pushing_attack(
            hero, goblin, 6, grid, [hero, goblin, other], rng=ScriptedRandom(2)
        )
        assert not result.applied
        assert result.push_to is None

    def test_save_holds_ground(self):
        grid = create_grid(10, 10)
        hero = _hero((2, 2))
        goblin = make_combatant(make_monster(), (3, 2))
        result = pushing_attack(hero, goblin, 6, grid, [hero, goblin], rng=ScriptedRandom(19))
        assert not result.applied
        assert result.push_to is None


class TestSweepingAttack:
    """Tests for sweeping_attack()."""

    def test_sweeps_into_adjacent_enemy(self):
        hero = _hero((1, 1))
        first = make_combatant(make_monster("first"), (2, 1))
        second = make_combatant(make_monster("second"), (2, 2))
        result = sweeping_attack(hero, first, 5, 18, make_weapon(), [hero, first, second])
        assert result.applied
        assert result.sweep_target_id == "second"
        assert result.sweep_damage == 5
        assert result.damage_type == "slashing"
        assert result.bonus_damage == 0

    def test_roll_too_low_for_second_target(self):
        hero = _hero((1, 1))
        first = make_combatant(make_monster("first"), (2, 1))
        second = make_combatant(make_monster("second", armor_class=18), (2, 2))
        result = sweeping_attack(hero, first, 5, 15, make_weapon(), [hero, first, second])
        assert not result.applied
        assert result.sweep_damage == 0

    def test_second_target_must_be_in_reach(self):
        hero = _hero((1, 1))
        first = make_combatant(make_monster("first"), (2, 1))
        far = make_combatant(make_monster("far"), (3, 1))
        result = sweeping_attack(hero, first, 5, 18, make_weapon(), [hero, first, far])
        assert not result.applied
        assert result.sweep_target_id is None

    def test_allies_are_not_swept(self):
        hero = _hero((1, 1))
        first = make_combatant(make_monster("first"), (2, 1))
        friend = make_combatant(make_character("friend"), (2, 2))
        result = sweeping_attack(hero, first, 5, 18, make_weapon(), [hero, first, friend])
        assert not result.applied


class TestApplyOnHitManeuver:
    """Tests for apply_on_hit_maneuver() and parry_reduction()."""

    def test_dispatches_by_maneuver(self):
        grid = create_grid(10, 10)
        hero = _hero()
        goblin = make_combatant(make_monster(), (1, 0))
        result = apply_on_hit_maneuver(
            hero, goblin, Maneuver.TRIP_ATTACK, 4, 20, make_weapon(), grid, [hero, goblin],
            rng=ScriptedRandom(1),
        )
        assert result.maneuver == Maneuver.TRIP_ATTACK
        assert result.condition == Condition.PRONE

    def test_rejects_other_maneuvers(self):
        grid = create_grid(10, 10)
        hero = _hero()
        goblin = make_combatant(make_monster(), (1, 0))
        with pytest.raises(ValueError):
            apply_on_hit_maneuver(
                hero, goblin, Maneuver.PARRY, 4, 20, make_weapon(), grid, [hero, goblin]
            )

    def test_parry_adds_dexterity(self):
        assert parry_reduction(_hero(), 3, 10) == 5

    def test_parry_capped_at_damage(self):
        assert parry_reduction(_hero(), 6, 4) == 4

    def test_parry_never_negative(self):
        clumsy = _hero(ability_scores=AbilityScores(strength=16, dexterity=6))
        assert parry_reduction(clumsy, 1, 8) == 0
