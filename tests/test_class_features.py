"""Tests for limited-use class feature bookkeeping."""

from engine.class_features import (
    feature_name,
    feature_uses_remaining,
    has_feature,
    initial_feature_uses,
    max_feature_uses,
    roll_second_wind,
    value_at_level,
)
from models.creatures import ClassFeature

from factories import ScriptedRandom, make_character, make_combatant, make_monster


class TestUsesByLevel:
    """Tests for value_at_level() and max_feature_uses()."""

    def test_highest_level_not_above(self):
        table = {1: 2, 4: 3, 10: 4}
        assert value_at_level(table, 1) == 2
        assert value_at_level(table, 9) == 3
        assert value_at_level(table, 20) == 4
        assert value_at_level({3: 4}, 2) == 0

    def test_second_wind_uses(self):
        assert max_feature_uses(make_character(class_features=[ClassFeature.SECOND_WIND]),
                                ClassFeature.SECOND_WIND) == 2
        veteran = make_character(level=4, class_features=[ClassFeature.SECOND_WIND])
        assert max_feature_uses(veteran, ClassFeature.SECOND_WIND) == 3

    def test_missing_or_untracked_feature(self):
        assert max_feature_uses(make_character(), ClassFeature.SECOND_WIND) == 0
        rogue = make_character(class_features=[ClassFeature.CUNNING_ACTION])
        assert max_feature_uses(rogue, ClassFeature.CUNNING_ACTION) == 0

    def test_feature_known_before_its_level(self):
        early = make_character(level=1, class_features=[ClassFeature.ACTION_SURGE])
        assert max_feature_uses(early, ClassFeature.ACTION_SURGE) == 0


class TestUsesRemaining:
    """Tests for feature_uses_remaining() and initial_feature_uses()."""

    def test_falls_back_to_maximum(self):
        hero = make_combatant(
            make_character(level=2, class_features=[ClassFeature.ACTION_SURGE]), (0, 0)
        )
        assert feature_uses_remaining(hero, ClassFeature.ACTION_SURGE) == 1
        hero.class_feature_uses = {"action_surge": 0}
        assert feature_uses_remaining(hero, ClassFeature.ACTION_SURGE) == 0

    def test_monsters_have_none(self):
        goblin = make_combatant(make_monster(), (0, 0))
        assert feature_uses_remaining(goblin, ClassFeature.SECOND_WIND) == 0
        assert not has_feature(goblin, ClassFeature.SECOND_WIND)
        assert initial_feature_uses(goblin) == {}

    def test_initial_uses_skip_untracked(self):
        hero = make_combatant(
            make_character(
                level=2,
                class_features=[
                    ClassFeature.SECOND_WIND,
                    ClassFeature.ACTION_SURGE,
                    ClassFeature.CUNNING_ACTION,
                ],
            ),
            (0, 0),
        )
        assert initial_feature_uses(hero) == {"second_wind": 2, "action_surge": 1}


class TestSecondWind:
    """Tests for roll_second_wind()."""

    def test_adds_level(self):
        veteran = make_character(level=4, class_features=[ClassFeature.SECOND_WIND])
        assert roll_second_wind(veteran, ScriptedRandom(6)).total == 10

    def test_name(self):
        assert feature_name(ClassFeature.SECOND_WIND) == "Second Wind"
