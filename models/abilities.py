"""Ability score models shared by characters, monsters and spells."""

from enum import Enum

from pydantic import BaseModel


class Ability(str, Enum):
    """The six core abilities."""
    STRENGTH = "strength"
    DEXTERITY = "dexterity"
    CONSTITUTION = "constitution"
    INTELLIGENCE = "intelligence"
    WISDOM = "wisdom"
    CHARISMA = "charisma"


class AbilityScores(BaseModel):
    """The six core ability scores."""
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10

    def score(self, ability: Ability) -> int:
        """Look up a score by ability."""
        return getattr(self, ability.value)

    def modifier(self, ability: Ability) -> int:
        """Ability modifier using the 5e formula, e.g. +3 for 16."""
        return (self.score(ability) - 10) // 2
