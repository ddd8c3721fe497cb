"""Combat orchestration: roster, initiative, turns, movement, attacks, spells.

CombatEngine owns a CombatState and is the only thing that mutates it. The
rules modules (pathfinding, rules, mastery, spells, aoe) take the grid and
roster read-only and return results that are applied here.
"""

from __future__ import annotations

import json
import logging
import os
import random
from datetime import datetime, timezone
from pathlib import Path

from config import (
    DEFAULT_MOVEMENT_SPEED,
    GRID_HEIGHT,
    GRID_WIDTH,
    HAZARD_DAMAGE_DICE,
    HAZARD_DAMAGE_TYPE,
    MIN_COMBATANTS,
)
from engine.class_features import (
    feature_name,
    feature_uses_remaining,
    has_feature,
    indomitable_bonus,
    initial_feature_uses,
    roll_second_wind,
)
from engine.dice import roll
from engine.errors import (
    AlreadyActedError,
    CombatantNotFoundError,
    DestinationBlockedError,
    InvalidOperationError,
    InvalidPhaseError,
    NoLineOfSightError,
    NoResourceRemainingError,
    OutOfRangeError,
    PathNotFoundError,
    ReactionPendingError,
)
from engine.footprint import (
    combatant_cells,
    effective_size,
    fit_at,
    footprint_clear_of_combatants,
    footprint_clear_of_obstacles,
    footprint_in_bounds,
    footprint_size,
    footprints_adjacent,
)
from engine.grid import create_grid, in_bounds
from engine.maneuvers import (
    MANEUVER_TRIGGERS,
    REACTION_MANEUVERS,
    apply_on_hit_maneuver,
    knows_maneuver,
    maneuver_name,
    parry_reduction,
    roll_superiority_die,
    superiority_dice_remaining,
)
from engine.mastery import apply_mastery_on_hit, apply_mastery_on_miss
from engine.pathfinding import MovementContext, find_path
from engine.pathfinding import get_reachable_positions as reachable_positions
from engine.placement import MonsterGroup, calculate_combatant_positions
from engine.rules import (
    can_attack_target,
    can_move,
    can_take_actions,
    get_armor_class,
    has_ranged_disadvantage,
    is_ranged_attack,
    resolve_attack,
    roll_death_save,
    roll_initiative,
    roll_saving_throw,
    spell_save_dc,
)
from engine.spells import (
    build_spell_conditions,
    get_known_spell,
    resolve_spell,
    spell_source,
    validate_spell_cast,
)
from models.abilities import Ability
from models.actions import ActionRequest, ActionResult, ActionType
from models.combat_state import (
    CombatLogEntry,
    CombatPhase,
    CombatState,
    LogEntryType,
    MovementAnimation,
    PendingMovement,
    ReactionContext,
)
from models.combatant import Combatant, DeathSaves, VexedBy
from models.conditions import INDEFINITE, ActiveCondition, Condition
from models.creatures import (
    Character,
    ClassFeature,
    Maneuver,
    Monster,
    MonsterAction,
    RacialTrait,
    Weapon,
)
from models.grid import GridCell, Terrain
from models.results import (
    AttackResult,
    DeathSaveResult,
    DiceResult,
    ManeuverResult,
    MasteryResult,
    SavingThrowResult,
    SpellCastResult,
)
from models.spells import CastingTime, Spell

logger = logging.getLogger(__name__)

DYING_SOURCE = "dying"              # Source tag of the unconscious condition at 0 HP
_SIZE_CONDITIONS = (Condition.ENLARGED, Condition.REDUCED)


def create_combatant(
    actor: Character | Monster,
    combatant_id: str | None = None,
    name: str | None = None,
) -> Combatant:
    """Wrap a stat block in a fresh Combatant.

    Args:
        actor: Character or Monster stat block.
        combatant_id: Roster id; defaults to the stat block id.
        name: Display name; defaults to the stat block name.

    Returns:
        A Combatant at full (or the character's recorded) hit points.
    """
    if isinstance(actor, Character):
        max_hp = actor.max_hp
        current_hp = actor.current_hp if actor.current_hp is not None else max_hp
    else:
        max_hp = actor.hp
        current_hp = actor.hp
    return Combatant(
        id=combatant_id or actor.id,
        name=name or actor.name,
        actor=actor,
        current_hp=current_hp,
        max_hp=max_hp,
    )


class CombatEngine:
    """Runs one encounter.

    Args:
        state: Existing state to resume; a fresh empty grid otherwise.
        width: Grid width for a fresh state.
        height: Grid height for a fresh state.
        rng: Optional Random instance for seeded/testing rolls.
    """

    def __init__(
        self,
        state: CombatState | None = None,
        width: int = GRID_WIDTH,
        height: int = GRID_HEIGHT,
        rng: random.Random | None = None,
    ):
        self.state = state or CombatState(grid=create_grid(width, height))
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def add_log_entry(
        self,
        entry_type: LogEntryType,
        message: str,
        actor: Combatant | None = None,
        target: Combatant | None = None,
        details: str | None = None,
    ) -> CombatLogEntry:
        """Append a narrative entry to the combat log."""
        entry = CombatLogEntry(
            id=f"log-{len(self.state.log) + 1}",
            timestamp=datetime.now(timezone.utc),
            round=self.state.round,
            type=entry_type,
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            target_id=target.id if target else None,
            target_name=target.name if target else None,
            message=message,
            details=details,
        )
        self.state.log.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Roster and grid occupancy
    # ------------------------------------------------------------------

    def get_combatant(self, combatant_id: str) -> Combatant:
        """Look up a combatant.

        Raises:
            CombatantNotFoundError: If the id isn't on the roster.
        """
        combatant = self.state.combatants.get(combatant_id)
        if combatant is None:
            raise CombatantNotFoundError(combatant_id)
        return combatant

    def _vacate(self, combatant: Combatant) -> None:
        for row in self.state.grid:
            for cell in row:
                if cell.occupied_by == combatant.id:
                    cell.occupied_by = None

    def _occupy(self, combatant: Combatant) -> None:
        for x, y in combatant_cells(combatant):
            self.state.grid[y][x].occupied_by = combatant.id

    def _sync_occupancy(self, combatant: Combatant) -> None:
        self._vacate(combatant)
        self._occupy(combatant)

    def blocking_cells(self, exclude_id: str | None = None) -> set[tuple[int, int]]:
        """Cells held by creatures that still block movement."""
        cells: set[tuple[int, int]] = set()
        for combatant in self.state.combatants.values():
            if combatant.id == exclude_id or combatant.is_dead:
                continue
            cells.update(combatant_cells(combatant))
        return cells

    def opaque_zone_cells(self) -> set[tuple[int, int]]:
        """Cells covered by zones that block sight, e.g. fog."""
        cells: set[tuple[int, int]] = set()
        for zone in self.state.zones:
            if zone.blocks_line_of_sight:
                cells.update(zone.cells)
        return cells

    def check_occupancy(self) -> None:
        """Verify the grid's occupied_by marks match the roster.

        Raises:
            RuntimeError: If the grid and roster disagree.
        """
        expected: dict[tuple[int, int], str] = {}
        for combatant in self.state.combatants.values():
            for cell in combatant_cells(combatant):
                expected[cell] = combatant.id
        for row in self.state.grid:
            for cell in row:
                if cell.occupied_by != expected.get((cell.x, cell.y)):
                    raise RuntimeError(
                        f"Grid occupancy out of sync at ({cell.x}, {cell.y}): "
                        f"{cell.occupied_by!r} != {expected.get((cell.x, cell.y))!r}"
                    )

    def add_combatant(
        self,
        actor: Character | Monster,
        position: tuple[int, int] | None = None,
        combatant_id: str | None = None,
        name: str | None = None,
    ) -> Combatant:
        """Add a stat block to the roster, optionally placing it.

        Args:
            actor: Character or Monster stat block.
            position: Footprint anchor to place at, if any.
            combatant_id: Roster id; defaults to the stat block id.
            name: Display name; defaults to the stat block name.

        Returns:
            The new Combatant.

        Raises:
            InvalidPhaseError: If combat has already started.
            InvalidOperationError: If the id is already on the roster.
            DestinationBlockedError: If the position can't hold the footprint.
        """
        self._require_phase(CombatPhase.SETUP)
        combatant = create_combatant(actor, combatant_id, name)
        if combatant.id in self.state.combatants:
            raise InvalidOperationError(
                f"Combatant '{combatant.id}' is already in the encounter",
                details={"combatant_id": combatant.id},
            )
        if position is not None:
            self._check_placement(combatant, position)
            combatant.position = position
        self.state.combatants[combatant.id] = combatant
        self._occupy(combatant)
        logger.debug("Added %s at %s", combatant.name, position)
        return combatant

    def remove_combatant(self, combatant_id: str) -> Combatant:
        """Take a combatant off the roster, the grid and the turn order."""
        combatant = self.get_combatant(combatant_id)
        self._vacate(combatant)
        del self.state.combatants[combatant_id]

        state = self.state
        if state.pending_movement and state.pending_movement.combatant_id == combatant_id:
            state.pending_movement = None
            state.movement_animation = None
        reaction = state.pending_reaction
        if reaction is not None and combatant_id in (
            reaction.reacting_combatant_id, reaction.triggering_combatant_id
        ):
            state.pending_reaction = None
            state.phase = CombatPhase.COMBAT
        if combatant_id in state.turn_order:
            index = state.turn_order.index(combatant_id)
            state.turn_order.remove(combatant_id)
            if index < state.current_turn_index:
                state.current_turn_index -= 1
            elif index == state.current_turn_index:
                # The next combatant slides into the slot and starts its turn
                if state.phase == CombatPhase.COMBAT and state.pending_movement is None:
                    self._start_turn_at(index)
                elif state.turn_order:
                    state.current_turn_index = index % len(state.turn_order)
                else:
                    state.current_turn_index = 0
        return combatant

    def _check_placement(self, combatant: Combatant, position: tuple[int, int]) -> None:
        size = effective_size(combatant)
        details = {"position": list(position)}
        if not footprint_in_bounds(position, size, self.state.grid):
            raise DestinationBlockedError(
                f"Position {position} is out of bounds for {combatant.name}", details=details
            )
        if not footprint_clear_of_obstacles(position, size, self.state.grid):
            raise DestinationBlockedError(f"Position {position} is blocked", details=details)
        if not footprint_clear_of_combatants(
            position, size, self.blocking_cells(exclude_id=combatant.id)
        ):
            raise DestinationBlockedError(f"Position {position} is occupied", details=details)

    def place_combatant(self, combatant_id: str, position: tuple[int, int]) -> Combatant:
        """Put a combatant's footprint at an anchor, updating grid occupancy.

        Raises:
            DestinationBlockedError: Out of bounds, obstacle, or occupied.
        """
        combatant = self.get_combatant(combatant_id)
        self._check_placement(combatant, position)
        self._vacate(combatant)
        combatant.position = position
        self._occupy(combatant)
        return combatant

    def update_cell(self, cell: GridCell) -> GridCell:
        """Replace a cell's terrain, obstacle, elevation and stairs during setup.

        Occupancy is kept; a movement-blocking obstacle can't go under a creature.
        """
        self._require_phase(CombatPhase.SETUP)
        if not in_bounds(cell.x, cell.y, self.state.grid):
            raise DestinationBlockedError(
                f"Cell ({cell.x}, {cell.y}) is off the grid",
                details={"position": [cell.x, cell.y]},
            )
        current = self._cell(cell.x, cell.y)
        if cell.obstacle is not None and cell.obstacle.blocks_movement and current.occupied_by:
            raise DestinationBlockedError(
                f"Cell ({cell.x}, {cell.y}) is occupied by {current.occupied_by}",
                details={"position": [cell.x, cell.y]},
            )
        updated = cell.model_copy(update={"occupied_by": current.occupied_by})
        self.state.grid[cell.y][cell.x] = updated
        return updated

    def setup_encounter(
        self,
        characters: list[Character],
        monster_groups: list[MonsterGroup],
        width: int | None = None,
        height: int | None = None,
        auto_start: bool = False,
    ) -> list[Combatant]:
        """Reset to a fresh grid and place both sides automatically.

        Monsters from a group of more than one are numbered ("Goblin 1").

        Returns:
            The placed combatants, characters first.
        """
        width = width or self.state.width or GRID_WIDTH
        height = height or self.state.height or GRID_HEIGHT
        self.state = CombatState(grid=create_grid(width, height))

        total_monsters = sum(group.count for group in monster_groups)
        char_positions, monster_positions = calculate_combatant_positions(
            len(characters), total_monsters, width, height
        )

        placed = []
        for character, position in zip(characters, char_positions):
            placed.append(self.add_combatant(character, position))

        index = 0
        for group in monster_groups:
            for i in range(group.count):
                monster = group.monster
                if group.count > 1:
                    combatant_id = f"{monster.id}-{i + 1}"
                    name = f"{monster.name} {i + 1}"
                else:
                    combatant_id, name = monster.id, monster.name
                placed.append(
                    self.add_combatant(
                        monster.model_copy(deep=True),
                        monster_positions[index],
                        combatant_id=combatant_id,
                        name=name,
                    )
                )
                index += 1

        if auto_start:
            self.start_combat()
        return placed

    # ------------------------------------------------------------------
    # Phase and turn management
    # ------------------------------------------------------------------

    def _require_phase(self, *phases: CombatPhase) -> None:
        phase = self.state.phase
        if phase in phases:
            return
        if phase == CombatPhase.AWAITING_REACTION:
            raise ReactionPendingError("Waiting for a reaction to be resolved or skipped")
        raise InvalidPhaseError(
            f"Not allowed during the {phase.value} phase",
            details={"phase": phase.value},
        )

    def _require_turn(self, combatant: Combatant) -> None:
        self._require_phase(CombatPhase.COMBAT)
        current = self.current_combatant()
        if current is None or current.id != combatant.id:
            raise InvalidOperationError(
                f"It's not {combatant.name}'s turn",
                details={"combatant_id": combatant.id},
            )

    def _require_can_act(self, combatant: Combatant) -> None:
        if combatant.current_hp <= 0 or not can_take_actions(combatant):
            raise InvalidOperationError(f"{combatant.name} can't take actions")

    def start_combat(self) -> list[Combatant]:
        """Roll initiative for everyone and begin round 1.

        Order is descending initiative, ties broken by Dexterity score.

        Returns:
            Combatants in turn order.

        Raises:
            InvalidPhaseError: If not in setup.
            InvalidOperationError: With fewer than MIN_COMBATANTS combatants.
        """
        self._require_phase(CombatPhase.SETUP)
        state = self.state
        if len(state.combatants) < MIN_COMBATANTS:
            raise InvalidOperationError(
                f"Need at least {MIN_COMBATANTS} combatants to start combat",
                details={"combatants": len(state.combatants)},
            )

        state.phase = CombatPhase.INITIATIVE
        state.round = 1
        for combatant in state.combatants.values():
            combatant.class_feature_uses = initial_feature_uses(combatant)
            initiative = roll_initiative(combatant, self.rng)
            combatant.initiative = initiative.total
            self.add_log_entry(
                LogEntryType.INITIATIVE,
                f"{combatant.name} rolls {initiative.total} for initiative",
                actor=combatant,
                details=initiative.breakdown,
            )

        ordered = sorted(
            state.combatants.values(),
            key=lambda c: (c.initiative, c.ability_scores.dexterity),
            reverse=True,
        )
        state.turn_order = [c.id for c in ordered]
        state.current_turn_index = 0
        state.phase = CombatPhase.COMBAT
        logger.info("Combat started: %s", ", ".join(c.name for c in ordered))

        self._start_turn_at(0)
        return ordered

    def current_combatant(self) -> Combatant | None:
        """The combatant whose turn it is, or None outside combat."""
        state = self.state
        if state.phase not in (CombatPhase.COMBAT, CombatPhase.AWAITING_REACTION):
            return None
        if not state.turn_order:
            return None
        return state.combatants.get(state.turn_order[state.current_turn_index])

    def _reset_turn_flags(self, combatant: Combatant) -> None:
        combatant.has_acted = False
        combatant.has_bonus_acted = False
        combatant.attacks_made_this_turn = 0
        combatant.movement_used = 0
        combatant.used_sneak_attack_this_turn = False
        combatant.used_cleave_this_turn = False
        combatant.used_nick_this_turn = False
        combatant.bonus_attacks_available = 0
        combatant.used_action_surge_this_turn = False
        combatant.speed_reduction = 0

    def _expire_conditions(self, combatant: Combatant) -> None:
        """Tick down timed conditions; indefinite ones are left alone."""
        kept = []
        for active in combatant.conditions:
            if active.is_indefinite:
                kept.append(active)
                continue
            active.duration -= 1
            if active.duration > 0:
                kept.append(active)
            else:
                self.add_log_entry(
                    LogEntryType.CONDITION,
                    f"{combatant.name} is no longer {active.condition.value}",
                    target=combatant,
                )
        combatant.conditions = kept

    def _expire_zones(self, caster: Combatant) -> None:
        kept = []
        for zone in self.state.zones:
            if zone.caster_id == caster.id and zone.duration_rounds is not None:
                zone.duration_rounds -= 1
                if zone.duration_rounds <= 0:
                    self.add_log_entry(
                        LogEntryType.SPELL, f"The {zone.zone_type} dissipates", actor=caster
                    )
                    continue
            kept.append(zone)
        self.state.zones = kept

    def _begin_turn(self, combatant: Combatant) -> None:
        combatant.has_reacted = False
        self._expire_conditions(combatant)
        self._expire_zones(combatant)

        if combatant.current_hp > 0 and combatant.has_condition(Condition.PRONE):
            if can_move(combatant) and not combatant.has_condition(Condition.UNCONSCIOUS):
                combatant.conditions = [
                    c for c in combatant.conditions if c.condition != Condition.PRONE
                ]
                combatant.movement_used += combatant.speed // 2
                self.add_log_entry(
                    LogEntryType.MOVEMENT, f"{combatant.name} stands up", actor=combatant
                )

        self.add_log_entry(
            LogEntryType.OTHER, f"{combatant.name}'s turn", actor=combatant
        )
        if combatant.is_character and combatant.current_hp <= 0 and not combatant.is_stable:
            self.make_death_save(combatant.id)

    def _end_turn(self, combatant: Combatant) -> None:
        self._run_repeat_saves(combatant, on_damage=False)
        self._reset_turn_flags(combatant)

    def next_turn(self) -> Combatant | None:
        """End the current turn and start the next living combatant's.

        Does nothing once combat has been won or lost.

        Returns:
            The combatant whose turn starts, or None if combat is over.

        Raises:
            ReactionPendingError: While a reaction is undecided.
            InvalidPhaseError: Outside combat or with a move in progress.
        """
        state = self.state
        if state.phase in (CombatPhase.VICTORY, CombatPhase.DEFEAT):
            return None
        self._require_phase(CombatPhase.COMBAT)
        if state.pending_movement is not None:
            raise InvalidPhaseError("Finish the pending movement before ending the turn")

        ending = self.current_combatant()
        if ending is not None:
            self._end_turn(ending)
        return self._start_turn_at(state.current_turn_index + 1)

    def _start_turn_at(self, index: int) -> Combatant | None:
        """Begin the turn of the first living combatant from index onwards.

        Running off the end of the order wraps to the top and starts a new
        round. Nobody's turn is ended here.
        """
        state = self.state
        order_len = len(state.turn_order)
        for _ in range(order_len):
            if index >= order_len:
                index = 0
                state.round += 1
                self.add_log_entry(LogEntryType.OTHER, f"Round {state.round} begins")
            state.current_turn_index = index
            index += 1
            combatant = state.combatants.get(state.turn_order[state.current_turn_index])
            if combatant is None or combatant.is_dead:
                continue
            self._begin_turn(combatant)
            if state.phase != CombatPhase.COMBAT:
                return None
            if combatant.is_dead:
                continue
            logger.debug("Round %d: %s's turn", state.round, combatant.name)
            return combatant

        self.check_combat_end()
        return None

    def check_combat_end(self) -> CombatPhase | None:
        """Victory when every monster is at 0 HP, defeat when every character
        has failed three death saves.

        Returns:
            CombatPhase.VICTORY, CombatPhase.DEFEAT, or None if combat goes on.
        """
        state = self.state
        combatants = list(state.combatants.values())
        monsters = [c for c in combatants if c.is_monster]
        characters = [c for c in combatants if c.is_character]

        outcome = None
        if monsters and all(m.current_hp <= 0 for m in monsters):
            outcome = CombatPhase.VICTORY
        elif characters and all(c.death_saves.failures >= 3 for c in characters):
            outcome = CombatPhase.DEFEAT

        in_progress = (CombatPhase.INITIATIVE, CombatPhase.COMBAT, CombatPhase.AWAITING_REACTION)
        if outcome is not None and state.phase in in_progress:
            state.phase = outcome
            state.pending_reaction = None
            state.pending_movement = None
            state.movement_animation = None
            if outcome == CombatPhase.VICTORY:
                message = "Victory! All monsters are defeated"
            else:
                message = "Defeat! The party has fallen"
            self.add_log_entry(LogEntryType.OTHER, message)
            logger.info("Combat ended in %s after %d round(s)", outcome.value, state.round)
        return outcome

    def end_combat(self) -> None:
        """Return to setup, keeping the roster and grid.

        Turn order, log, zones and per-turn state are cleared.
        """
        state = self.state
        state.phase = CombatPhase.SETUP
        state.turn_order = []
        state.current_turn_index = 0
        state.round = 0
        state.log = []
        state.zones = []
        state.pending_movement = None
        state.pending_reaction = None
        state.movement_animation = None
        for combatant in state.combatants.values():
            self._reset_turn_flags(combatant)
            combatant.has_reacted = False
            combatant.initiative = 0
            combatant.vexed_by = None
            combatant.concentrating_on = None
            combatant.concentration_source = None

    # ------------------------------------------------------------------
    # Movement
    # ------------------------------------------------------------------

    def remaining_movement(self, combatant: Combatant) -> int:
        return max(0, combatant.speed - combatant.speed_reduction - combatant.movement_used)

    def _movement_context(self, combatant: Combatant) -> MovementContext:
        return MovementContext(
            walk_speed=combatant.speed or DEFAULT_MOVEMENT_SPEED,
            swim_speed=combatant.swim_speed,
        )

    def get_reachable_positions(self, combatant_id: str) -> dict[tuple[int, int], int]:
        """Anchors the combatant can reach with its remaining movement."""
        combatant = self.get_combatant(combatant_id)
        if combatant.position is None or not can_move(combatant):
            return {}
        return reachable_positions(
            self.state.grid,
            combatant.position,
            self.remaining_movement(combatant),
            occupied=self.blocking_cells(exclude_id=combatant.id),
            footprint=footprint_size(effective_size(combatant)),
            context=self._movement_context(combatant),
        )

    def get_threatening_enemies(
        self,
        mover: Combatant,
        path: list[tuple[int, int]],
    ) -> list[Combatant]:
        """Enemies whose reach the mover leaves somewhere along the path.

        An enemy threatens if it is alive, able to react, and adjacent to
        the mover at some step but not at the next one. Disengaging movers
        provoke nothing.
        """
        if mover.has_condition(Condition.DISENGAGING):
            return []
        mover_size = effective_size(mover)
        threatening = []
        for enemy in self.state.combatants.values():
            if enemy.is_ally_of(mover) or enemy.current_hp <= 0 or enemy.position is None:
                continue
            if enemy.has_reacted or enemy.has_condition(Condition.NO_REACTIONS):
                continue
            if not can_take_actions(enemy):
                continue
            enemy_size = effective_size(enemy)
            for here, there in zip(path, path[1:]):
                if footprints_adjacent(here, mover_size, enemy.position, enemy_size) and \
                        not footprints_adjacent(there, mover_size, enemy.position, enemy_size):
                    threatening.append(enemy)
                    break
        return threatening

    def move_combatant(self, combatant_id: str, to: tuple[int, int]) -> PendingMovement:
        """Plan a move for the current combatant and start its animation.

        The position isn't changed until finish_movement_animation settles
        the move (resolving opportunity attacks first).

        Raises:
            DestinationBlockedError: The footprint can't stand at the destination.
            NoResourceRemainingError: A path exists but costs more than is left.
            PathNotFoundError: No path at all.
        """
        mover = self.get_combatant(combatant_id)
        self._require_turn(mover)
        if self.state.pending_movement is not None:
            raise InvalidPhaseError("Another move is still in progress")
        if mover.current_hp <= 0 or not can_move(mover):
            raise InvalidOperationError(f"{mover.name} can't move")
        if mover.position == to:
            raise InvalidOperationError(f"{mover.name} is already at {to}")

        grid = self.state.grid
        size = footprint_size(effective_size(mover))
        occupied = self.blocking_cells(exclude_id=mover.id)
        if not in_bounds(to[0], to[1], grid) or fit_at(to, size, grid, occupied) is None:
            raise DestinationBlockedError(
                f"{mover.name} can't stand at {to}", details={"position": list(to)}
            )

        context = self._movement_context(mover)
        budget = self.remaining_movement(mover)
        path = find_path(grid, mover.position, to, occupied, budget, size, context)
        if path is None:
            unbounded = find_path(grid, mover.position, to, occupied, None, size, context)
            if unbounded is not None:
                raise NoResourceRemainingError(
                    f"{mover.name} needs {unbounded.cost}ft but has {budget}ft left",
                    details={"cost": unbounded.cost, "remaining": budget},
                )
            raise PathNotFoundError(
                f"No path from {mover.position} to {to}", details={"position": list(to)}
            )

        threatening = self.get_threatening_enemies(mover, path.positions)
        pending = PendingMovement(
            combatant_id=mover.id,
            to=to,
            path=path.positions,
            path_cost=path.cost,
            threatening_enemy_ids=[enemy.id for enemy in threatening],
        )
        self.state.pending_movement = pending
        self.state.movement_animation = MovementAnimation(
            combatant_id=mover.id, path=path.positions
        )
        logger.debug("%s plans %dft move to %s", mover.name, path.cost, to)
        return pending

    def advance_movement_animation(self) -> MovementAnimation | None:
        """Step the animation one cell; settle the move when it reaches the end.

        Returns:
            The animation while it is still running, else None.
        """
        animation = self.state.movement_animation
        if animation is None:
            return None
        if animation.current_index < len(animation.path) - 1:
            animation.current_index += 1
        if animation.current_index >= len(animation.path) - 1:
            self.finish_movement_animation()
            return None
        return animation

    def finish_movement_animation(self) -> Combatant | None:
        """Settle the pending move.

        Opportunity attacks are resolved first. If one triggers a reaction
        the move stays pending and resumes once the reaction is decided. If
        the mover is at 0 HP, whether from an attack here or from a hit
        settled by the reaction, the move is abandoned where it started.

        Returns:
            The mover, or None if the move is suspended or was aborted.
        """
        self._require_phase(CombatPhase.COMBAT)
        state = self.state
        pending = state.pending_movement
        if pending is None:
            raise InvalidPhaseError("No movement in progress")
        mover = self.get_combatant(pending.combatant_id)
        if mover.current_hp <= 0:
            return self._cut_movement_short(mover)

        for enemy_id in pending.threatening_enemy_ids:
            if enemy_id in pending.resolved_enemy_ids:
                continue
            pending.resolved_enemy_ids.append(enemy_id)
            enemy = state.combatants.get(enemy_id)
            if enemy is None or enemy.current_hp <= 0 or enemy.has_reacted:
                continue
            self.perform_opportunity_attack(enemy.id, mover.id)
            if state.phase == CombatPhase.AWAITING_REACTION:
                return None
            if state.phase != CombatPhase.COMBAT or mover.current_hp <= 0:
                return self._cut_movement_short(mover)

        self._vacate(mover)
        mover.position = pending.to
        self._occupy(mover)
        mover.movement_used += pending.path_cost
        state.pending_movement = None
        state.movement_animation = None
        self.add_log_entry(
            LogEntryType.MOVEMENT,
            f"{mover.name} moves {pending.path_cost}ft to {pending.to}",
            actor=mover,
        )

        if any(self._cell(x, y).terrain == Terrain.HAZARD for x, y in combatant_cells(mover)):
            hazard = roll(HAZARD_DAMAGE_DICE, rng=self.rng)
            self.add_log_entry(
                LogEntryType.DAMAGE,
                f"{mover.name} is burned by hazardous terrain",
                target=mover,
                details=hazard.breakdown,
            )
            self.deal_damage(mover.id, hazard.total, HAZARD_DAMAGE_TYPE)
        return mover

    def _cut_movement_short(self, mover: Combatant) -> None:
        self.add_log_entry(
            LogEntryType.MOVEMENT, f"{mover.name}'s movement is cut short", actor=mover
        )
        self.state.pending_movement = None
        self.state.movement_animation = None
        return None

    def _cell(self, x: int, y: int) -> GridCell:
        return self.state.grid[y][x]

    # ------------------------------------------------------------------
    # Action economy
    # ------------------------------------------------------------------

    def _require_action_available(self, combatant: Combatant) -> None:
        if combatant.has_acted or combatant.attacks_made_this_turn > 0:
            raise AlreadyActedError(f"{combatant.name} has already used their action")

    def _take_standard_action(self, combatant_id: str) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        self._require_turn(combatant)
        self._require_can_act(combatant)
        self._require_action_available(combatant)
        combatant.has_acted = True
        return combatant

    def use_dash(self, combatant_id: str) -> Combatant:
        """Spend the action to gain movement equal to speed."""
        combatant = self._take_standard_action(combatant_id)
        self._dash(combatant)
        return combatant

    def _dash(self, combatant: Combatant) -> None:
        extra = max(0, combatant.speed - combatant.speed_reduction)
        combatant.movement_used -= extra
        self.add_log_entry(
            LogEntryType.OTHER, f"{combatant.name} dashes (+{extra}ft)", actor=combatant
        )

    def use_dodge(self, combatant_id: str) -> Combatant:
        """Spend the action so attacks against the combatant have disadvantage."""
        combatant = self._take_standard_action(combatant_id)
        self._add_condition(combatant, ActiveCondition(condition=Condition.DODGING, duration=1))
        self.add_log_entry(LogEntryType.OTHER, f"{combatant.name} dodges", actor=combatant)
        return combatant

    def use_disengage(self, combatant_id: str) -> Combatant:
        """Spend the action so movement this turn provokes no opportunity attacks."""
        combatant = self._take_standard_action(combatant_id)
        self._disengage(combatant)
        return combatant

    def _disengage(self, combatant: Combatant) -> None:
        self._add_condition(
            combatant, ActiveCondition(condition=Condition.DISENGAGING, duration=1)
        )
        self.add_log_entry(LogEntryType.OTHER, f"{combatant.name} disengages", actor=combatant)

    # ------------------------------------------------------------------
    # Class features and maneuvers
    # ------------------------------------------------------------------

    def _take_bonus_action(self, combatant_id: str) -> Combatant:
        combatant = self.get_combatant(combatant_id)
        self._require_turn(combatant)
        self._require_can_act(combatant)
        if combatant.has_bonus_acted:
            raise AlreadyActedError(f"{combatant.name} has already used their bonus action")
        return combatant

    def _require_feature(self, combatant: Combatant, feature: ClassFeature) -> None:
        if not has_feature(combatant, feature):
            raise InvalidOperationError(
                f"{combatant.name} doesn't have {feature_name(feature)}",
                details={"feature": feature.value},
            )

    def _spend_feature_use(self, combatant: Combatant, feature: ClassFeature) -> None:
        remaining = feature_uses_remaining(combatant, feature)
        if remaining <= 0:
            raise NoResourceRemainingError(
                f"{combatant.name} has no {feature_name(feature)} uses left",
                details={"feature": feature.value},
            )
        combatant.class_feature_uses[feature.value] = remaining - 1

    def use_second_wind(self, combatant_id: str) -> int:
        """Bonus action: regain 1d10 + level hit points.

        Returns:
            Hit points restored.

        Raises:
            AlreadyActedError: Bonus action already used.
            InvalidOperationError: Not the combatant's turn, or no Second Wind.
            NoResourceRemainingError: No uses left.
        """
        combatant = self._take_bonus_action(combatant_id)
        self._require_feature(combatant, ClassFeature.SECOND_WIND)
        self._spend_feature_use(combatant, ClassFeature.SECOND_WIND)
        combatant.has_bonus_acted = True
        healing = roll_second_wind(combatant.actor, self.rng)
        self.add_log_entry(
            LogEntryType.HEAL,
            f"{combatant.name} uses Second Wind",
            actor=combatant,
            details=healing.breakdown,
        )
        return self.heal_damage(combatant.id, healing.total)

    def use_action_surge(self, combatant_id: str) -> Combatant:
        """Take one more action this turn, once the first has been spent."""
        combatant = self.get_combatant(combatant_id)
        self._require_turn(combatant)
        self._require_can_act(combatant)
        self._require_feature(combatant, ClassFeature.ACTION_SURGE)
        if combatant.used_action_surge_this_turn:
            raise AlreadyActedError(f"{combatant.name} has already surged this turn")
        if not combatant.has_acted:
            raise InvalidOperationError(f"{combatant.name} hasn't used their action yet")
        self._spend_feature_use(combatant, ClassFeature.ACTION_SURGE)
        combatant.used_action_surge_this_turn = True
        combatant.has_acted = False
        combatant.attacks_made_this_turn = 0
        self.add_log_entry(
            LogEntryType.OTHER, f"{combatant.name} uses Action Surge", actor=combatant
        )
        return combatant

    def use_cunning_action(self, combatant_id: str, action: ActionType) -> Combatant:
        """Dash or Disengage as a bonus action."""
        combatant = self._take_bonus_action(combatant_id)
        self._require_feature(combatant, ClassFeature.CUNNING_ACTION)
        if action not in (ActionType.DASH, ActionType.DISENGAGE):
            raise InvalidOperationError(
                "Cunning Action can only Dash or Disengage",
                details={"action": action.value},
            )
        combatant.has_bonus_acted = True
        if action == ActionType.DASH:
            self._dash(combatant)
        else:
            self._disengage(combatant)
        return combatant

    def _require_maneuver(self, combatant: Combatant, maneuver: Maneuver) -> None:
        if not knows_maneuver(combatant, maneuver):
            raise InvalidOperationError(
                f"{combatant.name} doesn't know {maneuver_name(maneuver)}",
                details={"maneuver": maneuver.value},
            )
        if superiority_dice_remaining(combatant) <= 0:
            raise NoResourceRemainingError(f"{combatant.name} has no superiority dice left")

    def _spend_superiority_die(self, combatant: Combatant, maneuver: Maneuver) -> DiceResult:
        self._require_maneuver(combatant, maneuver)
        self._spend_feature_use(combatant, ClassFeature.COMBAT_SUPERIORITY)
        die = roll_superiority_die(combatant.actor, self.rng)
        self.add_log_entry(
            LogEntryType.OTHER,
            f"{combatant.name} uses {maneuver_name(maneuver)}",
            actor=combatant,
            details=f"superiority die {die.breakdown}",
        )
        return die

    def use_maneuver(self, combatant_id: str, maneuver: Maneuver) -> Combatant:
        """Use a bonus-action maneuver (Evasive Footwork).

        Evasive Footwork disengages and adds the superiority die to AC until
        the start of the combatant's next turn.
        """
        combatant = self._take_bonus_action(combatant_id)
        if MANEUVER_TRIGGERS[maneuver] != "bonus_action":
            raise InvalidOperationError(
                f"{maneuver_name(maneuver)} isn't used as a bonus action",
                details={"maneuver": maneuver.value},
            )
        die = self._spend_superiority_die(combatant, maneuver)
        combatant.has_bonus_acted = True
        source = f"maneuver:{combatant.id}"
        self._add_condition(
            combatant,
            ActiveCondition(condition=Condition.DISENGAGING, duration=1, source=source),
        )
        self._add_condition(
            combatant,
            ActiveCondition(
                condition=Condition.EVASIVE, duration=1, source=source, ac_bonus=die.total
            ),
        )
        return combatant

    def _check_attack_maneuver(
        self, attacker: Combatant, maneuver: Maneuver, weapon: Weapon | None
    ) -> None:
        if MANEUVER_TRIGGERS[maneuver] not in ("pre_attack", "on_hit"):
            raise InvalidOperationError(
                f"{maneuver_name(maneuver)} isn't used with an attack",
                details={"maneuver": maneuver.value},
            )
        if weapon is None:
            raise InvalidOperationError("Maneuvers need a weapon attack")
        if maneuver == Maneuver.SWEEPING_ATTACK and weapon.is_ranged:
            raise InvalidOperationError("Sweeping Attack needs a melee weapon")
        self._require_maneuver(attacker, maneuver)

    def _apply_maneuver(
        self, attacker: Combatant, target: Combatant, outcome: ManeuverResult
    ) -> None:
        self.add_log_entry(
            LogEntryType.OTHER, outcome.description, actor=attacker, target=target
        )
        if not outcome.applied:
            return
        target_standing = target.current_hp > 0
        if target_standing and outcome.push_to is not None:
            self._vacate(target)
            target.position = outcome.push_to
            self._occupy(target)
        if target_standing and outcome.condition is not None:
            self._add_condition(
                target,
                ActiveCondition(
                    condition=outcome.condition,
                    duration=outcome.condition_duration,
                    source=f"maneuver:{attacker.id}",
                ),
            )
        if outcome.sweep_target_id is not None and outcome.sweep_damage:
            second = self.state.combatants.get(outcome.sweep_target_id)
            if second is not None and second.current_hp > 0:
                self.deal_damage(
                    second.id, outcome.sweep_damage, outcome.damage_type, attacker_id=attacker.id
                )

    # ------------------------------------------------------------------
    # Attacks
    # ------------------------------------------------------------------

    @staticmethod
    def _attack_source(
        combatant: Combatant, use_ranged: bool
    ) -> tuple[Weapon | None, MonsterAction | None]:
        """The weapon or stat-block action used; (None, None) is unarmed."""
        actor = combatant.actor
        if isinstance(actor, Character):
            if use_ranged:
                if actor.ranged_weapon is None:
                    raise InvalidOperationError(f"{combatant.name} has no ranged weapon")
                return actor.ranged_weapon, None
            return actor.melee_weapon, None

        for action in actor.actions:
            if action.is_ranged == use_ranged:
                return None, action
        if use_ranged:
            raise InvalidOperationError(f"{combatant.name} has no ranged attack")
        return None, (actor.actions[0] if actor.actions else None)

    def get_valid_targets(self, attacker_id: str, use_ranged: bool = False) -> list[Combatant]:
        """Living enemies the attacker could attack right now."""
        attacker = self.get_combatant(attacker_id)
        if attacker.position is None:
            return []
        weapon, action = self._attack_source(attacker, use_ranged)
        opaque = self.opaque_zone_cells()
        targets = []
        for other in self.state.combatants.values():
            if other.id == attacker.id or other.is_ally_of(attacker):
                continue
            if other.is_dead or (other.is_monster and other.current_hp <= 0):
                continue
            if other.position is None:
                continue
            check = can_attack_target(attacker, other, self.state.grid, weapon, action, opaque)
            if check.can_attack:
                targets.append(other)
        return targets

    def _after_attack_roll(self, attacker: Combatant, target: Combatant) -> None:
        """Clear one-shot effects consumed by making an attack."""
        if attacker.has_condition(Condition.SAPPED):
            attacker.conditions = [
                c for c in attacker.conditions if c.condition != Condition.SAPPED
            ]
        if target.vexed_by is not None and target.vexed_by.attacker_id == attacker.id:
            target.vexed_by = None

    def _log_attack(self, attacker: Combatant, target: Combatant, result: AttackResult,
                    label: str = "attacks") -> None:
        if result.hit:
            outcome = "critical hit" if result.critical else "hit"
            message = f"{attacker.name} {label} {target.name}: {outcome}"
        else:
            outcome = "critical miss" if result.critical_miss else "miss"
            message = f"{attacker.name} {label} {target.name}: {outcome}"
        details = f"{result.attack_roll.breakdown} vs AC {result.target_ac}"
        for part, name in (
            (result.damage, "damage"),
            (result.savage_attacks_damage, "Savage Attacks"),
            (result.sneak_attack_damage, "Sneak Attack"),
        ):
            if part is not None:
                details += f"; {name} {part.breakdown}"
        self.add_log_entry(LogEntryType.ATTACK, message, actor=attacker, target=target,
                           details=details)

    @staticmethod
    def _can_react(combatant: Combatant) -> bool:
        return (
            not combatant.has_reacted
            and combatant.current_hp > 0
            and can_take_actions(combatant)
            and not combatant.has_condition(Condition.NO_REACTIONS)
        )

    def _available_reaction_spells(self, target: Combatant, attack_total: int) -> list[Spell]:
        """Reaction spells the target could cast that would turn the hit into a miss."""
        actor = target.actor
        if not isinstance(actor, Character) or not self._can_react(target):
            return []
        available = []
        for spell in actor.spells:
            if spell.casting_time != CastingTime.REACTION or spell.reaction is None:
                continue
            if spell.reaction.trigger != "on_hit":
                continue
            if self._lowest_slot(actor, spell.level) is None:
                continue
            if attack_total < get_armor_class(target) + spell.reaction.ac_bonus:
                available.append(spell)
        return available

    def _available_reaction_maneuvers(
        self, target: Combatant, attacker: Combatant, trigger: str, melee: bool
    ) -> list[Maneuver]:
        """Parry on a melee hit, Riposte on a melee miss, if the target has them."""
        maneuver = REACTION_MANEUVERS[trigger]
        if not melee or not self._can_react(target) or not knows_maneuver(target, maneuver):
            return []
        weapon = target.actor.melee_weapon
        if weapon is None or superiority_dice_remaining(target) <= 0:
            return []
        if maneuver == Maneuver.RIPOSTE:
            if attacker.current_hp <= 0:
                return []
            check = can_attack_target(
                target, attacker, self.state.grid, weapon, None, self.opaque_zone_cells()
            )
            if not check.can_attack:
                return []
        return [maneuver]

    @staticmethod
    def _lowest_slot(character: Character, level: int) -> int | None:
        if level == 0:
            return 0
        for slot_level in sorted(character.spell_slots):
            if slot_level >= level and character.spell_slots[slot_level].current > 0:
                return slot_level
        return None

    def _pause_for_reaction(self, context: ReactionContext) -> None:
        self.state.pending_reaction = context
        self.state.phase = CombatPhase.AWAITING_REACTION
        reactor = self.state.combatants.get(context.reacting_combatant_id)
        attacker = self.state.combatants.get(context.triggering_combatant_id)
        self.add_log_entry(
            LogEntryType.OTHER,
            f"{reactor.name} may react to {attacker.name}'s attack",
            actor=reactor,
            target=attacker,
        )

    def _land_hit(
        self,
        attacker: Combatant,
        target: Combatant,
        result: AttackResult,
        mastery: MasteryResult | None = None,
        weapon: Weapon | None = None,
        is_opportunity_attack: bool = False,
        melee: bool = True,
        maneuver: ManeuverResult | None = None,
    ) -> bool:
        """Apply a hit, or pause for the target's reaction.

        Reaction spells are offered only against hits they could turn into
        misses, never against a critical. Parry is offered against any
        damaging melee hit.

        Returns:
            True if combat is now waiting on a reaction.
        """
        spells = []
        if not result.critical:
            spells = self._available_reaction_spells(target, result.attack_roll.total)
        maneuvers = []
        if result.total_damage > 0:
            maneuvers = self._available_reaction_maneuvers(target, attacker, "on_hit", melee)
        if spells or maneuvers:
            self._pause_for_reaction(
                ReactionContext(
                    reacting_combatant_id=target.id,
                    triggering_combatant_id=attacker.id,
                    available_spell_ids=[spell.id for spell in spells],
                    available_maneuvers=maneuvers,
                    attack_total=result.attack_roll.total,
                    target_ac=result.target_ac,
                    damage=result.total_damage,
                    damage_type=result.damage_type or "bludgeoning",
                    is_critical=result.critical,
                    is_opportunity_attack=is_opportunity_attack,
                    weapon_id=weapon.id if weapon is not None else None,
                    pending_mastery=mastery,
                    pending_maneuver=maneuver,
                )
            )
            return True

        self.deal_damage(
            target.id, result.total_damage, result.damage_type, result.critical, attacker.id
        )
        if maneuver is not None:
            self._apply_maneuver(attacker, target, maneuver)
        if mastery is not None:
            self._apply_mastery(attacker, target, mastery, weapon)
        return False

    def _land_miss(
        self,
        attacker: Combatant,
        target: Combatant,
        result: AttackResult,
        melee: bool = True,
        is_opportunity_attack: bool = False,
    ) -> bool:
        """Pause for Riposte if the target can answer a melee miss.

        Returns:
            True if combat is now waiting on a reaction.
        """
        maneuvers = self._available_reaction_maneuvers(target, attacker, "on_miss", melee)
        if not maneuvers:
            return False
        self._pause_for_reaction(
            ReactionContext(
                trigger="on_miss",
                reacting_combatant_id=target.id,
                triggering_combatant_id=attacker.id,
                available_maneuvers=maneuvers,
                attack_total=result.attack_roll.total,
                target_ac=result.target_ac,
                is_opportunity_attack=is_opportunity_attack,
            )
        )
        return True

    def perform_opportunity_attack(self, attacker_id: str, target_id: str) -> AttackResult:
        """A reaction melee attack against a creature leaving reach."""
        attacker = self.get_combatant(attacker_id)
        target = self.get_combatant(target_id)
        if attacker.has_reacted:
            raise AlreadyActedError(f"{attacker.name} has already used their reaction")

        weapon, action = self._attack_source(attacker, use_ranged=False)
        attacker.has_reacted = True
        result = resolve_attack(
            attacker, target, weapon, action,
            combatants=self.state.combatants.values(),
            current_round=self.state.round,
            used_sneak_attack=attacker.used_sneak_attack_this_turn,
            rng=self.rng,
        )
        if result.sneak_attack_used:
            attacker.used_sneak_attack_this_turn = True
        self._after_attack_roll(attacker, target)
        self._log_attack(attacker, target, result, label="makes an opportunity attack on")
        if result.hit:
            self._land_hit(attacker, target, result, weapon=weapon, is_opportunity_attack=True)
        else:
            self._land_miss(attacker, target, result, is_opportunity_attack=True)
        return result

    def perform_attack(
        self,
        attacker_id: str,
        target_id: str,
        use_ranged: bool = False,
        advantage: bool = False,
        disadvantage: bool = False,
        maneuver: Maneuver | None = None,
    ) -> AttackResult:
        """Make one weapon attack as part of the Attack action.

        Extra Attack allows attacks_per_action attacks before the action is
        spent; Nick grants one more. Mastery effects are applied on a hit
        (or Graze on a miss), and Cleave rolls its second attack at once.
        Precision Attack spends its superiority die before the roll; on-hit
        maneuvers spend theirs only if the attack hits.

        Args:
            attacker_id: The current combatant.
            target_id: The creature attacked.
            use_ranged: Use the ranged weapon or ranged stat-block attack.
            advantage: Advantage from an outside source.
            disadvantage: Disadvantage from an outside source.
            maneuver: Maneuver declared with the attack.

        Returns:
            The AttackResult of the main attack.

        Raises:
            AlreadyActedError: No attacks left this turn.
            NoResourceRemainingError: Maneuver declared with no superiority dice left.
            OutOfRangeError: Target beyond reach or range.
            NoLineOfSightError: Ranged attack with no line of sight.
        """
        attacker = self.get_combatant(attacker_id)
        target = self.get_combatant(target_id)
        self._require_turn(attacker)
        self._require_can_act(attacker)
        if self.state.pending_movement is not None:
            raise InvalidPhaseError("Finish the pending movement first")
        if target.id == attacker.id:
            raise InvalidOperationError(f"{attacker.name} can't attack themselves")
        if target.is_dead or (target.is_monster and target.current_hp <= 0):
            raise InvalidOperationError(f"{target.name} is already down")

        bonus_attack = attacker.has_acted
        if bonus_attack and attacker.bonus_attacks_available <= 0:
            raise AlreadyActedError(f"{attacker.name} has no attacks left this turn")

        weapon, action = self._attack_source(attacker, use_ranged)
        check = can_attack_target(
            attacker, target, self.state.grid, weapon, action, self.opaque_zone_cells()
        )
        if not check.can_attack:
            if check.reason == "no_line_of_sight":
                raise NoLineOfSightError(
                    f"{attacker.name} can't see {target.name}",
                    details={"blocked_by": list(check.blocked_by) if check.blocked_by else None},
                )
            raise OutOfRangeError(f"{target.name} is out of range")

        if has_ranged_disadvantage(
            attacker, target, self.state.combatants.values(), weapon, action
        ):
            disadvantage = True

        extra_attack_bonus = 0
        if maneuver is not None:
            self._check_attack_maneuver(attacker, maneuver, weapon)
            if MANEUVER_TRIGGERS[maneuver] == "pre_attack":
                extra_attack_bonus = self._spend_superiority_die(attacker, maneuver).total

        result = resolve_attack(
            attacker, target, weapon, action,
            combatants=self.state.combatants.values(),
            current_round=self.state.round,
            advantage=advantage,
            disadvantage=disadvantage,
            used_sneak_attack=attacker.used_sneak_attack_this_turn,
            extra_attack_bonus=extra_attack_bonus,
            rng=self.rng,
        )

        if bonus_attack:
            attacker.bonus_attacks_available -= 1
        else:
            attacker.attacks_made_this_turn += 1
            per_action = attacker.actor.attacks_per_action if attacker.is_character else 1
            if attacker.attacks_made_this_turn >= per_action:
                attacker.has_acted = True
        if result.sneak_attack_used:
            attacker.used_sneak_attack_this_turn = True

        self._after_attack_roll(attacker, target)
        self._log_attack(attacker, target, result)

        if result.hit:
            mastery = apply_mastery_on_hit(
                attacker, target, weapon, self.state.grid,
                self.state.combatants.values(), self.state.round, self.rng,
            )
            outcome = None
            if maneuver is not None and MANEUVER_TRIGGERS[maneuver] == "on_hit":
                die = self._spend_superiority_die(attacker, maneuver)
                outcome = apply_on_hit_maneuver(
                    attacker, target, maneuver, die.total, result.attack_roll.total, weapon,
                    self.state.grid, self.state.combatants.values(), self.rng,
                )
                result.maneuver_damage = outcome.bonus_damage
            self._land_hit(
                attacker, target, result, mastery, weapon,
                melee=not is_ranged_attack(weapon, action), maneuver=outcome,
            )
        else:
            graze = apply_mastery_on_miss(attacker, weapon)
            if graze is not None and graze.applied:
                self.add_log_entry(
                    LogEntryType.DAMAGE, graze.description, actor=attacker, target=target
                )
                self.deal_damage(
                    target.id, graze.graze_damage, weapon.damage_type, attacker_id=attacker.id
                )
            if target.current_hp > 0:
                self._land_miss(
                    attacker, target, result, melee=not is_ranged_attack(weapon, action)
                )
        return result

    def _apply_mastery(
        self,
        attacker: Combatant,
        target: Combatant,
        mastery: MasteryResult,
        weapon: Weapon | None,
    ) -> None:
        if not mastery.applied:
            self.add_log_entry(
                LogEntryType.OTHER, mastery.description, actor=attacker, target=target
            )
            return
        target_standing = target.current_hp > 0
        if target_standing and mastery.push_to is not None:
            self._vacate(target)
            target.position = mastery.push_to
            self._occupy(target)
        if target_standing and mastery.condition is not None:
            self._add_condition(
                target,
                ActiveCondition(
                    condition=mastery.condition,
                    duration=mastery.condition_duration,
                    source=f"mastery:{attacker.id}",
                ),
            )
        if target_standing and mastery.speed_reduction:
            target.speed_reduction = max(target.speed_reduction, mastery.speed_reduction)
        if mastery.vex_expires_on_round is not None:
            target.vexed_by = VexedBy(
                attacker_id=attacker.id, expires_on_round=mastery.vex_expires_on_round
            )
        if mastery.allows_extra_attack:
            attacker.used_nick_this_turn = True
            attacker.bonus_attacks_available += 1
        self.add_log_entry(
            LogEntryType.OTHER, mastery.description, actor=attacker, target=target
        )

        if mastery.cleave_target_ids:
            attacker.used_cleave_this_turn = True
            second = self.state.combatants.get(mastery.cleave_target_ids[0])
            if second is not None and second.current_hp > 0:
                self._cleave_attack(attacker, second, weapon)

    def _cleave_attack(self, attacker: Combatant, target: Combatant, weapon: Weapon) -> None:
        result = resolve_attack(
            attacker, target, weapon,
            combatants=self.state.combatants.values(),
            current_round=self.state.round,
            used_sneak_attack=attacker.used_sneak_attack_this_turn,
            rng=self.rng,
        )
        if result.sneak_attack_used:
            attacker.used_sneak_attack_this_turn = True
        self._after_attack_roll(attacker, target)
        self._log_attack(attacker, target, result, label="cleaves into")
        melee = not is_ranged_attack(weapon)
        if result.hit:
            self._land_hit(attacker, target, result, weapon=weapon, melee=melee)
        else:
            self._land_miss(attacker, target, result, melee=melee)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    def _finish_reaction(self) -> ReactionContext:
        self._require_phase(CombatPhase.AWAITING_REACTION)
        context = self.state.pending_reaction
        self.state.pending_reaction = None
        self.state.phase = CombatPhase.COMBAT
        return context

    def _resume_after_reaction(self) -> None:
        if self.state.phase == CombatPhase.COMBAT and self.state.pending_movement is not None:
            self.finish_movement_animation()

    @staticmethod
    def _weapon_by_id(combatant: Combatant, weapon_id: str | None) -> Weapon | None:
        actor = combatant.actor
        if weapon_id is None or not isinstance(actor, Character):
            return None
        for weapon in (actor.melee_weapon, actor.ranged_weapon):
            if weapon is not None and weapon.id == weapon_id:
                return weapon
        return None

    def _apply_pending_hit(self, context: ReactionContext, damage_reduction: int = 0) -> None:
        target = self.get_combatant(context.reacting_combatant_id)
        attacker = self.state.combatants.get(context.triggering_combatant_id)
        self.deal_damage(
            target.id, context.damage - damage_reduction, context.damage_type,
            context.is_critical, attacker.id if attacker else None,
        )
        if attacker is None:
            return
        if context.pending_maneuver is not None:
            self._apply_maneuver(attacker, target, context.pending_maneuver)
        if context.pending_mastery is not None:
            weapon = self._weapon_by_id(attacker, context.weapon_id)
            self._apply_mastery(attacker, target, context.pending_mastery, weapon)

    def resolve_reaction(
        self, spell_id: str | None = None, maneuver: Maneuver | None = None
    ) -> bool:
        """Take the offered reaction and finish the paused attack.

        With neither argument the first offered spell is cast, or failing
        that the first offered maneuver is used.

        Args:
            spell_id: Which available reaction spell to cast.
            maneuver: Which available reaction maneuver (Parry, Riposte) to use.

        Returns:
            True if the attack was turned into a miss.

        Raises:
            InvalidPhaseError: If no reaction is pending.
            InvalidOperationError: If the choice isn't one of the options.
        """
        self._require_phase(CombatPhase.AWAITING_REACTION)
        context = self.state.pending_reaction
        if spell_id is not None and maneuver is not None:
            raise InvalidOperationError("Choose a reaction spell or a maneuver, not both")
        if spell_id is None and maneuver is None:
            if context.available_spell_ids:
                spell_id = context.available_spell_ids[0]
            else:
                maneuver = context.available_maneuvers[0]
        if spell_id is not None and spell_id not in context.available_spell_ids:
            raise InvalidOperationError(
                f"'{spell_id}' is not an available reaction",
                details={"available": context.available_spell_ids},
            )
        if maneuver is not None and maneuver not in context.available_maneuvers:
            raise InvalidOperationError(
                f"'{maneuver.value}' is not an available reaction",
                details={"available": [m.value for m in context.available_maneuvers]},
            )
        context = self._finish_reaction()

        reactor = self.get_combatant(context.reacting_combatant_id)
        if maneuver is not None:
            blocked = self._react_with_maneuver(reactor, context, maneuver)
        else:
            blocked = self._react_with_spell(reactor, context, spell_id)
        self._resume_after_reaction()
        return blocked

    def _react_with_spell(
        self, reactor: Combatant, context: ReactionContext, spell_id: str
    ) -> bool:
        character = reactor.actor
        spell = get_known_spell(character, spell_id)
        slot_level = self._lowest_slot(character, spell.level)
        if slot_level is None:
            raise NoResourceRemainingError(f"{reactor.name} has no spell slots left")
        if slot_level > 0:
            character.spell_slots[slot_level].current -= 1
        reactor.has_reacted = True
        self._add_condition(
            reactor,
            ActiveCondition(
                condition=Condition.SHIELDED,
                duration=1,
                source=spell_source(reactor.id, spell),
                ac_bonus=spell.reaction.ac_bonus,
            ),
        )

        new_ac = get_armor_class(reactor)
        blocked = context.attack_total < new_ac
        self.add_log_entry(
            LogEntryType.SPELL,
            f"{reactor.name} casts {spell.name}: AC {new_ac}"
            + (", the attack misses" if blocked else ", the attack still hits"),
            actor=reactor,
            details=f"attack total {context.attack_total} vs AC {new_ac}",
        )
        if not blocked:
            self._apply_pending_hit(context)
        return blocked

    def _react_with_maneuver(
        self, reactor: Combatant, context: ReactionContext, maneuver: Maneuver
    ) -> bool:
        die = self._spend_superiority_die(reactor, maneuver)
        reactor.has_reacted = True
        if maneuver == Maneuver.PARRY:
            reduction = parry_reduction(reactor, die.total, context.damage)
            self.add_log_entry(
                LogEntryType.OTHER,
                f"{reactor.name} parries, turning aside {reduction} damage",
                actor=reactor,
            )
            self._apply_pending_hit(context, reduction)
            return False

        attacker = self.state.combatants.get(context.triggering_combatant_id)
        if attacker is not None and attacker.current_hp > 0:
            self._riposte(reactor, attacker, die.total)
        return False

    def _riposte(self, reactor: Combatant, target: Combatant, die_roll: int) -> None:
        weapon = reactor.actor.melee_weapon
        result = resolve_attack(
            reactor, target, weapon,
            combatants=self.state.combatants.values(),
            current_round=self.state.round,
            used_sneak_attack=reactor.used_sneak_attack_this_turn,
            rng=self.rng,
        )
        if result.sneak_attack_used:
            reactor.used_sneak_attack_this_turn = True
        self._after_attack_roll(reactor, target)
        self._log_attack(reactor, target, result, label="ripostes against")
        if result.hit:
            result.maneuver_damage = die_roll
            mastery = apply_mastery_on_hit(
                reactor, target, weapon, self.state.grid,
                self.state.combatants.values(), self.state.round, self.rng,
            )
            self._land_hit(reactor, target, result, mastery, weapon)
        else:
            self._land_miss(reactor, target, result)

    def skip_reaction(self) -> None:
        """Decline the reaction; a paused hit lands as rolled."""
        context = self._finish_reaction()
        reactor = self.state.combatants.get(context.reacting_combatant_id)
        self.add_log_entry(LogEntryType.OTHER, "No reaction taken", actor=reactor)
        if context.trigger == "on_hit":
            self._apply_pending_hit(context)
        self._resume_after_reaction()

    # ------------------------------------------------------------------
    # Spells
    # ------------------------------------------------------------------

    def end_concentration(self, combatant_id: str) -> None:
        """Drop the caster's concentration and every effect tied to it."""
        caster = self.get_combatant(combatant_id)
        source = caster.concentration_source
        if source is None:
            return
        self.remove_conditions_by_source(source)
        self.state.zones = [z for z in self.state.zones if z.source != source]
        self.add_log_entry(
            LogEntryType.SPELL,
            f"{caster.name} loses concentration on {caster.concentrating_on}",
            actor=caster,
        )
        caster.concentrating_on = None
        caster.concentration_source = None

    def cast_spell(
        self,
        caster_id: str,
        spell_id: str,
        slot_level: int | None = None,
        target_ids: list[str] | None = None,
        target_position: tuple[int, int] | None = None,
        projectile_assignments: dict[str, int] | None = None,
    ) -> SpellCastResult:
        """Cast a spell on the caster's turn and apply its effects.

        Args:
            caster_id: The current combatant.
            spell_id: One of the caster's spells.
            slot_level: Slot to spend; defaults to the spell's level.
            target_ids: Chosen targets for targeted spells.
            target_position: Aim point for area spells.
            projectile_assignments: target_id -> projectiles, for Magic Missile.

        Returns:
            The SpellCastResult that was applied.

        Raises:
            AlreadyActedError: Action or bonus action already spent.
            NoResourceRemainingError: No slot of that level left.
            OutOfRangeError: A target is beyond range.
            NoLineOfSightError: A target can't be seen.
        """
        caster = self.get_combatant(caster_id)
        self._require_turn(caster)
        self._require_can_act(caster)
        if self.state.pending_movement is not None:
            raise InvalidPhaseError("Finish the pending movement first")
        character = caster.actor
        if not isinstance(character, Character):
            raise InvalidOperationError(f"{caster.name} cannot cast spells")
        spell = get_known_spell(character, spell_id)
        level = validate_spell_cast(caster, spell, slot_level)

        source = spell_source(caster.id, spell)
        cast, zone = resolve_spell(
            caster, spell, level, self.state.grid, self.state.combatants,
            target_ids=target_ids,
            target_position=target_position,
            projectile_assignments=projectile_assignments,
            current_round=self.state.round,
            blocking_cells=self.opaque_zone_cells(),
            source=source,
            rng=self.rng,
        )

        if spell.concentration and caster.concentration_source is not None:
            self.end_concentration(caster.id)
        if level > 0:
            character.spell_slots[level].current -= 1
        if spell.casting_time == CastingTime.BONUS_ACTION:
            caster.has_bonus_acted = True
        else:
            caster.has_acted = True

        slot_text = f" at level {level}" if level > spell.level else ""
        self.add_log_entry(
            LogEntryType.SPELL, f"{caster.name} casts {spell.name}{slot_text}", actor=caster
        )

        save_dc = spell_save_dc(character) if spell.repeat_save else None
        for outcome in cast.targets:
            target = self.state.combatants.get(outcome.target_id)
            if target is None:
                continue
            self.add_log_entry(
                LogEntryType.SPELL,
                self._spell_outcome_message(spell, outcome),
                actor=caster,
                target=target,
                details=outcome.breakdown or None,
            )
            if outcome.damage > 0:
                self.deal_damage(
                    target.id, outcome.damage, outcome.damage_type, outcome.critical, caster.id
                )
            if outcome.conditions and not target.is_dead:
                for active in build_spell_conditions(
                    outcome.conditions, spell.condition_duration, source,
                    spell.repeat_save, save_dc, spell.ends_on_damage,
                ):
                    self._add_condition(target, active)

        if spell.conditions_on_self:
            for active in build_spell_conditions(
                spell.conditions_on_self, spell.condition_duration, source
            ):
                self._add_condition(caster, active)

        if zone is not None:
            self.state.zones.append(zone)
        if spell.concentration:
            caster.concentrating_on = spell.id
            caster.concentration_source = source
        return cast

    @staticmethod
    def _spell_outcome_message(spell: Spell, outcome) -> str:
        if outcome.hit is False:
            return f"{spell.name} misses {outcome.target_name}"
        parts = []
        if outcome.save is not None:
            parts.append("saves" if outcome.save.success else "fails the save")
        if outcome.damage:
            parts.append(f"takes {outcome.damage} {outcome.damage_type} damage")
        if outcome.conditions:
            parts.append("is " + ", ".join(c.value for c in outcome.conditions))
        if not parts:
            parts.append("is unaffected")
        return f"{outcome.target_name} " + " and ".join(parts)

    # ------------------------------------------------------------------
    # Hit points
    # ------------------------------------------------------------------

    def deal_damage(
        self,
        target_id: str,
        amount: int,
        damage_type: str | None = None,
        critical: bool = False,
        attacker_id: str | None = None,
    ) -> int:
        """Reduce a combatant's hit points and handle what follows.

        Temporary HP absorbs damage first. A character dropping to 0 falls
        unconscious (or stays at 1 HP with Relentless Endurance); a monster
        at 0 is slain. Damage to a dying character adds a failed death save
        (two on a crit). Conditions that end on damage end, repeat saves on
        damage are rolled, concentration is checked, and the win/loss check
        runs last.

        Args:
            target_id: The damaged combatant.
            amount: Damage before temporary HP.
            damage_type: For the log.
            critical: Whether the hit was a critical.
            attacker_id: Source of the damage, for the log.

        Returns:
            Hit points actually lost.
        """
        target = self.get_combatant(target_id)
        attacker = self.state.combatants.get(attacker_id) if attacker_id else None
        if amount <= 0 or target.is_dead:
            return 0
        type_text = f" {damage_type}" if damage_type else ""

        if target.current_hp <= 0:
            if target.is_character:
                target.is_stable = False
                target.death_saves.failures += 2 if critical else 1
                self.add_log_entry(
                    LogEntryType.DAMAGE,
                    f"{target.name} takes damage while dying "
                    f"({target.death_saves.failures} failure(s))",
                    actor=attacker,
                    target=target,
                )
                if target.is_dead:
                    self._on_character_death(target)
            self.check_combat_end()
            return 0

        absorbed = min(target.temporary_hp, amount)
        target.temporary_hp -= absorbed
        lost = amount - absorbed
        target.current_hp -= lost
        self.add_log_entry(
            LogEntryType.DAMAGE,
            f"{target.name} takes {amount}{type_text} damage",
            actor=attacker,
            target=target,
            details=f"{absorbed} absorbed by temporary HP" if absorbed else None,
        )

        self._remove_conditions_ending_on_damage(target)

        if target.current_hp <= 0:
            self._drop_to_zero(target)
        else:
            self._run_repeat_saves(target, on_damage=True)
            self._check_concentration(target, amount)

        self.check_combat_end()
        return lost

    def _drop_to_zero(self, target: Combatant) -> None:
        actor = target.actor
        if isinstance(actor, Character):
            key = RacialTrait.RELENTLESS_ENDURANCE.value
            if actor.has_trait(RacialTrait.RELENTLESS_ENDURANCE) and \
                    target.racial_ability_uses.get(key, 0) == 0:
                target.racial_ability_uses[key] = 1
                target.current_hp = 1
                self.add_log_entry(
                    LogEntryType.OTHER,
                    f"{target.name}'s Relentless Endurance keeps them on their feet",
                    target=target,
                )
                return
            target.current_hp = 0
            self._add_condition(
                target,
                ActiveCondition(
                    condition=Condition.UNCONSCIOUS, duration=INDEFINITE, source=DYING_SOURCE
                ),
            )
            self.add_log_entry(
                LogEntryType.DEATH, f"{target.name} falls unconscious", target=target
            )
        else:
            target.current_hp = 0
            self._add_condition(
                target, ActiveCondition(condition=Condition.PRONE, duration=INDEFINITE)
            )
            self.add_log_entry(LogEntryType.DEATH, f"{target.name} is slain", target=target)
            logger.info("%s is slain", target.name)
        if target.concentration_source is not None:
            self.end_concentration(target.id)

    def _on_character_death(self, target: Combatant) -> None:
        self.add_log_entry(LogEntryType.DEATH, f"{target.name} has died", target=target)
        logger.info("%s has died", target.name)
        if target.concentration_source is not None:
            self.end_concentration(target.id)

    def _saving_throw(
        self, combatant: Combatant, ability: Ability, dc: int, advantage: bool = False
    ) -> SavingThrowResult:
        """Roll a save the engine owns; a failure spends Indomitable if one is left."""
        save = roll_saving_throw(combatant, ability, dc, advantage=advantage, rng=self.rng)
        if save.success or feature_uses_remaining(combatant, ClassFeature.INDOMITABLE) <= 0:
            return save
        self._spend_feature_use(combatant, ClassFeature.INDOMITABLE)
        bonus = indomitable_bonus(combatant.actor)
        save = roll_saving_throw(
            combatant, ability, dc, advantage=advantage, bonus=bonus, rng=self.rng
        )
        self.add_log_entry(
            LogEntryType.OTHER,
            f"{combatant.name} uses Indomitable to reroll the save",
            actor=combatant,
            details=f"{save.roll.breakdown} vs DC {dc}",
        )
        return save

    def _check_concentration(self, target: Combatant, damage: int) -> None:
        """Constitution save (DC 10 or half the damage) to keep concentrating."""
        if target.concentration_source is None:
            return
        dc = max(10, damage // 2)
        save = self._saving_throw(target, Ability.CONSTITUTION, dc)
        if not save.success:
            self.end_concentration(target.id)

    def heal_damage(self, target_id: str, amount: int) -> int:
        """Restore hit points up to the maximum.

        Healing a character at 0 HP clears death saves and wakes them.

        Returns:
            Hit points actually restored.
        """
        target = self.get_combatant(target_id)
        if amount <= 0 or target.is_dead:
            return 0
        was_down = target.current_hp <= 0
        before = max(0, target.current_hp)
        target.current_hp = min(target.max_hp, before + amount)
        healed = target.current_hp - before

        if was_down and target.is_character:
            target.death_saves = DeathSaves()
            target.is_stable = False
            target.conditions = [c for c in target.conditions if c.source != DYING_SOURCE]
        self.add_log_entry(
            LogEntryType.HEAL, f"{target.name} regains {healed} HP", target=target
        )
        return healed

    def make_death_save(self, combatant_id: str) -> DeathSaveResult:
        """Roll a death save for a dying character.

        Raises:
            InvalidOperationError: If the combatant isn't a dying character.
        """
        combatant = self.get_combatant(combatant_id)
        if not combatant.is_character or combatant.current_hp > 0 or combatant.is_dead:
            raise InvalidOperationError(f"{combatant.name} isn't making death saves")
        if combatant.is_stable:
            raise InvalidOperationError(f"{combatant.name} is already stable")

        result = roll_death_save(self.rng)
        saves = combatant.death_saves
        if result.critical_success:
            combatant.current_hp = 1
            combatant.death_saves = DeathSaves()
            combatant.conditions = [c for c in combatant.conditions if c.source != DYING_SOURCE]
            message = f"{combatant.name} rolls a natural 20 and regains 1 HP"
        elif result.critical_failure:
            saves.failures += 2
            message = f"{combatant.name} rolls a natural 1 on a death save (two failures)"
        elif result.success:
            saves.successes += 1
            message = f"{combatant.name} succeeds on a death save ({saves.successes}/3)"
        else:
            saves.failures += 1
            message = f"{combatant.name} fails a death save ({saves.failures}/3)"
        self.add_log_entry(
            LogEntryType.DEATH, message, actor=combatant, details=result.roll.breakdown
        )

        if combatant.death_saves.successes >= 3:
            self.stabilize(combatant_id)
        elif combatant.is_dead:
            self._on_character_death(combatant)
            self.check_combat_end()
        return result

    def stabilize(self, combatant_id: str) -> Combatant:
        """Mark a dying character stable; they stay unconscious at 0 HP."""
        combatant = self.get_combatant(combatant_id)
        if not combatant.is_character or combatant.current_hp > 0 or combatant.is_dead:
            raise InvalidOperationError(f"{combatant.name} can't be stabilized")
        combatant.is_stable = True
        combatant.death_saves = DeathSaves()
        self.add_log_entry(LogEntryType.OTHER, f"{combatant.name} is stable", target=combatant)
        return combatant

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _add_condition(self, target: Combatant, active: ActiveCondition) -> ActiveCondition:
        target.conditions = [
            c for c in target.conditions
            if not (c.condition == active.condition and c.source == active.source)
        ]
        target.conditions.append(active)
        if active.condition in _SIZE_CONDITIONS:
            self._sync_occupancy(target)
        self.add_log_entry(
            LogEntryType.CONDITION,
            f"{target.name} is {active.condition.value}",
            target=target,
        )
        return active

    def apply_condition(
        self,
        target_id: str,
        condition: Condition,
        duration: int | None = None,
        source: str | None = None,
    ) -> ActiveCondition:
        """Give a combatant a condition, replacing one from the same source."""
        target = self.get_combatant(target_id)
        return self._add_condition(
            target, ActiveCondition(condition=condition, duration=duration, source=source)
        )

    def remove_condition(self, target_id: str, condition: Condition) -> bool:
        """Remove every instance of a condition. Returns True if any was removed."""
        target = self.get_combatant(target_id)
        before = len(target.conditions)
        target.conditions = [c for c in target.conditions if c.condition != condition]
        removed = len(target.conditions) != before
        if removed and condition in _SIZE_CONDITIONS:
            self._sync_occupancy(target)
        return removed

    def remove_conditions_by_source(self, source: str) -> int:
        """Remove every condition with the source from every combatant.

        Returns:
            How many conditions were removed.
        """
        removed = 0
        for combatant in self.state.combatants.values():
            kept = [c for c in combatant.conditions if c.source != source]
            count = len(combatant.conditions) - len(kept)
            if count:
                resize = any(
                    c.condition in _SIZE_CONDITIONS
                    for c in combatant.conditions if c.source == source
                )
                combatant.conditions = kept
                removed += count
                if resize:
                    self._sync_occupancy(combatant)
        return removed

    def _clear_casting(self, combatant: Combatant, active: ActiveCondition) -> None:
        """Remove a condition and its siblings from the same casting, on this creature only."""
        if active.source:
            doomed = [c for c in combatant.conditions if c.source == active.source]
        else:
            doomed = [active]
        combatant.conditions = [c for c in combatant.conditions if c not in doomed]
        if any(c.condition in _SIZE_CONDITIONS for c in doomed):
            self._sync_occupancy(combatant)

    def _remove_conditions_ending_on_damage(self, target: Combatant) -> None:
        ending = [c for c in target.conditions if c.ends_on_damage]
        for active in ending:
            self._clear_casting(target, active)
            self.add_log_entry(
                LogEntryType.CONDITION,
                f"Taking damage ends {target.name}'s {active.condition.value} condition",
                target=target,
            )

    def _run_repeat_saves(self, combatant: Combatant, on_damage: bool) -> None:
        """Repeat saves at the end of the creature's turn or when it takes damage.

        Success ends the creature's conditions from that casting. Failure may
        upgrade the condition, which then gets no further repeat save.
        """
        for active in list(combatant.conditions):
            repeat = active.repeat_save
            if repeat is None or active not in combatant.conditions:
                continue
            if on_damage and not repeat.on_damage:
                continue
            if not on_damage and not repeat.on_end_of_turn:
                continue

            advantage = on_damage and repeat.advantage_on_damage
            save = self._saving_throw(combatant, repeat.ability, repeat.dc, advantage=advantage)
            if save.success:
                self._clear_casting(combatant, active)
                self.add_log_entry(
                    LogEntryType.CONDITION,
                    f"{combatant.name} shakes off {active.condition.value}",
                    target=combatant,
                    details=f"{save.roll.breakdown} vs DC {repeat.dc}",
                )
            elif repeat.upgrade_to is not None:
                active.condition = repeat.upgrade_to
                active.ends_on_damage = repeat.upgrade_ends_on_damage
                active.repeat_save = None
                self.add_log_entry(
                    LogEntryType.CONDITION,
                    f"{combatant.name} becomes {repeat.upgrade_to.value}",
                    target=combatant,
                    details=f"{save.roll.breakdown} vs DC {repeat.dc}",
                )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def process_intent(self, request: ActionRequest) -> ActionResult:
        """Carry out an intent from an AI or HTTP controller.

        Rejected operations come back as a failed ActionResult rather than
        an exception.

        Args:
            request: The requested action.

        Returns:
            ActionResult describing what happened.
        """
        try:
            return self._dispatch(request)
        except InvalidOperationError as e:
            logger.debug("Rejected %s from %s: %s", request.action_type.value,
                         request.combatant_id, e.message)
            return ActionResult(
                success=False,
                action_type=request.action_type,
                description=e.message,
                error=e.message,
                error_code=e.code.value,
            )

    def _dispatch(self, request: ActionRequest) -> ActionResult:
        actor = self.get_combatant(request.combatant_id)
        action_type = request.action_type

        if action_type == ActionType.MOVE:
            if request.target_position is None:
                raise InvalidOperationError("A move needs a target_position")
            pending = self.move_combatant(actor.id, request.target_position)
            moved = self.finish_movement_animation()
            if moved is not None:
                description = f"{actor.name} moves to {moved.position}."
            elif self.state.phase == CombatPhase.AWAITING_REACTION:
                description = f"{actor.name}'s move is paused for a reaction."
            else:
                description = f"{actor.name}'s move was interrupted."
            return ActionResult(
                success=True,
                action_type=action_type,
                description=description,
                movement_path=pending.path,
            )

        if action_type == ActionType.ATTACK:
            if request.target_id is None:
                raise InvalidOperationError("An attack needs a target_id")
            target = self.get_combatant(request.target_id)
            result = self.perform_attack(
                actor.id, target.id, use_ranged=request.use_ranged, maneuver=request.maneuver
            )
            if result.hit:
                description = f"{actor.name} hits {target.name}."
            else:
                description = f"{actor.name} misses {target.name}."
            return ActionResult(
                success=True,
                action_type=action_type,
                description=description,
                attack_roll=result.attack_roll.total,
                hit=result.hit,
                damage_dealt=result.total_damage if result.hit else 0,
                target_hp_remaining=target.current_hp,
            )

        if action_type == ActionType.CAST_SPELL:
            if request.spell_id is None:
                raise InvalidOperationError("A spell cast needs a spell_id")
            target_ids = request.target_ids or ([request.target_id] if request.target_id else [])
            cast = self.cast_spell(
                actor.id,
                request.spell_id,
                slot_level=request.slot_level,
                target_ids=target_ids,
                target_position=request.target_position,
                projectile_assignments=request.projectile_assignments or None,
            )
            return ActionResult(
                success=True,
                action_type=action_type,
                description=f"{actor.name} casts {request.spell_id}.",
                damage_dealt=sum(t.damage for t in cast.targets),
            )

        if action_type == ActionType.DASH:
            self.use_dash(actor.id)
            description = f"{actor.name} takes the Dash action."
        elif action_type == ActionType.DODGE:
            self.use_dodge(actor.id)
            description = f"{actor.name} takes the Dodge action."
        elif action_type == ActionType.DISENGAGE:
            self.use_disengage(actor.id)
            description = f"{actor.name} takes the Disengage action."
        elif action_type == ActionType.SECOND_WIND:
            healed = self.use_second_wind(actor.id)
            description = f"{actor.name} uses Second Wind and regains {healed} HP."
        elif action_type == ActionType.ACTION_SURGE:
            self.use_action_surge(actor.id)
            description = f"{actor.name} surges into another action."
        elif action_type == ActionType.CUNNING_ACTION:
            if request.cunning_action is None:
                raise InvalidOperationError("A cunning action needs Dash or Disengage")
            self.use_cunning_action(actor.id, request.cunning_action)
            description = f"{actor.name} takes a cunning {request.cunning_action.value}."
        elif action_type == ActionType.MANEUVER:
            if request.maneuver is None:
                raise InvalidOperationError("A maneuver intent needs a maneuver")
            self.use_maneuver(actor.id, request.maneuver)
            description = f"{actor.name} uses {maneuver_name(request.maneuver)}."
        elif action_type == ActionType.END_TURN:
            self._require_turn(actor)
            self.next_turn()
            description = f"{actor.name} ends their turn."
        else:
            raise InvalidOperationError(f"Unknown action type {action_type}")
        return ActionResult(success=True, action_type=action_type, description=description)


def save_state(state: CombatState, path: str) -> None:
    """Persist combat state to a JSON file.

    Writes to a temporary file first, then renames for atomicity.
    """
    tmp_path = path + ".tmp"
    data = state.model_dump(mode="json")
    with open(tmp_path, "w") as f:
        json.dump(data, f, default=str)
    os.replace(tmp_path, path)


def load_state(path: str) -> CombatState | None:
    """Load combat state from a JSON file, or None if it doesn't exist."""
    if not Path(path).exists():
        return None
    with open(path) as f:
        data = json.load(f)
    return CombatState.model_validate(data)
