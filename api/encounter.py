"""Encounter setup, intent submission, reaction, and log endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from config import SAVE_FILE
from engine.combat import CombatEngine, save_state
from engine.placement import MonsterGroup
from models.actions import ActionRequest, ActionResult
from models.creatures import Actor, Character, Maneuver
from models.grid import GridCell

router = APIRouter()


class AddCombatantRequest(BaseModel):
    """Request body for adding a stat block to the roster."""
    actor: Actor
    position: tuple[int, int] | None = None
    combatant_id: str | None = None
    name: str | None = None


class PlaceCombatantRequest(BaseModel):
    position: tuple[int, int]


class SetupEncounterRequest(BaseModel):
    """Request body for a quick setup with automatic placement."""
    characters: list[Character] = []
    monster_groups: list[MonsterGroup] = []
    width: int | None = None
    height: int | None = None
    auto_start: bool = False


class ReactionRequest(BaseModel):
    spell_id: str | None = None
    maneuver: Maneuver | None = None


def _get_engine(request: Request) -> CombatEngine:
    """Get the singleton combat engine from app state."""
    return request.app.state.engine


def _save(engine: CombatEngine) -> None:
    if SAVE_FILE:
        save_state(engine.state, SAVE_FILE)


def _summary(engine: CombatEngine) -> dict:
    state = engine.state
    current = engine.current_combatant()
    return {
        "phase": state.phase.value,
        "round": state.round,
        "current_combatant_id": current.id if current else None,
        "turn_order": state.turn_order,
        "pending_reaction": (
            state.pending_reaction.model_dump(mode="json") if state.pending_reaction else None
        ),
    }


@router.get("/state")
def get_state(request: Request) -> dict:
    """Full combat state: grid, roster, zones and pending decisions."""
    engine = _get_engine(request)
    return engine.state.model_dump(mode="json", exclude={"log"})


@router.get("/log")
def get_log(request: Request, since: int = 0) -> list[dict]:
    """Combat log entries, optionally skipping the first `since` entries."""
    engine = _get_engine(request)
    return [entry.model_dump(mode="json") for entry in engine.state.log[since:]]


@router.post("/setup")
def setup_encounter(body: SetupEncounterRequest, request: Request) -> dict:
    """Replace the encounter with a freshly placed one."""
    engine = _get_engine(request)
    placed = engine.setup_encounter(
        body.characters, body.monster_groups, body.width, body.height, body.auto_start
    )
    _save(engine)
    return {
        "combatants": [
            {"id": c.id, "name": c.name, "position": c.position} for c in placed
        ],
        **_summary(engine),
    }


@router.put("/grid/cells")
def update_cells(cells: list[GridCell], request: Request) -> dict:
    """Set terrain, obstacles, elevation or stairs on cells during setup."""
    engine = _get_engine(request)
    for cell in cells:
        engine.update_cell(cell)
    _save(engine)
    return {"updated": len(cells)}


@router.post("/combatants", status_code=201)
def add_combatant(body: AddCombatantRequest, request: Request) -> dict:
    """Add a character or monster during setup."""
    engine = _get_engine(request)
    combatant = engine.add_combatant(body.actor, body.position, body.combatant_id, body.name)
    _save(engine)
    return combatant.model_dump(mode="json")


@router.put("/combatants/{combatant_id}/position")
def place_combatant(combatant_id: str, body: PlaceCombatantRequest, request: Request) -> dict:
    engine = _get_engine(request)
    combatant = engine.place_combatant(combatant_id, body.position)
    _save(engine)
    return {"id": combatant.id, "position": combatant.position}


@router.delete("/combatants/{combatant_id}")
def remove_combatant(combatant_id: str, request: Request) -> dict:
    engine = _get_engine(request)
    engine.remove_combatant(combatant_id)
    _save(engine)
    return {"removed": combatant_id}


@router.get("/combatants/{combatant_id}/reachable")
def get_reachable(combatant_id: str, request: Request) -> list[dict]:
    """Squares the combatant can move to, with their cost in feet."""
    engine = _get_engine(request)
    reachable = engine.get_reachable_positions(combatant_id)
    return [{"position": pos, "cost": cost} for pos, cost in sorted(reachable.items())]


@router.get("/combatants/{combatant_id}/targets")
def get_targets(combatant_id: str, request: Request, ranged: bool = False) -> list[str]:
    engine = _get_engine(request)
    return [c.id for c in engine.get_valid_targets(combatant_id, use_ranged=ranged)]


@router.post("/start")
def start_combat(request: Request) -> dict:
    """Roll initiative and begin round 1."""
    engine = _get_engine(request)
    order = engine.start_combat()
    _save(engine)
    return {
        "initiative_order": [{"id": c.id, "initiative": c.initiative} for c in order],
        **_summary(engine),
    }


@router.post("/intents", response_model=ActionResult)
def submit_intent(intent: ActionRequest, request: Request) -> ActionResult:
    """Submit an intent for the current combatant.

    Rejected intents return 400 with the engine's reason.
    """
    engine = _get_engine(request)
    result = engine.process_intent(intent)
    if not result.success:
        raise HTTPException(
            status_code=400,
            detail={"code": result.error_code, "message": result.error},
        )
    _save(engine)
    return result


@router.post("/next-turn")
def next_turn(request: Request) -> dict:
    engine = _get_engine(request)
    engine.next_turn()
    _save(engine)
    return _summary(engine)


@router.post("/reaction")
def resolve_reaction(body: ReactionRequest, request: Request) -> dict:
    """Take the offered reaction (spell or maneuver) and finish the paused attack."""
    engine = _get_engine(request)
    blocked = engine.resolve_reaction(body.spell_id, body.maneuver)
    _save(engine)
    return {"blocked": blocked, **_summary(engine)}


@router.post("/reaction/skip")
def skip_reaction(request: Request) -> dict:
    engine = _get_engine(request)
    engine.skip_reaction()
    _save(engine)
    return _summary(engine)


@router.post("/end")
def end_combat(request: Request) -> dict:
    """Return to setup, keeping the roster and grid."""
    engine = _get_engine(request)
    engine.end_combat()
    _save(engine)
    return _summary(engine)
