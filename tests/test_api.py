"""Tests for the encounter HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from engine.combat import CombatEngine
from main import app

from factories import (
    SHIELD,
    ScriptedRandom,
    make_battle_master,
    make_character,
    make_monster,
    make_wizard,
    start_with_turn,
)


@pytest.fixture
def engine():
    """Fresh in-memory engine for each test."""
    engine = CombatEngine(width=10, height=10, rng=ScriptedRandom())
    app.state.engine = engine
    return engine


@pytest.fixture
def client(engine):
    return TestClient(app)


def _add(client, actor, position):
    return client.post(
        "/encounter/combatants",
        json={"actor": actor.model_dump(mode="json"), "position": list(position)},
    )


class TestServerInfo:
    """Tests for / and /health."""

    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    def test_health(self, client):
        assert client.get("/health").json() == {"healthy": True}


class TestSetupEndpoints:
    """Tests for roster and grid setup."""

    def test_add_combatant(self, client, engine):
        resp = _add(client, make_character(), (0, 0))
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == "hero"
        assert body["current_hp"] == 20
        assert engine.state.grid[0][0].occupied_by == "hero"

    def test_add_monster_stat_block(self, client, engine):
        resp = _add(client, make_monster(), (5, 5))
        assert resp.status_code == 201
        assert engine.get_combatant("goblin").is_monster

    def test_duplicate_rejected_with_code(self, client):
        _add(client, make_character(), (0, 0))
        resp = _add(client, make_character(), (1, 1))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_OPERATION"

    def test_blocked_position(self, client):
        _add(client, make_character(), (0, 0))
        resp = _add(client, make_monster(), (0, 0))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "DESTINATION_BLOCKED"

    def test_place_and_remove(self, client, engine):
        _add(client, make_character(), (0, 0))
        resp = client.put("/encounter/combatants/hero/position", json={"position": [3, 4]})
        assert resp.status_code == 200
        assert engine.get_combatant("hero").position == (3, 4)

        assert client.delete("/encounter/combatants/hero").json() == {"removed": "hero"}
        assert engine.state.combatants == {}

    def test_remove_unknown(self, client):
        resp = client.delete("/encounter/combatants/ghost")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_update_cells(self, client, engine):
        resp = client.put(
            "/encounter/grid/cells",
            json=[
                {"x": 2, "y": 2, "terrain": "difficult"},
                {"x": 3, "y": 3, "obstacle": {"type": "wall"}},
            ],
        )
        assert resp.json() == {"updated": 2}
        assert engine.state.grid[2][2].terrain.value == "difficult"
        assert engine.state.grid[3][3].obstacle is not None

    def test_setup_places_groups(self, client):
        resp = client.post(
            "/encounter/setup",
            json={
                "characters": [make_character().model_dump(mode="json")],
                "monster_groups": [
                    {"monster": make_monster().model_dump(mode="json"), "count": 2}
                ],
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert [c["id"] for c in body["combatants"]] == ["hero", "goblin-1", "goblin-2"]
        assert body["phase"] == "setup"


class TestCombatEndpoints:
    """Tests for starting combat and submitting intents."""

    def test_start_needs_two(self, client):
        _add(client, make_character(), (0, 0))
        resp = client.post("/encounter/start")
        assert resp.status_code == 400

    def test_start(self, client):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (5, 5))
        resp = client.post("/encounter/start")
        assert resp.status_code == 200
        body = resp.json()
        assert body["phase"] == "combat"
        assert body["round"] == 1
        assert len(body["initiative_order"]) == 2
        assert body["current_combatant_id"] == body["turn_order"][0]

    def test_move_intent(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (9, 9))
        start_with_turn(engine, "hero")
        resp = client.post(
            "/encounter/intents",
            json={"combatant_id": "hero", "action_type": "move", "target_position": [2, 0]},
        )
        assert resp.status_code == 200
        assert resp.json()["success"]
        assert engine.get_combatant("hero").position == (2, 0)

    def test_rejected_intent(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (9, 9))
        start_with_turn(engine, "hero")
        resp = client.post(
            "/encounter/intents",
            json={"combatant_id": "hero", "action_type": "attack", "target_id": "goblin"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "OUT_OF_RANGE"

    def test_reachable_and_targets(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (1, 1))
        start_with_turn(engine, "hero")
        reachable = client.get("/encounter/combatants/hero/reachable").json()
        assert {"position": [1, 0], "cost": 5} in reachable
        assert client.get("/encounter/combatants/hero/targets").json() == ["goblin"]

    def test_next_turn_and_end(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (9, 9))
        start_with_turn(engine, "hero")
        assert client.post("/encounter/next-turn").json()["current_combatant_id"] == "goblin"

        body = client.post("/encounter/end").json()
        assert body["phase"] == "setup"
        assert body["turn_order"] == []

    def test_state_and_log(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (9, 9))
        client.post("/encounter/start")

        state = client.get("/encounter/state").json()
        assert set(state["combatants"]) == {"hero", "goblin"}
        assert "log" not in state
        assert len(state["grid"]) == 10

        log = client.get("/encounter/log").json()
        assert log[0]["type"] == "initiative"
        assert len(client.get("/encounter/log", params={"since": 1}).json()) == len(log) - 1


class TestReactionEndpoints:
    """Tests for /reaction and /reaction/skip."""

    def _paused(self, client, engine):
        _add(client, make_wizard(spells=[SHIELD]), (0, 0))
        _add(client, make_monster(), (1, 0))
        start_with_turn(engine, "goblin")
        engine.rng = ScriptedRandom(10, 3)
        resp = client.post(
            "/encounter/intents",
            json={"combatant_id": "goblin", "action_type": "attack", "target_id": "wizard"},
        )
        assert resp.status_code == 200

    def test_turn_cannot_end_while_pending(self, client, engine):
        self._paused(client, engine)
        resp = client.post("/encounter/next-turn")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "REACTION_PENDING"

    def test_cast_shield(self, client, engine):
        self._paused(client, engine)
        body = client.post("/encounter/reaction", json={"spell_id": "shield"}).json()
        assert body["blocked"] is True
        assert body["phase"] == "combat"
        assert body["pending_reaction"] is None
        assert engine.get_combatant("wizard").current_hp == 22

    def test_skip(self, client, engine):
        self._paused(client, engine)
        body = client.post("/encounter/reaction/skip").json()
        assert body["phase"] == "combat"
        assert engine.get_combatant("wizard").current_hp == 17

    def test_parry(self, client, engine):
        _add(client, make_battle_master(), (0, 0))
        _add(client, make_monster(hp=50), (1, 0))
        start_with_turn(engine, "goblin")
        engine.rng = ScriptedRandom(15, 5, 1)
        client.post(
            "/encounter/intents",
            json={"combatant_id": "goblin", "action_type": "attack", "target_id": "hero"},
        )
        body = client.post("/encounter/reaction", json={"maneuver": "parry"}).json()
        assert body["blocked"] is False
        assert body["phase"] == "combat"
        assert engine.get_combatant("hero").current_hp == 16

    def test_spell_and_maneuver_rejected(self, client, engine):
        self._paused(client, engine)
        resp = client.post("/encounter/reaction", json={"spell_id": "shield", "maneuver": "parry"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_OPERATION"

    def test_no_reaction_pending(self, client, engine):
        _add(client, make_character(), (0, 0))
        _add(client, make_monster(), (9, 9))
        start_with_turn(engine, "hero")
        resp = client.post("/encounter/reaction/skip")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_PHASE"
