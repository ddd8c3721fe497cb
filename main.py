"""FastAPI app entry point for Gridskirmish.

Run with: uvicorn main:app --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.encounter import router as encounter_router
from config import ENCOUNTER_NAME, LOG_LEVEL, SAVE_FILE
from engine.combat import CombatEngine, load_state
from engine.errors import InvalidOperationError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Gridskirmish",
    description="A headless grid combat engine for turn-based tactical encounters",
    version="0.1.0",
)

# Resume the saved encounter or start an empty one
loaded = load_state(SAVE_FILE) if SAVE_FILE else None
if loaded is not None:
    logger.info("Resumed encounter from %s (phase %s)", SAVE_FILE, loaded.phase.value)
app.state.engine = CombatEngine(state=loaded)

app.include_router(encounter_router, prefix="/encounter", tags=["Encounter"])


@app.exception_handler(InvalidOperationError)
def invalid_operation_handler(request: Request, exc: InvalidOperationError) -> JSONResponse:
    """Render rejected combat operations with their error code."""
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/")
def root() -> dict:
    """Root endpoint returning server info."""
    return {"name": ENCOUNTER_NAME, "version": "0.1.0", "status": "running"}


@app.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"healthy": True}
