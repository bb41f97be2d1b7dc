"""FastAPI API endpoints under /api.

Endpoint groups: state (health, mode snapshot), characters (roster),
creator (four-step character wizard), game (room code, join/leave,
chat and dice turns streamed as NDJSON).
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .creator import router as creator_router
from .game import router as game_router
from .state import router as state_router

router = APIRouter()
router.include_router(state_router)
router.include_router(characters_router)
router.include_router(creator_router)
router.include_router(game_router)
