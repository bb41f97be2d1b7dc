"""Health and app-state endpoints."""

from fastapi import APIRouter, Depends

from dungeon_master.controller import GameController

from .deps import get_controller

router = APIRouter()


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/state")
async def get_state(controller: GameController = Depends(get_controller)):
    """Mode, room, selected character, advisory banner and busy flag."""
    return controller.state()
