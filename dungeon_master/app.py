from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from dungeon_master.config import Settings, build_llm, load_settings
from dungeon_master.controller import GameController, InvalidTransition
from dungeon_master.llm import ChatLLM
from dungeon_master.routes import router
from dungeon_master.routes.deps import EventHub
from dungeon_master.storage import Storage
from dungeon_master.store import FileStore

STATIC_DIR = Path(__file__).parent / "static"


def create_app(settings: Settings | None = None, llm: ChatLLM | None = None) -> FastAPI:
    """Build the app around one controller (single local player).

    `llm` overrides the provider chosen by settings; tests pass a stub here.
    """
    settings = settings or load_settings()
    store = FileStore(settings.data_dir, quota_bytes=settings.storage_quota_bytes or None)
    hub = EventHub()

    app = FastAPI(title="Dungeon Master AI")
    app.state.settings = settings
    app.state.hub = hub
    app.state.controller = GameController(
        Storage(store),
        llm or build_llm(settings),
        listener=hub.publish,
    )
    app.include_router(router, prefix="/api")

    @app.exception_handler(InvalidTransition)
    async def invalid_transition(request, exc: InvalidTransition):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    if STATIC_DIR.exists():
        app.mount("/assets", StaticFiles(directory=STATIC_DIR / "assets"), name="assets")

        # SPA fallback: all non-API routes serve index.html
        @app.get("/{path:path}")
        async def spa_fallback(path: str):
            return FileResponse(STATIC_DIR / "index.html")

    return app
