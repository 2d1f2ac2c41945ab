import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from .env file
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from cosmo_tarot.ai import build_reading_generator
from cosmo_tarot.config import Settings
from cosmo_tarot.draw_engine import DrawEngine
from cosmo_tarot.routes.deck_routes import router as deck_router
from cosmo_tarot.routes.draw_routes import router as draw_router
from cosmo_tarot.storage import SessionStore

log = logging.getLogger("cosmo_tarot.main")


def build_engine(settings: Settings) -> DrawEngine:
    store = SessionStore(ttl_seconds=settings.draw_ttl_seconds, max_sessions=settings.max_sessions)
    generator = build_reading_generator(settings, clock=store.now)
    return DrawEngine(store, generator)


def create_app(settings: Optional[Settings] = None, engine: Optional[DrawEngine] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Cosmo Tarot", version="0.1.0")
    app.state.settings = settings
    app.state.engine = engine or build_engine(settings)

    app.include_router(deck_router)
    app.include_router(draw_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "llm_enabled": settings.llm_enabled,
            "sessions": app.state.engine.store.stats(),
        }

    log.info("reading mode=%s llm_enabled=%s", settings.reading_mode, settings.llm_enabled)
    return app


app = create_app()
