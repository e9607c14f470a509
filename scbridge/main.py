import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .engine import build_bridge
from .routes.ws_routes import router as ws_router

logger = logging.getLogger(__name__)


def create_bridge():
    return build_bridge(
        command=config.ENGINE_CMD,
        startup_script=config.STARTUP_SCRIPT,
        staging_dir=config.STAGING_DIR,
        cwd=config.ENGINE_CWD,
        staging_ttl=config.STAGING_TTL,
        restart_delay=config.RESTART_DELAY,
        queue_size=config.CLIENT_QUEUE_SIZE,
        max_code_bytes=config.MAX_CODE_BYTES,
    )


def create_app(bridge=None) -> FastAPI:
    """
    Build the FastAPI app. Passing ``bridge`` lets callers (tests) supply one
    wired to a different engine command.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.bridge = bridge if bridge is not None else create_bridge()
        await app.state.bridge.start()
        logger.info("bridge started; engine state=%s", app.state.bridge.supervisor.state.value)
        try:
            yield
        finally:
            await app.state.bridge.stop()
            logger.info("bridge stopped")

    app = FastAPI(title=config.TITLE, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        sup = app.state.bridge.supervisor
        return {
            "ok": True,
            "state": sup.state.value,
            "pid": sup.pid,
            "boots": sup.boot_count,
            "clients": len(app.state.bridge.hub),
        }

    app.include_router(ws_router)
    return app


app = create_app()
