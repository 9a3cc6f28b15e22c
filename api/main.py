from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import sys
from pathlib import Path

# Add the root directory to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from api.graph_router import router as graph_router
from api.transforms_router import router as transforms_router
from core.config import Settings, settings as default_settings
from core.context import AppContext, build_context

logger = logging.getLogger(__name__)


def create_app(config: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Builds the API. The AppContext is created in the lifespan unless one is
    passed in, which is how tests run against an isolated registry and store.
    """
    config = config or (context.settings if context else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or build_context(config)
        app.state.context = ctx
        logger.info(f"NodeWeaver API started with {len(ctx.registry)} transforms")
        ctx.notifier.notify_detached(f"NodeWeaver API started ({len(ctx.registry)} transforms)")
        yield
        ctx.notifier.notify_detached("NodeWeaver API shutting down")
        await ctx.notifier.drain()
        ctx.close()

    app = FastAPI(
        title="NodeWeaver OSINT API",
        description="Transform catalog, execution engine and shared investigation graph.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Include all the Routers ---
    app.include_router(transforms_router)
    app.include_router(graph_router)

    @app.get("/")
    def read_root():
        return {"message": "NodeWeaver OSINT API is running."}

    return app


app = create_app()
