import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from docsite.config import get_settings
from docsite.services.context import AppContext, build_context

# Routers
from docsite.api.routers.core import router as core_router
from docsite.api.routers.modules import router as modules_router
from docsite.api.routers.completions import router as completions_router
from docsite.api.routers.tasks import router as tasks_router

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 30.0


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the application; tests pass a prepared context instead of the configured one."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context
        if ctx is None:
            settings = get_settings()
            logging.basicConfig(
                level=settings.log_level,
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )
            ctx = build_context(settings)
        await ctx.store.ensure_schema()
        app.state.ctx = ctx
        try:
            yield
        finally:
            # let queued commits land before closing the store
            try:
                await asyncio.wait_for(ctx.scheduler.wait_idle(), timeout=SHUTDOWN_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Shutting down with %d tasks still queued.", ctx.scheduler.pending)
            await ctx.aclose()

    app = FastAPI(title="Registry Docs API", version="0.1", lifespan=lifespan)

    # Register routers (paths preserved as defined in each module)
    app.include_router(core_router)
    app.include_router(modules_router)
    app.include_router(completions_router)
    app.include_router(tasks_router)
    return app


app = create_app()
