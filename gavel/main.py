from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gavel import conf
from gavel.engine import Engine, build_engine
from gavel.routes.base import router
from gavel.scheduler import init_scheduler, shutdown_scheduler
from gavel.utils import log

log.init(conf.get_log_level())
logger = log.get_logger(__name__)


def create_app(engine: Optional[Engine] = None, start_scheduler: Optional[bool] = None) -> FastAPI:
    engine = engine or build_engine()
    if start_scheduler is None:
        start_scheduler = engine.conf.scheduler_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Verifying {engine.conf.store_backend} store connection...")
        await engine.store.check()
        logger.info("Store connection verified.")

        if start_scheduler:
            init_scheduler(engine.sweeper, engine.conf)
        else:
            logger.warning("Scheduler is disabled (set GAVEL_SCHEDULER_ENABLED to enable)")

        yield

        if start_scheduler:
            shutdown_scheduler()

    app = FastAPI(
        title="Gavel Auction Engine",
        version="0.1.0",
        docs_url="/docs",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.include_router(router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


if not conf.validate():
    raise ValueError("Invalid configuration.")

app = create_app()


def run():
    http_conf = conf.get_http_conf()
    logger.info(f"Starting API on port {http_conf.port}")
    uvicorn.run(
        "gavel.main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        log_config=None,
    )


if __name__ == "__main__":
    run()
