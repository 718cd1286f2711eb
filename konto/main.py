import os
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from konto.config import get_settings
from konto.db.core import Base, engine, session_local
from konto.jobs.monitor import JobMonitor
from konto.jobs.scheduler import build_scheduler
from konto.logging_config import setup_logging, get_logger
from konto.routers.accounts import router as accounts_router
from konto.routers.assets import router as assets_router
from konto.routers.bank import router as bank_router
from konto.routers.dashboard import router as dashboard_router
from konto.routers.health import router as health_router

logger = get_logger(__name__)


def create_app(
    monitor: Optional[JobMonitor] = None,
    run_scheduler: bool = False,
    db_engine: Optional[Engine] = None
) -> FastAPI:
    """
    Build the API. Tables are created on startup. With run_scheduler the
    snapshot and refresh jobs run on a background thread for the lifetime of
    the app and report to app.state.monitor.
    """
    monitor = monitor or JobMonitor()
    db_engine = db_engine or engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event = threading.Event()
        thread = None
        Base.metadata.create_all(bind=db_engine)
        if run_scheduler:
            scheduler = build_scheduler(session_local, get_settings(), monitor=monitor)
            thread = threading.Thread(target=scheduler.run_forever, args=(stop_event,), name="konto-scheduler", daemon=True)
            thread.start()
        yield
        stop_event.set()
        if thread is not None:
            thread.join(timeout=10)

    app = FastAPI(title="Konto", lifespan=lifespan)
    app.state.monitor = monitor

    app.include_router(dashboard_router)
    app.include_router(bank_router)
    app.include_router(accounts_router)
    app.include_router(assets_router)
    app.include_router(health_router)

    @app.get("/")
    def read_root():
        return "Server is running."

    return app


setup_logging()
app = create_app(run_scheduler=os.getenv("RUN_SCHEDULER", "false").lower() in ("1", "true", "yes"))
