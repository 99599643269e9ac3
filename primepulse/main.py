"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncEngine

from primepulse.config import Settings, settings
from primepulse.db.analytics import SqlAnalyticsStore
from primepulse.db.repository import SqlAlertLog, SqlItemSource, SqlObservationStore
from primepulse.db.session import (
    build_engine,
    build_session_factory,
    create_analytics_schema,
    create_relational_schema,
)
from primepulse.ingest.fetcher import Fetcher
from primepulse.ingest.remote import WorkerClient
from primepulse.logging_config import setup_logging
from primepulse.notify.dispatcher import AlertDispatcher
from primepulse.notify.slack import SlackChannel
from primepulse.worker.cycle import CycleRunner
from primepulse.worker.cycle_lock import CycleLock
from primepulse.worker.scheduler import setup_scheduler
from primepulse.worker.tasks import TaskRunner

# Configure structured logging
setup_logging()
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the process owns and must close on shutdown."""

    engine: AsyncEngine
    analytics_engine: Optional[AsyncEngine]
    runner: CycleRunner
    tasks: TaskRunner
    fetcher: Fetcher
    channel: SlackChannel
    worker: Optional[WorkerClient] = None
    lock: Optional[CycleLock] = None

    async def close(self):
        await self.fetcher.close()
        await self.channel.close()
        if self.worker:
            await self.worker.close()
        if self.lock:
            await self.lock.close()
        await self.engine.dispose()
        if self.analytics_engine:
            await self.analytics_engine.dispose()


async def build_services(config: Settings = settings) -> Services:
    """Create stores, clients and the cycle runner from configuration."""
    engine = build_engine(config.database_url, echo=config.debug)
    await create_relational_schema(engine)
    session_factory = build_session_factory(engine)

    analytics_engine = None
    analytics = None
    if config.analytics_database_url:
        analytics_engine = build_engine(config.analytics_database_url)
        await create_analytics_schema(analytics_engine)
        analytics = SqlAnalyticsStore(build_session_factory(analytics_engine))
    else:
        logger.warning("Analytics database not configured; threat scoring disabled")

    worker = (
        WorkerClient(config.worker_url, timeout=config.request_timeout_seconds)
        if config.worker_url
        else None
    )
    fetcher = Fetcher(remote=worker, proxy_config=config.proxy_config)
    channel = SlackChannel()
    lock = CycleLock(config.redis_url) if config.redis_url else None

    items = SqlItemSource(
        session_factory,
        min_refresh_interval=timedelta(minutes=config.min_refresh_interval_minutes),
    )
    observations = SqlObservationStore(session_factory)
    runner = CycleRunner(
        items=items,
        observations=observations,
        alert_log=SqlAlertLog(session_factory),
        fetcher=fetcher,
        dispatcher=AlertDispatcher(channel),
        analytics=analytics,
        lock=lock,
    )
    tasks = TaskRunner(runner, observations, channel, analytics=analytics)

    return Services(
        engine=engine,
        analytics_engine=analytics_engine,
        runner=runner,
        tasks=tasks,
        fetcher=fetcher,
        channel=channel,
        worker=worker,
        lock=lock,
    )


# Global scheduler and services
scheduler: Optional[AsyncIOScheduler] = None
services: Optional[Services] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler, services

    # Startup
    logger.info("Starting PrimePulse...")
    services = await build_services()

    scheduler = setup_scheduler(services.tasks)
    scheduler.start()
    logger.info("Scheduler started")
    await services.tasks.notify("PrimePulse scheduler started successfully", "info")

    yield

    # Shutdown: no new triggers, let the running cycle drain
    logger.info("Shutting down...")
    if scheduler:
        scheduler.shutdown(wait=False)
    await services.runner.shutdown()
    await services.tasks.notify("PrimePulse scheduler stopped", "info")
    await services.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="PrimePulse",
    description="Price change detection and drop forecasting for tracked listings",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    running = bool(scheduler and scheduler.running)
    return {
        "status": "healthy" if running else "starting",
        "scheduler_running": running,
        "accepting_cycles": bool(services and services.runner.accepting),
        "jobs": [job.id for job in scheduler.get_jobs()] if scheduler else [],
    }


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


if __name__ == "__main__":
    uvicorn.run(
        "primepulse.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
