import asyncio
import os
import threading
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderdesk import models  # noqa: F401
from orderdesk.config import settings, validate_settings
from orderdesk.database import Base, SessionLocal, engine
from orderdesk.errors import register_exception_handlers
from orderdesk.logging_config import get_logger, setup_logging
from orderdesk.routers import agents, assignments, commissions, shipping, webhooks, wilaya_settings
from orderdesk.services.assignment_service import auto_assign_unassigned_orders
from orderdesk.services.ecomanager_service import EcoManagerClient, ingest_new_orders
from orderdesk.services.maystro_service import ProviderError
from orderdesk.services.tracking_sync_service import sync_all_accounts

setup_logging(settings.log_level)

app = FastAPI(
    title="OrderDesk API",
    description="Order assignment and shipping status back office",
    version="0.1.0",
)

cors_origins = settings.cors_origin_list or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(assignments.router)
app.include_router(agents.router)
app.include_router(shipping.router)
app.include_router(commissions.router)
app.include_router(wilaya_settings.router)
app.include_router(webhooks.router)

scheduler_logger = get_logger("scheduler")
_scheduler_task: asyncio.Task | None = None
_scheduler_cancel = threading.Event()


def _is_scheduler_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.scheduler_enabled


def run_scheduled_jobs(cancel_event: threading.Event) -> dict[str, Any]:
    """One scheduler tick: ingest new orders, assign them, then sync tracking per account."""
    summary: dict[str, Any] = {}
    db = SessionLocal()
    try:
        if settings.ecomanager_api_token and settings.ecomanager_base_url:
            try:
                with EcoManagerClient(settings.ecomanager_api_token) as client:
                    summary["ingestion"] = ingest_new_orders(db, client)
            except ProviderError as exc:
                scheduler_logger.error(f"Order ingestion failed: {exc}")
                summary["ingestion"] = {"error": str(exc)}

        if cancel_event.is_set():
            return summary
        assignment = auto_assign_unassigned_orders(db, cancel_event=cancel_event)
        summary["assignment"] = {
            key: value for key, value in assignment.to_dict().items() if key != "results"
        }

        if cancel_event.is_set():
            return summary
        tracking = sync_all_accounts(db, cancel_event=cancel_event)
        summary["tracking"] = {
            "accounts": len(tracking["accounts"]),
            "failed_accounts": len(tracking["failed_accounts"]),
            "updated": sum(item["updated"] for item in tracking["accounts"]),
        }
        return summary
    finally:
        db.close()


async def _scheduler_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.scheduler_interval_seconds, 1.0))
            results = await asyncio.to_thread(run_scheduled_jobs, _scheduler_cancel)
            scheduler_logger.info("Scheduler tick finished", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            scheduler_logger.error(
                "Scheduler tick failed",
                exc_info=exc,
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def startup() -> None:
    global _scheduler_task
    validate_settings()
    Base.metadata.create_all(bind=engine)
    if not _is_scheduler_enabled():
        return
    _scheduler_cancel.clear()
    if _scheduler_task is None or _scheduler_task.done():
        _scheduler_task = asyncio.create_task(_scheduler_loop())
        scheduler_logger.info("Scheduler started")


@app.on_event("shutdown")
async def shutdown() -> None:
    global _scheduler_task
    _scheduler_cancel.set()
    if _scheduler_task is None:
        return
    _scheduler_task.cancel()
    try:
        await _scheduler_task
    except asyncio.CancelledError:
        pass
    _scheduler_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
