# Run locally with: uvicorn glsync.api.app:app --reload

import json
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import LOG_LEVEL, SCHEDULED_SYNC_ENABLED, SYNC_INTERVAL_MINUTES
from ..database.supabase_client import SupabaseClient
from ..database.sync_service import GlideSyncService
from ..services.actions import ActionDispatcher
from .dependencies import get_supabase
from .routes.errors import router as errors_router
from .routes.estimates import router as estimates_router
from .routes.health import router as health_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(title="glsync")
app.include_router(health_router)
app.include_router(errors_router)  # exposes /mappings/{id}/errors and /errors/{id}/resolve
app.include_router(estimates_router)

_scheduler = AsyncIOScheduler()


@app.post("/glsync")
async def glsync_action(request: Request, supabase: SupabaseClient = Depends(get_supabase)) -> JSONResponse:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    status_code, body = await ActionDispatcher(supabase).dispatch(payload)
    return JSONResponse(body, status_code=status_code)


async def _scheduled_sync_all() -> None:
    log = logging.getLogger("scheduler.glide_sync")
    try:
        outcomes = await GlideSyncService(get_supabase()).sync_all_enabled()
        failed = [o["mapping_id"] for o in outcomes if not o["success"]]
        log.info("Scheduled sync finished: %s mappings, %s failed", len(outcomes), len(failed))
    except Exception:  # noqa: BLE001
        log.exception("Scheduled Glide sync failed")


@app.on_event("startup")
async def _start_scheduler() -> None:
    if not SCHEDULED_SYNC_ENABLED:
        logging.getLogger("scheduler").info("Scheduled sync disabled")
        return
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    _scheduler.add_job(
        _scheduled_sync_all,
        "interval",
        minutes=SYNC_INTERVAL_MINUTES,
        id="glide_sync_all",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()


@app.on_event("shutdown")
async def _stop_scheduler() -> None:
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
