from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from shopee_engine.config import settings
from shopee_engine.dependencies import get_copy_executor
from shopee_engine.models.flash_sale_scheduler import (
    CancelCommand,
    ForceRunCommand,
    ListCommand,
    ScheduleCommand,
    ScheduleRequest,
    SchedulerAction,
    SweepCommand,
    UpdateCommand,
    UpdateRunAtRequest,
)
from shopee_engine.models_sqlalchemy import get_db
from shopee_engine.services import flash_sale_scheduler as scheduler
from shopee_engine.services.errors import (
    InvalidJobState,
    ScheduledJobNotFound,
    ShopeeEngineError,
    invalid_request,
)
from shopee_engine.services.flash_sale_copy import FlashSaleCopyExecutor
from shopee_engine.utils.logger import logger


router = APIRouter(prefix="/api/flash-sale-scheduler", tags=["flash-sale-scheduler"])


def _minutes_before(value: Optional[int]) -> int:
    return value if value is not None else settings.SCHEDULER_DEFAULT_MINUTES_BEFORE


def _raise_http(exc: ShopeeEngineError) -> NoReturn:
    if isinstance(exc, ScheduledJobNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidJobState):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    raise HTTPException(status_code=code, detail=exc.to_dict()) from exc


def _require_internal_key(x_internal_api_key: Optional[str]) -> None:
    if settings.INTERNAL_API_KEY and x_internal_api_key != settings.INTERNAL_API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal API key")


# --- Action endpoint -------------------------------------------------------


async def _handle_schedule(cmd: ScheduleCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    results = scheduler.schedule_copy_jobs(
        db, cmd.shop_id, cmd.source_flash_sale_id, cmd.entries, _minutes_before(cmd.minutes_before)
    )
    return {"success": True, "results": results}


async def _handle_list(cmd: ListCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    jobs = scheduler.list_jobs(db, cmd.shop_id)
    return {"success": True, "data": [scheduler.job_to_row(j) for j in jobs]}


async def _handle_cancel(cmd: CancelCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    if not scheduler.cancel_job(db, cmd.shop_id, cmd.schedule_id):
        return InvalidJobState(
            "Only pending jobs can be cancelled", details={"id": cmd.schedule_id}
        ).to_dict()
    return {"success": True}


async def _handle_update(cmd: UpdateCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    job = scheduler.update_job_run_at(db, cmd.shop_id, cmd.schedule_id, cmd.scheduled_at)
    return {"success": True, "data": scheduler.job_to_row(job)}


async def _handle_force_run(cmd: ForceRunCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    result = await scheduler.force_run_job(db, cmd.schedule_id, executor, shop_id=cmd.shop_id)
    return {"success": result.success, "result": result.to_dict()}


async def _handle_sweep(cmd: SweepCommand, db: Session, executor: FlashSaleCopyExecutor) -> Dict[str, Any]:
    summary = await scheduler.sweep_due_jobs(
        db, executor, batch_size=cmd.batch_size or settings.SCHEDULER_SWEEP_BATCH_SIZE
    )
    return summary.to_dict()


_HANDLERS: Dict[type, Callable[[Any, Session, FlashSaleCopyExecutor], Awaitable[Dict[str, Any]]]] = {
    ScheduleCommand: _handle_schedule,
    ListCommand: _handle_list,
    CancelCommand: _handle_cancel,
    UpdateCommand: _handle_update,
    ForceRunCommand: _handle_force_run,
    SweepCommand: _handle_sweep,
}


@router.post("/action")
async def scheduler_action(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    executor: FlashSaleCopyExecutor = Depends(get_copy_executor),
    x_internal_api_key: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Single entry point used by the dashboard.

    Engine errors and malformed commands come back as
    ``{success: false, error, message}`` with HTTP 200; the dashboard reads
    the body. ``sweep``/``process`` need the internal key like ``/sweep``.
    """
    try:
        command = SchedulerAction.model_validate(payload).root
    except ValidationError as exc:
        logger.warning("[scheduler] Rejected action payload: %s", exc.error_count())
        return invalid_request(exc)

    if isinstance(command, SweepCommand):
        _require_internal_key(x_internal_api_key)

    handler = _HANDLERS[type(command)]
    logger.info("[scheduler] action=%s", command.action)
    try:
        return await handler(command, db, executor)
    except ShopeeEngineError as exc:
        logger.warning("[scheduler] action=%s failed: %s", command.action, exc.message)
        return exc.to_dict()


# --- REST endpoints --------------------------------------------------------


@router.post("/schedules", status_code=status.HTTP_201_CREATED)
async def create_schedules(payload: ScheduleRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    results = scheduler.schedule_copy_jobs(
        db, payload.shop_id, payload.source_flash_sale_id, payload.entries,
        _minutes_before(payload.minutes_before),
    )
    return {"success": True, "results": results}


@router.get("/schedules")
async def get_schedules(shop_id: int = Query(...), db: Session = Depends(get_db)) -> Dict[str, Any]:
    jobs = scheduler.list_jobs(db, shop_id)
    return {"success": True, "data": [scheduler.job_to_row(j) for j in jobs]}


@router.delete("/schedules/{job_id}")
async def delete_schedule(job_id: str, shop_id: int = Query(...), db: Session = Depends(get_db)) -> Dict[str, Any]:
    if not scheduler.cancel_job(db, shop_id, job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job not found or no longer pending",
        )
    return {"success": True}


@router.patch("/schedules/{job_id}")
async def reschedule(job_id: str, payload: UpdateRunAtRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        job = scheduler.update_job_run_at(db, payload.shop_id, job_id, payload.scheduled_at)
    except ShopeeEngineError as exc:
        _raise_http(exc)
    return {"success": True, "data": scheduler.job_to_row(job)}


@router.post("/schedules/{job_id}/force-run")
async def force_run(
    job_id: str,
    shop_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    executor: FlashSaleCopyExecutor = Depends(get_copy_executor),
) -> Dict[str, Any]:
    try:
        result = await scheduler.force_run_job(db, job_id, executor, shop_id=shop_id)
    except ShopeeEngineError as exc:
        _raise_http(exc)
    return {"success": result.success, "result": result.to_dict()}


@router.post("/sweep")
async def sweep(
    batch_size: Optional[int] = Query(None, ge=1, le=100),
    x_internal_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    executor: FlashSaleCopyExecutor = Depends(get_copy_executor),
) -> Dict[str, Any]:
    """Cron-style trigger; guarded by INTERNAL_API_KEY when configured."""
    _require_internal_key(x_internal_api_key)
    summary = await scheduler.sweep_due_jobs(
        db, executor, batch_size=batch_size or settings.SCHEDULER_SWEEP_BATCH_SIZE
    )
    return summary.to_dict()
