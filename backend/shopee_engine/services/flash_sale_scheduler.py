"""Scheduled "copy flash sale into timeslot" jobs.

Lifecycle: ``pending -> running -> completed | failed``. The transition out
of ``pending`` is a conditional UPDATE (``claim_job``); whoever gets
rowcount 1 owns the job, so overlapping sweeps (worker loop, cron trigger,
a manual force-run) execute a job at most once.

Credentials and tokens are never captured at schedule time; the executor
resolves them when the job actually runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopee_engine.models.flash_sale_scheduler import ScheduleEntry
from shopee_engine.models_sqlalchemy.models import ScheduledFlashSale, ScheduledFlashSaleStatus
from shopee_engine.services.errors import InvalidJobState, ScheduledJobNotFound
from shopee_engine.services.flash_sale_copy import FlashSaleCopyResult
from shopee_engine.services.shopee_token_store import _to_utc
from shopee_engine.utils.logger import logger

MIN_MINUTES_BEFORE = 1
MAX_MINUTES_BEFORE = 60
DEFAULT_MINUTES_BEFORE = 10
DEFAULT_BATCH_SIZE = 10

PENDING = ScheduledFlashSaleStatus.pending.value
RUNNING = ScheduledFlashSaleStatus.running.value
COMPLETED = ScheduledFlashSaleStatus.completed.value
FAILED = ScheduledFlashSaleStatus.failed.value


class CopyExecutor(Protocol):
    async def execute(
        self, db: Session, shop_id: int, target_timeslot_id: int, items: List[Dict[str, Any]]
    ) -> FlashSaleCopyResult:
        ...


@dataclass
class SweepSummary:
    processed: int = 0
    skipped: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "processed": self.processed,
            "skipped": self.skipped,
            "results": self.results,
        }


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def clamp_minutes_before(minutes: Optional[int]) -> int:
    if minutes is None:
        return DEFAULT_MINUTES_BEFORE
    return max(MIN_MINUTES_BEFORE, min(MAX_MINUTES_BEFORE, int(minutes)))


def compute_run_at(start_time: int, minutes_before: int) -> datetime:
    return datetime.fromtimestamp(int(start_time) - minutes_before * 60, tz=timezone.utc)


def job_to_row(job: ScheduledFlashSale) -> Dict[str, Any]:
    scheduled_at = _to_utc(job.scheduled_at)
    started_at = _to_utc(job.started_at)
    finished_at = _to_utc(job.finished_at)
    created_at = _to_utc(job.created_at)
    return {
        "id": job.id,
        "shop_id": job.shop_id,
        "source_flash_sale_id": job.source_flash_sale_id,
        "target_timeslot_id": job.target_timeslot_id,
        "target_start_time": job.target_start_time,
        "target_end_time": job.target_end_time,
        "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
        "items_count": len(job.items_data or []),
        "status": job.status,
        "result_flash_sale_id": job.result_flash_sale_id,
        "result_message": job.result_message,
        "failed_items": job.failed_items,
        "started_at": started_at.isoformat() if started_at else None,
        "finished_at": finished_at.isoformat() if finished_at else None,
        "created_at": created_at.isoformat() if created_at else None,
    }


def schedule_copy_jobs(
    db: Session,
    shop_id: int,
    source_flash_sale_id: int,
    entries: Sequence[ScheduleEntry],
    minutes_before: Optional[int] = DEFAULT_MINUTES_BEFORE,
) -> List[Dict[str, Any]]:
    """Create one pending job per entry. Entries succeed or fail independently."""
    minutes = clamp_minutes_before(minutes_before)
    results: List[Dict[str, Any]] = []

    for entry in entries:
        run_at = compute_run_at(entry.start_time, minutes)
        job = ScheduledFlashSale(
            shop_id=shop_id,
            source_flash_sale_id=source_flash_sale_id,
            target_timeslot_id=entry.timeslot_id,
            target_start_time=entry.start_time,
            target_end_time=entry.end_time,
            scheduled_at=run_at,
            items_data=list(entry.items),
            status=PENDING,
        )
        try:
            db.add(job)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "[scheduler] Failed to schedule timeslot=%s for shop_id=%s: %s",
                entry.timeslot_id, shop_id, exc,
            )
            results.append({"timeslot_id": entry.timeslot_id, "success": False, "error": str(exc)})
            continue

        results.append(
            {
                "timeslot_id": entry.timeslot_id,
                "success": True,
                "id": job.id,
                "scheduled_at": run_at.isoformat(),
            }
        )

    logger.info(
        "[scheduler] Scheduled %s/%s copy jobs for shop_id=%s source=%s minutes_before=%s",
        sum(1 for r in results if r["success"]), len(results), shop_id, source_flash_sale_id, minutes,
    )
    return results


def list_jobs(db: Session, shop_id: int) -> List[ScheduledFlashSale]:
    return (
        db.query(ScheduledFlashSale)
        .filter(ScheduledFlashSale.shop_id == shop_id)
        .order_by(ScheduledFlashSale.scheduled_at.asc())
        .all()
    )


def _get_job(db: Session, job_id: str, shop_id: Optional[int] = None) -> Optional[ScheduledFlashSale]:
    query = db.query(ScheduledFlashSale).filter(ScheduledFlashSale.id == job_id)
    if shop_id is not None:
        query = query.filter(ScheduledFlashSale.shop_id == shop_id)
    return query.one_or_none()


def cancel_job(db: Session, shop_id: int, job_id: str) -> bool:
    """Delete a pending job. Returns False, changing nothing, for any other state."""
    deleted = (
        db.query(ScheduledFlashSale)
        .filter(
            ScheduledFlashSale.id == job_id,
            ScheduledFlashSale.shop_id == shop_id,
            ScheduledFlashSale.status == PENDING,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("[scheduler] Cancelled job %s for shop_id=%s", job_id, shop_id)
    return deleted == 1


def update_job_run_at(db: Session, shop_id: int, job_id: str, new_run_at: datetime) -> ScheduledFlashSale:
    run_at = _to_utc(new_run_at)
    updated = (
        db.query(ScheduledFlashSale)
        .filter(
            ScheduledFlashSale.id == job_id,
            ScheduledFlashSale.shop_id == shop_id,
            ScheduledFlashSale.status == PENDING,
        )
        .update({ScheduledFlashSale.scheduled_at: run_at, ScheduledFlashSale.updated_at: _now_utc()},
                synchronize_session=False)
    )
    db.commit()

    job = _get_job(db, job_id, shop_id)
    if job is None:
        raise ScheduledJobNotFound(f"Scheduled job {job_id} not found", details={"id": job_id})
    if not updated:
        raise InvalidJobState(
            f"Job {job_id} is {job.status}; only pending jobs can be rescheduled",
            details={"id": job_id, "status": job.status},
        )
    db.refresh(job)
    return job


def claim_job(
    db: Session,
    job_id: str,
    now: Optional[datetime] = None,
    *,
    due_before: Optional[datetime] = None,
) -> bool:
    """Atomically move a job from pending to running. True means we own it.

    With ``due_before`` the job must also still be due at claim time, so a
    reschedule that lands between the sweep's SELECT and this UPDATE wins.
    """
    now = now or _now_utc()
    query = db.query(ScheduledFlashSale).filter(
        ScheduledFlashSale.id == job_id, ScheduledFlashSale.status == PENDING
    )
    if due_before is not None:
        query = query.filter(ScheduledFlashSale.scheduled_at <= due_before)
    claimed = (
        query
        .update(
            {
                ScheduledFlashSale.status: RUNNING,
                ScheduledFlashSale.started_at: now,
                ScheduledFlashSale.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed == 1


def _finish(db: Session, job_id: str, result: FlashSaleCopyResult) -> None:
    job = _get_job(db, job_id)
    if job is None:
        logger.warning("[scheduler] Job %s disappeared before its result could be saved", job_id)
        return
    db.refresh(job)
    job.status = COMPLETED if result.success else FAILED
    job.result_flash_sale_id = result.flash_sale_id
    job.result_message = result.message
    job.failed_items = result.failed_items or None
    job.finished_at = _now_utc()
    db.commit()


def _mark_failed(db: Session, job_id: str, message: str) -> None:
    """Plain-column fallback when the full result row could not be written."""
    db.query(ScheduledFlashSale).filter(
        ScheduledFlashSale.id == job_id, ScheduledFlashSale.status == RUNNING
    ).update(
        {
            ScheduledFlashSale.status: FAILED,
            ScheduledFlashSale.result_message: message[:2000],
            ScheduledFlashSale.finished_at: _now_utc(),
        },
        synchronize_session=False,
    )
    db.commit()


async def _execute_claimed(db: Session, job_id: str, executor: CopyExecutor) -> FlashSaleCopyResult:
    job = _get_job(db, job_id)
    if job is None:
        raise ScheduledJobNotFound(f"Scheduled job {job_id} not found", details={"id": job_id})
    db.refresh(job)

    shop_id = int(job.shop_id)
    timeslot_id = int(job.target_timeslot_id)
    items = list(job.items_data or [])

    try:
        result = await executor.execute(db, shop_id, timeslot_id, items)
    except Exception as exc:
        db.rollback()
        logger.error(
            "[scheduler] Job %s for shop_id=%s timeslot=%s raised",
            job_id, shop_id, timeslot_id, exc_info=True,
        )
        result = FlashSaleCopyResult(success=False, message=str(exc) or type(exc).__name__)

    try:
        _finish(db, job_id, result)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[scheduler] Saving result of job %s failed", job_id, exc_info=True)
        # The provider-side copy may have happened; keep its id and message.
        result = FlashSaleCopyResult(
            success=False,
            flash_sale_id=result.flash_sale_id,
            message=f"{result.message} (result could not be saved: {type(exc).__name__})",
        )
        _mark_failed(db, job_id, result.message)

    logger.info(
        "[scheduler] Job %s finished success=%s message=%s",
        job_id, result.success, result.message,
    )
    return result


async def force_run_job(
    db: Session,
    job_id: str,
    executor: CopyExecutor,
    shop_id: Optional[int] = None,
) -> FlashSaleCopyResult:
    job = _get_job(db, job_id, shop_id)
    if job is None:
        raise ScheduledJobNotFound(f"Scheduled job {job_id} not found", details={"id": job_id})
    if job.status != PENDING:
        raise InvalidJobState(
            f"Job {job_id} is {job.status}; only pending jobs can be run",
            details={"id": job_id, "status": job.status},
        )
    if not claim_job(db, job_id):
        raise InvalidJobState(
            f"Job {job_id} was claimed by another runner",
            details={"id": job_id},
        )
    return await _execute_claimed(db, job_id, executor)


def _pick_due_job_ids(db: Session, now: datetime, limit: int) -> List[str]:
    rows = (
        db.query(ScheduledFlashSale.id)
        .filter(
            ScheduledFlashSale.status == PENDING,
            ScheduledFlashSale.scheduled_at <= now,
        )
        .order_by(ScheduledFlashSale.scheduled_at.asc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


async def sweep_due_jobs(
    db: Session,
    executor: CopyExecutor,
    *,
    now: Optional[datetime] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> SweepSummary:
    now = _to_utc(now) or _now_utc()
    summary = SweepSummary()

    job_ids = _pick_due_job_ids(db, now, batch_size)
    if not job_ids:
        return summary

    logger.info("[scheduler] Found %s due job(s) at %s", len(job_ids), now.isoformat())
    for job_id in job_ids:
        if not claim_job(db, job_id, now, due_before=now):
            logger.info("[scheduler] Job %s claimed elsewhere or no longer due, skipping", job_id)
            summary.skipped += 1
            continue

        result = await _execute_claimed(db, job_id, executor)
        summary.processed += 1
        summary.results.append({"id": job_id, **result.to_dict()})

    return summary
