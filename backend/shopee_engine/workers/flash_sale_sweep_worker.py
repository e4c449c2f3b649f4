"""Flash sale sweep worker.

Every ``SCHEDULER_POLL_INTERVAL_SECONDS`` picks up due copy jobs and runs
them through the copy executor. Safe to run alongside the cron-style
``POST /api/flash-sale-scheduler/sweep`` trigger: jobs are claimed
atomically, so each runs once.

Each tick updates a ``background_workers`` heartbeat row so operators can
see when the loop last ran and whether it is failing.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from shopee_engine.config import settings
from shopee_engine.dependencies import get_copy_executor
from shopee_engine.models_sqlalchemy import SessionLocal
from shopee_engine.models_sqlalchemy.models import BackgroundWorker
from shopee_engine.services.flash_sale_scheduler import CopyExecutor, SweepSummary, sweep_due_jobs
from shopee_engine.utils.logger import logger

WORKER_NAME = "flash_sale_sweep"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _heartbeat(db: Session, interval_seconds: int) -> BackgroundWorker:
    worker = (
        db.query(BackgroundWorker)
        .filter(BackgroundWorker.worker_name == WORKER_NAME)
        .one_or_none()
    )
    if worker is None:
        worker = BackgroundWorker(worker_name=WORKER_NAME, runs_ok_in_row=0, runs_error_in_row=0)
        db.add(worker)
    worker.interval_seconds = interval_seconds
    worker.last_started_at = _now_utc()
    worker.last_status = "running"
    db.commit()
    return worker


def _record_outcome(db: Session, worker: BackgroundWorker, error: Optional[str]) -> None:
    worker.last_finished_at = _now_utc()
    if error is None:
        worker.last_status = "ok"
        worker.last_error_message = None
        worker.runs_ok_in_row = (worker.runs_ok_in_row or 0) + 1
        worker.runs_error_in_row = 0
    else:
        worker.last_status = "error"
        worker.last_error_message = error[:2000]
        worker.runs_error_in_row = (worker.runs_error_in_row or 0) + 1
        worker.runs_ok_in_row = 0
    db.commit()


async def run_sweep_once(
    executor: Optional[CopyExecutor] = None,
    *,
    session_factory=SessionLocal,
    interval_seconds: int = settings.SCHEDULER_POLL_INTERVAL_SECONDS,
) -> SweepSummary:
    """Run one sweep tick in its own session and record the heartbeat."""
    executor = executor or get_copy_executor()
    db = session_factory()
    try:
        worker = _heartbeat(db, interval_seconds)
        try:
            summary = await sweep_due_jobs(db, executor, batch_size=settings.SCHEDULER_SWEEP_BATCH_SIZE)
        except Exception as exc:
            db.rollback()
            _record_outcome(db, worker, str(exc) or type(exc).__name__)
            raise
        _record_outcome(db, worker, None)
        if summary.processed or summary.skipped:
            logger.info(
                "[sweep-worker] processed=%s skipped=%s", summary.processed, summary.skipped
            )
        return summary
    finally:
        db.close()


async def run_sweep_loop(interval_seconds: int = settings.SCHEDULER_POLL_INTERVAL_SECONDS) -> None:
    """Background loop; run as a standalone worker process."""
    logger.info("[sweep-worker] Flash sale sweep loop started (interval=%s seconds)", interval_seconds)

    while True:
        try:
            await run_sweep_once(interval_seconds=interval_seconds)
        except Exception as exc:  # pragma: no cover - safety net
            logger.error("[sweep-worker] Loop error: %s", exc, exc_info=True)

        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":  # pragma: no cover - manual run helper
    asyncio.run(run_sweep_loop())
