from datetime import datetime, timezone

import pytest

from shopee_engine.models.flash_sale_scheduler import ScheduleEntry
from shopee_engine.models_sqlalchemy.models import BackgroundWorker, ScheduledFlashSale
from shopee_engine.services import flash_sale_scheduler as scheduler
from shopee_engine.services.flash_sale_copy import FlashSaleCopyResult
from shopee_engine.workers import flash_sale_sweep_worker as worker

PAST_SLOT = int(datetime(2020, 1, 1, 10, 0, tzinfo=timezone.utc).timestamp())


class StubExecutor:
    def __init__(self):
        self.calls = 0

    async def execute(self, db, shop_id, target_timeslot_id, items):
        self.calls += 1
        return FlashSaleCopyResult(success=True, flash_sale_id=3, message="Created flash sale 3: 1/1 items added")


@pytest.mark.asyncio
async def test_run_once_processes_due_jobs_and_records_heartbeat(session_factory, db):
    scheduler.schedule_copy_jobs(db, 1, 2, [ScheduleEntry(timeslot_id=5, start_time=PAST_SLOT, items=[{"item_id": 1}])])
    executor = StubExecutor()

    summary = await worker.run_sweep_once(executor, session_factory=session_factory, interval_seconds=30)
    await worker.run_sweep_once(executor, session_factory=session_factory, interval_seconds=30)

    assert summary.processed == 1
    assert executor.calls == 1
    db.expire_all()
    assert db.query(ScheduledFlashSale).one().status == "completed"

    row = db.query(BackgroundWorker).filter(BackgroundWorker.worker_name == worker.WORKER_NAME).one()
    assert row.last_status == "ok"
    assert row.runs_ok_in_row == 2
    assert row.runs_error_in_row == 0
    assert row.interval_seconds == 30


@pytest.mark.asyncio
async def test_run_once_records_failure(session_factory, db, monkeypatch):
    async def broken_sweep(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(worker, "sweep_due_jobs", broken_sweep)

    with pytest.raises(RuntimeError):
        await worker.run_sweep_once(StubExecutor(), session_factory=session_factory)

    row = db.query(BackgroundWorker).one()
    assert row.last_status == "error"
    assert row.last_error_message == "database went away"
    assert row.runs_error_in_row == 1
