import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from shopee_engine.models.flash_sale_scheduler import ScheduleEntry
from shopee_engine.models_sqlalchemy.models import ScheduledFlashSale
from shopee_engine.services import flash_sale_scheduler as scheduler
from shopee_engine.services.errors import InvalidJobState, ScheduledJobNotFound
from shopee_engine.services.flash_sale_copy import FlashSaleCopyResult
from shopee_engine.services.shopee_flash_sale_api import ADD_FLASH_SALE_ITEMS_PATH, CREATE_FLASH_SALE_PATH
from shopee_engine.services.shopee_token_store import _to_utc

SHOP_ID = 558811
SOURCE_ID = 9001
# 2026-10-20 10:00:00 UTC
SLOT_START = int(datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc).timestamp())


class RecordingExecutor:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result or FlashSaleCopyResult(success=True, message="Created flash sale 1: 1/1 items added",
                                                    flash_sale_id=1)
        self.error = error

    async def execute(self, db, shop_id, target_timeslot_id, items):
        self.calls.append((shop_id, target_timeslot_id, items))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


def _entry(timeslot_id, start=SLOT_START, items=None):
    return ScheduleEntry(timeslot_id=timeslot_id, start_time=start, end_time=start + 3600,
                         items=items or [{"item_id": 1}])


def _schedule(db, *entries, minutes_before=10):
    return scheduler.schedule_copy_jobs(db, SHOP_ID, SOURCE_ID, list(entries), minutes_before)


def _at(seconds_from_slot_start):
    return datetime.fromtimestamp(SLOT_START + seconds_from_slot_start, tz=timezone.utc)


@pytest.mark.parametrize("given,expected", [(70, 60), (0, 1), (-5, 1), (10, 10), (None, 10), (60, 60), (1, 1)])
def test_minutes_before_is_clamped(given, expected):
    assert scheduler.clamp_minutes_before(given) == expected


def test_schedule_creates_pending_jobs_with_run_at(db):
    results = _schedule(db, _entry(1), _entry(2, start=SLOT_START + 7200), minutes_before=70)

    assert [r["success"] for r in results] == [True, True]
    jobs = scheduler.list_jobs(db, SHOP_ID)
    assert [j.target_timeslot_id for j in jobs] == [1, 2]
    assert all(j.status == "pending" for j in jobs)
    assert _to_utc(jobs[0].scheduled_at) == _at(-3600)
    assert jobs[0].items_data == [{"item_id": 1}]
    assert results[0]["scheduled_at"] == _at(-3600).isoformat()


def test_list_is_ordered_by_run_at_and_scoped_to_shop(db):
    _schedule(db, _entry(3, start=SLOT_START + 7200), _entry(1), _entry(2, start=SLOT_START + 3600))
    scheduler.schedule_copy_jobs(db, 42, SOURCE_ID, [_entry(99)])

    jobs = scheduler.list_jobs(db, SHOP_ID)

    assert [j.target_timeslot_id for j in jobs] == [1, 2, 3]


def test_cancel_deletes_pending_job(db):
    job_id = _schedule(db, _entry(1))[0]["id"]

    assert scheduler.cancel_job(db, SHOP_ID, job_id) is True
    assert db.query(ScheduledFlashSale).count() == 0


def test_cancel_is_refused_for_running_job(db):
    job_id = _schedule(db, _entry(1))[0]["id"]
    assert scheduler.claim_job(db, job_id)

    assert scheduler.cancel_job(db, SHOP_ID, job_id) is False
    job = db.query(ScheduledFlashSale).one()
    assert job.status == "running"


def test_cancel_is_scoped_to_shop(db):
    job_id = _schedule(db, _entry(1))[0]["id"]

    assert scheduler.cancel_job(db, 42, job_id) is False
    assert db.query(ScheduledFlashSale).count() == 1


def test_update_run_at_only_for_pending(db):
    job_id = _schedule(db, _entry(1))[0]["id"]
    new_run_at = _at(-1800)

    job = scheduler.update_job_run_at(db, SHOP_ID, job_id, new_run_at)
    assert _to_utc(job.scheduled_at) == new_run_at

    scheduler.claim_job(db, job_id)
    with pytest.raises(InvalidJobState):
        scheduler.update_job_run_at(db, SHOP_ID, job_id, _at(-60))

    with pytest.raises(ScheduledJobNotFound):
        scheduler.update_job_run_at(db, SHOP_ID, "missing", _at(-60))


def test_claim_is_won_once(db):
    job_id = _schedule(db, _entry(1))[0]["id"]

    assert scheduler.claim_job(db, job_id) is True
    assert scheduler.claim_job(db, job_id) is False


@pytest.mark.asyncio
async def test_sweep_never_runs_jobs_before_run_at(db):
    _schedule(db, _entry(1))
    executor = RecordingExecutor()

    summary = await scheduler.sweep_due_jobs(db, executor, now=_at(-601))

    assert summary.processed == 0
    assert executor.calls == []
    assert db.query(ScheduledFlashSale).one().status == "pending"


@pytest.mark.asyncio
async def test_sweep_runs_due_jobs_in_order_within_batch(db):
    _schedule(db, _entry(2, start=SLOT_START + 60), _entry(1), _entry(3, start=SLOT_START + 120))
    executor = RecordingExecutor()

    summary = await scheduler.sweep_due_jobs(db, executor, now=_at(3600), batch_size=2)

    assert summary.processed == 2
    assert [c[1] for c in executor.calls] == [1, 2]
    statuses = {j.target_timeslot_id: j.status for j in db.query(ScheduledFlashSale).all()}
    assert statuses == {1: "completed", 2: "completed", 3: "pending"}


@pytest.mark.asyncio
async def test_executor_exception_marks_job_failed_and_batch_continues(db):
    _schedule(db, _entry(1), _entry(2, start=SLOT_START + 60))

    class Flaky(RecordingExecutor):
        async def execute(self, db, shop_id, target_timeslot_id, items):
            self.calls.append(target_timeslot_id)
            if target_timeslot_id == 1:
                raise RuntimeError("provider exploded")
            return self.result

    executor = Flaky()
    summary = await scheduler.sweep_due_jobs(db, executor, now=_at(3600))

    assert summary.processed == 2
    jobs = {j.target_timeslot_id: j for j in db.query(ScheduledFlashSale).all()}
    assert jobs[1].status == "failed"
    assert jobs[1].result_message == "provider exploded"
    assert jobs[1].finished_at is not None
    assert jobs[2].status == "completed"


@pytest.mark.asyncio
async def test_unsuccessful_result_marks_job_failed(db):
    _schedule(db, _entry(1))
    executor = RecordingExecutor(result=FlashSaleCopyResult(success=False, message="Create flash sale failed: x"))

    await scheduler.sweep_due_jobs(db, executor, now=_at(0))

    job = db.query(ScheduledFlashSale).one()
    assert job.status == "failed"
    assert job.result_message == "Create flash sale failed: x"


@pytest.mark.asyncio
async def test_end_to_end_job_runs_ten_minutes_before_slot(db, services, seed_shop, fake_shopee):
    seed_shop(SHOP_ID)
    items = [{"item_id": 1000 + i} for i in range(5)]
    failed = [{"item_id": 1001, "err_msg": "price"}, {"item_id": 1004, "err_msg": "stock"}]
    fake_shopee.on(CREATE_FLASH_SALE_PATH, {"error": "", "response": {"flash_sale_id": 5150}})
    fake_shopee.on(ADD_FLASH_SALE_ITEMS_PATH, {"error": "", "response": {"failed_items": failed}})

    results = scheduler.schedule_copy_jobs(
        db, SHOP_ID, SOURCE_ID, [ScheduleEntry(timeslot_id=777, start_time=SLOT_START, items=items)]
    )
    assert results[0]["scheduled_at"] == _at(-600).isoformat()

    early = await scheduler.sweep_due_jobs(db, services.executor, now=_at(-601))
    assert early.processed == 0
    assert fake_shopee.calls == []

    summary = await scheduler.sweep_due_jobs(db, services.executor, now=_at(-600))

    assert summary.processed == 1
    job = db.query(ScheduledFlashSale).one()
    db.refresh(job)
    assert job.status == "completed"
    assert job.result_flash_sale_id == 5150
    assert "3/5" in job.result_message
    assert job.failed_items == failed


@pytest.mark.asyncio
async def test_overlapping_sweeps_execute_job_once(session_factory, monkeypatch):
    setup = session_factory()
    job_id = _schedule(setup, _entry(1))[0]["id"]
    setup.close()

    # Both sweeps see the job as due, as if they read before either claimed.
    monkeypatch.setattr(scheduler, "_pick_due_job_ids", lambda db, now, limit: [job_id])
    executor = RecordingExecutor()

    db_a, db_b = session_factory(), session_factory()
    try:
        first, second = await asyncio.gather(
            scheduler.sweep_due_jobs(db_a, executor, now=_at(0)),
            scheduler.sweep_due_jobs(db_b, executor, now=_at(0)),
        )
    finally:
        db_a.close()
        db_b.close()

    assert len(executor.calls) == 1
    assert first.processed + second.processed == 1
    assert first.skipped + second.skipped == 1


@pytest.mark.asyncio
async def test_force_run_ignores_run_at_but_requires_pending(db):
    job_id = _schedule(db, _entry(1))[0]["id"]
    executor = RecordingExecutor()

    result = await scheduler.force_run_job(db, job_id, executor, shop_id=SHOP_ID)

    assert result.success is True
    assert len(executor.calls) == 1
    assert db.query(ScheduledFlashSale).one().status == "completed"

    with pytest.raises(InvalidJobState):
        await scheduler.force_run_job(db, job_id, executor)
    with pytest.raises(ScheduledJobNotFound):
        await scheduler.force_run_job(db, "missing", executor)
    with pytest.raises(ScheduledJobNotFound):
        await scheduler.force_run_job(db, job_id, executor, shop_id=42)


@pytest.mark.asyncio
async def test_sweep_skips_job_rescheduled_after_it_was_picked(db, monkeypatch):
    job_id = _schedule(db, _entry(1))[0]["id"]
    now = _at(0)
    pick = scheduler._pick_due_job_ids

    def pick_then_reschedule(db, now, limit):
        ids = pick(db, now, limit)
        scheduler.update_job_run_at(db, SHOP_ID, job_id, now + timedelta(days=1))
        return ids

    monkeypatch.setattr(scheduler, "_pick_due_job_ids", pick_then_reschedule)
    executor = RecordingExecutor()

    summary = await scheduler.sweep_due_jobs(db, executor, now=now)

    assert executor.calls == []
    assert summary.processed == 0
    assert summary.skipped == 1
    job = db.query(ScheduledFlashSale).one()
    db.refresh(job)
    assert job.status == "pending"
    assert _to_utc(job.scheduled_at) == now + timedelta(days=1)


@pytest.mark.asyncio
async def test_unsaveable_result_marks_job_failed_and_batch_continues(db):
    _schedule(db, _entry(1), _entry(2, start=SLOT_START + 60))

    class UnsaveableFirst(RecordingExecutor):
        async def execute(self, db, shop_id, target_timeslot_id, items):
            self.calls.append(target_timeslot_id)
            if target_timeslot_id == 1:
                return FlashSaleCopyResult(success=True, flash_sale_id=41, message="Created flash sale 41: 0/1 items added",
                                           failed_items=[{"item_id": 1, "reason": object()}])
            return self.result

    executor = UnsaveableFirst()
    summary = await scheduler.sweep_due_jobs(db, executor, now=_at(3600))

    assert executor.calls == [1, 2]
    assert summary.processed == 2
    assert summary.results[0]["success"] is False
    assert summary.results[0]["flash_sale_id"] == 41
    db.expire_all()
    jobs = {j.target_timeslot_id: j for j in db.query(ScheduledFlashSale).all()}
    assert jobs[1].status == "failed"
    assert "result could not be saved" in jobs[1].result_message
    assert jobs[1].finished_at is not None
    assert jobs[2].status == "completed"
