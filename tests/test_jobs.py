"""Tests for the scheduled background jobs."""
from contextlib import asynccontextmanager

import pytest

from app.jobs import inventory_jobs, notification_jobs
from app.jobs.scheduler import scheduler, register_jobs, get_job_status
from app.models import NotificationEvent
from app.services.inventory_ledger import InventoryLedger
from app.services.notification_service import NotificationDispatcher
from app.services.transaction import transaction_scope


@pytest.fixture
def job_sessions(monkeypatch, session_factory):
    """Point the jobs' session context manager at the test database."""

    @asynccontextmanager
    async def _session():
        async with session_factory() as session:
            yield session
            await session.commit()

    monkeypatch.setattr(inventory_jobs, "get_db_session", _session)
    monkeypatch.setattr(notification_jobs, "get_db_session", _session)


def test_register_jobs_is_idempotent():
    register_jobs()
    register_jobs()
    try:
        status = get_job_status()
        job_ids = sorted(job["id"] for job in status)
        assert job_ids == ["check_inventory_consistency", "process_notification_queue"]
        # Not started yet, so nothing is scheduled to run
        assert [job["next_run_time"] for job in status] == [None, None]
    finally:
        scheduler.remove_all_jobs()


async def test_consistency_job_reports_discrepancies(db, product, branch_location, job_sessions):
    async with transaction_scope(db):
        _, record = await InventoryLedger(db).apply_movement(product.id, branch_location.id, "PURCHASE", 6)
    record.quantity = 5
    await db.commit()

    result = await inventory_jobs.check_inventory_consistency()

    assert result["records_checked"] == 1
    assert result["movements_checked"] == 1
    [discrepancy] = result["discrepancies"]
    assert discrepancy["kind"] == "QUANTITY"
    assert (discrepancy["expected"], discrepancy["actual"]) == (6, 5)


async def test_consistency_job_logs_instead_of_raising(monkeypatch):
    @asynccontextmanager
    async def _broken():
        raise RuntimeError("database unavailable")
        yield

    monkeypatch.setattr(inventory_jobs, "get_db_session", _broken)

    result = await inventory_jobs.check_inventory_consistency()
    assert result["records_checked"] == 0
    assert result["error"] == "database unavailable"


async def test_notification_job_sends_due_rows(session_factory, job_sessions):
    await NotificationDispatcher(session_factory).notify(
        NotificationEvent.GRN_COMPLETED, {"goods_receipt_id": "g-1"}, {"receipt_number": "GRN-2026-0001"},
    )

    summary = await notification_jobs.process_notification_queue()
    assert summary == {"processed": 1, "sent": 1, "retrying": 0, "failed": 0}
