"""
Tests for the scheduler service and the export sweeps.
"""

import pytest

from dossier_exports.models import db
from dossier_exports.models.export import Export
from dossier_exports.models.scheduling import ScheduledJob
from dossier_exports.services import scheduler_service
from dossier_exports.services.scheduler_service import SchedulerService, get_registered_jobs

from tests import factories


@pytest.fixture()
def registered_jobs():
    SchedulerService.ensure_jobs_registered()
    return {j.job_name: j for j in ScheduledJob.query.all()}


class TestRegistry:
    def test_export_jobs_registered(self):
        jobs = get_registered_jobs()
        assert "purge_stale_exports" in jobs
        assert "reclaim_stuck_exports" in jobs

    def test_ensure_jobs_registered_creates_rows(self, registered_jobs):
        purge = registered_jobs["purge_stale_exports"]
        assert purge.is_enabled
        assert purge.schedule_config["minute"] == "15"
        assert SchedulerService.ensure_jobs_registered() == []

    def test_list_jobs(self, registered_jobs):
        listed = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert listed["reclaim_stuck_exports"]["db_record"]["job_name"] == "reclaim_stuck_exports"

    def test_toggle_job(self, registered_jobs):
        result = SchedulerService.toggle_job("purge_stale_exports", False)
        assert result["is_enabled"] is False
        assert result["status"] == "paused"
        assert SchedulerService.toggle_job("nope", True) is None


class TestRunJob:
    def test_unknown_job(self):
        result = SchedulerService.run_job("does_not_exist")
        assert result["status"] == "error"

    def test_run_is_recorded(self, registered_jobs):
        result = SchedulerService.run_job("purge_stale_exports")
        db.session.expire_all()

        record = ScheduledJob.query.filter_by(job_name="purge_stale_exports").one()
        assert result["status"] == "success"
        assert record.run_count == 1
        assert record.last_run_status == "success"
        assert record.last_run_result["purged"] == 0

    def test_failing_job_is_recorded(self, registered_jobs, monkeypatch):
        def broken(app):
            raise RuntimeError("boom")

        monkeypatch.setitem(scheduler_service._job_registry, "purge_stale_exports", broken)

        result = SchedulerService.run_job("purge_stale_exports")
        db.session.expire_all()

        record = ScheduledJob.query.filter_by(job_name="purge_stale_exports").one()
        assert result["status"] == "failed"
        assert result["error"] == "boom"
        assert record.error_count == 1
        assert record.last_error == "boom"


class TestPurgeStaleExports:
    def test_deletes_only_unmarked_stale_exports(self, registered_jobs, export_dir):
        old_generated = factories.make_export(job_status="generated", updated_at=factories.ago(hours=33),
                                              artifact_ref="old.csv")
        old_failed = factories.make_export(job_status="failed", updated_at=factories.ago(hours=40))
        in_flight = factories.make_export(
            job_status="generated", updated_at=factories.ago(hours=33),
            generation_started_at=factories.ago(minutes=5),
        )
        fresh = factories.make_export(job_status="generated", updated_at=factories.ago(hours=1))
        pending = factories.make_export(job_status="pending", updated_at=factories.ago(hours=33))
        export_dir.mkdir()
        (export_dir / "old.csv").write_text("x")
        db.session.commit()
        removed = {old_generated.id, old_failed.id}

        result = SchedulerService.run_job("purge_stale_exports")
        db.session.expire_all()

        assert result["result"]["purged"] == 2
        assert result["result"]["threshold_hours"] == 32
        remaining = {e.id for e in Export.query.all()}
        assert remaining == {in_flight.id, fresh.id, pending.id}
        assert not remaining & removed
        assert not (export_dir / "old.csv").exists()


class TestReclaimStuckExports:
    def test_fails_stuck_pending_exports(self, registered_jobs):
        abandoned = factories.make_export(job_status="pending", updated_at=factories.ago(hours=17))
        crashed = factories.make_export(
            job_status="pending", updated_at=factories.ago(hours=20),
            generation_started_at=factories.ago(hours=20),
        )
        running = factories.make_export(
            job_status="pending", updated_at=factories.ago(hours=17),
            generation_started_at=factories.ago(minutes=10),
        )
        recent = factories.make_export(job_status="pending", updated_at=factories.ago(hours=1))
        db.session.commit()

        result = SchedulerService.run_job("reclaim_stuck_exports")
        db.session.expire_all()

        assert result["result"] == {"reclaimed": 2, "skipped": 0}
        for export in (abandoned, crashed):
            assert export.is_failed
            assert export.error_message
            assert export.generation_started_at is None
        assert running.is_pending
        assert recent.is_pending

    def test_reclaimed_exports_are_not_reused(self, registered_jobs, groupe, instructeur):
        from dossier_exports.services.export_service import find_or_create_export

        export, _ = find_or_create_export("csv", [groupe], instructeur)
        export.updated_at = factories.ago(hours=17)
        db.session.commit()

        SchedulerService.run_job("reclaim_stuck_exports")
        fresh, created = find_or_create_export("csv", [groupe], instructeur)

        assert created
        assert fresh.id != export.id
