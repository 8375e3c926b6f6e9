"""
Tests for export generation scheduling (inline and threaded) and the CLI entry points.
"""

import json

from dossier_exports.models import db
from dossier_exports.models.export import Export
from dossier_exports.services.export_service import find_or_create_export, request_export
from dossier_exports.services.export_worker import ExportWorker

from tests import factories


class FailingBuilder:
    def build(self, dossiers, columns):
        raise RuntimeError("storage unavailable")


class TestRequestExport:
    def test_generates_inline_when_sync(self, groupe, instructeur, export_dir):
        factories.make_dossier(groupe)

        export = request_export("csv", [groupe], instructeur, statut="tous")
        db.session.expire_all()

        assert export.is_generated
        assert export.dossiers_count == 1
        assert (export_dir / export.artifact_ref).exists()

    def test_reused_export_is_not_regenerated(self, groupe, instructeur):
        first = request_export("csv", [groupe], instructeur)
        first_ref = first.artifact_ref

        second = request_export("csv", [groupe], instructeur)

        assert second.id == first.id
        assert second.artifact_ref == first_ref
        assert Export.query.count() == 1


class TestExportWorker:
    def test_inline_failure_is_recorded_not_raised(self, groupe, instructeur):
        export, _ = find_or_create_export("csv", [groupe], instructeur)

        assert ExportWorker.submit(export.id, builder=FailingBuilder()) is None
        db.session.expire_all()

        assert export.is_failed
        assert export.error_message == "storage unavailable"

    def test_background_generation(self, app, groupe, instructeur, monkeypatch):
        factories.make_dossier(groupe)
        export, _ = find_or_create_export("xlsx", [groupe], instructeur)
        monkeypatch.setitem(app.config, "EXPORT_GENERATION_ASYNC", True)

        thread = ExportWorker.submit(export.id)
        thread.join(timeout=30)
        db.session.expire_all()

        assert not thread.is_alive()
        assert not ExportWorker.is_running(export.id)
        assert export.is_generated
        assert export.dossiers_count == 1


class TestCli:
    def test_generate_export_command(self, app, groupe, instructeur):
        factories.make_dossier(groupe)
        export, _ = find_or_create_export("json", [groupe], instructeur)

        result = app.test_cli_runner().invoke(args=["generate-export", str(export.id)])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["job_status"] == "generated"
        assert payload["dossiers_count"] == 1

    def test_run_job_command(self, app):
        factories.make_export(job_status="failed", updated_at=factories.ago(hours=48))
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["run-job", "purge_stale_exports"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["result"]["purged"] == 1

    def test_run_unknown_job_exits_nonzero(self, app):
        result = app.test_cli_runner().invoke(args=["run-job", "nope"])
        assert result.exit_code == 1
