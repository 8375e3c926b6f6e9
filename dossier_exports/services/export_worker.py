"""
Dossier Exports
Export Worker.

Runs export generation in background threads. With
``EXPORT_GENERATION_ASYNC`` disabled (testing, CLI) generation runs inline.
"""

import logging
import threading

from flask import current_app

from dossier_exports.models import db

logger = logging.getLogger(__name__)

# In-memory registry of running generations (export_id → Thread)
_running_exports: dict[int, threading.Thread] = {}


class ExportWorker:
    """Schedules generation of pending exports."""

    @staticmethod
    def submit(export_id: int, builder=None):
        """
        Generate an export, in the background when configured to.

        The export row must already be committed so the worker thread can read it.

        Returns:
            The started Thread, or None when generation ran inline.
        """
        app = current_app._get_current_object()
        if not app.config.get("EXPORT_GENERATION_ASYNC", True):
            ExportWorker._generate(export_id, builder)
            return None

        if export_id in _running_exports:
            logger.info("Export %d already running", export_id, extra={"export_id": export_id})
            return _running_exports[export_id]

        t = threading.Thread(
            target=ExportWorker._execute_in_background,
            args=(app, export_id, builder),
            daemon=True,
        )
        _running_exports[export_id] = t
        t.start()
        return t

    @staticmethod
    def is_running(export_id: int) -> bool:
        return export_id in _running_exports

    # ── Internal ──────────────────────────────────────────────────────────

    @staticmethod
    def _generate(export_id, builder):
        from dossier_exports.services.export_service import generate_export

        try:
            generate_export(export_id, builder)
        except Exception:
            # already recorded as failed on the export
            logger.error("ExportWorker: export %d failed", export_id, extra={"export_id": export_id})

    @staticmethod
    def _execute_in_background(app, export_id: int, builder):
        """Run the generation in a background thread."""
        with app.app_context():
            try:
                ExportWorker._generate(export_id, builder)
            finally:
                db.session.remove()
                _running_exports.pop(export_id, None)
