"""
Dossier Exports
Scheduled Jobs.

Periodic sweeps over the export registry.

Jobs:
    - purge_stale_exports: Deletes generated/failed exports past retention
    - reclaim_stuck_exports: Fails pending exports whose generation was lost

Both sweeps skip exports carrying the in-flight marker and re-read every
candidate with ``FOR UPDATE SKIP LOCKED`` so a row held by another worker is
left alone.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_

from dossier_exports.models import db
from dossier_exports.models.export import Export
from dossier_exports.services import export_service
from dossier_exports.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


def _lock_candidate(query, export_id):
    return (
        query
        .filter(Export.id == export_id)
        .with_for_update(skip_locked=True)
        .first()
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Stale Export Purge
# ═══════════════════════════════════════════════════════════════════════════

@register_job("purge_stale_exports")
def purge_stale_exports(app) -> dict[str, Any]:
    """Delete generated or failed exports older than the retention window."""
    threshold = export_service.retention_threshold()
    candidates = export_service.stale(threshold).filter(Export.generation_started_at.is_(None))
    candidate_ids = [e.id for e in candidates.with_entities(Export.id)]

    purged = 0
    skipped = 0
    for export_id in candidate_ids:
        export = _lock_candidate(candidates, export_id)
        if export is None:
            skipped += 1
            continue
        export_service.destroy_export(export)
        purged += 1

    db.session.commit()
    logger.info("Stale export purge: deleted %d, skipped %d", purged, skipped,
                extra={"job_name": "purge_stale_exports"})
    return {"purged": purged, "skipped": skipped, "threshold_hours": threshold.total_seconds() / 3600}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Stuck Export Reclaim
# ═══════════════════════════════════════════════════════════════════════════

@register_job("reclaim_stuck_exports")
def reclaim_stuck_exports(app) -> dict[str, Any]:
    """Mark pending exports older than the generation timeout as failed.

    An in-flight marker older than the timeout belongs to a crashed worker
    and no longer protects the export.
    """
    threshold = export_service.generation_timeout()
    cutoff = datetime.now(timezone.utc) - threshold
    candidates = export_service.stuck(threshold).filter(
        or_(Export.generation_started_at.is_(None), Export.generation_started_at < cutoff)
    )
    candidate_ids = [e.id for e in candidates.with_entities(Export.id)]

    reclaimed = 0
    skipped = 0
    for export_id in candidate_ids:
        export = _lock_candidate(candidates, export_id)
        if export is None:
            skipped += 1
            continue
        export_service.transition_export(export, "failed")
        export.error_message = f"Generation did not finish within {threshold}"
        export.generation_started_at = None
        reclaimed += 1

    db.session.commit()
    logger.info("Stuck export reclaim: failed %d, skipped %d", reclaimed, skipped,
                extra={"job_name": "reclaim_stuck_exports"})
    return {"reclaimed": reclaimed, "skipped": skipped}
