"""Export registry.

Deduplicates export requests by fingerprint, classifies exports as stale or
stuck, and runs artifact generation under an in-flight marker.

Transaction policy: lookup-or-create and the compute wrapper commit (they are
the serialization and visibility points for concurrent workers). Every other
function flushes; the caller commits.

Reuse rules for a fingerprint:
    - pending   → reused unless stuck (older than the generation timeout)
    - generated → reused only inside the short reuse window
    - failed    → never reused

Usage:
    export = find_or_create_fresh_export("xlsx", [groupe], instructeur,
                                         statut="tous", procedure_presentation=pp)
    compute_with_safe_stale_for_purge(export, lambda: compute(export))
"""
import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError

from dossier_exports.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from dossier_exports.models import db
from dossier_exports.models.accounts import Instructeur
from dossier_exports.models.export import (
    EXPORT_FORMATS,
    EXPORT_STATUTS,
    FRESH_EXPORT_WINDOW,
    MAX_DUREE_CONSERVATION_EXPORT,
    MAX_DUREE_GENERATION,
    TIME_SPAN_TYPES,
    Export,
    ExportFingerprintLock,
    ExportGroupeInstructeur,
    Requester,
    validate_export_transition,
)
from dossier_exports.services.artifact_builder import TabularArtifactBuilder, remove_artifact
from dossier_exports.services.columns_service import ColumnContext, ProcedureColumns
from dossier_exports.services.dossier_filter_service import dossiers_for_export
from dossier_exports.services.notification import NotificationService
from dossier_exports.services.presentation_service import filters_for

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ── Thresholds ───────────────────────────────────────────────────────────


def retention_threshold() -> timedelta:
    hours = current_app.config.get("EXPORT_RETENTION_HOURS")
    return timedelta(hours=hours) if hours is not None else MAX_DUREE_CONSERVATION_EXPORT


def generation_timeout() -> timedelta:
    hours = current_app.config.get("EXPORT_GENERATION_TIMEOUT_HOURS")
    return timedelta(hours=hours) if hours is not None else MAX_DUREE_GENERATION


def reuse_window() -> timedelta:
    minutes = current_app.config.get("EXPORT_REUSE_WINDOW_MINUTES")
    return timedelta(minutes=minutes) if minutes is not None else FRESH_EXPORT_WINDOW


# ── Fingerprint ──────────────────────────────────────────────────────────


def scope_key(groupe_instructeur_ids) -> str:
    return "-".join(str(i) for i in sorted(set(int(i) for i in groupe_instructeur_ids)))


def compute_fingerprint(format, groupe_instructeur_ids, statut, time_span_type,
                        export_template_id=None, filtered_columns=None, sorted_column=None) -> str:
    """MD5 over the request parameters that change the artifact.

    A template fully defines the column set, so presentation filters are
    ignored when one is given.
    """
    payload = {
        "format": format,
        "scope": scope_key(groupe_instructeur_ids),
        "statut": statut,
        "time_span_type": time_span_type,
    }
    if export_template_id is not None:
        payload["export_template_id"] = export_template_id
    else:
        payload["filters"] = filtered_columns or []
        payload["sorted_column"] = sorted_column
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def _validate_request(format, groupe_instructeurs, statut, time_span_type):
    errors = {}
    if not format:
        errors["format"] = "format is required"
    elif format not in EXPORT_FORMATS:
        errors["format"] = f"unsupported format {format!r}"
    if not groupe_instructeurs:
        errors["groupe_instructeurs"] = "at least one groupe instructeur is required"
    if statut is not None and statut not in EXPORT_STATUTS:
        errors["statut"] = f"unknown statut {statut!r}"
    if time_span_type not in TIME_SPAN_TYPES:
        errors["time_span_type"] = f"unknown time span {time_span_type!r}"
    if errors:
        raise ValidationError("Invalid export request", details=errors)


def _touch_lock(key):
    result = db.session.execute(
        update(ExportFingerprintLock)
        .where(ExportFingerprintLock.key == key)
        .values(touched_at=_utcnow())
    )
    return result.rowcount > 0


def _lock_fingerprint(key):
    """Serialize lookup-or-create on ``key`` until the caller commits.

    The lock row is written, not selected: the UPDATE takes SQLite's database
    write lock (FOR UPDATE is a no-op there) and a row lock on PostgreSQL.
    It must run before any lookup in the transaction.
    """
    if _touch_lock(key):
        return
    try:
        with db.session.begin_nested():
            db.session.add(ExportFingerprintLock(key=key))
    except IntegrityError:
        logger.debug("Fingerprint lock %s created concurrently", key)
        _touch_lock(key)


# ── Lookup-or-create ─────────────────────────────────────────────────────


def _find_reusable(key):
    now = _utcnow()
    return (
        Export.query
        .filter(
            Export.key == key,
            or_(
                and_(Export.job_status == "pending", Export.updated_at >= now - generation_timeout()),
                and_(Export.job_status == "generated", Export.updated_at >= now - reuse_window()),
            ),
        )
        .order_by(Export.updated_at.desc(), Export.id.desc())
        .first()
    )


def find_or_create_export(format, groupe_instructeurs, requester, *, export_template=None,
                          time_span_type="everything", statut="tous",
                          procedure_presentation=None):
    """Return ``(export, created)`` for the request fingerprint.

    Raises:
        ValidationError: bad format, empty scope, unknown statut/time span.
        NotFoundError: the presentation references a column that no longer exists.
    """
    format = str(format) if format is not None else None
    groupe_instructeurs = list(groupe_instructeurs or [])
    _validate_request(format, groupe_instructeurs, statut, time_span_type)

    filtered_columns = []
    sorted_column = None
    if export_template is None and procedure_presentation is not None:
        if statut is not None:
            filtered_columns = [fc.to_dict() for fc in filters_for(procedure_presentation, statut)]
        sorted_column = procedure_presentation.sorted_column

    groupe_ids = [g.id for g in groupe_instructeurs]
    key = compute_fingerprint(
        format, groupe_ids, statut, time_span_type,
        export_template_id=export_template.id if export_template is not None else None,
        filtered_columns=filtered_columns,
        sorted_column=sorted_column,
    )

    _lock_fingerprint(key)
    existing = _find_reusable(key)
    if existing is not None:
        db.session.commit()
        logger.info("Reusing export %s", existing.id,
                    extra={"export_id": existing.id, "job_status": existing.job_status})
        return existing, False

    export = Export(
        format=format,
        key=key,
        scope_key=scope_key(groupe_ids),
        statut=statut,
        time_span_type=time_span_type,
        job_status="pending",
        export_template=export_template,
        filtered_columns=filtered_columns,
        sorted_column=sorted_column,
        groupe_instructeurs=groupe_instructeurs,
    )
    if requester is not None:
        export.requester = Requester.of(requester)
    db.session.add(export)
    db.session.commit()
    logger.info(
        "Created export %s (%s, scope=%s)", export.id, format, export.scope_key,
        extra={"export_id": export.id, "procedure_id": groupe_instructeurs[0].procedure_id},
    )
    return export, True


def find_or_create_fresh_export(format, groupe_instructeurs, requester, **kwargs):
    """Idempotent export request: the reusable export for the fingerprint, or a new pending one."""
    export, _ = find_or_create_export(format, groupe_instructeurs, requester, **kwargs)
    return export


def request_export(format, groupe_instructeurs, requester, **kwargs):
    """Find or create an export and schedule its generation when it is new."""
    from dossier_exports.services.export_worker import ExportWorker

    export, created = find_or_create_export(format, groupe_instructeurs, requester, **kwargs)
    if created:
        ExportWorker.submit(export.id)
    return export


# ── Classification ───────────────────────────────────────────────────────


def stale(threshold: timedelta | None = None):
    """Generated or failed exports not updated within ``threshold``."""
    cutoff = _utcnow() - (threshold if threshold is not None else retention_threshold())
    return Export.query.filter(
        Export.job_status.in_(("generated", "failed")),
        Export.updated_at < cutoff,
    )


def stuck(threshold: timedelta | None = None):
    """Pending exports not updated within ``threshold``."""
    cutoff = _utcnow() - (threshold if threshold is not None else generation_timeout())
    return Export.query.filter(
        Export.job_status == "pending",
        Export.updated_at < cutoff,
    )


def by_key(groupe_instructeur_ids):
    """Exports scoped to exactly this set of groups."""
    return Export.query.filter(Export.scope_key == scope_key(groupe_instructeur_ids))


def for_groupe_instructeurs(groupe_instructeur_ids):
    """Exports whose scope intersects the given groups, each returned once."""
    export_ids = (
        db.select(ExportGroupeInstructeur.export_id)
        .where(ExportGroupeInstructeur.groupe_instructeur_id.in_(list(groupe_instructeur_ids)))
    )
    return Export.query.filter(Export.id.in_(export_ids))


def list_exports_for(groupe_instructeur_ids):
    exports = for_groupe_instructeurs(groupe_instructeur_ids).order_by(Export.created_at.desc(), Export.id.desc())
    return [e.to_dict() for e in exports]


def get_export(export_id):
    export = db.session.get(Export, export_id)
    if export is None:
        raise NotFoundError("Export", export_id)
    return export


def destroy_export(export):
    """Delete the export and its artifact. Scope groups are left untouched."""
    remove_artifact(export.artifact_ref)
    db.session.delete(export)
    db.session.flush()
    logger.info("Destroyed export %s", export.id, extra={"export_id": export.id})


# ── Lifecycle ────────────────────────────────────────────────────────────


def transition_export(export, new_status):
    old = export.job_status
    if not validate_export_transition(old, new_status):
        raise InvalidTransitionError("Export", old, new_status)
    export.job_status = new_status
    db.session.flush()
    logger.info("Export %s: %s → %s", export.id, old, new_status,
                extra={"export_id": export.id, "job_status": new_status})
    return export


def export_columns(export, catalog):
    """Template columns when the export has a template, else the default export set."""
    if export.export_template is not None:
        return [catalog.find_column(h_id=h_id) for h_id in export.export_template.exported_columns or []]
    return catalog.default_export_columns()


def _record_failure(export_id, exc):
    """Roll back and leave the export ``failed`` with ``exc`` as its error.

    Returns None when the export row no longer exists.
    """
    db.session.rollback()
    export = db.session.get(Export, export_id)
    if export is None:
        logger.warning("Export %s vanished during generation", export_id,
                       extra={"export_id": export_id})
        return None
    if export.is_pending:
        export.job_status = "failed"
    export.error_message = str(exc) or exc.__class__.__name__
    export.dossiers_count = None
    export.generation_started_at = None
    db.session.commit()
    return export


def compute(export, builder=None):
    """Resolve the dataset, build the artifact and mark the export generated.

    Any error while resolving or building leaves the export ``failed`` and is
    re-raised.
    """
    export_id = export.id
    try:
        profile = export.user_profile
        context = ColumnContext(profile if isinstance(profile, Instructeur) else None)
        catalog = ProcedureColumns(export.procedure, context)
        columns = export_columns(export, catalog)
        dossiers = dossiers_for_export(export).all()

        builder = builder or TabularArtifactBuilder.for_export(export)
        artifact_ref = builder.build(dossiers, columns)

        export.artifact_ref = artifact_ref
        export.dossiers_count = len(dossiers)
        transition_export(export, "generated")
    except Exception as exc:
        _record_failure(export_id, exc)
        raise
    db.session.commit()

    try:
        NotificationService.export_ready(export)
    except Exception:
        logger.exception("Export-ready notification failed", extra={"export_id": export.id})
    return export


def compute_with_safe_stale_for_purge(export, compute_fn):
    """Run ``compute_fn`` while ``export`` carries the in-flight marker.

    Sweeps skip marked exports. Any error leaves the export ``failed`` with
    the error message recorded, then propagates.
    """
    export_id = export.id
    now = _utcnow()
    export.generation_started_at = now
    export.updated_at = now
    db.session.commit()

    start = time.time()
    try:
        result = compute_fn()
    except Exception as exc:
        failed = _record_failure(export_id, exc)
        logger.exception(
            "Export generation failed",
            extra={"export_id": export_id,
                   "job_status": failed.job_status if failed is not None else None,
                   "duration_ms": (time.time() - start) * 1000},
        )
        raise

    export.generation_started_at = None
    db.session.commit()
    logger.info(
        "Export generated",
        extra={"export_id": export_id, "job_status": export.job_status,
               "dossiers_count": export.dossiers_count,
               "duration_ms": (time.time() - start) * 1000},
    )
    return result


def generate_export(export_id, builder=None):
    """Generate one pending export (worker and CLI entry point)."""
    export = get_export(export_id)
    if not export.is_pending:
        logger.info("Export %s is %s; nothing to generate", export_id, export.job_status,
                    extra={"export_id": export_id})
        return export
    return compute_with_safe_stale_for_purge(export, lambda: compute(export, builder))
