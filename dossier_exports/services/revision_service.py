"""Procedure schema authoring.

Transaction policy: methods use flush(), never commit().
Caller is responsible for db.session.commit().

Stable ids are allocated per procedure and survive revisions: a field cloned
into a new draft keeps its stable id, so columns keyed on it stay valid.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import func

from dossier_exports.core.exceptions import ValidationError
from dossier_exports.models import db
from dossier_exports.models.procedure import (
    SVA_SVR_DECISIONS,
    GroupeInstructeur,
    Procedure,
    ProcedureRevision,
    TypeDeChamp,
)
from dossier_exports.services.type_de_champ_kinds import kind_for

logger = logging.getLogger(__name__)


def create_procedure(libelle, *, for_individual=False, sva_svr_decision="disabled",
                     chorus=None, groupe_labels=("défaut",)):
    """Create a procedure with an empty draft revision and its groupes instructeurs."""
    if sva_svr_decision not in SVA_SVR_DECISIONS:
        raise ValidationError(
            f"Unknown SVA/SVR decision {sva_svr_decision!r}",
            details={"sva_svr_decision": ", ".join(sorted(SVA_SVR_DECISIONS))},
        )
    procedure = Procedure(
        libelle=libelle,
        for_individual=for_individual,
        sva_svr={"decision": sva_svr_decision},
        chorus_enabled=chorus is not None,
        chorus=chorus or {},
    )
    procedure.revisions.append(ProcedureRevision())
    for label in groupe_labels:
        procedure.groupe_instructeurs.append(GroupeInstructeur(label=label))
    db.session.add(procedure)
    db.session.flush()
    logger.info("Created procedure %s", procedure.id, extra={"procedure_id": procedure.id})
    return procedure


def draft_revision(procedure):
    """The unpublished revision being edited; created from the latest one if needed."""
    latest = procedure.revisions[-1] if procedure.revisions else None
    if latest is not None and latest.published_at is None:
        return latest
    draft = ProcedureRevision(procedure=procedure)
    db.session.add(draft)
    db.session.flush()
    if latest is not None:
        for tdc in [t for t in latest.types_de_champ if t.parent_id is None]:
            _clone(tdc, draft, parent=None)
        db.session.flush()
    db.session.refresh(draft)
    return draft


def _clone(tdc, revision, parent):
    copy = TypeDeChamp(
        revision_id=revision.id,
        parent_id=parent.id if parent is not None else None,
        stable_id=tdc.stable_id,
        type_champ=tdc.type_champ,
        libelle=tdc.libelle,
        private=tdc.private,
        mandatory=tdc.mandatory,
        position=tdc.position,
        options=dict(tdc.options or {}),
    )
    db.session.add(copy)
    db.session.flush()
    for child in tdc.children:
        _clone(child, revision, parent=copy)
    return copy


def next_stable_id(procedure) -> int:
    revision_ids = [r.id for r in procedure.revisions]
    if not revision_ids:
        return 1
    current = (
        db.session.query(func.max(TypeDeChamp.stable_id))
        .filter(TypeDeChamp.revision_id.in_(revision_ids))
        .scalar()
    )
    return (current or 0) + 1


def add_type_de_champ(revision, type_champ, libelle, *, private=False, parent=None,
                      mandatory=False, options=None, stable_id=None):
    """Append a field to ``revision`` (or to the ``parent`` repetition).

    Raises:
        ValidationError: unknown type, published revision, or a parent that
            is not a repetition.
    """
    kind_for(type_champ)
    if revision.published_at is not None:
        raise ValidationError("Published revisions are immutable", details={"revision_id": revision.id})
    if parent is not None and not kind_for(parent.type_champ).container:
        raise ValidationError("Only repetitions can hold child fields", details={"parent": parent.stable_id})

    siblings = parent.children if parent is not None else [
        t for t in revision.types_de_champ if t.parent_id is None and bool(t.private) is bool(private)
    ]
    tdc = TypeDeChamp(
        revision_id=revision.id,
        parent_id=parent.id if parent is not None else None,
        stable_id=stable_id if stable_id is not None else next_stable_id(revision.procedure),
        type_champ=type_champ,
        libelle=libelle,
        private=parent.private if parent is not None else private,
        mandatory=mandatory,
        position=len(siblings),
        options=options or {},
    )
    db.session.add(tdc)
    db.session.flush()
    db.session.expire(revision, ["types_de_champ"])
    if parent is not None:
        db.session.expire(parent, ["children"])
    return tdc


def publish_revision(procedure):
    """Publish the current draft; it becomes the active revision."""
    revision = procedure.revisions[-1] if procedure.revisions else None
    if revision is None or revision.published_at is not None:
        raise ValidationError("Nothing to publish", details={"procedure_id": procedure.id})
    now = datetime.now(timezone.utc)
    revision.published_at = now
    if procedure.published_at is None:
        procedure.published_at = now
    db.session.flush()
    logger.info("Published revision %s", revision.id, extra={"procedure_id": procedure.id})
    return revision
