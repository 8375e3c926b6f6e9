"""
Dossier Exports
Export job models.

Models:
    - Export: asynchronous report-generation job over a scope, format and filter set
    - ExportGroupeInstructeur: Export ↔ GroupeInstructeur scope join rows
    - ExportTemplate: saved column selection for exports of a group
    - ExportFingerprintLock: one row per fingerprint, written before every lookup / create

Export lifecycle:
    pending → generated | failed   (both terminal)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import event

from dossier_exports.core.exceptions import ValidationError
from dossier_exports.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EXPORT_FORMATS = ("csv", "xlsx", "json", "zip")
EXPORT_STATUTS = ("tous", "a-suivre", "suivis", "traites", "archives")
TIME_SPAN_TYPES = ("everything", "monthly")
JOB_STATUSES = ("pending", "generated", "failed")

EXPORT_TRANSITIONS = {
    "pending":   ["generated", "failed"],
    "generated": [],
    "failed":    [],
}

# Default thresholds; deployments override them through config.
MAX_DUREE_CONSERVATION_EXPORT = timedelta(hours=32)
MAX_DUREE_GENERATION = timedelta(hours=16)
FRESH_EXPORT_WINDOW = timedelta(minutes=5)


def validate_export_transition(old_status, new_status):
    """Return True if Export job_status transition is valid."""
    return new_status in EXPORT_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


# ── Requester ────────────────────────────────────────────────────────────────

class RequesterKind(str, Enum):
    """Agent kinds allowed to request an export (persisted as user_profile_type)."""
    INSTRUCTEUR = "Instructeur"
    ADMINISTRATEUR = "Administrateur"


@dataclass(frozen=True)
class Requester:
    """Typed reference to the agent who requested an export."""
    kind: RequesterKind
    id: int

    @classmethod
    def of(cls, profile) -> "Requester":
        from dossier_exports.models.accounts import Administrateur, Instructeur

        if isinstance(profile, Requester):
            return profile
        if isinstance(profile, Instructeur):
            return cls(RequesterKind.INSTRUCTEUR, profile.id)
        if isinstance(profile, Administrateur):
            return cls(RequesterKind.ADMINISTRATEUR, profile.id)
        raise ValidationError(
            "Unsupported export requester",
            details={"user_profile": type(profile).__name__},
        )

    def resolve(self):
        """Load the model instance this requester refers to."""
        from dossier_exports.models.accounts import Administrateur, Instructeur

        model = {
            RequesterKind.INSTRUCTEUR: Instructeur,
            RequesterKind.ADMINISTRATEUR: Administrateur,
        }[self.kind]
        return db.session.get(model, self.id)


# ── Models ───────────────────────────────────────────────────────────────────

class ExportGroupeInstructeur(db.Model):
    """Scope join row. Deleting an export never touches the group itself."""

    __tablename__ = "export_groupe_instructeurs"

    export_id = db.Column(
        db.Integer, db.ForeignKey("exports.id", ondelete="CASCADE"), primary_key=True,
    )
    groupe_instructeur_id = db.Column(
        db.Integer, db.ForeignKey("groupe_instructeurs.id", ondelete="CASCADE"), primary_key=True,
        index=True,
    )


class Export(db.Model):
    """Report-generation job; one artifact per (scope, filter configuration)."""

    __tablename__ = "exports"
    __table_args__ = (
        db.Index("ix_exports_key_status", "key", "job_status"),
        db.Index("ix_exports_status_updated", "job_status", "updated_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_profile_type = db.Column(db.String(30), nullable=True, comment="Instructeur | Administrateur")
    user_profile_id = db.Column(db.Integer, nullable=True)
    format = db.Column(db.String(10), nullable=False, comment="csv | xlsx | json | zip")
    statut = db.Column(db.String(20), nullable=True, default="tous")
    time_span_type = db.Column(db.String(20), nullable=False, default="everything")
    job_status = db.Column(db.String(20), nullable=False, default="pending",
                           comment="pending | generated | failed")
    dossiers_count = db.Column(db.Integer, nullable=True, comment="Set once, after a successful compute")
    export_template_id = db.Column(
        db.Integer, db.ForeignKey("export_templates.id", ondelete="SET NULL"), nullable=True,
    )

    key = db.Column(db.String(64), nullable=False, comment="Fingerprint of the export request")
    scope_key = db.Column(db.Text, nullable=False, comment="Sorted scope group ids joined by '-'")
    filtered_columns = db.Column(db.JSON, default=list,
                                 comment="Snapshot of the presentation filters: [{h_id, filter}]")
    sorted_column = db.Column(db.JSON, nullable=True)

    artifact_ref = db.Column(db.String(500), nullable=True)
    generation_started_at = db.Column(db.DateTime(timezone=True), nullable=True,
                                      comment="Set while a worker generates the artifact")
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    groupe_instructeurs = db.relationship(
        "GroupeInstructeur",
        secondary="export_groupe_instructeurs",
        order_by="GroupeInstructeur.id",
        lazy="select",
    )
    export_template = db.relationship("ExportTemplate", lazy="joined")

    # ── Requester ────────────────────────────────────────────────────────

    @property
    def requester(self) -> Requester | None:
        if self.user_profile_type is None or self.user_profile_id is None:
            return None
        return Requester(RequesterKind(self.user_profile_type), self.user_profile_id)

    @requester.setter
    def requester(self, value):
        requester = Requester.of(value)
        self.user_profile_type = requester.kind.value
        self.user_profile_id = requester.id

    @property
    def user_profile(self):
        requester = self.requester
        return requester.resolve() if requester else None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def procedure(self):
        return self.groupe_instructeurs[0].procedure if self.groupe_instructeurs else None

    @property
    def is_pending(self) -> bool:
        return self.job_status == "pending"

    @property
    def is_generated(self) -> bool:
        return self.job_status == "generated"

    @property
    def is_failed(self) -> bool:
        return self.job_status == "failed"

    def validation_errors(self) -> dict:
        errors = {}
        if not self.format:
            errors["format"] = "format is required"
        elif self.format not in EXPORT_FORMATS:
            errors["format"] = f"unsupported format {self.format!r}"
        if not self.groupe_instructeurs:
            errors["groupe_instructeurs"] = "at least one groupe instructeur is required"
        return errors

    def to_dict(self):
        return {
            "id": self.id,
            "user_profile_type": self.user_profile_type,
            "user_profile_id": self.user_profile_id,
            "format": self.format,
            "statut": self.statut,
            "time_span_type": self.time_span_type,
            "job_status": self.job_status,
            "dossiers_count": self.dossiers_count,
            "export_template_id": self.export_template_id,
            "groupe_instructeur_ids": [g.id for g in self.groupe_instructeurs],
            "filtered_columns": self.filtered_columns or [],
            "artifact_ref": self.artifact_ref,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Export {self.id} {self.format} [{self.job_status}]>"


@event.listens_for(Export, "before_insert")
def _validate_export_before_insert(mapper, connection, target):
    """Refuse to persist an export without scope or format."""
    errors = target.validation_errors()
    if errors:
        raise ValidationError("Invalid export", details=errors)


class ExportTemplate(db.Model):
    """Saved export configuration owned by a groupe instructeur."""

    __tablename__ = "export_templates"

    id = db.Column(db.Integer, primary_key=True)
    groupe_instructeur_id = db.Column(
        db.Integer, db.ForeignKey("groupe_instructeurs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    kind = db.Column(db.String(10), nullable=False, default="zip", comment="csv | xlsx | json | zip")
    exported_columns = db.Column(db.JSON, default=list, comment="Ordered list of column h_ids")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    groupe_instructeur = db.relationship("GroupeInstructeur", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "groupe_instructeur_id": self.groupe_instructeur_id,
            "name": self.name,
            "kind": self.kind,
            "exported_columns": self.exported_columns or [],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ExportTemplate {self.id}: {self.name}>"


class ExportFingerprintLock(db.Model):
    """Serialization point for lookup-or-create on one fingerprint."""

    __tablename__ = "export_fingerprint_locks"

    key = db.Column(db.String(64), primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    touched_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
