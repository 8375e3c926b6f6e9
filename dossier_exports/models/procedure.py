"""
Dossier Exports
Procedure schema models.

Models:
    - Procedure: configurable form definition (submitter mode, SVA/SVR, chorus)
    - ProcedureRevision: immutable versioned snapshot of the field schema
    - TypeDeChamp: one field definition (schema node) within a revision
    - GroupeInstructeur: named subdivision of a procedure's dossiers
    - AssignTo: instructeur ↔ groupe instructeur assignment
    - Label: procedure-level tag attachable to dossiers
"""

from datetime import datetime, timezone

from dossier_exports.models import db


def _utcnow():
    return datetime.now(timezone.utc)


SVA_SVR_DECISIONS = {"disabled", "sva", "svr"}


class Procedure(db.Model):
    """A configurable form whose revisions generate dossiers."""

    __tablename__ = "procedures"

    id = db.Column(db.Integer, primary_key=True)
    libelle = db.Column(db.String(255), nullable=False)
    for_individual = db.Column(db.Boolean, default=False, nullable=False,
                               comment="True → submitters are individuals, False → organizations")
    sva_svr = db.Column(db.JSON, default=dict,
                        comment='{"decision": "sva|svr|disabled", "period": 2, "unit": "months"}')
    chorus_enabled = db.Column(db.Boolean, default=False, nullable=False)
    chorus = db.Column(db.JSON, default=dict,
                       comment="domaine_fonctionnel / referentiel_de_programmation / centre_de_cout")
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    revisions = db.relationship(
        "ProcedureRevision",
        back_populates="procedure",
        cascade="all, delete-orphan",
        order_by="ProcedureRevision.id",
        lazy="select",
    )
    groupe_instructeurs = db.relationship(
        "GroupeInstructeur",
        back_populates="procedure",
        cascade="all, delete-orphan",
        order_by="GroupeInstructeur.id",
        lazy="select",
    )
    labels = db.relationship(
        "Label", back_populates="procedure", cascade="all, delete-orphan",
        order_by="Label.id", lazy="select",
    )

    @property
    def active_revision(self):
        """Latest published revision, or the latest draft when nothing is published."""
        published = [r for r in self.revisions if r.published_at is not None]
        if published:
            return published[-1]
        return self.revisions[-1] if self.revisions else None

    @property
    def sva_svr_decision(self) -> str:
        return (self.sva_svr or {}).get("decision", "disabled")

    @property
    def sva_svr_enabled(self) -> bool:
        return self.sva_svr_decision in ("sva", "svr")

    @property
    def chorusable(self) -> bool:
        return bool(self.chorus_enabled)

    def __repr__(self):
        return f"<Procedure {self.id}: {self.libelle[:40]}>"


class ProcedureRevision(db.Model):
    """Versioned snapshot of a procedure's field schema."""

    __tablename__ = "procedure_revisions"

    id = db.Column(db.Integer, primary_key=True)
    procedure_id = db.Column(
        db.Integer, db.ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    procedure = db.relationship("Procedure", back_populates="revisions")
    types_de_champ = db.relationship(
        "TypeDeChamp",
        back_populates="revision",
        cascade="all, delete-orphan",
        order_by="TypeDeChamp.position",
        lazy="select",
    )

    def _roots(self, private: bool):
        return [
            tdc for tdc in self.types_de_champ
            if tdc.parent_id is None and bool(tdc.private) is private
        ]

    @property
    def types_de_champ_public(self):
        return self._roots(False)

    @property
    def types_de_champ_private(self):
        return self._roots(True)

    def __repr__(self):
        state = "published" if self.published_at else "draft"
        return f"<ProcedureRevision {self.id} procedure={self.procedure_id} [{state}]>"


class TypeDeChamp(db.Model):
    """One field definition. Repetition nodes own ordered children."""

    __tablename__ = "types_de_champ"
    __table_args__ = (
        db.Index("ix_tdc_revision_parent_position", "revision_id", "parent_id", "position"),
    )

    id = db.Column(db.Integer, primary_key=True)
    revision_id = db.Column(
        db.Integer, db.ForeignKey("procedure_revisions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("types_de_champ.id", ondelete="CASCADE"), nullable=True,
    )
    stable_id = db.Column(db.Integer, nullable=False, index=True,
                          comment="Survives revisions; keys champ values and columns")
    type_champ = db.Column(db.String(50), nullable=False, default="text")
    libelle = db.Column(db.String(255), nullable=False, default="")
    private = db.Column(db.Boolean, nullable=False, default=False,
                        comment="True → annotation visible to agents only")
    mandatory = db.Column(db.Boolean, nullable=False, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    options = db.Column(db.JSON, default=dict,
                        comment="Type-specific options, e.g. drop-down values")

    revision = db.relationship("ProcedureRevision", back_populates="types_de_champ")
    children = db.relationship(
        "TypeDeChamp",
        cascade="all, delete-orphan",
        order_by="TypeDeChamp.position",
        lazy="select",
    )

    def __repr__(self):
        return f"<TypeDeChamp {self.stable_id} {self.type_champ}: {self.libelle[:30]}>"


class GroupeInstructeur(db.Model):
    """Named subdivision of a procedure's dossiers; scopes exports and visibility."""

    __tablename__ = "groupe_instructeurs"

    id = db.Column(db.Integer, primary_key=True)
    procedure_id = db.Column(
        db.Integer, db.ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    label = db.Column(db.String(255), nullable=False)
    closed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    procedure = db.relationship("Procedure", back_populates="groupe_instructeurs")
    assign_tos = db.relationship(
        "AssignTo", back_populates="groupe_instructeur", cascade="all, delete-orphan", lazy="select",
    )

    @property
    def instructeurs(self):
        return [a.instructeur for a in self.assign_tos]

    def add(self, instructeur):
        """Assign an instructeur to this group (no-op when already assigned)."""
        if any(a.instructeur_id == instructeur.id for a in self.assign_tos):
            return
        self.assign_tos.append(AssignTo(instructeur=instructeur))

    def __repr__(self):
        return f"<GroupeInstructeur {self.id}: {self.label}>"


class AssignTo(db.Model):
    """Assignment of an instructeur to a groupe instructeur."""

    __tablename__ = "assign_tos"
    __table_args__ = (
        db.UniqueConstraint("groupe_instructeur_id", "instructeur_id", name="uq_assign_to"),
    )

    id = db.Column(db.Integer, primary_key=True)
    groupe_instructeur_id = db.Column(
        db.Integer, db.ForeignKey("groupe_instructeurs.id", ondelete="CASCADE"), nullable=False,
    )
    instructeur_id = db.Column(
        db.Integer, db.ForeignKey("instructeurs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    groupe_instructeur = db.relationship("GroupeInstructeur", back_populates="assign_tos")
    instructeur = db.relationship("Instructeur", back_populates="assign_tos")


class Label(db.Model):
    """Procedure-level tag that instructeurs attach to dossiers."""

    __tablename__ = "labels"

    id = db.Column(db.Integer, primary_key=True)
    procedure_id = db.Column(
        db.Integer, db.ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(30), default="")

    procedure = db.relationship("Procedure", back_populates="labels")

    def __repr__(self):
        return f"<Label {self.id}: {self.name}>"
