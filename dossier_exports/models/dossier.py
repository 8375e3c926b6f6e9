"""
Dossier Exports
Submission (dossier) models.

Models:
    - Dossier: one submission against a procedure revision
    - Champ: stored value of one field for one dossier (repetition rows share a stable_id)
    - Individual: identity of an individual submitter
    - Etablissement: organization/establishment of an entity submitter
    - Avis: expert opinion requested on a dossier
    - Follow: instructeur following a dossier
    - DossierLabel: label attached to a dossier
"""

from datetime import datetime, timezone

from dossier_exports.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

DOSSIER_STATES = (
    "brouillon",
    "en_construction",
    "en_instruction",
    "accepte",
    "refuse",
    "sans_suite",
)
EN_COURS_STATES = ("en_construction", "en_instruction")
TERMINE_STATES = ("accepte", "refuse", "sans_suite")


class Dossier(db.Model):
    """A submission filled against a procedure's revision."""

    __tablename__ = "dossiers"
    __table_args__ = (
        db.Index("ix_dossiers_groupe_state", "groupe_instructeur_id", "state"),
    )

    id = db.Column(db.Integer, primary_key=True)
    revision_id = db.Column(
        db.Integer, db.ForeignKey("procedure_revisions.id", ondelete="CASCADE"), nullable=False,
    )
    groupe_instructeur_id = db.Column(
        db.Integer, db.ForeignKey("groupe_instructeurs.id", ondelete="SET NULL"), nullable=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    state = db.Column(db.String(30), nullable=False, default="brouillon",
                      comment="brouillon | en_construction | en_instruction | accepte | refuse | sans_suite")
    archived = db.Column(db.Boolean, nullable=False, default=False)
    motivation = db.Column(db.Text, nullable=True)

    depose_at = db.Column(db.DateTime(timezone=True), nullable=True)
    en_construction_at = db.Column(db.DateTime(timezone=True), nullable=True)
    en_instruction_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_champ_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sva_svr_decision_on = db.Column(db.Date, nullable=True)

    for_tiers = db.Column(db.Boolean, nullable=False, default=False)
    mandataire_first_name = db.Column(db.String(150), nullable=True)
    mandataire_last_name = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    revision = db.relationship("ProcedureRevision", lazy="joined")
    groupe_instructeur = db.relationship("GroupeInstructeur", lazy="joined")
    user = db.relationship("User", lazy="joined")
    individual = db.relationship(
        "Individual", uselist=False, back_populates="dossier", cascade="all, delete-orphan",
    )
    etablissement = db.relationship(
        "Etablissement", uselist=False, back_populates="dossier", cascade="all, delete-orphan",
    )
    champs = db.relationship(
        "Champ", back_populates="dossier", cascade="all, delete-orphan",
        order_by="Champ.id", lazy="select",
    )
    avis = db.relationship(
        "Avis", back_populates="dossier", cascade="all, delete-orphan",
        order_by="Avis.id", lazy="select",
    )
    follows = db.relationship(
        "Follow", back_populates="dossier", cascade="all, delete-orphan", lazy="select",
    )
    dossier_labels = db.relationship(
        "DossierLabel", back_populates="dossier", cascade="all, delete-orphan", lazy="select",
    )

    @property
    def procedure(self):
        return self.revision.procedure if self.revision else None

    @property
    def followers_instructeurs(self):
        return [f.instructeur for f in self.follows]

    @property
    def labels(self):
        return [dl.label for dl in self.dossier_labels]

    def champs_for(self, stable_id: int):
        """All champs stored for a stable id (several rows for repetition children)."""
        return [c for c in self.champs if c.stable_id == stable_id]

    def __repr__(self):
        return f"<Dossier {self.id} [{self.state}]>"


class Champ(db.Model):
    """Stored value of one field on one dossier.

    ``value`` holds the main scalar; ``value_json`` holds the extra facets of
    multi-facet types (e.g. ``{"code": "75056", "departement": "75 – Paris"}``).
    """

    __tablename__ = "champs"
    __table_args__ = (
        db.Index("ix_champs_dossier_stable", "dossier_id", "stable_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False,
    )
    stable_id = db.Column(db.Integer, nullable=False, index=True)
    row_id = db.Column(db.String(36), nullable=True,
                       comment="Repetition row identifier; NULL for top-level champs")
    type_champ = db.Column(db.String(50), nullable=False, default="text")
    private = db.Column(db.Boolean, nullable=False, default=False)
    value = db.Column(db.Text, nullable=True)
    value_json = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    dossier = db.relationship("Dossier", back_populates="champs")

    def facet(self, value_column: str):
        """Return the stored scalar for a facet (``value`` or a ``value_json`` key)."""
        if value_column == "value":
            return self.value
        return (self.value_json or {}).get(value_column)

    def __repr__(self):
        return f"<Champ {self.stable_id} dossier={self.dossier_id}>"


class Individual(db.Model):
    """Identity of an individual submitter."""

    __tablename__ = "individuals"

    id = db.Column(db.Integer, primary_key=True)
    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    nom = db.Column(db.String(150), default="")
    prenom = db.Column(db.String(150), default="")
    gender = db.Column(db.String(10), default="", comment="M. | Mme")

    dossier = db.relationship("Dossier", back_populates="individual")


class Etablissement(db.Model):
    """Establishment (and parent company) of an entity submitter."""

    __tablename__ = "etablissements"

    id = db.Column(db.Integer, primary_key=True)
    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    siret = db.Column(db.String(14), index=True)
    siege_social = db.Column(db.Boolean, default=False)
    naf = db.Column(db.String(10))
    libelle_naf = db.Column(db.String(255))
    adresse = db.Column(db.Text)
    numero_voie = db.Column(db.String(20))
    type_voie = db.Column(db.String(50))
    nom_voie = db.Column(db.String(255))
    complement_adresse = db.Column(db.String(255))
    code_postal = db.Column(db.String(10))
    localite = db.Column(db.String(150))
    code_insee_localite = db.Column(db.String(10))

    entreprise_siren = db.Column(db.String(9))
    entreprise_capital_social = db.Column(db.BigInteger)
    entreprise_numero_tva_intracommunautaire = db.Column(db.String(20))
    entreprise_forme_juridique = db.Column(db.String(255))
    entreprise_forme_juridique_code = db.Column(db.String(10))
    entreprise_nom_commercial = db.Column(db.String(255))
    entreprise_raison_sociale = db.Column(db.String(255))
    entreprise_siret_siege_social = db.Column(db.String(14))
    entreprise_code_effectif_entreprise = db.Column(db.String(10))
    entreprise_date_creation = db.Column(db.Date)

    dossier = db.relationship("Dossier", back_populates="etablissement")


class Avis(db.Model):
    """Opinion requested from an expert, optionally with a yes/no question."""

    __tablename__ = "avis"

    id = db.Column(db.Integer, primary_key=True)
    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_label = db.Column(db.String(255), nullable=True)
    question_answer = db.Column(db.Boolean, nullable=True)
    answer = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    dossier = db.relationship("Dossier", back_populates="avis")


class Follow(db.Model):
    """An instructeur following a dossier."""

    __tablename__ = "follows"
    __table_args__ = (
        db.UniqueConstraint("dossier_id", "instructeur_id", name="uq_follow_dossier_instructeur"),
    )

    id = db.Column(db.Integer, primary_key=True)
    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    instructeur_id = db.Column(
        db.Integer, db.ForeignKey("instructeurs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    dossier = db.relationship("Dossier", back_populates="follows")
    instructeur = db.relationship("Instructeur", lazy="joined")


class DossierLabel(db.Model):
    """Label attached to a dossier."""

    __tablename__ = "dossier_labels"

    dossier_id = db.Column(
        db.Integer, db.ForeignKey("dossiers.id", ondelete="CASCADE"), primary_key=True,
    )
    label_id = db.Column(
        db.Integer, db.ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True,
    )

    dossier = db.relationship("Dossier", back_populates="dossier_labels")
    label = db.relationship("Label", lazy="joined")
