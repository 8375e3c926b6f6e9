"""
Dossier Exports
Procedure presentation model.

An instructeur's persisted choice of displayed columns, sort order and
per-statut filter sets for one procedure. Columns are referenced by h_id so the
presentation survives catalog regeneration.
"""

from datetime import datetime, timezone

from dossier_exports.models import db

# Filter sets kept per dossier list tab.
PRESENTATION_STATUTS = ("a-suivre", "suivis", "traites", "tous", "archives")


class ProcedurePresentation(db.Model):
    """Per (instructeur, procedure) list customization."""

    __tablename__ = "procedure_presentations"
    __table_args__ = (
        db.UniqueConstraint("instructeur_id", "procedure_id", name="uq_presentation_instructeur_procedure"),
    )

    id = db.Column(db.Integer, primary_key=True)
    instructeur_id = db.Column(
        db.Integer, db.ForeignKey("instructeurs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    procedure_id = db.Column(
        db.Integer, db.ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    filters = db.Column(
        db.JSON, default=dict,
        comment='{"tous": [{"h_id": "...", "filter": "..."}], "suivis": [...], ...}',
    )
    displayed_columns = db.Column(db.JSON, default=list, comment="Ordered list of column h_ids")
    sorted_column = db.Column(db.JSON, nullable=True, comment='{"h_id": "...", "order": "asc|desc"}')
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    instructeur = db.relationship("Instructeur", lazy="joined")
    procedure = db.relationship("Procedure", lazy="joined")

    def raw_filters_for(self, statut: str) -> list[dict]:
        """Persisted ``{h_id, filter}`` entries for one statut tab."""
        return list((self.filters or {}).get(statut, []))

    def to_dict(self):
        return {
            "id": self.id,
            "instructeur_id": self.instructeur_id,
            "procedure_id": self.procedure_id,
            "filters": self.filters or {},
            "displayed_columns": self.displayed_columns or [],
            "sorted_column": self.sorted_column,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ProcedurePresentation {self.id}: instructeur={self.instructeur_id} procedure={self.procedure_id}>"
