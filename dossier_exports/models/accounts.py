"""
Dossier Exports
Account models.

Models:
    - User: a person's login identity (usager or agent)
    - Instructeur: agent who processes dossiers of the groups assigned to them
    - Administrateur: agent who configures procedures
"""

from datetime import datetime, timezone

from dossier_exports.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    """Login identity. Usagers submit dossiers; agents wrap a User."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    france_connect = db.Column(db.Boolean, default=False,
                               comment="True when the account was created through FranceConnect")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Instructeur(db.Model):
    """Agent assigned to one or more groupes instructeurs."""

    __tablename__ = "instructeurs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User", lazy="joined")
    assign_tos = db.relationship(
        "AssignTo", back_populates="instructeur", cascade="all, delete-orphan", lazy="select",
    )

    @property
    def email(self):
        return self.user.email if self.user else None

    @property
    def groupe_instructeurs(self):
        return [a.groupe_instructeur for a in self.assign_tos]

    def __repr__(self):
        return f"<Instructeur {self.id}: {self.email}>"


class Administrateur(db.Model):
    """Agent who owns and configures procedures."""

    __tablename__ = "administrateurs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User", lazy="joined")

    @property
    def email(self):
        return self.user.email if self.user else None

    def __repr__(self):
        return f"<Administrateur {self.id}: {self.email}>"
