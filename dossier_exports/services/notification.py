"""
Dossier Exports
Notification Service.

Creates in-app notifications. The export registry calls
``export_ready`` once an artifact is generated.
"""

from dossier_exports.models import db
from dossier_exports.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient="all", procedure_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            procedure_id=procedure_id,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def export_ready(export):
        """Tell the requester their export can be downloaded."""
        profile = export.user_profile
        procedure = export.procedure
        count = export.dossiers_count or 0
        return NotificationService.create(
            title=f"Export {export.format.upper()} prêt",
            message=f"{count} dossier{'s' if count != 1 else ''} exporté{'s' if count != 1 else ''}"
                    + (f" pour « {procedure.libelle} »" if procedure else ""),
            category="export",
            severity="success",
            recipient=profile.email if profile is not None and profile.email else "all",
            procedure_id=procedure.id if procedure else None,
            entity_type="export",
            entity_id=export.id,
        )
