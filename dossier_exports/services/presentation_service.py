"""Procedure presentation service.

Transaction policy: methods use flush(), never commit().
Caller is responsible for db.session.commit().

Persisted filters are plain ``{h_id, filter}`` dicts. Reading them back
resolves every h_id against the procedure's current catalog; a reference
that no longer resolves raises ``NotFoundError`` instead of being dropped.
"""
import logging

from dossier_exports.core.exceptions import ValidationError
from dossier_exports.models import db
from dossier_exports.models.presentation import PRESENTATION_STATUTS, ProcedurePresentation
from dossier_exports.services.column import FilteredColumn
from dossier_exports.services.columns_service import ColumnContext, ProcedureColumns

logger = logging.getLogger(__name__)

SORT_ORDERS = ("asc", "desc")


def _validate_statut(statut):
    if statut not in PRESENTATION_STATUTS:
        raise ValidationError(
            f"Unknown statut {statut!r}",
            details={"statut": f"must be one of {', '.join(PRESENTATION_STATUTS)}"},
        )


def catalog_for(presentation):
    return ProcedureColumns(presentation.procedure, ColumnContext(presentation.instructeur))


def get_or_create_presentation(instructeur, procedure):
    """Return the instructeur's presentation for ``procedure``, creating it on first use.

    A new presentation displays the default list columns and sorts on the
    notifications column.
    """
    presentation = ProcedurePresentation.query.filter_by(
        instructeur_id=instructeur.id, procedure_id=procedure.id,
    ).first()
    if presentation:
        return presentation

    catalog = ProcedureColumns(procedure, ColumnContext(instructeur))
    presentation = ProcedurePresentation(
        instructeur=instructeur,
        procedure=procedure,
        filters={statut: [] for statut in PRESENTATION_STATUTS},
        displayed_columns=[c.h_id for c in catalog.columns if c.is_type_de_champ][:2]
        or [catalog.dossier_id_column.h_id],
        sorted_column={"h_id": catalog.notifications_column.h_id, "order": "desc"},
    )
    db.session.add(presentation)
    db.session.flush()
    logger.info(
        "Created presentation %s for instructeur %s", presentation.id, instructeur.id,
        extra={"procedure_id": procedure.id},
    )
    return presentation


def filters_for(presentation, statut) -> list[FilteredColumn]:
    """Resolve the persisted filters of one statut tab.

    Raises:
        NotFoundError: a stored h_id no longer matches any column.
        ValidationError: a stored filter targets a non-filterable column.
    """
    _validate_statut(statut)
    catalog = catalog_for(presentation)
    resolved = []
    for entry in presentation.raw_filters_for(statut):
        column = catalog.find_column(h_id=entry["h_id"])
        if not column.filterable:
            raise ValidationError(
                f"Column {column.label!r} is not filterable",
                details={"h_id": column.h_id},
            )
        resolved.append(FilteredColumn(column=column, filter=str(entry["filter"])))
    return resolved


def update_filters(presentation, statut, filtered_columns):
    """Replace the filter set of one statut tab."""
    _validate_statut(statut)
    for fc in filtered_columns:
        if not fc.column.filterable:
            raise ValidationError(
                f"Column {fc.column.label!r} is not filterable",
                details={"h_id": fc.column.h_id},
            )
    filters = dict(presentation.filters or {})
    filters[statut] = [fc.to_dict() for fc in filtered_columns]
    # JSON columns only persist on reassignment
    presentation.filters = filters
    db.session.flush()
    return presentation


def add_filter(presentation, statut, column, value):
    """Append one filter; blank values are ignored."""
    value = (value or "").strip()
    if not value:
        return presentation
    current = filters_for(presentation, statut)
    if any(fc.column == column and fc.filter == value for fc in current):
        return presentation
    return update_filters(presentation, statut, current + [FilteredColumn(column=column, filter=value)])


def remove_filter(presentation, statut, column, value):
    _validate_statut(statut)
    kept = [
        entry for entry in presentation.raw_filters_for(statut)
        if not (entry["h_id"] == column.h_id and entry["filter"] == value)
    ]
    filters = dict(presentation.filters or {})
    filters[statut] = kept
    presentation.filters = filters
    db.session.flush()
    return presentation


def update_displayed_columns(presentation, h_ids):
    """Set the displayed columns. Every h_id must resolve to a displayable column."""
    catalog = catalog_for(presentation)
    columns = [catalog.find_column(h_id=h_id) for h_id in h_ids]
    hidden = [c.label for c in columns if not c.displayable]
    if hidden:
        raise ValidationError("Columns are not displayable", details={"columns": hidden})
    presentation.displayed_columns = [c.h_id for c in columns]
    db.session.flush()
    return presentation


def displayed_columns_for(presentation):
    catalog = catalog_for(presentation)
    return [catalog.find_column(h_id=h_id) for h_id in presentation.displayed_columns or []]


def update_sorted_column(presentation, h_id, order="desc"):
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order {order!r}", details={"order": "asc or desc"})
    column = catalog_for(presentation).find_column(h_id=h_id)
    presentation.sorted_column = {"h_id": column.h_id, "order": order}
    db.session.flush()
    return presentation
