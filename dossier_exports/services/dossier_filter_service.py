"""
Dataset resolver.

Builds the SQLAlchemy query selecting the dossiers of an export (or of a
dossier list): scope groups, statut tab, time span, then the presentation
filters.

Filter semantics:
    - filters on the same column are OR-ed, different columns are AND-ed
    - dates match the whole day; "… depuis" matches on/after, "… avant" on/before
    - enum and number columns match by equality
    - text columns match a case-insensitive substring
    - user-defined fields match through a champ subquery on (stable_id, facet)
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy.orm.attributes import InstrumentedAttribute

from dossier_exports.core.exceptions import ValidationError
from dossier_exports.models.accounts import Instructeur, User
from dossier_exports.models.dossier import (
    EN_COURS_STATES,
    TERMINE_STATES,
    Champ,
    Dossier,
    DossierLabel,
    Etablissement,
    Follow,
    Individual,
)
from dossier_exports.models.export import EXPORT_STATUTS, TIME_SPAN_TYPES
from dossier_exports.services.column import FilteredColumn
from dossier_exports.services.columns_service import ColumnContext, ProcedureColumns
from dossier_exports.utils.helpers import like_pattern, parse_boolean, parse_date, parse_integer

logger = logging.getLogger(__name__)

MONTHLY_SPAN = timedelta(days=30)

# self columns → (attribute, match mode)
_SELF_DATE_COLUMNS = {
    "created_at": ("created_at", "day"),
    "updated_at": ("updated_at", "day"),
    "depose_at": ("depose_at", "day"),
    "en_construction_at": ("en_construction_at", "day"),
    "en_instruction_at": ("en_instruction_at", "day"),
    "processed_at": ("processed_at", "day"),
    "updated_since": ("updated_at", "since"),
    "depose_since": ("depose_at", "since"),
    "en_construction_since": ("en_construction_at", "since"),
    "en_instruction_since": ("en_instruction_at", "since"),
    "processed_since": ("processed_at", "since"),
    "sva_svr_decision_on": ("sva_svr_decision_on", "on"),
    "sva_svr_decision_before": ("sva_svr_decision_on", "before"),
}

_JOINED_MODELS = {
    "user": ("user", User),
    "individual": ("individual", Individual),
    "etablissement": ("etablissement", Etablissement),
}


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Statut & time span
# ═════════════════════════════════════════════════════════════════════════════

def _apply_statut(query, statut, instructeur):
    not_draft = Dossier.state != "brouillon"
    if statut is None:
        return query.filter(not_draft)
    if statut == "tous":
        return query.filter(not_draft, Dossier.archived.is_(False))
    if statut == "a-suivre":
        return query.filter(
            Dossier.state.in_(EN_COURS_STATES),
            Dossier.archived.is_(False),
            ~Dossier.follows.any(),
        )
    if statut == "suivis":
        followed = (
            Dossier.follows.any(Follow.instructeur_id == instructeur.id)
            if instructeur is not None else Dossier.follows.any()
        )
        return query.filter(Dossier.state.in_(EN_COURS_STATES), Dossier.archived.is_(False), followed)
    if statut == "traites":
        return query.filter(Dossier.state.in_(TERMINE_STATES), Dossier.archived.is_(False))
    if statut == "archives":
        return query.filter(not_draft, Dossier.archived.is_(True))
    raise ValidationError(
        f"Unknown statut {statut!r}",
        details={"statut": f"must be one of {', '.join(EXPORT_STATUTS)}"},
    )


def _apply_time_span(query, time_span_type):
    if time_span_type in (None, "everything"):
        return query
    if time_span_type == "monthly":
        return query.filter(Dossier.depose_at >= _utcnow() - MONTHLY_SPAN)
    raise ValidationError(
        f"Unknown time span {time_span_type!r}",
        details={"time_span_type": f"must be one of {', '.join(TIME_SPAN_TYPES)}"},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Filter conditions
# ═════════════════════════════════════════════════════════════════════════════

def _day_bounds(day):
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _date_condition(attr, value, mode):
    day = parse_date(value)
    if day is None:
        return sa.false()
    if mode == "on":
        return attr == day
    if mode == "before":
        return attr <= day
    start, end = _day_bounds(day)
    if mode == "since":
        return attr >= start
    return sa.and_(attr >= start, attr < end)


def _typed_condition(attr, column_type, value):
    if column_type == "date":
        return _date_condition(attr, value, "on")
    if column_type == "number":
        number = parse_integer(value)
        return attr == number if number is not None else sa.false()
    if column_type == "enum":
        if isinstance(attr.expression.type, sa.Boolean):
            flag = parse_boolean(value)
            return attr.is_(flag) if flag is not None else sa.false()
        return attr == value
    return attr.ilike(like_pattern(value), escape="\\")


def _self_condition(column, value):
    if column.column in _SELF_DATE_COLUMNS:
        attr_name, mode = _SELF_DATE_COLUMNS[column.column]
        return _date_condition(getattr(Dossier, attr_name), value, mode)
    return _typed_condition(getattr(Dossier, column.column), column.type, value)


def _champ_condition(column, value):
    if column.value_column == "value":
        facet = Champ.value
    else:
        facet = Champ.value_json[column.value_column].as_string()
    if column.type == "date":
        day = parse_date(value)
        match = facet.like(f"{day.isoformat()}%") if day else sa.false()
    elif column.type in ("enum", "number"):
        match = facet == str(value).strip()
    else:
        match = facet.ilike(like_pattern(value), escape="\\")
    return Dossier.champs.any(sa.and_(Champ.stable_id == column.stable_id, match))


def _condition_for(filtered_column: FilteredColumn):
    column = filtered_column.column
    value = filtered_column.filter
    table = column.table

    if table == "self":
        return _self_condition(column, value)
    if table in _JOINED_MODELS:
        relation, model = _JOINED_MODELS[table]
        return getattr(Dossier, relation).has(
            _typed_condition(getattr(model, column.column), column.type, value)
        )
    if table == "type_de_champ":
        return _champ_condition(column, value)
    if table == "groupe_instructeur":
        groupe_id = parse_integer(value)
        return Dossier.groupe_instructeur_id == groupe_id if groupe_id is not None else sa.false()
    if table == "followers_instructeurs":
        return Dossier.follows.any(
            Follow.instructeur.has(
                Instructeur.user.has(User.email.ilike(like_pattern(value), escape="\\"))
            )
        )
    if table == "dossier_labels":
        label_id = parse_integer(value)
        return Dossier.dossier_labels.any(DossierLabel.label_id == label_id) if label_id is not None else sa.false()
    raise ValidationError(f"Column {column.label!r} is not filterable", details={"h_id": column.h_id})


def _apply_filters(query, filtered_columns):
    by_column: dict[str, list[FilteredColumn]] = {}
    for fc in filtered_columns:
        if not fc.column.filterable:
            raise ValidationError(
                f"Column {fc.column.label!r} is not filterable",
                details={"h_id": fc.column.h_id},
            )
        by_column.setdefault(fc.column.h_id, []).append(fc)
    for group in by_column.values():
        query = query.filter(sa.or_(*[_condition_for(fc) for fc in group]))
    return query


def _apply_order(query, catalog, sorted_column):
    if sorted_column and catalog is not None:
        column = catalog.find_column(h_id=sorted_column["h_id"])
        attr = getattr(Dossier, column.column, None) if column.table == "self" else None
        if isinstance(attr, InstrumentedAttribute):
            ordering = attr.desc() if sorted_column.get("order") == "desc" else attr.asc()
            return query.order_by(ordering, Dossier.id)
    return query.order_by(Dossier.id)


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def resolve_dossiers(
    groupe_instructeur_ids,
    statut=None,
    filtered_columns=(),
    instructeur=None,
    time_span_type="everything",
):
    """Query of the dossiers visible in the given scope.

    ``statut=None`` only excludes drafts. ``instructeur`` is the requester,
    needed by the "suivis" tab.
    """
    query = Dossier.query.filter(Dossier.groupe_instructeur_id.in_(list(groupe_instructeur_ids)))
    query = _apply_statut(query, statut, instructeur)
    query = _apply_time_span(query, time_span_type)
    return _apply_filters(query, filtered_columns)


def dossiers_for_export(export):
    """Dossiers of ``export`` using the filters snapshotted on the export itself."""
    profile = export.user_profile
    instructeur = profile if isinstance(profile, Instructeur) else None

    catalog = ProcedureColumns(export.procedure, ColumnContext(instructeur))
    filtered_columns = [
        FilteredColumn(column=catalog.find_column(h_id=entry["h_id"]), filter=str(entry["filter"]))
        for entry in export.filtered_columns or []
    ]
    query = resolve_dossiers(
        [g.id for g in export.groupe_instructeurs],
        statut=export.statut,
        filtered_columns=filtered_columns,
        instructeur=instructeur,
        time_span_type=export.time_span_type,
    )
    return _apply_order(query, catalog, export.sorted_column)
