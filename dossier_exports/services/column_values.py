"""
Per-dossier column value extraction.

Turns a ``Column`` and a loaded ``Dossier`` into the scalar written to an
export row. Multi-valued relations (followers, labels, repetition rows) are
joined with ", ".
"""

from __future__ import annotations

from dossier_exports.services.column import Column
from dossier_exports.services.type_de_champ_kinds import kind_for

# Filter-only columns read the attribute they compare against.
_SELF_ALIASES = {
    "updated_since": "updated_at",
    "depose_since": "depose_at",
    "en_construction_since": "en_construction_at",
    "en_instruction_since": "en_instruction_at",
    "processed_since": "processed_at",
    "sva_svr_decision_before": "sva_svr_decision_on",
}


def _join(values):
    values = [str(v) for v in values if v is not None and v != ""]
    return ", ".join(values) if values else None


def _self_value(column: str, dossier):
    if column == "user_from_france_connect?":
        return bool(dossier.user and dossier.user.france_connect)
    return getattr(dossier, _SELF_ALIASES.get(column, column))


def _champ_value(column: Column, dossier):
    champs = dossier.champs_for(column.stable_id)
    values = [kind_for(c.type_champ).value_for(c, column.value_column) for c in champs]
    if len(values) == 1:
        return values[0]
    return _join(values)


def column_value(column: Column, dossier):
    """Value of ``column`` for ``dossier`` (``None`` when absent)."""
    table = column.table
    if table == "self":
        return _self_value(column.column, dossier)
    if table == "user":
        return getattr(dossier.user, column.column) if dossier.user else None
    if table == "individual":
        return getattr(dossier.individual, column.column) if dossier.individual else None
    if table == "etablissement":
        return getattr(dossier.etablissement, column.column) if dossier.etablissement else None
    if table == "type_de_champ":
        return _champ_value(column, dossier)
    if table == "groupe_instructeur":
        return dossier.groupe_instructeur.label if dossier.groupe_instructeur else None
    if table == "followers_instructeurs":
        return _join(i.email for i in dossier.followers_instructeurs)
    if table == "dossier_labels":
        return _join(label.name for label in dossier.labels)
    if table == "avis":
        return _join(
            "oui" if a.question_answer else "non"
            for a in dossier.avis if a.question_answer is not None
        )
    if table == "procedure":
        procedure = dossier.procedure
        return (procedure.chorus or {}).get(column.column) if procedure else None
    if table == "notifications":
        return None
    raise ValueError(f"Unknown column table: {table!r}")


def row_for(columns: list[Column], dossier) -> list:
    return [column_value(column, dossier) for column in columns]
