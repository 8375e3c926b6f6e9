"""
Field-kind registry.

Every ``TypeDeChamp.type_champ`` maps to exactly one ``TypeDeChampKind`` that
states how the field expands into catalog columns:

    - presentational kinds (header_section, explication) produce nothing
    - the repetition kind is a container; its children are walked in place
    - multi-facet kinds produce one column per facet, label suffixed
    - every other kind produces a single ``value`` column

The set is closed. Looking up an unregistered tag raises ``ValidationError`` so a
new field type cannot silently disappear from exports.

Usage:
    from dossier_exports.services.type_de_champ_kinds import kind_for
    kind = kind_for(tdc.type_champ)
    kind.columns_for(tdc, procedure_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from dossier_exports.core.exceptions import ValidationError
from dossier_exports.services.column import Column


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Facet:
    """One sub-column of a multi-facet field.

    ``label_format`` receives the field libelle, e.g. ``"{} (Code INSEE)"``.
    """
    value_column: str
    label_format: str = "{}"
    column_type: str | None = None


@dataclass(frozen=True)
class TypeDeChampKind:
    type_champ: str
    column_type: str | None = "text"
    facets: tuple[Facet, ...] = ()
    presentational: bool = False
    container: bool = False
    render: Callable | None = None

    @property
    def is_multi_facet(self) -> bool:
        return bool(self.facets)

    def columns_for(self, tdc, procedure_id) -> list[Column]:
        """Columns contributed by one (non-container) field definition."""
        if self.presentational or self.container:
            return []
        options = _options_for(self, tdc)
        if not self.facets:
            return [self._column(tdc, procedure_id, "value", tdc.libelle, self.column_type, options)]
        return [
            self._column(
                tdc,
                procedure_id,
                facet.value_column,
                facet.label_format.format(tdc.libelle),
                facet.column_type or self.column_type,
                options if facet.value_column == "value" else (),
            )
            for facet in self.facets
        ]

    @staticmethod
    def _column(tdc, procedure_id, value_column, label, column_type, options):
        return Column(
            procedure_id=procedure_id,
            label=label,
            table="type_de_champ",
            column=str(tdc.stable_id),
            type=column_type,
            value_column=value_column,
            displayable=True,
            filterable=True,
            options=tuple(options),
        )

    def value_for(self, champ, value_column: str = "value"):
        """Render the stored value of ``champ`` for one facet."""
        if champ is None:
            return None
        if self.render is not None and value_column == "value":
            return self.render(champ)
        return champ.facet(value_column)


# ═════════════════════════════════════════════════════════════════════════════
# Renderers
# ═════════════════════════════════════════════════════════════════════════════

def _render_yes_no(champ):
    if champ.value == "true":
        return "Oui"
    if champ.value == "false":
        return "Non"
    return champ.value


def _render_cojo(champ):
    data = champ.value_json or {}
    number = data.get("accreditation_number")
    birthdate = data.get("accreditation_birthdate")
    if number is None and birthdate is None:
        return None
    return f"{number} – {birthdate}"


def _options_for(kind: TypeDeChampKind, tdc) -> list[tuple]:
    if kind.column_type != "enum":
        return []
    if kind.type_champ in ("yes_no", "checkbox"):
        return [("Oui", "true"), ("Non", "false")]
    values = (tdc.options or {}).get("drop_down_options", [])
    return [(v, v) for v in values]


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════

_KINDS = (
    # plain text
    TypeDeChampKind("text"),
    TypeDeChampKind("textarea"),
    TypeDeChampKind("email"),
    TypeDeChampKind("phone"),
    TypeDeChampKind("iban"),
    TypeDeChampKind("siret"),
    TypeDeChampKind("civilite"),
    TypeDeChampKind("dossier_link"),
    TypeDeChampKind("piece_justificative"),
    TypeDeChampKind("titre_identite"),
    TypeDeChampKind("carte"),
    TypeDeChampKind("annuaire_education"),
    TypeDeChampKind("rnf"),
    TypeDeChampKind("epci"),
    TypeDeChampKind("expression_reguliere"),
    TypeDeChampKind("engagement_juridique"),
    TypeDeChampKind("cojo", render=_render_cojo),
    # numbers & dates
    TypeDeChampKind("integer_number", column_type="number"),
    TypeDeChampKind("decimal_number", column_type="number"),
    TypeDeChampKind("number", column_type="number"),
    TypeDeChampKind("date", column_type="date"),
    TypeDeChampKind("datetime", column_type="date"),
    # closed choices
    TypeDeChampKind("yes_no", column_type="enum", render=_render_yes_no),
    TypeDeChampKind("checkbox", column_type="enum", render=_render_yes_no),
    TypeDeChampKind("drop_down_list", column_type="enum"),
    TypeDeChampKind("multiple_drop_down_list", column_type="enum"),
    TypeDeChampKind("pays", column_type="enum"),
    TypeDeChampKind("regions", column_type="enum"),
    # multi-facet
    TypeDeChampKind(
        "departements",
        column_type="enum",
        facets=(Facet("value"), Facet("code", "{} (Code)", "text")),
    ),
    TypeDeChampKind(
        "communes",
        facets=(
            Facet("value"),
            Facet("code", "{} (Code INSEE)"),
            Facet("departement", "{} (Département)"),
        ),
    ),
    TypeDeChampKind(
        "linked_drop_down_list",
        facets=(
            Facet("value"),
            Facet("primary", "{} (Primaire)"),
            Facet("secondary", "{} (Secondaire)"),
        ),
    ),
    TypeDeChampKind(
        "rna",
        facets=(Facet("value"), Facet("commune", "{} – commune")),
    ),
    TypeDeChampKind(
        "address",
        facets=(
            Facet("value"),
            Facet("postal_code", "{} (Code postal)"),
            Facet("city_name", "{} (Commune)"),
            Facet("departement", "{} (Département)"),
        ),
    ),
    # structure
    TypeDeChampKind("header_section", column_type=None, presentational=True),
    TypeDeChampKind("explication", column_type=None, presentational=True),
    TypeDeChampKind("repetition", column_type=None, container=True),
)

KINDS: dict[str, TypeDeChampKind] = {kind.type_champ: kind for kind in _KINDS}
TYPE_CHAMPS = tuple(KINDS)


def kind_for(type_champ: str) -> TypeDeChampKind:
    """Return the kind registered for ``type_champ``; unknown tags are an error."""
    try:
        return KINDS[type_champ]
    except KeyError:
        raise ValidationError(f"Unknown type_champ: {type_champ!r}", details={"type_champ": type_champ}) from None
