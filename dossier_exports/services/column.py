"""
Column value objects.

A ``Column`` describes one reportable/filterable projection of a dossier:
a fixed attribute, a joined record attribute, or one facet of a user-defined
field. Columns are immutable and compared by content; ``options`` (the select
choices of enum columns) never take part in equality.

``h_id`` is derived from the structural key ``(table, column, value_column)``
only, never from the label, so it is stable across catalog regenerations and
label changes. Presentations and exports persist columns by ``h_id``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

COLUMN_TYPES = ("text", "date", "number", "enum")

COLUMN_TABLES = (
    "self",
    "user",
    "etablissement",
    "individual",
    "type_de_champ",
    "groupe_instructeur",
    "notifications",
    "avis",
    "dossier_labels",
    "followers_instructeurs",
    "procedure",
)


@dataclass(frozen=True)
class Column:
    """One reportable field of a procedure's dossiers."""

    procedure_id: int | None
    label: str
    table: str
    column: str
    type: str | None = "text"
    value_column: str = "value"
    displayable: bool = True
    filterable: bool = True
    options: tuple = field(default=(), compare=False, repr=False)

    @property
    def id(self) -> str:
        return f"{self.table}/{self.column}"

    @property
    def h_id(self) -> str:
        raw = f"{self.table}/{self.column}/{self.value_column}"
        return hashlib.md5(raw.encode("utf-8")).hexdigest()

    @property
    def is_type_de_champ(self) -> bool:
        return self.table == "type_de_champ"

    @property
    def stable_id(self) -> int | None:
        return int(self.column) if self.is_type_de_champ else None

    def options_for_select(self) -> list[tuple]:
        """``(label, value)`` pairs offered by the filter UI for enum columns."""
        return list(self.options)

    def to_dict(self) -> dict:
        return {
            "h_id": self.h_id,
            "id": self.id,
            "procedure_id": self.procedure_id,
            "label": self.label,
            "table": self.table,
            "column": self.column,
            "type": self.type,
            "value_column": self.value_column,
            "displayable": self.displayable,
            "filterable": self.filterable,
        }


@dataclass(frozen=True)
class FilteredColumn:
    """A column paired with one filter value."""

    column: Column
    filter: str

    @property
    def label(self) -> str:
        return self.column.label

    def to_dict(self) -> dict:
        return {"h_id": self.column.h_id, "filter": self.filter}
