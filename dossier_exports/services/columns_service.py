"""
Column catalog service.

Walks a procedure's active revision (plus the procedure-level flags) and
produces the ordered list of ``Column`` value objects that dossier lists,
filters and exports are expressed in.

Order of the catalog:
    1. fixed dossier attributes
    2. individual identity (for_individual procedures)
    3. SVA/SVR decision dates (when enabled)
    4. submitter, followers, group, avis, FranceConnect, labels
    5. establishment block (entity procedures)
    6. user-defined fields, public then private, repetitions flattened
    7. chorus columns (chorusable procedures)

The walk is a pure function of its inputs. The only actor-sensitive part is
the option list of the "Groupe instructeur" column, which depends on the
``ColumnContext`` passed in explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from dossier_exports.core.exceptions import NotFoundError
from dossier_exports.services.column import Column
from dossier_exports.services.type_de_champ_kinds import kind_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnContext:
    """Actor the catalog is built for. ``None`` means nobody is signed in."""
    instructeur: object | None = None

    def visible_groupe_instructeurs(self, procedure) -> list:
        if self.instructeur is None:
            return []
        assigned = {g.id for g in self.instructeur.groupe_instructeurs}
        return [g for g in procedure.groupe_instructeurs if g.id in assigned]


STATE_OPTIONS = (
    ("En construction", "en_construction"),
    ("En instruction", "en_instruction"),
    ("Accepté", "accepte"),
    ("Refusé", "refuse"),
    ("Classé sans suite", "sans_suite"),
)

BOOLEAN_OPTIONS = (("Oui", "true"), ("Non", "false"))

# (label, column, type, displayable, filterable)
_DOSSIER_COLUMNS = (
    ("Date de création", "created_at", "date", True, True),
    ("Mis à jour le", "updated_at", "date", True, True),
    ("Date de dépot", "depose_at", "date", True, True),
    ("En construction le", "en_construction_at", "date", True, True),
    ("En instruction le", "en_instruction_at", "date", True, True),
    ("Terminé le", "processed_at", "date", True, True),
    ("Dernier évènement depuis", "updated_since", "date", False, True),
    ("Déposé depuis", "depose_since", "date", False, True),
    ("En construction depuis", "en_construction_since", "date", False, True),
    ("En instruction depuis", "en_instruction_since", "date", False, True),
    ("Traité depuis", "processed_since", "date", False, True),
)

_ETABLISSEMENT_COLUMNS = (
    ("SIREN", "entreprise_siren", "text"),
    ("Forme juridique", "entreprise_forme_juridique", "text"),
    ("Nom commercial", "entreprise_nom_commercial", "text"),
    ("Raison sociale", "entreprise_raison_sociale", "text"),
    ("SIRET siège social", "entreprise_siret_siege_social", "text"),
    ("Date de création", "entreprise_date_creation", "date"),
    ("SIRET", "siret", "text"),
    ("Libellé NAF", "libelle_naf", "text"),
    ("Code postal", "code_postal", "text"),
    ("Établissement siège social", "siege_social", "enum"),
    ("Établissement NAF", "naf", "text"),
    ("Établissement Adresse", "adresse", "text"),
    ("Établissement numero voie", "numero_voie", "text"),
    ("Établissement type voie", "type_voie", "text"),
    ("Établissement nom voie", "nom_voie", "text"),
    ("Établissement complément adresse", "complement_adresse", "text"),
    ("Établissement localité", "localite", "text"),
    ("Établissement code INSEE localité", "code_insee_localite", "text"),
    ("Entreprise capital social", "entreprise_capital_social", "number"),
    ("Entreprise numero TVA intracommunautaire", "entreprise_numero_tva_intracommunautaire", "text"),
    ("Entreprise forme juridique code", "entreprise_forme_juridique_code", "text"),
    ("Entreprise code effectif entreprise", "entreprise_code_effectif_entreprise", "text"),
)

_CHORUS_COLUMNS = (
    ("Domaine Fonctionnel", "domaine_fonctionnel"),
    ("Référentiel De Programmation", "referentiel_de_programmation"),
    ("Centre De Coût", "centre_de_cout"),
)

# Export headers differ from the list headers for some columns (keyed by Column.id).
EXPORT_LABELS = {
    "self/id": "Nº dossier",
    "user/email": "Email",
    "self/state": "État du dossier",
    "self/updated_at": "Date du dernier évènement",
    "self/en_construction_at": "Date de passage en construction",
    "self/en_instruction_at": "Date de passage en instruction",
    "self/processed_at": "Date de traitement",
    "followers_instructeurs/email": "Instructeurs",
    "etablissement/siret": "Établissement SIRET",
    "etablissement/libelle_naf": "Libellé NAF",
    "etablissement/code_postal": "Établissement code postal",
    "etablissement/entreprise_siren": "Entreprise SIREN",
    "etablissement/entreprise_forme_juridique": "Entreprise forme juridique",
    "etablissement/entreprise_nom_commercial": "Entreprise nom commercial",
    "etablissement/entreprise_raison_sociale": "Entreprise raison sociale",
    "etablissement/entreprise_siret_siege_social": "Entreprise SIRET siège social",
    "etablissement/entreprise_date_creation": "Entreprise date de création",
}


# ═════════════════════════════════════════════════════════════════════════════
# Schema walk
# ═════════════════════════════════════════════════════════════════════════════

def _col(procedure_id, label, table, column, type="text", displayable=True, filterable=True, options=()):
    return Column(
        procedure_id=procedure_id,
        label=label,
        table=table,
        column=column,
        type=type,
        displayable=displayable,
        filterable=filterable,
        options=tuple(options),
    )


def _self_columns(procedure):
    pid = procedure.id
    columns = [
        _col(pid, "Dossier ID", "self", "id", "number"),
        _col(pid, "notifications", "notifications", "notifications", filterable=False),
    ]
    columns += [
        _col(pid, label, "self", column, type, displayable, filterable)
        for label, column, type, displayable, filterable in _DOSSIER_COLUMNS
    ]
    columns += [
        _col(pid, "Statut", "self", "state", "enum", displayable=False, options=STATE_OPTIONS),
        _col(pid, "Archivé", "self", "archived", displayable=False, filterable=False),
        _col(pid, "Motivation de la décision", "self", "motivation", displayable=False, filterable=False),
        _col(pid, "Date de dernière modification (usager)", "self", "last_champ_updated_at",
             displayable=False, filterable=False),
    ]
    return columns


def _individual_columns(procedure):
    pid = procedure.id
    return [
        _col(pid, "Civilité", "individual", "gender"),
        _col(pid, "Nom", "individual", "nom"),
        _col(pid, "Prénom", "individual", "prenom"),
        _col(pid, "Dépôt pour un tiers", "self", "for_tiers", displayable=False, filterable=False),
        _col(pid, "Nom du mandataire", "self", "mandataire_last_name", displayable=False, filterable=False),
        _col(pid, "Prénom du mandataire", "self", "mandataire_first_name", displayable=False, filterable=False),
    ]


def _sva_svr_columns(procedure):
    decision = procedure.sva_svr_decision.upper()
    return [
        _col(procedure.id, f"Date décision {decision}", "self", "sva_svr_decision_on", "date"),
        _col(procedure.id, f"Date décision {decision} avant", "self", "sva_svr_decision_before", "date",
             displayable=False),
    ]


def _relation_columns(procedure, context):
    pid = procedure.id
    groupe_options = [(g.label, g.id) for g in context.visible_groupe_instructeurs(procedure)]
    label_options = [(label.name, label.id) for label in procedure.labels]
    return [
        _col(pid, "Demandeur", "user", "email"),
        _col(pid, "Email instructeur", "followers_instructeurs", "email"),
        _col(pid, "Groupe instructeur", "groupe_instructeur", "id", "enum", options=groupe_options),
        _col(pid, "Avis oui/non", "avis", "question_answer", filterable=False),
        _col(pid, "France connecté ?", "self", "user_from_france_connect?", displayable=False, filterable=False),
        _col(pid, "Labels", "dossier_labels", "label_id", None, options=label_options),
    ]


def _etablissement_columns(procedure):
    return [
        _col(procedure.id, label, "etablissement", column, type,
             options=BOOLEAN_OPTIONS if type == "enum" else ())
        for label, column, type in _ETABLISSEMENT_COLUMNS
    ]


def _type_de_champ_columns(tdc, procedure_id) -> list[Column]:
    kind = kind_for(tdc.type_champ)
    if kind.container:
        return [c for child in tdc.children for c in _type_de_champ_columns(child, procedure_id)]
    return kind.columns_for(tdc, procedure_id)


def _champ_columns(procedure):
    revision = procedure.active_revision
    if revision is None:
        return []
    columns = []
    for tdc in revision.types_de_champ_public + revision.types_de_champ_private:
        columns.extend(_type_de_champ_columns(tdc, procedure.id))
    return columns


def _chorus_columns(procedure):
    return [
        _col(procedure.id, label, "procedure", column, displayable=False, filterable=False)
        for label, column in _CHORUS_COLUMNS
    ]


def build_columns(procedure, context: ColumnContext | None = None) -> list[Column]:
    """Full ordered column catalog of ``procedure``."""
    context = context or ColumnContext()
    columns = _self_columns(procedure)
    if procedure.for_individual:
        columns += _individual_columns(procedure)
    if procedure.sva_svr_enabled:
        columns += _sva_svr_columns(procedure)
    columns += _relation_columns(procedure, context)
    if not procedure.for_individual:
        columns += _etablissement_columns(procedure)
    columns += _champ_columns(procedure)
    if procedure.chorusable:
        columns += _chorus_columns(procedure)
    return columns


# ═════════════════════════════════════════════════════════════════════════════
# Catalog facade
# ═════════════════════════════════════════════════════════════════════════════

class ProcedureColumns:
    """Addressable catalog of one procedure's columns.

    Built once per instance; create a new instance after the schema changes.
    """

    def __init__(self, procedure, context: ColumnContext | None = None):
        self.procedure = procedure
        self.context = context or ColumnContext()
        self._columns: list[Column] | None = None

    @property
    def columns(self) -> list[Column]:
        if self._columns is None:
            self._columns = build_columns(self.procedure, self.context)
            logger.debug(
                "Built %d columns for procedure %s", len(self._columns), self.procedure.id,
                extra={"procedure_id": self.procedure.id},
            )
        return self._columns

    def find_column(self, *, label: str | None = None, h_id: str | None = None) -> Column:
        """Look a column up by ``h_id`` or by label (first match wins).

        Labels also resolve against export headers ("Nº dossier", "Email"...).

        Raises:
            NotFoundError: nothing matches.
        """
        if h_id is not None:
            for column in self.columns:
                if column.h_id == h_id:
                    return column
            raise NotFoundError("Column", f"h_id={h_id}", procedure_id=self.procedure.id)

        if label is not None:
            for column in self.columns:
                if column.label == label:
                    return column
            for column in self._export_columns():
                if column.label == label:
                    return column
            raise NotFoundError("Column", f"label={label!r}", procedure_id=self.procedure.id)

        raise NotFoundError("Column", procedure_id=self.procedure.id)

    def _by_id(self, column_id: str) -> Column:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise NotFoundError("Column", column_id, procedure_id=self.procedure.id)

    # ── Named columns ────────────────────────────────────────────────────

    @property
    def dossier_id_column(self) -> Column:
        return self._by_id("self/id")

    @property
    def dossier_state_column(self) -> Column:
        return self._by_id("self/state")

    @property
    def notifications_column(self) -> Column:
        return self._by_id("notifications/notifications")

    @property
    def groupe_instructeur_column(self) -> Column:
        return self._by_id("groupe_instructeur/id")

    @property
    def displayable_columns(self) -> list[Column]:
        return [c for c in self.columns if c.displayable]

    @property
    def filterable_columns(self) -> list[Column]:
        return [c for c in self.columns if c.filterable]

    # ── Export column groups ─────────────────────────────────────────────

    def _for_export(self, column_ids) -> list[Column]:
        by_id = {c.id: c for c in self.columns}
        return [
            replace(by_id[cid], label=EXPORT_LABELS.get(cid, by_id[cid].label))
            for cid in column_ids if cid in by_id
        ]

    def usager_columns_for_export(self) -> list[Column]:
        ids = ["self/id", "user/email", "self/user_from_france_connect?"]
        if self.procedure.for_individual:
            ids += [
                "individual/gender", "individual/nom", "individual/prenom",
                "self/for_tiers", "self/mandataire_last_name", "self/mandataire_first_name",
            ]
        else:
            ids += [f"etablissement/{column}" for _, column, _ in _ETABLISSEMENT_COLUMNS]
        if self.procedure.chorusable:
            ids += [f"procedure/{column}" for _, column in _CHORUS_COLUMNS]
        return self._for_export(ids)

    def dossier_columns_for_export(self) -> list[Column]:
        ids = [
            "self/archived",
            "self/state",
            "self/updated_at",
            "self/last_champ_updated_at",
            "self/depose_at",
            "self/en_construction_at",
            "self/en_instruction_at",
            "self/processed_at",
            "self/motivation",
            "followers_instructeurs/email",
            "groupe_instructeur/id",
        ]
        if self.procedure.sva_svr_enabled:
            ids.append("self/sva_svr_decision_on")
        ids.append("dossier_labels/label_id")
        return self._for_export(ids)

    def champ_columns_for_export(self) -> list[Column]:
        return [c for c in self.columns if c.is_type_de_champ]

    def default_export_columns(self) -> list[Column]:
        return (
            self.usager_columns_for_export()
            + self.dossier_columns_for_export()
            + self.champ_columns_for_export()
        )

    def _export_columns(self) -> list[Column]:
        return self.usager_columns_for_export() + self.dossier_columns_for_export()
