"""
Tests for the column catalog.

Covers:
  - Fixed, relation, establishment and user-defined columns of an entity procedure
  - Presentational fields produce no column; repetitions are flattened
  - Multi-facet fields (communes, rna, linked drop-down) expand with suffixed labels
  - Individual, SVA/SVR and chorus variants
  - find_column by label / h_id, NotFoundError on unknown h_id
  - Actor-scoped options of the "Groupe instructeur" column
  - Export column groups resolve by their export labels
  - Field-kind registry is closed
"""

import pytest

from dossier_exports.core.exceptions import NotFoundError, ValidationError
from dossier_exports.models import db
from dossier_exports.services import revision_service
from dossier_exports.services.column import Column, FilteredColumn
from dossier_exports.services.columns_service import ColumnContext, ProcedureColumns, build_columns
from dossier_exports.services.type_de_champ_kinds import TYPE_CHAMPS, kind_for

from tests import factories


def _col(procedure, label, table, column, type="text", displayable=True, filterable=True):
    return Column(
        procedure_id=procedure.id, label=label, table=table, column=column, type=type,
        value_column="value", displayable=displayable, filterable=filterable,
    )


def _expected_entity_columns(procedure, tdcs):
    p = procedure
    return [
        _col(p, "Dossier ID", "self", "id", "number"),
        _col(p, "notifications", "notifications", "notifications", filterable=False),
        _col(p, "Date de création", "self", "created_at", "date"),
        _col(p, "Mis à jour le", "self", "updated_at", "date"),
        _col(p, "Date de dépot", "self", "depose_at", "date"),
        _col(p, "En construction le", "self", "en_construction_at", "date"),
        _col(p, "En instruction le", "self", "en_instruction_at", "date"),
        _col(p, "Terminé le", "self", "processed_at", "date"),
        _col(p, "Dernier évènement depuis", "self", "updated_since", "date", displayable=False),
        _col(p, "Déposé depuis", "self", "depose_since", "date", displayable=False),
        _col(p, "En construction depuis", "self", "en_construction_since", "date", displayable=False),
        _col(p, "En instruction depuis", "self", "en_instruction_since", "date", displayable=False),
        _col(p, "Traité depuis", "self", "processed_since", "date", displayable=False),
        _col(p, "Statut", "self", "state", "enum", displayable=False),
        _col(p, "Archivé", "self", "archived", displayable=False, filterable=False),
        _col(p, "Motivation de la décision", "self", "motivation", displayable=False, filterable=False),
        _col(p, "Date de dernière modification (usager)", "self", "last_champ_updated_at",
             displayable=False, filterable=False),
        _col(p, "Demandeur", "user", "email"),
        _col(p, "Email instructeur", "followers_instructeurs", "email"),
        _col(p, "Groupe instructeur", "groupe_instructeur", "id", "enum"),
        _col(p, "Avis oui/non", "avis", "question_answer", filterable=False),
        _col(p, "France connecté ?", "self", "user_from_france_connect?", displayable=False, filterable=False),
        _col(p, "Labels", "dossier_labels", "label_id", None),
        _col(p, "SIREN", "etablissement", "entreprise_siren"),
        _col(p, "Forme juridique", "etablissement", "entreprise_forme_juridique"),
        _col(p, "Nom commercial", "etablissement", "entreprise_nom_commercial"),
        _col(p, "Raison sociale", "etablissement", "entreprise_raison_sociale"),
        _col(p, "SIRET siège social", "etablissement", "entreprise_siret_siege_social"),
        _col(p, "Date de création", "etablissement", "entreprise_date_creation", "date"),
        _col(p, "SIRET", "etablissement", "siret"),
        _col(p, "Libellé NAF", "etablissement", "libelle_naf"),
        _col(p, "Code postal", "etablissement", "code_postal"),
    ] + [_col(p, t.libelle, "type_de_champ", str(t.stable_id)) for t in tdcs]


def _text_and_layout_fields():
    return [{"type": "text"}, {"type": "text"}, {"type": "header_section"}, {"type": "explication"}]


# ── Entity procedure ────────────────────────────────────────────────────────


class TestEntityProcedureColumns:
    def test_expected_columns_present(self):
        procedure = factories.make_procedure(
            types_de_champ_public=_text_and_layout_fields(),
            types_de_champ_private=_text_and_layout_fields(),
        )
        revision = procedure.active_revision
        tdcs = revision.types_de_champ_public[:2] + revision.types_de_champ_private[:2]

        columns = build_columns(procedure)

        for expected in _expected_entity_columns(procedure, tdcs):
            assert expected in columns

    def test_layout_fields_produce_no_column(self):
        procedure = factories.make_procedure(types_de_champ_public=_text_and_layout_fields())
        layout_ids = {
            str(t.stable_id) for t in procedure.active_revision.types_de_champ_public
            if t.type_champ in ("header_section", "explication")
        }

        columns = build_columns(procedure)

        assert not [c for c in columns if c.table == "type_de_champ" and c.column in layout_ids]
        assert len([c for c in columns if c.is_type_de_champ]) == 2

    def test_public_fields_come_before_private(self):
        procedure = factories.make_procedure(
            types_de_champ_private=[{"type": "text", "libelle": "Annotation"}],
            types_de_champ_public=[{"type": "text", "libelle": "Question"}],
        )
        labels = [c.label for c in build_columns(procedure) if c.is_type_de_champ]
        assert labels == ["Question", "Annotation"]

    def test_no_individual_columns(self):
        procedure = factories.make_procedure()
        labels = [c.label for c in build_columns(procedure)]
        assert "Prénom" not in labels
        assert "Nom" not in labels

    def test_build_is_deterministic(self, procedure):
        first = build_columns(procedure)
        second = build_columns(procedure)
        assert first == second
        assert [c.h_id for c in first] == [c.h_id for c in second]

    def test_h_ids_are_unique(self, procedure):
        h_ids = [c.h_id for c in build_columns(procedure)]
        assert len(h_ids) == len(set(h_ids))

    def test_h_id_survives_label_change(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "text", "libelle": "Avant"}])
        tdc = procedure.active_revision.types_de_champ_public[0]
        before = ProcedureColumns(procedure).find_column(label="Avant")

        tdc.libelle = "Après"
        db.session.flush()
        after = ProcedureColumns(procedure).find_column(label="Après")

        assert before.h_id == after.h_id
        assert before != after


# ── Field kinds ─────────────────────────────────────────────────────────────


class TestFieldKinds:
    def test_repetition_children_are_flattened_in_place(self):
        procedure = factories.make_procedure(types_de_champ_public=[
            {"type": "text", "libelle": "Ca va ?", "stable_id": 1},
            {"type": "repetition", "libelle": "Champ répétable", "stable_id": 7,
             "children": [{"type": "text", "libelle": "Qqchose à rajouter?", "stable_id": 8},
                          {"type": "integer_number", "libelle": "Combien ?", "stable_id": 9}]},
            {"type": "text", "libelle": "Fin", "stable_id": 10},
        ])

        champ_columns = [c for c in build_columns(procedure) if c.is_type_de_champ]

        assert [c.label for c in champ_columns] == ["Ca va ?", "Qqchose à rajouter?", "Combien ?", "Fin"]
        assert "7" not in [c.column for c in champ_columns]
        assert champ_columns[2].type == "number"

    def test_communes_facets(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "communes", "libelle": "Ma commune"}])
        facets = [(c.label, c.value_column) for c in build_columns(procedure) if c.is_type_de_champ]
        assert facets == [
            ("Ma commune", "value"),
            ("Ma commune (Code INSEE)", "code"),
            ("Ma commune (Département)", "departement"),
        ]

    def test_rna_commune_facet(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "rna", "libelle": "rna"}])
        assert "rna – commune" in [c.label for c in build_columns(procedure)]

    def test_linked_drop_down_facets(self):
        procedure = factories.make_procedure(
            types_de_champ_public=[{"type": "linked_drop_down_list", "libelle": "linked"}],
        )
        labels = [c.label for c in build_columns(procedure)]
        assert "linked (Primaire)" in labels
        assert "linked (Secondaire)" in labels

    def test_facets_have_distinct_h_ids(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "communes", "libelle": "Ville"}])
        h_ids = [c.h_id for c in build_columns(procedure) if c.is_type_de_champ]
        assert len(set(h_ids)) == 3

    def test_drop_down_options(self):
        procedure = factories.make_procedure(types_de_champ_public=[
            {"type": "drop_down_list", "libelle": "Choix", "options": {"drop_down_options": ["A", "B"]}},
        ])
        column = ProcedureColumns(procedure).find_column(label="Choix")
        assert column.type == "enum"
        assert column.options_for_select() == [("A", "A"), ("B", "B")]

    def test_unknown_kind_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            kind_for("hologram")
        assert exc_info.value.details == {"type_champ": "hologram"}

    def test_registry_covers_common_types(self):
        for type_champ in ("text", "date", "communes", "repetition", "header_section", "cojo", "yes_no"):
            assert type_champ in TYPE_CHAMPS

    def test_cojo_value(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "cojo", "libelle": "Accréditation"}])
        tdc = procedure.active_revision.types_de_champ_public[0]
        dossier = factories.make_dossier(procedure.groupe_instructeurs[0])
        champ = factories.make_champ(
            dossier, tdc,
            value_json={"accreditation_number": "123456", "accreditation_birthdate": "21/12/1959"},
        )
        assert kind_for("cojo").value_for(champ) == "123456 – 21/12/1959"

    def test_yes_no_value(self):
        procedure = factories.make_procedure(types_de_champ_public=[{"type": "yes_no", "libelle": "Majeur ?"}])
        tdc = procedure.active_revision.types_de_champ_public[0]
        champ = factories.make_champ(factories.make_dossier(procedure.groupe_instructeurs[0]), tdc, value="true")
        assert kind_for("yes_no").value_for(champ) == "Oui"


# ── Procedure variants ──────────────────────────────────────────────────────


class TestProcedureVariants:
    def test_individual_columns(self):
        procedure = factories.make_procedure(for_individual=True)
        columns = build_columns(procedure)

        assert _col(procedure, "Prénom", "individual", "prenom") in columns
        assert _col(procedure, "Nom", "individual", "nom") in columns
        assert _col(procedure, "Civilité", "individual", "gender") in columns
        assert "SIREN" not in [c.label for c in columns]

    @pytest.mark.parametrize("decision,label", [("sva", "SVA"), ("svr", "SVR")])
    def test_sva_svr_columns(self, decision, label):
        procedure = factories.make_procedure(for_individual=True, sva_svr_decision=decision)
        columns = build_columns(procedure)

        assert _col(procedure, f"Date décision {label}", "self", "sva_svr_decision_on", "date") in columns
        assert _col(procedure, f"Date décision {label} avant", "self", "sva_svr_decision_before", "date",
                    displayable=False) in columns

    def test_sva_svr_disabled_has_no_decision_columns(self, procedure):
        assert not [c for c in build_columns(procedure) if c.column == "sva_svr_decision_on"]

    def test_active_revision_is_latest_published(self):
        procedure = factories.make_procedure(
            types_de_champ_public=[{"type": "text", "libelle": "Publié"}], published=True,
        )
        draft = revision_service.draft_revision(procedure)
        revision_service.add_type_de_champ(draft, "text", "Brouillon")

        labels = [c.label for c in build_columns(procedure)]

        assert "Publié" in labels
        assert "Brouillon" not in labels

    def test_adding_unknown_field_type_is_rejected(self):
        procedure = factories.make_procedure()
        draft = revision_service.draft_revision(procedure)

        with pytest.raises(ValidationError) as exc_info:
            revision_service.add_type_de_champ(draft, "hologram", "Hologramme")

        assert exc_info.value.details == {"type_champ": "hologram"}


# ── Catalog lookups ─────────────────────────────────────────────────────────


class TestFindColumn:
    def test_notifications_column_by_label_and_h_id(self, procedure):
        catalog = ProcedureColumns(procedure)
        notifications = catalog.notifications_column

        assert catalog.find_column(label=notifications.label) == notifications
        assert catalog.find_column(h_id=notifications.h_id) == notifications

    def test_unknown_h_id_raises(self, procedure):
        with pytest.raises(NotFoundError):
            ProcedureColumns(procedure).find_column(h_id="unknown")

    def test_unknown_label_raises(self, procedure):
        with pytest.raises(NotFoundError):
            ProcedureColumns(procedure).find_column(label="Nope")

    def test_duplicate_label_returns_first(self, procedure):
        column = ProcedureColumns(procedure).find_column(label="Date de création")
        assert column.table == "self"

    def test_named_columns(self, procedure):
        catalog = ProcedureColumns(procedure)
        assert catalog.dossier_id_column.id == "self/id"
        assert catalog.dossier_state_column.id == "self/state"
        assert catalog.groupe_instructeur_column.id == "groupe_instructeur/id"

    def test_displayable_and_filterable_subsets(self, procedure):
        catalog = ProcedureColumns(procedure)
        displayable = [c.label for c in catalog.displayable_columns]
        filterable = [c.label for c in catalog.filterable_columns]

        assert "Déposé depuis" not in displayable
        assert "Déposé depuis" in filterable
        assert "notifications" in displayable
        assert "notifications" not in filterable

    def test_filtered_column_serializes_h_id(self, procedure):
        column = ProcedureColumns(procedure).dossier_state_column
        assert FilteredColumn(column=column, filter="accepte").to_dict() == {
            "h_id": column.h_id, "filter": "accepte",
        }


class TestGroupeInstructeurOptions:
    def test_no_actor_no_options(self):
        procedure = factories.make_procedure(groupes=2)
        column = ProcedureColumns(procedure).find_column(label="Groupe instructeur")
        assert column.options_for_select() == []

    def test_options_for_assigned_instructeur(self, instructeur):
        procedure = factories.make_procedure(groupes=2)
        groupe_1, groupe_2 = procedure.groupe_instructeurs
        for groupe in (groupe_1, groupe_2):
            groupe.add(instructeur)
        db.session.flush()

        column = ProcedureColumns(procedure, ColumnContext(instructeur)).find_column(label="Groupe instructeur")

        assert sorted(column.options_for_select()) == sorted(
            [(groupe_1.label, groupe_1.id), (groupe_2.label, groupe_2.id)]
        )

    def test_options_do_not_change_identity(self, instructeur):
        procedure = factories.make_procedure()
        procedure.groupe_instructeurs[0].add(instructeur)
        db.session.flush()

        anonymous = ProcedureColumns(procedure).groupe_instructeur_column
        scoped = ProcedureColumns(procedure, ColumnContext(instructeur)).groupe_instructeur_column

        assert anonymous == scoped
        assert anonymous.h_id == scoped.h_id


# ── Export column groups ────────────────────────────────────────────────────


_FIELDS = [
    {"type": "text", "libelle": "Ca va ?", "mandatory": True, "stable_id": 1},
    {"type": "communes", "libelle": "Commune", "mandatory": True, "stable_id": 17},
    {"type": "siret", "libelle": "siret", "stable_id": 20},
    {"type": "repetition", "mandatory": True, "stable_id": 7, "libelle": "Champ répétable",
     "children": [{"type": "text", "libelle": "Qqchose à rajouter?", "stable_id": 8}]},
]


class TestExportColumns:
    def test_usager_columns_for_individual_procedure(self):
        procedure = factories.make_procedure(for_individual=True, types_de_champ_public=_FIELDS, published=True)
        catalog = ProcedureColumns(procedure)
        actuals = [c.h_id for c in catalog.usager_columns_for_export()]

        for label in ("Nº dossier", "Email", "France connecté ?", "Civilité", "Nom", "Prénom",
                      "Dépôt pour un tiers", "Nom du mandataire", "Prénom du mandataire"):
            assert catalog.find_column(label=label).h_id in actuals

    def test_usager_columns_for_entity_procedure(self):
        procedure = factories.make_procedure(types_de_champ_public=_FIELDS, published=True)
        catalog = ProcedureColumns(procedure)
        actuals = catalog.usager_columns_for_export()

        for label in ("Nº dossier", "Email", "France connecté ?", "Établissement SIRET",
                      "Établissement siège social", "Établissement NAF", "Libellé NAF",
                      "Établissement Adresse", "Établissement numero voie", "Établissement type voie",
                      "Établissement nom voie", "Établissement complément adresse",
                      "Établissement code postal", "Établissement localité",
                      "Établissement code INSEE localité", "Entreprise SIREN", "Entreprise capital social",
                      "Entreprise numero TVA intracommunautaire", "Entreprise forme juridique",
                      "Entreprise forme juridique code", "Entreprise nom commercial",
                      "Entreprise raison sociale", "Entreprise SIRET siège social",
                      "Entreprise code effectif entreprise"):
            assert catalog.find_column(label=label).h_id in [c.h_id for c in actuals]
        assert not any(c.label == "Nom" for c in actuals)

    def test_chorus_columns(self):
        procedure = factories.make_procedure(
            chorus={"domaine_fonctionnel": "0148-04", "referentiel_de_programmation": "R1",
                    "centre_de_cout": "C1"},
            types_de_champ_public=_FIELDS,
        )
        catalog = ProcedureColumns(procedure)
        actuals = [c.h_id for c in catalog.usager_columns_for_export()]

        for label in ("Domaine Fonctionnel", "Référentiel De Programmation", "Centre De Coût"):
            assert catalog.find_column(label=label).h_id in actuals

    def test_dossier_columns(self):
        procedure = factories.make_procedure(groupes=2, types_de_champ_public=_FIELDS, published=True)
        catalog = ProcedureColumns(procedure)
        actuals = [c.h_id for c in catalog.dossier_columns_for_export()]

        for label in ("Archivé", "État du dossier", "Date du dernier évènement",
                      "Date de dernière modification (usager)", "Date de dépot",
                      "Date de passage en instruction", "Date de traitement",
                      "Motivation de la décision", "Instructeurs", "Groupe instructeur"):
            assert catalog.find_column(label=label).h_id in actuals

    def test_export_labels_share_h_ids_with_list_labels(self, procedure):
        catalog = ProcedureColumns(procedure)
        assert catalog.find_column(label="Nº dossier").h_id == catalog.find_column(label="Dossier ID").h_id
        assert catalog.find_column(label="Date du dernier évènement").h_id == \
            catalog.find_column(label="Mis à jour le").h_id

    def test_default_export_columns_include_champs(self):
        procedure = factories.make_procedure(types_de_champ_public=_FIELDS, published=True)
        labels = [c.label for c in ProcedureColumns(procedure).default_export_columns()]
        assert "Ca va ?" in labels
        assert "Commune (Code INSEE)" in labels
        assert "Qqchose à rajouter?" in labels
