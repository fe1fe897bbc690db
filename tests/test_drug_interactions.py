"""Tests for drug-drug and drug-allergy checks."""

import pytest

from emr_backend.services.drug_interaction_service import (
    AllergyAlertSeverity, DrugInteractionService, InteractionSeverity, PatientAllergy, drugs_match
)


@pytest.fixture
def service():
    return DrugInteractionService()


class TestDrugMatching:

    def test_partial_match_either_direction(self):
        assert drugs_match('Warfarin Sodium 5 MG', 'warfarin')
        assert drugs_match('aspirin', 'Aspirin 81mg')

    def test_empty_names_never_match(self):
        assert not drugs_match('', 'warfarin')
        assert not drugs_match('   ', '')


class TestDrugDrugInteractions:
    """Pairwise interaction lookups."""

    def test_known_pair_detected(self, service):
        interactions = service.check_drug_drug_interactions(['Warfarin 5mg', 'Aspirin 81mg'])

        assert len(interactions) == 1
        assert interactions[0].severity == InteractionSeverity.MAJOR
        assert interactions[0].drug1 == 'Warfarin 5mg'
        assert interactions[0].drug2 == 'Aspirin 81mg'

    def test_reverse_order_detected(self, service):
        interactions = service.check_drug_drug_interactions(['omeprazole', 'clopidogrel'])

        assert len(interactions) == 1
        assert interactions[0].severity == InteractionSeverity.MODERATE

    def test_sorted_most_severe_first(self, service):
        interactions = service.check_drug_drug_interactions(
            ['lisinopril', 'potassium chloride', 'ciprofloxacin', 'tizanidine']
        )

        assert [i.severity for i in interactions] == [
            InteractionSeverity.CONTRAINDICATED, InteractionSeverity.MODERATE
        ]

    def test_single_combination_product_does_not_interact_with_itself(self, service):
        assert service.check_drug_drug_interactions(['warfarin aspirin']) == []

    def test_duplicate_entries_skipped(self, service):
        assert service.check_drug_drug_interactions(['Warfarin', 'warfarin']) == []

    def test_no_interactions(self, service):
        assert service.check_drug_drug_interactions(['acetaminophen', 'atorvastatin']) == []


class TestDrugAllergyInteractions:
    """Direct allergy matches and cross-reactivity."""

    def test_direct_match_is_danger(self, service):
        alerts = service.check_drug_allergy_interactions(['Penicillin V'], [PatientAllergy('penicillin')])

        assert len(alerts) == 1
        assert alerts[0].severity == AllergyAlertSeverity.DANGER
        assert alerts[0].cross_reactivity is False

    def test_cross_reactivity_is_warning(self, service):
        alerts = service.check_drug_allergy_interactions(
            ['Amoxicillin 500mg'], [PatientAllergy('Penicillin', 'high')]
        )

        assert len(alerts) == 1
        assert alerts[0].severity == AllergyAlertSeverity.WARNING
        assert alerts[0].cross_reactivity is True
        assert alerts[0].allergen == 'Penicillin'

    def test_unrelated_allergy(self, service):
        assert service.check_drug_allergy_interactions(['metformin'], [PatientAllergy('latex')]) == []


class TestCheckAllInteractions:

    def test_summary_flags(self, service):
        result = service.check_all_interactions(
            ['warfarin', 'ibuprofen'], [PatientAllergy('aspirin')]
        ).to_dict()

        assert result['hasInteractions'] is True
        assert result['hasSevereInteractions'] is True
        assert result['hasAllergyAlerts'] is True
        assert result['allergyAlerts'][0]['drug'] == 'ibuprofen'
        assert result['allergyAlerts'][0]['crossReactivity'] is True

    def test_clean_list(self, service):
        result = service.check_all_interactions(['metformin'], []).to_dict()

        assert result['hasInteractions'] is False
        assert result['hasSevereInteractions'] is False
        assert result['drugInteractions'] == []
