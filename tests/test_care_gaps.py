"""Tests for preventive care gap detection."""

from datetime import datetime, timezone

from emr_backend.services.care_gaps import (
    GapPriority, PatientDemographics,
    calculate_care_gaps, check_chronic_care_gaps, check_immunization_gaps, check_screening_gaps,
    latest_lab_dates, mentions_any
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def names(gaps):
    return [g.name for g in gaps]


class TestScreeningGaps:
    """USPSTF screening eligibility."""

    def test_female_fifty_due_for_cancer_screenings(self):
        gaps = check_screening_gaps(PatientDemographics(age=50, gender='female'))

        assert 'Colorectal Cancer Screening' in names(gaps)
        assert 'Mammogram' in names(gaps)
        assert 'Cervical Cancer Screening (Pap)' in names(gaps)
        # Smoking history required
        assert 'Lung Cancer Screening' not in names(gaps)

    def test_completed_procedure_closes_gap(self):
        gaps = check_screening_gaps(PatientDemographics(
            age=50, gender='male', procedures=['Colonoscopy with biopsy']
        ))

        assert 'Colorectal Cancer Screening' not in names(gaps)

    def test_keyword_must_start_a_word(self):
        # 'fit' appears inside 'benefit' but is not a FIT test
        assert mentions_any(['Benefit counseling'], ['fit']) is False
        assert mentions_any(['FIT test negative'], ['fit']) is True

    def test_smoker_gets_lung_and_aaa_screening(self):
        gaps = check_screening_gaps(PatientDemographics(
            age=68, gender='male', conditions=['Tobacco use disorder']
        ))

        assert 'Lung Cancer Screening' in names(gaps)
        assert 'Abdominal Aortic Aneurysm Screening' in names(gaps)

    def test_priority_overdue_two_years_past_start_age(self):
        at_start = check_screening_gaps(PatientDemographics(age=45, gender='male'))
        later = check_screening_gaps(PatientDemographics(age=48, gender='male'))

        assert at_start[0].priority == GapPriority.HIGH
        assert later[0].priority == GapPriority.OVERDUE
        assert at_start[0].id == 'screening-colorectal-cancer-screening'


class TestImmunizationGaps:
    """Adult immunization schedule."""

    def test_annual_vaccines_high_priority(self):
        gaps = check_immunization_gaps(PatientDemographics(age=30, gender='female'))

        flu = next(g for g in gaps if g.name == 'Annual Influenza Vaccine')
        tdap = next(g for g in gaps if g.name == 'Tdap/Td Booster')
        assert flu.priority == GapPriority.HIGH
        assert tdap.priority == GapPriority.MEDIUM
        assert 'Shingles Vaccine (Shingrix)' not in names(gaps)

    def test_recorded_vaccine_closes_gap(self):
        gaps = check_immunization_gaps(PatientDemographics(
            age=70, gender='male', immunizations=['Influenza, seasonal', 'Prevnar 20']
        ))

        assert 'Annual Influenza Vaccine' not in names(gaps)
        assert 'Pneumococcal Vaccine (PCV15/PCV20)' not in names(gaps)
        assert 'RSV Vaccine' in names(gaps)


class TestChronicCareGaps:
    """Lab monitoring intervals."""

    def test_never_done_is_overdue(self):
        gaps = check_chronic_care_gaps(
            PatientDemographics(age=55, gender='male', conditions=['Type 2 diabetes mellitus']), NOW
        )

        hba1c = next(g for g in gaps if g.name == 'HbA1c (Diabetes)')
        assert hba1c.priority == GapPriority.OVERDUE
        assert hba1c.description == 'No recent results'

    def test_recent_lab_not_due(self):
        gaps = check_chronic_care_gaps(
            PatientDemographics(
                age=55, gender='male', conditions=['Diabetes'],
                last_lab_dates={'hba1c': '2024-05-01'},
            ),
            NOW,
        )

        assert 'HbA1c (Diabetes)' not in names(gaps)

    def test_just_due_is_medium(self):
        # 90-day interval from 2024-02-20 lands on 2024-05-20, within a month of NOW
        gaps = check_chronic_care_gaps(
            PatientDemographics(
                age=55, gender='male', conditions=['Diabetes'],
                last_lab_dates={'hba1c': '2024-02-20'},
            ),
            NOW,
        )

        hba1c = next(g for g in gaps if g.name == 'HbA1c (Diabetes)')
        assert hba1c.priority == GapPriority.MEDIUM
        assert hba1c.last_completed == '2024-02-20'
        assert hba1c.description == 'Last: 2024-02-20'

    def test_lipid_panel_age_gate(self):
        young = check_chronic_care_gaps(PatientDemographics(age=35, gender='female'), NOW)
        older = check_chronic_care_gaps(PatientDemographics(age=45, gender='female'), NOW)

        assert 'Lipid Panel' not in names(young)
        assert 'Lipid Panel' in names(older)

    def test_latest_lab_dates_keeps_most_recent(self):
        dates = latest_lab_dates([
            {'name': 'Hemoglobin A1c', 'date': '2023-01-10'},
            {'name': 'HbA1c', 'date': '2024-03-02'},
            {'name': 'Creatinine', 'date': '2024-01-15'},
            {'name': 'Sodium', 'date': '2024-01-15'},
        ])

        assert dates == {'hba1c': '2024-03-02', 'creatinine': '2024-01-15'}


class TestCalculateCareGaps:

    def test_summary_counts(self):
        result = calculate_care_gaps('p1', PatientDemographics(age=30, gender='male'), NOW)

        assert result['patientId'] == 'p1'
        total = sum(len(v) for v in result['gaps'].values())
        assert result['totalGaps'] == total
        assert result['gaps']['followUps'] == []
        assert result['overdueCount'] == sum(
            1 for group in result['gaps'].values() for g in group if g['priority'] == 'overdue'
        )
