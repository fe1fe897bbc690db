"""Tests for qSOFA, SIRS and NEWS2 scoring."""

import pytest

from emr_backend.services.sepsis_scoring import (
    LabsInput, RiskLevel, VitalsInput,
    calculate_news2, calculate_qsofa, calculate_sepsis_risk, calculate_sirs
)


def septic_vitals() -> VitalsInput:
    return VitalsInput(
        heart_rate=125,
        systolic_bp=88,
        respiratory_rate=26,
        temperature=102.8,
        oxygen_saturation=90,
        supplemental_o2=True,
        mental_status='confused',
    )


class TestQsofa:
    """qSOFA components and tiers."""

    def test_all_criteria_met(self):
        score = calculate_qsofa(septic_vitals())

        assert score.score == 3
        assert score.max_score == 3
        assert score.risk_level == RiskLevel.HIGH
        assert all(c.met for c in score.components)

    def test_missing_blood_pressure_is_not_hypotension(self):
        score = calculate_qsofa(VitalsInput(respiratory_rate=24))

        bp = next(c for c in score.components if c.name == 'Systolic BP')
        assert bp.met is False
        assert score.score == 1
        assert score.risk_level == RiskLevel.MODERATE

    def test_low_gcs_counts_as_altered_mentation(self):
        score = calculate_qsofa(VitalsInput(gcs_score=13))

        mental = next(c for c in score.components if c.name == 'Altered Mental Status')
        assert mental.met is True
        assert mental.value == 'GCS 13'

    def test_normal_vitals_low_risk(self):
        score = calculate_qsofa(VitalsInput(respiratory_rate=16, systolic_bp=120, mental_status='alert'))

        assert score.score == 0
        assert score.risk_level == RiskLevel.LOW


class TestSirs:
    """SIRS criteria, including PaCO2 and band count alternatives."""

    def test_fever_tachycardia_leukocytosis(self):
        score = calculate_sirs(
            VitalsInput(heart_rate=110, temperature=101.5, respiratory_rate=18),
            LabsInput(wbc=15.2),
        )

        assert score.score == 3
        assert score.risk_level == RiskLevel.HIGH
        assert 'SIRS positive' in score.recommendation

    def test_paco2_substitutes_for_respiratory_rate(self):
        score = calculate_sirs(VitalsInput(), LabsInput(pa_co2=30))

        rr = next(c for c in score.components if c.name == 'Respiratory Rate/PaCO2')
        assert rr.met is True
        assert rr.value == 'PaCO2: 30'

    def test_bands_over_ten_percent(self):
        score = calculate_sirs(VitalsInput(), LabsInput(wbc=8, band_count=12))

        wbc = next(c for c in score.components if c.name == 'WBC/Bands')
        assert wbc.met is True

    def test_missing_temperature_assumed_normal(self):
        score = calculate_sirs(VitalsInput(), LabsInput())

        assert score.score == 0
        assert score.risk_level == RiskLevel.LOW

    def test_hypothermia(self):
        score = calculate_sirs(VitalsInput(temperature=95.9), LabsInput())

        temp = next(c for c in score.components if c.name == 'Temperature')
        assert temp.met is True
        assert temp.value == '95.9°F'


class TestNews2:
    """NEWS2 parameter bands."""

    def test_normal_observations_score_zero(self):
        score = calculate_news2(VitalsInput(
            heart_rate=72, systolic_bp=125, respiratory_rate=16,
            temperature=98.6, oxygen_saturation=98, mental_status='alert',
        ))

        assert score.score == 0
        assert score.risk_level == RiskLevel.LOW

    def test_critical_patient(self):
        score = calculate_news2(septic_vitals())

        # RR 26 (3) + SpO2 90 (3) + O2 (2) + SBP 88 (3) + HR 125 (2) + 39.3C (2) + confused (3)
        assert score.score == 18
        assert score.risk_level == RiskLevel.CRITICAL

    def test_moderate_band(self):
        score = calculate_news2(VitalsInput(heart_rate=95, respiratory_rate=22))

        assert score.score == 3
        assert score.risk_level == RiskLevel.MODERATE

    def test_high_band(self):
        score = calculate_news2(VitalsInput(respiratory_rate=22, oxygen_saturation=93, systolic_bp=105))

        assert score.score == 5
        assert score.risk_level == RiskLevel.HIGH

    @pytest.mark.parametrize("temp_f, points", [
        (102.3, 2),   # 39.06C
        (100.5, 1),   # 38.06C
        (95.1, 1),    # 35.06C
        (96.9, 0),    # 36.06C
        (95.0, 3),
        (99.0, 0),
    ])
    def test_temperature_bands_have_no_gaps(self, temp_f, points):
        score = calculate_news2(VitalsInput(temperature=temp_f))

        temperature = next(c for c in score.components if c.name == "Temperature")
        assert temperature.points == points


class TestOverallSepsisRisk:
    """Combined result and recommendations."""

    def test_overall_is_most_severe_tier(self):
        result = calculate_sepsis_risk('p1', septic_vitals(), LabsInput(wbc=18, lactate=4.1))

        assert result.overall_risk == RiskLevel.CRITICAL
        assert 'Order blood cultures and lactate if not already done.' in result.recommendations
        assert any(r.startswith('qSOFA') for r in result.recommendations)

    def test_stable_patient_gets_reassurance(self):
        result = calculate_sepsis_risk(
            'p2',
            VitalsInput(heart_rate=70, systolic_bp=120, respiratory_rate=14, temperature=98.4,
                        oxygen_saturation=99, mental_status='alert'),
            LabsInput(wbc=7),
        )

        assert result.overall_risk == RiskLevel.LOW
        assert result.recommendations == ['No immediate sepsis concerns. Continue standard monitoring.']

    def test_to_dict_shape(self):
        data = calculate_sepsis_risk('p3', VitalsInput(), LabsInput()).to_dict()

        assert data['patientId'] == 'p3'
        assert set(data['scores']) == {'qsofa', 'sirs', 'news2'}
        assert data['scores']['news2']['maxScore'] == 20
