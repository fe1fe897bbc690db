"""Tests for Morse, LACE and Braden risk models."""

from emr_backend.services.risk_models import (
    Acuity, AmbulatoryAid, GaitTransfer, PatientRiskFactors, RiskTier,
    calculate_all_risk_scores, calculate_braden_score, calculate_lace_score, calculate_morse_fall_risk
)
from emr_backend.services.cds_context import (
    estimate_charlson_score, infer_acuity, infer_ambulatory_aid, infer_gait
)


class TestMorseFallScale:
    """Morse Fall Scale points and tiers."""

    def test_defaults_score_zero(self):
        score = calculate_morse_fall_risk(PatientRiskFactors())

        assert score.score == 0
        assert score.risk_level == RiskTier.LOW
        assert score.recommendations == ['Continue standard safety measures']

    def test_high_risk_leads_with_bundle(self):
        score = calculate_morse_fall_risk(PatientRiskFactors(
            history_of_falling=True,
            secondary_diagnosis=True,
            ambulatory_aid=AmbulatoryAid.FURNITURE,
        ))

        assert score.score == 70
        assert score.risk_level == RiskTier.HIGH
        assert score.recommendations[0] == 'FALL RISK: Initiate fall prevention bundle'

    def test_maximum_score(self):
        score = calculate_morse_fall_risk(PatientRiskFactors(
            history_of_falling=True,
            secondary_diagnosis=True,
            ambulatory_aid=AmbulatoryAid.FURNITURE,
            iv_saline_lock=True,
            gait_transfer=GaitTransfer.IMPAIRED,
            forgets_limitations=True,
        ))

        assert score.score == 125

    def test_moderate_band_requires_footwear(self):
        score = calculate_morse_fall_risk(PatientRiskFactors(history_of_falling=True))

        assert score.score == 25
        assert score.risk_level == RiskTier.MODERATE
        assert 'Non-skid footwear required' in score.recommendations


class TestLaceIndex:
    """LACE readmission index."""

    def test_defaults_low(self):
        score = calculate_lace_score(PatientRiskFactors())

        assert score.score == 0
        assert score.risk_level == RiskTier.LOW

    def test_maximum(self):
        score = calculate_lace_score(PatientRiskFactors(
            length_of_stay=14, acuity=Acuity.EMERGENT, charlson_score=4, ed_visits_6_months=4
        ))

        assert score.score == 19
        assert score.risk_level == RiskTier.VERY_HIGH
        assert score.recommendations[0] == 'High readmission risk: Schedule transitional care visit'

    def test_length_of_stay_bands(self):
        assert calculate_lace_score(PatientRiskFactors(length_of_stay=5)).score == 4
        assert calculate_lace_score(PatientRiskFactors(length_of_stay=8)).score == 5

    def test_high_band(self):
        score = calculate_lace_score(PatientRiskFactors(
            length_of_stay=3, acuity=Acuity.URGENT, charlson_score=2
        ))

        assert score.score == 7
        assert score.risk_level == RiskTier.HIGH


class TestBradenScale:
    """Braden pressure ulcer scale (lower is worse)."""

    def test_defaults_no_risk(self):
        score = calculate_braden_score(PatientRiskFactors())

        assert score.score == 23
        assert score.min_score == 6
        assert score.risk_level == RiskTier.LOW
        assert 'Continue standard care' in score.recommendations

    def test_minimum_very_high(self):
        score = calculate_braden_score(PatientRiskFactors(
            sensory_perception=1, moisture=1, activity=1, mobility=1, nutrition=1, friction_shear=1
        ))

        assert score.score == 6
        assert score.risk_level == RiskTier.VERY_HIGH
        assert score.recommendations[0] == 'PRESSURE ULCER RISK: Implement full prevention bundle'
        assert score.to_dict()['minScore'] == 6


class TestCombinedRiskScores:
    """Overall tier and primary recommendations."""

    def test_no_elevated_risks(self):
        result = calculate_all_risk_scores('p1', PatientRiskFactors())

        assert result.overall_risk == RiskTier.LOW
        assert result.primary_recommendations == ['No critical risks identified. Continue standard care protocols.']

    def test_primary_recommendations_cite_scores(self):
        result = calculate_all_risk_scores('p1', PatientRiskFactors(
            history_of_falling=True, secondary_diagnosis=True, ambulatory_aid=AmbulatoryAid.FURNITURE,
        ))

        assert result.overall_risk == RiskTier.HIGH
        assert result.primary_recommendations == [
            'Fall Risk (Morse 70): FALL RISK: Initiate fall prevention bundle'
        ]


class TestChartInference:
    """Heuristics that turn problem list text into model inputs."""

    def test_charlson_from_conditions(self):
        assert estimate_charlson_score(['Type 2 diabetes', 'Chronic kidney disease']) == 3

    def test_charlson_ignores_embedded_abbreviations(self):
        # 'mi' inside 'mild' must not count as myocardial infarction
        assert estimate_charlson_score(['Mild intermittent asthma']) == 0

    def test_stroke_impairs_gait(self):
        assert infer_gait(['History of stroke'], 60) == GaitTransfer.IMPAIRED
        assert infer_ambulatory_aid(['History of stroke'], 60) == AmbulatoryAid.CANE_WALKER

    def test_elderly_default_aids(self):
        assert infer_ambulatory_aid([], 72) == AmbulatoryAid.CANE_WALKER
        assert infer_gait([], 76) == GaitTransfer.WEAK

    def test_emergency_encounter_is_emergent(self):
        assert infer_acuity({'class': {'code': 'EMER'}}) == Acuity.EMERGENT
        assert infer_acuity({'class': {'code': 'IMP'}, 'priority': {'coding': [{'code': 'urgent'}]}}) == Acuity.URGENT
        assert infer_acuity(None) == Acuity.ELECTIVE
