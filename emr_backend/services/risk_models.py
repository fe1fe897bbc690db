"""
Inpatient Risk Models

- Morse Fall Scale (0-125, higher is worse)
- LACE index for 30-day readmission (0-19)
- Braden Scale for pressure ulcers (6-23, lower is worse)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class RiskTier(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very-high"


TIER_ORDER = [RiskTier.VERY_HIGH, RiskTier.HIGH, RiskTier.MODERATE, RiskTier.LOW]


class AmbulatoryAid(str, Enum):
    NONE = "none"
    CANE_WALKER = "crutches/cane/walker"
    FURNITURE = "furniture"


class GaitTransfer(str, Enum):
    NORMAL = "normal/bedrest/wheelchair"
    WEAK = "weak"
    IMPAIRED = "impaired"


class Acuity(str, Enum):
    ELECTIVE = "elective"
    URGENT = "urgent"
    EMERGENT = "emergent"


@dataclass
class PatientRiskFactors:
    """Inputs for all three models; anything unset is scored as benign"""
    # Morse
    history_of_falling: bool = False
    secondary_diagnosis: bool = False
    ambulatory_aid: AmbulatoryAid = AmbulatoryAid.NONE
    iv_saline_lock: bool = False
    gait_transfer: GaitTransfer = GaitTransfer.NORMAL
    forgets_limitations: bool = False

    # LACE
    length_of_stay: int = 0
    acuity: Acuity = Acuity.ELECTIVE
    charlson_score: int = 0
    ed_visits_6_months: int = 0

    # Braden (1 = worst)
    sensory_perception: int = 4
    moisture: int = 4
    activity: int = 4
    mobility: int = 4
    nutrition: int = 4
    friction_shear: int = 3

    age: Optional[int] = None
    chronic_conditions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'historyOfFalling': self.history_of_falling,
            'secondaryDiagnosis': self.secondary_diagnosis,
            'ambulatoryAid': self.ambulatory_aid.value,
            'ivSalineLock': self.iv_saline_lock,
            'gaitTransfer': self.gait_transfer.value,
            'mentalStatus': 'forgets/overestimates' if self.forgets_limitations else 'oriented',
            'lengthOfStay': self.length_of_stay,
            'acuity': self.acuity.value,
            'charlsonScore': self.charlson_score,
            'edVisits6Months': self.ed_visits_6_months,
            'sensoryPerception': self.sensory_perception,
            'moisture': self.moisture,
            'activity': self.activity,
            'mobility': self.mobility,
            'nutrition': self.nutrition,
            'frictionShear': self.friction_shear,
            'age': self.age,
            'hasChronicConditions': self.chronic_conditions,
        }


@dataclass
class RiskScore:
    name: str
    score: int
    max_score: int
    risk_level: RiskTier
    interpretation: str
    recommendations: List[str]
    min_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'score': self.score,
            'maxScore': self.max_score,
            'riskLevel': self.risk_level.value,
            'interpretation': self.interpretation,
            'recommendations': self.recommendations,
        }
        if self.min_score is not None:
            data['minScore'] = self.min_score
        return data


@dataclass
class RiskScoresResult:
    patient_id: str
    timestamp: str
    overall_risk: RiskTier
    fall_risk: RiskScore
    readmission_risk: RiskScore
    pressure_ulcer_risk: RiskScore
    primary_recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'patientId': self.patient_id,
            'timestamp': self.timestamp,
            'overallRisk': self.overall_risk.value,
            'scores': {
                'fallRisk': self.fall_risk.to_dict(),
                'readmissionRisk': self.readmission_risk.to_dict(),
                'pressureUlcerRisk': self.pressure_ulcer_risk.to_dict(),
            },
            'primaryRecommendations': self.primary_recommendations,
        }


def calculate_morse_fall_risk(factors: PatientRiskFactors) -> RiskScore:
    """Morse Fall Scale: 0-24 no risk, 25-50 low, 51+ high"""
    score = 0
    recommendations = []

    if factors.history_of_falling:
        score += 25
        recommendations.append('Implement fall prevention protocol')

    if factors.secondary_diagnosis:
        score += 15

    if factors.ambulatory_aid == AmbulatoryAid.FURNITURE:
        score += 30
        recommendations.append('Ensure call light within reach at all times')
    elif factors.ambulatory_aid == AmbulatoryAid.CANE_WALKER:
        score += 15
        recommendations.append('Ensure assistive device is accessible')

    if factors.iv_saline_lock:
        score += 20

    if factors.gait_transfer == GaitTransfer.IMPAIRED:
        score += 20
        recommendations.append('Consider 1:1 sitter or bed alarm')
    elif factors.gait_transfer == GaitTransfer.WEAK:
        score += 10
        recommendations.append('Assist with ambulation')

    if factors.forgets_limitations:
        score += 15
        recommendations.append('Frequent orientation checks')

    if factors.age and factors.age >= 65:
        recommendations.append('Fall risk education for patient and family')
    if factors.age and factors.age >= 80:
        recommendations.append('Consider physical therapy evaluation')

    if score >= 51:
        tier = RiskTier.HIGH
        interpretation = 'High Risk - Standard fall prevention protocol required'
        recommendations.insert(0, 'FALL RISK: Initiate fall prevention bundle')
    elif score >= 25:
        tier = RiskTier.MODERATE
        interpretation = 'Low Risk - Implement standard precautions'
        recommendations.append('Non-skid footwear required')
    else:
        tier = RiskTier.LOW
        interpretation = 'No Risk - Good clinical practice'
        if not recommendations:
            recommendations.append('Continue standard safety measures')

    return RiskScore('Morse Fall Scale', score, 125, tier, interpretation, recommendations)


def _banded(value: int, bands) -> int:
    """First matching (threshold, points) pair, thresholds descending"""
    for threshold, points in bands:
        if value >= threshold:
            return points
    return 0


LOS_BANDS = [(14, 7), (7, 5), (4, 4), (3, 3), (2, 2), (1, 1)]
CHARLSON_BANDS = [(4, 5), (3, 3), (2, 2), (1, 1)]
ED_VISIT_BANDS = [(4, 4), (3, 3), (2, 2), (1, 1)]


def calculate_lace_score(factors: PatientRiskFactors) -> RiskScore:
    """LACE: Length of stay, Acuity, Comorbidity (Charlson), ED visits in 6 months"""
    recommendations = []

    score = _banded(factors.length_of_stay, LOS_BANDS)

    if factors.acuity == Acuity.EMERGENT:
        score += 3
        recommendations.append('Ensure close outpatient follow-up within 7 days')
    elif factors.acuity == Acuity.URGENT:
        score += 2

    score += _banded(factors.charlson_score, CHARLSON_BANDS)
    if factors.charlson_score >= 4:
        recommendations.append('Consider care coordination referral')

    score += _banded(factors.ed_visits_6_months, ED_VISIT_BANDS)
    if factors.ed_visits_6_months >= 4:
        recommendations.append('Address social determinants of health')

    if score >= 10:
        tier = RiskTier.VERY_HIGH
        interpretation = 'Very High Risk of 30-day readmission (>25%)'
        recommendations.insert(0, 'High readmission risk: Schedule transitional care visit')
    elif score >= 7:
        tier = RiskTier.HIGH
        interpretation = 'High Risk of 30-day readmission (15-25%)'
        recommendations.append('Ensure medication reconciliation complete')
    elif score >= 4:
        tier = RiskTier.MODERATE
        interpretation = 'Moderate Risk of 30-day readmission (10-15%)'
        recommendations.append('Provide written discharge instructions')
    else:
        tier = RiskTier.LOW
        interpretation = 'Low Risk of 30-day readmission (<10%)'
        recommendations.append('Standard discharge planning')

    return RiskScore('LACE Score', score, 19, tier, interpretation, recommendations)


BRADEN_ITEMS = [
    ('sensory_perception', 'Assess skin every shift'),
    ('moisture', 'Use moisture barrier and change linens frequently'),
    ('activity', 'Consider specialty mattress'),
    ('mobility', 'Reposition every 2 hours'),
    ('nutrition', 'Consult dietitian for nutritional supplementation'),
    ('friction_shear', 'Use lift sheet; elevate HOB ≤30 degrees'),
]


def calculate_braden_score(factors: PatientRiskFactors) -> RiskScore:
    """Braden: <=9 very high, 10-12 high, 13-14 moderate, 15-18 mild, 19+ none"""
    score = 0
    recommendations = []

    for attr, advice in BRADEN_ITEMS:
        value = getattr(factors, attr)
        score += value
        if value <= 2:
            recommendations.append(advice)

    if score <= 9:
        tier = RiskTier.VERY_HIGH
        interpretation = 'Very High Risk - Intensive preventive care needed'
        recommendations.insert(0, 'PRESSURE ULCER RISK: Implement full prevention bundle')
    elif score <= 12:
        tier = RiskTier.HIGH
        interpretation = 'High Risk - Enhanced preventive care'
        recommendations.append('Consider wound care nurse consult')
    elif score <= 14:
        tier = RiskTier.MODERATE
        interpretation = 'Moderate Risk - Standard preventive care'
    elif score <= 18:
        tier = RiskTier.LOW
        interpretation = 'Mild Risk - Basic prevention'
        recommendations.append('Encourage ambulation')
    else:
        tier = RiskTier.LOW
        interpretation = 'No Risk - Good clinical practice'
        recommendations.append('Continue standard care')

    return RiskScore('Braden Scale', score, 23, tier, interpretation, recommendations, min_score=6)


def calculate_all_risk_scores(patient_id: str, factors: PatientRiskFactors) -> RiskScoresResult:
    fall = calculate_morse_fall_risk(factors)
    readmission = calculate_lace_score(factors)
    pressure = calculate_braden_score(factors)

    tiers = {fall.risk_level, readmission.risk_level, pressure.risk_level}
    overall = next(tier for tier in TIER_ORDER if tier in tiers)

    elevated = (RiskTier.HIGH, RiskTier.VERY_HIGH)
    primary = []
    if fall.risk_level in elevated:
        primary.append(f"Fall Risk (Morse {fall.score}): {fall.recommendations[0]}")
    if readmission.risk_level in elevated:
        primary.append(f"Readmission Risk (LACE {readmission.score}): {readmission.recommendations[0]}")
    if pressure.risk_level in elevated:
        primary.append(f"Pressure Ulcer Risk (Braden {pressure.score}): {pressure.recommendations[0]}")
    if not primary:
        primary.append('No critical risks identified. Continue standard care protocols.')

    return RiskScoresResult(
        patient_id=patient_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
        overall_risk=overall,
        fall_risk=fall,
        readmission_risk=readmission,
        pressure_ulcer_risk=pressure,
        primary_recommendations=primary,
    )
