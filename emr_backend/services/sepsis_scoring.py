"""
Sepsis Early Warning Scores

Implements three bedside scoring systems over the latest vitals and labs:
- qSOFA (quick Sequential Organ Failure Assessment), 0-3
- SIRS (Systemic Inflammatory Response Syndrome), 0-4
- NEWS2 (National Early Warning Score 2), 0-20

Temperatures are taken in Fahrenheit, as charted.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


RISK_ORDER = [RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MODERATE, RiskLevel.LOW]


@dataclass
class VitalsInput:
    heart_rate: Optional[float] = None          # bpm
    systolic_bp: Optional[float] = None         # mmHg
    diastolic_bp: Optional[float] = None        # mmHg
    respiratory_rate: Optional[float] = None    # breaths/min
    temperature: Optional[float] = None         # Fahrenheit
    oxygen_saturation: Optional[float] = None   # %
    supplemental_o2: bool = False
    gcs_score: Optional[int] = None             # 3-15
    mental_status: Optional[str] = None         # alert | confused | drowsy | unresponsive

    def to_dict(self) -> Dict[str, Any]:
        return {
            'heartRate': self.heart_rate,
            'systolicBP': self.systolic_bp,
            'diastolicBP': self.diastolic_bp,
            'respiratoryRate': self.respiratory_rate,
            'temperature': self.temperature,
            'oxygenSaturation': self.oxygen_saturation,
            'supplementalO2': self.supplemental_o2,
            'gcsScore': self.gcs_score,
            'mentalStatus': self.mental_status,
        }


@dataclass
class LabsInput:
    wbc: Optional[float] = None          # 10^3/uL
    lactate: Optional[float] = None      # mmol/L
    pa_co2: Optional[float] = None       # mmHg
    band_count: Optional[float] = None   # %

    def to_dict(self) -> Dict[str, Any]:
        return {
            'wbc': self.wbc,
            'lactate': self.lactate,
            'paCO2': self.pa_co2,
            'bandCount': self.band_count,
        }


@dataclass
class ScoreComponent:
    name: str
    value: Any
    points: int
    criteria: str
    met: bool


@dataclass
class SepsisScore:
    name: str
    score: int
    max_score: int
    risk_level: RiskLevel
    components: List[ScoreComponent] = field(default_factory=list)
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'score': self.score,
            'maxScore': self.max_score,
            'riskLevel': self.risk_level.value,
            'components': [asdict(c) for c in self.components],
            'recommendation': self.recommendation,
        }


@dataclass
class SepsisRiskResult:
    patient_id: str
    timestamp: str
    overall_risk: RiskLevel
    qsofa: SepsisScore
    sirs: SepsisScore
    news2: SepsisScore
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'patientId': self.patient_id,
            'timestamp': self.timestamp,
            'overallRisk': self.overall_risk.value,
            'scores': {
                'qsofa': self.qsofa.to_dict(),
                'sirs': self.sirs.to_dict(),
                'news2': self.news2.to_dict(),
            },
            'recommendations': self.recommendations,
        }


def _altered_mentation(vitals: VitalsInput) -> bool:
    if vitals.gcs_score is not None and vitals.gcs_score < 15:
        return True
    return bool(vitals.mental_status) and vitals.mental_status != 'alert'


def _fahrenheit_label(temp: Optional[float]) -> Optional[str]:
    return f"{temp}°F" if temp is not None else None


def calculate_qsofa(vitals: VitalsInput) -> SepsisScore:
    """qSOFA: >= 2 suggests high mortality risk"""
    components = []

    rr_met = (vitals.respiratory_rate or 0) >= 22
    components.append(ScoreComponent(
        'Respiratory Rate', vitals.respiratory_rate, int(rr_met), '≥ 22 breaths/min', rr_met
    ))

    mental_met = _altered_mentation(vitals)
    mental_value = vitals.mental_status
    if mental_value is None and vitals.gcs_score:
        mental_value = f"GCS {vitals.gcs_score}"
    components.append(ScoreComponent(
        'Altered Mental Status', mental_value, int(mental_met), 'GCS < 15 or not alert', mental_met
    ))

    # Missing BP is not hypotension
    bp_met = vitals.systolic_bp is not None and vitals.systolic_bp <= 100
    components.append(ScoreComponent(
        'Systolic BP', vitals.systolic_bp, int(bp_met), '≤ 100 mmHg', bp_met
    ))

    score = sum(c.points for c in components)
    if score >= 2:
        risk = RiskLevel.HIGH
        recommendation = 'High qSOFA: Consider ICU admission, lactate, blood cultures, broad-spectrum antibiotics'
    elif score == 1:
        risk = RiskLevel.MODERATE
        recommendation = 'Monitor closely for clinical deterioration'
    else:
        risk = RiskLevel.LOW
        recommendation = 'Low qSOFA: Continue standard care'

    return SepsisScore('qSOFA', score, 3, risk, components, recommendation)


def calculate_sirs(vitals: VitalsInput, labs: LabsInput) -> SepsisScore:
    """SIRS: >= 2 criteria is SIRS positive"""
    components = []

    temp_f = vitals.temperature if vitals.temperature is not None else 98.6
    temp_met = temp_f > 100.4 or temp_f < 96.8
    components.append(ScoreComponent(
        'Temperature', _fahrenheit_label(vitals.temperature), int(temp_met),
        '> 100.4°F or < 96.8°F', temp_met
    ))

    hr_met = (vitals.heart_rate or 0) > 90
    components.append(ScoreComponent('Heart Rate', vitals.heart_rate, int(hr_met), '> 90 bpm', hr_met))

    rr_met = (vitals.respiratory_rate or 0) > 20 or (labs.pa_co2 is not None and labs.pa_co2 < 32)
    rr_value = vitals.respiratory_rate
    if rr_value is None and labs.pa_co2 is not None:
        rr_value = f"PaCO2: {labs.pa_co2}"
    components.append(ScoreComponent(
        'Respiratory Rate/PaCO2', rr_value, int(rr_met), 'RR > 20 or PaCO2 < 32', rr_met
    ))

    wbc_met = (labs.wbc is not None and (labs.wbc > 12 or labs.wbc < 4)) or \
        (labs.band_count is not None and labs.band_count > 10)
    components.append(ScoreComponent(
        'WBC/Bands', f"{labs.wbc}K" if labs.wbc is not None else None, int(wbc_met),
        'WBC > 12K or < 4K or bands > 10%', wbc_met
    ))

    score = sum(c.points for c in components)
    if score >= 3:
        risk = RiskLevel.HIGH
    elif score == 2:
        risk = RiskLevel.MODERATE
    else:
        risk = RiskLevel.LOW

    if score >= 2:
        recommendation = 'SIRS positive: Search for infection source, consider sepsis workup'
    else:
        recommendation = 'SIRS negative: Low concern for systemic inflammatory response'

    return SepsisScore('SIRS', score, 4, risk, components, recommendation)


def _news2_respiratory_points(rr: float) -> int:
    if rr <= 8 or rr >= 25:
        return 3
    if 21 <= rr <= 24:
        return 2
    if 9 <= rr <= 11:
        return 1
    return 0


def _news2_spo2_points(spo2: float) -> int:
    # Scale 1 (no hypercapnic respiratory failure)
    if spo2 <= 91:
        return 3
    if 92 <= spo2 <= 93:
        return 2
    if 94 <= spo2 <= 95:
        return 1
    return 0


def _news2_systolic_points(sbp: float) -> int:
    if sbp <= 90 or sbp >= 220:
        return 3
    if 91 <= sbp <= 100:
        return 2
    if 101 <= sbp <= 110:
        return 1
    return 0


def _news2_heart_rate_points(hr: float) -> int:
    if hr <= 40 or hr >= 131:
        return 3
    if 41 <= hr <= 50 or 111 <= hr <= 130:
        return 2
    if 91 <= hr <= 110:
        return 1
    return 0


def _news2_temperature_points(temp_c: float) -> int:
    if temp_c <= 35.0:
        return 3
    if temp_c >= 39.1:
        return 2
    if 35.1 <= temp_c <= 36.0 or 38.1 <= temp_c <= 39.0:
        return 1
    return 0


def calculate_news2(vitals: VitalsInput) -> SepsisScore:
    """NEWS2 aggregate score; missing parameters take normal values"""
    components = []

    rr = vitals.respiratory_rate if vitals.respiratory_rate is not None else 16
    points = _news2_respiratory_points(rr)
    components.append(ScoreComponent(
        'Respiratory Rate', vitals.respiratory_rate, points,
        '≤8 or ≥25 = 3, 21-24 = 2, 9-11 = 1, 12-20 = 0', points > 0
    ))

    spo2 = vitals.oxygen_saturation if vitals.oxygen_saturation is not None else 97
    points = _news2_spo2_points(spo2)
    components.append(ScoreComponent(
        'SpO2', f"{vitals.oxygen_saturation}%" if vitals.oxygen_saturation is not None else None,
        points, '≤91 = 3, 92-93 = 2, 94-95 = 1, ≥96 = 0', points > 0
    ))

    points = 2 if vitals.supplemental_o2 else 0
    components.append(ScoreComponent(
        'Supplemental O2', 'Yes' if vitals.supplemental_o2 else 'No', points, 'On O2 = 2', points > 0
    ))

    sbp = vitals.systolic_bp if vitals.systolic_bp is not None else 120
    points = _news2_systolic_points(sbp)
    components.append(ScoreComponent(
        'Systolic BP', vitals.systolic_bp, points,
        '≤90 or ≥220 = 3, 91-100 = 2, 101-110 = 1, 111-219 = 0', points > 0
    ))

    hr = vitals.heart_rate if vitals.heart_rate is not None else 75
    points = _news2_heart_rate_points(hr)
    components.append(ScoreComponent(
        'Heart Rate', vitals.heart_rate, points,
        '≤40 or ≥131 = 3, 41-50 or 111-130 = 2, 91-110 = 1, 51-90 = 0', points > 0
    ))

    temp_f = vitals.temperature if vitals.temperature is not None else 98.6
    # NEWS2 bands are defined on Celsius to one decimal
    points = _news2_temperature_points(round((temp_f - 32) * 5 / 9, 1))
    components.append(ScoreComponent(
        'Temperature', _fahrenheit_label(vitals.temperature), points,
        '≤95°F = 3, ≥102.4°F = 2, abnormal = 1', points > 0
    ))

    points = 3 if _altered_mentation(vitals) else 0
    components.append(ScoreComponent(
        'Consciousness', vitals.mental_status or 'alert', points, 'Not alert = 3', points > 0
    ))

    score = sum(c.points for c in components)
    if score >= 7:
        risk = RiskLevel.CRITICAL
        recommendation = 'NEWS2 ≥7: Immediate clinical review, consider critical care'
    elif score >= 5:
        risk = RiskLevel.HIGH
        recommendation = 'NEWS2 5-6: Urgent response, increase monitoring frequency'
    elif score >= 1:
        risk = RiskLevel.MODERATE
        recommendation = 'NEWS2 1-4: Increase monitoring, clinical review if any concern'
    else:
        risk = RiskLevel.LOW
        recommendation = 'NEWS2 0: Minimum 12-hourly monitoring'

    return SepsisScore('NEWS2', score, 20, risk, components, recommendation)


def calculate_sepsis_risk(patient_id: str, vitals: VitalsInput, labs: LabsInput) -> SepsisRiskResult:
    """Run all three scores and take the most severe tier as the overall risk"""
    qsofa = calculate_qsofa(vitals)
    sirs = calculate_sirs(vitals, labs)
    news2 = calculate_news2(vitals)

    levels = {qsofa.risk_level, sirs.risk_level, news2.risk_level}
    overall = next(level for level in RISK_ORDER if level in levels)

    recommendations = []
    if qsofa.score >= 2:
        recommendations.append('qSOFA ≥2: High risk of poor outcomes. Consider ICU level care.')
    if sirs.score >= 2:
        recommendations.append('SIRS positive: Evaluate for infection source.')
    if news2.score >= 5:
        recommendations.append('NEWS2 elevated: Increase monitoring frequency.')
    if overall in (RiskLevel.CRITICAL, RiskLevel.HIGH):
        recommendations.append('Order blood cultures and lactate if not already done.')
        recommendations.append('Consider empiric antibiotics if infection suspected.')
    if not recommendations:
        recommendations.append('No immediate sepsis concerns. Continue standard monitoring.')

    logger.info(
        f"Sepsis risk for {patient_id}: {overall.value} "
        f"(qSOFA {qsofa.score}, SIRS {sirs.score}, NEWS2 {news2.score})"
    )

    return SepsisRiskResult(
        patient_id=patient_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
        overall_risk=overall,
        qsofa=qsofa,
        sirs=sirs,
        news2=news2,
        recommendations=recommendations,
    )
