"""
Population Risk Stratification - sorts patients into care-management cohorts
"""
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class PopulationRiskLevel(str, Enum):
    LOW = "low"
    RISING = "rising"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


LEVEL_ORDER = ['critical', 'high', 'moderate', 'rising', 'low']

# Keyword -> (weight, severity)
RISK_FACTORS = {
    # Chronic conditions
    'diabetes': (15, 'high'),
    'heart failure': (20, 'high'),
    'ckd': (18, 'high'),
    'copd': (15, 'high'),
    'hypertension': (10, 'medium'),
    'cancer': (20, 'high'),
    # Social determinants
    'homeless': (25, 'high'),
    'food insecurity': (15, 'medium'),
    'transportation barrier': (10, 'medium'),
    # Utilization
    'ed visit 30d': (15, 'high'),
    'hospitalization 30d': (25, 'high'),
    'readmission': (30, 'high'),
}

CHRONIC_TERMS = ['diabetes', 'heart', 'kidney', 'copd', 'hypertension', 'cancer']

COHORT_DEFINITIONS = {
    'risk-critical': {
        'name': 'Critical Risk',
        'description': 'Patients requiring immediate intervention',
        'riskLevel': 'critical',
        'criteria': ['Risk score ≥ 80', 'Multiple high-severity factors'],
        'interventions': ['Care management enrollment', 'Team huddle', 'Palliative consult'],
        'color': '#dc2626',
    },
    'risk-high': {
        'name': 'High Risk',
        'description': 'Patients with significant health risks',
        'riskLevel': 'high',
        'criteria': ['Risk score 50-79', 'Major chronic conditions'],
        'interventions': ['Disease management', 'Weekly check-ins', 'Medication review'],
        'color': '#f97316',
    },
    'risk-moderate': {
        'name': 'Moderate Risk',
        'description': 'Patients needing proactive management',
        'riskLevel': 'moderate',
        'criteria': ['Risk score 30-49', 'Developing health concerns'],
        'interventions': ['Monthly outreach', 'Care gap closure', 'Education'],
        'color': '#eab308',
    },
    'risk-rising': {
        'name': 'Rising Risk',
        'description': 'Patients trending toward higher risk',
        'riskLevel': 'rising',
        'criteria': ['Risk score 15-29', 'Early risk indicators'],
        'interventions': ['Quarterly check-ins', 'Lifestyle coaching'],
        'color': '#22c55e',
    },
    'risk-low': {
        'name': 'Low Risk',
        'description': 'Generally healthy patients',
        'riskLevel': 'low',
        'criteria': ['Risk score < 15', 'Minimal health concerns'],
        'interventions': ['Annual wellness visit', 'Preventive screenings'],
        'color': '#3b82f6',
    },
}

LEVEL_RECOMMENDATIONS = {
    PopulationRiskLevel.CRITICAL: [
        'Assign to care management program',
        'Schedule urgent care team review',
        'Consider palliative care consult',
    ],
    PopulationRiskLevel.HIGH: [
        'Enroll in disease management program',
        'Schedule follow-up within 7 days',
        'Review medication regimen',
    ],
    PopulationRiskLevel.MODERATE: [
        'Schedule follow-up within 30 days',
        'Ensure care gaps are addressed',
    ],
    PopulationRiskLevel.RISING: [
        'Monitor for progression',
        'Address modifiable risk factors',
    ],
    PopulationRiskLevel.LOW: ['Continue preventive care'],
}


@dataclass
class PatientSnapshot:
    """What stratification needs to know about one patient"""
    patient_id: str
    age: int
    gender: str = "unknown"
    conditions: List[str] = field(default_factory=list)   # display text
    medications: List[str] = field(default_factory=list)  # codes or names
    patient_name: Optional[str] = None


@dataclass
class RiskFactor:
    factor: str
    severity: str
    weight: int
    value: Optional[str] = None


@dataclass
class PatientRisk:
    patient_id: str
    overall_risk: PopulationRiskLevel
    risk_score: int
    risk_factors: List[RiskFactor]
    cohorts: List[str]
    recommendations: List[str]
    patient_name: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'patientId': self.patient_id,
            'patientName': self.patient_name,
            'overallRisk': self.overall_risk.value,
            'riskScore': self.risk_score,
            'riskFactors': [asdict(f) for f in self.risk_factors],
            'cohorts': self.cohorts,
            'recommendations': self.recommendations,
        }


def get_risk_level(score: int) -> PopulationRiskLevel:
    if score >= 80:
        return PopulationRiskLevel.CRITICAL
    if score >= 50:
        return PopulationRiskLevel.HIGH
    if score >= 30:
        return PopulationRiskLevel.MODERATE
    if score >= 15:
        return PopulationRiskLevel.RISING
    return PopulationRiskLevel.LOW


def _determine_cohorts(patient: PatientSnapshot, factors: List[RiskFactor]) -> List[str]:
    names = [c.lower() for c in patient.conditions]
    cohorts = []

    if any('diabetes' in c for c in names):
        cohorts.append('diabetes-management')
    if any('heart failure' in c or 'chf' in c for c in names):
        cohorts.append('heart-failure-management')
    if any('kidney' in c or 'ckd' in c or 'renal' in c for c in names):
        cohorts.append('ckd-management')
    if any('hospitalization' in f.factor.lower() or 'readmission' in f.factor.lower() for f in factors):
        cohorts.append('high-utilizer')

    chronic = [c for c in names if any(term in c for term in CHRONIC_TERMS)]
    if len(chronic) >= 3:
        cohorts.append('complex-care')

    if 2 <= len(factors) < 5:
        cohorts.append('rising-risk')

    return cohorts


def _recommendations(level: PopulationRiskLevel, factors: List[RiskFactor]) -> List[str]:
    recommendations = list(LEVEL_RECOMMENDATIONS[level])
    for f in factors:
        if 'diabetes' in f.factor.lower():
            recommendations.append('Ensure HbA1c monitoring every 3 months')
        if 'polypharmacy' in f.factor.lower():
            recommendations.append('Conduct medication reconciliation')
    # Deduplicate, keeping first occurrence
    return list(dict.fromkeys(recommendations))


def calculate_patient_risk(patient: PatientSnapshot) -> PatientRisk:
    factors = []

    for condition in patient.conditions:
        lowered = condition.lower()
        for keyword, (weight, severity) in RISK_FACTORS.items():
            if keyword in lowered:
                factors.append(RiskFactor(factor=condition, severity=severity, weight=weight))

    if patient.age >= 75:
        factors.append(RiskFactor('Age 75 or older', 'medium', 10, str(patient.age)))

    if len(patient.medications) >= 5:
        factors.append(RiskFactor('Polypharmacy', 'medium', 12, f"{len(patient.medications)} medications"))

    score = sum(f.weight for f in factors)
    level = get_risk_level(score)

    return PatientRisk(
        patient_id=patient.patient_id,
        patient_name=patient.patient_name,
        overall_risk=level,
        risk_score=score,
        risk_factors=factors,
        cohorts=_determine_cohorts(patient, factors),
        recommendations=_recommendations(level, factors),
    )


def stratify_population(patients: List[PatientSnapshot]) -> List[Dict]:
    """Group patients by risk level; only non-empty cohorts are returned"""
    members: Dict[str, List[str]] = {}
    for patient in patients:
        risk = calculate_patient_risk(patient)
        members.setdefault(f"risk-{risk.overall_risk.value}", []).append(risk.patient_id)

    cohorts = []
    for cohort_id, patient_ids in members.items():
        cohorts.append({
            'id': cohort_id,
            **COHORT_DEFINITIONS[cohort_id],
            'patientCount': len(patient_ids),
            'patients': patient_ids,
        })

    cohorts.sort(key=lambda c: LEVEL_ORDER.index(c['riskLevel']))
    logger.info(f"Stratified {len(patients)} patients into {len(cohorts)} cohorts")
    return cohorts


def summarize_cohorts(cohorts: List[Dict], total_patients: int) -> Dict:
    high_risk = sum(c['patientCount'] for c in cohorts if c['riskLevel'] in ('high', 'critical'))
    return {
        'totalPatients': total_patients,
        'highRiskCount': high_risk,
        'highRiskPercentage': round(high_risk / total_patients * 100) if total_patients else 0,
    }
