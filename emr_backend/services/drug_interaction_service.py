"""
Drug Interaction Service - Drug-drug and drug-allergy safety checks
"""
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class InteractionSeverity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CONTRAINDICATED = "contraindicated"


# Sort order for display, most severe first
SEVERITY_RANK = {
    InteractionSeverity.CONTRAINDICATED: 0,
    InteractionSeverity.MAJOR: 1,
    InteractionSeverity.MODERATE: 2,
    InteractionSeverity.MINOR: 3,
}


class AllergyAlertSeverity(Enum):
    WARNING = "warning"
    DANGER = "danger"


@dataclass
class DrugInteraction:
    """Drug interaction details"""
    drug1: str
    drug2: str
    severity: InteractionSeverity
    description: str
    clinical_effect: str
    recommendation: str

    def to_dict(self) -> Dict:
        return {
            'drug1': self.drug1,
            'drug2': self.drug2,
            'severity': self.severity.value,
            'description': self.description,
            'clinicalEffect': self.clinical_effect,
            'recommendation': self.recommendation,
        }


@dataclass
class AllergyAlert:
    """Allergy-based risk"""
    drug: str
    allergen: str
    cross_reactivity: bool
    severity: AllergyAlertSeverity
    description: str
    recommendation: str

    def to_dict(self) -> Dict:
        return {
            'drug': self.drug,
            'allergen': self.allergen,
            'crossReactivity': self.cross_reactivity,
            'severity': self.severity.value,
            'description': self.description,
            'recommendation': self.recommendation,
        }


@dataclass
class PatientAllergy:
    allergen: str
    severity: str = "unknown"


@dataclass
class InteractionCheckResult:
    drug_interactions: List[DrugInteraction]
    allergy_alerts: List[AllergyAlert]
    timestamp: str

    @property
    def has_severe_interactions(self) -> bool:
        return any(
            i.severity in (InteractionSeverity.MAJOR, InteractionSeverity.CONTRAINDICATED)
            for i in self.drug_interactions
        )

    def to_dict(self) -> Dict:
        return {
            'hasInteractions': bool(self.drug_interactions),
            'hasSevereInteractions': self.has_severe_interactions,
            'hasAllergyAlerts': bool(self.allergy_alerts),
            'drugInteractions': [i.to_dict() for i in self.drug_interactions],
            'allergyAlerts': [a.to_dict() for a in self.allergy_alerts],
            'timestamp': self.timestamp,
        }


def normalize_drug_name(name: str) -> str:
    return ' '.join(name.lower().split())


def drugs_match(name1: str, name2: str) -> bool:
    """Partial match in either direction, e.g. 'warfarin sodium' ~ 'warfarin'"""
    n1 = normalize_drug_name(name1)
    n2 = normalize_drug_name(name2)
    if not n1 or not n2:
        return False
    return n1 in n2 or n2 in n1


class DrugInteractionService:
    """
    Drug safety checks over a medication list

    Features:
    - Drug-drug interaction detection
    - Direct allergy matches
    - Allergy cross-reactivity (e.g. penicillin -> amoxicillin)
    - Severity ranking
    """

    def __init__(self):
        self.interactions_db = self._load_interactions_database()
        self.cross_reactivity = self._load_cross_reactivity()

    def _load_interactions_database(self) -> Dict[Tuple[str, str], Dict]:
        """Load drug-drug interactions database"""
        # Simplified table; production systems would call RxNav or a licensed source
        return {
            ('warfarin', 'aspirin'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Increased risk of bleeding',
                'clinical_effect': 'Combined use significantly increases the risk of gastrointestinal and other bleeding.',
                'recommendation': 'Monitor closely for signs of bleeding. Consider alternative antiplatelet if possible.',
            },
            ('warfarin', 'ibuprofen'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Increased anticoagulant effect and bleeding risk',
                'clinical_effect': 'NSAIDs can increase INR and risk of GI bleeding.',
                'recommendation': 'Avoid combination. Use acetaminophen for pain if possible.',
            },
            ('lisinopril', 'potassium'): {
                'severity': InteractionSeverity.MODERATE,
                'description': 'Risk of hyperkalemia',
                'clinical_effect': 'ACE inhibitors reduce potassium excretion; supplementation may cause dangerous levels.',
                'recommendation': 'Monitor potassium levels closely. Avoid potassium supplements unless hypokalemic.',
            },
            ('lisinopril', 'spironolactone'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Severe hyperkalemia risk',
                'clinical_effect': 'Both drugs increase potassium levels; combination greatly increases hyperkalemia risk.',
                'recommendation': 'If combination necessary, monitor potassium frequently.',
            },
            ('metformin', 'contrast dye'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Risk of lactic acidosis',
                'clinical_effect': 'IV contrast can cause acute kidney injury, impairing metformin clearance.',
                'recommendation': 'Hold metformin 48 hours before and after contrast administration.',
            },
            ('simvastatin', 'amiodarone'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Increased risk of myopathy/rhabdomyolysis',
                'clinical_effect': 'Amiodarone inhibits statin metabolism, increasing toxicity risk.',
                'recommendation': 'Limit simvastatin to 20mg daily or switch to pravastatin.',
            },
            ('clopidogrel', 'omeprazole'): {
                'severity': InteractionSeverity.MODERATE,
                'description': 'Reduced antiplatelet effect',
                'clinical_effect': 'Omeprazole inhibits CYP2C19, reducing clopidogrel activation.',
                'recommendation': 'Use pantoprazole instead if PPI needed.',
            },
            ('fluoxetine', 'tramadol'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Serotonin syndrome risk',
                'clinical_effect': 'Combined serotonergic activity can cause dangerous syndrome.',
                'recommendation': 'Avoid combination. Consider alternative analgesic.',
            },
            ('ciprofloxacin', 'tizanidine'): {
                'severity': InteractionSeverity.CONTRAINDICATED,
                'description': 'Severe hypotension and sedation',
                'clinical_effect': 'Ciprofloxacin dramatically increases tizanidine levels.',
                'recommendation': 'Contraindicated. Do not use together.',
            },
            ('methotrexate', 'trimethoprim'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Severe bone marrow suppression',
                'clinical_effect': 'Both are folate antagonists; combined effect on bone marrow.',
                'recommendation': 'Avoid combination. Use alternative antibiotic.',
            },
            ('digoxin', 'amiodarone'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Digoxin toxicity',
                'clinical_effect': 'Amiodarone increases digoxin levels by 70-100%.',
                'recommendation': 'Reduce digoxin dose by 50% when starting amiodarone.',
            },
            ('lithium', 'ibuprofen'): {
                'severity': InteractionSeverity.MAJOR,
                'description': 'Lithium toxicity',
                'clinical_effect': 'NSAIDs reduce lithium clearance, increasing levels.',
                'recommendation': 'Monitor lithium levels. Use acetaminophen instead.',
            },
        }

    def _load_cross_reactivity(self) -> Dict[str, Dict]:
        """Allergen -> drugs that may cross-react"""
        return {
            'penicillin': {
                'drugs': ['amoxicillin', 'ampicillin', 'piperacillin', 'cephalosporins'],
                'description': 'Beta-lactam antibiotics share similar structure',
            },
            'sulfa': {
                'drugs': ['sulfamethoxazole', 'sulfasalazine', 'furosemide', 'thiazides'],
                'description': 'Sulfonamide-containing medications may cross-react',
            },
            'aspirin': {
                'drugs': ['ibuprofen', 'naproxen', 'ketorolac', 'nsaids'],
                'description': 'Cross-sensitivity among NSAIDs is common',
            },
            'codeine': {
                'drugs': ['morphine', 'hydrocodone', 'oxycodone', 'tramadol'],
                'description': 'Opioid cross-reactivity possible',
            },
            'latex': {
                'drugs': ['banana', 'avocado', 'kiwi', 'chestnut'],
                'description': 'Latex-fruit syndrome cross-reactivity',
            },
        }

    def check_drug_drug_interactions(self, medications: List[str]) -> List[DrugInteraction]:
        """Pairwise check; each medication pair is reported once per matching rule"""
        interactions = []
        meds = [m for m in medications if normalize_drug_name(m)]

        for i in range(len(meds)):
            for j in range(i + 1, len(meds)):
                med1, med2 = meds[i], meds[j]
                if normalize_drug_name(med1) == normalize_drug_name(med2):
                    continue

                for (drug_a, drug_b), info in self.interactions_db.items():
                    forward = drugs_match(med1, drug_a) and drugs_match(med2, drug_b)
                    reverse = drugs_match(med1, drug_b) and drugs_match(med2, drug_a)
                    if forward or reverse:
                        interactions.append(DrugInteraction(drug1=med1, drug2=med2, **info))

        interactions.sort(key=lambda x: SEVERITY_RANK[x.severity])
        return interactions

    def check_drug_allergy_interactions(
        self,
        medications: List[str],
        allergies: List[PatientAllergy]
    ) -> List[AllergyAlert]:
        alerts = []

        for med in medications:
            for allergy in allergies:
                if drugs_match(med, allergy.allergen):
                    alerts.append(AllergyAlert(
                        drug=med,
                        allergen=allergy.allergen,
                        cross_reactivity=False,
                        severity=AllergyAlertSeverity.DANGER,
                        description=f"Patient has documented allergy to {allergy.allergen}",
                        recommendation='Do not administer. Select alternative medication.',
                    ))
                    continue

                alert = self._check_cross_reactivity(med, allergy)
                if alert:
                    alerts.append(alert)

        return alerts

    def _check_cross_reactivity(self, medication: str, allergy: PatientAllergy) -> Optional[AllergyAlert]:
        for allergen, info in self.cross_reactivity.items():
            if not drugs_match(allergy.allergen, allergen):
                continue
            if any(drugs_match(medication, reactive) for reactive in info['drugs']):
                return AllergyAlert(
                    drug=medication,
                    allergen=allergy.allergen,
                    cross_reactivity=True,
                    severity=AllergyAlertSeverity.WARNING,
                    description=f"Potential cross-reactivity: {info['description']}",
                    recommendation='Use with caution. Monitor for allergic reaction.',
                )
        return None

    def check_all_interactions(
        self,
        medications: List[str],
        allergies: List[PatientAllergy]
    ) -> InteractionCheckResult:
        """Comprehensive interaction check"""
        result = InteractionCheckResult(
            drug_interactions=self.check_drug_drug_interactions(medications),
            allergy_alerts=self.check_drug_allergy_interactions(medications, allergies),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        if result.drug_interactions or result.allergy_alerts:
            logger.info(
                f"Safety check: {len(result.drug_interactions)} interactions, "
                f"{len(result.allergy_alerts)} allergy alerts across {len(medications)} medications"
            )
        return result


drug_interaction_service = DrugInteractionService()
