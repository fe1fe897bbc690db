"""
CDS Context Builder
Pulls a patient's chart from the FHIR server and reshapes it into the
inputs the scoring engines expect.
"""
import asyncio
import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from emr_backend.services.fhir_client import AidboxClient
from emr_backend.services.sepsis_scoring import VitalsInput, LabsInput
from emr_backend.services.risk_models import (
    PatientRiskFactors, AmbulatoryAid, GaitTransfer, Acuity
)
from emr_backend.services.care_gaps import PatientDemographics, latest_lab_dates
from emr_backend.services.drug_interaction_service import PatientAllergy
from emr_backend.services.risk_stratification import PatientSnapshot
from emr_backend.services.quality_measures import CodedEntry, PatientMeasureData

logger = logging.getLogger(__name__)

# LOINC codes for vitals and labs used by sepsis scoring
LOINC = {
    'heart_rate': '8867-4',
    'systolic_bp': '8480-6',
    'diastolic_bp': '8462-4',
    'respiratory_rate': '9279-1',
    'temperature': '8310-5',
    'oxygen_saturation': '2708-6',
    'wbc': '6690-2',
    'lactate': '2524-7',
}

DEFAULT_AGE = 50

# Keyword patterns -> Charlson points (simplified estimate from problem list text)
CHARLSON_KEYWORDS = [
    (r'myocardial infarction|\bmi\b', 1),
    (r'heart failure|\bchf\b', 1),
    (r'peripheral vascular', 1),
    (r'cerebrovascular|stroke', 1),
    (r'dementia', 1),
    (r'copd|chronic pulmonary', 1),
    (r'diabetes', 1),
    (r'renal|kidney', 2),
    (r'liver|cirrhosis', 3),
    (r'cancer|malignancy', 2),
    (r'\baids\b|\bhiv\b', 6),
]


# ==================== FHIR shape helpers ====================

def codeable_text(concept: Optional[Dict]) -> str:
    """CodeableConcept.text, falling back to the first coding's display"""
    if not concept:
        return ''
    if concept.get('text'):
        return concept['text']
    codings = concept.get('coding') or []
    return (codings[0].get('display') or '') if codings else ''


def first_code(concept: Optional[Dict]) -> str:
    codings = (concept or {}).get('coding') or []
    return (codings[0].get('code') or '') if codings else ''


def calculate_age(birth_date: str, today: date = None) -> int:
    today = today or date.today()
    born = date_parser.isoparse(birth_date).date()
    return relativedelta(today, born).years


def length_of_stay(admit: str, now: datetime = None) -> int:
    """Whole days since admission, rounded up"""
    now = now or datetime.now(timezone.utc)
    admitted = date_parser.isoparse(admit)
    if admitted.tzinfo is None:
        admitted = admitted.replace(tzinfo=timezone.utc)
    return math.ceil(abs((now - admitted).total_seconds()) / 86400)


def extract_value(observations: List[Dict], code: str) -> Optional[float]:
    """valueQuantity of the first observation carrying the LOINC code"""
    for obs in observations:
        codings = (obs.get('code') or {}).get('coding') or []
        if any(c.get('code') == code for c in codings):
            value = (obs.get('valueQuantity') or {}).get('value')
            if value is not None:
                return value
    return None


def extract_component_value(observations: List[Dict], code: str) -> Optional[float]:
    """Same lookup for panel components (e.g. BP inside 85354-9)"""
    for obs in observations:
        for component in obs.get('component') or []:
            codings = (component.get('code') or {}).get('coding') or []
            if any(c.get('code') == code for c in codings):
                value = (component.get('valueQuantity') or {}).get('value')
                if value is not None:
                    return value
    return None


def temperature_fahrenheit(observations: List[Dict]) -> Optional[float]:
    """Body temperature in Fahrenheit; UCUM Cel readings are converted"""
    for obs in observations:
        codings = (obs.get('code') or {}).get('coding') or []
        if not any(c.get('code') == LOINC['temperature'] for c in codings):
            continue
        quantity = obs.get('valueQuantity') or {}
        value = quantity.get('value')
        if value is None:
            continue
        unit = (quantity.get('code') or quantity.get('unit') or '').lower()
        if unit in ('cel', 'c', '°c'):
            return round(value * 9 / 5 + 32, 1)
        return value
    return None


def medication_name(request: Dict) -> str:
    concept = request.get('medicationCodeableConcept')
    if concept:
        return codeable_text(concept)
    return ((request.get('medicationReference') or {}).get('display')) or ''


# ==================== Inference heuristics ====================

def estimate_charlson_score(conditions: List[str]) -> int:
    text = ' '.join(conditions).lower()
    return sum(points for pattern, points in CHARLSON_KEYWORDS if re.search(pattern, text))


def _text(conditions: List[str]) -> str:
    return ' '.join(conditions).lower()


def infer_ambulatory_aid(conditions: List[str], age: Optional[int]) -> AmbulatoryAid:
    text = _text(conditions)
    if 'hip fracture' in text or 'stroke' in text:
        return AmbulatoryAid.CANE_WALKER
    if age and age >= 70:
        return AmbulatoryAid.CANE_WALKER
    return AmbulatoryAid.NONE


def infer_gait(conditions: List[str], age: Optional[int]) -> GaitTransfer:
    text = _text(conditions)
    if 'hip fracture' in text or 'stroke' in text:
        return GaitTransfer.IMPAIRED
    if age and age >= 75:
        return GaitTransfer.WEAK
    return GaitTransfer.NORMAL


def infer_forgets_limitations(conditions: List[str]) -> bool:
    text = _text(conditions)
    return any(term in text for term in ('dementia', 'delirium', 'confusion'))


def infer_activity(conditions: List[str]) -> int:
    text = _text(conditions)
    if 'hip fracture' in text or 'post-op' in text:
        return 2  # chairfast
    return 3  # walks occasionally


def infer_mobility(conditions: List[str], age: Optional[int]) -> int:
    text = _text(conditions)
    if 'paralysis' in text or 'stroke' in text:
        return 2  # very limited
    if 'hip fracture' in text or (age and age >= 80):
        return 3  # slightly limited
    return 4


def infer_acuity(encounter: Optional[Dict]) -> Acuity:
    if not encounter:
        return Acuity.ELECTIVE
    if (encounter.get('class') or {}).get('code') == 'EMER':
        return Acuity.EMERGENT
    if first_code(encounter.get('priority')) == 'urgent':
        return Acuity.URGENT
    return Acuity.ELECTIVE


# ==================== Loaders ====================

async def load_sepsis_inputs(client: AidboxClient, patient_id: str) -> Tuple[VitalsInput, LabsInput]:
    subject = f"Patient/{patient_id}"
    vitals_obs = await client.search_resources('Observation', {
        'subject': subject, 'category': 'vital-signs', '_sort': '-date', '_count': 50
    })
    labs_obs = await client.search_resources('Observation', {
        'subject': subject, 'category': 'laboratory', '_sort': '-date', '_count': 50
    })

    def vital(key: str) -> Optional[float]:
        value = extract_value(vitals_obs, LOINC[key])
        if value is None:
            value = extract_component_value(vitals_obs, LOINC[key])
        return value

    vitals = VitalsInput(
        heart_rate=vital('heart_rate'),
        systolic_bp=vital('systolic_bp'),
        diastolic_bp=vital('diastolic_bp'),
        respiratory_rate=vital('respiratory_rate'),
        temperature=temperature_fahrenheit(vitals_obs),
        oxygen_saturation=vital('oxygen_saturation'),
        # No GCS feed; assume alert
        mental_status='alert',
    )
    labs = LabsInput(
        wbc=extract_value(labs_obs, LOINC['wbc']),
        lactate=extract_value(labs_obs, LOINC['lactate']),
    )
    return vitals, labs


async def load_risk_factors(client: AidboxClient, patient_id: str, now: datetime = None) -> PatientRiskFactors:
    now = now or datetime.now(timezone.utc)
    subject = f"Patient/{patient_id}"

    patient = await client.read('Patient', patient_id)
    age = calculate_age(patient['birthDate'], now.date()) if patient.get('birthDate') else None

    current = await client.search_resources('Encounter', {
        'subject': subject, 'status': 'in-progress', '_sort': '-date', '_count': 1
    })
    encounter = current[0] if current else None
    admit = ((encounter or {}).get('period') or {}).get('start')
    los = length_of_stay(admit, now) if admit else 0

    condition_resources = await client.search_resources('Condition', {
        'subject': subject, 'clinical-status': 'active', '_count': 50
    })
    conditions = [t for t in (codeable_text(c.get('code')) for c in condition_resources) if t]

    emergency = await client.search_resources('Encounter', {'subject': subject, 'class': 'EMER', '_count': 10})
    six_months_ago = now - relativedelta(months=6)
    ed_visits = 0
    for enc in emergency:
        start = (enc.get('period') or {}).get('start')
        if not start:
            continue
        started = date_parser.isoparse(start)
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        if started >= six_months_ago:
            ed_visits += 1

    lowered = _text(conditions)
    return PatientRiskFactors(
        age=age,
        chronic_conditions=conditions,
        length_of_stay=los,
        acuity=infer_acuity(encounter),
        charlson_score=estimate_charlson_score(conditions),
        ed_visits_6_months=ed_visits,
        history_of_falling='fall' in lowered or 'fracture' in lowered,
        secondary_diagnosis=len(conditions) >= 2,
        ambulatory_aid=infer_ambulatory_aid(conditions, age),
        iv_saline_lock=True,  # inpatients are assumed to have IV access
        gait_transfer=infer_gait(conditions, age),
        forgets_limitations=infer_forgets_limitations(conditions),
        sensory_perception=3,
        moisture=3,
        activity=infer_activity(conditions),
        mobility=infer_mobility(conditions, age),
        nutrition=3,
        friction_shear=2,
    )


async def load_care_gap_demographics(client: AidboxClient, patient_id: str) -> PatientDemographics:
    subject = f"Patient/{patient_id}"
    patient = await client.read('Patient', patient_id)

    conditions = await client.search_resources('Condition', {'subject': subject, '_count': 100})
    procedures = await client.search_resources('Procedure', {'subject': subject, '_count': 100})
    immunizations = await client.search_resources('Immunization', {'patient': subject, '_count': 100})
    labs = await client.search_resources('Observation', {
        'subject': subject, 'category': 'laboratory', '_sort': '-date', '_count': 100
    })

    lab_dates = latest_lab_dates([
        {'name': codeable_text(lab.get('code')), 'date': lab.get('effectiveDateTime')}
        for lab in labs
    ])

    return PatientDemographics(
        age=calculate_age(patient['birthDate']) if patient.get('birthDate') else DEFAULT_AGE,
        gender='female' if patient.get('gender') == 'female' else 'male',
        conditions=[t for t in (codeable_text(c.get('code')) for c in conditions) if t],
        procedures=[t for t in (codeable_text(p.get('code')) for p in procedures) if t],
        immunizations=[t for t in (codeable_text(i.get('vaccineCode')) for i in immunizations) if t],
        last_lab_dates=lab_dates,
    )


async def load_medications_and_allergies(
    client: AidboxClient, patient_id: str
) -> Tuple[List[str], List[PatientAllergy]]:
    subject = f"Patient/{patient_id}"
    requests = await client.search_resources('MedicationRequest', {
        'subject': subject, 'status': 'active', '_count': 100
    })
    medications = [name for name in (medication_name(r) for r in requests) if name]

    intolerances = await client.search_resources('AllergyIntolerance', {'patient': subject, '_count': 50})
    allergies = [
        PatientAllergy(
            allergen=codeable_text(a.get('code')) or 'Unknown',
            severity=a.get('criticality') or 'unknown',
        )
        for a in intolerances
    ]
    return medications, allergies


async def load_patient_snapshot(client: AidboxClient, patient: Dict) -> PatientSnapshot:
    patient_id = patient['id']
    subject = f"Patient/{patient_id}"
    conditions = await client.search_resources('Condition', {'subject': subject, '_count': 100})
    medications = await client.search_resources('MedicationRequest', {
        'subject': subject, 'status': 'active', '_count': 100
    })

    return PatientSnapshot(
        patient_id=patient_id,
        patient_name=display_name(patient),
        age=calculate_age(patient['birthDate']) if patient.get('birthDate') else DEFAULT_AGE,
        gender=patient.get('gender') or 'unknown',
        conditions=[t for t in (codeable_text(c.get('code')) for c in conditions) if t],
        medications=[first_code(m.get('medicationCodeableConcept')) or medication_name(m) for m in medications],
    )


def display_name(patient: Dict) -> Optional[str]:
    names = patient.get('name') or []
    if not names:
        return None
    name = names[0]
    if name.get('text'):
        return name['text']
    parts = list(name.get('given') or []) + ([name['family']] if name.get('family') else [])
    return ' '.join(parts) or None


def _components(observation: Dict) -> Dict[str, float]:
    values = {}
    for component in observation.get('component') or []:
        value = (component.get('valueQuantity') or {}).get('value')
        code = first_code(component.get('code'))
        if code and value is not None:
            values[code] = value
    return values


async def load_measure_data(client: AidboxClient, patient: Dict) -> PatientMeasureData:
    """Conditions, observations, procedures, active medications and immunizations for quality measures"""
    patient_id = patient['id']
    subject = f"Patient/{patient_id}"
    conditions, observations, procedures, medications, immunizations = await asyncio.gather(
        client.search_resources('Condition', {'subject': subject, '_count': 100}),
        client.search_resources('Observation', {'subject': subject, '_count': 100}),
        client.search_resources('Procedure', {'subject': subject, '_count': 100}),
        client.search_resources('MedicationRequest', {'subject': subject, 'status': 'active', '_count': 100}),
        client.search_resources('Immunization', {'patient': subject, '_count': 100}),
    )

    return PatientMeasureData(
        patient_id=patient_id,
        patient_name=display_name(patient),
        age=calculate_age(patient['birthDate']) if patient.get('birthDate') else DEFAULT_AGE,
        gender=patient.get('gender') or 'unknown',
        conditions=[
            CodedEntry(code=first_code(c.get('code')), display=codeable_text(c.get('code')))
            for c in conditions
        ],
        observations=[
            CodedEntry(
                code=first_code(o.get('code')),
                value=(o.get('valueQuantity') or {}).get('value'),
                date=o.get('effectiveDateTime') or '',
                components=_components(o),
            )
            for o in observations
        ],
        procedures=[
            CodedEntry(
                code=first_code(p.get('code')),
                date=p.get('performedDateTime') or (p.get('performedPeriod') or {}).get('start') or '',
            )
            for p in procedures
        ],
        medications=[
            CodedEntry(
                code=first_code(m.get('medicationCodeableConcept')),
                display=medication_name(m),
                status=m.get('status') or 'unknown',
            )
            for m in medications
        ],
        immunizations=[
            CodedEntry(code=first_code(i.get('vaccineCode')), date=i.get('occurrenceDateTime') or '')
            for i in immunizations
        ],
    )
