"""
HEDIS Quality Measures - population performance against value-based care targets
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

HBA1C_CODES = ['4548-4', '17856-6']
BP_PANEL_CODE = '85354-9'
SYSTOLIC_CODE = '8480-6'
DIASTOLIC_CODE = '8462-4'

CATEGORIES = ['prevention', 'chronic', 'behavioral', 'utilization']


class MeasureCategory(str, Enum):
    PREVENTION = "prevention"
    CHRONIC = "chronic"
    BEHAVIORAL = "behavioral"
    UTILIZATION = "utilization"


class MeasureType(str, Enum):
    PROCESS = "process"
    OUTCOME = "outcome"
    INTERMEDIATE_OUTCOME = "intermediate-outcome"


@dataclass
class CodedEntry:
    code: str = ''
    display: str = ''
    date: str = ''
    value: Optional[float] = None
    status: str = ''
    components: Dict[str, float] = field(default_factory=dict)


@dataclass
class PatientMeasureData:
    """One patient's chart, flattened to what the measures read"""
    patient_id: str
    age: int
    gender: str = "unknown"
    conditions: List[CodedEntry] = field(default_factory=list)
    observations: List[CodedEntry] = field(default_factory=list)
    procedures: List[CodedEntry] = field(default_factory=list)
    medications: List[CodedEntry] = field(default_factory=list)
    immunizations: List[CodedEntry] = field(default_factory=list)
    patient_name: Optional[str] = None


@dataclass
class Population:
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    gender: Optional[str] = None
    conditions: List[str] = field(default_factory=list)


@dataclass
class CodeCheck:
    resource_type: str  # Observation | Procedure | Immunization | MedicationRequest
    codes: List[str]
    lookback_days: int = 365


@dataclass
class QualityMeasure:
    id: str
    name: str
    description: str
    category: MeasureCategory
    type: MeasureType
    population: Population
    target: int
    code_check: Optional[CodeCheck] = None
    custom_check: Optional[Callable[[PatientMeasureData], bool]] = None
    exclusions: List[Callable[[PatientMeasureData], bool]] = field(default_factory=list)


@dataclass
class MeasureResult:
    measure_id: str
    measure_name: str
    numerator: int
    denominator: int
    rate: int
    target: int
    met: List[str] = field(default_factory=list)
    not_met: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)

    @property
    def gap(self) -> int:
        return self.denominator - self.numerator

    def to_dict(self) -> Dict:
        return {
            'measureId': self.measure_id,
            'measureName': self.measure_name,
            'numerator': self.numerator,
            'denominator': self.denominator,
            'rate': self.rate,
            'target': self.target,
            'gap': self.gap,
            'patients': {'met': self.met, 'notMet': self.not_met, 'excluded': self.excluded},
        }


def _cutoff(lookback_days: int, today: date = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return (today - timedelta(days=lookback_days)).isoformat()


def _latest(entries: List[CodedEntry], codes: List[str], lookback_days: int) -> Optional[CodedEntry]:
    cutoff = _cutoff(lookback_days)
    recent = [e for e in entries if e.code in codes and e.date and e.date[:10] >= cutoff]
    return max(recent, key=lambda e: e.date) if recent else None


def hba1c_controlled(patient: PatientMeasureData) -> bool:
    """Most recent HbA1c of the past year is below 8%"""
    latest = _latest([o for o in patient.observations if o.value is not None], HBA1C_CODES, 365)
    return latest is not None and latest.value < 8


def blood_pressure_controlled(patient: PatientMeasureData) -> bool:
    """Most recent BP panel of the past year is below 140/90"""
    latest = _latest(patient.observations, [BP_PANEL_CODE], 365)
    if latest is None:
        return False
    systolic = latest.components.get(SYSTOLIC_CODE)
    diastolic = latest.components.get(DIASTOLIC_CODE)
    return systolic is not None and diastolic is not None and systolic < 140 and diastolic < 90


HEDIS_MEASURES = [
    QualityMeasure(
        id='cdc-hba1c',
        name='Diabetes: HbA1c Control (<8%)',
        description='Percentage of diabetic patients with HbA1c < 8%',
        category=MeasureCategory.CHRONIC,
        type=MeasureType.INTERMEDIATE_OUTCOME,
        population=Population(
            age_min=18, age_max=75,
            conditions=['Diabetes', 'Type 2 Diabetes', 'Type 1 Diabetes', 'E11', 'E10'],
        ),
        custom_check=hba1c_controlled,
        target=70,
    ),
    QualityMeasure(
        id='cbp',
        name='Blood Pressure Control (<140/90)',
        description='Percentage of hypertensive patients with controlled BP',
        category=MeasureCategory.CHRONIC,
        type=MeasureType.INTERMEDIATE_OUTCOME,
        population=Population(age_min=18, age_max=85, conditions=['Hypertension', 'Essential Hypertension', 'I10']),
        custom_check=blood_pressure_controlled,
        target=65,
    ),
    QualityMeasure(
        id='col',
        name='Colorectal Cancer Screening',
        description='Adults 45-75 with appropriate colorectal cancer screening',
        category=MeasureCategory.PREVENTION,
        type=MeasureType.PROCESS,
        population=Population(age_min=45, age_max=75),
        code_check=CodeCheck('Procedure', ['73761001', '310634005'], lookback_days=3650),
        target=70,
    ),
    QualityMeasure(
        id='bcs',
        name='Breast Cancer Screening',
        description='Women 50-74 with a mammogram in the past two years',
        category=MeasureCategory.PREVENTION,
        type=MeasureType.PROCESS,
        population=Population(age_min=50, age_max=74, gender='female'),
        code_check=CodeCheck('Procedure', ['241055006', '24623002'], lookback_days=730),
        target=75,
    ),
    QualityMeasure(
        id='ccs',
        name='Cervical Cancer Screening',
        description='Women 21-64 screened for cervical cancer in the past three years',
        category=MeasureCategory.PREVENTION,
        type=MeasureType.PROCESS,
        population=Population(age_min=21, age_max=64, gender='female'),
        code_check=CodeCheck('Procedure', ['171149006'], lookback_days=1095),
        target=80,
    ),
    QualityMeasure(
        id='fvo',
        name='Flu Vaccination (65+)',
        description='Adults 65 and older vaccinated against influenza this season',
        category=MeasureCategory.PREVENTION,
        type=MeasureType.PROCESS,
        population=Population(age_min=65),
        code_check=CodeCheck('Immunization', ['140', '141', '150', '155'], lookback_days=365),
        target=80,
    ),
    QualityMeasure(
        id='spc',
        name='Statin Therapy for Cardiovascular Disease',
        description='CVD patients on statin therapy',
        category=MeasureCategory.CHRONIC,
        type=MeasureType.PROCESS,
        population=Population(
            age_min=21, age_max=75,
            conditions=['Cardiovascular Disease', 'Coronary Artery Disease', 'Atherosclerosis', 'I25'],
        ),
        code_check=CodeCheck('MedicationRequest', ['statins']),
        target=80,
    ),
]

MEASURES_BY_ID = {m.id: m for m in HEDIS_MEASURES}

RECOMMENDATIONS = {
    'cdc-hba1c': 'Order HbA1c test and review diabetes management plan',
    'cbp': 'Schedule blood pressure check and review medication adherence',
    'col': 'Schedule colonoscopy or order FIT test',
    'bcs': 'Order mammogram screening',
    'ccs': 'Schedule Pap smear or HPV test',
    'fvo': 'Administer influenza vaccine',
    'spc': 'Initiate statin therapy per guidelines',
}

# Generic names so 'statins' matches prescriptions written by drug name
STATIN_NAMES = ['statin', 'atorvastatin', 'rosuvastatin', 'simvastatin', 'pravastatin', 'lovastatin']


def is_in_population(patient: PatientMeasureData, population: Population) -> bool:
    if population.age_min is not None and patient.age < population.age_min:
        return False
    if population.age_max is not None and patient.age > population.age_max:
        return False
    if population.gender and patient.gender != population.gender:
        return False
    if population.conditions:
        return any(
            term in c.code or term.lower() in c.display.lower()
            for c in patient.conditions
            for term in population.conditions
        )
    return True


def _is_statin(entry: CodedEntry) -> bool:
    text = f"{entry.code} {entry.display}".lower()
    return any(name in text for name in STATIN_NAMES)


def meets_numerator(patient: PatientMeasureData, measure: QualityMeasure) -> bool:
    if measure.custom_check:
        return measure.custom_check(patient)

    check = measure.code_check
    if check is None:
        return False

    if check.resource_type == 'MedicationRequest':
        active = [m for m in patient.medications if m.status == 'active']
        if 'statins' in check.codes:
            return any(m.code in check.codes or _is_statin(m) for m in active)
        return any(m.code in check.codes for m in active)

    entries = {
        'Observation': patient.observations,
        'Procedure': patient.procedures,
        'Immunization': patient.immunizations,
    }.get(check.resource_type, [])
    return _latest(entries, check.codes, check.lookback_days) is not None


def calculate_measure(measure: QualityMeasure, patients: List[PatientMeasureData]) -> MeasureResult:
    in_population, met, not_met, excluded = [], [], [], []

    for patient in patients:
        if not is_in_population(patient, measure.population):
            continue
        in_population.append(patient.patient_id)

        if any(exclusion(patient) for exclusion in measure.exclusions):
            excluded.append(patient.patient_id)
        elif meets_numerator(patient, measure):
            met.append(patient.patient_id)
        else:
            not_met.append(patient.patient_id)

    denominator = len(in_population) - len(excluded)
    numerator = len(met)
    return MeasureResult(
        measure_id=measure.id,
        measure_name=measure.name,
        numerator=numerator,
        denominator=denominator,
        rate=round(numerator / denominator * 100) if denominator > 0 else 0,
        target=measure.target,
        met=met,
        not_met=not_met,
        excluded=excluded,
    )


def calculate_all_measures(patients: List[PatientMeasureData], measure_ids: List[str] = None) -> Dict:
    """
    Score the population on every measure (or the requested subset).

    overallPerformance averages each measure's rate as a share of its target,
    capped at 100%, over measures that have anyone in their denominator.
    """
    measures = [m for m in HEDIS_MEASURES if m.id in measure_ids] if measure_ids else HEDIS_MEASURES
    results = [(m, calculate_measure(m, patients)) for m in measures]

    achieved = [min(r.rate / r.target, 1) for _, r in results if r.denominator > 0]
    overall = round(sum(achieved) / len(achieved) * 100) if achieved else 0

    category_performance = {}
    for category in CATEGORIES:
        in_category = [r for m, r in results if m.category.value == category]
        if not in_category:
            continue
        rates = [r.rate for r in in_category if r.denominator > 0]
        category_performance[category] = round(sum(rates) / len(rates)) if rates else 0

    logger.info(f"Calculated {len(results)} quality measures over {len(patients)} patients")
    return {
        'totalPatients': len(patients),
        'measuresCalculated': len(results),
        'measureResults': [r.to_dict() for _, r in results],
        'overallPerformance': overall,
        'categoryPerformance': category_performance,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


def _priority(measure: QualityMeasure) -> str:
    if measure.category == MeasureCategory.PREVENTION and measure.type == MeasureType.PROCESS:
        return 'high'
    if measure.category == MeasureCategory.CHRONIC and measure.type == MeasureType.INTERMEDIATE_OUTCOME:
        return 'high'
    return 'medium'


def get_patient_gaps(patient: PatientMeasureData) -> List[Dict]:
    """Open measures for one patient: in the population but not in the numerator"""
    return [
        {
            'patientId': patient.patient_id,
            'patientName': patient.patient_name,
            'measureId': measure.id,
            'measureName': measure.name,
            'category': measure.category.value,
            'priority': _priority(measure),
            'recommendation': RECOMMENDATIONS.get(measure.id, f"Address {measure.name} gap"),
        }
        for measure in HEDIS_MEASURES
        if is_in_population(patient, measure.population) and not meets_numerator(patient, measure)
    ]


def get_population_gaps(patients: List[PatientMeasureData]) -> List[Dict]:
    """Open gaps grouped by measure, largest first"""
    gaps: Dict[str, List[str]] = {}
    for patient in patients:
        for gap in get_patient_gaps(patient):
            gaps.setdefault(gap['measureId'], []).append(patient.patient_id)

    grouped = [
        {
            'measureId': measure_id,
            'measureName': MEASURES_BY_ID[measure_id].name,
            'patientCount': len(patient_ids),
            'patients': patient_ids,
        }
        for measure_id, patient_ids in gaps.items()
    ]
    grouped.sort(key=lambda g: g['patientCount'], reverse=True)
    return grouped
