"""
Care Gap Detection

Preventive care gaps from patient demographics and history:
- USPSTF screening recommendations by age, sex and risk condition
- Adult immunization schedule
- Lab monitoring intervals for chronic conditions
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


class GapCategory(str, Enum):
    SCREENING = "screening"
    IMMUNIZATION = "immunization"
    CHRONIC_CARE = "chronic-care"
    FOLLOW_UP = "follow-up"


class GapPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    OVERDUE = "overdue"


@dataclass
class CareGap:
    id: str
    category: GapCategory
    name: str
    description: str
    priority: GapPriority
    recommendation: str
    order_code: Optional[str] = None
    due_date: Optional[str] = None
    last_completed: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            'id': self.id,
            'category': self.category.value,
            'name': self.name,
            'description': self.description,
            'priority': self.priority.value,
            'recommendation': self.recommendation,
            'orderCode': self.order_code,
        }
        if self.due_date:
            data['dueDate'] = self.due_date
        if self.last_completed:
            data['lastCompleted'] = self.last_completed
        return data


@dataclass
class PatientDemographics:
    age: int
    gender: str  # 'male' | 'female'
    conditions: List[str] = field(default_factory=list)
    procedures: List[str] = field(default_factory=list)
    immunizations: List[str] = field(default_factory=list)
    last_lab_dates: Dict[str, str] = field(default_factory=dict)  # lab code -> ISO date


SCREENING_GUIDELINES = [
    {
        'name': 'Colorectal Cancer Screening',
        'min_age': 45, 'max_age': 75,
        'procedures': ['colonoscopy', 'cologuard', 'fit'],
        'recommendation': 'Schedule colonoscopy or alternative screening',
        'order_code': 'COLONOSCOPY',
    },
    {
        'name': 'Mammogram',
        'gender': 'female', 'min_age': 40, 'max_age': 74,
        'procedures': ['mammogram', 'breast imaging'],
        'recommendation': 'Schedule mammography screening',
        'order_code': 'MAMMOGRAM',
    },
    {
        'name': 'Lung Cancer Screening',
        'min_age': 50, 'max_age': 80,
        'requires': ['smoking', 'tobacco'],
        'procedures': ['ldct', 'low-dose ct chest'],
        'recommendation': 'Schedule low-dose CT for lung cancer screening',
        'order_code': 'LDCT_LUNG',
    },
    {
        'name': 'Cervical Cancer Screening (Pap)',
        'gender': 'female', 'min_age': 21, 'max_age': 65,
        'procedures': ['pap', 'pap smear', 'cervical cytology'],
        'recommendation': 'Schedule Pap smear',
        'order_code': 'PAP_SMEAR',
    },
    {
        'name': 'Bone Density (DEXA)',
        'gender': 'female', 'min_age': 65,
        'procedures': ['dexa', 'bone density', 'dxa'],
        'recommendation': 'Schedule DEXA scan for osteoporosis screening',
        'order_code': 'DEXA_SCAN',
    },
    {
        'name': 'Abdominal Aortic Aneurysm Screening',
        'gender': 'male', 'min_age': 65, 'max_age': 75,
        'requires': ['smoking', 'tobacco'],
        'procedures': ['aaa screening', 'abdominal aorta ultrasound'],
        'recommendation': 'One-time AAA ultrasound screening',
        'order_code': 'AAA_SCREEN',
    },
]

IMMUNIZATION_GUIDELINES = [
    {
        'name': 'Annual Influenza Vaccine', 'min_age': 0, 'annual': True,
        'codes': ['flu', 'influenza'],
        'recommendation': 'Administer annual flu vaccine', 'order_code': 'FLU_VACCINE',
    },
    {
        'name': 'Pneumococcal Vaccine (PCV15/PCV20)', 'min_age': 65, 'annual': False,
        'codes': ['pneumococcal', 'pneumovax', 'prevnar', 'pcv'],
        'recommendation': 'Administer pneumococcal vaccine series', 'order_code': 'PNEUMO_VACCINE',
    },
    {
        'name': 'Shingles Vaccine (Shingrix)', 'min_age': 50, 'annual': False,
        'codes': ['shingrix', 'zoster', 'shingles'],
        'recommendation': 'Administer Shingrix vaccine (2-dose series)', 'order_code': 'SHINGRIX',
    },
    {
        'name': 'Tdap/Td Booster', 'min_age': 19, 'annual': False,
        'codes': ['tdap', 'tetanus', 'td'],
        'recommendation': 'Administer Tdap or Td booster', 'order_code': 'TDAP_VACCINE',
    },
    {
        'name': 'COVID-19 Vaccine', 'min_age': 0, 'annual': True,
        'codes': ['covid', 'sars-cov', 'coronavirus vaccine'],
        'recommendation': 'Offer updated COVID-19 vaccine', 'order_code': 'COVID_VACCINE',
    },
    {
        'name': 'RSV Vaccine', 'min_age': 60, 'annual': False,
        'codes': ['rsv', 'respiratory syncytial'],
        'recommendation': 'Consider RSV vaccine', 'order_code': 'RSV_VACCINE',
    },
]

CHRONIC_CARE_LABS = [
    {
        'name': 'HbA1c (Diabetes)', 'lab': 'hba1c', 'months': 3,
        'conditions': ['diabetes', 'dm', 'type 2', 'type 1'],
        'recommendation': 'Order HbA1c for diabetes monitoring', 'order_code': 'HBA1C',
    },
    {
        'name': 'Lipid Panel', 'lab': 'lipid', 'months': 12, 'min_age': 40,
        'recommendation': 'Order lipid panel for cardiovascular risk', 'order_code': 'LIPID_PANEL',
    },
    {
        'name': 'Comprehensive Metabolic Panel', 'lab': 'cmp', 'months': 6,
        'conditions': ['ckd', 'kidney', 'diabetes', 'hypertension'],
        'recommendation': 'Order CMP for metabolic monitoring', 'order_code': 'CMP',
    },
    {
        'name': 'TSH (Thyroid)', 'lab': 'tsh', 'months': 12,
        'conditions': ['hypothyroid', 'hyperthyroid', 'thyroid'],
        'recommendation': 'Order TSH for thyroid monitoring', 'order_code': 'TSH',
    },
    {
        'name': 'eGFR/Creatinine', 'lab': 'creatinine', 'months': 3,
        'conditions': ['ckd', 'kidney disease', 'diabetes'],
        'recommendation': 'Order creatinine/eGFR for kidney function', 'order_code': 'BMP',
    },
]

# Lab name keywords -> monitoring lab code
LAB_NAME_KEYWORDS = {
    'hba1c': ['hba1c', 'hemoglobin a1c'],
    'lipid': ['lipid', 'cholesterol'],
    'creatinine': ['creatinine', 'egfr'],
    'tsh': ['tsh', 'thyroid'],
    'cmp': ['cmp', 'metabolic'],
}


def mentions_any(texts: List[str], keywords: List[str]) -> bool:
    """Keyword match at word starts, so 'fit' does not hit 'benefit'"""
    haystack = ' '.join(texts).lower()
    return any(re.search(r'\b' + re.escape(kw.lower()), haystack) for kw in keywords)


def _gap_id(prefix: str, name: str) -> str:
    slug = re.sub(r"\s+", "-", name.lower())
    return f"{prefix}-{slug}"


def _parse_date(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def check_screening_gaps(demographics: PatientDemographics) -> List[CareGap]:
    gaps = []
    for screening in SCREENING_GUIDELINES:
        if demographics.age < screening['min_age']:
            continue
        if screening.get('max_age') and demographics.age > screening['max_age']:
            continue
        if screening.get('gender') and demographics.gender != screening['gender']:
            continue
        if screening.get('requires') and not mentions_any(demographics.conditions, screening['requires']):
            continue
        if mentions_any(demographics.procedures, screening['procedures']):
            continue

        age_range = f"{screening['min_age']}-{screening['max_age']}" if screening.get('max_age') \
            else f"{screening['min_age']}+"
        overdue = demographics.age > screening['min_age'] + 2
        gaps.append(CareGap(
            id=_gap_id('screening', screening['name']),
            category=GapCategory.SCREENING,
            name=screening['name'],
            description=f"Recommended for ages {age_range}",
            priority=GapPriority.OVERDUE if overdue else GapPriority.HIGH,
            recommendation=screening['recommendation'],
            order_code=screening['order_code'],
        ))
    return gaps


def check_immunization_gaps(demographics: PatientDemographics) -> List[CareGap]:
    gaps = []
    for vaccine in IMMUNIZATION_GUIDELINES:
        if demographics.age < vaccine['min_age']:
            continue
        if mentions_any(demographics.immunizations, vaccine['codes']):
            continue

        annual = vaccine['annual']
        gaps.append(CareGap(
            id=_gap_id('immunization', vaccine['name']),
            category=GapCategory.IMMUNIZATION,
            name=vaccine['name'],
            description='Annual vaccine' if annual else 'Recommended vaccination',
            priority=GapPriority.HIGH if annual else GapPriority.MEDIUM,
            recommendation=vaccine['recommendation'],
            order_code=vaccine['order_code'],
        ))
    return gaps


def check_chronic_care_gaps(demographics: PatientDemographics, now: datetime = None) -> List[CareGap]:
    """A lab is due once its interval (30-day months) has passed; overdue a month after that"""
    now = now or datetime.now(timezone.utc)
    gaps = []

    for lab in CHRONIC_CARE_LABS:
        if lab.get('conditions') and not mentions_any(demographics.conditions, lab['conditions']):
            continue
        if lab.get('min_age') and demographics.age < lab['min_age']:
            continue

        last_done = demographics.last_lab_dates.get(lab['lab'])
        if last_done:
            last_date = _parse_date(last_done)
            due_date = last_date + timedelta(days=lab['months'] * 30)
        else:
            last_date = None
            due_date = datetime(1970, 1, 1, tzinfo=timezone.utc)

        if due_date > now:
            continue

        overdue = last_date is None or due_date < now - relativedelta(months=1)
        gaps.append(CareGap(
            id=_gap_id('chronic', lab['name']),
            category=GapCategory.CHRONIC_CARE,
            name=lab['name'],
            description=f"Last: {last_date.date().isoformat()}" if last_date else 'No recent results',
            priority=GapPriority.OVERDUE if overdue else GapPriority.MEDIUM,
            recommendation=lab['recommendation'],
            order_code=lab['order_code'],
            due_date=due_date.isoformat(),
            last_completed=last_done,
        ))
    return gaps


def latest_lab_dates(labs: List[Dict[str, str]]) -> Dict[str, str]:
    """
    Most recent date per monitoring lab code.

    Args:
        labs: dicts with 'name' and 'date' (ISO string)
    """
    latest: Dict[str, str] = {}
    for lab in labs:
        name = (lab.get('name') or '').lower()
        date = lab.get('date')
        if not date:
            continue
        for code, keywords in LAB_NAME_KEYWORDS.items():
            if any(kw in name for kw in keywords):
                if code not in latest or _parse_date(date) > _parse_date(latest[code]):
                    latest[code] = date
    return latest


def calculate_care_gaps(patient_id: str, demographics: PatientDemographics, now: datetime = None) -> Dict:
    screenings = check_screening_gaps(demographics)
    immunizations = check_immunization_gaps(demographics)
    chronic_care = check_chronic_care_gaps(demographics, now)

    all_gaps = screenings + immunizations + chronic_care
    overdue_count = sum(1 for g in all_gaps if g.priority == GapPriority.OVERDUE)
    logger.info(f"Care gaps for {patient_id}: {len(all_gaps)} total, {overdue_count} overdue")

    return {
        'patientId': patient_id,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'totalGaps': len(all_gaps),
        'overdueCount': overdue_count,
        'gaps': {
            'screenings': [g.to_dict() for g in screenings],
            'immunizations': [g.to_dict() for g in immunizations],
            'chronicCare': [g.to_dict() for g in chronic_care],
            'followUps': [],
        },
    }
