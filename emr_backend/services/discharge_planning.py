"""
Discharge Planning - encounter context for summaries and the discharge
readiness snapshot derived from it
"""
import asyncio
import logging
from typing import Any, Dict, List

from emr_backend.services.fhir_client import AidboxClient
from emr_backend.services.cds_context import LOINC, codeable_text, display_name

logger = logging.getLogger(__name__)

PENDING_REPORT_STATUSES = ('registered', 'preliminary')
OPEN_TASK_STATUSES = ('requested', 'in-progress')
HIGH_RISK_KEYWORDS = ['anticoagulant', 'insulin', 'opioid', 'vasopressor']

# Trend is flagged once the latest value moves more than this from the first
LAB_TREND_THRESHOLD = 0.10


class EncounterContextError(ValueError):
    """The encounter cannot be tied to a patient"""


def _has_category(resource: Dict, code: str) -> bool:
    return any(
        c.get('code') == code
        for category in resource.get('category') or []
        for c in category.get('coding') or []
    )


def _has_code(resource: Dict, code: str) -> bool:
    return any(c.get('code') == code for c in (resource.get('code') or {}).get('coding') or [])


async def load_encounter_context(client: AidboxClient, encounter_id: str) -> Dict[str, Any]:
    """The encounter, its patient and the chart around them, as FHIR resources"""
    encounter = await client.read('Encounter', encounter_id)
    subject = (encounter.get('subject') or {}).get('reference') or ''
    if not subject.startswith('Patient/'):
        raise EncounterContextError("Encounter has no patient reference")

    by_encounter = f"Encounter/{encounter_id}"
    (patient, conditions, observations, medications, administrations,
     reports, procedures, notes, tasks, appointments) = await asyncio.gather(
        client.read('Patient', subject.split('/', 1)[1]),
        client.search_resources('Condition', {'subject': subject, '_count': 100}),
        client.search_resources('Observation', {'subject': subject, '_sort': '-date', '_count': 200}),
        client.search_resources('MedicationRequest', {'subject': subject, 'status': 'active', '_count': 100}),
        client.search_resources('MedicationAdministration', {'context': by_encounter, '_count': 100}),
        client.search_resources('DiagnosticReport', {'encounter': by_encounter, '_count': 100}),
        client.search_resources('Procedure', {'subject': subject, '_count': 100}),
        client.search_resources('DocumentReference', {'subject': subject, '_sort': '-date', '_count': 10}),
        client.search_resources('Task', {'encounter': by_encounter, '_count': 100}),
        client.search_resources('Appointment', {'patient': subject, 'status': 'booked', '_count': 20}),
    )

    return {
        'patient': patient,
        'encounter': encounter,
        'conditions': conditions,
        'observations': observations,
        'medications': medications,
        'medicationAdministrations': administrations,
        'diagnosticReports': reports,
        'pendingTests': [r for r in reports if r.get('status') in PENDING_REPORT_STATUSES],
        'procedures': procedures,
        'notes': notes,
        'activeTasks': [t for t in tasks if t.get('status') in OPEN_TASK_STATUSES],
        'appointments': appointments,
    }


def clinical_stability(vitals: List[Dict], medications: List[Dict], administrations: List[Dict]) -> Dict[str, Any]:
    recent = vitals[:12]
    details = []
    stable = True

    heart_rates = [
        (v.get('valueQuantity') or {}).get('value') for v in recent if _has_code(v, LOINC['heart_rate'])
    ]
    heart_rates = [hr for hr in heart_rates if hr is not None]
    if heart_rates:
        average = sum(heart_rates) / len(heart_rates)
        if average > 100:
            details.append('Tachycardia present')
            stable = False
        elif average < 60:
            details.append('Bradycardia present')

    saturations = [
        (v.get('valueQuantity') or {}).get('value') for v in recent if _has_code(v, LOINC['oxygen_saturation'])
    ]
    oxygen = 'Room air'
    if any(s is not None and s < 94 for s in saturations):
        oxygen = 'Supplemental oxygen'
        details.append('Requires supplemental O2')

    if stable and not details:
        details.append('Vitals within normal limits')

    names = [codeable_text(m.get('medicationCodeableConcept')) for m in medications]
    return {
        'vitalsStable': stable,
        'vitalsDetails': details,
        'oxygenRequirement': oxygen,
        'onIVMedications': any(a.get('status') == 'in-progress' for a in administrations),
        'highRiskMedications': [n for n in names if any(k in n.lower() for k in HIGH_RISK_KEYWORDS)],
    }


def lab_trends(labs: List[Dict]) -> List[Dict[str, Any]]:
    """
    Direction of each lab with two or more dated values.

    For the labs followed during an admission (creatinine, WBC, lactate...)
    a falling value is an improvement.
    """
    grouped: Dict[str, List[Dict]] = {}
    for lab in labs:
        codings = (lab.get('code') or {}).get('coding') or []
        value = (lab.get('valueQuantity') or {}).get('value')
        if not codings or not codings[0].get('code') or value is None or not lab.get('effectiveDateTime'):
            continue
        grouped.setdefault(codings[0]['code'], []).append(lab)

    trends = []
    for code, series in grouped.items():
        if len(series) < 2:
            continue
        series = sorted(series, key=lambda o: o['effectiveDateTime'])
        first = series[0]['valueQuantity']['value']
        last = series[-1]['valueQuantity']['value']

        trend = 'stable'
        if first and abs(last - first) / abs(first) > LAB_TREND_THRESHOLD:
            trend = 'improving' if last < first else 'worsening'

        trends.append({
            'labName': codeable_text(series[0].get('code')) or code,
            'loincCode': code,
            'values': [
                {
                    'date': o['effectiveDateTime'],
                    'value': o['valueQuantity']['value'],
                    'unit': o['valueQuantity'].get('unit') or '',
                }
                for o in series
            ],
            'trend': trend,
        })
    return trends[:10]


def overall_lab_trend(trends: List[Dict[str, Any]]) -> str:
    directions = {t['trend'] for t in trends}
    if 'worsening' in directions:
        return 'worsening'
    if 'improving' in directions:
        return 'improving'
    return 'stable'


def build_discharge_snapshot(context: Dict[str, Any]) -> Dict[str, Any]:
    """Condensed readiness inputs: stability markers, workup status and follow-up"""
    encounter = context['encounter']
    observations = context['observations']
    vitals = [o for o in observations if _has_category(o, 'vital-signs')]
    labs = [o for o in observations if _has_category(o, 'laboratory')]

    trends = lab_trends(labs)
    stability = clinical_stability(vitals, context['medications'], context['medicationAdministrations'])
    stability['labsTrending'] = overall_lab_trend(trends)

    pending = context['pendingTests']
    consults = context['activeTasks']
    participants = encounter.get('participant') or [{}]

    snapshot = {
        'patient': {
            'id': context['patient'].get('id'),
            'name': display_name(context['patient']) or 'Unknown',
            'birthDate': context['patient'].get('birthDate'),
        },
        'encounter': {
            'id': encounter.get('id'),
            'start': (encounter.get('period') or {}).get('start'),
            'attendingName': (participants[0].get('individual') or {}).get('display'),
        },
        'conditions': [
            {
                'name': codeable_text(c.get('code')) or 'Unknown',
                'status': (((c.get('clinicalStatus') or {}).get('coding') or [{}])[0]).get('code') or 'active',
            }
            for c in context['conditions']
        ],
        'clinicalStability': stability,
        'labTrends': trends,
        'workupCompleteness': {
            'pendingTestCount': len(pending),
            'pendingTests': [
                {'name': codeable_text(t.get('code')) or 'Unknown test', 'orderedDate': t.get('issued') or ''}
                for t in pending
            ],
            'openConsultCount': len(consults),
            'openConsults': [
                {
                    'specialty': codeable_text(c.get('code')) or 'Unknown specialty',
                    'requestedDate': c.get('authoredOn') or '',
                }
                for c in consults
            ],
            'allCriticalTestsComplete': not pending,
        },
        'currentMedications': [
            {'name': codeable_text(m.get('medicationCodeableConcept')) or 'Unknown'} for m in context['medications']
        ],
        'scheduledAppointments': [
            {
                'type': codeable_text(a.get('appointmentType')) or a.get('description') or 'Appointment',
                'date': a.get('start') or '',
            }
            for a in context['appointments']
        ],
    }
    logger.info(
        f"Discharge snapshot for encounter {encounter.get('id')}: "
        f"{len(pending)} pending tests, {len(consults)} open consults"
    )
    return snapshot
