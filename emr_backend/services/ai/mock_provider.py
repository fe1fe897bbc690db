"""
Mock AI Provider
Deterministic, offline responses for development (LLM_MOCK=true) and tests.
"""
import re
from typing import Any, Dict, List

from emr_backend.services.cds_context import calculate_age, codeable_text, display_name
from emr_backend.services.ai.base import AI_DISCLAIMER, AIProvider, TranscriptionOptions, stamped, validate_output
from emr_backend.services.ai.prompts import encounter_facts
from emr_backend.services.ai.schemas import ClinicalSummary, DischargeReadiness, HandoffSummary

MOCK_TRANSCRIPT = (
    "Clinician: What brings you in today? "
    "Patient: I've had a cough and fever for three days. "
    "Clinician: Any allergies? "
    "Patient: I'm allergic to penicillin. I'm taking lisinopril for blood pressure."
)

_ALLERGY_RE = re.compile(r"allergic to ([a-z][a-z\-]+)", re.IGNORECASE)
_MEDICATION_RE = re.compile(r"(?:taking|started on|on) ([a-z][a-z\-]+) (?:for|daily|twice)", re.IGNORECASE)
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _patient_lines(transcript: str) -> List[str]:
    sentences = [s.strip() for s in _SENTENCE_RE.split(transcript) if s.strip()]
    return [s.split(":", 1)[1].strip() if s.lower().startswith("patient:") else s for s in sentences]


def mock_diagnostic_assist(selected_text: str) -> Dict[str, Any]:
    """Keyword-driven diagnostic suggestions"""
    text = selected_text.lower()

    if 'chest pain' in text or 'shortness of breath' in text:
        return {
            'suggestions': [
                {
                    'condition': 'Acute Coronary Syndrome',
                    'icd10Code': 'I21.9',
                    'confidence': 'moderate',
                    'rationale': 'Chest pain with shortness of breath warrants evaluation for ACS, '
                                 'especially in patients with cardiac risk factors.',
                    'supportingEvidence': [
                        {'type': 'vital', 'description': 'Elevated heart rate and blood pressure noted'},
                        {'type': 'note', 'description': 'Patient describes substernal pressure'},
                    ],
                    'differentialConsiderations': [
                        'Pulmonary embolism', 'Aortic dissection', 'Anxiety/panic attack', 'GERD',
                    ],
                    'suggestedWorkup': [
                        'Serial troponins', 'ECG', 'Chest X-ray', 'Consider CT angiography if PE suspected',
                    ],
                },
                {
                    'condition': 'Heart Failure Exacerbation',
                    'icd10Code': 'I50.9',
                    'confidence': 'moderate',
                    'rationale': 'Dyspnea may indicate fluid overload in patients with known heart failure.',
                    'supportingEvidence': [
                        {'type': 'lab', 'description': 'Elevated BNP consistent with volume overload'},
                    ],
                    'suggestedWorkup': ['BNP', 'Chest X-ray', 'Echocardiogram'],
                },
            ],
            'clinicalContext': 'Patient presenting with cardiopulmonary symptoms requiring urgent evaluation.',
            'limitations': [
                'Unable to review full medication history',
                'Prior cardiac workup not available for comparison',
            ],
            'disclaimer': AI_DISCLAIMER,
        }

    if 'fever' in text or 'infection' in text:
        return {
            'suggestions': [
                {
                    'condition': 'Sepsis',
                    'icd10Code': 'A41.9',
                    'confidence': 'moderate',
                    'rationale': 'Fever with systemic symptoms warrants sepsis evaluation.',
                    'supportingEvidence': [
                        {'type': 'vital', 'description': 'Fever and tachycardia present'},
                        {'type': 'lab', 'description': 'Elevated WBC count'},
                    ],
                    'differentialConsiderations': ['Viral syndrome', 'UTI', 'Pneumonia', 'Cellulitis'],
                    'suggestedWorkup': [
                        'Blood cultures x2', 'Lactate', 'Procalcitonin', 'Urinalysis', 'Chest X-ray',
                    ],
                },
            ],
            'clinicalContext': 'Patient with signs of systemic infection.',
            'limitations': ['Source of infection not yet identified'],
            'disclaimer': AI_DISCLAIMER,
        }

    return {
        'suggestions': [
            {
                'condition': 'Further evaluation needed',
                'icd10Code': 'R69',
                'confidence': 'low',
                'rationale': 'The provided clinical information requires additional context '
                             'for specific diagnostic suggestions.',
                'supportingEvidence': [{'type': 'note', 'description': selected_text[:100]}],
                'suggestedWorkup': [
                    'Complete history and physical', 'Basic metabolic panel', 'CBC with differential',
                ],
            },
        ],
        'clinicalContext': 'Limited information available for analysis.',
        'limitations': [
            'Insufficient clinical details provided',
            'Patient history not fully available',
        ],
        'disclaimer': AI_DISCLAIMER,
    }


def _names(resources: List[Dict[str, Any]], key: str = 'code') -> List[str]:
    return [n for n in (codeable_text(r.get(key)) for r in resources) if n]


def mock_summary(context: Dict[str, Any], summary_type: str = 'clinical') -> Dict[str, Any]:
    """Summary assembled from the chart itself"""
    patient = context.get('patient') or {}
    encounter = encounter_facts(context.get('encounter') or {})
    name = display_name(patient) or 'Unknown'
    age = f"{calculate_age(patient['birthDate'])} years" if patient.get('birthDate') else 'Unknown'
    conditions = _names(context.get('conditions') or [])
    medications = _names(context.get('medications') or [], 'medicationCodeableConcept')
    pending = _names(context.get('pendingTests') or [])
    consults = _names(context.get('activeTasks') or [])
    reason = encounter['reason']
    if reason == 'Not specified':
        reason = conditions[0] if conditions else 'Not documented'

    if summary_type == 'handoff':
        return {
            'patient': {'name': name, 'age': age, 'room': encounter['location'], 'primaryTeam': encounter['attending']},
            'oneLiner': f"{name}, {age}, admitted for {reason}",
            'activeIssues': [
                {'issue': c, 'plan': 'Continue current management', 'overnight': 'Notify team of acute changes'}
                for c in conditions
            ],
            'codeStatus': 'Not documented',
            'allergies': [],
            'criticalValues': [],
            'anticipatedEvents': [f"Result pending: {t}" for t in pending],
            'ifThenStatements': [{'condition': 'If vital signs deteriorate', 'action': 'Page primary team'}],
            'contactInfo': {'primaryProvider': encounter['attending'], 'consultants': consults},
        }

    labs = [
        o for o in context.get('observations') or []
        if any(c.get('code') == 'laboratory' for cat in o.get('category') or [] for c in cat.get('coding') or [])
    ]
    return {
        'patientOverview': {
            'demographics': f"{age}, {patient.get('gender') or 'gender unknown'}",
            'chiefComplaint': reason,
            'admissionDate': encounter['start'],
        },
        'hospitalCourse': f"Admitted for {reason}. {len(conditions)} problems documented during the stay.",
        'keyFindings': [
            {
                'category': 'lab',
                'finding': f"{codeable_text(o.get('code')) or 'Lab'}: {(o.get('valueQuantity') or {}).get('value')}",
                'significance': 'significant' if o.get('interpretation') else 'routine',
                'date': o.get('effectiveDateTime'),
            }
            for o in labs[:5]
        ],
        'activeDiagnoses': [{'diagnosis': c, 'status': 'active'} for c in conditions],
        'currentMedications': [
            {'medication': m, 'dose': 'See order', 'frequency': 'See order'} for m in medications
        ],
        'pendingItems': (
            [{'item': t, 'type': 'test', 'status': 'Pending'} for t in pending]
            + [{'item': c, 'type': 'consult', 'status': 'Requested'} for c in consults]
        ),
        'clinicalStatus': {
            'stability': 'stable',
            'oxygenRequirement': 'Room air',
            'mobilityStatus': 'Not documented',
            'dietStatus': 'Not documented',
            'ivAccess': False,
        },
        'briefSummary': (
            f"{name}: {len(conditions)} active problems, {len(medications)} medications, "
            f"{len(pending) + len(consults)} pending items."
        ),
    }


def mock_discharge_readiness(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rule-based readiness.

    Starts from 100 and deducts for instability and open workup; unstable
    vitals or a score under 50 mean NOT_READY, a clean chart scoring 85 or
    more is READY_TODAY.
    """
    stability = snapshot['clinicalStability']
    workup = snapshot['workupCompleteness']
    stable = stability['vitalsStable']
    on_room_air = stability['oxygenRequirement'] == 'Room air'

    blockers = []
    if not stable:
        blockers.append({
            'factor': 'Unstable vital signs',
            'category': 'clinical',
            'details': '; '.join(stability['vitalsDetails']),
            'estimatedResolutionTime': '24-48 hours',
            'responsibleParty': 'Primary team',
        })
    for test in workup['pendingTests']:
        blockers.append({
            'factor': f"Pending {test['name']}",
            'category': 'workup',
            'details': f"Ordered {test['orderedDate'] or 'date unknown'}",
            'estimatedResolutionTime': '4-24 hours',
        })
    for consult in workup['openConsults']:
        blockers.append({
            'factor': f"Open {consult['specialty']} consult",
            'category': 'workup',
            'details': f"Requested {consult['requestedDate'] or 'date unknown'}",
            'estimatedResolutionTime': '1 day',
            'responsibleParty': consult['specialty'],
        })

    score = 100
    score -= 0 if stable else 30
    score -= 15 * workup['pendingTestCount']
    score -= 10 * workup['openConsultCount']
    score -= 10 if stability['onIVMedications'] else 0
    score -= 0 if on_room_air else 5
    score -= 10 if stability['labsTrending'] == 'worsening' else 0
    score = max(score, 0)

    if not stable or score < 50:
        level = 'NOT_READY'
    elif not blockers and score >= 85:
        level = 'READY_TODAY'
    else:
        level = 'READY_SOON'

    reasons = []
    if stable:
        reasons.append('Vital signs stable')
    if not workup['pendingTestCount']:
        reasons.append('No pending tests')
    if not workup['openConsultCount']:
        reasons.append('No open consults')
    if on_room_air:
        reasons.append('On room air')

    safety_checks = [{'item': 'Medication reconciliation', 'category': 'medication', 'completed': False}]
    safety_checks += [
        {'item': f"High-risk medication education: {m}", 'category': 'education', 'completed': False}
        for m in stability['highRiskMedications']
    ]
    if not on_room_air:
        safety_checks.append({'item': 'Home oxygen arranged', 'category': 'equipment', 'completed': False})

    follow_up = []
    if not snapshot['scheduledAppointments']:
        follow_up.append({
            'specialty': 'Primary Care',
            'timeframe': 'within_1_week' if stability['highRiskMedications'] else 'within_2_weeks',
            'reason': 'Post-discharge follow-up and medication reconciliation',
            'mode': 'either',
            'priority': 'high',
        })

    return {
        'readinessLevel': level,
        'readinessScore': score,
        'readinessReasons': reasons,
        'blockingFactors': blockers,
        'clinicalStatus': {
            'vitalsStable': stable,
            'vitalsNotes': '; '.join(stability['vitalsDetails']),
            'labsAcceptable': stability['labsTrending'] != 'worsening',
            'labsNotes': f"Labs {stability['labsTrending']}",
            'symptomsControlled': stable,
            'symptomsNotes': 'Inferred from vital sign trend',
            'oxygenRequirement': stability['oxygenRequirement'],
            'mobilityStatus': 'Not documented',
        },
        'followupNeeds': follow_up,
        'pendingTests': [
            {'testName': t['name'], 'orderedDate': t['orderedDate'] or None, 'criticalForDischarge': True}
            for t in workup['pendingTests']
        ],
        'safetyChecks': safety_checks,
        'dischargeDisposition': 'home' if on_room_air else 'home_with_services',
    }


class MockProvider(AIProvider):
    name = "mock"

    async def transcribe(self, audio: bytes, filename: str = "audio.webm",
                         options: TranscriptionOptions = None) -> Dict[str, Any]:
        options = options or TranscriptionOptions()
        return {
            'text': MOCK_TRANSCRIPT,
            'language': options.language or 'en',
            'duration': round(len(audio) / 16000, 2),
            'segments': [{'id': 0, 'start': 0.0, 'end': 12.0, 'text': MOCK_TRANSCRIPT}],
        }

    async def extract_clinical(self, transcript: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        lines = _patient_lines(transcript)
        complaint = next((l for l in lines if not l.endswith("?") and not l.lower().startswith("clinician")), "")

        diagnostic = mock_diagnostic_assist(transcript)
        return {
            'chiefComplaint': complaint,
            'historyOfPresentIllness': " ".join(lines),
            'assessment': [s['condition'] for s in diagnostic['suggestions']],
            'plan': [
                {
                    'problem': s['condition'],
                    'assessment': s['rationale'],
                    'interventions': s['suggestedWorkup'],
                }
                for s in diagnostic['suggestions']
            ],
            'medications': [{'name': m.lower(), 'action': 'continue'} for m in _MEDICATION_RE.findall(transcript)],
            'allergies': [a.lower() for a in _ALLERGY_RE.findall(transcript)],
        }

    async def generate_soap(self, extraction: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        medications = ", ".join(m.get('name', '') for m in extraction.get('medications') or []) or "None reported"
        allergies = ", ".join(extraction.get('allergies') or []) or "NKDA"
        plan_lines = [
            f"{i}. {item.get('problem')}: {', '.join(item.get('interventions') or [])}"
            for i, item in enumerate(extraction.get('plan') or [], start=1)
        ]

        return {
            'subjective': (
                f"Chief Complaint: {extraction.get('chiefComplaint') or 'Not stated'}\n"
                f"HPI: {extraction.get('historyOfPresentIllness') or ''}\n"
                f"Medications: {medications}\n"
                f"Allergies: {allergies}"
            ),
            'objective': "Vital signs and examination to be documented by clinician.",
            'assessment': "\n".join(extraction.get('assessment') or []),
            'plan': "\n".join(plan_lines),
            'sections': {
                'chiefComplaint': extraction.get('chiefComplaint'),
                'hpi': extraction.get('historyOfPresentIllness'),
                'problemList': extraction.get('assessment'),
            },
        }

    async def diagnostic_assist(self, selected_text: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        return mock_diagnostic_assist(selected_text)

    async def summarize(self, context: Dict[str, Any], summary_type: str = "clinical") -> Dict[str, Any]:
        if summary_type == "handoff":
            return validate_output(HandoffSummary, stamped(mock_summary(context, summary_type)), "Handoff summary")
        return validate_output(ClinicalSummary, stamped(mock_summary(context, summary_type)), "Clinical summary")

    async def assess_discharge_readiness(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        return validate_output(DischargeReadiness, mock_discharge_readiness(snapshot), "Discharge readiness")
