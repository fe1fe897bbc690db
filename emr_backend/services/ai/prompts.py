"""
Prompts and response parsing shared by the LLM-backed providers
"""
import json
import re
from typing import Any, Dict, List, Optional

from emr_backend.services.cds_context import codeable_text, display_name

CLINICAL_EXTRACTION_PROMPT = """You are a medical scribe AI. Extract structured clinical information from the following patient encounter transcript.

Return a JSON object with these fields (include only what's mentioned):
- chiefComplaint: Main reason for visit
- historyOfPresentIllness: Detailed HPI narrative
- reviewOfSystems: Object with system names as keys
- physicalExam: Object with exam components as keys
- assessment: Array of diagnoses/impressions
- plan: Array of {problem, assessment, interventions[]}
- medications: Array of {name, dose?, route?, frequency?, action?}
- allergies: Array of allergy names
- procedures: Array of procedures mentioned
- orders: Array of {type, name, urgency?, reason?}
- followUp: Follow-up instructions

Be thorough but only include information explicitly stated or clearly implied."""

SOAP_GENERATION_PROMPT = """You are a medical documentation specialist. Generate a professional SOAP note from the clinical extraction.

Format the note with clear sections:

SUBJECTIVE:
- Chief Complaint
- History of Present Illness
- Review of Systems
- Past Medical/Surgical History
- Medications
- Allergies
- Social/Family History

OBJECTIVE:
- Vital Signs
- Physical Examination
- Lab Results
- Imaging

ASSESSMENT:
- Problem list with clinical reasoning

PLAN:
- Numbered list by problem with specific interventions

Use professional medical terminology. Be concise but thorough."""

DIAGNOSTIC_ASSIST_PROMPT = """You are a clinical decision support assistant. Given an excerpt from a clinical note, suggest possible diagnoses.

Return a JSON object:
{
    "suggestions": [
        {
            "condition": "Diagnosis name",
            "icd10Code": "ICD-10-CM code",
            "confidence": "high | moderate | low",
            "rationale": "Why this diagnosis fits",
            "supportingEvidence": [{"type": "vital | lab | note | history", "description": "..."}],
            "differentialConsiderations": ["Other conditions to rule out"],
            "suggestedWorkup": ["Tests or exams to confirm"]
        }
    ],
    "clinicalContext": "One sentence summary of the presentation",
    "limitations": ["What information was missing"]
}

Respond ONLY with the JSON object."""

CLINICAL_SUMMARY_PROMPT = """You are a clinical documentation assistant helping physicians create accurate, concise patient summaries.

CRITICAL RULES:
1. Only include information present in the provided clinical data.
2. Never fabricate or assume clinical details not explicitly stated.
3. Use professional medical terminology appropriate for physician-to-physician communication.
4. Highlight critical findings and abnormal values prominently.
5. Flag any gaps or missing information that may be clinically important.

Return a JSON object:
{
    "patientOverview": {"demographics": "...", "chiefComplaint": "...", "admissionDate": "...", "lengthOfStay": "..."},
    "hospitalCourse": "Brief narrative of the hospital course",
    "keyFindings": [{"category": "diagnosis | lab | imaging | procedure | consult", "finding": "...",
                     "significance": "critical | significant | routine", "date": "..."}],
    "activeDiagnoses": [{"diagnosis": "...", "icd10": "...", "status": "active | resolving | resolved", "notes": "..."}],
    "currentMedications": [{"medication": "...", "dose": "...", "frequency": "...", "indication": "...", "isNew": false}],
    "pendingItems": [{"item": "...", "type": "test | consult | procedure | followup", "status": "...", "expectedDate": "..."}],
    "clinicalStatus": {"stability": "stable | improving | worsening | critical", "oxygenRequirement": "...",
                       "mobilityStatus": "...", "dietStatus": "...", "ivAccess": false},
    "briefSummary": "2-3 sentence executive summary"
}

Respond ONLY with the JSON object."""

HANDOFF_SUMMARY_PROMPT = """You are a clinical handoff assistant helping create safe, structured patient handoffs for overnight coverage.

CRITICAL RULES:
1. Prioritize patient safety - highlight urgent issues first.
2. Be concise but complete - overnight providers have limited time.
3. Include specific "if-then" contingencies for anticipated problems.
4. Always include code status and allergies.
5. Never omit safety-critical details for brevity.

Use the I-PASS structure (illness severity, patient summary, action list, situation awareness, synthesis)
and return a JSON object:
{
    "patient": {"name": "...", "age": "...", "room": "...", "primaryTeam": "..."},
    "oneLiner": "Brief one-line patient summary",
    "activeIssues": [{"issue": "...", "plan": "...", "overnight": "What to watch for overnight"}],
    "codeStatus": "...",
    "allergies": ["..."],
    "criticalValues": [{"lab": "...", "value": "...", "trend": "improving | stable | worsening"}],
    "anticipatedEvents": ["..."],
    "ifThenStatements": [{"condition": "...", "action": "..."}],
    "contactInfo": {"primaryProvider": "...", "consultants": ["..."]}
}

Respond ONLY with the JSON object."""

DISCHARGE_READINESS_PROMPT = """You are a discharge planning assistant helping clinical teams assess whether patients are ready for discharge.

CRITICAL RULES:
1. Be CONSERVATIVE. If in doubt, recommend NOT_READY or READY_SOON rather than READY_TODAY.
2. Patient safety is paramount. Never rush discharge if clinical stability is questionable.
3. Distinguish clinical readiness, workup completeness and social/logistical factors.
4. All recommendations require evidence from the provided data.
5. Never generate orders or prescriptions. Only provide recommendations.

READINESS CRITERIA:
READY_TODAY: vitals stable for 24+ hours, labs stable or improving, no pending critical tests,
consults completed, disposition confirmed, medications reconciled, patient educated.
READY_SOON (likely 1-2 days): most criteria met but 1-2 items pending.
NOT_READY: active clinical instability, critical tests pending, or major barriers to safe discharge.

Return a JSON object:
{
    "readinessLevel": "READY_TODAY | READY_SOON | NOT_READY",
    "readinessScore": 0-100,
    "readinessReasons": ["..."],
    "blockingFactors": [{"factor": "...", "category": "clinical | workup | social | logistical", "details": "...",
                         "estimatedResolutionTime": "...", "responsibleParty": "..."}],
    "clinicalStatus": {"vitalsStable": true, "vitalsNotes": "...", "labsAcceptable": true, "labsNotes": "...",
                       "symptomsControlled": true, "symptomsNotes": "...", "oxygenRequirement": "...",
                       "mobilityStatus": "..."},
    "followupNeeds": [{"specialty": "...", "timeframe": "within_1_week | within_2_weeks | within_1_month | as_needed",
                       "reason": "...", "mode": "in_person | telemedicine | either",
                       "priority": "critical | high | routine"}],
    "pendingTests": [{"testName": "...", "orderedDate": "...", "expectedResultDate": "...", "criticalForDischarge": true}],
    "safetyChecks": [{"item": "...", "category": "medication | education | equipment | safety | social",
                      "completed": false, "notes": "..."}],
    "estimatedDischargeDate": "YYYY-MM-DD",
    "dischargeDisposition": "home | home_with_services | skilled_nursing | rehab | ltac | hospice | other"
}

Respond ONLY with the JSON object."""

_SECTION_PATTERNS = {
    'subjective': re.compile(r"SUBJECTIVE:?\s*([\s\S]*?)(?=OBJECTIVE:|$)", re.IGNORECASE),
    'objective': re.compile(r"OBJECTIVE:?\s*([\s\S]*?)(?=ASSESSMENT:|$)", re.IGNORECASE),
    'assessment': re.compile(r"ASSESSMENT:?\s*([\s\S]*?)(?=PLAN:|$)", re.IGNORECASE),
    'plan': re.compile(r"PLAN:?\s*([\s\S]*?)$", re.IGNORECASE),
}


def soap_context(context: Optional[Dict[str, Any]]) -> str:
    if not context:
        return ""
    return (
        f"\n\nPatient: {context.get('patientName') or 'Unknown'}, "
        f"{context.get('age') or '?'}yo {context.get('gender') or ''}\n"
        f"Encounter Type: {context.get('encounterType') or 'Unknown'}"
    )


def parse_soap_sections(text: str) -> Dict[str, str]:
    """Split a free-text note on its SUBJECTIVE/OBJECTIVE/ASSESSMENT/PLAN headers"""
    sections = {}
    for name, pattern in _SECTION_PATTERNS.items():
        match = pattern.search(text or "")
        sections[name] = match.group(1).strip() if match else ""
    return sections


def soap_note_from_text(text: str, extraction: Dict[str, Any]) -> Dict[str, Any]:
    note = parse_soap_sections(text)
    note['sections'] = {
        'chiefComplaint': extraction.get('chiefComplaint'),
        'hpi': extraction.get('historyOfPresentIllness'),
        'problemList': extraction.get('assessment'),
    }
    return note


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Parse a model's JSON answer.

    Models sometimes wrap the object in a markdown code fence; strip it first.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return json.loads(cleaned)


def _lines(items: List[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) or empty


def encounter_facts(encounter: Dict[str, Any]) -> Dict[str, str]:
    locations = encounter.get('location') or [{}]
    participants = encounter.get('participant') or [{}]
    reasons = encounter.get('reasonCode') or [{}]
    return {
        'start': (encounter.get('period') or {}).get('start') or 'Unknown',
        'reason': codeable_text(reasons[0]) or 'Not specified',
        'location': ((locations[0].get('location') or {}).get('display')) or 'Unknown',
        'attending': ((participants[0].get('individual') or {}).get('display')) or 'Not specified',
    }


def _observation_line(obs: Dict[str, Any]) -> str:
    quantity = obs.get('valueQuantity') or {}
    value = quantity.get('value', obs.get('valueString', 'N/A'))
    flags = [c.get('code') for i in obs.get('interpretation') or [] for c in i.get('coding') or []]
    line = f"{codeable_text(obs.get('code')) or 'Unknown'}: {value} {quantity.get('unit') or ''}".rstrip()
    return f"{line} ({flags[0]})" if flags else line


def _is_category(obs: Dict[str, Any], code: str) -> bool:
    return any(c.get('code') == code for cat in obs.get('category') or [] for c in cat.get('coding') or [])


def clinical_summary_prompt(context: Dict[str, Any]) -> str:
    patient = context.get('patient') or {}
    encounter = encounter_facts(context.get('encounter') or {})
    observations = (context.get('observations') or [])[:50]
    identifiers = patient.get('identifier') or [{}]

    return (
        "Generate a comprehensive clinical summary for this patient:\n\n"
        f"PATIENT:\n- Name: {display_name(patient) or 'Unknown'}\n"
        f"- DOB: {patient.get('birthDate') or 'Unknown'}\n"
        f"- Gender: {patient.get('gender') or 'Unknown'}\n"
        f"- MRN: {identifiers[0].get('value') or 'Unknown'}\n\n"
        f"CURRENT ENCOUNTER:\n- Admission Date: {encounter['start']}\n- Reason: {encounter['reason']}\n"
        f"- Location: {encounter['location']}\n- Attending: {encounter['attending']}\n\n"
        "ACTIVE CONDITIONS:\n"
        + _lines([codeable_text(c.get('code')) or 'Unknown' for c in context.get('conditions') or []],
                 'None documented')
        + "\n\nVITALS:\n"
        + _lines([_observation_line(o) for o in observations if _is_category(o, 'vital-signs')], 'None')
        + "\n\nLABS:\n"
        + _lines([_observation_line(o) for o in observations if _is_category(o, 'laboratory')][:15], 'None')
        + "\n\nCURRENT MEDICATIONS:\n"
        + _lines([codeable_text(m.get('medicationCodeableConcept')) or 'Unknown'
                  for m in context.get('medications') or []], 'None documented')
        + "\n\nDIAGNOSTIC REPORTS:\n"
        + _lines([f"{codeable_text(r.get('code')) or 'Unknown'} ({r.get('status')}): "
                  f"{r.get('conclusion') or 'See report'}" for r in context.get('diagnosticReports') or []], 'None')
        + "\n\nPROCEDURES:\n"
        + _lines([codeable_text(p.get('code')) or 'Unknown' for p in context.get('procedures') or []], 'None')
        + "\n\nRECENT NOTES:\n"
        + _lines([f"{codeable_text(n.get('type')) or 'Note'} ({n.get('date') or 'Unknown date'})"
                  for n in (context.get('notes') or [])[:3]], 'None')
    )


def handoff_summary_prompt(context: Dict[str, Any]) -> str:
    patient = context.get('patient') or {}
    encounter = encounter_facts(context.get('encounter') or {})
    observations = context.get('observations') or []
    critical = [
        o for o in observations
        if _is_category(o, 'laboratory') and any(
            c.get('code') in ('H', 'L', 'A') for i in o.get('interpretation') or [] for c in i.get('coding') or []
        )
    ]

    return (
        "Generate a structured handoff summary for overnight coverage:\n\n"
        f"PATIENT:\n- Name: {display_name(patient) or 'Unknown'}\n"
        f"- DOB: {patient.get('birthDate') or 'Unknown'}\n"
        f"- Room: {encounter['location']}\n- Primary Team: {encounter['attending']}\n\n"
        f"ADMISSION REASON:\n{encounter['reason']}\n\n"
        "ACTIVE PROBLEMS:\n"
        + _lines([codeable_text(c.get('code')) or 'Unknown' for c in context.get('conditions') or []], 'None')
        + "\n\nRECENT VITALS:\n"
        + _lines([_observation_line(o) for o in observations if _is_category(o, 'vital-signs')][:10],
                 'None available')
        + "\n\nCRITICAL LABS:\n"
        + _lines([_observation_line(o) for o in critical][:10], 'No critical values')
        + "\n\nCURRENT MEDICATIONS:\n"
        + _lines([codeable_text(m.get('medicationCodeableConcept')) or 'Unknown'
                  for m in context.get('medications') or []], 'None')
        + "\n\nPENDING TESTS/CONSULTS:\n"
        + _lines([f"{codeable_text(t.get('code')) or 'Unknown test'} ({t.get('status')})"
                  for t in context.get('pendingTests') or []], 'None pending')
        + "\n\nACTIVE TASKS:\n"
        + _lines([f"{codeable_text(t.get('code')) or t.get('description') or 'Task'} ({t.get('status')})"
                  for t in context.get('activeTasks') or []], 'None')
    )


def discharge_readiness_prompt(snapshot: Dict[str, Any]) -> str:
    stability = snapshot['clinicalStability']
    workup = snapshot['workupCompleteness']

    return (
        "Assess discharge readiness for this patient:\n\n"
        f"PATIENT: {snapshot['patient']['name']}\n"
        f"DOB: {snapshot['patient'].get('birthDate') or 'Unknown'}\n"
        f"ADMISSION DATE: {snapshot['encounter'].get('start') or 'Unknown'}\n"
        f"ATTENDING: {snapshot['encounter'].get('attendingName') or 'Not specified'}\n\n"
        "DIAGNOSES:\n"
        + _lines([f"{c['name']} ({c['status']})" for c in snapshot['conditions']], 'None documented')
        + "\n\nCLINICAL STABILITY:\n"
        f"- Vitals Stable: {stability['vitalsStable']}\n"
        f"- Details: {'; '.join(stability['vitalsDetails']) or 'None'}\n"
        f"- Labs Trending: {stability['labsTrending']}\n"
        f"- Oxygen: {stability['oxygenRequirement']}\n"
        f"- On IV Meds: {stability['onIVMedications']}\n"
        f"- High-Risk Meds: {', '.join(stability['highRiskMedications']) or 'None'}\n\n"
        f"WORKUP STATUS:\n- Pending Tests ({workup['pendingTestCount']}):\n"
        + _lines([f"{t['name']} (ordered {t['orderedDate'] or 'unknown'})" for t in workup['pendingTests']], '  None')
        + f"\n- Open Consults ({workup['openConsultCount']}):\n"
        + _lines([f"{c['specialty']} (requested {c['requestedDate'] or 'unknown'})" for c in workup['openConsults']],
                 '  None')
        + "\n\nCURRENT MEDICATIONS:\n"
        + _lines([m['name'] for m in snapshot['currentMedications']], 'None documented')
        + "\n\nSCHEDULED FOLLOW-UP APPOINTMENTS:\n"
        + _lines([f"{a['type']} on {a['date']}" for a in snapshot['scheduledAppointments']], 'None scheduled')
    )
