"""
Output schemas for free-form model answers (summaries, discharge readiness).
Model JSON is checked against these before it reaches a client.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

SUMMARY_DISCLAIMER = "AI-generated summary for clinical decision support. Verify all information before use."
DISCHARGE_DISCLAIMER = (
    "This is an AI-generated assessment for decision support only. "
    "Clinical judgment is required for all discharge decisions."
)


# ==================== Clinical summary ====================

class PatientOverview(BaseModel):
    demographics: str
    chiefComplaint: str
    admissionDate: Optional[str] = None
    lengthOfStay: Optional[str] = None


class KeyFinding(BaseModel):
    category: Literal['diagnosis', 'lab', 'imaging', 'procedure', 'consult']
    finding: str
    significance: Literal['critical', 'significant', 'routine']
    date: Optional[str] = None


class ActiveDiagnosis(BaseModel):
    diagnosis: str
    icd10: Optional[str] = None
    status: Literal['active', 'resolving', 'resolved']
    notes: Optional[str] = None


class SummaryMedication(BaseModel):
    medication: str
    dose: str
    frequency: str
    indication: Optional[str] = None
    isNew: bool = False


class PendingItem(BaseModel):
    item: str
    type: Literal['test', 'consult', 'procedure', 'followup']
    status: str
    expectedDate: Optional[str] = None


class SummaryStatus(BaseModel):
    stability: Literal['stable', 'improving', 'worsening', 'critical']
    oxygenRequirement: str
    mobilityStatus: str
    dietStatus: str
    ivAccess: bool


class ClinicalSummary(BaseModel):
    patientOverview: PatientOverview
    hospitalCourse: str
    keyFindings: List[KeyFinding] = []
    activeDiagnoses: List[ActiveDiagnosis] = []
    currentMedications: List[SummaryMedication] = []
    pendingItems: List[PendingItem] = []
    clinicalStatus: SummaryStatus
    briefSummary: str
    generatedAt: str


# ==================== Handoff ====================

class HandoffPatient(BaseModel):
    name: str
    age: str
    room: str
    primaryTeam: Optional[str] = None


class ActiveIssue(BaseModel):
    issue: str
    plan: str
    overnight: str


class CriticalValue(BaseModel):
    lab: str
    value: str
    trend: Literal['improving', 'stable', 'worsening']


class Contingency(BaseModel):
    condition: str
    action: str


class ContactInfo(BaseModel):
    primaryProvider: Optional[str] = None
    consultants: List[str] = []


class HandoffSummary(BaseModel):
    patient: HandoffPatient
    oneLiner: str
    activeIssues: List[ActiveIssue] = []
    codeStatus: str
    allergies: List[str] = []
    criticalValues: List[CriticalValue] = []
    anticipatedEvents: List[str] = []
    ifThenStatements: List[Contingency] = []
    contactInfo: ContactInfo = ContactInfo()
    generatedAt: str


# ==================== Discharge readiness ====================

class BlockingFactor(BaseModel):
    factor: str
    category: Literal['clinical', 'workup', 'social', 'logistical']
    details: str
    estimatedResolutionTime: str
    responsibleParty: Optional[str] = None


class DischargeClinicalStatus(BaseModel):
    vitalsStable: bool
    vitalsNotes: str
    labsAcceptable: bool
    labsNotes: str
    symptomsControlled: bool
    symptomsNotes: str
    oxygenRequirement: str
    mobilityStatus: str
    painControlled: Optional[bool] = None
    painNotes: Optional[str] = None


class FollowupNeed(BaseModel):
    specialty: str
    timeframe: Literal['within_1_week', 'within_2_weeks', 'within_1_month', 'as_needed']
    reason: str
    mode: Literal['in_person', 'telemedicine', 'either']
    priority: Literal['critical', 'high', 'routine']


class PendingTest(BaseModel):
    testName: str
    orderedDate: Optional[str] = None
    expectedResultDate: Optional[str] = None
    criticalForDischarge: bool


class SafetyCheck(BaseModel):
    item: str
    category: Literal['medication', 'education', 'equipment', 'safety', 'social']
    completed: bool
    notes: Optional[str] = None


class DischargeReadiness(BaseModel):
    readinessLevel: Literal['READY_TODAY', 'READY_SOON', 'NOT_READY']
    readinessScore: int = Field(ge=0, le=100)
    readinessReasons: List[str] = []
    blockingFactors: List[BlockingFactor] = []
    clinicalStatus: DischargeClinicalStatus
    followupNeeds: List[FollowupNeed] = []
    pendingTests: List[PendingTest] = []
    safetyChecks: List[SafetyCheck] = []
    estimatedDischargeDate: Optional[str] = None
    dischargeDisposition: Optional[Literal[
        'home', 'home_with_services', 'skilled_nursing', 'rehab', 'ltac', 'hospice', 'other'
    ]] = None
    disclaimer: str = DISCHARGE_DISCLAIMER

