"""
Clinical Decision Support API Routes
Sepsis screening, inpatient risk scores, care gaps and medication safety checks.
"""
import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from emr_backend.services.fhir_client import AidboxClient, get_fhir_client
from emr_backend.services.cds_context import (
    load_sepsis_inputs, load_risk_factors, load_care_gap_demographics, load_medications_and_allergies
)
from emr_backend.services.sepsis_scoring import calculate_sepsis_risk
from emr_backend.services.risk_models import calculate_all_risk_scores
from emr_backend.services.care_gaps import calculate_care_gaps
from emr_backend.services.drug_interaction_service import PatientAllergy, drug_interaction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cds", tags=["Clinical Decision Support"])


def _require_patient_id(patient_id: Optional[str]) -> str:
    if not patient_id:
        raise HTTPException(status_code=400, detail="patientId is required")
    return patient_id


@router.get("/sepsis-risk")
async def sepsis_risk(
    patientId: Optional[str] = Query(None),
    client: AidboxClient = Depends(get_fhir_client)
):
    """qSOFA, SIRS and NEWS2 from the patient's latest vitals and labs"""
    patient_id = _require_patient_id(patientId)
    vitals, labs = await load_sepsis_inputs(client, patient_id)
    result = calculate_sepsis_risk(patient_id, vitals, labs)

    return {
        'success': True,
        **result.to_dict(),
        'vitalsUsed': vitals.to_dict(),
        'labsUsed': labs.to_dict(),
    }


@router.get("/risk-scores")
async def risk_scores(
    patientId: Optional[str] = Query(None),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Morse fall, LACE readmission and Braden pressure ulcer scores"""
    patient_id = _require_patient_id(patientId)
    factors = await load_risk_factors(client, patient_id)
    result = calculate_all_risk_scores(patient_id, factors)

    return {'success': True, **result.to_dict(), 'factorsUsed': factors.to_dict()}


@router.get("/care-gaps")
async def care_gaps(
    patientId: Optional[str] = Query(None),
    client: AidboxClient = Depends(get_fhir_client)
):
    patient_id = _require_patient_id(patientId)
    demographics = await load_care_gap_demographics(client, patient_id)
    return {'success': True, **calculate_care_gaps(patient_id, demographics)}


# ==================== Drug Interactions ====================

class AllergyInput(BaseModel):
    allergen: str
    severity: str = "unknown"


class InteractionCheckRequest(BaseModel):
    patientId: Optional[str] = None
    medications: List[str] = []
    allergies: List[Union[str, AllergyInput]] = []


async def _check_patient(client: AidboxClient, patient_id: str) -> dict:
    medications, allergies = await load_medications_and_allergies(client, patient_id)
    result = drug_interaction_service.check_all_interactions(medications, allergies)
    return {
        'success': True,
        'patientId': patient_id,
        'medicationCount': len(medications),
        'allergyCount': len(allergies),
        **result.to_dict(),
    }


@router.get("/drug-interactions")
async def patient_drug_interactions(
    patientId: Optional[str] = Query(None),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Check a patient's active medications against each other and their allergies"""
    return await _check_patient(client, _require_patient_id(patientId))


@router.post("/drug-interactions")
async def check_drug_interactions(
    request: InteractionCheckRequest,
    client: AidboxClient = Depends(get_fhir_client)
):
    """
    Check an explicit medication/allergy list, or a patient's chart when patientId is given
    """
    if request.patientId:
        return await _check_patient(client, request.patientId)

    if not request.medications:
        raise HTTPException(status_code=400, detail="medications or patientId is required")

    allergies = [
        PatientAllergy(allergen=a) if isinstance(a, str) else PatientAllergy(a.allergen, a.severity)
        for a in request.allergies
    ]
    result = drug_interaction_service.check_all_interactions(request.medications, allergies)
    return {
        'success': True,
        'medicationCount': len(request.medications),
        'allergyCount': len(allergies),
        **result.to_dict(),
    }
