"""
FHIR Passthrough API Routes
Raw proxy to the FHIR server and the aggregated patient chart.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from emr_backend.services.fhir_client import AidboxClient, FhirError, get_fhir_client
from emr_backend.services.cds_context import calculate_age, display_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fhir", tags=["FHIR"])


@router.get("/proxy")
async def fhir_proxy(
    path: Optional[str] = Query(None, description="FHIR path and query string, e.g. Patient?name=smith"),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Forward a GET to the FHIR server and return its JSON unchanged"""
    if not path:
        raise HTTPException(status_code=400, detail="Missing path parameter")

    try:
        return await client.get_raw(path)
    except FhirError as e:
        # Mirror the upstream failure, OperationOutcome included
        if e.outcome is not None:
            return JSONResponse(status_code=e.status_code, content=e.outcome)
        raise


def build_chart_snapshot(patient: Dict[str, Any], encounters, conditions, vitals, labs,
                         medications, allergies, imaging) -> Dict[str, Any]:
    encounter = encounters[0] if encounters else None
    locations = (encounter or {}).get('location') or []
    addresses = patient.get('address') or []
    identifiers = patient.get('identifier') or []

    return {
        'patient': {
            'id': patient.get('id', ''),
            'name': display_name(patient) or 'Unknown',
            'mrn': identifiers[0].get('value') if identifiers else None,
            'age': calculate_age(patient['birthDate']) if patient.get('birthDate') else None,
            'gender': patient.get('gender'),
            'location': ((locations[0].get('location') or {}).get('display') if locations else None)
            or (addresses[0].get('text') if addresses else None),
            'admitDate': ((encounter or {}).get('period') or {}).get('start'),
        },
        'vitals': vitals,
        'labs': labs,
        'conditions': conditions,
        'medications': medications,
        'allergies': allergies,
        'imaging': imaging,
        'encounter': encounter,
    }


@router.get("/patient-chart")
async def patient_chart(
    patientId: Optional[str] = Query(None),
    id: Optional[str] = Query(None, description="Alias for patientId"),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Aggregate the resources the chart header and summary panels need"""
    patient_id = patientId or id
    if not patient_id:
        raise HTTPException(status_code=400, detail="patientId is required")

    subject = f"Patient/{patient_id}"
    patient, encounters, conditions, vitals, labs, medications, allergies, imaging = await asyncio.gather(
        client.read('Patient', patient_id),
        client.search_resources('Encounter', {'subject': subject, '_sort': '-date', '_count': 20}),
        client.search_resources('Condition', {'subject': subject, '_count': 100}),
        client.search_resources('Observation', {
            'subject': subject, 'category': 'vital-signs', '_sort': '-date', '_count': 50
        }),
        client.search_resources('Observation', {
            'subject': subject, 'category': 'laboratory', '_sort': '-date', '_count': 50
        }),
        client.search_resources('MedicationRequest', {'subject': subject, 'status': 'active', '_count': 100}),
        client.search_resources('AllergyIntolerance', {'patient': subject, '_count': 50}),
        client.search_resources('DiagnosticReport', {'subject': subject, 'category': 'imaging', '_count': 20}),
    )

    return {
        'success': True,
        'data': build_chart_snapshot(patient, encounters, conditions, vitals, labs,
                                     medications, allergies, imaging),
    }
