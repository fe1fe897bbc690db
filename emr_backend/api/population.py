"""
Population Health API Routes
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from emr_backend.services.fhir_client import AidboxClient, get_fhir_client
from emr_backend.services.cds_context import load_measure_data, load_patient_snapshot
from emr_backend.services.quality_measures import (
    calculate_all_measures, get_patient_gaps, get_population_gaps
)
from emr_backend.services.risk_stratification import (
    calculate_patient_risk, stratify_population, summarize_cohorts
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/population", tags=["Population Health"])

MAX_PATIENTS = 1000


@router.get("/risk-cohorts")
async def risk_cohorts(
    patientId: Optional[str] = Query(None, description="Return a single patient's risk instead"),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Stratify every patient on the FHIR server into risk cohorts"""
    if patientId:
        patient = await client.read('Patient', patientId)
        snapshot = await load_patient_snapshot(client, patient)
        return {'success': True, 'risk': calculate_patient_risk(snapshot).to_dict()}

    patients = await client.search_resources('Patient', {'_count': MAX_PATIENTS})
    snapshots = await asyncio.gather(*(load_patient_snapshot(client, p) for p in patients))

    cohorts = stratify_population(list(snapshots))
    return {
        'success': True,
        'cohorts': cohorts,
        'summary': summarize_cohorts(cohorts, len(snapshots)),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


@router.get("/metrics")
async def quality_metrics(
    measures: Optional[str] = Query(None, description="Comma-separated HEDIS measure ids"),
    patientId: Optional[str] = Query(None, description="Return a single patient's open measure gaps instead"),
    client: AidboxClient = Depends(get_fhir_client)
):
    """HEDIS quality measure performance across every patient on the FHIR server"""
    if patientId:
        patient = await client.read('Patient', patientId)
        data = await load_measure_data(client, patient)
        return {'success': True, 'patientId': patientId, 'gaps': get_patient_gaps(data)}

    measure_ids = [m.strip() for m in measures.split(',') if m.strip()] if measures else None

    patients = await client.search_resources('Patient', {'_count': MAX_PATIENTS})
    data = list(await asyncio.gather(*(load_measure_data(client, p) for p in patients)))

    return {
        'success': True,
        **calculate_all_measures(data, measure_ids),
        'careGaps': get_population_gaps(data),
    }
