"""
AI Assist API Routes
Ambient scribe (transcribe -> extract -> SOAP), diagnostic suggestions,
encounter summaries and discharge readiness.
"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from emr_backend.database.models import User
from emr_backend.services.auth_service import get_current_user
from emr_backend.services.audit_service import audit_service
from emr_backend.services.fhir_client import AidboxClient, get_fhir_client
from emr_backend.services.discharge_planning import (
    EncounterContextError, build_discharge_snapshot, load_encounter_context
)
from emr_backend.services.ai import (
    AIProvider, RateLimiter, TranscriptionOptions, default_provider_name, get_default_provider,
    get_llm_rate_limiter, list_providers
)
from emr_backend.services.ai.schemas import SUMMARY_DISCLAIMER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI Assist"])

AI_SCRIBE_EXTENSION = "https://emr-ai.example.org/ext/ai-scribe-generated"


def get_scribe_provider() -> AIProvider:
    """FastAPI dependency for the configured AI provider"""
    return get_default_provider()


class ExtractRequest(BaseModel):
    transcript: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    patientContext: Optional[Dict[str, Any]] = None


class GenerateSoapRequest(BaseModel):
    patientId: Optional[str] = None
    encounterId: Optional[str] = None
    transcript: Optional[str] = None
    extraction: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    patientContext: Optional[Dict[str, Any]] = None
    saveToFHIR: bool = True


class DiagnosticAssistRequest(BaseModel):
    selectedText: Optional[str] = None
    patientId: Optional[str] = None
    encounterId: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class SummarizeRequest(BaseModel):
    encounterId: str
    summaryType: Literal["clinical", "handoff", "brief"] = "clinical"
    patientContext: Optional[Dict[str, Any]] = None


def _summary(text: str, length: int = 100) -> str:
    return text if len(text) <= length else text[:length] + "..."


def soap_note_text(soap: Dict[str, Any]) -> str:
    return (
        f"SUBJECTIVE:\n{soap.get('subjective', '')}\n\n"
        f"OBJECTIVE:\n{soap.get('objective', '')}\n\n"
        f"ASSESSMENT:\n{soap.get('assessment', '')}\n\n"
        f"PLAN:\n{soap.get('plan', '')}"
    )


def build_soap_document_reference(patient_id: str, encounter_id: Optional[str],
                                  soap: Dict[str, Any]) -> Dict[str, Any]:
    """Preliminary progress note DocumentReference holding the generated SOAP text"""
    document = {
        'resourceType': 'DocumentReference',
        'status': 'current',
        'docStatus': 'preliminary',
        'type': {
            'coding': [{'system': 'http://loinc.org', 'code': '11506-3', 'display': 'Progress Note'}],
            'text': 'AI Scribe SOAP Note',
        },
        'subject': {'reference': f"Patient/{patient_id}"},
        'date': datetime.now(timezone.utc).isoformat(),
        'author': [{'display': 'AI Scribe'}],
        'content': [{
            'attachment': {
                'contentType': 'text/plain',
                'data': base64.b64encode(soap_note_text(soap).encode('utf-8')).decode('ascii'),
            }
        }],
        'extension': [{'url': AI_SCRIBE_EXTENSION, 'valueBoolean': True}],
    }
    if encounter_id:
        document['context'] = {'encounter': [{'reference': f"Encounter/{encounter_id}"}]}
    return document


# ==================== Scribe ====================

@router.post("/scribe/transcribe")
async def transcribe(
    audio: Optional[UploadFile] = File(None),
    language: Optional[str] = Form(None),
    speakerDiarization: Optional[str] = Form(None),
    vocabularyHint: Optional[str] = Form(None, description="Comma-separated medical terms"),
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    current_user: User = Depends(get_current_user)
):
    if audio is None:
        raise HTTPException(status_code=400, detail="Audio file is required")

    data = await audio.read()
    options = TranscriptionOptions(
        language=language or 'en',
        speaker_diarization=speakerDiarization == 'true',
        vocabulary_hint=[t.strip() for t in vocabularyHint.split(',') if t.strip()] if vocabularyHint else [],
    )
    await limiter.acquire()
    transcript = await provider.transcribe(data, audio.filename or 'audio.webm', options)
    logger.info(f"Transcribed {len(data)} bytes with {provider.name} for {current_user.username}")

    return {'success': True, 'transcript': transcript, 'provider': provider.name}


@router.post("/scribe/extract")
async def extract(
    request: ExtractRequest,
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    current_user: User = Depends(get_current_user)
):
    if not request.transcript:
        raise HTTPException(status_code=400, detail="Transcript is required")

    await limiter.acquire()
    extraction = await provider.extract_clinical(request.transcript, request.context or request.patientContext)
    return {'success': True, 'extraction': extraction, 'provider': provider.name}


@router.post("/scribe/generate-soap")
async def generate_soap(
    request: GenerateSoapRequest,
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    client: AidboxClient = Depends(get_fhir_client),
    current_user: User = Depends(get_current_user)
):
    """
    Write a SOAP note from an extraction, or from a raw transcript
    (extracted first), and optionally file it on the FHIR server
    """
    if not request.patientId:
        raise HTTPException(status_code=400, detail="patientId is required")
    if not request.transcript and not request.extraction:
        raise HTTPException(status_code=400, detail="Either transcript or extraction is required")

    context = request.context or request.patientContext
    extraction = request.extraction
    if extraction is None:
        await limiter.acquire()
        extraction = await provider.extract_clinical(request.transcript, context)

    await limiter.acquire()
    soap = await provider.generate_soap(extraction, context)

    document_reference_id = None
    if request.saveToFHIR:
        created = await client.create(
            'DocumentReference',
            build_soap_document_reference(request.patientId, request.encounterId, soap)
        )
        document_reference_id = (created or {}).get('id')

    audit_service.log_ai_interaction(
        user_id=current_user.id,
        user_name=current_user.full_name,
        user_role=current_user.role.value,
        interaction_type='scribe',
        patient_id=request.patientId,
        encounter_id=request.encounterId,
        input_summary=_summary(request.transcript or 'structured extraction'),
        output_summary=f"SOAP note{' saved as DocumentReference/' + document_reference_id if document_reference_id else ''}",
    )

    return {
        'success': True,
        'soap': soap,
        'extraction': extraction,
        'documentReferenceId': document_reference_id,
        'provider': provider.name,
    }


# ==================== Diagnostic Assist ====================

@router.post("/diagnostic-assist")
async def diagnostic_assist(
    request: DiagnosticAssistRequest,
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    current_user: User = Depends(get_current_user)
):
    """Differential diagnosis suggestions for highlighted note text"""
    if not request.selectedText:
        raise HTTPException(status_code=400, detail="Selected text is required")

    await limiter.acquire()
    result = await provider.diagnostic_assist(request.selectedText, request.context)

    audit_service.log_ai_interaction(
        user_id=current_user.id,
        user_name=current_user.full_name,
        user_role=current_user.role.value,
        interaction_type='diagnostic',
        patient_id=request.patientId,
        encounter_id=request.encounterId,
        input_summary=_summary(request.selectedText),
        output_summary=f"{len(result.get('suggestions') or [])} suggestions",
    )

    return {'success': True, 'data': result, 'provider': provider.name}


# ==================== Summaries & Discharge ====================

async def _encounter_context(client: AidboxClient, encounter_id: str) -> Dict[str, Any]:
    try:
        return await load_encounter_context(client, encounter_id)
    except EncounterContextError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/summarize")
async def summarize(
    request: SummarizeRequest,
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    client: AidboxClient = Depends(get_fhir_client),
    current_user: User = Depends(get_current_user)
):
    """
    Clinical, brief or handoff summary of an encounter. The chart is read
    from the FHIR server unless the caller supplies patientContext.
    """
    context = request.patientContext or await _encounter_context(client, request.encounterId)

    await limiter.acquire()
    summary = await provider.summarize(context, request.summaryType)

    patient_id = (context.get('patient') or {}).get('id')
    audit_service.log_ai_interaction(
        user_id=current_user.id,
        user_name=current_user.full_name,
        user_role=current_user.role.value,
        interaction_type='summary',
        patient_id=patient_id,
        encounter_id=request.encounterId,
        input_summary=f"{request.summaryType} summary for Encounter/{request.encounterId}",
        output_summary=_summary(summary.get('oneLiner') or summary.get('briefSummary') or ''),
    )

    key = 'handoffSummary' if request.summaryType == 'handoff' else 'clinicalSummary'
    return {
        'success': True,
        'data': {'summaryType': request.summaryType, key: summary, 'disclaimer': SUMMARY_DISCLAIMER},
        'provider': provider.name,
    }


@router.get("/discharge-readiness/{encounterId}")
async def discharge_readiness(
    encounterId: str,
    provider: AIProvider = Depends(get_scribe_provider),
    limiter: RateLimiter = Depends(get_llm_rate_limiter),
    client: AidboxClient = Depends(get_fhir_client),
    current_user: User = Depends(get_current_user)
):
    context = await _encounter_context(client, encounterId)
    snapshot = build_discharge_snapshot(context)

    await limiter.acquire()
    assessment = await provider.assess_discharge_readiness(snapshot)

    audit_service.log_ai_interaction(
        user_id=current_user.id,
        user_name=current_user.full_name,
        user_role=current_user.role.value,
        interaction_type='discharge',
        patient_id=snapshot['patient']['id'],
        encounter_id=encounterId,
        input_summary=f"Discharge readiness for Encounter/{encounterId}",
        output_summary=f"{assessment['readinessLevel']} ({assessment['readinessScore']})",
    )
    logger.info(f"Discharge readiness for encounter {encounterId}: {assessment['readinessLevel']}")

    return {'success': True, 'data': assessment, 'provider': provider.name}


@router.get("/providers")
async def providers(limiter: RateLimiter = Depends(get_llm_rate_limiter)):
    return {
        'success': True,
        'providers': list_providers(),
        'default': default_provider_name(),
        'rateLimiter': limiter.status(),
    }
