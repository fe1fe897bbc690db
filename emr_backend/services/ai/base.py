"""
AI Provider Interface
Contract shared by the transcription / clinical extraction / note generation backends,
plus the runtime registry used to pick one.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from emr_backend.config import settings
from emr_backend.services.ai.prompts import (
    CLINICAL_SUMMARY_PROMPT, DISCHARGE_READINESS_PROMPT, HANDOFF_SUMMARY_PROMPT,
    clinical_summary_prompt, discharge_readiness_prompt, handoff_summary_prompt
)
from emr_backend.services.ai.schemas import ClinicalSummary, DischargeReadiness, HandoffSummary

logger = logging.getLogger(__name__)

AI_DISCLAIMER = (
    "This is AI-generated decision support only. Clinical judgment is required "
    "for all diagnostic and treatment decisions."
)


class AIProviderError(Exception):
    """Upstream model call failed or the provider is unusable"""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class TranscriptionOptions:
    language: str = "en"
    speaker_diarization: bool = False
    vocabulary_hint: List[str] = field(default_factory=list)


def describe_context(context: Optional[Dict[str, Any]]) -> str:
    """Patient context block appended to extraction prompts"""
    if not context:
        return ""

    def joined(key: str) -> str:
        return ", ".join(context.get(key) or []) or "None provided"

    return (
        "\n\nPatient Context:\n"
        f"- Name: {context.get('patientName') or 'Unknown'}\n"
        f"- Age: {context.get('age') or 'Unknown'}\n"
        f"- Gender: {context.get('gender') or 'Unknown'}\n"
        f"- Known Conditions: {joined('conditions')}\n"
        f"- Current Medications: {joined('medications')}\n"
        f"- Known Allergies: {joined('allergies')}"
    )


class AIProvider(ABC):
    """A backend able to transcribe audio and write clinical documentation"""

    name: str = ""

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str = "audio.webm",
                         options: TranscriptionOptions = None) -> Dict[str, Any]:
        """Audio to {text, segments, language, duration}"""

    @abstractmethod
    async def extract_clinical(self, transcript: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        """Structured clinical facts (chiefComplaint, assessment, plan, ...) from a transcript"""

    @abstractmethod
    async def generate_soap(self, extraction: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        """SOAP note {subjective, objective, assessment, plan, sections}"""

    @abstractmethod
    async def diagnostic_assist(self, selected_text: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        """Differential suggestions with ICD-10 codes for a piece of note text"""

    async def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> Dict[str, Any]:
        """A JSON object answering a system/user prompt pair"""
        raise AIProviderError(f"AI provider '{self.name}' does not support free-form completion", status_code=501)

    async def summarize(self, context: Dict[str, Any], summary_type: str = "clinical") -> Dict[str, Any]:
        """
        Clinical or handoff summary of an encounter.

        The context holds FHIR resources: patient, encounter, conditions,
        observations, medications, diagnosticReports, procedures, notes,
        pendingTests and activeTasks. A "brief" summary uses the clinical format.
        """
        if summary_type == "handoff":
            raw = await self.complete_json(HANDOFF_SUMMARY_PROMPT, handoff_summary_prompt(context))
            return validate_output(HandoffSummary, stamped(raw), "Handoff summary")

        raw = await self.complete_json(CLINICAL_SUMMARY_PROMPT, clinical_summary_prompt(context))
        return validate_output(ClinicalSummary, stamped(raw), "Clinical summary")

    async def assess_discharge_readiness(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        """Readiness level, score, blockers and follow-up needs for a discharge snapshot"""
        raw = await self.complete_json(
            DISCHARGE_READINESS_PROMPT, discharge_readiness_prompt(snapshot), temperature=0.1
        )
        return validate_output(DischargeReadiness, raw, "Discharge readiness")


def stamped(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {**raw, 'generatedAt': raw.get('generatedAt') or datetime.now(timezone.utc).isoformat()}


def validate_output(model: Type[BaseModel], raw: Dict[str, Any], what: str) -> Dict[str, Any]:
    """Model answer checked against its schema; a mismatch is an upstream failure"""
    try:
        return model.model_validate(raw).model_dump(exclude_none=True)
    except ValidationError as e:
        logger.error(f"{what} response failed validation: {e}")
        raise AIProviderError(f"{what} response did not match the expected format ({e.error_count()} errors)")


# ==================== Registry ====================

_providers: Dict[str, AIProvider] = {}


def register_provider(provider: AIProvider) -> None:
    _providers[provider.name] = provider
    logger.debug(f"Registered AI provider: {provider.name}")


def get_provider(name: str) -> AIProvider:
    provider = _providers.get(name)
    if provider is None:
        available = ", ".join(_providers.keys())
        raise AIProviderError(f"AI provider '{name}' not registered. Available: {available}", status_code=500)
    return provider


def default_provider_name() -> str:
    return "mock" if settings.LLM_MOCK else settings.AI_SCRIBE_PROVIDER


def get_default_provider() -> AIProvider:
    return get_provider(default_provider_name())


def list_providers() -> List[str]:
    return list(_providers.keys())
