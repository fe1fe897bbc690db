"""
BastionGPT Provider
HIPAA-compliant hosted models behind a REST API with Bearer key auth.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from emr_backend.config import settings
from emr_backend.services.ai.base import AI_DISCLAIMER, AIProvider, AIProviderError, TranscriptionOptions
from emr_backend.services.ai.prompts import parse_json_response

logger = logging.getLogger(__name__)


class BastionGPTProvider(AIProvider):
    name = "bastiongpt"

    def __init__(self, base_url: str = None, api_key: str = None,
                 model: str = "bastion-medical-v1", transcription_model: str = "bastion-whisper",
                 timeout: float = 120.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.BASTIONGPT_BASE_URL).rstrip("/")
        self.api_key = api_key or settings.BASTIONGPT_API_KEY
        self.model = model
        self.transcription_model = transcription_model
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AIProviderError(
                "BastionGPT API key not configured. Set BASTIONGPT_API_KEY environment variable.",
                status_code=500,
            )
        return {'Authorization': f"Bearer {self.api_key}"}

    async def _post(self, path: str, what: str, **kwargs) -> Dict[str, Any]:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self.transport) as client:
                response = await client.post(path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"BastionGPT {what} request failed: {e}")
            raise AIProviderError(f"BastionGPT {what} failed: {e}")

        if response.status_code >= 400:
            logger.error(f"BastionGPT {what} returned {response.status_code}")
            raise AIProviderError(f"BastionGPT {what} failed: {response.status_code}")
        return response.json()

    async def transcribe(self, audio: bytes, filename: str = "audio.webm",
                         options: TranscriptionOptions = None) -> Dict[str, Any]:
        options = options or TranscriptionOptions()
        form = {'model': self.transcription_model}
        if options.language:
            form['language'] = options.language
        if options.speaker_diarization:
            form['diarization'] = 'true'

        data = await self._post(
            "/audio/transcriptions", "transcription",
            data=form, files={'file': (filename, audio, 'audio/webm')},
        )
        return {
            'text': data.get('text', ''),
            'segments': data.get('segments') or [],
            'language': data.get('language'),
            'duration': data.get('duration'),
            'confidence': data.get('confidence'),
        }

    @staticmethod
    def _context(context: Optional[Dict[str, Any]], *keys: str) -> Optional[Dict[str, Any]]:
        if not context:
            return None
        # Upstream API expects snake_case keys
        mapping = {
            'patientName': 'patient_name',
            'encounterType': 'encounter_type',
        }
        return {mapping.get(k, k): context.get(k) for k in keys}

    async def extract_clinical(self, transcript: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        return await self._post("/clinical/extract", "extraction", json={
            'model': self.model,
            'transcript': transcript,
            'context': self._context(context, 'patientName', 'age', 'gender',
                                     'conditions', 'medications', 'allergies'),
        })

    async def generate_soap(self, extraction: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        return await self._post("/clinical/soap", "SOAP generation", json={
            'model': self.model,
            'extraction': extraction,
            'context': self._context(context, 'patientName', 'age', 'gender', 'encounterType'),
        })

    async def diagnostic_assist(self, selected_text: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        result = await self._post("/clinical/diagnostic-assist", "diagnostic assist", json={
            'model': self.model,
            'text': selected_text,
            'context': self._context(context, 'patientName', 'age', 'gender', 'conditions'),
        })
        result.setdefault('disclaimer', AI_DISCLAIMER)
        return result

    async def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> Dict[str, Any]:
        data = await self._post("/chat/completions", "completion", json={
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            'temperature': temperature,
            'response_format': {'type': 'json_object'},
        })
        choices = data.get('choices') or []
        content = ((choices[0].get('message') or {}).get('content')) if choices else None
        if not content:
            raise AIProviderError("No content in response")
        try:
            return parse_json_response(content)
        except ValueError as e:
            raise AIProviderError(f"Model returned invalid JSON: {e}")
