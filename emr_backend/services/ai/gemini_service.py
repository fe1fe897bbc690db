"""
Gemini AI Service - Clinical documentation via Google Vertex AI
Uses service account authentication (no API key needed)
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

import vertexai
from vertexai.generative_models import GenerativeModel, Part, SafetySetting, HarmCategory, HarmBlockThreshold
from google.api_core.exceptions import GoogleAPIError
from google.oauth2 import service_account

from emr_backend.config import settings
from emr_backend.services.ai.base import (
    AI_DISCLAIMER, AIProvider, AIProviderError, TranscriptionOptions, describe_context
)
from emr_backend.services.ai.prompts import (
    CLINICAL_EXTRACTION_PROMPT, DIAGNOSTIC_ASSIST_PROMPT, SOAP_GENERATION_PROMPT,
    parse_json_response, soap_context, soap_note_from_text
)

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPES = {
    'webm': 'audio/webm',
    'wav': 'audio/wav',
    'mp3': 'audio/mpeg',
    'm4a': 'audio/mp4',
    'ogg': 'audio/ogg',
    'flac': 'audio/flac',
}


class GeminiService(AIProvider):
    """
    Google Gemini via Vertex AI

    Vertex AI is initialized on first use so that importing the module
    never needs credentials.
    """

    name = "gemini"

    def __init__(self, credentials_path: str = None, model_name: str = None, location: str = None):
        self.credentials_path = credentials_path or settings.GOOGLE_APPLICATION_CREDENTIALS
        self.model_name = model_name or settings.GEMINI_MODEL
        self.location = location or settings.GEMINI_LOCATION
        self.project_id = None
        self.model: Optional[GenerativeModel] = None
        self.initialized = False

        # Safety settings - allow medical content
        self.safety_settings = [
            SafetySetting(category=category, threshold=HarmBlockThreshold.OFF)
            for category in (
                HarmCategory.HARM_CATEGORY_HARASSMENT,
                HarmCategory.HARM_CATEGORY_HATE_SPEECH,
                HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
                HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            )
        ]

    def _initialize(self):
        """Initialize Vertex AI with service account credentials"""
        if self.initialized:
            return

        if not self.credentials_path or not os.path.exists(self.credentials_path):
            logger.error(f"Service account file not found: {self.credentials_path}")
            raise AIProviderError(
                "Gemini not configured. Set GOOGLE_APPLICATION_CREDENTIALS to a service account file.",
                status_code=500,
            )

        with open(self.credentials_path, 'r') as f:
            self.project_id = json.load(f).get('project_id')

        if not self.project_id:
            raise AIProviderError("No project_id found in service account JSON", status_code=500)

        credentials = service_account.Credentials.from_service_account_file(
            self.credentials_path,
            scopes=['https://www.googleapis.com/auth/cloud-platform']
        )

        vertexai.init(project=self.project_id, location=self.location, credentials=credentials)
        self.model = GenerativeModel(self.model_name)
        self.initialized = True

        logger.info(f"Gemini initialized successfully with project: {self.project_id}")

    async def _generate(self, contents: List[Any], temperature: float, json_mode: bool = False) -> str:
        self._initialize()

        generation_config = {
            "temperature": temperature,
            "top_p": 0.8,
            "max_output_tokens": 4096,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        try:
            response = await self.model.generate_content_async(
                contents,
                safety_settings=self.safety_settings,
                generation_config=generation_config,
            )
            text = response.text
        except (GoogleAPIError, ValueError) as e:
            logger.error(f"Gemini generation failed: {e}")
            raise AIProviderError(f"Gemini request failed: {e}")

        if not text:
            raise AIProviderError("No content in response")
        return text

    async def transcribe(self, audio: bytes, filename: str = "audio.webm",
                         options: TranscriptionOptions = None) -> Dict[str, Any]:
        options = options or TranscriptionOptions()
        ext = filename.lower().rsplit('.', 1)[-1]
        audio_part = Part.from_data(data=audio, mime_type=AUDIO_MIME_TYPES.get(ext, 'audio/webm'))

        prompt = f"Transcribe this clinical encounter recording verbatim. Language: {options.language or 'en'}."
        if options.speaker_diarization:
            prompt += " Prefix each speaker turn with 'Clinician:' or 'Patient:'."
        if options.vocabulary_hint:
            prompt += f" Expect these terms: {', '.join(options.vocabulary_hint)}."
        prompt += " Respond with the transcript text only."

        text = await self._generate([prompt, audio_part], temperature=0.0)
        return {'text': text.strip(), 'language': options.language or 'en', 'segments': []}

    async def extract_clinical(self, transcript: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        prompt = f"{CLINICAL_EXTRACTION_PROMPT}{describe_context(context)}\n\nTranscript:\n\n{transcript}"
        text = await self._generate([prompt], temperature=0.3, json_mode=True)
        try:
            return parse_json_response(text)
        except ValueError as e:
            raise AIProviderError(f"Clinical extraction failed: {e}")

    async def generate_soap(self, extraction: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        prompt = (
            f"{SOAP_GENERATION_PROMPT}{soap_context(context)}\n\n"
            f"Clinical Extraction:\n\n{json.dumps(extraction, indent=2)}"
        )
        text = await self._generate([prompt], temperature=0.4)
        return soap_note_from_text(text, extraction)

    async def diagnostic_assist(self, selected_text: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        prompt = f"{DIAGNOSTIC_ASSIST_PROMPT}{describe_context(context)}\n\nClinical text:\n\n{selected_text}"
        text = await self._generate([prompt], temperature=0.3, json_mode=True)
        try:
            result = parse_json_response(text)
        except ValueError as e:
            raise AIProviderError(f"Diagnostic assist failed: {e}")
        result['disclaimer'] = AI_DISCLAIMER
        return result

    async def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> Dict[str, Any]:
        text = await self._generate([f"{system_prompt}\n\n{user_prompt}"], temperature=temperature, json_mode=True)
        try:
            return parse_json_response(text)
        except ValueError as e:
            raise AIProviderError(f"Model returned invalid JSON: {e}")
