"""
OpenAI Provider
Whisper for transcription, chat completions for extraction and note writing.
"""
import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from emr_backend.config import settings
from emr_backend.services.ai.base import (
    AI_DISCLAIMER, AIProvider, AIProviderError, TranscriptionOptions, describe_context
)
from emr_backend.services.ai.prompts import (
    CLINICAL_EXTRACTION_PROMPT, DIAGNOSTIC_ASSIST_PROMPT, SOAP_GENERATION_PROMPT,
    parse_json_response, soap_context, soap_note_from_text
)

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    name = "openai"

    def __init__(self, api_key: str = None, chat_model: str = None, transcribe_model: str = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.chat_model = chat_model or settings.OPENAI_CHAT_MODEL
        self.transcribe_model = transcribe_model or settings.OPENAI_TRANSCRIBE_MODEL
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise AIProviderError("OpenAI API key not configured. Set OPENAI_API_KEY.", status_code=500)
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def transcribe(self, audio: bytes, filename: str = "audio.webm",
                         options: TranscriptionOptions = None) -> Dict[str, Any]:
        options = options or TranscriptionOptions()
        try:
            response = await self.client.audio.transcriptions.create(
                file=(filename, audio),
                model=self.transcribe_model,
                language=options.language or "en",
                response_format="verbose_json",
                prompt=", ".join(options.vocabulary_hint) if options.vocabulary_hint else None,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI transcription error: {e}")
            raise AIProviderError(f"Transcription failed: {e}")

        segments = getattr(response, "segments", None) or []
        return {
            'text': response.text,
            'language': getattr(response, "language", None),
            'duration': getattr(response, "duration", None),
            'segments': [
                {'id': i, 'start': seg.start, 'end': seg.end, 'text': seg.text}
                for i, seg in enumerate(segments)
            ],
        }

    async def _chat(self, system_prompt: str, user_prompt: str, temperature: float,
                    json_mode: bool = False) -> str:
        kwargs = {}
        if json_mode:
            kwargs['response_format'] = {'type': 'json_object'}
        try:
            response = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=[
                    {'role': 'system', 'content': system_prompt},
                    {'role': 'user', 'content': user_prompt},
                ],
                temperature=temperature,
                **kwargs,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI chat completion error: {e}")
            raise AIProviderError(f"OpenAI request failed: {e}")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AIProviderError("No content in response")
        return content

    async def extract_clinical(self, transcript: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        content = await self._chat(
            CLINICAL_EXTRACTION_PROMPT + describe_context(context),
            f"Transcript:\n\n{transcript}",
            temperature=0.3,
            json_mode=True,
        )
        try:
            return parse_json_response(content)
        except ValueError as e:
            raise AIProviderError(f"Clinical extraction failed: {e}")

    async def generate_soap(self, extraction: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        content = await self._chat(
            SOAP_GENERATION_PROMPT + soap_context(context),
            f"Clinical Extraction:\n\n{json.dumps(extraction, indent=2)}",
            temperature=0.4,
        )
        return soap_note_from_text(content, extraction)

    async def diagnostic_assist(self, selected_text: str, context: Dict[str, Any] = None) -> Dict[str, Any]:
        content = await self._chat(
            DIAGNOSTIC_ASSIST_PROMPT + describe_context(context),
            f"Clinical text:\n\n{selected_text}",
            temperature=0.3,
            json_mode=True,
        )
        try:
            result = parse_json_response(content)
        except ValueError as e:
            raise AIProviderError(f"Diagnostic assist failed: {e}")
        result['disclaimer'] = AI_DISCLAIMER
        return result

    async def complete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.2) -> Dict[str, Any]:
        content = await self._chat(system_prompt, user_prompt, temperature=temperature, json_mode=True)
        try:
            return parse_json_response(content)
        except ValueError as e:
            raise AIProviderError(f"Model returned invalid JSON: {e}")
