# backend/bharatcrm/services/ai_providers.py
"""
AI provider abstraction for call recordings.

Providers:
- openai: whisper-1 transcription, gpt-4o-mini summaries (openai SDK)
- groq:   whisper-large-v3 transcription, llama-3.3-70b-versatile summaries
          (openai SDK against Groq's OpenAI-compatible endpoint)
- gemini: summaries only (generateContent over httpx)

Each provider can also verify an API key and list the models it offers for
the AI settings picker (built-in list when the provider cannot be asked).

Summaries use one fixed prompt that asks for JSON; the parser takes the first
JSON object in the reply and degrades to a plain-text summary when the model
ignores the format.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import AsyncOpenAI, OpenAIError

from bharatcrm.config import settings
from bharatcrm.utils.logger import logger

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

SYSTEM_PROMPT = "You are a sales call analyzer. Analyze call transcripts and provide structured insights."

QUALITY_SCORE_KEYS = (
    "overall_score",
    "communication_clarity",
    "product_knowledge",
    "objection_handling",
    "rapport_building",
    "closing_technique",
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# call_recordings.sentiment column width
MAX_SENTIMENT_LENGTH = 20


class AIProviderError(Exception):
    """Provider call failed or the provider cannot do what was asked."""


@dataclass
class TranscriptionResult:
    text: str
    duration_seconds: int = 0
    language: Optional[str] = None


@dataclass
class CallSummary:
    summary: str
    sentiment: str = "neutral"
    sentiment_reasoning: str = ""
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    next_steps: Optional[str] = None
    call_quality: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_summary_prompt(transcript: str, context: Optional[str] = None) -> str:
    context_line = f"Context: {context}\n" if context else ""
    return f"""Analyze this sales call transcript and provide a comprehensive assessment.

{context_line}
Transcript:
{transcript}

Provide the following in JSON format:
{{
  "summary": "A 2-3 sentence summary of the call",
  "sentiment": "positive" | "neutral" | "negative",
  "sentiment_reasoning": "Brief explanation of why you classified the sentiment this way",
  "key_points": ["Array of key discussion points"],
  "action_items": ["Array of action items or follow-ups needed"],
  "next_steps": "Recommended next steps for the sales rep",
  "call_quality": {{
    "overall_score": 7,
    "communication_clarity": 8,
    "product_knowledge": 7,
    "objection_handling": 6,
    "rapport_building": 7,
    "closing_technique": 5,
    "strengths": ["Array of things the sales rep did well"],
    "areas_of_improvement": ["Array of areas where the sales rep can improve"]
  }}
}}

For call_quality scores, use 1-10 scale where:
- 1-3: Poor
- 4-6: Average
- 7-8: Good
- 9-10: Excellent

Only respond with valid JSON, no additional text."""


def parse_summary_response(response: str) -> CallSummary:
    """Parse a model reply into CallSummary; never raises."""
    response = response or ""
    match = _JSON_OBJECT.search(response)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, dict):
            quality = parsed.get("call_quality")
            call_quality = None
            if isinstance(quality, dict):
                call_quality = {key: quality.get(key) or 5 for key in QUALITY_SCORE_KEYS}
                call_quality["strengths"] = _as_list(quality.get("strengths"))
                call_quality["areas_of_improvement"] = _as_list(quality.get("areas_of_improvement"))

            return CallSummary(
                summary=_as_text(parsed.get("summary")),
                sentiment=(_as_text(parsed.get("sentiment")).strip() or "neutral")[:MAX_SENTIMENT_LENGTH],
                sentiment_reasoning=_as_text(parsed.get("sentiment_reasoning")),
                key_points=_as_list(parsed.get("key_points")),
                action_items=_as_list(parsed.get("action_items")),
                next_steps=_as_text(parsed.get("next_steps")) or None,
                call_quality=call_quality,
            )

    logger.warning("[AI] Summary reply was not JSON, storing raw text")
    return CallSummary(summary=response[:500])


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_text(value: Any) -> str:
    """Models sometimes answer a text field with a list or object."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(str(item) for item in value)
    return json.dumps(value) if isinstance(value, dict) else str(value)


# ==================== Providers ====================

class BaseAIProvider:
    name = ""
    default_model = ""
    default_transcription_model = ""
    # (id, name, type) shown when the provider cannot be asked
    known_models: Tuple[Dict[str, str], ...] = ()

    def __init__(self, api_key: str, model: Optional[str] = None, transcription_model: Optional[str] = None):
        self.api_key = api_key
        self.model = model or self.default_model
        self.transcription_model = transcription_model or self.default_transcription_model

    async def transcribe(self, audio: bytes, filename: str = "recording.mp3") -> TranscriptionResult:
        raise NotImplementedError

    async def summarize(self, transcript: str, context: Optional[str] = None) -> CallSummary:
        raise NotImplementedError

    async def test_connection(self) -> bool:
        raise NotImplementedError

    async def list_models(self) -> List[Dict[str, str]]:
        """Models offered in the AI settings picker; the built-in list unless overridden."""
        return [dict(m) for m in self.known_models]


class OpenAICompatibleProvider(BaseAIProvider):
    """Transcription and chat through the openai SDK."""
    base_url: Optional[str] = None

    def _client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
        )

    async def transcribe(self, audio: bytes, filename: str = "recording.mp3") -> TranscriptionResult:
        try:
            result = await self._client().audio.transcriptions.create(
                model=self.transcription_model,
                file=(filename, audio),
                response_format="verbose_json",
            )
        except OpenAIError as e:
            raise AIProviderError(f"{self.name} transcription failed: {e}") from e

        return TranscriptionResult(
            text=getattr(result, "text", "") or "",
            duration_seconds=round(getattr(result, "duration", 0) or 0),
            language=getattr(result, "language", None),
        )

    async def summarize(self, transcript: str, context: Optional[str] = None) -> CallSummary:
        try:
            completion = await self._client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": get_summary_prompt(transcript, context)},
                ],
                temperature=0.3,
                max_tokens=1000,
            )
        except OpenAIError as e:
            raise AIProviderError(f"{self.name} summary failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else ""
        return parse_summary_response(content or "")

    async def test_connection(self) -> bool:
        try:
            await self._client().models.list()
        except OpenAIError as e:
            logger.warning(f"[AI] {self.name} connection test failed: {e}")
            return False
        return True

    async def list_models(self) -> List[Dict[str, str]]:
        try:
            page = await self._client().models.list()
        except OpenAIError as e:
            logger.warning(f"[AI] {self.name} model listing failed, using built-in list: {e}")
            return await super().list_models()

        names = {m["id"]: m["name"] for m in self.known_models}
        models = []
        for model in getattr(page, "data", None) or []:
            model_type = self.classify_model(model)
            if model_type:
                models.append({"id": model.id, "name": names.get(model.id, model.id), "type": model_type})
        return models or await super().list_models()

    @staticmethod
    def classify_model(model: Any) -> Optional[str]:
        """Picker type for a listed model ("transcription" or "summary"); None hides it."""
        return None


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"
    default_model = "gpt-4o-mini"
    default_transcription_model = "whisper-1"
    known_models = (
        {"id": "whisper-1", "name": "Whisper", "type": "transcription"},
        {"id": "gpt-4o-mini", "name": "GPT-4o Mini", "type": "summary"},
        {"id": "gpt-4o", "name": "GPT-4o", "type": "summary"},
        {"id": "gpt-4-turbo", "name": "GPT-4 Turbo", "type": "summary"},
        {"id": "gpt-3.5-turbo", "name": "GPT-3.5 Turbo", "type": "summary"},
    )

    @staticmethod
    def classify_model(model: Any) -> Optional[str]:
        model_id = model.id
        if model_id == "whisper-1":
            return "transcription"
        if model_id.startswith(("gpt-4", "gpt-3.5")):
            # chat models only; skip instruct and retired snapshots
            if not any(tag in model_id for tag in ("instruct", "0301", "0314")):
                return "summary"
        return None


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"
    base_url = GROQ_BASE_URL
    default_model = "llama-3.3-70b-versatile"
    default_transcription_model = "whisper-large-v3"
    known_models = (
        {"id": "whisper-large-v3", "name": "Whisper Large V3", "type": "transcription"},
        {"id": "whisper-large-v3-turbo", "name": "Whisper Large V3 Turbo", "type": "transcription"},
        {"id": "llama-3.3-70b-versatile", "name": "Llama 3.3 70B", "type": "summary"},
        {"id": "llama-3.1-8b-instant", "name": "Llama 3.1 8B", "type": "summary"},
        {"id": "mixtral-8x7b-32768", "name": "Mixtral 8x7B", "type": "summary"},
        {"id": "gemma2-9b-it", "name": "Gemma 2 9B", "type": "summary"},
    )

    @staticmethod
    def classify_model(model: Any) -> Optional[str]:
        model_id = model.id
        if "whisper" in model_id:
            return "transcription"
        if any(family in model_id for family in ("llama", "mixtral", "gemma")):
            if "tool-use" not in model_id and getattr(model, "active", True) is not False:
                return "summary"
        return None


class GeminiProvider(BaseAIProvider):
    name = "gemini"
    default_model = "gemini-1.5-flash"
    # no public listing endpoint worth filtering; the picker uses these
    known_models = (
        {"id": "gemini-2.0-flash-exp", "name": "Gemini 2.0 Flash", "type": "summary"},
        {"id": "gemini-1.5-flash", "name": "Gemini 1.5 Flash", "type": "summary"},
        {"id": "gemini-1.5-pro", "name": "Gemini 1.5 Pro", "type": "summary"},
    )

    async def transcribe(self, audio: bytes, filename: str = "recording.mp3") -> TranscriptionResult:
        raise AIProviderError("Gemini does not support transcription. Use OpenAI or Groq for transcription.")

    async def summarize(self, transcript: str, context: Optional[str] = None) -> CallSummary:
        payload = {
            "contents": [{"parts": [{"text": get_summary_prompt(transcript, context)}]}],
            "generationConfig": {"temperature": 0.3, "maxOutputTokens": 1000},
        }
        try:
            async with httpx.AsyncClient(timeout=settings.AI_REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    f"{GEMINI_BASE_URL}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise AIProviderError(f"Gemini summary failed: {e}") from e

        if response.status_code >= 400:
            raise AIProviderError(f"Gemini summary failed: {response.text[:500]}")

        data = response.json()
        try:
            content = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            content = ""
        return parse_summary_response(content)

    async def test_connection(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.get(f"{GEMINI_BASE_URL}/models", params={"key": self.api_key})
        except httpx.HTTPError as e:
            logger.warning(f"[AI] gemini connection test failed: {e}")
            return False
        return response.status_code < 400


PROVIDERS = {
    "openai": OpenAIProvider,
    "groq": GroqProvider,
    "gemini": GeminiProvider,
}


def create_ai_provider(
    provider: str,
    api_key: str,
    model: Optional[str] = None,
    transcription_model: Optional[str] = None,
) -> BaseAIProvider:
    provider_cls = PROVIDERS.get(provider)
    if provider_cls is None:
        raise AIProviderError(f"Unknown AI provider: {provider}")
    return provider_cls(api_key, model=model, transcription_model=transcription_model)
