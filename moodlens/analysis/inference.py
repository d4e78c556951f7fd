"""OpenAI-powered multimodal mood inference for a segment's still frames."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from openai import (
    APIStatusError,
    AuthenticationError,
    NotFoundError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from moodlens.analysis.models import MoodAnalysis
from moodlens.errors import (
    InferenceAuthError,
    InferenceContentFilterError,
    InferenceError,
    InferenceQuotaError,
    InferenceRateLimitError,
    InferenceValidationError,
)
from moodlens.media.extraction import frame_to_base64
from moodlens.media.models import FrameImage
from moodlens.pipeline_config import VALID_MOODS, Mood

logger = logging.getLogger(__name__)

_MOOD_CHOICES = ", ".join(m.value for m in Mood)

PROMPT_TEMPLATE = """\
You are a psychologist assessing emotional state for a research study. The
attached images are still frames taken from a publicly available video.

INPUT:
- Images: frames showing facial expressions and body language
- TRANSCRIPT: {transcript}
- VOICE TONE: {voice_tone}

Assess the visible cues and decide the dominant mood:
1. Facial expression: smiles, frowns, eyebrows, eye contact, micro-expressions
2. Body language: posture, tension, gestures, hand position, orientation
3. Overall demeanour: energy level and general emotional presentation

Return JSON only, with exactly these keys:
{{
  "primary_mood": "one of: {moods}",
  "secondary_moods": ["mood", "..."],
  "intensity": 0.0,
  "confidence": 0.0,
  "facial_cues": "objective description of facial expressions",
  "body_language": "objective description of posture and gestures",
  "voice_tone": "description of the voice, or N/A - visual analysis only",
  "notes": "any further observations"
}}

Rules:
- primary_mood must be exactly one of: {moods}
- intensity is the strength of the emotion, a number from 0.0 to 1.0
- confidence is your certainty, a number from 0.0 to 1.0
- secondary_moods may be an empty list
- keep descriptions short, professional and objective"""


def build_prompt(transcript: str = "", voice_tone: str = "") -> str:
    return PROMPT_TEMPLATE.format(
        transcript=f'"{transcript}"' if transcript else "Not available (visual analysis only)",
        voice_tone=voice_tone or "Not available (visual analysis only)",
        moods=_MOOD_CHOICES,
    )


def validate_mood_payload(data: Any) -> MoodAnalysis:
    """Check a decoded model answer against the mood vocabulary and ranges.

    Raises:
        InferenceValidationError: On a missing field, an unknown mood or an
            intensity/confidence outside [0, 1].
    """
    if not isinstance(data, dict):
        raise InferenceValidationError("Model answer is not a JSON object")
    try:
        result = MoodAnalysis.from_payload(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise InferenceValidationError(f"Malformed model answer: {exc}") from exc

    if result.primary_mood not in VALID_MOODS:
        raise InferenceValidationError(f"Invalid primary_mood: {result.primary_mood}")
    if not 0.0 <= result.intensity <= 1.0:
        raise InferenceValidationError(
            f"Invalid intensity: {result.intensity}. Must be between 0.0 and 1.0"
        )
    if not 0.0 <= result.confidence <= 1.0:
        raise InferenceValidationError(
            f"Invalid confidence: {result.confidence}. Must be between 0.0 and 1.0"
        )
    return result


def neutral_fallback(voice_tone: str, reason: str) -> MoodAnalysis:
    """Low-confidence neutral answer used when the model refuses to analyse."""
    return MoodAnalysis(
        primary_mood=Mood.NEUTRAL.value,
        secondary_moods=(),
        intensity=0.5,
        confidence=0.3,
        facial_cues="Analysis declined by the model; facial expressions not assessed.",
        body_language="Analysis declined by the model; body language not assessed.",
        voice_tone=voice_tone or "N/A - visual analysis only",
        notes=f"Model refused the analysis: {reason}. Returning neutral fallback.",
    )


def _translate_openai_error(exc: OpenAIError) -> InferenceError:
    if isinstance(exc, RateLimitError):
        if "quota" in str(exc).lower():
            return InferenceQuotaError(
                "OpenAI API quota exceeded. Check billing and usage limits."
            )
        return InferenceRateLimitError("OpenAI API rate limit exceeded. Try again shortly.")
    if isinstance(exc, AuthenticationError):
        return InferenceAuthError("OpenAI API authentication failed. Check OPENAI_API_KEY.")
    if isinstance(exc, APIStatusError) and exc.status_code == 402:
        return InferenceError("OpenAI API payment required for this account.")
    return InferenceError(f"Mood inference failed: {exc}")


class MoodInferenceBackend:
    """Turns a segment's frames (plus optional transcript) into a MoodAnalysis."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o",
        fallback_model: str = "gpt-4-vision-preview",
        max_tokens: int = 800,
        temperature: float = 0.3,
        whisper_model: str = "whisper-1",
        client: OpenAI | None = None,
    ) -> None:
        self.api_key = api_key
        self.models = [model] + ([fallback_model] if fallback_model and fallback_model != model else [])
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.whisper_model = whisper_model
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise InferenceAuthError("OPENAI_API_KEY is not configured")
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def infer(
        self,
        frames: Sequence[FrameImage],
        transcript: str = "",
        voice_tone: str = "",
    ) -> MoodAnalysis:
        """Analyse ``frames`` and return a validated MoodAnalysis.

        Raises:
            InferenceError: The model call failed, or its answer was refused by
                a content filter, truncated, or failed validation.
        """
        if not frames:
            raise InferenceValidationError("No frames provided for mood analysis")

        images = [frame_to_base64(f.path) for f in frames]
        total_kb = sum(len(b) * 3 / 4 for b in images) / 1024
        logger.info("Sending %d frames to the model (~%.2f KB)", len(images), total_kb)

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt(transcript, voice_tone)},
                    *(
                        {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{b64}"}}
                        for b64 in images
                    ),
                ],
            }
        ]

        try:
            response = self._create_with_fallback(messages)
        except OpenAIError as exc:
            raise _translate_openai_error(exc) from exc

        result = self._parse_response(response, voice_tone)
        logger.debug("Mood analysis result: %s", result.primary_mood)
        return result

    def _create_with_fallback(self, messages: list[dict[str, Any]]) -> Any:
        """Call the primary model, falling back only when a model is not found."""
        for i, model in enumerate(self.models):
            try:
                return self.client.chat.completions.create(
                    model=model,
                    messages=messages,  # type: ignore[arg-type]
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except NotFoundError:
                if i == len(self.models) - 1:
                    raise
                logger.warning("Model %s not available, falling back", model)
        raise InferenceError("No model configured for mood inference")

    def _parse_response(self, response: Any, voice_tone: str) -> MoodAnalysis:
        if not response.choices:
            raise InferenceError("No response choices from the model")

        choice = response.choices[0]
        message = choice.message
        refusal = getattr(message, "refusal", None)
        if refusal:
            logger.warning("Model refused mood analysis: %s", refusal)
            return neutral_fallback(voice_tone, refusal)

        if not message.content:
            if choice.finish_reason == "length":
                raise InferenceError("Model response was truncated; increase LLM_MAX_TOKENS")
            if choice.finish_reason == "content_filter":
                raise InferenceContentFilterError("Model response was filtered by content policy")
            raise InferenceError(
                f"No response content from the model (finish reason: {choice.finish_reason})"
            )

        try:
            data = json.loads(message.content)
        except json.JSONDecodeError as exc:
            raise InferenceValidationError(f"Failed to parse model response: {exc}") from exc
        return validate_mood_payload(data)

    def transcribe(self, audio_path: Path) -> str:
        """Transcribe a segment's audio with Whisper."""
        try:
            with audio_path.open("rb") as fh:
                transcription = self.client.audio.transcriptions.create(
                    file=fh, model=self.whisper_model, language="en"
                )
        except OpenAIError as exc:
            raise _translate_openai_error(exc) from exc
        return transcription.text.strip()
