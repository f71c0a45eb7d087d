"""
Gemini multi-speaker speech synthesis.

Gemini renders the whole dialogue in one call. Its raw PCM output is wrapped
in a WAV header so the audio layer can decode it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from google import genai
from google.genai import types

from newscast.errors import ConfigurationError
from newscast.logger import log_function

from .settings import GeminiSpeaker, TtsSettings
from .wav import convert_to_wav, get_extension_from_mime


logger = logging.getLogger("tts")

GEMINI_TTS_MODEL = "gemini-2.5-flash-preview-tts"
DEFAULT_GEMINI_PROMPT = "请用中文播报以下播客对话，语气自然、节奏流畅、音量稳定。"
FALLBACK_SPEAKERS = (GeminiSpeaker("Host1", "Puck"), GeminiSpeaker("Host2", "Zephyr"))


@dataclass(frozen=True)
class GeminiAudio:
    audio: bytes
    extension: str
    mime_type: str


def build_gemini_tts_prompt(lines: Iterable[str], tts_settings: TtsSettings) -> str:
    """
    Build the single prompt Gemini reads: the header instruction, then every speaker line.

    Raises:
        ConfigurationError: If no speakers are configured or no line starts with one
    """
    speakers = [item.speaker for item in tts_settings.gemini_speakers if item.speaker]
    if not speakers:
        raise ConfigurationError("Gemini TTS requires geminiSpeakers config with at least one speaker")

    cleaned = [line.strip() for line in lines]
    cleaned = [line for line in cleaned if line and any(line.startswith(speaker) for speaker in speakers)]
    if not cleaned:
        raise ConfigurationError("Gemini TTS prompt is empty: no valid speaker lines found")

    return "\n".join([tts_settings.gemini_prompt or DEFAULT_GEMINI_PROMPT, *cleaned])


def _speaker_voice_configs(speakers: List[GeminiSpeaker]) -> List[types.SpeakerVoiceConfig]:
    configs = []
    for index, item in enumerate(speakers or list(FALLBACK_SPEAKERS)):
        fallback_voice = "Puck" if index == 0 else "Zephyr"
        configs.append(
            types.SpeakerVoiceConfig(
                speaker=item.speaker,
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=item.voice or fallback_voice)
                ),
            )
        )
    return configs


class GeminiSpeechSynthesizer:
    """Whole-script synthesis; Gemini has no per-line mode."""

    provider = "gemini"

    def __init__(self, client: genai.Client, tts_settings: TtsSettings):
        self.client = client
        self.tts_settings = tts_settings

    @log_function(logger_name="tts", log_execution_time=True)
    def synthesize_script(self, prompt: str) -> GeminiAudio:
        """
        Render a full dialogue prompt.

        Args:
            prompt: Output of ``build_gemini_tts_prompt``

        Returns:
            GeminiAudio: Audio bytes with their extension and MIME type

        Raises:
            RuntimeError: If the response holds no audio
        """
        model = self.tts_settings.model or GEMINI_TTS_MODEL
        logger.info(f"Gemini TTS request start (model={model}, prompt_chars={len(prompt)})")
        started_at = time.time()

        response = self.client.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=1.0,
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    multi_speaker_voice_config=types.MultiSpeakerVoiceConfig(
                        speaker_voice_configs=_speaker_voice_configs(self.tts_settings.gemini_speakers)
                    )
                ),
            ),
        )
        logger.info(f"Gemini TTS generate done (model={model}, seconds={time.time() - started_at:.2f})")

        inline_data = _extract_inline_data(response)
        if inline_data is None or not inline_data.data:
            raise RuntimeError("Gemini TTS returned empty audio data")

        mime_type = inline_data.mime_type or "audio/wav"
        audio = inline_data.data
        extension = get_extension_from_mime(mime_type)
        if not extension:
            extension = "wav"
            audio = convert_to_wav(audio, mime_type)
            mime_type = "audio/wav"

        logger.info(f"Gemini TTS decode done (mime_type={mime_type}, bytes={len(audio)})")
        return GeminiAudio(audio=audio, extension=extension, mime_type=mime_type)


def _extract_inline_data(response) -> Optional[types.Blob]:
    if not response.candidates:
        return None
    content = response.candidates[0].content
    for part in (content.parts if content and content.parts else []):
        if part.inline_data is not None and part.inline_data.data:
            return part.inline_data
    return None
