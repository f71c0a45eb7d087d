from typing import Optional

from google import genai

from newscast.config import Settings
from newscast.errors import ConfigurationError

from .base import SpeechSynthesizer
from .edge import EdgeSpeechSynthesizer
from .gemini import GeminiSpeechSynthesizer
from .minimax import MinimaxSpeechSynthesizer
from .murf import MurfSpeechSynthesizer
from .settings import TtsSettings


def create_speech_synthesizer(provider: str, settings: Settings, tts_settings: TtsSettings) -> SpeechSynthesizer:
    """Per-line synthesizer for a validated provider name."""
    if provider == "minimax":
        return MinimaxSpeechSynthesizer(tts_settings, settings.tts_api_id, settings.tts_api_key)
    if provider == "murf":
        return MurfSpeechSynthesizer(tts_settings, settings.tts_api_key)
    if provider == "edge":
        return EdgeSpeechSynthesizer(tts_settings)
    if provider == "gemini":
        raise ConfigurationError("Gemini TTS only supports full podcast synthesis, not per-line synthesis")
    raise ConfigurationError(f"Unsupported tts provider: {provider}")


def create_gemini_synthesizer(
    settings: Settings,
    tts_settings: TtsSettings,
    client: Optional[genai.Client] = None,
) -> GeminiSpeechSynthesizer:
    if client is None:
        if not settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required when using Gemini TTS")
        client = genai.Client(api_key=settings.gemini_api_key)
    return GeminiSpeechSynthesizer(client, tts_settings)
