import logging
from typing import Optional

import requests

from .base import SpeechSynthesizer
from .settings import TtsSettings


logger = logging.getLogger("tts")

MURF_API_URL = "https://api.murf.ai/v1/speech/stream"
TTS_TIMEOUT_SECONDS = 30


class MurfSpeechSynthesizer(SpeechSynthesizer):
    """Murf streaming synthesis, returns MP3 bytes directly."""

    provider = "murf"
    default_male_voice = "en-US-ken"
    default_female_voice = "en-UK-ruby"

    def __init__(self, tts_settings: TtsSettings, api_key: Optional[str]):
        super().__init__(tts_settings)
        self.api_key = api_key

    def synthesize(self, text: str, speaker: str) -> bytes:
        speed = self.tts_settings.speed
        body = {
            "text": text,
            "voiceId": self.resolve_voice(speaker),
            "model": self.tts_settings.model or "GEN2",
            "multiNativeLocale": self.tts_settings.language or "zh-CN",
            "style": "Conversational",
            "rate": float(speed) if speed is not None else -8,
            "pitch": 0,
            "format": "MP3",
        }
        logger.info(f"murf synthesize (voice={body['voiceId']}, chars={len(text)})")
        response = requests.post(
            self.tts_settings.api_url or MURF_API_URL,
            headers={"api-key": self.api_key or ""},
            json=body,
            timeout=TTS_TIMEOUT_SECONDS,
        )
        if not response.ok:
            raise RuntimeError(f"Failed to fetch audio: {response.status_code} {response.reason}")
        return response.content
