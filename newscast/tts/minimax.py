import logging
from typing import Optional

import requests

from .base import SpeechSynthesizer
from .settings import TtsSettings


logger = logging.getLogger("tts")

MINIMAX_API_URL = "https://api.minimaxi.com/v1/t2a_v2"
TTS_TIMEOUT_SECONDS = 30


class MinimaxSpeechSynthesizer(SpeechSynthesizer):
    """MiniMax t2a_v2 synthesis; audio comes back hex encoded in the JSON body."""

    provider = "minimax"
    default_male_voice = "Chinese (Mandarin)_Gentleman"
    default_female_voice = "Chinese (Mandarin)_Gentle_Senior"

    def __init__(self, tts_settings: TtsSettings, api_id: Optional[str], api_key: Optional[str]):
        super().__init__(tts_settings)
        self.api_id = api_id
        self.api_key = api_key

    def synthesize(self, text: str, speaker: str) -> bytes:
        api_url = self.tts_settings.api_url or MINIMAX_API_URL
        speed = self.tts_settings.speed
        body = {
            "model": self.tts_settings.model or "speech-2.6-hd",
            "text": text,
            "timber_weights": [{"voice_id": self.resolve_voice(speaker), "weight": 100}],
            "voice_setting": {
                "voice_id": "",
                "speed": float(speed) if speed is not None else 1.1,
                "pitch": 0,
                "vol": 1,
                "latex_read": False,
            },
            "audio_setting": {"sample_rate": 32000, "bitrate": 128000, "format": "mp3"},
            "language_boost": self.tts_settings.language_boost or "Chinese",
        }
        logger.info(f"minimax synthesize (model={body['model']}, chars={len(text)})")
        response = requests.post(
            f"{api_url}?GroupId={self.api_id}",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=body,
            timeout=TTS_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        result = response.json()

        audio_hex = (result.get("data") or {}).get("audio")
        if audio_hex:
            return bytes.fromhex(audio_hex)
        status_msg = (result.get("base_resp") or {}).get("status_msg")
        raise RuntimeError(f"Failed to fetch audio: {status_msg}")
