from abc import ABC, abstractmethod
from typing import Dict, Optional

from .settings import TtsSettings


class SpeechSynthesizer(ABC):
    """Per-line speech synthesis provider."""

    provider: str = ""
    default_male_voice: str = ""
    default_female_voice: str = ""

    def __init__(self, tts_settings: TtsSettings):
        self.tts_settings = tts_settings

    def resolve_voice(self, speaker: str) -> str:
        return resolve_voice_by_speaker(
            speaker,
            self.tts_settings.voices_by_speaker,
            self.default_male_voice,
            self.default_female_voice,
        )

    @abstractmethod
    def synthesize(self, text: str, speaker: str) -> bytes:
        """
        Render one dialogue line.

        Args:
            text: Line text without the speaker marker
            speaker: Speaker marker selecting the voice

        Returns:
            MP3 audio bytes
        """


def resolve_voice_by_speaker(
    speaker: str,
    voices_by_speaker: Optional[Dict[str, str]],
    male: str,
    female: str,
) -> str:
    """Mapped voice for a speaker; unmapped speakers get the male default when
    they come first in the mapping, the female default otherwise."""
    if voices_by_speaker:
        mapped = voices_by_speaker.get(speaker)
        if mapped:
            return mapped
        speakers = list(voices_by_speaker.keys())
        return male if speaker == speakers[0] else female
    return male
