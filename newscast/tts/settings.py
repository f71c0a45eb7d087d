"""Speech synthesis settings derived from the run configuration."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from newscast.config import RunConfig, Settings
from newscast.config.run_config import DEFAULT_GEMINI_VOICES
from newscast.errors import ConfigurationError


SUPPORTED_PROVIDERS = ("gemini", "minimax", "murf")
DEVELOPMENT_PROVIDERS = ("edge",)


@dataclass(frozen=True)
class GeminiSpeaker:
    speaker: str
    voice: Optional[str] = None


@dataclass(frozen=True)
class TtsSettings:
    """Everything a synthesizer needs, keyed by speaker marker rather than host id.

    Stored inside the compose snapshot so a continuation renders with the
    same voices the composing instance resolved.
    """

    provider: str
    language: str = "zh-CN"
    language_boost: Optional[str] = None
    model: Optional[str] = None
    speed: Optional[Union[str, float]] = None
    api_url: Optional[str] = None
    gemini_prompt: Optional[str] = None
    voices_by_speaker: Dict[str, str] = field(default_factory=dict)
    gemini_speakers: List[GeminiSpeaker] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "language": self.language,
            "languageBoost": self.language_boost,
            "model": self.model,
            "speed": self.speed,
            "apiUrl": self.api_url,
            "geminiPrompt": self.gemini_prompt,
            "voicesBySpeaker": dict(self.voices_by_speaker),
            "geminiSpeakers": [{"speaker": item.speaker, "voice": item.voice} for item in self.gemini_speakers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TtsSettings":
        return cls(
            provider=data.get("provider") or "",
            language=data.get("language") or "zh-CN",
            language_boost=data.get("languageBoost"),
            model=data.get("model"),
            speed=data.get("speed"),
            api_url=data.get("apiUrl"),
            gemini_prompt=data.get("geminiPrompt"),
            voices_by_speaker=dict(data.get("voicesBySpeaker") or {}),
            gemini_speakers=[
                GeminiSpeaker(speaker=item.get("speaker", ""), voice=item.get("voice"))
                for item in data.get("geminiSpeakers") or []
            ],
        )


def build_tts_settings(config: RunConfig) -> TtsSettings:
    """Map per-host voices in the run config onto the hosts' speaker markers."""
    voices_by_speaker: Dict[str, str] = {}
    gemini_speakers: List[GeminiSpeaker] = []
    for index, host in enumerate(config.hosts):
        marker = host.speaker_marker.strip()
        if not marker:
            continue
        voice = config.tts.voices.get(host.id)
        if voice:
            voices_by_speaker[marker] = voice
        fallback = DEFAULT_GEMINI_VOICES[0] if index == 0 else DEFAULT_GEMINI_VOICES[1]
        gemini_speakers.append(GeminiSpeaker(speaker=marker, voice=voice or fallback))

    return TtsSettings(
        provider=config.tts.provider,
        language=config.tts.language,
        language_boost=config.tts.language_boost,
        model=config.tts.model,
        speed=config.tts.speed,
        api_url=config.tts.api_url,
        gemini_prompt=config.tts.gemini_prompt,
        voices_by_speaker=voices_by_speaker,
        gemini_speakers=gemini_speakers,
    )


def validate_tts_config(provider: Optional[str], settings: Settings) -> str:
    """
    Check that the selected provider can run in this environment.

    Args:
        provider: Configured provider name
        settings: Environment settings holding credentials and run env

    Returns:
        The normalized provider name

    Raises:
        ConfigurationError: If the provider is missing, unsupported or lacks credentials
    """
    normalized = (provider or "").strip().lower()
    if not normalized:
        raise ConfigurationError("tts.provider is required when skipTts is false")

    allowed = SUPPORTED_PROVIDERS if settings.is_production else SUPPORTED_PROVIDERS + DEVELOPMENT_PROVIDERS
    if normalized not in allowed:
        raise ConfigurationError(
            f"Unsupported tts.provider '{normalized}' in {settings.run_env}, expected one of {', '.join(allowed)}"
        )

    if normalized == "gemini" and not settings.gemini_api_key:
        raise ConfigurationError("GEMINI_API_KEY is required when tts.provider=gemini")
    if normalized == "minimax" and not (settings.tts_api_key and settings.tts_api_id):
        raise ConfigurationError("TTS_API_KEY and TTS_API_ID are required when tts.provider=minimax")
    if normalized == "murf" and not settings.tts_api_key:
        raise ConfigurationError("TTS_API_KEY is required when tts.provider=murf")
    return normalized
