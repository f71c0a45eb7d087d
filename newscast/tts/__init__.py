"""Speech synthesis providers.
base.py : SpeechSynthesizer contract and voice resolution
edge.py / minimax.py / murf.py : Per-line providers
gemini.py : Whole-script multi-speaker provider
wav.py : PCM to WAV conversion
settings.py : TtsSettings derived from the run config
"""

from .base import SpeechSynthesizer, resolve_voice_by_speaker
from .edge import EdgeSpeechSynthesizer
from .factory import create_gemini_synthesizer, create_speech_synthesizer
from .gemini import GeminiAudio, GeminiSpeechSynthesizer, build_gemini_tts_prompt
from .minimax import MinimaxSpeechSynthesizer
from .murf import MurfSpeechSynthesizer
from .settings import GeminiSpeaker, TtsSettings, build_tts_settings, validate_tts_config
from .wav import convert_to_wav, get_extension_from_mime, parse_mime_type


__all__ = [
    "EdgeSpeechSynthesizer",
    "GeminiAudio",
    "GeminiSpeaker",
    "GeminiSpeechSynthesizer",
    "MinimaxSpeechSynthesizer",
    "MurfSpeechSynthesizer",
    "SpeechSynthesizer",
    "TtsSettings",
    "build_gemini_tts_prompt",
    "build_tts_settings",
    "convert_to_wav",
    "create_gemini_synthesizer",
    "create_speech_synthesizer",
    "get_extension_from_mime",
    "parse_mime_type",
    "resolve_voice_by_speaker",
    "validate_tts_config",
]
