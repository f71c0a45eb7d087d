"""Audio concatenation and intro music mixing."""

from .processing import AudioProcessor, MixParams, PydubAudioProcessor
from .theme import load_theme_audio

__all__ = ["AudioProcessor", "MixParams", "PydubAudioProcessor", "load_theme_audio"]
