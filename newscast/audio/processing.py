"""
Audio assembly with pydub.

pydub shells out to ffmpeg for decoding and MP3 encoding, so ffmpeg must be
on PATH wherever the TTS stage runs.
"""

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from pydub import AudioSegment

from newscast.logger import log_function


logger = logging.getLogger("audio")


@dataclass(frozen=True)
class MixParams:
    """Intro music timing.

    Attributes:
        fade_out_start: Seconds of theme before the fade begins.
        fade_out_duration: Fade length in seconds.
        podcast_delay_ms: Theme pre-roll before the voice track starts.
        audio_quality: LAME VBR quality (0 best, 9 smallest).
    """

    fade_out_start: float = 19
    fade_out_duration: float = 3
    podcast_delay_ms: float = 19000
    audio_quality: int = 5


class AudioProcessor(ABC):
    @abstractmethod
    def concat(self, tracks: List[bytes], audio_quality: int = 5) -> bytes:
        """Join tracks in order into one MP3."""

    @abstractmethod
    def mix(self, base: bytes, theme: bytes, params: MixParams) -> bytes:
        """Lay the voice track over the faded intro theme and return an MP3."""


class PydubAudioProcessor(AudioProcessor):
    def _export(self, segment: AudioSegment, audio_quality: int) -> bytes:
        buffer = io.BytesIO()
        segment.export(buffer, format="mp3", parameters=["-q:a", str(audio_quality)])
        return buffer.getvalue()

    @log_function(logger_name="audio", log_execution_time=True)
    def concat(self, tracks: List[bytes], audio_quality: int = 5) -> bytes:
        if not tracks:
            raise ValueError("No audio tracks to concatenate")
        combined = AudioSegment.empty()
        for track in tracks:
            combined += AudioSegment.from_file(io.BytesIO(track))
        logger.info(f"Concatenated {len(tracks)} tracks ({len(combined) / 1000:.1f}s)")
        return self._export(combined, audio_quality)

    @log_function(logger_name="audio", log_execution_time=True)
    def mix(self, base: bytes, theme: bytes, params: MixParams) -> bytes:
        podcast = AudioSegment.from_file(io.BytesIO(base))
        music = AudioSegment.from_file(io.BytesIO(theme))

        fade_start_ms = int(params.fade_out_start * 1000)
        fade_ms = int(params.fade_out_duration * 1000)
        delay_ms = int(params.podcast_delay_ms)

        intro = music[: fade_start_ms + fade_ms].fade_out(fade_ms)
        total_ms = max(len(intro), delay_ms + len(podcast))
        mixed = (
            AudioSegment.silent(duration=total_ms, frame_rate=podcast.frame_rate)
            .overlay(intro)
            .overlay(podcast, position=delay_ms)
        )
        logger.info(
            f"Mixed intro music (intro={len(intro) / 1000:.1f}s, podcast={len(podcast) / 1000:.1f}s, "
            f"delay={delay_ms}ms, total={total_ms / 1000:.1f}s)"
        )
        return self._export(mixed, params.audio_quality)
