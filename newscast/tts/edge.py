import asyncio
import logging
from typing import Optional, Union

import edge_tts

from .base import SpeechSynthesizer


logger = logging.getLogger("tts")

DEFAULT_EDGE_RATE = "+10%"


def resolve_edge_rate(speed: Optional[Union[str, float]]) -> str:
    """edge-tts expects a signed percentage such as ``+10%``."""
    if speed is None or speed == "":
        return DEFAULT_EDGE_RATE
    if isinstance(speed, (int, float)):
        return f"{int(speed):+d}%"
    rate = str(speed).strip()
    if not rate.endswith("%"):
        rate = f"{rate}%"
    if not rate.startswith(("+", "-")):
        rate = f"+{rate}"
    return rate


class EdgeSpeechSynthesizer(SpeechSynthesizer):
    """Microsoft Edge read-aloud voices, for local development."""

    provider = "edge"
    default_male_voice = "zh-CN-YunyangNeural"
    default_female_voice = "zh-CN-XiaoxiaoNeural"

    def synthesize(self, text: str, speaker: str) -> bytes:
        voice = self.resolve_voice(speaker)
        rate = resolve_edge_rate(self.tts_settings.speed)
        logger.info(f"edge synthesize (voice={voice}, rate={rate}, chars={len(text)})")
        return asyncio.run(self._stream_audio(text, voice, rate))

    async def _stream_audio(self, text: str, voice: str, rate: str) -> bytes:
        communicate = edge_tts.Communicate(text, voice, rate=rate)
        chunks = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                chunks.append(chunk["data"])
        return b"".join(chunks)
