"""Raw PCM to WAV conversion for Gemini speech output."""

import io
from dataclasses import dataclass

from pydub import AudioSegment


@dataclass(frozen=True)
class PcmFormat:
    num_channels: int = 1
    sample_rate: int = 24000
    bits_per_sample: int = 16


def get_extension_from_mime(mime_type: str) -> str:
    """File extension for a container MIME type, "" for raw or unknown formats."""
    file_type = mime_type.split(";")[0].strip()
    if "/" not in file_type:
        return ""
    subtype = file_type.split("/", 1)[1]
    if subtype in ("wav", "x-wav"):
        return "wav"
    if subtype == "mpeg":
        return "mp3"
    if subtype in ("ogg", "webm"):
        return subtype
    return ""


def parse_mime_type(mime_type: str) -> PcmFormat:
    """Read bit depth and sample rate from e.g. ``audio/L16;codec=pcm;rate=24000``."""
    file_type, *params = [part.strip() for part in mime_type.split(";")]
    subtype = file_type.split("/", 1)[1] if "/" in file_type else ""

    bits_per_sample = 16
    sample_rate = 24000
    if subtype.startswith("L"):
        try:
            bits_per_sample = int(subtype[1:])
        except ValueError:
            pass
    for param in params:
        key, _, value = param.partition("=")
        if key.strip() == "rate":
            try:
                sample_rate = int(value.strip())
            except ValueError:
                pass
    return PcmFormat(num_channels=1, sample_rate=sample_rate, bits_per_sample=bits_per_sample)


def convert_to_wav(pcm: bytes, mime_type: str) -> bytes:
    """
    Wrap raw little-endian PCM in a WAV container.

    Args:
        pcm: Raw sample data as returned by the speech model
        mime_type: Source MIME type carrying bit depth and rate

    Returns:
        bytes: WAV file contents
    """
    fmt = parse_mime_type(mime_type)
    segment = AudioSegment(
        data=pcm,
        sample_width=fmt.bits_per_sample // 8,
        frame_rate=fmt.sample_rate,
        channels=fmt.num_channels,
    )
    buffer = io.BytesIO()
    segment.export(buffer, format="wav")
    return buffer.getvalue()
