from __future__ import annotations

import struct

import pytest

from conftest import MemoryBlobStore
from newscast.audio import load_theme_audio
from newscast.config import Settings, parse_run_config
from newscast.errors import ConfigurationError
from newscast.tts import (
    EdgeSpeechSynthesizer,
    GeminiSpeaker,
    TtsSettings,
    build_gemini_tts_prompt,
    build_tts_settings,
    convert_to_wav,
    create_speech_synthesizer,
    get_extension_from_mime,
    parse_mime_type,
    resolve_voice_by_speaker,
    validate_tts_config,
)
from newscast.tts.edge import resolve_edge_rate


def _sample_hosts_config(**tts):
    return parse_run_config(
        {
            "hosts": [
                {"id": "host1", "name": "小明", "speakerMarker": "男"},
                {"id": "host2", "name": "小红", "speakerMarker": "女"},
            ],
            "tts": {"provider": "gemini", **tts},
        }
    )


def test_convert_to_wav_wraps_pcm_using_mime_parameters():
    pcm = b"\x00\x01" * 10

    wav = convert_to_wav(pcm, "audio/L16;codec=pcm;rate=16000")

    riff, size, wave, _, _, _, channels, rate, byte_rate, _, bits, data, length = struct.unpack(
        "<4sI4s4sIHHIIHH4sI", wav[:44]
    )
    assert (riff, wave, data) == (b"RIFF", b"WAVE", b"data")
    assert size == 36 + len(pcm)
    assert (channels, rate, bits) == (1, 16000, 16)
    assert byte_rate == 32000
    assert length == len(pcm)
    assert wav[44:] == pcm


def test_convert_to_wav_keeps_24_bit_samples():
    pcm = b"\x00\x01\x02" * 4

    wav = convert_to_wav(pcm, "audio/L24;rate=24000")

    channels, rate, _, block_align, bits = struct.unpack("<HIIHH", wav[22:36])
    assert (channels, rate, block_align, bits) == (1, 24000, 3, 24)
    assert wav.endswith(pcm)


def test_mime_helpers():
    assert get_extension_from_mime("audio/mpeg") == "mp3"
    assert get_extension_from_mime("audio/x-wav") == "wav"
    assert get_extension_from_mime("audio/L16;rate=24000") == ""
    assert parse_mime_type("audio/L24").bits_per_sample == 24


@pytest.mark.parametrize(
    "speed, expected",
    [(None, "+10%"), (20, "+20%"), (-5, "-5%"), ("15", "+15%"), ("-10%", "-10%")],
)
def test_resolve_edge_rate(speed, expected):
    assert resolve_edge_rate(speed) == expected


def test_build_tts_settings_maps_voices_to_markers():
    config = _sample_hosts_config(voices={"host2": "Kore"})

    tts_settings = build_tts_settings(config)

    assert tts_settings.voices_by_speaker == {"女": "Kore"}
    assert tts_settings.gemini_speakers == [GeminiSpeaker("男", "Puck"), GeminiSpeaker("女", "Kore")]
    assert TtsSettings.from_dict(tts_settings.to_dict()) == tts_settings


def test_resolve_voice_by_speaker():
    voices = {"男": "voice-m"}

    assert resolve_voice_by_speaker("男", voices, "male", "female") == "voice-m"
    assert resolve_voice_by_speaker("女", voices, "male", "female") == "female"
    assert resolve_voice_by_speaker("女", {}, "male", "female") == "male"


def test_edge_synthesizer_uses_mapped_voice():
    synthesizer = EdgeSpeechSynthesizer(TtsSettings(provider="edge", voices_by_speaker={"男": "zh-CN-YunxiNeural"}))

    assert synthesizer.resolve_voice("男") == "zh-CN-YunxiNeural"


def test_validate_tts_config_by_environment():
    production = Settings(gemini_api_key="key")
    development = Settings(run_env="development")

    assert validate_tts_config(" Gemini ", production) == "gemini"
    assert validate_tts_config("edge", development) == "edge"
    with pytest.raises(ConfigurationError, match="Unsupported"):
        validate_tts_config("edge", production)
    with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
        validate_tts_config("gemini", development)
    with pytest.raises(ConfigurationError, match="TTS_API_KEY and TTS_API_ID"):
        validate_tts_config("minimax", Settings(tts_api_key="key"))
    with pytest.raises(ConfigurationError, match="required"):
        validate_tts_config("", production)


def test_gemini_is_not_a_per_line_provider():
    with pytest.raises(ConfigurationError):
        create_speech_synthesizer("gemini", Settings(), TtsSettings(provider="gemini"))


def test_build_gemini_tts_prompt_keeps_only_speaker_lines():
    tts_settings = TtsSettings(
        provider="gemini",
        gemini_prompt="请播报：",
        gemini_speakers=[GeminiSpeaker("男", "Puck"), GeminiSpeaker("女", "Zephyr")],
    )

    prompt = build_gemini_tts_prompt(["男：你好", "  ", "旁白", " 女：再见 "], tts_settings)

    assert prompt == "请播报：\n男：你好\n女：再见"


def test_build_gemini_tts_prompt_requires_speakers_and_lines():
    with pytest.raises(ConfigurationError, match="geminiSpeakers"):
        build_gemini_tts_prompt(["男：你好"], TtsSettings(provider="gemini"))
    with pytest.raises(ConfigurationError, match="no valid speaker lines"):
        build_gemini_tts_prompt(["旁白"], TtsSettings(provider="gemini", gemini_speakers=[GeminiSpeaker("男")]))


def test_load_theme_audio_prefers_blob_then_file(tmp_path):
    blobs = MemoryBlobStore()
    blobs.put("static/theme.mp3", b"BLOB-THEME")
    theme_file = tmp_path / "theme.mp3"
    theme_file.write_bytes(b"FILE-THEME")

    assert load_theme_audio("static/theme.mp3", blobs) == b"BLOB-THEME"
    assert load_theme_audio(str(theme_file), blobs) == b"FILE-THEME"
    with pytest.raises(FileNotFoundError):
        load_theme_audio(str(tmp_path / "missing.mp3"), blobs)
    with pytest.raises(FileNotFoundError):
        load_theme_audio(None)
