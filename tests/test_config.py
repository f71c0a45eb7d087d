from __future__ import annotations

import json

import pytest

from newscast.config import (
    RunConfig,
    Settings,
    TestConfig,
    find_unknown_template_variables,
    load_run_config,
    parse_run_config,
    render_template,
)
from newscast.errors import ConfigurationError
from newscast.pipeline.context import prepare_run_config, resolve_test_config


def _sample_config_data(**overrides):
    data = {
        "site": {"title": "AI 早报"},
        "hosts": [
            {"id": "host1", "name": "小明", "speakerMarker": "男", "persona": "技术编辑"},
            {"id": "host2", "name": "小红", "speakerMarker": "女"},
        ],
        "ai": {"provider": "gemini", "model": "gemini-2.0-flash", "thinkingModel": "gemini-2.5-pro"},
        "tts": {"provider": "edge", "voices": {"host1": "zh-CN-YunxiNeural", "ghost": "nobody"}},
        "sources": {
            "lookbackDays": 2,
            "items": [
                {"id": "feed", "name": "Feed", "type": "RSS", "url": "https://news.example.com/feed.xml"},
                {"id": "mail", "name": "Mail", "type": "gmail", "label": "newsletters", "enabled": False},
            ],
        },
        "prompts": {"summarizeStory": "为「{{podcastTitle}}」总结，主持人 {{host1Name}} {{unknownVar}}"},
        "test": {"workflowTestStep": "TTS"},
    }
    data.update(overrides)
    return data


def test_parse_run_config_reads_camel_case_sections():
    config = parse_run_config(_sample_config_data())

    assert config.site.title == "AI 早报"
    assert config.speaker_markers == ["男", "女"]
    assert config.ai.thinking_model == "gemini-2.5-pro"
    assert dict(config.tts.voices) == {"host1": "zh-CN-YunxiNeural"}
    assert config.sources.items[0].type == "rss"
    assert [source.id for source in config.sources.enabled] == ["feed"]
    assert config.test.workflow_test_step == "tts"
    assert config.timezone == "America/Chicago"


def test_parse_run_config_defaults_to_built_in_hosts_and_prompts():
    config = parse_run_config({})

    assert isinstance(config, RunConfig)
    assert len(config.hosts) == 2
    assert config.tts.provider == "gemini"
    assert config.tts.skip_tts is False
    assert "{{podcastTitle}}" in config.prompts.summarize_story


def test_parse_run_config_lists_every_problem():
    data = _sample_config_data(
        hosts=[{"id": "host1", "name": "独自", "speakerMarker": ""}],
        tts={"provider": "speakbot"},
        locale={"timezone": "Mars/Olympus"},
        sources={"items": [{"id": "a", "type": "gmail"}, {"id": "a", "type": "url"}]},
    )

    with pytest.raises(ConfigurationError) as excinfo:
        parse_run_config(data)

    message = str(excinfo.value)
    assert "at least two hosts are required" in message
    assert "hosts[0].speakerMarker is required" in message
    assert "tts.provider must be one of" in message
    assert "Mars/Olympus" in message
    assert "sources.items[0].label is required" in message
    assert "sources.items[1].id 'a' is duplicated" in message
    assert "sources.items[1].url is required" in message


def test_unknown_test_step_is_ignored():
    config = parse_run_config(_sample_config_data(test={"workflowTestStep": "everything"}))

    assert config.test.workflow_test_step == ""


def test_load_run_config_from_file(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps(_sample_config_data(meta={"version": "2026.10"})), encoding="utf-8")

    config = load_run_config(path)

    assert config.version == "2026.10"


def test_load_run_config_reports_missing_and_malformed_files(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not found"):
        load_run_config(tmp_path / "missing.json")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_run_config(broken)
    with pytest.raises(ConfigurationError, match="JSON object"):
        load_run_config(listing)


def test_prepare_run_config_renders_prompt_templates():
    config = prepare_run_config(parse_run_config(_sample_config_data()))

    assert config.prompts.summarize_story == "为「AI 早报」总结，主持人 小明 "
    assert "{{" not in config.prompts.summarize_podcast


def test_template_helpers():
    variables = {"podcastTitle": "AI 早报"}

    assert render_template("欢迎收听{{ podcastTitle }}", variables) == "欢迎收听AI 早报"
    assert find_unknown_template_variables("{{podcastTitle}} {{host3Name}} {{host3Name}}", variables) == ["host3Name"]


def test_resolve_test_config_prefers_run_config_over_env():
    settings = Settings(workflow_test_step="story", workflow_test_input="env input", workflow_tts_input="env tts")
    config = parse_run_config(_sample_config_data(test={"workflowTestStep": "intro", "workflowTestInput": "cfg input"}))

    resolved = resolve_test_config(settings, config)

    assert resolved == TestConfig(
        workflow_test_step="intro",
        workflow_test_input="cfg input",
        workflow_test_instructions="",
        workflow_tts_input="env tts",
    )


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("RUN_ENV", "Development")
    monkeypatch.setenv("GEMINI_API_KEY", "key")
    monkeypatch.setenv("SUBREQUEST_LIMIT", "50")
    monkeypatch.setenv("STORY_PAUSE_SECONDS", "0")
    monkeypatch.setenv("BLOB_BACKEND", "S3")
    monkeypatch.delenv("SUBREQUEST_RESERVE", raising=False)
    monkeypatch.delenv("SUBREQUEST_HARD_LIMIT", raising=False)

    settings = Settings.from_env()

    assert settings.run_env == "development"
    assert settings.is_production is False
    assert settings.subrequest_limit == 50
    assert settings.story_pause == 0.0
    assert settings.blob_backend == "s3"
    assert settings.validate() == []


def test_settings_from_env_rejects_non_numeric_limits(monkeypatch):
    monkeypatch.setenv("SUBREQUEST_LIMIT", "lots")

    with pytest.raises(ValueError, match="SUBREQUEST_LIMIT"):
        Settings.from_env()


def test_settings_validate_reports_problems():
    settings = Settings(blob_backend="ftp", subrequest_limit=10, subrequest_reserve=10, subrequest_hard_limit=5)

    problems = settings.validate()

    assert len(problems) == 4
    assert Settings().story_pause == 5.0
    assert Settings(run_env="development").story_pause == 2.0
