"""
Per-run configuration bundle.

The bundle is loaded once per workflow instance from JSON, validated at load
time and passed explicitly into every stage. All sub-structures are frozen
dataclasses with documented defaults so stages never re-check optional fields.

JSON keys use camelCase (``speakerMarker``, ``lookbackDays``) and map onto the
snake_case dataclass fields below.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from newscast.errors import ConfigurationError

from .prompts import default_prompts


logger = logging.getLogger("pipeline")

SOURCE_TYPES = ("rss", "gmail", "url")
AI_PROVIDERS = ("openai", "gemini")
TTS_PROVIDERS = ("edge", "minimax", "murf", "gemini")
WORKFLOW_TEST_STEPS = ("", "openai", "responses", "tts", "story", "podcast", "blog", "intro", "stories")

DEFAULT_TIMEZONE = "America/Chicago"
DEFAULT_NEWSLETTER_HOSTS = ("kill-the-newsletter.com",)
DEFAULT_ARCHIVE_LINK_KEYWORDS = ("in your browser", "in a browser", "in browser")
DEFAULT_GEMINI_PROMPT = "请用中文播报以下播客对话，语气自然、节奏流畅、音量稳定。"
DEFAULT_GEMINI_VOICES = ("Puck", "Zephyr")
DEFAULT_AUDIO_QUALITY = 5


@dataclass(frozen=True)
class SiteConfig:
    title: str = "Any Podcast"
    description: str = "一个可配置的 AI 播客：自动聚合内容源，生成中文摘要并输出播客音频。"


@dataclass(frozen=True)
class HostConfig:
    id: str
    name: str
    speaker_marker: str
    gender: Optional[str] = None
    persona: str = ""
    link: str = ""


@dataclass(frozen=True)
class AiConfig:
    provider: str = ""
    model: str = "gemini-2.0-flash"
    thinking_model: Optional[str] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class IntroMusicConfig:
    """Intro music mixing parameters.

    Attributes:
        url: Theme music location (blob key, file path or http URL).
        fade_out_start: Seconds into the theme where the fade out begins.
        fade_out_duration: Fade out length in seconds.
        podcast_delay: Milliseconds of theme played before the voice track starts.
    """

    url: Optional[str] = "static/theme.mp3"
    fade_out_start: float = 19
    fade_out_duration: float = 3
    podcast_delay: float = 19000


@dataclass(frozen=True)
class TtsConfig:
    provider: str = "gemini"
    language: str = "zh-CN"
    language_boost: Optional[str] = None
    model: Optional[str] = None
    voices: Mapping[str, str] = field(default_factory=dict)
    speed: Optional[Union[str, float]] = None
    gemini_prompt: str = DEFAULT_GEMINI_PROMPT
    intro_music: IntroMusicConfig = field(default_factory=IntroMusicConfig)
    audio_quality: int = DEFAULT_AUDIO_QUALITY
    skip_tts: bool = False
    api_url: Optional[str] = None


@dataclass(frozen=True)
class LocaleConfig:
    language: str = "zh"
    timezone: str = DEFAULT_TIMEZONE
    date_format: str = "YYYY-MM-DD"


@dataclass(frozen=True)
class LinkRules:
    """Newsletter link filtering rules, passed to the extraction model."""

    include_domains: Tuple[str, ...] = ()
    exclude_domains: Tuple[str, ...] = ()
    exclude_path_keywords: Tuple[str, ...] = ()
    exclude_text: Tuple[str, ...] = ()
    debug: bool = False
    resolve_tracking_links: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "includeDomains": list(self.include_domains),
            "excludeDomains": list(self.exclude_domains),
            "excludePathKeywords": list(self.exclude_path_keywords),
            "excludeText": list(self.exclude_text),
            "debug": self.debug,
            "resolveTrackingLinks": self.resolve_tracking_links,
        }


@dataclass(frozen=True)
class SourceConfig:
    id: str
    name: str
    type: str
    url: str
    enabled: bool = True
    lookback_days: Optional[int] = None
    label: Optional[str] = None
    max_messages: Optional[int] = None
    link_rules: LinkRules = field(default_factory=LinkRules)


@dataclass(frozen=True)
class SourcesConfig:
    lookback_days: int = 1
    items: Tuple[SourceConfig, ...] = ()
    newsletter_hosts: Tuple[str, ...] = DEFAULT_NEWSLETTER_HOSTS
    archive_link_keywords: Tuple[str, ...] = DEFAULT_ARCHIVE_LINK_KEYWORDS

    @property
    def enabled(self) -> List[SourceConfig]:
        return [source for source in self.items if source.enabled]


@dataclass(frozen=True)
class PromptsConfig:
    summarize_story: str
    summarize_podcast: str
    summarize_blog: str
    intro: str
    title: str
    extract_newsletter_links: str

    @classmethod
    def defaults(cls) -> "PromptsConfig":
        return cls(**default_prompts())


@dataclass(frozen=True)
class TestConfig:
    """Diagnostic overrides. Empty strings mean "not set"."""

    __test__ = False

    workflow_test_step: str = ""
    workflow_test_input: str = ""
    workflow_test_instructions: str = ""
    workflow_tts_input: str = ""


def _default_hosts() -> Tuple[HostConfig, ...]:
    return (
        HostConfig(id="host1", name="主持人A", speaker_marker="男", gender="male"),
        HostConfig(id="host2", name="主持人B", speaker_marker="女", gender="female"),
    )


@dataclass(frozen=True)
class RunConfig:
    site: SiteConfig = field(default_factory=SiteConfig)
    hosts: Tuple[HostConfig, ...] = field(default_factory=_default_hosts)
    ai: AiConfig = field(default_factory=AiConfig)
    tts: TtsConfig = field(default_factory=TtsConfig)
    locale: LocaleConfig = field(default_factory=LocaleConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig.defaults)
    test: TestConfig = field(default_factory=TestConfig)
    version: str = "latest"

    @property
    def speaker_markers(self) -> List[str]:
        return [host.speaker_marker.strip() for host in self.hosts if host.speaker_marker.strip()]

    @property
    def timezone(self) -> str:
        return self.locale.timezone or DEFAULT_TIMEZONE


# Parsing helpers


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def parse_link_rules(data: Optional[Mapping[str, Any]]) -> LinkRules:
    data = data or {}
    return LinkRules(
        include_domains=_as_tuple(data.get("includeDomains")),
        exclude_domains=_as_tuple(data.get("excludeDomains")),
        exclude_path_keywords=_as_tuple(data.get("excludePathKeywords")),
        exclude_text=_as_tuple(data.get("excludeText")),
        debug=bool(data.get("debug", False)),
        resolve_tracking_links=data.get("resolveTrackingLinks") is not False,
    )


def _parse_source(data: Mapping[str, Any]) -> SourceConfig:
    return SourceConfig(
        id=str(data.get("id", "")).strip(),
        name=str(data.get("name", "")).strip(),
        type=str(data.get("type", "")).strip().lower(),
        url=str(data.get("url", "")).strip(),
        enabled=data.get("enabled") is not False,
        lookback_days=data.get("lookbackDays"),
        label=data.get("label"),
        max_messages=data.get("maxMessages"),
        link_rules=parse_link_rules(data.get("linkRules")),
    )


def _parse_hosts(items: Optional[List[Mapping[str, Any]]]) -> Tuple[HostConfig, ...]:
    if not items:
        return _default_hosts()
    return tuple(
        HostConfig(
            id=str(item.get("id", "")).strip(),
            name=str(item.get("name", "")).strip(),
            speaker_marker=str(item.get("speakerMarker", "")).strip(),
            gender=item.get("gender"),
            persona=item.get("persona") or "",
            link=item.get("link") or "",
        )
        for item in items
    )


def _parse_tts(data: Mapping[str, Any], hosts: Tuple[HostConfig, ...]) -> TtsConfig:
    raw_voices = dict(data.get("voices") or {})
    host_ids = {host.id for host in hosts}
    voices = {host_id: str(voice) for host_id, voice in raw_voices.items() if host_id in host_ids and voice}

    music = data.get("introMusic") or {}
    intro_music = IntroMusicConfig(
        url=music.get("url") or IntroMusicConfig.url,
        fade_out_start=music.get("fadeOutStart", 19),
        fade_out_duration=music.get("fadeOutDuration", 3),
        podcast_delay=music.get("podcastDelay", 19000),
    )
    return TtsConfig(
        provider=(data.get("provider") or "gemini").strip().lower(),
        language=data.get("language") or "zh-CN",
        language_boost=data.get("languageBoost"),
        model=data.get("model") or None,
        voices=voices,
        speed=data.get("speed"),
        gemini_prompt=data.get("geminiPrompt") or DEFAULT_GEMINI_PROMPT,
        intro_music=intro_music,
        audio_quality=int(data.get("audioQuality") or DEFAULT_AUDIO_QUALITY),
        skip_tts=data.get("skipTts") is True,
        api_url=data.get("apiUrl") or None,
    )


def _parse_test(data: Optional[Mapping[str, Any]]) -> TestConfig:
    data = data or {}
    step = str(data.get("workflowTestStep") or "").strip().lower()
    return TestConfig(
        workflow_test_step=step if step in WORKFLOW_TEST_STEPS else "",
        workflow_test_input=str(data.get("workflowTestInput") or ""),
        workflow_test_instructions=str(data.get("workflowTestInstructions") or ""),
        workflow_tts_input=str(data.get("workflowTtsInput") or ""),
    )


def parse_run_config(data: Mapping[str, Any]) -> RunConfig:
    """
    Build a validated RunConfig from its JSON representation.

    Args:
        data (Mapping[str, Any]): Decoded JSON object. Missing sections take defaults.

    Returns:
        RunConfig: Immutable configuration bundle.

    Raises:
        ConfigurationError: If validation fails, listing every problem found.
    """
    hosts = _parse_hosts(data.get("hosts"))

    site_data = data.get("site") or {}
    site_defaults = SiteConfig()
    site = SiteConfig(
        title=site_data.get("title") or site_defaults.title,
        description=site_data.get("description") or site_defaults.description,
    )

    ai_data = data.get("ai") or {}
    ai_defaults = AiConfig()
    ai = AiConfig(
        provider=(ai_data.get("provider") or "").strip().lower(),
        model=(ai_data.get("model") if "model" in ai_data else ai_defaults.model) or "",
        thinking_model=ai_data.get("thinkingModel") or None,
        max_tokens=ai_data.get("maxTokens"),
        base_url=ai_data.get("baseUrl") or None,
    )

    locale_data = data.get("locale") or {}
    locale = LocaleConfig(
        language=locale_data.get("language") or "zh",
        timezone=locale_data.get("timezone") or DEFAULT_TIMEZONE,
        date_format=locale_data.get("dateFormat") or "YYYY-MM-DD",
    )

    sources_data = data.get("sources") or {}
    sources = SourcesConfig(
        lookback_days=int(sources_data.get("lookbackDays") or 1),
        items=tuple(_parse_source(item) for item in sources_data.get("items") or []),
        newsletter_hosts=_as_tuple(sources_data.get("newsletterHosts")) or DEFAULT_NEWSLETTER_HOSTS,
        archive_link_keywords=(
            _as_tuple(sources_data.get("archiveLinkKeywords")) or DEFAULT_ARCHIVE_LINK_KEYWORDS
        ),
    )

    prompt_data = data.get("prompts") or {}
    defaults = default_prompts()
    prompts = PromptsConfig(
        summarize_story=prompt_data.get("summarizeStory") or defaults["summarize_story"],
        summarize_podcast=prompt_data.get("summarizePodcast") or defaults["summarize_podcast"],
        summarize_blog=prompt_data.get("summarizeBlog") or defaults["summarize_blog"],
        intro=prompt_data.get("intro") or defaults["intro"],
        title=prompt_data.get("title") or defaults["title"],
        extract_newsletter_links=(
            prompt_data.get("extractNewsletterLinks") or defaults["extract_newsletter_links"]
        ),
    )

    meta = data.get("meta") or {}
    config = RunConfig(
        site=site,
        hosts=hosts,
        ai=ai,
        tts=_parse_tts(data.get("tts") or {}, hosts),
        locale=locale,
        sources=sources,
        prompts=prompts,
        test=_parse_test(data.get("test")),
        version=str(meta.get("version") or data.get("version") or "latest"),
    )

    problems = validate_run_config(config)
    if problems:
        raise ConfigurationError("Invalid run configuration: " + "; ".join(problems))
    return config


def validate_run_config(config: RunConfig) -> List[str]:
    """
    Check a RunConfig for structural problems.

    Returns:
        List[str]: Human readable problems, empty when the config is valid.
    """
    problems = []

    if len(config.hosts) < 2:
        problems.append("at least two hosts are required")
    seen_ids = set()
    for index, host in enumerate(config.hosts):
        if not host.id:
            problems.append(f"hosts[{index}].id is required")
        elif host.id in seen_ids:
            problems.append(f"hosts[{index}].id '{host.id}' is duplicated")
        seen_ids.add(host.id)
        if not host.speaker_marker:
            problems.append(f"hosts[{index}].speakerMarker is required")

    if config.ai.provider and config.ai.provider not in AI_PROVIDERS:
        problems.append(f"ai.provider must be one of {', '.join(AI_PROVIDERS)}")
    if not config.ai.model.strip():
        problems.append("ai.model is required")
    if config.ai.max_tokens is not None and config.ai.max_tokens <= 0:
        problems.append("ai.maxTokens must be positive")

    if config.tts.provider not in TTS_PROVIDERS:
        problems.append(f"tts.provider must be one of {', '.join(TTS_PROVIDERS)}")

    try:
        ZoneInfo(config.locale.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        problems.append(f"locale.timezone '{config.locale.timezone}' is not a known time zone")

    if config.sources.lookback_days < 1:
        problems.append("sources.lookbackDays must be at least 1")
    source_ids = set()
    for index, source in enumerate(config.sources.items):
        prefix = f"sources.items[{index}]"
        if not source.id:
            problems.append(f"{prefix}.id is required")
        elif source.id in source_ids:
            problems.append(f"{prefix}.id '{source.id}' is duplicated")
        source_ids.add(source.id)
        if source.type not in SOURCE_TYPES:
            problems.append(f"{prefix}.type must be one of {', '.join(SOURCE_TYPES)}")
        if not source.url and source.type in ("rss", "url"):
            problems.append(f"{prefix}.url is required for {source.type} sources")
        if source.type == "gmail" and not (source.label or "").strip():
            problems.append(f"{prefix}.label is required for gmail sources")
        if source.lookback_days is not None and source.lookback_days < 1:
            problems.append(f"{prefix}.lookbackDays must be at least 1")

    return problems


def load_run_config(path: Optional[Union[str, Path]] = None) -> RunConfig:
    """
    Load the run configuration from a JSON file.

    Args:
        path (Optional[str | Path]): JSON file. None returns the built-in defaults.

    Returns:
        RunConfig: Validated configuration.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    if path is None:
        return parse_run_config({})

    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Run config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Run config file is not valid JSON: {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Run config file must contain a JSON object: {config_path}")

    config = parse_run_config(data)
    logger.info(
        f"Loaded run config {config_path} (version={config.version}, "
        f"sources={len(config.sources.enabled)}/{len(config.sources.items)})"
    )
    return config
