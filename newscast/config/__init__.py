"""This package holds configuration for the episode workflow.
settings.py : Environment settings (API keys, storage, budget knobs)
run_config.py : Per-run configuration bundle loaded from JSON
prompts.py : Default prompts and {{variable}} templating
"""

from .prompts import (
    default_prompts,
    find_unknown_template_variables,
    get_template_variables,
    render_prompt_templates,
    render_template,
)
from .run_config import (
    AiConfig,
    HostConfig,
    IntroMusicConfig,
    LinkRules,
    LocaleConfig,
    PromptsConfig,
    RunConfig,
    SiteConfig,
    SourceConfig,
    SourcesConfig,
    TestConfig,
    TtsConfig,
    load_run_config,
    parse_link_rules,
    parse_run_config,
    validate_run_config,
)
from .settings import Settings


__all__ = [
    "AiConfig",
    "HostConfig",
    "IntroMusicConfig",
    "LinkRules",
    "LocaleConfig",
    "PromptsConfig",
    "RunConfig",
    "Settings",
    "SiteConfig",
    "SourceConfig",
    "SourcesConfig",
    "TestConfig",
    "TtsConfig",
    "default_prompts",
    "find_unknown_template_variables",
    "get_template_variables",
    "load_run_config",
    "parse_link_rules",
    "parse_run_config",
    "render_prompt_templates",
    "render_template",
    "validate_run_config",
]
