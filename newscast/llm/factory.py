import logging

from newscast.config import AiConfig, Settings
from newscast.errors import ConfigurationError

from .base import TextGenerator
from .gemini import GeminiTextGenerator, get_gemini_client
from .openai import OpenAITextGenerator, init_llm_openai


logger = logging.getLogger("llm")

DEFAULT_MAX_TOKENS = 8192


def resolve_ai_provider(settings: Settings, ai_config: AiConfig) -> str:
    """Pick the configured provider, else Gemini when its key exists, else OpenAI."""
    if ai_config.provider:
        return ai_config.provider
    return "gemini" if settings.gemini_api_key else "openai"


def create_text_generator(settings: Settings, ai_config: AiConfig) -> TextGenerator:
    """
    Build the text generator for this run.

    Args:
        settings (Settings): Environment settings holding the API keys.
        ai_config (AiConfig): Provider, models and token cap from the run config.

    Returns:
        TextGenerator: Provider implementation bound to its models.

    Raises:
        ConfigurationError: If the provider is unknown, its key is missing or no model is set.
    """
    provider = resolve_ai_provider(settings, ai_config)
    model = (ai_config.model or "").strip()
    if not model:
        raise ConfigurationError("ai.model is required")
    max_tokens = ai_config.max_tokens or DEFAULT_MAX_TOKENS
    thinking_model = ai_config.thinking_model or model

    try:
        if provider == "gemini":
            generator: TextGenerator = GeminiTextGenerator(
                get_gemini_client(settings.gemini_api_key), model, thinking_model, max_tokens
            )
        elif provider == "openai":
            generator = OpenAITextGenerator(
                init_llm_openai(settings.openai_api_key, ai_config.base_url),
                model,
                thinking_model,
                max_tokens,
            )
        else:
            raise ConfigurationError(f"Unsupported AI provider: {provider}")
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    logger.info(f"Text generator ready: {provider} (model={model}, thinking={thinking_model})")
    return generator
