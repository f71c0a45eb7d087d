"""This package contain modules related to large language models (LLMs).
base.py : TextGenerator contract and TextResult
openai.py : OpenAI Responses API implementation
gemini.py : Google Gemini implementation
factory.py : Provider selection from settings and run config
"""

from .base import TextGenerator, TextResult
from .factory import create_text_generator, resolve_ai_provider
from .gemini import GeminiTextGenerator, get_gemini_client
from .openai import OpenAITextGenerator, init_llm_openai


__all__ = [
    "GeminiTextGenerator",
    "OpenAITextGenerator",
    "TextGenerator",
    "TextResult",
    "create_text_generator",
    "get_gemini_client",
    "init_llm_openai",
    "resolve_ai_provider",
]
