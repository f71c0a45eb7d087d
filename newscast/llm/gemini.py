import logging
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from .base import TextGenerator, TextResult


logger = logging.getLogger("llm")


def get_gemini_client(api_key: Optional[str]) -> genai.Client:
    """Get configured Gemini client.

    Raises:
        ValueError: If GEMINI_API_KEY not found
    """
    if not api_key:
        raise ValueError("GEMINI_API_KEY not found in environment variables")
    return genai.Client(api_key=api_key)


class GeminiTextGenerator(TextGenerator):
    """Text generation through google-genai ``generate_content``."""

    provider = "gemini"

    def __init__(
        self,
        client: genai.Client,
        model: str,
        thinking_model: Optional[str] = None,
        max_tokens: int = 8192,
    ):
        super().__init__(model, thinking_model, max_tokens)
        self.client = client

    def generate(
        self,
        instructions: str,
        input: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> TextResult:
        config_kwargs: Dict[str, Any] = {
            "system_instruction": instructions,
            "max_output_tokens": max_tokens or self.max_tokens,
        }
        if response_schema:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_schema"] = response_schema

        model_name = model or self.model
        response = self.client.models.generate_content(
            model=model_name,
            contents=input,
            config=types.GenerateContentConfig(**config_kwargs),
        )

        finish_reason = None
        if response.candidates:
            reason = response.candidates[0].finish_reason
            finish_reason = getattr(reason, "name", None) or (str(reason) if reason else None)

        usage: Dict[str, Any] = {}
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            usage = {
                "input_tokens": metadata.prompt_token_count,
                "output_tokens": metadata.candidates_token_count,
                "total_tokens": metadata.total_token_count,
            }

        text = response.text or ""
        if not text.strip():
            logger.warning(f"Gemini returned empty text ({model_name}, finish_reason={finish_reason})")
            raise RuntimeError("Gemini generateContent returned empty output")

        return TextResult(text=text.strip(), usage=usage, finish_reason=finish_reason)
