import logging
from typing import Any, Dict, Optional

from openai import OpenAI

from .base import TextGenerator, TextResult


logger = logging.getLogger("llm")


def init_llm_openai(api_key: Optional[str], base_url: Optional[str] = None) -> OpenAI:
    """
    Initialize OpenAI client.

    Args:
        api_key: OpenAI API key
        base_url: Optional compatible endpoint

    Returns:
        OpenAI client instance

    Raises:
        ValueError: If the API key is missing
    """
    if not api_key:
        raise ValueError("OPENAI_API_KEY not found in environment variables.")
    if base_url:
        return OpenAI(api_key=api_key, base_url=base_url)
    return OpenAI(api_key=api_key)


class OpenAITextGenerator(TextGenerator):
    """Text generation through the OpenAI Responses API.

    Structured output schemas are not forwarded; callers parse JSON from the text.
    """

    provider = "openai"

    def __init__(
        self,
        client: OpenAI,
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
        request: Dict[str, Any] = {
            "model": model or self.model,
            "instructions": instructions,
            "input": input,
            "max_output_tokens": max_tokens or self.max_tokens,
        }
        response = self.client.responses.create(**request)

        usage: Dict[str, Any] = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "input_tokens": getattr(response.usage, "input_tokens", None),
                "output_tokens": getattr(response.usage, "output_tokens", None),
                "total_tokens": getattr(response.usage, "total_tokens", None),
            }

        finish_reason = getattr(response, "status", None)
        incomplete = getattr(response, "incomplete_details", None)
        if incomplete is not None and getattr(incomplete, "reason", None):
            finish_reason = incomplete.reason
            logger.warning(f"OpenAI response incomplete ({request['model']}): {finish_reason}")

        text = (response.output_text or "").strip()
        if not text:
            raise RuntimeError("OpenAI Responses API returned empty output")

        return TextResult(
            text=text,
            usage=usage,
            finish_reason=finish_reason,
        )
