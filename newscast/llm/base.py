"""Text generation contract shared by every AI provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class TextResult:
    """Outcome of one generation call.

    Attributes:
        text: Generated text, stripped of surrounding whitespace.
        usage: Provider token counters, when reported.
        finish_reason: Provider stop reason, when reported.
    """

    text: str
    usage: Dict[str, Any] = field(default_factory=dict)
    finish_reason: Optional[str] = None


class TextGenerator(ABC):
    """A configured AI text provider.

    One implementation exists per provider, chosen once per run by
    ``create_text_generator``. ``model`` is the primary model and
    ``thinking_model`` the one used for long-form composition.
    """

    provider: str = ""

    def __init__(self, model: str, thinking_model: Optional[str] = None, max_tokens: int = 8192):
        self.model = model
        self.thinking_model = thinking_model or model
        self.max_tokens = max_tokens

    @abstractmethod
    def generate(
        self,
        instructions: str,
        input: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> TextResult:
        """
        Run one generation call.

        Args:
            instructions: System instructions.
            input: User input.
            model: Model override, defaults to the primary model.
            max_tokens: Output token cap, defaults to the configured value.
            response_schema: Optional JSON schema requesting structured output.

        Returns:
            TextResult: Generated text with usage metadata.
        """
