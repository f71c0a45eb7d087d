"""
Process-level settings read from the environment.

Secrets and deployment knobs live here; everything that shapes a single
episode run lives in ``RunConfig``.
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_DATABASE_URL = "sqlite:///data/newscast.db"
DEFAULT_BLOB_ROOT = "data/blobs"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{value}'")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{value}'")


@dataclass
class Settings:
    """Environment settings for one worker process.

    Attributes:
        run_env: "production" or anything else (development). Several limits are
            relaxed or tightened outside production.
        subrequest_limit: Soft per-instance call budget used for handoff decisions.
        subrequest_reserve: Units held back for the final checkpoint and spawn.
        subrequest_hard_limit: Optional ceiling that raises SubrequestLimitError when crossed.
        story_pause_seconds: Pause between stories in summarization. None picks the
            run_env default (2s in development, 5s in production).
    """

    run_env: str = "production"
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    jina_key: Optional[str] = None
    firecrawl_key: Optional[str] = None
    tts_api_id: Optional[str] = None
    tts_api_key: Optional[str] = None
    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_refresh_token: Optional[str] = None
    gmail_user_email: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    blob_backend: str = "local"
    blob_root: str = DEFAULT_BLOB_ROOT
    run_config_path: Optional[str] = None
    subrequest_limit: int = 35
    subrequest_reserve: int = 6
    subrequest_hard_limit: Optional[int] = None
    story_pause_seconds: Optional[float] = None
    tts_line_pause_seconds: float = 12.0
    pre_mix_pause_seconds: float = 30.0
    workflow_test_step: str = ""
    workflow_test_input: str = ""
    workflow_test_instructions: str = ""
    workflow_tts_input: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables (after loading ``.env``).

        Returns:
            Settings: Populated settings.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        load_dotenv()
        story_pause = os.getenv("STORY_PAUSE_SECONDS")
        return cls(
            run_env=(os.getenv("RUN_ENV") or "production").strip().lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            jina_key=os.getenv("JINA_KEY") or None,
            firecrawl_key=os.getenv("FIRECRAWL_KEY") or None,
            tts_api_id=os.getenv("TTS_API_ID") or None,
            tts_api_key=os.getenv("TTS_API_KEY") or None,
            gmail_client_id=os.getenv("GMAIL_CLIENT_ID") or None,
            gmail_client_secret=os.getenv("GMAIL_CLIENT_SECRET") or None,
            gmail_refresh_token=os.getenv("GMAIL_REFRESH_TOKEN") or None,
            gmail_user_email=os.getenv("GMAIL_USER_EMAIL") or None,
            database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
            blob_backend=(os.getenv("BLOB_BACKEND") or "local").strip().lower(),
            blob_root=os.getenv("BLOB_ROOT") or DEFAULT_BLOB_ROOT,
            run_config_path=os.getenv("RUN_CONFIG_PATH") or None,
            subrequest_limit=_env_int("SUBREQUEST_LIMIT", 35),
            subrequest_reserve=_env_int("SUBREQUEST_RESERVE", 6),
            subrequest_hard_limit=_env_int("SUBREQUEST_HARD_LIMIT", None),
            story_pause_seconds=(
                _env_float("STORY_PAUSE_SECONDS", 0.0) if story_pause else None
            ),
            tts_line_pause_seconds=_env_float("TTS_LINE_PAUSE_SECONDS", 12.0),
            pre_mix_pause_seconds=_env_float("PRE_MIX_PAUSE_SECONDS", 30.0),
            workflow_test_step=(os.getenv("WORKFLOW_TEST_STEP") or "").strip().lower(),
            workflow_test_input=os.getenv("WORKFLOW_TEST_INPUT") or "",
            workflow_test_instructions=os.getenv("WORKFLOW_TEST_INSTRUCTIONS") or "",
            workflow_tts_input=os.getenv("WORKFLOW_TTS_INPUT") or "",
        )

    @property
    def is_production(self) -> bool:
        return self.run_env == "production"

    @property
    def story_pause(self) -> float:
        if self.story_pause_seconds is not None:
            return self.story_pause_seconds
        return 5.0 if self.is_production else 2.0

    def validate(self) -> List[str]:
        """
        Check the settings for problems that would break a run.

        Returns:
            List[str]: Human readable problems, empty when everything is usable.
        """
        problems = []
        if self.blob_backend not in ("local", "s3"):
            problems.append(f"BLOB_BACKEND must be 'local' or 's3', got '{self.blob_backend}'")
        if not self.openai_api_key and not self.gemini_api_key:
            problems.append("OPENAI_API_KEY or GEMINI_API_KEY must be set")
        if self.subrequest_limit <= 0:
            problems.append("SUBREQUEST_LIMIT must be positive")
        if self.subrequest_reserve < 0:
            problems.append("SUBREQUEST_RESERVE must not be negative")
        if self.subrequest_reserve >= self.subrequest_limit:
            problems.append("SUBREQUEST_RESERVE must be lower than SUBREQUEST_LIMIT")
        if (
            self.subrequest_hard_limit is not None
            and self.subrequest_hard_limit < self.subrequest_limit
        ):
            problems.append("SUBREQUEST_HARD_LIMIT must not be lower than SUBREQUEST_LIMIT")
        return problems
