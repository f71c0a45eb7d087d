"""
Durable per-job state record and key builders.

The record is small and rewritten after every checkpoint. ``stage`` plus
``cursor`` is enough to resume a job; ``progress`` is observability only.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from newscast.logger import format_fields
from newscast.sources.window import to_iso


logger = logging.getLogger("pipeline")


class WorkflowStage(str, Enum):
    """Pipeline stages, strictly forward in declaration order."""

    COLLECT_CANDIDATES = "collect_candidates"
    EXPAND_GMAIL = "expand_gmail"
    SUMMARIZE_STORIES = "summarize_stories"
    COMPOSE_TEXT = "compose_text"
    TTS_RENDER = "tts_render"
    DONE = "done"


STAGE_ORDER = list(WorkflowStage)

STAGE_NAMES = {
    WorkflowStage.COLLECT_CANDIDATES: "collect candidates",
    WorkflowStage.EXPAND_GMAIL: "expand gmail links",
    WorkflowStage.SUMMARIZE_STORIES: "summarize stories",
    WorkflowStage.COMPOSE_TEXT: "compose podcast/blog text",
    WorkflowStage.TTS_RENDER: "render tts audio",
    WorkflowStage.DONE: "done",
}

TTS_PROVIDER_NAMES = ("edge", "gemini", "minimax", "murf")
BLOCKED_STORY_HOSTNAMES = frozenset({"doi.org", "dx.doi.org"})
DEFAULT_WINDOW_HOURS = 24


def _non_negative_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):
        return default
    return max(0, math.floor(value))


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Cursor:
    source_index: int = 0
    gmail_index: int = 0
    story_index: int = 0
    tts_line_index: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "sourceIndex": self.source_index,
            "gmailIndex": self.gmail_index,
            "storyIndex": self.story_index,
            "ttsLineIndex": self.tts_line_index,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Cursor":
        record = data if isinstance(data, Mapping) else {}
        return cls(
            source_index=_non_negative_int(record.get("sourceIndex")),
            gmail_index=_non_negative_int(record.get("gmailIndex")),
            story_index=_non_negative_int(record.get("storyIndex")),
            tts_line_index=_non_negative_int(record.get("ttsLineIndex")),
        )

    def key(self) -> str:
        return f"{self.source_index}:{self.gmail_index}:{self.story_index}:{self.tts_line_index}"


@dataclass
class Progress:
    sources_total: int = 0
    sources_processed: int = 0
    gmail_total: int = 0
    gmail_processed: int = 0
    stories_total: int = 0
    stories_processed: int = 0
    stories_relevant: int = 0
    tts_total: int = 0
    tts_processed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "sourcesTotal": self.sources_total,
            "sourcesProcessed": self.sources_processed,
            "gmailTotal": self.gmail_total,
            "gmailProcessed": self.gmail_processed,
            "storiesTotal": self.stories_total,
            "storiesProcessed": self.stories_processed,
            "storiesRelevant": self.stories_relevant,
            "ttsTotal": self.tts_total,
            "ttsProcessed": self.tts_processed,
        }

    @classmethod
    def from_dict(cls, data: Any, cursor: Optional[Cursor] = None) -> "Progress":
        record = data if isinstance(data, Mapping) else {}
        progress = cls(
            sources_total=_non_negative_int(record.get("sourcesTotal")),
            sources_processed=_non_negative_int(record.get("sourcesProcessed")),
            gmail_total=_non_negative_int(record.get("gmailTotal")),
            gmail_processed=_non_negative_int(record.get("gmailProcessed")),
            stories_total=_non_negative_int(record.get("storiesTotal")),
            stories_processed=_non_negative_int(record.get("storiesProcessed")),
            stories_relevant=_non_negative_int(record.get("storiesRelevant")),
            tts_total=_non_negative_int(record.get("ttsTotal")),
            tts_processed=_non_negative_int(record.get("ttsProcessed")),
        )
        return normalize_progress(progress, cursor or Cursor())


def normalize_progress(progress: Progress, cursor: Cursor) -> Progress:
    """
    Bring counters in line with the cursor.

    Processed counts never fall behind the cursor, totals never fall behind
    processed counts, and the relevant count never exceeds the story total.
    """
    sources_processed = max(progress.sources_processed, cursor.source_index)
    gmail_processed = max(progress.gmail_processed, cursor.gmail_index)
    stories_processed = max(progress.stories_processed, cursor.story_index)
    tts_processed = max(progress.tts_processed, cursor.tts_line_index)
    stories_total = max(progress.stories_total, stories_processed)
    return Progress(
        sources_total=max(progress.sources_total, sources_processed),
        sources_processed=sources_processed,
        gmail_total=max(progress.gmail_total, gmail_processed),
        gmail_processed=gmail_processed,
        stories_total=stories_total,
        stories_processed=stories_processed,
        stories_relevant=min(max(0, progress.stories_relevant), stories_total),
        tts_total=max(progress.tts_total, tts_processed),
        tts_processed=tts_processed,
    )


@dataclass
class JobState:
    """
    Persisted state of one job, shared by every continuation instance.

    Attributes:
        job_id: Stable id across continuations.
        stage: Current WorkflowStage.
        continuation_seq: Sequence number of the instance that owns the job.
        now_iso: Reference instant the window was computed from.
        today: Date key of the collection window.
        window_mode: "calendar" or "rolling".
        window_hours: Rolling window length.
        publish_date_key: Date key the episode is published under.
        published_at: ISO timestamp written into the published record.
        cursor: Next unprocessed index per stage.
        progress: Observability counters.
        provider: TTS provider chosen when the render stage started.
        updated_at: Epoch milliseconds of the last save.
        status: "running" or "done".
    """

    job_id: str
    stage: WorkflowStage = WorkflowStage.COLLECT_CANDIDATES
    continuation_seq: int = 0
    now_iso: str = ""
    today: str = ""
    window_mode: str = "calendar"
    window_hours: int = DEFAULT_WINDOW_HOURS
    publish_date_key: str = ""
    published_at: str = ""
    cursor: Cursor = field(default_factory=Cursor)
    progress: Progress = field(default_factory=Progress)
    candidates_key: Optional[str] = None
    summary_key: Optional[str] = None
    compose_key: Optional[str] = None
    content_key: Optional[str] = None
    podcast_key: Optional[str] = None
    provider: Optional[str] = None
    updated_at: int = field(default_factory=now_ms)
    status: str = "running"

    @property
    def is_done(self) -> bool:
        return self.status == "done" or self.stage == WorkflowStage.DONE

    def mark_done(self) -> None:
        self.stage = WorkflowStage.DONE
        self.status = "done"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "jobId": self.job_id,
            "stage": self.stage.value,
            "continuationSeq": self.continuation_seq,
            "nowIso": self.now_iso,
            "today": self.today,
            "windowMode": self.window_mode,
            "windowHours": self.window_hours,
            "publishDateKey": self.publish_date_key,
            "publishedAt": self.published_at,
            "cursor": self.cursor.to_dict(),
            "progress": self.progress.to_dict(),
            "updatedAt": self.updated_at,
            "status": self.status,
        }
        optional = {
            "candidatesKey": self.candidates_key,
            "summaryKey": self.summary_key,
            "composeKey": self.compose_key,
            "contentKey": self.content_key,
            "podcastKey": self.podcast_key,
            "provider": self.provider,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


def parse_job_state(value: Any) -> Optional[JobState]:
    """
    Rebuild a JobState from its persisted form.

    Malformed numbers fall back to defaults and progress is normalized against
    the cursor.

    Args:
        value: Decoded JSON document, or None

    Returns:
        Optional[JobState]: None when the record is missing, has no job id or
        names an unknown stage.
    """
    if not isinstance(value, Mapping):
        return None
    job_id = value.get("jobId")
    if not isinstance(job_id, str) or not job_id.strip():
        return None
    try:
        stage = WorkflowStage(value.get("stage"))
    except ValueError:
        return None

    cursor = Cursor.from_dict(value.get("cursor"))
    window_hours = value.get("windowHours")
    updated_at = value.get("updatedAt")
    provider = value.get("provider")
    return JobState(
        job_id=job_id,
        stage=stage,
        continuation_seq=_non_negative_int(value.get("continuationSeq")),
        now_iso=_optional_str(value.get("nowIso")) or to_iso(datetime.now(timezone.utc)),
        today=_optional_str(value.get("today")) or "",
        window_mode="rolling" if value.get("windowMode") == "rolling" else "calendar",
        window_hours=(
            max(1, _non_negative_int(window_hours))
            if isinstance(window_hours, (int, float)) and not isinstance(window_hours, bool)
            else DEFAULT_WINDOW_HOURS
        ),
        publish_date_key=_optional_str(value.get("publishDateKey")) or "",
        published_at=_optional_str(value.get("publishedAt")) or "",
        cursor=cursor,
        progress=Progress.from_dict(value.get("progress"), cursor),
        candidates_key=_optional_str(value.get("candidatesKey")),
        summary_key=_optional_str(value.get("summaryKey")),
        compose_key=_optional_str(value.get("composeKey")),
        content_key=_optional_str(value.get("contentKey")),
        podcast_key=_optional_str(value.get("podcastKey")),
        provider=provider if provider in TTS_PROVIDER_NAMES else None,
        updated_at=(
            int(updated_at)
            if isinstance(updated_at, (int, float)) and not isinstance(updated_at, bool) and math.isfinite(updated_at)
            else now_ms()
        ),
        status="done" if value.get("status") == "done" else "running",
    )


def create_initial_state(
    job_id: str,
    continuation_seq: int,
    now_iso: str,
    today: str,
    window_mode: str,
    window_hours: int,
    publish_date_key: str,
    published_at: str,
    source_total: int,
) -> JobState:
    return JobState(
        job_id=job_id,
        continuation_seq=continuation_seq,
        now_iso=now_iso,
        today=today,
        window_mode="rolling" if window_mode == "rolling" else "calendar",
        window_hours=max(1, int(window_hours)),
        publish_date_key=publish_date_key,
        published_at=published_at,
        progress=Progress(sources_total=max(0, source_total)),
    )


def build_job_state_key(job_id: str) -> str:
    return f"workflow:job:{job_id}:state"


def build_job_data_key(job_id: str, name: str) -> str:
    return f"workflow/jobs/{job_id}/{name}.json"


def build_content_key(run_env: str, publish_date_key: str) -> str:
    return f"content:{run_env}:{publish_date_key}"


def build_podcast_key(run_env: str, publish_date_key: str) -> str:
    return f"{run_env}/episodes/{publish_date_key}/podcast.mp3"


def build_temp_audio_prefix(job_id: str) -> str:
    return f"tmp/{job_id}/podcast"


def build_continuation_id(job_id: str, seq: int) -> str:
    return f"{job_id}-c{seq}"


def is_blocked_story_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return hostname in BLOCKED_STORY_HOSTNAMES


def log_observation(
    state: JobState,
    label: str,
    budget: Optional[Any] = None,
    **extra: Any,
) -> None:
    """Write one structured line describing where the job stands."""
    budget_fields: Dict[str, Any] = {}
    if budget is not None:
        budget_fields = {
            "budgetUsed": budget.used,
            "budgetLimit": budget.limit,
            "budgetReserve": budget.reserve,
        }
    logger.info(
        format_fields(
            "workflow observation",
            jobId=state.job_id,
            stage=state.stage.value,
            stageName=STAGE_NAMES[state.stage],
            stageOrder=STAGE_ORDER.index(state.stage) + 1,
            continuationSeq=state.continuation_seq,
            status=state.status,
            cursor=state.cursor.to_dict(),
            progress=state.progress.to_dict(),
            label=label,
            **budget_fields,
            **extra,
        )
    )


def state_summary(state: JobState) -> Dict[str, Any]:
    """Flat view of a state for CLI output."""
    summary = {
        "jobId": state.job_id,
        "stage": state.stage.value,
        "status": state.status,
        "continuationSeq": state.continuation_seq,
        "publishDateKey": state.publish_date_key,
        "contentKey": state.content_key or "",
        "podcastKey": state.podcast_key or "",
    }
    summary.update({f"cursor.{key}": value for key, value in asdict(state.cursor).items()})
    summary.update({f"progress.{key}": value for key, value in asdict(state.progress).items()})
    return summary
