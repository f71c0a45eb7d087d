"""
Per-instance accounting of outbound calls.

Every costed operation declares a weight. The tracker adds completed weights
to ``used`` and answers whether the next operation still fits while keeping
``reserve`` units for the checkpoint and continuation that must follow a
handoff decision. The weights are heuristics calibrated against the host's
quota, not exact counts.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

from newscast.errors import SubrequestLimitError
from newscast.logger import format_fields


logger = logging.getLogger("pipeline")

DEFAULT_SUBREQUEST_LIMIT = 35
DEFAULT_SUBREQUEST_RESERVE = 6


@dataclass(frozen=True)
class BudgetCosts:
    kv_read: int = 1
    kv_write: int = 1
    blob_read: int = 1
    blob_write: int = 1
    rss_base: int = 1
    rss_newsletter_item: int = 2
    gmail_base: int = 2
    gmail_per_ref: int = 1
    gmail_expand: int = 3
    story_content: int = 2
    story_summary: int = 2
    llm_compose: int = 2
    tts_line: int = 3
    audio_merge: int = 3
    intro_music: int = 3
    workflow_create: int = 1

    def rss_source_cost(self, source_item_ids: Iterable[Optional[str]]) -> int:
        """Feed fetch plus one expansion per distinct newsletter item."""
        distinct = {(item_id or "").strip() for item_id in source_item_ids}
        distinct.discard("")
        return self.rss_base + len(distinct) * self.rss_newsletter_item

    def gmail_source_cost(self, ref_count: int) -> int:
        return self.gmail_base + max(0, int(ref_count)) * self.gmail_per_ref

    def collect_estimate(self, source_type: str) -> int:
        if source_type == "rss":
            predicted = self.rss_base + self.rss_newsletter_item
        elif source_type == "gmail":
            predicted = self.gmail_base + self.gmail_per_ref
        else:
            predicted = 0
        return predicted + self.blob_write + self.workflow_create

    def expand_estimate(self) -> int:
        return self.gmail_expand + self.blob_write + self.workflow_create

    def summarize_estimate(self) -> int:
        return self.story_content + self.story_summary + self.blob_write + self.workflow_create

    def compose_estimate(self) -> int:
        return self.llm_compose * 4 + self.kv_write + self.blob_write + self.workflow_create

    def gemini_tts_estimate(self) -> int:
        return self.tts_line + self.audio_merge + self.intro_music + self.kv_write + self.workflow_create

    def tts_line_estimate(self) -> int:
        return self.tts_line + self.workflow_create

    def post_process_estimate(self) -> int:
        return self.audio_merge + self.intro_music + self.kv_write + self.workflow_create


def _to_units(cost: float) -> int:
    return max(0, math.floor(cost))


@dataclass
class BudgetTracker:
    """
    Running call count for one execution instance.

    Attributes:
        limit: Soft ceiling used for handoff decisions.
        reserve: Units held back for the state save and continuation create.
        hard_limit: Optional true ceiling; consuming past it raises SubrequestLimitError.
        used: Units consumed so far, never reset within an instance.
    """

    limit: int = DEFAULT_SUBREQUEST_LIMIT
    reserve: int = DEFAULT_SUBREQUEST_RESERVE
    hard_limit: Optional[int] = None
    job_id: str = ""
    costs: BudgetCosts = field(default_factory=BudgetCosts)
    used: int = 0

    def consume(self, cost: float, label: str, **extra) -> int:
        """
        Record a completed operation.

        Args:
            cost: Declared weight, floored and clamped at zero
            label: What was consumed, for the log line
            **extra: Additional fields for the observation line

        Returns:
            Units used after this operation

        Raises:
            SubrequestLimitError: If a hard limit is set and is now exceeded
        """
        units = _to_units(cost)
        self.used += units
        logger.info(
            format_fields(
                "subrequest budget consumed",
                jobId=self.job_id,
                label=label,
                cost=units,
                used=self.used,
                limit=self.limit,
                reserve=self.reserve,
                **extra,
            )
        )
        if self.hard_limit is not None and self.used > self.hard_limit:
            raise SubrequestLimitError(
                f"Too many subrequests: used {self.used} of {self.hard_limit} after {label}"
            )
        return self.used

    def should_handoff(self, next_cost: float) -> bool:
        return self.used + _to_units(next_cost) + self.reserve > self.limit

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    def snapshot(self) -> dict:
        return {"used": self.used, "limit": self.limit, "reserve": self.reserve}
