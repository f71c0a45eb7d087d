import logging
from datetime import datetime, timezone
from typing import Optional

import uuid_utils as uuid

from newscast.sources import to_iso

from .continuation import ContinuationQueue, ContinuationRequest


logger = logging.getLogger("pipeline")


def start_job(
    queue: ContinuationQueue,
    now: Optional[datetime] = None,
    window_mode: str = "calendar",
    window_hours: int = 24,
    job_id: Optional[str] = None,
    today: Optional[str] = None,
) -> ContinuationRequest:
    """
    Enqueue the first instance of a new job.

    The first instance id is the job id itself; continuations derive theirs
    from it.

    Args:
        queue: Queue the worker drains
        now: Reference instant (defaults to the current time)
        window_mode: "calendar" or "rolling"
        window_hours: Rolling window length
        job_id: Explicit job id (a UUIDv7 is generated otherwise)
        today: Window date key override

    Returns:
        ContinuationRequest: The queued request
    """
    job_id = job_id or str(uuid.uuid7())
    request = ContinuationRequest(
        instance_id=job_id,
        job_id=job_id,
        continuation_seq=0,
        now_iso=to_iso(now or datetime.now(timezone.utc)),
        today=today,
        window_mode="rolling" if window_mode == "rolling" else "calendar",
        window_hours=max(1, int(window_hours)),
    )
    queue.create(request)
    logger.info(f"job {job_id} triggered (windowMode={request.window_mode}, nowIso={request.now_iso})")
    return request
