"""
Execution requests and the queue that hands a job from one instance to the next.

A handoff is a message: the finishing instance enqueues a request carrying
everything the successor needs to resume, under a deterministic instance id
so a retried create cannot enqueue the same handoff twice.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from newscast.db import ContinuationRecord, ContinuationStatus, get_db_session
from newscast.errors import ContinuationExistsError

from .retry import SPAWN_RETRIES, RetryPolicy


logger = logging.getLogger("pipeline")


@dataclass(frozen=True)
class ContinuationRequest:
    """
    Parameters of one workflow execution instance.

    Attributes:
        instance_id: Deterministic id, the job id for the first instance and
            "<job>-c<seq>" for continuations.
        job_id: Logical job shared by all instances.
        continuation_seq: Position of this instance within the job.
        now_iso: Reference instant, fixed for the whole job.
        today: Window date key override.
        window_mode: "calendar" or "rolling".
        window_hours: Rolling window length.
    """

    instance_id: str
    job_id: str
    continuation_seq: int = 0
    now_iso: Optional[str] = None
    today: Optional[str] = None
    window_mode: str = "calendar"
    window_hours: int = 24

    def to_params(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "continuationSeq": self.continuation_seq,
            "nowIso": self.now_iso,
            "today": self.today,
            "windowMode": self.window_mode,
            "windowHours": self.window_hours,
        }

    @classmethod
    def from_params(cls, instance_id: str, params: Dict[str, Any]) -> "ContinuationRequest":
        window_hours = params.get("windowHours")
        return cls(
            instance_id=instance_id,
            job_id=(params.get("jobId") or "").strip() or instance_id,
            continuation_seq=max(0, int(params.get("continuationSeq") or 0)),
            now_iso=params.get("nowIso") or None,
            today=params.get("today") or None,
            window_mode="rolling" if params.get("windowMode") == "rolling" else "calendar",
            window_hours=int(window_hours) if isinstance(window_hours, (int, float)) else 24,
        )


class ContinuationQueue(ABC):
    """Where execution requests wait for a worker."""

    @abstractmethod
    def create(self, request: ContinuationRequest) -> str:
        """
        Enqueue a request.

        Returns:
            str: The instance id

        Raises:
            ContinuationExistsError: If the instance id was already enqueued
        """

    @abstractmethod
    def get(self, instance_id: str) -> Optional[ContinuationRequest]:
        """Look up a request by instance id."""


class SqlContinuationQueue(ContinuationQueue):
    """Requests stored in the ``continuations`` table, drained in FIFO order."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, request: ContinuationRequest) -> str:
        with get_db_session(self.session_factory) as session:
            if session.get(ContinuationRecord, request.instance_id) is not None:
                raise ContinuationExistsError(f"Instance {request.instance_id} already exists")
            last_order = session.query(func.max(ContinuationRecord.queued_order)).scalar() or 0
            session.add(
                ContinuationRecord(
                    instance_id=request.instance_id,
                    job_id=request.job_id,
                    continuation_seq=request.continuation_seq,
                    params=json.dumps(request.to_params(), ensure_ascii=False),
                    status=ContinuationStatus.PENDING,
                    queued_order=last_order + 1,
                )
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ContinuationExistsError(f"Instance {request.instance_id} already exists") from e
        logger.info(f"Queued workflow instance {request.instance_id} (job={request.job_id})")
        return request.instance_id

    def get(self, instance_id: str) -> Optional[ContinuationRequest]:
        with get_db_session(self.session_factory) as session:
            record = session.get(ContinuationRecord, instance_id)
            if record is None:
                return None
            return ContinuationRequest.from_params(record.instance_id, json.loads(record.params))

    def next_pending(self) -> Optional[ContinuationRequest]:
        """Oldest request that has not started yet."""
        with get_db_session(self.session_factory) as session:
            record = (
                session.query(ContinuationRecord)
                .filter(ContinuationRecord.status == ContinuationStatus.PENDING)
                .order_by(ContinuationRecord.queued_order.asc())
                .first()
            )
            if record is None:
                return None
            return ContinuationRequest.from_params(record.instance_id, json.loads(record.params))

    def latest_for_job(self, job_id: str) -> Optional[ContinuationRequest]:
        with get_db_session(self.session_factory) as session:
            record = (
                session.query(ContinuationRecord)
                .filter(ContinuationRecord.job_id == job_id)
                .order_by(ContinuationRecord.continuation_seq.desc())
                .first()
            )
            if record is None:
                return None
            return ContinuationRequest.from_params(record.instance_id, json.loads(record.params))

    def list_statuses(self, job_id: str) -> List[Dict[str, Any]]:
        with get_db_session(self.session_factory) as session:
            records = (
                session.query(ContinuationRecord)
                .filter(ContinuationRecord.job_id == job_id)
                .order_by(ContinuationRecord.continuation_seq.asc())
                .all()
            )
            return [
                {
                    "instanceId": record.instance_id,
                    "seq": record.continuation_seq,
                    "status": record.status.value,
                    "error": record.error or "",
                }
                for record in records
            ]

    def _set_status(self, instance_id: str, status: ContinuationStatus, error: Optional[str] = None) -> None:
        with get_db_session(self.session_factory) as session:
            record = session.get(ContinuationRecord, instance_id)
            if record is None:
                logger.warning(f"Cannot mark unknown instance {instance_id} as {status.value}")
                return
            record.status = status
            record.error = error
            session.commit()

    def mark_running(self, instance_id: str) -> None:
        self._set_status(instance_id, ContinuationStatus.RUNNING)

    def mark_finished(self, instance_id: str, error: Optional[str] = None) -> None:
        status = ContinuationStatus.FAILED if error else ContinuationStatus.FINISHED
        self._set_status(instance_id, status, error)


def _is_duplicate_error(error: BaseException) -> bool:
    if isinstance(error, ContinuationExistsError):
        return True
    message = str(error).lower()
    return "already exists" in message or "duplicate" in message


class ContinuationSpawner:
    """Idempotent continuation creation on top of a queue."""

    def __init__(self, queue: ContinuationQueue, retry: Optional[RetryPolicy] = None):
        self.queue = queue
        self.retry = retry or RetryPolicy()

    def _create(self, request: ContinuationRequest) -> str:
        try:
            return self.queue.create(request)
        except Exception as e:
            if _is_duplicate_error(e):
                logger.info(f"Continuation {request.instance_id} already exists, treating as created")
                return request.instance_id
            raise

    def spawn(self, request: ContinuationRequest) -> str:
        """
        Create the continuation, treating a duplicate as success.

        Returns:
            str: The deterministic instance id
        """
        return self.retry.run(
            f"spawn continuation #{request.continuation_seq}",
            self._create,
            request,
            retries=SPAWN_RETRIES,
        )
