import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from newscast.config import RunConfig, Settings
from newscast.db import create_db_engine, init_database, make_session_factory
from newscast.llm import create_text_generator
from newscast.logger import log_function
from newscast.sources import build_time_window, date_key_in_zone, parse_datetime, to_iso
from newscast.storage import LocalBlobStore, S3BlobStore, SqlKeyValueStore

from .budget import BudgetTracker
from .context import WorkflowContext, WorkflowDependencies, WorkflowTiming, prepare_run_config
from .continuation import ContinuationRequest, SqlContinuationQueue
from .diagnostics import run_test_step
from .retry import RetryPolicy
from .stages import STAGE_HANDLERS
from .state import JobState, build_job_state_key, create_initial_state, normalize_progress, parse_job_state


logger = logging.getLogger("pipeline")


def build_dependencies(settings: Settings, config: RunConfig) -> WorkflowDependencies:
    """
    Wire the production collaborators from the environment.

    Args:
        settings: Environment settings
        config: Raw run config (prompts get rendered here)

    Returns:
        WorkflowDependencies: Ready to drive a PodcastWorkflow
    """
    engine = create_db_engine(settings.database_url)
    init_database(engine)
    session_factory = make_session_factory(engine)
    blob_store = S3BlobStore.from_env() if settings.blob_backend == "s3" else LocalBlobStore(settings.blob_root)
    prepared = prepare_run_config(config)
    return WorkflowDependencies(
        settings=settings,
        config=prepared,
        kv_store=SqlKeyValueStore(session_factory),
        blob_store=blob_store,
        queue=SqlContinuationQueue(session_factory),
        generator=create_text_generator(settings, prepared.ai),
        retry=RetryPolicy(),
        timing=WorkflowTiming.from_settings(settings),
    )


class PodcastWorkflow:
    """
    Runs one execution instance of a job: load or create the state, then
    drive stage handlers until the job is done or handed off.
    """

    def __init__(self, deps: WorkflowDependencies):
        self.deps = deps

    def _load_state(self, budget: BudgetTracker, job_id: str) -> Optional[JobState]:
        raw = self.deps.retry.run("load workflow state", self.deps.kv_store.get_json, build_job_state_key(job_id))
        budget.consume(budget.costs.kv_read, "load workflow state")
        return parse_job_state(raw)

    @log_function(logger_name="pipeline", log_execution_time=True)
    def run(self, request: ContinuationRequest) -> JobState:
        """
        Execute one instance.

        Args:
            request: The queued request naming the job and its parameters

        Returns:
            JobState: State at the moment this instance stopped
        """
        settings = self.deps.settings
        config = self.deps.config
        now = parse_datetime(request.now_iso) or datetime.now(timezone.utc)
        window = build_time_window(
            now,
            request.window_mode,
            request.window_hours,
            max(1, config.sources.lookback_days),
            config.timezone,
        )
        today = request.today or window.date_key
        publish_date_key = date_key_in_zone(now, config.timezone)
        published_at = to_iso(now)

        budget = BudgetTracker(
            limit=settings.subrequest_limit,
            reserve=settings.subrequest_reserve,
            hard_limit=settings.subrequest_hard_limit,
            job_id=request.job_id,
        )
        bootstrap = create_initial_state(
            request.job_id,
            request.continuation_seq,
            to_iso(now),
            today,
            request.window_mode,
            request.window_hours,
            publish_date_key,
            published_at,
            len(config.sources.enabled),
        )
        ctx = WorkflowContext(self.deps, request, bootstrap, budget, window, now)

        if ctx.test.workflow_test_step and ctx.test.workflow_test_step != "stories":
            output = run_test_step(ctx, ctx.test.workflow_test_step)
            logger.info(f"workflow test step {ctx.test.workflow_test_step} done ({len(output)} chars)")
            bootstrap.mark_done()
            return bootstrap

        state = self._load_state(budget, request.job_id)
        if state is None:
            ctx.state = bootstrap
            ctx.observe("create initial state", instanceId=request.instance_id)
        else:
            state.progress.sources_total = max(state.progress.sources_total, len(config.sources.enabled))
            state.progress = normalize_progress(state.progress, state.cursor)
            ctx.state = state
            ctx.observe("resume from persisted state", instanceId=request.instance_id)

        state = ctx.state
        state.today = state.today or today
        state.publish_date_key = state.publish_date_key or publish_date_key
        state.published_at = state.published_at or published_at
        state.now_iso = state.now_iso or to_iso(now)
        ctx.save_state("save workflow state bootstrap")

        last_marker = None
        while True:
            if state.is_done:
                ctx.observe("workflow loop exit")
                return state
            marker = f"{state.stage.value}:{state.cursor.key()}"
            if marker != last_marker:
                ctx.observe("enter stage")
                last_marker = marker
            handler = STAGE_HANDLERS[state.stage]
            if handler(ctx):
                return state


def run_worker(
    workflow: PodcastWorkflow,
    queue: SqlContinuationQueue,
    max_runs: Optional[int] = None,
) -> Dict[str, int]:
    """
    Drain the continuation queue in order.

    A failed instance is marked failed and the worker moves on to the next
    request.

    Args:
        workflow: Workflow bound to the same queue
        queue: Queue to drain
        max_runs: Stop after this many instances (None drains the queue)

    Returns:
        Dict[str, int]: Counts of finished and failed instances
    """
    counts = {"finished": 0, "failed": 0}
    runs = 0
    while max_runs is None or runs < max_runs:
        request = queue.next_pending()
        if request is None:
            break
        runs += 1
        queue.mark_running(request.instance_id)
        try:
            state = workflow.run(request)
            queue.mark_finished(request.instance_id)
            counts["finished"] += 1
            logger.info(
                f"instance {request.instance_id} finished (job={request.job_id}, stage={state.stage.value})"
            )
        except Exception as e:
            queue.mark_finished(request.instance_id, error=str(e) or e.__class__.__name__)
            counts["failed"] += 1
            logger.error(f"instance {request.instance_id} failed (job={request.job_id}): {e}", exc_info=True)
    logger.info(f"worker stopped after {runs} run(s): {counts}")
    return counts
