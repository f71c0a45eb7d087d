"""
Daily episode workflow.

A job moves through five stages, each resumable from a cursor:
    1. collect_candidates : Feeds, mailbox labels and static URLs
    2. expand_gmail       : Newsletter messages into stories
    3. summarize_stories  : Content fetch, relevance verdict and summary
    4. compose_text       : Dialogue script, blog, intro and title
    5. tts_render         : Speech synthesis, intro music and publication

Every execution instance works under a call budget and hands the job to a
queued continuation before the budget runs out.

Usage:
    # CLI interface
    python -m newscast.pipeline trigger --run
    python -m newscast.pipeline worker
    python -m newscast.pipeline status <job-id>

    # Programmatic interface
    from newscast.pipeline import PodcastWorkflow, build_dependencies, start_job, run_worker
"""

__version__ = "0.1.0"

from .budget import BudgetCosts, BudgetTracker
from .context import WorkflowContext, WorkflowDependencies, WorkflowTiming, prepare_run_config
from .continuation import ContinuationQueue, ContinuationRequest, ContinuationSpawner, SqlContinuationQueue
from .diagnostics import run_test_step
from .orchestrator import PodcastWorkflow, build_dependencies, run_worker
from .retry import RetryPolicy
from .stages import (
    STAGE_HANDLERS,
    run_collect_stage,
    run_compose_stage,
    run_expand_stage,
    run_summarize_stage,
    run_tts_stage,
)
from .state import JobState, WorkflowStage, parse_job_state, state_summary
from .trigger import start_job

__all__ = [
    # Orchestration
    "PodcastWorkflow",
    "build_dependencies",
    "run_worker",
    "start_job",
    "run_test_step",
    # Stage functions
    "STAGE_HANDLERS",
    "run_collect_stage",
    "run_expand_stage",
    "run_summarize_stage",
    "run_compose_stage",
    "run_tts_stage",
    # Building blocks
    "BudgetCosts",
    "BudgetTracker",
    "ContinuationQueue",
    "ContinuationRequest",
    "ContinuationSpawner",
    "SqlContinuationQueue",
    "JobState",
    "RetryPolicy",
    "WorkflowContext",
    "WorkflowDependencies",
    "WorkflowStage",
    "WorkflowTiming",
    "parse_job_state",
    "prepare_run_config",
    "state_summary",
]
