#!/usr/bin/env python3
"""
CLI interface for the daily episode workflow.

Usage:
    python -m newscast.pipeline trigger [--window-mode rolling --window-hours 12] [--run]
    python -m newscast.pipeline run [--job-id JOB_ID]
    python -m newscast.pipeline worker [--max-runs N]
    python -m newscast.pipeline status JOB_ID
    python -m newscast.pipeline test-step STEP
    python -m newscast.pipeline init-db

Examples:
    # Queue today's job and drain the queue in this process
    python -m newscast.pipeline trigger --run

    # Resume a job whose worker died
    python -m newscast.pipeline run --job-id 0192f1c2-...

    # Check a single provider
    python -m newscast.pipeline test-step tts --verbose
"""

import argparse
import sys
from dataclasses import replace

import uuid_utils as uuid
from rich.console import Console
from rich.table import Table

from newscast.config import Settings, load_run_config, validate_run_config
from newscast.db import check_database_connection, create_db_engine, init_database
from newscast.logger import setup_logging

from .diagnostics import SUPPORTED_TEST_STEPS
from .orchestrator import PodcastWorkflow, build_dependencies, run_worker
from .state import build_job_state_key, parse_job_state, state_summary
from .trigger import start_job


console = Console()


def parse_arguments() -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Daily episode workflow - collect, summarize, compose and render a podcast episode",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging output")
    parser.add_argument("--config", type=str, metavar="PATH", help="Run config JSON (default: $RUN_CONFIG_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    trigger = subparsers.add_parser("trigger", help="Queue the first instance of a new job")
    trigger.add_argument("--window-mode", choices=("calendar", "rolling"), default="calendar")
    trigger.add_argument("--window-hours", type=int, default=24, metavar="N")
    trigger.add_argument("--job-id", type=str, metavar="ID", help="Explicit job id (UUIDv7 by default)")
    trigger.add_argument("--today", type=str, metavar="YYYY-MM-DD", help="Window date key override")
    trigger.add_argument("--run", action="store_true", help="Drain the queue after triggering")

    run = subparsers.add_parser("run", help="Run one pending instance")
    run.add_argument("--job-id", type=str, metavar="ID", help="Resume this job instead of the oldest pending instance")

    worker = subparsers.add_parser("worker", help="Drain the continuation queue")
    worker.add_argument("--max-runs", type=int, metavar="N", help="Stop after N instances")

    status = subparsers.add_parser("status", help="Show the state of a job")
    status.add_argument("job_id", type=str, metavar="JOB_ID")

    test_step = subparsers.add_parser("test-step", help="Run one diagnostic step")
    test_step.add_argument("step", type=str, choices=SUPPORTED_TEST_STEPS + ("stories",))

    subparsers.add_parser("init-db", help="Create the database tables")
    return parser.parse_args()


def _print_state(deps, job_id: str) -> bool:
    state = parse_job_state(deps.kv_store.get_json(build_job_state_key(job_id)))
    if state is None:
        console.print(f"[yellow]No state found for job {job_id}[/yellow]")
        return False

    table = Table(title=f"Job {job_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in state_summary(state).items():
        table.add_row(key, str(value))
    console.print(table)

    instances = Table(title="Instances")
    instances.add_column("Seq", justify="right")
    instances.add_column("Instance")
    instances.add_column("Status")
    instances.add_column("Error", style="red")
    for row in deps.queue.list_statuses(job_id):
        instances.add_row(str(row["seq"]), row["instanceId"], row["status"], row["error"])
    console.print(instances)
    return True


def _run_once(deps, workflow: PodcastWorkflow, job_id=None) -> None:
    queue = deps.queue
    if job_id:
        latest = queue.latest_for_job(job_id)
        if latest is None:
            raise ValueError(f"No instance found for job {job_id}")
        state = parse_job_state(deps.kv_store.get_json(build_job_state_key(job_id)))
        seq = state.continuation_seq if state is not None else latest.continuation_seq
        request = replace(latest, instance_id=f"{job_id}-r{seq}-{uuid.uuid7()}", continuation_seq=seq)
        queue.create(request)
    else:
        request = queue.next_pending()
        if request is None:
            console.print("[yellow]No pending instance[/yellow]")
            return
    _run_request(deps, workflow, request)


def _run_request(deps, workflow: PodcastWorkflow, request) -> None:
    deps.queue.mark_running(request.instance_id)
    try:
        state = workflow.run(request)
    except Exception as e:
        deps.queue.mark_finished(request.instance_id, error=str(e) or e.__class__.__name__)
        raise
    deps.queue.mark_finished(request.instance_id)
    console.print(f"[green]✓[/green] {request.instance_id} stopped at stage {state.stage.value}")


def main():
    """Main entry point for the workflow CLI."""
    args = parse_arguments()

    logger = setup_logging(logger_name="pipeline", log_file="logs/pipeline.log", verbose=args.verbose)

    try:
        settings = Settings.from_env()
        if args.command == "init-db":
            engine = create_db_engine(settings.database_url)
            if not check_database_connection(engine):
                print(f"✗ Error: cannot connect to {settings.database_url}", file=sys.stderr)
                sys.exit(1)
            init_database(engine)
            console.print("[green]✓[/green] Database tables created")
            return

        problems = settings.validate()
        config = load_run_config(args.config or settings.run_config_path)
        problems.extend(validate_run_config(config))
        if problems:
            for problem in problems:
                print(f"✗ Error: {problem}", file=sys.stderr)
            sys.exit(1)

        if args.command == "test-step":
            config = replace(config, test=replace(config.test, workflow_test_step=args.step))
        deps = build_dependencies(settings, config)
        workflow = PodcastWorkflow(deps)

        if args.command == "trigger":
            request = start_job(
                deps.queue,
                window_mode=args.window_mode,
                window_hours=args.window_hours,
                job_id=args.job_id,
                today=args.today,
            )
            console.print(f"[green]✓[/green] Job {request.job_id} queued")
            if args.run:
                counts = run_worker(workflow, deps.queue)
                console.print(f"Worker done: {counts['finished']} finished, {counts['failed']} failed")
                _print_state(deps, request.job_id)
        elif args.command == "run":
            _run_once(deps, workflow, args.job_id)
        elif args.command == "worker":
            counts = run_worker(workflow, deps.queue, max_runs=args.max_runs)
            console.print(f"Worker done: {counts['finished']} finished, {counts['failed']} failed")
            if counts["failed"]:
                sys.exit(1)
        elif args.command == "status":
            if not _print_state(deps, args.job_id):
                sys.exit(1)
        elif args.command == "test-step":
            request = start_job(deps.queue)
            _run_request(deps, workflow, request)
            if args.step == "stories":
                _print_state(deps, request.job_id)

    except Exception as e:
        logger.error(f"Workflow command {args.command} failed: {e}")
        print(f"\n✗ FAILED: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
