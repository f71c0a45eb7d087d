"""
Per-instance workflow context.

Holds the collaborators, the job state and the budget of one execution
instance, and implements the checkpoint primitives every stage relies on:
state saves, snapshot reads/writes, pauses and budget-driven handoffs.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from newscast.audio import AudioProcessor, PydubAudioProcessor
from newscast.config import RunConfig, Settings, TestConfig
from newscast.config.prompts import get_template_variables, render_prompt_templates
from newscast.llm import TextGenerator
from newscast.sources import SourceCollector, TimeWindow
from newscast.storage import BlobStore, KeyValueStore
from newscast.tts import (
    GeminiSpeechSynthesizer,
    SpeechSynthesizer,
    TtsSettings,
    create_gemini_synthesizer,
    create_speech_synthesizer,
)

from .budget import BudgetTracker
from .continuation import ContinuationQueue, ContinuationRequest, ContinuationSpawner
from .retry import RetryPolicy
from .snapshots import CandidateSnapshot, ComposeSnapshot, SnapshotStore, SummarySnapshot
from .state import (
    JobState,
    WorkflowStage,
    build_continuation_id,
    build_job_data_key,
    build_job_state_key,
    log_observation,
    normalize_progress,
    now_ms,
)


logger = logging.getLogger("pipeline")


@dataclass
class WorkflowTiming:
    """Pauses that keep providers from rate limiting the job.

    Attributes:
        story_pause: Between stories and before each compose call.
        tts_line_pause: Between per-line synthesis calls.
        pre_mix_pause: Before intro music mixing.
        sleep: Sleep function.
    """

    story_pause: float = 2.0
    tts_line_pause: float = 12.0
    pre_mix_pause: float = 30.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowTiming":
        return cls(
            story_pause=settings.story_pause,
            tts_line_pause=settings.tts_line_pause_seconds,
            pre_mix_pause=settings.pre_mix_pause_seconds,
        )

    @classmethod
    def none(cls) -> "WorkflowTiming":
        return cls(story_pause=0, tts_line_pause=0, pre_mix_pause=0, sleep=lambda seconds: None)

    def pause(self, label: str, seconds: float) -> None:
        if seconds <= 0:
            return
        logger.debug(f"pause {seconds:.1f}s: {label}")
        self.sleep(seconds)


@dataclass
class WorkflowDependencies:
    """Collaborators of the workflow, built once per process.

    The run config is expected with prompt templates already rendered
    (see ``prepare_run_config``).
    """

    settings: Settings
    config: RunConfig
    kv_store: KeyValueStore
    blob_store: BlobStore
    queue: ContinuationQueue
    generator: Optional[TextGenerator] = None
    collector: Optional[SourceCollector] = None
    audio: AudioProcessor = field(default_factory=PydubAudioProcessor)
    speech_factory: Optional[Callable[[str, TtsSettings], SpeechSynthesizer]] = None
    gemini_factory: Optional[Callable[[TtsSettings], GeminiSpeechSynthesizer]] = None
    theme_loader: Optional[Callable[[Optional[str]], bytes]] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timing: WorkflowTiming = field(default_factory=WorkflowTiming)

    def __post_init__(self):
        if self.collector is None:
            self.collector = SourceCollector(self.settings, self.config, self.generator)
        if self.speech_factory is None:
            self.speech_factory = lambda provider, tts_settings: create_speech_synthesizer(
                provider, self.settings, tts_settings
            )
        if self.gemini_factory is None:
            self.gemini_factory = lambda tts_settings: create_gemini_synthesizer(self.settings, tts_settings)


def prepare_run_config(config: RunConfig) -> RunConfig:
    """Render the prompt templates of a run config against its own variables."""
    prompts = render_prompt_templates(config.prompts, get_template_variables(config))
    return replace(config, prompts=prompts)


def resolve_test_config(settings: Settings, config: RunConfig) -> TestConfig:
    """Diagnostic overrides: the run config wins, the environment fills gaps."""
    return TestConfig(
        workflow_test_step=(config.test.workflow_test_step or settings.workflow_test_step or "").strip().lower(),
        workflow_test_input=config.test.workflow_test_input or settings.workflow_test_input,
        workflow_test_instructions=config.test.workflow_test_instructions or settings.workflow_test_instructions,
        workflow_tts_input=config.test.workflow_tts_input or settings.workflow_tts_input,
    )


class WorkflowContext:
    """
    Everything one execution instance of a job works with.

    Args:
        deps: Process-wide collaborators
        request: The execution request this instance serves
        state: Job state, loaded or freshly created
        budget: Call budget of this instance
        window: Collection window of the job
        now: Reference instant of the job
    """

    def __init__(
        self,
        deps: WorkflowDependencies,
        request: ContinuationRequest,
        state: JobState,
        budget: BudgetTracker,
        window: TimeWindow,
        now: datetime,
    ):
        self.deps = deps
        self.settings = deps.settings
        self.config = deps.config
        self.request = request
        self.state = state
        self.budget = budget
        self.costs = budget.costs
        self.window = window
        self.now = now
        self.retry = deps.retry
        self.timing = deps.timing
        self.snapshots = SnapshotStore(deps.blob_store)
        self.spawner = ContinuationSpawner(deps.queue, deps.retry)
        self.test = resolve_test_config(deps.settings, deps.config)
        self.spawned_instance_id: Optional[str] = None

    @property
    def job_id(self) -> str:
        return self.state.job_id

    @property
    def generator(self) -> TextGenerator:
        if self.deps.generator is None:
            raise RuntimeError("A text generator is required for this stage")
        return self.deps.generator

    @property
    def max_tokens(self) -> int:
        return self.generator.max_tokens

    def step(self, label: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run one unit of work under the shared retry policy."""
        return self.retry.run(label, fn, *args, **kwargs)

    def consume(self, cost: float, label: str, **extra) -> int:
        return self.budget.consume(cost, label, **extra)

    def observe(self, label: str, **extra) -> None:
        log_observation(self.state, label, self.budget, **extra)

    def pause(self, label: str, seconds: Optional[float] = None) -> None:
        self.timing.pause(label, self.timing.story_pause if seconds is None else seconds)

    def save_state(self, label: str) -> None:
        """Persist the job state and record the write."""

        def _put() -> str:
            self.state.progress = normalize_progress(self.state.progress, self.state.cursor)
            self.state.updated_at = now_ms()
            self.deps.kv_store.put_json(build_job_state_key(self.job_id), self.state.to_dict())
            return self.state.stage.value

        self.step(label, _put)
        self.consume(self.costs.kv_write, label)
        self.observe(f"state saved: {label}")

    def mark_done(self, label: str) -> None:
        self.state.mark_done()
        self.observe(label)
        self.save_state(label)

    def load_candidates(self) -> CandidateSnapshot:
        if not self.state.candidates_key:
            return CandidateSnapshot()
        loaded = self.step(
            "load candidates snapshot", self.snapshots.load, self.state.candidates_key, CandidateSnapshot
        )
        self.consume(self.costs.blob_read, "load candidates snapshot")
        return loaded or CandidateSnapshot()

    def save_candidates(self, snapshot: CandidateSnapshot) -> None:
        key = self.state.candidates_key or build_job_data_key(self.job_id, "candidates")
        self.step("save candidates snapshot", self.snapshots.save, key, snapshot)
        self.consume(self.costs.blob_write, "save candidates snapshot")
        self.state.candidates_key = key

    def load_summary(self) -> SummarySnapshot:
        if not self.state.summary_key:
            return SummarySnapshot()
        loaded = self.step("load summary snapshot", self.snapshots.load, self.state.summary_key, SummarySnapshot)
        self.consume(self.costs.blob_read, "load summary snapshot")
        return loaded or SummarySnapshot()

    def save_summary(self, snapshot: SummarySnapshot) -> None:
        key = self.state.summary_key or build_job_data_key(self.job_id, "summary")
        self.step("save summary snapshot", self.snapshots.save, key, snapshot)
        self.consume(self.costs.blob_write, "save summary snapshot")
        self.state.summary_key = key

    def load_compose(self) -> Optional[ComposeSnapshot]:
        if not self.state.compose_key:
            return None
        loaded = self.step("load compose snapshot", self.snapshots.load, self.state.compose_key, ComposeSnapshot)
        self.consume(self.costs.blob_read, "load compose snapshot")
        return loaded

    def save_compose(self, snapshot: ComposeSnapshot) -> None:
        key = self.state.compose_key or build_job_data_key(self.job_id, "compose")
        self.step("save compose snapshot", self.snapshots.save, key, snapshot)
        self.consume(self.costs.blob_write, "save compose snapshot")
        self.state.compose_key = key

    def spawn_continuation(self, reason: str) -> str:
        """
        Checkpoint the state under the next sequence number and enqueue the successor.

        Returns:
            str: Instance id of the continuation
        """
        self.state.continuation_seq += 1
        self.save_state(f"checkpoint before continuation: {reason}")
        next_seq = self.state.continuation_seq
        request = ContinuationRequest(
            instance_id=build_continuation_id(self.job_id, next_seq),
            job_id=self.job_id,
            continuation_seq=next_seq,
            now_iso=self.state.now_iso,
            today=self.state.today,
            window_mode=self.state.window_mode,
            window_hours=self.state.window_hours,
        )
        instance_id = self.spawner.spawn(request)
        self.consume(self.costs.workflow_create, "spawn continuation")
        logger.info(
            f"continuation spawned (job={self.job_id}, reason={reason}, "
            f"current={self.request.instance_id}, next={instance_id}, stage={self.state.stage.value})"
        )
        self.observe("continuation spawned", reason=reason, nextInstanceId=instance_id)
        self.spawned_instance_id = instance_id
        return instance_id

    def maybe_handoff(
        self,
        stage: WorkflowStage,
        next_cost: float,
        reason: str,
        cursor_patch: Optional[Dict[str, int]] = None,
        before_checkpoint: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Hand the job to a continuation if the next unit of work would not fit.

        Args:
            stage: Stage to resume in
            next_cost: Declared cost of the next unit of work
            reason: Log reason
            cursor_patch: Cursor fields to persist, e.g. {"story_index": 3}
            before_checkpoint: Saves the stage's in-progress snapshot before the state write

        Returns:
            bool: True when a continuation was spawned and this instance must stop
        """
        if not self.budget.should_handoff(next_cost):
            return False

        self.observe("handoff required", reason=reason, nextCost=next_cost)
        if before_checkpoint is not None:
            before_checkpoint()
        self.state.stage = stage
        for name, value in (cursor_patch or {}).items():
            setattr(self.state.cursor, name, value)
        self.state.progress = normalize_progress(self.state.progress, self.state.cursor)
        self.spawn_continuation(reason)
        return True
