from __future__ import annotations

import pytest

from conftest import DIALOGUE, FakeCollector, build_deps, _sample_story
from newscast.config import Settings
from newscast.pipeline import PodcastWorkflow, run_test_step, start_job
from newscast.pipeline.budget import BudgetTracker
from newscast.pipeline.continuation import ContinuationRequest
from newscast.pipeline.context import WorkflowContext
from newscast.pipeline.state import create_initial_state
from newscast.sources import SourceResult, build_time_window, parse_datetime


NOW = parse_datetime("2026-10-19T15:00:00.000Z")


def _sample_context(deps) -> WorkflowContext:
    request = ContinuationRequest(instance_id="diag-1", job_id="diag-1", now_iso="2026-10-19T15:00:00.000Z")
    state = create_initial_state(
        "diag-1", 0, request.now_iso, "2026-10-18", "calendar", 24, "2026-10-19", request.now_iso, 1
    )
    window = build_time_window(NOW, "calendar", 24, 1, "America/Chicago")
    return WorkflowContext(deps, request, state, BudgetTracker(limit=1000), window, NOW)


def _sample_collector(content: str = "An open model was released today.") -> FakeCollector:
    story = _sample_story(1)
    return FakeCollector(results={"feed": SourceResult(stories=[story])}, contents={story.url: content})


def test_responses_step_uses_overrides_and_primary_model():
    deps = build_deps(
        _sample_collector(),
        config_overrides={"test": {"workflowTestInstructions": "SAY HI", "workflowTestInput": "hello"}},
        responder=lambda instructions, input, model: f"{instructions}/{input}",
    )

    output = run_test_step(_sample_context(deps), "Responses")

    assert output == "SAY HI/hello"
    assert deps.generator.calls[0]["model"] == "fake-model"


def test_podcast_step_uses_thinking_model():
    deps = build_deps(_sample_collector())

    output = run_test_step(_sample_context(deps), "podcast")

    assert output == DIALOGUE
    assert deps.generator.calls[0]["instructions"] == "SUMMARIZE_PODCAST"
    assert deps.generator.calls[0]["model"] == "fake-thinking"
    assert "<story>" in deps.generator.calls[0]["input"]


def test_story_step_summarizes_first_candidate():
    deps = build_deps(_sample_collector())

    output = run_test_step(_sample_context(deps), "story")

    assert output.startswith("summary of An open model")
    assert deps.collector.content_requests == ["https://news.example.com/articles/1"]


def test_story_step_reports_irrelevant_story():
    deps = build_deps(_sample_collector("Some irrelevant gossip."))

    assert run_test_step(_sample_context(deps), "story") == "NOT_RELEVANT: off topic"


def test_story_step_without_candidates_fails():
    deps = build_deps(FakeCollector(results={}, contents={}))

    with pytest.raises(RuntimeError, match="no candidate story"):
        run_test_step(_sample_context(deps), "story")


def test_tts_step_is_skipped_when_tts_disabled():
    deps = build_deps(_sample_collector())

    assert run_test_step(_sample_context(deps), "tts").startswith("tts skipped")


def test_tts_step_renders_sample_dialogue_per_line():
    deps = build_deps(
        _sample_collector(),
        config_overrides={"tts": {"provider": "edge", "skipTts": False}},
    )

    output = run_test_step(_sample_context(deps), "tts")

    assert output.startswith("edge tts ok: 3 lines")
    assert len(deps.speakers[0].spoken) == 3
    assert sorted(deps.blob_store.data) == [
        "tmp/diag-1/tts-test-0.mp3",
        "tmp/diag-1/tts-test-1.mp3",
        "tmp/diag-1/tts-test-2.mp3",
        "tmp/diag-1/tts-test.merged.mp3",
    ]


def test_unsupported_step_is_rejected():
    deps = build_deps(_sample_collector())

    with pytest.raises(ValueError, match='"publish" is not supported'):
        run_test_step(_sample_context(deps), "publish")


def test_workflow_diagnostic_run_leaves_no_job_state():
    deps = build_deps(
        _sample_collector(),
        config_overrides={"test": {"workflowTestStep": "intro"}},
        settings=Settings(run_env="development", gemini_api_key="test-key", workflow_test_input="env input"),
    )
    request = start_job(deps.queue, now=NOW, job_id="diag-2")

    state = PodcastWorkflow(deps).run(request)

    assert state.is_done
    assert deps.kv_store.data == {}
    assert deps.generator.calls[0]["instructions"] == "INTRO"
    assert deps.generator.calls[0]["input"] == "env input"
