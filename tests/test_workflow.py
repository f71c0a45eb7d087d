from __future__ import annotations

import json
from dataclasses import replace

import pytest

from conftest import DIALOGUE, FakeAudio, FakeCollector, build_deps, default_responder, _sample_story
from newscast.config import Settings
from newscast.errors import ConfigurationError, SnapshotMissingError, SubrequestLimitError
from newscast.pipeline import PodcastWorkflow, WorkflowStage, parse_job_state, run_worker, start_job
from newscast.pipeline.continuation import ContinuationRequest
from newscast.pipeline.state import build_content_key, build_job_state_key
from newscast.sources import SourceResult, parse_datetime
from newscast.tts import GeminiAudio


NOW_ISO = "2026-10-19T15:00:00.000Z"
JOB_ID = "job-1"


def _sample_collector(extra_contents=None) -> FakeCollector:
    stories = [_sample_story(1), _sample_story(2), _sample_story(3)]
    contents = {
        stories[0].url: "An open model was released today with strong benchmarks.",
        stories[1].url: "This one is irrelevant celebrity gossip.",
        stories[2].url: "A privacy dispute over browser telemetry escalated.",
    }
    contents.update(extra_contents or {})
    return FakeCollector(results={"feed": SourceResult(stories=stories)}, contents=contents)


def _start(deps):
    return start_job(deps.queue, now=parse_datetime(NOW_ISO), job_id=JOB_ID)


def _load_state(deps, job_id: str = JOB_ID):
    return parse_job_state(deps.kv_store.get_json(build_job_state_key(job_id)))


def _content_record(deps):
    state = _load_state(deps)
    return deps.kv_store.get_json(state.content_key)


def _big_budget() -> Settings:
    return Settings(run_env="development", gemini_api_key="test-key", subrequest_limit=1000)


def test_skip_tts_run_publishes_text_for_relevant_stories():
    collector = _sample_collector()
    deps = build_deps(collector, settings=_big_budget())
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 1, "failed": 0}
    state = _load_state(deps)
    assert state.is_done
    assert state.progress.stories_total == 3
    assert state.progress.stories_relevant == 2
    record = _content_record(deps)
    assert record["title"] == "开源模型与隐私"
    assert record["podcastContent"] == DIALOGUE
    assert record["audio"] == ""
    assert record["updatedBy"] == "workflow"
    assert [story["url"] for story in record["stories"]] == [
        "https://news.example.com/articles/1",
        "https://news.example.com/articles/3",
    ]
    assert state.content_key == build_content_key("development", "2026-10-19")


def test_compose_inputs_keep_story_order_and_use_thinking_model():
    deps = build_deps(_sample_collector(), settings=_big_budget())
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    podcast_calls = [call for call in deps.generator.calls if call["instructions"] == "SUMMARIZE_PODCAST"]
    assert len(podcast_calls) == 1
    assert podcast_calls[0]["model"] == "fake-thinking"
    summaries = podcast_calls[0]["input"].split("\n\n---\n\n")
    assert len(summaries) == 2
    assert summaries[0].startswith("<story>summary of An open model")
    assert summaries[1].startswith("<story>summary of A privacy dispute")
    blog_call = next(call for call in deps.generator.calls if call["instructions"] == "SUMMARIZE_BLOG")
    assert blog_call["input"].startswith("<stories>[")


def test_handoff_and_resume_produce_the_same_episode():
    single = build_deps(_sample_collector(), settings=_big_budget())
    _start(single)
    run_worker(PodcastWorkflow(single), single.queue)

    split = build_deps(
        _sample_collector(),
        settings=Settings(run_env="development", gemini_api_key="test-key", subrequest_limit=20),
    )
    _start(split)
    counts = run_worker(PodcastWorkflow(split), split.queue)

    assert counts["failed"] == 0
    assert counts["finished"] > 1
    state = _load_state(split)
    assert state.is_done
    assert state.continuation_seq == counts["finished"] - 1
    assert split.queue.order[0] == JOB_ID
    assert split.queue.order[1] == f"{JOB_ID}-c1"

    expected = _content_record(single)
    actual = _content_record(split)
    for key in ("title", "stories", "podcastContent", "blogContent", "introContent", "publishedAt", "date"):
        assert actual[key] == expected[key]
    # each story is fetched exactly once across instances
    assert len(split.collector.content_requests) == 3


def test_handoff_saves_summary_snapshot_before_spawn():
    deps = build_deps(
        _sample_collector(),
        settings=Settings(run_env="development", gemini_api_key="test-key", subrequest_limit=20),
    )
    request = _start(deps)

    state = PodcastWorkflow(deps).run(request)

    assert state.stage == WorkflowStage.SUMMARIZE_STORIES
    assert state.cursor.story_index == 0
    assert state.summary_key in deps.blob_store.data
    assert f"{JOB_ID}-c1" in deps.queue.requests
    persisted = _load_state(deps)
    assert persisted.continuation_seq == 1


def test_spawn_is_idempotent_when_continuation_already_exists():
    deps = build_deps(
        _sample_collector(),
        settings=Settings(run_env="development", gemini_api_key="test-key", subrequest_limit=20),
    )
    request = _start(deps)
    deps.queue.create(
        ContinuationRequest(instance_id=f"{JOB_ID}-c1", job_id=JOB_ID, continuation_seq=1, now_iso=NOW_ISO)
    )

    PodcastWorkflow(deps).run(request)

    assert list(deps.queue.order).count(f"{JOB_ID}-c1") == 1


def test_no_relevant_story_marks_done_without_publishing():
    collector = FakeCollector(
        results={"feed": SourceResult(stories=[_sample_story(1)])},
        contents={_sample_story(1).url: "irrelevant"},
    )
    deps = build_deps(collector, settings=_big_budget())
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    state = _load_state(deps)
    assert state.is_done
    assert state.content_key is None
    assert not [key for key in deps.kv_store.data if key.startswith("content:")]


def test_story_with_failing_or_empty_content_is_skipped():
    collector = _sample_collector(
        {
            "https://news.example.com/articles/1": RuntimeError("reader down"),
            "https://news.example.com/articles/3": "   ",
        }
    )
    deps = build_deps(collector, settings=_big_budget())
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    state = _load_state(deps)
    assert state.is_done
    assert state.progress.stories_processed == 3
    assert state.progress.stories_relevant == 0


def test_quota_error_while_fetching_content_fails_the_instance():
    collector = _sample_collector({"https://news.example.com/articles/1": SubrequestLimitError()})
    deps = build_deps(collector, settings=_big_budget())
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 0, "failed": 1}
    assert deps.queue.statuses[JOB_ID] == "failed"
    state = _load_state(deps)
    assert state.stage == WorkflowStage.SUMMARIZE_STORIES
    assert state.cursor.story_index == 0


def test_blocked_hosts_are_dropped_and_gmail_refs_expanded(sample_gmail_ref):
    gmail_stories = [
        _sample_story(10, host="doi.org"),
        _sample_story(11, host="blog.example.org", source_item_id="msg-1", source_item_title="Weekly digest"),
    ]
    collector = FakeCollector(
        results={"inbox": SourceResult(gmail_messages=[sample_gmail_ref("msg-1")])},
        contents={gmail_stories[1].url: "A compiler release note."},
        expansions={"msg-1": gmail_stories},
    )
    deps = build_deps(
        collector,
        config_overrides={
            "sources": {
                "items": [{"id": "inbox", "name": "Digest", "type": "gmail", "url": "", "label": "newsletters"}]
            }
        },
        settings=_big_budget(),
    )
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    assert collector.expanded == ["msg-1"]
    assert collector.content_requests == ["https://blog.example.org/articles/11"]
    state = _load_state(deps)
    assert state.progress.gmail_total == 1
    assert state.progress.gmail_processed == 1
    assert state.progress.stories_total == 1


def test_failing_source_is_skipped_and_others_still_collected():
    collector = _sample_collector()
    collector.results["broken"] = ConnectionError("feed unreachable")
    deps = build_deps(
        collector,
        config_overrides={
            "sources": {
                "items": [
                    {"id": "broken", "name": "Broken", "type": "rss", "url": "https://broken.example.com/feed.xml"},
                    {"id": "feed", "name": "Example News", "type": "rss", "url": "https://news.example.com/feed.xml"},
                ]
            }
        },
        settings=_big_budget(),
    )
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 1, "failed": 0}
    assert collector.fetched_sources.count("broken") == deps.retry.retries + 1
    assert collector.fetched_sources[-1] == "feed"
    state = _load_state(deps)
    assert state.is_done
    assert state.progress.sources_processed == 2
    assert state.progress.stories_total == 3


def test_configuration_error_while_collecting_fails_the_instance():
    collector = _sample_collector()
    collector.results["feed"] = ConfigurationError("feed credentials missing")
    deps = build_deps(collector, settings=_big_budget())
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 0, "failed": 1}
    assert collector.fetched_sources == ["feed"]


def test_failing_gmail_message_is_skipped(sample_gmail_ref):
    good_story = _sample_story(11, host="blog.example.org", source_item_id="msg-1")
    collector = FakeCollector(
        results={"inbox": SourceResult(gmail_messages=[sample_gmail_ref("bad"), sample_gmail_ref("msg-1")])},
        contents={good_story.url: "A compiler release note."},
        expansions={"bad": ConnectionError("gmail unreachable"), "msg-1": [good_story]},
    )
    deps = build_deps(
        collector,
        config_overrides={
            "sources": {
                "items": [{"id": "inbox", "name": "Digest", "type": "gmail", "url": "", "label": "newsletters"}]
            }
        },
        settings=_big_budget(),
    )
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 1, "failed": 0}
    assert collector.expanded == ["bad"] * (deps.retry.retries + 1) + ["msg-1"]
    state = _load_state(deps)
    assert state.is_done
    assert state.progress.gmail_processed == 2
    assert state.progress.stories_total == 1
    assert collector.content_requests == [good_story.url]


def test_stories_test_step_stops_after_candidates():
    deps = build_deps(
        _sample_collector(),
        config_overrides={"test": {"workflowTestStep": "stories"}},
        settings=_big_budget(),
    )
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    state = _load_state(deps)
    assert state.is_done
    assert state.progress.stories_total == 3
    assert deps.collector.content_requests == []
    assert deps.generator.calls == []


def _tts_deps(audio=None, settings=None, **overrides):
    config = {"tts": {"provider": "edge", "skipTts": False, "introMusic": {"url": "static/theme.mp3"}}}
    config.update(overrides)
    return build_deps(_sample_collector(), config_overrides=config, audio=audio, settings=settings or _big_budget())


def test_tts_render_mixes_intro_and_attaches_audio():
    deps = _tts_deps()
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts == {"finished": 1, "failed": 0}
    state = _load_state(deps)
    assert state.is_done
    assert state.provider == "edge"
    assert state.progress.tts_total == 4
    assert state.progress.tts_processed == 4
    record = _content_record(deps)
    assert record["audio"] == state.podcast_key == "development/episodes/2026-10-19/podcast.mp3"
    assert record["updatedBy"] == "workflow-tts"
    audio = deps.blob_store.data[state.podcast_key]
    assert audio.startswith(b"MIX[THEME+")
    assert "男:大家好，欢迎收听今天的节目。".encode("utf-8") in audio
    assert not [key for key in deps.blob_store.data if key.startswith(f"tmp/{JOB_ID}/")]


def test_intro_mix_failure_publishes_base_track():
    audio = FakeAudio(fail_mix=True)
    deps = _tts_deps(audio=audio)
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    state = _load_state(deps)
    assert state.is_done
    published = deps.blob_store.data[state.podcast_key]
    assert not published.startswith(b"MIX[")
    line_audio = [chunk for speech in deps.speakers for chunk in speech.rendered]
    assert len(line_audio) == 4
    assert published == b"|".join(line_audio)
    assert audio.mix_calls == deps.retry.retries + 1


def test_per_line_tts_resumes_across_handoffs_without_repeating_lines():
    deps = _tts_deps(settings=Settings(run_env="development", gemini_api_key="test-key", subrequest_limit=20))
    _start(deps)

    counts = run_worker(PodcastWorkflow(deps), deps.queue)

    assert counts["failed"] == 0
    assert counts["finished"] > 1
    state = _load_state(deps)
    assert state.is_done
    assert state.progress.tts_processed == 4
    spoken = [text for speech in deps.speakers for text in speech.spoken]
    assert len(spoken) == 4
    assert len(set(spoken)) == 4
    line_audio = [chunk for speech in deps.speakers for chunk in speech.rendered]
    assert deps.blob_store.data[state.podcast_key] == b"MIX[THEME+" + b"|".join(line_audio) + b"]"


def test_gemini_tts_renders_whole_script():
    class FakeGemini:
        def __init__(self):
            self.prompts = []

        def synthesize_script(self, prompt):
            self.prompts.append(prompt)
            return GeminiAudio(audio=b"WAVDATA", extension="wav", mime_type="audio/wav")

    gemini = FakeGemini()
    deps = _tts_deps()
    deps.config = replace(deps.config, tts=replace(deps.config.tts, provider="gemini"))
    deps.gemini_factory = lambda tts_settings: gemini
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    state = _load_state(deps)
    assert state.is_done
    assert state.provider == "gemini"
    assert len(gemini.prompts) == 1
    assert "男：第一条是新的开源模型。" in gemini.prompts[0]
    assert deps.blob_store.data[state.podcast_key] == b"MIX[THEME+WAVDATA]"


def test_dialogue_without_speaker_markers_is_a_configuration_error():
    def responder(instructions, input, model):
        if instructions.startswith("SUMMARIZE_PODCAST"):
            return "Host one says hello.\nHost two says hi."
        return default_responder(instructions, input, model)

    deps = build_deps(
        _sample_collector(),
        config_overrides={"tts": {"provider": "edge", "skipTts": False}},
        responder=responder,
        settings=_big_budget(),
    )
    request = _start(deps)

    with pytest.raises(ConfigurationError, match="No valid TTS dialog lines"):
        PodcastWorkflow(deps).run(request)


def test_render_stage_without_compose_snapshot_fails():
    deps = _tts_deps()
    request = _start(deps)
    deps.kv_store.put_json(
        build_job_state_key(JOB_ID),
        {"jobId": JOB_ID, "stage": "tts_render", "status": "running", "nowIso": NOW_ISO},
    )

    with pytest.raises(SnapshotMissingError, match="compose snapshot missing"):
        PodcastWorkflow(deps).run(request)


def test_done_job_is_not_rerun():
    deps = build_deps(_sample_collector(), settings=_big_budget())
    request = _start(deps)
    deps.kv_store.put_json(
        build_job_state_key(JOB_ID),
        {"jobId": JOB_ID, "stage": "done", "status": "done", "nowIso": NOW_ISO},
    )

    state = PodcastWorkflow(deps).run(request)

    assert state.is_done
    assert deps.collector.fetched_sources == []


def test_persisted_state_is_json_with_camel_case_keys():
    deps = build_deps(_sample_collector(), settings=_big_budget())
    _start(deps)

    run_worker(PodcastWorkflow(deps), deps.queue)

    raw = json.loads(deps.kv_store.data[build_job_state_key(JOB_ID)])
    assert raw["jobId"] == JOB_ID
    assert raw["stage"] == "done"
    assert set(raw["cursor"]) == {"sourceIndex", "gmailIndex", "storyIndex", "ttsLineIndex"}
    assert raw["publishDateKey"] == "2026-10-19"
