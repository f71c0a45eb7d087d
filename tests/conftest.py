from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from newscast.audio import AudioProcessor, MixParams
from newscast.config import Settings, parse_run_config
from newscast.errors import ContinuationExistsError
from newscast.llm import TextGenerator, TextResult
from newscast.pipeline.context import WorkflowDependencies, WorkflowTiming, prepare_run_config
from newscast.pipeline.continuation import ContinuationQueue, ContinuationRequest
from newscast.pipeline.retry import RetryPolicy
from newscast.sources import GmailMessageRef, SourceResult, Story
from newscast.storage import BlobStore, KeyValueStore
from newscast.storage.base import to_bytes
from newscast.tts import SpeechSynthesizer


DIALOGUE = "\n".join(
    [
        "男：大家好，欢迎收听今天的节目。",
        "女：今天我们聊两条新闻。",
        "旁白不属于任何主持人",
        "男：第一条是新的开源模型。",
        "女：第二条是隐私争议。",
    ]
)


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self.data: Dict[str, str] = {}
        self.writes: List[str] = []

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.data.get(key)
        if raw is None or not raw.strip():
            return None
        return json.loads(raw)

    def put_json(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value, ensure_ascii=False)
        self.writes.append(key)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    def put(self, key: str, data: Union[bytes, str], content_type: Optional[str] = None) -> str:
        self.data[key] = to_bytes(data)
        self.content_types[key] = content_type
        return key

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def exists(self, key: str) -> bool:
        return key in self.data


class MemoryContinuationQueue(ContinuationQueue):
    def __init__(self):
        self.requests: Dict[str, ContinuationRequest] = {}
        self.order: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.errors: Dict[str, Optional[str]] = {}
        self.create_calls = 0

    def create(self, request: ContinuationRequest) -> str:
        self.create_calls += 1
        if request.instance_id in self.requests:
            raise ContinuationExistsError(f"Instance {request.instance_id} already exists")
        self.requests[request.instance_id] = request
        self.order.append(request.instance_id)
        self.statuses[request.instance_id] = "pending"
        return request.instance_id

    def get(self, instance_id: str) -> Optional[ContinuationRequest]:
        return self.requests.get(instance_id)

    def next_pending(self) -> Optional[ContinuationRequest]:
        for instance_id in self.order:
            if self.statuses[instance_id] == "pending":
                return self.requests[instance_id]
        return None

    def latest_for_job(self, job_id: str) -> Optional[ContinuationRequest]:
        matches = [request for request in self.requests.values() if request.job_id == job_id]
        return max(matches, key=lambda request: request.continuation_seq) if matches else None

    def list_statuses(self, job_id: str) -> List[Dict[str, Any]]:
        return [
            {"instanceId": instance_id, "seq": self.requests[instance_id].continuation_seq,
             "status": self.statuses[instance_id], "error": self.errors.get(instance_id) or ""}
            for instance_id in self.order
            if self.requests[instance_id].job_id == job_id
        ]

    def mark_running(self, instance_id: str) -> None:
        self.statuses[instance_id] = "running"

    def mark_finished(self, instance_id: str, error: Optional[str] = None) -> None:
        self.statuses[instance_id] = "failed" if error else "finished"
        self.errors[instance_id] = error


class FakeGenerator(TextGenerator):
    """Routes each call to a responder keyed on the instructions."""

    provider = "fake"

    def __init__(self, responder: Callable[[str, str, Optional[str]], str]):
        super().__init__(model="fake-model", thinking_model="fake-thinking", max_tokens=1024)
        self.responder = responder
        self.calls: List[Dict[str, Any]] = []

    def generate(self, instructions, input, model=None, max_tokens=None, response_schema=None) -> TextResult:
        self.calls.append({"instructions": instructions, "input": input, "model": model or self.model})
        return TextResult(text=self.responder(instructions, input, model or self.model), finish_reason="STOP")


class FakeCollector:
    def __init__(
        self,
        results: Dict[str, SourceResult],
        contents: Dict[str, str],
        expansions: Optional[Dict[str, List[Story]]] = None,
    ):
        self.results = results
        self.contents = contents
        self.expansions = expansions or {}
        self.fetched_sources: List[str] = []
        self.expanded: List[str] = []
        self.content_requests: List[str] = []

    def fetch_source(self, source, window) -> SourceResult:
        self.fetched_sources.append(source.id)
        result = self.results.get(source.id, SourceResult())
        if isinstance(result, Exception):
            raise result
        return result

    def expand_gmail_message(self, ref, window, now=None) -> List[Story]:
        self.expanded.append(ref.id)
        stories = self.expansions.get(ref.id, [])
        if isinstance(stories, Exception):
            raise stories
        return list(stories)

    def fetch_story_content(self, story, max_tokens) -> str:
        self.content_requests.append(story.url)
        content = self.contents.get(story.url)
        if isinstance(content, Exception):
            raise content
        return content or ""


class FakeAudio(AudioProcessor):
    def __init__(self, fail_mix: bool = False):
        self.fail_mix = fail_mix
        self.mix_calls = 0

    def concat(self, tracks: List[bytes], audio_quality: int = 5) -> bytes:
        return b"|".join(tracks)

    def mix(self, base: bytes, theme: bytes, params: MixParams) -> bytes:
        self.mix_calls += 1
        if self.fail_mix:
            raise RuntimeError("ffmpeg exploded")
        return b"MIX[" + theme + b"+" + base + b"]"


class FakeSpeech(SpeechSynthesizer):
    def __init__(self, tts_settings):
        super().__init__(tts_settings)
        self.spoken: List[str] = []
        self.rendered: List[bytes] = []

    def synthesize(self, text: str, speaker: str) -> bytes:
        self.spoken.append(text)
        audio = f"{speaker}:{text}".encode("utf-8")
        self.rendered.append(audio)
        return audio


def _sample_story(index: int, host: str = "news.example.com", **overrides) -> Story:
    fields = {
        "id": f"story-{index}",
        "title": f"Story {index}",
        "url": f"https://{host}/articles/{index}",
        "source_name": "Example News",
        "source_url": "https://news.example.com/feed.xml",
        "published_at": "2026-10-18T12:00:00.000Z",
    }
    fields.update(overrides)
    return Story(**fields)


def _sample_run_config(**overrides) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "site": {"title": "Daily Bytes"},
        "hosts": [
            {"id": "host1", "name": "Alex", "speakerMarker": "男"},
            {"id": "host2", "name": "Jamie", "speakerMarker": "女"},
        ],
        "ai": {"provider": "gemini", "model": "fake-model", "thinkingModel": "fake-thinking"},
        "tts": {"provider": "edge", "skipTts": True, "introMusic": {"url": "static/theme.mp3"}},
        "locale": {"timezone": "America/Chicago"},
        "sources": {
            "lookbackDays": 1,
            "items": [
                {"id": "feed", "name": "Example News", "type": "rss", "url": "https://news.example.com/feed.xml"},
            ],
        },
        "prompts": {
            "summarizeStory": "SUMMARIZE_STORY",
            "summarizePodcast": "SUMMARIZE_PODCAST",
            "summarizeBlog": "SUMMARIZE_BLOG",
            "intro": "INTRO",
            "title": "TITLE",
            "extractNewsletterLinks": "EXTRACT_LINKS",
        },
    }
    data.update(overrides)
    return data


def default_responder(instructions: str, input: str, model: Optional[str]) -> str:
    if instructions.startswith("SUMMARIZE_STORY"):
        if "irrelevant" in input:
            return json.dumps({"relevant": False, "summary": None, "reason": "off topic"})
        return json.dumps({"relevant": True, "summary": f"summary of {input[:40]}", "reason": "on topic"})
    if instructions.startswith("SUMMARIZE_PODCAST"):
        return DIALOGUE
    if instructions.startswith("SUMMARIZE_BLOG"):
        return "# Blog\n\nToday's stories."
    if instructions.startswith("INTRO"):
        return "A short intro."
    if instructions.startswith("TITLE"):
        return "推荐标题：开源模型与隐私"
    return ""


def build_deps(
    collector: FakeCollector,
    config_overrides: Optional[Dict[str, Any]] = None,
    responder: Callable[[str, str, Optional[str]], str] = default_responder,
    audio: Optional[FakeAudio] = None,
    settings: Optional[Settings] = None,
    theme: bytes = b"THEME",
) -> WorkflowDependencies:
    config = prepare_run_config(parse_run_config(_sample_run_config(**(config_overrides or {}))))
    speakers: List[FakeSpeech] = []

    def speech_factory(provider, tts_settings):
        speech = FakeSpeech(tts_settings)
        speakers.append(speech)
        return speech

    deps = WorkflowDependencies(
        settings=settings or Settings(run_env="development", gemini_api_key="test-key"),
        config=config,
        kv_store=MemoryKeyValueStore(),
        blob_store=MemoryBlobStore(),
        queue=MemoryContinuationQueue(),
        generator=FakeGenerator(responder),
        collector=collector,
        audio=audio or FakeAudio(),
        speech_factory=speech_factory,
        theme_loader=lambda location: theme,
        retry=RetryPolicy.immediate(),
        timing=WorkflowTiming.none(),
    )
    deps.speakers = speakers
    return deps


@pytest.fixture
def memory_kv():
    return MemoryKeyValueStore()


@pytest.fixture
def memory_blobs():
    return MemoryBlobStore()


@pytest.fixture
def memory_queue():
    return MemoryContinuationQueue()


@pytest.fixture
def sample_story():
    return _sample_story


@pytest.fixture
def sample_gmail_ref():
    def _make(message_id: str = "msg-1") -> GmailMessageRef:
        return GmailMessageRef(
            id=message_id,
            subject="Weekly digest",
            source_name="Digest",
            source_url="gmail://label/newsletters",
            received_at="2026-10-18T08:00:00.000Z",
        )

    return _make
