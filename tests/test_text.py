from __future__ import annotations

import json

import pytest

from conftest import FakeGenerator
from newscast.errors import SubrequestLimitError
from newscast.pipeline.text import (
    JSON_REPAIR_SUFFIX,
    build_blog_input,
    extract_episode_title,
    parse_conversation_lines,
    parse_story_summary,
    split_lines,
    summarize_story_with_relevance,
)


def test_parse_conversation_lines_prefers_longest_marker():
    lines = split_lines("男：开场\n男主持：我是长标记\n  \n女: 你好\n路人：不算\n女：")

    parsed = parse_conversation_lines(lines, ["男", "女", "男主持"])

    assert [(line.speaker, line.text) for line in parsed] == [
        ("男", "开场"),
        ("男主持", "我是长标记"),
        ("女", "你好"),
    ]
    assert parsed[1].raw == "男主持：我是长标记"


def test_parse_story_summary_accepts_fenced_json():
    text = '```json\n{"relevant": true, "summary": " A summary. ", "reason": "AI news"}\n```'

    verdict = parse_story_summary(text)

    assert verdict.relevant is True
    assert verdict.summary == "A summary."
    assert verdict.reason == "AI news"


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        '{"relevant": "yes", "summary": "x", "reason": "r"}',
        '{"relevant": true, "summary": "", "reason": "r"}',
        '{"relevant": false, "summary": null, "reason": "  "}',
    ],
)
def test_parse_story_summary_rejects_contract_violations(text):
    assert parse_story_summary(text) is None


def test_summarize_repairs_invalid_json_on_second_attempt():
    outputs = iter(["Sure! Here is the summary", json.dumps({"relevant": False, "summary": None, "reason": "ads"})])
    generator = FakeGenerator(lambda instructions, input, model: next(outputs))

    verdict = summarize_story_with_relevance(generator, "SUMMARIZE", "content")

    assert verdict.relevant is False
    assert verdict.reason == "ads"
    assert generator.calls[0]["instructions"] == "SUMMARIZE"
    assert generator.calls[1]["instructions"] == "SUMMARIZE" + JSON_REPAIR_SUFFIX


def test_summarize_raises_after_two_invalid_outputs():
    generator = FakeGenerator(lambda instructions, input, model: "still not json")

    with pytest.raises(ValueError):
        summarize_story_with_relevance(generator, "SUMMARIZE", "content")
    assert len(generator.calls) == 2


def test_summarize_propagates_quota_errors_immediately():
    def responder(instructions, input, model):
        raise SubrequestLimitError()

    generator = FakeGenerator(responder)

    with pytest.raises(SubrequestLimitError):
        summarize_story_with_relevance(generator, "SUMMARIZE", "content")
    assert len(generator.calls) == 1


@pytest.mark.parametrize(
    "text, expected",
    [
        ("候选标题：A\n推荐标题：「AI 周报」", "「AI 周报」"),
        ("- **Final Title**: \"Open Models Week\"", "Open Models Week"),
        ("推荐标题：“隐私之争”", "隐私之争"),
        ("no labeled line here", None),
    ],
)
def test_extract_episode_title(text, expected):
    assert extract_episode_title(text) == expected


def test_build_blog_input_lists_stories_then_summaries():
    text = build_blog_input([{"title": "标题", "link": "https://a.example"}], ["<story>one</story>", "<story>two</story>"])

    listing, first, second = text.split("\n\n---\n\n")
    assert json.loads(listing[len("<stories>"):-len("</stories>")]) == [{"title": "标题", "link": "https://a.example"}]
    assert first == "<story>one</story>"
    assert second == "<story>two</story>"


def test_irrelevant_verdict_may_omit_summary():
    verdict = parse_story_summary('{"relevant": false, "reason": "off-topic"}')

    assert verdict.relevant is False
    assert verdict.summary is None
    assert verdict.reason == "off-topic"


def test_relevant_verdict_with_empty_summary_triggers_repair():
    outputs = iter(
        [
            '{"relevant": true, "summary": "", "reason": "ok"}',
            '{"relevant": true, "summary": "Fixed.", "reason": "ok"}',
        ]
    )
    generator = FakeGenerator(lambda instructions, input, model: next(outputs))

    verdict = summarize_story_with_relevance(generator, "SUMMARIZE", "content")

    assert verdict.summary == "Fixed."
    assert len(generator.calls) == 2
