"""
Single-step diagnostics.

Exercise one provider or one processing step in isolation with sample or
overridden inputs, without touching the job state.

Supported steps:
    openai / responses : Raw text generation
    tts                : Speech synthesis of a short dialogue
    story              : Fetch and summarize the first collected story
    podcast            : Dialogue script from sample summaries
    blog               : Blog post from sample summaries
    intro              : Intro text from a sample dialogue
"""

import logging
from typing import List

from newscast.logger import log_function
from newscast.sources import Story
from newscast.tts import build_gemini_tts_prompt, build_tts_settings, validate_tts_config

from .context import WorkflowContext
from .retry import GEMINI_TTS_RETRIES, GEMINI_TTS_TIMEOUT_SECONDS, TTS_LINE_RETRIES
from .text import (
    SAMPLE_STORY_SUMMARIES,
    SAMPLE_TEST_INPUT,
    SAMPLE_TEST_INSTRUCTIONS,
    STORY_SEPARATOR,
    parse_conversation_lines,
    sample_dialogue,
    sample_intro_input,
    split_lines,
    summarize_story_with_relevance,
)


logger = logging.getLogger("pipeline")

SUPPORTED_TEST_STEPS = ("openai", "responses", "tts", "story", "podcast", "blog", "intro")


def _host_names(ctx: WorkflowContext) -> List[str]:
    markers = ctx.config.speaker_markers
    primary = markers[0] if markers else "男"
    secondary = markers[1] if len(markers) > 1 else "女"
    return [primary, secondary]


def _generate(ctx: WorkflowContext, label: str, instructions: str, text_input: str, model: str) -> str:
    result = ctx.step(label, ctx.generator.generate, instructions, text_input, model=model)
    output = result.text
    logger.info(f"{label}: {len(output)} chars, finish_reason={result.finish_reason}")
    return output


def _test_tts(ctx: WorkflowContext) -> str:
    if ctx.config.tts.skip_tts:
        return "tts skipped: tts.skipTts is enabled"

    primary, secondary = _host_names(ctx)
    script = ctx.test.workflow_tts_input.strip() or sample_dialogue(primary, secondary)
    lines = parse_conversation_lines(split_lines(script), ctx.config.speaker_markers)
    if not lines:
        return "tts test input has no dialogue lines with configured speaker markers"

    tts_settings = build_tts_settings(ctx.config)
    provider = validate_tts_config(tts_settings.provider, ctx.settings)
    prefix = f"tmp/{ctx.job_id}/tts-test"

    if provider == "gemini":
        synthesizer = ctx.deps.gemini_factory(tts_settings)
        prompt = build_gemini_tts_prompt([line.raw for line in lines], tts_settings)
        result = ctx.step(
            "test gemini tts",
            synthesizer.synthesize_script,
            prompt,
            retries=GEMINI_TTS_RETRIES,
            timeout=GEMINI_TTS_TIMEOUT_SECONDS,
        )
        key = ctx.deps.blob_store.put(f"{prefix}.{result.extension}", result.audio, content_type=result.mime_type)
        return f"gemini tts ok: {len(result.audio)} bytes -> {key}"

    synthesizer = ctx.deps.speech_factory(provider, tts_settings)
    tracks = []
    for index, line in enumerate(lines):
        audio = ctx.step(
            f"test tts line {index}",
            synthesizer.synthesize,
            line.text,
            line.speaker,
            retries=TTS_LINE_RETRIES,
        )
        ctx.deps.blob_store.put(f"{prefix}-{index}.mp3", audio, content_type="audio/mpeg")
        tracks.append(audio)
        if index < len(lines) - 1:
            ctx.pause(f"yield between TTS test lines after line {index}", ctx.timing.tts_line_pause)
    merged = ctx.deps.audio.concat(tracks, ctx.config.tts.audio_quality)
    key = ctx.deps.blob_store.put(f"{prefix}.merged.mp3", merged, content_type="audio/mpeg")
    return f"{provider} tts ok: {len(lines)} lines, {len(merged)} bytes -> {key}"


def _first_story(ctx: WorkflowContext) -> Story:
    for source in ctx.config.sources.enabled:
        result = ctx.step(f"collect source {source.type} {source.id}", ctx.deps.collector.fetch_source, source, ctx.window)
        if result.stories:
            return result.stories[0]
        if result.gmail_messages:
            ref = result.gmail_messages[0]
            stories = ctx.step(
                f"expand gmail {ref.id}", ctx.deps.collector.expand_gmail_message, ref, ctx.window, ctx.now
            )
            if stories:
                return stories[0]
    raise RuntimeError("workflow test story: no candidate story found")


def _test_story(ctx: WorkflowContext) -> str:
    story = _first_story(ctx)
    logger.info(f"test story: {story.title} ({story.url})")
    content = ctx.step(f"get story {story.id}", ctx.deps.collector.fetch_story_content, story, ctx.max_tokens)
    if not content or not content.strip():
        raise RuntimeError(f"workflow test story: content empty for {story.url}")
    verdict = summarize_story_with_relevance(
        ctx.generator,
        ctx.config.prompts.summarize_story,
        content,
        model=ctx.generator.model,
        max_tokens=ctx.max_tokens,
    )
    if not verdict.relevant:
        return f"NOT_RELEVANT: {verdict.reason}"
    return verdict.summary or ""


@log_function(logger_name="pipeline", log_execution_time=True)
def run_test_step(ctx: WorkflowContext, step: str) -> str:
    """
    Run one diagnostic step.

    Args:
        ctx: Workflow context of the triggering instance
        step: Step name, case-insensitive

    Returns:
        str: Output of the step

    Raises:
        ValueError: If the step is not supported
    """
    normalized = (step or "").strip().lower()
    test = ctx.test
    prompts = ctx.config.prompts

    if normalized in ("openai", "responses"):
        output = _generate(
            ctx,
            "test responses",
            test.workflow_test_instructions or SAMPLE_TEST_INSTRUCTIONS,
            test.workflow_test_input or SAMPLE_TEST_INPUT,
            ctx.generator.model,
        )
    elif normalized == "tts":
        output = _test_tts(ctx)
    elif normalized == "story":
        output = _test_story(ctx)
    elif normalized == "podcast":
        output = _generate(
            ctx,
            "test podcast",
            prompts.summarize_podcast,
            test.workflow_test_input or STORY_SEPARATOR.join(SAMPLE_STORY_SUMMARIES),
            ctx.generator.thinking_model,
        )
    elif normalized == "blog":
        output = _generate(
            ctx,
            "test blog",
            prompts.summarize_blog,
            test.workflow_test_input
            or f"<stories>[]</stories>{STORY_SEPARATOR}{STORY_SEPARATOR.join(SAMPLE_STORY_SUMMARIES)}",
            ctx.generator.thinking_model,
        )
    elif normalized == "intro":
        primary, secondary = _host_names(ctx)
        output = _generate(
            ctx,
            "test intro",
            prompts.intro,
            test.workflow_test_input or sample_intro_input(primary, secondary),
            ctx.generator.model,
        )
    else:
        raise ValueError(f'workflow test step "{step}" is not supported')

    logger.info(f"workflow test step {normalized} output:\n{output}")
    return output
