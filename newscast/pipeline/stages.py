"""
Pipeline stage functions.

Each stage resumes from the job cursor, consults the budget before every
costed unit of work and either advances the job to the next stage or hands
it off to a continuation.

Every function returns True when the instance handed the job off and must
stop, False otherwise (stage advanced or job done).
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from newscast.audio import MixParams, load_theme_audio
from newscast.errors import ConfigurationError, SnapshotMissingError, is_subrequest_limit_error
from newscast.logger import log_function
from newscast.sources import Story
from newscast.tts import build_gemini_tts_prompt, build_tts_settings, validate_tts_config

from .context import WorkflowContext
from .retry import (
    COMPOSE_RETRIES,
    CONVERT_AUDIO_RETRIES,
    GEMINI_TTS_RETRIES,
    GEMINI_TTS_TIMEOUT_SECONDS,
    SUMMARIZE_RETRIES,
    TTS_LINE_RETRIES,
)
from .snapshots import ComposeSnapshot, SummarySnapshot
from .state import (
    WorkflowStage,
    build_content_key,
    build_podcast_key,
    build_temp_audio_prefix,
    is_blocked_story_url,
    now_ms,
)
from .text import (
    STORY_SEPARATOR,
    build_blog_input,
    extract_episode_title,
    parse_conversation_lines,
    split_lines,
    summarize_story_with_relevance,
    wrap_story_summary,
)


logger = logging.getLogger("pipeline")

COMPOSE_FALLBACK_STORIES = 6
COMPOSE_STEPS_TOTAL = 4


@log_function(logger_name="pipeline", log_execution_time=True)
def run_collect_stage(ctx: WorkflowContext) -> bool:
    """
    Collect candidates from every enabled source, starting at ``cursor.source_index``.

    Feeds yield stories (newsletter items expanded inline), mailbox labels
    yield message references for the expansion stage, static URLs yield one
    story each.
    """
    state = ctx.state
    sources = ctx.config.sources.enabled
    snapshot = ctx.load_candidates()
    state.progress.sources_total = max(state.progress.sources_total, len(sources))

    for index in range(state.cursor.source_index, len(sources)):
        source = sources[index]
        if ctx.maybe_handoff(
            WorkflowStage.COLLECT_CANDIDATES,
            ctx.costs.collect_estimate(source.type),
            f"collect source index {index}",
            {"source_index": index},
            before_checkpoint=lambda: ctx.save_candidates(snapshot),
        ):
            return True

        try:
            result = ctx.step(
                f"collect source {source.type} {source.id}",
                ctx.deps.collector.fetch_source,
                source,
                ctx.window,
            )
        except Exception as e:
            if is_subrequest_limit_error(e) or isinstance(e, ConfigurationError):
                raise
            logger.warning(f"collect source {source.type} {source.id} failed, skip source: {e}")
            if source.type == "rss":
                ctx.consume(ctx.costs.rss_source_cost([]), f"collect rss {source.id} failed")
            elif source.type == "gmail":
                ctx.consume(ctx.costs.gmail_source_cost(0), f"collect gmail {source.id} failed")
            state.cursor.source_index = index + 1
            state.progress.sources_processed = state.cursor.source_index
            continue

        if source.type == "rss":
            item_ids = [story.source_item_id for story in result.stories]
            ctx.consume(
                ctx.costs.rss_source_cost(item_ids),
                f"collect rss {source.id}",
                stories=len(result.stories),
                newsletterItems=len({item for item in item_ids if item}),
            )
        elif source.type == "gmail":
            ctx.consume(
                ctx.costs.gmail_source_cost(len(result.gmail_messages)),
                f"collect gmail {source.id}",
                refs=len(result.gmail_messages),
            )
        snapshot.stories.extend(result.stories)
        snapshot.gmail_messages.extend(result.gmail_messages)
        state.cursor.source_index = index + 1
        state.progress.sources_processed = state.cursor.source_index

    ctx.save_candidates(snapshot)
    state.progress.gmail_total = max(state.progress.gmail_total, len(snapshot.gmail_messages))
    state.progress.gmail_processed = state.cursor.gmail_index
    state.stage = WorkflowStage.EXPAND_GMAIL
    state.cursor.gmail_index = 0
    ctx.save_state("stage transition: collect_candidates -> expand_gmail")
    return False


def _log_story_groups(stories: List[Story]) -> None:
    groups: Dict[str, Tuple[str, int]] = {}
    for story in stories:
        label = story.source_item_title or story.source_name or story.source_url or "unknown"
        key = story.source_item_id or label
        current_label, count = groups.get(key, (label, 0))
        groups[key] = (current_label, count + 1)
    for key, (label, count) in groups.items():
        logger.info(f"newsletter: {label} ({key}) -> {count} articles")


@log_function(logger_name="pipeline", log_execution_time=True)
def run_expand_stage(ctx: WorkflowContext) -> bool:
    """
    Turn mailbox references into stories, then drop blocked hosts.

    Marks the job done when no candidate survives.
    """
    state = ctx.state
    snapshot = ctx.load_candidates()
    state.progress.gmail_total = max(state.progress.gmail_total, len(snapshot.gmail_messages))

    for index in range(state.cursor.gmail_index, len(snapshot.gmail_messages)):
        if ctx.maybe_handoff(
            WorkflowStage.EXPAND_GMAIL,
            ctx.costs.expand_estimate(),
            f"expand gmail index {index}",
            {"gmail_index": index},
            before_checkpoint=lambda: ctx.save_candidates(snapshot),
        ):
            return True

        ref = snapshot.gmail_messages[index]
        try:
            stories = ctx.step(
                f"expand gmail {ref.id}",
                ctx.deps.collector.expand_gmail_message,
                ref,
                ctx.window,
                ctx.now,
            )
        except Exception as e:
            if is_subrequest_limit_error(e) or isinstance(e, ConfigurationError):
                raise
            logger.warning(f"expand gmail {ref.id} failed, skip message: {e}")
            ctx.consume(ctx.costs.gmail_expand, f"expand gmail {ref.id} failed")
            state.cursor.gmail_index = index + 1
            state.progress.gmail_processed = state.cursor.gmail_index
            continue
        ctx.consume(ctx.costs.gmail_expand, f"expand gmail {ref.id}", stories=len(stories))
        snapshot.stories.extend(stories)
        state.cursor.gmail_index = index + 1
        state.progress.gmail_processed = state.cursor.gmail_index

    blocked = [story for story in snapshot.stories if is_blocked_story_url(story.url)]
    candidates = [story for story in snapshot.stories if not is_blocked_story_url(story.url)]
    if blocked:
        logger.warning(f"blocked story urls skipped: {len(blocked)}")

    if not candidates:
        ctx.mark_done("no candidate stories, mark done")
        return False

    logger.info(f"total stories: {len(candidates)}")
    snapshot.stories = candidates
    snapshot.gmail_messages = []
    ctx.save_candidates(snapshot)
    state.progress.stories_total = len(candidates)
    state.progress.stories_processed = state.cursor.story_index
    state.progress.stories_relevant = 0

    if ctx.test.workflow_test_step == "stories":
        for story in candidates:
            logger.info(f"candidate story: {story.id} | {story.title} | {story.url} | {story.source_name}")
        ctx.mark_done("workflow test stories done")
        return False

    _log_story_groups(candidates)
    state.stage = WorkflowStage.SUMMARIZE_STORIES
    state.cursor.story_index = 0
    ctx.save_state("stage transition: expand_gmail -> summarize_stories")
    return False


def _skip_story(ctx: WorkflowContext, index: int) -> None:
    ctx.state.cursor.story_index = index + 1
    ctx.state.progress.stories_processed = ctx.state.cursor.story_index
    ctx.pause("Give AI a break")


@log_function(logger_name="pipeline", log_execution_time=True)
def run_summarize_stage(ctx: WorkflowContext) -> bool:
    """
    Fetch, judge and summarize every candidate story from ``cursor.story_index``.

    A story that cannot be fetched or judged is skipped; call-quota errors
    propagate. Marks the job done when nothing is kept.
    """
    state = ctx.state
    candidates = ctx.load_candidates().stories
    summary = ctx.load_summary()
    state.progress.stories_total = len(candidates)
    state.progress.stories_processed = state.cursor.story_index
    state.progress.stories_relevant = len(summary.kept_stories)
    ctx.observe(
        "summarize snapshot loaded",
        candidatesTotal=len(candidates),
        summariesTotal=len(summary.all_stories),
        relevantTotal=len(summary.kept_stories),
    )

    for index in range(state.cursor.story_index, len(candidates)):
        if ctx.maybe_handoff(
            WorkflowStage.SUMMARIZE_STORIES,
            ctx.costs.summarize_estimate(),
            f"summarize story index {index}",
            {"story_index": index},
            before_checkpoint=lambda: ctx.save_summary(summary),
        ):
            return True

        story = candidates[index]
        story_id = story.id or f"story-{index + 1}"
        try:
            content = ctx.step(
                f"get story {story_id}: {story.title}",
                ctx.deps.collector.fetch_story_content,
                story,
                ctx.max_tokens,
            )
            ctx.consume(ctx.costs.story_content, f"get story {story_id}")
        except Exception as e:
            if is_subrequest_limit_error(e):
                raise
            logger.warning(f"get story {story_id} content failed, skip story ({story.title}): {e}")
            _skip_story(ctx, index)
            continue

        if not content or not content.strip():
            logger.warning(f"get story {story_id} content empty, skip ({story.title})")
            _skip_story(ctx, index)
            continue

        ctx.pause("reset quota before summarize")
        verdict = None
        try:
            verdict = ctx.step(
                f"summarize story {story_id}: {story.title}",
                summarize_story_with_relevance,
                ctx.generator,
                ctx.config.prompts.summarize_story,
                content,
                model=ctx.generator.model,
                max_tokens=ctx.max_tokens,
                retries=SUMMARIZE_RETRIES,
            )
            ctx.consume(ctx.costs.story_summary, f"summarize story {story_id}")
        except Exception as e:
            if is_subrequest_limit_error(e):
                raise
            logger.warning(f"get story {story_id} summary failed after retries ({story.title}): {e}")

        summary_text = (verdict.summary or "").strip() if verdict is not None and verdict.relevant else ""
        if not summary_text:
            _skip_story(ctx, index)
            continue

        summary.all_stories.append(wrap_story_summary(summary_text))
        summary.kept_stories.append(story)
        state.cursor.story_index = index + 1
        state.progress.stories_processed = state.cursor.story_index
        state.progress.stories_relevant = len(summary.kept_stories)
        ctx.pause("Give AI a break")

    ctx.save_summary(summary)
    state.progress.stories_relevant = len(summary.kept_stories)
    ctx.observe(
        "summarize snapshot persisted",
        candidatesTotal=len(candidates),
        summariesTotal=len(summary.all_stories),
        relevantTotal=len(summary.kept_stories),
    )
    if not summary.kept_stories:
        ctx.mark_done("no relevant stories after summarize")
        return False

    state.stage = WorkflowStage.COMPOSE_TEXT
    ctx.save_state("stage transition: summarize_stories -> compose_text")
    return False


def _compose_text(
    ctx: WorkflowContext,
    label: str,
    instructions: str,
    attempts: List[str],
) -> str:
    """Try each input in turn; non-quota failures fall through to the next one."""

    def _attempt_all() -> str:
        for attempt_index, text_input in enumerate(attempts, start=1):
            try:
                result = ctx.generator.generate(
                    instructions,
                    text_input,
                    model=ctx.generator.thinking_model,
                    max_tokens=ctx.max_tokens,
                )
                return result.text
            except Exception as e:
                if is_subrequest_limit_error(e):
                    raise
                logger.warning(f"{label} attempt {attempt_index}/{len(attempts)} failed: {e}")
        return ""

    return ctx.step(label, _attempt_all, retries=COMPOSE_RETRIES)


def _generate_or_default(ctx: WorkflowContext, label: str, instructions: str, text_input: str, default: str) -> str:
    try:
        return ctx.step(
            label,
            lambda: ctx.generator.generate(instructions, text_input, model=ctx.generator.model).text,
        )
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.warning(f"{label} failed after retries, using default: {e}")
        return default


def _log_compose_step(ctx: WorkflowContext, index: int, name: str, phase: str, **extra) -> None:
    ctx.observe(
        f"compose {phase}: {name}",
        composeStep={"current": index, "total": COMPOSE_STEPS_TOTAL, "name": name, "phase": phase},
        **extra,
    )


@log_function(logger_name="pipeline", log_execution_time=True)
def run_compose_stage(ctx: WorkflowContext) -> bool:
    """
    Write the dialogue script, blog, intro and title, publish the text record
    and freeze everything the render stage needs into the compose snapshot.
    """
    state = ctx.state
    if ctx.maybe_handoff(
        WorkflowStage.COMPOSE_TEXT,
        ctx.costs.compose_estimate(),
        "compose text stage needs fresh budget",
    ):
        return True

    summary: SummarySnapshot = ctx.load_summary()
    kept_stories = summary.kept_stories
    all_stories = summary.all_stories
    state.progress.stories_relevant = len(kept_stories)
    _log_compose_step(ctx, 0, "prepare summary input", "done", summariesTotal=len(all_stories))
    if not kept_stories or not all_stories:
        ctx.mark_done("summary snapshot empty before compose")
        return False

    prompts = ctx.config.prompts
    blog_stories = [
        {
            "title": story.title or "",
            "link": story.url or "",
            "url": story.url or "",
            "publishedAt": story.published_at or "",
        }
        for story in kept_stories
    ]
    fallback = len(all_stories) > COMPOSE_FALLBACK_STORIES

    ctx.pause("Give AI a break")
    _log_compose_step(ctx, 1, "podcast content", "start", inputStories=len(all_stories))
    podcast_inputs = [STORY_SEPARATOR.join(all_stories)]
    if fallback:
        podcast_inputs.append(STORY_SEPARATOR.join(all_stories[:COMPOSE_FALLBACK_STORIES]))
    podcast_content = _compose_text(ctx, "create podcast content", prompts.summarize_podcast, podcast_inputs)
    ctx.consume(ctx.costs.llm_compose, "create podcast content")
    _log_compose_step(ctx, 1, "podcast content", "done", outputChars=len(podcast_content))
    if not podcast_content.strip():
        ctx.mark_done("podcast content empty")
        return False

    ctx.pause("Give AI a break")
    _log_compose_step(ctx, 2, "blog content", "start", inputStories=len(all_stories))
    blog_inputs = [build_blog_input(blog_stories, all_stories)]
    if fallback:
        blog_inputs.append(
            build_blog_input(blog_stories[:COMPOSE_FALLBACK_STORIES], all_stories[:COMPOSE_FALLBACK_STORIES])
        )
    blog_content = _compose_text(ctx, "create blog content", prompts.summarize_blog, blog_inputs)
    ctx.consume(ctx.costs.llm_compose, "create blog content")
    _log_compose_step(ctx, 2, "blog content", "done", outputChars=len(blog_content))
    if not blog_content.strip():
        ctx.mark_done("blog content empty")
        return False

    _log_compose_step(ctx, 3, "intro content", "start")
    intro_content = _generate_or_default(ctx, "create intro content", prompts.intro, podcast_content, "")
    ctx.consume(ctx.costs.llm_compose, "create intro content")
    _log_compose_step(ctx, 3, "intro content", "done", outputChars=len(intro_content))

    _log_compose_step(ctx, 4, "episode title", "start")
    default_title = f"{ctx.config.site.title} {state.publish_date_key}"
    title_output = _generate_or_default(ctx, "generate episode title", prompts.title, podcast_content, "")
    episode_title = extract_episode_title(title_output) or default_title
    ctx.consume(ctx.costs.llm_compose, "generate episode title")
    _log_compose_step(ctx, 4, "episode title", "done", title=episode_title)

    run_env = ctx.settings.run_env
    content_key = build_content_key(run_env, state.publish_date_key)
    podcast_key = build_podcast_key(run_env, state.publish_date_key)
    skip_tts = ctx.config.tts.skip_tts
    tts_source = ctx.test.workflow_tts_input.strip() or podcast_content
    conversations = parse_conversation_lines(split_lines(tts_source), ctx.config.speaker_markers)
    if not skip_tts and not conversations:
        raise ConfigurationError(
            "No valid TTS dialog lines found. Please ensure each line starts with configured speaker markers."
        )

    record = {
        "date": state.publish_date_key,
        "publishedAt": state.published_at,
        "title": episode_title,
        "stories": [story.to_dict() for story in kept_stories],
        "podcastContent": podcast_content,
        "blogContent": blog_content,
        "introContent": intro_content,
        "audio": "",
        "updatedAt": now_ms(),
        "configVersion": ctx.config.version,
        "updatedBy": "workflow",
    }
    ctx.step("save content to kv", ctx.deps.kv_store.put_json, content_key, record)
    ctx.consume(ctx.costs.kv_write, "save content to kv")

    intro_music = ctx.config.tts.intro_music
    ctx.save_compose(
        ComposeSnapshot(
            stories=list(kept_stories),
            podcast_content=podcast_content,
            blog_content=blog_content,
            intro_content=intro_content,
            episode_title=episode_title,
            parsed_conversations=conversations,
            content_key=content_key,
            podcast_key=podcast_key,
            tts_settings=build_tts_settings(ctx.config),
            audio_quality=ctx.config.tts.audio_quality,
            intro_theme_url=intro_music.url,
            intro_music={
                "fadeOutStart": intro_music.fade_out_start,
                "fadeOutDuration": intro_music.fade_out_duration,
                "podcastDelay": intro_music.podcast_delay,
            },
            is_dev=not ctx.settings.is_production,
        )
    )
    state.content_key = content_key
    state.podcast_key = podcast_key
    state.progress.stories_relevant = len(kept_stories)
    state.progress.tts_total = len(conversations)
    state.progress.tts_processed = state.cursor.tts_line_index
    ctx.observe("compose stage complete", contentKey=content_key, podcastKey=podcast_key)

    if skip_tts:
        ctx.mark_done("skip TTS, mark done")
        return False

    state.stage = WorkflowStage.TTS_RENDER
    state.cursor.tts_line_index = 0
    ctx.save_state("stage transition: compose_text -> tts_render")
    return False


def _render_gemini_base(ctx: WorkflowContext, compose: ComposeSnapshot, wav_key: str, base_key: str) -> Optional[bytes]:
    """Whole-script synthesis. Returns None when the job was handed off."""
    if ctx.maybe_handoff(
        WorkflowStage.TTS_RENDER,
        ctx.costs.gemini_tts_estimate(),
        "gemini tts stage requires fresh budget",
    ):
        return None

    prompt = build_gemini_tts_prompt([line.raw for line in compose.parsed_conversations], compose.tts_settings)
    synthesizer = ctx.deps.gemini_factory(compose.tts_settings)

    def _synthesize() -> bytes:
        result = synthesizer.synthesize_script(prompt)
        if not result.audio:
            raise RuntimeError("podcast audio size is 0")
        ctx.deps.blob_store.put(wav_key, result.audio, content_type=result.mime_type)
        return result.audio

    wav = ctx.step(
        "create gemini podcast audio",
        _synthesize,
        retries=GEMINI_TTS_RETRIES,
        timeout=GEMINI_TTS_TIMEOUT_SECONDS,
    )
    ctx.consume(ctx.costs.tts_line, "gemini tts render")
    ctx.state.progress.tts_processed = len(compose.parsed_conversations)

    def _convert() -> bytes:
        audio = ctx.deps.audio.concat([wav], compose.audio_quality)
        ctx.deps.blob_store.put(base_key, audio, content_type="audio/mpeg")
        return audio

    base = ctx.step("convert gemini audio to mp3", _convert, retries=CONVERT_AUDIO_RETRIES)
    ctx.consume(ctx.costs.audio_merge, "convert gemini audio")
    return base


def _render_lines_base(ctx: WorkflowContext, compose: ComposeSnapshot, provider: str, prefix: str, base_key: str) -> Optional[bytes]:
    """Per-line synthesis from ``cursor.tts_line_index``. Returns None when the job was handed off."""
    state = ctx.state
    lines = compose.parsed_conversations
    synthesizer = ctx.deps.speech_factory(provider, compose.tts_settings)

    for index in range(state.cursor.tts_line_index, len(lines)):
        if ctx.maybe_handoff(
            WorkflowStage.TTS_RENDER,
            ctx.costs.tts_line_estimate(),
            f"render tts line {index}",
            {"tts_line_index": index},
        ):
            return None

        line = lines[index]

        def _synthesize_line() -> str:
            audio = synthesizer.synthesize(line.text, line.speaker)
            if not audio:
                raise RuntimeError("podcast audio size is 0")
            return ctx.deps.blob_store.put(f"{prefix}-{index}.mp3", audio, content_type="audio/mpeg")

        ctx.step(f"create audio {index}", _synthesize_line, retries=TTS_LINE_RETRIES)
        ctx.consume(ctx.costs.tts_line, f"render tts line {index}")
        state.cursor.tts_line_index = index + 1
        state.progress.tts_processed = state.cursor.tts_line_index
        if index < len(lines) - 1:
            ctx.pause(f"yield between TTS lines after line {index}", ctx.timing.tts_line_pause)

    if ctx.maybe_handoff(
        WorkflowStage.TTS_RENDER,
        ctx.costs.post_process_estimate(),
        "tts post process needs fresh budget",
        {"tts_line_index": len(lines)},
    ):
        return None

    def _concat() -> bytes:
        tracks = []
        for index in range(len(lines)):
            data = ctx.deps.blob_store.get(f"{prefix}-{index}.mp3")
            if data is None:
                raise SnapshotMissingError(f"tts line audio missing: {prefix}-{index}.mp3")
            tracks.append(data)
        audio = ctx.deps.audio.concat(tracks, compose.audio_quality)
        ctx.deps.blob_store.put(base_key, audio, content_type="audio/mpeg")
        return audio

    base = ctx.step("concat audio files", _concat)
    ctx.consume(ctx.costs.audio_merge, "concat audio files")
    return base


def _mix_intro_music(ctx: WorkflowContext, compose: ComposeSnapshot, base: bytes, base_key: str) -> None:
    """Lay the intro theme under the base track; publish the base track if mixing keeps failing."""
    theme_loader: Callable[[Optional[str]], bytes] = ctx.deps.theme_loader or (
        lambda location: load_theme_audio(location, ctx.deps.blob_store)
    )
    params = MixParams(
        fade_out_start=float(compose.intro_music.get("fadeOutStart", 19)),
        fade_out_duration=float(compose.intro_music.get("fadeOutDuration", 3)),
        podcast_delay_ms=float(compose.intro_music.get("podcastDelay", 19000)),
        audio_quality=compose.audio_quality,
    )

    def _mix() -> str:
        theme = theme_loader(compose.intro_theme_url)
        mixed = ctx.deps.audio.mix(base, theme, params)
        return ctx.deps.blob_store.put(compose.podcast_key, mixed, content_type="audio/mpeg")

    try:
        ctx.step("add intro music", _mix)
    except Exception as e:
        if is_subrequest_limit_error(e):
            raise
        logger.warning(f"add intro music failed after retries, fallback to base: {e}")

        def _copy_base() -> str:
            stored = ctx.deps.blob_store.get(base_key)
            if stored is None:
                raise SnapshotMissingError("Base podcast object not found for fallback")
            return ctx.deps.blob_store.put(compose.podcast_key, stored, content_type="audio/mpeg")

        ctx.step("fallback: copy base podcast", _copy_base)
    ctx.consume(ctx.costs.intro_music, "add intro music")


def _publish_audio(ctx: WorkflowContext, compose: ComposeSnapshot) -> None:
    def _patch() -> str:
        current = ctx.deps.kv_store.get_json(compose.content_key)
        if not isinstance(current, dict):
            raise SnapshotMissingError(f"content not found for key: {compose.content_key}")
        current.update({"audio": compose.podcast_key, "updatedAt": now_ms(), "updatedBy": "workflow-tts"})
        ctx.deps.kv_store.put_json(compose.content_key, current)
        return compose.content_key

    ctx.step("update content audio in kv", _patch)
    ctx.consume(ctx.costs.kv_write, "update content audio in kv")
    logger.info(f"podcast audio ready (job={ctx.job_id}, podcastKey={compose.podcast_key})")


def _clean_up_temp_audio(ctx: WorkflowContext, keys: List[str]) -> None:
    for key in keys:
        try:
            ctx.deps.blob_store.delete(key)
        except Exception as e:
            logger.debug(f"ignore temp delete failure {key}: {e}")


@log_function(logger_name="pipeline", log_execution_time=True)
def run_tts_stage(ctx: WorkflowContext) -> bool:
    """
    Render the dialogue to audio, mix in the intro theme and attach the audio
    to the published record.
    """
    state = ctx.state
    compose = ctx.load_compose()
    if compose is None:
        raise SnapshotMissingError(f"compose snapshot missing for job {ctx.job_id}")
    state.progress.tts_total = len(compose.parsed_conversations)
    state.progress.tts_processed = state.cursor.tts_line_index

    provider = state.provider or validate_tts_config(compose.tts_settings.provider, ctx.settings)
    state.provider = provider
    prefix = build_temp_audio_prefix(ctx.job_id)
    wav_key = f"{prefix}.wav"
    base_key = f"{prefix}.base.mp3"

    if provider == "gemini":
        base = _render_gemini_base(ctx, compose, wav_key, base_key)
    else:
        base = _render_lines_base(ctx, compose, provider, prefix, base_key)
    if base is None:
        return True

    ctx.pause("reset quota before intro music", ctx.timing.pre_mix_pause)
    _mix_intro_music(ctx, compose, base, base_key)
    _publish_audio(ctx, compose)
    _clean_up_temp_audio(
        ctx,
        [base_key, wav_key] + [f"{prefix}-{index}.mp3" for index in range(len(compose.parsed_conversations))],
    )
    ctx.mark_done("tts_render completed, mark done")
    return False


STAGE_HANDLERS: Dict[WorkflowStage, Callable[[WorkflowContext], bool]] = {
    WorkflowStage.COLLECT_CANDIDATES: run_collect_stage,
    WorkflowStage.EXPAND_GMAIL: run_expand_stage,
    WorkflowStage.SUMMARIZE_STORIES: run_summarize_stage,
    WorkflowStage.COMPOSE_TEXT: run_compose_stage,
    WorkflowStage.TTS_RENDER: run_tts_stage,
}
