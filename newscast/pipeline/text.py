"""
Parsers for model output: story relevance verdicts, episode titles and
dialogue lines.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from newscast.errors import is_subrequest_limit_error
from newscast.llm import TextGenerator, TextResult


logger = logging.getLogger("pipeline")

STORY_SEPARATOR = "\n\n---\n\n"
SUMMARY_ATTEMPTS = 2
JSON_REPAIR_SUFFIX = "\n\n【重要】上一次输出不是有效 JSON，请只输出一个完整 JSON 对象，不要代码块或多余文字。"

STORY_SUMMARY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "relevant": {"type": "BOOLEAN"},
        "summary": {"type": "STRING", "nullable": True},
        "reason": {"type": "STRING"},
    },
    "required": ["relevant", "summary", "reason"],
}

EPISODE_TITLE_LABELS = frozenset(
    {
        "推荐标题",
        "推荐题目",
        "最终标题",
        "recommended title",
        "final title",
    }
)

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
WRAPPING_QUOTES = " \t\r\n\"'“”‘’"


@dataclass(frozen=True)
class ConversationLine:
    speaker: str
    text: str
    raw: str

    def to_dict(self) -> Dict[str, str]:
        return {"speaker": self.speaker, "text": self.text, "raw": self.raw}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationLine":
        return cls(
            speaker=str(data.get("speaker") or ""),
            text=str(data.get("text") or ""),
            raw=str(data.get("raw") or ""),
        )


@dataclass(frozen=True)
class StorySummary:
    relevant: bool
    summary: Optional[str]
    reason: str


def split_lines(text: str) -> List[str]:
    """Trimmed non-empty lines of a block of text."""
    return [line.strip() for line in text.split("\n") if line.strip()]


def parse_conversation_lines(lines: Iterable[str], markers: Iterable[str]) -> List[ConversationLine]:
    """
    Keep the lines spoken by a known host.

    Markers are tried longest first so a short marker never shadows a longer
    one sharing its prefix. The text after the marker loses a leading ``:`` or
    ``：``; lines with nothing left to say are dropped.

    Args:
        lines: Dialogue script lines
        markers: Configured speaker markers

    Returns:
        List[ConversationLine]: One entry per spoken line, in script order
    """
    normalized = sorted(
        (marker.strip() for marker in markers if marker and marker.strip()),
        key=len,
        reverse=True,
    )
    parsed: List[ConversationLine] = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        matched = next((marker for marker in normalized if trimmed.startswith(marker)), None)
        if matched is None:
            continue
        content = re.sub(r"^[:：]\s*", "", trimmed[len(matched):]).strip()
        if not content:
            continue
        parsed.append(ConversationLine(speaker=matched, text=content, raw=trimmed))
    return parsed


def _extract_json_object(text: str) -> str:
    trimmed = text.strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed
    match = JSON_OBJECT_PATTERN.search(trimmed)
    return match.group(0) if match else ""


def parse_story_summary(text: str) -> Optional[StorySummary]:
    """
    Validate a relevance verdict.

    ``relevant`` must be a boolean and ``reason`` non-empty; ``summary`` is
    required only for relevant stories.

    Returns:
        Optional[StorySummary]: None when the output breaks the contract
    """
    cleaned = CODE_FENCE_PATTERN.sub("", text or "").strip()
    payload = _extract_json_object(cleaned)
    if not payload:
        return None
    try:
        record = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    relevant = record.get("relevant")
    if not isinstance(relevant, bool):
        return None
    reason = record["reason"].strip() if isinstance(record.get("reason"), str) else ""
    summary = record["summary"].strip() if isinstance(record.get("summary"), str) else ""
    if not reason:
        return None
    if relevant and not summary:
        return None
    return StorySummary(relevant=relevant, summary=summary or None, reason=reason)


def summarize_story_with_relevance(
    generator: TextGenerator,
    instructions: str,
    content: str,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> StorySummary:
    """
    Ask the model for a relevance verdict and summary of one story.

    The second attempt appends a pure-JSON reminder. Quota errors propagate
    immediately.

    Args:
        generator: Text generator
        instructions: Rendered summarize prompt
        content: Story content from the extractor
        model: Model override, defaults to the generator's primary model
        max_tokens: Output token cap

    Returns:
        StorySummary: Parsed verdict

    Raises:
        ValueError: If neither attempt produced a valid verdict
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, SUMMARY_ATTEMPTS + 1):
        prompt = instructions if attempt == 1 else f"{instructions}{JSON_REPAIR_SUFFIX}"
        try:
            result: TextResult = generator.generate(
                prompt,
                content,
                model=model,
                max_tokens=max_tokens,
                response_schema=STORY_SUMMARY_SCHEMA,
            )
        except Exception as e:
            if is_subrequest_limit_error(e):
                raise
            logger.warning(f"story summary attempt {attempt} failed: {e}")
            last_error = e
            continue

        parsed = parse_story_summary(result.text)
        if parsed is None:
            logger.warning(f"story summary attempt {attempt} returned invalid JSON: {result.text[:200]!r}")
            last_error = ValueError("story summary output is not valid JSON")
            continue
        logger.info(
            f"story summary parsed (relevant={parsed.relevant}, reason={parsed.reason}, "
            f"summary_chars={len(parsed.summary or '')}, finish_reason={result.finish_reason})"
        )
        return parsed

    if last_error is not None:
        raise last_error
    raise ValueError(f"story summary failed after {SUMMARY_ATTEMPTS} attempts")


def extract_episode_title(text: str) -> Optional[str]:
    """
    Find the title on a labeled line such as ``推荐标题：...`` or ``Final title: ...``.

    List bullets and ``**`` emphasis are ignored, labels match case-insensitively.
    """
    for raw_line in (text or "").split("\n"):
        line = re.sub(r"^[-*]\s*", "", raw_line.strip()).replace("**", "")
        separator = re.search(r"[：:]", line)
        if separator is None:
            continue
        label = line[: separator.start()].strip().lower()
        if label not in EPISODE_TITLE_LABELS:
            continue
        title = line[separator.end():].strip(WRAPPING_QUOTES)
        if title:
            return title
    return None


def wrap_story_summary(summary: str) -> str:
    return f"<story>{summary}</story>"


def build_blog_input(stories: List[Dict[str, Any]], summaries: List[str]) -> str:
    """Blog prompt input: the story list as JSON, then the summaries."""
    listing = json.dumps(stories, ensure_ascii=False)
    return f"<stories>{listing}</stories>{STORY_SEPARATOR}{STORY_SEPARATOR.join(summaries)}"


SAMPLE_TEST_INPUT = "Summarize the following in one sentence: This is a short test input."
SAMPLE_TEST_INSTRUCTIONS = "You are a concise assistant."
SAMPLE_STORY_SUMMARIES = [
    wrap_story_summary("这是一条测试摘要，讨论了一个新工具如何提升开发效率。"),
    wrap_story_summary("另一条摘要聚焦隐私与数据安全的最新争议与观点。"),
]


def sample_dialogue(primary: str, secondary: str) -> str:
    return "\n".join(
        [
            f"{primary}：大家好，欢迎收听测试播客。",
            f"{secondary}：大家好。今天我们用一小段对话来测试 TTS。",
            f"{primary}：如果你能听到自然的双人声切换，说明流程是通的。",
        ]
    )


def sample_intro_input(primary: str, secondary: str) -> str:
    return f"{primary}：大家好，欢迎收听测试播客。\n{secondary}：大家好，这是一段测试内容。"
