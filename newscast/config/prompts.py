"""
Default prompt set and ``{{variable}}`` templating.

Every prompt may reference the podcast/host/locale variables returned by
``get_template_variables``; unknown variables render as empty strings.
"""

import re
from dataclasses import fields, replace
from typing import Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .run_config import PromptsConfig, RunConfig


TEMPLATE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


SUMMARIZE_STORY_PROMPT = """你是「{{podcastTitle}}」的资深编辑，负责为每日播客筛选和总结新闻。

节目简介：{{podcastDescription}}

你会收到一篇文章，包含 <title> 和 <article> 两部分。请完成：
1. 判断文章是否与节目主题相关、信息是否充足，值得在节目中讨论。
2. 如果相关，用{{language}}写一段 200 到 400 字的摘要，保留关键事实、数字和观点。

只输出一个 JSON 对象，不要代码块或多余文字：
{"relevant": true 或 false, "summary": "相关时的摘要，不相关时为 null", "reason": "一句话说明判断理由"}
"""

SUMMARIZE_PODCAST_PROMPT = """你是播客「{{podcastTitle}}」的编剧。节目由两位主持人对话完成：
- {{host1Name}}（{{host1Persona}}），每句台词以「{{host1Marker}}：」开头
- {{host2Name}}（{{host2Persona}}），每句台词以「{{host2Marker}}：」开头

你会收到若干条用 <story> 包裹、以 --- 分隔的新闻摘要。请把它们改写成一期自然流畅的双人对话播客：
- 开场简短问候并预告今天的话题，结尾简短道别。
- 每条新闻都要讲清楚发生了什么、为什么重要，并加入主持人的观点和互动。
- 每一行只包含一位主持人的一句或几句话，必须以其标记开头，不要输出其他格式、标题或舞台说明。
- 使用{{language}}。
"""

SUMMARIZE_BLOG_PROMPT = """你是播客「{{podcastTitle}}」的编辑，需要为本期节目撰写配套的文字稿。

输入的开头是 <stories> 包裹的 JSON 数组，包含每条新闻的标题、链接和发布时间；其后是以 --- 分隔的新闻摘要。
请用 Markdown 输出一篇{{language}}博客：
- 每条新闻一个二级标题，标题后附上原文链接。
- 每条新闻写 2 到 4 段，保留关键事实和数字。
- 不要编造输入中没有的信息。
"""

INTRO_PROMPT = """你是播客「{{podcastTitle}}」的编辑。根据输入的播客对话稿，用{{language}}写一段 100 字以内的节目简介，
概括本期讨论的主要话题。只输出简介正文。
"""

TITLE_PROMPT = """你是播客「{{podcastTitle}}」的编辑。根据输入的播客对话稿，为本期节目拟一个吸引人但不夸张的标题，
不超过 30 个字，使用{{language}}。

先简要列出两到三个候选，最后单独一行按以下格式给出最终选择：
推荐标题：<标题>
"""

EXTRACT_NEWSLETTER_LINKS_PROMPT = """你是新闻编辑助理。输入是一封新闻邮件（newsletter）的主题、过滤规则和正文内容。
请从正文中找出值得单独阅读的文章链接，规则：
- 只保留指向具体文章或报道的链接，排除订阅、退订、广告、赞助、社交媒体主页、邮件设置等链接。
- 遵守输入中给出的【仅允许域名】【排除域名】【排除路径关键词】【额外排除文本】规则。
- 最多 10 条，按在正文中出现的顺序排列。

只输出 JSON 数组，不要代码块或多余文字：
[{"link": "https://...", "title": "文章标题"}]
"""


def default_prompts() -> Dict[str, str]:
    """Return the built-in prompt set keyed by prompt name."""
    return {
        "summarize_story": SUMMARIZE_STORY_PROMPT,
        "summarize_podcast": SUMMARIZE_PODCAST_PROMPT,
        "summarize_blog": SUMMARIZE_BLOG_PROMPT,
        "intro": INTRO_PROMPT,
        "title": TITLE_PROMPT,
        "extract_newsletter_links": EXTRACT_NEWSLETTER_LINKS_PROMPT,
    }


def get_template_variables(config: "RunConfig") -> Dict[str, str]:
    """
    Build the variables available to prompt templates.

    Args:
        config (RunConfig): Active run configuration.

    Returns:
        Dict[str, str]: Variable name to value, missing hosts render as "".
    """
    host1 = config.hosts[0] if len(config.hosts) > 0 else None
    host2 = config.hosts[1] if len(config.hosts) > 1 else None
    return {
        "podcastTitle": config.site.title,
        "podcastDescription": config.site.description,
        "host1Name": host1.name if host1 else "",
        "host1Persona": host1.persona if host1 else "",
        "host1Marker": host1.speaker_marker if host1 else "",
        "host2Name": host2.name if host2 else "",
        "host2Persona": host2.persona if host2 else "",
        "host2Marker": host2.speaker_marker if host2 else "",
        "language": config.locale.language,
        "timezone": config.locale.timezone,
    }


def render_template(text: str, variables: Dict[str, str]) -> str:
    """Replace every ``{{name}}`` in text, unknown names become ""."""
    return TEMPLATE_PATTERN.sub(lambda match: variables.get(match.group(1), ""), text)


def render_prompt_templates(prompts: "PromptsConfig", variables: Dict[str, str]) -> "PromptsConfig":
    """Return a copy of the prompt set with every template rendered."""
    rendered = {
        field.name: render_template(getattr(prompts, field.name), variables)
        for field in fields(prompts)
    }
    return replace(prompts, **rendered)


def collect_template_variables(text: str) -> List[str]:
    """List the distinct variable names referenced by a template, in order."""
    found: List[str] = []
    for match in TEMPLATE_PATTERN.finditer(text):
        name = match.group(1).strip()
        if name and name not in found:
            found.append(name)
    return found


def find_unknown_template_variables(text: str, variables: Dict[str, str]) -> List[str]:
    """List the variables a template references that are not defined."""
    return [name for name in collect_template_variables(text) if name not in variables]
