"""Analysis prompt construction."""

from viralyze.models.analysis import CompositeInput
from viralyze.models.work_item import WorkItem

_ANALYSIS_PROMPT = """\
You are analyzing a short-form video to explain why it performed the way it did.

Video: {title}
Creator: {author}
Engagement: {views:,} views, {likes:,} likes, {comments:,} comments, {shares:,} shares \
({engagement_rate:.2%} engagement, {duration:.0f}s long)

Content (primary source: {primary_source}):
{content}

Respond with ONLY a JSON object in this exact format:
{{"classification": "<content category>",
  "primary_factors": ["<most important factor>", "..."],
  "emotional_factors": ["<emotion>", "..."],
  "opening_strategy": "<how the first seconds grab attention>",
  "confidence": <0.0-1.0>}}

List between 1 and 5 primary factors, most important first.
"""


def build_analysis_prompt(
    item: WorkItem, composite: CompositeInput, max_input_chars: int = 6000
) -> str:
    """Render the prompt for one item, truncating the composite content."""
    content = composite.render()
    if len(content) > max_input_chars:
        content = content[:max_input_chars].rstrip() + "\n[truncated]"

    stats = item.stats
    return _ANALYSIS_PROMPT.format(
        title=item.title or "(untitled)",
        author=item.author_name or "unknown",
        views=stats.views,
        likes=stats.likes,
        comments=stats.comments,
        shares=stats.shares,
        engagement_rate=stats.engagement_rate,
        duration=stats.duration_seconds,
        primary_source=composite.primary_source.value if composite.primary_source else "none",
        content=content,
    )


def estimate_tokens(prompt: str, max_output_tokens: int) -> tuple[int, int]:
    """Rough (input, output) token estimate, ~4 chars per token."""
    return len(prompt) // 4 + 1, max_output_tokens
