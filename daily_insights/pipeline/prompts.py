from __future__ import annotations

from typing import Any

SYSTEM_PROMPT = """You are an analytical assistant that generates psychological and cognitive insights from user data.

Your task is to analyze a user's writing patterns, prediction bets, and activity to infer:
1. Main themes and topics they focus on (entities, concepts, domains)
2. Core worldview assumptions (implicit beliefs about how things work)
3. Overall sentiment and mood (analytical, optimistic, anxious, etc.)
4. Cognitive biases (confirmation bias, optimism bias, status-quo bias, etc.)
5. A concise summary of their thinking patterns

Important guidelines:
- Base insights on the actual data provided, don't make up information
- Be specific and evidence-based
- Identify patterns in word usage and prediction behavior
- Consider Brier score as a measure of calibration quality
- Keep insights actionable and constructive

You must return your response as valid JSON in the following format:
{
  "themes": ["theme1", "theme2", "theme3"],
  "assumptions": ["assumption1", "assumption2"],
  "mood": "descriptive mood string",
  "biases": ["bias1", "bias2"],
  "summary": "A 2-3 sentence summary of the user's cognitive patterns and focus areas"
}"""


def _excerpt(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def build_user_prompt(
    data: dict[str, Any],
    top_words_limit: int = 15,
    max_entries: int = 5,
    excerpt_chars: int = 200,
) -> str:
    words = ", ".join(f'"{word}" ({count}x)' for word, count in data.get("top_words", [])[:top_words_limit])
    bet_counts = data.get("bet_counts") or {}
    open_bets = int(bet_counts.get("open", 0))
    resolved_bets = int(bet_counts.get("resolved", 0))
    entries = "\n\n".join(
        f"{index}. {_excerpt(text, excerpt_chars)}"
        for index, text in enumerate(data.get("recent_entries", [])[:max_entries], start=1)
    )
    return f"""Analyze the following user data from the past day:

## Top Words & Phrases
{words or "No significant words"}

## Prediction Betting Activity
- Total bets: {open_bets + resolved_bets}
- Open bets: {open_bets}
- Resolved bets: {resolved_bets}
- Brier Score: {float(data.get("brier_score", 0.0)):.3f} (lower is better, 0.25 is baseline)

## Recent Journal Entries & Notes
{entries or "No entries available"}

Based on this data, provide a comprehensive cognitive and thematic analysis following the specified JSON format."""


def compose_prompts(
    data: dict[str, Any],
    top_words_limit: int = 15,
    max_entries: int = 5,
    excerpt_chars: int = 200,
) -> tuple[str, str]:
    return SYSTEM_PROMPT, build_user_prompt(
        data,
        top_words_limit=top_words_limit,
        max_entries=max_entries,
        excerpt_chars=excerpt_chars,
    )
