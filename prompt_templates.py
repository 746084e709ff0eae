"""Default system prompts used by the workbench model calls.

Updates: v0.2.0 - 2026-10-19 - Replace catalogue templates with interpretation and drafting prompts.
Updates: v0.1.0 - 2026-10-19 - Centralise prompt template defaults for runtime overrides.
"""

from __future__ import annotations

DEFAULT_LANGUAGE = "English"

INTERPRETATION_SYSTEM_PROMPT = (
    "You are a prompt topic analyst. Extract the topic, supplementary requirements, "
    "and keywords from the user's natural-language intent. Always answer with structured JSON."
)

INTERPRETATION_USER_TEMPLATE = (
    "Target language: {language}\n"
    "Extract one topic from the description below. Split it into 3-6 positive keywords and "
    "1-4 negative keywords, and summarise 1-2 supplementary requirements. Give every keyword an "
    "integer weight from 0 to 5 describing its relevance to the topic (0 barely related, "
    "5 strongly related). Also return an array of tags that help with retrieval. "
    "Answer with JSON using exactly these field names:\n"
    '{{"topic":"topic name","instructions":"requirements",'
    '"positive_keywords":[{{"word":"keyword","weight":0}}],'
    '"negative_keywords":[{{"word":"keyword","weight":0}}],"tags":["tag"]}}\n'
    "Description: {description}"
)

GENERATION_SYSTEM_PROMPT = (
    "You are a prompt engineer. Write a high-quality prompt for the given topic and keywords "
    "that helps a large language model complete the task."
)


def build_generation_user_prompt(
    *,
    language: str,
    topic: str,
    positive: list[str],
    negative: list[str],
    instructions: str = "",
    existing_body: str = "",
) -> str:
    """Return the user message for drafting a prompt body."""

    lines = [
        f"Write one complete prompt for {language or DEFAULT_LANGUAGE}. "
        "Return only the final prompt text.",
        f"Topic: {topic}",
        f"Positive keywords: {', '.join(positive)}",
    ]
    if negative:
        lines.append(f"Negative keywords: {', '.join(negative)}")
    lines.append(
        "Prefer the highly weighted positive keywords and avoid introducing negative keywords."
    )
    if instructions.strip():
        lines.append(f"Supplementary requirements: {instructions.strip()}")
    if existing_body.strip():
        lines.append(
            "Current draft to refine while keeping its core information:\n"
            f"{existing_body.strip()}\n"
            "Return the improved complete prompt rather than a rewrite from scratch."
        )
    return "\n".join(lines)


__all__ = [
    "DEFAULT_LANGUAGE",
    "GENERATION_SYSTEM_PROMPT",
    "INTERPRETATION_SYSTEM_PROMPT",
    "INTERPRETATION_USER_TEMPLATE",
    "build_generation_user_prompt",
]
