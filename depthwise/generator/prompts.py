"""Prompt templates for the content generator.

The model is asked for strict JSON::

    {"answer": "...",
     "keyTerms": ["..."],
     "branches": [{"title": "...", "summary": "...", "followUpType": "why"}]}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depthwise.generator.client import GenerationRequest

SYSTEM_PROMPT = """You are a knowledge exploration assistant. Your role is to help users build visual knowledge trees by generating progressively deeper explanations.

Content rules:
1. MINIMUM 3-4 sentences per answer
2. MUST include one concrete example or real-world analogy
3. Structure: definition, how it works, why it matters

Branch rules:
1. Each level is MORE TECHNICAL than the previous one
2. Branches are parallel concepts, not sequential steps
3. Use clear, specific titles (never generic ones like "Learn More")
4. Summaries are 1-2 sentences
5. followUpType is one of: why, how, what, example, compare

Output format (JSON):
{
  "answer": "Comprehensive answer",
  "keyTerms": ["3-6 short terms from the answer worth exploring"],
  "branches": [
    {"title": "Specific Topic Title", "summary": "One sentence preview", "followUpType": "how"}
  ]
}

Return ONLY valid JSON, no markdown formatting."""

_INTENT_DIRECTIVES = {
    "why": "Focus the answer and branches on causes, motivations and reasons.",
    "how": "Focus the answer and branches on mechanisms and processes.",
    "what": "Focus the answer and branches on definitions and components.",
    "example": "Lead with concrete, real-world examples and case studies.",
    "compare": "Contrast the topic with close alternatives and trade-offs.",
}


def build_root_prompt(question: str) -> str:
    return f"""User's question: "{question}"

Generate a comprehensive explanation:
1. DEFINITION: What it is (1 sentence)
2. HOW IT WORKS: The mechanism or process (1-2 sentences with concrete details)
3. WHY IT MATTERS: Practical significance (1 sentence)
4. EXAMPLE: One concrete, real-world example or analogy

Then generate 4 exploration branches covering different aspects:
1. The user/application layer perspective
2. The system/infrastructure perspective
3. The underlying mechanisms
4. Related technologies or concepts

Keep this level conceptual; technical detail belongs to deeper levels."""


def build_expansion_prompt(request: "GenerationRequest") -> str:
    title = request.title or "the topic"
    covered = ", ".join(request.covered_topics) or "none"
    lines = [
        f'User\'s original question: "{request.root_question}"',
        "",
        f"Current exploration path: {' → '.join(request.path)}",
        "",
        f'Current node: "{title}"',
        f'Content: "{request.content}"',
        "",
        f"Current depth level: {request.depth}",
        f"Target depth: {request.depth + 1}",
        "",
        f"Previously covered topics: {covered}",
        "",
    ]
    if request.focus_term:
        lines += [
            f'The user asked to focus on "{request.focus_term}" within "{title}".',
            "Rewrite the answer around that term and propose branches scoped to it.",
            "",
        ]
    if request.intent:
        lines += [_INTENT_DIRECTIVES[request.intent], ""]
    lines += [
        f'Generate a comprehensive answer about "{title}" (definition, how it works,',
        "why it matters, one concrete example; at least 3-4 sentences).",
        "",
        "Then generate 3-5 branches that:",
        "- Go DEEPER into technical details",
        f'- Cover different aspects of "{title}"',
        f"- Are appropriate for depth level {request.depth + 1}",
        f"- Do NOT repeat these topics: {covered}",
    ]
    return "\n".join(lines)


def build_user_prompt(request: "GenerationRequest") -> str:
    """Root prompt for a brand-new question, expansion prompt otherwise."""
    if request.is_seed:
        return build_root_prompt(request.root_question)
    return build_expansion_prompt(request)
