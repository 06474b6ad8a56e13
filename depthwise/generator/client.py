"""Content generator: turns exploration context into an answer plus branches.

:class:`LLMContentGenerator` is the production implementation.  Anything with
a ``generate(GenerationRequest) -> GenerationResult`` method can stand in for
it (the engine only depends on :class:`ContentGenerator`).

Failures are raised as :class:`GeneratorError` subclasses; the engine maps
them onto the public error taxonomy with :func:`classify_generator_failure`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from depthwise.config import settings
from depthwise.db.models import FOLLOW_UP_TYPES
from depthwise.errors import DepthwiseError, ServerError, UpstreamTransient
from depthwise.generator.prompts import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# USD per million (input, output) tokens; unknown models cost nothing.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-3-5-haiku-20241022": (0.8, 4.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4o": (2.5, 10.0),
}


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------

@dataclass
class GenerationRequest:
    root_question: str
    path: list[str] = field(default_factory=list)
    title: str = ""
    content: str = ""
    depth: int = 1
    covered_topics: list[str] = field(default_factory=list)
    intent: Optional[str] = None
    focus_term: Optional[str] = None

    @classmethod
    def seed(cls, question: str) -> "GenerationRequest":
        """Request for a brand-new session, seeded only with the question."""
        return cls(root_question=question, path=[question], title=question, depth=1)

    @property
    def is_seed(self) -> bool:
        return self.depth == 1 and not self.content and not self.focus_term and not self.intent


@dataclass
class Branch:
    title: str
    summary: str
    follow_up_type: Optional[str] = None


@dataclass
class GenerationUsage:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0


@dataclass
class GenerationResult:
    answer: str
    branches: list[Branch]
    usage: GenerationUsage
    key_terms: list[str] = field(default_factory=list)


class ContentGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult: ...


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class GeneratorError(RuntimeError):
    """The generator call failed for a reason not covered by a subclass."""


class GeneratorTimeout(GeneratorError):
    pass


class GeneratorRateLimited(GeneratorError):
    pass


class GeneratorUnavailable(GeneratorError):
    pass


class MalformedGeneratorOutput(GeneratorError):
    """The model answered, but not with the JSON shape we asked for."""


def classify_generator_failure(exc: Exception) -> DepthwiseError:
    """Map a generator failure onto the public error taxonomy."""
    if isinstance(exc, GeneratorTimeout):
        return UpstreamTransient("Request timed out. Please try again.", kind="timeout")
    if isinstance(exc, GeneratorRateLimited):
        return UpstreamTransient(
            "AI service is busy. Please try again in a moment.", kind="rate_limited"
        )
    if isinstance(exc, GeneratorUnavailable):
        return ServerError(
            "AI service temporarily unavailable. Please try again.", kind="unavailable"
        )
    if isinstance(exc, MalformedGeneratorOutput):
        return ServerError("Failed to parse AI response")
    return ServerError("Failed to generate content")


def _classify_provider_exception(exc: Exception) -> GeneratorError:
    """Best-effort classification of SDK / transport exceptions."""
    if isinstance(exc, httpx.TimeoutException):
        return GeneratorTimeout(str(exc) or "timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return GeneratorRateLimited(f"HTTP {status}")
        if status >= 500:
            return GeneratorUnavailable(f"HTTP {status}")
        return GeneratorError(f"HTTP {status}")
    if isinstance(exc, httpx.TransportError):
        return GeneratorUnavailable(str(exc) or type(exc).__name__)

    text = f"{type(exc).__name__} {exc}".lower()
    if "timeout" in text or "timed out" in text:
        return GeneratorTimeout(str(exc))
    if ("rate" in text and "limit" in text) or "429" in text:
        return GeneratorRateLimited(str(exc))
    if "connect" in text or "unavailable" in text or "overloaded" in text:
        return GeneratorUnavailable(str(exc))
    return GeneratorError(str(exc))


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_generator_output(raw: str) -> tuple[str, list[Branch], list[str]]:
    """Parse the model's JSON reply into ``(answer, branches, key_terms)``.

    Raises:
        MalformedGeneratorOutput: If the reply is not the expected JSON object,
            the answer is empty, or no branch has a title.
    """
    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedGeneratorOutput(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedGeneratorOutput("Reply is not a JSON object")

    answer = data.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        raise MalformedGeneratorOutput("Reply has no answer")

    branches: list[Branch] = []
    for item in data.get("branches") or []:
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            logger.warning("Dropping branch without a title: %r", item)
            continue
        summary = item.get("summary") or item.get("depthPreview") or ""
        follow_up = item.get("followUpType")
        branches.append(
            Branch(
                title=title.strip(),
                summary=summary.strip() if isinstance(summary, str) else "",
                follow_up_type=follow_up if follow_up in FOLLOW_UP_TYPES else None,
            )
        )
    if not branches:
        raise MalformedGeneratorOutput("Reply has no usable branches")

    key_terms = [
        t.strip() for t in data.get("keyTerms") or [] if isinstance(t, str) and t.strip()
    ]
    return answer.strip(), branches, key_terms


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    rate_in, rate_out = MODEL_PRICING.get(model, (0.0, 0.0))
    return round((input_tokens * rate_in + output_tokens * rate_out) / 1_000_000, 6)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def _get_llm() -> Any:
    """Return a configured LangChain chat model based on ``settings``."""
    if settings.llm_provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=settings.openai_chat_model,
            temperature=0.7,
            max_tokens=settings.generator_max_tokens,
            timeout=settings.request_timeout,
        )

    from langchain_ollama import ChatOllama

    return ChatOllama(model=settings.ollama_chat_model, temperature=0.7, format="json")


def _model_name() -> str:
    if settings.llm_provider == "openai":
        return settings.openai_chat_model
    if settings.llm_provider == "anthropic":
        return settings.anthropic_chat_model
    return settings.ollama_chat_model


class LLMContentGenerator:
    """Generator backed by a chat model.

    ``ollama`` and ``openai`` go through LangChain; ``anthropic`` calls the
    Messages API directly over httpx.

    Args:
        provider: Override ``settings.llm_provider``.
        http_client: Injected :class:`httpx.Client` for the Anthropic path.
    """

    def __init__(
        self, provider: Optional[str] = None, http_client: Optional[httpx.Client] = None
    ) -> None:
        self.provider = provider or settings.llm_provider
        self._http = http_client

    def generate(self, request: GenerationRequest) -> GenerationResult:
        user_prompt = build_user_prompt(request)
        logger.info(
            "Generating content (provider=%s, depth=%d, focus=%s)",
            self.provider,
            request.depth,
            bool(request.focus_term),
        )
        try:
            if self.provider == "anthropic":
                raw, model, input_tokens, output_tokens = self._call_anthropic(user_prompt)
            else:
                raw, model, input_tokens, output_tokens = self._call_langchain(user_prompt)
        except GeneratorError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise _classify_provider_exception(exc) from exc

        try:
            answer, branches, key_terms = parse_generator_output(raw)
        except MalformedGeneratorOutput:
            logger.error("Failed to parse generator reply: %.500s", raw)
            raise

        return GenerationResult(
            answer=answer,
            branches=branches,
            key_terms=key_terms,
            usage=GenerationUsage(
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                estimated_cost=estimate_cost(model, input_tokens, output_tokens),
            ),
        )

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    def _call_langchain(self, user_prompt: str) -> tuple[str, str, int, int]:
        from langchain_core.messages import HumanMessage, SystemMessage

        llm = _get_llm()
        response = llm.invoke(
            [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=user_prompt)]
        )
        raw = response.content if hasattr(response, "content") else str(response)
        usage = getattr(response, "usage_metadata", None) or {}
        return (
            raw if isinstance(raw, str) else str(raw),
            _model_name(),
            int(usage.get("input_tokens", 0) or 0),
            int(usage.get("output_tokens", 0) or 0),
        )

    def _call_anthropic(self, user_prompt: str) -> tuple[str, str, int, int]:
        if not settings.anthropic_api_key:
            raise GeneratorUnavailable("ANTHROPIC_API_KEY is not configured")

        client = self._http or httpx.Client(timeout=settings.request_timeout)
        try:
            response = client.post(
                f"{settings.anthropic_base_url.rstrip('/')}/v1/messages",
                headers={
                    "x-api-key": settings.anthropic_api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                json={
                    "model": settings.anthropic_chat_model,
                    "max_tokens": settings.generator_max_tokens,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": user_prompt}],
                },
            )
            response.raise_for_status()
            body = response.json()
        finally:
            if self._http is None:
                client.close()

        blocks = body.get("content") or []
        text = next(
            (b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"),
            None,
        )
        if text is None:
            raise MalformedGeneratorOutput("Unexpected response type from the model")
        usage = body.get("usage") or {}
        return (
            text,
            body.get("model") or settings.anthropic_chat_model,
            int(usage.get("input_tokens", 0) or 0),
            int(usage.get("output_tokens", 0) or 0),
        )
