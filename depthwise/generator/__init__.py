"""Content generator contract and the LLM-backed implementation."""

from depthwise.generator.client import (
    Branch,
    ContentGenerator,
    GenerationRequest,
    GenerationResult,
    GenerationUsage,
    GeneratorError,
    LLMContentGenerator,
    MalformedGeneratorOutput,
    classify_generator_failure,
)

__all__ = [
    "Branch",
    "ContentGenerator",
    "GenerationRequest",
    "GenerationResult",
    "GenerationUsage",
    "GeneratorError",
    "LLMContentGenerator",
    "MalformedGeneratorOutput",
    "classify_generator_failure",
]
