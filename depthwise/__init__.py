"""Depthwise: grow an explorable tree of explanations from one question."""

__version__ = "0.1.0"
