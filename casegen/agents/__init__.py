"""
CaseGen Agents Module
Content generators for text, structured JSON and images.
"""

from .base import (
    ClaudeGenerator,
    ContentGenerator,
    GeminiGenerator,
    OpenAIGenerator,
    create_content_generator,
)

__all__ = [
    "ContentGenerator",
    "OpenAIGenerator",
    "ClaudeGenerator",
    "GeminiGenerator",
    "create_content_generator",
]
