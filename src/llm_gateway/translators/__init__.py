"""
Traducteurs de protocole: formats clients (OpenAI, Claude, Gemini) <-> forme normalisée.
"""

from .common import (
    normalize_openai_parameters,
    normalize_claude_parameters,
    normalize_gemini_parameters,
    normalize_tools,
    parse_tool_arguments,
    split_system,
    fold_events,
    estimate_usage,
)
from .openai import (
    parse_openai_request,
    build_openai_response,
    build_openai_error_payload,
    OpenAIStreamEncoder,
)
from .claude import (
    parse_claude_request,
    build_claude_response,
    build_claude_error_payload,
    ClaudeStreamEncoder,
)
from .gemini import (
    parse_gemini_request,
    build_gemini_response,
    build_gemini_error_payload,
    GeminiStreamEncoder,
    GeminiStreamParser,
)

__all__ = [
    "normalize_openai_parameters",
    "normalize_claude_parameters",
    "normalize_gemini_parameters",
    "normalize_tools",
    "parse_tool_arguments",
    "split_system",
    "fold_events",
    "estimate_usage",
    "parse_openai_request",
    "build_openai_response",
    "build_openai_error_payload",
    "OpenAIStreamEncoder",
    "parse_claude_request",
    "build_claude_response",
    "build_claude_error_payload",
    "ClaudeStreamEncoder",
    "parse_gemini_request",
    "build_gemini_response",
    "build_gemini_error_payload",
    "GeminiStreamEncoder",
    "GeminiStreamParser",
]
