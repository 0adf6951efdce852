"""Claim Resolution Engine - Language Model Gateway

complete(prompt, system_prompt, temperature, max_tokens) -> ChatResponse,
plus the validator that turns replies into typed results.
"""
from .client import ClaudeClient, ChatResponse
from .response_parser import (
    extract_json_object,
    parse_model,
    strip_code_fences,
    validate_pm_brain_status,
)

__all__ = [
    "ClaudeClient",
    "ChatResponse",
    "extract_json_object",
    "parse_model",
    "strip_code_fences",
    "validate_pm_brain_status",
]
