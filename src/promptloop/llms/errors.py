from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines custom exceptions for error handling in the llm package.
"""


class LLMError(Exception):
    """Base exception for all promptloop LLM-related errors."""

    pass


class ProviderError(LLMError):
    """
    The provider broke its contract: no assistant message in a response, or a
    stream that ended without a `message_complete` event.
    """

    pass
