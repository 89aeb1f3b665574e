"""Exceptions raised by promptweave components."""

from __future__ import annotations


class PromptweaveError(Exception):
    """Base class for promptweave errors."""


class InvalidTokenCount(PromptweaveError, ValueError):
    """Raised when a token-counting oracle returns something other than a
    non-negative integer."""


class TemplateRenderError(PromptweaveError, ValueError):
    """Raised when a caller-supplied chat template cannot be compiled or
    rendered."""


__all__ = ["PromptweaveError", "InvalidTokenCount", "TemplateRenderError"]
