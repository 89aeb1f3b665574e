"""Conversation-to-prompt compiler and completion reasoning splitter."""

from .llm.budget import FitResult, PromptBudget, WindowFitter, fit_conversation
from .llm.catalog import TemplateId, available_templates, resolve_template_id
from .llm.chat_template import PromptCompiler, PromptRenderRequest, render
from .llm.messages import Message, Role
from .llm.reasoning import ReasoningSplitter, SplitResult, split_reasoning

__all__ = [
    "FitResult",
    "Message",
    "PromptBudget",
    "PromptCompiler",
    "PromptRenderRequest",
    "ReasoningSplitter",
    "Role",
    "SplitResult",
    "TemplateId",
    "WindowFitter",
    "available_templates",
    "fit_conversation",
    "render",
    "resolve_template_id",
    "split_reasoning",
]
