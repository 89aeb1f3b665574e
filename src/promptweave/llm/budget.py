"""Prompt budget management for LLM context windows.

This module fits a conversation into a token budget by evicting the oldest
non-system messages, computes that budget from the configured context size,
and reports diagnostics when a prompt reaches the ceiling.
"""

from __future__ import annotations

import hashlib
import inspect
import logging
import operator
from dataclasses import dataclass
from threading import Lock
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Sequence

from cachetools import LRUCache

from promptweave.exceptions import InvalidTokenCount
from promptweave.settings import settings

from .catalog import TemplateId
from .chat_template import ChatPromptRender, PromptCompiler, get_compiler
from .messages import Message, MessageLike, coerce_messages

logger = logging.getLogger(__name__)

TOKEN_CACHE_SIZE = 256

TokenCounter = Callable[[str], int]
AsyncTokenCounter = Callable[[str], "int | Awaitable[int]"]


class PromptRenderer(Protocol):
    def __call__(
        self,
        template_id: TemplateId | str | None,
        conversation: Sequence[Message],
        system_prompt: str,
        include_reasoning_tags: bool,
    ) -> str:  # pragma: no cover - interface
        ...


def validate_token_count(value: Any) -> int:
    """Return ``value`` as an ``int`` or raise :class:`InvalidTokenCount`."""

    if isinstance(value, bool):
        raise InvalidTokenCount(f"Token counter returned a boolean: {value!r}")
    try:
        count = operator.index(value)
    except TypeError as exc:
        raise InvalidTokenCount(
            f"Token counter returned a non-integer: {value!r}"
        ) from exc
    if count < 0:
        raise InvalidTokenCount(f"Token counter returned a negative count: {count}")
    return count


def custom_renderer(source: str, compiler: PromptCompiler | None = None) -> PromptRenderer:
    """Return a renderer for a caller-supplied Jinja2 chat template.

    The template identifier is ignored; the template string decides the
    grammar.
    """

    def _render(
        template_id: TemplateId | str | None,
        conversation: Sequence[Message],
        system_prompt: str,
        include_reasoning_tags: bool,
    ) -> str:
        return (compiler or get_compiler()).render_custom(
            source,
            conversation,
            system_prompt,
            include_reasoning_tags=include_reasoning_tags,
        )

    return _render


@dataclass(frozen=True, slots=True)
class FitResult:
    """Outcome of fitting a conversation into a token budget."""

    conversation: tuple[Message, ...]
    prompt: str
    token_count: int
    budget: int
    iterations: int
    dropped: int

    @property
    def exceeded(self) -> bool:
        """Return True if the prompt is still over budget."""
        return self.token_count > self.budget

    def as_tuple(self) -> tuple[tuple[Message, ...], str, int]:
        return self.conversation, self.prompt, self.token_count


def _eviction_index(working: Sequence[Message], tokens: int, budget: int) -> int | None:
    """Return the index to evict next, or None when trimming must stop."""

    if tokens <= budget or len(working) <= 1:
        return None
    for idx, message in enumerate(working):
        if not message.is_system:
            return idx
    return None


class WindowFitter:
    """Trim conversation history until its rendered prompt fits a budget.

    Eviction is greedy and oldest-first: each round drops the earliest
    message that is not a system message and re-renders. System messages are
    never dropped and at least one message always survives. When nothing
    more can be dropped the over-budget result is returned as-is; callers
    inspect :attr:`FitResult.exceeded`.

    Errors raised by the token counter propagate unchanged.
    """

    def __init__(
        self,
        renderer: PromptRenderer | None = None,
        *,
        compiler: PromptCompiler | None = None,
    ) -> None:
        self._compiler = compiler
        self._renderer = renderer

    def _render(
        self,
        template_id: TemplateId | str | None,
        conversation: Sequence[Message],
        system_prompt: str,
        include_reasoning_tags: bool,
    ) -> str:
        if self._renderer is not None:
            return self._renderer(
                template_id, conversation, system_prompt, include_reasoning_tags
            )
        compiler = self._compiler or get_compiler()
        return compiler.render(
            template_id, conversation, system_prompt, include_reasoning_tags
        )

    def measure(
        self,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None,
        template_id: TemplateId | str | None,
        count_tokens: TokenCounter,
        *,
        include_reasoning_tags: bool = True,
    ) -> ChatPromptRender:
        """Render ``conversation`` once and count its tokens."""

        prompt = self._render(
            template_id,
            coerce_messages(conversation),
            system_prompt or "",
            include_reasoning_tags,
        )
        return ChatPromptRender(prompt, validate_token_count(count_tokens(prompt)))

    def fit(
        self,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None,
        template_id: TemplateId | str | None,
        token_budget: int,
        count_tokens: TokenCounter,
        *,
        include_reasoning_tags: bool = True,
    ) -> FitResult:
        working = list(coerce_messages(conversation))
        original_length = len(working)
        iterations = 0

        while True:
            rendered = self.measure(
                working,
                system_prompt,
                template_id,
                count_tokens,
                include_reasoning_tags=include_reasoning_tags,
            )
            iterations += 1
            idx = _eviction_index(working, rendered.token_count, token_budget)
            if idx is None:
                break
            self._log_eviction(working, idx, rendered.token_count, token_budget)
            del working[idx]

        return self._finish(working, rendered, token_budget, iterations, original_length)

    async def fit_async(
        self,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None,
        template_id: TemplateId | str | None,
        token_budget: int,
        count_tokens: AsyncTokenCounter,
        *,
        include_reasoning_tags: bool = True,
    ) -> FitResult:
        """Like :meth:`fit`, awaiting the counter when it returns an awaitable."""

        working = list(coerce_messages(conversation))
        original_length = len(working)
        system_text = system_prompt or ""
        iterations = 0

        while True:
            prompt = self._render(
                template_id, working, system_text, include_reasoning_tags
            )
            raw = count_tokens(prompt)
            if inspect.isawaitable(raw):
                raw = await raw
            rendered = ChatPromptRender(prompt, validate_token_count(raw))
            iterations += 1
            idx = _eviction_index(working, rendered.token_count, token_budget)
            if idx is None:
                break
            self._log_eviction(working, idx, rendered.token_count, token_budget)
            del working[idx]

        return self._finish(working, rendered, token_budget, iterations, original_length)

    @staticmethod
    def _log_eviction(
        working: Sequence[Message], idx: int, tokens: int, budget: int
    ) -> None:
        logger.debug(
            "Prompt over budget (%s > %s); dropping message %s (%s)",
            tokens,
            budget,
            idx,
            working[idx].role.value,
        )

    @staticmethod
    def _finish(
        working: list[Message],
        rendered: ChatPromptRender,
        budget: int,
        iterations: int,
        original_length: int,
    ) -> FitResult:
        result = FitResult(
            conversation=tuple(working),
            prompt=rendered.prompt,
            token_count=rendered.token_count,
            budget=budget,
            iterations=iterations,
            dropped=original_length - len(working),
        )
        if result.exceeded:
            logger.warning(
                "Conversation cannot be trimmed further: tokens=%s budget=%s messages=%s",
                result.token_count,
                result.budget,
                len(result.conversation),
            )
        elif result.dropped:
            logger.info(
                "Trimmed %s message(s) to fit budget: tokens=%s budget=%s",
                result.dropped,
                result.token_count,
                result.budget,
            )
        return result


def fit_conversation(
    conversation: Iterable[MessageLike] | None,
    system_prompt: str | None,
    template_id: TemplateId | str | None,
    token_budget: int,
    count_tokens: TokenCounter,
    *,
    include_reasoning_tags: bool = True,
) -> FitResult:
    """Fit ``conversation`` into ``token_budget`` with the default compiler."""

    return WindowFitter().fit(
        conversation,
        system_prompt,
        template_id,
        token_budget,
        count_tokens,
        include_reasoning_tags=include_reasoning_tags,
    )


class CachedTokenCounter:
    """Memoise a token counter by prompt digest.

    Repeated fits of an unchanged conversation (regenerations, edits to the
    latest message) then skip the tokenizer entirely. Caching never changes
    which messages survive trimming.
    """

    def __init__(self, count_tokens: TokenCounter, maxsize: int = TOKEN_CACHE_SIZE) -> None:
        self._count_tokens = count_tokens
        self._cache: LRUCache[str, int] = LRUCache(maxsize=max(int(maxsize), 1))
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(prompt: str) -> str:
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()

    def __call__(self, prompt: str) -> int:
        key = self._key(prompt)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return cached
        count = validate_token_count(self._count_tokens(prompt))
        with self._lock:
            self.misses += 1
            self._cache[key] = count
        return count

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


@dataclass(slots=True, frozen=True)
class PromptBudgetSnapshot:
    """Summary of a prompt's token usage against the available context."""

    prompt_tokens: int
    max_tokens: int
    overflow: int
    saturation: float | None
    context_size: int
    label: str | None = None
    extra: Mapping[str, Any] | None = None

    @property
    def at_ceiling(self) -> bool:
        """Return True if prompt tokens are at or above the maximum."""
        return self.prompt_tokens >= self.max_tokens

    @property
    def exceeded(self) -> bool:
        """Return True if prompt tokens exceed the maximum."""
        return self.prompt_tokens > self.max_tokens


class PromptBudget:
    """Compute prompt budgets and report usage diagnostics.

    The budget is the model's context size minus the configured safety
    margin minus the tokens reserved for generation.
    """

    def __init__(
        self,
        *,
        ctx_size: int | None = None,
        reserve_tokens: int | None = None,
        settings_obj: Any = settings,
    ) -> None:
        self._settings = settings_obj
        self.ctx_size = int(
            ctx_size if ctx_size is not None else settings_obj.get("LLM.ctx_size", 0)
        )
        self.reserve_tokens = int(
            reserve_tokens
            if reserve_tokens is not None
            else settings_obj.get("LLM.reserve_tokens", 0)
        )

    def max_prompt_tokens(self, reserve: int | None = None) -> int:
        """Return the maximum tokens available for the prompt portion."""
        ctx_size = self._apply_safety_margin(self.ctx_size)
        reserved = self.reserve_tokens if reserve is None else reserve
        return max(ctx_size - max(int(reserved), 0), 0)

    def _apply_safety_margin(self, ctx_size: int) -> int:
        """Apply configured safety margin to the context size."""
        cfg = self._settings.get("LLM.tokenizer.safety_margin") or {}
        try:
            ratio = float(cfg.get("ratio", 0.0))
        except (TypeError, ValueError):
            ratio = 0.0
        try:
            min_tokens = int(cfg.get("min_tokens", 0))
        except (TypeError, ValueError):
            min_tokens = 0
        try:
            max_tokens = int(cfg.get("max_tokens", 0))
        except (TypeError, ValueError):
            max_tokens = 0

        margin = int(ctx_size * ratio) if ratio > 0 else 0
        if min_tokens > 0:
            margin = max(margin, min_tokens)
        if max_tokens > 0:
            margin = min(margin, max_tokens)

        if margin <= 0:
            return ctx_size
        return max(ctx_size - margin, 0)

    def fit(
        self,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None,
        template_id: TemplateId | str | None,
        count_tokens: TokenCounter,
        *,
        reserve: int | None = None,
        fitter: WindowFitter | None = None,
        include_reasoning_tags: bool = True,
    ) -> FitResult:
        """Fit ``conversation`` into :meth:`max_prompt_tokens`."""
        return (fitter or WindowFitter()).fit(
            conversation,
            system_prompt,
            template_id,
            self.max_prompt_tokens(reserve),
            count_tokens,
            include_reasoning_tags=include_reasoning_tags,
        )

    def diagnostics(
        self,
        *,
        prompt_tokens: int,
        reserve: int | None = None,
        label: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> PromptBudgetSnapshot:
        """Analyse prompt usage and log a warning if the limit is reached."""
        max_tokens = self.max_prompt_tokens(reserve)
        overflow = max(0, prompt_tokens - max_tokens)
        saturation = prompt_tokens / max_tokens if max_tokens > 0 else None

        snapshot = PromptBudgetSnapshot(
            prompt_tokens=prompt_tokens,
            max_tokens=max_tokens,
            overflow=overflow,
            saturation=saturation,
            context_size=self.ctx_size,
            label=label,
            extra=MappingProxyType(dict(extra)) if extra is not None else None,
        )

        if snapshot.at_ceiling:
            label_suffix = f" ({snapshot.label})" if snapshot.label else ""
            logger.warning(
                "Prompt budget ceiling reached%s: tokens=%s max=%s overflow=%s",
                label_suffix,
                snapshot.prompt_tokens,
                snapshot.max_tokens,
                snapshot.overflow,
            )
        return snapshot


__all__ = [
    "CachedTokenCounter",
    "FitResult",
    "PromptBudget",
    "PromptBudgetSnapshot",
    "PromptRenderer",
    "WindowFitter",
    "custom_renderer",
    "fit_conversation",
    "validate_token_count",
]
