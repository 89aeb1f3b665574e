"""Split a finished completion into a reasoning segment and an answer.

The splitter is a best-effort text classifier, not a grammar. Rules are
tried in a fixed order and the first one that matches decides the split:

1. a complete open/close reasoning tag pair;
2. a close tag whose open tag never made it into the output;
3. leaked deliberation fragments, split at an answer pattern, else at a
   short final sentence, else the whole text counts as reasoning;
4. a conclusive keyword such as ``Therefore,``;
5. a "let me think" style opener followed by an answer transition;
6. nothing matched: the whole text is the answer.

Downstream display code depends on this precedence, so the order is fixed
even where two rules could both claim an input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterator, Sequence

from promptweave.settings import settings
from promptweave.util import normalise_text

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

# Substrings that betray untagged internal deliberation. Matched
# case-insensitively anywhere in the text.
LEAK_FRAGMENTS: tuple[str, ...] = (
    "okay, let's see",
    "the user is asking",
    "the user wants",
    "the user said",
    "i need to figure out",
    "i should respond",
)

# Tried in this order; the first pattern present wins, wherever it occurs.
ANSWER_PATTERNS: tuple[str, ...] = (
    "So the answer is:",
    "The answer is:",
    "Final answer:",
    "Answer:",
    "Therefore,",
    "Result:",
    "In summary,",
    "To summarize,",
)

# Earliest occurrence of any keyword wins.
SPLIT_KEYWORDS: tuple[str, ...] = (
    "The answer is:",
    "Final answer:",
    "Therefore,",
    "Answer:",
    "Result:",
    "In conclusion,",
)

THINKING_INDICATORS: tuple[str, ...] = (
    "let me think",
    "let me reason",
    "let's think step by step",
    "thinking step by step",
    "let me work through",
    "let me consider",
)

ANSWER_TRANSITIONS: tuple[str, ...] = (
    "so the answer",
    "the answer is",
    "in short",
    "to conclude",
    "my answer",
    "here's",
    "here is",
)

CONCLUSIVE_OPENERS: frozenset[str] = frozenset(
    {"so", "thus", "hence", "therefore", "finally", "overall"}
)
MAX_FINAL_SENTENCE_WORDS = 12

# Openers that mark a response as deliberation for clean_response().
DELIBERATION_OPENERS: tuple[str, ...] = ("let me think", "okay, let's see")

# A "." between two digits is a decimal point, not a sentence end.
_SENTENCE_RE = re.compile(r"(?:[^.!?]|(?<=\d)\.(?=\d))+[.!?]*")


def _phrase(text: str) -> re.Pattern[str]:
    return re.compile(re.escape(text), re.IGNORECASE)


def _alternation(phrases: Sequence[str]) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(p) for p in phrases), re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ReasoningTags:
    """Open/close delimiters around a reasoning segment."""

    open: str = THINK_OPEN
    close: str = THINK_CLOSE

    def wrap(self, content: str) -> str:
        return f"{self.open}{content}{self.close}"

    def strip_stray_close(self, content: str) -> str:
        """Drop reasoning that leaked into ``content`` ahead of a lone close tag.

        Only text after the last close tag survives, and only when no open
        tag is present.
        """

        close_re = _phrase(self.close)
        matches = list(close_re.finditer(content))
        if not matches or _phrase(self.open).search(content):
            return content
        return content[matches[-1].end() :].strip()

    @classmethod
    def from_settings(cls, settings_obj: Any = None) -> "ReasoningTags":
        if settings_obj is None:
            settings_obj = settings
        open_tag = str(settings_obj.get("REASONING.open_tag") or THINK_OPEN)
        close_tag = str(settings_obj.get("REASONING.close_tag") or THINK_CLOSE)
        return cls(open=open_tag, close=close_tag)


@dataclass(frozen=True, slots=True)
class SplitResult:
    """Reasoning and answer segments of a completion."""

    reasoning: str
    answer: str

    @property
    def has_reasoning(self) -> bool:
        return bool(self.reasoning)

    def __iter__(self) -> Iterator[str]:
        yield self.reasoning
        yield self.answer

    def as_dict(self) -> dict[str, str]:
        return {"reasoning": self.reasoning, "answer": self.answer}


class ReasoningSplitter:
    """Separate internal reasoning from the user-facing answer."""

    def __init__(self, tags: ReasoningTags | None = None) -> None:
        self.tags = tags or ReasoningTags.from_settings()
        open_re = re.escape(self.tags.open)
        close_re = re.escape(self.tags.close)
        self._pair_re = re.compile(f"{open_re}([\\s\\S]*?){close_re}", re.IGNORECASE)
        self._open_re = re.compile(open_re, re.IGNORECASE)
        self._close_re = re.compile(close_re, re.IGNORECASE)
        self._leak_re = _alternation(LEAK_FRAGMENTS)
        self._answer_patterns = tuple(_phrase(p) for p in ANSWER_PATTERNS)
        self._keyword_re = _alternation(SPLIT_KEYWORDS)
        self._indicator_re = _alternation(THINKING_INDICATORS)
        self._transition_re = _alternation(ANSWER_TRANSITIONS)
        self._deliberation_re = _alternation(DELIBERATION_OPENERS)
        self._rules: tuple[Callable[[str], SplitResult | None], ...] = (
            self._split_tag_pair,
            self._split_orphan_close,
            self._split_leaked,
            self._split_keyword,
            self._split_indicator,
        )

    def split(self, raw_text: Any, reasoning_capable: bool = True) -> SplitResult:
        text = normalise_text(raw_text)
        if not reasoning_capable:
            return SplitResult("", text.strip())

        for rule in self._rules:
            result = rule(text)
            if result is not None:
                logger.debug(
                    "Reasoning split by %s: reasoning=%d chars, answer=%d chars",
                    rule.__name__.removeprefix("_split_"),
                    len(result.reasoning),
                    len(result.answer),
                )
                return result

        logger.debug("No reasoning detected; treating output as answer only")
        return SplitResult("", text.strip())

    def clean_response(self, raw_text: Any) -> str:
        """Return ``raw_text`` without reasoning tags or leading deliberation.

        When the text opens a "let me think" style deliberation and later
        names its answer, only the text after the answer pattern is kept.
        """

        cleaned = self._close_re.sub("", self._open_re.sub("", normalise_text(raw_text)))
        if self._deliberation_re.search(cleaned):
            for pattern in self._answer_patterns:
                match = pattern.search(cleaned)
                if match:
                    return cleaned[match.end() :].strip()
        return cleaned.strip()

    def _split_tag_pair(self, text: str) -> SplitResult | None:
        match = self._pair_re.search(text)
        if match is None:
            return None
        return SplitResult(match.group(1).strip(), text[match.end() :].strip())

    def _split_orphan_close(self, text: str) -> SplitResult | None:
        # A close tag that survived _split_tag_pair has no open tag before it.
        match = self._close_re.search(text)
        if match is None:
            return None
        return SplitResult(text[: match.start()].strip(), text[match.end() :].strip())

    def _split_leaked(self, text: str) -> SplitResult | None:
        if self._leak_re.search(text) is None:
            return None

        for pattern in self._answer_patterns:
            match = pattern.search(text)
            if match:
                return _split_at(text, match.start())

        start = self._final_sentence_start(text)
        if start is not None:
            return _split_at(text, start)
        return SplitResult(text.strip(), "")

    def _split_keyword(self, text: str) -> SplitResult | None:
        match = self._keyword_re.search(text)
        if match is None:
            return None
        return _split_at(text, match.start())

    def _split_indicator(self, text: str) -> SplitResult | None:
        indicator = self._indicator_re.search(text)
        if indicator is None:
            return None
        transition = self._transition_re.search(text, indicator.end())
        if transition is None:
            return SplitResult(text[indicator.start():].strip(), "")
        return SplitResult(
            text[indicator.start() : transition.start()].strip(),
            text[transition.start():].strip(),
        )

    @staticmethod
    def _final_sentence_start(text: str) -> int | None:
        """Return where a short concluding sentence starts, scanning backwards.

        The opening sentence is never a candidate: in leaked output it is the
        start of the deliberation.
        """

        sentences = list(_SENTENCE_RE.finditer(text))
        for match in reversed(sentences[1:]):
            sentence = match.group(0)
            words = sentence.split()
            if not words or len(words) > MAX_FINAL_SENTENCE_WORDS:
                continue
            opener = words[0].strip(",;:").lower()
            if opener in CONCLUSIVE_OPENERS or any(ch.isdigit() for ch in sentence):
                return match.start() + len(sentence) - len(sentence.lstrip())
        return None


def _split_at(text: str, index: int) -> SplitResult:
    return SplitResult(text[:index].strip(), text[index:].strip())


@lru_cache(maxsize=1)
def get_splitter() -> ReasoningSplitter:
    """Return a splitter for the reasoning tags configured in settings."""

    return ReasoningSplitter()


def split_reasoning(raw_text: Any, reasoning_capable: bool = True) -> SplitResult:
    """Split ``raw_text`` using the configured reasoning tags."""

    return get_splitter().split(raw_text, reasoning_capable)


def clean_response(raw_text: Any) -> str:
    return get_splitter().clean_response(raw_text)


__all__ = [
    "ANSWER_PATTERNS",
    "ANSWER_TRANSITIONS",
    "LEAK_FRAGMENTS",
    "SPLIT_KEYWORDS",
    "THINKING_INDICATORS",
    "ReasoningSplitter",
    "ReasoningTags",
    "SplitResult",
    "clean_response",
    "get_splitter",
    "split_reasoning",
]
