from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from promptweave.llm import reasoning
from promptweave.llm.reasoning import (
    ReasoningSplitter,
    ReasoningTags,
    SplitResult,
    clean_response,
    get_splitter,
    split_reasoning,
)


class _FakeSettings:
    def __init__(self, values: dict[str, Any]) -> None:
        self._values = values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)


def test_tag_pair() -> None:
    assert split_reasoning("<think>A</think>B") == SplitResult("A", "B")


def test_tag_pair_is_case_insensitive_and_trimmed() -> None:
    result = split_reasoning("intro <THINK>\n  A \n</Think>\n\nB  ")

    assert result == SplitResult("A", "B")


def test_only_first_tag_pair_is_reasoning() -> None:
    result = split_reasoning("<think>A</think>B<think>C</think>D")

    assert result == SplitResult("A", "B<think>C</think>D")


def test_orphan_close_tag() -> None:
    result = split_reasoning("thinking here\n</think>\nThe reply")

    assert result == SplitResult("thinking here", "The reply")


def test_non_reasoning_model_bypasses_detection() -> None:
    result = split_reasoning("  <think>A</think>B  ", reasoning_capable=False)

    assert result == SplitResult("", "<think>A</think>B")
    assert not result.has_reasoning


def test_plain_text_is_all_answer() -> None:
    text = "Hello there, how can I help you today?"

    assert split_reasoning(f"  {text}\n") == SplitResult("", text)


@pytest.mark.parametrize("raw, answer", [(None, ""), ("", ""), (42, "42")])
def test_never_raises_on_odd_input(raw: Any, answer: str) -> None:
    assert split_reasoning(raw) == SplitResult("", answer)


def test_conclusive_keyword() -> None:
    result = split_reasoning("Let me think about this. Therefore, the result is 10.")

    assert result == SplitResult(
        "Let me think about this.", "Therefore, the result is 10."
    )


def test_earliest_keyword_wins() -> None:
    result = split_reasoning("We add them. Answer: 5. Therefore, done.")

    assert result == SplitResult("We add them.", "Answer: 5. Therefore, done.")


def test_keyword_in_fenced_reasoning_block() -> None:
    text = (
        "Thoughts:\n```reasoning\n1. Assess prior examples\n```\n"
        "Answer: Deliver a concise acknowledgement."
    )

    result = split_reasoning(text)

    assert "Assess prior examples" in result.reasoning
    assert result.answer == "Answer: Deliver a concise acknowledgement."


def test_leaked_reasoning_splits_at_answer_pattern() -> None:
    result = split_reasoning("Okay, so the user wants a greeting. Answer: Hello!")

    assert result == SplitResult("Okay, so the user wants a greeting.", "Answer: Hello!")


def test_leaked_reasoning_uses_pattern_order_not_position() -> None:
    result = split_reasoning("Okay, let's see. Therefore, maybe. Answer: 4")

    assert result == SplitResult("Okay, let's see. Therefore, maybe.", "Answer: 4")


def test_leaked_reasoning_splits_at_short_final_sentence() -> None:
    text = "The user is asking about apples. They had five and ate two. That leaves 3 apples."

    result = split_reasoning(text)

    assert result == SplitResult(
        "The user is asking about apples. They had five and ate two.",
        "That leaves 3 apples.",
    )


def test_leaked_reasoning_conclusive_opener() -> None:
    text = "Wait, the user said hello twice. Maybe they are testing me. So I greet them back."

    result = split_reasoning(text)

    assert result.answer == "So I greet them back."


def test_leaked_reasoning_without_answer_is_all_reasoning() -> None:
    text = "I need to figure out whether this approach is sound because something feels off"

    assert split_reasoning(text) == SplitResult(text, "")


def test_thinking_indicator_with_transition() -> None:
    result = split_reasoning("Let me work through the options first. Here is my pick: blue.")

    assert result == SplitResult(
        "Let me work through the options first.", "Here is my pick: blue."
    )


def test_thinking_indicator_without_transition() -> None:
    result = split_reasoning("Sure. Let me consider the trade-offs of each option carefully")

    assert result == SplitResult(
        "Let me consider the trade-offs of each option carefully", ""
    )


def test_custom_tags() -> None:
    splitter = ReasoningSplitter(ReasoningTags("<reasoning>", "</reasoning>"))

    assert splitter.split("<reasoning>R</reasoning>A") == SplitResult("R", "A")
    assert splitter.split("<think>R</think>A") == SplitResult("", "<think>R</think>A")


def test_split_result_helpers() -> None:
    thought, reply = SplitResult("R", "A")

    assert (thought, reply) == ("R", "A")
    assert SplitResult("R", "A").as_dict() == {"reasoning": "R", "answer": "A"}


def test_clean_response_strips_tags_and_deliberation() -> None:
    assert clean_response("<think>x</think>Let me think. The answer is: 42") == "42"
    assert clean_response("  <think></think>Hello  ") == "Hello"
    assert clean_response("Plain answer") == "Plain answer"


@pytest.mark.parametrize(
    "content, expected",
    [
        ("a</think>b", "b"),
        ("x</think>y</THINK> z ", "z"),
        ("<think>a</think>b", "<think>a</think>b"),
        ("no tags", "no tags"),
    ],
)
def test_strip_stray_close(content: str, expected: str) -> None:
    assert ReasoningTags().strip_stray_close(content) == expected


def test_tags_from_settings() -> None:
    tags = ReasoningTags.from_settings(
        _FakeSettings({"REASONING.open_tag": "<r>", "REASONING.close_tag": "</r>"})
    )

    assert tags == ReasoningTags("<r>", "</r>")
    assert tags.wrap("x") == "<r>x</r>"
    assert ReasoningTags.from_settings(_FakeSettings({})) == ReasoningTags()


@pytest.mark.parametrize(
    "text",
    [
        "Okay, so here's how to fix it: run the installer again.",
        "Hmm, good question. Paris is the capital of France.",
        "Wait, that depends on your operating system.",
        "Alright, so the plan is simple.",
        "First, I need to know which version you are running.",
    ],
)
def test_conversational_openers_stay_in_answer(text: str) -> None:
    assert split_reasoning(text) == SplitResult("", text)


def test_final_sentence_keeps_decimal_numbers() -> None:
    result = split_reasoning("Okay, let's see, I average them. The mean comes out at 3.14")

    assert result == SplitResult(
        "Okay, let's see, I average them.", "The mean comes out at 3.14"
    )


def test_decimal_point_does_not_end_a_sentence() -> None:
    result = split_reasoning("The user wants the total. It costs 2.50 dollars.")

    assert result == SplitResult("The user wants the total.", "It costs 2.50 dollars.")


@pytest.fixture()
def configured_tags(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(
        reasoning,
        "settings",
        _FakeSettings({"REASONING.open_tag": "<r>", "REASONING.close_tag": "</r>"}),
    )
    get_splitter.cache_clear()
    yield
    get_splitter.cache_clear()


def test_default_splitter_uses_configured_tags(configured_tags: None) -> None:
    assert ReasoningSplitter().tags == ReasoningTags("<r>", "</r>")
    assert split_reasoning("<r>R</r>A") == SplitResult("R", "A")
    assert clean_response("<r>R</r>A") == "RA"
