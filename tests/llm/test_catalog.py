from __future__ import annotations

import logging
from typing import Any

import pytest

from promptweave.llm import catalog
from promptweave.llm.catalog import (
    TemplateId,
    available_templates,
    get_template_spec,
    resolve_template_id,
)
from promptweave.llm.messages import Role


class _FakeSettings:
    def __init__(self, values: dict[str, Any]) -> None:
        self._values = values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("CHATML", TemplateId.CHATML),
        ("chatml", TemplateId.CHATML),
        ("qwen3", TemplateId.QWEN3),
        ("llama-3.1", TemplateId.LLAMA3),
        ("llama3 text", TemplateId.LLAMA3_TEXT),
        ("gemma3", TemplateId.GEMMA),
        ("mistral", TemplateId.LLAMA2),
        ("deepseek-r1", TemplateId.QWEN3),
        (TemplateId.RAW, TemplateId.RAW),
    ],
)
def test_resolve_template_id(raw: Any, expected: TemplateId) -> None:
    assert resolve_template_id(raw) is expected


@pytest.mark.parametrize("raw", ["", None, "not-a-format", 42])
def test_unknown_ids_use_configured_default(
    monkeypatch: pytest.MonkeyPatch, raw: Any
) -> None:
    monkeypatch.setattr(
        catalog, "settings", _FakeSettings({"PROMPTS.default_template": "zephyr"})
    )

    assert resolve_template_id(raw) is TemplateId.ZEPHYR


def test_unusable_default_falls_back_to_chatml(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(
        catalog, "settings", _FakeSettings({"PROMPTS.default_template": "bogus"})
    )

    with caplog.at_level(logging.WARNING, logger="promptweave.llm.catalog"):
        assert resolve_template_id("also-bogus") is TemplateId.CHATML

    assert "bogus" in caplog.text


def test_every_template_has_a_spec() -> None:
    templates = available_templates()

    assert templates == list(TemplateId)
    for template_id in templates:
        spec = get_template_spec(template_id)
        assert spec.id is template_id
        assert spec.generation_prefix
        assert spec.file.endswith(".j2")


def test_role_tokens() -> None:
    gemma = get_template_spec(TemplateId.GEMMA)
    alpaca = get_template_spec(TemplateId.ALPACA)

    assert gemma.role_token(Role.ASSISTANT) == "model"
    assert gemma.role_token(Role.CODE_BLOCK) == "user"
    assert alpaca.role_token(Role.USER) == "### Instruction:"


def test_qwen3_shares_chatml_layout() -> None:
    chatml = get_template_spec(TemplateId.CHATML)
    qwen3 = get_template_spec(TemplateId.QWEN3)

    assert qwen3.file == chatml.file
    assert qwen3.generation_prefix == chatml.generation_prefix
    assert qwen3.strip_stray_close
    assert not chatml.strip_stray_close
