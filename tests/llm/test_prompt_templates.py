from __future__ import annotations

from pathlib import Path

import pytest

from promptweave.llm.chat_template import PromptCompiler
from promptweave.llm.prompt_templates import (
    build_environment,
    get_prompt_template,
    resolve_template_dirs,
)
from promptweave.llm.reasoning import ReasoningTags
from promptweave.settings import PACKAGE_DIR, settings

_PACKAGED = (PACKAGE_DIR / "llm" / "templates").resolve()


def test_defaults_point_at_packaged_templates() -> None:
    assert settings.get("PROMPTS.default_template") == "CHATML"
    assert resolve_template_dirs()[-1] == _PACKAGED


def test_override_directory_is_searched_first(tmp_path: Path) -> None:
    dirs = resolve_template_dirs(str(tmp_path))

    assert dirs == [tmp_path.resolve(), _PACKAGED]


def test_override_replaces_single_grammar(tmp_path: Path) -> None:
    (tmp_path / "chatml.j2").write_text(
        "{% for m in messages %}{{ m.role }}={{ m.content }};{% endfor %}"
        "{{ generation_prefix }}",
        encoding="utf-8",
    )
    environment = build_environment(resolve_template_dirs(str(tmp_path)))
    compiler = PromptCompiler(environment, reasoning_tags=ReasoningTags())

    chatml = compiler.render("CHATML", [{"role": "user", "content": "Hi"}], "", False)
    zephyr = compiler.render("ZEPHYR", [{"role": "user", "content": "Hi"}], "", False)

    assert chatml == "user=Hi;<|im_start|>assistant\n"
    assert zephyr == "<|user|>\nHi</s>\n<|assistant|>\n"


def test_missing_template_raises_file_not_found(tmp_path: Path) -> None:
    environment = build_environment([tmp_path])

    with pytest.raises(FileNotFoundError, match="missing.j2"):
        get_prompt_template("missing.j2", environment)
