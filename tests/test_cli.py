from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

import promptweave.__main__ as cli
from promptweave.__main__ import build_parser, main
from promptweave.llm.tokenizers import tokenizer as tokenizer_module


def _write(tmp_path: Path, name: str, payload: object) -> str:
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_render_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write(tmp_path, "chat.json", [{"role": "user", "content": "Hi"}])

    exit_code = main(["render", path, "--template", "chatml"])

    assert exit_code == 0
    assert capsys.readouterr().out == (
        "<|im_start|>user\nHi<|im_end|>\n<|im_start|>assistant\n"
    )


def test_render_accepts_messages_object(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(
        tmp_path,
        "chat.json",
        {"messages": [{"role": "assistant", "content": "Hello"}]},
    )

    main(["render", path, "--template", "gemma", "--system", "Sys", "--no-reasoning-tags"])

    out = capsys.readouterr().out
    assert out.startswith("<start_of_turn>user\nSys<end_of_turn>\n")
    assert "<start_of_turn>model\nHello<end_of_turn>\n" in out


def test_render_rejects_non_list(tmp_path: Path) -> None:
    path = _write(tmp_path, "chat.json", "just text")

    with pytest.raises(SystemExit):
        main(["render", path])


def test_split_command_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "completion.txt"
    path.write_text("<think>A</think>B", encoding="utf-8")

    assert main(["split", str(path), "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"reasoning": "A", "answer": "B"}


def test_split_command_plain(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "completion.txt"
    path.write_text("<think>A</think>B", encoding="utf-8")

    main(["split", str(path), "--plain", "--json"])

    assert json.loads(capsys.readouterr().out) == {
        "reasoning": "",
        "answer": "<think>A</think>B",
    }


def test_templates_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["templates"]) == 0

    out = capsys.readouterr().out
    assert "CHATML" in out
    assert "GEMMA" in out


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


class _FakeSettings:
    def __init__(self, values: dict[str, Any]) -> None:
        self._values = values

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)


def _conversation() -> list[dict[str, str]]:
    return [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "u1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "u2"},
        {"role": "assistant", "content": "a2"},
    ]


@pytest.fixture()
def turn_counter(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        tokenizer_module, "count_tokens", lambda prompt: prompt.count("<|im_start|>")
    )


def test_fit_command_trims_history(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], turn_counter: None
) -> None:
    path = _write(tmp_path, "chat.json", _conversation())

    exit_code = main(
        ["fit", path, "--template", "chatml", "--budget", "4", "--no-reasoning-tags"]
    )

    captured = capsys.readouterr()
    assert exit_code == 0
    assert captured.out == (
        "<|im_start|>system\nsys<|im_end|>\n"
        "<|im_start|>user\nu2<|im_end|>\n"
        "<|im_start|>assistant\na2<|im_end|>\n"
        "<|im_start|>assistant\n"
    )
    assert "dropped=2" in captured.err


def test_fit_command_reports_unfittable_budget(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], turn_counter: None
) -> None:
    path = _write(tmp_path, "chat.json", _conversation())

    exit_code = main(["fit", path, "--template", "chatml", "--budget", "0"])

    assert exit_code == 1
    assert "kept=1" in capsys.readouterr().err


def test_reasoning_tags_flag_overrides_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        cli, "settings", _FakeSettings({"REASONING.include_tags": False})
    )
    parser = build_parser()

    assert parser.parse_args(["render", "chat.json"]).reasoning_tags is False
    assert parser.parse_args(["render", "chat.json", "--reasoning-tags"]).reasoning_tags
    assert (
        parser.parse_args(["render", "chat.json", "--no-reasoning-tags"]).reasoning_tags
        is False
    )


def test_render_with_reasoning_tags(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write(
        tmp_path,
        "chat.json",
        [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}],
    )

    main(["render", path, "--template", "chatml", "--reasoning-tags"])

    out = capsys.readouterr().out
    assert "<|im_start|>assistant\n<think>Hello</think><|im_end|>\n" in out
