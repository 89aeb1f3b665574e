"""Command line entry point: ``python -m promptweave``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import orjson
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from promptweave.settings import settings
from promptweave.util import str_to_bool

from .llm.budget import PromptBudget, WindowFitter
from .llm.catalog import available_templates, get_template_spec
from .llm.chat_template import get_compiler
from .llm.reasoning import get_splitter

logger = logging.getLogger(__name__)
_console = Console(stderr=True)


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    return Path(path).read_bytes()


def _load_conversation(path: str) -> list[Any]:
    try:
        payload = orjson.loads(_read_input(path))
    except orjson.JSONDecodeError as exc:
        raise SystemExit(f"{path}: invalid JSON ({exc})") from exc
    if isinstance(payload, dict):
        payload = payload.get("messages", [])
    if not isinstance(payload, list):
        raise SystemExit(
            f"{path}: expected a list of messages or an object with a 'messages' list"
        )
    return payload


def _default_include_tags() -> bool:
    try:
        return str_to_bool(settings.get("REASONING.include_tags", True))
    except ValueError:
        return True


def _cmd_templates(args: argparse.Namespace) -> int:
    table = Table(title="Prompt templates")
    table.add_column("id")
    table.add_column("generation prefix")
    table.add_column("description")
    for template_id in available_templates():
        spec = get_template_spec(template_id)
        table.add_row(template_id.value, repr(spec.generation_prefix), spec.description)
    Console().print(table)
    return 0


def _cmd_render(args: argparse.Namespace) -> int:
    conversation = _load_conversation(args.file)
    prompt = get_compiler().render(
        args.template, conversation, args.system, args.reasoning_tags
    )
    sys.stdout.write(prompt)
    return 0


def _cmd_fit(args: argparse.Namespace) -> int:
    from promptweave.llm.tokenizers.tokenizer import count_tokens

    conversation = _load_conversation(args.file)
    budget = PromptBudget(ctx_size=args.ctx_size, reserve_tokens=args.reserve)
    token_budget = args.budget if args.budget is not None else budget.max_prompt_tokens()
    result = WindowFitter().fit(
        conversation,
        args.system,
        args.template,
        token_budget,
        count_tokens,
        include_reasoning_tags=args.reasoning_tags,
    )
    sys.stdout.write(result.prompt)
    _console.print(
        f"tokens={result.token_count} budget={result.budget} "
        f"kept={len(result.conversation)} dropped={result.dropped}"
    )
    return 1 if result.exceeded else 0


def _cmd_split(args: argparse.Namespace) -> int:
    text = _read_input(args.file).decode("utf-8")
    splitter = get_splitter()
    result = splitter.split(text, reasoning_capable=not args.plain)
    if args.json:
        sys.stdout.write(orjson.dumps(result.as_dict()).decode("utf-8") + "\n")
        return 0
    console = Console(highlight=False)
    console.print(Rule("reasoning"))
    console.print(result.reasoning, markup=False)
    console.print(Rule("answer"))
    console.print(result.answer, markup=False)
    return 0


def _add_render_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", help="JSON conversation file, or - for stdin")
    parser.add_argument(
        "--template",
        default=settings.get("PROMPTS.default_template"),
        help="Template id (unknown ids fall back to the default)",
    )
    parser.add_argument("--system", default="", help="System prompt")
    parser.add_argument(
        "--reasoning-tags",
        dest="reasoning_tags",
        action=argparse.BooleanOptionalAction,
        default=_default_include_tags(),
        help="Wrap assistant turns in reasoning tags (default: REASONING.include_tags)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptweave", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    templates = sub.add_parser("templates", help="List supported templates")
    templates.set_defaults(handler=_cmd_templates)

    render = sub.add_parser("render", help="Compile a conversation into a prompt")
    _add_render_options(render)
    render.set_defaults(handler=_cmd_render)

    fit = sub.add_parser("fit", help="Trim a conversation to fit the context budget")
    _add_render_options(fit)
    fit.add_argument("--budget", type=int, default=None, help="Token budget")
    fit.add_argument("--ctx-size", type=int, default=None, help="Context size")
    fit.add_argument("--reserve", type=int, default=None, help="Generation reserve")
    fit.set_defaults(handler=_cmd_fit)

    split = sub.add_parser("split", help="Split a completion into reasoning and answer")
    split.add_argument("file", nargs="?", default="-", help="Completion text file")
    split.add_argument(
        "--plain",
        action="store_true",
        help="Model is not reasoning-capable; treat everything as the answer",
    )
    split.add_argument("--json", action="store_true", help="Emit JSON")
    split.set_defaults(handler=_cmd_split)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=str(settings.get("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
