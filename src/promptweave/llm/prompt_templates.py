"""Utilities for loading chat-prompt grammars using Jinja2."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
)

from promptweave.exceptions import TemplateRenderError
from promptweave.settings import CONFIG_DIR, PACKAGE_DIR, PROJECT_ROOT, settings

_DEFAULT_TEMPLATE_DIR = (PACKAGE_DIR / "llm" / "templates").resolve()


def _candidate_template_dirs(configured: str | None) -> list[Path]:
    candidates: list[Path] = []
    if configured:
        candidate_path = Path(configured).expanduser()
        if candidate_path.is_absolute():
            candidates.append(candidate_path)
        else:
            candidates.extend([Path.cwd() / candidate_path, PROJECT_ROOT / candidate_path])
            if CONFIG_DIR is not None:
                candidates.append(CONFIG_DIR / candidate_path)
    candidates.append(_DEFAULT_TEMPLATE_DIR)

    seen: set[Path] = set()
    unique: list[Path] = []
    for path in candidates:
        resolved = path.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        unique.append(resolved)
    return unique


def resolve_template_dirs(configured: str | None = None) -> list[Path]:
    """Return existing template directories, configured overrides first.

    The packaged directory is always searched last so an override directory
    only needs to contain the grammars it replaces.
    """

    if configured is None:
        raw = settings.get("PROMPTS.template_dir", "")
        configured = str(raw).strip() if raw else ""
    candidates = _candidate_template_dirs(configured or None)
    found = [path for path in candidates if path.is_dir()]
    if not found:
        searched = ", ".join(str(path) for path in candidates)
        raise FileNotFoundError(f"Unable to locate prompt templates. Searched: {searched}")
    return found


def build_environment(template_dirs: list[Path] | None = None) -> Environment:
    dirs = template_dirs if template_dirs is not None else resolve_template_dirs()
    loader = FileSystemLoader([str(path) for path in dirs])
    return Environment(
        loader=loader,
        autoescape=False,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


@lru_cache(maxsize=1)
def get_environment() -> Environment:
    """Return a cached Jinja2 environment configured for prompt rendering."""

    return build_environment()


def get_prompt_template(name: str, environment: Environment | None = None) -> Template:
    """Return a compiled prompt template by ``name``."""

    env = environment or get_environment()
    try:
        return env.get_template(name)
    except TemplateNotFound as exc:
        loader = env.loader
        search_path = getattr(loader, "searchpath", None)
        if search_path is None:
            location = "<unknown>"
        else:
            location = ", ".join(str(path) for path in search_path)
        raise FileNotFoundError(
            f"Prompt template '{name}' could not be located in {location}"
        ) from exc


def _raise_template_exception(message: str) -> None:
    raise TemplateRenderError(message)


@lru_cache(maxsize=1)
def get_custom_environment() -> Environment:
    """Return the environment used for caller-supplied chat templates.

    Uses the Hugging Face chat-template conventions: block trimming and a
    ``raise_exception`` global.
    """

    env = Environment(
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.globals["raise_exception"] = _raise_template_exception
    return env


def compile_template_source(source: str, environment: Environment | None = None) -> Template:
    """Compile a caller-supplied chat template string."""

    env = environment or get_custom_environment()
    try:
        return env.from_string(source)
    except TemplateSyntaxError as exc:
        raise TemplateRenderError(
            f"Invalid chat template (line {exc.lineno}): {exc.message}"
        ) from exc


__all__ = [
    "build_environment",
    "compile_template_source",
    "get_custom_environment",
    "get_environment",
    "get_prompt_template",
    "resolve_template_dirs",
]
