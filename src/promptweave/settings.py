from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent


def _resolve_config_dir() -> Path | None:
    env_override = os.environ.get("PROMPTWEAVE_CONFIG_DIR")
    candidates: list[Path] = []

    if env_override:
        candidates.append(Path(env_override).expanduser())

    candidates.append(PROJECT_ROOT / "config")
    candidates.append(PROJECT_ROOT.parent / "config")

    for candidate in candidates:
        expanded = candidate.expanduser()
        if expanded.is_dir():
            return expanded.resolve()

    if env_override:
        searched = ", ".join(str(path) for path in candidates)
        raise RuntimeError(
            "Unable to locate configuration directory. "
            f"Searched: {searched}. Set PROMPTWEAVE_CONFIG_DIR to a valid directory."
        )
    # Installed without a config directory: defaults and environment only.
    return None


CONFIG_DIR = _resolve_config_dir()


DEFAULT_SAFETY_MARGIN: dict[str, Any] = {
    "ratio": 0.0,
    "min_tokens": 0,
    "max_tokens": 0,
}

DEFAULTS: dict[str, Any] = {
    "APP_NAME": "promptweave",
    "LOG_LEVEL": "INFO",
    "PROMPTS": {
        "default_template": "CHATML",
        "template_dir": str(PACKAGE_DIR / "llm" / "templates"),
        "bos_token": "<s>",
        "eos_token": "</s>",
    },
    "REASONING": {
        "open_tag": "<think>",
        "close_tag": "</think>",
        "include_tags": True,
    },
    "LLM": {
        "ctx_size": 32768,
        "reserve_tokens": 256,
        "tokenizer": {
            "model": "Qwen/Qwen3-4B-Instruct-2507",
            "trust_remote_code": True,
            "safety_margin": DEFAULT_SAFETY_MARGIN,
        },
    },
}


def _settings_files() -> list[Path]:
    if CONFIG_DIR is None:
        return []
    return [
        CONFIG_DIR / "settings.toml",
        CONFIG_DIR / ".secrets.toml",
        CONFIG_DIR / "settings.local.toml",
    ]


settings = Dynaconf(
    envvar_prefix="PROMPTWEAVE",
    settings_files=_settings_files(),
    environments=True,
    env_switcher="PROMPTWEAVE_ENV",
    load_dotenv=True,
    envvar_parse_values=True,
    merge_enabled=True,
    defaults=DEFAULTS,
)


_MISSING = object()


def _ensure_defaults(prefix: str, defaults: dict[str, Any]) -> None:
    for key, value in defaults.items():
        dotted = f"{prefix}.{key}" if prefix else key
        existing = settings.get(dotted, _MISSING)

        if isinstance(value, dict):
            if existing is _MISSING:
                settings.set(dotted, value.copy())
                existing = settings.get(dotted, _MISSING)
            # Only recurse into mappings so user-provided primitives survive.
            if isinstance(existing, Mapping):
                _ensure_defaults(dotted, value)
            continue

        if existing is _MISSING:
            settings.set(dotted, value)


_ensure_defaults("", DEFAULTS)


def _coerce_positive_int(key: str, default: int) -> None:
    raw = settings.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    if value < 0:
        value = default
    settings.set(key, value)


_coerce_positive_int("LLM.ctx_size", DEFAULTS["LLM"]["ctx_size"])
_coerce_positive_int("LLM.reserve_tokens", DEFAULTS["LLM"]["reserve_tokens"])

__all__ = ["settings", "CONFIG_DIR", "PACKAGE_DIR", "PROJECT_ROOT"]
