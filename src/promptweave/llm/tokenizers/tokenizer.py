"""Tokenizer helpers backed by Hugging Face transformers."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from threading import Lock
from typing import Any

from transformers import AutoTokenizer, PreTrainedTokenizerBase

from promptweave.settings import settings

__all__ = [
    "count_tokens",
    "get_tokenizer",
    "reset_tokenizer",
]

_TOKENIZER: PreTrainedTokenizerBase | None = None
_TOKENIZER_LOCK = Lock()

# Keys under LLM.tokenizer that configure promptweave rather than transformers.
_LOCAL_KEYS = frozenset({"safety_margin"})


def _normalise_model_identifier(raw: Any) -> str:
    """Return a string path or identifier for the tokenizer model."""

    return str(raw)


def _tokenizer_config(config: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(config, str):
        return config, {}
    if not isinstance(config, Mapping):
        raise ValueError("LLM.tokenizer must be a string or mapping")

    cfg_dict = {str(k): v for k, v in config.items() if str(k) not in _LOCAL_KEYS}
    model_id: Any | None = None
    for key in ("model", "path", "model_path", "name", "pretrained_model_name_or_path"):
        model_id = cfg_dict.pop(key, None)
        if model_id is not None:
            break
    if model_id is None:
        raise ValueError("LLM.tokenizer configuration must define a model identifier")
    kwargs = {
        k: str(v) if isinstance(v, Path) else v for k, v in cfg_dict.items()
    }
    kwargs.setdefault("trust_remote_code", True)
    return _normalise_model_identifier(model_id), kwargs


def get_tokenizer() -> PreTrainedTokenizerBase:
    """Load and cache the Hugging Face tokenizer defined in the settings."""

    global _TOKENIZER
    if _TOKENIZER is not None:
        return _TOKENIZER

    with _TOKENIZER_LOCK:
        if _TOKENIZER is not None:
            return _TOKENIZER

        model_name, kwargs = _tokenizer_config(settings.get("LLM.tokenizer"))
        _TOKENIZER = AutoTokenizer.from_pretrained(model_name, **kwargs)
        return _TOKENIZER


def reset_tokenizer() -> None:
    global _TOKENIZER
    with _TOKENIZER_LOCK:
        _TOKENIZER = None


def count_tokens(prompt: str) -> int:
    """Return the number of tokens produced by the configured tokenizer.

    Special-token text in ``prompt`` (``<|im_start|>`` and friends) is
    already part of the rendered string, so no extra special tokens are
    added.
    """

    tokenizer = get_tokenizer()
    encoded = tokenizer.encode(prompt, add_special_tokens=False)
    return len(encoded)
