"""Catalog of supported chat-prompt grammars.

Every grammar is a member of :class:`TemplateId` and owns a
:class:`TemplateSpec` describing its role tokens, generation prefix and the
Jinja2 file that lays out the turns. Free-form identifiers coming from
settings storage are mapped onto the enum by :func:`resolve_template_id`,
which is the only place an unknown identifier is tolerated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping

from promptweave.settings import settings
from promptweave.util import normalise_identifier

from .messages import Role

logger = logging.getLogger(__name__)

FALLBACK_TEMPLATE = "CHATML"

SystemPlacement = Literal["block", "merge"]


class TemplateId(str, Enum):
    CHATML = "CHATML"
    QWEN3 = "QWEN3"
    ALPACA = "ALPACA"
    VICUNA = "VICUNA"
    LLAMA2 = "LLAMA2"
    ZEPHYR = "ZEPHYR"
    LLAMA3 = "LLAMA3"
    LLAMA3_TEXT = "LLAMA3_TEXT"
    GEMMA = "GEMMA"
    RAW = "RAW"


def _roles(system: str, user: str, assistant: str) -> Mapping[Role, str]:
    return MappingProxyType(
        {
            Role.SYSTEM: system,
            Role.USER: user,
            Role.ASSISTANT: assistant,
            Role.CODE_BLOCK: user,
        }
    )


@dataclass(frozen=True, slots=True)
class TemplateSpec:
    """Static description of one prompt grammar."""

    id: TemplateId
    file: str
    generation_prefix: str
    end_of_turn: str
    roles: Mapping[Role, str] = field(
        default_factory=lambda: _roles("system", "user", "assistant"),
        hash=False,
    )
    system_placement: SystemPlacement = "block"
    strip_stray_close: bool = False
    stop: tuple[str, ...] = ()
    description: str = ""

    def role_token(self, role: Role) -> str:
        return self.roles.get(role, self.roles[Role.USER])


_CHATML_STOP = ("<|im_start|>", "<|im_end|>", "<|endoftext|>")
_LLAMA3_STOP = ("<|start_header_id|>", "<|eot_id|>", "<|end_of_text|>")

_CATALOG: Mapping[TemplateId, TemplateSpec] = MappingProxyType(
    {
        TemplateId.CHATML: TemplateSpec(
            id=TemplateId.CHATML,
            file="chatml.j2",
            generation_prefix="<|im_start|>assistant\n",
            end_of_turn="<|im_end|>",
            stop=_CHATML_STOP,
            description="ChatML role-tagged turns",
        ),
        TemplateId.QWEN3: TemplateSpec(
            id=TemplateId.QWEN3,
            file="chatml.j2",
            generation_prefix="<|im_start|>assistant\n",
            end_of_turn="<|im_end|>",
            strip_stray_close=True,
            stop=_CHATML_STOP,
            description="ChatML with leaked reasoning removed from history",
        ),
        TemplateId.ALPACA: TemplateSpec(
            id=TemplateId.ALPACA,
            file="alpaca.j2",
            generation_prefix="### Response:\n",
            end_of_turn="\n\n",
            roles=_roles("system", "### Instruction:", "### Response:"),
            stop=("### Instruction:",),
            description="Alpaca instruction / response blocks",
        ),
        TemplateId.VICUNA: TemplateSpec(
            id=TemplateId.VICUNA,
            file="vicuna.j2",
            generation_prefix="ASSISTANT:",
            end_of_turn="</s>",
            roles=_roles("SYSTEM", "USER", "ASSISTANT"),
            stop=("</s>", "USER:"),
            description="Vicuna role-prefixed lines",
        ),
        TemplateId.LLAMA2: TemplateSpec(
            id=TemplateId.LLAMA2,
            file="llama2.j2",
            generation_prefix="[/INST]",
            end_of_turn="</s>",
            system_placement="merge",
            stop=("</s>", "[INST]"),
            description="Llama 2 [INST] brackets, system prompt inside the first",
        ),
        TemplateId.ZEPHYR: TemplateSpec(
            id=TemplateId.ZEPHYR,
            file="zephyr.j2",
            generation_prefix="<|assistant|>\n",
            end_of_turn="</s>",
            stop=("</s>", "<|user|>"),
            description="Zephyr pipe-tagged turns",
        ),
        TemplateId.LLAMA3: TemplateSpec(
            id=TemplateId.LLAMA3,
            file="llama3.j2",
            generation_prefix="<|start_header_id|>assistant<|end_header_id|>\n\n",
            end_of_turn="<|eot_id|>",
            stop=_LLAMA3_STOP,
            description="Llama 3 header blocks ending in <|eot_id|>",
        ),
        TemplateId.LLAMA3_TEXT: TemplateSpec(
            id=TemplateId.LLAMA3_TEXT,
            file="llama3.j2",
            generation_prefix="<|start_header_id|>assistant<|end_header_id|>\n\n",
            end_of_turn="<|end_of_text|>",
            stop=_LLAMA3_STOP,
            description="Llama 3 header blocks ending in <|end_of_text|>",
        ),
        TemplateId.GEMMA: TemplateSpec(
            id=TemplateId.GEMMA,
            file="gemma.j2",
            generation_prefix="<start_of_turn>model\n",
            end_of_turn="<end_of_turn>",
            roles=_roles("user", "user", "model"),
            system_placement="merge",
            stop=("<end_of_turn>", "<start_of_turn>"),
            description="Gemma turns, assistant speaks as 'model'",
        ),
        TemplateId.RAW: TemplateSpec(
            id=TemplateId.RAW,
            file="raw.j2",
            generation_prefix="Response:",
            end_of_turn="\n",
            roles=_roles("system", "Instruction:", "Response:"),
            stop=("Instruction:",),
            description="Plain instruction text behind a BOS placeholder",
        ),
    }
)

_ALIASES: Mapping[str, TemplateId] = MappingProxyType(
    {
        "CHAT_ML": TemplateId.CHATML,
        "QWEN": TemplateId.CHATML,
        "QWEN2": TemplateId.CHATML,
        "QWEN_3": TemplateId.QWEN3,
        "DEEPSEEK_R1": TemplateId.QWEN3,
        "LLAMA_2": TemplateId.LLAMA2,
        "MISTRAL": TemplateId.LLAMA2,
        "LLAMA_3": TemplateId.LLAMA3,
        "LLAMA31": TemplateId.LLAMA3,
        "LLAMA3_1": TemplateId.LLAMA3,
        "LLAMA_3_1": TemplateId.LLAMA3,
        "LLAMA32": TemplateId.LLAMA3,
        "LLAMA3_2": TemplateId.LLAMA3,
        "LLAMA_3_2": TemplateId.LLAMA3,
        "GEMMA2": TemplateId.GEMMA,
        "GEMMA3": TemplateId.GEMMA,
        "GEMMA_2": TemplateId.GEMMA,
        "GEMMA_3": TemplateId.GEMMA,
    }
)


def _lookup(value: Any) -> TemplateId | None:
    if isinstance(value, TemplateId):
        return value
    key = normalise_identifier(value)
    if not key:
        return None
    try:
        return TemplateId(key)
    except ValueError:
        return _ALIASES.get(key)


def default_template_id() -> TemplateId:
    """Return the configured default template, or ChatML if that is unusable."""

    configured = settings.get("PROMPTS.default_template", FALLBACK_TEMPLATE)
    resolved = _lookup(configured)
    if resolved is None:
        logger.warning(
            "Configured default template %r is unknown; using %s",
            configured,
            FALLBACK_TEMPLATE,
        )
        return TemplateId(FALLBACK_TEMPLATE)
    return resolved


def resolve_template_id(value: Any) -> TemplateId:
    """Map a template selector onto :class:`TemplateId`.

    Unknown or empty selectors resolve to the default template instead of
    failing.
    """

    resolved = _lookup(value)
    if resolved is not None:
        return resolved
    fallback = default_template_id()
    logger.debug("Unknown template id %r; falling back to %s", value, fallback.value)
    return fallback


def get_template_spec(template_id: Any) -> TemplateSpec:
    return _CATALOG[resolve_template_id(template_id)]


def available_templates() -> list[TemplateId]:
    return list(TemplateId)


__all__ = [
    "FALLBACK_TEMPLATE",
    "TemplateId",
    "TemplateSpec",
    "available_templates",
    "default_template_id",
    "get_template_spec",
    "resolve_template_id",
]
