"""Chat prompt assembly for the catalogued template grammars."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from jinja2 import Environment, TemplateError

from promptweave.exceptions import TemplateRenderError
from promptweave.settings import settings
from promptweave.util import normalise_text

from .catalog import TemplateId, TemplateSpec, get_template_spec
from .messages import Message, MessageLike, Role, coerce_messages
from .prompt_templates import compile_template_source, get_environment, get_prompt_template
from .reasoning import ReasoningTags


@dataclass(frozen=True, slots=True)
class PromptRenderRequest:
    """Everything a render depends on."""

    template_id: TemplateId | str
    conversation: tuple[Message, ...]
    system_prompt: str = ""
    include_reasoning_tags: bool = True

    @classmethod
    def build(
        cls,
        template_id: TemplateId | str,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None = "",
        include_reasoning_tags: bool = True,
    ) -> "PromptRenderRequest":
        return cls(
            template_id=template_id,
            conversation=coerce_messages(conversation),
            system_prompt=normalise_text(system_prompt),
            include_reasoning_tags=bool(include_reasoning_tags),
        )


@dataclass(frozen=True, slots=True)
class ChatPromptRender:
    """Container for a rendered prompt and its token count."""

    prompt: str
    token_count: int


def _normalise_system_prompt(value: Any) -> str:
    text = normalise_text(value)
    return text if text.strip() else ""


def _template_kind(role: Role) -> str:
    if role is Role.CODE_BLOCK:
        return Role.USER.value
    return role.value


def prepare_messages(
    spec: TemplateSpec,
    conversation: Iterable[Message],
    *,
    include_reasoning_tags: bool,
    tags: ReasoningTags,
) -> list[dict[str, str]]:
    """Return template-ready turns for ``conversation``.

    ``kind`` is the speaker (system, user or assistant) and ``role`` the
    token the grammar writes in its turn marker.
    """

    prepared: list[dict[str, str]] = []
    for message in conversation:
        content = message.content
        if spec.strip_stray_close:
            content = tags.strip_stray_close(content)
        if include_reasoning_tags and message.role is Role.ASSISTANT:
            content = tags.wrap(content)
        prepared.append(
            {
                "kind": _template_kind(message.role),
                "role": spec.role_token(message.role),
                "content": content,
            }
        )
    return prepared


class PromptCompiler:
    """Render conversations into model-specific prompt strings.

    Rendering is a pure function of the template, the conversation, the
    system prompt and the reasoning-tag flag; the compiler only holds
    immutable configuration.
    """

    def __init__(
        self,
        environment: Environment | None = None,
        *,
        bos_token: str | None = None,
        eos_token: str | None = None,
        reasoning_tags: ReasoningTags | None = None,
    ) -> None:
        self._environment = environment
        self.bos_token = (
            bos_token
            if bos_token is not None
            else str(settings.get("PROMPTS.bos_token") or "")
        )
        self.eos_token = (
            eos_token
            if eos_token is not None
            else str(settings.get("PROMPTS.eos_token") or "")
        )
        self.reasoning_tags = reasoning_tags or ReasoningTags.from_settings()

    @property
    def environment(self) -> Environment:
        return self._environment or get_environment()

    def compile(self, request: PromptRenderRequest) -> str:
        return self.render(
            request.template_id,
            request.conversation,
            request.system_prompt,
            request.include_reasoning_tags,
        )

    def render(
        self,
        template_id: TemplateId | str | None,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None = "",
        include_reasoning_tags: bool = True,
    ) -> str:
        """Render ``conversation`` with the grammar named by ``template_id``.

        Unknown identifiers use the default grammar. The result always ends
        with the grammar's generation prefix.
        """

        spec = get_template_spec(template_id)
        messages = prepare_messages(
            spec,
            coerce_messages(conversation),
            include_reasoning_tags=include_reasoning_tags,
            tags=self.reasoning_tags,
        )
        template = get_prompt_template(spec.file, self.environment)
        return template.render(
            messages=messages,
            system_prompt=_normalise_system_prompt(system_prompt),
            system_token=spec.role_token(Role.SYSTEM),
            user_token=spec.role_token(Role.USER),
            generation_prefix=spec.generation_prefix,
            end_of_turn=spec.end_of_turn,
            bos_token=self.bos_token,
        )

    def render_custom(
        self,
        source: str,
        conversation: Iterable[MessageLike] | None,
        system_prompt: str | None = "",
        *,
        add_generation_prompt: bool = True,
        include_reasoning_tags: bool = False,
    ) -> str:
        """Render a caller-supplied Jinja2 chat template.

        The template sees Hugging Face style variables: ``messages`` (with
        the system prompt as a leading ``system`` message), ``bos_token``,
        ``eos_token`` and ``add_generation_prompt``.
        """

        template = compile_template_source(source)
        messages: list[dict[str, str]] = []
        system_text = _normalise_system_prompt(system_prompt)
        if system_text:
            messages.append({"role": Role.SYSTEM.value, "content": system_text})
        for message in coerce_messages(conversation):
            content = message.content
            if include_reasoning_tags and message.role is Role.ASSISTANT:
                content = self.reasoning_tags.wrap(content)
            messages.append({"role": _template_kind(message.role), "content": content})
        try:
            return template.render(
                messages=messages,
                add_generation_prompt=add_generation_prompt,
                bos_token=self.bos_token,
                eos_token=self.eos_token,
            )
        except TemplateError as exc:
            raise TemplateRenderError(f"Chat template failed to render: {exc}") from exc


@lru_cache(maxsize=1)
def get_compiler() -> PromptCompiler:
    """Return the compiler configured from application settings."""

    return PromptCompiler()


def render(
    template_id: TemplateId | str | None,
    conversation: Iterable[MessageLike] | None,
    system_prompt: str | None = "",
    include_reasoning_tags: bool = True,
) -> str:
    """Render ``conversation`` using the default compiler."""

    return get_compiler().render(
        template_id, conversation, system_prompt, include_reasoning_tags
    )


def render_custom(
    source: str,
    conversation: Iterable[MessageLike] | None,
    system_prompt: str | None = "",
    *,
    add_generation_prompt: bool = True,
) -> str:
    return get_compiler().render_custom(
        source,
        conversation,
        system_prompt,
        add_generation_prompt=add_generation_prompt,
    )


__all__ = [
    "ChatPromptRender",
    "PromptCompiler",
    "PromptRenderRequest",
    "get_compiler",
    "prepare_messages",
    "render",
    "render_custom",
]
