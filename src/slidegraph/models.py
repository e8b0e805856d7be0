"""Data model: conversation messages, slides, graph nodes, and stream events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models exchanged with clients: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A model-initiated tool invocation."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    # Opaque provider signature (base64) that must be replayed with the call
    signature: str | None = None


class ToolResultBlock(BaseModel):
    """Output of a tool invocation, referencing the call by id."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    name: str = ""
    content: str


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]

    @property
    def blocks(self) -> list[TextBlock | ToolUseBlock | ToolResultBlock]:
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)]
        return list(self.content)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks if isinstance(b, ToolResultBlock)]

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def is_text_prompt(self) -> bool:
        """True for a user message that starts an exchange (text, no tool results)."""
        if self.role != "user" or self.tool_results:
            return False
        return any(isinstance(b, TextBlock) and b.text.strip() for b in self.blocks)


ConversationHistory = tuple[ConversationMessage, ...]

_history_adapter = TypeAdapter(list[ConversationMessage])


def parse_history(raw: Any) -> list[ConversationMessage]:
    """Validate a JSON-decoded history (list of message dicts)."""
    if not raw:
        return []
    return _history_adapter.validate_python(raw)


def dump_history(history: list[ConversationMessage] | ConversationHistory) -> list[dict]:
    return [m.model_dump(mode="json", exclude_none=True) for m in history]


# ---------------------------------------------------------------------------
# Slides
# ---------------------------------------------------------------------------


class SlideAction(CamelModel):
    label: str
    prompt: str
    variant: Literal["primary", "secondary", "outline"] | None = None


class Block(CamelModel):
    id: str
    type: str
    props: dict[str, Any] = Field(default_factory=dict)
    animation: dict[str, Any] | None = None
    children: list[Block] | None = None


class Slide(CamelModel):
    id: str = ""
    title: str | None = None
    subtitle: str | None = None
    background: str | None = None
    dark: bool | None = None
    blocks: list[Block] = Field(default_factory=list)
    actions: list[SlideAction] = Field(default_factory=list)

    def block_ids(self) -> list[str]:
        return [b.id for b in self.blocks]


@dataclass(frozen=True)
class GenerationResult:
    """A finalized slide plus the conversation that produced it."""

    slide: Slide
    history: ConversationHistory


# ---------------------------------------------------------------------------
# Graph nodes
# ---------------------------------------------------------------------------


class ChildRef(CamelModel):
    id: str
    title: str | None = None
    is_main: bool = False


class LinkRef(CamelModel):
    id: str
    slide_id: str
    title: str | None = None


class ChatRef(CamelModel):
    id: str
    selected_text: str
    block_id: str | None = None
    message_count: int = 0


class SlideNode(CamelModel):
    id: str
    slide: Slide
    parent_id: str | None = None
    main_child_id: str | None = None
    source_prompt: str | None = None
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    children: list[ChildRef] = Field(default_factory=list)
    links: list[LinkRef] = Field(default_factory=list)
    backlinks: list[LinkRef] = Field(default_factory=list)
    chats: list[ChatRef] = Field(default_factory=list)
    created_at: int = 0

    def to_wire(self) -> dict[str, Any]:
        # Keep null parent/main-child pointers visible to clients
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Generation events
# ---------------------------------------------------------------------------


class StatusEvent(CamelModel):
    type: Literal["status"] = "status"
    message: str
    step: str | None = None


class ThinkingEvent(CamelModel):
    type: Literal["thinking"] = "thinking"
    text: str


class SlidePartialEvent(CamelModel):
    type: Literal["slide_partial"] = "slide_partial"
    slide: Slide


class SlideEvent(CamelModel):
    type: Literal["slide"] = "slide"
    slide: Slide


class ChatResponseEvent(CamelModel):
    type: Literal["chat_response"] = "chat_response"
    chat_id: str
    content: str


class DoneEvent(CamelModel):
    type: Literal["done"] = "done"
    slide_id: str | None = None
    chat_id: str | None = None
    slide: Slide | None = None
    conversation_history: list[ConversationMessage] | None = None


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    message: str


GenerationEvent = Annotated[
    Union[
        StatusEvent,
        ThinkingEvent,
        SlidePartialEvent,
        SlideEvent,
        ChatResponseEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})

event_adapter: TypeAdapter = TypeAdapter(GenerationEvent)


def is_terminal(event: BaseModel) -> bool:
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES
