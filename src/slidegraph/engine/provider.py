"""Model client interface and Gemini implementation.

The engine consumes a normalized stream of deltas so it never depends on a
provider's wire format. Gemini delivers function calls whole, so the adapter
reports each call as a start followed directly by its end (no argument
fragments, hence no partial slides).
"""

from __future__ import annotations

import base64
import logging
import time
import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from google import genai
from google.genai import types

from slidegraph import config
from slidegraph.models import ConversationMessage, TextBlock, ToolResultBlock, ToolUseBlock
from slidegraph.tools.executor import ToolSpec

logger = logging.getLogger(__name__)

StopReason = Literal["end_turn", "tool_use", "max_tokens", "other"]


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    call_id: str
    name: str


@dataclass(frozen=True)
class ToolCallDelta:
    call_id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallEnd:
    call_id: str
    name: str
    arguments: dict[str, Any]
    signature: str | None = None


@dataclass(frozen=True)
class TurnEnd:
    stop_reason: StopReason


StreamDelta = TextDelta | ToolCallStart | ToolCallDelta | ToolCallEnd | TurnEnd


class ModelClient(Protocol):
    """Protocol for streaming, tool-calling model turns."""

    def stream_turn(
        self,
        system: str,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolSpec],
    ) -> Iterator[StreamDelta]:
        """Stream one model turn. Ends with exactly one ``TurnEnd``."""
        ...


class ChatProvider(Protocol):
    """Protocol for plain (tool-less) text completion."""

    def complete(self, system: str, messages: Sequence[ConversationMessage]) -> str:
        ...


def _to_part(block: TextBlock | ToolUseBlock | ToolResultBlock) -> types.Part:
    if isinstance(block, TextBlock):
        return types.Part.from_text(text=block.text)
    if isinstance(block, ToolUseBlock):
        part = types.Part(
            function_call=types.FunctionCall(id=block.id, name=block.name, args=dict(block.input)),
        )
        if block.signature:
            part.thought_signature = base64.b64decode(block.signature)
        return part
    return types.Part(
        function_response=types.FunctionResponse(
            id=block.tool_use_id,
            name=block.name,
            response={"result": block.content},
        ),
    )


def to_contents(messages: Sequence[ConversationMessage]) -> list[types.Content]:
    """Convert conversation messages to Gemini contents."""
    contents: list[types.Content] = []
    for msg in messages:
        role = "model" if msg.role == "assistant" else "user"
        parts = [_to_part(b) for b in msg.blocks if not (isinstance(b, TextBlock) and not b.text)]
        if parts:
            contents.append(types.Content(role=role, parts=parts))
    return contents


def to_function_declarations(tools: Sequence[ToolSpec]) -> list[types.FunctionDeclaration]:
    return [
        types.FunctionDeclaration(
            name=t.name,
            description=t.description,
            parameters_json_schema=t.parameters,
        )
        for t in tools
    ]


def _map_finish_reason(reason: Any) -> StopReason:
    name = getattr(reason, "name", None) or (str(reason) if reason is not None else "")
    if name == "STOP":
        return "end_turn"
    if name == "MAX_TOKENS":
        return "max_tokens"
    return "other"


class GeminiModelClient:
    """Gemini implementation of ``ModelClient`` and ``ChatProvider``."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        chat_model: str | None = None,
        max_output_tokens: int | None = None,
        client: genai.Client | None = None,
    ) -> None:
        self._client = client or genai.Client(
            api_key=api_key or config.GEMINI_API_KEY,
            http_options=types.HttpOptions(timeout=config.MODEL_TIMEOUT_MS),
        )
        self._model = model or config.GEMINI_MODEL
        self._chat_model = chat_model or config.CHAT_MODEL
        self._max_output_tokens = max_output_tokens or config.MAX_OUTPUT_TOKENS

    def stream_turn(
        self,
        system: str,
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolSpec],
    ) -> Iterator[StreamDelta]:
        gen_config = types.GenerateContentConfig(
            system_instruction=system,
            max_output_tokens=self._max_output_tokens,
            tools=[types.Tool(function_declarations=to_function_declarations(tools))],
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            tool_config=types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode="AUTO")
            ),
        )
        contents = to_contents(messages)
        logger.debug("Stream turn via %s (%d content(s))", self._model, len(contents))
        t0 = time.perf_counter()
        stream = self._client.models.generate_content_stream(
            model=self._model, contents=contents, config=gen_config,
        )
        saw_call = False
        finish_reason = None
        try:
            for chunk in stream:
                for candidate in chunk.candidates or []:
                    if candidate.finish_reason is not None:
                        finish_reason = candidate.finish_reason
                    parts = candidate.content.parts if candidate.content else None
                    for part in parts or []:
                        if part.function_call is not None:
                            saw_call = True
                            yield from self._call_deltas(part)
                        elif part.text and not part.thought:
                            yield TextDelta(part.text)
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
        stop: StopReason = "tool_use" if saw_call else _map_finish_reason(finish_reason)
        logger.debug("Turn complete: stop=%s (%.0fms)", stop, (time.perf_counter() - t0) * 1000)
        yield TurnEnd(stop)

    @staticmethod
    def _call_deltas(part: types.Part) -> Iterator[StreamDelta]:
        call = part.function_call
        call_id = call.id or f"call_{uuid.uuid4().hex[:12]}"
        args = dict(call.args) if call.args else {}
        signature = None
        if part.thought_signature:
            signature = base64.b64encode(part.thought_signature).decode("ascii")
        # Gemini streams calls whole: no ToolCallDelta, so no "building" status or partial slides
        yield ToolCallStart(call_id, call.name)
        yield ToolCallEnd(call_id, call.name, args, signature)

    def complete(self, system: str, messages: Sequence[ConversationMessage]) -> str:
        logger.debug("Chat completion via %s (%d message(s))", self._chat_model, len(messages))
        t0 = time.perf_counter()
        response = self._client.models.generate_content(
            model=self._chat_model,
            contents=to_contents(messages),
            config=types.GenerateContentConfig(system_instruction=system, max_output_tokens=1024),
        )
        text = response.text or ""
        logger.debug("Chat complete: %d chars, %.0fms", len(text), (time.perf_counter() - t0) * 1000)
        return text
