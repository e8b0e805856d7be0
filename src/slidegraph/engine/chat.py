"""Side conversations about text selected on a slide."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import BaseModel

from slidegraph.engine.provider import ChatProvider
from slidegraph.models import ChatResponseEvent, ConversationMessage, DoneEvent, StatusEvent
from slidegraph.prompts import CHAT_PROMPT_TEMPLATE, CHAT_TO_SLIDE_TEMPLATE
from slidegraph.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)


def default_question(selected_text: str) -> str:
    return f'Explain this: "{selected_text}"'


def answer_chat(
    store: SqliteStore,
    provider: ChatProvider,
    chat_id: str,
    message: str | None,
    emit: Callable[[BaseModel], None],
) -> str:
    """Record the user's message, ask the chat model, record and emit the answer."""
    thread = store.get_chat_thread(chat_id)
    node = store.get_node(thread["slideId"])
    store.append_chat_message(chat_id, "user", message or default_question(thread["selectedText"]))

    emit(StatusEvent(message="Thinking...", step="thinking"))
    messages = [
        ConversationMessage(role=m["role"], content=m["content"])
        for m in store.list_chat_messages(chat_id)
    ]
    system = CHAT_PROMPT_TEMPLATE.format(
        title=node.slide.title or "Untitled",
        selected_text=thread["selectedText"],
    )
    answer = provider.complete(system, messages)
    store.append_chat_message(chat_id, "assistant", answer)
    logger.info("Chat %s answered (%d chars)", chat_id, len(answer))

    emit(ChatResponseEvent(chat_id=chat_id, content=answer))
    emit(DoneEvent(chat_id=chat_id))
    return answer


def chat_to_slide_prompt(store: SqliteStore, chat_id: str) -> str:
    """Prompt that turns a chat thread into a new child slide."""
    thread = store.get_chat_thread(chat_id)
    node = store.get_node(thread["slideId"])
    transcript = "\n".join(f"{m['role']}: {m['content']}" for m in store.list_chat_messages(chat_id))
    return CHAT_TO_SLIDE_TEMPLATE.format(
        title=node.slide.title or "a topic",
        selected_text=thread["selectedText"],
        transcript=transcript,
    )
