"""API router: generation, slide graph, links, side chats, images (SSE where streaming)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from slidegraph import config
from slidegraph.engine.cancel import CancelToken
from slidegraph.engine.chat import answer_chat, chat_to_slide_prompt
from slidegraph.engine.loop import run_generation
from slidegraph.engine.pregen import CONTINUE_PROMPT
from slidegraph.engine.stream import EventStream, sse_frames
from slidegraph.models import CamelModel, ConversationMessage, GenerationResult
from slidegraph.storage.sqlite_store import Conflict, InvalidArgument, NotFound, SqliteStore
from slidegraph.tools.image import placeholder_svg

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

Emit = Callable[[BaseModel], None]


# ── Lazy-initialized collaborators ──

_engine = None
_chat_provider = None


def _get_engine():
    global _engine
    if _engine is None:
        from slidegraph.engine.loop import SlideEngine
        from slidegraph.engine.provider import GeminiModelClient
        from slidegraph.tools.web_search import WebSearcher

        logger.info("Initializing slide engine...")
        t0 = time.perf_counter()
        _engine = SlideEngine(GeminiModelClient(), WebSearcher())
        logger.info("Slide engine ready (%.2fs)", time.perf_counter() - t0)
    return _engine


def _get_chat_provider():
    global _chat_provider
    if _chat_provider is None:
        from slidegraph.engine.provider import GeminiModelClient

        _chat_provider = GeminiModelClient()
    return _chat_provider


def _get_store() -> SqliteStore:
    # sqlite3 connections are bound to their thread: open one per use
    store = SqliteStore(config.SQLITE_PATH)
    store.init_db()
    return store


@contextmanager
def _open_store() -> Iterator[SqliteStore]:
    store = _get_store()
    try:
        yield store
    finally:
        store.close()


# ── Request models ──


class GenerateRequest(CamelModel):
    prompt: str | None = None
    conversation_history: list[ConversationMessage] = Field(default_factory=list)


class PromptRequest(CamelModel):
    prompt: str | None = None


class UpdateSlideRequest(CamelModel):
    title: str | None = None
    main_child_id: str | None = None


class LinkRequest(CamelModel):
    to_slide_id: str | None = None


class ChatRequest(CamelModel):
    chat_id: str | None = None
    selected_text: str | None = None
    block_id: str | None = None
    message: str | None = None


# ── Helpers ──


def _sse(routine: Callable[[Emit, CancelToken], Any]) -> StreamingResponse:
    cancel = CancelToken()
    stream = EventStream(lambda emit: routine(emit, cancel), cancel)
    return StreamingResponse(
        sse_frames(stream),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _require_prompt(prompt: str | None) -> str:
    if not prompt or not prompt.strip():
        raise HTTPException(status_code=400, detail="Missing prompt")
    return prompt


def _load_node(store: SqliteStore, slide_id: str):
    try:
        return store.get_node(slide_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Slide not found")


def _persist_as(parent_id: str | None, is_main_child: bool, prompt: str):
    """``on_result`` callback that stores a finished generation as a node."""

    def on_result(result: GenerationResult) -> str:
        with _open_store() as store:
            slide_id = store.create_node(
                result.slide,
                parent_id=parent_id,
                history=result.history,
                is_main_child=is_main_child,
                source_prompt=prompt,
            )
        logger.info("Saved slide %s (parent=%s, main=%s)", slide_id, parent_id, is_main_child)
        return slide_id

    return on_result


def _generate_child(
    parent_id: str | None,
    prompt: str,
    history: list[ConversationMessage],
    is_main_child: bool,
) -> StreamingResponse:
    engine = _get_engine()

    def routine(emit: Emit, cancel: CancelToken) -> None:
        run_generation(
            engine, prompt, history, emit, cancel,
            on_result=_persist_as(parent_id, is_main_child, prompt),
        )

    return _sse(routine)


# ── Routes ──


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/generate")
def generate(req: GenerateRequest):
    """Stream a generation without persisting it."""
    prompt = _require_prompt(req.prompt)
    logger.info("POST /generate prompt=%r history=%d", prompt[:120], len(req.conversation_history))
    engine = _get_engine()
    history = list(req.conversation_history)
    return _sse(lambda emit, cancel: run_generation(engine, prompt, history, emit, cancel))


@router.get("/slides")
def list_slides():
    with _open_store() as store:
        return store.list_nodes()


@router.post("/slides")
def create_root_slide(req: PromptRequest):
    prompt = _require_prompt(req.prompt)
    logger.info("POST /slides prompt=%r", prompt[:120])
    return _generate_child(None, prompt, [], is_main_child=False)


@router.get("/slides/graph")
def get_graph():
    with _open_store() as store:
        return store.get_graph()


@router.get("/slides/search")
def search_slides(q: str = ""):
    if not q.strip():
        return []
    with _open_store() as store:
        return store.search_nodes(q)


@router.get("/slides/{slide_id}")
def get_slide(slide_id: str):
    with _open_store() as store:
        return _load_node(store, slide_id).to_wire()


@router.patch("/slides/{slide_id}")
def update_slide(slide_id: str, req: UpdateSlideRequest):
    fields = {
        name: getattr(req, name)
        for name in ("title", "main_child_id")
        if name in req.model_fields_set
    }
    with _open_store() as store:
        try:
            store.update_node(slide_id, **fields)
        except NotFound:
            raise HTTPException(status_code=404, detail="Slide not found")
    return {"ok": True}


@router.post("/slides/{slide_id}/branch")
def branch_slide(slide_id: str, req: PromptRequest):
    prompt = _require_prompt(req.prompt)
    with _open_store() as store:
        node = _load_node(store, slide_id)
    logger.info("POST /slides/%s/branch prompt=%r", slide_id, prompt[:120])
    return _generate_child(node.id, prompt, node.conversation_history, is_main_child=False)


@router.post("/slides/{slide_id}/continue")
def continue_slide(slide_id: str):
    with _open_store() as store:
        node = _load_node(store, slide_id)
    if node.main_child_id:
        return {"slideId": node.main_child_id, "exists": True}
    logger.info("POST /slides/%s/continue", slide_id)
    return _generate_child(node.id, CONTINUE_PROMPT, node.conversation_history, is_main_child=True)


@router.post("/slides/{slide_id}/links")
def add_link(slide_id: str, req: LinkRequest):
    if not req.to_slide_id:
        raise HTTPException(status_code=400, detail="Missing toSlideId")
    with _open_store() as store:
        try:
            link_id = store.add_link(slide_id, req.to_slide_id)
        except InvalidArgument as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except Conflict:
            raise HTTPException(status_code=409, detail="Link already exists")
    return {"id": link_id}


@router.delete("/slides/{slide_id}/links/{link_id}")
def remove_link(slide_id: str, link_id: str):
    with _open_store() as store:
        return {"ok": store.remove_link(link_id)}


def _load_thread(store: SqliteStore, slide_id: str, chat_id: str) -> dict:
    try:
        thread = store.get_chat_thread(chat_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Chat not found")
    if thread["slideId"] != slide_id:
        raise HTTPException(status_code=404, detail="Chat not found")
    return thread


@router.post("/slides/{slide_id}/chat")
def chat(slide_id: str, req: ChatRequest):
    """Start or continue a side chat about selected text; streams the answer."""
    with _open_store() as store:
        _load_node(store, slide_id)
        if req.chat_id:
            chat_id = _load_thread(store, slide_id, req.chat_id)["id"]
        else:
            if not req.selected_text:
                raise HTTPException(status_code=400, detail="Missing selectedText for new chat")
            chat_id = store.create_chat_thread(slide_id, req.selected_text, req.block_id)
    provider = _get_chat_provider()
    message = req.message

    def routine(emit: Emit, cancel: CancelToken) -> None:
        with _open_store() as worker_store:
            answer_chat(worker_store, provider, chat_id, message, emit)

    return _sse(routine)


@router.get("/slides/{slide_id}/chat/{chat_id}")
def get_chat(slide_id: str, chat_id: str):
    with _open_store() as store:
        _load_thread(store, slide_id, chat_id)
        return store.list_chat_messages(chat_id)


@router.post("/slides/{slide_id}/chat/{chat_id}/to-slide")
def chat_to_slide(slide_id: str, chat_id: str):
    """Generate a child slide explaining what the chat discussed."""
    with _open_store() as store:
        node = _load_node(store, slide_id)
        _load_thread(store, slide_id, chat_id)
        prompt = chat_to_slide_prompt(store, chat_id)
    logger.info("POST /slides/%s/chat/%s/to-slide", slide_id, chat_id)
    return _generate_child(node.id, prompt, node.conversation_history, is_main_child=False)


@router.get("/image")
def image(
    query: str | None = Query(None),
    prompt: str | None = Query(None),
    aspect: str = Query("1:1"),
):
    label = query or prompt
    if not label:
        raise HTTPException(status_code=400, detail="Missing query or prompt parameter")
    return Response(
        content=placeholder_svg(label, aspect),
        media_type="image/svg+xml",
        headers={"Cache-Control": "public, max-age=3600"},
    )
