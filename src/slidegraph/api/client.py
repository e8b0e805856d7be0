"""HTTP client for a remote slide server, consuming its SSE generation stream."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import httpx
from pydantic import BaseModel

from slidegraph import config
from slidegraph.engine.cancel import CancelToken, GenerationCancelled
from slidegraph.engine.stream import iter_sse_events
from slidegraph.models import (
    ConversationMessage,
    DoneEvent,
    ErrorEvent,
    GenerationResult,
    dump_history,
)

logger = logging.getLogger(__name__)

NO_SLIDE = "No slide generated"


class RemoteGenerationError(Exception):
    """The server reported a failed generation."""


class SlidesClient:
    """Runs generations on a remote server.

    ``generate`` has the same signature as ``SlideEngine.generate``, so a
    client can stand in for the local engine (e.g. as the pre-generation
    launcher).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url or config.API_BASE_URL,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SlidesClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def generate(
        self,
        prompt: str,
        history: Sequence[ConversationMessage],
        emit: Callable[[BaseModel], None],
        cancel: CancelToken | None = None,
    ) -> GenerationResult | None:
        """Stream ``/api/generate``, forwarding progress events to ``emit``."""
        cancel = cancel or CancelToken()
        cancel.raise_if_cancelled()
        body = {"prompt": prompt, "conversationHistory": dump_history(list(history))}
        try:
            with self._client.stream("POST", "/api/generate", json=body) as response:
                response.raise_for_status()
                cancel.on_cancel(response.close)
                for event in iter_sse_events(response.iter_bytes()):
                    cancel.raise_if_cancelled()
                    if isinstance(event, DoneEvent):
                        if event.slide is None:
                            return None
                        return GenerationResult(
                            slide=event.slide,
                            history=tuple(event.conversation_history or ()),
                        )
                    if isinstance(event, ErrorEvent):
                        if event.message == NO_SLIDE:
                            return None
                        raise RemoteGenerationError(event.message)
                    emit(event)
        except (httpx.HTTPError, httpx.StreamError):
            if cancel.cancelled:
                raise GenerationCancelled()
            raise
        cancel.raise_if_cancelled()
        logger.warning("Generation stream for %r ended without a terminal event", prompt[:80])
        raise RemoteGenerationError("stream ended without a terminal event")
