"""Two-state clarification protocol and per-conversation context storage."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import TYPE_CHECKING

from nl2query.models.clarification import ClarificationContext
from nl2query.models.generation import ClarificationAnswer
from nl2query.models.turn import ClarifyResponse, TurnResponse

if TYPE_CHECKING:
    from nl2query.pipeline.turn import QueryPipeline


class PendingClarificationError(RuntimeError):
    """Raised when input during a pending clarification is not one of its options."""

    def __init__(self, context: ClarificationContext, selection: str) -> None:
        self.context = context
        self.selection = selection
        super().__init__(
            f"{selection!r} is not one of the offered options: "
            f"{', '.join(context.options)}."
        )


class ClarificationState(str, Enum):
    IDLE = "idle"
    AWAITING_CLARIFICATION = "awaiting_clarification"


def clarification_state(context: ClarificationContext | None) -> ClarificationState:
    if context is None:
        return ClarificationState.IDLE
    return ClarificationState.AWAITING_CLARIFICATION


def begin_clarification(
    original_message: str,
    question: str,
    options: Sequence[str],
    resolved: Iterable[str] = (),
) -> ClarificationContext:
    """Open a clarification round; a new context replaces any earlier one."""
    return ClarificationContext(
        original_message=original_message,
        question=question,
        options=tuple(dict.fromkeys(options)),
        resolved_relations=tuple(resolved),
    )


def resolve_clarification(
    context: ClarificationContext,
    selection: str,
) -> ClarificationAnswer:
    """Match ``selection`` against the offered options, case-insensitively."""
    wanted = selection.strip().lower()
    for option in context.options:
        if option.lower() == wanted:
            return ClarificationAnswer(
                selected_relation=option,
                earlier_selections=context.resolved_relations,
            )
    raise PendingClarificationError(context, selection)


class ClarificationStore(ABC):
    """Holds at most one pending context per conversation."""

    @abstractmethod
    def get(self, conversation_id: str) -> ClarificationContext | None:
        """Return the pending context, if any."""

    @abstractmethod
    def put(self, conversation_id: str, context: ClarificationContext) -> None:
        """Store ``context``, replacing any pending one."""

    @abstractmethod
    def clear(self, conversation_id: str) -> None:
        """Drop the pending context; a no-op when there is none."""


class InMemoryClarificationStore(ClarificationStore):
    def __init__(self) -> None:
        self._contexts: dict[str, ClarificationContext] = {}
        self._lock = threading.Lock()

    def get(self, conversation_id: str) -> ClarificationContext | None:
        with self._lock:
            return self._contexts.get(conversation_id)

    def put(self, conversation_id: str, context: ClarificationContext) -> None:
        with self._lock:
            self._contexts[conversation_id] = context

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            self._contexts.pop(conversation_id, None)


class ConversationSession:
    """Drive ``QueryPipeline`` turns for one conversation.

    A pending context is consumed before the resolving turn runs, so it is
    cleared even if that turn fails. Input that is not one of the offered
    options raises ``PendingClarificationError`` and leaves the context in
    place.
    """

    def __init__(
        self,
        pipeline: QueryPipeline,
        connection_ref: str,
        *,
        conversation_id: str = "default",
        store: ClarificationStore | None = None,
        actor: str = "api",
        channel: str = "api",
    ) -> None:
        self._pipeline = pipeline
        self._connection_ref = connection_ref
        self._conversation_id = conversation_id
        self._store = store or InMemoryClarificationStore()
        self._actor = actor
        self._channel = channel

    @property
    def pending(self) -> ClarificationContext | None:
        return self._store.get(self._conversation_id)

    @property
    def state(self) -> ClarificationState:
        return clarification_state(self.pending)

    def send(
        self,
        message: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> TurnResponse:
        context = self.pending
        if context is not None:
            resolve_clarification(context, message)
            self._store.clear(self._conversation_id)

        response = self._pipeline.handle_turn(
            message,
            self._connection_ref,
            context,
            actor=self._actor,
            channel=self._channel,
            cancel_event=cancel_event,
        )
        if isinstance(response, ClarifyResponse):
            self._store.put(self._conversation_id, response.context)
        return response

    def restart(self) -> None:
        self._store.clear(self._conversation_id)
