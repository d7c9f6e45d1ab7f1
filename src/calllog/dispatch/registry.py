"""Token bookkeeping for outstanding dispatcher operations.

Every operation kind maps to a slot, and each slot holds at most one live
token. Submitting a new operation supersedes whatever the slot held, so a
late result from the older submission is recognised as stale and dropped.
The three call-log fetches share one slot ("last request wins" across all
of them); every other kind has a slot of its own.

Tokens carry a generation drawn from one counter per registry, so a token
is never reused and can always be told apart from one that was never
issued.

Usage:
    registry = OperationRegistry(executor, deliver=on_result)
    token = registry.submit(OperationKind.FETCH_LOG, work)
    registry.cancel(OperationKind.FETCH_LOG)
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from calllog.core.logging import get_logger

if TYPE_CHECKING:
    from calllog.db.store import CallLogStore
    from calllog.dispatch.executor import BackgroundExecutor, Outcome

logger = get_logger(__name__)

Work = Callable[["CallLogStore"], Awaitable[Any]]
Deliver = Callable[["Token", Any], None]


class OperationKind(Enum):
    """Logical category of a dispatcher operation."""

    FETCH_LOG = "fetch_log"
    FETCH_BY_FILTER_TEXT = "fetch_by_filter_text"
    FETCH_BY_DATE_RANGE = "fetch_by_date_range"
    FETCH_VOICEMAIL_STATUS = "fetch_voicemail_status"
    MARK_CALLS_OLD = "mark_calls_old"
    MARK_VOICEMAILS_OLD = "mark_voicemails_old"
    MARK_MISSED_READ = "mark_missed_read"

    @property
    def slot(self) -> str:
        """Outstanding-operation slot this kind occupies."""
        if self in _CALL_FETCHES:
            return "calls"
        return self.value

    @property
    def is_call_fetch(self) -> bool:
        return self in _CALL_FETCHES


_CALL_FETCHES = frozenset(
    {
        OperationKind.FETCH_LOG,
        OperationKind.FETCH_BY_FILTER_TEXT,
        OperationKind.FETCH_BY_DATE_RANGE,
    }
)


@dataclass(frozen=True)
class Token:
    """Handle correlating a submitted operation with its completion."""

    kind: OperationKind
    generation: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.generation}"


class OperationRegistry:
    """Tracks at most one outstanding token per slot.

    submit/cancel run on the caller's context and on_completion runs on the
    completion-delivery context, so every access to the slot map goes
    through one lock.
    """

    def __init__(self, executor: BackgroundExecutor, deliver: Deliver) -> None:
        """Initialize the registry.

        Args:
            executor: Runs submitted work on the background worker
            deliver: Called with (token, result) for current, successful completions
        """
        self._executor = executor
        self._deliver = deliver
        self._lock = threading.Lock()
        self._current: dict[str, Token] = {}
        self._generations = itertools.count(1)
        self._issued = 0

    def submit(self, kind: OperationKind, work: Work) -> Token:
        """Supersede the slot's current operation and queue `work`.

        Returns immediately; the result arrives later through `deliver`.

        Args:
            kind: Operation kind being submitted
            work: Coroutine function run against the store on the worker

        Returns:
            The token now current for the kind's slot
        """
        with self._lock:
            previous = self._current.get(kind.slot)
            token = Token(kind, next(self._generations))
            self._issued = token.generation
            self._current[kind.slot] = token

        if previous is not None:
            logger.debug("operation_superseded", token=str(previous), by=str(token))

        self._executor.submit(
            token,
            work,
            on_complete=self.on_completion,
            is_cancelled=lambda: not self.is_current(token),
        )
        logger.debug("operation_submitted", token=str(token))
        return token

    def cancel(self, kind: OperationKind) -> bool:
        """Invalidate the current token of `kind`'s slot.

        Cancellation is logical: work already running still finishes, but its
        result is dropped.

        Returns:
            True if a token was outstanding, False if there was nothing to cancel
        """
        with self._lock:
            token = self._current.pop(kind.slot, None)
        if token is None:
            return False
        logger.debug("operation_cancelled", token=str(token))
        return True

    def is_current(self, token: Token) -> bool:
        """Whether `token` is still the live token for its slot."""
        with self._lock:
            return self._current.get(token.kind.slot) == token

    def outstanding(self, kind: OperationKind) -> Token | None:
        """The live token for `kind`'s slot, if any."""
        with self._lock:
            return self._current.get(kind.slot)

    def on_completion(self, token: Token, outcome: Outcome) -> None:
        """Route a finished operation's outcome.

        Current tokens are retired and, when the outcome carries a result,
        delivered. Superseded or cancelled tokens are dropped quietly. Tokens
        this registry never issued are logged and dropped.
        """
        with self._lock:
            current = self._current.get(token.kind.slot) == token
            if current:
                del self._current[token.kind.slot]
            issued = 0 < token.generation <= self._issued

        if not current:
            if issued:
                logger.debug("stale_result_discarded", token=str(token))
            else:
                logger.warning("unknown_operation_completed", token=str(token))
            outcome.dispose()
            return

        if not outcome.ok or outcome.result is None:
            logger.debug("operation_completed_without_result", token=str(token))
            return

        self._deliver(token, outcome.result)
