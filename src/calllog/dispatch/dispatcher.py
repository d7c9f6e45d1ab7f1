"""Asynchronous call log dispatcher.

CallLogDispatcher is the public face of the package. Each entry point builds
a predicate, registers the operation under its kind (superseding any older
operation in the same slot), queues it on the background worker, and
returns immediately. Results come back on the event loop and are routed to
the registered listener.

Result ownership: a listener that returns True from on_calls_fetched keeps
the result set and must close it. Anything the listener does not keep is
closed by the dispatcher before the completion handler returns.

Usage:
    from calllog.dispatch import CallLogDispatcher

    async with CallLogDispatcher(store, listener) as dispatcher:
        dispatcher.fetch_calls(CallType.MISSED)
        dispatcher.mark_missed_calls_as_read()
        await dispatcher.join()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from calllog.core.logging import get_logger
from calllog.db.store import CallLogStore, ResultSet
from calllog.dispatch.executor import BackgroundExecutor
from calllog.dispatch.registry import OperationKind, OperationRegistry, Token
from calllog.query.criteria import CALL_TYPE_ALL, SLOT_ALL, FetchCriteria, Mutation, Predicate
from calllog.query.filters import ConfigSlotResolver, FilterBuilder, SlotResolver

if TYPE_CHECKING:
    from calllog.config_schema import AppConfig

logger = get_logger(__name__)


class CallLogListener(Protocol):
    """Receives the results of dispatcher fetches."""

    def on_calls_fetched(self, results: ResultSet) -> bool:
        """Called when a call fetch completes.

        Returns:
            True to take ownership of `results` (the listener closes it)
        """
        ...

    def on_voicemail_status_fetched(self, results: ResultSet) -> None:
        """Called when fetch_voicemail_status() completes.

        `results` is closed by the dispatcher as soon as this returns.
        """
        ...


class CallLogDispatcher:
    """Issues call log queries and updates on a background worker.

    Attributes:
        registry: Outstanding-operation bookkeeping
        filters: Predicate builder used by every fetch and update
    """

    def __init__(
        self,
        store: CallLogStore,
        listener: CallLogListener | None = None,
        *,
        slot_resolver: SlotResolver | None = None,
        log_limit: int = -1,
        executor: BackgroundExecutor | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Call history store the worker operates on
            listener: Receives fetch results; may be registered later
            slot_resolver: Resolves slot indexes to account ids
            log_limit: Row cap for fetches; non-positive selects the default (1000)
            executor: Background executor (one is created for `store` if omitted)
        """
        self._store = store
        self._listener = listener
        self._executor = executor or BackgroundExecutor(store)
        self.filters = FilterBuilder(slot_resolver=slot_resolver, log_limit=log_limit)
        self.registry = OperationRegistry(self._executor, deliver=self._route_result)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        listener: CallLogListener | None = None,
    ) -> CallLogDispatcher:
        """Build a dispatcher from application configuration."""
        store = CallLogStore(config.store.db_path, busy_timeout_ms=config.store.busy_timeout_ms)
        return cls(
            store,
            listener,
            slot_resolver=ConfigSlotResolver(config.slots),
            log_limit=config.query.log_limit,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the background worker."""
        await self._executor.start()

    async def join(self) -> None:
        """Wait until every submitted operation has completed and been routed."""
        await self._executor.join()

    async def close(self) -> None:
        """Finish queued work, stop the worker and drop the listener."""
        try:
            await self._executor.stop()
        finally:
            self.deregister_listener()

    async def __aenter__(self) -> CallLogDispatcher:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def register_listener(self, listener: CallLogListener) -> None:
        self._listener = listener

    def deregister_listener(self) -> None:
        """Stop delivering results. Call before tearing the listener down."""
        self._listener = None

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    # =========================================================================
    # Fetches
    # =========================================================================

    def fetch_calls(
        self,
        call_type: int = CALL_TYPE_ALL,
        newer_than: int = 0,
        slot: int = SLOT_ALL,
    ) -> None:
        """Fetch calls of `call_type` newer than `newer_than`, optionally for one slot.

        Supersedes any call fetch still outstanding. New/old state is ignored.
        """
        criteria = FetchCriteria(call_type=call_type, newer_than=newer_than, slot=slot)
        self._fetch(OperationKind.FETCH_LOG, self.filters.build(criteria))

    def fetch_calls_by_text(self, filter_text: str) -> None:
        """Fetch calls whose number or cached name contains `filter_text`."""
        self._fetch(OperationKind.FETCH_BY_FILTER_TEXT, self.filters.build_text(filter_text))

    def fetch_calls_in_date_range(
        self,
        call_type: int,
        from_date: int,
        to_date: int,
        slot: int = SLOT_ALL,
    ) -> None:
        """Fetch calls with from_date < date <= to_date."""
        criteria = FetchCriteria(
            call_type=call_type,
            newer_than=from_date,
            older_than=to_date,
            slot=slot,
        )
        self._fetch(OperationKind.FETCH_BY_DATE_RANGE, self.filters.build(criteria))

    def fetch_voicemail_status(self) -> None:
        """Fetch voicemail source status. Independent of call fetches."""

        async def work(store: CallLogStore) -> ResultSet:
            return await store.query_voicemail_status()

        self.registry.submit(OperationKind.FETCH_VOICEMAIL_STATUS, work)

    def cancel_fetch(self) -> None:
        """Drop the result of any call fetch still outstanding."""
        self.registry.cancel(OperationKind.FETCH_LOG)

    def _fetch(self, kind: OperationKind, predicate: Predicate) -> None:
        async def work(store: CallLogStore) -> ResultSet:
            return await store.query_calls(predicate)

        token = self.registry.submit(kind, work)
        logger.debug(
            "calls_fetch_queued",
            token=str(token),
            where=predicate.where,
            limit=predicate.limit,
            ignored=list(predicate.ignored) or None,
        )

    # =========================================================================
    # Updates
    # =========================================================================

    def mark_new_calls_as_old(self) -> None:
        """Mark every new call as old."""
        self._update(OperationKind.MARK_CALLS_OLD, self.filters.mark_calls_old())

    def mark_new_voicemails_as_old(self) -> None:
        """Mark every new voicemail as old."""
        self._update(OperationKind.MARK_VOICEMAILS_OLD, self.filters.mark_voicemails_old())

    def mark_missed_calls_as_read(self) -> None:
        """Mark every unread missed call as read."""
        self._update(OperationKind.MARK_MISSED_READ, self.filters.mark_missed_read())

    def _update(self, kind: OperationKind, mutation: Mutation) -> None:
        async def work(store: CallLogStore) -> int:
            return await store.update_calls(mutation)

        self.registry.submit(kind, work)

    # =========================================================================
    # Completion routing
    # =========================================================================

    def _route_result(self, token: Token, result: Any) -> None:
        """Hand a completed operation's result to the listener.

        Runs on the event loop. Any result set the listener does not keep is
        closed before returning.
        """
        if result is None:
            return

        try:
            if token.kind.is_call_fetch:
                if self._deliver_calls(result):
                    result = None
            elif token.kind is OperationKind.FETCH_VOICEMAIL_STATUS:
                listener = self._listener
                if listener is not None:
                    listener.on_voicemail_status_fetched(result)
            elif token.kind in (
                OperationKind.MARK_CALLS_OLD,
                OperationKind.MARK_VOICEMAILS_OLD,
                OperationKind.MARK_MISSED_READ,
            ):
                logger.info("calls_updated", token=str(token), rows=result)
            else:
                logger.warning("unknown_query_completed", token=str(token))
        finally:
            if isinstance(result, ResultSet):
                result.close()

    def _deliver_calls(self, results: ResultSet) -> bool:
        """Returns True if the listener took ownership of `results`."""
        listener = self._listener
        if listener is None:
            logger.debug("calls_fetched_without_listener", rows=len(results))
            return False
        return bool(listener.on_calls_fetched(results))
