"""Dispatcher core: operation registry, background executor and dispatcher.

Usage:
    from calllog.dispatch import CallLogDispatcher

    dispatcher = CallLogDispatcher(store, listener)
    await dispatcher.start()
    dispatcher.fetch_calls(CallType.MISSED)
"""

from calllog.dispatch.dispatcher import CallLogDispatcher, CallLogListener
from calllog.dispatch.executor import BackgroundExecutor, Outcome, run_isolated
from calllog.dispatch.registry import OperationKind, OperationRegistry, Token

__all__ = [
    "CallLogDispatcher",
    "CallLogListener",
    "BackgroundExecutor",
    "Outcome",
    "run_isolated",
    "OperationKind",
    "OperationRegistry",
    "Token",
]
