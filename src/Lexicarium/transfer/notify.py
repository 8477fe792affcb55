"""Data-changed notification after a successful import."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from Lexicarium.metrics import inc_counter
from Lexicarium.transfer.scopes import Scope

log = structlog.get_logger()

Listener = Callable[[Scope], Awaitable[None] | None]


class ChangeNotifier(Protocol):
    async def data_changed(self, scope: Scope) -> None: ...


class CallbackNotifier:
    """In-process notifier fanning a change out to subscribed callables.

    Listeners may be plain or async callables. A failing listener is logged
    and does not affect the others or the import that triggered it.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def data_changed(self, scope: Scope) -> None:
        inc_counter("transfer.notify.sent")
        for listener in list(self._listeners):
            try:
                outcome = listener(scope)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                inc_counter("transfer.notify.listener_error")
                log.warning("transfer.notify.listener_error", scope=scope.value, exc_info=True)

    def __len__(self) -> int:
        return len(self._listeners)
