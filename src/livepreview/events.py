"""Event emitters and disposables.

Every component that subscribes to an event or owns a sub-resource derives
from `Disposable` and registers its children, so disposing a parent tears
down everything it owns exactly once.
"""

import logging
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
D = TypeVar('D', bound='Disposable')


class Disposable:
    """Base class for objects holding resources that must be released."""

    def __init__(self):
        self._disposables: List['Disposable'] = []
        self._is_disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._is_disposed

    def _register(self, child: D) -> D:
        """Take ownership of `child`; it is disposed together with this object."""
        if self._is_disposed:
            child.dispose()
        else:
            self._disposables.append(child)
        return child

    def dispose(self) -> None:
        if self._is_disposed:
            return
        self._is_disposed = True
        # Children go in reverse registration order
        while self._disposables:
            child = self._disposables.pop()
            try:
                child.dispose()
            except Exception:
                logger.exception("Failed to dispose %r", child)

    @staticmethod
    def from_callable(fn: Callable[[], Any]) -> 'Disposable':
        return _CallableDisposable(fn)


class _CallableDisposable(Disposable):

    def __init__(self, fn: Callable[[], Any]):
        super().__init__()
        self._fn: Optional[Callable[[], Any]] = fn

    def dispose(self) -> None:
        if self._is_disposed:
            return
        super().dispose()
        fn, self._fn = self._fn, None
        if fn is not None:
            fn()


class EventEmitter(Disposable, Generic[T]):
    """Single-producer, multi-consumer notification channel.

    `emitter.event(listener)` subscribes and returns a `Disposable` that
    unsubscribes. `fire(payload)` calls listeners synchronously; a failing
    listener is logged and does not stop delivery to the others.
    """

    def __init__(self, name: str = ''):
        super().__init__()
        self.name = name
        self._listeners: List[Callable[[T], Any]] = []

    def event(self, listener: Callable[[T], Any]) -> Disposable:
        if self._is_disposed:
            return Disposable()
        self._listeners.append(listener)

        def _remove():
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Disposable.from_callable(_remove)

    __call__ = event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, payload: T) -> None:
        if self._is_disposed:
            return
        # Copy to avoid mutation during iteration
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for event '%s' failed", self.name or '<unnamed>')

    def dispose(self) -> None:
        self._listeners.clear()
        super().dispose()
