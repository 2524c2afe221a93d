"""Reactive state container with Qt signal integration.

Observable holds one piece of feed state and notifies listeners through a Qt
signal whenever it changes.
"""

from typing import Callable, Generic, Optional, TypeVar

from PySide6.QtCore import QObject, Signal

T = TypeVar("T")


class Observable(QObject, Generic[T]):
    """Reactive value backed by a Qt signal.

    Example:
        >>> listening = Observable(False)
        >>> listening.changed.connect(lambda val: print(f"Listening: {val}"))
        >>> listening.set(True)  # Prints: "Listening: True"
    """

    changed = Signal(object)  # Emitted with the new value

    def __init__(self, initial: T, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._initial = initial
        self._value = initial

    @property
    def value(self) -> T:
        return self._value

    def set(self, new_value: T) -> None:
        """Set a new value; the signal fires only if it differs from the current one."""
        if new_value != self._value:
            self._value = new_value
            self.changed.emit(new_value)

    def update(self, fn: Callable[[T], T]) -> None:
        """Replace the value with ``fn(current)``."""
        self.set(fn(self._value))

    def reset(self) -> None:
        """Restore the value the observable was created with."""
        self.set(self._initial)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Connect a callback to value changes.

        Returns:
            Function that disconnects the callback again
        """
        self.changed.connect(callback)

        def unsubscribe() -> None:
            self.changed.disconnect(callback)

        return unsubscribe
