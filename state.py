import threading

from contextlib import contextmanager


class DecisionCounter:
    """Counts the admission requests that have been decided.

    The counter starts at zero and only moves forward. It lives as long as the
    process (or the application that owns it) does; nothing is persisted.

    Callers that need to read the value and advance it as one step must do so
    inside `exclusive()`:

        with counter.exclusive():
            value = counter.peek()
            ...
            counter.advance()
    """

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError("counter must not start below zero")

        self._value = start
        self._lock = threading.RLock()

    @contextmanager
    def exclusive(self):
        with self._lock:
            yield self

    def peek(self) -> int:
        with self._lock:
            return self._value

    def advance(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def __repr__(self):
        return f"<DecisionCounter value={self._value}>"
