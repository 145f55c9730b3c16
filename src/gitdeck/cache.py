import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds a single value that expires `ttl` seconds after it was stored.

    This is a value cache, not a keyed one: each instance backs exactly one view
    of one repository (e.g. "the branch list"). It never refreshes itself; a miss
    means the caller recomputes and calls `set` again.

    Attributes:
        ttl (float): Lifetime of a stored value, in seconds.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._value: T | None = None
        self._expires_at: float | None = None

    def set(self, value: T) -> None:
        self._value = value
        self._expires_at = self._clock() + self.ttl

    def get(self) -> T | None:
        """Returns the stored value, or None once it has expired or been invalidated."""
        return self.lookup()[1]

    def lookup(self) -> tuple[bool, T | None]:
        """Returns `(hit, value)`, so a stored None can be told apart from a miss."""
        if self._expires_at is None or self._clock() >= self._expires_at:
            self.invalidate()
            return False, None
        return True, self._value

    def invalidate(self) -> None:
        self._value = None
        self._expires_at = None

    @property
    def is_valid(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at
