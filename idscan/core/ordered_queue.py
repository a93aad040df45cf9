from typing import Any, Generic, Iterable, TypeVar

T = TypeVar("T")


class _Empty:
    __slots__ = ()

    def __repr__(self) -> str:
        return "EMPTY"

    def __bool__(self) -> bool:
        return False


EMPTY: Any = _Empty()


class OrderedQueue(Generic[T]):
    """
    FIFO queue over a growable list with independent front/rear cursors.

    enqueue/dequeue are O(1) amortized; the backing list doubles when the
    rear cursor reaches the end and both cursors reset once drained.
    dequeue()/peek() return EMPTY instead of raising on an empty queue.
    """

    def __init__(self, initial_capacity: int = 100):
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be at least 1.")
        self._capacity = initial_capacity
        self._items: list[Any] = [None] * self._capacity
        self._front = 0
        self._rear = -1

    @classmethod
    def from_iterable(cls, items: Iterable[T]) -> "OrderedQueue[T]":
        queue: OrderedQueue[T] = cls()
        for item in items:
            queue.enqueue(item)
        return queue

    def enqueue(self, item: T) -> None:
        if self._rear >= self._capacity - 1:
            self._grow()
        self._rear += 1
        self._items[self._rear] = item

    def dequeue(self) -> T:
        if self.is_empty():
            return EMPTY
        item = self._items[self._front]
        self._items[self._front] = None
        self._front += 1
        if self._front > self._rear:
            self._front = 0
            self._rear = -1
        return item

    def peek(self) -> T:
        if self.is_empty():
            return EMPTY
        return self._items[self._front]

    def is_empty(self) -> bool:
        return self._rear < self._front

    def size(self) -> int:
        if self.is_empty():
            return 0
        return self._rear - self._front + 1

    def clear(self) -> None:
        self._items = [None] * self._capacity
        self._front = 0
        self._rear = -1

    def to_list(self) -> list[T]:
        if self.is_empty():
            return []
        return self._items[self._front : self._rear + 1]

    def _grow(self) -> None:
        live = self.to_list()
        self._capacity *= 2
        self._items = [None] * self._capacity
        self._items[: len(live)] = live
        self._front = 0
        self._rear = len(live) - 1

    def __len__(self) -> int:
        return self.size()
