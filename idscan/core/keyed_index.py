from typing import Generic, Iterator, TypeVar

from idscan.config import KEYED_INDEX_CAPACITY

K = TypeVar("K")
V = TypeVar("V")

LOAD_FACTOR = 0.75


def string_hash(key: object) -> int:
    """
    Rolling 31-multiplier hash over the key's string form, truncated to a
    signed 32-bit integer. Stable across processes, unlike built-in hash().
    """
    value = 0
    for ch in str(key):
        value = (value * 31 + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


class KeyedIndex(Generic[K, V]):
    """
    Separate-chaining hash map used for roster lookups during a scan session.

    Each bucket is a list of [key, value] pairs. When the population exceeds
    capacity * LOAD_FACTOR the bucket array doubles and every entry is
    rehashed.
    """

    def __init__(self, initial_capacity: int = KEYED_INDEX_CAPACITY):
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be at least 1.")
        self._capacity = initial_capacity
        self._size = 0
        self._buckets: list[list[list]] = [[] for _ in range(self._capacity)]

    @property
    def capacity(self) -> int:
        return self._capacity

    def _bucket_for(self, key: K) -> list[list]:
        return self._buckets[abs(string_hash(key)) % self._capacity]

    def set(self, key: K, value: V) -> None:
        bucket = self._bucket_for(key)
        for pair in bucket:
            if pair[0] == key:
                pair[1] = value
                return

        bucket.append([key, value])
        self._size += 1
        if self._size > self._capacity * LOAD_FACTOR:
            self._grow()

    def get(self, key: K, default: V | None = None) -> V | None:
        for pair_key, pair_value in self._bucket_for(key):
            if pair_key == key:
                return pair_value
        return default

    def has(self, key: K) -> bool:
        return any(pair[0] == key for pair in self._bucket_for(key))

    def delete(self, key: K) -> bool:
        bucket = self._bucket_for(key)
        for idx, pair in enumerate(bucket):
            if pair[0] == key:
                del bucket[idx]
                self._size -= 1
                return True
        return False

    def keys(self) -> list[K]:
        return [pair[0] for bucket in self._buckets for pair in bucket]

    def values(self) -> list[V]:
        return [pair[1] for bucket in self._buckets for pair in bucket]

    def entries(self) -> list[tuple[K, V]]:
        return [(pair[0], pair[1]) for bucket in self._buckets for pair in bucket]

    def clear(self) -> None:
        self._buckets = [[] for _ in range(self._capacity)]
        self._size = 0

    def _grow(self) -> None:
        old_entries = self.entries()
        self._capacity *= 2
        self._buckets = [[] for _ in range(self._capacity)]
        for key, value in old_entries:
            self._bucket_for(key).append([key, value])

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())
