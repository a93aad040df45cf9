"""
Ordering helpers for record snapshots.

Comparators are cmp-style callables returning a negative number, zero or a
positive number. The binary-search family assumes the input is already sorted
by the same comparator; results on unsorted input are undefined.
"""
from typing import Any, Callable, Sequence, TypeVar

T = TypeVar("T")

CompareFunction = Callable[[Any, Any], int]


def default_compare(a: Any, b: Any) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _compare_nullable(a: Any, b: Any) -> int:
    # None sorts before any concrete value.
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return default_compare(a, b)


def compare_by(*fields: str, reverse: bool = False) -> CompareFunction:
    """Build a comparator over mapping fields, e.g. compare_by("time_in", "id")."""
    if not fields:
        raise ValueError("compare_by needs at least one field.")

    def compare(a: Any, b: Any) -> int:
        for field in fields:
            result = _compare_nullable(a.get(field), b.get(field))
            if result:
                return -result if reverse else result
        return 0

    return compare


def stable_sort(items: Sequence[T], compare: CompareFunction | None = None) -> list[T]:
    """Merge sort; equal elements keep their input order. Returns a new list."""
    cmp = compare or default_compare
    if len(items) <= 1:
        return list(items)

    mid = len(items) // 2
    left = stable_sort(items[:mid], cmp)
    right = stable_sort(items[mid:], cmp)
    return _merge(left, right, cmp)


def _merge(left: list[T], right: list[T], cmp: CompareFunction) -> list[T]:
    out: list[T] = []
    li = ri = 0
    while li < len(left) and ri < len(right):
        # <= keeps the left element first on ties
        if cmp(left[li], right[ri]) <= 0:
            out.append(left[li])
            li += 1
        else:
            out.append(right[ri])
            ri += 1
    out.extend(left[li:])
    out.extend(right[ri:])
    return out


def binary_search(items: Sequence[T], target: Any, compare: CompareFunction | None = None) -> int:
    cmp = compare or default_compare
    lo, hi = 0, len(items) - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        result = cmp(items[mid], target)
        if result == 0:
            return mid
        if result < 0:
            lo = mid + 1
        else:
            hi = mid - 1
    return -1


def binary_search_first(items: Sequence[T], target: Any, compare: CompareFunction | None = None) -> int:
    cmp = compare or default_compare
    lo, hi = 0, len(items) - 1
    found = -1
    while lo <= hi:
        mid = (lo + hi) // 2
        result = cmp(items[mid], target)
        if result == 0:
            found = mid
            hi = mid - 1
        elif result < 0:
            lo = mid + 1
        else:
            hi = mid - 1
    return found


def binary_search_last(items: Sequence[T], target: Any, compare: CompareFunction | None = None) -> int:
    cmp = compare or default_compare
    lo, hi = 0, len(items) - 1
    found = -1
    while lo <= hi:
        mid = (lo + hi) // 2
        result = cmp(items[mid], target)
        if result == 0:
            found = mid
            lo = mid + 1
        elif result < 0:
            lo = mid + 1
        else:
            hi = mid - 1
    return found


def binary_search_insertion_point(
    items: Sequence[T],
    target: Any,
    compare: CompareFunction | None = None,
) -> int:
    """Lower bound: first index whose element is not less than target."""
    cmp = compare or default_compare
    lo, hi = 0, len(items)
    while lo < hi:
        mid = (lo + hi) // 2
        if cmp(items[mid], target) < 0:
            lo = mid + 1
        else:
            hi = mid
    return lo


def binary_search_contains(items: Sequence[T], target: Any, compare: CompareFunction | None = None) -> bool:
    return binary_search(items, target, compare) != -1
