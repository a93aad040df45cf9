from idscan.core.keyed_index import KeyedIndex, string_hash


def test_string_hash_is_stable():
    assert string_hash("") == 0
    assert string_hash("a") == 97
    assert string_hash("ab") == 97 * 31 + 98
    assert string_hash(12) == string_hash("12")


def test_string_hash_stays_in_signed_32_bit_range():
    value = string_hash("QR-2024-0001-with-a-much-longer-suffix")
    assert -(2**31) <= value < 2**31


def test_set_get_and_overwrite():
    index: KeyedIndex[str, int] = KeyedIndex()
    index.set("QR-1", 1)
    index.set("QR-2", 2)
    index.set("QR-1", 10)

    assert index.get("QR-1") == 10
    assert index.get("QR-2") == 2
    assert index.get("missing") is None
    assert index.get("missing", -1) == -1
    assert len(index) == 2


def test_delete_and_membership():
    index: KeyedIndex[str, str] = KeyedIndex()
    index.set("a", "x")

    assert "a" in index
    assert index.has("a")
    assert index.delete("a") is True
    assert index.delete("a") is False
    assert "a" not in index
    assert len(index) == 0


def test_grows_past_load_factor_and_keeps_entries():
    index: KeyedIndex[int, str] = KeyedIndex(initial_capacity=4)
    for i in range(20):
        index.set(i, f"v{i}")

    assert index.capacity >= 32
    assert len(index) == 20
    assert all(index.get(i) == f"v{i}" for i in range(20))
    assert sorted(index.keys()) == list(range(20))
    assert sorted(index) == list(range(20))


def test_entries_values_and_clear():
    index: KeyedIndex[str, int] = KeyedIndex()
    index.set("x", 1)
    index.set("y", 2)

    assert sorted(index.entries()) == [("x", 1), ("y", 2)]
    assert sorted(index.values()) == [1, 2]

    index.clear()
    assert len(index) == 0
    assert index.keys() == []
