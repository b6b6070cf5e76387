"""Address-ordered lookup tables."""

from bisect import bisect_right


class AddressMap:
    """Immutable map from address to value with floor lookups.

    Keys and values live in parallel sorted lists, so a floor query is a
    single bisect. Maps are built in one go from a dict and never mutated,
    which lets a finished index be published by plain assignment.
    """

    def __init__(self, keys=(), values=()):
        self._keys = list(keys)
        self._values = list(values)

    @classmethod
    def from_items(cls, items: dict):
        keys = sorted(items)
        return cls(keys, [items[k] for k in keys])

    def __len__(self):
        return len(self._keys)

    def __bool__(self):
        return bool(self._keys)

    def __iter__(self):
        return iter(zip(self._keys, self._values))

    def __contains__(self, key):
        return self.get(key) is not None

    def key_at(self, i: int) -> int:
        return self._keys[i]

    def value_at(self, i: int):
        return self._values[i]

    def values(self):
        return list(self._values)

    def get(self, key: int, default=None):
        i = self.floor_index(key)
        if i is not None and self._keys[i] == key:
            return self._values[i]
        return default

    def floor_index(self, addr: int):
        """Index of the entry with the greatest key <= addr, or None."""
        i = bisect_right(self._keys, addr) - 1
        if i < 0:
            return None
        return i

    def floor(self, addr: int):
        """Return (key, value) for the greatest key <= addr, or None."""
        i = self.floor_index(addr)
        if i is None:
            return None
        return self._keys[i], self._values[i]
