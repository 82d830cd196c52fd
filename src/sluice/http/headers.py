"""HTTP header containers.

``Headers`` is the immutable, case-insensitive view of request headers.
Implements ``Mapping[str, str]`` and the ``MultiValueMapping`` protocol.
Stores raw byte pairs from the ASGI scope; decodes on access.

``MutableHeaders`` is the ordered multi-map a ``Response`` accumulates
before commit. Keys are case-insensitive, values keep insertion order,
and repeated names are never merged.
"""

from collections.abc import Iterator, Mapping


class Headers(Mapping[str, str]):
    """Immutable, case-insensitive HTTP headers.

    ``__getitem__`` returns the first matching value.
    ``get_list`` returns all values for a header (e.g. multiple ``Cookie``).
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: tuple[tuple[bytes, bytes], ...] = ()) -> None:
        object.__setattr__(self, "_raw", raw)

    def __getitem__(self, key: str) -> str:
        key_lower = key.lower().encode("latin-1")
        for name, value in self._raw:
            if name.lower() == key_lower:
                return value.decode("latin-1")
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        key_lower = key.lower().encode("latin-1")
        return any(name.lower() == key_lower for name, _ in self._raw)

    def __iter__(self) -> Iterator[str]:
        seen: set[str] = set()
        for name, _ in self._raw:
            key = name.decode("latin-1").lower()
            if key not in seen:
                seen.add(key)
                yield key

    def __len__(self) -> int:
        return len(set(self))

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"Headers({{{items}}})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        """Return the first value for *key*, or *default* if missing."""
        try:
            return self[key]
        except KeyError:
            return default

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*."""
        key_lower = key.lower().encode("latin-1")
        return [value.decode("latin-1") for name, value in self._raw if name.lower() == key_lower]

    @property
    def raw(self) -> tuple[tuple[bytes, bytes], ...]:
        """Access raw header byte pairs for ASGI compatibility."""
        return self._raw

    @classmethod
    def from_pairs(cls, pairs: Mapping[str, str] | list[tuple[str, str]]) -> "Headers":
        """Build headers from string pairs (tests, synthetic requests)."""
        items = pairs.items() if isinstance(pairs, Mapping) else pairs
        return cls(
            tuple(
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in items
            )
        )


class MutableHeaders:
    """Ordered, case-insensitive multi-map of response headers.

    ``set`` replaces every value stored under a name, keeping the
    position of the first occurrence. ``add`` appends one more value.
    ``items`` yields one pair per value, in insertion order, with the
    name spelled as it was first given.
    """

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[tuple[str, str]] = []

    def set(self, name: str, value: str) -> None:
        """Replace all values of *name* with *value*."""
        key = name.lower()
        for i, (existing, _) in enumerate(self._items):
            if existing.lower() == key:
                self._items[i] = (existing, value)
                self._items[i + 1 :] = [
                    item for item in self._items[i + 1 :] if item[0].lower() != key
                ]
                return
        self._items.append((name, value))

    def add(self, name: str, value: str) -> None:
        """Append *value* under *name*, keeping existing values."""
        self._items.append((name, value))

    def get(self, name: str, default: str | None = None) -> str | None:
        """Return the first value for *name*, or *default* if missing."""
        key = name.lower()
        for existing, value in self._items:
            if existing.lower() == key:
                return value
        return default

    def get_list(self, name: str) -> list[str]:
        """Return all values for *name*, in insertion order."""
        key = name.lower()
        return [value for existing, value in self._items if existing.lower() == key]

    def delete(self, name: str) -> None:
        """Remove every value stored under *name*."""
        key = name.lower()
        self._items = [item for item in self._items if item[0].lower() != key]

    def items(self) -> list[tuple[str, str]]:
        """Every ``(name, value)`` pair, one per value."""
        return list(self._items)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(existing.lower() == key for existing, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"MutableHeaders({self._items!r})"
