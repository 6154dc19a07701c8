"""
=============================================================================
HEADER MULTIMAP
=============================================================================

HTTP headers are not a dict:

    1. Names are case-insensitive      "Content-Type" == "content-type"
    2. A name may repeat               two Set-Cookie lines are two cookies
    3. Order can matter                middleware append in sequence

Headers stores (name, value) pairs in insertion order and compares names
case-insensitively, keeping the spelling of the first writer.

    headers = Headers()
    headers.add("Set-Cookie", "a=1")
    headers.add("Set-Cookie", "b=2")
    headers.get("set-cookie")        → "a=1"
    headers.get_all("SET-COOKIE")    → ["a=1", "b=2"]
    headers.set("Vary", "Origin")    → replaces every Vary line

=============================================================================
"""

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]], "Headers", None]


class Headers:
    """Ordered, case-insensitive header multimap."""

    def __init__(self, source: HeaderSource = None):
        self._items: List[Tuple[str, str]] = []
        if source is None:
            return
        if isinstance(source, Headers):
            pairs: Iterable[Tuple[str, str]] = source.items()
        elif isinstance(source, Mapping):
            pairs = source.items()
        else:
            pairs = source
        for name, value in pairs:
            self.add(name, value)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value for name, or default."""
        key = name.lower()
        for item_name, value in self._items:
            if item_name.lower() == key:
                return value
        return default

    def get_all(self, name: str) -> List[str]:
        key = name.lower()
        return [value for item_name, value in self._items if item_name.lower() == key]

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def keys(self) -> List[str]:
        seen = set()
        names = []
        for name, _ in self._items:
            if name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
        return names

    def to_dict(self) -> Dict[str, str]:
        """Collapse to a plain dict, joining repeated names with ', '."""
        result: Dict[str, str] = {}
        for name in self.keys():
            result[name] = ", ".join(self.get_all(name))
        return result

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def add(self, name: str, value: str) -> "Headers":
        """Append a value, keeping any existing ones."""
        self._items.append((name, str(value)))
        return self

    def set(self, name: str, value: str) -> "Headers":
        """
        Replace every value for name with a single one.

        The new value takes the position of the first existing entry so
        the relative order of other headers does not change.
        """
        key = name.lower()
        value = str(value)
        replaced = False
        items: List[Tuple[str, str]] = []
        for item_name, item_value in self._items:
            if item_name.lower() != key:
                items.append((item_name, item_value))
            elif not replaced:
                items.append((name, value))
                replaced = True
        if not replaced:
            items.append((name, value))
        self._items = items
        return self

    def setdefault(self, name: str, value: str) -> str:
        existing = self.get(name)
        if existing is None:
            self.add(name, value)
            return str(value)
        return existing

    def remove(self, name: str) -> None:
        key = name.lower()
        self._items = [item for item in self._items if item[0].lower() != key]

    def update(self, other: HeaderSource) -> "Headers":
        """Set each name from other, replacing existing values."""
        for name, value in Headers(other).items():
            self.set(name, value)
        return self

    def copy(self) -> "Headers":
        return Headers(self)

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __delitem__(self, name: str) -> None:
        if name not in self:
            raise KeyError(name)
        self.remove(name)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(item_name.lower() == key for item_name, _ in self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return [(n.lower(), v) for n, v in self._items] == [
                (n.lower(), v) for n, v in other._items
            ]
        if isinstance(other, Mapping):
            return self == Headers(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"
