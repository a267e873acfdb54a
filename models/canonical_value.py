from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple


class Kind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    TEXT = "text"
    BYTES = "bytes"
    LIST = "list"
    MAP = "map"


@dataclass(frozen=True)
class CanonicalValue:
    """
    Tagged value used between protobuf messages and backup documents.

    - LIST holds a tuple of CanonicalValue
    - MAP holds an insertion-ordered dict of str -> CanonicalValue
    - BYTES carries a `secret` flag for key material (written with the base64: prefix)
    Equality is structural; map comparison ignores key order.
    """
    kind: Kind
    value: Any = None
    secret: bool = False

    def __post_init__(self) -> None:
        k, v = self.kind, self.value
        if k is Kind.NULL:
            ok = v is None
        elif k is Kind.BOOL:
            ok = isinstance(v, bool)
        elif k is Kind.NUMBER:
            ok = isinstance(v, (int, float)) and not isinstance(v, bool)
        elif k is Kind.TEXT:
            ok = isinstance(v, str)
        elif k is Kind.BYTES:
            ok = isinstance(v, bytes)
        elif k is Kind.LIST:
            ok = isinstance(v, tuple) and all(isinstance(i, CanonicalValue) for i in v)
        elif k is Kind.MAP:
            ok = isinstance(v, dict) and all(
                isinstance(key, str) and isinstance(i, CanonicalValue) for key, i in v.items()
            )
        else:
            raise TypeError(f"unknown kind: {k!r}")
        if not ok:
            raise TypeError(f"{k.value} value cannot hold {type(v).__name__}")
        if self.secret and k is not Kind.BYTES:
            raise TypeError("only bytes values can be marked secret")

    # ---- constructors ----
    @classmethod
    def null(cls) -> CanonicalValue:
        return cls(Kind.NULL)

    @classmethod
    def boolean(cls, value: bool) -> CanonicalValue:
        return cls(Kind.BOOL, bool(value))

    @classmethod
    def number(cls, value: int | float) -> CanonicalValue:
        return cls(Kind.NUMBER, value)

    @classmethod
    def text(cls, value: str) -> CanonicalValue:
        return cls(Kind.TEXT, value)

    @classmethod
    def bytes_(cls, value: bytes, secret: bool = False) -> CanonicalValue:
        return cls(Kind.BYTES, bytes(value), secret)

    @classmethod
    def list_(cls, items: Iterable[CanonicalValue] = ()) -> CanonicalValue:
        return cls(Kind.LIST, tuple(items))

    @classmethod
    def map_(cls, entries: Dict[str, CanonicalValue] | Iterable[Tuple[str, CanonicalValue]] = ()) -> CanonicalValue:
        return cls(Kind.MAP, dict(entries))

    # ---- helpers ----
    @property
    def is_scalar(self) -> bool:
        return self.kind not in (Kind.LIST, Kind.MAP)

    def is_map(self) -> bool:
        return self.kind is Kind.MAP

    def is_list(self) -> bool:
        return self.kind is Kind.LIST

    def get(self, key: str, default: Optional[CanonicalValue] = None) -> Optional[CanonicalValue]:
        if self.kind is not Kind.MAP:
            return default
        return self.value.get(key, default)

    def items(self) -> Iterator[Tuple[str, CanonicalValue]]:
        if self.kind is not Kind.MAP:
            raise TypeError(f"{self.kind.value} value has no items")
        return iter(self.value.items())

    def elements(self) -> Tuple[CanonicalValue, ...]:
        if self.kind is not Kind.LIST:
            raise TypeError(f"{self.kind.value} value has no elements")
        return self.value

    def is_empty_container(self) -> bool:
        return self.kind in (Kind.LIST, Kind.MAP) and not self.value

    def to_plain(self) -> Any:
        """JSON-like Python value; bytes become base64 text (no prefix)."""
        k = self.kind
        if k is Kind.NULL:
            return None
        if k in (Kind.BOOL, Kind.NUMBER, Kind.TEXT):
            return self.value
        if k is Kind.BYTES:
            return base64.b64encode(self.value).decode("ascii")
        if k is Kind.LIST:
            return [i.to_plain() for i in self.value]
        if k is Kind.MAP:
            return {key: i.to_plain() for key, i in self.value.items()}
        raise TypeError(f"unknown kind: {k!r}")
