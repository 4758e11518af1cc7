from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional, Self

from fail2ban_dashboard.exceptions import ProtocolError

PROTO_END_MSG = b"<F2B_END_COMMAND>"
PROTO_CLOSE_MSG = b"<F2B_CLOSE_COMMAND>"


class WireValue(ABC):
    """One node of a decoded fail2ban message.

    The peer only ever sends strings, integers, lists and tuples, so the tree is
    closed over the four subclasses below. Use the ``as_*`` helpers to project a
    node onto the Python type a command expects.
    """

    kind = "value"

    @abstractmethod
    def to_obj(self) -> Any:
        pass


@dataclass(frozen=True)
class WireString(WireValue):
    value: str
    kind = "string"

    def to_obj(self) -> str:
        return self.value


@dataclass(frozen=True)
class WireInteger(WireValue):
    value: int
    kind = "integer"

    def to_obj(self) -> int:
        return self.value


@dataclass(frozen=True)
class WireSequence(WireValue):
    items: tuple[WireValue, ...] = ()
    kind = "sequence"

    def __len__(self) -> int:
        return len(self.items)

    def to_obj(self) -> list[Any]:
        return [x.to_obj() for x in self.items]


@dataclass(frozen=True)
class WireTuple(WireValue):
    items: tuple[WireValue, ...] = ()
    kind = "tuple"

    def __len__(self) -> int:
        return len(self.items)

    def to_obj(self) -> tuple[Any, ...]:
        return tuple(x.to_obj() for x in self.items)


def _describe(value: Any) -> str:
    if isinstance(value, WireValue):
        return value.kind
    return type(value).__name__


def as_string(value: WireValue, what: str = "value") -> str:
    match value:
        case WireString(value=s):
            return s
    raise ProtocolError(f"Expected {what} to be a string, got {_describe(value)}")


def as_integer(value: WireValue, what: str = "value") -> int:
    match value:
        case WireInteger(value=n):
            return n
    raise ProtocolError(f"Expected {what} to be an integer, got {_describe(value)}")


def as_sequence(value: WireValue, what: str = "value") -> tuple[WireValue, ...]:
    match value:
        case WireSequence(items=items):
            return items
    raise ProtocolError(f"Expected {what} to be a list, got {_describe(value)}")


def as_tuple(value: WireValue, what: str = "value", arity: Optional[int] = None) -> tuple[WireValue, ...]:
    match value:
        case WireTuple(items=items):
            if arity is not None and len(items) != arity:
                raise ProtocolError(f"Expected {what} to be a {arity}-tuple, got {len(items)} elements")
            return items
    raise ProtocolError(f"Expected {what} to be a tuple, got {_describe(value)}")


def item(items: tuple[WireValue, ...], index: int, what: str = "value") -> WireValue:
    if index >= len(items):
        raise ProtocolError(f"Expected {what} at position {index}, only {len(items)} present")
    return items[index]


def pair(value: WireValue, what: str = "entry") -> tuple[str, WireValue]:
    """Project a ``(label, value)`` tuple as the status commands emit them."""
    key, data = as_tuple(value, what, arity=2)
    return as_string(key, f"{what} label"), data


class F2BResponse:
    """The ``(return_code, data)`` envelope every fail2ban answer is wrapped in."""

    def __init__(self, status_code: Optional[int], data: WireValue) -> Self:
        self.status_code = status_code
        self.data = data

    @classmethod
    def from_wire(cls, value: WireValue) -> "F2BResponse":
        head, data = as_tuple(value, "response", arity=2)
        status_code = head.value if isinstance(head, WireInteger) else None
        return cls(status_code, data)

    @property
    def is_success(self) -> bool:
        return not self.status_code

    def assert_ok(self):
        if self.is_success:
            return
        if isinstance(self.data, WireString):
            raise ProtocolError(f"Fail2Ban server returned error: {self.data.value}")
        raise ProtocolError(f"Fail2Ban server returned status code {self.status_code}")


@dataclass(frozen=True)
class BanEntry:
    address: str
    banned_at: datetime
    current_penalty: str
    ban_ends_at: datetime
    jail_name: str
    country_code: Optional[str] = None

    def with_country_code(self, country_code: Optional[str]) -> "BanEntry":
        return replace(self, country_code=country_code)


@dataclass(frozen=True)
class JailInfo:
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0
