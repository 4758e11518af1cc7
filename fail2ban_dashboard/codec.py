import io
import logging
import pickle
from typing import Any, BinaryIO, Sequence, Union

from fail2ban_dashboard.constants import TRACE
from fail2ban_dashboard.exceptions import DecodeError, UnsupportedTypeError
from fail2ban_dashboard.protocol import WireInteger, WireSequence, WireString, WireTuple, WireValue

logger = logging.getLogger(__name__)

# fail2ban wraps some plain strings in a builtins.str reduce call
ALLOWED_CLASSES = {("builtins", "str"), ("__builtin__", "str")}


def _identity(*args):
    return args[0]


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


class RestrictedUnpickler(pickle.Unpickler):
    def find_class(self, module: str, name: str):
        if (module, name) in ALLOWED_CLASSES:
            return _identity
        raise UnsupportedTypeError(f"Class not found: [{module}] {name}")


def _convert_scalar(x: Any) -> WireValue:
    match x:
        case WireValue():
            return x
        case bool():
            return WireInteger(int(x))
        case int():
            return WireInteger(x)
        case str():
            return WireString(x)
        case bytes() | bytearray():
            return WireString(_decode_text(bytes(x)))
        case _:
            raise UnsupportedTypeError(f"Unsupported value of type {type(x).__name__}")


def _wrap(container: list | tuple, items: list[WireValue]) -> WireValue:
    if isinstance(container, list):
        return WireSequence(tuple(items))
    return WireTuple(tuple(items))


def convert_types(x: Any) -> WireValue:
    if not isinstance(x, (list, tuple)):
        return _convert_scalar(x)

    # explicit stack of (container, remaining items, converted items), nesting depth is unbounded
    stack = [(x, iter(x), [])]
    open_ids = {id(x)}
    while True:
        container, remaining, converted = stack[-1]
        for item in remaining:
            if isinstance(item, (list, tuple)):
                if id(item) in open_ids:
                    raise DecodeError("Message contains a reference cycle")
                open_ids.add(id(item))
                stack.append((item, iter(item), []))
                break
            converted.append(_convert_scalar(item))
        else:
            stack.pop()
            open_ids.discard(id(container))
            value = _wrap(container, converted)
            if not stack:
                return value
            stack[-1][2].append(value)


def decode(data: Union[bytes, bytearray, BinaryIO]) -> WireValue:
    """Decode one pickled message into a :class:`WireValue` tree.

    ``data`` is either the raw message bytes (terminator already removed) or a
    binary stream positioned at the start of the message. Only the small subset
    of pickle fail2ban emits is accepted; any class other than ``builtins.str``
    raises :class:`UnsupportedTypeError`.
    """
    stream = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data
    # Python 2 peers send STRING opcodes, keep them as bytes and decode ourselves
    unpickler = RestrictedUnpickler(stream, encoding="bytes")
    try:
        return convert_types(unpickler.load())
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f"Malformed message: {e}") from e


def encode(tokens: Sequence[str]) -> bytes:
    if not tokens:
        raise ValueError("Cannot encode an empty command")

    command = [str(t) for t in tokens]
    logger.log(TRACE, "Encoding command %s", command)
    return pickle.dumps(command, pickle.HIGHEST_PROTOCOL)
