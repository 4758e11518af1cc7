"""Errors raised while talking to the fail2ban socket."""


class Fail2BanError(Exception):
    """Base class for every error raised by the fail2ban client stack."""


class TransportError(Fail2BanError):
    """Socket connect, write or read failed, or the terminator never arrived."""


class DecodeError(Fail2BanError):
    """Bytes received from the socket could not be decoded."""


class UnsupportedTypeError(DecodeError):
    """The payload referenced a class or carried a value we do not decode."""


class ProtocolError(Fail2BanError):
    """A decoded response did not have the shape a command expects."""
