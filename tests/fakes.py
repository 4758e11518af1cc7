"""Test doubles: a fake fail2ban server and a canned jail source."""

import pickle
import socket
import threading
from datetime import datetime

from fail2ban_dashboard.exceptions import TransportError
from fail2ban_dashboard.protocol import PROTO_CLOSE_MSG, PROTO_END_MSG, BanEntry

NO_REPLY = object()
HANG_UP = object()


class HangUpAfter(bytes):
    """Raw reply after which the server drops the connection."""


def frame(obj) -> bytes:
    return pickle.dumps(obj, pickle.HIGHEST_PROTOCOL) + PROTO_END_MSG


class FakeFail2Ban:
    """Answers pickled commands the way the fail2ban server socket does.

    ``responses`` maps a command tuple to the Python object to pickle back, raw
    bytes to send verbatim, a callable taking the command, or one of the
    ``NO_REPLY`` / ``HANG_UP`` markers.
    """

    def __init__(self, responses=None, default=None):
        self.responses = dict(responses or {})
        self.default = default
        self.commands = []
        self.raw_requests = []
        self.server_sock, self.client_sock = socket.socketpair()
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def respond(self, command, response):
        self.responses[tuple(command)] = response

    def _reply(self, command):
        response = self.responses.get(tuple(command), self.default)
        if response is None:
            response = (1, "Invalid command")
        if callable(response):
            response = response(command)
        if response is NO_REPLY or response is HANG_UP or isinstance(response, bytes):
            return response
        return frame(response)

    def _serve(self):
        buffer = b""
        with self.server_sock:
            while True:
                try:
                    chunk = self.server_sock.recv(4096)
                except OSError:
                    return
                if not chunk:
                    return

                buffer += chunk
                while PROTO_END_MSG in buffer:
                    message, buffer = buffer.split(PROTO_END_MSG, 1)
                    if message == PROTO_CLOSE_MSG:
                        return

                    self.raw_requests.append(message)
                    command = pickle.loads(message)
                    self.commands.append(command)
                    reply = self._reply(command)
                    if reply is HANG_UP:
                        return
                    if reply is NO_REPLY:
                        continue
                    try:
                        self.server_sock.sendall(reply)
                    except OSError:
                        # client gave up on this exchange and hung up
                        return
                    if isinstance(reply, HangUpAfter):
                        return

    def close(self):
        self.client_sock.close()
        self.thread.join(1)


def ban(address, jail_name="sshd"):
    return BanEntry(address, datetime(2023, 8, 29, 10, 30), "600", datetime(2023, 8, 29, 10, 40), jail_name)


class StubClient:
    """Serves canned jails to a store; set ``fail_on`` to make one call raise."""

    def __init__(self, jails=None):
        self.jails = dict(jails or {})
        self.fail_on = None
        self.error = TransportError("connection reset")
        self.calls = []

    def _maybe_fail(self, call):
        self.calls.append(call)
        if self.fail_on == call:
            raise self.error

    def get_jail_names(self):
        self._maybe_fail(("names",))
        return list(self.jails)

    def get_banned(self, jail_name):
        self._maybe_fail(("banned", jail_name))
        return list(self.jails[jail_name][0])

    def get_jail_info(self, jail_name):
        self._maybe_fail(("info", jail_name))
        return self.jails[jail_name][1]
